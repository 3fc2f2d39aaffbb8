from sqlalchemy import Column, String, Integer, BigInteger, UniqueConstraint
from resolver.models.base import Base, TimestampMixin, UUIDMixin


class ScanCheckpoint(Base, TimestampMixin, UUIDMixin):
    """Last block fully scanned for a contract's events (the watermark)."""

    __tablename__ = "scan_checkpoint"

    name = Column(String(100), nullable=False)  # e.g. 'dispute_events'
    chain_id = Column(Integer, nullable=False)
    contract_address = Column(String(42), nullable=False)
    last_block = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint('name', 'chain_id', 'contract_address', name='uq_scan_checkpoint'),
    )

    def __repr__(self):
        return f"<ScanCheckpoint(name='{self.name}', last_block={self.last_block})>"
