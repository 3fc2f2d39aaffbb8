import enum

from sqlalchemy import Column, String, DateTime, Integer, BigInteger, Float, ForeignKey, Index
from sqlalchemy.orm import relationship
from resolver.models.base import Base, TimestampMixin, UUIDMixin, utcnow


class DisputeStatus(str, enum.Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    CLAIMED = "claimed"

    @classmethod
    def can_transition(cls, current: str, new: str) -> bool:
        """Status only moves forward: active -> resolved|rejected, resolved -> claimed."""
        allowed = {
            cls.ACTIVE.value: {cls.RESOLVED.value, cls.REJECTED.value},
            cls.RESOLVED.value: {cls.CLAIMED.value},
        }
        return new in allowed.get(current, set())


class Dispute(Base, TimestampMixin, UUIDMixin):
    """Model for candidate and on-chain disputes against a market's recorded outcome."""

    __tablename__ = "dispute"

    chain_id = Column(Integer, nullable=False)
    dispute_id = Column(BigInteger, nullable=False, default=0, index=True)  # 0 until submitted on-chain
    market_id = Column(String(36), ForeignKey("market.id"), nullable=False, index=True)
    submitter = Column(String(42), nullable=False, index=True)  # Lower-case address
    evidence_hash = Column(String(66), nullable=False)
    stake = Column(Float, nullable=False, default=0.0)  # Native units
    status = Column(String(20), nullable=False, default=DisputeStatus.ACTIVE.value, index=True)
    proposed_outcome = Column(Integer, nullable=False, default=0)
    ai_confidence = Column(Integer, nullable=False)  # 0-100
    submitted_at = Column(DateTime, nullable=False, default=utcnow)
    tx_hash = Column(String(66), nullable=True)

    # Claim-before-act lease held by a bot instance while it submits
    lease_owner = Column(String(64), nullable=True)
    lease_expires_at = Column(DateTime, nullable=True)

    # Relationships
    market = relationship("Market", backref="disputes")

    __table_args__ = (
        Index('idx_dispute_market_submitter', 'market_id', 'submitter'),
        Index('idx_dispute_status_id', 'status', 'dispute_id'),
    )

    def __repr__(self):
        return f"<Dispute(dispute_id={self.dispute_id}, status='{self.status}', confidence={self.ai_confidence})>"
