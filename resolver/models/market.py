import enum

from sqlalchemy import Column, String, Text, DateTime, Integer, Float, Index, UniqueConstraint
from resolver.models.base import Base, TimestampMixin, UUIDMixin, utcnow


class MarketType(str, enum.Enum):
    PUBLIC = "public"
    SUBJECTIVE = "subjective"


class MarketStatus(str, enum.Enum):
    """Market lifecycle. Subjective markets walk every step; public markets skip the phases."""

    ACTIVE = "active"
    COMMIT_PHASE = "commit_phase"
    REVEAL_PHASE = "reveal_phase"
    RESOLVED = "resolved"

    @classmethod
    def can_transition(cls, market_type: str, current: str, new: str) -> bool:
        """Whether `current -> new` is a single forward step for the market type."""
        if market_type == MarketType.PUBLIC.value:
            return current == cls.ACTIVE.value and new == cls.RESOLVED.value
        order = [status.value for status in cls]
        if current not in order or new not in order:
            return False
        return order.index(new) == order.index(current) + 1


class Market(Base, TimestampMixin, UUIDMixin):
    """Model for markets tracked by the aggregator, public or subjective."""

    __tablename__ = "market"

    chain_id = Column(Integer, nullable=False)
    contract_address = Column(String(42), nullable=False)
    market_id = Column(Integer, nullable=False)  # On-chain market id
    question = Column(Text, nullable=False)
    category = Column(String(100), nullable=True, index=True)
    market_type = Column(String(20), nullable=False, default=MarketType.PUBLIC.value)
    status = Column(String(20), nullable=False, default=MarketStatus.ACTIVE.value, index=True)
    status_updated_at = Column(DateTime, nullable=False, default=utcnow)  # Last status transition
    resolution_time = Column(DateTime, nullable=False)
    outcome = Column(Integer, nullable=True)  # Null until resolved
    total_volume = Column(Float, nullable=False, default=0.0)  # Native units
    creator = Column(String(42), nullable=False)

    __table_args__ = (
        UniqueConstraint('chain_id', 'contract_address', 'market_id', name='uq_market_chain_contract_id'),
        Index('idx_market_type_status', 'market_type', 'status'),
    )

    def __repr__(self):
        return f"<Market(market_id={self.market_id}, type='{self.market_type}', status='{self.status}')>"
