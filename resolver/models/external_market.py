from sqlalchemy import Column, String, Text, DateTime, Integer, Float, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from resolver.models.base import Base, TimestampMixin, UUIDMixin


class ExternalMarket(Base, TimestampMixin, UUIDMixin):
    """Model for third-party marketplace listings attached to a parent market."""

    __tablename__ = "external_market"

    market_id = Column(String(36), ForeignKey("market.id"), nullable=False, index=True)
    marketplace = Column(String(50), nullable=False)  # polymarket, ...
    external_id = Column(String(200), nullable=False)  # Marketplace's market identifier
    question = Column(Text, nullable=True)
    category = Column(String(100), nullable=True)
    price = Column(Integer, nullable=False)  # Basis points 0-10000
    liquidity = Column(Float, nullable=False, default=0.0)
    resolution_time = Column(DateTime, nullable=True)
    last_update = Column(DateTime, nullable=False)

    # Relationships
    market = relationship("Market", backref="external_markets")

    __table_args__ = (
        UniqueConstraint('marketplace', 'external_id', name='uq_external_market_marketplace_id'),
    )

    def __repr__(self):
        return f"<ExternalMarket(marketplace='{self.marketplace}', external_id='{self.external_id}', price={self.price})>"
