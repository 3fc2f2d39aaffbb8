from sqlalchemy import Column, String, Boolean, Float, ForeignKey
from sqlalchemy.orm import relationship
from resolver.models.base import Base, TimestampMixin, UUIDMixin


class Vote(Base, TimestampMixin, UUIDMixin):
    """Community vote on a dispute. Written by the voting UI, only read here."""

    __tablename__ = "vote"

    dispute_id = Column(String(36), ForeignKey("dispute.id"), nullable=False, index=True)
    voter = Column(String(42), nullable=False)
    support = Column(Boolean, nullable=False)
    weight = Column(Float, nullable=False, default=1.0)

    # Relationships
    dispute = relationship("Dispute", backref="votes")

    def __repr__(self):
        return f"<Vote(voter='{self.voter}', support={self.support})>"
