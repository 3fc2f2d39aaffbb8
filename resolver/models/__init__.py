from .base import Base
from .market import Market, MarketStatus, MarketType
from .external_market import ExternalMarket
from .dispute import Dispute, DisputeStatus
from .vote import Vote
from .scan_checkpoint import ScanCheckpoint

__all__ = [
    "Base",
    "Market",
    "MarketStatus",
    "MarketType",
    "ExternalMarket",
    "Dispute",
    "DisputeStatus",
    "Vote",
    "ScanCheckpoint"
]
