"""
Market syncer: upserts normalized external listings under a placeholder
parent market.
"""
import time
from typing import Dict, Optional

from sqlalchemy.orm import Session

from resolver.config import settings
from resolver.services.base_service import PollingService
from resolver.services.polymarket_adapter import PolymarketAdapter
from resolver import store


class MarketSyncer(PollingService):
    """Fetches and normalizes market data from external marketplaces."""

    def __init__(self, adapters: Optional[Dict[str, PolymarketAdapter]] = None,
                 chain_id: Optional[int] = None, aggregator_address: Optional[str] = None,
                 limit: Optional[int] = None, interval_seconds: Optional[float] = None, **kwargs):
        super().__init__(interval_seconds if interval_seconds is not None else settings.market_sync_interval, **kwargs)
        self.adapters = adapters if adapters is not None else {"polymarket": PolymarketAdapter()}
        self.chain_id = chain_id if chain_id is not None else settings.chain_id
        self.aggregator_address = aggregator_address or settings.market_aggregator_address
        self.limit = limit or settings.market_sync_limit

    async def sync_markets(self, db: Session) -> int:
        self.logger.info("Starting market sync...")
        start_time = time.monotonic()

        upserted_count = 0
        for name, adapter in self.adapters.items():
            listings = await adapter.fetch_markets(self.limit)
            self.logger.info(f"Fetched {len(listings)} markets from {name}")

            for listing in listings:
                try:
                    parent = store.get_or_create_placeholder_market(
                        db,
                        chain_id=self.chain_id,
                        contract_address=self.aggregator_address,
                        question=listing["question"],
                        category=listing["category"],
                        resolution_time=listing["resolution_time"]
                    )
                    store.upsert_external_market(db, parent, listing)
                    upserted_count += 1
                except Exception as e:
                    db.rollback()
                    self.logger.error(f"Error upserting market {listing.get('external_id')}: {e}")

        duration_ms = int((time.monotonic() - start_time) * 1000)
        self.logger.info(f"Synced {upserted_count} markets in {duration_ms}ms")
        return upserted_count

    async def run_cycle(self, db: Session) -> None:
        await self.sync_markets(db)
