#!/usr/bin/env python3
"""
Run the market syncer: mirrors external marketplace listings into the
local market store.
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to the Python path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from resolver.config import settings
from resolver.database import create_tables
from resolver.logging_config import setup_logging
from resolver.services.market_syncer import MarketSyncer

logger = logging.getLogger("market-syncer")


async def main(run_once: bool = False):
    create_tables()
    syncer = MarketSyncer()

    logger.info("Starting market syncer...")
    logger.info(f"Source: {settings.gamma_api_url}")
    logger.info(f"Batch limit: {syncer.limit}")
    logger.info(f"Poll interval: {syncer.interval_seconds}s")

    if run_once:
        await syncer.run_once()
        return

    syncer.install_signal_handlers()
    await syncer.run_forever()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="External market syncer")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()

    setup_logging(args.log_level)
    try:
        asyncio.run(main(args.once))
    except Exception as e:
        logger.error(f"Fatal: {e}", exc_info=True)
        sys.exit(1)
