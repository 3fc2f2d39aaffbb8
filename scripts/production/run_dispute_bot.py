#!/usr/bin/env python3
"""
Run the dispute bot: submits candidate disputes on-chain, syncs dispute ids
from contract events and claims rewards for resolved disputes.
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
from resolver.exceptions import ConfigurationError
from resolver.logging_config import setup_logging
from resolver.services.dispute_bot import DisputeBot

logger = logging.getLogger("dispute-bot")


async def main(run_once: bool = False):
    create_tables()
    bot = DisputeBot.from_settings()

    logger.info("Starting automated dispute bot...")
    logger.info(f"Wallet: {bot.address}")
    logger.info(f"Contract: {settings.dispute_address}")
    logger.info(f"Stake per dispute: {settings.dispute_stake_eth}")
    logger.info(f"Poll interval: {bot.interval_seconds}s")

    if run_once:
        await bot.run_once()
        return

    bot.install_signal_handlers()
    await bot.run_forever()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Dispute submission and claim bot")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args()

    setup_logging(args.log_level)
    try:
        asyncio.run(main(args.once))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal: {e}", exc_info=True)
        sys.exit(1)
