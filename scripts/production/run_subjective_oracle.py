#!/usr/bin/env python3
"""
Run the subjective market coordinator (commit -> reveal -> resolve).
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
from resolver.services.subjective_oracle import SubjectiveOracle

logger = logging.getLogger("subjective-oracle")


async def main(run_once: bool = False):
    create_tables()
    oracle = SubjectiveOracle.from_settings()

    logger.info("Starting subjective oracle...")
    logger.info(f"Contract: {settings.subjective_factory_address}")
    logger.info(f"Commit duration: {settings.commit_duration_hours}h")
    logger.info(f"Reveal duration: {settings.reveal_duration_hours}h")
    logger.info(f"Poll interval: {oracle.interval_seconds}s")

    try:
        if run_once:
            await oracle.run_once()
        else:
            oracle.install_signal_handlers()
            await oracle.run_forever()
    finally:
        await oracle.notifier.drain()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Subjective market phase coordinator")
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
