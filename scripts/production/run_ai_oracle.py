#!/usr/bin/env python3
"""
Run the AI oracle: scores recently resolved markets and records candidate
disputes for the dispute bot.
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
from resolver.services.anomaly_scorer import AIOracleService

logger = logging.getLogger("ai-oracle")


async def main(run_once: bool = False):
    create_tables()
    oracle = AIOracleService.from_settings()

    logger.info("Starting AI oracle service...")
    logger.info(f"Candidate submitter: {oracle.submitter}")
    logger.info(f"Evidence sources: {', '.join(s.name for s in oracle.evidence_sources) or 'none'}")
    logger.info(f"Reasoning provider: {settings.reasoning_provider}")
    logger.info(f"Look-back window: {oracle.lookback_hours}h")
    logger.info(f"Poll interval: {oracle.interval_seconds}s")

    if run_once:
        await oracle.run_once()
        return

    oracle.install_signal_handlers()
    await oracle.run_forever()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="AI oracle anomaly scorer")
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
