import logging
import sys
from typing import Optional

from resolver.config import settings


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None):
    """Setup logging configuration."""
    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = log_file or settings.log_file
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    # web3 request logging is very chatty at DEBUG
    logging.getLogger("web3").setLevel(logging.WARNING)
