"""
querycache - tiered in-process data cache between views and a remote source.
"""
import logging
from typing import Optional

from config.settings import settings

__version__ = "0.1.0"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging with the level from settings unless given."""
    logging.basicConfig(level=(level or settings.log_level).upper())
