"""
Logging setup for hosts embedding the layer records package.

Records only ever log through module loggers; the host decides where the
output goes. This helper gives hosts and scripts a one-call stdout setup
driven by the LOG_LEVEL environment variable.
"""

import logging
import sys
from typing import Iterable, Optional

from decouple import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# HTTP client chatter drowns out record lifecycle messages at DEBUG
NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio")


def resolve_level(name: str) -> int:
    """Map a level name to its logging constant, INFO when unknown."""
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: Optional[str] = None, quiet: Iterable[str] = NOISY_LOGGERS) -> int:
    """
    Configure the root logger to write to stdout.

    Args:
        level: level name; read from LOG_LEVEL (default INFO) when not given
        quiet: loggers held at WARNING regardless of the root level

    Returns:
        The numeric level applied to the root logger.
    """
    level_name = level or config("LOG_LEVEL", default="INFO")
    level_value = resolve_level(level_name)

    logging.basicConfig(
        level=level_value,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"Logging initialized with level: {logging.getLevelName(level_value)}")
    return level_value
