"""
Shared logger for the shell modules.

Every module does ``from mshell_logger import logger`` and logs with lazy
``%s`` arguments.  Output goes to stderr so it never mixes with rendered
results on stdout.
"""

import logging
import sys

from mshell_config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s [%(module)s] %(message)s"

logger = logging.getLogger("mshell")

if not logger.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(_handler)

logger.setLevel(LOG_LEVEL.upper())


def configure_logging(level: str) -> None:
    """Change the shell log level at runtime (e.g. ``-v`` on the CLI)."""
    logger.setLevel(level.upper())
