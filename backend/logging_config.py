"""Logging setup shared by the API server and the command-line scripts."""

import logging

from config import settings

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"

# Loggers that emit per-request or per-statement noise at INFO
QUIET_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "urllib3",
    "plaid",
    "apscheduler",
)


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger.

    Args:
        level: Overrides ``settings.LOG_LEVEL`` (scripts pass ``"DEBUG"``
            for ``--verbose``).
    """
    logging.basicConfig(
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        level=(level or settings.LOG_LEVEL).upper(),
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
