# stockledger/core/logging_config.py
"""
Logging setup shared by the API and the CLI.

Ledger, reconciliation and status-change messages stay at the configured
level; driver and HTTP client chatter is held at WARNING.
"""

import logging
import os

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "sqlalchemy",
    "sqlalchemy.engine",
    "asyncpg",
    "aiosqlite",
    "alembic.runtime.migration",
)


def configure_logging(level: str = None):
    """Configure root logging from ``level`` or the LOG_LEVEL environment variable."""
    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("stockledger").setLevel(numeric_level)

    logging.getLogger(__name__).info("Logging configured at level: %s", level_name)
