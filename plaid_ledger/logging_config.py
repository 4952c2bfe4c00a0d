"""Logging setup for the CLI.

Library modules only call ``logging.getLogger(__name__)``; handlers are
attached here, once, by the entry point.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

APP_LOGGER_NAME = "plaid_ledger"

THIRD_PARTY_LOGGERS = [
    "plaid",
    "urllib3",
    "anthropic",
    "httpx",
    "httpcore",
]


def setup_logging(
    app_log_level: str = "INFO",
    third_party_log_level: str = "WARNING",
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the application logger.

    Args:
        app_log_level: Level for plaid_ledger.* loggers.
        third_party_log_level: Level for SDK and HTTP library loggers.
        log_file: Optional path for a rotating log file.
        max_file_size: Rotate the log file after this many bytes.
        backup_count: Number of rotated files to keep.

    Returns:
        The application root logger.
    """
    app_level = getattr(logging, app_log_level.upper(), logging.INFO)
    third_party_level = getattr(logging, third_party_log_level.upper(), logging.WARNING)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(app_level)
    app_logger.handlers.clear()

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # stderr so command output on stdout stays clean
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(app_level)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_file_size, backupCount=backup_count
        )
        file_handler.setLevel(app_level)
        file_handler.setFormatter(formatter)
        app_logger.addHandler(file_handler)

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)

    app_logger.propagate = False
    return app_logger

