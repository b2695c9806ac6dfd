"""Centralized logging configuration for the email ingest pipeline.

This module provides structured logging with context fields for mailbox polling,
extraction and persistence. Logs are written to both console (for Docker logs)
and rotating files.

Usage:
    from ingest.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("Committed transaction", extra={'message_id': msg_id, 'portfolio': 'TFSA'})
"""

import logging
import os
from logging.handlers import RotatingFileHandler

# Log directory from environment. Empty string disables file logging.
LOG_DIR = os.getenv("LOG_DIR", "logs")


class StructuredFormatter(logging.Formatter):
    """Custom formatter that adds context fields to log records.

    Supports the following context fields via extra={} parameter:
    - message_id: Message-ID of the email being processed
    - parse_method: Extraction method used (heuristic, ai)
    - portfolio: Portfolio name the candidate was routed to
    """

    def format(self, record):
        """Format log record with context fields."""
        record.message_id = getattr(record, "message_id", None)
        record.parse_method = getattr(record, "parse_method", None)
        record.portfolio = getattr(record, "portfolio", None)

        return super().format(record)


def get_logger(name: str) -> logging.Logger:
    """Get configured logger for ingest operations.

    Creates a logger with:
    - Console handler for Docker logs (INFO level)
    - Rotating file handler for all logs (DEBUG level)
    - Separate error file handler (ERROR level)

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logging.Logger instance
    """
    logger = logging.getLogger(name)

    # Skip if already configured (prevents duplicate handlers)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(
        StructuredFormatter("[%(levelname)s] [msg:%(message_id)s] %(message)s")
    )
    logger.addHandler(console)

    if not LOG_DIR:
        return logger

    os.makedirs(LOG_DIR, exist_ok=True)
    file_format = (
        "[%(asctime)s] [%(levelname)s] [%(name)s] "
        "[msg:%(message_id)s method:%(parse_method)s portfolio:%(portfolio)s] %(message)s"
    )

    file_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, "email_ingest.log"),
        maxBytes=10 * 1024 * 1024,  # 10MB per file
        backupCount=30,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(StructuredFormatter(file_format))
    logger.addHandler(file_handler)

    error_handler = RotatingFileHandler(
        os.path.join(LOG_DIR, "email_ingest_errors.log"),
        maxBytes=10 * 1024 * 1024,
        backupCount=30,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(StructuredFormatter(file_format))
    logger.addHandler(error_handler)

    return logger
