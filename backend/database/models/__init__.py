# backend/database/models/__init__.py
"""SQLAlchemy models for all database tables."""

from .email import IncomingEmail, MailboxCursor, ProcessedEmail
from .portfolio import Asset, Portfolio, Transaction
from .review import ReviewQueueItem

__all__ = [
    "Asset",
    "IncomingEmail",
    "MailboxCursor",
    "Portfolio",
    "ProcessedEmail",
    "ReviewQueueItem",
    "Transaction",
]
