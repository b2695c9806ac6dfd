"""
Review Service - Business Logic

Approve/reject decisions and listings for the manual review queue.
Separates queue operations from HTTP routing concerns.
"""

from contextlib import contextmanager
from typing import Optional

from sqlalchemy.orm import sessionmaker

from config.pipeline_config import load_imap_config, load_pipeline_config
from database.base import get_session_factory
from ingest.imap_client import ImapClient
from ingest.logging_config import get_logger
from ingest.persistence_gate import PersistenceGate
from ingest.review_queue import ReviewQueue

logger = get_logger(__name__)


def serialize_item(item) -> dict:
    return {
        "id": item.id,
        "message_id": item.message_id,
        "status": item.status,
        "priority": item.priority,
        "reason": item.reason,
        "confidence": float(item.confidence) if item.confidence is not None else None,
        "extraction_method": item.extraction_method,
        "candidate": item.candidate,
        "reviewer_notes": item.reviewer_notes,
        "transaction_id": item.transaction_id,
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "decided_at": item.decided_at.isoformat() if item.decided_at else None,
    }


def _build_archiver():
    try:
        return ImapClient(load_imap_config())
    except ValueError as e:
        logger.warning(f"IMAP not configured; reviewed emails will not be archived ({e})")
        return None


@contextmanager
def review_queue(
    session_factory: Optional[sessionmaker] = None, archiver=None, with_archiver: bool = True
):
    """ReviewQueue bound to the configured database and, optionally, the mailbox."""
    session_factory = session_factory or get_session_factory()
    if archiver is None and with_archiver:
        archiver = _build_archiver()
    gate = PersistenceGate(session_factory, archiver=archiver, config=load_pipeline_config())
    try:
        yield ReviewQueue(session_factory, gate)
    finally:
        if isinstance(archiver, ImapClient):
            archiver.disconnect()


def list_items(status: str = "pending", limit: int = 100, offset: int = 0, session_factory=None) -> list:
    with review_queue(session_factory, with_archiver=False) as queue:
        return [serialize_item(item) for item in queue.list(status or None, limit, offset)]


def get_item(item_id: int, session_factory=None) -> dict:
    """
    Raises:
        ReviewItemNotFoundError: Unknown id
    """
    with review_queue(session_factory, with_archiver=False) as queue:
        return serialize_item(queue.get(item_id))


def approve_item(
    item_id: int,
    notes: Optional[str] = None,
    overrides: Optional[dict] = None,
    session_factory=None,
    archiver=None,
) -> dict:
    """
    Approve a review item.

    Returns:
        Dict with the resulting status and, when still pending, the reason

    Raises:
        ReviewItemNotFoundError, ReviewStateError, PersistenceError
    """
    with review_queue(session_factory, archiver) as queue:
        result = queue.approve(item_id, reviewer_notes=notes, overrides=overrides)
        item = queue.get(item_id)

    return {
        "item": serialize_item(item),
        "gate_status": result.status.value,
        "transaction_id": result.transaction_id,
        "reason": result.reason,
        "archived": result.archived,
    }


def reject_item(item_id: int, reason: Optional[str] = None, session_factory=None, archiver=None) -> dict:
    with review_queue(session_factory, archiver) as queue:
        return serialize_item(queue.reject(item_id, reason))


def get_stats(session_factory=None) -> dict:
    with review_queue(session_factory, with_archiver=False) as queue:
        stats = queue.stats()

    oldest = stats.get("oldest_pending_at")
    stats["oldest_pending_at"] = oldest.isoformat() if oldest else None
    return stats
