"""
Review Queue - Database Operations

Functions take the caller's session and never commit.
"""

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from .models.review import ReviewQueueItem

PRIORITY_ORDER = case(
    {"urgent": 0, "high": 1, "medium": 2, "low": 3},
    value=ReviewQueueItem.priority,
    else_=4,
)


def create_review_item(
    session: Session,
    message_id: str,
    candidate: dict,
    reason: str,
    confidence: float,
    priority: str,
    extraction_method: str = None,
    incoming_email_id: int = None,
) -> ReviewQueueItem:
    item = ReviewQueueItem(
        message_id=message_id,
        incoming_email_id=incoming_email_id,
        candidate=candidate,
        reason=reason,
        confidence=round(confidence, 3),
        priority=priority,
        extraction_method=extraction_method,
        status="pending",
    )
    session.add(item)
    session.flush()
    return item


def get_review_item(session: Session, item_id: int, for_update: bool = False) -> ReviewQueueItem | None:
    query = session.query(ReviewQueueItem).filter(ReviewQueueItem.id == item_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def get_pending_item_for_message(session: Session, message_id: str) -> ReviewQueueItem | None:
    return (
        session.query(ReviewQueueItem)
        .filter(
            ReviewQueueItem.message_id == message_id,
            ReviewQueueItem.status == "pending",
        )
        .first()
    )


def list_review_items(
    session: Session, status: str = "pending", limit: int = 100, offset: int = 0
) -> list[ReviewQueueItem]:
    """Items with the given status, most urgent first, then oldest first."""
    query = session.query(ReviewQueueItem)
    if status:
        query = query.filter(ReviewQueueItem.status == status)
    return (
        query.order_by(PRIORITY_ORDER, ReviewQueueItem.created_at, ReviewQueueItem.id)
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_review_items(session: Session) -> dict:
    """Counts keyed by status and, for pending items, by priority."""
    by_status = dict(
        session.query(ReviewQueueItem.status, func.count(ReviewQueueItem.id))
        .group_by(ReviewQueueItem.status)
        .all()
    )
    by_priority = dict(
        session.query(ReviewQueueItem.priority, func.count(ReviewQueueItem.id))
        .filter(ReviewQueueItem.status == "pending")
        .group_by(ReviewQueueItem.priority)
        .all()
    )
    oldest_pending = (
        session.query(func.min(ReviewQueueItem.created_at))
        .filter(ReviewQueueItem.status == "pending")
        .scalar()
    )
    return {
        "by_status": {s: by_status.get(s, 0) for s in ("pending", "approved", "rejected")},
        "by_priority": {p: by_priority.get(p, 0) for p in ("urgent", "high", "medium", "low")},
        "oldest_pending_at": oldest_pending,
    }
