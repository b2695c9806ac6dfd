"""
Manual review queue model.

Maps to:
- review_queue_items table
"""

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from database.base import Base


class ReviewQueueItem(Base):
    """Candidate held for a human decision. approved/rejected are terminal."""

    __tablename__ = "review_queue_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(255), nullable=False)
    incoming_email_id = Column(
        Integer, ForeignKey("incoming_emails.id", ondelete="SET NULL"), nullable=True
    )
    candidate = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    reason = Column(Text, nullable=False)
    confidence = Column(Numeric(4, 3), nullable=False, default=0, server_default="0")
    extraction_method = Column(String(20), nullable=True)
    priority = Column(
        String(10), nullable=False, default="medium", server_default="medium"
    )
    status = Column(
        String(10), nullable=False, default="pending", server_default="pending"
    )
    reviewer_notes = Column(Text, nullable=True)
    transaction_id = Column(
        Integer, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    decided_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_review_items_status",
        ),
        CheckConstraint(
            "priority IN ('low', 'medium', 'high', 'urgent')",
            name="ck_review_items_priority",
        ),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_review_items_confidence"
        ),
        Index("idx_review_items_status", "status"),
        Index("idx_review_items_message_id", "message_id"),
    )

    def __repr__(self) -> str:
        return f"<ReviewQueueItem(id={self.id}, status={self.status}, priority={self.priority})>"
