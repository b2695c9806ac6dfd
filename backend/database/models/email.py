"""
Mailbox ingest models.

Maps to:
- incoming_emails table (fetched, not yet terminal)
- processed_emails table (archive of terminal outcomes)
- mailbox_cursors table (poll resume point)
"""

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.sql import func

from database.base import Base


class IncomingEmail(Base):
    """Email fetched from the mailbox. Content is immutable once stored."""

    __tablename__ = "incoming_emails"

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(BigInteger, nullable=True)
    message_id = Column(String(255), nullable=False, unique=True)
    subject = Column(Text, nullable=True)
    from_address = Column(String(255), nullable=True)
    from_name = Column(String(255), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    text_body = Column(Text, nullable=True)
    html_body = Column(Text, nullable=True)
    email_hash = Column(String(64), nullable=True)
    status = Column(
        String(20), nullable=False, default="pending", server_default="pending"
    )
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'processed', 'review', 'error')",
            name="ck_incoming_emails_status",
        ),
        Index("idx_incoming_emails_status", "status"),
        Index("idx_incoming_emails_hash", "email_hash"),
    )

    def __repr__(self) -> str:
        return f"<IncomingEmail(id={self.id}, message_id={self.message_id}, status={self.status})>"


class ProcessedEmail(Base):
    """Archive record written when an email reaches a terminal outcome."""

    __tablename__ = "processed_emails"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(String(255), nullable=False, unique=True)
    subject = Column(Text, nullable=True)
    from_address = Column(String(255), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    processing_result = Column(String(20), nullable=False)
    transaction_id = Column(
        Integer, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    processing_notes = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "processing_result IN ('approved', 'rejected', 'duplicate')",
            name="ck_processed_emails_result",
        ),
    )

    def __repr__(self) -> str:
        return f"<ProcessedEmail(id={self.id}, message_id={self.message_id}, result={self.processing_result})>"


class MailboxCursor(Base):
    """Highest IMAP UID already handed to the pipeline, per mailbox."""

    __tablename__ = "mailbox_cursors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    mailbox = Column(String(255), nullable=False, unique=True)
    last_uid = Column(BigInteger, nullable=False, default=0, server_default="0")
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<MailboxCursor(mailbox={self.mailbox}, last_uid={self.last_uid})>"
