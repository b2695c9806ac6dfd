"""
Mailbox Ingest - Database Operations

Incoming email storage, status tracking, the processed-email archive and
the per-mailbox poll cursor.
Functions take the caller's session and never commit.
"""

from sqlalchemy import func
from sqlalchemy.orm import Session

from .models.email import IncomingEmail, MailboxCursor, ProcessedEmail


def get_incoming_email(session: Session, message_id: str) -> IncomingEmail | None:
    return (
        session.query(IncomingEmail)
        .filter(IncomingEmail.message_id == message_id)
        .first()
    )


def save_incoming_email(
    session: Session,
    message_id: str,
    uid: int = None,
    subject: str = None,
    from_address: str = None,
    from_name: str = None,
    received_at=None,
    text_body: str = None,
    html_body: str = None,
    email_hash: str = None,
) -> IncomingEmail:
    """Insert the email if unseen; an existing row is returned untouched."""
    existing = get_incoming_email(session, message_id)
    if existing:
        return existing

    email_row = IncomingEmail(
        message_id=message_id,
        uid=uid,
        subject=subject,
        from_address=from_address,
        from_name=from_name,
        received_at=received_at,
        text_body=text_body,
        html_body=html_body,
        email_hash=email_hash,
        status="pending",
    )
    session.add(email_row)
    session.flush()
    return email_row


def set_incoming_status(
    session: Session, message_id: str, status: str, error_message: str = None
) -> IncomingEmail | None:
    email_row = get_incoming_email(session, message_id)
    if email_row is None:
        return None
    email_row.status = status
    if status == "error":
        email_row.error_message = error_message
        email_row.retry_count = (email_row.retry_count or 0) + 1
    else:
        email_row.error_message = None
    session.flush()
    return email_row


def find_incoming_by_hash(
    session: Session, email_hash: str, exclude_message_id: str
) -> IncomingEmail | None:
    """Another message with byte-identical subject, sender and body."""
    return (
        session.query(IncomingEmail)
        .filter(
            IncomingEmail.email_hash == email_hash,
            IncomingEmail.message_id != exclude_message_id,
        )
        .first()
    )


def get_processed_email(session: Session, message_id: str) -> ProcessedEmail | None:
    return (
        session.query(ProcessedEmail)
        .filter(ProcessedEmail.message_id == message_id)
        .first()
    )


def record_processed_email(
    session: Session,
    message_id: str,
    processing_result: str,
    transaction_id: int = None,
    processing_notes: str = None,
) -> ProcessedEmail:
    """Write the archive row, copying headers from the incoming row if present."""
    processed = get_processed_email(session, message_id)
    if processed is None:
        incoming = get_incoming_email(session, message_id)
        processed = ProcessedEmail(
            message_id=message_id,
            subject=incoming.subject if incoming else None,
            from_address=incoming.from_address if incoming else None,
            received_at=incoming.received_at if incoming else None,
            processing_result=processing_result,
        )
        session.add(processed)

    processed.processing_result = processing_result
    processed.transaction_id = transaction_id
    processed.processing_notes = processing_notes
    session.flush()
    return processed


def get_inbox_status_counts(session: Session) -> dict:
    rows = (
        session.query(IncomingEmail.status, func.count(IncomingEmail.id))
        .group_by(IncomingEmail.status)
        .all()
    )
    counts = {"pending": 0, "processing": 0, "processed": 0, "review": 0, "error": 0}
    counts.update({status: count for status, count in rows})
    counts["archived"] = session.query(func.count(ProcessedEmail.id)).scalar() or 0
    return counts


def get_cursor(session: Session, mailbox: str) -> int:
    row = session.query(MailboxCursor).filter(MailboxCursor.mailbox == mailbox).first()
    return int(row.last_uid) if row else 0


def save_cursor(session: Session, mailbox: str, last_uid: int) -> MailboxCursor:
    """Advance the cursor. It never moves backwards."""
    row = session.query(MailboxCursor).filter(MailboxCursor.mailbox == mailbox).first()
    if row is None:
        row = MailboxCursor(mailbox=mailbox, last_uid=last_uid)
        session.add(row)
    elif last_uid > (row.last_uid or 0):
        row.last_uid = last_uid
    session.flush()
    return row
