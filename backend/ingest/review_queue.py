"""
Review Queue

Holds candidates the pipeline could not commit on its own (low confidence,
missing fields, unknown portfolio, content conflicts) until a human decides.

    pending -> approved   exactly one Transaction, written through the gate
    pending -> rejected   email archived to the rejected folder

approved and rejected are terminal; any other transition raises
ReviewStateError.
"""

import re
from datetime import UTC, date, datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from database import emails as email_db
from database import review as review_db
from database.base import session_scope
from ingest.errors import (
    InvalidOverrideError,
    PersistenceError,
    ReviewItemNotFoundError,
    ReviewStateError,
)
from ingest.logging_config import get_logger
from ingest.persistence_gate import PersistenceGate
from ingest.types import (
    ASSET_TYPES,
    TRANSACTION_TYPES,
    ExtractedTransactionCandidate,
    GateResult,
    GateStatus,
)

logger = get_logger(__name__)

CONFLICT_REASON_WEIGHTS = (
    ("duplicate", 0.3),
    ("portfolio", 0.2),
)

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

# Candidate fields a reviewer may correct
OVERRIDE_FIELDS = (
    "portfolio_name",
    "symbol",
    "asset_type",
    "transaction_type",
    "quantity",
    "price",
    "total_amount",
    "fees",
    "currency",
    "transaction_date",
    "notes",
)
POSITIVE_FIELDS = ("quantity", "price", "total_amount")


def normalize_overrides(overrides: Optional[dict]) -> dict:
    """
    Coerce reviewer corrections to the types the gate expects.

    Numbers may arrive as strings ("15", "$166.67"); enums are lowercased,
    symbols and currencies uppercased. ``None`` clears a field.

    Raises:
        InvalidOverrideError: Unknown field or a value that cannot be coerced
    """
    from ingest.email_parsing.utilities import parse_number

    normalized = {}
    for name, value in (overrides or {}).items():
        if name == "portfolio_id":
            text = "" if isinstance(value, bool) else str(value).strip()
            if not text.isdigit() or int(text) == 0:
                raise InvalidOverrideError(f"portfolio_id must be a positive integer, got {value!r}")
            normalized[name] = int(text)
            continue

        if name not in OVERRIDE_FIELDS:
            raise InvalidOverrideError(f"Unknown override field: {name}")
        if value is None:
            normalized[name] = None
            continue

        if name in POSITIVE_FIELDS or name == "fees":
            number = None if isinstance(value, bool) else parse_number(value)
            if number is None or number < 0 or (number == 0 and name in POSITIVE_FIELDS):
                raise InvalidOverrideError(f"{name} must be a positive number, got {value!r}")
            normalized[name] = number
        elif name in ("asset_type", "transaction_type"):
            allowed = ASSET_TYPES if name == "asset_type" else TRANSACTION_TYPES
            choice = str(value).strip().lower()
            if choice not in allowed:
                raise InvalidOverrideError(
                    f"{name} must be one of {', '.join(allowed)}, got {value!r}"
                )
            normalized[name] = choice
        elif name == "currency":
            currency = str(value).strip().upper()
            if not CURRENCY_RE.match(currency):
                raise InvalidOverrideError(f"currency must be a 3-letter code, got {value!r}")
            normalized[name] = currency
        elif name == "transaction_date":
            try:
                normalized[name] = date.fromisoformat(str(value).strip()).isoformat()
            except ValueError:
                raise InvalidOverrideError(
                    f"transaction_date must be YYYY-MM-DD, got {value!r}"
                ) from None
        elif name == "symbol":
            symbol = str(value).strip().upper()
            if not symbol:
                raise InvalidOverrideError("symbol must not be empty")
            normalized[name] = symbol
        else:
            if not isinstance(value, str):
                raise InvalidOverrideError(f"{name} must be text, got {value!r}")
            normalized[name] = value.strip() or None
    return normalized


def review_priority(confidence: float, reason: str) -> str:
    """
    Order the queue so near-complete trades are reviewed first.

    A confident extraction that only failed on a conflict (possible duplicate,
    unknown portfolio) needs a single decision; a zero-confidence candidate
    needs the email read end to end.
    """
    score = max(0.0, min(1.0, confidence or 0.0))
    reason_lower = (reason or "").lower()
    for keyword, weight in CONFLICT_REASON_WEIGHTS:
        if keyword in reason_lower:
            score += weight
            break
    score = min(score, 1.0)

    if score >= 0.8:
        return "urgent"
    if score >= 0.6:
        return "high"
    if score >= 0.4:
        return "medium"
    return "low"


class ReviewQueue:
    def __init__(self, session_factory: sessionmaker, gate: PersistenceGate):
        self.session_factory = session_factory
        self.gate = gate

    def enqueue(
        self, message_id: str, candidate: ExtractedTransactionCandidate, reason: str
    ):
        """
        Queue a candidate for review. A message with a pending item already
        queued gets that item back rather than a second one.
        """
        try:
            with session_scope(self.session_factory) as session:
                item = review_db.get_pending_item_for_message(session, message_id)
                if item is None:
                    incoming = email_db.get_incoming_email(session, message_id)
                    item = review_db.create_review_item(
                        session,
                        message_id=message_id,
                        candidate=candidate.to_dict(),
                        reason=reason,
                        confidence=candidate.confidence,
                        priority=review_priority(candidate.confidence, reason),
                        extraction_method=candidate.extraction_method,
                        incoming_email_id=incoming.id if incoming else None,
                    )
                email_db.set_incoming_status(session, message_id, "review")
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to queue email for review: {e}") from e

        logger.info(
            f"Queued for review ({item.priority}): {reason}",
            extra={"message_id": message_id, "parse_method": candidate.extraction_method},
        )
        return item

    def get(self, item_id: int):
        with session_scope(self.session_factory) as session:
            item = review_db.get_review_item(session, item_id)
        if item is None:
            raise ReviewItemNotFoundError(f"Review item {item_id} not found")
        return item

    def list(self, status: Optional[str] = "pending", limit: int = 100, offset: int = 0):
        with session_scope(self.session_factory) as session:
            return review_db.list_review_items(session, status, limit, offset)

    def list_pending(self, limit: int = 100, offset: int = 0):
        return self.list("pending", limit, offset)

    def stats(self) -> dict:
        with session_scope(self.session_factory) as session:
            return review_db.count_review_items(session)

    def approve(
        self,
        item_id: int,
        reviewer_notes: Optional[str] = None,
        overrides: Optional[dict] = None,
    ) -> GateResult:
        """
        Commit a reviewed candidate through the persistence gate.

        Args:
            item_id: Review item id
            reviewer_notes: Free text stored on the item
            overrides: Field corrections applied to the candidate; a
                ``portfolio_id`` key selects the portfolio directly

        Returns:
            GateResult. NEEDS_REVIEW means the item is still pending and
            ``reason`` says why.

        Raises:
            InvalidOverrideError, ReviewItemNotFoundError, ReviewStateError,
            PersistenceError
        """
        overrides = normalize_overrides(overrides)
        portfolio_id = overrides.pop("portfolio_id", None)

        try:
            with session_scope(self.session_factory) as session:
                item = self._pending_item(session, item_id)
                candidate = ExtractedTransactionCandidate.from_dict(item.candidate)
                candidate = candidate.with_overrides(overrides)

                result = self.gate.write(
                    session,
                    candidate,
                    item.message_id,
                    portfolio_id=int(portfolio_id) if portfolio_id is not None else None,
                    skip_similarity=True,
                )

                item.candidate = candidate.to_dict()
                if reviewer_notes is not None:
                    item.reviewer_notes = reviewer_notes

                if result.status == GateStatus.NEEDS_REVIEW:
                    item.reason = result.reason
                else:
                    item.status = "approved"
                    item.transaction_id = result.transaction_id
                    item.decided_at = datetime.now(UTC)
                message_id = item.message_id
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to approve review item {item_id}: {e}") from e

        if result.status == GateStatus.NEEDS_REVIEW:
            logger.info(
                f"Review item {item_id} still needs review: {result.reason}",
                extra={"message_id": message_id},
            )
            return result

        logger.info(
            f"Review item {item_id} approved -> transaction {result.transaction_id}",
            extra={"message_id": message_id},
        )
        return self.gate.finish(result, message_id)

    def reject(self, item_id: int, reason: Optional[str] = None):
        """Close the item without a Transaction and archive the email as rejected."""
        try:
            with session_scope(self.session_factory) as session:
                item = self._pending_item(session, item_id)
                item.status = "rejected"
                item.reviewer_notes = reason
                item.decided_at = datetime.now(UTC)
                email_db.record_processed_email(
                    session, item.message_id, "rejected", processing_notes=reason
                )
                email_db.set_incoming_status(session, item.message_id, "processed")
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to reject review item {item_id}: {e}") from e

        logger.info(f"Review item {item_id} rejected: {reason}", extra={"message_id": item.message_id})
        self.gate.archive(item.message_id, "rejected")
        return item

    @staticmethod
    def _pending_item(session, item_id: int):
        item = review_db.get_review_item(session, item_id, for_update=True)
        if item is None:
            raise ReviewItemNotFoundError(f"Review item {item_id} not found")
        if item.status != "pending":
            raise ReviewStateError(
                f"Review item {item_id} is already {item.status}; decisions are final"
            )
        return item
