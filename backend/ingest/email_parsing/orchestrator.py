"""
Email Pipeline Orchestrator

One poll cycle: connect -> fetch unread -> for each email:
    already processed? -> archive again, report duplicate
    store IncomingEmail
    heuristic rules -> AI fallback when required fields are missing
    normalize the symbol
    route: low confidence / missing fields / no portfolio -> review queue
           otherwise -> persistence gate

Emails are handled one at a time in arrival order. A failure on one email is
recorded on its row and the cycle moves on; a database failure stops the
cycle because every later write would fail the same way.
"""

import time
from typing import Callable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from config.pipeline_config import PipelineConfig
from database import emails as email_db
from database import portfolios as portfolio_db
from database import review as review_db
from database.base import session_scope
from ingest.errors import MailboxConnectionError, PersistenceError, ServiceUnavailableError
from ingest.logging_config import get_logger
from ingest.persistence_gate import UNENCODED_OPTION_REASON, PersistenceGate, is_unencoded_option
from ingest.review_queue import ReviewQueue
from ingest.symbol_resolver import BaseSymbolResolver, is_canonical_symbol
from ingest.types import (
    CycleReport,
    EmailOutcome,
    ExtractedTransactionCandidate,
    GateStatus,
    IncomingMessage,
)

from .llm_extraction import AIExtractor
from .pattern_extraction import extract_with_patterns
from .utilities import compute_email_hash

logger = get_logger(__name__)


class Mailbox(Protocol):
    def connect(self) -> None: ...
    def disconnect(self) -> None: ...
    def fetch_pending(self, since_cursor: int = 0): ...
    def archive(self, message_id: str, outcome: str) -> bool: ...


def merge_candidates(
    primary: ExtractedTransactionCandidate, fallback: ExtractedTransactionCandidate
) -> ExtractedTransactionCandidate:
    """Fill fields the primary left empty from the fallback. Confidence stays the primary's."""
    merged = primary.with_overrides({})
    for name in (
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
    ):
        if getattr(merged, name) is None and getattr(fallback, name) is not None:
            setattr(merged, name, getattr(fallback, name))
    merged.missing_fields = merged.find_missing_fields()
    return merged


class EmailPipeline:
    """Drives emails from the mailbox to a Transaction or a review item."""

    def __init__(
        self,
        mailbox: Mailbox,
        session_factory: sessionmaker,
        gate: PersistenceGate,
        review_queue: ReviewQueue,
        ai_extractor: Optional[AIExtractor] = None,
        resolver: Optional[BaseSymbolResolver] = None,
        config: Optional[PipelineConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.mailbox = mailbox
        self.session_factory = session_factory
        self.gate = gate
        self.review_queue = review_queue
        self.ai_extractor = ai_extractor
        self.resolver = resolver
        self.config = config or PipelineConfig()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run_cycle(self, since_cursor: int = 0) -> CycleReport:
        """
        Process every pending email with UID > since_cursor.

        Returns:
            CycleReport; ``next_cursor`` only moves past emails that reached
            an outcome. An email out of retries is queued for review, so it
            no longer holds the cursor back

        Raises:
            ServiceUnavailableError: Mailbox unreachable after all attempts
            PersistenceError: Database failure; cycle stopped, cursor not saved
        """
        report = CycleReport(next_cursor=since_cursor)
        self._connect_with_retry()

        cursor_blocked = False
        try:
            for message in self.mailbox.fetch_pending(since_cursor):
                report.fetched += 1
                try:
                    outcome = self.process_email(message)
                except PersistenceError:
                    logger.error(
                        "Database failure; stopping cycle", extra={"message_id": message.message_id}
                    )
                    raise
                except Exception as e:
                    outcome = self._record_failure(message, e)

                if outcome.outcome == "error":
                    if self._retries_exhausted(message.message_id):
                        outcome = self._escalate_to_review(message, outcome)
                    else:
                        cursor_blocked = True

                report.record(outcome)
                if not cursor_blocked:
                    report.next_cursor = max(report.next_cursor, message.uid)
        except MailboxConnectionError as e:
            logger.error(f"Mailbox lost mid-cycle: {e}")
        finally:
            self.mailbox.disconnect()

        logger.info(
            f"Cycle complete: fetched={report.fetched} committed={report.committed} "
            f"review={report.queued_for_review} awaiting={report.awaiting_review} "
            f"duplicates={report.duplicates} errors={report.errors} cursor={report.next_cursor}"
        )
        return report

    def _connect_with_retry(self) -> None:
        attempts = self.config.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                self.mailbox.connect()
                return
            except MailboxConnectionError as e:
                if attempt == attempts:
                    raise ServiceUnavailableError(
                        f"Mailbox unreachable after {attempts} attempts: {e}", attempts=attempts
                    ) from e
                delay = self.config.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    f"Mailbox connection attempt {attempt}/{attempts} failed: {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                self._sleep(delay)

    # ------------------------------------------------------------------
    # Single email
    # ------------------------------------------------------------------

    def process_email(self, message: IncomingMessage) -> EmailOutcome:
        """Take one email to a terminal or queued outcome."""
        message_id = message.message_id

        replay = self._check_replay(message_id)
        if replay is not None:
            return replay

        body = message.body
        same_content_as = self._store_incoming(message, body)

        candidate = self.extract(message, body)
        self.normalize_symbol(candidate)

        reason = self.review_reason(candidate)
        if reason is None and same_content_as:
            reason = f"Possible duplicate: same content as {same_content_as}"
        if reason:
            item = self.review_queue.enqueue(message_id, candidate, reason)
            return EmailOutcome(message_id, "review", review_item_id=item.id, reason=reason)

        result = self.gate.commit(candidate, message_id)
        if result.status == GateStatus.COMMITTED:
            return EmailOutcome(message_id, "committed", transaction_id=result.transaction_id)
        if result.status == GateStatus.DUPLICATE:
            return EmailOutcome(
                message_id, "duplicate", transaction_id=result.transaction_id, reason=result.reason
            )

        item = self.review_queue.enqueue(message_id, candidate, result.reason)
        return EmailOutcome(message_id, "review", review_item_id=item.id, reason=result.reason)

    def extract(self, message: IncomingMessage, body: Optional[str] = None) -> ExtractedTransactionCandidate:
        """Heuristic rules first; the AI extractor only when they come up short."""
        body = message.body if body is None else body
        candidate = extract_with_patterns(
            message.subject, body, message.received_at, self.config.default_currency
        )
        if not candidate.insufficient:
            logger.info("Parsed with heuristic rules", extra={"message_id": message.message_id, "parse_method": "heuristic"})
            return candidate

        if self.ai_extractor is None:
            logger.info(
                f"Heuristics missing {candidate.missing_fields}; AI fallback disabled",
                extra={"message_id": message.message_id, "parse_method": "heuristic"},
            )
            return candidate

        ai_candidate = self.ai_extractor.extract(
            message.subject,
            body,
            from_address=message.from_address,
            received_at=message.received_at,
            context={"heuristic_missing_fields": ", ".join(candidate.missing_fields)},
        )
        if ai_candidate.parsing_type == "unknown" and ai_candidate.confidence == 0.0:
            logger.info(
                f"AI fallback produced nothing usable: {ai_candidate.notes}",
                extra={"message_id": message.message_id, "parse_method": "ai"},
            )
            candidate.parsing_type = "unknown"
            candidate.confidence = 0.0
            candidate.notes = ai_candidate.notes
            return candidate

        merged = merge_candidates(ai_candidate, candidate)
        logger.info(
            f"Parsed with AI fallback (confidence {merged.confidence:.2f})",
            extra={"message_id": message.message_id, "parse_method": "ai"},
        )
        return merged

    def normalize_symbol(self, candidate: ExtractedTransactionCandidate) -> None:
        """Replace a free-text symbol with a resolved one; confidence can only drop."""
        if self.resolver is None or not candidate.symbol or is_canonical_symbol(candidate.symbol):
            return

        resolution = self.resolver.resolve(candidate.symbol)
        if resolution is None:
            return

        logger.debug(f"Symbol {candidate.symbol!r} resolved to {resolution.symbol} via {resolution.source}")
        candidate.symbol = resolution.symbol
        if resolution.asset_type == "option":
            candidate.asset_type = "option"
        candidate.confidence = min(candidate.confidence, resolution.confidence)
        candidate.missing_fields = candidate.find_missing_fields()

    def review_reason(self, candidate: ExtractedTransactionCandidate) -> Optional[str]:
        """Why a candidate cannot go straight to the gate, or None."""
        missing = candidate.find_missing_fields()
        if missing:
            return f"Missing required fields: {', '.join(missing)}"
        if is_unencoded_option(candidate):
            return UNENCODED_OPTION_REASON
        if candidate.confidence < self.config.confidence_threshold:
            return (
                f"Confidence {candidate.confidence:.2f} below threshold "
                f"{self.config.confidence_threshold:.2f}"
            )
        if not candidate.portfolio_name:
            return "No portfolio named in email"
        return None

    # ------------------------------------------------------------------
    # Database bookkeeping
    # ------------------------------------------------------------------

    def _check_replay(self, message_id: str) -> Optional[EmailOutcome]:
        """Outcome for an email already handled in an earlier cycle."""
        try:
            with session_scope(self.session_factory) as session:
                processed = email_db.get_processed_email(session, message_id)
                transaction = portfolio_db.get_transaction_by_source(session, message_id)
                pending = review_db.get_pending_item_for_message(session, message_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to check email history: {e}") from e

        if processed is not None or transaction is not None:
            rejected = processed is not None and processed.processing_result == "rejected"
            logger.info("Email already processed; archiving again", extra={"message_id": message_id})
            self.gate.archive(message_id, "rejected" if rejected else "approved")
            return EmailOutcome(
                message_id,
                "duplicate",
                transaction_id=transaction.id if transaction else None,
                reason="Already processed",
            )

        if pending is not None:
            return EmailOutcome(
                message_id, "awaiting_review", review_item_id=pending.id, reason="Already awaiting review"
            )
        return None

    def _store_incoming(self, message: IncomingMessage, body: str) -> Optional[str]:
        """
        Store the email and mark it processing.

        Returns:
            Message-ID of an earlier email with identical content, if any
        """
        email_hash = compute_email_hash(message.subject, message.from_address, body)
        try:
            with session_scope(self.session_factory) as session:
                email_db.save_incoming_email(
                    session,
                    message.message_id,
                    uid=message.uid,
                    subject=message.subject,
                    from_address=message.from_address,
                    from_name=message.from_name,
                    received_at=message.received_at,
                    text_body=message.text_body,
                    html_body=message.html_body,
                    email_hash=email_hash,
                )
                email_db.set_incoming_status(session, message.message_id, "processing")
                twin = email_db.find_incoming_by_hash(session, email_hash, message.message_id)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to store incoming email: {e}") from e
        return twin.message_id if twin else None

    def _record_failure(self, message: IncomingMessage, error: Exception) -> EmailOutcome:
        reason = f"{type(error).__name__}: {error}"
        logger.error(f"Email processing failed: {reason}", extra={"message_id": message.message_id})
        try:
            with session_scope(self.session_factory) as session:
                email_db.set_incoming_status(session, message.message_id, "error", reason)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to record email error: {e}") from e
        return EmailOutcome(message.message_id, "error", reason=reason)

    def _escalate_to_review(self, message: IncomingMessage, failure: EmailOutcome) -> EmailOutcome:
        """Hand an email that keeps failing to a human instead of leaving it behind the cursor."""
        reason = f"Processing failed: {failure.reason}"
        candidate = ExtractedTransactionCandidate(notes=failure.reason)
        item = self.review_queue.enqueue(message.message_id, candidate, reason)
        return EmailOutcome(message.message_id, "review", review_item_id=item.id, reason=reason)

    def _retries_exhausted(self, message_id: str) -> bool:
        with session_scope(self.session_factory) as session:
            row = email_db.get_incoming_email(session, message_id)
            return row is not None and (row.retry_count or 0) >= self.config.max_attempts
