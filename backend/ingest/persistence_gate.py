"""
Deduplication & Persistence Gate

The only code path that inserts Transactions. Given a candidate and the
Message-ID of the email it came from:

1. A Transaction already recorded for the Message-ID is a duplicate: nothing
   is written (the email is archived again in case an earlier move failed).
2. The Asset is looked up by normalized symbol, created if missing.
3. The Portfolio is matched by name heuristics; no match goes to review.
4. A Transaction with identical content from a different email goes to review.
5. Transaction, processed-email row and incoming status are committed together,
   then the email is moved out of the inbox. A failed move is only a warning.

Database errors are raised as PersistenceError and the email stays in the inbox.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from config.pipeline_config import PipelineConfig
from database import emails as email_db
from database import portfolios as portfolio_db
from database.base import session_scope
from ingest.errors import PersistenceError
from ingest.logging_config import get_logger
from ingest.portfolio_matcher import PortfolioMatcher
from ingest.symbol_resolver import describe_asset, is_option_symbol
from ingest.types import ExtractedTransactionCandidate, GateResult, GateStatus

logger = get_logger(__name__)

UNENCODED_OPTION_REASON = "Option contract without expiry/strike"


def is_unencoded_option(candidate: ExtractedTransactionCandidate) -> bool:
    """An option trade whose symbol is a bare ticker rather than a contract symbol."""
    return candidate.asset_type == "option" and not is_option_symbol(candidate.symbol or "")


class Archiver(Protocol):
    def archive(self, message_id: str, outcome: str) -> bool: ...


def _to_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class PersistenceGate:
    """Sole committer of Transactions."""

    def __init__(
        self,
        session_factory: sessionmaker,
        archiver: Optional[Archiver] = None,
        matcher: Optional[PortfolioMatcher] = None,
        config: Optional[PipelineConfig] = None,
    ):
        self.session_factory = session_factory
        self.archiver = archiver
        self.config = config or PipelineConfig()
        self.matcher = matcher or PortfolioMatcher(self.config.ambiguity_policy)

    def commit(
        self,
        candidate: ExtractedTransactionCandidate,
        message_id: str,
        portfolio_id: Optional[int] = None,
        skip_similarity: bool = False,
    ) -> GateResult:
        """
        Persist a candidate exactly once per Message-ID.

        Args:
            candidate: Extracted (or reviewer-corrected) trade
            message_id: Source email Message-ID, the idempotency key
            portfolio_id: Explicit portfolio, bypassing name matching
            skip_similarity: Accept content duplicates (reviewer approved)

        Returns:
            GateResult with status COMMITTED, DUPLICATE or NEEDS_REVIEW

        Raises:
            PersistenceError: Database failure; nothing was committed
        """
        try:
            with session_scope(self.session_factory) as session:
                result = self.write(
                    session, candidate, message_id, portfolio_id, skip_similarity
                )
                session.commit()
        except IntegrityError as e:
            # Lost a race with another instance writing the same Message-ID
            if self._already_committed(message_id):
                logger.info(
                    "Transaction inserted concurrently; treating as duplicate",
                    extra={"message_id": message_id},
                )
                return self.finish(GateResult(GateStatus.DUPLICATE, reason="Already recorded"), message_id)
            raise PersistenceError(f"Failed to persist transaction: {e}") from e
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to persist transaction: {e}") from e

        return self.finish(result, message_id)

    def write(
        self,
        session: Session,
        candidate: ExtractedTransactionCandidate,
        message_id: str,
        portfolio_id: Optional[int] = None,
        skip_similarity: bool = False,
    ) -> GateResult:
        """Run the gate inside the caller's session. Flushes, never commits."""
        existing = portfolio_db.get_transaction_by_source(session, message_id)
        if existing is not None:
            logger.info(
                f"Transaction {existing.id} already recorded for this email",
                extra={"message_id": message_id},
            )
            return GateResult(
                GateStatus.DUPLICATE,
                transaction_id=existing.id,
                asset_id=existing.asset_id,
                portfolio_id=existing.portfolio_id,
                reason="Already recorded",
            )

        missing = candidate.find_missing_fields()
        if missing:
            return GateResult(
                GateStatus.NEEDS_REVIEW, reason=f"Missing required fields: {', '.join(missing)}"
            )

        quantity = _to_decimal(candidate.quantity)
        price = _to_decimal(candidate.price)
        try:
            trade_date = date.fromisoformat(candidate.transaction_date or "")
        except ValueError:
            return GateResult(
                GateStatus.NEEDS_REVIEW,
                reason=f"Invalid transaction date: {candidate.transaction_date!r}",
            )

        if is_unencoded_option(candidate):
            return GateResult(GateStatus.NEEDS_REVIEW, reason=UNENCODED_OPTION_REASON)

        currency = candidate.currency or self.config.default_currency
        asset_type = "option" if is_option_symbol(candidate.symbol) else candidate.asset_type
        asset = portfolio_db.get_or_create_asset(
            session,
            candidate.symbol,
            asset_type=asset_type,
            currency=currency,
            name=describe_asset(candidate.symbol),
        )

        portfolio, reason = self._resolve_portfolio(session, candidate, portfolio_id)
        if portfolio is None:
            return GateResult(GateStatus.NEEDS_REVIEW, asset_id=asset.id, reason=reason)

        if not skip_similarity:
            similar = portfolio_db.find_similar_transaction(
                session,
                portfolio.id,
                asset.id,
                candidate.transaction_type,
                quantity,
                price,
                trade_date,
                exclude_message_id=message_id,
            )
            if similar is not None:
                return GateResult(
                    GateStatus.NEEDS_REVIEW,
                    asset_id=asset.id,
                    portfolio_id=portfolio.id,
                    reason=f"Possible duplicate of transaction {similar.id}",
                )

        fees = _to_decimal(candidate.fees) or Decimal("0")
        total = _to_decimal(candidate.total_amount)
        if total is None:
            total = quantity * price + fees

        transaction = portfolio_db.insert_transaction(
            session,
            portfolio_id=portfolio.id,
            asset_id=asset.id,
            transaction_type=candidate.transaction_type,
            quantity=quantity,
            price=price,
            transaction_date=trade_date,
            fees=fees,
            total_amount=total,
            currency=currency,
            notes=candidate.notes,
            source_message_id=message_id,
        )
        email_db.record_processed_email(
            session,
            message_id,
            "approved",
            transaction_id=transaction.id,
            processing_notes=f"{candidate.extraction_method or 'manual'} extraction",
        )
        email_db.set_incoming_status(session, message_id, "processed")

        logger.info(
            f"Recorded {candidate.transaction_type} {candidate.quantity} {candidate.symbol} "
            f"@ {candidate.price} as transaction {transaction.id}",
            extra={"message_id": message_id, "portfolio": portfolio.name},
        )
        return GateResult(
            GateStatus.COMMITTED,
            transaction_id=transaction.id,
            asset_id=asset.id,
            portfolio_id=portfolio.id,
        )

    def finish(self, result: GateResult, message_id: str) -> GateResult:
        """After commit: move committed and duplicate emails out of the inbox."""
        if result.status in (GateStatus.COMMITTED, GateStatus.DUPLICATE):
            result.archived = self.archive(message_id, "approved")
        return result

    def archive(self, message_id: str, outcome: str) -> bool:
        if self.archiver is None:
            return False
        try:
            archived = self.archiver.archive(message_id, outcome)
        except Exception as e:
            logger.warning(
                f"Archive failed after commit ({type(e).__name__}): {e}",
                extra={"message_id": message_id},
            )
            return False
        if not archived:
            logger.warning("Email left in inbox after commit", extra={"message_id": message_id})
        return bool(archived)

    def _resolve_portfolio(self, session: Session, candidate, portfolio_id: Optional[int]):
        if portfolio_id is not None:
            portfolio = portfolio_db.get_portfolio(session, portfolio_id)
            if portfolio is None:
                return None, f"Portfolio {portfolio_id} not found"
            return portfolio, None

        if not candidate.portfolio_name:
            return None, "No portfolio named in email"

        portfolios = portfolio_db.list_portfolios(session, self.config.user_id)
        match = self.matcher.match(candidate.portfolio_name, portfolios)
        if match.matched:
            return match.portfolio, None
        if match.ambiguous:
            names = ", ".join(p.name for p in match.candidates)
            return None, f"Portfolio {candidate.portfolio_name!r} is ambiguous ({names})"
        return None, f"Portfolio {candidate.portfolio_name!r} not found"

    def _already_committed(self, message_id: str) -> bool:
        try:
            with session_scope(self.session_factory) as session:
                return portfolio_db.get_transaction_by_source(session, message_id) is not None
        except SQLAlchemyError:
            return False
