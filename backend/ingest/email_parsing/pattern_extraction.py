"""
Heuristic (rule-based) extraction of trade data from confirmation emails.

Runs the declarative rules in extraction_rules over subject + body. The result
is all-or-nothing on confidence: 1.0 when every required trading field is
present, otherwise 0.0 with the missing fields listed so the caller can fall
back to the LLM.
"""

from datetime import date, datetime

from ingest.logging_config import get_logger
from ingest.types import ExtractedTransactionCandidate

from .extraction_rules import RuleContext, apply_rules

logger = get_logger(__name__)


def extract_with_patterns(
    subject: str,
    body_text: str,
    received_at: datetime | date | None = None,
    default_currency: str = "USD",
) -> ExtractedTransactionCandidate:
    """
    Extract a transaction candidate using regex rules.

    Args:
        subject: Email subject line
        body_text: Plain text body content
        received_at: When the email arrived; fallback transaction date
        default_currency: Currency when the email names none

    Returns:
        ExtractedTransactionCandidate (never None)
    """
    if isinstance(received_at, datetime):
        received_date = received_at.date()
    else:
        received_date = received_at or date.today()

    combined_text = f"{subject or ''}\n{body_text or ''}"
    context = RuleContext(received_date=received_date, default_currency=default_currency)
    matched = apply_rules(combined_text, context)

    candidate = ExtractedTransactionCandidate(**matched.values)
    candidate.extraction_method = "heuristic"

    # Date fallback: the day the confirmation arrived
    if not candidate.transaction_date:
        candidate.transaction_date = received_date.isoformat()
    if not candidate.currency:
        candidate.currency = default_currency

    candidate.missing_fields = candidate.find_missing_fields()
    if candidate.missing_fields:
        candidate.confidence = 0.0
        candidate.parsing_type = "basic" if matched.values else "unknown"
    else:
        candidate.confidence = 1.0
        candidate.parsing_type = "trading"

    logger.debug(
        f"Heuristic extraction matched {matched.matched_rules}; missing={candidate.missing_fields}",
        extra={"parse_method": "heuristic"},
    )
    return candidate
