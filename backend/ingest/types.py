"""
Data carriers shared across the ingest pipeline.

These are plain dataclasses: they never touch the database or the mailbox.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any

REQUIRED_TRADING_FIELDS = (
    "symbol",
    "asset_type",
    "transaction_type",
    "quantity",
    "price",
)

ASSET_TYPES = ("stock", "option")
TRANSACTION_TYPES = ("buy", "sell")
PARSING_TYPES = ("trading", "basic", "unknown")


@dataclass
class IncomingMessage:
    """One email as fetched from the mailbox."""

    uid: int
    message_id: str
    subject: str
    from_address: str
    received_at: datetime
    text_body: str = ""
    html_body: str = ""
    from_name: str = ""

    @property
    def body(self) -> str:
        """Plain text body, derived from HTML when the email has no text part."""
        if self.text_body.strip():
            return self.text_body
        if self.html_body:
            from ingest.email_parsing.utilities import html_to_text

            return html_to_text(self.html_body)
        return ""


@dataclass
class ExtractedTransactionCandidate:
    """Unconfirmed trade data parsed out of one email."""

    portfolio_name: str | None = None
    symbol: str | None = None
    asset_type: str | None = None
    transaction_type: str | None = None
    quantity: float | None = None
    price: float | None = None
    total_amount: float | None = None
    fees: float | None = None
    currency: str | None = None
    transaction_date: str | None = None  # YYYY-MM-DD
    notes: str | None = None
    confidence: float = 0.0
    parsing_type: str = "unknown"
    extraction_method: str | None = None  # heuristic | ai
    missing_fields: list[str] = field(default_factory=list)

    @property
    def insufficient(self) -> bool:
        return bool(self.find_missing_fields())

    def find_missing_fields(self) -> list[str]:
        missing = []
        for name in REQUIRED_TRADING_FIELDS:
            value = getattr(self, name)
            if value is None or value == "":
                missing.append(name)
            elif name in ("quantity", "price") and value <= 0:
                missing.append(name)
        return missing

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExtractedTransactionCandidate":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def with_overrides(self, overrides: dict[str, Any] | None) -> "ExtractedTransactionCandidate":
        """Return a copy with reviewer corrections applied (unknown keys ignored)."""
        if not overrides:
            return replace(self)
        known = {f.name for f in fields(self)}
        return replace(self, **{k: v for k, v in overrides.items() if k in known})


@dataclass
class SymbolResolution:
    symbol: str
    confidence: float
    asset_type: str = "stock"
    source: str = "heuristic"  # lookup | ai | heuristic | stripped


class GateStatus(str, Enum):
    COMMITTED = "committed"
    DUPLICATE = "duplicate"
    NEEDS_REVIEW = "needs_review"


@dataclass
class GateResult:
    """Outcome of one pass through the persistence gate."""

    status: GateStatus
    transaction_id: int | None = None
    asset_id: int | None = None
    portfolio_id: int | None = None
    reason: str | None = None
    archived: bool = False


@dataclass
class EmailOutcome:
    """What happened to a single email during a poll cycle."""

    message_id: str
    outcome: str  # committed | review | awaiting_review | duplicate | error
    transaction_id: int | None = None
    review_item_id: int | None = None
    reason: str | None = None


@dataclass
class CycleReport:
    fetched: int = 0
    committed: int = 0
    queued_for_review: int = 0
    awaiting_review: int = 0
    duplicates: int = 0
    errors: int = 0
    next_cursor: int = 0
    outcomes: list[EmailOutcome] = field(default_factory=list)

    def record(self, outcome: EmailOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.outcome == "committed":
            self.committed += 1
        elif outcome.outcome == "review":
            self.queued_for_review += 1
        elif outcome.outcome == "awaiting_review":
            self.awaiting_review += 1
        elif outcome.outcome == "duplicate":
            self.duplicates += 1
        else:
            self.errors += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "fetched": self.fetched,
            "committed": self.committed,
            "queued_for_review": self.queued_for_review,
            "awaiting_review": self.awaiting_review,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "next_cursor": self.next_cursor,
        }
