"""
LLM-based Extraction

Model-powered trade extraction, used when the heuristic rules leave required
fields empty. Works with any configured provider (Anthropic, OpenAI,
OpenRouter, Google, DeepSeek, Ollama).

The extractor never raises: provider errors, timeouts and malformed responses
all come back as a zero-confidence candidate with parsing type "unknown".
"""

import json
import re
from datetime import date, datetime
from typing import Any, Optional

from cache_manager import ResponseCache
from ingest.llm_providers.base_provider import BaseLLMProvider
from ingest.logging_config import get_logger
from ingest.types import (
    ASSET_TYPES,
    PARSING_TYPES,
    TRANSACTION_TYPES,
    ExtractedTransactionCandidate,
)

logger = get_logger(__name__)

DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')
CURRENCY_RE = re.compile(r'^[A-Z]{3}$')

SYSTEM_PROMPT = (
    "You extract structured trade data from brokerage confirmation emails. "
    "Respond with JSON only."
)


def build_email_parsing_prompt(
    subject: str,
    body_text: str,
    from_address: str = "",
    received_at: datetime | date | None = None,
    context: Optional[dict] = None,
    max_body_chars: int = 4000,
) -> str:
    """Build the extraction prompt for one email."""
    truncated_body = (body_text or "")[:max_body_chars]
    received = received_at.isoformat() if received_at else "unknown"

    context_lines = ""
    if context:
        context_lines = "\nAdditional context:\n" + "\n".join(
            f"- {key}: {value}" for key, value in context.items()
        ) + "\n"

    return f"""Extract the trade from this brokerage confirmation email.

From: {from_address}
Received: {received}
Subject: {subject}
Body:
{truncated_body}
{context_lines}
Return this JSON structure (use null for missing fields):
{{
  "success": true,
  "extractedData": {{
    "portfolioName": "Account name, e.g. TFSA, RRSP, Margin",
    "symbol": "AAPL",
    "assetType": "stock" | "option",
    "transactionType": "buy" | "sell",
    "quantity": 15,
    "price": 166.67,
    "totalAmount": 2500.00,
    "fees": 0,
    "currency": "USD",
    "transactionDate": "YYYY-MM-DD",
    "notes": "anything unusual about the trade"
  }},
  "confidence": 0.0,
  "parsingType": "trading" | "basic" | "unknown"
}}

Rules:
- quantity, price, totalAmount and fees must be numbers (no currency symbols).
- transactionDate must be YYYY-MM-DD; use the trade date, not the expiry date.
- currency defaults to USD when the email does not state one.
- For options, symbol must be [TICKER][YYMMDD][C|P][strike x 1000, zero-padded to 8 digits]:
  - AAPL call, strike $200.00, expiring 2025-06-21 -> AAPL250621C00200000
  - strike $140.00 -> 00140000, strike $15.50 -> 00015500
  - quantity is the number of contracts; price is the premium per share.
- parsingType is "trading" when the email describes a buy or sell, "basic" when
  it is finance-related but not a trade, "unknown" otherwise.
- confidence is your certainty (0.0 to 1.0) that every extracted field is correct.
- Return only valid JSON, no markdown or explanation."""


def _strip_code_fences(text: str) -> str:
    content = (text or "").strip()
    if '```json' in content:
        content = content.split('```json')[1].split('```')[0]
    elif '```' in content:
        content = content.split('```')[1].split('```')[0]
    return content.strip()


def _positive(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value > 0 else None


def _non_negative(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value >= 0 else None


def _text(value: Any, upper: bool = False) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value:
        return None
    return value.upper() if upper else value


def _valid_date(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not DATE_RE.match(value.strip()):
        return None
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError:
        return None


def failed_candidate(reason: str) -> ExtractedTransactionCandidate:
    return ExtractedTransactionCandidate(
        confidence=0.0,
        parsing_type="unknown",
        extraction_method="ai",
        notes=reason,
    )


def parse_llm_response(response_text: str) -> ExtractedTransactionCandidate:
    """
    Parse and validate the model's JSON answer.

    Invalid fields are dropped rather than trusted. Unparseable responses give
    confidence 0 and parsing type "unknown".
    """
    try:
        data = json.loads(_strip_code_fences(response_text))
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning(f"LLM returned invalid JSON: {e}", extra={"parse_method": "ai"})
        return failed_candidate("AI response was not valid JSON")

    if not isinstance(data, dict):
        return failed_candidate("AI response was not a JSON object")

    extracted = data.get("extractedData")
    if not isinstance(extracted, dict):
        extracted = {}

    asset_type = _text(extracted.get("assetType"))
    transaction_type = _text(extracted.get("transactionType"))
    currency = _text(extracted.get("currency"), upper=True)

    candidate = ExtractedTransactionCandidate(
        portfolio_name=_text(extracted.get("portfolioName")),
        symbol=_text(extracted.get("symbol"), upper=True),
        asset_type=asset_type.lower() if asset_type and asset_type.lower() in ASSET_TYPES else None,
        transaction_type=(
            transaction_type.lower()
            if transaction_type and transaction_type.lower() in TRANSACTION_TYPES
            else None
        ),
        quantity=_positive(extracted.get("quantity")),
        price=_positive(extracted.get("price")),
        total_amount=_positive(extracted.get("totalAmount")),
        fees=_non_negative(extracted.get("fees")),
        currency=currency if currency and CURRENCY_RE.match(currency) else None,
        transaction_date=_valid_date(extracted.get("transactionDate")),
        notes=_text(extracted.get("notes")),
        extraction_method="ai",
    )

    confidence = data.get("confidence", 0)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0.0
    candidate.confidence = max(0.0, min(1.0, float(confidence)))
    if data.get("success") is False:
        candidate.confidence = 0.0

    parsing_type = data.get("parsingType")
    candidate.parsing_type = parsing_type if parsing_type in PARSING_TYPES else "unknown"

    has_data = any(
        getattr(candidate, name) is not None
        for name in ("symbol", "transaction_type", "quantity", "price", "total_amount")
    )
    if candidate.parsing_type == "unknown" and has_data:
        if candidate.symbol and candidate.transaction_type and candidate.quantity:
            candidate.parsing_type = "trading"
        else:
            candidate.parsing_type = "basic"

    return candidate


class AIExtractor:
    """LLM fallback extractor with a TTL response cache."""

    def __init__(
        self,
        provider: Optional[BaseLLMProvider],
        cache: Optional[ResponseCache] = None,
        max_body_chars: int = 4000,
        default_currency: str = "USD",
        option_fee_per_contract: float = 0.75,
    ):
        self.provider = provider
        self.cache = cache
        self.max_body_chars = max_body_chars
        self.default_currency = default_currency
        self.option_fee_per_contract = option_fee_per_contract

    def extract(
        self,
        subject: str,
        body_text: str,
        from_address: str = "",
        received_at: datetime | date | None = None,
        context: Optional[dict] = None,
    ) -> ExtractedTransactionCandidate:
        """
        Extract a candidate with the LLM.

        Returns:
            ExtractedTransactionCandidate; confidence 0 / "unknown" on any failure
        """
        if self.provider is None:
            return failed_candidate("AI extraction not configured")

        prompt = build_email_parsing_prompt(
            subject, body_text, from_address, received_at, context, self.max_body_chars
        )

        cache_key = None
        content = None
        if self.cache is not None:
            cache_key = self.cache.make_key("email", self.provider.model, prompt)
            content = self.cache.get(cache_key)

        if content is None:
            try:
                response = self.provider.complete(prompt, system_prompt=SYSTEM_PROMPT)
            except Exception as e:
                logger.warning(
                    f"LLM extraction failed ({type(e).__name__}): {e}",
                    extra={"parse_method": "ai"},
                )
                return failed_candidate(f"AI service error: {type(e).__name__}")

            content = response.content if response else ""
            logger.info(
                f"LLM extraction: {response.total_tokens} tokens, ${response.cost:.5f}",
                extra={"parse_method": "ai"},
            )

        candidate = parse_llm_response(content)
        if cache_key and candidate.parsing_type != "unknown":
            self.cache.set(cache_key, content)

        self._apply_defaults(candidate, received_at)
        return candidate

    def _apply_defaults(self, candidate: ExtractedTransactionCandidate, received_at) -> None:
        if candidate.parsing_type == "unknown" and candidate.confidence == 0.0:
            candidate.missing_fields = candidate.find_missing_fields()
            return

        if not candidate.currency:
            candidate.currency = self.default_currency
        if not candidate.transaction_date and received_at:
            received_date = received_at.date() if isinstance(received_at, datetime) else received_at
            candidate.transaction_date = received_date.isoformat()
        if (
            candidate.asset_type == "option"
            and candidate.fees is None
            and candidate.quantity
        ):
            candidate.fees = round(candidate.quantity * self.option_fee_per_contract, 2)

        candidate.missing_fields = candidate.find_missing_fields()
