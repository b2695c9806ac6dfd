"""Tests for LLM response parsing and the AI extractor."""

import json
from datetime import UTC, datetime

from cache_manager import ResponseCache
from conftest import FakeProvider
from ingest.email_parsing.llm_extraction import (
    AIExtractor,
    build_email_parsing_prompt,
    parse_llm_response,
)

RECEIVED = datetime(2025, 6, 20, 14, 30, tzinfo=UTC)


def llm_answer(confidence=0.85, parsing_type="trading", success=True, **overrides):
    extracted = {
        "portfolioName": "TFSA",
        "symbol": "aapl",
        "assetType": "stock",
        "transactionType": "Buy",
        "quantity": 15,
        "price": 166.67,
        "totalAmount": 2500.0,
        "fees": 0,
        "currency": "usd",
        "transactionDate": "2025-06-19",
        "notes": None,
    }
    extracted.update(overrides)
    return json.dumps(
        {
            "success": success,
            "extractedData": extracted,
            "confidence": confidence,
            "parsingType": parsing_type,
        }
    )


# ============================================================================
# RESPONSE PARSING
# ============================================================================


def test_parse_valid_response():
    candidate = parse_llm_response(llm_answer())

    assert candidate.portfolio_name == "TFSA"
    assert candidate.symbol == "AAPL"
    assert candidate.asset_type == "stock"
    assert candidate.transaction_type == "buy"
    assert candidate.quantity == 15.0
    assert candidate.price == 166.67
    assert candidate.fees == 0.0
    assert candidate.currency == "USD"
    assert candidate.transaction_date == "2025-06-19"
    assert candidate.confidence == 0.85
    assert candidate.parsing_type == "trading"
    assert candidate.extraction_method == "ai"


def test_parse_response_in_code_fence():
    candidate = parse_llm_response(f"```json\n{llm_answer()}\n```")

    assert candidate.symbol == "AAPL"
    assert candidate.confidence == 0.85


def test_prose_response_is_unknown():
    candidate = parse_llm_response("Sorry, I can't find a trade in this email.")

    assert candidate.confidence == 0.0
    assert candidate.parsing_type == "unknown"
    assert candidate.notes == "AI response was not valid JSON"


def test_non_object_response_is_unknown():
    candidate = parse_llm_response("[1, 2, 3]")

    assert candidate.parsing_type == "unknown"
    assert candidate.confidence == 0.0


def test_unsuccessful_response_has_zero_confidence():
    candidate = parse_llm_response(llm_answer(success=False, confidence=0.9))

    assert candidate.confidence == 0.0


def test_invalid_fields_are_dropped():
    candidate = parse_llm_response(
        llm_answer(
            quantity="15",
            price=-3,
            assetType="bond",
            currency="dollars",
            transactionDate="06/19/2025",
        )
    )

    assert candidate.quantity is None
    assert candidate.price is None
    assert candidate.asset_type is None
    assert candidate.currency is None
    assert candidate.transaction_date is None
    assert set(candidate.find_missing_fields()) == {"quantity", "price", "asset_type"}


def test_confidence_is_clamped():
    assert parse_llm_response(llm_answer(confidence=1.7)).confidence == 1.0
    assert parse_llm_response(llm_answer(confidence="high")).confidence == 0.0


def test_missing_parsing_type_is_inferred():
    candidate = parse_llm_response(llm_answer(parsing_type=None))

    assert candidate.parsing_type == "trading"


# ============================================================================
# PROMPT
# ============================================================================


def test_prompt_truncates_body_and_lists_context():
    prompt = build_email_parsing_prompt(
        "Trade confirmation",
        "x" * 50 + "TAIL",
        "broker@example.com",
        RECEIVED,
        context={"heuristic_missing_fields": "price"},
        max_body_chars=50,
    )

    assert "TAIL" not in prompt
    assert "- heuristic_missing_fields: price" in prompt
    assert "AAPL250621C00200000" in prompt
    assert "Received: 2025-06-20T14:30:00+00:00" in prompt


# ============================================================================
# AI EXTRACTOR
# ============================================================================


def test_extractor_returns_candidate():
    provider = FakeProvider([llm_answer(transactionDate=None, currency=None)])
    extractor = AIExtractor(provider, default_currency="CAD")

    candidate = extractor.extract("Trade confirmation", "body", "broker@example.com", RECEIVED)

    assert candidate.symbol == "AAPL"
    assert candidate.currency == "CAD"
    assert candidate.transaction_date == "2025-06-20"
    assert candidate.missing_fields == []
    assert len(provider.prompts) == 1


def test_extractor_applies_option_fee_default():
    provider = FakeProvider(
        [llm_answer(symbol="AAPL250621C00200000", assetType="option", quantity=2, price=3.5, fees=None)]
    )
    extractor = AIExtractor(provider, option_fee_per_contract=0.75)

    candidate = extractor.extract("Option filled", "body", received_at=RECEIVED)

    assert candidate.asset_type == "option"
    assert candidate.fees == 1.5


def test_extractor_provider_error_gives_failed_candidate():
    provider = FakeProvider([TimeoutError("model timed out")])
    extractor = AIExtractor(provider)

    candidate = extractor.extract("Trade confirmation", "body", received_at=RECEIVED)

    assert candidate.confidence == 0.0
    assert candidate.parsing_type == "unknown"
    assert candidate.notes == "AI service error: TimeoutError"
    # No defaults are invented for a failed extraction
    assert candidate.currency is None


def test_extractor_without_provider():
    candidate = AIExtractor(None).extract("Trade confirmation", "body")

    assert candidate.confidence == 0.0
    assert candidate.notes == "AI extraction not configured"


def test_extractor_caches_successful_answers():
    provider = FakeProvider([llm_answer()])
    extractor = AIExtractor(provider, cache=ResponseCache())

    first = extractor.extract("Trade confirmation", "body", received_at=RECEIVED)
    second = extractor.extract("Trade confirmation", "body", received_at=RECEIVED)

    assert first == second
    assert len(provider.prompts) == 1


def test_extractor_does_not_cache_unparseable_answers():
    provider = FakeProvider(["not json", llm_answer()])
    extractor = AIExtractor(provider, cache=ResponseCache())

    first = extractor.extract("Trade confirmation", "body", received_at=RECEIVED)
    second = extractor.extract("Trade confirmation", "body", received_at=RECEIVED)

    assert first.parsing_type == "unknown"
    assert second.symbol == "AAPL"
    assert len(provider.prompts) == 2
