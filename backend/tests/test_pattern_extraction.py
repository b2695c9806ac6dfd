"""Tests for rule-based trade extraction and parsing utilities."""

from datetime import date

import pytest

from ingest.email_parsing.extraction_rules import RuleContext, apply_rules, rules_for
from ingest.email_parsing.pattern_extraction import extract_with_patterns
from ingest.email_parsing.utilities import (
    compute_email_hash,
    html_to_text,
    parse_date_string,
    parse_number,
)

RECEIVED = date(2025, 6, 20)


def test_extracts_complete_stock_trade():
    """The canonical confirmation sentence yields a full-confidence candidate."""
    candidate = extract_with_patterns(
        "Trade confirmation",
        "Bought 15 shares of AAPL at $166.67 total $2500.00",
        received_at=RECEIVED,
    )

    assert candidate.symbol == "AAPL"
    assert candidate.transaction_type == "buy"
    assert candidate.quantity == 15
    assert candidate.price == 166.67
    assert candidate.total_amount == 2500.0
    assert candidate.asset_type == "stock"
    assert candidate.confidence == 1.0
    assert candidate.parsing_type == "trading"
    assert candidate.extraction_method == "heuristic"
    assert candidate.missing_fields == []


def test_falls_back_to_received_date_and_default_currency():
    candidate = extract_with_patterns(
        "Order filled", "Sold 10 shares of MSFT at $410.25", received_at=RECEIVED, default_currency="CAD"
    )

    assert candidate.transaction_type == "sell"
    assert candidate.transaction_date == "2025-06-20"
    assert candidate.currency == "CAD"


def test_labeled_fields():
    body = "\n".join(
        [
            "Account: TFSA (****1234)",
            "Action: Sell",
            "Symbol: SHOP",
            "Quantity: 1,200",
            "Price: US$ 98.10",
            "Commission: $4.95",
            "Trade date: June 18th, 2025",
            "This stock order was executed in USD.",
        ]
    )
    candidate = extract_with_patterns("Your order", body, received_at=RECEIVED)

    assert candidate.portfolio_name == "TFSA"
    assert candidate.transaction_type == "sell"
    assert candidate.symbol == "SHOP"
    assert candidate.quantity == 1200
    assert candidate.price == 98.10
    assert candidate.fees == 4.95
    assert candidate.currency == "USD"
    assert candidate.transaction_date == "2025-06-18"
    assert candidate.confidence == 1.0


def test_extracts_option_trade_from_description():
    candidate = extract_with_patterns(
        "Option order filled",
        "Bought 2 contracts AAPL $200 call exp 06/21/2025 at $3.50",
        received_at=RECEIVED,
    )

    assert candidate.symbol == "AAPL250621C00200000"
    assert candidate.asset_type == "option"
    assert candidate.quantity == 2
    assert candidate.price == 3.5
    # The expiry is not the trade date
    assert candidate.transaction_date == "2025-06-20"
    assert candidate.confidence == 1.0


def test_option_expiry_without_year_uses_next_occurrence():
    candidate = extract_with_patterns(
        "Filled", "Sold 1 contract SOXL Jun 6 $17 call at $0.85", received_at=date(2025, 6, 2)
    )

    assert candidate.symbol == "SOXL250606C00017000"


def test_no_trade_keywords_is_insufficient():
    candidate = extract_with_patterns(
        "Your monthly statement is ready", "Log in to view your statement.", received_at=RECEIVED
    )

    assert candidate.insufficient
    assert candidate.confidence == 0.0
    assert candidate.parsing_type == "unknown"
    assert set(candidate.missing_fields) == {"symbol", "asset_type", "transaction_type", "quantity", "price"}


def test_partial_match_is_basic():
    candidate = extract_with_patterns("Order update", "You bought shares today.", received_at=RECEIVED)

    assert candidate.transaction_type == "buy"
    assert candidate.parsing_type == "basic"
    assert candidate.confidence == 0.0
    assert "price" in candidate.missing_fields


def test_total_line_is_not_read_as_price():
    context = RuleContext(received_date=RECEIVED)
    result = apply_rules("Total price: $500.00\nBought 5 shares of XYZ @ 100", context)

    assert result.values["price"] == 100
    assert result.values["total_amount"] == 500.0


def test_rules_for_field_keeps_order():
    names = [rule.name for rule in rules_for("quantity")]

    assert names == ["labeled_quantity", "verb_quantity", "shares_quantity"]


# ============================================================================
# UTILITIES
# ============================================================================


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2025-06-21", "2025-06-21"),
        ("06/21/2025", "2025-06-21"),
        ("June 21, 2025", "2025-06-21"),
        ("Jun. 21st, 2025", "2025-06-21"),
        ("Sept 5, 2025", "2025-09-05"),
        ("21 June 2025", "2025-06-21"),
        ("2025-06-21T09:30:00Z", "2025-06-21"),
        ("not a date", None),
        ("", None),
    ],
)
def test_parse_date_string(text, expected):
    assert parse_date_string(text) == expected


def test_parse_number():
    assert parse_number("$1,234.50") == 1234.5
    assert parse_number("CA$ 12") == 12.0
    assert parse_number("n/a") is None
    assert parse_number(None) is None


def test_html_to_text_keeps_lines():
    html = "<html><head><style>p{}</style></head><body><p>Bought 5 shares</p><p>of AAPL</p></body></html>"

    text = html_to_text(html)

    assert text.splitlines() == ["Bought 5 shares", "of AAPL"]


def test_email_hash_ignores_whitespace_and_case():
    first = compute_email_hash("Trade Confirmation", "Broker@Example.com", "Bought  5\nshares")
    second = compute_email_hash("trade confirmation", "broker@example.com", "Bought 5 shares")

    assert first == second
    assert first != compute_email_hash("trade confirmation", "broker@example.com", "Sold 5 shares")
