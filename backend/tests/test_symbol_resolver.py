"""Tests for option symbol encoding and symbol resolution."""

from datetime import date

import pytest

from cache_manager import ResponseCache
from config.llm_config import SymbolResolverMode
from conftest import FakeProvider
from ingest.symbol_resolver import (
    DeterministicFallbackResolver,
    LiveResolver,
    build_option_symbol,
    create_symbol_resolver,
    describe_asset,
    is_canonical_symbol,
    parse_option_symbol,
    parse_symbol_response,
)

# ============================================================================
# OPTION SYMBOLS
# ============================================================================


def test_build_option_symbol_call():
    assert build_option_symbol("AAPL", date(2025, 6, 21), 200, "call") == "AAPL250621C00200000"


def test_build_option_symbol_put_with_fractional_strike():
    assert build_option_symbol("tsla", "2025-07-18", 15.5, "P") == "TSLA250718P00015500"


def test_build_option_symbol_strike_padding():
    assert build_option_symbol("NVDA", date(2025, 4, 11), 140.0, "call").endswith("C00140000")


@pytest.mark.parametrize(
    "underlying, strike, option_type",
    [
        ("", 200, "call"),
        ("TOOLONGX", 200, "call"),
        ("AAPL", 0, "call"),
        ("AAPL", -5, "put"),
        ("AAPL", 200, "straddle"),
    ],
)
def test_build_option_symbol_rejects_bad_components(underlying, strike, option_type):
    with pytest.raises(ValueError):
        build_option_symbol(underlying, date(2025, 6, 21), strike, option_type)


def test_parse_option_symbol():
    contract = parse_option_symbol("AAPL250621C00200000")

    assert contract.underlying == "AAPL"
    assert contract.expiry == date(2025, 6, 21)
    assert contract.strike == 200.0
    assert contract.option_type == "call"


def test_parse_option_symbol_rejects_impossible_date():
    assert parse_option_symbol("AAPL251340C00200000") is None
    assert parse_option_symbol("AAPL") is None


def test_describe_asset():
    assert describe_asset("SOXL250606C00017000") == "SOXL 2025-06-06 17.00 Call"
    assert describe_asset("AAPL") == "AAPL"


def test_is_canonical_symbol():
    assert is_canonical_symbol("AAPL")
    assert is_canonical_symbol("BRK.B")
    assert is_canonical_symbol("TSLA250718P00250000")
    assert not is_canonical_symbol("apple stock")
    assert not is_canonical_symbol("")


# ============================================================================
# RESOLVERS
# ============================================================================


def test_deterministic_lookup_table():
    resolution = DeterministicFallbackResolver().resolve("Apple Stock")

    assert resolution.symbol == "AAPL"
    assert resolution.confidence == 0.9
    assert resolution.source == "lookup"


def test_deterministic_option_lookup():
    resolution = DeterministicFallbackResolver().resolve("aapl june 21 $200 call")

    assert resolution.symbol == "AAPL250621C00200000"
    assert resolution.asset_type == "option"


def test_deterministic_ticker_heuristic():
    resolution = DeterministicFallbackResolver().resolve("shares in MSFTX corp")

    assert resolution.symbol == "MSFTX"
    assert resolution.confidence == 0.7


def test_deterministic_stripped_fallback():
    resolution = DeterministicFallbackResolver().resolve("123-456")

    assert resolution.symbol == "123456"
    assert resolution.confidence == 0.3


def test_blank_query_resolves_to_none():
    assert DeterministicFallbackResolver().resolve("   ") is None


def test_live_resolver_uses_model_answer():
    provider = FakeProvider(['{"symbol": "NFLX", "confidence": 0.92, "assetType": "stock"}'])
    resolution = LiveResolver(provider).resolve("the streaming company")

    assert resolution.symbol == "NFLX"
    assert resolution.confidence == 0.92
    assert resolution.source == "ai"


def test_live_resolver_falls_back_when_model_fails():
    provider = FakeProvider([TimeoutError("model timed out")])
    resolution = LiveResolver(provider).resolve("nflx shares")

    assert resolution.symbol == "NFLX"
    assert resolution.source == "heuristic"


def test_live_resolver_caches_answers():
    provider = FakeProvider(['{"symbol": "NFLX", "confidence": 0.9}'])
    resolver = LiveResolver(provider, cache=ResponseCache())

    first = resolver.resolve("the streaming company")
    second = resolver.resolve("the streaming company")

    assert first == second
    assert len(provider.prompts) == 1


def test_parse_symbol_response_rejects_malformed():
    assert parse_symbol_response("I think it's AAPL") is None
    assert parse_symbol_response('{"symbol": "not a ticker!"}') is None
    assert parse_symbol_response("[]") is None


def test_parse_symbol_response_strips_code_fences():
    resolution = parse_symbol_response('```json\n{"symbol": "spy", "confidence": 2}\n```')

    assert resolution.symbol == "SPY"
    assert resolution.confidence == 1.0


def test_create_symbol_resolver_modes():
    assert isinstance(create_symbol_resolver(SymbolResolverMode.DETERMINISTIC), DeterministicFallbackResolver)
    assert isinstance(create_symbol_resolver(SymbolResolverMode.LIVE), DeterministicFallbackResolver)
    assert isinstance(create_symbol_resolver(SymbolResolverMode.LIVE, FakeProvider()), LiveResolver)
