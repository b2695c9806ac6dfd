"""
Symbol Resolver

Maps free text ("apple stock", "aapl june 21 $200 call") or partial tickers to
canonical symbols, and builds/parses option contract symbols.

Option symbol format: [TICKER][YYMMDD][C|P][strike x 1000, 8 digits]
    AAPL, 2025-06-21, 200, call  ->  AAPL250621C00200000

Two resolver implementations share one interface:
- DeterministicFallbackResolver: lookup table, then token heuristics
- LiveResolver: lookup table, then the LLM, then the same heuristics
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from config.llm_config import SymbolResolverMode
from ingest.llm_providers.base_provider import BaseLLMProvider
from ingest.logging_config import get_logger
from ingest.types import SymbolResolution

logger = get_logger(__name__)

OPTION_SYMBOL_RE = re.compile(r'^[A-Z]{1,6}\d{6}[CP]\d{8}$')
OPTION_SYMBOL_PARTS_RE = re.compile(r'^([A-Z]{1,6})(\d{2})(\d{2})(\d{2})([CP])(\d{8})$')
TICKER_RE = re.compile(r'^[A-Z]{1,6}(?:\.[A-Z]{1,2})?$')
UNDERLYING_RE = re.compile(r'^[A-Z]{1,6}$')
MAX_STRIKE_UNITS = 10 ** 8

# Exact-match table, keyed by lowercased query: (symbol, confidence, asset_type)
SYMBOL_LOOKUP = {
    'apple stock': ('AAPL', 0.9, 'stock'),
    'apple': ('AAPL', 0.8, 'stock'),
    'tesla stock': ('TSLA', 0.9, 'stock'),
    'tesla': ('TSLA', 0.8, 'stock'),
    'microsoft stock': ('MSFT', 0.9, 'stock'),
    'microsoft': ('MSFT', 0.8, 'stock'),
    'nvidia stock': ('NVDA', 0.9, 'stock'),
    'nvidia': ('NVDA', 0.8, 'stock'),
    'amazon stock': ('AMZN', 0.9, 'stock'),
    'google stock': ('GOOGL', 0.9, 'stock'),
    'spy etf': ('SPY', 0.95, 'stock'),
    'qqq etf': ('QQQ', 0.95, 'stock'),
    's&p 500 etf': ('SPY', 0.9, 'stock'),
    'soxl jun 6 $17 call': ('SOXL250606C00017000', 0.85, 'option'),
    'aapl june 21 $200 call': ('AAPL250621C00200000', 0.85, 'option'),
    'tsla put $250 july 18': ('TSLA250718P00250000', 0.85, 'option'),
    'nvdl jun 20 $61 call': ('NVDL250620C00061000', 0.85, 'option'),
    'nvda 109.00 call 2025-04-11': ('NVDA250411C00109000', 0.9, 'option'),
    'nvda 112.00 call 2025-04-11': ('NVDA250411C00112000', 0.9, 'option'),
}

SYMBOL_LOOKUP_PROMPT = """Convert the following description of a security into its trading symbol.

Query: "{query}"

Rules:
- Stocks and ETFs: return the exchange ticker in uppercase (e.g. "apple stock" -> "AAPL").
- Options: return the option symbol [TICKER][YYMMDD][C|P][strike x 1000, zero-padded to 8 digits].
  Examples:
  - "AAPL June 21 2025 $200 call" -> "AAPL250621C00200000"
  - "TSLA July 18 2025 $250 put" -> "TSLA250718P00250000"
  - "SOXL Jun 6 2025 $17 call" -> "SOXL250606C00017000"
  - strike $15.50 -> "00015500", strike $140.00 -> "00140000"
- If the query does not describe a security, return an empty symbol with confidence 0.

Respond with ONLY a JSON object:
{{"symbol": "AAPL", "confidence": 0.0-1.0, "assetType": "stock" | "option"}}"""


@dataclass
class OptionContract:
    underlying: str
    expiry: date
    strike: float
    option_type: str  # call | put


def _to_date(expiry) -> date:
    if isinstance(expiry, datetime):
        return expiry.date()
    if isinstance(expiry, date):
        return expiry
    return datetime.strptime(str(expiry).strip()[:10], '%Y-%m-%d').date()


def build_option_symbol(underlying: str, expiry, strike, option_type: str) -> str:
    """
    Build an option symbol from its components.

    Args:
        underlying: Ticker of the underlying (1-6 letters)
        expiry: date, datetime or 'YYYY-MM-DD'
        strike: Strike price; three implied decimals are kept
        option_type: 'call'/'put' (or 'C'/'P')

    Raises:
        ValueError: If any component cannot be encoded
    """
    ticker = (underlying or '').strip().upper()
    if not UNDERLYING_RE.match(ticker):
        raise ValueError(f"Invalid option underlying: {underlying!r}")

    kind = (option_type or '').strip().lower()
    if kind in ('call', 'c'):
        flag = 'C'
    elif kind in ('put', 'p'):
        flag = 'P'
    else:
        raise ValueError(f"Invalid option type: {option_type!r}")

    expiry_date = _to_date(expiry)

    strike_units = int(round(float(strike) * 1000))
    if not 0 < strike_units < MAX_STRIKE_UNITS:
        raise ValueError(f"Strike out of range: {strike!r}")

    return f"{ticker}{expiry_date.strftime('%y%m%d')}{flag}{strike_units:08d}"


def parse_option_symbol(symbol: str) -> Optional[OptionContract]:
    """Split an option symbol into its components, or None if it is not one."""
    match = OPTION_SYMBOL_PARTS_RE.match((symbol or '').strip().upper())
    if not match:
        return None

    ticker, yy, mm, dd, flag, strike_units = match.groups()
    try:
        expiry = date(2000 + int(yy), int(mm), int(dd))
    except ValueError:
        return None

    return OptionContract(
        underlying=ticker,
        expiry=expiry,
        strike=int(strike_units) / 1000,
        option_type='call' if flag == 'C' else 'put',
    )


def is_option_symbol(symbol: str) -> bool:
    return bool(symbol) and bool(OPTION_SYMBOL_RE.match(symbol))


def is_canonical_symbol(symbol: str) -> bool:
    """True for a plain ticker or a well-formed option symbol."""
    if not symbol:
        return False
    return bool(TICKER_RE.match(symbol)) or parse_option_symbol(symbol) is not None


def describe_asset(symbol: str) -> str:
    """Human-readable asset name; option symbols are spelled out."""
    contract = parse_option_symbol(symbol)
    if contract is None:
        return symbol
    return (
        f"{contract.underlying} {contract.expiry.isoformat()} "
        f"{contract.strike:.2f} {contract.option_type.capitalize()}"
    )


class BaseSymbolResolver(ABC):
    """Resolve a free-text query to a symbol with a confidence score."""

    def resolve(self, query: str) -> Optional[SymbolResolution]:
        """
        Resolve a query.

        Returns:
            SymbolResolution, or None when the query is blank
        """
        if not query or not query.strip():
            return None

        direct = self._direct_match(query)
        if direct:
            return direct

        resolution = self._resolve(query)
        logger.debug(
            f"Resolved {query!r} -> {resolution.symbol} "
            f"({resolution.source}, {resolution.confidence:.2f})"
        )
        return resolution

    @abstractmethod
    def _resolve(self, query: str) -> SymbolResolution:
        """Resolve a query that is neither a lookup hit nor an option symbol."""

    @staticmethod
    def _direct_match(query: str) -> Optional[SymbolResolution]:
        cleaned = query.strip()
        entry = SYMBOL_LOOKUP.get(cleaned.lower())
        if entry:
            symbol, confidence, asset_type = entry
            return SymbolResolution(symbol, confidence, asset_type, source='lookup')

        if is_option_symbol(cleaned.upper()) and parse_option_symbol(cleaned.upper()):
            return SymbolResolution(cleaned.upper(), 1.0, 'option', source='lookup')
        return None

    @staticmethod
    def _heuristic(query: str) -> SymbolResolution:
        """Ticker-looking token at 0.7, else the query stripped to alphanumerics at 0.3."""
        token = re.search(r'\b([A-Z]{1,5})\b', query)
        if not token:
            token = re.search(r'\b([A-Za-z]{1,5})\b', query)
        if token:
            return SymbolResolution(token.group(1).upper(), 0.7, 'stock', source='heuristic')

        stripped = re.sub(r'[^A-Za-z0-9]', '', query).upper()
        return SymbolResolution(stripped, 0.3, 'stock', source='stripped')


class DeterministicFallbackResolver(BaseSymbolResolver):
    """Offline resolver: lookup table and token heuristics only."""

    def _resolve(self, query: str) -> SymbolResolution:
        return self._heuristic(query)


class LiveResolver(BaseSymbolResolver):
    """Resolver that asks the LLM before falling back to heuristics."""

    def __init__(self, provider: BaseLLMProvider, cache=None):
        self.provider = provider
        self.cache = cache

    def _resolve(self, query: str) -> SymbolResolution:
        resolution = self._ask_model(query)
        if resolution:
            return resolution
        return self._heuristic(query)

    def _ask_model(self, query: str) -> Optional[SymbolResolution]:
        prompt = SYMBOL_LOOKUP_PROMPT.format(query=query.strip())

        cache_key = None
        if self.cache is not None:
            cache_key = self.cache.make_key("symbol", self.provider.model, prompt)
            cached = self.cache.get(cache_key)
            if cached is not None:
                return SymbolResolution(**cached)

        try:
            response = self.provider.complete(prompt)
        except Exception as e:
            logger.warning(f"Symbol lookup via LLM failed for {query!r}: {e}")
            return None

        resolution = parse_symbol_response(response.content)
        if resolution and cache_key:
            self.cache.set(cache_key, resolution.__dict__)
        return resolution


def parse_symbol_response(text: str) -> Optional[SymbolResolution]:
    """Validate the model's symbol lookup answer. Anything malformed is None."""
    json_str = text or ''
    if "```json" in json_str:
        json_str = json_str.split("```json")[1].split("```")[0]
    elif "```" in json_str:
        json_str = json_str.split("```")[1].split("```")[0]

    try:
        data = json.loads(json_str.strip())
    except (json.JSONDecodeError, ValueError):
        logger.warning("Symbol lookup response was not valid JSON")
        return None

    if not isinstance(data, dict):
        return None

    symbol = str(data.get('symbol') or '').strip().upper()
    if not symbol or not is_canonical_symbol(symbol):
        return None

    try:
        confidence = float(data.get('confidence', 0))
    except (TypeError, ValueError):
        confidence = 0.0
    confidence = max(0.0, min(1.0, confidence))

    asset_type = 'option' if is_option_symbol(symbol) else 'stock'
    return SymbolResolution(symbol, confidence, asset_type, source='ai')


def create_symbol_resolver(
    mode: SymbolResolverMode, provider: Optional[BaseLLMProvider] = None, cache=None
) -> BaseSymbolResolver:
    """Pick the resolver implementation for the configured mode."""
    if mode == SymbolResolverMode.LIVE:
        if provider is None:
            logger.warning("SYMBOL_RESOLVER_MODE=live but no LLM provider configured; using deterministic resolver")
            return DeterministicFallbackResolver()
        return LiveResolver(provider, cache=cache)
    return DeterministicFallbackResolver()
