"""
Declarative field extraction rules for trade confirmation emails.

Each rule is (field, pattern, normalizer). Rules for a field are tried in list
order; within a rule every match is offered to the normalizer, and the first
non-None value wins. A normalizer returning None passes the field on to the
next match or rule.
"""

import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Optional

from ingest.symbol_resolver import build_option_symbol, parse_option_symbol

from .utilities import parse_date_string, parse_number


@dataclass
class RuleContext:
    """Facts about the email that normalizers may need (e.g. year inference)."""

    received_date: date
    default_currency: str = "USD"


@dataclass(frozen=True)
class ExtractionRule:
    field: str
    name: str
    pattern: re.Pattern
    normalizer: Callable[[re.Match, RuleContext], Any]


@dataclass
class RuleMatch:
    values: dict[str, Any] = field(default_factory=dict)
    matched_rules: dict[str, str] = field(default_factory=dict)


NUM = r'(\d[\d,]*(?:\.\d+)?)'
MONEY_PREFIX = r'(?:(?:US|CA|C|CAD|USD)\s?)?\$?\s*'
MONEY_AFTER_AT = r'(?:(?:US|CA|C|CAD|USD)\s?)?\$\s*'
MONTH = r'(?i:(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*)\.?'
DATE_WITH_YEAR = (
    rf'(?:{MONTH}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}}'
    r'|\d{4}-\d{2}-\d{2}'
    r'|\d{1,2}/\d{1,2}/\d{4})'
)
DATE_MAYBE_YEAR = (
    rf'(?:{MONTH}\s+\d{{1,2}}(?:st|nd|rd|th)?(?:,?\s+\d{{4}})?'
    r'|\d{4}-\d{2}-\d{2}'
    r'|\d{1,2}/\d{1,2}(?:/\d{2,4})?)'
)
CALL_PUT = r'(?i:(call|put))s?\b'
# Dates that belong to an option description are expiries, not trade dates
NOT_EXPIRY_BEFORE = r'(?<!call )(?<!put )(?<!exp )(?<!Call )(?<!Put )(?<!Exp )'
NOT_EXPIRY_AFTER = r'(?!\s+\$?\d+(?:\.\d+)?\s+(?i:call|put))'

TRANSACTION_VERBS = {
    'buy': 'buy', 'bought': 'buy', 'purchase': 'buy', 'purchased': 'buy', 'acquired': 'buy',
    'sell': 'sell', 'sold': 'sell', 'sale': 'sell',
}
REGISTERED_ACCOUNTS = ('TFSA', 'RRSP', 'RESP', 'LIRA', 'RRIF', 'FHSA')
NOT_TICKERS = {'USD', 'CAD', 'EUR', 'GBP', 'ETF', 'THE', 'AND', 'FOR', 'YOUR', 'AT', 'OF'}
CURRENCY_PREFIXES = {'US': 'USD', 'USD': 'USD', 'CA': 'CAD', 'C': 'CAD', 'CAD': 'CAD'}


# ============================================================================
# Normalizers
# ============================================================================


def _transaction_type(match, ctx) -> Optional[str]:
    return TRANSACTION_VERBS.get(match.group(1).lower())


def _positive_number(match, ctx) -> Optional[float]:
    value = parse_number(match.group(1))
    return value if value and value > 0 else None


def _non_negative_number(match, ctx) -> Optional[float]:
    value = parse_number(match.group(1))
    return value if value is not None and value >= 0 else None


def _zero(match, ctx) -> float:
    return 0.0


def _ticker(match, ctx) -> Optional[str]:
    ticker = match.group(1).strip().upper().rstrip('.')
    if not ticker or ticker in NOT_TICKERS or not re.match(r'^[A-Z]{1,6}(?:\.[A-Z]{1,2})?$', ticker):
        return None
    return ticker


def _formatted_option_symbol(match, ctx) -> Optional[str]:
    symbol = match.group(1)
    return symbol if parse_option_symbol(symbol) else None


def _infer_expiry(text: str, ctx: RuleContext) -> Optional[date]:
    """Parse an expiry; a missing year means the next such date on/after receipt."""
    parsed = parse_date_string(text)
    if parsed:
        return date.fromisoformat(parsed)

    cleaned = re.sub(r'(\d)(st|nd|rd|th)\b', r'\1', text.strip())
    for candidate_year in (ctx.received_date.year, ctx.received_date.year + 1):
        if '/' in cleaned:
            with_year = f"{cleaned}/{candidate_year}"
        else:
            with_year = f"{cleaned.rstrip(',')}, {candidate_year}"
        parsed = parse_date_string(with_year)
        if parsed:
            expiry = date.fromisoformat(parsed)
            if expiry >= ctx.received_date - timedelta(days=1):
                return expiry
    return None


def _option_date_first(match, ctx) -> Optional[str]:
    """TICKER <expiry> $<strike> call|put"""
    ticker, expiry_text, strike, kind = match.groups()
    return _option_symbol(ticker, expiry_text, strike, kind, ctx)


def _option_strike_first(match, ctx) -> Optional[str]:
    """TICKER $<strike> call|put [exp] <expiry>"""
    ticker, strike, kind, expiry_text = match.groups()
    return _option_symbol(ticker, expiry_text, strike, kind, ctx)


def _option_symbol(ticker, expiry_text, strike, kind, ctx) -> Optional[str]:
    if ticker.upper() in NOT_TICKERS:
        return None
    expiry = _infer_expiry(expiry_text, ctx)
    if expiry is None:
        return None
    try:
        return build_option_symbol(ticker, expiry, parse_number(strike), kind)
    except (TypeError, ValueError):
        return None


def _constant(value):
    def normalizer(match, ctx):
        return value
    return normalizer


def _currency_code(match, ctx) -> str:
    return match.group(1).upper()


def _currency_prefix(match, ctx) -> Optional[str]:
    return CURRENCY_PREFIXES.get(match.group(1).upper())


def _account_name(match, ctx) -> Optional[str]:
    name = match.group(1).strip()
    # Drop masked account numbers: "TFSA (****1234)", "Margin #12345"
    name = re.sub(r'\s*[(#].*$', '', name)
    name = re.sub(r'\s*[-:]?\s*\*+\d+\s*$', '', name).strip(' .,;')
    return name or None


def _registered_account(match, ctx) -> str:
    return match.group(1).upper()


def _plain_account(match, ctx) -> str:
    return f"{match.group(1).capitalize()}"


def _date(match, ctx) -> Optional[str]:
    return parse_date_string(match.group(1))


# ============================================================================
# Rules (order matters: first rule producing a value wins)
# ============================================================================


def _rule(field_name: str, name: str, pattern: str, normalizer, flags: int = 0) -> ExtractionRule:
    return ExtractionRule(field_name, name, re.compile(pattern, flags), normalizer)


EXTRACTION_RULES: list[ExtractionRule] = [
    # --- transaction type ---
    _rule('transaction_type', 'labeled_type',
          r'\b(?:type|action|side|order type)\s*[:\-]\s*(buy|sell|bought|sold|purchase|sale)\b',
          _transaction_type, re.IGNORECASE),
    _rule('transaction_type', 'trade_verb',
          r'\b(bought|purchased|acquired|sold|buy|sell|purchase|sale)\b',
          _transaction_type, re.IGNORECASE),

    # --- quantity ---
    _rule('quantity', 'labeled_quantity',
          rf'\b(?:quantity|qty|shares|contracts|units)\s*[:=]\s*{NUM}',
          _positive_number, re.IGNORECASE),
    _rule('quantity', 'verb_quantity',
          rf'\b(?:bought|purchased|acquired|sold|buy|sell)\s+{NUM}\b',
          _positive_number, re.IGNORECASE),
    _rule('quantity', 'shares_quantity',
          rf'\b{NUM}\s+(?:shares?|contracts?|units?)\b',
          _positive_number, re.IGNORECASE),

    # --- symbol ---
    _rule('symbol', 'formatted_option_symbol',
          r'\b([A-Z]{1,6}\d{6}[CP]\d{8})\b',
          _formatted_option_symbol),
    _rule('symbol', 'option_date_strike',
          rf'\b([A-Z]{{1,6}})\s+({DATE_MAYBE_YEAR})\s+\$?(\d+(?:\.\d+)?)\s+{CALL_PUT}',
          _option_date_first),
    _rule('symbol', 'option_strike_date',
          rf'\b([A-Z]{{1,6}})\s+\$?(\d+(?:\.\d+)?)\s+{CALL_PUT}\s*(?:(?i:exp(?:iring|iry|ires)?\.?|expiration)\s*:?\s*)?({DATE_MAYBE_YEAR})',
          _option_strike_first),
    _rule('symbol', 'shares_of',
          r'\b(?i:shares|units)\s+(?i:of)\s+([A-Z]{1,6}(?:\.[A-Z]{1,2})?)\b',
          _ticker),
    _rule('symbol', 'labeled_symbol',
          r'\b(?i:symbol|ticker|security)\s*[:=]\s*([A-Za-z]{1,6}(?:\.[A-Za-z]{1,2})?)\b',
          _ticker),
    _rule('symbol', 'verb_quantity_ticker',
          r'\b(?i:bought|purchased|acquired|sold)\s+[\d,.]+\s+([A-Z]{1,6})\b',
          _ticker),

    # --- asset type ---
    _rule('asset_type', 'formatted_option_symbol',
          r'\b[A-Z]{1,6}\d{6}[CP]\d{8}\b',
          _constant('option')),
    _rule('asset_type', 'strike_call_put',
          r'\$?\d+(?:\.\d+)?\s+(?:call|put)s?\b',
          _constant('option'), re.IGNORECASE),
    _rule('asset_type', 'option_contracts',
          r'\b(?:option\s+contracts?|options?\s+order|\d+\s+contracts?)\b',
          _constant('option'), re.IGNORECASE),
    _rule('asset_type', 'shares_or_stock',
          r'\b(?:shares?|stock|etf)\b',
          _constant('stock'), re.IGNORECASE),

    # --- price ---
    _rule('price', 'labeled_price',
          rf'(?<![Tt]otal )\b(?:fill price|execution price|avg(?:\.|erage)? price|price)(?:\s+per\s+(?:share|contract))?\s*[:=]?\s*{MONEY_PREFIX}{NUM}',
          _positive_number, re.IGNORECASE),
    _rule('price', 'at_dollar',
          rf'(?:\b(?i:at)\b|@)\s*{MONEY_AFTER_AT}{NUM}',
          _positive_number),
    _rule('price', 'at_sign',
          rf'@\s*{NUM}',
          _positive_number),
    _rule('price', 'per_share',
          rf'\$?{NUM}\s+per\s+(?:share|contract|unit)\b',
          _positive_number, re.IGNORECASE),
    _rule('price', 'at_decimal',
          r'\bat\s+(\d[\d,]*\.\d+)\b',
          _positive_number, re.IGNORECASE),

    # --- total amount ---
    _rule('total_amount', 'labeled_total',
          rf'\btotal(?:\s+(?:cost|amount|value|proceeds|price))?\s*[:=]?\s*{MONEY_PREFIX}{NUM}',
          _positive_number, re.IGNORECASE),
    _rule('total_amount', 'net_amount',
          rf'\b(?:net amount|amount|proceeds)\s*[:=]\s*{MONEY_PREFIX}{NUM}',
          _positive_number, re.IGNORECASE),

    # --- fees ---
    _rule('fees', 'labeled_fee',
          rf'\b(?:fees?|commissions?|charges?)\s*[:=]\s*{MONEY_PREFIX}{NUM}',
          _non_negative_number, re.IGNORECASE),
    _rule('fees', 'commission_free',
          r'\b(commission[\s-]free|no commission|zero commission)\b',
          _zero, re.IGNORECASE),

    # --- currency ---
    _rule('currency', 'currency_code',
          r'\b(USD|CAD|EUR|GBP)\b',
          _currency_code),
    _rule('currency', 'currency_prefix',
          r'\b(US|CA|C)\$',
          _currency_prefix),

    # --- portfolio / account ---
    _rule('portfolio_name', 'labeled_account',
          r'^\s*(?:account|portfolio)(?:\s+(?:name|type))?\s*[:\-]\s*(.+?)\s*$',
          _account_name, re.IGNORECASE | re.MULTILINE),
    _rule('portfolio_name', 'registered_account',
          rf'\b({"|".join(REGISTERED_ACCOUNTS)})\b',
          _registered_account, re.IGNORECASE),
    _rule('portfolio_name', 'margin_or_cash_account',
          r'\b(margin|cash)\s+account\b',
          _plain_account, re.IGNORECASE),

    # --- transaction date ---
    _rule('transaction_date', 'labeled_date',
          rf'\b(?:trade date|transaction date|settlement date|date|filled on|executed on)\s*[:\-]?\s*({DATE_WITH_YEAR})',
          _date, re.IGNORECASE),
    _rule('transaction_date', 'iso_date',
          rf'{NOT_EXPIRY_BEFORE}\b(\d{{4}}-\d{{2}}-\d{{2}})\b{NOT_EXPIRY_AFTER}',
          _date),
    _rule('transaction_date', 'us_date',
          rf'{NOT_EXPIRY_BEFORE}\b(\d{{1,2}}/\d{{1,2}}/\d{{4}})\b{NOT_EXPIRY_AFTER}',
          _date),
    _rule('transaction_date', 'month_name_date',
          rf'{NOT_EXPIRY_BEFORE}\b({MONTH}\s+\d{{1,2}}(?:st|nd|rd|th)?,?\s+\d{{4}})\b{NOT_EXPIRY_AFTER}',
          _date),
]

EXTRACTED_FIELDS = tuple(dict.fromkeys(rule.field for rule in EXTRACTION_RULES))


def apply_rules(
    text: str, context: RuleContext, rules: list[ExtractionRule] = None
) -> RuleMatch:
    """Evaluate rules in order; the first rule yielding a value sets the field."""
    result = RuleMatch()
    for rule in rules or EXTRACTION_RULES:
        if rule.field in result.values:
            continue
        for match in rule.pattern.finditer(text):
            value = rule.normalizer(match, context)
            if value is not None:
                result.values[rule.field] = value
                result.matched_rules[rule.field] = rule.name
                break
    return result


def rules_for(field_name: str) -> list[ExtractionRule]:
    return [rule for rule in EXTRACTION_RULES if rule.field == field_name]
