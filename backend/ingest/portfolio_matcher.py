"""
Portfolio name matching.

Emails name accounts loosely ("TFSA Account", "Tax-Free Savings", "Margin
account ****1234"). Matching tries name variations in order and, for each,
takes the first portfolio whose name equals the variation or contains it (or
is contained in it). First match wins.

Overlapping names ("TFSA" vs "TFSA-2") make first-match-wins ambiguous. The
"review" policy routes such matches to the review queue instead.
"""

import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from config.pipeline_config import PortfolioAmbiguityPolicy
from ingest.logging_config import get_logger

logger = get_logger(__name__)

ACCOUNT_ALIASES = {
    'TAX-FREE SAVINGS': 'TFSA',
    'TAX FREE SAVINGS': 'TFSA',
    'TAX-FREE SAVINGS ACCOUNT': 'TFSA',
    'REGISTERED RETIREMENT SAVINGS PLAN': 'RRSP',
    'RETIREMENT': 'RRSP',
    'REGISTERED EDUCATION SAVINGS PLAN': 'RESP',
    'FIRST HOME SAVINGS ACCOUNT': 'FHSA',
    'NON-REGISTERED': 'MARGIN',
    'NON REGISTERED': 'MARGIN',
    'PERSONAL': 'MARGIN',
    'INDIVIDUAL': 'MARGIN',
}

# Words that name no particular account; never matched on their own
GENERIC_ACCOUNT_WORDS = {'ACCOUNT', 'ACCT', 'PORTFOLIO', 'PLAN', 'SAVINGS'}


@dataclass
class PortfolioMatch:
    portfolio: Optional[object] = None
    variation: Optional[str] = None
    candidates: list = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.portfolio is not None

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1


def name_variations(portfolio_name: str) -> list[str]:
    """Uppercased variations of an account name, most specific first."""
    normalized = (portfolio_name or '').upper().strip()
    if not normalized:
        return []

    variations = [
        normalized,
        re.sub(r'\s+', '', normalized),
        re.sub(r'\s*ACCOUNT$', '', normalized).strip(),
    ]
    last_word = re.sub(r'^.*\s', '', normalized)
    if last_word not in GENERIC_ACCOUNT_WORDS:
        variations.append(last_word)
    alias = ACCOUNT_ALIASES.get(variations[2]) or ACCOUNT_ALIASES.get(normalized)
    if alias:
        variations.append(alias)

    # Dedupe, keep order, drop empties (an empty string would match everything)
    return [v for v in dict.fromkeys(variations) if v]


def _names_match(portfolio_name: str, variation: str) -> bool:
    name = portfolio_name.upper().strip()
    return name == variation or variation in name or name in variation


class PortfolioMatcher:
    """Match an extracted account name against the user's portfolios."""

    def __init__(self, policy: PortfolioAmbiguityPolicy = PortfolioAmbiguityPolicy.FIRST_MATCH):
        self.policy = policy

    def match(self, portfolio_name: str, portfolios: Sequence) -> PortfolioMatch:
        """
        Args:
            portfolio_name: Name as extracted from the email
            portfolios: Objects with a ``name`` attribute, in first-match order

        Returns:
            PortfolioMatch; ``portfolio`` is None when nothing matched or, under
            the review policy, when the match is ambiguous
        """
        for variation in name_variations(portfolio_name):
            candidates = [p for p in portfolios if p.name and _names_match(p.name, variation)]
            if not candidates:
                continue

            result = PortfolioMatch(candidates[0], variation, candidates)
            if result.ambiguous:
                logger.warning(
                    f"Portfolio name {portfolio_name!r} matches {len(candidates)} portfolios "
                    f"({', '.join(p.name for p in candidates)}) via {variation!r}",
                    extra={"portfolio": candidates[0].name},
                )
                if self.policy == PortfolioAmbiguityPolicy.REVIEW:
                    result.portfolio = None
            return result

        return PortfolioMatch()
