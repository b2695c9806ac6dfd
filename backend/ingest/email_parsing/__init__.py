"""
Trade Confirmation Parser Package

Architecture:
- utilities: HTML to text, date and number normalization, content hashing
- extraction_rules: Declarative regex rules, one list per field
- pattern_extraction: Rule-based (heuristic) extraction
- llm_extraction: LLM-powered fallback extraction
- orchestrator: Poll cycle and per-email routing

Public API:
- EmailPipeline(...).run_cycle(since_cursor) - Process all pending emails
- extract_with_patterns(subject, body, received_at) - Heuristic extraction only
- AIExtractor(provider).extract(subject, body) - LLM extraction only
"""

from .llm_extraction import AIExtractor, parse_llm_response
from .orchestrator import EmailPipeline
from .pattern_extraction import extract_with_patterns
from .utilities import compute_email_hash, html_to_text, parse_date_string

__all__ = [
    "EmailPipeline",
    "AIExtractor",
    "parse_llm_response",
    "extract_with_patterns",
    "compute_email_hash",
    "html_to_text",
    "parse_date_string",
]
