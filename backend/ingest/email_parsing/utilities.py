"""
Email Parser Utilities

Common helpers for parsing trade confirmation emails.
Includes:
- HTML to text conversion
- Date and number normalization
- Hash computation for content-level deduplication
"""

import hashlib
import re
from datetime import datetime
from typing import Optional

from bs4 import BeautifulSoup

MONTH_MAP = {
    'jan': 1, 'january': 1,
    'feb': 2, 'february': 2,
    'mar': 3, 'march': 3,
    'apr': 4, 'april': 4,
    'may': 5,
    'jun': 6, 'june': 6,
    'jul': 7, 'july': 7,
    'aug': 8, 'august': 8,
    'sep': 9, 'sept': 9, 'september': 9,
    'oct': 10, 'october': 10,
    'nov': 11, 'november': 11,
    'dec': 12, 'december': 12,
}

# Brokerage confirmations are North American: month-first wins over day-first
DATE_FORMATS = [
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M:%SZ',
    '%Y-%m-%d',
    '%Y/%m/%d',
    '%m/%d/%Y',
    '%m-%d-%Y',
    '%d/%m/%Y',
    '%m/%d/%y',
    '%B %d, %Y',
    '%b %d, %Y',
    '%B %d %Y',
    '%b %d %Y',
    '%d %B %Y',
    '%d %b %Y',
]

ISO_DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def compute_email_hash(subject: str, from_address: str, body: str) -> str:
    """
    Compute content hash for an email.

    Two messages with different Message-IDs but the same hash are the same
    confirmation delivered twice (forward, resend).

    Returns:
        SHA256 hash string
    """
    components = [
        (subject or '').strip().lower(),
        (from_address or '').strip().lower(),
        re.sub(r'\s+', ' ', body or '').strip(),
    ]
    hash_input = '|'.join(components)
    return hashlib.sha256(hash_input.encode()).hexdigest()


def html_to_text(html: str) -> str:
    """
    Convert HTML to plain text, keeping one block element per line.

    Args:
        html: HTML content

    Returns:
        Plain text content
    """
    if not html:
        return ''

    try:
        soup = BeautifulSoup(html, 'lxml')
    except Exception:
        soup = BeautifulSoup(html, 'html.parser')

    for element in soup(['script', 'style', 'head', 'meta', 'noscript']):
        element.decompose()

    text = soup.get_text(separator='\n')
    lines = [re.sub(r'[ \t\xa0]+', ' ', line).strip() for line in text.splitlines()]

    return '\n'.join(line for line in lines if line)


def parse_date_string(date_str: str) -> Optional[str]:
    """
    Parse various date string formats to YYYY-MM-DD.

    Args:
        date_str: Date as written in the email ("June 21, 2025", "06/21/2025", ...)

    Returns:
        Date string in YYYY-MM-DD format or None
    """
    if not date_str:
        return None

    cleaned = re.sub(r'(\d)(st|nd|rd|th)\b', r'\1', date_str.strip())
    cleaned = re.sub(r'\s+', ' ', cleaned).rstrip('.')
    # "Jun. 21, 2025" / "Sept 5, 2025"
    cleaned = re.sub(r'^([A-Za-z]{3,9})\.', r'\1', cleaned)
    cleaned = re.sub(r'^(?i:sept)\b', 'Sep', cleaned)

    if ISO_DATE_RE.match(cleaned[:10]) and (len(cleaned) == 10 or cleaned[10] in 'T '):
        try:
            return datetime.strptime(cleaned[:10], '%Y-%m-%d').strftime('%Y-%m-%d')
        except ValueError:
            return None

    for fmt in DATE_FORMATS:
        try:
            dt = datetime.strptime(cleaned, fmt)
            return dt.strftime('%Y-%m-%d')
        except ValueError:
            continue

    return None


def parse_number(value) -> Optional[float]:
    """
    Parse "1,234.50", "$166.67" or "CA$ 12" to a float.

    Returns:
        Float value or None if the string holds no number
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)

    cleaned = re.sub(r'[^\d.\-]', '', str(value))
    if not cleaned or cleaned in ('.', '-'):
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def normalize_symbol(symbol: str) -> Optional[str]:
    """Uppercase and trim a ticker; empty strings become None."""
    if not symbol:
        return None
    normalized = symbol.strip().upper()
    return normalized or None
