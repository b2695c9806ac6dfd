"""
Mailbox and pipeline configuration.

IMAP credentials and routing knobs are read from the environment (a .env file
in the backend directory is loaded first). The app password may be stored
encrypted with the Fernet key in ENCRYPTION_KEY.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet
from dotenv import load_dotenv

ENV_PATH = Path(__file__).parent.parent / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=False)


class PortfolioAmbiguityPolicy(str, Enum):
    """What to do when more than one portfolio matches an extracted account name"""
    FIRST_MATCH = "first_match"
    REVIEW = "review"


def _get_cipher() -> Optional[Fernet]:
    key = os.getenv("ENCRYPTION_KEY")
    return Fernet(key) if key else None


def encrypt_secret(secret: str) -> str:
    """Encrypt a credential for storage in the environment."""
    cipher = _get_cipher()
    if not cipher:
        raise ValueError("ENCRYPTION_KEY is not set")
    return cipher.encrypt(secret.encode()).decode()


def decrypt_secret(value: str) -> str:
    """Decrypt a stored credential. Plain text is returned as-is when no key is set."""
    cipher = _get_cipher()
    if not cipher:
        return value
    return cipher.decrypt(value.encode()).decode()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


@dataclass
class ImapConfig:
    """IMAP mailbox connection settings"""
    host: str
    username: str
    app_password: str = field(repr=False)
    port: int = 993
    use_tls: bool = True
    mailbox: str = "INBOX"
    processed_folder: str = "Processed"
    rejected_folder: str = "Rejected"
    timeout: int = 30
    fetch_limit: int = 50

    def __post_init__(self):
        self.validate()

    def validate(self):
        if not self.host:
            raise ValueError("IMAP_HOST is required")
        if not self.username:
            raise ValueError("IMAP_USERNAME is required")
        if not self.app_password:
            raise ValueError("IMAP_APP_PASSWORD is required")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid IMAP_PORT: {self.port}")
        if self.timeout <= 0:
            raise ValueError("IMAP_TIMEOUT must be greater than 0")
        if self.fetch_limit <= 0:
            raise ValueError("EMAIL_FETCH_LIMIT must be greater than 0")


@dataclass
class PipelineConfig:
    """Routing thresholds, retry policy and defaults for extracted trades"""
    confidence_threshold: float = 0.7
    max_attempts: int = 3
    retry_backoff_seconds: float = 5.0
    poll_interval_seconds: int = 300
    default_currency: str = "USD"
    option_fee_per_contract: float = 0.75
    ambiguity_policy: PortfolioAmbiguityPolicy = PortfolioAmbiguityPolicy.FIRST_MATCH
    user_id: int = 1

    def __post_init__(self):
        self.validate()

    def validate(self):
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("REVIEW_CONFIDENCE_THRESHOLD must be between 0 and 1")
        if self.max_attempts < 1:
            raise ValueError("EMAIL_MAX_ATTEMPTS must be at least 1")
        if self.retry_backoff_seconds < 0:
            raise ValueError("EMAIL_RETRY_BACKOFF_SECONDS must not be negative")
        if self.option_fee_per_contract < 0:
            raise ValueError("OPTION_FEE_PER_CONTRACT must not be negative")
        if len(self.default_currency) != 3:
            raise ValueError(f"Invalid DEFAULT_CURRENCY: {self.default_currency}")


def load_imap_config() -> ImapConfig:
    """
    Load IMAP settings from environment variables.

    Environment Variables:
    - IMAP_HOST, IMAP_PORT (default: 993), IMAP_USE_TLS (default: true)
    - IMAP_USERNAME, IMAP_APP_PASSWORD (Fernet-encrypted if ENCRYPTION_KEY is set)
    - IMAP_MAILBOX (default: INBOX)
    - IMAP_PROCESSED_FOLDER (default: Processed), IMAP_REJECTED_FOLDER (default: Rejected)
    - IMAP_TIMEOUT: Socket timeout in seconds (default: 30)
    - EMAIL_FETCH_LIMIT: Max messages per poll cycle (default: 50)

    Raises:
        ValueError: If a required setting is missing or invalid
    """
    password = os.getenv("IMAP_APP_PASSWORD", "").strip()
    if password:
        password = decrypt_secret(password)

    return ImapConfig(
        host=os.getenv("IMAP_HOST", "").strip(),
        port=int(os.getenv("IMAP_PORT", "993")),
        use_tls=_env_bool("IMAP_USE_TLS", "true"),
        username=os.getenv("IMAP_USERNAME", "").strip(),
        app_password=password,
        mailbox=os.getenv("IMAP_MAILBOX", "INBOX"),
        processed_folder=os.getenv("IMAP_PROCESSED_FOLDER", "Processed"),
        rejected_folder=os.getenv("IMAP_REJECTED_FOLDER", "Rejected"),
        timeout=int(os.getenv("IMAP_TIMEOUT", "30")),
        fetch_limit=int(os.getenv("EMAIL_FETCH_LIMIT", "50")),
    )


def load_pipeline_config() -> PipelineConfig:
    """
    Load pipeline routing settings from environment variables.

    Environment Variables:
    - REVIEW_CONFIDENCE_THRESHOLD: Minimum confidence for auto-commit (default: 0.7)
    - EMAIL_MAX_ATTEMPTS: Mailbox connection attempts per cycle (default: 3)
    - EMAIL_RETRY_BACKOFF_SECONDS: Base backoff, doubled per attempt (default: 5)
    - EMAIL_POLL_INTERVAL_SECONDS: Beat schedule interval (default: 300)
    - DEFAULT_CURRENCY: Currency when the email names none (default: USD)
    - OPTION_FEE_PER_CONTRACT: Fee assumed for options with no stated fee (default: 0.75)
    - PORTFOLIO_AMBIGUITY_POLICY: first_match|review (default: first_match)
    - PIPELINE_USER_ID: Owner of the portfolios trades are matched against (default: 1)
    """
    policy_str = os.getenv("PORTFOLIO_AMBIGUITY_POLICY", "first_match").strip().lower()
    try:
        policy = PortfolioAmbiguityPolicy(policy_str)
    except ValueError:
        raise ValueError(
            f"Invalid PORTFOLIO_AMBIGUITY_POLICY: {policy_str}. "
            f"Must be one of: {', '.join([p.value for p in PortfolioAmbiguityPolicy])}"
        )

    return PipelineConfig(
        confidence_threshold=float(os.getenv("REVIEW_CONFIDENCE_THRESHOLD", "0.7")),
        max_attempts=int(os.getenv("EMAIL_MAX_ATTEMPTS", "3")),
        retry_backoff_seconds=float(os.getenv("EMAIL_RETRY_BACKOFF_SECONDS", "5")),
        poll_interval_seconds=int(os.getenv("EMAIL_POLL_INTERVAL_SECONDS", "300")),
        default_currency=os.getenv("DEFAULT_CURRENCY", "USD").strip().upper(),
        option_fee_per_contract=float(os.getenv("OPTION_FEE_PER_CONTRACT", "0.75")),
        ambiguity_policy=policy,
        user_id=int(os.getenv("PIPELINE_USER_ID", "1")),
    )
