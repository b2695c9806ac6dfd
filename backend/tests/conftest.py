"""Core test fixtures.

Provides an in-memory database per test, seeded portfolios, and fakes for the
LLM provider, the mailbox and the imaplib connection.

Tests never touch a real mailbox, model API or PostgreSQL server.
"""

import os

# CRITICAL: Set test mode BEFORE importing application modules
os.environ["TESTING"] = "true"
os.environ["LOG_DIR"] = ""

import imaplib
from datetime import UTC, datetime
from email.message import EmailMessage

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool

from config.pipeline_config import ImapConfig, PipelineConfig
from database import portfolios as portfolio_db
from database.base import create_session_factory, init_db
from ingest.errors import MailboxConnectionError
from ingest.llm_providers.base_provider import BaseLLMProvider, LLMResponse
from ingest.types import ExtractedTransactionCandidate, IncomingMessage

# Keep developer shell settings from leaking into tests
for _var in (
    "LLM_PROVIDER",
    "LLM_MODEL",
    "LLM_API_KEY",
    "SYMBOL_RESOLVER_MODE",
    "ENCRYPTION_KEY",
    "REVIEW_CONFIDENCE_THRESHOLD",
    "PORTFOLIO_AMBIGUITY_POLICY",
    "DATABASE_URL",
    "IMAP_HOST",
    "IMAP_USERNAME",
    "IMAP_APP_PASSWORD",
):
    os.environ.pop(_var, None)


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created.

    pysqlite's own transaction handling breaks SAVEPOINT; the driver is put
    in autocommit mode and SQLAlchemy emits BEGIN itself.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def portfolios(session_factory):
    """TFSA, RRSP and Margin portfolios for user 1, in that (first-match) order."""
    session = session_factory()
    try:
        created = [
            portfolio_db.create_portfolio(session, 1, "TFSA"),
            portfolio_db.create_portfolio(session, 1, "RRSP"),
            portfolio_db.create_portfolio(session, 1, "Margin"),
        ]
        session.commit()
        return {p.name: p.id for p in created}
    finally:
        session.close()


@pytest.fixture
def pipeline_config():
    return PipelineConfig(retry_backoff_seconds=0)


# ============================================================================
# LLM FAKES
# ============================================================================


class FakeProvider(BaseLLMProvider):
    """Returns queued responses in order; an Exception instance is raised instead."""

    def __init__(self, responses=None, model="fake-model"):
        super().__init__(api_key="test-key", model=model)
        self.responses = list(responses or [])
        self.prompts = []

    def complete(self, prompt, system_prompt=None):
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("FakeProvider has no queued responses")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return LLMResponse(content=response, input_tokens=10, output_tokens=5, total_tokens=15)


@pytest.fixture
def fake_provider():
    return FakeProvider()


# ============================================================================
# MAILBOX FAKES
# ============================================================================


def make_message(
    uid=1,
    body="",
    subject="Trade confirmation",
    message_id=None,
    html_body="",
    received_at=None,
    from_address="confirmations@broker.example",
):
    return IncomingMessage(
        uid=uid,
        message_id=message_id or f"<msg-{uid}@broker.example>",
        subject=subject,
        from_address=from_address,
        received_at=received_at or datetime(2025, 6, 20, 14, 30, tzinfo=UTC),
        text_body=body,
        html_body=html_body,
    )


class FakeMailbox:
    """In-memory stand-in for ImapClient."""

    def __init__(self, messages=None, connect_failures=0, archive_result=True):
        self.messages = list(messages or [])
        self.connect_failures = connect_failures
        self.archive_result = archive_result
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.archived = []

    def connect(self):
        self.connect_calls += 1
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise MailboxConnectionError("connection refused")

    def disconnect(self):
        self.disconnect_calls += 1

    def fetch_pending(self, since_cursor=0):
        for message in sorted(self.messages, key=lambda m: m.uid):
            if message.uid > since_cursor:
                yield message

    def archive(self, message_id, outcome):
        if isinstance(self.archive_result, Exception):
            raise self.archive_result
        self.archived.append((message_id, outcome))
        return self.archive_result


@pytest.fixture
def fake_mailbox():
    return FakeMailbox()


def build_raw_email(
    subject="Trade confirmation",
    body="Bought 15 shares of AAPL at $166.67",
    message_id="<raw-1@broker.example>",
    sender="Broker Confirmations <confirmations@broker.example>",
    date="Fri, 20 Jun 2025 14:30:00 +0000",
    html=None,
) -> bytes:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = "me@example.com"
    if message_id:
        msg["Message-ID"] = message_id
    if date:
        msg["Date"] = date
    if body is not None:
        msg.set_content(body)
        if html:
            msg.add_alternative(html, subtype="html")
    elif html:
        msg.set_content(html, subtype="html")
    return msg.as_bytes()


class FakeIMAP:
    """Minimal imaplib.IMAP4 double: UID SEARCH/FETCH/STORE/MOVE/COPY plus folders."""

    def __init__(self, host=None, port=None, timeout=None, supports_move=True, login_error=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.supports_move = supports_move
        self.login_error = login_error
        self.messages = {}  # uid -> raw bytes
        self.seen = set()
        self.deleted = set()
        self.folders = {"INBOX": {}}
        self.commands = []
        self.logged_out = False

    def add(self, uid, raw, seen=False):
        self.messages[uid] = raw
        if seen:
            self.seen.add(uid)

    # --- connection ---
    def login(self, username, password):
        if self.login_error:
            raise imaplib.IMAP4.error(self.login_error)
        return "OK", [b"LOGIN completed"]

    def select(self, mailbox, readonly=False):
        return "OK", [str(len(self.messages)).encode()]

    def close(self):
        return "OK", [b""]

    def logout(self):
        self.logged_out = True
        return "BYE", [b""]

    # --- folders ---
    def list(self, directory='""', pattern="*"):
        name = pattern.strip('"')
        if name in self.folders:
            return "OK", [f'(\\HasNoChildren) "/" "{name}"'.encode()]
        return "OK", [None]

    def create(self, mailbox):
        self.folders[mailbox.strip('"')] = {}
        return "OK", [b"CREATE completed"]

    def expunge(self):
        for uid in list(self.deleted):
            self.messages.pop(uid, None)
        self.deleted.clear()
        return "OK", [b""]

    # --- UID commands ---
    def uid(self, command, *args):
        self.commands.append((command, args))
        command = command.upper()

        if command == "SEARCH":
            criteria = args[1:]
            if criteria[0] == "HEADER":
                wanted = criteria[2].strip('"')
                hits = [
                    str(uid)
                    for uid, raw in sorted(self.messages.items())
                    if f"Message-ID: {wanted}".encode() in raw
                ]
                return "OK", [" ".join(hits).encode()]
            if criteria[0] == "UNSEEN":
                lower = int(criteria[2].split(":")[0])
                hits = [uid for uid in sorted(self.messages) if uid not in self.seen]
                # Like real servers, "N:*" still matches the newest UID
                in_range = [uid for uid in hits if uid >= lower]
                if not in_range and hits:
                    in_range = [hits[-1]]
                return "OK", [" ".join(str(uid) for uid in in_range).encode()]

        if command == "FETCH":
            uid = int(args[0])
            if uid not in self.messages:
                return "OK", [None]
            return "OK", [(f"{uid} (UID {uid} BODY[] {{{len(self.messages[uid])}}}".encode(), self.messages[uid]), b")"]

        if command == "STORE":
            uid = int(args[0])
            if "Deleted" in args[2]:
                self.deleted.add(uid)
            if "Seen" in args[2]:
                self.seen.add(uid)
            return "OK", [b""]

        if command == "MOVE":
            if not self.supports_move:
                raise imaplib.IMAP4.error("UID command error: BAD [b'Unknown command MOVE']")
            uid = int(args[0])
            self.folders[args[1].strip('"')][uid] = self.messages.pop(uid)
            return "OK", [b""]

        if command == "COPY":
            uid = int(args[0])
            self.folders[args[1].strip('"')][uid] = self.messages[uid]
            return "OK", [b""]

        return "NO", [f"unsupported {command}".encode()]


@pytest.fixture
def imap_config():
    return ImapConfig(
        host="imap.example.com",
        username="trades@example.com",
        app_password="app-password",
        fetch_limit=10,
    )


# ============================================================================
# CANDIDATES
# ============================================================================


def make_candidate(**overrides):
    """A complete, high-confidence AAPL buy in the TFSA unless overridden."""
    values = {
        "portfolio_name": "TFSA",
        "symbol": "AAPL",
        "asset_type": "stock",
        "transaction_type": "buy",
        "quantity": 15,
        "price": 166.67,
        "total_amount": 2500.0,
        "fees": 0.0,
        "currency": "USD",
        "transaction_date": "2025-06-20",
        "confidence": 1.0,
        "parsing_type": "trading",
        "extraction_method": "heuristic",
    }
    values.update(overrides)
    return ExtractedTransactionCandidate(**values)
