"""Tests for the persistence gate: idempotent transaction writes."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FakeMailbox, make_candidate
from database import emails as email_db
from database import portfolios as portfolio_db
from database.models import Asset, Transaction
from ingest.errors import PersistenceError
from ingest.persistence_gate import PersistenceGate
from ingest.types import GateStatus

MESSAGE_ID = "<msg-1@broker.example>"


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def gate(session_factory, portfolios, mailbox, pipeline_config):
    return PersistenceGate(session_factory, archiver=mailbox, config=pipeline_config)


def test_commit_records_transaction(gate, db_session, portfolios, mailbox):
    result = gate.commit(make_candidate(), MESSAGE_ID)

    assert result.status == GateStatus.COMMITTED
    assert result.portfolio_id == portfolios["TFSA"]
    assert result.archived

    transaction = db_session.get(Transaction, result.transaction_id)
    assert transaction.source_message_id == MESSAGE_ID
    assert transaction.transaction_type == "buy"
    assert transaction.quantity == Decimal("15")
    assert transaction.price == Decimal("166.67")
    assert transaction.total_amount == Decimal("2500.00")
    assert transaction.transaction_date == date(2025, 6, 20)

    processed = email_db.get_processed_email(db_session, MESSAGE_ID)
    assert processed.processing_result == "approved"
    assert processed.transaction_id == transaction.id
    assert mailbox.archived == [(MESSAGE_ID, "approved")]


def test_commit_is_idempotent_per_message_id(gate, db_session, mailbox):
    first = gate.commit(make_candidate(), MESSAGE_ID)
    second = gate.commit(make_candidate(), MESSAGE_ID)

    assert second.status == GateStatus.DUPLICATE
    assert second.transaction_id == first.transaction_id
    assert portfolio_db.count_transactions_for_source(db_session, MESSAGE_ID) == 1
    # Archived again in case the first move was lost
    assert mailbox.archived == [(MESSAGE_ID, "approved"), (MESSAGE_ID, "approved")]


def test_asset_is_created_once(gate, db_session):
    gate.commit(make_candidate(quantity=10, total_amount=None), "<msg-1@broker.example>")
    gate.commit(make_candidate(quantity=20, total_amount=None), "<msg-2@broker.example>")

    assets = db_session.query(Asset).filter(Asset.symbol == "AAPL").all()
    assert len(assets) == 1
    assert db_session.query(Transaction).count() == 2


def test_total_defaults_to_quantity_times_price_plus_fees(gate, db_session):
    result = gate.commit(make_candidate(total_amount=None, fees=4.95), MESSAGE_ID)

    transaction = db_session.get(Transaction, result.transaction_id)
    assert transaction.total_amount == Decimal("2505.00")


def test_option_symbol_creates_option_asset(gate, db_session):
    result = gate.commit(
        make_candidate(symbol="AAPL250621C00200000", asset_type="stock", quantity=2, price=3.5),
        MESSAGE_ID,
    )

    asset = db_session.get(Asset, result.asset_id)
    assert asset.asset_type == "option"
    assert asset.name == "AAPL 2025-06-21 200.00 Call"


def test_option_without_contract_symbol_needs_review(gate, db_session):
    result = gate.commit(make_candidate(asset_type="option", quantity=2, price=3.5), MESSAGE_ID)

    assert result.status == GateStatus.NEEDS_REVIEW
    assert result.reason == "Option contract without expiry/strike"
    assert db_session.query(Transaction).count() == 0
    # No option asset under the bare ticker
    assert portfolio_db.get_asset_by_symbol(db_session, "AAPL") is None


def test_missing_portfolio_needs_review(gate, db_session, mailbox):
    result = gate.commit(make_candidate(portfolio_name=None), MESSAGE_ID)

    assert result.status == GateStatus.NEEDS_REVIEW
    assert result.reason == "No portfolio named in email"
    assert db_session.query(Transaction).count() == 0
    # The asset is still recorded
    assert portfolio_db.get_asset_by_symbol(db_session, "AAPL") is not None
    assert mailbox.archived == []


def test_unknown_portfolio_needs_review(gate):
    result = gate.commit(make_candidate(portfolio_name="Crypto Wallet"), MESSAGE_ID)

    assert result.status == GateStatus.NEEDS_REVIEW
    assert result.reason == "Portfolio 'Crypto Wallet' not found"


def test_explicit_portfolio_id(gate, portfolios):
    result = gate.commit(make_candidate(portfolio_name=None), MESSAGE_ID, portfolio_id=portfolios["RRSP"])

    assert result.status == GateStatus.COMMITTED
    assert result.portfolio_id == portfolios["RRSP"]


def test_missing_fields_need_review(gate):
    result = gate.commit(make_candidate(price=None), MESSAGE_ID)

    assert result.status == GateStatus.NEEDS_REVIEW
    assert result.reason == "Missing required fields: price"


def test_invalid_date_needs_review(gate):
    result = gate.commit(make_candidate(transaction_date="20/06/2025"), MESSAGE_ID)

    assert result.status == GateStatus.NEEDS_REVIEW
    assert "Invalid transaction date" in result.reason


def test_same_trade_from_another_email_needs_review(gate, db_session):
    first = gate.commit(make_candidate(), "<msg-1@broker.example>")
    second = gate.commit(make_candidate(), "<fwd-1@broker.example>")

    assert second.status == GateStatus.NEEDS_REVIEW
    assert second.reason == f"Possible duplicate of transaction {first.transaction_id}"
    assert db_session.query(Transaction).count() == 1


def test_similarity_check_can_be_skipped(gate, db_session):
    gate.commit(make_candidate(), "<msg-1@broker.example>")
    result = gate.commit(make_candidate(), "<msg-2@broker.example>", skip_similarity=True)

    assert result.status == GateStatus.COMMITTED
    assert db_session.query(Transaction).count() == 2


def test_archive_failure_does_not_undo_commit(session_factory, portfolios, db_session, pipeline_config):
    mailbox = FakeMailbox(archive_result=RuntimeError("IMAP connection reset"))
    gate = PersistenceGate(session_factory, archiver=mailbox, config=pipeline_config)

    result = gate.commit(make_candidate(), MESSAGE_ID)

    assert result.status == GateStatus.COMMITTED
    assert not result.archived
    assert portfolio_db.get_transaction_by_source(db_session, MESSAGE_ID) is not None


def test_archive_refused_is_reported(session_factory, portfolios, pipeline_config):
    gate = PersistenceGate(session_factory, archiver=FakeMailbox(archive_result=False), config=pipeline_config)

    result = gate.commit(make_candidate(), MESSAGE_ID)

    assert result.status == GateStatus.COMMITTED
    assert not result.archived


def test_database_error_raises_persistence_error(gate, db_session, mailbox, monkeypatch):
    def fail_insert(*args, **kwargs):
        raise OperationalError("INSERT INTO transactions", {}, Exception("disk I/O error"))

    monkeypatch.setattr(portfolio_db, "insert_transaction", fail_insert)

    with pytest.raises(PersistenceError):
        gate.commit(make_candidate(), MESSAGE_ID)

    assert db_session.query(Transaction).count() == 0
    assert email_db.get_processed_email(db_session, MESSAGE_ID) is None
    assert mailbox.archived == []


def test_get_or_create_asset_is_idempotent(db_session):
    first = portfolio_db.get_or_create_asset(db_session, "nvda")
    second = portfolio_db.get_or_create_asset(db_session, " NVDA ")

    assert first.id == second.id
    assert first.symbol == "NVDA"


def test_get_or_create_asset_rejects_blank_symbol(db_session):
    with pytest.raises(ValueError):
        portfolio_db.get_or_create_asset(db_session, "   ")
