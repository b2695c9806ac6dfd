"""
Portfolio Ledger - Database Operations

Portfolio lookup, asset get-or-create and transaction queries/inserts.
Every function takes the caller's session and never commits; the caller owns
the transaction boundary.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models.portfolio import Asset, Portfolio, Transaction


def list_portfolios(session: Session, user_id: int) -> list[Portfolio]:
    """All portfolios for a user in creation order (first-match order)."""
    return (
        session.query(Portfolio)
        .filter(Portfolio.user_id == user_id)
        .order_by(Portfolio.id)
        .all()
    )


def get_portfolio(session: Session, portfolio_id: int) -> Portfolio | None:
    return session.get(Portfolio, portfolio_id)


def create_portfolio(
    session: Session, user_id: int, name: str, currency: str = "USD", description: str = None
) -> Portfolio:
    portfolio = Portfolio(user_id=user_id, name=name, currency=currency, description=description)
    session.add(portfolio)
    session.flush()
    return portfolio


def get_asset_by_symbol(session: Session, symbol: str) -> Asset | None:
    return session.query(Asset).filter(Asset.symbol == symbol.strip().upper()).first()


def get_or_create_asset(
    session: Session,
    symbol: str,
    asset_type: str = "stock",
    currency: str = "USD",
    name: str = None,
) -> Asset:
    """
    Look up an asset by normalized symbol, inserting it if missing.

    A concurrent insert of the same symbol surfaces as an IntegrityError inside
    the savepoint; the existing row is re-read instead.
    """
    normalized = symbol.strip().upper()
    if not normalized:
        raise ValueError("Asset symbol must not be empty")

    asset = get_asset_by_symbol(session, normalized)
    if asset:
        return asset

    try:
        with session.begin_nested():
            asset = Asset(
                symbol=normalized,
                name=name or normalized,
                asset_type=asset_type,
                currency=currency,
            )
            session.add(asset)
            session.flush()
        return asset
    except IntegrityError:
        existing = get_asset_by_symbol(session, normalized)
        if existing is None:
            raise
        return existing


def get_transaction_by_source(session: Session, message_id: str) -> Transaction | None:
    return (
        session.query(Transaction)
        .filter(Transaction.source_message_id == message_id)
        .first()
    )


def find_similar_transaction(
    session: Session,
    portfolio_id: int,
    asset_id: int,
    transaction_type: str,
    quantity: Decimal,
    price: Decimal,
    transaction_date: date,
    exclude_message_id: str = None,
) -> Transaction | None:
    """Same trade recorded from a different email (forwarded copy, resend)."""
    query = session.query(Transaction).filter(
        Transaction.portfolio_id == portfolio_id,
        Transaction.asset_id == asset_id,
        Transaction.transaction_type == transaction_type,
        Transaction.quantity == quantity,
        Transaction.price == price,
        Transaction.transaction_date == transaction_date,
    )
    if exclude_message_id:
        query = query.filter(
            (Transaction.source_message_id.is_(None))
            | (Transaction.source_message_id != exclude_message_id)
        )
    return query.first()


def insert_transaction(
    session: Session,
    portfolio_id: int,
    asset_id: int,
    transaction_type: str,
    quantity: Decimal,
    price: Decimal,
    transaction_date: date,
    fees: Decimal = Decimal("0"),
    total_amount: Decimal = None,
    currency: str = "USD",
    notes: str = None,
    source_message_id: str = None,
) -> Transaction:
    transaction = Transaction(
        portfolio_id=portfolio_id,
        asset_id=asset_id,
        transaction_type=transaction_type,
        quantity=quantity,
        price=price,
        fees=fees,
        total_amount=total_amount,
        currency=currency,
        transaction_date=transaction_date,
        notes=notes,
        source_message_id=source_message_id,
    )
    session.add(transaction)
    session.flush()
    return transaction


def count_transactions_for_source(session: Session, message_id: str) -> int:
    return (
        session.query(Transaction)
        .filter(Transaction.source_message_id == message_id)
        .count()
    )
