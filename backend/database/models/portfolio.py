"""
Portfolio ledger models.

Maps to:
- portfolios table
- assets table
- transactions table
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func

from database.base import Base


class Portfolio(Base):
    """Named brokerage account owned by a user (e.g. TFSA, RRSP, Margin)."""

    __tablename__ = "portfolios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, default=1)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    currency = Column(String(3), nullable=False, default="USD", server_default="USD")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_portfolios_user_name"),
    )

    def __repr__(self) -> str:
        return f"<Portfolio(id={self.id}, name={self.name})>"


class Asset(Base):
    """Tradeable instrument, unique by normalized symbol."""

    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(32), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    asset_type = Column(String(10), nullable=False, default="stock")
    currency = Column(String(3), nullable=False, default="USD", server_default="USD")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("asset_type IN ('stock', 'option')", name="ck_assets_type"),
    )

    def __repr__(self) -> str:
        return f"<Asset(id={self.id}, symbol={self.symbol}, type={self.asset_type})>"


class Transaction(Base):
    """Committed trade. Only the persistence gate inserts these."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    portfolio_id = Column(
        Integer, ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False
    )
    asset_id = Column(Integer, ForeignKey("assets.id"), nullable=False)
    transaction_type = Column(String(4), nullable=False)
    quantity = Column(Numeric(18, 6), nullable=False)
    price = Column(Numeric(18, 6), nullable=False)
    fees = Column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    total_amount = Column(Numeric(18, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD", server_default="USD")
    transaction_date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    source_message_id = Column(String(255), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("transaction_type IN ('buy', 'sell')", name="ck_transactions_type"),
        CheckConstraint("quantity > 0", name="ck_transactions_quantity"),
        CheckConstraint("price > 0", name="ck_transactions_price"),
        CheckConstraint("fees >= 0", name="ck_transactions_fees"),
        Index("idx_transactions_portfolio_date", "portfolio_id", "transaction_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, type={self.transaction_type}, "
            f"asset_id={self.asset_id}, qty={self.quantity})>"
        )
