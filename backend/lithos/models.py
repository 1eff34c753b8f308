# backend/lithos/models.py
import enum
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, ForeignKey, Enum, Numeric, UniqueConstraint, Boolean, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# Enums help enforce data integrity at the database level
class TransactionType(str, enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    DEBT_PAYMENT = "debt_payment"
    INVESTING = "investing"


class AccountType(str, enum.Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    INVESTMENT = "investment"


class DebtType(str, enum.Enum):
    CREDIT_CARD = "credit_card"
    LOAN = "loan"


class MinPaymentType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class Frequency(str, enum.Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class UserProfile(Base):
    """
    Per-user preferences.

    The id is the identity provider's user id; every user-owned table
    stores it in its own user_id column.
    """
    __tablename__ = "user_profiles"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    username: Mapped[str] = mapped_column(String, default="")
    currency: Mapped[str] = mapped_column(String(3), default="GBP")  # Display currency
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class Account(Base):
    """
    A checking, savings or investment account.

    Balances are never stored. Checking/savings balances are derived from
    starting_value plus the account's non-investing transactions; investment
    balances are derived from the valued holdings of the account.
    """
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    type: Mapped[AccountType] = mapped_column(Enum(AccountType), index=True)
    currency: Mapped[str] = mapped_column(String(3), default="GBP")
    institution: Mapped[str | None] = mapped_column(String, nullable=True)
    color: Mapped[str | None] = mapped_column(String, nullable=True)
    starting_value: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"))
    interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 3), nullable=True)
    symbol: Mapped[str | None] = mapped_column(String, nullable=True)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)
    opened_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    closed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="account",
        foreign_keys="Transaction.account_id",
    )


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        # "Get all transactions for user X up to date Y" (history replay)
        Index('ix_transaction_user_date', 'user_id', 'date'),
        # "Get all investing rows for symbol S" (gap detection)
        Index('ix_transaction_user_symbol_date', 'user_id', 'symbol', 'date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    # Nullable: debt payments are not always attached to an account
    account_id: Mapped[int | None] = mapped_column(ForeignKey("accounts.id"), nullable=True, index=True)
    account_to_id: Mapped[int | None] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    debt_id: Mapped[int | None] = mapped_column(ForeignKey("debts.id"), nullable=True)
    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType))
    date: Mapped[datetime] = mapped_column(DateTime, index=True)
    description: Mapped[str] = mapped_column(String, default="")
    category: Mapped[str] = mapped_column(String, default="")

    # Signed cash effect on the account
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2))

    # Investment specifics. Quantity is signed (negative = disposal)
    # Numeric(18, 8) supports fractional shares and crypto
    symbol: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)  # Native currency of the instrument

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    account: Mapped["Account | None"] = relationship(back_populates="transactions", foreign_keys=[account_id])


class Debt(Base):
    """
    A liability. Only its current starting_value takes part in net worth.
    """
    __tablename__ = "debts"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    type: Mapped[DebtType] = mapped_column(Enum(DebtType))
    credit_limit: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"))
    apr: Mapped[Decimal] = mapped_column(Numeric(6, 3), default=Decimal("0"))
    min_payment_type: Mapped[MinPaymentType] = mapped_column(Enum(MinPaymentType), default=MinPaymentType.FIXED)
    min_payment_value: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"))
    starting_value: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"))
    promo_apr: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), nullable=True)
    promo_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class Bill(Base):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2))
    due_date: Mapped[date] = mapped_column(Date)
    is_paid: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_pay: Mapped[bool] = mapped_column(Boolean, default=False)
    category: Mapped[str] = mapped_column(String, default="")
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    frequency: Mapped[Frequency | None] = mapped_column(Enum(Frequency), nullable=True)
    recurring_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class PriceHistoryCache(Base):
    """
    Shared cache of daily closes, one row per (symbol, date).

    Rows are upserted by the backfill service. A missing row means the day
    has not been fetched yet (or was a non-trading day), never a zero price.
    """
    __tablename__ = "price_history_cache"
    __table_args__ = (
        UniqueConstraint('symbol', 'date', name='uq_price_history_symbol_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    symbol: Mapped[str] = mapped_column(String, index=True)
    date: Mapped[date] = mapped_column(Date, index=True)  # Daily data - no time component
    close: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    open: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )


class UserPriceHistory(Base):
    """
    Manually imported prices for instruments the market-data source
    does not cover (pension funds, private instruments).

    Isolated per user. For the same date these rows take precedence over
    the shared price_history_cache.
    """
    __tablename__ = "user_price_history"
    __table_args__ = (
        UniqueConstraint('user_id', 'symbol', 'date', name='uq_user_price_history_user_symbol_date'),
        Index('ix_user_price_history_user_symbol_date', 'user_id', 'symbol', 'date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String)
    symbol: Mapped[str] = mapped_column(String)
    date: Mapped[date] = mapped_column(Date)
    close: Mapped[Decimal] = mapped_column(Numeric(18, 6))
    open: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )


class ExchangeRate(Base):
    """
    Latest exchange rate per currency pair (one row per pair).

    Convention: rate represents "1 from_currency = X to_currency"
    Example: from=GBP, to=USD, rate=1.27 means 1 GBP = 1.27 USD

    Data is fetched from Yahoo Finance using symbols like "GBP=X"
    """
    __tablename__ = "exchange_rates"
    __table_args__ = (
        UniqueConstraint('from_currency', 'to_currency', name='uq_exchange_rate_pair'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    from_currency: Mapped[str] = mapped_column(String(3))
    to_currency: Mapped[str] = mapped_column(String(3))
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
