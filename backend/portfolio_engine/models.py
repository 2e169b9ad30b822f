# backend/portfolio_engine/models.py
import enum
import datetime as dt
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, ForeignKey, Enum, Numeric, UniqueConstraint, Boolean, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# Enums help enforce data integrity at the database level
class TransactionType(str, enum.Enum):
    BUY = "BUY"
    SELL = "SELL"
    DIVIDEND = "DIVIDEND"  # Reinvestment purchase created for a dividend
    FEE = "FEE"  # Amount is carried in cost_per_share


class DividendType(str, enum.Enum):
    NONE = "NONE"
    CASH = "CASH"
    STOCK = "STOCK"


class ReinvestmentStatus(str, enum.Enum):
    """
    Reinvestment state of a dividend.

    State transitions:
        PENDING → COMPLETED (reinvested amount matches the dividend)
        PENDING → PARTIAL (reinvested amount differs from the dividend)
    """
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"


class Portfolio(Base):
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String)
    description: Mapped[str | None] = mapped_column(String, nullable=True, default=None)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")  # Reporting currency
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    # Archived / excluded portfolios are hidden from overviews but still valuated on request
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False)
    exclude_from_overview: Mapped[bool] = mapped_column(Boolean, default=False)

    portfolio_funds: Mapped[list["PortfolioFund"]] = relationship(
        back_populates="portfolio",
        cascade="all, delete-orphan"
    )


class Fund(Base):
    """
    Global table of funds shared by all portfolios.

    A fund is priced in its native currency; valuation converts to the
    portfolio's reporting currency.
    """
    __tablename__ = "funds"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String)
    isin: Mapped[str | None] = mapped_column(String, index=True, nullable=True, default=None)
    symbol: Mapped[str | None] = mapped_column(String, nullable=True, default=None)
    currency: Mapped[str] = mapped_column(String(3), default="EUR")  # Critical for valuation
    exchange: Mapped[str | None] = mapped_column(String, nullable=True, default=None)
    dividend_type: Mapped[DividendType] = mapped_column(Enum(DividendType), default=DividendType.NONE)

    prices: Mapped[list["FundPrice"]] = relationship(back_populates="fund")
    portfolio_funds: Mapped[list["PortfolioFund"]] = relationship(back_populates="fund")


class PortfolioFund(Base):
    """
    Link between a portfolio and a fund.

    The pair is the unit of lot tracking: lots never cross portfolios.
    """
    __tablename__ = "portfolio_funds"
    __table_args__ = (
        UniqueConstraint('portfolio_id', 'fund_id', name='uq_portfolio_fund'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    fund_id: Mapped[int] = mapped_column(ForeignKey("funds.id"), index=True)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="portfolio_funds")
    fund: Mapped["Fund"] = relationship(back_populates="portfolio_funds")
    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="portfolio_fund",
        cascade="all, delete-orphan"
    )
    dividends: Mapped[list["Dividend"]] = relationship(
        back_populates="portfolio_fund",
        cascade="all, delete-orphan"
    )


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        # Lot tracking reads a fund's history in (date, id) order
        Index('ix_transaction_portfolio_fund_date', 'portfolio_fund_id', 'date', 'id'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_fund_id: Mapped[int] = mapped_column(ForeignKey("portfolio_funds.id"), index=True)
    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))  # When it was recorded
    date: Mapped[dt.date] = mapped_column(Date, index=True)

    # Numeric(18, 8) supports values up to 9,999,999,999.99999999
    shares: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    cost_per_share: Mapped[Decimal] = mapped_column(Numeric(18, 8))

    portfolio_fund: Mapped["PortfolioFund"] = relationship(back_populates="transactions")


class Dividend(Base):
    """
    Dividend declared for a portfolio fund.

    Cash dividends only contribute to dividend totals. When reinvestment
    fields are present the dividend opens a lot at buy_order_date, unless
    the reinvestment was already recorded as a DIVIDEND transaction
    (reinvestment_transaction_id is set).
    """
    __tablename__ = "dividends"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_fund_id: Mapped[int] = mapped_column(ForeignKey("portfolio_funds.id"), index=True)
    record_date: Mapped[dt.date] = mapped_column(Date)
    ex_dividend_date: Mapped[dt.date] = mapped_column(Date, index=True)
    shares_owned: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal(0))
    dividend_per_share: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 8), default=Decimal(0))
    reinvestment_status: Mapped[ReinvestmentStatus] = mapped_column(
        Enum(ReinvestmentStatus), default=ReinvestmentStatus.PENDING
    )

    # Reinvestment (all optional)
    buy_order_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True, default=None)
    reinvestment_shares: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True, default=None)
    reinvestment_price: Mapped[Decimal | None] = mapped_column(Numeric(18, 8), nullable=True, default=None)
    reinvestment_transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True, default=None
    )

    portfolio_fund: Mapped["PortfolioFund"] = relationship(back_populates="dividends")

    @property
    def has_reinvestment(self) -> bool:
        """True if the dividend carries a complete reinvestment."""
        return (
            self.buy_order_date is not None
            and self.reinvestment_shares is not None
            and self.reinvestment_price is not None
        )


class FundPrice(Base):
    """
    Daily closing price of a fund in its native currency.

    Lookups for a date without an exact entry fall back to the most
    recent prior date.
    """
    __tablename__ = "fund_prices"
    __table_args__ = (
        UniqueConstraint('fund_id', 'date', name='uq_fund_price_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    fund_id: Mapped[int] = mapped_column(ForeignKey("funds.id"), index=True)
    date: Mapped[dt.date] = mapped_column(Date, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 8))

    fund: Mapped["Fund"] = relationship(back_populates="prices")


class ExchangeRate(Base):
    """
    Historical exchange rates between currency pairs.

    Convention: rate represents "1 from_currency = X to_currency"
    Example: from=USD, to=EUR, rate=0.92 means 1 USD = 0.92 EUR
    """
    __tablename__ = "exchange_rates"
    __table_args__ = (
        # UniqueConstraint automatically creates an index on (from, to, date)
        UniqueConstraint('from_currency', 'to_currency', 'date',
                         name='uq_exchange_rate_pair_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    from_currency: Mapped[str] = mapped_column(String(3), index=True)  # e.g., "USD"
    to_currency: Mapped[str] = mapped_column(String(3), index=True)  # e.g., "EUR"
    date: Mapped[dt.date] = mapped_column(Date, index=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(18, 8))  # e.g., 0.92610000


class RealizedGainLoss(Base):
    """
    Realized gain/loss for one (lot, disposal) pair.

    Rows are never updated: the full set for a portfolio fund is
    replaced whenever its transaction history changes.
    """
    __tablename__ = "realized_gain_losses"
    __table_args__ = (
        Index('ix_realized_portfolio_fund_disposal', 'portfolio_fund_id', 'disposal_date'),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    portfolio_fund_id: Mapped[int] = mapped_column(ForeignKey("portfolio_funds.id"), index=True)
    transaction_id: Mapped[int] = mapped_column(ForeignKey("transactions.id", ondelete="CASCADE"))
    lot_open_date: Mapped[dt.date] = mapped_column(Date)
    disposal_date: Mapped[dt.date] = mapped_column(Date)
    shares_disposed: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    cost_per_share: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    sale_price: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    cost_basis: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    proceeds: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    gain_loss: Mapped[Decimal] = mapped_column(Numeric(18, 8))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
