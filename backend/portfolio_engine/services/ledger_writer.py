# backend/portfolio_engine/services/ledger_writer.py
"""
Ledger Writer - applies ledger edits and keeps derived data consistent.

Every write follows the same sequence:
    1. Apply the change to the session and flush
    2. Regenerate realized gain/loss records of the affected portfolio
       fund from its full history (this replays lots, so a write that
       would push any sell past the shares held fails here)
    3. Commit, or roll back and re-raise on any error
    4. Invalidate cached snapshots from the earliest affected date

Invalidation scope:
    transaction / dividend → the owning portfolio
    fund price             → every portfolio holding the fund
    exchange rate          → every portfolio

Usage:
    writer = LedgerWriter(engine)
    txn = writer.add_transaction(
        db, portfolio_fund_id=7, transaction_type=TransactionType.BUY,
        transaction_date=date(2024, 1, 1), shares=Decimal("10"), cost_per_share=Decimal("10"),
    )
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from portfolio_engine.models import (
    Dividend,
    DividendType,
    ExchangeRate,
    FundPrice,
    PortfolioFund,
    ReinvestmentStatus,
    Transaction,
    TransactionType,
)
from portfolio_engine.services.constants import CURRENCY_PRECISION, ZERO
from portfolio_engine.services.engine import PortfolioEngine
from portfolio_engine.services.exceptions import (
    NotFoundError,
    PortfolioFundNotFoundError,
    ValidationError,
)
from portfolio_engine.services.ledger_store import SqlLedgerStore

logger = logging.getLogger(__name__)


def derive_reinvestment_status(dividend: Dividend, dividend_type: DividendType) -> ReinvestmentStatus:
    """
    Reinvestment status of a dividend.

        CASH fund                                     → COMPLETED (paid out)
        STOCK fund, no reinvestment recorded          → PENDING
        STOCK fund, reinvested == total (to the cent) → COMPLETED
        STOCK fund, reinvested != total               → PARTIAL
    """
    if dividend_type != DividendType.STOCK:
        return ReinvestmentStatus.COMPLETED
    if not dividend.has_reinvestment:
        return ReinvestmentStatus.PENDING

    reinvested = (dividend.reinvestment_shares * dividend.reinvestment_price).quantize(CURRENCY_PRECISION)
    if reinvested == dividend.total_amount.quantize(CURRENCY_PRECISION):
        return ReinvestmentStatus.COMPLETED
    return ReinvestmentStatus.PARTIAL


class LedgerWriter:
    """
    Write-side companion of PortfolioEngine.

    Attributes:
        _engine: Engine whose realized records and cache are kept in sync
    """

    def __init__(self, engine: PortfolioEngine) -> None:
        self._engine = engine
        logger.info("LedgerWriter initialized")

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    def add_transaction(
            self,
            db: Session,
            portfolio_fund_id: int,
            transaction_type: TransactionType,
            transaction_date: date,
            shares: Decimal,
            cost_per_share: Decimal,
    ) -> Transaction:
        """
        Record a transaction.

        Raises:
            PortfolioFundNotFoundError: Unknown portfolio fund
            ValidationError: Non-positive shares/price on a BUY/SELL
            InsufficientSharesError: The history would contain an oversized sell
        """
        portfolio_fund = self._get_portfolio_fund(db, portfolio_fund_id)
        self._validate_transaction(transaction_type, shares, cost_per_share)

        txn = Transaction(
            portfolio_fund_id=portfolio_fund.id,
            type=transaction_type,
            date=transaction_date,
            shares=shares,
            cost_per_share=cost_per_share,
        )
        db.add(txn)
        self._commit_fund_change(db, portfolio_fund, transaction_date)

        logger.info(
            f"Recorded {transaction_type.value} transaction {txn.id} for portfolio fund "
            f"{portfolio_fund.id} on {transaction_date}"
        )
        return txn

    def update_transaction(
            self,
            db: Session,
            transaction_id: int,
            transaction_type: TransactionType | None = None,
            transaction_date: date | None = None,
            shares: Decimal | None = None,
            cost_per_share: Decimal | None = None,
    ) -> Transaction:
        """
        Edit a transaction; unspecified fields keep their value.

        Snapshots are invalidated from the earlier of the old and new dates.
        """
        txn = self._get_transaction(db, transaction_id)
        old_date = txn.date

        new_type = transaction_type or txn.type
        new_shares = shares if shares is not None else txn.shares
        new_cost = cost_per_share if cost_per_share is not None else txn.cost_per_share
        self._validate_transaction(new_type, new_shares, new_cost)

        txn.type = new_type
        txn.date = transaction_date or txn.date
        txn.shares = new_shares
        txn.cost_per_share = new_cost

        portfolio_fund = self._get_portfolio_fund(db, txn.portfolio_fund_id)
        self._commit_fund_change(db, portfolio_fund, min(old_date, txn.date))

        logger.info(f"Updated transaction {transaction_id}")
        return txn

    def delete_transaction(self, db: Session, transaction_id: int) -> None:
        """
        Delete a transaction.

        Fails with InsufficientSharesError when a later sell depends on it.
        """
        txn = self._get_transaction(db, transaction_id)
        affected_date = txn.date
        portfolio_fund = self._get_portfolio_fund(db, txn.portfolio_fund_id)

        # Unlink reinvested dividends before removing the row
        for dividend in db.scalars(
                select(Dividend).where(Dividend.reinvestment_transaction_id == transaction_id)
        ):
            dividend.reinvestment_transaction_id = None

        db.delete(txn)
        self._commit_fund_change(db, portfolio_fund, affected_date)

        logger.info(f"Deleted transaction {transaction_id}")

    # =========================================================================
    # DIVIDENDS
    # =========================================================================

    def add_dividend(
            self,
            db: Session,
            portfolio_fund_id: int,
            record_date: date,
            ex_dividend_date: date,
            dividend_per_share: Decimal,
            buy_order_date: date | None = None,
            reinvestment_shares: Decimal | None = None,
            reinvestment_price: Decimal | None = None,
    ) -> Dividend:
        """
        Record a dividend.

        shares_owned is the position held on the ex-dividend date and
        total_amount = shares_owned × dividend_per_share. Reinvestment
        (buy_order_date, reinvestment_shares, reinvestment_price) is all
        or nothing and only allowed for STOCK funds.

        Raises:
            PortfolioFundNotFoundError: Unknown portfolio fund
            ValidationError: Fund pays no dividends, non-positive amounts,
                or an incomplete or disallowed reinvestment
        """
        portfolio_fund = self._get_portfolio_fund(db, portfolio_fund_id)
        dividend_type = self._dividend_type(portfolio_fund)
        if dividend_per_share <= ZERO:
            raise ValidationError("Dividend per share must be positive", field="dividend_per_share")
        self._validate_reinvestment(dividend_type, buy_order_date, reinvestment_shares, reinvestment_price)

        dividend = Dividend(
            portfolio_fund_id=portfolio_fund.id,
            record_date=record_date,
            ex_dividend_date=ex_dividend_date,
            dividend_per_share=dividend_per_share,
        )
        self._apply_amounts(db, dividend)
        dividend.buy_order_date = buy_order_date
        dividend.reinvestment_shares = reinvestment_shares
        dividend.reinvestment_price = reinvestment_price
        dividend.reinvestment_status = derive_reinvestment_status(dividend, dividend_type)

        db.add(dividend)
        self._commit_fund_change(db, portfolio_fund, self._dividend_start(dividend))

        logger.info(
            f"Recorded dividend {dividend.id} for portfolio fund {portfolio_fund.id}: "
            f"{dividend.shares_owned} shares × {dividend_per_share} = {dividend.total_amount}, "
            f"{dividend.reinvestment_status.value}"
        )
        return dividend

    def update_dividend_reinvestment(
            self,
            db: Session,
            dividend_id: int,
            buy_order_date: date | None,
            reinvestment_shares: Decimal | None,
            reinvestment_price: Decimal | None,
    ) -> Dividend:
        """
        Set or clear the reinvestment side of a dividend.

        shares_owned and total_amount are recomputed from the current
        history, so transactions recorded since the dividend are reflected.
        """
        dividend = self._get_dividend(db, dividend_id)
        portfolio_fund = self._get_portfolio_fund(db, dividend.portfolio_fund_id)
        dividend_type = self._dividend_type(portfolio_fund)
        self._validate_reinvestment(dividend_type, buy_order_date, reinvestment_shares, reinvestment_price)
        old_start = self._dividend_start(dividend)

        # The dividend's own reinvestment lot must not count towards shares_owned
        dividend.buy_order_date = None
        dividend.reinvestment_shares = None
        dividend.reinvestment_price = None
        try:
            self._apply_amounts(db, dividend)
        except Exception:
            db.rollback()
            raise

        dividend.buy_order_date = buy_order_date
        dividend.reinvestment_shares = reinvestment_shares
        dividend.reinvestment_price = reinvestment_price
        dividend.reinvestment_status = derive_reinvestment_status(dividend, dividend_type)

        self._commit_fund_change(db, portfolio_fund, min(old_start, self._dividend_start(dividend)))

        logger.info(
            f"Updated dividend {dividend_id}: total {dividend.total_amount}, "
            f"{dividend.reinvestment_status.value}"
        )
        return dividend

    def delete_dividend(self, db: Session, dividend_id: int) -> None:
        dividend = self._get_dividend(db, dividend_id)
        affected_date = self._dividend_start(dividend)
        portfolio_fund = self._get_portfolio_fund(db, dividend.portfolio_fund_id)

        db.delete(dividend)
        self._commit_fund_change(db, portfolio_fund, affected_date)

        logger.info(f"Deleted dividend {dividend_id}")

    # =========================================================================
    # MARKET DATA
    # =========================================================================

    def set_fund_price(self, db: Session, fund_id: int, price_date: date, price: Decimal) -> FundPrice:
        """Insert or replace the price of a fund on a date."""
        if price <= ZERO:
            raise ValidationError("Price must be positive", field="price")

        row = db.scalars(
            select(FundPrice).where(FundPrice.fund_id == fund_id, FundPrice.date == price_date)
        ).first()
        if row is None:
            row = FundPrice(fund_id=fund_id, date=price_date, price=price)
            db.add(row)
        else:
            row.price = price

        self._commit(db)

        for portfolio_id in SqlLedgerStore(db).list_portfolio_ids_for_fund(fund_id):
            self._engine.invalidate_portfolio(portfolio_id, price_date)

        logger.info(f"Set price of fund {fund_id} on {price_date} to {price}")
        return row

    def set_exchange_rate(
            self,
            db: Session,
            from_currency: str,
            to_currency: str,
            rate_date: date,
            rate: Decimal,
    ) -> ExchangeRate:
        """Insert or replace an exchange rate (1 from_currency = rate to_currency)."""
        if rate <= ZERO:
            raise ValidationError("Exchange rate must be positive", field="rate")

        from_currency = from_currency.upper()
        to_currency = to_currency.upper()

        row = db.scalars(
            select(ExchangeRate).where(
                ExchangeRate.from_currency == from_currency,
                ExchangeRate.to_currency == to_currency,
                ExchangeRate.date == rate_date,
            )
        ).first()
        if row is None:
            row = ExchangeRate(
                from_currency=from_currency,
                to_currency=to_currency,
                date=rate_date,
                rate=rate,
            )
            db.add(row)
        else:
            row.rate = rate

        self._commit(db)
        self._engine.invalidate_all(rate_date)

        logger.info(f"Set {from_currency}/{to_currency} rate on {rate_date} to {rate}")
        return row

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    def _commit_fund_change(self, db: Session, portfolio_fund: PortfolioFund, from_date: date) -> None:
        portfolio_id = portfolio_fund.portfolio_id
        try:
            db.flush()
            self._engine.regenerate_realized_gain_loss(SqlLedgerStore(db), portfolio_fund.id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        self._engine.invalidate_portfolio(portfolio_id, from_date)

    @staticmethod
    def _commit(db: Session) -> None:
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise

    @staticmethod
    def _validate_transaction(
            transaction_type: TransactionType,
            shares: Decimal,
            cost_per_share: Decimal,
    ) -> None:
        if transaction_type == TransactionType.FEE:
            if cost_per_share <= ZERO:
                raise ValidationError("Fee amount must be positive", field="cost_per_share")
            return
        if shares <= ZERO:
            raise ValidationError("Shares must be positive", field="shares")
        if cost_per_share <= ZERO:
            raise ValidationError("Cost per share must be positive", field="cost_per_share")

    def _apply_amounts(self, db: Session, dividend: Dividend) -> None:
        """shares_owned from the lots held on the ex-dividend date, and the total it earns."""
        dividend.shares_owned = self._engine.get_lots(
            SqlLedgerStore(db), dividend.portfolio_fund_id, as_of=dividend.ex_dividend_date
        ).remaining_shares
        dividend.total_amount = dividend.shares_owned * dividend.dividend_per_share

    @staticmethod
    def _dividend_type(portfolio_fund: PortfolioFund) -> DividendType:
        fund = portfolio_fund.fund
        if fund.dividend_type == DividendType.NONE:
            raise ValidationError(
                f"Fund {fund.id} does not pay out dividends",
                field="dividend_type",
            )
        return fund.dividend_type

    @staticmethod
    def _validate_reinvestment(
            dividend_type: DividendType,
            buy_order_date: date | None,
            reinvestment_shares: Decimal | None,
            reinvestment_price: Decimal | None,
    ) -> None:
        fields = (buy_order_date, reinvestment_shares, reinvestment_price)
        if all(value is None for value in fields):
            return
        if any(value is None for value in fields):
            raise ValidationError(
                "Reinvestment needs buy_order_date, reinvestment_shares and reinvestment_price together",
                field="reinvestment",
            )
        if dividend_type != DividendType.STOCK:
            raise ValidationError(
                "Only STOCK dividends can be reinvested; CASH dividends are paid out",
                field="buy_order_date",
            )
        if reinvestment_shares <= ZERO:
            raise ValidationError("Reinvestment shares must be positive", field="reinvestment_shares")
        if reinvestment_price <= ZERO:
            raise ValidationError("Reinvestment price must be positive", field="reinvestment_price")

    @staticmethod
    def _dividend_start(dividend: Dividend) -> date:
        """Earliest date the dividend affects (cash or reinvestment side)."""
        if dividend.buy_order_date is not None:
            return min(dividend.ex_dividend_date, dividend.buy_order_date)
        return dividend.ex_dividend_date

    @staticmethod
    def _get_portfolio_fund(db: Session, portfolio_fund_id: int) -> PortfolioFund:
        portfolio_fund = db.get(PortfolioFund, portfolio_fund_id)
        if portfolio_fund is None:
            raise PortfolioFundNotFoundError(portfolio_fund_id)
        return portfolio_fund

    @staticmethod
    def _get_transaction(db: Session, transaction_id: int) -> Transaction:
        txn = db.get(Transaction, transaction_id)
        if txn is None:
            raise NotFoundError(
                f"Transaction {transaction_id} not found",
                resource_type="Transaction",
                resource_id=transaction_id,
            )
        return txn

    @staticmethod
    def _get_dividend(db: Session, dividend_id: int) -> Dividend:
        dividend = db.get(Dividend, dividend_id)
        if dividend is None:
            raise NotFoundError(
                f"Dividend {dividend_id} not found",
                resource_type="Dividend",
                resource_id=dividend_id,
            )
        return dividend
