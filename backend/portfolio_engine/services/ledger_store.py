# backend/portfolio_engine/services/ledger_store.py
"""
SQLAlchemy implementation of the Ledger Store.

Wraps one Session; create one store per request/unit of work. Reads are
ordered the way the engine needs them, and price/rate lookups implement
the "most recent on or before" fallback in a single query.

Usage:
    ledger = SqlLedgerStore(db)
    ledger.get_fund_price(fund_id=3, on_date=date(2024, 3, 15))
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date

from sqlalchemy import select, delete, func, or_, and_
from sqlalchemy.orm import Session, selectinload

from portfolio_engine.models import (
    Dividend,
    ExchangeRate,
    FundPrice,
    Portfolio,
    PortfolioFund,
    RealizedGainLoss,
    Transaction,
)
from portfolio_engine.services.valuation.types import RealizedGainLossRecord

logger = logging.getLogger(__name__)


class SqlLedgerStore:
    """Ledger Store backed by a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self._db = db

    @property
    def session(self) -> Session:
        return self._db

    # =========================================================================
    # PORTFOLIOS
    # =========================================================================

    def get_portfolio(self, portfolio_id: int) -> Portfolio | None:
        return self._db.get(Portfolio, portfolio_id)

    def get_portfolio_fund(self, portfolio_fund_id: int) -> PortfolioFund | None:
        return self._db.get(PortfolioFund, portfolio_fund_id)

    def list_portfolio_funds(self, portfolio_id: int) -> list[PortfolioFund]:
        stmt = (
            select(PortfolioFund)
            .options(selectinload(PortfolioFund.fund))
            .where(PortfolioFund.portfolio_id == portfolio_id)
            .order_by(PortfolioFund.id)
        )
        return list(self._db.scalars(stmt).all())

    def list_portfolio_ids_for_fund(self, fund_id: int) -> list[int]:
        stmt = (
            select(PortfolioFund.portfolio_id)
            .where(PortfolioFund.fund_id == fund_id)
            .distinct()
            .order_by(PortfolioFund.portfolio_id)
        )
        return list(self._db.scalars(stmt).all())

    # =========================================================================
    # LEDGER ROWS
    # =========================================================================

    def list_transactions(
            self,
            portfolio_fund_id: int,
            until_date: date | None = None,
    ) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.portfolio_fund_id == portfolio_fund_id)
        if until_date is not None:
            stmt = stmt.where(Transaction.date <= until_date)
        stmt = stmt.order_by(Transaction.date, Transaction.id)
        return list(self._db.scalars(stmt).all())

    def list_dividends(
            self,
            portfolio_fund_id: int,
            until_date: date | None = None,
    ) -> list[Dividend]:
        """Dividends whose cash or reinvestment side falls on or before until_date."""
        stmt = select(Dividend).where(Dividend.portfolio_fund_id == portfolio_fund_id)
        if until_date is not None:
            stmt = stmt.where(or_(
                Dividend.ex_dividend_date <= until_date,
                and_(
                    Dividend.buy_order_date.is_not(None),
                    Dividend.buy_order_date <= until_date,
                ),
            ))
        stmt = stmt.order_by(Dividend.ex_dividend_date, Dividend.id)
        return list(self._db.scalars(stmt).all())

    def get_first_transaction_date(self, portfolio_id: int) -> date | None:
        stmt = (
            select(func.min(Transaction.date))
            .join(PortfolioFund, Transaction.portfolio_fund_id == PortfolioFund.id)
            .where(PortfolioFund.portfolio_id == portfolio_id)
        )
        return self._db.scalar(stmt)

    # =========================================================================
    # MARKET DATA (with fallback to prior dates)
    # =========================================================================

    def get_fund_price(self, fund_id: int, on_date: date) -> FundPrice | None:
        stmt = (
            select(FundPrice)
            .where(
                and_(
                    FundPrice.fund_id == fund_id,
                    FundPrice.date <= on_date,
                )
            )
            .order_by(FundPrice.date.desc())
            .limit(1)
        )
        return self._db.scalars(stmt).first()

    def get_exchange_rate(
            self,
            from_currency: str,
            to_currency: str,
            on_date: date,
    ) -> ExchangeRate | None:
        stmt = (
            select(ExchangeRate)
            .where(
                and_(
                    ExchangeRate.from_currency == from_currency.upper(),
                    ExchangeRate.to_currency == to_currency.upper(),
                    ExchangeRate.date <= on_date,
                )
            )
            .order_by(ExchangeRate.date.desc())
            .limit(1)
        )
        return self._db.scalars(stmt).first()

    # =========================================================================
    # REALIZED GAIN / LOSS RECORDS
    # =========================================================================

    def list_realized_gain_loss(self, portfolio_fund_id: int) -> list[RealizedGainLoss]:
        stmt = (
            select(RealizedGainLoss)
            .where(RealizedGainLoss.portfolio_fund_id == portfolio_fund_id)
            .order_by(RealizedGainLoss.id)
        )
        return list(self._db.scalars(stmt).all())

    def replace_realized_gain_loss(
            self,
            portfolio_fund_id: int,
            records: Sequence[RealizedGainLossRecord],
    ) -> list[RealizedGainLossRecord]:
        """
        Replace every stored record of a portfolio fund.

        Runs inside the caller's transaction: the delete and the inserts
        become visible together on commit.

        Returns:
            The new records, with database ids
        """
        self._db.execute(
            delete(RealizedGainLoss).where(RealizedGainLoss.portfolio_fund_id == portfolio_fund_id)
        )

        rows = [
            RealizedGainLoss(
                portfolio_fund_id=portfolio_fund_id,
                transaction_id=record.transaction_id,
                lot_open_date=record.lot_open_date,
                disposal_date=record.disposal_date,
                shares_disposed=record.shares_disposed,
                cost_per_share=record.cost_per_share,
                sale_price=record.sale_price,
                cost_basis=record.cost_basis,
                proceeds=record.proceeds,
                gain_loss=record.gain_loss,
            )
            for record in records
        ]
        self._db.add_all(rows)
        self._db.flush()

        logger.debug(
            f"Replaced realized gain/loss records for portfolio fund {portfolio_fund_id}: {len(rows)} rows"
        )
        return [RealizedGainLossRecord.from_model(row) for row in rows]
