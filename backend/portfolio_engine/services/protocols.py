# backend/portfolio_engine/services/protocols.py
"""
Protocol interfaces for service dependency injection.

Using typing.Protocol enables structural subtyping:
- SqlLedgerStore satisfies LedgerStoreProtocol without inheriting from it
- Test doubles work without explicit inheritance
- The engine depends on what it reads, not on SQL

Every ledger read is synchronous; retry policy, if any, belongs to the
store implementation.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from portfolio_engine.models import (
        Dividend,
        ExchangeRate,
        FundPrice,
        Portfolio,
        PortfolioFund,
        RealizedGainLoss,
        Transaction,
    )
    from portfolio_engine.services.currency_converter import RateResult
    from portfolio_engine.services.valuation.types import (
        PortfolioValuation,
        RealizedGainLossRecord,
    )


class LedgerStoreProtocol(Protocol):
    """Read interface over the ledger, plus storage for realized records."""

    def get_portfolio(self, portfolio_id: int) -> Portfolio | None:
        ...

    def get_portfolio_fund(self, portfolio_fund_id: int) -> PortfolioFund | None:
        ...

    def list_portfolio_funds(self, portfolio_id: int) -> list[PortfolioFund]:
        ...

    def list_transactions(
        self,
        portfolio_fund_id: int,
        until_date: date | None = None,
    ) -> list[Transaction]:
        """Transactions with date <= until_date, ordered by (date, id)."""
        ...

    def list_dividends(
        self,
        portfolio_fund_id: int,
        until_date: date | None = None,
    ) -> list[Dividend]:
        ...

    def get_fund_price(self, fund_id: int, on_date: date) -> FundPrice | None:
        """Most recent price with date <= on_date, or None."""
        ...

    def get_exchange_rate(
        self,
        from_currency: str,
        to_currency: str,
        on_date: date,
    ) -> ExchangeRate | None:
        """Most recent rate with date <= on_date, or None."""
        ...

    def get_first_transaction_date(self, portfolio_id: int) -> date | None:
        ...

    def list_realized_gain_loss(self, portfolio_fund_id: int) -> list[RealizedGainLoss]:
        ...

    def replace_realized_gain_loss(
        self,
        portfolio_fund_id: int,
        records: Sequence[RealizedGainLossRecord],
    ) -> list[RealizedGainLossRecord]:
        ...


class CurrencyConverterProtocol(Protocol):
    """Interface required by ValuationService."""

    def get_rate(
        self,
        ledger: LedgerStoreProtocol,
        from_currency: str,
        to_currency: str,
        on_date: date,
    ) -> RateResult:
        ...

    def convert(
        self,
        ledger: LedgerStoreProtocol,
        amount: Decimal,
        from_currency: str,
        to_currency: str,
        on_date: date,
    ) -> Decimal:
        ...


class ValuationServiceProtocol(Protocol):
    """Interface required by MaterializationService."""

    def valuate(
        self,
        ledger: LedgerStoreProtocol,
        portfolio_id: int,
        valuation_date: date,
    ) -> PortfolioValuation:
        ...
