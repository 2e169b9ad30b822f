# backend/portfolio_engine/services/valuation/service.py
"""
Valuation Service - orchestrator for point-in-time valuation.

Entry points:
- valuate(): Complete portfolio valuation for a single date
- value_fund(): Valuation of one portfolio fund
- track_lots(): Lot state of one portfolio fund as of a date
- realized_gain_loss(): Realized records from a fund's full history

Design Principles:
- Dependency Injection: CurrencyConverter injected via constructor
- Ledger passed per call: one service instance serves every request
- All-or-nothing: any missing price/rate or ledger error propagates,
  no partial valuation is ever returned
- Archived or excluded portfolios are valuated like any other

Data Flow:
    Transactions + Dividends → LotTracker → LotTrackingResult
    LotTrackingResult → RealizedGainLossCalculator → RealizedGainLossRecord[]
    Open lots + FundPrice → MarketValueCalculator / CostBasisCalculator
    Records → RealizedTotalsCalculator, cash flows → CashFlowCalculator
    All Above → FundValuation → PortfolioValuation

Usage:
    service = ValuationService()
    valuation = service.valuate(SqlLedgerStore(db), portfolio_id=1, valuation_date=date(2024, 3, 15))
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from portfolio_engine.services.constants import ZERO
from portfolio_engine.services.exceptions import PortfolioNotFoundError
from portfolio_engine.services.valuation.calculators import (
    CashFlowCalculator,
    CostBasisCalculator,
    MarketValueCalculator,
    RealizedTotalsCalculator,
)
from portfolio_engine.services.valuation.lot_tracker import LotTracker
from portfolio_engine.services.valuation.realized import RealizedGainLossCalculator
from portfolio_engine.services.valuation.types import (
    FundValuation,
    LotTrackingResult,
    PortfolioValuation,
    RealizedGainLossRecord,
)

if TYPE_CHECKING:
    from portfolio_engine.models import PortfolioFund
    from portfolio_engine.services.protocols import (
        CurrencyConverterProtocol,
        LedgerStoreProtocol,
    )

logger = logging.getLogger(__name__)


class ValuationService:
    """
    Main service for portfolio valuation.

    Attributes:
        _converter: Injected currency converter
        _lot_tracker: FIFO lot replay
        _realized_calc: Realized gain/loss records and invariant checks
        _value_calc: Market value of remaining shares
        _cost_calc: Historical cost basis of open lots
        _realized_totals_calc: Converted realized totals
        _cash_calc: Converted dividends and fees
    """

    def __init__(self, converter: CurrencyConverterProtocol | None = None) -> None:
        """
        Initialize the valuation service.

        Args:
            converter: Currency converter. If None, creates a CurrencyConverter.
        """
        if converter is None:
            from portfolio_engine.services.currency_converter import CurrencyConverter
            converter = CurrencyConverter()

        self._converter: CurrencyConverterProtocol = converter

        self._lot_tracker = LotTracker()
        self._realized_calc = RealizedGainLossCalculator()
        self._value_calc = MarketValueCalculator(converter)
        self._cost_calc = CostBasisCalculator(converter)
        self._realized_totals_calc = RealizedTotalsCalculator(converter)
        self._cash_calc = CashFlowCalculator(converter)

        logger.info("ValuationService initialized")

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def valuate(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_id: int,
            valuation_date: date,
    ) -> PortfolioValuation:
        """
        Value a portfolio on a date in its reporting currency.

        Every portfolio fund is visited, including those with zero shares,
        so realized history, dividends and fees are always accounted for.

        Raises:
            PortfolioNotFoundError: Unknown portfolio
            InsufficientSharesError: A sell up to the date exceeds held shares
            NoPriceAvailableError: A held fund has no price on or before the date
            NoRateAvailableError: A needed exchange rate is missing
            InconsistentLedgerError: Replay invariant violated
        """
        portfolio = ledger.get_portfolio(portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)

        funds = tuple(
            self.value_fund(ledger, portfolio_fund, portfolio.currency, valuation_date)
            for portfolio_fund in ledger.list_portfolio_funds(portfolio_id)
        )

        total_value = sum((f.value for f in funds), ZERO)
        total_cost_basis = sum((f.cost_basis for f in funds), ZERO)

        valuation = PortfolioValuation(
            portfolio_id=portfolio_id,
            valuation_date=valuation_date,
            currency=portfolio.currency,
            funds=funds,
            total_value=total_value,
            total_cost_basis=total_cost_basis,
            unrealized_gain_loss=total_value - total_cost_basis,
            total_realized_gain_loss=sum((f.realized_gain_loss for f in funds), ZERO),
            total_sale_proceeds=sum((f.sale_proceeds for f in funds), ZERO),
            total_original_cost=sum((f.original_cost for f in funds), ZERO),
            total_dividends=sum((f.dividends for f in funds), ZERO),
            total_fees=sum((f.fees for f in funds), ZERO),
        )

        logger.debug(
            f"Valuated portfolio {portfolio_id} on {valuation_date}: "
            f"value={total_value} cost_basis={total_cost_basis} ({len(funds)} funds)"
        )
        return valuation

    def value_fund(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_fund: PortfolioFund,
            reporting_currency: str,
            valuation_date: date,
    ) -> FundValuation:
        """Value one portfolio fund on a date in the reporting currency."""
        fund_currency = portfolio_fund.fund.currency

        tracking = self.track_lots(ledger, portfolio_fund.id, as_of=valuation_date)
        records = self._realized_calc.calculate(tracking)
        shares = tracking.remaining_shares

        market_value = self._value_calc.calculate(
            ledger,
            fund_id=portfolio_fund.fund_id,
            fund_currency=fund_currency,
            shares=shares,
            reporting_currency=reporting_currency,
            valuation_date=valuation_date,
        )
        cost_basis = self._cost_calc.calculate(
            ledger, tracking.lots, fund_currency, reporting_currency
        )
        realized = self._realized_totals_calc.calculate(
            ledger, records, fund_currency, reporting_currency, valuation_date
        )
        dividends = self._cash_calc.calculate(
            ledger, tracking.cash_dividends, fund_currency, reporting_currency, valuation_date
        )
        fees = self._cash_calc.calculate(
            ledger, tracking.fees, fund_currency, reporting_currency, valuation_date
        )

        return FundValuation(
            portfolio_fund_id=portfolio_fund.id,
            fund_id=portfolio_fund.fund_id,
            fund_currency=fund_currency,
            shares=shares,
            price=market_value.price,
            price_date=market_value.price_date,
            value=market_value.amount,
            cost_basis=cost_basis,
            unrealized_gain_loss=market_value.amount - cost_basis,
            realized_gain_loss=realized.gain_loss,
            sale_proceeds=realized.proceeds,
            original_cost=realized.original_cost,
            dividends=dividends,
            fees=fees,
        )

    def track_lots(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_fund_id: int,
            as_of: date | None = None,
    ) -> LotTrackingResult:
        """Replay a portfolio fund's history up to as_of (None = full history)."""
        transactions = ledger.list_transactions(portfolio_fund_id, until_date=as_of)
        dividends = ledger.list_dividends(portfolio_fund_id, until_date=as_of)
        return self._lot_tracker.track(
            portfolio_fund_id, transactions, dividends, as_of=as_of
        )

    def realized_gain_loss(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_fund_id: int,
    ) -> list[RealizedGainLossRecord]:
        """Derive realized records from a portfolio fund's full history."""
        tracking = self.track_lots(ledger, portfolio_fund_id)
        return self._realized_calc.calculate(tracking)
