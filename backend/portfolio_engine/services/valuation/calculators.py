# backend/portfolio_engine/services/valuation/calculators.py
"""
Point-in-time valuation calculators.

Each calculator turns one part of a replayed portfolio fund into an
amount in the portfolio's reporting currency:
- MarketValueCalculator: remaining shares × price on the valuation date
- CostBasisCalculator: open lots at their historical cost
- RealizedTotalsCalculator: realized records up to the valuation date
- CashFlowCalculator: cash dividends and fees up to the valuation date

Design Principles:
- Stateless apart from the injected converter
- Receives all ledger access explicitly (ledger passed per call)
- Never rounds, never swallows missing data: NoPriceAvailableError and
  NoRateAvailableError propagate so a valuation fully succeeds or fails

Conversion dates:
    value        → valuation date
    cost basis   → each lot's open date (historical, not revalued)
    proceeds     → disposal date
    original cost→ lot open date
    dividends    → ex-dividend date
    fees         → fee date
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from portfolio_engine.services.constants import ZERO
from portfolio_engine.services.exceptions import NoPriceAvailableError
from portfolio_engine.services.valuation.types import (
    CashFlow,
    Lot,
    RealizedGainLossRecord,
)

if TYPE_CHECKING:
    from portfolio_engine.services.protocols import (
        CurrencyConverterProtocol,
        LedgerStoreProtocol,
    )

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketValue:
    """Market value of a fund's remaining shares."""

    price: Decimal | None
    price_date: date | None
    amount: Decimal


@dataclass(frozen=True)
class RealizedTotals:
    """Converted realized totals of a fund."""

    gain_loss: Decimal = ZERO
    proceeds: Decimal = ZERO
    original_cost: Decimal = ZERO


# =============================================================================
# MARKET VALUE CALCULATOR
# =============================================================================

class MarketValueCalculator:
    """
    Values remaining shares at the fund price valid on the valuation date.

    The price is the most recent one on or before the valuation date.
    A fund holding zero shares needs no price and is worth zero.
    """

    def __init__(self, converter: CurrencyConverterProtocol) -> None:
        self._converter = converter

    def calculate(
            self,
            ledger: LedgerStoreProtocol,
            fund_id: int,
            fund_currency: str,
            shares: Decimal,
            reporting_currency: str,
            valuation_date: date,
    ) -> MarketValue:
        """
        Raises:
            NoPriceAvailableError: Shares are held but no price exists on or before the date
            NoRateAvailableError: The converted value needs a missing rate
        """
        if shares == ZERO:
            return MarketValue(price=None, price_date=None, amount=ZERO)

        price_row = ledger.get_fund_price(fund_id, valuation_date)
        if price_row is None:
            logger.warning(f"No price for fund {fund_id} on or before {valuation_date}")
            raise NoPriceAvailableError(fund_id, valuation_date)

        local_value = shares * price_row.price
        amount = self._converter.convert(
            ledger, local_value, fund_currency, reporting_currency, valuation_date
        )

        return MarketValue(price=price_row.price, price_date=price_row.date, amount=amount)


# =============================================================================
# COST BASIS CALCULATOR
# =============================================================================

class CostBasisCalculator:
    """
    Cost basis of open lots: Σ remaining_shares × cost_per_share.

    Each lot converts at its own open date, so cost basis reflects what
    was paid in the reporting currency at the time.
    """

    def __init__(self, converter: CurrencyConverterProtocol) -> None:
        self._converter = converter

    def calculate(
            self,
            ledger: LedgerStoreProtocol,
            lots: Iterable[Lot],
            fund_currency: str,
            reporting_currency: str,
    ) -> Decimal:
        total = ZERO
        for lot in lots:
            if not lot.is_open:
                continue
            total += self._converter.convert(
                ledger, lot.remaining_cost_basis, fund_currency, reporting_currency, lot.open_date
            )
        return total


# =============================================================================
# REALIZED TOTALS CALCULATOR
# =============================================================================

class RealizedTotalsCalculator:
    """
    Converted realized totals for disposals up to a date.

    gain_loss = proceeds (at disposal date) - original cost (at lot open date)
    """

    def __init__(self, converter: CurrencyConverterProtocol) -> None:
        self._converter = converter

    def calculate(
            self,
            ledger: LedgerStoreProtocol,
            records: Iterable[RealizedGainLossRecord],
            fund_currency: str,
            reporting_currency: str,
            as_of: date,
    ) -> RealizedTotals:
        proceeds = ZERO
        original_cost = ZERO

        for record in records:
            if record.disposal_date > as_of:
                continue
            proceeds += self._converter.convert(
                ledger, record.proceeds, fund_currency, reporting_currency, record.disposal_date
            )
            original_cost += self._converter.convert(
                ledger, record.cost_basis, fund_currency, reporting_currency, record.lot_open_date
            )

        return RealizedTotals(
            gain_loss=proceeds - original_cost,
            proceeds=proceeds,
            original_cost=original_cost,
        )


# =============================================================================
# CASH FLOW CALCULATOR
# =============================================================================

class CashFlowCalculator:
    """Sums dated cash amounts (dividends, fees), each converted at its own date."""

    def __init__(self, converter: CurrencyConverterProtocol) -> None:
        self._converter = converter

    def calculate(
            self,
            ledger: LedgerStoreProtocol,
            flows: Iterable[CashFlow],
            fund_currency: str,
            reporting_currency: str,
            as_of: date,
    ) -> Decimal:
        total = ZERO
        for flow in flows:
            if flow.date > as_of:
                continue
            total += self._converter.convert(
                ledger, flow.amount, fund_currency, reporting_currency, flow.date
            )
        return total
