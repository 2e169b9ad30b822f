# backend/portfolio_engine/services/valuation/types.py
"""
Data types for the valuation engine.

These dataclasses are the engine's in-process results. They are NOT ORM
models: lots in particular are never stored, they are derived from the
immutable transaction log every time they are needed.

Design Principles:
- Immutable (frozen=True) so results can be shared across threads and
  held in the snapshot cache
- Use Decimal for ALL financial values (never float)
- Use date (not datetime) for valuation dates
- No rounding: amounts keep full precision, presentation rounds

Type Hierarchy:
    LedgerEvent          - One tagged event of a fund's history
    Lot                  - Shares acquired at one price/date
    Disposal             - Shares of one lot consumed by one sell
    CashFlow             - Dated cash amount (cash dividend, fee)
    LotTrackingResult    - Lot state of one portfolio fund as of a date
    RealizedGainLossRecord - Realized gain/loss of one (lot, disposal) pair
    FundValuation        - Valuation of one portfolio fund
    PortfolioValuation   - Valuation of a portfolio
    FundSnapshot         - Per-fund part of a materialized snapshot
    MaterializedSnapshot - Cached valuation of a portfolio on a date
    PortfolioHistory     - Snapshot time series
    FundHistory          - Per-fund time series
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from portfolio_engine.services.constants import ZERO

if TYPE_CHECKING:
    from portfolio_engine.models import RealizedGainLoss


# =============================================================================
# LEDGER EVENTS
# =============================================================================

class EventKind(str, enum.Enum):
    """
    Closed set of events the lot tracker understands.

    BUY and REINVESTMENT open a lot, SELL consumes lots, CASH_DIVIDEND
    and FEE are dated cash amounts that leave lots untouched.
    """
    BUY = "BUY"
    SELL = "SELL"
    REINVESTMENT = "REINVESTMENT"
    CASH_DIVIDEND = "CASH_DIVIDEND"
    FEE = "FEE"


class EventSource(int, enum.Enum):
    """Ledger table an event came from (also the last sort tie-break)."""
    TRANSACTION = 0
    DIVIDEND = 1


@dataclass(frozen=True)
class LedgerEvent:
    """
    One event in a portfolio fund's history.

    Attributes:
        kind: What the event does to lots
        event_id: Id of the transaction or dividend row
        source: Table the id belongs to
        date: Effective date (buy_order_date for reinvestments,
              ex_dividend_date for cash dividends)
        shares: Shares bought/sold (zero for cash events)
        price: Price per share for lot events; cash amount for cash events
    """

    kind: EventKind
    event_id: int
    source: EventSource
    date: date
    shares: Decimal
    price: Decimal

    @property
    def sort_key(self) -> tuple[date, int, int]:
        """Deterministic processing order: (date, id), then source."""
        return (self.date, self.event_id, self.source.value)


# =============================================================================
# LOTS
# =============================================================================

@dataclass(frozen=True)
class Lot:
    """
    A batch of shares acquired at a single price and date.

    Attributes:
        portfolio_fund_id: Owning portfolio fund
        source_id: Id of the BUY/DIVIDEND transaction or dividend that opened it
        source: Table source_id belongs to
        open_date: Acquisition date
        shares: Shares acquired
        cost_per_share: Acquisition price in the fund's currency
        remaining_shares: Shares not yet disposed
    """

    portfolio_fund_id: int
    source_id: int
    source: EventSource
    open_date: date
    shares: Decimal
    cost_per_share: Decimal
    remaining_shares: Decimal

    @property
    def is_open(self) -> bool:
        return self.remaining_shares > ZERO

    @property
    def remaining_cost_basis(self) -> Decimal:
        """Cost of the shares still held, in the fund's currency."""
        return self.remaining_shares * self.cost_per_share


@dataclass(frozen=True)
class Disposal:
    """
    Shares of one lot consumed by one sell.

    A sell spanning several lots produces one Disposal per lot touched.
    """

    transaction_id: int
    disposal_date: date
    lot_source_id: int
    lot_open_date: date
    shares_disposed: Decimal
    lot_cost_per_share: Decimal
    sale_price: Decimal


@dataclass(frozen=True)
class CashFlow:
    """Dated cash amount in the fund's currency."""

    source_id: int
    date: date
    amount: Decimal


@dataclass(frozen=True)
class LotTrackingResult:
    """
    Lot state of one portfolio fund as of a date.

    Attributes:
        portfolio_fund_id: The tracked portfolio fund
        as_of: Cut-off date (None = full history)
        lots: Every lot opened, in opening order (closed lots included)
        disposals: Every lot fragment consumed, in processing order
        sells: The SELL events processed
        cash_dividends: Cash dividends with ex_dividend_date <= as_of
        fees: FEE transactions with date <= as_of
    """

    portfolio_fund_id: int
    as_of: date | None
    lots: tuple[Lot, ...]
    disposals: tuple[Disposal, ...]
    sells: tuple[LedgerEvent, ...]
    cash_dividends: tuple[CashFlow, ...] = ()
    fees: tuple[CashFlow, ...] = ()

    @property
    def open_lots(self) -> list[Lot]:
        return [lot for lot in self.lots if lot.is_open]

    @property
    def remaining_shares(self) -> Decimal:
        return sum((lot.remaining_shares for lot in self.lots), ZERO)

    @property
    def acquired_shares(self) -> Decimal:
        """Shares bought or reinvested up to as_of."""
        return sum((lot.shares for lot in self.lots), ZERO)

    @property
    def sold_shares(self) -> Decimal:
        return sum((sell.shares for sell in self.sells), ZERO)


# =============================================================================
# REALIZED GAIN / LOSS
# =============================================================================

@dataclass(frozen=True)
class RealizedGainLossRecord:
    """
    Realized gain/loss for one (lot, disposal) pair, in the fund's currency.

    Formulas:
        proceeds = shares_disposed × sale_price
        cost_basis = shares_disposed × cost_per_share
        gain_loss = proceeds - cost_basis

    Attributes:
        id: Database id once persisted (None for freshly computed records)
    """

    portfolio_fund_id: int
    transaction_id: int
    lot_open_date: date
    disposal_date: date
    shares_disposed: Decimal
    cost_per_share: Decimal
    sale_price: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    gain_loss: Decimal
    id: int | None = None

    @classmethod
    def from_model(cls, row: RealizedGainLoss) -> RealizedGainLossRecord:
        return cls(
            id=row.id,
            portfolio_fund_id=row.portfolio_fund_id,
            transaction_id=row.transaction_id,
            lot_open_date=row.lot_open_date,
            disposal_date=row.disposal_date,
            shares_disposed=row.shares_disposed,
            cost_per_share=row.cost_per_share,
            sale_price=row.sale_price,
            cost_basis=row.cost_basis,
            proceeds=row.proceeds,
            gain_loss=row.gain_loss,
        )


# =============================================================================
# VALUATION
# =============================================================================

@dataclass(frozen=True)
class FundValuation:
    """
    Valuation of one portfolio fund, in the portfolio's reporting currency.

    Attributes:
        shares: Remaining shares as of the valuation date
        price: Price used, in the fund's currency (None when no shares held)
        price_date: Date the price is actually from (may precede valuation date)
        value: shares × price, converted at the valuation date
        cost_basis: Σ remaining × cost_per_share, converted at each lot's open date
        unrealized_gain_loss: value - cost_basis
        realized_gain_loss: Realized gains of disposals up to the valuation date
        sale_proceeds: Proceeds of those disposals (converted at disposal date)
        original_cost: Cost basis of those disposals (converted at lot open date)
        dividends: Cash dividends up to the valuation date
        fees: Fees up to the valuation date
    """

    portfolio_fund_id: int
    fund_id: int
    fund_currency: str
    shares: Decimal
    price: Decimal | None
    price_date: date | None
    value: Decimal
    cost_basis: Decimal
    unrealized_gain_loss: Decimal
    realized_gain_loss: Decimal = ZERO
    sale_proceeds: Decimal = ZERO
    original_cost: Decimal = ZERO
    dividends: Decimal = ZERO
    fees: Decimal = ZERO

    @property
    def total_gain_loss(self) -> Decimal:
        return self.unrealized_gain_loss + self.realized_gain_loss + self.dividends - self.fees


@dataclass(frozen=True)
class PortfolioValuation:
    """
    Valuation of a portfolio on a date, in its reporting currency.

    Formulas:
        total_value = Σ fund.value
        total_cost_basis = Σ fund.cost_basis
        unrealized_gain_loss = total_value - total_cost_basis
        total_gain_loss = unrealized + realized + dividends - fees
    """

    portfolio_id: int
    valuation_date: date
    currency: str
    funds: tuple[FundValuation, ...]
    total_value: Decimal
    total_cost_basis: Decimal
    unrealized_gain_loss: Decimal
    total_realized_gain_loss: Decimal = ZERO
    total_sale_proceeds: Decimal = ZERO
    total_original_cost: Decimal = ZERO
    total_dividends: Decimal = ZERO
    total_fees: Decimal = ZERO

    @property
    def total_gain_loss(self) -> Decimal:
        return (
            self.unrealized_gain_loss
            + self.total_realized_gain_loss
            + self.total_dividends
            - self.total_fees
        )


# =============================================================================
# MATERIALIZED SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class FundSnapshot:
    """Per-fund part of a materialized snapshot."""

    portfolio_fund_id: int
    fund_id: int
    date: date
    shares: Decimal
    price: Decimal | None
    value: Decimal
    cost_basis: Decimal
    unrealized_gain_loss: Decimal
    realized_gain_loss: Decimal
    dividends: Decimal
    fees: Decimal

    @classmethod
    def from_valuation(cls, fund: FundValuation, snapshot_date: date) -> FundSnapshot:
        return cls(
            portfolio_fund_id=fund.portfolio_fund_id,
            fund_id=fund.fund_id,
            date=snapshot_date,
            shares=fund.shares,
            price=fund.price,
            value=fund.value,
            cost_basis=fund.cost_basis,
            unrealized_gain_loss=fund.unrealized_gain_loss,
            realized_gain_loss=fund.realized_gain_loss,
            dividends=fund.dividends,
            fees=fund.fees,
        )


@dataclass(frozen=True)
class MaterializedSnapshot:
    """
    Cached valuation of a portfolio on a date.

    Keyed by (portfolio_id, date). Regenerated, never patched, when
    its inputs change.
    """

    portfolio_id: int
    date: date
    currency: str
    total_value: Decimal
    total_cost_basis: Decimal
    unrealized_gain_loss: Decimal
    total_realized_gain_loss: Decimal
    total_sale_proceeds: Decimal
    total_original_cost: Decimal
    total_dividends: Decimal
    total_fees: Decimal
    total_gain_loss: Decimal
    funds: tuple[FundSnapshot, ...] = ()

    @property
    def key(self) -> tuple[int, date]:
        return (self.portfolio_id, self.date)

    @classmethod
    def from_valuation(cls, valuation: PortfolioValuation) -> MaterializedSnapshot:
        return cls(
            portfolio_id=valuation.portfolio_id,
            date=valuation.valuation_date,
            currency=valuation.currency,
            total_value=valuation.total_value,
            total_cost_basis=valuation.total_cost_basis,
            unrealized_gain_loss=valuation.unrealized_gain_loss,
            total_realized_gain_loss=valuation.total_realized_gain_loss,
            total_sale_proceeds=valuation.total_sale_proceeds,
            total_original_cost=valuation.total_original_cost,
            total_dividends=valuation.total_dividends,
            total_fees=valuation.total_fees,
            total_gain_loss=valuation.total_gain_loss,
            funds=tuple(
                FundSnapshot.from_valuation(fund, valuation.valuation_date)
                for fund in valuation.funds
            ),
        )


@dataclass(frozen=True)
class PortfolioHistory:
    """
    Snapshot time series for a portfolio.

    Attributes:
        start_date: First date actually covered (after clamping)
        end_date: Last date actually covered (after clamping)
        snapshots: One snapshot per calendar day, chronological
    """

    portfolio_id: int
    currency: str
    start_date: date | None
    end_date: date | None
    snapshots: tuple[MaterializedSnapshot, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.snapshots) == 0


@dataclass(frozen=True)
class FundHistory:
    """Time series for one portfolio fund, taken from portfolio snapshots."""

    portfolio_fund_id: int
    fund_id: int
    entries: tuple[FundSnapshot, ...]
