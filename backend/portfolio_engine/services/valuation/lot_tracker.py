# backend/portfolio_engine/services/valuation/lot_tracker.py
"""
FIFO lot tracking.

Lots are never stored: they are replayed from a portfolio fund's
transaction and dividend history every time they are needed. The
replay is a pure function of the input rows, so the same history
always yields the same lots regardless of insertion order.

Event mapping (closed, every TransactionType must appear here):
    BUY transaction       → BUY            opens a lot
    DIVIDEND transaction  → REINVESTMENT   opens a lot (reinvestment purchase)
    SELL transaction      → SELL           consumes lots, oldest first
    FEE transaction       → FEE            cash amount (cost_per_share), no lot effect
    Dividend row          → CASH_DIVIDEND  total_amount on ex_dividend_date
    Dividend row with reinvestment and no linked transaction
                          → REINVESTMENT   opens a lot on buy_order_date

Processing order is (date, id) with the source table as final tie-break.

Usage:
    tracker = LotTracker()
    result = tracker.track(
        portfolio_fund_id=7,
        transactions=transactions,
        dividends=dividends,
        as_of=date(2024, 3, 1),
    )
    result.open_lots        # [Lot(...), ...]
    result.disposals        # [Disposal(...), ...]
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, NoReturn

from portfolio_engine.models import TransactionType
from portfolio_engine.services.constants import ZERO
from portfolio_engine.services.exceptions import (
    InconsistentLedgerError,
    InsufficientSharesError,
)
from portfolio_engine.services.valuation.types import (
    CashFlow,
    Disposal,
    EventKind,
    EventSource,
    LedgerEvent,
    Lot,
    LotTrackingResult,
)

if TYPE_CHECKING:
    from portfolio_engine.models import Dividend, Transaction

logger = logging.getLogger(__name__)


TRANSACTION_EVENT_KINDS: dict[TransactionType, EventKind] = {
    TransactionType.BUY: EventKind.BUY,
    TransactionType.SELL: EventKind.SELL,
    TransactionType.DIVIDEND: EventKind.REINVESTMENT,
    TransactionType.FEE: EventKind.FEE,
}

# Events that open or consume lots need strictly positive shares and price
_LOT_EVENT_KINDS = frozenset({EventKind.BUY, EventKind.SELL, EventKind.REINVESTMENT})


def fail_inconsistent_ledger(
        log: logging.Logger,
        portfolio_fund_id: int,
        message: str,
        context: dict,
) -> NoReturn:
    """Log an invariant violation at ERROR with its context, then raise it."""
    context = {"portfolio_fund_id": portfolio_fund_id, **context}
    log.error(
        f"Inconsistent ledger for portfolio fund {portfolio_fund_id}: {message}",
        extra={"ledger_context": context},
    )
    raise InconsistentLedgerError(message, portfolio_fund_id=portfolio_fund_id, context=context)


@dataclass
class _OpenLot:
    """Working copy of a lot, local to one replay."""

    source_id: int
    source: EventSource
    open_date: date
    shares: Decimal
    cost_per_share: Decimal
    remaining_shares: Decimal

    def freeze(self, portfolio_fund_id: int) -> Lot:
        return Lot(
            portfolio_fund_id=portfolio_fund_id,
            source_id=self.source_id,
            source=self.source,
            open_date=self.open_date,
            shares=self.shares,
            cost_per_share=self.cost_per_share,
            remaining_shares=self.remaining_shares,
        )


class LotTracker:
    """
    Replays a portfolio fund's history into FIFO lots.

    Stateless: no counters survive between calls.
    """

    def build_events(
            self,
            portfolio_fund_id: int,
            transactions: Iterable[Transaction],
            dividends: Iterable[Dividend] = (),
    ) -> list[LedgerEvent]:
        """
        Map ledger rows to tagged events in processing order.

        Raises:
            InconsistentLedgerError: Unknown transaction type, or a lot
                event with non-positive shares or price
        """
        events: list[LedgerEvent] = []

        for txn in transactions:
            events.append(self._transaction_event(portfolio_fund_id, txn))

        for dividend in dividends:
            events.extend(self._dividend_events(dividend))

        for event in events:
            if event.kind in _LOT_EVENT_KINDS and (event.shares <= ZERO or event.price <= ZERO):
                fail_inconsistent_ledger(
                    logger,
                    portfolio_fund_id,
                    f"{event.kind.value} event {event.event_id} on {event.date} must have "
                    f"positive shares and price (shares={event.shares}, price={event.price})",
                    {
                        "event_id": event.event_id,
                        "source": event.source.name,
                        "kind": event.kind.value,
                        "date": event.date.isoformat(),
                        "shares": str(event.shares),
                        "price": str(event.price),
                    },
                )

        events.sort(key=lambda e: e.sort_key)
        return events

    def track(
            self,
            portfolio_fund_id: int,
            transactions: Iterable[Transaction],
            dividends: Iterable[Dividend] = (),
            as_of: date | None = None,
    ) -> LotTrackingResult:
        """
        Compute lot state as of a date.

        Args:
            portfolio_fund_id: Portfolio fund the rows belong to
            transactions: Its transactions, in any order
            dividends: Its dividends, in any order
            as_of: Ignore events after this date (None = full history)

        Returns:
            LotTrackingResult with every lot, disposal and cash flow

        Raises:
            InsufficientSharesError: A sell exceeds the shares held at its date.
                Nothing is returned, so no partial lot state or disposal escapes.
        """
        events = self.build_events(portfolio_fund_id, transactions, dividends)
        if as_of is not None:
            events = [e for e in events if e.date <= as_of]

        lots: list[_OpenLot] = []
        disposals: list[Disposal] = []
        sells: list[LedgerEvent] = []
        cash_dividends: list[CashFlow] = []
        fees: list[CashFlow] = []

        for event in events:
            if event.kind in (EventKind.BUY, EventKind.REINVESTMENT):
                lots.append(_OpenLot(
                    source_id=event.event_id,
                    source=event.source,
                    open_date=event.date,
                    shares=event.shares,
                    cost_per_share=event.price,
                    remaining_shares=event.shares,
                ))

            elif event.kind == EventKind.SELL:
                disposals.extend(self._consume_fifo(portfolio_fund_id, lots, event))
                sells.append(event)

            elif event.kind == EventKind.CASH_DIVIDEND:
                cash_dividends.append(CashFlow(event.event_id, event.date, event.price))

            elif event.kind == EventKind.FEE:
                fees.append(CashFlow(event.event_id, event.date, event.price))

            else:
                fail_inconsistent_ledger(
                    logger,
                    portfolio_fund_id,
                    f"Unhandled event kind {event.kind!r}",
                    {"event_id": event.event_id, "kind": str(event.kind)},
                )

        result = LotTrackingResult(
            portfolio_fund_id=portfolio_fund_id,
            as_of=as_of,
            lots=tuple(lot.freeze(portfolio_fund_id) for lot in lots),
            disposals=tuple(disposals),
            sells=tuple(sells),
            cash_dividends=tuple(cash_dividends),
            fees=tuple(fees),
        )

        logger.debug(
            f"Tracked portfolio fund {portfolio_fund_id} as of {as_of}: "
            f"{len(result.open_lots)} open lots, {result.remaining_shares} shares"
        )
        return result

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    @staticmethod
    def _consume_fifo(
            portfolio_fund_id: int,
            lots: list[_OpenLot],
            sell: LedgerEvent,
    ) -> list[Disposal]:
        """Consume a sell from the oldest open lots (mutates lots)."""
        available = sum((lot.remaining_shares for lot in lots), ZERO)
        if sell.shares > available:
            raise InsufficientSharesError(
                portfolio_fund_id=portfolio_fund_id,
                transaction_id=sell.event_id,
                sell_date=sell.date,
                requested=sell.shares,
                available=available,
            )

        disposals: list[Disposal] = []
        to_dispose = sell.shares

        for lot in lots:
            if to_dispose == ZERO:
                break
            if lot.remaining_shares == ZERO:
                continue

            taken = min(lot.remaining_shares, to_dispose)
            lot.remaining_shares -= taken
            to_dispose -= taken

            disposals.append(Disposal(
                transaction_id=sell.event_id,
                disposal_date=sell.date,
                lot_source_id=lot.source_id,
                lot_open_date=lot.open_date,
                shares_disposed=taken,
                lot_cost_per_share=lot.cost_per_share,
                sale_price=sell.price,
            ))

        return disposals

    @staticmethod
    def _transaction_event(portfolio_fund_id: int, txn: Transaction) -> LedgerEvent:
        try:
            kind = TRANSACTION_EVENT_KINDS[TransactionType(txn.type)]
        except (KeyError, ValueError):
            fail_inconsistent_ledger(
                logger,
                portfolio_fund_id,
                f"Transaction {txn.id} has unknown type {txn.type!r}",
                {"transaction_id": txn.id, "type": str(txn.type)},
            )

        if kind == EventKind.FEE:
            # Fee amount is carried in cost_per_share
            return LedgerEvent(
                kind=kind,
                event_id=txn.id,
                source=EventSource.TRANSACTION,
                date=txn.date,
                shares=ZERO,
                price=txn.cost_per_share,
            )

        return LedgerEvent(
            kind=kind,
            event_id=txn.id,
            source=EventSource.TRANSACTION,
            date=txn.date,
            shares=txn.shares,
            price=txn.cost_per_share,
        )

    @staticmethod
    def _dividend_events(dividend: Dividend) -> list[LedgerEvent]:
        events: list[LedgerEvent] = []

        if dividend.total_amount and dividend.total_amount > ZERO:
            events.append(LedgerEvent(
                kind=EventKind.CASH_DIVIDEND,
                event_id=dividend.id,
                source=EventSource.DIVIDEND,
                date=dividend.ex_dividend_date,
                shares=ZERO,
                price=dividend.total_amount,
            ))

        # A linked DIVIDEND transaction already opens this lot
        if dividend.has_reinvestment and dividend.reinvestment_transaction_id is None:
            events.append(LedgerEvent(
                kind=EventKind.REINVESTMENT,
                event_id=dividend.id,
                source=EventSource.DIVIDEND,
                date=dividend.buy_order_date,
                shares=dividend.reinvestment_shares,
                price=dividend.reinvestment_price,
            ))

        return events
