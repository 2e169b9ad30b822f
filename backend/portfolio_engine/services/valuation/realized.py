# backend/portfolio_engine/services/valuation/realized.py
"""
Realized gain/loss calculation.

Turns the disposals of a LotTrackingResult into one record per
(lot, sell) pair. Records are always derived from the full replay,
never patched: when a fund's history changes the whole set is
regenerated and replaces the stored one.

Formulas (fund currency):
    proceeds   = shares_disposed × sale_price
    cost_basis = shares_disposed × lot.cost_per_share
    gain_loss  = proceeds - cost_basis

A sell spanning two lots therefore splits its proceeds by
shares_disposed / sell.shares.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import NoReturn

from portfolio_engine.services.constants import ZERO
from portfolio_engine.services.valuation.lot_tracker import fail_inconsistent_ledger
from portfolio_engine.services.valuation.types import (
    LotTrackingResult,
    RealizedGainLossRecord,
)

logger = logging.getLogger(__name__)


class RealizedGainLossCalculator:
    """
    Produces realized gain/loss records and checks replay invariants.

    Invariants checked on every call:
        - Σ shares_disposed per sell == sell.shares
        - Σ remaining_shares == acquired shares - sold shares
    """

    def calculate(self, tracking: LotTrackingResult) -> list[RealizedGainLossRecord]:
        """
        Build realized records for every disposal in a replay.

        Args:
            tracking: Output of LotTracker.track()

        Returns:
            Records in disposal order (sell order, then FIFO lot order)

        Raises:
            InconsistentLedgerError: An invariant does not hold
        """
        records: list[RealizedGainLossRecord] = []
        disposed_by_sell: dict[int, Decimal] = defaultdict(lambda: ZERO)

        for disposal in tracking.disposals:
            proceeds = disposal.shares_disposed * disposal.sale_price
            cost_basis = disposal.shares_disposed * disposal.lot_cost_per_share

            records.append(RealizedGainLossRecord(
                portfolio_fund_id=tracking.portfolio_fund_id,
                transaction_id=disposal.transaction_id,
                lot_open_date=disposal.lot_open_date,
                disposal_date=disposal.disposal_date,
                shares_disposed=disposal.shares_disposed,
                cost_per_share=disposal.lot_cost_per_share,
                sale_price=disposal.sale_price,
                cost_basis=cost_basis,
                proceeds=proceeds,
                gain_loss=proceeds - cost_basis,
            ))
            disposed_by_sell[disposal.transaction_id] += disposal.shares_disposed

        self._check_completeness(tracking, disposed_by_sell)
        self._check_conservation(tracking)

        return records

    # =========================================================================
    # INVARIANT CHECKS
    # =========================================================================

    def _check_completeness(
            self,
            tracking: LotTrackingResult,
            disposed_by_sell: dict[int, Decimal],
    ) -> None:
        sell_ids = {sell.event_id for sell in tracking.sells}

        for sell in tracking.sells:
            disposed = disposed_by_sell.get(sell.event_id, ZERO)
            if disposed != sell.shares:
                self._fail(
                    tracking,
                    f"Sell {sell.event_id} disposed {disposed} shares, expected {sell.shares}",
                    {
                        "transaction_id": sell.event_id,
                        "sell_date": sell.date.isoformat(),
                        "sell_shares": str(sell.shares),
                        "disposed_shares": str(disposed),
                    },
                )

        orphans = sorted(set(disposed_by_sell) - sell_ids)
        if orphans:
            self._fail(
                tracking,
                f"Disposals reference unknown sells {orphans}",
                {"transaction_ids": orphans},
            )

    def _check_conservation(self, tracking: LotTrackingResult) -> None:
        expected = tracking.acquired_shares - tracking.sold_shares
        if tracking.remaining_shares != expected:
            self._fail(
                tracking,
                f"Remaining shares {tracking.remaining_shares} != "
                f"acquired {tracking.acquired_shares} - sold {tracking.sold_shares}",
                {
                    "remaining_shares": str(tracking.remaining_shares),
                    "acquired_shares": str(tracking.acquired_shares),
                    "sold_shares": str(tracking.sold_shares),
                },
            )

    @staticmethod
    def _fail(tracking: LotTrackingResult, message: str, context: dict) -> NoReturn:
        fail_inconsistent_ledger(
            logger,
            tracking.portfolio_fund_id,
            message,
            {"as_of": tracking.as_of.isoformat() if tracking.as_of else None, **context},
        )
