# backend/portfolio_engine/services/engine.py
"""
PortfolioEngine - the engine's surface for the host service.

Operations:
    valuate(ledger, portfolio_id, valuation_date)        → PortfolioValuation
    get_snapshot(ledger, portfolio_id, snapshot_date)    → MaterializedSnapshot (cached)
    get_history(ledger, portfolio_id, start, end)        → PortfolioHistory (cached per day)
    get_fund_history(ledger, portfolio_id, start, end)   → list[FundHistory]
    get_lots(ledger, portfolio_fund_id, as_of)           → LotTrackingResult
    get_realized_gain_loss(ledger, portfolio_fund_id)    → list[RealizedGainLossRecord] (stored)
    regenerate_realized_gain_loss(ledger, pf_id)         → list[RealizedGainLossRecord] (replaced)
    invalidate_portfolio(portfolio_id, from_date)        → snapshots removed
    invalidate_all(from_date)                            → snapshots removed

The engine holds no per-request state: the ledger store is passed on
every call. The snapshot cache is the only state shared between calls,
so one engine instance should be shared by the whole process.

Usage:
    engine = PortfolioEngine()

    with session_scope() as db:
        ledger = SqlLedgerStore(db)
        snapshot = engine.get_snapshot(ledger, portfolio_id=1, snapshot_date=date(2024, 3, 15))

    # After a ledger write affecting portfolio 1 from 2024-02-01 onwards
    engine.invalidate_portfolio(1, date(2024, 2, 1))
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING

from portfolio_engine.config import settings
from portfolio_engine.services.exceptions import PortfolioFundNotFoundError
from portfolio_engine.services.materialization import MaterializationService, SnapshotCache
from portfolio_engine.services.valuation import ValuationService
from portfolio_engine.services.valuation.types import RealizedGainLossRecord

if TYPE_CHECKING:
    from portfolio_engine.services.protocols import LedgerStoreProtocol
    from portfolio_engine.services.valuation.types import (
        FundHistory,
        LotTrackingResult,
        MaterializedSnapshot,
        PortfolioHistory,
        PortfolioValuation,
    )

logger = logging.getLogger(__name__)


class PortfolioEngine:
    """
    Facade over valuation, realized gain/loss and materialization.

    Attributes:
        _valuation: Point-in-time valuation and lot replay
        _cache: Shared snapshot store
        _materialization: Snapshot and history queries
    """

    def __init__(
            self,
            valuation_service: ValuationService | None = None,
            snapshot_cache: SnapshotCache | None = None,
            max_history_days: int | None = None,
    ) -> None:
        """
        Args:
            valuation_service: Defaults to a ValuationService with a CurrencyConverter
            snapshot_cache: Defaults to a SnapshotCache sized from settings
            max_history_days: Defaults to settings.max_history_days
        """
        self._valuation = valuation_service or ValuationService()
        self._cache = snapshot_cache or SnapshotCache(max_size=settings.snapshot_cache_max_size)
        self._materialization = MaterializationService(
            valuation_service=self._valuation,
            cache=self._cache,
            max_history_days=max_history_days or settings.max_history_days,
        )

        logger.info("PortfolioEngine initialized")

    @property
    def cache(self) -> SnapshotCache:
        return self._cache

    # =========================================================================
    # QUERIES
    # =========================================================================

    def valuate(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_id: int,
            valuation_date: date,
    ) -> PortfolioValuation:
        """Fresh (uncached) valuation with per-fund detail."""
        return self._valuation.valuate(ledger, portfolio_id, valuation_date)

    def get_snapshot(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_id: int,
            snapshot_date: date,
    ) -> MaterializedSnapshot:
        return self._materialization.get_snapshot(ledger, portfolio_id, snapshot_date)

    def get_history(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_id: int,
            start_date: date,
            end_date: date,
            today: date | None = None,
    ) -> PortfolioHistory:
        return self._materialization.get_range(
            ledger, portfolio_id, start_date, end_date, today=today
        )

    def get_fund_history(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_id: int,
            start_date: date,
            end_date: date,
            today: date | None = None,
    ) -> list[FundHistory]:
        return self._materialization.get_fund_history(
            ledger, portfolio_id, start_date, end_date, today=today
        )

    def get_lots(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_fund_id: int,
            as_of: date | None = None,
    ) -> LotTrackingResult:
        """
        Lot state of a portfolio fund as of a date.

        Raises:
            PortfolioFundNotFoundError: Unknown portfolio fund
            InsufficientSharesError: A sell up to as_of exceeds held shares
        """
        if ledger.get_portfolio_fund(portfolio_fund_id) is None:
            raise PortfolioFundNotFoundError(portfolio_fund_id)
        return self._valuation.track_lots(ledger, portfolio_fund_id, as_of=as_of)

    def get_realized_gain_loss(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_fund_id: int,
    ) -> list[RealizedGainLossRecord]:
        """
        Stored realized records of a portfolio fund, in insertion order.

        Read-only. LedgerWriter regenerates the set on every write to the
        fund's history, so the stored records always match a full replay.

        Raises:
            PortfolioFundNotFoundError: Unknown portfolio fund
        """
        if ledger.get_portfolio_fund(portfolio_fund_id) is None:
            raise PortfolioFundNotFoundError(portfolio_fund_id)

        return [
            RealizedGainLossRecord.from_model(row)
            for row in ledger.list_realized_gain_loss(portfolio_fund_id)
        ]

    def regenerate_realized_gain_loss(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_fund_id: int,
    ) -> list[RealizedGainLossRecord]:
        """
        Rebuild a portfolio fund's realized records from its full history.

        The stored set is replaced in the ledger's current transaction;
        the caller commits. On any error nothing is replaced.

        Raises:
            PortfolioFundNotFoundError: Unknown portfolio fund
            InsufficientSharesError: A sell exceeds held shares
            InconsistentLedgerError: Replay invariant violated
        """
        if ledger.get_portfolio_fund(portfolio_fund_id) is None:
            raise PortfolioFundNotFoundError(portfolio_fund_id)

        records = self._valuation.realized_gain_loss(ledger, portfolio_fund_id)
        stored = ledger.replace_realized_gain_loss(portfolio_fund_id, records)

        logger.debug(
            f"Regenerated {len(stored)} realized gain/loss records for portfolio fund {portfolio_fund_id}"
        )
        return stored

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    def invalidate_portfolio(self, portfolio_id: int, from_date: date | None = None) -> int:
        """Drop cached snapshots of a portfolio dated on or after from_date."""
        return self._cache.invalidate(portfolio_id, from_date)

    def invalidate_all(self, from_date: date | None = None) -> int:
        return self._cache.invalidate_all(from_date)
