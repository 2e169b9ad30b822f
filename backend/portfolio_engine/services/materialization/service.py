# backend/portfolio_engine/services/materialization/service.py
"""
Materialization Service - snapshots and history built on the cache.

Entry points:
- get_snapshot(): One portfolio snapshot, built lazily and cached
- get_range(): Daily snapshot series between two dates
- get_fund_history(): Per-fund series taken from the same snapshots

History Range:
    The requested range is clamped to [first transaction date, today].
    Every calendar day in the clamped range gets its own snapshot; each
    day is requested independently, so builds are order-insensitive.
"""

from __future__ import annotations

import logging
from datetime import date

from portfolio_engine.services.constants import MAX_HISTORY_DAYS
from portfolio_engine.services.exceptions import (
    InvalidDateRangeError,
    PortfolioNotFoundError,
)
from portfolio_engine.services.materialization.cache import SnapshotCache
from portfolio_engine.services.protocols import (
    LedgerStoreProtocol,
    ValuationServiceProtocol,
)
from portfolio_engine.services.valuation.types import (
    FundHistory,
    FundSnapshot,
    MaterializedSnapshot,
    PortfolioHistory,
)
from portfolio_engine.utils.date_utils import days_in_range, get_calendar_days

logger = logging.getLogger(__name__)


class MaterializationService:
    """
    Serves snapshots from a SnapshotCache, building misses via valuation.

    Attributes:
        _valuation: Builds a snapshot on a cache miss
        _cache: Shared snapshot store
        _max_history_days: Longest clamped range get_range accepts
    """

    def __init__(
            self,
            valuation_service: ValuationServiceProtocol,
            cache: SnapshotCache,
            max_history_days: int = MAX_HISTORY_DAYS,
    ) -> None:
        self._valuation = valuation_service
        self._cache = cache
        self._max_history_days = max_history_days

        logger.info("MaterializationService initialized")

    def get_snapshot(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_id: int,
            snapshot_date: date,
    ) -> MaterializedSnapshot:
        """Cached snapshot for (portfolio_id, snapshot_date), built on a miss."""
        return self._cache.get_or_build(
            portfolio_id,
            snapshot_date,
            lambda: MaterializedSnapshot.from_valuation(
                self._valuation.valuate(ledger, portfolio_id, snapshot_date)
            ),
        )

    def get_range(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_id: int,
            start_date: date,
            end_date: date,
            today: date | None = None,
    ) -> PortfolioHistory:
        """
        Daily snapshots between two dates (inclusive, after clamping).

        Args:
            ledger: Ledger store for this request
            portfolio_id: Portfolio to read
            start_date: Requested first date
            end_date: Requested last date
            today: Upper clamp (default: date.today())

        Returns:
            PortfolioHistory; empty when the portfolio has no transactions
            or the clamped range is empty

        Raises:
            InvalidDateRangeError: start_date > end_date, or the clamped
                range exceeds the configured maximum
            PortfolioNotFoundError: Unknown portfolio
        """
        if start_date > end_date:
            raise InvalidDateRangeError(start_date, end_date)

        portfolio = ledger.get_portfolio(portfolio_id)
        if portfolio is None:
            raise PortfolioNotFoundError(portfolio_id)

        first_date = ledger.get_first_transaction_date(portfolio_id)
        today = today or date.today()

        if first_date is None:
            logger.debug(f"Portfolio {portfolio_id} has no transactions, empty history")
            return self._empty_history(portfolio_id, portfolio.currency)

        start = max(start_date, first_date)
        end = min(end_date, today)
        if start > end:
            return self._empty_history(portfolio_id, portfolio.currency)

        if days_in_range(start, end) > self._max_history_days:
            raise InvalidDateRangeError(
                start,
                end,
                reason=(
                    f"Date range {start} to {end} spans {days_in_range(start, end)} days, "
                    f"maximum is {self._max_history_days}"
                ),
            )

        snapshots = tuple(
            self.get_snapshot(ledger, portfolio_id, day)
            for day in get_calendar_days(start, end)
        )

        return PortfolioHistory(
            portfolio_id=portfolio_id,
            currency=portfolio.currency,
            start_date=start,
            end_date=end,
            snapshots=snapshots,
        )

    def get_fund_history(
            self,
            ledger: LedgerStoreProtocol,
            portfolio_id: int,
            start_date: date,
            end_date: date,
            today: date | None = None,
    ) -> list[FundHistory]:
        """Per-fund series over the same clamped range as get_range()."""
        history = self.get_range(ledger, portfolio_id, start_date, end_date, today=today)

        by_fund: dict[int, list[FundSnapshot]] = {}
        fund_ids: dict[int, int] = {}
        for snapshot in history.snapshots:
            for entry in snapshot.funds:
                by_fund.setdefault(entry.portfolio_fund_id, []).append(entry)
                fund_ids[entry.portfolio_fund_id] = entry.fund_id

        return [
            FundHistory(
                portfolio_fund_id=portfolio_fund_id,
                fund_id=fund_ids[portfolio_fund_id],
                entries=tuple(entries),
            )
            for portfolio_fund_id, entries in by_fund.items()
        ]

    @staticmethod
    def _empty_history(portfolio_id: int, currency: str) -> PortfolioHistory:
        return PortfolioHistory(
            portfolio_id=portfolio_id,
            currency=currency,
            start_date=None,
            end_date=None,
            snapshots=(),
        )
