# backend/portfolio_engine/services/materialization/cache.py
"""
Thread-safe store of materialized snapshots keyed by (portfolio_id, date).

Contract:
    get_or_build(portfolio_id, date, builder)
        - Hit: return the stored snapshot
        - Miss: run builder once, store and return its result
        - Concurrent callers for the same key wait for the in-flight build
          (single-flight) and receive its result or its exception
        - A failed build stores nothing

    invalidate(portfolio_id, from_date)
        - Removes every snapshot of the portfolio with date >= from_date
        - Atomic with respect to lookups of that portfolio
        - A build in flight for the portfolio when invalidation happens
          returns to its callers but is not stored

Locking:
    Each portfolio has its own lock guarding its in-flight builds and its
    invalidation generation. A single store lock guards the LRU entries.
    Lock order is always portfolio lock → store lock. Builders run with
    no lock held, so builds for different dates proceed in parallel.

Memory Safety:
    Bounded LRU: when full, the least recently used snapshot is evicted.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date

from portfolio_engine.services.constants import SNAPSHOT_CACHE_MAX_SIZE
from portfolio_engine.services.valuation.types import MaterializedSnapshot

logger = logging.getLogger(__name__)

SnapshotKey = tuple[int, date]


class _InFlightBuild:
    """Result slot shared by the builder and the callers waiting on it."""

    def __init__(self, generation: int) -> None:
        self.generation = generation
        self._done = threading.Event()
        self._snapshot: MaterializedSnapshot | None = None
        self._error: BaseException | None = None

    def complete(self, snapshot: MaterializedSnapshot) -> None:
        self._snapshot = snapshot
        self._done.set()

    def fail(self, error: BaseException) -> None:
        self._error = error
        self._done.set()

    def wait(self) -> MaterializedSnapshot:
        self._done.wait()
        if self._error is not None:
            raise self._error
        return self._snapshot


@dataclass
class _PortfolioState:
    lock: threading.Lock = field(default_factory=threading.Lock)
    generation: int = 0
    in_flight: dict[date, _InFlightBuild] = field(default_factory=dict)


class SnapshotCache:
    """
    Bounded, thread-safe snapshot store with single-flight builds.

    This is the one piece of shared mutable state in the engine; one
    instance is shared by every request of a process.
    """

    def __init__(self, max_size: int = SNAPSHOT_CACHE_MAX_SIZE) -> None:
        """
        Args:
            max_size: Maximum number of snapshots kept (LRU eviction beyond)
        """
        self._entries: OrderedDict[SnapshotKey, MaterializedSnapshot] = OrderedDict()
        self._max_size = max_size
        self._lock = threading.Lock()
        self._portfolios: dict[int, _PortfolioState] = {}

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, portfolio_id: int, snapshot_date: date) -> MaterializedSnapshot | None:
        """Stored snapshot or None; marks the entry as recently used."""
        key = (portfolio_id, snapshot_date)
        with self._lock:
            snapshot = self._entries.get(key)
            if snapshot is not None:
                self._entries.move_to_end(key)
            return snapshot

    def get_or_build(
            self,
            portfolio_id: int,
            snapshot_date: date,
            builder: Callable[[], MaterializedSnapshot],
    ) -> MaterializedSnapshot:
        """
        Return the snapshot for a key, building it on a miss.

        Args:
            portfolio_id: Portfolio the snapshot belongs to
            snapshot_date: Snapshot date
            builder: Zero-argument callable computing the snapshot

        Raises:
            Whatever builder raises; nothing is stored in that case
        """
        key = (portfolio_id, snapshot_date)
        state = self._state(portfolio_id)

        with state.lock:
            snapshot = self.get(portfolio_id, snapshot_date)
            if snapshot is not None:
                logger.debug(f"Snapshot cache hit for {key}")
                return snapshot

            flight = state.in_flight.get(snapshot_date)
            is_owner = flight is None
            if is_owner:
                flight = _InFlightBuild(generation=state.generation)
                state.in_flight[snapshot_date] = flight

        if not is_owner:
            logger.debug(f"Waiting for in-flight snapshot build {key}")
            return flight.wait()

        logger.debug(f"Snapshot cache miss for {key}, building")
        try:
            snapshot = builder()
        except BaseException as exc:
            with state.lock:
                if state.in_flight.get(snapshot_date) is flight:
                    del state.in_flight[snapshot_date]
            flight.fail(exc)
            raise

        with state.lock:
            if state.in_flight.get(snapshot_date) is flight:
                del state.in_flight[snapshot_date]
            if state.generation == flight.generation:
                self._store(key, snapshot)
            else:
                logger.debug(f"Discarding snapshot {key}: portfolio invalidated during build")

        flight.complete(snapshot)
        return snapshot

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    def invalidate(self, portfolio_id: int, from_date: date | None = None) -> int:
        """
        Remove a portfolio's snapshots dated on or after from_date.

        Args:
            portfolio_id: Portfolio to invalidate
            from_date: Earliest affected date (None = every snapshot)

        Returns:
            Number of snapshots removed
        """
        state = self._state(portfolio_id)

        with state.lock:
            state.generation += 1
            # Builds already in flight will not be stored; new callers start fresh
            state.in_flight.clear()
            with self._lock:
                keys = [
                    key for key in self._entries
                    if key[0] == portfolio_id and (from_date is None or key[1] >= from_date)
                ]
                for key in keys:
                    del self._entries[key]

        logger.info(
            f"Invalidated {len(keys)} snapshots for portfolio {portfolio_id}"
            + (f" from {from_date}" if from_date else "")
        )
        return len(keys)

    def invalidate_all(self, from_date: date | None = None) -> int:
        """Invalidate every known portfolio (e.g. after an exchange-rate write)."""
        with self._lock:
            portfolio_ids = set(self._portfolios) | {key[0] for key in self._entries}
        return sum(self.invalidate(portfolio_id, from_date) for portfolio_id in sorted(portfolio_ids))

    def clear(self) -> None:
        """Remove every snapshot."""
        with self._lock:
            self._entries.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def dates_for(self, portfolio_id: int) -> list[date]:
        """Cached dates of a portfolio, chronological."""
        with self._lock:
            return sorted(key[1] for key in self._entries if key[0] == portfolio_id)

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    def _state(self, portfolio_id: int) -> _PortfolioState:
        with self._lock:
            state = self._portfolios.get(portfolio_id)
            if state is None:
                state = _PortfolioState()
                self._portfolios[portfolio_id] = state
            return state

    def _store(self, key: SnapshotKey, snapshot: MaterializedSnapshot) -> None:
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self._max_size:
                oldest_key = next(iter(self._entries))
                del self._entries[oldest_key]
                logger.debug(f"Snapshot cache evicted {oldest_key} (LRU)")
            self._entries[key] = snapshot
