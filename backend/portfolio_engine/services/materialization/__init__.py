# backend/portfolio_engine/services/materialization/__init__.py
"""
Materialization Package.

Precomputed portfolio snapshots, one per (portfolio, date), built lazily
from valuations and invalidated when the ledger changes.

Architecture:
    materialization/
    ├── __init__.py    # This file - package exports
    ├── cache.py       # SnapshotCache (thread-safe keyed store, single-flight)
    └── service.py     # MaterializationService (snapshots, history ranges)
"""

from portfolio_engine.services.materialization.cache import SnapshotCache
from portfolio_engine.services.materialization.service import MaterializationService

__all__ = [
    "SnapshotCache",
    "MaterializationService",
]
