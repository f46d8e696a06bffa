"""Reconciliation engine."""

from .service import (
    ReconciliationScheduler,
    ReconciliationService,
    SyncAction,
    SyncResult,
    SyncSummary,
)

__all__ = [
    "ReconciliationScheduler",
    "ReconciliationService",
    "SyncAction",
    "SyncResult",
    "SyncSummary",
]
