"""SQLite persistence."""

from .sqlite_repository import SQLiteRepository, SQLiteStore
from .repositories import (
    SQLiteMachineRepository,
    SQLiteDeploymentRepository,
    SQLiteDeploymentLogRepository,
    SQLiteProviderAccountRepository,
    SQLiteAuditRepository,
)

__all__ = [
    "SQLiteRepository",
    "SQLiteStore",
    "SQLiteMachineRepository",
    "SQLiteDeploymentRepository",
    "SQLiteDeploymentLogRepository",
    "SQLiteProviderAccountRepository",
    "SQLiteAuditRepository",
]
