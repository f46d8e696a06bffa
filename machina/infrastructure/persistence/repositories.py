"""SQLite implementations of the domain repositories."""
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from machina.domain.audit.audit_event import AuditEvent
from machina.domain.audit.repository import AuditRepository
from machina.domain.deployment.deployment_aggregate import Deployment
from machina.domain.deployment.repository import DeploymentRepository, DeploymentLogRepository
from machina.domain.deployment.value_objects import DeploymentLog, DeploymentState
from machina.domain.machine.machine_aggregate import Machine
from machina.domain.machine.repository import MachineRepository
from machina.domain.provider.provider_aggregate import ProviderAccount
from machina.domain.provider.repository import ProviderAccountRepository
from machina.infrastructure.persistence.sqlite_repository import SQLiteRepository, SQLiteStore

ACTIVE_STATES = tuple(s.value for s in DeploymentState if not s.is_terminal)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class SQLiteMachineRepository(SQLiteRepository[Machine], MachineRepository):
    index_columns = {
        "actual_status": lambda m: m.actual_status,
        "provider_account_id": lambda m: m.provider_account_id,
        "deleted": lambda m: "1" if m.is_deleted else "0",
    }

    def __init__(self, db_path: str, enable_wal: bool = True):
        super().__init__(Machine, "machines", "machine_id", db_path, enable_wal)

    def find_active(self) -> List[Machine]:
        return self.find_by_criteria({"deleted": "0"})

    def find_by_provider_account(self, provider_account_id: str) -> List[Machine]:
        return self.find_by_criteria({"provider_account_id": provider_account_id, "deleted": "0"})


class SQLiteDeploymentRepository(SQLiteRepository[Deployment], DeploymentRepository):
    index_columns = {
        "machine_id": lambda d: d.machine_id,
        "state": lambda d: d.state,
        "type": lambda d: d.type,
    }

    def __init__(self, db_path: str, enable_wal: bool = True):
        super().__init__(Deployment, "deployments", "deployment_id", db_path, enable_wal)

    def find_active(self) -> List[Deployment]:
        return self.find_by_criteria({"state": ACTIVE_STATES})

    def find_active_for_machine(self, machine_id: str) -> Optional[Deployment]:
        active = self.find_by_criteria({"machine_id": machine_id, "state": ACTIVE_STATES})
        return active[0] if active else None

    def search(self,
               machine_id: Optional[str] = None,
               deployment_type: Optional[str] = None,
               state: Optional[str] = None,
               created_after: Optional[datetime] = None,
               created_before: Optional[datetime] = None,
               limit: int = 50,
               offset: int = 0) -> List[Deployment]:
        criteria: Dict[str, Any] = {
            "machine_id": machine_id,
            "type": deployment_type,
            "state": state,
            "created_at__gte": _iso(created_after),
            "created_at__lte": _iso(created_before),
        }
        return self.find_by_criteria(criteria, order_by="created_at DESC", limit=limit, offset=offset)


class SQLiteProviderAccountRepository(SQLiteRepository[ProviderAccount], ProviderAccountRepository):
    index_columns = {
        "provider_type": lambda a: a.provider_type,
    }

    def __init__(self, db_path: str, enable_wal: bool = True):
        super().__init__(ProviderAccount, "provider_accounts", "provider_account_id", db_path, enable_wal)


class SQLiteDeploymentLogRepository(SQLiteStore, DeploymentLogRepository):
    """Append-only deployment log table."""

    def __init__(self, db_path: str, enable_wal: bool = True):
        super().__init__(db_path, enable_wal)
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS deployment_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    deployment_id TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL,
                    level TEXT NOT NULL,
                    source TEXT NOT NULL,
                    message TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_deployment_logs_deployment
                ON deployment_logs(deployment_id, id)
            """)

    def append(self, entry: DeploymentLog) -> DeploymentLog:
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO deployment_logs (deployment_id, timestamp, level, source, message)
                VALUES (?, ?, ?, ?, ?)
                """,
                (entry.deployment_id, entry.timestamp.isoformat(), entry.level.value,
                 entry.source.value, entry.message)
            )
            sequence = cursor.lastrowid
        return DeploymentLog(
            deployment_id=entry.deployment_id,
            message=entry.message,
            level=entry.level,
            source=entry.source,
            timestamp=entry.timestamp,
            sequence=sequence
        )

    def find_by_deployment(self, deployment_id: str) -> List[DeploymentLog]:
        with self._read() as conn:
            rows = conn.execute(
                """
                SELECT id, deployment_id, timestamp, level, source, message
                FROM deployment_logs WHERE deployment_id = ? ORDER BY id
                """,
                (deployment_id,)
            ).fetchall()
        return [
            DeploymentLog.from_dict({
                "sequence": row["id"],
                "deployment_id": row["deployment_id"],
                "timestamp": row["timestamp"],
                "level": row["level"],
                "source": row["source"],
                "message": row["message"],
            })
            for row in rows
        ]


class SQLiteAuditRepository(SQLiteStore, AuditRepository):
    """Append-only audit event table."""

    def __init__(self, db_path: str, enable_wal: bool = True):
        super().__init__(db_path, enable_wal)
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS audit_events (
                    event_id TEXT PRIMARY KEY,
                    action TEXT NOT NULL,
                    outcome TEXT NOT NULL,
                    target_type TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_audit_events_target
                ON audit_events(target_id, timestamp)
            """)

    def record(self, event: AuditEvent) -> None:
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO audit_events (event_id, action, outcome, target_type, target_id, data, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (event.event_id, event.action.value, event.outcome.value, event.target_type,
                 event.target_id, json.dumps(event.to_dict()), event.timestamp.isoformat())
            )

    def find_by_target(self, target_id: str, action: Optional[str] = None) -> List[AuditEvent]:
        query = "SELECT data FROM audit_events WHERE target_id = ?"
        params: List[Any] = [target_id]
        if action:
            query += " AND action = ?"
            params.append(action)
        query += " ORDER BY timestamp, rowid"
        with self._read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [AuditEvent.from_dict(json.loads(row[0])) for row in rows]

    def search(self,
               action: Optional[str] = None,
               outcome: Optional[str] = None,
               actor_id: Optional[str] = None,
               target_type: Optional[str] = None,
               target_id: Optional[str] = None,
               after: Optional[datetime] = None,
               before: Optional[datetime] = None,
               limit: int = 50,
               offset: int = 0) -> List[AuditEvent]:
        conditions = []
        params: List[Any] = []
        for column, value in (("action", action), ("outcome", outcome),
                              ("target_type", target_type), ("target_id", target_id)):
            if value:
                conditions.append(f"{column} = ?")
                params.append(value)
        if actor_id:
            conditions.append("json_extract(data, '$.actor_id') = ?")
            params.append(actor_id)
        if after is not None:
            conditions.append("timestamp >= ?")
            params.append(_iso(after))
        if before is not None:
            conditions.append("timestamp <= ?")
            params.append(_iso(before))

        query = "SELECT data FROM audit_events"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY timestamp DESC, rowid DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._read() as conn:
            rows = conn.execute(query, params).fetchall()
        return [AuditEvent.from_dict(json.loads(row[0])) for row in rows]
