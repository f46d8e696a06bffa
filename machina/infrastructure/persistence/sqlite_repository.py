# machina/infrastructure/persistence/sqlite_repository.py
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Type, TypeVar
from contextlib import contextmanager
from datetime import datetime, timezone
import json
import os
import sqlite3
import threading

from machina.infrastructure.exceptions import ConcurrencyError, StorageError
from machina.infrastructure.logging.logger import get_logger

T = TypeVar('T')


class SQLiteStore:
    """
    Connection and transaction handling shared by all SQLite repositories.

    Each thread gets its own connection to the database file. Writes run in
    ``BEGIN IMMEDIATE`` transactions so concurrent writers serialize on the
    database lock instead of failing halfway through.
    """

    def __init__(self, db_path: str, enable_wal: bool = True):
        self._db_path = os.path.expandvars(db_path)
        self._enable_wal = enable_wal
        self._local = threading.local()
        self._logger = get_logger(self.__class__.__name__)

        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'connection', None)
        if conn is None:
            conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            if self._enable_wal:
                conn.execute("PRAGMA journal_mode=WAL")
            self._local.connection = conn
        return conn

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._connection()
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {str(e)}")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self._connection()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {str(e)}")
        cursor = conn.cursor()
        try:
            yield cursor
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Database error: {str(e)}")
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()

    def close(self) -> None:
        conn = getattr(self._local, 'connection', None)
        if conn is not None:
            conn.close()
            self._local.connection = None


class SQLiteRepository(SQLiteStore, Generic[T]):
    """
    SQLite document repository.

    Entities are stored as JSON in a ``data`` column next to a version
    counter and any indexed columns the subclass declares. Every write is
    mirrored into a ``<table>_audit`` table.
    """

    #: column name -> function extracting the column value from an entity
    index_columns: Dict[str, Callable[[Any], Any]] = {}

    def __init__(self,
                 entity_class: Type[T],
                 collection_name: str,
                 id_attribute: str,
                 db_path: str,
                 enable_wal: bool = True):
        """
        Initialize SQLite repository.

        Args:
            entity_class: Class type of the entities to store
            collection_name: Name of the collection (used for table naming)
            id_attribute: Attribute holding the entity's identifier
            db_path: Path to SQLite database file
            enable_wal: Whether to enable Write-Ahead Logging
        """
        super().__init__(db_path, enable_wal)
        self._entity_class = entity_class
        self._collection_name = collection_name
        self._id_attribute = id_attribute
        self._init_database()

    def _init_database(self) -> None:
        """Initialize database schema."""
        extra_columns = "".join(f",\n    {name} TEXT" for name in self.index_columns)
        with self._transaction() as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._collection_name} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL{extra_columns}
                )
            """)
            for name in self.index_columns:
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{self._collection_name}_{name}
                    ON {self._collection_name}({name})
                """)
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {self._collection_name}_audit (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entity_id TEXT NOT NULL,
                    operation TEXT NOT NULL,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    timestamp TIMESTAMP NOT NULL
                )
            """)

    def _get_entity_id(self, entity: T) -> str:
        return str(getattr(entity, self._id_attribute))

    def _index_values(self, entity: T) -> List[Any]:
        values = []
        for extractor in self.index_columns.values():
            value = extractor(entity)
            values.append(value.value if hasattr(value, 'value') else value)
        return values

    def save(self, entity: T) -> None:
        """
        Insert or update an entity and record an audit row.

        Updates are conditional on the version the entity was loaded at, so a
        copy read before another writer committed cannot overwrite that
        write. The entity's ``version`` is bumped on success.

        Raises:
            ConcurrencyError: If the stored row has moved past the entity's version
        """
        entity_id = self._get_entity_id(entity)
        entity_data = json.dumps(self._serialize_entity(entity))
        now = datetime.now(timezone.utc).isoformat()
        columns = list(self.index_columns)
        values = self._index_values(entity)
        expected_version = getattr(entity, 'version', 0)

        with self._transaction() as cursor:
            if expected_version:
                new_version = expected_version + 1
                assignments = "".join(f", {c} = ?" for c in columns)
                cursor.execute(
                    f"""
                    UPDATE {self._collection_name}
                    SET data = ?, version = ?, updated_at = ?{assignments}
                    WHERE id = ? AND version = ?
                    """,
                    (entity_data, new_version, now, *values, entity_id, expected_version)
                )
                if cursor.rowcount == 0:
                    raise ConcurrencyError(
                        f"{self._collection_name} {entity_id} was modified by another writer "
                        f"(expected version {expected_version})",
                        {"entity_id": entity_id, "expected_version": expected_version}
                    )
                self._save_audit_record(cursor, entity_id, "UPDATE", entity_data, new_version)
            else:
                cursor.execute(
                    f"SELECT 1 FROM {self._collection_name} WHERE id = ?",
                    (entity_id,)
                )
                if cursor.fetchone():
                    raise ConcurrencyError(
                        f"{self._collection_name} {entity_id} already exists",
                        {"entity_id": entity_id}
                    )
                new_version = 1
                extra = "".join(f", {c}" for c in columns)
                placeholders = ", ?" * len(columns)
                cursor.execute(
                    f"""
                    INSERT INTO {self._collection_name}
                    (id, data, version, created_at, updated_at{extra})
                    VALUES (?, ?, 1, ?, ?{placeholders})
                    """,
                    (entity_id, entity_data, now, now, *values)
                )
                self._save_audit_record(cursor, entity_id, "INSERT", entity_data, 1)
        entity.version = new_version

    def find_by_id(self, entity_id: str) -> Optional[T]:
        with self._read() as conn:
            row = conn.execute(
                f"SELECT data, version FROM {self._collection_name} WHERE id = ?",
                (str(entity_id),)
            ).fetchone()
            return self._load(row) if row else None

    def find_all(self) -> List[T]:
        with self._read() as conn:
            rows = conn.execute(
                f"SELECT data, version FROM {self._collection_name} ORDER BY created_at"
            ).fetchall()
            return [self._load(row) for row in rows]

    def find_by_criteria(self,
                         criteria: Dict[str, Any],
                         order_by: str = "created_at",
                         limit: Optional[int] = None,
                         offset: int = 0) -> List[T]:
        """
        Find entities matching criteria.

        Keys naming an indexed column compare against that column. Tuple or
        list values match any member. Other keys match JSON fields. A key
        suffixed ``__gte`` / ``__lte`` compares ``created_at``.
        """
        conditions = []
        params: List[Any] = []
        for key, value in criteria.items():
            if value is None:
                continue
            if key == "created_at__gte":
                conditions.append("created_at >= ?")
                params.append(value)
            elif key == "created_at__lte":
                conditions.append("created_at <= ?")
                params.append(value)
            elif key in self.index_columns:
                if isinstance(value, (list, tuple, set)):
                    values = [v.value if hasattr(v, 'value') else v for v in value]
                    conditions.append(f"{key} IN ({','.join('?' * len(values))})")
                    params.extend(values)
                else:
                    conditions.append(f"{key} = ?")
                    params.append(value.value if hasattr(value, 'value') else value)
            else:
                conditions.append(f"json_extract(data, '$.{key}') = ?")
                params.append(json.dumps(value) if isinstance(value, (dict, list)) else value)

        query = f"SELECT data, version FROM {self._collection_name}"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += f" ORDER BY {order_by}"
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, offset])

        with self._read() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._load(row) for row in rows]

    def delete(self, entity_id: str) -> None:
        with self._transaction() as cursor:
            row = cursor.execute(
                f"SELECT data, version FROM {self._collection_name} WHERE id = ?",
                (entity_id,)
            ).fetchone()
            if row is None:
                return
            self._save_audit_record(cursor, entity_id, "DELETE", row[0], row[1])
            cursor.execute(f"DELETE FROM {self._collection_name} WHERE id = ?", (entity_id,))

    def _save_audit_record(self, cursor: sqlite3.Cursor, entity_id: str, operation: str,
                           data: str, version: int) -> None:
        cursor.execute(
            f"""
            INSERT INTO {self._collection_name}_audit
            (entity_id, operation, data, version, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            (entity_id, operation, data, version, datetime.now(timezone.utc).isoformat())
        )

    def get_audit_log(self, entity_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get audit log entries, newest first."""
        query = f"SELECT * FROM {self._collection_name}_audit"
        params: List[Any] = []
        if entity_id:
            query += " WHERE entity_id = ?"
            params.append(entity_id)
        query += " ORDER BY id DESC"
        with self._read() as conn:
            return [dict(row) for row in conn.execute(query, params).fetchall()]

    def _serialize_entity(self, entity: T) -> Dict[str, Any]:
        return entity.to_dict()

    def _deserialize_entity(self, data: Dict[str, Any]) -> T:
        return self._entity_class.from_dict(data)

    def _load(self, row: sqlite3.Row) -> T:
        entity = self._deserialize_entity(json.loads(row[0]))
        entity.version = row[1]
        return entity
