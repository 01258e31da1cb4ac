# -*- coding: utf-8 -*-
"""
Record Repository - Data Access Layer

Persistence seam of the engine. Records are stored one per
``(user_id, city, country)``. ``save_record`` is a plain upsert
(last writer wins); ``compare_and_save`` is a conditional upsert that
only succeeds while the stored record still has the content hash the
caller read, which lets concurrent submissions for the same city retry
instead of overwriting each other.

Two implementations:

- ``InMemoryRecordRepository``: dictionaries behind a lock, for tests
  and one-off CLI runs.
- ``SQLiteRecordRepository``: stdlib ``sqlite3``; conditional saves run
  inside ``BEGIN IMMEDIATE`` so they are atomic across processes.

Example:
    >>> repo = SQLiteRecordRepository("cpi_records.db")
    >>> record = repo.load_record("user-1", "Cairo", "Egypt")
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from cityprosperity.config import CityProsperityConfig, get_config
from cityprosperity.engine.records import CalculationRecord
from cityprosperity.exceptions import ConcurrentUpdateError, StorageError
from cityprosperity.storage.models import ComparisonSet

logger = logging.getLogger(__name__)

#: Schema applied when a SQLite repository opens its database.
SCHEMA_PATH = Path(__file__).parent / "schema.sql"


def _newest_first(records: List[CalculationRecord]) -> List[CalculationRecord]:
    return sorted(records, key=lambda r: (r.updated_at, r.created_at), reverse=True)


class RecordRepository(ABC):
    """Storage of calculation records and saved comparisons."""

    # -- Calculation records -------------------------------------------------

    @abstractmethod
    def load_record(self, user_id: str, city: str, country: str) -> Optional[CalculationRecord]:
        """Return the record of a location, or None."""

    @abstractmethod
    def get_record(self, record_id: str) -> Optional[CalculationRecord]:
        """Return a record by id, or None."""

    @abstractmethod
    def save_record(self, record: CalculationRecord) -> None:
        """Insert or replace the record of its location (last writer wins)."""

    @abstractmethod
    def compare_and_save(self, record: CalculationRecord, expected_hash: Optional[str]) -> None:
        """
        Insert or replace a record only if the stored one is unchanged.

        Args:
            record: Record to store
            expected_hash: Content hash of the record the caller read, or
                None when the caller saw no record

        Raises:
            ConcurrentUpdateError: If the stored record has a different hash
        """

    @abstractmethod
    def delete_record(self, record_id: str) -> bool:
        """Delete a record; returns whether it existed."""

    @abstractmethod
    def list_records(self, user_id: str) -> List[CalculationRecord]:
        """All records of a user, most recently updated first."""

    # -- Saved comparisons ---------------------------------------------------

    @abstractmethod
    def save_comparison(self, comparison: ComparisonSet) -> None:
        """Store a saved comparison."""

    @abstractmethod
    def get_comparison(self, comparison_id: str) -> Optional[ComparisonSet]:
        """Return a saved comparison by id, or None."""

    @abstractmethod
    def list_comparisons(self, user_id: str) -> List[ComparisonSet]:
        """All saved comparisons of a user, newest first."""

    @abstractmethod
    def delete_comparison(self, comparison_id: str) -> bool:
        """Delete a saved comparison; returns whether it existed."""

    def close(self) -> None:
        """Release any held resources."""


# ============================================================================
# In-memory implementation
# ============================================================================


class InMemoryRecordRepository(RecordRepository):
    """Thread-safe repository backed by dictionaries."""

    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str, str], CalculationRecord] = {}
        self._comparisons: Dict[str, ComparisonSet] = {}
        self._lock = threading.Lock()

    def load_record(self, user_id: str, city: str, country: str) -> Optional[CalculationRecord]:
        with self._lock:
            return self._records.get((user_id, city, country))

    def get_record(self, record_id: str) -> Optional[CalculationRecord]:
        with self._lock:
            for record in self._records.values():
                if record.id == record_id:
                    return record
        return None

    def save_record(self, record: CalculationRecord) -> None:
        with self._lock:
            self._records[record.location_key] = record

    def compare_and_save(self, record: CalculationRecord, expected_hash: Optional[str]) -> None:
        with self._lock:
            current = self._records.get(record.location_key)
            actual_hash = current.content_hash() if current is not None else None
            if actual_hash != expected_hash:
                raise ConcurrentUpdateError(
                    f"Record for {record.city}, {record.country} changed concurrently",
                    expected_hash=expected_hash,
                    actual_hash=actual_hash,
                )
            self._records[record.location_key] = record

    def delete_record(self, record_id: str) -> bool:
        with self._lock:
            for key, record in list(self._records.items()):
                if record.id == record_id:
                    del self._records[key]
                    return True
        return False

    def list_records(self, user_id: str) -> List[CalculationRecord]:
        with self._lock:
            owned = [r for r in self._records.values() if r.user_id == user_id]
        return _newest_first(owned)

    def save_comparison(self, comparison: ComparisonSet) -> None:
        with self._lock:
            self._comparisons[comparison.id] = comparison

    def get_comparison(self, comparison_id: str) -> Optional[ComparisonSet]:
        with self._lock:
            return self._comparisons.get(comparison_id)

    def list_comparisons(self, user_id: str) -> List[ComparisonSet]:
        with self._lock:
            owned = [c for c in self._comparisons.values() if c.user_id == user_id]
        return sorted(owned, key=lambda c: c.created_at, reverse=True)

    def delete_comparison(self, comparison_id: str) -> bool:
        with self._lock:
            return self._comparisons.pop(comparison_id, None) is not None


# ============================================================================
# SQLite implementation
# ============================================================================


class SQLiteRecordRepository(RecordRepository):
    """
    Repository backed by a SQLite database file.

    One connection per repository, shared between threads behind a lock.
    Values are stored as a JSON payload next to indexed identity columns.
    """

    _UPSERT_RECORD = """
        INSERT INTO calculation_records (
            id, user_id, city, country, created_at, updated_at,
            content_hash, payload
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (user_id, city, country) DO UPDATE SET
            id = excluded.id,
            created_at = excluded.created_at,
            updated_at = excluded.updated_at,
            content_hash = excluded.content_hash,
            payload = excluded.payload
    """

    _RECORD_COLUMNS = (
        "id, user_id, city, country, created_at, updated_at, payload"
    )

    def __init__(self, db_path: str):
        """
        Open (and if needed create) the database.

        Args:
            db_path: Path to the SQLite database file

        Raises:
            StorageError: If the database cannot be opened or initialized
        """
        self.db_path = db_path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._initialize_database()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection (lazy initialization)."""
        if self._connection is None:
            try:
                self._connection = sqlite3.connect(
                    self.db_path,
                    isolation_level=None,
                    check_same_thread=False,
                )
                self._connection.row_factory = sqlite3.Row
                logger.debug("Connected to database: %s", self.db_path)
            except sqlite3.Error as e:
                logger.error("Database connection failed: %s", e)
                raise StorageError(f"Database connection failed: {e}") from e
        return self._connection

    def _initialize_database(self) -> None:
        try:
            schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
            with self._lock:
                self._get_connection().executescript(schema_sql)
            logger.info("Record store ready at %s", self.db_path)
        except (OSError, sqlite3.Error) as e:
            logger.error("Database initialization failed: %s", e)
            raise StorageError(f"Database initialization failed: {e}") from e

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.debug("Database connection closed")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> CalculationRecord:
        return CalculationRecord(
            id=row["id"],
            user_id=row["user_id"],
            city=row["city"],
            country=row["country"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            values=json.loads(row["payload"]),
        )

    @staticmethod
    def _record_params(record: CalculationRecord) -> Tuple:
        return (
            record.id,
            record.user_id,
            record.city,
            record.country,
            record.created_at.isoformat(),
            record.updated_at.isoformat(),
            record.content_hash(),
            json.dumps(record.values, sort_keys=True),
        )

    @staticmethod
    def _row_to_comparison(row: sqlite3.Row) -> ComparisonSet:
        return ComparisonSet(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            cities=json.loads(row["cities"]),
            created_at=row["created_at"],
        )

    def _query(self, sql: str, params: Tuple = ()) -> List[sqlite3.Row]:
        try:
            with self._lock:
                return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error("Query failed: %s", e)
            raise StorageError(f"Query failed: {e}") from e

    def _execute(self, sql: str, params: Tuple = ()) -> int:
        try:
            with self._lock:
                return self._get_connection().execute(sql, params).rowcount
        except sqlite3.Error as e:
            logger.error("Statement failed: %s", e)
            raise StorageError(f"Statement failed: {e}") from e

    # ========================================================================
    # CALCULATION RECORDS
    # ========================================================================

    def load_record(self, user_id: str, city: str, country: str) -> Optional[CalculationRecord]:
        rows = self._query(
            f"SELECT {self._RECORD_COLUMNS} FROM calculation_records "
            "WHERE user_id = ? AND city = ? AND country = ?",
            (user_id, city, country),
        )
        return self._row_to_record(rows[0]) if rows else None

    def get_record(self, record_id: str) -> Optional[CalculationRecord]:
        rows = self._query(
            f"SELECT {self._RECORD_COLUMNS} FROM calculation_records WHERE id = ?",
            (record_id,),
        )
        return self._row_to_record(rows[0]) if rows else None

    def save_record(self, record: CalculationRecord) -> None:
        self._execute(self._UPSERT_RECORD, self._record_params(record))
        logger.debug("Saved record %s", record.id)

    def compare_and_save(self, record: CalculationRecord, expected_hash: Optional[str]) -> None:
        try:
            with self._lock:
                conn = self._get_connection()
                conn.execute("BEGIN IMMEDIATE")
                try:
                    row = conn.execute(
                        "SELECT content_hash FROM calculation_records "
                        "WHERE user_id = ? AND city = ? AND country = ?",
                        record.location_key,
                    ).fetchone()
                    actual_hash = row["content_hash"] if row else None
                    if actual_hash != expected_hash:
                        raise ConcurrentUpdateError(
                            f"Record for {record.city}, {record.country} "
                            "changed concurrently",
                            expected_hash=expected_hash,
                            actual_hash=actual_hash,
                        )
                    conn.execute(self._UPSERT_RECORD, self._record_params(record))
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
        except sqlite3.Error as e:
            logger.error("Conditional save failed: %s", e)
            raise StorageError(f"Conditional save failed: {e}") from e
        logger.debug("Conditionally saved record %s", record.id)

    def delete_record(self, record_id: str) -> bool:
        deleted = self._execute(
            "DELETE FROM calculation_records WHERE id = ?", (record_id,),
        )
        return deleted > 0

    def list_records(self, user_id: str) -> List[CalculationRecord]:
        rows = self._query(
            f"SELECT {self._RECORD_COLUMNS} FROM calculation_records "
            "WHERE user_id = ? ORDER BY updated_at DESC, created_at DESC",
            (user_id,),
        )
        return [self._row_to_record(row) for row in rows]

    # ========================================================================
    # SAVED COMPARISONS
    # ========================================================================

    def save_comparison(self, comparison: ComparisonSet) -> None:
        self._execute(
            "INSERT OR REPLACE INTO comparison_sets "
            "(id, user_id, name, cities, created_at) VALUES (?, ?, ?, ?, ?)",
            (
                comparison.id,
                comparison.user_id,
                comparison.name,
                json.dumps(comparison.cities),
                comparison.created_at.isoformat(),
            ),
        )

    def get_comparison(self, comparison_id: str) -> Optional[ComparisonSet]:
        rows = self._query(
            "SELECT id, user_id, name, cities, created_at FROM comparison_sets "
            "WHERE id = ?",
            (comparison_id,),
        )
        return self._row_to_comparison(rows[0]) if rows else None

    def list_comparisons(self, user_id: str) -> List[ComparisonSet]:
        rows = self._query(
            "SELECT id, user_id, name, cities, created_at FROM comparison_sets "
            "WHERE user_id = ? ORDER BY created_at DESC",
            (user_id,),
        )
        return [self._row_to_comparison(row) for row in rows]

    def delete_comparison(self, comparison_id: str) -> bool:
        deleted = self._execute(
            "DELETE FROM comparison_sets WHERE id = ?", (comparison_id,),
        )
        return deleted > 0


def create_repository(config: Optional[CityProsperityConfig] = None) -> RecordRepository:
    """Build the repository selected by ``config.database_path``."""
    config = config or get_config()
    if config.uses_memory_storage:
        return InMemoryRecordRepository()
    return SQLiteRecordRepository(config.database_path)


__all__ = [
    "SCHEMA_PATH",
    "RecordRepository",
    "InMemoryRecordRepository",
    "SQLiteRecordRepository",
    "create_repository",
]
