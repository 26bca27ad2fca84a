"""
SQLite-based ledger store.

Tables:
- origins, banks, categories: dimension entities, unique by natural key
- transactions: the canonical ledger, unique by external_id when present
- import_jobs: asynchronous bulk import state (migration 002)
- sync_runs: provider sync history (migration 003)
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import ConflictError, NotFoundError
from ..schemas.records import ImportJob, JobStatus, RecordKind, TransactionRecord, UpsertOutcome

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class DimensionTable:
    """Table and natural-key columns of a dimension entity."""

    table: str
    key_columns: tuple[str, ...]


DIMENSIONS = {
    "origin": DimensionTable("origins", ("name",)),
    "bank": DimensionTable("banks", ("name",)),
    "category": DimensionTable("categories", ("flow", "major_category", "category", "sub_category")),
}

# Columns a re-sync may overwrite; id, external_id, source_kind and created_at never change
_MUTABLE_TRANSACTION_COLUMNS = (
    "date",
    "month",
    "year",
    "flow",
    "income_amount",
    "outgoing_amount",
    "description",
    "notes",
    "origin_id",
    "bank_id",
    "category_id",
    "account_id",
    "categorization_confidence",
    "is_machine_categorized",
    "is_human_validated",
    "raw_payload",
)


class LedgerStore:
    """
    SQLite-based store for the ledger and its ingestion bookkeeping.

    Every public method opens its own connection, so one store instance can be
    shared between the request thread and import worker threads. Atomicity
    relies on SQLite unique constraints and guarded UPDATE statements, not on
    in-process locks.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True, timeout: float = 30.0):
        """
        Initialize the ledger store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
            timeout: Seconds to wait on a locked database
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions.

        immediate=True takes the write lock up front, for read-then-write
        sequences that must not interleave with another writer.
        """
        conn = self._get_connection()
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize the core ledger schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS origins (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS banks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS categories (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    flow TEXT NOT NULL,
                    major_category TEXT NOT NULL,
                    category TEXT NOT NULL,
                    sub_category TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    UNIQUE (flow, major_category, category, sub_category)
                )
            """
            )

            # Exactly one of income_amount / outgoing_amount is set, as a decimal string
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    date TEXT NOT NULL,
                    month TEXT NOT NULL,
                    year INTEGER NOT NULL,
                    flow TEXT NOT NULL,
                    income_amount TEXT,
                    outgoing_amount TEXT,
                    description TEXT NOT NULL,
                    notes TEXT,
                    origin_id INTEGER NOT NULL,
                    bank_id INTEGER NOT NULL,
                    category_id INTEGER NOT NULL,
                    external_id TEXT UNIQUE,
                    account_id TEXT,
                    source_kind TEXT NOT NULL,
                    categorization_confidence REAL NOT NULL,
                    is_machine_categorized INTEGER NOT NULL DEFAULT 0,
                    is_human_validated INTEGER NOT NULL DEFAULT 0,
                    raw_payload TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (origin_id) REFERENCES origins(id),
                    FOREIGN KEY (bank_id) REFERENCES banks(id),
                    FOREIGN KEY (category_id) REFERENCES categories(id),
                    CHECK ((income_amount IS NULL) != (outgoing_amount IS NULL))
                )
            """
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id, date)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        finally:
            conn.close()

    # Dimension methods

    def insert_or_fetch_dimension(self, entity: str, key: tuple[str, ...]) -> int:
        """
        Return the id of the dimension row with this natural key, creating it if needed.

        Uses INSERT ... ON CONFLICT DO NOTHING followed by a SELECT in the same
        transaction, so concurrent callers converge on a single row.

        Raises:
            ConflictError: If the insert hit a constraint violation; the caller
                should re-fetch.
        """
        dim = DIMENSIONS[entity]
        columns = ", ".join(dim.key_columns)
        placeholders = ", ".join("?" for _ in dim.key_columns)
        where = " AND ".join(f"{c} = ?" for c in dim.key_columns)

        try:
            with self._transaction() as conn:
                conn.execute(
                    f"""
                    INSERT INTO {dim.table} ({columns}, created_at)
                    VALUES ({placeholders}, ?)
                    ON CONFLICT ({columns}) DO NOTHING
                """,
                    (*key, _now()),
                )
                row = conn.execute(
                    f"SELECT id FROM {dim.table} WHERE {where}", key
                ).fetchone()
        except sqlite3.IntegrityError as e:
            raise ConflictError(entity, key) from e

        if row is None:
            raise ConflictError(entity, key)
        return row["id"]

    def find_dimension(self, entity: str, key: tuple[str, ...]) -> int | None:
        """Look up a dimension row by natural key without creating it."""
        dim = DIMENSIONS[entity]
        where = " AND ".join(f"{c} = ?" for c in dim.key_columns)
        with self._transaction() as conn:
            row = conn.execute(f"SELECT id FROM {dim.table} WHERE {where}", key).fetchone()
        return row["id"] if row else None

    def list_dimension(self, entity: str) -> list[dict[str, Any]]:
        """All rows of a dimension table, ordered by id."""
        dim = DIMENSIONS[entity]
        with self._transaction() as conn:
            rows = conn.execute(f"SELECT * FROM {dim.table} ORDER BY id").fetchall()
        return [dict(row) for row in rows]

    def count_dimension(self, entity: str) -> int:
        dim = DIMENSIONS[entity]
        with self._transaction() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {dim.table}").fetchone()[0]

    # Transaction methods

    def _check_references(self, conn: sqlite3.Connection, values: dict[str, Any]) -> None:
        for entity, column in (("origin", "origin_id"), ("bank", "bank_id"), ("category", "category_id")):
            table = DIMENSIONS[entity].table
            if conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (values[column],)).fetchone() is None:
                raise NotFoundError(entity, values[column])

    def _insert_transaction(self, conn: sqlite3.Connection, values: dict[str, Any]) -> int:
        now = _now()
        row = {**values, "created_at": now, "updated_at": now}
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        cursor = conn.execute(
            f"INSERT INTO transactions ({columns}) VALUES ({placeholders})", tuple(row.values())
        )
        return cursor.lastrowid

    def _update_transaction(
        self, conn: sqlite3.Connection, transaction_id: int, values: dict[str, Any]
    ) -> None:
        mutable = {k: values[k] for k in _MUTABLE_TRANSACTION_COLUMNS if k in values}
        assignments = ", ".join(f"{k} = ?" for k in mutable)
        conn.execute(
            f"UPDATE transactions SET {assignments}, updated_at = ? WHERE id = ?",
            (*mutable.values(), _now(), transaction_id),
        )

    def insert_transaction(self, values: dict[str, Any]) -> int:
        """
        Insert a ledger row unconditionally.

        Raises:
            NotFoundError: If a dimension reference does not exist
        """
        with self._transaction() as conn:
            self._check_references(conn, values)
            return self._insert_transaction(conn, values)

    def upsert_transaction_by_external_id(
        self, values: dict[str, Any]
    ) -> tuple[int, UpsertOutcome]:
        """
        Insert a provider transaction, or update the row with the same external_id.

        The lookup and the write run in one immediate transaction so the row
        id stays stable across re-syncs.

        Returns:
            Tuple of (transaction id, outcome)

        Raises:
            NotFoundError: If a dimension reference does not exist
        """
        external_id = values["external_id"]
        with self._transaction(immediate=True) as conn:
            self._check_references(conn, values)
            existing = conn.execute(
                "SELECT id FROM transactions WHERE external_id = ?", (external_id,)
            ).fetchone()
            if existing:
                self._update_transaction(conn, existing["id"], values)
                return existing["id"], UpsertOutcome.UPDATED
            return self._insert_transaction(conn, values), UpsertOutcome.CREATED

    def get_transaction(self, transaction_id: int) -> TransactionRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM transactions WHERE id = ?", (transaction_id,)).fetchone()
        return TransactionRecord.from_row(row) if row else None

    def get_transaction_by_external_id(self, external_id: str) -> TransactionRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE external_id = ?", (external_id,)
            ).fetchone()
        return TransactionRecord.from_row(row) if row else None

    def list_transactions(
        self, account_id: str | None = None, limit: int | None = None
    ) -> list[TransactionRecord]:
        """Transactions, newest first; optionally only one provider account's."""
        query = "SELECT * FROM transactions"
        params: list[Any] = []
        if account_id is not None:
            query += " WHERE account_id = ?"
            params.append(account_id)
        query += " ORDER BY date DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        return [TransactionRecord.from_row(row) for row in rows]

    def count_transactions(self) -> int:
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0]

    # Import job methods

    def create_import_job(self, job_id: str, source_label: str, record_kind: RecordKind) -> ImportJob:
        """Create a pending import job."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO import_jobs (id, source_label, record_kind, status, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (job_id, source_label, record_kind.value, JobStatus.PENDING.value, _now()),
            )
        job = self.get_import_job(job_id)
        assert job is not None
        return job

    def claim_import_job(self, job_id: str) -> bool:
        """
        Move a job from pending to processing.

        Returns:
            True if this caller claimed the job, False if someone else did
            or the job is not pending.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE import_jobs SET status = ?, started_at = ?
                WHERE id = ? AND status = ?
            """,
                (JobStatus.PROCESSING.value, _now(), job_id, JobStatus.PENDING.value),
            )
            return cursor.rowcount == 1

    def set_import_job_total(self, job_id: str, total: int) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE import_jobs SET total_records = ? WHERE id = ? AND status = ?",
                (total, job_id, JobStatus.PROCESSING.value),
            )

    def record_import_success(self, job_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE import_jobs SET processed_records = processed_records + 1
                WHERE id = ? AND status = ?
            """,
                (job_id, JobStatus.PROCESSING.value),
            )

    def record_import_failure(self, job_id: str, record_index: int, message: str) -> None:
        """Count a failed record and append it to the error report."""
        with self._transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT error_report FROM import_jobs WHERE id = ? AND status = ?",
                (job_id, JobStatus.PROCESSING.value),
            ).fetchone()
            if row is None:
                return
            report = json.loads(row["error_report"] or "[]")
            report.append({"recordIndex": record_index, "message": message})
            conn.execute(
                """
                UPDATE import_jobs
                SET failed_records = failed_records + 1, error_report = ?
                WHERE id = ?
            """,
                (json.dumps(report), job_id),
            )

    def complete_import_job(self, job_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE import_jobs SET status = ?, completed_at = ? WHERE id = ? AND status = ?",
                (JobStatus.COMPLETED.value, _now(), job_id, JobStatus.PROCESSING.value),
            )
            return cursor.rowcount == 1

    def fail_import_job(self, job_id: str, error_message: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE import_jobs SET status = ?, error_message = ?, completed_at = ?
                WHERE id = ? AND status IN (?, ?)
            """,
                (
                    JobStatus.FAILED.value,
                    error_message,
                    _now(),
                    job_id,
                    JobStatus.PENDING.value,
                    JobStatus.PROCESSING.value,
                ),
            )
            return cursor.rowcount == 1

    def get_import_job(self, job_id: str) -> ImportJob | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM import_jobs WHERE id = ?", (job_id,)).fetchone()
        return ImportJob.from_row(row) if row else None

    def list_import_jobs(self, limit: int = 20) -> list[ImportJob]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM import_jobs ORDER BY created_at DESC LIMIT ?", (limit,)
            ).fetchall()
        return [ImportJob.from_row(row) for row in rows]

    def fail_stale_import_jobs(self, started_before: str, error_message: str) -> list[str]:
        """Fail every job still processing that started before the given timestamp."""
        with self._transaction(immediate=True) as conn:
            rows = conn.execute(
                "SELECT id FROM import_jobs WHERE status = ? AND started_at < ?",
                (JobStatus.PROCESSING.value, started_before),
            ).fetchall()
            job_ids = [row["id"] for row in rows]
            for job_id in job_ids:
                conn.execute(
                    """
                    UPDATE import_jobs SET status = ?, error_message = ?, completed_at = ?
                    WHERE id = ? AND status = ?
                """,
                    (JobStatus.FAILED.value, error_message, _now(), job_id, JobStatus.PROCESSING.value),
                )
        return job_ids

    # Sync run methods

    def record_sync_run(
        self,
        account_id: str,
        date_from: str,
        date_to: str,
        created: int,
        updated: int,
        errors: int,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_runs
                (account_id, date_from, date_to, created_count, updated_count, error_count, finished_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
                (account_id, date_from, date_to, created, updated, errors, _now()),
            )

    def get_last_sync_run(self, account_id: str) -> dict[str, Any] | None:
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM sync_runs WHERE account_id = ?
                ORDER BY finished_at DESC, id DESC LIMIT 1
            """,
                (account_id,),
            ).fetchone()
        return dict(row) if row else None

    def get_stats(self) -> dict[str, Any]:
        """Counts used by the CLI status output."""
        with self._transaction() as conn:
            stats: dict[str, Any] = {}
            for dim in DIMENSIONS.values():
                stats[dim.table] = conn.execute(f"SELECT COUNT(*) FROM {dim.table}").fetchone()[0]
            stats["transactions"] = conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0]
            stats["jobs_by_status"] = {
                row["status"]: row["n"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS n FROM import_jobs GROUP BY status"
                ).fetchall()
            }
        return stats
