"""
Manages the SQLite table that persists cleanup jobs across process restarts.
"""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from imgcache.models.job import JobKind, JobRecord, JobState

log = logging.getLogger(__name__)

_COLUMNS = (
    "job_id, kind, payload, state, next_due, attempts, unique_key,"
    " interval_seconds, last_run, last_error, created_at, claimed_by, lease_until"
)

# Columns added after the first release, created on existing databases
_LATE_COLUMNS = {"claimed_by": "TEXT", "lease_until": "REAL"}


class JobStore:
    """
    A thread-safe SQLite job table. Every job is one row; periodic jobs carry a
    unique key so that a directory can never hold two of them.
    """

    def __init__(self, db_path: Path, pool_size: int = 5):
        self.db_path = Path(db_path)
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with optimized PRAGMA settings."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            return conn
        except sqlite3.Error as e:
            log.error(f"Failed to connect to job database: {e}")
            raise

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Creates the job table and its index if they don't exist."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cleanup_jobs (
                    job_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    state TEXT NOT NULL,
                    next_due REAL NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    unique_key TEXT UNIQUE,
                    interval_seconds REAL,
                    last_run REAL,
                    last_error TEXT,
                    created_at REAL NOT NULL,
                    claimed_by TEXT,
                    lease_until REAL
                );
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_state_due ON"
                " cleanup_jobs(state, next_due);"
            )
            existing = {
                row[1] for row in conn.execute("PRAGMA table_info(cleanup_jobs);")
            }
            for column, column_type in _LATE_COLUMNS.items():
                if column not in existing:
                    log.debug(f"Adding column '{column}' to the job table.")
                    conn.execute(
                        f"ALTER TABLE cleanup_jobs ADD COLUMN {column} {column_type};"
                    )

    @staticmethod
    def _to_record(row: tuple[Any, ...]) -> JobRecord:
        return JobRecord(
            job_id=row[0],
            kind=JobKind(row[1]),
            payload=row[2],
            state=JobState(row[3]),
            next_due=row[4],
            attempts=row[5],
            unique_key=row[6],
            interval_seconds=row[7],
            last_run=row[8],
            last_error=row[9],
            created_at=row[10],
            claimed_by=row[11],
            lease_until=row[12],
        )

    async def _run_in_executor(self, func, *args):
        """Runs a synchronous database function within the connection semaphore."""
        async with self._connection_semaphore:
            return await asyncio.to_thread(func, *args)

    def _insert_sync(
        self,
        kind: JobKind,
        payload: str,
        next_due: float,
        unique_key: str | None,
        interval_seconds: float | None,
    ) -> tuple[int, bool]:
        """
        Inserts a job. A row that collides on the unique key is kept as is.

        Returns:
            The job id and whether a new row was created.
        """
        with self._connection() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO cleanup_jobs (kind, payload, state, next_due,"
                " unique_key, interval_seconds, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    kind.value,
                    payload,
                    JobState.ENQUEUED.value,
                    next_due,
                    unique_key,
                    interval_seconds,
                    time.time(),
                ),
            )
            if cursor.rowcount:
                return cursor.lastrowid, True
            row = conn.execute(
                "SELECT job_id FROM cleanup_jobs WHERE unique_key = ?", (unique_key,)
            ).fetchone()
            return row[0], False

    async def insert(
        self,
        kind: JobKind,
        payload: str,
        next_due: float,
        unique_key: str | None = None,
        interval_seconds: float | None = None,
    ) -> tuple[int, bool]:
        """Persists a new job unless its unique key is already taken."""
        return await self._run_in_executor(
            self._insert_sync, kind, payload, next_due, unique_key, interval_seconds
        )

    def _find_by_key_sync(self, unique_key: str) -> JobRecord | None:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM cleanup_jobs WHERE unique_key = ?",  # noqa: S608
                    (unique_key,),
                ).fetchone()
            return self._to_record(row) if row else None
        except sqlite3.Error as e:
            log.error(f"Job lookup failed for key '{unique_key}': {e}")
            return None

    async def find_by_key(self, unique_key: str) -> JobRecord | None:
        """Returns the job holding a unique key, if any."""
        return await self._run_in_executor(self._find_by_key_sync, unique_key)

    def _get_sync(self, job_id: int) -> JobRecord | None:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM cleanup_jobs WHERE job_id = ?",  # noqa: S608
                    (job_id,),
                ).fetchone()
            return self._to_record(row) if row else None
        except sqlite3.Error as e:
            log.error(f"Job lookup failed for id {job_id}: {e}")
            return None

    async def get(self, job_id: int) -> JobRecord | None:
        """Returns a single job by id."""
        return await self._run_in_executor(self._get_sync, job_id)

    def _list_sync(self) -> list[JobRecord]:
        try:
            with self._connection() as conn:
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM cleanup_jobs ORDER BY job_id"  # noqa: S608
                ).fetchall()
            return [self._to_record(row) for row in rows]
        except sqlite3.Error as e:
            log.error(f"Failed to list jobs: {e}")
            return []

    async def list_all(self) -> list[JobRecord]:
        """Returns every job, oldest first."""
        return await self._run_in_executor(self._list_sync)

    def _due_sync(self, now: float) -> list[JobRecord]:
        try:
            with self._connection() as conn:
                rows = conn.execute(
                    f"SELECT {_COLUMNS} FROM cleanup_jobs"  # noqa: S608
                    " WHERE state = ? AND next_due <= ? ORDER BY next_due, job_id",
                    (JobState.ENQUEUED.value, now),
                ).fetchall()
            return [self._to_record(row) for row in rows]
        except sqlite3.Error as e:
            log.error(f"Failed to query due jobs: {e}")
            return []

    async def due(self, now: float) -> list[JobRecord]:
        """Returns the enqueued jobs whose due time has passed."""
        return await self._run_in_executor(self._due_sync, now)

    def _claim_sync(
        self, job_id: int, next_due: float, now: float, owner: str, lease_until: float
    ) -> bool:
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    "UPDATE cleanup_jobs SET state = ?, last_run = ?, claimed_by = ?,"
                    " lease_until = ? WHERE job_id = ? AND state = ? AND next_due = ?",
                    (
                        JobState.RUNNING.value,
                        now,
                        owner,
                        lease_until,
                        job_id,
                        JobState.ENQUEUED.value,
                        next_due,
                    ),
                )
                return cursor.rowcount == 1
        except sqlite3.Error as e:
            log.error(f"Failed to claim job {job_id}: {e}")
            return False

    async def claim(
        self, job: JobRecord, now: float, owner: str, lease_seconds: float
    ) -> bool:
        """
        Atomically moves a due job to RUNNING on behalf of `owner`. Only one caller
        can win the claim for a given due time. The claim holds until
        `now + lease_seconds` unless renewed.
        """
        return await self._run_in_executor(
            self._claim_sync,
            job.job_id,
            job.next_due,
            now,
            owner,
            now + lease_seconds,
        )

    def _renew_sync(self, job_id: int, owner: str, lease_until: float) -> bool:
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    "UPDATE cleanup_jobs SET lease_until = ?"
                    " WHERE job_id = ? AND state = ? AND claimed_by = ?",
                    (lease_until, job_id, JobState.RUNNING.value, owner),
                )
                return cursor.rowcount == 1
        except sqlite3.Error as e:
            log.error(f"Failed to renew lease of job {job_id}: {e}")
            return False

    async def renew(self, job_id: int, owner: str, lease_until: float) -> bool:
        """Extends a claim still held by `owner`."""
        return await self._run_in_executor(self._renew_sync, job_id, owner, lease_until)

    def _finish_sync(
        self,
        job_id: int,
        owner: str,
        state: JobState,
        next_due: float,
        attempts: int,
        last_error: str | None,
    ) -> bool:
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    "UPDATE cleanup_jobs SET state = ?, next_due = ?, attempts = ?,"
                    " last_error = ?, claimed_by = NULL, lease_until = NULL"
                    " WHERE job_id = ? AND state = ? AND claimed_by = ?",
                    (
                        state.value,
                        next_due,
                        attempts,
                        last_error,
                        job_id,
                        JobState.RUNNING.value,
                        owner,
                    ),
                )
                return cursor.rowcount == 1
        except sqlite3.Error as e:
            log.error(f"Failed to record outcome of job {job_id}: {e}")
            return False

    async def finish(
        self,
        job_id: int,
        owner: str,
        state: JobState,
        next_due: float,
        attempts: int,
        last_error: str | None = None,
    ) -> bool:
        """
        Records the outcome of a run and the job's next state.

        Returns:
            False when `owner` no longer holds the claim; the row is left untouched.
        """
        return await self._run_in_executor(
            self._finish_sync, job_id, owner, state, next_due, attempts, last_error
        )

    def _requeue_expired_sync(self, now: float) -> int:
        try:
            with self._connection() as conn:
                cursor = conn.execute(
                    "UPDATE cleanup_jobs SET state = ?, claimed_by = NULL,"
                    " lease_until = NULL WHERE state = ?"
                    " AND (lease_until IS NULL OR lease_until <= ?)",
                    (JobState.ENQUEUED.value, JobState.RUNNING.value, now),
                )
                return cursor.rowcount
        except sqlite3.Error as e:
            log.error(f"Failed to requeue interrupted jobs: {e}")
            return 0

    async def requeue_expired(self, now: float) -> int:
        """
        Returns RUNNING jobs whose lease has run out to the queue. Jobs held by a
        live scheduler keep renewing their lease and are left alone.
        """
        return await self._run_in_executor(self._requeue_expired_sync, now)
