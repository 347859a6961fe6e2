"""SQLite-backed ExecutionStore.

Implementation details:
- aiosqlite for async operations
- WAL mode for concurrent reads
- atomic ``UPDATE ... RETURNING`` claim so a job is handed to one worker
- INTEGER timestamps (milliseconds since epoch, UTC)
- JSON TEXT columns for payloads, contexts and traces
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
from uuid_extensions import uuid7

from pyrunbook.models import Execution, ExecutionStatus, JobStatus, ScheduledJob
from pyrunbook.storage.base import ExecutionStore, StorageError, encode_outcome

if TYPE_CHECKING:
    from pyrunbook.core.result import WorkflowResult

_JOB_COLUMNS = (
    "job_id, workflow_type, payload, execution_id, status, locked_by, retry_count, "
    "created_at, updated_at, error_message, scheduled_for, cron_expression, "
    "claimed_at, completed_at"
)

_EXECUTION_COLUMNS = (
    "execution_id, workflow_type, status, initial_context, job_id, final_output, "
    "error, failed_task_name, trace, created_at, started_at, finished_at"
)


def _to_millis(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def _from_millis(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000.0, tz=UTC)


def _now_millis() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


class SqliteExecutionStore(ExecutionStore):
    """SQLite-backed durable store.

    After __init__, the instance is not yet usable. Call connect() first.

    Usage:
        store = SqliteExecutionStore("runbook.db")
        await store.connect()
        try:
            scheduler = Scheduler(store)
            ...
        finally:
            await store.close()
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()  # Serialize access to shared connection
        self._work_notify = asyncio.Event()

    @classmethod
    async def in_memory(cls) -> SqliteExecutionStore:
        """Connected ":memory:" store, for tests."""
        instance = cls(":memory:")
        await instance.connect()
        return instance

    def __repr__(self) -> str:
        if self.db_path == ":memory:":
            return "SqliteExecutionStore(in-memory)"
        return f"SqliteExecutionStore({self.db_path})"

    async def connect(self) -> None:
        """Open the connection, enable WAL, create the schema."""
        if self._connection is not None:
            return

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            timeout=5.0,
            isolation_level=None,  # Autocommit mode for better concurrency
        )

        # In-memory databases report "memory" and don't support WAL
        cursor = await self._connection.execute("PRAGMA journal_mode=WAL")
        result = await cursor.fetchone()
        await cursor.close()
        if result:
            mode = result[0].upper()
            if mode not in ("WAL", "MEMORY"):
                raise StorageError(f"Failed to enable WAL mode, got: {result[0]}")

        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        await self._create_schema()
        await self._connection.commit()

    async def _create_schema(self) -> None:
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                job_id TEXT PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                payload TEXT NOT NULL,
                execution_id TEXT,
                status TEXT CHECK( status IN (
                    'PENDING','RUNNING','COMPLETE','FAILED'
                ) ) NOT NULL,
                locked_by TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                error_message TEXT,
                scheduled_for INTEGER,
                cron_expression TEXT,
                claimed_at INTEGER,
                completed_at INTEGER
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_jobs_status
            ON jobs(status, scheduled_for, created_at)
        """)

        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                workflow_type TEXT NOT NULL,
                status TEXT CHECK( status IN (
                    'pending','running','completed','failed'
                ) ) NOT NULL,
                initial_context TEXT NOT NULL,
                job_id TEXT,
                final_output TEXT,
                error TEXT,
                failed_task_name TEXT,
                trace TEXT NOT NULL DEFAULT '[]',
                created_at INTEGER NOT NULL,
                started_at INTEGER,
                finished_at INTEGER
            )
        """)

        await self._connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_executions_type
            ON executions(workflow_type, created_at)
        """)

    def _check_connected(self) -> None:
        if self._connection is None:
            raise StorageError("Not connected. Call connect() first.")

    # Job queue

    async def enqueue_job(self, job: ScheduledJob) -> str:
        self._check_connected()

        async with self._lock:
            try:
                await self._connection.execute(
                    f"INSERT INTO jobs ({_JOB_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        job.job_id,
                        job.workflow_type,
                        json.dumps(job.payload),
                        job.execution_id,
                        job.status.value,
                        job.locked_by,
                        job.retry_count,
                        _to_millis(job.created_at),
                        _to_millis(job.updated_at),
                        job.error_message,
                        _to_millis(job.scheduled_for),
                        job.cron_expression,
                        _to_millis(job.claimed_at),
                        _to_millis(job.completed_at),
                    ),
                )
                await self._connection.commit()
            except aiosqlite.IntegrityError as e:
                raise StorageError(f"Job already exists: job_id={job.job_id}") from e

            # Wake a waiting worker for immediate jobs; the worker clears it
            if job.scheduled_for is None or job.scheduled_for <= datetime.now(UTC):
                self._work_notify.set()

        return job.job_id

    async def dequeue_job(self, worker_id: str) -> ScheduledJob | None:
        self._check_connected()
        now_millis = _now_millis()

        async with self._lock:
            try:
                cursor = await self._connection.execute(
                    f"""
                    UPDATE jobs
                    SET status = 'RUNNING',
                        locked_by = ?,
                        claimed_at = ?,
                        updated_at = ?
                    WHERE job_id = (
                        SELECT job_id
                        FROM jobs
                        WHERE status = 'PENDING'
                          AND (scheduled_for IS NULL OR scheduled_for <= ?)
                        ORDER BY created_at ASC
                        LIMIT 1
                    )
                    RETURNING {_JOB_COLUMNS}
                    """,
                    (worker_id, now_millis, now_millis, now_millis),
                )
                row = await cursor.fetchone()
                await cursor.close()
                await self._connection.commit()
            except Exception as e:
                raise StorageError(f"Failed to dequeue job: {e}") from e

        return self._row_to_job(row) if row is not None else None

    async def complete_job(
        self, job_id: str, status: JobStatus, error_message: str | None = None
    ) -> None:
        if not status.is_terminal:
            raise ValueError(f"complete_job requires a terminal status, got {status}")
        self._check_connected()
        now_millis = _now_millis()

        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE jobs
                SET status = ?,
                    error_message = COALESCE(?, error_message),
                    completed_at = ?,
                    updated_at = ?
                WHERE job_id = ?
                """,
                (status.value, error_message, now_millis, now_millis, job_id),
            )
            await self._connection.commit()

        if cursor.rowcount == 0:
            raise StorageError(f"Job not found: job_id={job_id}")

    async def retry_job(self, job_id: str, error_message: str, delay: timedelta) -> None:
        self._check_connected()
        now = datetime.now(UTC)
        scheduled_for = _to_millis(now + delay) if delay > timedelta(0) else None

        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE jobs
                SET retry_count = retry_count + 1,
                    error_message = ?,
                    status = 'PENDING',
                    locked_by = NULL,
                    claimed_at = NULL,
                    scheduled_for = ?,
                    updated_at = ?
                WHERE job_id = ?
                """,
                (error_message, scheduled_for, _to_millis(now), job_id),
            )
            await self._connection.commit()

        if cursor.rowcount == 0:
            raise StorageError(f"Job not found: job_id={job_id}")
        if scheduled_for is None:
            self._work_notify.set()

    async def get_job(self, job_id: str) -> ScheduledJob | None:
        self._check_connected()
        async with self._lock:
            cursor = await self._connection.execute(
                f"SELECT {_JOB_COLUMNS} FROM jobs WHERE job_id = ?", (job_id,)
            )
            row = await cursor.fetchone()
            await cursor.close()
        return self._row_to_job(row) if row is not None else None

    async def move_ready_delayed_jobs(self) -> int:
        """
        Count delayed jobs that became ready and wake a worker for them.

        dequeue_job() already compares ``scheduled_for`` with the current
        time, so nothing has to move; only the notification is needed.
        """
        self._check_connected()
        async with self._lock:
            cursor = await self._connection.execute(
                """
                SELECT COUNT(*) FROM jobs
                WHERE status = 'PENDING'
                  AND scheduled_for IS NOT NULL
                  AND scheduled_for <= ?
                """,
                (_now_millis(),),
            )
            row = await cursor.fetchone()
            await cursor.close()

        count = row[0] if row else 0
        if count:
            self._work_notify.set()
        return count

    # Execution records

    async def create_pending(
        self,
        workflow_type: str,
        initial_context: dict[str, Any],
        job_id: str | None = None,
        *,
        execution_id: str | None = None,
    ) -> str:
        self._check_connected()
        execution_id = execution_id or str(uuid7())

        async with self._lock:
            try:
                await self._connection.execute(
                    """
                    INSERT INTO executions (
                        execution_id, workflow_type, status, initial_context, job_id, created_at
                    ) VALUES (?, ?, 'pending', ?, ?, ?)
                    """,
                    (
                        execution_id,
                        workflow_type,
                        json.dumps(initial_context),
                        job_id,
                        _now_millis(),
                    ),
                )
                await self._connection.commit()
            except aiosqlite.IntegrityError as e:
                raise StorageError(f"Execution already exists: {execution_id}") from e

        return execution_id

    async def _execute_update(self, sql: str, params: tuple, execution_id: str) -> None:
        self._check_connected()
        async with self._lock:
            cursor = await self._connection.execute(sql, params)
            await self._connection.commit()
        if cursor.rowcount == 0:
            raise StorageError(f"Execution not found: {execution_id}")

    async def mark_running(self, execution_id: str) -> None:
        await self._execute_update(
            "UPDATE executions SET status = 'running', started_at = ? WHERE execution_id = ?",
            (_now_millis(), execution_id),
            execution_id,
        )

    async def finalize(self, execution_id: str, result: WorkflowResult) -> None:
        final_output, trace = encode_outcome(execution_id, result)
        status = ExecutionStatus.COMPLETED if result.is_completed else ExecutionStatus.FAILED
        await self._execute_update(
            """
            UPDATE executions
            SET status = ?,
                final_output = ?,
                error = ?,
                failed_task_name = ?,
                trace = ?,
                finished_at = ?
            WHERE execution_id = ?
            """,
            (
                status.value,
                final_output,
                result.error_message,
                result.failed_task_name,
                trace,
                _now_millis(),
                execution_id,
            ),
            execution_id,
        )

    async def mark_failed(self, execution_id: str, error: str) -> None:
        await self._execute_update(
            """
            UPDATE executions
            SET status = 'failed', error = ?, finished_at = ?
            WHERE execution_id = ?
            """,
            (error, _now_millis(), execution_id),
            execution_id,
        )

    async def get_execution(self, execution_id: str) -> Execution | None:
        self._check_connected()
        async with self._lock:
            cursor = await self._connection.execute(
                f"SELECT {_EXECUTION_COLUMNS} FROM executions WHERE execution_id = ?",
                (execution_id,),
            )
            row = await cursor.fetchone()
            await cursor.close()
        return self._row_to_execution(row) if row is not None else None

    async def list_executions(
        self,
        *,
        workflow_type: str | None = None,
        status: ExecutionStatus | None = None,
        limit: int | None = None,
    ) -> list[Execution]:
        self._check_connected()

        clauses = []
        params: list[Any] = []
        if workflow_type is not None:
            clauses.append("workflow_type = ?")
            params.append(workflow_type)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)

        sql = f"SELECT {_EXECUTION_COLUMNS} FROM executions"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, execution_id DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        async with self._lock:
            cursor = await self._connection.execute(sql, params)
            rows = await cursor.fetchall()
            await cursor.close()
        return [self._row_to_execution(row) for row in rows]

    # Utility

    async def reset(self) -> None:
        self._check_connected()
        async with self._lock:
            await self._connection.execute("DELETE FROM jobs")
            await self._connection.execute("DELETE FROM executions")
            await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    def work_notify(self) -> asyncio.Event:
        return self._work_notify

    # Row mapping

    @staticmethod
    def _row_to_job(row: tuple) -> ScheduledJob:
        return ScheduledJob(
            job_id=row[0],
            workflow_type=row[1],
            payload=json.loads(row[2]),
            execution_id=row[3],
            status=JobStatus(row[4]),
            locked_by=row[5],
            retry_count=row[6],
            created_at=_from_millis(row[7]),
            updated_at=_from_millis(row[8]),
            error_message=row[9],
            scheduled_for=_from_millis(row[10]),
            cron_expression=row[11],
            claimed_at=_from_millis(row[12]),
            completed_at=_from_millis(row[13]),
        )

    @staticmethod
    def _row_to_execution(row: tuple) -> Execution:
        return Execution(
            execution_id=row[0],
            workflow_type=row[1],
            status=ExecutionStatus(row[2]),
            initial_context=json.loads(row[3]),
            job_id=row[4],
            final_output=json.loads(row[5]) if row[5] is not None else None,
            error=row[6],
            failed_task_name=row[7],
            trace=json.loads(row[8]) if row[8] else [],
            created_at=_from_millis(row[9]),
            started_at=_from_millis(row[10]),
            finished_at=_from_millis(row[11]),
        )
