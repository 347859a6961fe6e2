"""Redis-backed ExecutionStore.

Workers can run on separate machines as long as they reach the same Redis.

Data structures (``pyrunbook`` is the default namespace):
- pyrunbook:queue:pending (LIST): FIFO queue of ready job ids
- pyrunbook:queue:delayed (ZSET): delayed job ids, score = scheduled_for (ms)
- pyrunbook:job:{job_id} (HASH): job fields
- pyrunbook:execution:{execution_id} (HASH): execution record fields
- pyrunbook:executions (ZSET): execution ids, score = created_at (ms)

Claiming relies on BLPOP handing each id to exactly one client; the
status transition is written in a MULTI/EXEC pipeline.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis
from uuid_extensions import uuid7

from pyrunbook.models import Execution, ExecutionStatus, JobStatus, ScheduledJob
from pyrunbook.storage.base import ExecutionStore, StorageError, encode_outcome

if TYPE_CHECKING:
    from pyrunbook.core.result import WorkflowResult


def _ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_ms(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value) / 1000.0, tz=UTC)


def _fields(mapping: dict[str, Any]) -> dict[str, Any]:
    """Drop None values; Redis hashes cannot store them."""
    return {k: v for k, v in mapping.items() if v is not None}


class RedisExecutionStore(ExecutionStore):
    """Redis store using a connection pool.

    Usage:
        store = RedisExecutionStore("redis://localhost:6379")
        await store.connect()

        job_id = await store.enqueue_job(job)
        claimed = await store.dequeue_job("worker-1")
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        max_connections: int = 16,
        namespace: str = "pyrunbook",
    ):
        self._redis_url = redis_url
        self._max_connections = max_connections
        self._namespace = namespace
        self._redis: redis.Redis | None = None

        self._work_notify = asyncio.Event()

    def __repr__(self) -> str:
        return f"RedisExecutionStore({self._redis_url}, namespace={self._namespace!r})"

    async def connect(self) -> None:
        """Establish the connection pool."""
        if self._redis is not None:
            return
        self._redis = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self._max_connections,
        )

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    def _check_connected(self) -> None:
        if self._redis is None:
            raise StorageError("Not connected. Call connect() first.")

    # Keys

    def _key(self, *parts: str) -> str:
        return ":".join((self._namespace, *parts))

    def _job_key(self, job_id: str) -> str:
        return self._key("job", job_id)

    def _execution_key(self, execution_id: str) -> str:
        return self._key("execution", execution_id)

    @property
    def _pending_key(self) -> str:
        return self._key("queue", "pending")

    @property
    def _delayed_key(self) -> str:
        return self._key("queue", "delayed")

    @property
    def _executions_index(self) -> str:
        return self._key("executions")

    # Job queue

    async def enqueue_job(self, job: ScheduledJob) -> str:
        self._check_connected()
        job_key = self._job_key(job.job_id)

        if await self._redis.exists(job_key):
            raise StorageError(f"Job already exists: job_id={job.job_id}")

        delayed = job.scheduled_for is not None and job.scheduled_for > datetime.now(UTC)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(job_key, mapping=self._job_fields(job))
            if delayed:
                pipe.zadd(self._delayed_key, {job.job_id: _ms(job.scheduled_for)})
            else:
                pipe.rpush(self._pending_key, job.job_id)
            await pipe.execute()

        if not delayed:
            # Don't clear here; the worker clears after waking up
            self._work_notify.set()
        return job.job_id

    async def dequeue_job(self, worker_id: str) -> ScheduledJob | None:
        self._check_connected()

        result = await self._redis.blpop([self._pending_key], timeout=1.0)
        if result is None:
            return None

        _, job_id = result
        job_key = self._job_key(job_id)

        status = await self._redis.hget(job_key, "status")
        if status != JobStatus.PENDING.value:
            # Reset or already finished; drop the stale id
            return None

        now_ms = _ms(datetime.now(UTC))
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                job_key,
                mapping={
                    "status": JobStatus.RUNNING.value,
                    "locked_by": worker_id,
                    "claimed_at": now_ms,
                    "updated_at": now_ms,
                },
            )
            await pipe.execute()

        data = await self._redis.hgetall(job_key)
        return self._parse_job(data)

    async def complete_job(
        self, job_id: str, status: JobStatus, error_message: str | None = None
    ) -> None:
        if not status.is_terminal:
            raise ValueError(f"complete_job requires a terminal status, got {status}")
        self._check_connected()

        job_key = self._job_key(job_id)
        if not await self._redis.exists(job_key):
            raise StorageError(f"Job not found: job_id={job_id}")

        now_ms = _ms(datetime.now(UTC))
        fields = {"status": status.value, "completed_at": now_ms, "updated_at": now_ms}
        if error_message is not None:
            fields["error_message"] = error_message
        await self._redis.hset(job_key, mapping=fields)

    async def retry_job(self, job_id: str, error_message: str, delay: timedelta) -> None:
        self._check_connected()

        job_key = self._job_key(job_id)
        if not await self._redis.exists(job_key):
            raise StorageError(f"Job not found: job_id={job_id}")

        now = datetime.now(UTC)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hincrby(job_key, "retry_count", 1)
            pipe.hset(
                job_key,
                mapping={
                    "status": JobStatus.PENDING.value,
                    "error_message": error_message,
                    "updated_at": _ms(now),
                },
            )
            pipe.hdel(job_key, "locked_by", "claimed_at")
            if delay > timedelta(0):
                scheduled_ms = _ms(now + delay)
                pipe.hset(job_key, "scheduled_for", scheduled_ms)
                pipe.zadd(self._delayed_key, {job_id: scheduled_ms})
            else:
                pipe.hdel(job_key, "scheduled_for")
                pipe.rpush(self._pending_key, job_id)
            await pipe.execute()

        if delay <= timedelta(0):
            self._work_notify.set()

    async def get_job(self, job_id: str) -> ScheduledJob | None:
        self._check_connected()
        data = await self._redis.hgetall(self._job_key(job_id))
        if not data:
            return None
        return self._parse_job(data)

    async def move_ready_delayed_jobs(self) -> int:
        self._check_connected()

        now_ms = _ms(datetime.now(UTC))
        ready = await self._redis.zrangebyscore(self._delayed_key, "-inf", now_ms)
        moved = 0
        for job_id in ready:
            # ZREM decides the race between workers moving the same id
            if await self._redis.zrem(self._delayed_key, job_id):
                await self._redis.rpush(self._pending_key, job_id)
                moved += 1

        if moved:
            self._work_notify.set()
        return moved

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
        key = self._execution_key(execution_id)

        if await self._redis.exists(key):
            raise StorageError(f"Execution already exists: {execution_id}")

        created_ms = _ms(datetime.now(UTC))
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                key,
                mapping=_fields(
                    {
                        "execution_id": execution_id,
                        "workflow_type": workflow_type,
                        "status": ExecutionStatus.PENDING.value,
                        "initial_context": json.dumps(initial_context),
                        "job_id": job_id,
                        "trace": "[]",
                        "created_at": created_ms,
                    }
                ),
            )
            pipe.zadd(self._executions_index, {execution_id: created_ms})
            await pipe.execute()

        return execution_id

    async def _update_execution(self, execution_id: str, fields: dict[str, Any]) -> None:
        self._check_connected()
        key = self._execution_key(execution_id)
        if not await self._redis.exists(key):
            raise StorageError(f"Execution not found: {execution_id}")
        await self._redis.hset(key, mapping=_fields(fields))

    async def mark_running(self, execution_id: str) -> None:
        await self._update_execution(
            execution_id,
            {"status": ExecutionStatus.RUNNING.value, "started_at": _ms(datetime.now(UTC))},
        )

    async def finalize(self, execution_id: str, result: WorkflowResult) -> None:
        final_output, trace = encode_outcome(execution_id, result)
        status = ExecutionStatus.COMPLETED if result.is_completed else ExecutionStatus.FAILED
        await self._update_execution(
            execution_id,
            {
                "status": status.value,
                "final_output": final_output,
                "error": result.error_message,
                "failed_task_name": result.failed_task_name,
                "trace": trace,
                "finished_at": _ms(datetime.now(UTC)),
            },
        )

    async def mark_failed(self, execution_id: str, error: str) -> None:
        await self._update_execution(
            execution_id,
            {
                "status": ExecutionStatus.FAILED.value,
                "error": error,
                "finished_at": _ms(datetime.now(UTC)),
            },
        )

    async def get_execution(self, execution_id: str) -> Execution | None:
        self._check_connected()
        data = await self._redis.hgetall(self._execution_key(execution_id))
        if not data:
            return None
        return self._parse_execution(data)

    async def list_executions(
        self,
        *,
        workflow_type: str | None = None,
        status: ExecutionStatus | None = None,
        limit: int | None = None,
    ) -> list[Execution]:
        self._check_connected()

        results: list[Execution] = []
        ids = await self._redis.zrevrange(self._executions_index, 0, -1)
        for execution_id in ids:
            execution = await self.get_execution(execution_id)
            if execution is None:
                continue
            if workflow_type is not None and execution.workflow_type != workflow_type:
                continue
            if status is not None and execution.status != status:
                continue
            results.append(execution)
            if limit is not None and len(results) >= limit:
                break
        return results

    # Utility

    async def reset(self) -> None:
        """Delete this namespace's keys; other Redis data is untouched."""
        self._check_connected()

        keys = [key async for key in self._redis.scan_iter(match=f"{self._namespace}:*")]
        if keys:
            await self._redis.delete(*keys)

    def work_notify(self) -> asyncio.Event:
        return self._work_notify

    # Parsing

    @staticmethod
    def _job_fields(job: ScheduledJob) -> dict[str, Any]:
        return _fields(
            {
                "job_id": job.job_id,
                "workflow_type": job.workflow_type,
                "payload": json.dumps(job.payload),
                "execution_id": job.execution_id,
                "status": job.status.value,
                "locked_by": job.locked_by,
                "retry_count": job.retry_count,
                "created_at": _ms(job.created_at),
                "updated_at": _ms(job.updated_at),
                "error_message": job.error_message,
                "scheduled_for": _ms(job.scheduled_for) if job.scheduled_for else None,
                "cron_expression": job.cron_expression,
            }
        )

    @staticmethod
    def _parse_job(data: dict[str, str]) -> ScheduledJob:
        try:
            return ScheduledJob(
                job_id=data["job_id"],
                workflow_type=data["workflow_type"],
                payload=json.loads(data["payload"]),
                execution_id=data.get("execution_id"),
                status=JobStatus(data["status"]),
                locked_by=data.get("locked_by"),
                retry_count=int(data.get("retry_count", "0")),
                created_at=_from_ms(data["created_at"]),
                updated_at=_from_ms(data.get("updated_at")) or _from_ms(data["created_at"]),
                error_message=data.get("error_message"),
                scheduled_for=_from_ms(data.get("scheduled_for")),
                cron_expression=data.get("cron_expression"),
                claimed_at=_from_ms(data.get("claimed_at")),
                completed_at=_from_ms(data.get("completed_at")),
            )
        except (KeyError, ValueError) as e:
            raise StorageError(f"Failed to parse job: {e}") from e

    @staticmethod
    def _parse_execution(data: dict[str, str]) -> Execution:
        try:
            return Execution(
                execution_id=data["execution_id"],
                workflow_type=data["workflow_type"],
                status=ExecutionStatus(data["status"]),
                initial_context=json.loads(data.get("initial_context") or "{}"),
                job_id=data.get("job_id"),
                final_output=json.loads(data["final_output"]) if "final_output" in data else None,
                error=data.get("error"),
                failed_task_name=data.get("failed_task_name"),
                trace=json.loads(data.get("trace") or "[]"),
                created_at=_from_ms(data["created_at"]),
                started_at=_from_ms(data.get("started_at")),
                finished_at=_from_ms(data.get("finished_at")),
            )
        except (KeyError, ValueError) as e:
            raise StorageError(f"Failed to parse execution: {e}") from e
