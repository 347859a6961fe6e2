"""In-memory ExecutionStore.

Instance is immediately usable after __init__. Everything lives in dicts
guarded by one asyncio.Lock; ready jobs sit in a FIFO asyncio.Queue of ids
and delayed jobs in a dict keyed by id until move_ready_delayed_jobs()
releases them.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from uuid_extensions import uuid7

from pyrunbook.models import Execution, ExecutionStatus, JobStatus, ScheduledJob
from pyrunbook.storage.base import ExecutionStore, StorageError, encode_outcome

if TYPE_CHECKING:
    from pyrunbook.core.result import WorkflowResult


class InMemoryExecutionStore(ExecutionStore):
    """In-memory store for tests and single-process use.

    Usage:
        store = InMemoryExecutionStore()
        scheduler = Scheduler(store)
        handle = await scheduler.run_later(ReportWorkflow, {"input": 5})
        status = await store.wait_for_job(handle.job_id)
    """

    def __init__(self):
        self._jobs: dict[str, ScheduledJob] = {}
        self._executions: dict[str, Execution] = {}

        self._pending_queue: asyncio.Queue[str] = asyncio.Queue()
        self._delayed: dict[str, datetime] = {}

        self._lock = asyncio.Lock()
        self._work_notify = asyncio.Event()

        # Condition shares the lock so status checks and waits cannot race
        self._status_notify = asyncio.Condition(self._lock)

    def __repr__(self) -> str:
        return "InMemoryExecutionStore"

    def _queue_or_delay(self, job: ScheduledJob) -> None:
        now = datetime.now(UTC)
        if job.scheduled_for is not None and job.scheduled_for > now:
            self._delayed[job.job_id] = job.scheduled_for
        else:
            self._pending_queue.put_nowait(job.job_id)
            # The worker clears the event after waking up
            self._work_notify.set()

    # Job queue

    async def enqueue_job(self, job: ScheduledJob) -> str:
        async with self._lock:
            if job.job_id in self._jobs:
                raise StorageError(f"Job already exists: job_id={job.job_id}")
            self._jobs[job.job_id] = job
            self._queue_or_delay(job)
            return job.job_id

    async def dequeue_job(self, worker_id: str) -> ScheduledJob | None:
        async with self._lock:
            while True:
                try:
                    job_id = self._pending_queue.get_nowait()
                except asyncio.QueueEmpty:
                    return None

                job = self._jobs.get(job_id)
                # Skip ids of jobs reset or already claimed
                if job is None or job.status != JobStatus.PENDING:
                    continue

                # Daisy-chain: more work left, wake another worker
                if not self._pending_queue.empty():
                    self._work_notify.set()

                now = datetime.now(UTC)
                claimed = replace(
                    job,
                    status=JobStatus.RUNNING,
                    locked_by=worker_id,
                    claimed_at=now,
                    updated_at=now,
                )
                self._jobs[job_id] = claimed
                return claimed

    async def complete_job(
        self, job_id: str, status: JobStatus, error_message: str | None = None
    ) -> None:
        if not status.is_terminal:
            raise ValueError(f"complete_job requires a terminal status, got {status}")

        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise StorageError(f"Job not found: job_id={job_id}")

            now = datetime.now(UTC)
            self._jobs[job_id] = replace(
                job,
                status=status,
                updated_at=now,
                completed_at=now,
                error_message=error_message if error_message is not None else job.error_message,
            )
            self._status_notify.notify_all()

    async def retry_job(self, job_id: str, error_message: str, delay: timedelta) -> None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise StorageError(f"Job not found: job_id={job_id}")

            now = datetime.now(UTC)
            updated = replace(
                job,
                status=JobStatus.PENDING,
                locked_by=None,
                retry_count=job.retry_count + 1,
                error_message=error_message,
                updated_at=now,
                claimed_at=None,
                scheduled_for=now + delay if delay > timedelta(0) else None,
            )
            self._jobs[job_id] = updated
            self._queue_or_delay(updated)
            self._status_notify.notify_all()

    async def get_job(self, job_id: str) -> ScheduledJob | None:
        async with self._lock:
            return self._jobs.get(job_id)

    async def move_ready_delayed_jobs(self) -> int:
        async with self._lock:
            now = datetime.now(UTC)
            ready = [job_id for job_id, due in self._delayed.items() if due <= now]
            for job_id in ready:
                del self._delayed[job_id]
                self._pending_queue.put_nowait(job_id)
            if ready:
                self._work_notify.set()
            return len(ready)

    async def wait_for_job(
        self, job_id: str, timeout: float | None = None, poll_interval: float = 0.05
    ) -> JobStatus:
        """Wait for a terminal status using the status condition (no polling)."""

        async def wait() -> JobStatus:
            async with self._status_notify:
                while True:
                    job = self._jobs.get(job_id)
                    if job is None:
                        raise StorageError(f"Job not found: job_id={job_id}")
                    if job.status.is_terminal:
                        return job.status
                    await self._status_notify.wait()

        return await asyncio.wait_for(wait(), timeout=timeout)

    # Execution records

    async def create_pending(
        self,
        workflow_type: str,
        initial_context: dict[str, Any],
        job_id: str | None = None,
        *,
        execution_id: str | None = None,
    ) -> str:
        execution_id = execution_id or str(uuid7())
        async with self._lock:
            if execution_id in self._executions:
                raise StorageError(f"Execution already exists: {execution_id}")
            self._executions[execution_id] = Execution(
                execution_id=execution_id,
                workflow_type=workflow_type,
                initial_context=initial_context,
                job_id=job_id,
            )
        return execution_id

    async def _update_execution(self, execution_id: str, update) -> None:
        async with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None:
                raise StorageError(f"Execution not found: {execution_id}")
            self._executions[execution_id] = update(execution)

    async def mark_running(self, execution_id: str) -> None:
        await self._update_execution(execution_id, lambda e: e.started())

    async def finalize(self, execution_id: str, result: WorkflowResult) -> None:
        encode_outcome(execution_id, result)
        await self._update_execution(execution_id, lambda e: e.finalized(result))

    async def mark_failed(self, execution_id: str, error: str) -> None:
        await self._update_execution(execution_id, lambda e: e.failed(error))

    async def get_execution(self, execution_id: str) -> Execution | None:
        async with self._lock:
            return self._executions.get(execution_id)

    async def list_executions(
        self,
        *,
        workflow_type: str | None = None,
        status: ExecutionStatus | None = None,
        limit: int | None = None,
    ) -> list[Execution]:
        async with self._lock:
            matches = [
                e
                for e in self._executions.values()
                if (workflow_type is None or e.workflow_type == workflow_type)
                and (status is None or e.status == status)
            ]
        # UUIDv7 ids sort by creation time
        matches.sort(key=lambda e: (e.created_at, e.execution_id), reverse=True)
        return matches[:limit] if limit is not None else matches

    # Utility

    async def reset(self) -> None:
        async with self._lock:
            self._jobs.clear()
            self._executions.clear()
            self._delayed.clear()
            while not self._pending_queue.empty():
                try:
                    self._pending_queue.get_nowait()
                except asyncio.QueueEmpty:
                    break

    async def close(self) -> None:
        pass

    def work_notify(self) -> asyncio.Event:
        return self._work_notify

    def status_notify(self) -> asyncio.Condition:
        """Condition notified on every job status change; shares the store lock."""
        return self._status_notify
