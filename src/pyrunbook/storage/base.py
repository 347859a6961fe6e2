"""
ExecutionStore - abstract interface for the async subsystem's persistence.

Two concerns live behind one interface because every backend keeps them in
the same place:

- the job queue: ScheduledJobs waiting for, claimed by, or finished by a
  worker
- execution records: the persisted shadow (Execution) of each queued run,
  created pending at enqueue time and finalized from the WorkflowResult

The synchronous engine never touches a store. Scheduler writes to it,
WorkflowJob and Worker read from and update it.

Backends: InMemoryExecutionStore (tests, single process),
SqliteExecutionStore (aiosqlite), RedisExecutionStore (redis.asyncio).
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pyrunbook.errors import SerializationError
from pyrunbook.models import Execution, ExecutionStatus, JobStatus, ScheduledJob

if TYPE_CHECKING:
    from pyrunbook.core.result import WorkflowResult

__all__ = ["ExecutionStore", "StorageError", "WorkNotificationSource", "encode_outcome"]


class StorageError(Exception):
    """Storage operation failed."""


def encode_outcome(execution_id: str, result: WorkflowResult) -> tuple[str, str]:
    """
    JSON for a finalized run's ``(final_output, trace)``.

    Every backend calls this before writing anything, so an output JSON
    cannot carry fails the same way everywhere instead of being stored in
    some other form.

    Raises:
        SerializationError: If an output is not representable in JSON.
    """
    try:
        return (
            json.dumps(result.final_output, allow_nan=False),
            json.dumps([entry.to_dict() for entry in result.trace], allow_nan=False),
        )
    except (TypeError, ValueError) as e:
        raise SerializationError(
            f"Output of execution {execution_id} is not JSON serializable: {e}"
        ) from e


class ExecutionStore(ABC):
    """
    Storage contract shared by all backends.

    Clients program to this interface; tests run against
    InMemoryExecutionStore and production against SQLite or Redis without
    changing client code.
    """

    # Job queue

    @abstractmethod
    async def enqueue_job(self, job: ScheduledJob) -> str:
        """
        Add a job to the queue.

        A job with ``scheduled_for`` in the future stays delayed until
        move_ready_delayed_jobs() (or a time-aware dequeue) releases it.

        Returns:
            The job's id.

        Raises:
            StorageError: If the job cannot be stored.
        """

    @abstractmethod
    async def dequeue_job(self, worker_id: str) -> ScheduledJob | None:
        """
        Claim the oldest ready job for ``worker_id``.

        Claiming is atomic: two workers never receive the same job.

        Returns:
            The claimed job (status RUNNING), or None if nothing is ready.
        """

    @abstractmethod
    async def complete_job(
        self, job_id: str, status: JobStatus, error_message: str | None = None
    ) -> None:
        """
        Record a job's terminal status.

        Raises:
            ValueError: If ``status`` is not terminal.
            StorageError: If the job does not exist.
        """

    @abstractmethod
    async def retry_job(self, job_id: str, error_message: str, delay: timedelta) -> None:
        """
        Put a failed job back in the queue after ``delay``.

        Increments ``retry_count``, clears the lock and records the error.

        Raises:
            StorageError: If the job does not exist.
        """

    @abstractmethod
    async def get_job(self, job_id: str) -> ScheduledJob | None:
        pass

    @abstractmethod
    async def move_ready_delayed_jobs(self) -> int:
        """Release delayed jobs whose time has come; returns how many moved."""

    # Execution records

    @abstractmethod
    async def create_pending(
        self,
        workflow_type: str,
        initial_context: dict[str, Any],
        job_id: str | None = None,
        *,
        execution_id: str | None = None,
    ) -> str:
        """
        Create a PENDING execution record.

        Returns:
            The execution id (``execution_id`` if given, else a new UUIDv7).
        """

    @abstractmethod
    async def mark_running(self, execution_id: str) -> None:
        """
        Move an execution to RUNNING and stamp ``started_at``.

        Raises:
            StorageError: If the execution does not exist.
        """

    @abstractmethod
    async def finalize(self, execution_id: str, result: WorkflowResult) -> None:
        """
        Copy the fields of ``result`` onto the execution record.

        Raises:
            StorageError: If the execution does not exist.
            SerializationError: If an output is not JSON serializable; nothing
                is written in that case.
        """

    @abstractmethod
    async def mark_failed(self, execution_id: str, error: str) -> None:
        """Mark an execution failed without a WorkflowResult (crash, rehydration)."""

    @abstractmethod
    async def get_execution(self, execution_id: str) -> Execution | None:
        pass

    @abstractmethod
    async def list_executions(
        self,
        *,
        workflow_type: str | None = None,
        status: ExecutionStatus | None = None,
        limit: int | None = None,
    ) -> list[Execution]:
        """Executions matching the filters, newest first."""

    # Utility

    async def wait_for_job(
        self, job_id: str, timeout: float | None = None, poll_interval: float = 0.05
    ) -> JobStatus:
        """
        Wait until a job reaches a terminal status.

        The default implementation polls get_job(); backends with a status
        notification primitive override it.

        Raises:
            StorageError: If the job does not exist.
            TimeoutError: If ``timeout`` elapses first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            job = await self.get_job(job_id)
            if job is None:
                raise StorageError(f"Job not found: job_id={job_id}")
            if job.status.is_terminal:
                return job.status
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"Job {job_id} did not finish within {timeout}s")
            await asyncio.sleep(poll_interval)

    @abstractmethod
    async def reset(self) -> None:
        """Clear all data (tests and demos only)."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections. Safe to call more than once."""


@runtime_checkable
class WorkNotificationSource(Protocol):
    """
    Backends that can wake workers when work arrives.

    The backend sets the event when a job becomes ready; a worker waits on
    it (bounded by its poll interval) and clears it on wake-up. Backends
    without this fall back to plain polling.
    """

    def work_notify(self) -> asyncio.Event: ...
