"""
Scheduler - enqueue workflow runs for background execution.

Scheduler has one job: turn (workflow, context) into a queued ScheduledJob
plus a pending Execution record. It never executes anything; Worker and
WorkflowJob do that.

The context is serialized before anything is written, so a context that
cannot cross the async boundary raises SerializationError at the call
site and never reaches the queue.

Usage:
    store = SqliteExecutionStore("runbook.db")
    await store.connect()

    scheduler = Scheduler(store, ContextSerializer(locator))
    handle = await scheduler.run_later(ReportWorkflow, {"user": user_ref})
    print(handle.job_id, handle.execution_id)

    # Recurring
    await scheduler.schedule_cron("DailyDigest", "0 8 * * *", {"channel": "email"})
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from croniter import croniter
from uuid_extensions import uuid7

from pyrunbook.core.context import Context
from pyrunbook.core.definition import WorkflowDefinition
from pyrunbook.models import ScheduledJob
from pyrunbook.serialization import ContextSerializer
from pyrunbook.storage.base import ExecutionStore

logger = logging.getLogger(__name__)

__all__ = ["Scheduler", "SchedulerError", "JobHandle", "next_occurrence"]


@dataclass(frozen=True)
class JobHandle:
    """Opaque reference to a queued run."""

    job_id: str
    execution_id: str
    workflow_type: str
    scheduled_for: datetime | None = None


def next_occurrence(expression: str, after: datetime | None = None) -> datetime:
    """Next time ``expression`` fires strictly after ``after`` (default: now, UTC)."""
    if not croniter.is_valid(expression):
        raise SchedulerError(f"Invalid cron expression: {expression!r}")
    base = after or datetime.now(UTC)
    return croniter(expression, base).get_next(datetime)


def _workflow_type(workflow: type[WorkflowDefinition] | WorkflowDefinition | str) -> str:
    if isinstance(workflow, str):
        return workflow
    definition = workflow if isinstance(workflow, type) else type(workflow)
    return definition.type_id()


class Scheduler:
    """
    Façade over serialization, job creation and enqueueing.

    The store is passed explicitly; so is the serializer, which carries
    the reference locator shared with the executing side.
    """

    def __init__(self, store: ExecutionStore, serializer: ContextSerializer | None = None):
        self._store = store
        self._serializer = serializer or ContextSerializer()

    @property
    def store(self) -> ExecutionStore:
        return self._store

    @property
    def serializer(self) -> ContextSerializer:
        return self._serializer

    async def run_later(
        self,
        workflow: type[WorkflowDefinition] | WorkflowDefinition | str,
        context: Context | Mapping[str, Any] | None = None,
        *,
        delay: timedelta | None = None,
    ) -> JobHandle:
        """
        Queue one run of ``workflow``.

        Args:
            workflow: Definition class (or instance, or its type id)
            context: Starting Context or plain mapping
            delay: Run no earlier than now + delay

        Returns:
            JobHandle with the job and execution ids.

        Raises:
            SerializationError: If the context cannot be serialized.
            SchedulerError: If the job cannot be stored.
        """
        workflow_type = _workflow_type(workflow)
        payload = self._serializer.serialize(context or {})

        scheduled_for = datetime.now(UTC) + delay if delay else None
        return await self._enqueue(workflow_type, payload, scheduled_for=scheduled_for)

    async def schedule_cron(
        self,
        workflow: type[WorkflowDefinition] | WorkflowDefinition | str,
        expression: str,
        initial_input: Context | Mapping[str, Any] | None = None,
    ) -> JobHandle:
        """
        Queue the first occurrence of a recurring run.

        Workers re-arm the job for the following occurrence after each run.

        Raises:
            SchedulerError: Invalid expression or storage failure.
            SerializationError: If ``initial_input`` cannot be serialized.
        """
        workflow_type = _workflow_type(workflow)
        payload = self._serializer.serialize(initial_input or {})
        scheduled_for = next_occurrence(expression)

        handle = await self._enqueue(
            workflow_type, payload, scheduled_for=scheduled_for, cron_expression=expression
        )
        logger.info(
            f"Scheduled recurring workflow {workflow_type} ({expression}), "
            f"next run at {scheduled_for.isoformat()}"
        )
        return handle

    async def rearm(self, job: ScheduledJob) -> JobHandle | None:
        """Queue the next occurrence of a cron job; None for one-shot jobs."""
        if not job.cron_expression:
            return None
        scheduled_for = next_occurrence(job.cron_expression)
        return await self._enqueue(
            job.workflow_type,
            job.payload,
            scheduled_for=scheduled_for,
            cron_expression=job.cron_expression,
        )

    async def _enqueue(
        self,
        workflow_type: str,
        payload: dict[str, Any],
        *,
        scheduled_for: datetime | None = None,
        cron_expression: str | None = None,
    ) -> JobHandle:
        job_id = str(uuid7())

        try:
            execution_id = await self._store.create_pending(workflow_type, payload, job_id)
        except Exception as e:
            raise SchedulerError(f"Failed to create execution for {workflow_type}: {e}") from e

        now = datetime.now(UTC)
        job = ScheduledJob(
            job_id=job_id,
            workflow_type=workflow_type,
            payload=payload,
            execution_id=execution_id,
            created_at=now,
            updated_at=now,
            scheduled_for=scheduled_for,
            cron_expression=cron_expression,
        )

        try:
            await self._store.enqueue_job(job)
        except Exception as e:
            raise SchedulerError(f"Failed to enqueue workflow {workflow_type}: {e}") from e

        logger.debug(f"Enqueued {workflow_type}: job_id={job_id}, execution_id={execution_id}")
        return JobHandle(
            job_id=job_id,
            execution_id=execution_id,
            workflow_type=workflow_type,
            scheduled_for=scheduled_for,
        )


class SchedulerError(Exception):
    """Workflow scheduling failed."""
