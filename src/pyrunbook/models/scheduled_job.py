"""Queued workflow job.

Represents a unit of work in the job queue: which workflow to run, with
which serialized context, and where it stands (claimed, retried, done).
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class JobStatus(Enum):
    """Status of a queued job.

    Lifecycle:
        PENDING → RUNNING → COMPLETE/FAILED
        RUNNING → PENDING (queued re-run after a failure)
    """

    PENDING = "PENDING"
    """Queued, waiting for a worker to claim it."""

    RUNNING = "RUNNING"
    """Claimed by a worker."""

    COMPLETE = "COMPLETE"

    FAILED = "FAILED"
    """Failed after exhausting the allowed re-runs."""

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.FAILED)

    def __str__(self) -> str:
        return self.value


@dataclass
class ScheduledJob:
    """Workflow job in the execution queue.

    Workers dequeue ScheduledJobs, hand them to WorkflowJob.perform(), and
    mark them complete or failed. A job with ``cron_expression`` is re-armed
    for its next occurrence after each run.
    """

    job_id: str
    """Unique identifier for this job (UUIDv7 string)."""

    workflow_type: str
    """Type id of the workflow definition (workflow registry lookup key)."""

    payload: dict[str, Any]
    """Serialized context (ContextSerializer format)."""

    execution_id: str | None = None
    """Execution record created for this job, if persistence is configured."""

    status: JobStatus = JobStatus.PENDING

    locked_by: str | None = None
    """Worker ID that claimed this job."""

    retry_count: int = 0

    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    error_message: str | None = None

    scheduled_for: datetime | None = None
    """Not before this time; None runs as soon as a worker is free."""

    cron_expression: str | None = None
    """Recurring schedule (croniter syntax), None for one-shot jobs."""

    claimed_at: datetime | None = None

    completed_at: datetime | None = None

    def __repr__(self) -> str:
        return (
            f"ScheduledJob(job_id={self.job_id!r}, workflow_type={self.workflow_type!r}, "
            f"status={self.status}, locked_by={self.locked_by!r}, "
            f"retry_count={self.retry_count})"
        )
