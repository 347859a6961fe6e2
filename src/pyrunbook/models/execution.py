"""Persisted shadow of an asynchronous workflow run."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pyrunbook.core.status import WorkflowStatus

if TYPE_CHECKING:
    from pyrunbook.core.result import WorkflowResult


class ExecutionStatus(Enum):
    """Lifecycle of an execution record.

    Lifecycle:
        PENDING → RUNNING → COMPLETED/FAILED
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)

    @property
    def workflow_status(self) -> WorkflowStatus:
        """The run state this record stands for (a pending run has not started)."""
        if self is ExecutionStatus.PENDING:
            return WorkflowStatus.NOT_STARTED
        return WorkflowStatus(self.value)

    def __str__(self) -> str:
        return self.value


@dataclass
class Execution:
    """
    Bookkeeping for one queued run.

    Created PENDING when the run is enqueued, moved to RUNNING when the job
    starts, and finalized from the engine's WorkflowResult. Owned by the
    async subsystem; the engine never sees it.
    """

    execution_id: str
    workflow_type: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    initial_context: dict[str, Any] = field(default_factory=dict)
    """Serialized context payload, exactly as enqueued."""

    job_id: str | None = None
    final_output: Any = None
    error: str | None = None
    failed_task_name: str | None = None
    trace: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def duration_ms(self) -> float | None:
        """Wall-clock time between start and finish, None until finished."""
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds() * 1000.0

    def started(self, at: datetime | None = None) -> Execution:
        return replace(
            self,
            status=ExecutionStatus.RUNNING,
            started_at=at or datetime.now(UTC),
        )

    def finalized(self, result: WorkflowResult, at: datetime | None = None) -> Execution:
        """Copy of this record updated with the fields of ``result``."""
        return replace(
            self,
            status=ExecutionStatus.COMPLETED if result.is_completed else ExecutionStatus.FAILED,
            final_output=result.final_output,
            error=result.error_message,
            failed_task_name=result.failed_task_name,
            trace=[entry.to_dict() for entry in result.trace],
            finished_at=at or datetime.now(UTC),
        )

    def failed(self, error: str, at: datetime | None = None) -> Execution:
        """Copy of this record marked failed outside the engine (crash, rehydration)."""
        return replace(
            self,
            status=ExecutionStatus.FAILED,
            error=error,
            finished_at=at or datetime.now(UTC),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "workflow_type": self.workflow_type,
            "status": self.status.value,
            "initial_context": self.initial_context,
            "job_id": self.job_id,
            "final_output": self.final_output,
            "error": self.error,
            "failed_task_name": self.failed_task_name,
            "trace": self.trace,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Execution:
        def when(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return cls(
            execution_id=data["execution_id"],
            workflow_type=data["workflow_type"],
            status=ExecutionStatus(data["status"]),
            initial_context=data.get("initial_context") or {},
            job_id=data.get("job_id"),
            final_output=data.get("final_output"),
            error=data.get("error"),
            failed_task_name=data.get("failed_task_name"),
            trace=data.get("trace") or [],
            created_at=when(data.get("created_at")) or datetime.now(UTC),
            started_at=when(data.get("started_at")),
            finished_at=when(data.get("finished_at")),
        )

    def __repr__(self) -> str:
        return (
            f"Execution(execution_id={self.execution_id!r}, "
            f"workflow_type={self.workflow_type!r}, status={self.status}, "
            f"job_id={self.job_id!r})"
        )
