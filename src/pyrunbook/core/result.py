"""
Structured outcome of a workflow run.

WorkflowResult is built exactly once, at the end of an engine run, and is
read-only afterwards. It is a thin queryable view over the trace plus a few
summary fields:

- ``final_output``: output of the last successful trace entry (None for an
  empty trace)
- ``output_for(name)`` / ``outputs()``: pure lookups into the trace; they
  never raise and return None / {} for unknown or unreached steps
- ``error_message``: human readable, "Failed at task '<name>': <error>"

Serialization goes through ``to_json()``, which fails loudly with
SerializationError instead of silently dropping values JSON cannot carry.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from uuid_extensions import uuid7

from pyrunbook.core.status import StepStatus, WorkflowStatus
from pyrunbook.core.step_result import StepResult
from pyrunbook.errors import SerializationError

__all__ = ["WorkflowResult"]


@dataclass(frozen=True)
class WorkflowResult:
    """
    The engine's return value for one run.

    Invariant: ``status is FAILED`` if and only if ``error`` is set.

    Examples:
        result = await engine.execute(OrderWorkflow, Context({"input": 5}))
        if result.is_completed:
            print(result.final_output, result.output_for("double"))
        else:
            print(result.error_message)
    """

    status: WorkflowStatus
    trace: tuple[StepResult, ...] = ()
    execution_id: str = field(default_factory=lambda: str(uuid7()))
    workflow_type: str | None = None
    duration_ms: float = 0.0
    error: str | None = None
    failed_task_name: str | None = None
    failed_task_error: str | None = None

    def __post_init__(self) -> None:
        if not self.status.is_terminal:
            raise ValueError(f"WorkflowResult status must be terminal, got {self.status}")
        if (self.status == WorkflowStatus.FAILED) != (self.error is not None):
            raise ValueError("WorkflowResult must carry an error if and only if it failed")
        # Accept any sequence but store a tuple
        if not isinstance(self.trace, tuple):
            object.__setattr__(self, "trace", tuple(self.trace))

    # Factories

    @classmethod
    def success(
        cls,
        trace: list[StepResult] | tuple[StepResult, ...],
        *,
        execution_id: str | None = None,
        workflow_type: str | None = None,
        duration_ms: float = 0.0,
    ) -> WorkflowResult:
        return cls(
            status=WorkflowStatus.COMPLETED,
            trace=tuple(trace),
            execution_id=execution_id or str(uuid7()),
            workflow_type=workflow_type,
            duration_ms=duration_ms,
        )

    @classmethod
    def failure(
        cls,
        error: str,
        *,
        failed_task_name: str | None = None,
        failed_task_error: str | None = None,
        trace: list[StepResult] | tuple[StepResult, ...] = (),
        execution_id: str | None = None,
        workflow_type: str | None = None,
        duration_ms: float = 0.0,
    ) -> WorkflowResult:
        return cls(
            status=WorkflowStatus.FAILED,
            trace=tuple(trace),
            execution_id=execution_id or str(uuid7()),
            workflow_type=workflow_type,
            duration_ms=duration_ms,
            error=error,
            failed_task_name=failed_task_name,
            failed_task_error=failed_task_error,
        )

    # Queries

    @property
    def is_completed(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED

    @property
    def is_failed(self) -> bool:
        return self.status == WorkflowStatus.FAILED

    @property
    def final_output(self) -> Any:
        """Output of the last successful trace entry, or None."""
        for entry in reversed(self.trace):
            if entry.status == StepStatus.SUCCESS:
                return entry.output
        return None

    @property
    def failed_step(self) -> StepResult | None:
        for entry in self.trace:
            if entry.status == StepStatus.FAILED:
                return entry
        return None

    def output_for(self, step_name: str) -> Any:
        """Output recorded for ``step_name``; None for unknown or unreached steps."""
        for entry in self.trace:
            if entry.step_name == step_name and entry.status == StepStatus.SUCCESS:
                return entry.output
        return None

    def outputs(self) -> dict[str, Any]:
        """Map of step name to output for every successful step, in trace order."""
        return {
            entry.step_name: entry.output
            for entry in self.trace
            if entry.status == StepStatus.SUCCESS
        }

    @property
    def error_message(self) -> str | None:
        if not self.is_failed:
            return None
        if self.failed_task_name and self.failed_task_error:
            return f"Failed at task '{self.failed_task_name}': {self.failed_task_error}"
        return f"Workflow failed: {self.error}"

    @property
    def summary(self) -> str:
        if self.is_completed:
            return f"Workflow completed successfully in {self.duration_ms:.0f}ms"
        return self.error_message or "Workflow failed"

    # Serialization

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "workflow_type": self.workflow_type,
            "status": self.status.value,
            "final_output": self.final_output,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "failed_task_name": self.failed_task_name,
            "failed_task_error": self.failed_task_error,
            "trace": [entry.to_dict() for entry in self.trace],
        }

    def to_json(self, **kwargs: Any) -> str:
        """
        Serialize to JSON.

        Raises:
            SerializationError: If any output is not representable in JSON
                (arbitrary objects, NaN/Infinity, non-string dict keys).
        """
        try:
            return json.dumps(self.to_dict(), allow_nan=False, **kwargs)
        except (TypeError, ValueError) as e:
            raise SerializationError(
                f"Workflow result {self.execution_id} is not JSON serializable: {e}"
            ) from e

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowResult:
        return cls(
            status=WorkflowStatus(data["status"]),
            trace=tuple(StepResult.from_dict(entry) for entry in data.get("trace", [])),
            execution_id=data["execution_id"],
            workflow_type=data.get("workflow_type"),
            duration_ms=float(data.get("duration_ms", 0.0)),
            error=data.get("error"),
            failed_task_name=data.get("failed_task_name"),
            failed_task_error=data.get("failed_task_error"),
        )

    @classmethod
    def from_json(cls, payload: str) -> WorkflowResult:
        return cls.from_dict(json.loads(payload))

    def __repr__(self) -> str:
        return (
            f"WorkflowResult(status={self.status}, execution_id={self.execution_id!r}, "
            f"steps={len(self.trace)}, duration_ms={self.duration_ms:.2f})"
        )
