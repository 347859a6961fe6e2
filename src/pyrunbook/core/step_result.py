"""Trace entry recording the outcome of one step attempt."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pyrunbook.core.status import StepStatus


@dataclass(frozen=True)
class StepResult:
    """
    Immutable record of one step's outcome.

    Created by the engine right after a step attempt and appended to the
    run's trace. A successful entry carries ``output``; a failed one carries
    ``error`` (message) and ``error_kind`` (exception class name).
    """

    step_name: str
    status: StepStatus
    output: Any = None
    error: str | None = None
    error_kind: str | None = None
    duration_ms: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    execution_id: str | None = None
    """Run id of the workflow execution that produced this entry."""

    @property
    def is_success(self) -> bool:
        return self.status == StepStatus.SUCCESS

    @property
    def is_failed(self) -> bool:
        return self.status == StepStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "step_name": self.step_name,
            "status": self.status.value,
            "output": self.output,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
            "execution_id": self.execution_id,
        }
        if self.error is not None:
            data["error"] = self.error
            data["error_kind"] = self.error_kind
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepResult:
        return cls(
            step_name=data["step_name"],
            status=StepStatus(data["status"]),
            output=data.get("output"),
            error=data.get("error"),
            error_kind=data.get("error_kind"),
            duration_ms=float(data.get("duration_ms", 0.0)),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            execution_id=data.get("execution_id"),
        )

    def __repr__(self) -> str:
        if self.is_failed:
            return (
                f"StepResult({self.step_name!r}, {self.status}, "
                f"error={self.error!r}, duration_ms={self.duration_ms:.2f})"
            )
        return (
            f"StepResult({self.step_name!r}, {self.status}, "
            f"output={self.output!r}, duration_ms={self.duration_ms:.2f})"
        )
