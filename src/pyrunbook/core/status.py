"""Status enumerations for workflow runs and their steps."""

from enum import Enum


class StepStatus(Enum):
    """Outcome of a single step attempt.

    Skipped steps leave no trace entry, so there is no skipped status.
    """

    SUCCESS = "success"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class WorkflowStatus(Enum):
    """Status of a workflow run.

    Lifecycle:
        NOT_STARTED → RUNNING → COMPLETED/FAILED
    """

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if this status ends the run."""
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED)

    def __str__(self) -> str:
        return self.value
