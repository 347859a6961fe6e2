"""
Error taxonomy for workflow execution.

Every error raised by pyrunbook on purpose derives from WorkflowError so
callers can catch the whole family with one clause. Subsystem errors
(StorageError, SchedulerError, WorkerError) live next to the subsystem that
raises them, as plain Exception subclasses.

Hierarchy:
    WorkflowError
    ├── ConfigurationError
    │   ├── UnknownTaskType
    │   └── UnknownWorkflowType
    ├── TaskError
    ├── SerializationError
    │   └── RehydrationError
    └── WorkflowCancelled
"""

from __future__ import annotations

__all__ = [
    "WorkflowError",
    "ConfigurationError",
    "UnknownTaskType",
    "UnknownWorkflowType",
    "TaskError",
    "SerializationError",
    "RehydrationError",
    "WorkflowCancelled",
]


class WorkflowError(Exception):
    """Base class for all workflow errors."""

    @property
    def kind(self) -> str:
        """Class label recorded in traces."""
        return type(self).__name__


class ConfigurationError(WorkflowError):
    """
    A step or task is misconfigured.

    Raised at definition time when possible (duplicate step names, missing
    task type), otherwise on the first execution attempt.
    """


class UnknownTaskType(ConfigurationError):
    """A step references a task-type identifier that is not registered."""

    def __init__(self, type_id: str):
        super().__init__(f"Unknown task type: {type_id!r} not found in registry")
        self.type_id = type_id


class UnknownWorkflowType(ConfigurationError):
    """A job references a workflow type that is not registered."""

    def __init__(self, type_id: str):
        super().__init__(f"Unknown workflow type: {type_id!r} not found in registry")
        self.type_id = type_id


class TaskError(WorkflowError):
    """
    Uniform failure raised from a task's execute().

    Integration tasks wrap transport exceptions in TaskError so the engine
    never sees library-specific exception types. The original exception is
    kept on ``cause`` for logging.
    """

    def __init__(self, message: str, *, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause

    def __repr__(self) -> str:
        return f"TaskError({str(self)!r}, cause={type(self.cause).__name__ if self.cause else None})"


class SerializationError(WorkflowError):
    """A value cannot be represented in the transport format."""


class RehydrationError(SerializationError):
    """A reference token could not be resolved back to a live object."""


class WorkflowCancelled(WorkflowError):
    """The caller requested cancellation between steps."""
