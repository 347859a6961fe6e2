"""Persisted records and policies used by the async subsystem."""

from pyrunbook.models.execution import Execution, ExecutionStatus
from pyrunbook.models.retry import RetryPolicy
from pyrunbook.models.scheduled_job import JobStatus, ScheduledJob

__all__ = [
    "Execution",
    "ExecutionStatus",
    "JobStatus",
    "ScheduledJob",
    "RetryPolicy",
]
