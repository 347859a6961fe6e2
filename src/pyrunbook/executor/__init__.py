"""
Executor package - running workflows, now or later.

- engine: WorkflowEngine, the sequential step loop
- registry: WorkflowRegistry, type id → definition for queued runs
- scheduler: Scheduler, enqueue runs (one-shot, delayed, cron)
- job: WorkflowJob, the consumer shell around one engine run
- worker: Worker, polls the queue and runs WorkflowJobs
"""

from pyrunbook.executor.engine import StepCallback, WorkflowEngine
from pyrunbook.executor.job import WorkflowJob
from pyrunbook.executor.registry import WorkflowRegistry
from pyrunbook.executor.scheduler import JobHandle, Scheduler, SchedulerError, next_occurrence
from pyrunbook.executor.worker import Worker, WorkerError, WorkerHandle

__all__ = [
    "WorkflowEngine",
    "StepCallback",
    "WorkflowRegistry",
    "WorkflowJob",
    "Scheduler",
    "SchedulerError",
    "JobHandle",
    "next_occurrence",
    "Worker",
    "WorkerHandle",
    "WorkerError",
]
