"""Job outcome handling for the worker.

Three paths after WorkflowJob.perform():
- the run returned a WorkflowResult (completed or failed): record the job
  as COMPLETE or FAILED; a failed run is not re-queued
- perform() raised a retryable error: re-queue with backoff
- perform() raised a WorkflowError (bad configuration, unknown workflow
  type, unusable context) or the re-run budget is spent: mark FAILED

Cron jobs are re-armed for their next occurrence whatever the outcome.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from pyrunbook.core.result import WorkflowResult
from pyrunbook.errors import WorkflowError
from pyrunbook.models import JobStatus, RetryPolicy, ScheduledJob
from pyrunbook.storage.base import ExecutionStore

if TYPE_CHECKING:
    from pyrunbook.executor.scheduler import Scheduler

logger = logging.getLogger(__name__)

__all__ = [
    "handle_job_result",
    "handle_job_error",
    "check_should_retry",
    "rearm_cron_job",
]


async def handle_job_result(
    store: ExecutionStore,
    worker_id: str,
    job: ScheduledJob,
    result: WorkflowResult,
) -> None:
    """Record the job's terminal status from the run's result."""
    if result.is_completed:
        logger.info(f"Worker {worker_id} completed job: job_id={job.job_id}")
        status, error = JobStatus.COMPLETE, None
    else:
        logger.warning(
            f"Worker {worker_id} job {job.job_id} finished with a failed run: "
            f"{result.error_message}"
        )
        status, error = JobStatus.FAILED, result.error_message

    try:
        await store.complete_job(job.job_id, status, error)
    except Exception as e:
        logger.error(f"Worker {worker_id} failed to mark job {job.job_id} {status}: {e}")


def check_should_retry(
    job: ScheduledJob, error: BaseException, policy: RetryPolicy
) -> timedelta | None:
    """
    Backoff before re-running ``job``, or None if it must not be re-run.

    ``job.retry_count`` counts re-runs already made, so the attempt that
    just failed is number ``retry_count + 1``.

    Example:
        ```python
        delay = check_should_retry(job, error, RetryPolicy.with_max_attempts(2))
        if delay is not None:
            await store.retry_job(job.job_id, str(error), delay)
        ```
    """
    if isinstance(error, WorkflowError):
        return None
    return policy.backoff(job.retry_count + 1)


async def handle_job_error(
    store: ExecutionStore,
    worker_id: str,
    job: ScheduledJob,
    error: BaseException,
    policy: RetryPolicy,
) -> bool:
    """
    Re-queue ``job`` if the policy allows it, otherwise mark it FAILED.

    Returns:
        True if the job went back to the queue.
    """
    message = f"{type(error).__name__}: {error}"
    delay = check_should_retry(job, error, policy)

    if delay is not None:
        logger.warning(
            f"Worker {worker_id} job {job.job_id} failed (attempt {job.retry_count + 1}/"
            f"{policy.max_attempts}): {message}; retrying in {delay.total_seconds():.1f}s"
        )
        try:
            await store.retry_job(job.job_id, message, delay)
            return True
        except Exception as e:
            logger.error(f"Worker {worker_id} failed to re-queue job {job.job_id}: {e}")

    logger.error(f"Worker {worker_id} job {job.job_id} failed permanently: {message}")
    try:
        await store.complete_job(job.job_id, JobStatus.FAILED, message)
    except Exception as e:
        logger.error(f"Worker {worker_id} failed to mark job {job.job_id} failed: {e}")
    return False


async def rearm_cron_job(scheduler: Scheduler, worker_id: str, job: ScheduledJob) -> None:
    """Queue the next occurrence of a recurring job."""
    if not job.cron_expression:
        return
    try:
        handle = await scheduler.rearm(job)
    except Exception as e:
        logger.error(f"Worker {worker_id} failed to re-arm cron job {job.job_id}: {e}")
        return
    logger.info(
        f"Worker {worker_id} re-armed {job.workflow_type} ({job.cron_expression}): "
        f"next job_id={handle.job_id} at {handle.scheduled_for.isoformat()}"
    )
