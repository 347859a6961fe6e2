"""Worker for polling the job queue and running queued workflows.

Workers claim ScheduledJobs from an ExecutionStore, hand each one to
WorkflowJob.perform() in a background task, and record the outcome.

Features:
- Event-driven work polling with fallback
- Non-blocking job execution with an optional concurrency limit
- Delayed job release (retries, scheduled runs, cron occurrences)
- Single queued re-run with exponential backoff for crashed jobs
- Cron re-arming
- Graceful shutdown
"""

from __future__ import annotations

import asyncio
import logging

from pyrunbook.executor.execution import handle_job_error, handle_job_result, rearm_cron_job
from pyrunbook.executor.job import WorkflowJob
from pyrunbook.executor.scheduler import Scheduler
from pyrunbook.models import RetryPolicy, ScheduledJob
from pyrunbook.storage.base import ExecutionStore, WorkNotificationSource

logger = logging.getLogger(__name__)

__all__ = ["Worker", "WorkerHandle", "WorkerError"]


class Worker:
    """Worker that polls and executes queued workflow jobs.

    Builder methods (with_poll_interval(), with_max_concurrent_jobs(), ...)
    configure the worker before start().

    Usage:
        store = SqliteExecutionStore("runbook.db")
        await store.connect()

        job = WorkflowJob(engine, WorkflowRegistry(ReportWorkflow), store, serializer)
        worker = Worker(store, job, "worker-1").with_poll_interval(0.5)

        handle = await worker.start()
        ...
        await handle.shutdown()
    """

    def __init__(self, store: ExecutionStore, job: WorkflowJob, worker_id: str):
        self._store = store
        self._job = job
        self._worker_id = worker_id

        # Defaults come from the engine's Configuration; builders override them
        config = job.engine.config
        self._poll_interval = config.poll_interval
        self._delayed_interval = 1.0
        self._retry_policy = RetryPolicy.with_max_attempts(config.max_retries + 1)
        self._scheduler = Scheduler(store, job.serializer)

        # Jitter keeps several workers from polling in lockstep
        worker_hash = sum(ord(c) for c in worker_id)
        self._jitter = (1 + worker_hash % 5) / 1000.0

        self._shutdown_event = asyncio.Event()
        self._running = False

        # Keep references so running tasks are not garbage collected
        self._background_tasks: set[asyncio.Task] = set()

        self._max_concurrent_jobs: asyncio.Semaphore | None = None

        # Bounded to 1: the main loop must take a job before the next claim
        self._dequeue_queue: asyncio.Queue[tuple[ScheduledJob, bool]] = asyncio.Queue(maxsize=1)
        self._dequeue_task: asyncio.Task | None = None

        if isinstance(store, WorkNotificationSource):
            self._work_notify = store.work_notify()
            logger.debug(f"Worker {worker_id}: Event-driven work notifications enabled")
        else:
            self._work_notify = None
            logger.debug(f"Worker {worker_id}: Polling-based work detection (no notifications)")

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def with_poll_interval(self, interval: float) -> Worker:
        """Seconds to wait for work before polling again."""
        self._poll_interval = interval
        return self

    def with_delayed_interval(self, interval: float) -> Worker:
        """Seconds between checks for delayed jobs that became ready."""
        self._delayed_interval = interval
        return self

    def with_max_concurrent_jobs(self, max_concurrent: int) -> Worker:
        """Limit the number of jobs running at once on this worker."""
        if max_concurrent < 1:
            raise WorkerError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._max_concurrent_jobs = asyncio.Semaphore(max_concurrent)
        return self

    def with_max_retries(self, max_retries: int) -> Worker:
        """Queued re-runs allowed for a job whose run crashed (default: Configuration.max_retries)."""
        self._retry_policy = RetryPolicy.with_max_attempts(max_retries + 1)
        return self

    def with_retry_policy(self, policy: RetryPolicy) -> Worker:
        self._retry_policy = policy
        return self

    async def start(self) -> WorkerHandle:
        """Start the main loop and return a handle immediately."""
        self._running = True
        self._shutdown_event.clear()
        task = asyncio.create_task(self._run())
        return WorkerHandle(self, task)

    async def _wait_for_work(self) -> None:
        interval = self._poll_interval + self._jitter
        if self._work_notify is None:
            await asyncio.sleep(interval)
            return
        try:
            await asyncio.wait_for(self._work_notify.wait(), timeout=interval)
            self._work_notify.clear()
        except TimeoutError:
            pass

    async def _background_dequeue_loop(self) -> None:
        """Claim jobs and hand them to the main loop through the bounded queue.

        With a concurrency limit, a permit is taken before claiming and
        travels with the job; it is released when the job finishes.
        """
        while self._running and not self._shutdown_event.is_set():
            has_permit = False
            try:
                if self._max_concurrent_jobs is not None:
                    await self._max_concurrent_jobs.acquire()
                    has_permit = True

                job = await self._store.dequeue_job(self._worker_id)

                if job is not None:
                    await self._dequeue_queue.put((job, has_permit))
                    has_permit = False
                else:
                    if has_permit:
                        self._max_concurrent_jobs.release()
                        has_permit = False
                    await self._wait_for_work()

            except asyncio.CancelledError:
                if has_permit:
                    self._max_concurrent_jobs.release()
                raise
            except Exception as e:
                if has_permit:
                    self._max_concurrent_jobs.release()
                logger.error(f"Worker {self._worker_id}: Background dequeue error: {e}")
                await asyncio.sleep(0.1)

    async def _run(self) -> None:
        """Main loop: wait on shutdown, claimed jobs and the delayed-job tick."""
        logger.info(f"Worker {self._worker_id} started")

        self._dequeue_task = asyncio.create_task(self._background_dequeue_loop())

        try:
            while self._running and not self._shutdown_event.is_set():
                try:
                    pending_tasks = {
                        "shutdown": asyncio.create_task(self._shutdown_event.wait()),
                        "dequeue": asyncio.create_task(self._dequeue_queue.get()),
                        "delayed_jobs": asyncio.create_task(
                            asyncio.sleep(self._delayed_interval)
                        ),
                    }

                    done, pending = await asyncio.wait(
                        pending_tasks.values(),
                        return_when=asyncio.FIRST_COMPLETED,
                    )

                    for task in pending:
                        task.cancel()
                        try:
                            await task
                        except asyncio.CancelledError:
                            pass

                    for name, task in pending_tasks.items():
                        if task not in done:
                            continue
                        try:
                            result = task.result()
                        except Exception as task_error:
                            logger.error(
                                f"Worker {self._worker_id}: Task '{name}' failed: {task_error}"
                            )
                            continue

                        if name == "shutdown":
                            logger.debug(f"Worker {self._worker_id}: Shutdown signal received")

                        elif name == "dequeue":
                            job, has_permit = result
                            self._dequeue_queue.task_done()
                            self._spawn(job, has_permit)
                            logger.debug(
                                f"Worker {self._worker_id} claimed job: job_id={job.job_id}"
                            )

                        elif name == "delayed_jobs":
                            try:
                                count = await self._store.move_ready_delayed_jobs()
                                if count > 0:
                                    logger.debug(
                                        f"Worker {self._worker_id} released {count} delayed jobs"
                                    )
                            except Exception as e:
                                logger.warning(
                                    f"Worker {self._worker_id} failed to move delayed jobs: {e}"
                                )

                except Exception as e:
                    logger.error(f"Worker {self._worker_id} error: {e}")

            logger.info(f"Worker {self._worker_id}: Exiting main loop")
        finally:
            self._running = False

    def _spawn(self, job: ScheduledJob, has_permit: bool) -> None:
        task = asyncio.create_task(self._execute_job(job, has_permit))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _execute_job(self, job: ScheduledJob, has_permit: bool = False) -> None:
        """Run one claimed job and record its outcome."""
        try:
            logger.debug(f"Executing job {job.job_id} ({job.workflow_type})")
            try:
                result = await self._job.perform(job.workflow_type, job.payload, job.execution_id)
            except Exception as e:
                requeued = await handle_job_error(
                    self._store, self._worker_id, job, e, self._retry_policy
                )
                if not requeued:
                    await rearm_cron_job(self._scheduler, self._worker_id, job)
                return

            await handle_job_result(self._store, self._worker_id, job, result)
            await rearm_cron_job(self._scheduler, self._worker_id, job)
        finally:
            if has_permit:
                self._max_concurrent_jobs.release()

    async def shutdown(self) -> None:
        """Stop claiming jobs and wait for running ones to finish."""
        logger.info(f"Worker {self._worker_id} shutting down...")
        self._running = False
        self._shutdown_event.set()

        if self._dequeue_task and not self._dequeue_task.done():
            self._dequeue_task.cancel()
            try:
                await self._dequeue_task
            except asyncio.CancelledError:
                pass

        # A job claimed but never taken by the main loop still has to run
        while not self._dequeue_queue.empty():
            job, has_permit = self._dequeue_queue.get_nowait()
            self._spawn(job, has_permit)

        if self._background_tasks:
            logger.info(
                f"Worker {self._worker_id}: Waiting for {len(self._background_tasks)} "
                "running jobs to complete..."
            )
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
            logger.info(f"Worker {self._worker_id}: All running jobs completed")


class WorkerHandle:
    """Handle for controlling a running worker.

    Usage:
        handle = await worker.start()
        await handle.shutdown()
    """

    def __init__(self, worker: Worker, task: asyncio.Task):
        self._worker = worker
        self._task = task

    def worker_id(self) -> str:
        return self._worker.worker_id

    def is_running(self) -> bool:
        return not self._task.done()

    async def shutdown(self) -> None:
        """Shut the worker down and wait for the main loop to exit."""
        await self._worker.shutdown()
        await self._task
        logger.info("Worker handle closed")

    def abort(self) -> None:
        """Cancel the main loop without waiting for running jobs."""
        self._task.cancel()


class WorkerError(Exception):
    """Worker operation failed."""
