"""
Background Worker Demonstration

Runs are queued through a Scheduler into a SQLite store and executed by a
Worker. The starting context carries a RecordRef; it crosses the queue as a
``ref://record/users/<id>`` token and is loaded again before the first step.

Scenario:
- a small users table in SQLite
- 3 welcome runs queued, one for a user that does not exist
- 1 worker with at most 2 concurrent jobs
- the missing user fails rehydration and is recorded, not retried

Run:
    PYTHONPATH=src python examples/background_worker.py
"""

import asyncio
import logging
from pathlib import Path

import aiosqlite

from pyrunbook import (
    ContextSerializer,
    JobStatus,
    ReferenceLocator,
    Scheduler,
    SqliteExecutionStore,
    TaskRegistry,
    Worker,
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowJob,
    WorkflowRegistry,
    step,
)
from pyrunbook.clients.records import RecordRef, SqliteRecordRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DATA_DIR = Path("data")


class WelcomeWorkflow(WorkflowDefinition):
    workflow_id = "welcome"
    steps = [
        step("profile", "record_find", model="users", id="$user", **{"as": "profile"}),
        step(
            "greeting",
            handler=lambda ctx: f"Welcome aboard, {ctx['profile']['profile']['name']}!",
        ),
    ]


async def create_users(path: Path) -> None:
    async with aiosqlite.connect(path) as db:
        await db.execute("DROP TABLE IF EXISTS users")
        await db.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
        await db.executemany("INSERT INTO users VALUES (?, ?)", [(1, "Ada"), (2, "Grace")])
        await db.commit()


async def main():
    DATA_DIR.mkdir(exist_ok=True)
    await create_users(DATA_DIR / "app.db")

    repository = SqliteRecordRepository(str(DATA_DIR / "app.db"))
    await repository.connect()

    locator = ReferenceLocator()
    locator.register("record", RecordRef, identify=lambda ref: ref.token_id, locate=repository.locate)
    serializer = ContextSerializer(locator)

    store = SqliteExecutionStore(str(DATA_DIR / "runbook.db"))
    await store.connect()
    await store.reset()

    engine = WorkflowEngine(TaskRegistry.with_defaults(repository=repository))
    job = WorkflowJob(engine, WorkflowRegistry(WelcomeWorkflow), store, serializer)
    worker = (
        Worker(store, job, "worker-1")
        .with_poll_interval(0.1)
        .with_max_concurrent_jobs(2)
        .with_max_retries(0)
    )
    worker_handle = await worker.start()

    scheduler = Scheduler(store, serializer)
    handles = [
        await scheduler.run_later(WelcomeWorkflow, {"user": RecordRef("users", user_id)})
        for user_id in (1, 2, 99)
    ]

    for handle in handles:
        status = await store.wait_for_job(handle.job_id, timeout=10.0)
        execution = await store.get_execution(handle.execution_id)
        if status == JobStatus.COMPLETE:
            logger.info(f"{handle.job_id}: {execution.final_output}")
        else:
            logger.info(f"{handle.job_id}: {execution.error}")

    await worker_handle.shutdown()
    await store.close()
    await repository.close()


if __name__ == "__main__":
    asyncio.run(main())
