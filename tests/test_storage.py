"""Behavior shared by every ExecutionStore backend."""

import os
from datetime import UTC, datetime, timedelta

import pytest
from uuid_extensions import uuid7

from pyrunbook.core import StepResult, StepStatus, WorkflowResult, WorkflowStatus
from pyrunbook.errors import SerializationError
from pyrunbook.models import ExecutionStatus, JobStatus, ScheduledJob
from pyrunbook.storage import StorageError, WorkNotificationSource
from pyrunbook.storage.memory import InMemoryExecutionStore
from pyrunbook.storage.sqlite import SqliteExecutionStore


REDIS_URL = os.getenv("PYRUNBOOK_TEST_REDIS_URL")


@pytest.fixture(params=["memory", "sqlite", "redis"])
async def store(request):
    if request.param == "memory":
        backend = InMemoryExecutionStore()
    elif request.param == "sqlite":
        backend = await SqliteExecutionStore.in_memory()
    else:
        if not REDIS_URL:
            pytest.skip("PYRUNBOOK_TEST_REDIS_URL not set")
        from pyrunbook.storage.redis import RedisExecutionStore

        backend = RedisExecutionStore(REDIS_URL, namespace="pyrunbook-test")
        await backend.connect()
        await backend.reset()
    yield backend
    await backend.reset()
    await backend.close()


def _job(offset_ms: int = 0, **overrides) -> ScheduledJob:
    created = datetime(2024, 1, 1, tzinfo=UTC) + timedelta(milliseconds=offset_ms)
    fields = {
        "job_id": str(uuid7()),
        "workflow_type": "double_add",
        "payload": {"data": {"input": 5}, "private_keys": []},
        "created_at": created,
        "updated_at": created,
    }
    fields.update(overrides)
    return ScheduledJob(**fields)


# ==============================================================================
# Job queue
# ==============================================================================


@pytest.mark.asyncio
async def test_enqueue_then_dequeue_claims_job(store):
    """Test that dequeue claims the enqueued job."""
    job = _job()
    assert await store.enqueue_job(job) == job.job_id

    claimed = await store.dequeue_job("worker-1")

    assert claimed.job_id == job.job_id
    assert claimed.status == JobStatus.RUNNING
    assert claimed.locked_by == "worker-1"
    assert claimed.claimed_at is not None
    assert claimed.payload == job.payload
    assert await store.dequeue_job("worker-2") is None


@pytest.mark.asyncio
async def test_dequeue_is_fifo(store):
    """Test FIFO dequeue order."""
    first, second = _job(0), _job(10)
    await store.enqueue_job(first)
    await store.enqueue_job(second)

    assert (await store.dequeue_job("w")).job_id == first.job_id
    assert (await store.dequeue_job("w")).job_id == second.job_id


@pytest.mark.asyncio
async def test_duplicate_job_rejected(store):
    """Test that a duplicate job id is rejected."""
    job = _job()
    await store.enqueue_job(job)

    with pytest.raises(StorageError):
        await store.enqueue_job(job)


@pytest.mark.asyncio
async def test_complete_job(store):
    """Test completing a claimed job."""
    job = _job()
    await store.enqueue_job(job)
    await store.dequeue_job("w")

    await store.complete_job(job.job_id, JobStatus.FAILED, "Failed at task 'x': boom")

    stored = await store.get_job(job.job_id)
    assert stored.status == JobStatus.FAILED
    assert stored.error_message == "Failed at task 'x': boom"
    assert stored.completed_at is not None
    assert await store.wait_for_job(job.job_id, timeout=1.0) == JobStatus.FAILED


@pytest.mark.asyncio
async def test_complete_job_validation(store):
    """Test that complete_job() rejects non-terminal statuses."""
    with pytest.raises(ValueError):
        await store.complete_job("any", JobStatus.RUNNING)
    with pytest.raises(StorageError):
        await store.complete_job("missing", JobStatus.COMPLETE)


@pytest.mark.asyncio
async def test_retry_without_delay_requeues_immediately(store):
    """Test re-queuing a job with no delay."""
    job = _job()
    await store.enqueue_job(job)
    await store.dequeue_job("w")

    await store.retry_job(job.job_id, "RuntimeError: flaky", timedelta(0))

    again = await store.dequeue_job("w")
    assert again.job_id == job.job_id
    assert again.retry_count == 1
    assert again.error_message == "RuntimeError: flaky"


@pytest.mark.asyncio
async def test_retry_with_delay_waits_for_release(store):
    """Test that a delayed retry waits until released."""
    job = _job()
    await store.enqueue_job(job)
    await store.dequeue_job("w")

    await store.retry_job(job.job_id, "flaky", timedelta(hours=1))

    assert await store.dequeue_job("w") is None
    assert await store.move_ready_delayed_jobs() == 0
    stored = await store.get_job(job.job_id)
    assert stored.status == JobStatus.PENDING
    assert stored.scheduled_for > datetime.now(UTC)


@pytest.mark.asyncio
async def test_delayed_job_released_when_due(store):
    """Test releasing a delayed job once it is due."""
    future = _job(scheduled_for=datetime.now(UTC) + timedelta(hours=1))
    past_due = _job(scheduled_for=datetime.now(UTC) - timedelta(seconds=1))
    await store.enqueue_job(future)
    await store.enqueue_job(past_due)

    await store.move_ready_delayed_jobs()

    claimed = await store.dequeue_job("w")
    assert claimed.job_id == past_due.job_id
    assert await store.dequeue_job("w") is None


@pytest.mark.asyncio
async def test_wait_for_job_errors(store):
    """Test wait_for_job() on unknown jobs and timeouts."""
    job = _job()
    await store.enqueue_job(job)

    with pytest.raises(TimeoutError):
        await store.wait_for_job(job.job_id, timeout=0.05)
    with pytest.raises(StorageError):
        await store.wait_for_job("missing", timeout=0.05)


def test_backends_provide_work_notifications():
    """Test that every backend exposes work notifications."""
    assert isinstance(InMemoryExecutionStore(), WorkNotificationSource)
    assert isinstance(SqliteExecutionStore(":memory:"), WorkNotificationSource)


@pytest.mark.asyncio
async def test_enqueue_sets_work_notification(store):
    """Test that enqueue wakes waiting workers."""
    notify = store.work_notify()
    notify.clear()

    await store.enqueue_job(_job())

    assert notify.is_set()


# ==============================================================================
# Execution records
# ==============================================================================


def _result(execution_id: str, *, failed: bool = False) -> WorkflowResult:
    trace = [StepResult("double", StepStatus.SUCCESS, output=10, execution_id=execution_id)]
    if failed:
        trace.append(
            StepResult("add", StepStatus.FAILED, error="boom", error_kind="TaskError",
                       execution_id=execution_id)
        )
        return WorkflowResult.failure(
            "boom", failed_task_name="add", failed_task_error="boom", trace=trace,
            execution_id=execution_id,
        )
    return WorkflowResult.success(trace, execution_id=execution_id)


@pytest.mark.asyncio
async def test_execution_lifecycle(store):
    """Test pending, running and finalized execution records."""
    payload = {"data": {"input": 5}, "private_keys": []}
    execution_id = await store.create_pending("double_add", payload, "job-1")

    pending = await store.get_execution(execution_id)
    assert pending.status == ExecutionStatus.PENDING
    assert pending.status.workflow_status == WorkflowStatus.NOT_STARTED
    assert pending.initial_context == payload
    assert pending.job_id == "job-1"

    await store.mark_running(execution_id)
    running = await store.get_execution(execution_id)
    assert running.status == ExecutionStatus.RUNNING
    assert running.status.workflow_status == WorkflowStatus.RUNNING

    await store.finalize(execution_id, _result(execution_id))

    done = await store.get_execution(execution_id)
    assert done.status == ExecutionStatus.COMPLETED
    assert done.status.workflow_status == WorkflowStatus.COMPLETED
    assert done.final_output == 10
    assert done.trace[0]["step_name"] == "double"
    assert done.error is None
    assert done.duration_ms is not None


@pytest.mark.asyncio
async def test_failed_result_is_recorded(store):
    """Test finalizing from a failed result."""
    execution_id = await store.create_pending("double_add", {"data": {}, "private_keys": []})
    await store.mark_running(execution_id)

    await store.finalize(execution_id, _result(execution_id, failed=True))

    record = await store.get_execution(execution_id)
    assert record.status == ExecutionStatus.FAILED
    assert record.failed_task_name == "add"
    assert record.error == "Failed at task 'add': boom"
    assert [entry["status"] for entry in record.trace] == ["success", "failed"]


@pytest.mark.asyncio
@pytest.mark.parametrize("output", [{1, 2}, float("nan"), object()])
async def test_unstorable_output_is_rejected(store, output):
    """A step output JSON cannot carry is an error, not silently coerced."""
    execution_id = await store.create_pending("w", {"data": {}})
    result = WorkflowResult.success(
        [StepResult("write", StepStatus.SUCCESS, output=output)], execution_id=execution_id
    )

    with pytest.raises(SerializationError, match=execution_id):
        await store.finalize(execution_id, result)

    record = await store.get_execution(execution_id)
    assert record.status == ExecutionStatus.PENDING
    assert record.final_output is None
    assert record.trace == []


@pytest.mark.asyncio
async def test_mark_failed_outside_engine(store):
    """Test marking an execution failed without a result."""
    execution_id = await store.create_pending("double_add", {"data": {}, "private_keys": []})

    await store.mark_failed(execution_id, "RehydrationError: Reference not found")

    record = await store.get_execution(execution_id)
    assert record.status == ExecutionStatus.FAILED
    assert record.error.startswith("RehydrationError")


@pytest.mark.asyncio
async def test_execution_updates_require_existing_record(store):
    """Test updates to a missing execution."""
    with pytest.raises(StorageError):
        await store.mark_running("missing")
    assert await store.get_execution("missing") is None


@pytest.mark.asyncio
async def test_explicit_execution_id_and_duplicates(store):
    """Test creating an execution with a caller-chosen id."""
    await store.create_pending("w", {"data": {}}, execution_id="exec-1")

    with pytest.raises(StorageError):
        await store.create_pending("w", {"data": {}}, execution_id="exec-1")


@pytest.mark.asyncio
async def test_list_executions_filters_newest_first(store):
    """Test listing executions by status, newest first."""
    first = await store.create_pending("a", {"data": {}})
    second = await store.create_pending("b", {"data": {}})
    third = await store.create_pending("a", {"data": {}})
    await store.mark_failed(third, "boom")

    assert [e.execution_id for e in await store.list_executions(workflow_type="a")] == [
        third,
        first,
    ]
    failed = await store.list_executions(status=ExecutionStatus.FAILED)
    assert [e.execution_id for e in failed] == [third]
    assert len(await store.list_executions(limit=2)) == 2
    assert second in {e.execution_id for e in await store.list_executions()}


@pytest.mark.asyncio
async def test_reset_clears_everything(store):
    """Test that reset() clears jobs and executions."""
    job = _job()
    await store.enqueue_job(job)
    execution_id = await store.create_pending("w", {"data": {}})

    await store.reset()

    assert await store.get_job(job.job_id) is None
    assert await store.get_execution(execution_id) is None
    assert await store.dequeue_job("w") is None
