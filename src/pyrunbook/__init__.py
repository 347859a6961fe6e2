"""
pyrunbook: sequential workflow orchestration for Python

A workflow is an ordered list of steps. Each step names a task type, the
engine runs the steps one after another against an immutable Context, and
every run ends in a WorkflowResult carrying the per-step trace. Runs can
happen inline (WorkflowEngine / Agent) or be queued for a Worker through a
Scheduler and an ExecutionStore.

Example:
    ```python
    import asyncio
    from pyrunbook import Agent, TaskRegistry, WorkflowDefinition, WorkflowEngine, step

    class OrderWorkflow(WorkflowDefinition):
        steps = [
            step("double", handler=lambda ctx: ctx["input"] * 2),
            step("label", handler=lambda ctx: f"total={ctx['double']}"),
        ]

    async def main():
        engine = WorkflowEngine(TaskRegistry.with_defaults())
        agent = Agent(engine)

        result = await agent.run_workflow(OrderWorkflow, {"input": 5})
        print(result.final_output)  # total=10

    asyncio.run(main())
    ```
"""

# Core value types
from pyrunbook.core import (
    Context,
    Step,
    StepResult,
    StepStatus,
    WorkflowDefinition,
    WorkflowResult,
    WorkflowStatus,
    define_workflow,
    get_current_execution_id,
    step,
)

# Configuration and errors
from pyrunbook.config import Configuration
from pyrunbook.errors import (
    ConfigurationError,
    RehydrationError,
    SerializationError,
    TaskError,
    UnknownTaskType,
    UnknownWorkflowType,
    WorkflowCancelled,
    WorkflowError,
)

# Tasks
from pyrunbook.tasks import IntegrationTask, Task, TaskRegistry

# Async boundary
from pyrunbook.serialization import ContextSerializer, ReferenceLocator
from pyrunbook.models import Execution, ExecutionStatus, JobStatus, RetryPolicy, ScheduledJob
from pyrunbook.storage import ExecutionStore, StorageError
from pyrunbook.storage.memory import InMemoryExecutionStore
from pyrunbook.storage.sqlite import SqliteExecutionStore

# Execution
from pyrunbook.executor import (
    JobHandle,
    Scheduler,
    SchedulerError,
    Worker,
    WorkerError,
    WorkerHandle,
    WorkflowEngine,
    WorkflowJob,
    WorkflowRegistry,
)
from pyrunbook.agent import Agent

__version__ = "0.1.0"


def __getattr__(name: str):
    # redis is only imported by deployments that use it
    if name == "RedisExecutionStore":
        from pyrunbook.storage.redis import RedisExecutionStore

        return RedisExecutionStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Core types
    "Context",
    "Step",
    "step",
    "WorkflowDefinition",
    "define_workflow",
    "StepResult",
    "StepStatus",
    "WorkflowResult",
    "WorkflowStatus",
    "get_current_execution_id",
    # Configuration and errors
    "Configuration",
    "WorkflowError",
    "ConfigurationError",
    "UnknownTaskType",
    "UnknownWorkflowType",
    "TaskError",
    "SerializationError",
    "RehydrationError",
    "WorkflowCancelled",
    # Tasks
    "Task",
    "IntegrationTask",
    "TaskRegistry",
    # Async boundary
    "ContextSerializer",
    "ReferenceLocator",
    "Execution",
    "ExecutionStatus",
    "JobStatus",
    "ScheduledJob",
    "RetryPolicy",
    # Storage (Adapter pattern)
    "ExecutionStore",
    "StorageError",
    "InMemoryExecutionStore",
    "SqliteExecutionStore",
    "RedisExecutionStore",
    # Execution
    "WorkflowEngine",
    "WorkflowRegistry",
    "WorkflowJob",
    "Scheduler",
    "SchedulerError",
    "JobHandle",
    "Worker",
    "WorkerHandle",
    "WorkerError",
    "Agent",
    # Metadata
    "__version__",
]
