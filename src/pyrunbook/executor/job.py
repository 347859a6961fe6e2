"""
WorkflowJob - the consumer side of a queued workflow run.

perform() is a thin shell around one engine invocation:

1. load (or create) the Execution record and mark it running
2. rehydrate the serialized Context
3. run the engine
4. finalize the Execution record from the WorkflowResult

A failed WorkflowResult is an ordinary outcome: it is recorded and
returned. An exception (rehydration failure, a bug below the engine) marks
the execution failed and is re-raised, so the queue's own failure and
retry handling applies.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pyrunbook.core.result import WorkflowResult
from pyrunbook.errors import RehydrationError, SerializationError
from pyrunbook.executor.engine import WorkflowEngine
from pyrunbook.executor.registry import WorkflowRegistry
from pyrunbook.serialization import ContextSerializer
from pyrunbook.storage.base import ExecutionStore

logger = logging.getLogger(__name__)

__all__ = ["WorkflowJob"]


class WorkflowJob:
    """
    Runs queued workflows.

    Usage:
        job = WorkflowJob(engine, WorkflowRegistry(ReportWorkflow), store, serializer)
        result = await job.perform("ReportWorkflow", payload, execution_id)
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        workflows: WorkflowRegistry,
        store: ExecutionStore | None = None,
        serializer: ContextSerializer | None = None,
    ):
        self.engine = engine
        self.workflows = workflows
        self.store = store
        self.serializer = serializer or ContextSerializer()

    async def perform(
        self,
        workflow_type_name: str,
        serialized_context: Mapping[str, Any],
        execution_id: str | None = None,
    ) -> WorkflowResult:
        """
        Execute one queued run.

        Args:
            workflow_type_name: Workflow registry key
            serialized_context: Payload produced by ContextSerializer.serialize()
            execution_id: Execution record created at enqueue time; when None
                and a store is configured, a record is created here

        Returns:
            The engine's WorkflowResult (completed or failed).

        Raises:
            UnknownWorkflowType: If the workflow type is not registered.
            RehydrationError: If a reference token cannot be resolved.
            SerializationError: If a step output cannot be stored as JSON;
                the execution is marked failed first.
        """
        if self.store is not None and execution_id is None:
            execution_id = await self.store.create_pending(
                workflow_type_name, dict(serialized_context)
            )

        try:
            definition = self.workflows.resolve(workflow_type_name)

            if self.store is not None:
                await self.store.mark_running(execution_id)

            try:
                context = await self.serializer.deserialize(serialized_context)
            except RehydrationError as e:
                logger.error(
                    f"Failed to rehydrate context for {workflow_type_name} "
                    f"(execution {execution_id}): {e}"
                )
                raise

            result = await self.engine.execute(definition, context, execution_id=execution_id)

        except Exception as e:
            if self.store is not None:
                await self.store.mark_failed(execution_id, f"{type(e).__name__}: {e}")
            raise

        if self.store is not None:
            try:
                await self.store.finalize(execution_id, result)
            except SerializationError as e:
                logger.error(f"Failed to record outcome of execution {execution_id}: {e}")
                await self.store.mark_failed(execution_id, f"SerializationError: {e}")
                raise

        logger.info(
            f"Async workflow completed: {workflow_type_name} "
            f"(execution {result.execution_id}, status={result.status})"
        )
        return result
