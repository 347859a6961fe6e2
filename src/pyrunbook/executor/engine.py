"""
WorkflowEngine - sequential step loop for one workflow run.

A run goes not_started → running → completed/failed in a single pass over
the definition's steps. For each step the engine:

1. resolves a fresh Task through the registry
2. evaluates the guard against the current Context (false: skip, no trace entry)
3. awaits ``task.execute(context)``
4. appends a StepResult to the trace, binds the output under the step name
   in a new Context, and hands the StepResult to the ``on_step`` callback

Any exception raised during 1-4 stops the loop, including one raised by
the callback. The failing step gets a failed entry in the trace and the
run is returned as a failed WorkflowResult; ``execute()`` does not raise
for step-level problems.

The engine never retries. ``Task.retries`` is advisory and only consulted by
task implementations around their own external calls.

Example:
    ```python
    engine = WorkflowEngine(TaskRegistry.with_defaults())
    result = await engine.execute(ReportWorkflow, {"input": 5})

    if result.is_completed:
        print(result.final_output)
    else:
        print(result.error_message)
    ```
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from uuid_extensions import uuid7

from pyrunbook.config import Configuration
from pyrunbook.core.context import CURRENT_EXECUTION_ID, Context
from pyrunbook.core.definition import Step, WorkflowDefinition
from pyrunbook.core.result import WorkflowResult
from pyrunbook.core.status import StepStatus
from pyrunbook.core.step_result import StepResult
from pyrunbook.errors import ConfigurationError, WorkflowCancelled
from pyrunbook.tasks.registry import TaskRegistry

logger = logging.getLogger(__name__)

__all__ = ["WorkflowEngine", "StepCallback"]

StepCallback = Callable[[StepResult], Awaitable[None] | None]
"""Streaming hook, called in trace order before the next step starts."""


class _StepFailed(Exception):
    """Carries a step failure (already traced) out of the step loop."""

    def __init__(self, step_name: str, error: BaseException):
        super().__init__(str(error))
        self.step_name = step_name
        self.error = error


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def _error_message(error: BaseException) -> str:
    return str(error) or type(error).__name__


def _failed_entry(
    step_name: str, error: BaseException, started: float, run_id: str
) -> StepResult:
    return StepResult(
        step_name=step_name,
        status=StepStatus.FAILED,
        error=_error_message(error),
        error_kind=type(error).__name__,
        duration_ms=_elapsed_ms(started),
        execution_id=run_id,
    )


class WorkflowEngine:
    """
    Runs workflow definitions against a Context.

    The registry is injected, never looked up globally, so a test can run
    a workflow against a registry holding only fakes. The engine keeps no
    per-run state; concurrent ``execute()`` calls on one engine are safe.
    """

    def __init__(self, registry: TaskRegistry, config: Configuration | None = None):
        self.registry = registry
        self.config = config or Configuration()

    def _prepare_context(self, context: Context | Mapping[str, Any] | None) -> Context:
        if isinstance(context, Context):
            base = context
        else:
            base = Context(context or {})
        sensitive = [key for key in base if self.config.is_sensitive(key)]
        return base.with_private(*sensitive) if sensitive else base

    async def execute(
        self,
        workflow: type[WorkflowDefinition] | WorkflowDefinition,
        context: Context | Mapping[str, Any] | None = None,
        on_step: StepCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
        execution_id: str | None = None,
    ) -> WorkflowResult:
        """
        Run every step of ``workflow`` in declaration order.

        Args:
            workflow: WorkflowDefinition subclass (or an instance of one)
            context: Starting Context, or a plain mapping to build one from
            on_step: Optional callback receiving each StepResult as it is
                committed; may be sync or async. If it raises, the run fails.
            cancel: Optional event checked before each step; once set, the
                run stops and is reported as failed at the next step
            execution_id: Run id to use instead of a freshly generated one

        Returns:
            WorkflowResult: completed with the full trace, or failed with the
            trace up to and including the failing step.
        """
        definition = workflow if isinstance(workflow, type) else type(workflow)
        if not issubclass(definition, WorkflowDefinition):
            raise ConfigurationError(f"{definition.__name__} is not a WorkflowDefinition")

        run_id = execution_id or str(uuid7())
        workflow_type = definition.type_id()
        context = self._prepare_context(context)
        trace: list[StepResult] = []
        current_step: str | None = None
        started = time.perf_counter()

        token = CURRENT_EXECUTION_ID.set(run_id)
        logger.info(
            f"Starting workflow execution: {workflow_type} (run {run_id}) "
            f"context={context.filtered_for_logging()}"
        )

        try:
            for declared in definition.steps:
                current_step = declared.name
                if cancel is not None and cancel.is_set():
                    raise WorkflowCancelled("Workflow cancelled")

                context = await self._run_step(declared, context, trace, run_id, on_step)

        except _StepFailed as failure:
            message = _error_message(failure.error)
            duration_ms = _elapsed_ms(started)
            logger.error(
                f"Workflow {workflow_type} (run {run_id}) failed at step "
                f"{failure.step_name}: {type(failure.error).__name__}: {message}"
            )
            return WorkflowResult.failure(
                error=message,
                failed_task_name=failure.step_name,
                failed_task_error=message,
                trace=trace,
                execution_id=run_id,
                workflow_type=workflow_type,
                duration_ms=duration_ms,
            )

        except Exception as e:
            # Raised between steps (cancellation); nothing traced for it
            message = _error_message(e)
            logger.error(
                f"Workflow {workflow_type} (run {run_id}) failed at step {current_step}: {message}"
            )
            return WorkflowResult.failure(
                error=message,
                failed_task_name=current_step,
                failed_task_error=message,
                trace=trace,
                execution_id=run_id,
                workflow_type=workflow_type,
                duration_ms=_elapsed_ms(started),
            )

        finally:
            CURRENT_EXECUTION_ID.reset(token)

        duration_ms = _elapsed_ms(started)
        logger.info(
            f"Workflow {workflow_type} (run {run_id}) completed "
            f"{len(trace)} step(s) in {duration_ms:.2f}ms"
        )
        return WorkflowResult.success(
            trace,
            execution_id=run_id,
            workflow_type=workflow_type,
            duration_ms=duration_ms,
        )

    async def _run_step(
        self,
        declared: Step,
        context: Context,
        trace: list[StepResult],
        run_id: str,
        on_step: StepCallback | None,
    ) -> Context:
        """Execute one step and return the Context the next step sees."""
        step_started = time.perf_counter()
        try:
            task = self.registry.resolve(declared.uses, declared.name, declared.config)
            if not task.should_execute(context):
                logger.debug(f"Skipping step {declared.name}: guard is false")
                return context

            logger.debug(f"Executing step {declared.name} ({declared.type_label})")
            output = await task.execute(context)

        except Exception as e:
            trace.append(_failed_entry(declared.name, e, step_started, run_id))
            raise _StepFailed(declared.name, e) from e

        entry = StepResult(
            step_name=declared.name,
            status=StepStatus.SUCCESS,
            output=output,
            duration_ms=_elapsed_ms(step_started),
            execution_id=run_id,
        )
        trace.append(entry)
        logger.info(f"Step {declared.name} completed in {entry.duration_ms:.2f}ms")

        context = context.set(declared.name, output)

        if on_step is not None:
            try:
                outcome = on_step(entry)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                # The committed success entry stays; the failure follows it
                trace.append(_failed_entry(declared.name, e, step_started, run_id))
                raise _StepFailed(declared.name, e) from e

        return context
