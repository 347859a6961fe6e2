"""
Agent - application-facing entry point for running workflows.

An Agent bundles an engine, an optional scheduler and some ambient context
(who is asking, from where) and builds each run's starting Context from
three layers, later layers winning:

    agent context  <  per-call extras  <  initial input

Keys that look sensitive (Configuration.sensitive_log_filter) are marked
private so they are redacted from logs; their values still reach the tasks.

Example:
    ```python
    agent = Agent(engine, scheduler, context={"current_user_id": 42})

    result = await agent.run_workflow(LeadAnalysisWorkflow, {"lead": lead_data})
    if result.is_completed:
        return {"analysis": result.final_output}
    return {"error": result.error_message}
    ```
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from pyrunbook.config import Configuration
from pyrunbook.core.context import Context
from pyrunbook.core.definition import WorkflowDefinition, step
from pyrunbook.core.result import WorkflowResult
from pyrunbook.errors import ConfigurationError
from pyrunbook.executor.engine import StepCallback, WorkflowEngine
from pyrunbook.executor.scheduler import JobHandle, Scheduler

logger = logging.getLogger(__name__)

__all__ = ["Agent", "LLMCompletionWorkflow"]

DEFAULT_TEMPERATURE = 0.7


class LLMCompletionWorkflow(WorkflowDefinition):
    """Single-step workflow behind Agent.generate_now()/generate_later()."""

    workflow_id = "llm_completion"
    description = "One LLM completion driven by the context"
    steps = [step("llm", "llm_completion")]


class Agent:
    """Runs workflows with a context assembled from ambient and per-call data."""

    def __init__(
        self,
        engine: WorkflowEngine,
        scheduler: Scheduler | None = None,
        config: Configuration | None = None,
        context: Mapping[str, Any] | None = None,
    ):
        self.engine = engine
        self.scheduler = scheduler
        self.config = config or engine.config
        self.context: dict[str, Any] = dict(context or {})

    def __repr__(self) -> str:
        return f"Agent(context_keys={sorted(self.context)})"

    def with_context(self, **params: Any) -> Agent:
        """Copy of this agent with ``params`` added to its ambient context."""
        return Agent(self.engine, self.scheduler, self.config, {**self.context, **params})

    def build_context(
        self, initial_input: Mapping[str, Any] | None = None, **extra: Any
    ) -> Context:
        """Merge the three context layers and mark sensitive keys private."""
        context = Context(self.context).merge(extra).merge(initial_input or {})
        sensitive = [key for key in context if self.config.is_sensitive(key)]
        return context.with_private(*sensitive) if sensitive else context

    async def run_workflow(
        self,
        workflow: type[WorkflowDefinition],
        initial_input: Mapping[str, Any] | None = None,
        on_step: StepCallback | None = None,
        *,
        cancel: asyncio.Event | None = None,
        **extra: Any,
    ) -> WorkflowResult:
        """Run ``workflow`` now and return its WorkflowResult."""
        context = self.build_context(initial_input, **extra)
        return await self.engine.execute(workflow, context, on_step, cancel=cancel)

    async def run_workflow_later(
        self,
        workflow: type[WorkflowDefinition],
        initial_input: Mapping[str, Any] | None = None,
        *,
        delay: timedelta | None = None,
        **extra: Any,
    ) -> JobHandle:
        """
        Queue ``workflow`` for a worker.

        Raises:
            ConfigurationError: If the agent has no scheduler.
            SerializationError: If the context cannot cross the async boundary.
        """
        if self.scheduler is None:
            raise ConfigurationError("Agent has no scheduler; cannot run workflows later")
        context = self.build_context(initial_input, **extra)
        handle = await self.scheduler.run_later(workflow, context, delay=delay)
        logger.info(f"Queued {handle.workflow_type}: job_id={handle.job_id}")
        return handle

    def _completion_input(self, prompt: Any, options: dict[str, Any]) -> dict[str, Any]:
        prompt = prompt or self.context.get("prompt") or self.context.get("messages")
        if not prompt:
            raise ConfigurationError("No prompt given and none in the agent context")
        data = {
            "prompt": prompt,
            "model": options.pop("model", None) or self.config.default_llm_model,
            "temperature": options.pop("temperature", DEFAULT_TEMPERATURE),
            "max_tokens": options.pop("max_tokens", None),
            **options,
        }
        return {k: v for k, v in data.items() if v is not None}

    async def generate_now(self, prompt: Any = None, **options: Any) -> WorkflowResult:
        """One LLM completion through LLMCompletionWorkflow.

        The engine's registry must provide the ``llm_completion`` task.
        """
        return await self.run_workflow(
            LLMCompletionWorkflow, self._completion_input(prompt, options)
        )

    async def generate_later(self, prompt: Any = None, **options: Any) -> JobHandle:
        return await self.run_workflow_later(
            LLMCompletionWorkflow, self._completion_input(prompt, options)
        )
