"""Recurring workflow registration."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from croniter import croniter

from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError, TaskError
from pyrunbook.tasks.base import IntegrationTask
from pyrunbook.tasks.template import resolve_references

if TYPE_CHECKING:
    from pyrunbook.executor.scheduler import Scheduler


class CronTask(IntegrationTask):
    """
    Schedule a workflow to run on a cron expression.

    Config:
        schedule: cron expression (the context key "schedule" overrides it)
        workflow: workflow type id or WorkflowDefinition subclass (required)
        initial_input: mapping for the scheduled runs (``"$key"`` values resolve
            now, from this context), or the name of a context key holding one
        as: output key for the job id (default "job_id")
    """

    type_id = "cron"
    error_label = "Cron scheduling"
    required_config = ("workflow",)

    DEFAULT_RETRIES = 0

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        *,
        scheduler: Scheduler | None = None,
    ):
        super().__init__(name, config)
        self.scheduler = scheduler

    @property
    def workflow_type(self) -> str:
        workflow = self.config["workflow"]
        if isinstance(workflow, str):
            return workflow
        return workflow.type_id()

    def validate(self) -> None:
        super().validate()
        if self.scheduler is None:
            raise ConfigurationError(f"Cron task {self.name!r} has no scheduler configured")

    def initial_input_for(self, context: Context) -> dict[str, Any]:
        value = self.config.get("initial_input", {})
        if isinstance(value, str):
            value = context.get(value) or {}
        if not isinstance(value, Mapping):
            raise TaskError(f"Cron task {self.name!r}: initial_input must be a mapping")
        return resolve_references(value, context)

    async def perform(self, context: Context) -> Any:
        expression = context.get("schedule") or self.config.get("schedule")
        if not expression:
            raise TaskError(f"Cron task {self.name!r}: schedule is required")
        if not croniter.is_valid(expression):
            raise TaskError(f"Invalid cron expression: {expression!r}")

        handle = await self.scheduler.schedule_cron(
            self.workflow_type, expression, self.initial_input_for(context)
        )
        return {
            self.config.get("as", "job_id"): handle.job_id,
            "schedule": expression,
            "workflow": self.workflow_type,
            "next_run_at": handle.scheduled_for.isoformat() if handle.scheduled_for else None,
            "status": "scheduled",
        }
