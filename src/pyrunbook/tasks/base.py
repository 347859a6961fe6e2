"""
Task contract.

A Task is a named, configured unit of work. The engine constructs one per
step attempt from the step's static configuration and only relies on this
interface:

- ``should_execute(context)``: evaluate the step guard (default: True)
- ``await execute(context)``: produce an output or raise TaskError
- ``name`` / ``description``: for logs

``timeout`` and ``retries`` are advisory. The engine never interprets them;
IntegrationTask uses them around the external call it wraps.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, ClassVar

from pyrunbook.core.context import Context
from pyrunbook.core.definition import GUARD_KEY
from pyrunbook.errors import ConfigurationError, TaskError, WorkflowError
from pyrunbook.models.retry import RetryPolicy

logger = logging.getLogger(__name__)

__all__ = ["Task", "IntegrationTask"]


class Task(ABC):
    """
    Base class for all task kinds.

    Subclasses set ``type_id`` (the registry key) and implement execute().
    ``required_config`` lists config keys validate() insists on.

    Example:
        ```python
        class Uppercase(Task):
            type_id = "uppercase"
            required_config = ("key",)

            async def execute(self, context):
                return str(context.get(self.config["key"], "")).upper()
        ```
    """

    type_id: ClassVar[str | None] = None
    required_config: ClassVar[tuple[str, ...]] = ()

    DEFAULT_TIMEOUT: ClassVar[float] = 30.0
    DEFAULT_RETRIES: ClassVar[int] = 3

    def __init__(self, name: str, config: Mapping[str, Any] | None = None):
        self.name = name
        self.config: Mapping[str, Any] = MappingProxyType(dict(config or {}))

    @property
    def timeout(self) -> float:
        """Seconds; advisory."""
        return float(self.config.get("timeout", self.DEFAULT_TIMEOUT))

    @property
    def retries(self) -> int:
        """Retry count; advisory."""
        return int(self.config.get("retries", self.DEFAULT_RETRIES))

    @property
    def description(self) -> str:
        return self.config.get("description") or f"{type(self).__name__}({self.name})"

    def should_execute(self, context: Context) -> bool:
        """
        Evaluate the step guard against ``context``.

        The guard is either a predicate called with the context or a literal
        whose truthiness decides. No guard means execute.
        """
        if GUARD_KEY not in self.config:
            return True
        guard = self.config[GUARD_KEY]
        if callable(guard):
            return bool(guard(context))
        return bool(guard)

    def validate(self) -> None:
        """Raise ConfigurationError if a required config key is missing."""
        for key in self.required_config:
            if self.config.get(key) is None:
                raise ConfigurationError(
                    f"{type(self).__name__} {self.name!r} requires config: {key}"
                )

    @abstractmethod
    async def execute(self, context: Context) -> Any:
        """Run the task against ``context`` and return its output."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class IntegrationTask(Task):
    """
    Boundary adapter around an external call.

    Subclasses implement ``perform()``. execute() adds the shared policy:

    1. validate() the config
    2. bound each attempt by ``timeout`` (asyncio.wait_for)
    3. retry transient failures ``retries`` times with exponential backoff
    4. wrap whatever still fails in TaskError("<label> error: <message>")

    WorkflowError subclasses raised by perform() (bad config, a TaskError
    for an unusable response) are not retried and propagate unchanged.
    """

    error_label: ClassVar[str] = "Integration"

    DEFAULT_RETRY_DELAY_MS: ClassVar[int] = 500

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=max(1, self.retries + 1),
            initial_delay_ms=int(self.config.get("retry_delay_ms", self.DEFAULT_RETRY_DELAY_MS)),
            max_delay_ms=10000,
            backoff_multiplier=2.0,
        )

    @abstractmethod
    async def perform(self, context: Context) -> Any:
        """Make the external call. Exceptions are wrapped by execute()."""

    async def execute(self, context: Context) -> Any:
        self.validate()
        policy = self.retry_policy
        attempt = 1

        while True:
            try:
                return await asyncio.wait_for(self.perform(context), timeout=self.timeout)
            except WorkflowError:
                raise
            except Exception as e:
                message = (
                    f"timed out after {self.timeout:g}s"
                    if isinstance(e, TimeoutError)
                    else str(e) or type(e).__name__
                )
                delay_ms = policy.delay_for_attempt(attempt)
                if delay_ms is None:
                    raise TaskError(f"{self.error_label} error: {message}", cause=e) from e

                logger.warning(
                    f"Task {self.name} attempt {attempt}/{policy.max_attempts} failed: "
                    f"{message}; retrying in {delay_ms}ms"
                )
                await asyncio.sleep(delay_ms / 1000.0)
                attempt += 1
