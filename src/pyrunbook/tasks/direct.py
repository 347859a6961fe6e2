"""Direct in-process handler task."""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError, TaskError, WorkflowError
from pyrunbook.tasks.base import Task


class DirectHandlerTask(Task):
    """
    Call a Python function with the current context.

    Config:
        handler: callable ``(Context) -> value`` (sync or async)
        method: name of a context key holding such a callable

    Example:
        step("double", handler=lambda ctx: ctx["input"] * 2)
    """

    type_id = "direct"

    def validate(self) -> None:
        if self.config.get("handler") is None and self.config.get("method") is None:
            raise ConfigurationError(
                f"Direct handler task {self.name!r} requires :handler or :method"
            )
        handler = self.config.get("handler")
        if handler is not None and not callable(handler):
            raise ConfigurationError(f"Handler for task {self.name!r} is not callable")

    def _resolve_handler(self, context: Context) -> Callable[[Context], Any]:
        handler = self.config.get("handler")
        if handler is not None:
            return handler

        method = self.config["method"]
        target = context.get(method)
        if not callable(target):
            raise ConfigurationError(
                f"Context key {method!r} for task {self.name!r} does not hold a callable"
            )
        return target

    async def execute(self, context: Context) -> Any:
        self.validate()
        handler = self._resolve_handler(context)

        try:
            result = handler(context)
            if inspect.isawaitable(result):
                result = await result
        except WorkflowError:
            raise
        except Exception as e:
            raise TaskError(str(e) or type(e).__name__, cause=e) from e

        return result
