"""Workflow registry: workflow type id → WorkflowDefinition subclass.

Queued jobs only carry the workflow's type id; the executing side maps it
back to a definition through this registry.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator

from pyrunbook.core.definition import WorkflowDefinition
from pyrunbook.errors import ConfigurationError, UnknownWorkflowType

logger = logging.getLogger(__name__)


class WorkflowRegistry:
    """Registry of workflow definitions known to a worker.

    Example:
        ```python
        workflows = WorkflowRegistry()
        workflows.register(ReportWorkflow)
        workflows.register(OnboardingWorkflow)

        definition = workflows.resolve("ReportWorkflow")
        ```
    """

    def __init__(self, *definitions: type[WorkflowDefinition]):
        self._definitions: dict[str, type[WorkflowDefinition]] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: type[WorkflowDefinition]) -> None:
        """Register ``definition`` under its ``type_id()``.

        Re-registering the same class is a no-op; a different class under
        a taken id is a configuration error.
        """
        if not (isinstance(definition, type) and issubclass(definition, WorkflowDefinition)):
            raise ConfigurationError(f"{definition!r} is not a WorkflowDefinition subclass")

        type_id = definition.type_id()
        existing = self._definitions.get(type_id)
        if existing is not None and existing is not definition:
            raise ConfigurationError(f"Workflow type {type_id!r} is already registered")

        self._definitions[type_id] = definition
        logger.debug(f"Registered workflow type: {type_id}")

    def get(self, type_id: str) -> type[WorkflowDefinition] | None:
        return self._definitions.get(type_id)

    def resolve(self, type_id: str) -> type[WorkflowDefinition]:
        """Like get(), but raises UnknownWorkflowType for unregistered ids."""
        definition = self._definitions.get(type_id)
        if definition is None:
            raise UnknownWorkflowType(type_id)
        return definition

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._definitions

    def __iter__(self) -> Iterator[str]:
        return iter(self._definitions)

    def __len__(self) -> int:
        return len(self._definitions)

    def is_empty(self) -> bool:
        return len(self._definitions) == 0
