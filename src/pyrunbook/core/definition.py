"""
Static workflow definitions.

A workflow is a class deriving from WorkflowDefinition whose ``steps``
attribute lists step declarations in execution order. The list is fixed when
the class is created: names are validated once (they must be unique because
the engine uses them both as trace keys and as context keys) and the list is
frozen into a tuple shared by every run.

Example:
    ```python
    class ReportWorkflow(WorkflowDefinition):
        steps = [
            step("fetch", "direct", handler=fetch_rows),
            step("summarize", "llm", prompt="Summarize: {{fetch}}"),
            step("notify", "mail", when=lambda ctx: ctx.get("notify"), to="{{email}}"),
        ]
    ```

The ``when`` guard is either a literal (truthy/falsy) or a predicate over
the current Context. Omitting it means "always execute".
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar

from pyrunbook.errors import ConfigurationError

if TYPE_CHECKING:
    from pyrunbook.tasks.base import Task

__all__ = ["Step", "step", "WorkflowDefinition", "define_workflow", "GUARD_KEY"]

GUARD_KEY = "when"
"""Config key holding a step's guard."""


@dataclass(frozen=True)
class Step:
    """
    One step declaration.

    ``uses`` is a registered task-type identifier, or a Task subclass for
    steps that do not go through the registry.
    """

    name: str
    uses: str | type[Task]
    config: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "config", MappingProxyType(dict(self.config)))

    @property
    def has_guard(self) -> bool:
        return GUARD_KEY in self.config

    @property
    def type_label(self) -> str:
        """Printable task type, for logs and error messages."""
        if isinstance(self.uses, str):
            return self.uses
        return getattr(self.uses, "type_id", None) or self.uses.__name__


_NO_GUARD = object()


def step(
    name: str,
    uses: str | type[Task] | None = None,
    *,
    when: bool | Callable[[Any], bool] | Any = _NO_GUARD,
    **config: Any,
) -> Step:
    """
    Declare a step.

    A step with a ``handler`` and no explicit ``uses`` is a direct-handler
    step. Anything else must name its task type.

    Raises:
        ConfigurationError: If the name is empty or no task type can be determined.
    """
    if not isinstance(name, str) or not name:
        raise ConfigurationError(f"Step name must be a non-empty string, got {name!r}")

    if uses is None:
        if "handler" in config or "method" in config:
            uses = "direct"
        else:
            raise ConfigurationError(f"No task type specified for step: {name}")

    if when is not _NO_GUARD:
        config[GUARD_KEY] = when

    return Step(name=name, uses=uses, config=config)


class WorkflowDefinition:
    """
    Base class for workflow definitions.

    Subclasses set ``steps``; optionally ``workflow_id`` to pin a stable type
    identifier (defaults to the class name) and ``description``.
    """

    steps: ClassVar[tuple[Step, ...]] = ()
    workflow_id: ClassVar[str | None] = None
    description: ClassVar[str] = ""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        steps = tuple(cls.__dict__.get("steps", cls.steps))

        seen: set[str] = set()
        for declared in steps:
            if not isinstance(declared, Step):
                raise ConfigurationError(
                    f"{cls.__name__}.steps must contain Step declarations, got {declared!r}"
                )
            if declared.name in seen:
                raise ConfigurationError(
                    f"Duplicate step name {declared.name!r} in workflow {cls.__name__}"
                )
            seen.add(declared.name)

        cls.steps = steps

    @classmethod
    def type_id(cls) -> str:
        """Stable identifier used by the workflow registry and the job queue."""
        return cls.workflow_id or cls.__name__

    @classmethod
    def find_step(cls, name: str) -> Step | None:
        for declared in cls.steps:
            if declared.name == name:
                return declared
        return None

    @classmethod
    def step_names(cls) -> list[str]:
        return [declared.name for declared in cls.steps]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(steps={self.step_names()})"


def define_workflow(
    type_id: str, steps: Iterable[Step], *, description: str = ""
) -> type[WorkflowDefinition]:
    """Build a WorkflowDefinition subclass at runtime (same validation rules)."""
    return type(
        type_id,
        (WorkflowDefinition,),
        {"steps": tuple(steps), "workflow_id": type_id, "description": description},
    )
