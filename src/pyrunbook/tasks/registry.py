"""
Task registry: task-type identifier → task factory.

The registry is populated once at startup and then only read. It is passed
to the engine explicitly (no process-global lookup), so tests can build a
registry containing exactly the tasks they need.

Example:
    ```python
    registry = TaskRegistry.with_defaults(gateway=OpenAIGateway(config), settings=config)
    registry.register("uppercase", UppercaseTask)

    task = registry.resolve("uppercase", "shout", {"key": "text"})
    ```
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from functools import partial
from typing import TYPE_CHECKING, Any

from pyrunbook.errors import ConfigurationError, UnknownTaskType
from pyrunbook.tasks.assistant import AssistantTask
from pyrunbook.tasks.base import Task
from pyrunbook.tasks.cron import CronTask
from pyrunbook.tasks.direct import DirectHandlerTask
from pyrunbook.tasks.files import FileContentTask, FileSearchTask, FileUploadTask
from pyrunbook.tasks.image import ImageGenerationTask
from pyrunbook.tasks.llm import LLMCompletionTask, LLMTask
from pyrunbook.tasks.mailer import MailTask
from pyrunbook.tasks.markdown import MarkdownTask
from pyrunbook.tasks.policy import PolicyTask
from pyrunbook.tasks.records import RecordFindTask, RecordScopeTask
from pyrunbook.tasks.ui_push import UiPushTask
from pyrunbook.tasks.vector_store import VectorStoreTask
from pyrunbook.tasks.web_search import WebSearchTask

if TYPE_CHECKING:
    from pyrunbook.clients.llm import LLMGateway
    from pyrunbook.clients.mail import Mailer
    from pyrunbook.clients.policy import Authorizer
    from pyrunbook.clients.records import RecordRepository
    from pyrunbook.config import Configuration
    from pyrunbook.executor.scheduler import Scheduler

logger = logging.getLogger(__name__)

TaskFactory = Callable[[str, Mapping[str, Any]], Task]

GATEWAY_TASKS: tuple[type[Task], ...] = (
    LLMTask,
    LLMCompletionTask,
    WebSearchTask,
    FileUploadTask,
    FileSearchTask,
    FileContentTask,
    VectorStoreTask,
    ImageGenerationTask,
    MarkdownTask,
    AssistantTask,
)


class TaskRegistry:
    """Mapping of task-type identifiers to factories producing Task instances."""

    def __init__(self):
        self._factories: dict[str, TaskFactory] = {}

    def register(self, type_id: str, factory: TaskFactory) -> None:
        """
        Associate ``type_id`` with ``factory`` (a Task subclass or any
        ``(name, config) -> Task`` callable).

        Registering the same factory twice is a no-op. Registering a
        different factory under a taken id is a configuration error.
        """
        if not isinstance(type_id, str) or not type_id:
            raise ConfigurationError(f"Task type id must be a non-empty string, got {type_id!r}")

        existing = self._factories.get(type_id)
        if existing is not None and existing != factory:
            raise ConfigurationError(f"Task type {type_id!r} is already registered")

        self._factories[type_id] = factory
        logger.debug(f"Registered task type: {type_id}")

    def register_task(self, task_class: type[Task]) -> None:
        """Register a Task subclass under its own ``type_id``."""
        if not task_class.type_id:
            raise ConfigurationError(f"{task_class.__name__} has no type_id")
        self.register(task_class.type_id, task_class)

    def resolve(
        self, type_id: str | type[Task], name: str, config: Mapping[str, Any] | None = None
    ) -> Task:
        """
        Build a fresh Task for one step attempt.

        ``type_id`` may also be a Task subclass, which is instantiated
        directly without a registry lookup.

        Raises:
            UnknownTaskType: If ``type_id`` is not registered.
        """
        config = config or {}
        if isinstance(type_id, type):
            if not issubclass(type_id, Task):
                raise ConfigurationError(f"{type_id.__name__} is not a Task subclass")
            return type_id(name, config)

        factory = self._factories.get(type_id)
        if factory is None:
            raise UnknownTaskType(type_id)
        return factory(name, config)

    def get_factory(self, type_id: str) -> TaskFactory | None:
        return self._factories.get(type_id)

    def type_ids(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, type_id: object) -> bool:
        return type_id in self._factories

    def __iter__(self) -> Iterator[str]:
        return iter(self._factories)

    def __len__(self) -> int:
        return len(self._factories)

    def is_empty(self) -> bool:
        return not self._factories

    def __repr__(self) -> str:
        return f"TaskRegistry({self.type_ids()})"

    @classmethod
    def with_defaults(
        cls,
        *,
        gateway: LLMGateway | None = None,
        settings: Configuration | None = None,
        mailer: Mailer | None = None,
        repository: RecordRepository | None = None,
        scheduler: Scheduler | None = None,
        authorizer: Authorizer | None = None,
    ) -> TaskRegistry:
        """
        Registry holding every built-in task kind.

        Collaborators are bound into the factories here. Tasks whose
        collaborator is missing are still registered; they fail with a
        ConfigurationError when a step actually uses them.
        """
        registry = cls()
        registry.register_task(DirectHandlerTask)
        registry.register_task(UiPushTask)

        for task_class in GATEWAY_TASKS:
            registry.register(
                task_class.type_id, partial(task_class, gateway=gateway, settings=settings)
            )

        registry.register(MailTask.type_id, partial(MailTask, mailer=mailer))
        registry.register(RecordFindTask.type_id, partial(RecordFindTask, repository=repository))
        registry.register(RecordScopeTask.type_id, partial(RecordScopeTask, repository=repository))
        registry.register(CronTask.type_id, partial(CronTask, scheduler=scheduler))
        registry.register(PolicyTask.type_id, partial(PolicyTask, authorizer=authorizer))
        return registry
