"""Record lookup and query tasks."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pyrunbook.clients.records import RecordRef, RecordRepository
from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError, TaskError
from pyrunbook.tasks.base import IntegrationTask
from pyrunbook.tasks.template import resolve_reference, resolve_references


class RecordTask(IntegrationTask):
    """Shared plumbing: the injected repository and the ``model`` setting."""

    error_label = "Record lookup"
    required_config = ("model",)

    DEFAULT_RETRIES = 0

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        *,
        repository: RecordRepository | None = None,
    ):
        super().__init__(name, config)
        self.repository = repository

    @property
    def model(self) -> str:
        return self.config["model"]

    def validate(self) -> None:
        super().validate()
        if self.repository is None:
            raise ConfigurationError(f"{type(self).__name__} {self.name!r} has no record repository")


class RecordFindTask(RecordTask):
    """
    Load one record by id.

    Config:
        model: table / model name (required)
        id: literal id or ``"$key"`` reference, or
        id_key: context key holding the id (default "id")
        scope: conditions the record must also satisfy (values may be ``"$key"``)
        as: output key (default: the model name)

    An id that is a RecordRef (a rehydrated reference) is accepted as-is.
    """

    type_id = "record_find"

    def record_id_for(self, context: Context) -> Any:
        if "id" in self.config:
            value = resolve_reference(self.config["id"], context)
        else:
            value = context.get(self.config.get("id_key", "id"))
        if isinstance(value, RecordRef):
            return value.id
        return value

    async def perform(self, context: Context) -> Any:
        record_id = self.record_id_for(context)
        if record_id is None:
            raise TaskError(f"ID value not found in context for task {self.name!r}")

        scope = resolve_references(self.config.get("scope") or {}, context)
        record = await self.repository.find(self.model, record_id, where=scope or None)
        if record is None:
            raise TaskError(f"Record not found: {self.model}#{record_id}")
        return {self.config.get("as", self.model): record}


class RecordScopeTask(RecordTask):
    """
    Query records matching a set of conditions.

    Config:
        model: table / model name (required)
        where: column conditions; ``"$key"`` values resolve from the context and
            conditions resolving to None are dropped
        order: "column [ASC|DESC]" or a list of them
        limit: maximum rows
        as: output key (default: the model name)
    """

    type_id = "record_scope"

    async def perform(self, context: Context) -> Any:
        conditions = {
            column: value
            for column, value in resolve_references(self.config.get("where") or {}, context).items()
            if value is not None
        }
        rows = await self.repository.query(
            self.model,
            where=conditions,
            order=self.config.get("order"),
            limit=self.config.get("limit"),
        )
        return {self.config.get("as", self.model): rows}
