"""Vector-store management task."""

from typing import Any

from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError, TaskError
from pyrunbook.tasks.files import _as_list
from pyrunbook.tasks.llm import GatewayTask
from pyrunbook.tasks.template import interpolate

VALID_OPERATIONS = ("create", "add_file", "delete", "list")


class VectorStoreTask(GatewayTask):
    """
    Create, extend, delete or list vector stores.

    Config:
        operation: one of create, add_file, delete, list (default create)
        name: store name template (create)
        file_ids / file_ids_key: file ids, literal or from context (default key "file_ids")
        vector_store_id / vector_store_id_key: target store (default key "vector_store_id")
        as: output key (default "vector_store_result")
    """

    type_id = "vector_store"
    error_label = "Vector store"

    @property
    def operation(self) -> str:
        return str(self.config.get("operation", "create"))

    def validate(self) -> None:
        super().validate()
        if self.operation not in VALID_OPERATIONS:
            raise ConfigurationError(
                f"Invalid operation: {self.operation}. "
                f"Must be one of: {', '.join(VALID_OPERATIONS)}"
            )

    def _file_ids(self, context: Context) -> list[str]:
        if self.config.get("file_ids"):
            return [str(v) for v in _as_list(self.config["file_ids"])]
        return [str(v) for v in _as_list(context.get(self.config.get("file_ids_key", "file_ids")))]

    def _store_id(self, context: Context) -> str | None:
        if self.config.get("vector_store_id"):
            return interpolate(self.config["vector_store_id"], context)
        return context.get(self.config.get("vector_store_id_key", "vector_store_id"))

    async def perform(self, context: Context) -> Any:
        operation = self.operation
        result: dict[str, Any] = {"operation": operation}

        if operation == "create":
            name = interpolate(self.config.get("name"), context) or context.get("name")
            if not name:
                raise TaskError("Name is required for create operation")
            result.update(
                await self.gateway.create_vector_store(name, file_ids=self._file_ids(context))
            )

        elif operation == "add_file":
            store_id = self._store_id(context)
            file_ids = self._file_ids(context)
            if not store_id:
                raise TaskError("Vector store ID is required")
            if not file_ids:
                raise TaskError("File IDs are required")
            added = [
                await self.gateway.add_file_to_vector_store(store_id, file_id)
                for file_id in file_ids
            ]
            result.update({"vector_store_id": store_id, "files": added})

        elif operation == "delete":
            store_id = self._store_id(context)
            if not store_id:
                raise TaskError("Vector store ID is required")
            result.update(await self.gateway.delete_vector_store(store_id))

        else:
            result["vector_stores"] = await self.gateway.list_vector_stores()

        return {self.config.get("as", "vector_store_result"): result}
