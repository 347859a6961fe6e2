"""File upload, file content analysis and vector-store file search tasks."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pyrunbook.core.context import Context
from pyrunbook.errors import TaskError
from pyrunbook.tasks.llm import GatewayTask
from pyrunbook.tasks.template import interpolate, interpolate_messages
from pyrunbook.tasks.web_search import resolve_query

logger = logging.getLogger(__name__)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None]
    return [value]


class FileUploadTask(GatewayTask):
    """
    Upload a local file to the provider.

    Config:
        file_path: path template, or
        file_path_key: context key holding the path (default "file_path")
        purpose: upload purpose (default "assistants")
        check_existing: reuse an uploaded file with the same name and size (default True)
        as: output key for the file id (default "file_id")
    """

    type_id = "file_upload"
    error_label = "File upload"

    def path_for(self, context: Context) -> Path | None:
        if self.config.get("file_path"):
            raw = interpolate(self.config["file_path"], context)
        else:
            raw = context.get(self.config.get("file_path_key", "file_path"))
        if isinstance(raw, dict):
            raw = raw.get("path") or raw.get("file_path")
        return Path(raw) if raw else None

    async def _find_existing(self, path: Path, purpose: str) -> dict[str, Any] | None:
        size = path.stat().st_size
        try:
            files = await self.gateway.list_files(purpose=purpose)
        except Exception as e:
            logger.warning(f"Failed to check existing files: {e}")
            return None
        for item in files:
            if item.get("filename") == path.name and item.get("bytes") == size:
                return item
        return None

    async def perform(self, context: Context) -> Any:
        path = self.path_for(context)
        if path is None:
            raise TaskError(f"File upload task {self.name!r}: file path is required")
        if not path.is_file():
            raise TaskError(f"File not found: {path}")

        purpose = self.config.get("purpose", "assistants")
        result_key = self.config.get("as", "file_id")

        if self.config.get("check_existing", True):
            existing = await self._find_existing(path, purpose)
            if existing is not None:
                logger.info(f"Using existing file: {existing['filename']} (ID: {existing['file_id']})")
                return {
                    result_key: existing["file_id"],
                    "filename": existing["filename"],
                    "bytes": existing["bytes"],
                    "existing": True,
                }

        uploaded = await self.gateway.upload_file(path, purpose=purpose)
        return {
            result_key: uploaded["file_id"],
            "filename": uploaded.get("filename", path.name),
            "bytes": uploaded.get("bytes", path.stat().st_size),
            "existing": False,
        }


class FileSearchTask(GatewayTask):
    """
    Semantic search over one or more vector stores.

    Config:
        query / query_key: as for web_search
        vector_store_ids: literal list, or
        vector_store_ids_key: context key (default "vector_store_ids")
        max_results: default 5
        as: output key (default "search_results")
    """

    type_id = "file_search"
    error_label = "File search"

    def store_ids_for(self, context: Context) -> list[str]:
        if self.config.get("vector_store_ids"):
            return [str(v) for v in _as_list(self.config["vector_store_ids"])]
        key = self.config.get("vector_store_ids_key", "vector_store_ids")
        return [str(v) for v in _as_list(context.get(key))]

    async def perform(self, context: Context) -> Any:
        if self.config.get("query"):
            query = interpolate(self.config["query"], context)
        else:
            query = resolve_query(context.get(self.config.get("query_key", "query")))
        store_ids = self.store_ids_for(context)

        if not query:
            raise TaskError(f"File search task {self.name!r}: query is required")
        if not store_ids:
            raise TaskError(f"File search task {self.name!r}: vector store IDs are required")

        matches = await self.gateway.file_search(
            query,
            vector_store_ids=store_ids,
            max_results=int(self.config.get("max_results", 5)),
        )
        return {
            self.config.get("as", "search_results"): {
                "query": query,
                "results": matches,
                "vector_store_ids": store_ids,
            }
        }


def render_prompt(prompt: Any, context: Context) -> str:
    """A prompt template, or a message list flattened to its contents."""
    if isinstance(prompt, list):
        return "\n".join(str(m.get("content", "")) for m in interpolate_messages(prompt, context))
    return str(interpolate(prompt, context) or "")


def resolve_ids(configured: Any, context: Context, *fallback_keys: str) -> list[str]:
    """
    Ids from config, each either a context key or a literal id.

    With nothing configured, the first of ``fallback_keys`` present in the
    context supplies them.
    """
    if configured:
        return [str(context.get(str(item), item)) for item in _as_list(configured)]
    for key in fallback_keys:
        found = _as_list(context.get(key))
        if found:
            return [str(v) for v in found]
    return []


class FileContentTask(GatewayTask):
    """
    Fetch uploaded file content and have the model analyze it.

    Config:
        file_id: context key or literal id (default: context ``file_id``/``file_ids``)
        prompt: template or list of message templates (required)
        instructions: system message
        model, max_tokens (2000), temperature (0.7)
        as: output key (default "analysis")
    """

    type_id = "file_content"
    error_label = "File content"
    required_config = ("prompt",)

    DEFAULT_INSTRUCTIONS = "You are a helpful assistant for analyzing documents."

    async def perform(self, context: Context) -> Any:
        file_ids = resolve_ids(self.config.get("file_id"), context, "file_id", "file_ids")
        if not file_ids:
            raise TaskError(f"File content task {self.name!r}: file ID is required")

        sections = []
        for file_id in file_ids:
            content = await self.gateway.file_content(file_id)
            sections.append(f"DOCUMENT {file_id}:\n{content}")

        prompt = (
            f"{render_prompt(self.config['prompt'], context)}\n\n"
            + "\n\n".join(sections)
            + "\n\nBase the analysis on the document content above and quote it where relevant."
        )
        analysis = await self.gateway.complete(
            [
                {"role": "system", "content": self.config.get("instructions", self.DEFAULT_INSTRUCTIONS)},
                {"role": "user", "content": prompt},
            ],
            model=self.model,
            temperature=self.config.get("temperature", 0.7),
            max_tokens=self.config.get("max_tokens", 2000),
        )
        return {self.config.get("as", "analysis"): analysis}
