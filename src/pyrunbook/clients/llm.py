"""
LLM provider gateway.

Tasks talk to the provider through the LLMGateway protocol, never to the SDK
directly, so tests can substitute a fake and the engine never sees SDK
exception types. OpenAIGateway is the production implementation on top of
``openai.AsyncOpenAI``; it returns plain dicts/strings so outputs stay
JSON-serializable and can cross the async boundary.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import openai

from pyrunbook.config import Configuration

logger = logging.getLogger(__name__)

__all__ = ["LLMGateway", "OpenAIGateway"]


@runtime_checkable
class LLMGateway(Protocol):
    """Operations the built-in AI tasks need from a provider."""

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> str: ...

    async def web_search(
        self, query: str, *, model: str, search_context_size: str = "medium"
    ) -> dict[str, Any]: ...

    async def generate_image(
        self,
        prompt: str,
        *,
        model: str,
        size: str,
        quality: str,
        response_format: str,
    ) -> dict[str, Any]: ...

    async def upload_file(self, path: Path, *, purpose: str) -> dict[str, Any]: ...

    async def list_files(self, *, purpose: str | None = None) -> list[dict[str, Any]]: ...

    async def file_content(self, file_id: str) -> str: ...

    async def file_search(
        self, query: str, *, vector_store_ids: list[str], max_results: int
    ) -> list[dict[str, Any]]: ...

    async def create_vector_store(
        self, name: str, *, file_ids: list[str] | None = None
    ) -> dict[str, Any]: ...

    async def add_file_to_vector_store(self, vector_store_id: str, file_id: str) -> dict[str, Any]: ...

    async def delete_vector_store(self, vector_store_id: str) -> dict[str, Any]: ...

    async def list_vector_stores(self) -> list[dict[str, Any]]: ...


class OpenAIGateway:
    """
    LLMGateway backed by the OpenAI API.

    Usage:
        gateway = OpenAIGateway(Configuration.from_env())
        text = await gateway.complete([{"role": "user", "content": "Hi"}], model="gpt-4")
    """

    def __init__(self, config: Configuration, client: openai.AsyncOpenAI | None = None):
        self._config = config
        self._client = client or openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.default_llm_timeout,
            max_retries=0,  # IntegrationTask owns retries
        )

    @property
    def client(self) -> openai.AsyncOpenAI:
        return self._client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        response_format: dict[str, Any] | None = None,
    ) -> str:
        params: dict[str, Any] = {"model": model, "messages": messages}
        if temperature is not None:
            params["temperature"] = temperature
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        if response_format is not None:
            params["response_format"] = response_format

        response = await self._client.chat.completions.create(**params)
        logger.debug(f"Chat completion {response.id} model={response.model}")
        return response.choices[0].message.content or ""

    async def web_search(
        self, query: str, *, model: str, search_context_size: str = "medium"
    ) -> dict[str, Any]:
        response = await self._client.responses.create(
            model=model,
            tools=[{"type": "web_search_preview", "search_context_size": search_context_size}],
            input=query,
        )

        citations = []
        for item in response.output:
            for part in getattr(item, "content", None) or []:
                for annotation in getattr(part, "annotations", None) or []:
                    if getattr(annotation, "type", None) == "url_citation":
                        citations.append({"url": annotation.url, "title": annotation.title})

        return {"content": response.output_text, "citations": citations}

    async def generate_image(
        self,
        prompt: str,
        *,
        model: str,
        size: str,
        quality: str,
        response_format: str,
    ) -> dict[str, Any]:
        response = await self._client.images.generate(
            model=model,
            prompt=prompt,
            size=size,
            quality=quality,
            response_format=response_format,
            n=1,
        )
        image = response.data[0]
        return {
            "url": image.url,
            "b64_json": image.b64_json,
            "revised_prompt": image.revised_prompt,
        }

    async def upload_file(self, path: Path, *, purpose: str) -> dict[str, Any]:
        uploaded = await self._client.files.create(
            file=(path.name, path.read_bytes()),
            purpose=purpose,
        )
        return {"file_id": uploaded.id, "filename": uploaded.filename, "bytes": uploaded.bytes}

    async def list_files(self, *, purpose: str | None = None) -> list[dict[str, Any]]:
        params = {"purpose": purpose} if purpose else {}
        files = []
        async for item in self._client.files.list(**params):
            files.append({"file_id": item.id, "filename": item.filename, "bytes": item.bytes})
        return files

    async def file_content(self, file_id: str) -> str:
        response = await self._client.files.content(file_id)
        return response.text

    async def file_search(
        self, query: str, *, vector_store_ids: list[str], max_results: int
    ) -> list[dict[str, Any]]:
        matches: list[dict[str, Any]] = []
        for store_id in vector_store_ids:
            page = await self._client.vector_stores.search(
                vector_store_id=store_id,
                query=query,
                max_num_results=max_results,
            )
            for hit in page.data:
                matches.append(
                    {
                        "vector_store_id": store_id,
                        "file_id": hit.file_id,
                        "filename": hit.filename,
                        "score": hit.score,
                        "text": "\n".join(part.text for part in hit.content),
                    }
                )
        matches.sort(key=lambda m: m["score"], reverse=True)
        return matches[:max_results]

    async def create_vector_store(
        self, name: str, *, file_ids: list[str] | None = None
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"name": name}
        if file_ids:
            params["file_ids"] = file_ids
        store = await self._client.vector_stores.create(**params)
        return {"vector_store_id": store.id, "name": store.name, "status": store.status}

    async def add_file_to_vector_store(self, vector_store_id: str, file_id: str) -> dict[str, Any]:
        attached = await self._client.vector_stores.files.create(
            vector_store_id=vector_store_id, file_id=file_id
        )
        return {"vector_store_id": vector_store_id, "file_id": attached.id, "status": attached.status}

    async def delete_vector_store(self, vector_store_id: str) -> dict[str, Any]:
        deleted = await self._client.vector_stores.delete(vector_store_id)
        return {"vector_store_id": deleted.id, "deleted": deleted.deleted}

    async def list_vector_stores(self) -> list[dict[str, Any]]:
        stores = []
        async for store in self._client.vector_stores.list():
            stores.append({"vector_store_id": store.id, "name": store.name, "status": store.status})
        return stores

    async def close(self) -> None:
        await self._client.close()
