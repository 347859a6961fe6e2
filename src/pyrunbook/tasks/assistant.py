"""Document-grounded assistant task."""

from __future__ import annotations

import logging
from typing import Any

from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError
from pyrunbook.tasks.files import render_prompt, resolve_ids
from pyrunbook.tasks.llm import GatewayTask

logger = logging.getLogger(__name__)


class AssistantTask(GatewayTask):
    """
    Answer a prompt from the files in one or more vector stores.

    The prompt is used as a file_search query; the best matches are quoted
    to the model as excerpts. When the search fails or no store is given,
    the model answers from the prompt alone.

    Config:
        prompt: template, or
        messages: list of message templates, flattened to one prompt
        instructions: system message
        vector_store_ids: ids or context keys (default: context
            ``vector_store_ids``/``vector_store_id``)
        file_ids: restrict excerpts to these files (default: context
            ``file_ids``/``file_id``)
        max_results: excerpts to quote (default 5)
        model, max_tokens (2000), temperature (0.7)
        as: output key (default "assistant_response")
    """

    type_id = "assistant"
    error_label = "Assistant"

    DEFAULT_INSTRUCTIONS = "You are a helpful assistant."

    def validate(self) -> None:
        super().validate()
        if not self.config.get("prompt") and not self.config.get("messages"):
            raise ConfigurationError(f"Assistant task {self.name!r} requires :prompt or :messages")

    async def excerpts_for(self, query: str, context: Context) -> list[dict[str, Any]]:
        store_ids = resolve_ids(
            self.config.get("vector_store_ids"), context, "vector_store_ids", "vector_store_id"
        )
        if not store_ids:
            return []
        file_ids = set(resolve_ids(self.config.get("file_ids"), context, "file_ids", "file_id"))

        try:
            matches = await self.gateway.file_search(
                query,
                vector_store_ids=store_ids,
                max_results=int(self.config.get("max_results", 5)),
            )
        except Exception as e:
            logger.warning(f"File search failed for assistant {self.name}, answering without excerpts: {e}")
            return []

        if file_ids:
            matches = [m for m in matches if m.get("file_id") in file_ids]
        return matches

    async def perform(self, context: Context) -> Any:
        question = render_prompt(self.config.get("prompt") or self.config["messages"], context)
        excerpts = await self.excerpts_for(question, context)

        if excerpts:
            quoted = "\n\n".join(
                f"[{m.get('filename') or m.get('file_id')}]\n{m.get('text', '')}" for m in excerpts
            )
            prompt = (
                f"Answer from these document excerpts:\n\n{quoted}\n\n{question}\n\n"
                "Give specific, document-based answers rather than generic advice."
            )
        else:
            prompt = question

        answer = await self.gateway.complete(
            [
                {"role": "system", "content": self.config.get("instructions", self.DEFAULT_INSTRUCTIONS)},
                {"role": "user", "content": prompt},
            ],
            model=self.model,
            temperature=self.config.get("temperature", 0.7),
            max_tokens=self.config.get("max_tokens", 2000),
        )
        return {self.config.get("as", "assistant_response"): answer}
