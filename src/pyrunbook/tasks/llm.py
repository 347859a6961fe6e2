"""Templated LLM completion tasks."""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pyrunbook.clients.llm import LLMGateway
from pyrunbook.config import Configuration
from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError, TaskError
from pyrunbook.tasks.base import IntegrationTask
from pyrunbook.tasks.template import interpolate, interpolate_messages

__all__ = ["GatewayTask", "LLMTask", "LLMCompletionTask"]


class GatewayTask(IntegrationTask):
    """
    IntegrationTask that calls the LLM provider through an injected gateway.

    Timeout and retry defaults come from the Configuration instead of the
    generic task defaults.
    """

    error_label = "LLM API"

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        *,
        gateway: LLMGateway | None = None,
        settings: Configuration | None = None,
    ):
        super().__init__(name, config)
        self.gateway = gateway
        self.settings = settings or Configuration()

    @property
    def timeout(self) -> float:
        return float(self.config.get("timeout", self.settings.default_llm_timeout))

    @property
    def retries(self) -> int:
        return int(self.config.get("retries", self.settings.default_llm_retries))

    @property
    def model(self) -> str:
        return self.config.get("model") or self.settings.default_llm_model

    def validate(self) -> None:
        super().validate()
        if self.gateway is None:
            raise ConfigurationError(
                f"{type(self).__name__} {self.name!r} has no LLM gateway configured"
            )


class LLMTask(GatewayTask):
    """
    Chat completion with ``{{key}}`` interpolation.

    Config:
        prompt: template for a single user message, or
        messages: list of ``{"role", "content"}`` templates
        system_prompt: optional system message (template)
        model, temperature, max_tokens: provider parameters
        format: "json" to request and parse a JSON object

    Output: the completion text, or the parsed object with ``format: json``.
    """

    type_id = "llm"

    def validate(self) -> None:
        super().validate()
        if not self.config.get("prompt") and not self.config.get("messages"):
            raise ConfigurationError(f"LLM task {self.name!r} requires :prompt or :messages")

    def build_messages(self, context: Context) -> list[dict[str, Any]]:
        if self.config.get("messages"):
            messages = interpolate_messages(self.config["messages"], context)
        else:
            messages = [{"role": "user", "content": interpolate(self.config["prompt"], context)}]

        system_prompt = self.config.get("system_prompt")
        if system_prompt:
            messages.insert(0, {"role": "system", "content": interpolate(system_prompt, context)})
        return messages

    async def perform(self, context: Context) -> Any:
        wants_json = self.config.get("format") == "json"
        content = await self.gateway.complete(
            self.build_messages(context),
            model=self.model,
            temperature=self.config.get("temperature"),
            max_tokens=self.config.get("max_tokens"),
            response_format={"type": "json_object"} if wants_json else None,
        )

        if not wants_json:
            return content
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise TaskError(f"LLM API error: response is not valid JSON: {e}", cause=e) from e


class LLMCompletionTask(GatewayTask):
    """
    Completion driven entirely by the context.

    Reads ``prompt`` (required), ``model``, ``temperature`` and ``max_tokens``
    from the context instead of the step config. Output: ``{"content": text}``.
    """

    type_id = "llm_completion"

    async def perform(self, context: Context) -> Any:
        prompt = context.get("prompt") or context.get("messages")
        if not prompt:
            raise TaskError(f"LLM completion task {self.name!r} found no prompt in context")

        if isinstance(prompt, list):
            messages = [dict(message) for message in prompt]
        else:
            messages = [{"role": "user", "content": str(prompt)}]

        content = await self.gateway.complete(
            messages,
            model=context.get("model") or self.model,
            temperature=context.get("temperature", self.config.get("temperature")),
            max_tokens=context.get("max_tokens", self.config.get("max_tokens")),
        )
        return {"content": content}
