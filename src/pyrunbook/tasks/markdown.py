"""LLM-backed markdown transformations."""

from typing import Any

from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError, TaskError
from pyrunbook.tasks.llm import GatewayTask

VALID_OPERATIONS = (
    "summarize",
    "expand",
    "change_tone",
    "format_table",
    "extract_key_points",
    "translate",
)

VALID_TONES = ("formal", "casual", "technical", "business", "friendly")


def resolve_content(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("content") or value.get("text")
    return str(value)


class MarkdownTask(GatewayTask):
    """
    Rewrite markdown content with an LLM.

    Config:
        content: context key holding the markdown (default "content")
        operation: one of VALID_OPERATIONS (default "summarize")
        tone: one of VALID_TONES, for change_tone (default "formal")
        language: target language, for translate (default "Spanish")
        max_length: token budget (default 1000)
        as: output key (default "processed_content")
    """

    type_id = "markdown"
    error_label = "Markdown"

    @property
    def operation(self) -> str:
        return str(self.config.get("operation", "summarize"))

    @property
    def tone(self) -> str:
        return str(self.config.get("tone", "formal"))

    def validate(self) -> None:
        super().validate()
        if self.operation not in VALID_OPERATIONS:
            raise ConfigurationError(f"Invalid operation: {self.operation}")
        if self.operation == "change_tone" and self.tone not in VALID_TONES:
            raise ConfigurationError(f"Invalid tone: {self.tone}")

    def instructions(self) -> tuple[str, str, int]:
        """(task, guidance, token cap) for the configured operation."""
        max_length = int(self.config.get("max_length", 1000))
        language = self.config.get("language", "Spanish")
        return {
            "summarize": (
                "Summarize the following markdown content concisely.",
                "Provide a clear summary in markdown format, highlighting key points.",
                min(max_length, 500),
            ),
            "expand": (
                "Expand on the following markdown content.",
                "Provide detailed explanations and additional context "
                "while maintaining markdown format.",
                max_length,
            ),
            "change_tone": (
                f"Change the tone of the following markdown content to be {self.tone}.",
                "Maintain the markdown structure and key information while adjusting the tone.",
                max_length,
            ),
            "format_table": (
                "Convert the following markdown content into a well-formatted table.",
                "Create a clear markdown table that presents the information effectively.",
                max_length,
            ),
            "extract_key_points": (
                "Extract the key points from the following markdown content.",
                "Return the main points as a bulleted markdown list.",
                min(max_length, 300),
            ),
            "translate": (
                f"Translate the following markdown content to {language}.",
                "Preserve the markdown formatting exactly.",
                max_length,
            ),
        }[self.operation]

    async def perform(self, context: Context) -> Any:
        content = resolve_content(context.get(self.config.get("content", "content")))
        if not content:
            raise TaskError(f"Markdown task {self.name!r}: content is required")

        task, guidance, max_tokens = self.instructions()
        prompt = f"{task}\n\n---\n{content}\n---\n\n{guidance}"

        processed = await self.gateway.complete(
            [{"role": "user", "content": prompt}],
            model=self.model,
            max_tokens=max_tokens,
        )
        processed = processed or content

        return {
            self.config.get("as", "processed_content"): processed,
            "operation": self.operation,
            "original_length": len(content),
            "processed_length": len(processed),
        }
