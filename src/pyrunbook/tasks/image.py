"""Image generation task."""

from typing import Any

from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError
from pyrunbook.tasks.llm import GatewayTask
from pyrunbook.tasks.template import interpolate

VALID_FORMATS = ("url", "b64_json")


class ImageGenerationTask(GatewayTask):
    """
    Generate an image from a prompt template.

    Config:
        prompt: template (required)
        model: default "dall-e-3"
        size: default "1024x1024"
        quality: "standard" | "hd" (default "standard")
        response_format: "url" | "b64_json" (default "url")
    """

    type_id = "image_generation"
    error_label = "Image generation"
    required_config = ("prompt",)

    @property
    def model(self) -> str:
        return self.config.get("model", "dall-e-3")

    def validate(self) -> None:
        super().validate()
        if self.config.get("response_format", "url") not in VALID_FORMATS:
            raise ConfigurationError(
                f"Invalid response_format for {self.name!r}: {self.config['response_format']}"
            )

    async def perform(self, context: Context) -> Any:
        prompt = interpolate(self.config["prompt"], context)
        image = await self.gateway.generate_image(
            prompt,
            model=self.model,
            size=self.config.get("size", "1024x1024"),
            quality=self.config.get("quality", "standard"),
            response_format=self.config.get("response_format", "url"),
        )
        return {
            **image,
            "prompt": prompt,
            "model": self.model,
        }
