"""UI push-update formatting.

Builds the payload for a DOM update (target selector + action + content)
without sending it anywhere; delivery belongs to the application's
transport.
"""

from typing import Any

from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError
from pyrunbook.tasks.base import Task
from pyrunbook.tasks.template import interpolate

VALID_ACTIONS = ("replace", "update", "append", "prepend", "remove")


class UiPushTask(Task):
    """
    Config:
        target: selector template (required)
        action: one of VALID_ACTIONS (default "replace")
        content / template / partial: body template (one is required unless
            the action is "remove")
    """

    type_id = "ui_push"
    required_config = ("target",)

    @property
    def action(self) -> str:
        return str(self.config.get("action", "replace"))

    def validate(self) -> None:
        super().validate()
        if self.action not in VALID_ACTIONS:
            raise ConfigurationError(f"Unknown UI push action: {self.action}")
        if self.action != "remove" and not self._body_template():
            raise ConfigurationError(
                f"UI push task {self.name!r} must provide :content, :template, or :partial"
            )

    def _body_template(self) -> str | None:
        for key in ("content", "template", "partial"):
            if self.config.get(key):
                return self.config[key]
        return None

    async def execute(self, context: Context) -> Any:
        self.validate()
        target = interpolate(self.config["target"], context)
        content = None
        if self.action != "remove":
            content = interpolate(self._body_template(), context)
        return {"action": self.action, "target": target, "content": content}
