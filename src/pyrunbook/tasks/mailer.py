"""Mail delivery task."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pyrunbook.clients.mail import MailMessage, Mailer
from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError, TaskError
from pyrunbook.tasks.base import IntegrationTask
from pyrunbook.tasks.template import interpolate, resolve_reference


def _recipients(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(str(v) for v in value if v)


class MailTask(IntegrationTask):
    """
    Send an email through the injected Mailer.

    Config:
        to: address template, list of addresses, or ``"$key"`` reference (required)
        cc: same forms as ``to``
        subject: template (required)
        body: template (required)
        from: sender (defaults to the mailer's sender)
        html: send body as HTML (default False)
    """

    type_id = "mail"
    error_label = "Email delivery"
    required_config = ("to", "subject", "body")

    DEFAULT_RETRIES = 1

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        *,
        mailer: Mailer | None = None,
    ):
        super().__init__(name, config)
        self.mailer = mailer

    def validate(self) -> None:
        super().validate()
        if self.mailer is None:
            raise ConfigurationError(f"Mail task {self.name!r} has no mailer configured")

    def _addresses(self, key: str, context: Context) -> tuple[str, ...]:
        value = resolve_reference(self.config.get(key), context)
        return _recipients(interpolate(value, context))

    def build_message(self, context: Context) -> MailMessage:
        to = self._addresses("to", context)
        if not to:
            raise TaskError(f"Mail task {self.name!r}: no recipients resolved")
        return MailMessage(
            to=to,
            cc=self._addresses("cc", context),
            subject=interpolate(self.config["subject"], context),
            body=interpolate(self.config["body"], context),
            sender=self.config.get("from"),
            html=bool(self.config.get("html", False)),
        )

    async def perform(self, context: Context) -> Any:
        message = self.build_message(context)
        receipt = await self.mailer.deliver(message)
        return {
            "mail_sent": True,
            "subject": message.subject,
            "recipients": list(message.to),
            **receipt,
        }
