"""Authorization check task."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pyrunbook.clients.policy import Authorizer, check_policy, identify, record_kind
from pyrunbook.core.context import Context
from pyrunbook.errors import ConfigurationError, TaskError
from pyrunbook.tasks.base import IntegrationTask


class PolicyTask(IntegrationTask):
    """
    Stop the run unless the user may perform an action on a record.

    Config:
        action: policy predicate name, e.g. "update" (required)
        record: context key holding the record (required)
        user: context key holding the user (default "current_user")
        policy_class: policy constructed with ``(user, record)``; when set,
            the injected Authorizer is bypassed

    Output: ``{"authorized": True, "action": ..., "user_id": ..., "record": "<kind>#<id>"}``.
    A denial raises TaskError.
    """

    type_id = "policy"
    error_label = "Authorization"
    required_config = ("action", "record")

    DEFAULT_RETRIES = 0

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        *,
        authorizer: Authorizer | None = None,
    ):
        super().__init__(name, config)
        self.authorizer = authorizer

    def validate(self) -> None:
        super().validate()
        if self.authorizer is None and self.config.get("policy_class") is None:
            raise ConfigurationError(
                f"{type(self).__name__} {self.name!r} needs an authorizer or :policy_class"
            )

    async def perform(self, context: Context) -> Any:
        user_key = self.config.get("user", "current_user")
        record_key = self.config["record"]
        action = str(self.config["action"])

        user = context.get(user_key)
        record = context.get(record_key)
        if user is None:
            raise TaskError(f"User not found in context: {user_key}")
        if record is None:
            raise TaskError(f"Record not found in context: {record_key}")

        policy_class = self.config.get("policy_class")
        if policy_class is not None:
            authorized = await check_policy(policy_class(user, record), action)
        else:
            authorized = await self.authorizer.authorize(user, record, action)

        label = f"{record_kind(record)}#{identify(record)}"
        if not authorized:
            raise TaskError(f"User {identify(user)} not authorized to {action} on {label}")

        return {"authorized": True, "action": action, "user_id": identify(user), "record": label}
