"""
Authorization collaborators.

The policy task asks an Authorizer whether a user may perform an action on
a record. PolicyAuthorizer is the bundled implementation: one policy class
per record kind, constructed with ``(user, record)`` and exposing one
predicate method per action.

Example:
    ```python
    class ProjectPolicy:
        def __init__(self, user, record):
            self.user, self.record = user, record

        def update(self):
            return self.record["owner_id"] == self.user["id"]

    authorizer = PolicyAuthorizer({"projects": ProjectPolicy})
    ```
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from pyrunbook.clients.records import RecordRef

__all__ = ["Authorizer", "PolicyAuthorizer", "PolicyError", "check_policy", "identify", "record_kind"]


class PolicyError(Exception):
    """No policy can answer the question asked."""


@runtime_checkable
class Authorizer(Protocol):
    async def authorize(self, user: Any, record: Any, action: str) -> bool:
        """Return True if ``user`` may perform ``action`` on ``record``."""
        ...


def record_kind(record: Any) -> str:
    """Model name of a RecordRef, ``kind`` of a mapping, else the class name."""
    if isinstance(record, RecordRef):
        return record.model
    if isinstance(record, Mapping) and "kind" in record:
        return str(record["kind"])
    return type(record).__name__


def identify(value: Any) -> Any:
    if isinstance(value, Mapping):
        return value.get("id")
    return getattr(value, "id", None)


class PolicyAuthorizer:
    """
    Authorizer dispatching to a policy class chosen by record kind.

    A RecordRef that carries loaded attributes is handed to the policy as
    those attributes.
    """

    def __init__(self, policies: Mapping[str, Callable[[Any, Any], Any]] | None = None):
        self._policies: dict[str, Callable[[Any, Any], Any]] = dict(policies or {})

    def register(self, kind: str, policy_class: Callable[[Any, Any], Any]) -> PolicyAuthorizer:
        self._policies[kind] = policy_class
        return self

    def policy_for(self, user: Any, record: Any) -> Any:
        kind = record_kind(record)
        policy_class = self._policies.get(kind)
        if policy_class is None:
            raise PolicyError(f"No policy registered for {kind}")
        if isinstance(record, RecordRef) and record.attributes is not None:
            record = dict(record.attributes)
        return policy_class(user, record)

    async def authorize(self, user: Any, record: Any, action: str) -> bool:
        return await check_policy(self.policy_for(user, record), action)


async def check_policy(policy: Any, action: str) -> bool:
    """Call ``policy.<action>()``; the predicate may be sync or async."""
    predicate = getattr(policy, action, None)
    if not callable(predicate):
        raise PolicyError(f"{type(policy).__name__} does not define {action}")
    answer = predicate()
    if inspect.isawaitable(answer):
        answer = await answer
    return bool(answer)
