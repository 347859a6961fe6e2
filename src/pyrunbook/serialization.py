"""
Context transport across the sync/async boundary.

A Context is serialized before a job is enqueued and rehydrated when the
job runs. The serialized form is a JSON-compatible mapping:

    {"data": {...}, "private_keys": ["api_token"]}

Values must be JSON types (None, bool, int, finite float, str, list,
str-keyed dict). Anything else is rejected with SerializationError at
serialize time, so an unusable context never reaches the queue.

Live handles to external entities are not copied by value. A
ReferenceLocator knows, per registered class, how to turn an instance into
an opaque token ``ref://<kind>/<id>`` and how to resolve the token back:

    ```python
    locator = ReferenceLocator()
    locator.register(
        "record",
        RecordRef,
        identify=lambda ref: ref.token_id,
        locate=repository.locate,
    )
    serializer = ContextSerializer(locator)

    payload = serializer.serialize(Context({"user": RecordRef("users", 7)}))
    # {"data": {"user": "ref://record/users/7"}, "private_keys": []}

    context = await serializer.deserialize(payload)
    # context["user"] is the RecordRef returned by repository.locate("users/7")
    ```
"""

from __future__ import annotations

import inspect
import json
import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pyrunbook.core.context import Context
from pyrunbook.errors import RehydrationError, SerializationError

logger = logging.getLogger(__name__)

__all__ = ["REF_PREFIX", "ReferenceLocator", "ContextSerializer"]

REF_PREFIX = "ref://"


@dataclass(frozen=True)
class _Locator:
    kind: str
    cls: type
    identify: Callable[[Any], str]
    locate: Callable[[str], Any | Awaitable[Any]]


class ReferenceLocator:
    """Registry of reference kinds: class ↔ ``ref://<kind>/<id>`` token."""

    def __init__(self):
        self._by_kind: dict[str, _Locator] = {}

    def register(
        self,
        kind: str,
        cls: type,
        *,
        identify: Callable[[Any], str],
        locate: Callable[[str], Any | Awaitable[Any]],
    ) -> None:
        """
        Register a reference kind.

        Args:
            kind: Token namespace, e.g. "record" (no "/")
            cls: Instances of this class are serialized as tokens
            identify: Instance → id string (may contain "/")
            locate: Id string → live object; may be sync or async
        """
        if not kind or "/" in kind:
            raise ValueError(f"Invalid reference kind: {kind!r}")
        self._by_kind[kind] = _Locator(kind, cls, identify, locate)

    def kinds(self) -> list[str]:
        return sorted(self._by_kind)

    def tokenize(self, value: Any) -> str | None:
        """Token for ``value``, or None if its class is not registered."""
        for entry in self._by_kind.values():
            if isinstance(value, entry.cls):
                return f"{REF_PREFIX}{entry.kind}/{entry.identify(value)}"
        return None

    @staticmethod
    def is_token(value: Any) -> bool:
        return isinstance(value, str) and value.startswith(REF_PREFIX)

    async def resolve(self, token: str) -> Any:
        """
        Resolve a token back to a live object.

        Raises:
            RehydrationError: Unknown kind, malformed token, or a failed lookup.
        """
        kind, _, identifier = token[len(REF_PREFIX) :].partition("/")
        entry = self._by_kind.get(kind)
        if entry is None:
            raise RehydrationError(f"No locator registered for reference kind {kind!r}: {token}")
        if not identifier:
            raise RehydrationError(f"Malformed reference token: {token}")

        try:
            located = entry.locate(identifier)
            if inspect.isawaitable(located):
                located = await located
        except Exception as e:
            raise RehydrationError(f"Failed to locate {token}: {e}") from e

        if located is None:
            raise RehydrationError(f"Reference not found: {token}")
        return located


class ContextSerializer:
    """Serializes Contexts to the transport format and rehydrates them back."""

    def __init__(self, locator: ReferenceLocator | None = None):
        self.locator = locator or ReferenceLocator()

    # Outbound

    def serialize(self, context: Context | Mapping[str, Any]) -> dict[str, Any]:
        """
        Encode ``context`` for the job queue.

        Raises:
            SerializationError: If a value is not representable.
        """
        if not isinstance(context, Context):
            context = Context(context)

        data = {key: self._encode(value, key) for key, value in context.items()}
        payload = {"data": data, "private_keys": sorted(context.private_keys)}

        # Final guard: the payload must survive a strict JSON round trip
        try:
            json.dumps(payload, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Context is not JSON serializable: {e}") from e
        return payload

    def _encode(self, value: Any, path: str) -> Any:
        if value is None or isinstance(value, (bool, int, str)):
            if self.locator.is_token(value):
                raise SerializationError(
                    f"Context value at {path!r} looks like a reference token but is a plain "
                    f"string: {value!r}"
                )
            return value
        if isinstance(value, float):
            if not math.isfinite(value):
                raise SerializationError(f"Context value at {path!r} is not finite: {value!r}")
            return value

        token = self.locator.tokenize(value)
        if token is not None:
            return token

        if isinstance(value, (list, tuple)):
            return [self._encode(item, f"{path}[{i}]") for i, item in enumerate(value)]
        if isinstance(value, Mapping):
            encoded = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise SerializationError(
                        f"Context value at {path!r} has a non-string key: {key!r}"
                    )
                encoded[key] = self._encode(item, f"{path}.{key}")
            return encoded

        raise SerializationError(
            f"Context value at {path!r} has unsupported type {type(value).__name__}; "
            f"register a reference kind for it or convert it to JSON types"
        )

    # Inbound

    async def deserialize(self, payload: Mapping[str, Any]) -> Context:
        """
        Rebuild a Context, resolving every reference token.

        Raises:
            SerializationError: If the payload is malformed.
            RehydrationError: If a token cannot be resolved.
        """
        if not isinstance(payload, Mapping) or not isinstance(payload.get("data"), Mapping):
            raise SerializationError(f"Malformed context payload: {payload!r}")

        data = {key: await self._decode(value) for key, value in payload["data"].items()}
        return Context(data, payload.get("private_keys") or ())

    async def _decode(self, value: Any) -> Any:
        if self.locator.is_token(value):
            located = await self.locator.resolve(value)
            logger.debug(f"Rehydrated reference {value}")
            return located
        if isinstance(value, list):
            return [await self._decode(item) for item in value]
        if isinstance(value, Mapping):
            return {key: await self._decode(item) for key, item in value.items()}
        return value
