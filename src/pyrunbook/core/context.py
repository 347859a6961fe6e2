"""Immutable execution context threaded through a workflow run.

A Context is a read-only mapping of string keys to arbitrary values. Every
"mutation" (set, merge, with_private) returns a new Context; the original is
never touched, so any snapshot the engine keeps reflects exactly the state
at the moment it was taken.

Keys are normalised once, at construction: ``str`` keys are kept as-is and
Enum members are replaced by their value. Lookups therefore behave the same
whichever representation the caller used.

The module also keeps a task-local record of the current run id
(contextvars), so task implementations and log records can be correlated
with the run that invoked them without threading the id through every call.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from contextvars import ContextVar
from enum import Enum
from types import MappingProxyType
from typing import Any

__all__ = [
    "Context",
    "REDACTED",
    "normalize_key",
    "CURRENT_EXECUTION_ID",
    "get_current_execution_id",
]

REDACTED = "[FILTERED]"

CURRENT_EXECUTION_ID: ContextVar[str | None] = ContextVar("current_execution_id", default=None)
"""Run id of the workflow executing in the current asyncio task.

Usage:
    ```python
    token = CURRENT_EXECUTION_ID.set(run_id)
    try:
        await task.execute(context)
    finally:
        CURRENT_EXECUTION_ID.reset(token)
    ```
"""


def get_current_execution_id() -> str | None:
    """Return the run id of the enclosing workflow run, or None outside a run."""
    return CURRENT_EXECUTION_ID.get()


def normalize_key(key: Any) -> str:
    """Map a caller-supplied key to its canonical string form."""
    if isinstance(key, Enum):
        key = key.value
    if isinstance(key, str):
        return key
    raise TypeError(f"Context keys must be strings, got {type(key).__name__}: {key!r}")


class Context(Mapping[str, Any]):
    """
    Immutable key/value snapshot available to a step.

    Examples:
        ctx = Context({"input": 5})
        ctx2 = ctx.set("double", 10)
        assert ctx.get("double") is None
        assert ctx2["double"] == 10

        ctx3 = ctx2.merge({"a": 1}, b=2)
        ctx4 = ctx3.with_private("api_token")
    """

    __slots__ = ("_data", "_private")

    def __init__(
        self,
        data: Mapping[Any, Any] | None = None,
        private_keys: Iterable[Any] = (),
    ):
        normalized = {normalize_key(k): v for k, v in (data or {}).items()}
        self._data: Mapping[str, Any] = MappingProxyType(normalized)
        self._private: frozenset[str] = frozenset(normalize_key(k) for k in private_keys)

    # Mapping protocol

    def __getitem__(self, key: Any) -> Any:
        return self._data[normalize_key(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        try:
            return normalize_key(key) in self._data
        except TypeError:
            return False

    def __repr__(self) -> str:
        return f"Context({self.filtered_for_logging()!r})"

    # Accessors

    def get(self, key: Any, default: Any = None) -> Any:
        """Pure lookup; returns ``default`` when the key is absent."""
        return self._data.get(normalize_key(key), default)

    @property
    def private_keys(self) -> frozenset[str]:
        """Keys redacted by filtered_for_logging()."""
        return self._private

    def is_empty(self) -> bool:
        return not self._data

    def to_dict(self) -> dict[str, Any]:
        """Return a shallow, mutable copy of the underlying data."""
        return dict(self._data)

    # Copy-on-write operations

    def set(self, key: Any, value: Any) -> Context:
        """Return a new Context with ``key`` bound to ``value``."""
        data = dict(self._data)
        data[normalize_key(key)] = value
        return Context(data, self._private)

    def merge(self, mapping: Mapping[Any, Any] | None = None, **kwargs: Any) -> Context:
        """
        Return a new Context with several keys added or replaced.

        Later keys win: values from ``kwargs`` override values from
        ``mapping``, which override the existing data.
        """
        data = dict(self._data)
        for source in (mapping or {}, kwargs):
            for key, value in source.items():
                data[normalize_key(key)] = value
        return Context(data, self._private)

    def with_private(self, *keys: Any) -> Context:
        """Return a new Context where ``keys`` are also marked private."""
        return Context(self._data, self._private | {normalize_key(k) for k in keys})

    def filtered_for_logging(self) -> dict[str, Any]:
        """
        Copy of the data with private keys replaced by ``[FILTERED]``.

        For logs and traces only; never feed this back into execution.
        """
        return {k: (REDACTED if k in self._private else v) for k, v in self._data.items()}
