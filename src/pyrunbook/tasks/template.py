"""``{{key}}`` placeholder interpolation.

Missing keys degrade gracefully: the placeholder becomes a visible
``[MISSING: key]`` marker and a warning is logged, but the step carries on.
"""

import json
import logging
import re
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{(.+?)\}\}")


def _render(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def interpolate(template: Any, context: Mapping[str, Any]) -> Any:
    """
    Replace every ``{{key}}`` in ``template`` with ``context[key]``.

    Non-string templates are returned unchanged. A key that is absent (or
    bound to None) renders as ``[MISSING: key]``.

    Example:
        interpolate("Hello {{name}}", Context({}))  # "Hello [MISSING: name]"
    """
    if not isinstance(template, str):
        return template

    def substitute(match: re.Match) -> str:
        key = match.group(1).strip()
        value = context.get(key)
        if value is None:
            logger.warning(f"Missing context variable: {key}")
            return f"[MISSING: {key}]"
        return _render(value)

    return PLACEHOLDER.sub(substitute, template)


def interpolate_messages(
    messages: list[Mapping[str, Any]], context: Mapping[str, Any]
) -> list[dict[str, Any]]:
    """Interpolate the ``content`` of each chat message, keeping other fields."""
    rendered = []
    for message in messages:
        copy = dict(message)
        copy["content"] = interpolate(copy.get("content", ""), context)
        rendered.append(copy)
    return rendered


def placeholders(template: str) -> list[str]:
    """Keys referenced by ``template``, in order of appearance."""
    return [match.strip() for match in PLACEHOLDER.findall(template)]


def resolve_reference(value: Any, context: Mapping[str, Any]) -> Any:
    """
    Resolve a ``"$key"`` config value to ``context[key]``.

    Any other value is returned unchanged; ``"$$text"`` escapes a literal
    leading dollar sign.
    """
    if isinstance(value, str) and value.startswith("$"):
        if value.startswith("$$"):
            return value[1:]
        return context.get(value[1:])
    return value


def resolve_references(values: Mapping[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    """resolve_reference() applied to every value of a mapping."""
    return {key: resolve_reference(value, context) for key, value in values.items()}
