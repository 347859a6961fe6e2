"""Runtime configuration.

Configuration is an explicit value passed to the engine, the agent and the
LLM gateway. There is no module-level singleton: build one at startup
(usually with ``Configuration.from_env()``) and hand it to the components
that need it.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace

__all__ = ["Configuration", "DEFAULT_SENSITIVE_KEYS"]

DEFAULT_SENSITIVE_KEYS: tuple[str, ...] = ("password", "token", "secret", "key")


@dataclass(frozen=True)
class Configuration:
    """
    Settings shared by the engine and the built-in tasks.

    Examples:
        config = Configuration(api_key="sk-...", default_llm_model="gpt-4o")

        # Read PYRUNBOOK_* variables (OPENAI_API_KEY is used as a fallback)
        config = Configuration.from_env()
    """

    api_key: str | None = None
    """API key for the LLM provider."""

    base_url: str | None = None
    """Optional override of the LLM provider endpoint."""

    default_llm_model: str = "gpt-4"

    default_llm_timeout: float = 30.0
    """Seconds. Used when a task config has no ``timeout``."""

    default_llm_retries: int = 3
    """Used when a task config has no ``retries``."""

    sensitive_log_filter: tuple[str, ...] = field(default=DEFAULT_SENSITIVE_KEYS)
    """Substrings that mark a context key as private (redacted in logs)."""

    max_retries: int = 1
    """Queued re-runs allowed for a failed background job."""

    poll_interval: float = 1.0
    """Seconds between worker queue polls when no notification arrives."""

    @classmethod
    def from_env(cls, prefix: str = "PYRUNBOOK_") -> Configuration:
        """Build a configuration from environment variables."""

        def env(name: str) -> str | None:
            return os.getenv(f"{prefix}{name}")

        config = cls(
            api_key=env("API_KEY") or os.getenv("OPENAI_API_KEY"),
            base_url=env("BASE_URL"),
        )

        overrides: dict = {}
        if env("LLM_MODEL"):
            overrides["default_llm_model"] = env("LLM_MODEL")
        if env("LLM_TIMEOUT"):
            overrides["default_llm_timeout"] = float(env("LLM_TIMEOUT"))
        if env("LLM_RETRIES"):
            overrides["default_llm_retries"] = int(env("LLM_RETRIES"))
        if env("SENSITIVE_KEYS"):
            keys = tuple(k.strip() for k in env("SENSITIVE_KEYS").split(",") if k.strip())
            overrides["sensitive_log_filter"] = keys
        if env("MAX_RETRIES"):
            overrides["max_retries"] = int(env("MAX_RETRIES"))
        if env("POLL_INTERVAL"):
            overrides["poll_interval"] = float(env("POLL_INTERVAL"))

        return replace(config, **overrides) if overrides else config

    def is_sensitive(self, key: str) -> bool:
        """Return True if ``key`` contains one of the sensitive substrings."""
        lowered = key.lower()
        return any(fragment in lowered for fragment in self.sensitive_log_filter)
