from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .utils import truthy

if TYPE_CHECKING:
    from .sources import SourceRegistry


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


_DEFAULT_SQLITE_PATH = "/app/local/state/jobs.db"


# -----------------------------
# Models
# -----------------------------
@dataclass
class Settings:
    """
    Canonical configuration for the job discovery pipeline.

    Sources come from (first match wins):
        sources: inline list of {"name", "base_url", "category"}
        sources_path: JSON file holding the same list
        the built-in official government sources
    """

    # Persistence
    sqlite_path: str = _DEFAULT_SQLITE_PATH

    # Source selection
    sources_path: str | None = None
    sources: list[dict[str, Any]] | None = None
    _registry: SourceRegistry | None = field(default=None, repr=False)

    # Round-robin
    batch_size: int = 5
    start_index: int = 0

    # Fetcher
    fetch_timeout_sec: float = 15.0
    max_retries: int = 3
    backoff_base_sec: float = 2.0
    respect_robots: bool = True
    robots_user_agent: str = "*"

    # Extractor
    html_char_limit: int = 12000
    max_jobs_per_source: int = 5
    default_deadline_days: int = 60
    ai_model_env: str = "OPENAI_MODEL_DISCOVERY"
    ai_model: str = "gpt-4o-mini"
    ai_temp_env: str = "OPENAI_TEMP_DISCOVERY"
    ai_api_key_env: str = "OPENAI_API_KEY"
    ai_timeout_sec: float = 60.0

    # Diagnostics
    degraded_after: int = 3
    skip_network: bool = False

    # ------------- convenience -------------
    def registry(self) -> SourceRegistry:
        """Return the (lazily loaded, then memoised) source registry."""
        from .sources import SourceRegistry

        if self._registry is None:
            if self.sources:
                self._registry = SourceRegistry.from_list(self.sources)
            elif self.sources_path:
                self._registry = SourceRegistry.from_file(self.sources_path)
            else:
                self._registry = SourceRegistry.defaults()
        return self._registry

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        All keys are optional. `sqlite_path` falls back to $SQLITE_PATH before
        the built-in default. Unknown keys are rejected to catch typos early.
        """
        kw = dict(kwargs or {})

        known = {f for f in cls.__dataclass_fields__ if not f.startswith("_")}
        unknown = sorted(set(kw) - known)
        if unknown:
            raise ConfigError(f"Unknown job_discovery setting(s): {unknown}")

        sources = kw.get("sources")
        if sources is not None and not isinstance(sources, list):
            raise ConfigError("'sources' must be a list of source objects.")

        sources_path = kw.get("sources_path")
        if sources_path is not None:
            sources_path = str(sources_path).strip() or None

        settings = cls(
            sqlite_path=str(kw.get("sqlite_path") or os.getenv("SQLITE_PATH") or _DEFAULT_SQLITE_PATH),
            sources_path=sources_path,
            sources=sources,
            batch_size=_int(kw, "batch_size", 5),
            start_index=_int(kw, "start_index", 0),
            fetch_timeout_sec=_float(kw, "fetch_timeout_sec", 15.0),
            max_retries=_int(kw, "max_retries", 3),
            backoff_base_sec=_float(kw, "backoff_base_sec", 2.0),
            respect_robots=truthy(kw.get("respect_robots", True)),
            robots_user_agent=str(kw.get("robots_user_agent") or "*"),
            html_char_limit=_int(kw, "html_char_limit", 12000),
            max_jobs_per_source=_int(kw, "max_jobs_per_source", 5),
            default_deadline_days=_int(kw, "default_deadline_days", 60),
            ai_model_env=str(kw.get("ai_model_env") or "OPENAI_MODEL_DISCOVERY"),
            ai_model=str(kw.get("ai_model") or "gpt-4o-mini"),
            ai_temp_env=str(kw.get("ai_temp_env") or "OPENAI_TEMP_DISCOVERY"),
            ai_api_key_env=str(kw.get("ai_api_key_env") or "OPENAI_API_KEY"),
            ai_timeout_sec=_float(kw, "ai_timeout_sec", 60.0),
            degraded_after=_int(kw, "degraded_after", 3),
            skip_network=truthy(kw.get("skip_network")),
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _int(kw: Mapping[str, Any], key: str, default: int) -> int:
    v = kw.get(key)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{key}' must be an integer (got {v!r}).") from err


def _float(kw: Mapping[str, Any], key: str, default: float) -> float:
    v = kw.get(key)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{key}' must be a number (got {v!r}).") from err


def _validate_settings(s: Settings) -> None:
    if not s.sqlite_path.strip():
        raise ConfigError("'sqlite_path' cannot be empty.")
    if s.batch_size <= 0:
        raise ConfigError("'batch_size' must be >= 1.")
    if s.max_retries <= 0:
        raise ConfigError("'max_retries' must be >= 1.")
    if s.fetch_timeout_sec <= 0 or s.ai_timeout_sec <= 0:
        raise ConfigError("Timeouts must be > 0.")
    if s.backoff_base_sec < 0:
        raise ConfigError("'backoff_base_sec' must be >= 0.")
    if s.html_char_limit <= 0:
        raise ConfigError("'html_char_limit' must be >= 1.")
    if s.max_jobs_per_source <= 0:
        raise ConfigError("'max_jobs_per_source' must be >= 1.")
    if s.default_deadline_days < 0:
        raise ConfigError("'default_deadline_days' must be >= 0.")
    if s.degraded_after <= 0:
        raise ConfigError("'degraded_after' must be >= 1.")

    # Loading the registry validates every source; the cursor must land inside it.
    registry = s.registry()
    if not 0 <= s.start_index < len(registry):
        raise ConfigError(f"'start_index' must be in [0, {len(registry)}) (got {s.start_index}).")
