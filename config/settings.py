"""Settings management utilities for the prompt workbench pipeline.

Updates:
  v0.3.0 - 2026-10-19 - Add visit buffering and quality score refresh settings.
  v0.2.0 - 2026-10-19 - Add workspace, queue, and detached timeout settings.
  v0.1.0 - 2026-10-19 - Load settings from keyword overrides, JSON config, env, and .env.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

_DOTENV_FALLBACK_PATH = ".env"
_ENV_PREFIX = "PROMPT_WORKBENCH_"

DEFAULT_DB_PATH = Path("data") / "prompt_workbench.db"
DEFAULT_WORKSPACE_KEY_PREFIX = "prompt:workspace"
DEFAULT_QUEUE_KEY = "prompt:persistence:queue"
DEFAULT_VISIT_BUFFER_KEY = "prompt:visit:buffer"
DEFAULT_VISIT_GUARD_PREFIX = "prompt:visit:guard"
DEFAULT_VISIT_FLUSH_LOCK_KEY = "prompt:visit:flush:lock"

# Extra environment names accepted alongside ``PROMPT_WORKBENCH_<FIELD>``.
_ENV_ALIASES: dict[str, list[str]] = {
    "db_path": ["DB_PATH", "DATABASE_PATH"],
    "redis_dsn": ["REDIS_DSN", "REDIS_URL"],
    "litellm_api_key": ["LITELLM_API_KEY"],
    "litellm_api_base": ["LITELLM_API_BASE"],
}

_SECRET_KEYS = {"litellm_api_key", "LITELLM_API_KEY"}


def _read_dotenv_values() -> dict[str, str]:
    """Load ``.env`` entries into a mapping without mutating ``os.environ``."""
    env_file_override = os.getenv(f"{_ENV_PREFIX}ENV_FILE")
    if env_file_override is not None:
        candidate = env_file_override.strip()
        if not candidate:
            return {}
        path = Path(candidate).expanduser()
    else:
        path = Path(_DOTENV_FALLBACK_PATH).expanduser()
    if not path.is_file():
        return {}
    raw_values = dotenv_values(str(path))
    return {str(key): str(value) for key, value in raw_values.items() if value is not None}


class SettingsError(Exception):
    """Raised when workbench configuration cannot be loaded or validated."""


class WorkbenchSettings(BaseSettings):
    """Application configuration sourced from overrides, JSON files, or the environment."""

    db_path: Path = Field(default=DEFAULT_DB_PATH)
    redis_dsn: str | None = Field(
        default=None,
        description="Redis URL for the fast store; in-memory stores are used when unset.",
    )

    workspace_ttl_seconds: int = Field(default=2700)
    workspace_key_prefix: str = Field(default=DEFAULT_WORKSPACE_KEY_PREFIX)
    queue_key: str = Field(default=DEFAULT_QUEUE_KEY)
    queue_poll_timeout_seconds: float = Field(default=2.0)
    workspace_write_timeout_seconds: float = Field(default=5.0)
    model_invoke_timeout_seconds: float = Field(default=35.0)

    keyword_limit: int = Field(default=10)
    keyword_max_length: int = Field(default=32)
    tag_limit: int = Field(default=3)
    tag_max_length: int = Field(default=16)
    version_retention: int = Field(default=5)

    visit_buffer_enabled: bool = Field(default=True)
    visit_buffer_key: str = Field(default=DEFAULT_VISIT_BUFFER_KEY)
    visit_guard_prefix: str = Field(default=DEFAULT_VISIT_GUARD_PREFIX)
    visit_guard_ttl_seconds: int = Field(default=600)
    visit_flush_interval_seconds: float = Field(default=60.0)
    visit_flush_batch: int = Field(default=128)
    visit_flush_lock_key: str = Field(default=DEFAULT_VISIT_FLUSH_LOCK_KEY)
    visit_flush_lock_ttl_seconds: float = Field(default=10.0)

    score_refresh_enabled: bool = Field(default=True)
    score_base: float = Field(default=1.0)
    score_download_weight: float = Field(default=4.0)
    score_like_weight: float = Field(default=3.0)
    score_visit_weight: float = Field(default=1.0)
    score_recency_weight: float = Field(default=2.0)
    score_recency_half_life_hours: float = Field(default=24.0)
    score_refresh_interval_seconds: float = Field(default=300.0)
    score_refresh_batch: int = Field(default=200)

    litellm_api_key: str | None = Field(
        default=None,
        description="LiteLLM API key (environment only).",
        repr=False,
    )
    litellm_api_base: str | None = Field(
        default=None,
        description="Optional LiteLLM API base URL override.",
    )
    litellm_logging_enabled: bool = Field(
        default=False,
        description="Keep LiteLLM's own loggers at INFO instead of silencing them.",
    )
    default_model_key: str | None = Field(
        default=None,
        description="Model used when a request does not name one.",
    )
    log_config_path: Path = Field(default=Path("config") / "logging.conf")

    model_config = cast(
        "SettingsConfigDict",
        {
            "env_prefix": _ENV_PREFIX,
            "case_sensitive": False,
            "populate_by_name": True,
        },
    )

    @field_validator("db_path", "log_config_path", mode="before")
    def _normalise_path(cls, value: Any) -> Path:
        """Expand user-relative paths and coerce values to Path instances."""
        if value is None:
            raise ValueError("a filesystem path is required")
        return Path(str(value)).expanduser()

    @field_validator(
        "redis_dsn", "litellm_api_key", "litellm_api_base", "default_model_key", mode="before"
    )
    def _strip_optional(cls, value: str | None) -> str | None:
        """Normalise optional strings by stripping whitespace and empty strings."""
        if value is None:
            return None
        stripped = str(value).strip()
        return stripped or None

    @field_validator(
        "workspace_key_prefix",
        "queue_key",
        "visit_buffer_key",
        "visit_guard_prefix",
        "visit_flush_lock_key",
        mode="before",
    )
    def _require_key(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("key names must not be empty")
        return text

    @field_validator(
        "workspace_ttl_seconds",
        "queue_poll_timeout_seconds",
        "workspace_write_timeout_seconds",
        "model_invoke_timeout_seconds",
        "keyword_limit",
        "keyword_max_length",
        "tag_limit",
        "tag_max_length",
        "version_retention",
        "visit_guard_ttl_seconds",
        "visit_flush_interval_seconds",
        "visit_flush_batch",
        "visit_flush_lock_ttl_seconds",
        "score_recency_half_life_hours",
        "score_refresh_interval_seconds",
        "score_refresh_batch",
    )
    def _require_positive(cls, value: float) -> float:
        """Reject zero or negative TTLs, intervals, limits, and batch sizes."""
        if value <= 0:
            raise ValueError("value must be greater than zero")
        return value

    @field_validator(
        "score_download_weight",
        "score_like_weight",
        "score_visit_weight",
        "score_recency_weight",
    )
    def _reject_negative_weight(cls, value: float) -> float:
        if value < 0:
            raise ValueError("score weights must not be negative")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        """Define configuration source precedence.

        Order (highest → lowest):
            1. Explicit keyword arguments (e.g. load_settings(redis_dsn="...")).
            2. JSON configuration file.
            3. Environment variables / ``.env`` entries / aliases.
            4. File secrets.
        """

        def env_with_aliases(_: BaseSettings | None = None) -> dict[str, Any]:
            data: dict[str, Any] = {}
            dotenv = _read_dotenv_values()

            def _lookup(candidate: str) -> str | None:
                value = os.getenv(candidate)
                if value is None:
                    value = dotenv.get(candidate)
                if value is None:
                    return None
                stripped_value = str(value).strip()
                return stripped_value or None

            for field in cls.model_fields:
                candidates = [f"{_ENV_PREFIX}{field.upper()}", f"{_ENV_PREFIX}{field}"]
                candidates.extend(_ENV_ALIASES.get(field, []))
                for candidate in candidates:
                    value = _lookup(candidate)
                    if value is not None:
                        data[field] = value
                        break
            return data

        return (
            init_settings,
            cls._json_config_settings_source(settings_cls),
            cast("PydanticBaseSettingsSource", env_with_aliases),
            file_secret_settings,
        )

    @classmethod
    def _json_config_settings_source(
        cls,
        _: type[BaseSettings],
    ) -> PydanticBaseSettingsSource:
        """Return settings extracted from an optional JSON config file."""

        def _loader(_: BaseSettings | None = None) -> dict[str, Any]:
            explicit_path = os.getenv(f"{_ENV_PREFIX}CONFIG_JSON")
            candidates: list[Path] = []
            if explicit_path:
                candidates.append(Path(explicit_path).expanduser())
            candidates.append(Path("config") / "config.json")

            for path in candidates:
                if not path.exists():
                    if explicit_path and path == candidates[0]:
                        raise SettingsError(f"Configuration file not found: {path}")
                    continue
                try:
                    raw_contents = path.read_text(encoding="utf-8")
                except OSError as exc:  # pragma: no cover - filesystem failure is env-specific
                    raise SettingsError(f"Unable to read configuration file: {path}") from exc
                try:
                    data = json.loads(raw_contents)
                except json.JSONDecodeError as exc:
                    raise SettingsError(f"Invalid JSON in configuration file: {path}") from exc
                if not isinstance(data, dict):
                    raise SettingsError(f"Configuration file {path} must contain a JSON object")
                mapping_data = cast("Mapping[object, Any]", data)
                data_dict: dict[str, Any] = {str(key): value for key, value in mapping_data.items()}
                if "database_path" in data_dict and "db_path" not in data_dict:
                    data_dict["db_path"] = data_dict.pop("database_path")
                removed_secrets = [
                    key
                    for key in _SECRET_KEYS
                    if key in data_dict and data_dict.pop(key, None) is not None
                ]
                if removed_secrets:
                    logger.warning(
                        "Ignoring secret key(s) %s in configuration file %s; "
                        "set credentials via environment variables instead.",
                        ", ".join(sorted(removed_secrets)),
                        path,
                    )
                return {key: value for key, value in data_dict.items() if key in cls.model_fields}
            return {}

        return cast("PydanticBaseSettingsSource", _loader)


def load_settings(**overrides: Any) -> WorkbenchSettings:
    """Return validated settings, raising SettingsError on failure."""
    try:
        return WorkbenchSettings(**overrides)
    except SettingsError:
        raise
    except ValidationError as exc:
        raise SettingsError("Invalid prompt workbench configuration") from exc


logger = logging.getLogger("prompt_workbench.settings")
