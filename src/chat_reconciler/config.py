"""TOML configuration for the reconciliation layer.

User settings live in ``~/.config/chat-reconciler/config.toml``. Whatever the
file provides is layered over :data:`DEFAULT_CONFIG` and validated with the
pydantic models below; a file that does not validate is replaced wholesale by
the defaults, with a warning.
"""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
import tomllib
from typing import Annotated, Any
from urllib.parse import urlparse

from pydantic import (
    BaseModel,
    BeforeValidator,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .exceptions import ConfigValidationError

LOGGER = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "chat-reconciler"
CONFIG_PATH = CONFIG_DIR / "config.toml"

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")
MARKER_FORBIDDEN_CHARS = "[]*\n"

DEFAULT_THINKING_MODELS = [
    "o3",
    "o3-mini",
    "o3-pro",
    "o4-mini",
    "gemini-2.5-flash-thinking",
    "anthropic/claude-3.7-sonnet-reasoning",
    "deepseek/deepseek-r1",
    "qwen/qwen3",
    "ollama:deepseek-r1",
    "ollama:qwen3",
    "ollama:gpt-oss",
]


def _stripped_text(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("a non-empty string is required")
    return value.strip()


def _lowered_unique(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("a list of strings is required")
    seen: list[str] = []
    for item in value:
        name = _stripped_text(item).lower()
        if name not in seen:
            seen.append(name)
    return seen


Text = Annotated[str, BeforeValidator(_stripped_text)]
NameList = Annotated[list[str], BeforeValidator(_lowered_unique)]


class OllamaConfig(BaseModel):
    host: Text = "http://localhost:11434"
    model: Text = "llama3.2"
    timeout: int = Field(default=120, ge=1, le=3600)
    retries: int = Field(default=2, ge=0, le=10)
    retry_backoff_seconds: float = Field(default=0.5, ge=0.0, le=60.0)


class RephraseConfig(BaseModel):
    """Locator thresholds and how much the applicator double-checks itself."""

    partial_overlap_threshold: float = Field(default=0.7, gt=0.0, le=1.0)
    min_word_length: int = Field(default=2, ge=0, le=64)
    anchor_word_length: int = Field(default=4, ge=0, le=64)
    marker_label: Text = "Rephrased"
    verify_persistence: bool = True
    review_partial_matches: bool = True

    @field_validator("marker_label")
    @classmethod
    def _marker_label_fits_marker_line(cls, value: str) -> str:
        if any(char in value for char in MARKER_FORBIDDEN_CHARS):
            raise ValueError("marker_label cannot contain brackets, '*' or newlines")
        return value


class ReasoningConfig(BaseModel):
    show_placeholder: bool = True
    placeholder_text: Text = "__thinking__"


class CapabilitiesConfig(BaseModel):
    thinking_models: NameList = Field(
        default_factory=lambda: list(DEFAULT_THINKING_MODELS)
    )
    detect_with_ollama: bool = False
    cache_max_age_seconds: int = Field(default=86400, ge=0, le=30 * 86400)


class StorageConfig(BaseModel):
    directory: Text = "~/.local/state/chat-reconciler/threads"


class SecurityConfig(BaseModel):
    """Which Ollama hosts may be contacted."""

    allow_remote_hosts: bool = False
    allowed_hosts: NameList = Field(
        default_factory=lambda: ["localhost", "127.0.0.1", "::1"], min_length=1
    )


class LoggingConfig(BaseModel):
    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: Text = "~/.local/state/chat-reconciler/app.log"

    @field_validator("level", mode="before")
    @classmethod
    def _known_level(cls, value: Any) -> str:
        level = _stripped_text(value).upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log level must be one of {', '.join(LOG_LEVELS)}")
        return level


class Config(BaseModel):
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    rephrase: RephraseConfig = Field(default_factory=RephraseConfig)
    reasoning: ReasoningConfig = Field(default_factory=ReasoningConfig)
    capabilities: CapabilitiesConfig = Field(default_factory=CapabilitiesConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _ollama_host_permitted(self) -> Config:
        url = urlparse(self.ollama.host)
        if url.scheme.lower() not in ("http", "https"):
            raise ValueError("ollama.host needs an http:// or https:// URL")
        host = (url.hostname or "").lower()
        if not host:
            raise ValueError("ollama.host has no hostname")
        if host not in self.security.allowed_hosts and not self.security.allow_remote_hosts:
            raise ValueError(
                f"ollama.host {host!r} is remote; set security.allow_remote_hosts "
                "or add it to security.allowed_hosts"
            )
        return self


DEFAULT_CONFIG: dict[str, dict[str, Any]] = Config().model_dump()


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Create the config directory if needed; failures are only logged."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning(
            "config.dir.unavailable",
            extra={
                "event": "config.dir.unavailable",
                "path": str(directory),
                "error": str(exc),
            },
        )
    return directory


def _layer(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    layered = deepcopy(defaults)
    for key, value in overrides.items():
        current = layered.get(key)
        layered[key] = (
            _layer(current, value)
            if isinstance(current, dict) and isinstance(value, dict)
            else value
        )
    return layered


def _read_user_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    if os.name == "posix":
        try:
            path.chmod(0o600)
        except OSError:
            LOGGER.warning(
                "config.permissions.failed",
                extra={"event": "config.permissions.failed", "path": str(path)},
            )
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        LOGGER.warning(
            "config.parse.failed",
            extra={"event": "config.parse.failed", "path": str(path), "error": str(exc)},
        )
        return {}


def load_config(config_path: Path | None = None) -> dict[str, dict[str, Any]]:
    """Return the validated configuration as plain dicts, one per section.

    ``config_path`` overrides the default location.
    """
    path = config_path or CONFIG_PATH
    ensure_config_dir(path.parent)
    candidate = _layer(DEFAULT_CONFIG, _read_user_file(path))
    try:
        return Config.model_validate(candidate).model_dump()
    except ValidationError as exc:
        LOGGER.warning(
            "config.invalid",
            extra={
                "event": "config.invalid",
                "errors": exc.error_count(),
                "detail": str(exc),
            },
        )
        return deepcopy(DEFAULT_CONFIG)
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc
