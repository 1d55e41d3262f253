"""Global configuration using Pydantic settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application wide settings loaded from environment variables."""

    log_level: str = "INFO"

    # Capture constraints handed to the input device.
    sample_rate: int = 16_000
    channels: int = 1
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True
    input_device: Optional[str] = None

    # Session policy.
    chunk_seconds: float = Field(default=5.0, gt=0)
    flush_interval_seconds: float = Field(default=10.0, gt=0)
    min_flush_bytes: int = Field(default=5_000, ge=0)
    failure_threshold: int = Field(default=3, ge=1)
    staleness_seconds: float = Field(default=60.0, gt=0)
    dispatch_timeout_seconds: float = Field(default=20.0, gt=0)
    title_trigger_length: int = Field(default=15, ge=0)
    title_words: int = Field(default=6, ge=1)
    title_max_length: int = Field(default=30, ge=1)
    error_clear_seconds: float = Field(default=5.0, ge=0)
    payload_format: Literal["wav", "raw"] = "wav"

    # Transcription service.
    transcription_backend: str = "http"
    service_url: str = "http://localhost:3001"
    service_api_key: Optional[str] = None
    openai_transcription_model: str = "gpt-4o-mini-transcribe"
    openai_api_key: Optional[str] = None
    context_id: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="LECTURESCRIBE_",
        env_file=".env",
        case_sensitive=False,
    )


@dataclass(frozen=True)
class SessionPolicy:
    """Named policy parameters that shape one recording session."""

    chunk_seconds: float = 5.0
    flush_interval_seconds: float = 10.0
    min_flush_bytes: int = 5_000
    failure_threshold: int = 3
    staleness_seconds: float = 60.0
    dispatch_timeout_seconds: float = 20.0
    title_trigger_length: int = 15
    title_words: int = 6
    title_max_length: int = 30
    error_clear_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SessionPolicy":
        settings = settings or get_settings()
        return cls(
            chunk_seconds=settings.chunk_seconds,
            flush_interval_seconds=settings.flush_interval_seconds,
            min_flush_bytes=settings.min_flush_bytes,
            failure_threshold=settings.failure_threshold,
            staleness_seconds=settings.staleness_seconds,
            dispatch_timeout_seconds=settings.dispatch_timeout_seconds,
            title_trigger_length=settings.title_trigger_length,
            title_words=settings.title_words,
            title_max_length=settings.title_max_length,
            error_clear_seconds=settings.error_clear_seconds,
        )


_settings: Optional[Settings] = None


_MODEL_CONFIG: Dict[str, Any] = dict(Settings.model_config or {})
_ENV_PREFIX: str = (_MODEL_CONFIG.get("env_prefix") or "").upper()
_CASE_SENSITIVE: bool = bool(_MODEL_CONFIG.get("case_sensitive", True))
_ENV_FILE = _MODEL_CONFIG.get("env_file") or ".env"
_ENV_PATH = Path(_ENV_FILE)


@dataclass
class EnvironmentSetting:
    """Metadata about a configuration option backed by an environment variable."""

    field: str
    env_name: str
    value: Any
    default: Any
    annotation: Any


class EnvironmentSettingError(RuntimeError):
    """Raised when environment-backed configuration updates fail."""


def _env_key(field: str) -> str:
    key = f"{_ENV_PREFIX}{field}" if _ENV_PREFIX else field
    return key if _CASE_SENSITIVE else key.upper()


def _field_default(field_info) -> Any:
    if field_info.default is not None:
        return field_info.default
    if field_info.default_factory is not None:  # type: ignore[truthy-function]
        return field_info.default_factory()
    return None


def _load_env_file() -> Iterable[str]:
    if not _ENV_PATH.exists():
        return []
    return _ENV_PATH.read_text().splitlines()


def _persist_env_value(env_name: str, value: Optional[str]) -> None:
    lines = list(_load_env_file())
    updated = False
    new_lines = []
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in line:
            new_lines.append(line)
            continue
        key, _current = line.split("=", 1)
        if key.strip() == env_name:
            updated = True
            if value is None:
                continue
            new_lines.append(f"{env_name}={value}")
        else:
            new_lines.append(line)
    if not updated and value is not None:
        new_lines.append(f"{env_name}={value}")

    if new_lines:
        _ENV_PATH.write_text("\n".join(new_lines) + "\n")
    elif _ENV_PATH.exists():
        _ENV_PATH.unlink()


def list_environment_settings(settings: Optional[Settings] = None) -> Iterable[EnvironmentSetting]:
    """Return metadata for all environment-backed settings."""

    settings = settings or get_settings()
    for name, field in Settings.model_fields.items():
        yield EnvironmentSetting(
            field=name,
            env_name=_env_key(name),
            value=getattr(settings, name),
            default=_field_default(field),
            annotation=field.annotation,
        )


def _apply_setting_update(field: str, raw_value: Optional[str]) -> Settings:
    if field not in Settings.model_fields:
        raise EnvironmentSettingError(f"Unknown setting: {field}")

    env_name = _env_key(field)
    previous = os.environ.get(env_name)

    if raw_value is None:
        os.environ.pop(env_name, None)
    else:
        os.environ[env_name] = raw_value

    try:
        new_settings = Settings()
    except ValidationError as exc:
        if previous is None:
            os.environ.pop(env_name, None)
        else:
            os.environ[env_name] = previous
        raise EnvironmentSettingError(str(exc)) from exc

    global _settings
    _settings = new_settings
    _persist_env_value(env_name, raw_value)
    return new_settings


def update_environment_setting(field: str, raw_value: str) -> Settings:
    """Update an environment setting and reload configuration."""

    return _apply_setting_update(field, raw_value)


def clear_environment_setting(field: str) -> Settings:
    """Remove an environment override for the given field and reload configuration."""

    return _apply_setting_update(field, None)


def get_settings() -> Settings:
    """Return a singleton instance of the application settings."""

    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


__all__ = [
    "Settings",
    "SessionPolicy",
    "EnvironmentSetting",
    "EnvironmentSettingError",
    "clear_environment_setting",
    "get_settings",
    "list_environment_settings",
    "update_environment_setting",
]
