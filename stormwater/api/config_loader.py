"""Service configuration loaded from a JSON file.

Only non-secret settings live in the file. API keys and SendGrid credentials
are read from the environment variables the file names, so the same config
can be committed and shared between deployments.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class EnsembleSettings:
    min_models_required: int = 2
    # null disables the deadline.
    adapter_timeout: float | None = 60.0
    availability_timeout: float | None = 5.0


@dataclass
class BackendSettings:
    enabled: bool = True
    model: str = ""
    model_id: str = ""
    base_url: str = ""
    timeout: float = 30.0
    api_key_env: str = ""


@dataclass
class VisionSettings:
    openai: BackendSettings = field(
        default_factory=lambda: BackendSettings(
            model="gpt-4o",
            model_id="gpt-4o",
            base_url="https://api.openai.com/v1",
            api_key_env="OPENAI_API_KEY",
        )
    )
    anthropic: BackendSettings = field(
        default_factory=lambda: BackendSettings(
            model="claude-3-5-sonnet-20241022",
            model_id="claude-3-5-sonnet",
            base_url="https://api.anthropic.com/v1",
            api_key_env="ANTHROPIC_API_KEY",
        )
    )
    gemini: BackendSettings = field(
        default_factory=lambda: BackendSettings(
            model="models/gemini-1.5-pro",
            model_id="gemini-1.5-pro",
            base_url="https://generativelanguage.googleapis.com/v1beta",
            api_key_env="GEMINI_API_KEY",
        )
    )
    # Offline scenario adapters, one per entry, for local development.
    mock_scenarios: list[str] = field(default_factory=list)


@dataclass
class PathSettings:
    notification_config: str = "config/notifications.json"


@dataclass
class EmailSettings:
    sendgrid_api_key_env: str = "SENDGRID_API_KEY"
    review_from_email_env: str = "REVIEW_FROM_EMAIL"
    environment_label_env: str = "STORMWATER_ENV_LABEL"
    ui_base_url_env: str = "STORMWATER_BASE_URL"


@dataclass
class AppConfig:
    server: ServerSettings = field(default_factory=ServerSettings)
    ensemble: EnsembleSettings = field(default_factory=EnsembleSettings)
    vision: VisionSettings = field(default_factory=VisionSettings)
    paths: PathSettings = field(default_factory=PathSettings)
    email: EmailSettings = field(default_factory=EmailSettings)


def load_config(path: str | Path | None) -> AppConfig:
    """Load configuration, falling back to defaults for anything omitted.

    Raises:
        FileNotFoundError: ``path`` was given but does not exist.
        ValueError: the file is not valid JSON or a value has the wrong type.
    """
    config = AppConfig()
    if path is None:
        logger.info("No configuration file given; using defaults")
        return config

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(config_path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {config_path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Configuration root in {config_path} must be an object")

    _apply(config, data, "config")
    logger.info("Loaded configuration from %s", config_path)
    return config


def _apply(section: Any, data: dict[str, Any], prefix: str) -> None:
    known = {f.name for f in fields(section)}
    for key in data:
        if key not in known:
            logger.warning("Ignoring unknown configuration key %s.%s", prefix, key)
    for item in fields(section):
        if item.name not in data:
            continue
        name = f"{prefix}.{item.name}"
        current = getattr(section, item.name)
        value = data[item.name]
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ValueError(f"{name} must be an object")
            _apply(current, value, name)
        else:
            nullable = "None" in str(item.type)
            setattr(section, item.name, _coerce(current, value, name, nullable))


def _coerce(current: Any, value: Any, name: str, nullable: bool = False) -> Any:
    if value is None:
        if not nullable:
            raise ValueError(f"{name} must not be null")
        return None
    if isinstance(current, bool):
        if not isinstance(value, bool):
            raise ValueError(f"{name} must be true or false")
        return value
    if isinstance(current, (int, float)):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{name} must be a number")
        if isinstance(current, int) and isinstance(value, float) and not value.is_integer():
            raise ValueError(f"{name} must be a whole number")
        return type(current)(value)
    if isinstance(current, list):
        if not isinstance(value, list):
            raise ValueError(f"{name} must be a list")
        return [str(entry) for entry in value]
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string")
    return value


__all__ = [
    "AppConfig",
    "BackendSettings",
    "EmailSettings",
    "EnsembleSettings",
    "PathSettings",
    "ServerSettings",
    "VisionSettings",
    "load_config",
]
