"""Core configuration.

Why here:
- Centralizes settings (pydantic-settings) without leaking them into the CLI.
- Lets adapters (HTTP transport, cache) read config consistently.

Sources, highest priority first: init kwargs, environment (`AFTERSHIP_CLI_*`),
`.env`, then `config.json` in the working directory, then the one in the
user config dir.
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from aftership_cli.core.errors import ConfigurationError

APP_DIR_NAME = "aftership-cli"


def get_user_config_dir() -> Path:
    """Per-user configuration directory (cross-platform, no extra dependencies)."""

    if sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", str(Path.home())))
        return base / APP_DIR_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME

    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".config" / APP_DIR_NAME


def get_user_cache_dir() -> Path:
    if sys.platform.startswith("win"):
        base = Path(os.environ.get("LOCALAPPDATA", str(Path.home())))
        return base / APP_DIR_NAME / "cache"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Caches" / APP_DIR_NAME

    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg) / APP_DIR_NAME
    return Path.home() / ".cache" / APP_DIR_NAME


def get_user_config_file() -> Path:
    return get_user_config_dir() / "config.json"


def config_files() -> tuple[Path, ...]:
    """JSON config files, lowest priority first (later files override earlier ones)."""

    return (get_user_config_file(), Path("config.json"))


def write_user_api_key(api_key: str) -> Path:
    """Stores the API key in the user `config.json`, keeping any other keys."""

    config_path = get_user_config_file()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    existing: dict[str, Any] = {}
    if config_path.exists():
        try:
            loaded = json.loads(config_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            loaded = {}
        if isinstance(loaded, dict):
            existing = loaded

    section = existing.get("aftership")
    if not isinstance(section, dict):
        section = {}
    section["apiKey"] = api_key
    existing["aftership"] = section

    config_path.write_text(json.dumps(existing, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return config_path


DEFAULT_DELAY_THRESHOLDS: dict[str, int] = {
    "ups": 1,
    "royal-mail": 3,
    "royalmail": 3,
    "carrier-freight": 2,
    "default": 2,
}

DEFAULT_FALLBACK_CARRIERS: tuple[str, ...] = ("ups", "royal-mail", "carrier-freight")


class AfterShipSection(BaseModel):
    """The `aftership` block of `config.json`."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str | None = Field(
        default=None,
        alias="apiKey",
        description="AfterShip API key (sent as the `as-api-key` header).",
    )


class AppSettings(BaseSettings):
    """Central application settings.

    Why pydantic-settings:
    - Typing and validation at the edge (env vars, JSON file) without
      polluting the client with parsing logic.
    - A single configuration contract for CLI and adapters.
    """

    model_config = SettingsConfigDict(
        env_prefix="AFTERSHIP_CLI_",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        json_file_encoding="utf-8",
    )

    aftership: AfterShipSection = Field(default_factory=AfterShipSection)

    api_base_url: str = Field(
        default="https://api.aftership.com/tracking/2024-04",
        min_length=8,
        description="Base URL of the AfterShip Tracking API (versioned).",
    )
    http_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Per-request timeout (seconds).",
    )
    http_max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Max retries on transient failures (429, 5xx, network).",
    )
    user_agent: str = Field(
        default="aftership-cli/0.1",
        min_length=1,
        description="User-Agent sent with API requests.",
    )

    cache_enabled: bool = Field(
        default=True,
        description="Global toggle for the response cache.",
    )
    cache_namespace: str = Field(
        default="aftership-tracking-manager",
        min_length=1,
        description="Cache namespace (one directory per namespace).",
    )
    cache_dir: Path = Field(
        default_factory=get_user_cache_dir,
        description="Root directory for cached responses.",
    )

    delay_thresholds: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_DELAY_THRESHOLDS),
        description="Days past expected delivery before a shipment counts as delayed, per carrier slug.",
    )
    fallback_carriers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_CARRIERS),
        description="Carrier slugs probed when auto-detection finds nothing.",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonConfigSettingsSource(settings_cls, json_file=config_files()),
        )


def require_api_key(settings: AppSettings) -> str:
    """Returns the configured API key or fails with `ConfigurationError`."""

    api_key = (settings.aftership.api_key or "").strip()
    if not api_key:
        raise ConfigurationError(
            "Missing required config: aftership.apiKey "
            f"(set it in config.json, {get_user_config_file()} or AFTERSHIP_CLI_AFTERSHIP__API_KEY)"
        )
    return api_key
