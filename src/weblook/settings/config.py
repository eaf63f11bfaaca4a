"""Configuration loader for WebLook using Pydantic settings.

Config precedence (highest wins):
  1. CLI flags (where applicable)
  2. Environment variables (WEBLOOK_* with __ for nesting)
  3. settings.local.toml
  4. settings.{env}.toml
  5. settings.default.toml
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = Path(os.getenv("WEBLOOK_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR_NAME = "WEBLOOK_ENV"
DEFAULT_ENV = "local"


def _resolve_env() -> str:
    return (os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()


def _load_toml(path: Path) -> dict[str, Any]:
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class BackendSettings(BaseSettings):
    """Automation backend (chromedriver) process settings."""

    model_config = SettingsConfigDict(env_prefix="WEBLOOK_BACKEND__")

    binary: str = "chromedriver"
    host: str = "127.0.0.1"
    preferred_port: int = Field(default=9515, ge=1, le=65535)
    port_attempts: int = Field(default=5, ge=1)
    start_timeout_sec: float = Field(default=5.0, gt=0)
    poll_initial_delay_sec: float = Field(default=0.05, gt=0)
    poll_max_delay_sec: float = Field(default=0.5, gt=0)
    stop_grace_sec: float = Field(default=3.0, ge=0)


class BrowserSettings(BaseSettings):
    """Browser session settings."""

    model_config = SettingsConfigDict(env_prefix="WEBLOOK_BROWSER__")

    headless: bool = True
    disable_gpu: bool = True
    request_timeout_sec: float = Field(default=30.0, gt=0)
    script_settle_sec: float = Field(default=0.5, ge=0)


class CaptureSettings(BaseSettings):
    """Defaults applied when the caller does not specify a value."""

    model_config = SettingsConfigDict(env_prefix="WEBLOOK_CAPTURE__")

    url: str = "http://127.0.0.1:8080"
    wait_sec: float = Field(default=10, ge=0)
    size: str = "1280x720"
    recording_length_sec: float = Field(default=10, gt=0)
    frame_interval_sec: float = Field(default=0.1, gt=0)

    @field_validator("size")
    @classmethod
    def check_size(cls, v: str) -> str:
        """Reject sizes that are not WIDTHxHEIGHT with positive integers."""
        from weblook.models.capture import Viewport

        return str(Viewport.parse(v))



# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root WebLook settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="WEBLOOK_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)
    debug: bool = False

    backend: BackendSettings = Field(default_factory=BackendSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)

    @model_validator(mode="before")
    @classmethod
    def _merge_toml_files(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Layer TOML config files before env var overrides."""
        defaults = _load_toml(CONFIG_DIR / "settings.default.toml")
        env_name = (values.get("env") or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()
        env_overrides = _load_toml(CONFIG_DIR / f"settings.{env_name}.toml")
        local_overrides = _load_toml(CONFIG_DIR / "settings.local.toml")

        # Merge: defaults < env-specific < local < explicit values
        merged: dict[str, Any] = {}
        for layer in (defaults, env_overrides, local_overrides, values):
            for key, val in layer.items():
                if isinstance(val, dict) and isinstance(merged.get(key), dict):
                    merged[key] = {**merged[key], **val}
                else:
                    merged[key] = val
        return merged

    @model_validator(mode="after")
    def _check_backoff(self) -> "Settings":
        """The backoff cap can never be below its starting delay."""
        if self.backend.poll_max_delay_sec < self.backend.poll_initial_delay_sec:
            self.backend.poll_max_delay_sec = self.backend.poll_initial_delay_sec
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
