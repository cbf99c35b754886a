"""Configuration loader for steadyhand using Pydantic settings.

Config precedence (highest wins):
  1. CLI flags (where applicable)
  2. Environment variables (STEADYHAND_* with __ for nesting)
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
PROJECT_ROOT = Path(os.getenv("STEADYHAND_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR_NAME = "STEADYHAND_ENV"
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


class BrowserSettings(BaseSettings):
    """Playwright browser settings used when steadyhand owns the session."""

    model_config = SettingsConfigDict(env_prefix="STEADYHAND_BROWSER__")

    headless: bool = True
    timeout_ms: int = 30_000
    user_agent: str = ""
    viewport_width: int = 1280
    viewport_height: int = 800
    slow_mo_ms: int = 0


class NavigationSettings(BaseSettings):
    """Navigation wait strategy and transient-error retry policy."""

    model_config = SettingsConfigDict(env_prefix="STEADYHAND_NAVIGATION__")

    timeout_ms: int = 30_000
    wait_until: str = "networkidle"  # networkidle | load | domcontentloaded | commit
    max_attempts: int = 3
    backoff_seconds: float = 1.0


class LocatorSettings(BaseSettings):
    """Locator resolution and healing limits."""

    model_config = SettingsConfigDict(env_prefix="STEADYHAND_LOCATOR__")

    strategy_timeout_ms: int = 1_500
    max_alternatives: int = 3
    max_walk_nodes: int = 5_000
    max_frames: int = 10


class CaptchaSettings(BaseSettings):
    """CAPTCHA solving loop and OCR configuration."""

    model_config = SettingsConfigDict(env_prefix="STEADYHAND_CAPTCHA__")

    max_retries: int = 10
    timeout_seconds: float = 60.0
    min_confidence: float = 75.0
    refresh_wait_ms: int = 1_500
    type_delay_min_ms: int = 30
    type_delay_max_ms: int = 110
    managed_poll_interval_ms: int = 500
    managed_timeout_seconds: float = 30.0
    ocr_lang: str = "eng"
    ocr_workers: int = 2
    # Attempts (from the first) that sweep every preprocess variant and page-segmentation mode
    exhaustive_ocr_attempts: int = 2
    tesseract_cmd: str = ""

    @field_validator("max_retries", "ocr_workers")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return max(1, v)


class ExtractionSettings(BaseSettings):
    """Stream/content extraction limits."""

    model_config = SettingsConfigDict(env_prefix="STEADYHAND_EXTRACTION__")

    max_frames: int = 10
    capture_network: bool = True
    capture_window_ms: int = 0
    max_markup_chars: int = 500_000


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root steadyhand settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="STEADYHAND_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)
    debug: bool = False
    log_level: str = "INFO"

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    navigation: NavigationSettings = Field(default_factory=NavigationSettings)
    locator: LocatorSettings = Field(default_factory=LocatorSettings)
    captcha: CaptchaSettings = Field(default_factory=CaptchaSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)

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

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.strip().upper() or "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
