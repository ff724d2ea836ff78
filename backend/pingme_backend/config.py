from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PlatformVariant = Literal["linux", "darwin", "plain"]


def detect_platform() -> PlatformVariant:
    if sys.platform.startswith("linux"):
        return "linux"
    if sys.platform == "darwin":
        return "darwin"
    return "plain"


class AppConfig(BaseSettings):
    cache_dir: Path = Path.home() / "PingMe" / "cache"

    # Probe execution
    max_concurrent_probes: int = Field(10, ge=1)
    platform: PlatformVariant = Field(default_factory=detect_platform)
    ping_command: list[str] = ["ping"]
    ping6_command: list[str] = ["ping6"]
    probe_timeout_slack: float | None = 30.0  # seconds past the requested duration; None disables

    # Request defaults and limits
    default_period: float = 1.0
    default_duration: int = 30
    min_period: float = 0.2
    max_duration: int = 300
    trust_forwarded_for: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_prefix="PINGME_", extra="ignore")

    def ensure_directories(self) -> None:
        Path(self.cache_dir).mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> AppConfig:
    return AppConfig()


def reset_settings_cache() -> None:
    get_settings.cache_clear()
