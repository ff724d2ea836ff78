from __future__ import annotations

import sys
from pathlib import Path

import pytest

from pingme_backend.config import AppConfig, reset_settings_cache

FAKE_PING = Path(__file__).with_name("fake_ping.py")


@pytest.fixture
def make_settings(tmp_path, monkeypatch):
    """Settings factory pointing both ping commands at tests/fake_ping.py."""
    monkeypatch.setenv("FAKE_PING_SLEEP", "0.01")
    reset_settings_cache()

    def build(**overrides) -> AppConfig:
        values = {
            "cache_dir": tmp_path / "cache",
            "platform": "linux",
            "ping_command": [sys.executable, str(FAKE_PING)],
            "ping6_command": [sys.executable, str(FAKE_PING)],
            "max_concurrent_probes": 4,
            "probe_timeout_slack": 30.0,
        }
        values.update(overrides)
        config = AppConfig.model_validate(values)
        config.ensure_directories()
        return config

    yield build
    reset_settings_cache()


@pytest.fixture
def settings(make_settings) -> AppConfig:
    return make_settings()
