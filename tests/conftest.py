"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from zundachat.services.settings import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="sk-test", model="gpt-3.5-turbo")


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    for name in (
        "ZUNDACHAT_API_KEY",
        "ZUNDACHAT_BASE_URL",
        "ZUNDACHAT_MODEL",
        "ZUNDACHAT_TTS_VOICE",
        "ZUNDACHAT_TTS_MODEL",
        "ZUNDACHAT_DEBUG_LOGGING",
        "ZUNDACHAT_AUTO_TITLE",
        "ZUNDACHAT_REQUEST_TIMEOUT",
        "ZUNDACHAT_TEMPERATURE",
        "ZUNDACHAT_MAX_TOKENS",
        "ZUNDACHAT_SETTINGS_PATH",
        "ZUNDACHAT_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ZUNDACHAT_LOG_DIR", str(tmp_path / "logs"))
