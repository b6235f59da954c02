"""Shared fixtures for CLI execution tests."""

from __future__ import annotations

import pytest

SERVER = "http://magdash.test:3100"


@pytest.fixture()
def cli_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Point client commands at a fake server."""
    env = {"MAGDASH_SERVER_URL": SERVER}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
