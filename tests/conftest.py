from __future__ import annotations

import os

import pytest

from mysql_kill.config import ENV_ALIASES


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's own MYSQL_*/SSH_* settings out of the tests."""
    for name in list(ENV_ALIASES) + ["SSH_AUTH_SOCK"]:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("MYSQL_KILL_"):
            monkeypatch.delenv(name)
