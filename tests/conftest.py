"""Pytest configuration and shared fixtures for streamcall tests."""

import pytest


@pytest.fixture(autouse=True)
def _isolated_state_dirs(tmp_path_factory, monkeypatch):
    """Keep settings, execution records and logs out of the real home directory."""
    root = tmp_path_factory.mktemp("state")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(root / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(root / "data"))
    monkeypatch.setenv("STREAMCALL_LOG_DIR", str(root / "logs"))
    monkeypatch.delenv("STREAMCALL_EXECUTIONS_FILE", raising=False)
