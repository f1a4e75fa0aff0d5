"""Settings file I/O for streamcall.

Manages a general-purpose JSON settings file at XDG_CONFIG_HOME/streamcall/settings.json.

This module is a STABLE BOUNDARY. Import as: import streamcall.io.settings
"""

import json
import os
import tempfile
from pathlib import Path


def get_config_path() -> Path:
    """Return path to settings file.

    STREAMCALL_SETTINGS_FILE wins; otherwise XDG_CONFIG_HOME (default
    ~/.config) / streamcall / settings.json.
    """
    override = os.environ.get("STREAMCALL_SETTINGS_FILE")
    if override:
        return Path(override)
    config_home = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
    return Path(config_home) / "streamcall" / "settings.json"


def load_settings() -> dict:
    """Load settings from JSON file. Returns empty dict on missing/corrupt file."""
    path = get_config_path()
    # [LAW:dataflow-not-control-flow] Always attempt read; empty dict is the "no data" value.
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


def save_settings(data: dict) -> None:
    """Atomic write of settings dict to JSON file.

    Creates parent directories if needed. Writes to temp file then renames
    to avoid partial writes on crash.
    """
    path = get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise
