"""Codex plugin bridge.

Tails Codex session logs and runs Claude-style plugin hooks declared in the
bridge manifest whenever a matching event shows up.
"""

from __future__ import annotations

import os
from pathlib import Path

__version__ = "0.3.0"

BRIDGE_DIR_PARTS = ("plugins", "claude-bridge")


def resolve_codex_home(override: str | Path | None = None) -> Path:
    """CODEX_HOME resolution: explicit override, then $CODEX_HOME, then ~/.codex."""
    if override:
        return Path(override).expanduser().resolve()
    env_home = os.environ.get("CODEX_HOME", "").strip()
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".codex"


def bridge_dir(codex_home: Path) -> Path:
    return codex_home.joinpath(*BRIDGE_DIR_PARTS)


def manifest_path(codex_home: Path) -> Path:
    return bridge_dir(codex_home) / "manifest.json"


def watch_lock_path(codex_home: Path) -> Path:
    return bridge_dir(codex_home) / "watch.lock"


def sessions_root(codex_home: Path) -> Path:
    return codex_home / "sessions"


def default_debug_log_path(codex_home: Path) -> Path:
    return codex_home / "log" / "plugin-bridge.log"
