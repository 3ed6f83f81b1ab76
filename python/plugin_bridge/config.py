"""Bridge configuration.

Resolution order for every option: CLI flag, environment variable, the
optional ``config.yaml`` next to the manifest, built-in default.

Example ``~/.codex/plugins/claude-bridge/config.yaml``::

    poll_ms: 1000
    debug_log: true
    debug_log_path: ~/.codex/log/plugin-bridge.log
    verbose: false
    project_root: ~/src/my-project
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from . import bridge_dir, default_debug_log_path, resolve_codex_home
from .logging_config import PRIMARY_LOG_FILENAME, setup_logger

logger = setup_logger("plugin_bridge.config", PRIMARY_LOG_FILENAME)

DEFAULT_POLL_MS = 600
MIN_POLL_MS = 200

CONFIG_ENV = "CODEX_PLUGIN_BRIDGE_CONFIG"
DEBUG_LOG_PATH_ENV = "CODEX_PLUGIN_BRIDGE_DEBUG_LOG_PATH"


@dataclass(frozen=True)
class BridgeConfig:
    codex_home: Path
    project_root: Optional[str] = None
    since: Optional[float] = None
    watch: bool = False
    emit_stop: bool = False
    poll_ms: int = DEFAULT_POLL_MS
    quiet: bool = True
    debug_log_path: Optional[Path] = None

    @property
    def poll_seconds(self) -> float:
        return self.poll_ms / 1000.0

    @classmethod
    def load(
        cls,
        *,
        codex_home: Optional[str | Path] = None,
        project_root: Optional[str | Path] = None,
        since: Optional[float] = None,
        watch: bool = False,
        emit_stop: bool = False,
        poll_ms: Optional[int] = None,
        verbose: Optional[bool] = None,
        debug_log: Optional[bool] = None,
        debug_log_path: Optional[str | Path] = None,
    ) -> "BridgeConfig":
        home = resolve_codex_home(codex_home)
        file_values = load_config_file(config_file_path(home))

        root = project_root or file_values.get("project_root")
        resolved_root = str(Path(root).expanduser().resolve()) if root else None

        return cls(
            codex_home=home,
            project_root=resolved_root,
            since=_validated_since(since),
            watch=watch,
            emit_stop=emit_stop,
            poll_ms=_validated_poll_ms(poll_ms if poll_ms is not None else file_values.get("poll_ms")),
            quiet=not _first_bool(verbose, file_values.get("verbose"), False),
            debug_log_path=_resolve_debug_log_path(
                home,
                enabled=_first_bool(debug_log, file_values.get("debug_log"), True),
                override=debug_log_path,
                file_value=file_values.get("debug_log_path"),
            ),
        )


def config_file_path(codex_home: Path) -> Path:
    env_path = os.environ.get(CONFIG_ENV, "").strip()
    if env_path:
        return Path(env_path).expanduser()
    return bridge_dir(codex_home) / "config.yaml"


def load_config_file(path: Path) -> dict[str, Any]:
    """Read the YAML config (best-effort). Missing or malformed files give {}."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable bridge config {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring bridge config {path}: expected a mapping")
        return {}
    return data


def _first_bool(*values: Any) -> bool:
    for value in values:
        if isinstance(value, bool):
            return value
    return False


def _validated_poll_ms(value: Any) -> int:
    if value is None:
        return DEFAULT_POLL_MS
    try:
        poll_ms = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid poll interval {value!r}, using {DEFAULT_POLL_MS}ms")
        return DEFAULT_POLL_MS
    if poll_ms < MIN_POLL_MS:
        logger.warning(
            f"Ignoring poll interval {poll_ms}ms (minimum {MIN_POLL_MS}ms), using {DEFAULT_POLL_MS}ms"
        )
        return DEFAULT_POLL_MS
    return poll_ms


def _validated_since(value: Optional[float]) -> Optional[float]:
    if value is None or value <= 0:
        return None
    return float(value)


def _resolve_debug_log_path(
    codex_home: Path, *, enabled: bool, override: Optional[str | Path], file_value: Any
) -> Optional[Path]:
    if not enabled:
        return None
    if override:
        return Path(override).expanduser().resolve()
    env_path = os.environ.get(DEBUG_LOG_PATH_ENV, "").strip()
    if env_path:
        return Path(env_path).expanduser().resolve()
    if isinstance(file_value, str) and file_value.strip():
        return Path(file_value.strip()).expanduser().resolve()
    return default_debug_log_path(codex_home)
