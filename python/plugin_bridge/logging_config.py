"""
Plugin Bridge Logging Configuration

Provides centralized logging setup for the bridge.
Supports file rotation and environment variable configuration.
"""

from __future__ import annotations

import logging
import os
import sys
import tempfile
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional


_LOG_DIR_CACHE: tuple[str | None, Path] | None = None
PRIMARY_LOG_FILENAME = "plugin-bridge-runtime.log"
LOGGER_ROOT = "plugin_bridge"

_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_log_level() -> int:
    """
    Get log level from environment variable or default to INFO.

    Environment variable: PLUGIN_BRIDGE_LOG_LEVEL
    Valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL
    """
    level_name = os.getenv("PLUGIN_BRIDGE_LOG_LEVEL", "INFO").upper()

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    return level_map.get(level_name, logging.INFO)


def _codex_home_log_dir() -> Optional[str]:
    codex_home = os.getenv("CODEX_HOME", "").strip()
    return str(Path(codex_home).expanduser() / "log") if codex_home else None


def get_log_directory() -> Path:
    """
    Get the log directory path.

    Default: $CODEX_HOME/log/ (~/.codex/log/ without CODEX_HOME).
    Can be overridden with PLUGIN_BRIDGE_LOG_DIR environment variable.
    """
    global _LOG_DIR_CACHE

    log_dir_str = os.getenv("PLUGIN_BRIDGE_LOG_DIR") or _codex_home_log_dir()
    if _LOG_DIR_CACHE is not None and _LOG_DIR_CACHE[0] == log_dir_str:
        return _LOG_DIR_CACHE[1]

    candidates: list[Path] = []
    if log_dir_str:
        candidates.append(Path(log_dir_str).expanduser())
    else:
        candidates.append(Path.home() / ".codex" / "log")

    # Fallback for restricted environments (e.g., sandboxed runners).
    candidates.append(Path(tempfile.gettempdir()) / "plugin-bridge-logs")

    def can_write_files(directory: Path) -> bool:
        try:
            directory.mkdir(parents=True, exist_ok=True)
            probe = directory / f".write_probe_{os.getpid()}_{os.urandom(4).hex()}"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink(missing_ok=True)
            return True
        except OSError:
            return False

    for candidate in candidates:
        if can_write_files(candidate):
            _LOG_DIR_CACHE = (log_dir_str, candidate)
            return candidate

    # Keep callers deterministic; the logger falls back to stderr-only.
    chosen = candidates[0]
    _LOG_DIR_CACHE = (log_dir_str, chosen)
    return chosen


def get_primary_log_path() -> Path:
    """Get canonical log file path ($CODEX_HOME/log/plugin-bridge-runtime.log by default)."""
    return get_log_directory() / PRIMARY_LOG_FILENAME


def setup_logger(
    name: str,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    console_output: bool = False,
) -> logging.Logger:
    """
    Set up a logger with file rotation and optional console output.

    Args:
        name: Logger name (e.g., 'plugin_bridge.runner')
        log_file: Log filename hint. Only the primary runtime log is persisted to file.
        max_bytes: Maximum size of the log file before rotation (default: 10MB)
        console_output: Whether to also output to stderr (default: False)

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logger('plugin_bridge.runner', PRIMARY_LOG_FILENAME)
        >>> logger.info("Watch started")
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        # Keep logger level in sync with env var, but avoid duplicating handlers.
        logger.setLevel(get_log_level())
        return logger

    logger.setLevel(get_log_level())
    logger.propagate = False

    if log_file and log_file == PRIMARY_LOG_FILENAME:
        _add_file_handler(logger, get_primary_log_path(), max_bytes)

    if console_output:
        _add_console_handler(logger)

    return logger


def _add_file_handler(logger: logging.Logger, path: Path, max_bytes: int) -> None:
    try:
        file_handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=0, encoding="utf-8")
    except OSError as e:
        # Don't let logging setup break the bridge.
        print(f"Warning: Failed to set up file logging: {e}", file=sys.stderr)
        return
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
    logger.addHandler(file_handler)


def _add_console_handler(logger: logging.Logger) -> None:
    console_handler = logging.StreamHandler()
    console_handler.setLevel(get_log_level())
    console_handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))
    console_handler.set_name("plugin_bridge.console")
    logger.addHandler(console_handler)


def enable_console_logging() -> None:
    """Attach a stderr handler to every bridge logger created so far (used by --verbose)."""
    for logger in _bridge_loggers():
        if any(h.get_name() == "plugin_bridge.console" for h in logger.handlers):
            continue
        _add_console_handler(logger)


def _bridge_loggers() -> list[logging.Logger]:
    names = [
        name for name in list(logging.Logger.manager.loggerDict)
        if name == LOGGER_ROOT or name.startswith(LOGGER_ROOT + ".")
    ]
    return [logging.getLogger(name) for name in names]


def use_codex_home_log_directory(codex_home: Path) -> Optional[Path]:
    """Move the runtime log under ``codex_home/log`` for loggers created so far.

    Used when ``--codex-home`` differs from the environment. An explicit
    PLUGIN_BRIDGE_LOG_DIR always wins. Returns the new log path, or None if
    nothing moved.
    """
    global _LOG_DIR_CACHE

    if os.getenv("PLUGIN_BRIDGE_LOG_DIR"):
        return None
    directory = Path(codex_home) / "log"
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None
    new_path = directory / PRIMARY_LOG_FILENAME
    if new_path == get_primary_log_path():
        return None

    _LOG_DIR_CACHE = (_codex_home_log_dir(), directory)
    for logger in _bridge_loggers():
        moved = False
        for handler in list(logger.handlers):
            if isinstance(handler, RotatingFileHandler):
                logger.removeHandler(handler)
                handler.close()
                moved = True
        if moved:
            _add_file_handler(logger, new_path, 10 * 1024 * 1024)
    return new_path
