"""Bridge manifest loading.

The manifest is produced by the sync tool and maps Claude hook event names to
shell commands, grouped by the plugin (or top-level hook file) that declared
them. The bridge only reads it; shape::

    {
      "version": 1,
      "projectRoot": "/path" | null,
      "plugins":  [HookSource, ...],
      "topHooks": [HookSource, ...]
    }

Entries that don't have the expected shape are skipped one by one instead of
invalidating the whole file.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .exceptions import ManifestError
from .logging_config import PRIMARY_LOG_FILENAME, setup_logger

logger = setup_logger("plugin_bridge.manifest", PRIMARY_LOG_FILENAME)

DEFAULT_HOOK_TIMEOUT_SEC = 10.0


@dataclass(frozen=True)
class HookCommand:
    command: str
    timeout_sec: float = DEFAULT_HOOK_TIMEOUT_SEC


@dataclass(frozen=True)
class EventRule:
    event_name: str
    matcher: Optional[str] = None
    commands: tuple[HookCommand, ...] = ()

    def matches(self, matcher_text: str) -> bool:
        """A rule without matcher always matches; an invalid pattern never does."""
        if not self.matcher:
            return True
        pattern = _compile_matcher(self.matcher)
        if pattern is None:
            return False
        return pattern.search(matcher_text) is not None


@dataclass(frozen=True)
class HookSource:
    id: str
    source_type: str
    name: str
    root_path: str
    rules: tuple[EventRule, ...] = ()
    hook_config_path: str = ""


@dataclass(frozen=True)
class Manifest:
    path: Path
    version: int = 1
    project_root: Optional[str] = None
    plugins: tuple[HookSource, ...] = ()
    top_hooks: tuple[HookSource, ...] = ()

    @property
    def sources(self) -> list[HookSource]:
        """Plugin sources first, then top-level hook sources."""
        return [*self.plugins, *self.top_hooks]

    @property
    def is_empty(self) -> bool:
        return not self.plugins and not self.top_hooks


_MATCHER_CACHE: dict[str, Optional[re.Pattern[str]]] = {}


def _compile_matcher(matcher: str) -> Optional[re.Pattern[str]]:
    if matcher in _MATCHER_CACHE:
        return _MATCHER_CACHE[matcher]
    try:
        pattern: Optional[re.Pattern[str]] = re.compile(matcher)
    except re.error as e:
        logger.warning(f"Ignoring invalid hook matcher {matcher!r}: {e}")
        pattern = None
    _MATCHER_CACHE[matcher] = pattern
    return pattern


def _str_or_empty(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _parse_timeout(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_HOOK_TIMEOUT_SEC
    if not math.isfinite(value):
        return DEFAULT_HOOK_TIMEOUT_SEC
    return float(value)


def _parse_commands(raw: Any) -> tuple[HookCommand, ...]:
    if not isinstance(raw, list):
        return ()
    out: list[HookCommand] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        command = item.get("command")
        if not isinstance(command, str) or not command.strip():
            continue
        out.append(HookCommand(command=command, timeout_sec=_parse_timeout(item.get("timeout"))))
    return tuple(out)


def _parse_rules(raw: Any) -> tuple[EventRule, ...]:
    if not isinstance(raw, list):
        return ()
    out: list[EventRule] = []
    for item in raw:
        if not isinstance(item, dict) or not isinstance(item.get("eventName"), str):
            continue
        matcher = item.get("matcher")
        out.append(
            EventRule(
                event_name=item["eventName"],
                matcher=matcher if isinstance(matcher, str) and matcher else None,
                commands=_parse_commands(item.get("commands")),
            )
        )
    return tuple(out)


def parse_hook_source(raw: Any) -> Optional[HookSource]:
    if not isinstance(raw, dict):
        return None
    return HookSource(
        id=_str_or_empty(raw.get("id")),
        source_type=_str_or_empty(raw.get("sourceType")),
        name=_str_or_empty(raw.get("name")),
        root_path=_str_or_empty(raw.get("rootPath")),
        rules=_parse_rules(raw.get("events")),
        hook_config_path=_str_or_empty(raw.get("hookConfigPath")),
    )


def _parse_sources(raw: Any) -> tuple[HookSource, ...]:
    if not isinstance(raw, list):
        return ()
    sources = (parse_hook_source(item) for item in raw)
    return tuple(s for s in sources if s is not None)


def manifest_from_dict(data: Any, path: Path) -> Manifest:
    if not isinstance(data, dict):
        return Manifest(path=path)
    version = data.get("version")
    project_root = data.get("projectRoot")
    return Manifest(
        path=path,
        version=version if isinstance(version, int) and not isinstance(version, bool) else 1,
        project_root=project_root if isinstance(project_root, str) and project_root else None,
        plugins=_parse_sources(data.get("plugins")),
        top_hooks=_parse_sources(data.get("topHooks")),
    )


def load_manifest(path: Path) -> Manifest:
    """Load the manifest at ``path``.

    A missing, blank or non-JSON manifest yields an empty manifest. Only an
    I/O failure on an existing file raises :class:`ManifestError`.
    """
    if not path.exists():
        logger.debug(f"Manifest not found: {path}")
        return Manifest(path=path)

    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        logger.warning(f"Manifest {path} is not UTF-8 text, treating as empty: {e}")
        return Manifest(path=path)
    except OSError as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e

    if not raw.strip():
        return Manifest(path=path)

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Manifest {path} is not valid JSON, treating as empty: {e}")
        return Manifest(path=path)

    manifest = manifest_from_dict(data, path)
    logger.info(
        f"Loaded manifest {path}: {len(manifest.plugins)} plugin sources, "
        f"{len(manifest.top_hooks)} top-level sources"
    )
    return manifest
