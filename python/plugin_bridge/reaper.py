"""Terminate older watchers bound to the same target.

The shell hook can start a new ``--watch`` bridge on every Codex launch. Before
taking the watch lock, a new watcher replays the tail of the debug log to find
watchers that announced ``bridge-start`` for the same CODEX_HOME and project
root and never logged ``bridge-stop``, and sends them SIGTERM.

Entries with no activity in the last six hours are ignored: those processes
are long gone and the PID may belong to something else by now. The watch lock
stays the real guarantee; this only helps overlapping watchers converge.
"""

from __future__ import annotations

import json
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .debug_log import DebugLogger, read_tail_text
from .events import parse_timestamp_ms
from .logging_config import PRIMARY_LOG_FILENAME, setup_logger

logger = setup_logger("plugin_bridge.reaper", PRIMARY_LOG_FILENAME)

WATCH_CLEANUP_LOG_TAIL_BYTES = 32 * 1024 * 1024
WATCH_CLEANUP_ACTIVITY_WINDOW_MS = 6 * 60 * 60 * 1000


@dataclass
class WatcherState:
    last_ts_ms: int = 0
    is_watch: bool = False
    is_stopped: bool = False
    codex_home: str = ""
    project_root: str = ""


@dataclass(frozen=True)
class CleanupReport:
    status: str
    parsed_line_count: int = 0
    tracked_pid_count: int = 0
    candidate_count: int = 0
    killed_count: int = 0


def replay_watcher_states(text: str, *, own_pid: int) -> tuple[dict[int, WatcherState], int]:
    """Rebuild per-PID watcher state from debug log text. Returns (states, parsed_lines)."""
    states: dict[int, WatcherState] = {}
    parsed = 0

    for line in text.split("\n"):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except ValueError:
            continue
        if not isinstance(record, dict):
            continue
        parsed += 1

        pid = record.get("pid")
        if not isinstance(pid, int) or isinstance(pid, bool) or pid <= 0 or pid == own_pid:
            continue

        ts_ms = parse_timestamp_ms(record.get("ts")) or 0
        state = states.setdefault(pid, WatcherState())
        if ts_ms > state.last_ts_ms:
            state.last_ts_ms = ts_ms

        kind = record.get("kind")
        if record.get("mode") != "watch":
            continue
        if kind == "bridge-start":
            state.is_watch = True
            state.is_stopped = False
            codex_home = record.get("codexHome")
            project_root = record.get("projectRoot")
            state.codex_home = codex_home if isinstance(codex_home, str) else ""
            state.project_root = project_root if isinstance(project_root, str) else ""
        elif kind == "bridge-stop":
            state.is_stopped = True

    return states, parsed


def find_competing_watchers(
    states: dict[int, WatcherState],
    *,
    codex_home: str,
    project_root: str,
    now_ms: int,
    window_ms: int = WATCH_CLEANUP_ACTIVITY_WINDOW_MS,
) -> list[tuple[int, WatcherState]]:
    out: list[tuple[int, WatcherState]] = []
    for pid, state in states.items():
        if not state.is_watch or state.is_stopped:
            continue
        if state.codex_home != codex_home or state.project_root != project_root:
            continue
        if (now_ms - state.last_ts_ms) > window_ms:
            continue
        out.append((pid, state))
    return out


def cleanup_competing_watchers(
    codex_home: Path,
    project_root: Optional[str],
    debug_log: DebugLogger,
    *,
    kill: Callable[[int, int], None] = os.kill,
    now_ms: Optional[int] = None,
) -> CleanupReport:
    """SIGTERM live watchers recorded for the same target. Never raises on signal failure."""
    if debug_log.path is None:
        return CleanupReport(status="no-debug-log")

    home = str(codex_home)
    root = project_root or ""

    try:
        tail_text = read_tail_text(debug_log.path, WATCH_CLEANUP_LOG_TAIL_BYTES)
    except OSError as e:
        logger.warning(f"Cannot read debug log for watcher cleanup: {e}")
        tail_text = ""

    if not tail_text.strip():
        debug_log.event("watch-cleanup-scan", status="empty-log", codexHome=home, projectRoot=root)
        return CleanupReport(status="empty-log")

    states, parsed = replay_watcher_states(tail_text, own_pid=os.getpid())
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    candidates = find_competing_watchers(states, codex_home=home, project_root=root, now_ms=now_ms)

    killed = 0
    for pid, state in candidates:
        try:
            kill(pid, signal.SIGTERM)
        except OSError as e:
            debug_log.event("watch-cleanup-skip", targetPid=pid, error=str(e))
            continue
        killed += 1
        logger.info(f"Terminated competing watcher pid {pid}")
        debug_log.event(
            "watch-cleanup-terminated",
            targetPid=pid,
            targetProjectRoot=state.project_root,
            targetCodexHome=state.codex_home,
        )

    report = CleanupReport(
        status="completed",
        parsed_line_count=parsed,
        tracked_pid_count=len(states),
        candidate_count=len(candidates),
        killed_count=killed,
    )
    debug_log.event(
        "watch-cleanup-scan",
        status=report.status,
        codexHome=home,
        projectRoot=root,
        parsedLineCount=report.parsed_line_count,
        trackedPidCount=report.tracked_pid_count,
        candidateCount=report.candidate_count,
        killedCount=report.killed_count,
    )
    return report
