"""Bridge run loop.

Two modes:

- once: tail every session file a single time, optionally dispatch a
  synthetic ``Stop`` event, exit.
- watch: reap competing watchers, take the watch lock (or quietly give up),
  then poll session files until SIGINT/SIGTERM. One last pass always runs
  after the stop request so events written during shutdown still fire.

Everything happens on one thread. The poll sleep is the only wait, and slow
hooks delay the next poll.
"""

from __future__ import annotations

import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from . import manifest_path, sessions_root, watch_lock_path
from .config import BridgeConfig
from .debug_log import DebugLogger
from .dedup import RecentEventCache
from .dispatcher import HookDispatcher
from .events import STOP_EVENT, Event, normalize_line
from .logging_config import PRIMARY_LOG_FILENAME, setup_logger
from .manifest import Manifest, load_manifest
from .reaper import cleanup_competing_watchers
from .sessions import TailState, collect_session_files, read_new_lines
from .watch_lock import WatchLock

logger = setup_logger("plugin_bridge.runner", PRIMARY_LOG_FILENAME)


@dataclass
class PassStats:
    lines: int = 0
    events: int = 0
    skipped_since: int = 0
    deduped: int = 0
    dispatched: int = 0

    def add(self, other: "PassStats") -> None:
        self.lines += other.lines
        self.events += other.events
        self.skipped_since += other.skipped_since
        self.deduped += other.deduped
        self.dispatched += other.dispatched


class BridgeRunner:
    """Owns the per-run state: tail offsets, dedup cache, manifest and dispatcher."""

    def __init__(
        self,
        config: BridgeConfig,
        *,
        manifest: Optional[Manifest] = None,
        debug_log: Optional[DebugLogger] = None,
        dedup: Optional[RecentEventCache] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.debug_log = debug_log if debug_log is not None else DebugLogger(config.debug_log_path)
        self.manifest = manifest if manifest is not None else load_manifest(manifest_path(config.codex_home))
        self.dispatcher = HookDispatcher(
            self.manifest,
            project_root=config.project_root or self.manifest.project_root,
            quiet=config.quiet,
            debug_log=self.debug_log,
        )
        self.tail_state = TailState()
        self.dedup = dedup if dedup is not None else RecentEventCache()
        self.sessions_root = sessions_root(config.codex_home)
        self._sleep = sleep
        self._stopping = False

    @property
    def stopping(self) -> bool:
        return self._stopping

    def request_stop(self, *_args) -> None:
        if not self._stopping:
            logger.info("Stop requested, running final pass")
        self._stopping = True

    def _start_fields(self) -> dict:
        return {
            "codexHome": str(self.config.codex_home),
            "projectRoot": self.config.project_root or "",
            "since": self.config.since,
            "watch": self.config.watch,
            "manifestPath": str(self.manifest.path),
            "pluginCount": len(self.manifest.plugins),
            "topHookCount": len(self.manifest.top_hooks),
        }

    def collect_files(self) -> list[Path]:
        return collect_session_files(self.sessions_root, self.config.since)

    def process_line(self, line: str, source_file: Path, stats: PassStats) -> None:
        if not line.strip():
            return
        stats.lines += 1

        event = normalize_line(line)
        if event is None:
            return
        stats.events += 1

        since = self.config.since
        if since and event.timestamp_sec is not None and event.timestamp_sec < since:
            stats.skipped_since += 1
            return

        if self.dedup.check_and_record(line):
            stats.deduped += 1
            self.debug_log.event("event-deduped", rawType=event.raw_type, sourceFile=str(source_file))
            return

        self.dispatcher.dispatch(event)
        stats.dispatched += 1

    def process_file(self, path: Path) -> PassStats:
        """Tail one session file and dispatch the complete lines appended since last time."""
        stats = PassStats()
        entry = self.tail_state.get(path)
        try:
            lines = read_new_lines(entry)
        except OSError as e:
            # Rotated away between listing and reading.
            logger.debug(f"Skipping unreadable session file {path}: {e}")
            return stats
        for line in lines:
            self.process_line(line, path, stats)
        return stats

    def run_pass(self, files: Optional[list[Path]] = None) -> PassStats:
        totals = PassStats()
        for path in files if files is not None else self.collect_files():
            totals.add(self.process_file(path))
        return totals

    def emit_stop(self) -> None:
        self.dispatcher.dispatch(Event(raw_type=STOP_EVENT, payload={}))

    def run_once(self) -> PassStats:
        files = self.collect_files()
        self.debug_log.event(
            "bridge-start", mode="once", **self._start_fields(), sessionFileCount=len(files)
        )
        logger.info(f"Bridge once: {len(files)} session files under {self.sessions_root}")

        stats = self.run_pass(files)
        if self.config.emit_stop:
            self.emit_stop()

        logger.info(
            f"Bridge once done: {stats.dispatched} dispatched, {stats.deduped} deduped, "
            f"{stats.skipped_since} before --since"
        )
        self.debug_log.event("bridge-stop", mode="once")
        return stats

    def watch(self, *, install_signal_handlers: bool = True) -> bool:
        """Poll until stopped. Returns False if another watcher holds the lock."""
        self.debug_log.event(
            "bridge-start", mode="watch", **self._start_fields(), pollMs=self.config.poll_ms
        )

        cleanup_competing_watchers(self.config.codex_home, self.config.project_root, self.debug_log)

        lock = WatchLock.acquire(watch_lock_path(self.config.codex_home), self.debug_log)
        if lock is None:
            logger.info("Another watcher holds the watch lock, exiting")
            self.debug_log.event("bridge-stop", mode="watch", reason="lock-busy")
            return False

        previous_handlers = {}
        if install_signal_handlers:
            for signum in (signal.SIGINT, signal.SIGTERM):
                previous_handlers[signum] = signal.signal(signum, self.request_stop)

        try:
            initial_files = self.collect_files()
            self.tail_state.prime(initial_files)
            self.debug_log.event("watch-initialized", trackedFileCount=len(initial_files))
            logger.info(
                f"Watching {len(initial_files)} session files every {self.config.poll_ms}ms "
                f"(pid lock {lock.lock_path})"
            )

            while True:
                # A stop seen here still gets this full pass.
                final_pass = self._stopping
                files = self.collect_files()
                self.tail_state.prime(files)
                self.run_pass(files)

                if final_pass:
                    break
                if self._stopping:
                    continue

                self._sleep(self.config.poll_seconds)
        finally:
            lock.release()
            for signum, handler in previous_handlers.items():
                signal.signal(signum, handler)

        logger.info("Watch stopped")
        self.debug_log.event("bridge-stop", mode="watch")
        return True

    def run(self) -> bool:
        if self.config.watch:
            return self.watch()
        self.run_once()
        return True
