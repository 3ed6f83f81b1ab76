"""Run manifest hook commands for normalized Codex events.

Commands run one after another in ``bash -lc`` and block the caller until they
exit or hit their timeout. A failing command is logged and never stops the
remaining commands or events.
"""

from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Optional

from .debug_log import DebugLogger
from .events import STOP_EVENT, Event, safe_string_value
from .manifest import EventRule, HookCommand, HookSource, Manifest
from .logging_config import PRIMARY_LOG_FILENAME, setup_logger

logger = setup_logger("plugin_bridge.dispatcher", PRIMARY_LOG_FILENAME)

HOOK_SHELL = ("bash", "-lc")


@dataclass(frozen=True)
class HookResult:
    ok: bool
    status: Optional[int] = None
    signal: str = ""
    error: str = ""
    timed_out: bool = False
    duration_ms: int = 0


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)


def run_hook_command(
    command: str, timeout_sec: float, context_env: dict[str, str], *, quiet: bool = True
) -> HookResult:
    """Run one hook command and describe how it ended. Never raises."""
    started = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    output = subprocess.DEVNULL if quiet else None
    try:
        proc = subprocess.run(
            [*HOOK_SHELL, command],
            env={**os.environ, **context_env},
            stdin=subprocess.DEVNULL,
            stdout=output,
            stderr=output,
            timeout=max(1.0, float(timeout_sec)),
            check=False,
        )
    except subprocess.TimeoutExpired:
        return HookResult(
            ok=False,
            signal="SIGKILL",
            error=f"timed out after {max(1.0, float(timeout_sec)):g}s",
            timed_out=True,
            duration_ms=elapsed_ms(),
        )
    except OSError as e:
        return HookResult(ok=False, error=str(e), duration_ms=elapsed_ms())

    if proc.returncode < 0:
        return HookResult(ok=False, signal=_signal_name(-proc.returncode), duration_ms=elapsed_ms())
    return HookResult(ok=proc.returncode == 0, status=proc.returncode, duration_ms=elapsed_ms())


class HookDispatcher:
    """Matches events against the manifest rules and runs their commands."""

    def __init__(
        self,
        manifest: Manifest,
        *,
        project_root: Optional[str] = None,
        quiet: bool = True,
        debug_log: Optional[DebugLogger] = None,
    ):
        self.manifest = manifest
        self.project_root = project_root or ""
        self.quiet = quiet
        self.debug_log = debug_log or DebugLogger(None)

    def matching_rules(self, event: Event) -> list[tuple[HookSource, EventRule]]:
        names = event.names
        matcher_text = event.matcher_text
        out: list[tuple[HookSource, EventRule]] = []
        for source in self.manifest.sources:
            for rule in source.rules:
                if rule.event_name not in names:
                    continue
                if not rule.matches(matcher_text):
                    continue
                out.append((source, rule))
        return out

    def context_env(self, event: Event, source: HookSource) -> dict[str, str]:
        payload = event.payload or {}
        return {
            "CLAUDE_PLUGIN_ROOT": source.root_path,
            "CLAUDE_PROJECT_ROOT": self.project_root,
            "CRS_EVENT_TYPE": event.names[0],
            "CRS_EVENT_RAW_TYPE": event.raw_type,
            "CRS_EVENT_MATCHER_TEXT": event.matcher_text,
            "CRS_EVENT_REASON": safe_string_value(payload.get("reason")),
            "CRS_CALL_ID": safe_string_value(payload.get("call_id")),
        }

    def dispatch(self, event: Event) -> list[HookResult]:
        """Run every command of every matching rule, in manifest order."""
        names = event.names
        matcher_text = event.matcher_text
        traced = event.has_special_mapping or event.raw_type == STOP_EVENT

        if traced:
            self.debug_log.event(
                "event-received",
                rawType=event.raw_type,
                mappedTypes=names,
                matcherText=matcher_text,
            )

        results: list[HookResult] = []
        for source, rule in self.matching_rules(event):
            env = self.context_env(event, source)
            for hook in rule.commands:
                results.append(self._run(hook, source, rule, env))

        if traced and not results:
            self.debug_log.event(
                "event-no-hook-executed",
                rawType=event.raw_type,
                mappedTypes=names,
                matcherText=matcher_text,
            )
        return results

    def _run(
        self, hook: HookCommand, source: HookSource, rule: EventRule, env: dict[str, str]
    ) -> HookResult:
        self.debug_log.event(
            "hook-command-start",
            sourceId=source.id,
            sourceName=source.name,
            eventName=rule.event_name,
            matcher=rule.matcher or "",
            timeoutSec=hook.timeout_sec,
            command=hook.command,
        )

        result = run_hook_command(hook.command, hook.timeout_sec, env, quiet=self.quiet)

        if result.ok:
            logger.debug(f"Hook ok: {source.name or source.id} {rule.event_name}: {hook.command}")
        else:
            logger.warning(
                f"Hook failed: {source.name or source.id} {rule.event_name}: {hook.command} "
                f"(status={result.status}, signal={result.signal or '-'}, "
                f"timed_out={result.timed_out}, error={result.error or '-'})"
            )

        self.debug_log.event(
            "hook-command-finish",
            sourceId=source.id,
            sourceName=source.name,
            eventName=rule.event_name,
            command=hook.command,
            ok=result.ok,
            status=result.status,
            signal=result.signal,
            timedOut=result.timed_out,
            durationMs=result.duration_ms,
            error=result.error,
        )
        return result
