"""End-to-end tests for the bridge run loop."""

import json
import os

import pytest

from plugin_bridge import watch_lock_path
from plugin_bridge.config import BridgeConfig
from plugin_bridge.debug_log import DebugLogger
from plugin_bridge.dedup import RECENT_EVENT_TTL_MS, RecentEventCache
from plugin_bridge.runner import BridgeRunner

from helpers import (
    FakeClock,
    append_lines,
    event_line,
    function_call_line,
    make_rule,
    make_source,
    read_nonempty_lines,
    session_path,
    write_manifest,
)

TASK_LINES = [
    event_line("task_started", timestamp="2026-02-28T10:00:00.000Z"),
    event_line("agent_message", timestamp="2026-02-28T10:00:01.000Z", message="working"),
    event_line("agent_message", timestamp="2026-02-28T10:00:02.000Z", message="done"),
    event_line("task_complete", timestamp="2026-02-28T10:00:03.000Z", last_agent_message="done"),
]


def _write_task_complete_hook(codex_home, plugin_root, event_name="TaskComplete"):
    write_manifest(
        codex_home,
        plugins=[make_source(plugin_root, [
            make_rule(event_name, f'echo {event_name} >> "$CLAUDE_PLUGIN_ROOT/out.log"'),
        ])],
    )
    return plugin_root / "out.log"


def _runner(codex_home, **kwargs):
    kwargs.setdefault("debug_log", False)
    return BridgeRunner(BridgeConfig.load(codex_home=codex_home, **kwargs))


def _runner_with(codex_home, **runner_kwargs):
    return BridgeRunner(BridgeConfig.load(codex_home=codex_home, debug_log=False), **runner_kwargs)


# =============================================================================
# Once mode
# =============================================================================

class TestRunOnce:

    def test_task_complete_fires_once(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root)
        append_lines(session_path(codex_home), TASK_LINES)

        stats = _runner(codex_home).run_once()

        assert read_nonempty_lines(out) == ["TaskComplete"]
        assert stats.lines == 4
        assert stats.dispatched == 4

    def test_no_sessions_is_a_noop(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root)
        stats = _runner(codex_home).run_once()
        assert stats.lines == 0
        assert not out.exists()

    def test_missing_manifest_still_reads_sessions(self, codex_home):
        append_lines(session_path(codex_home), TASK_LINES)
        stats = _runner(codex_home).run_once()
        assert stats.dispatched == 4

    def test_since_skips_older_events(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root)
        append_lines(session_path(codex_home), [
            event_line("task_complete", timestamp="2026-02-28T09:00:00.000Z"),
            event_line("task_complete", timestamp="2026-02-28T11:00:00.000Z"),
            json.dumps({"type": "event_msg", "payload": {"type": "task_complete"}}),
        ])
        # 2026-02-28T10:00:00Z
        stats = _runner(codex_home, since=1772272800).run_once()

        # The undated record is not filtered.
        assert read_nonempty_lines(out) == ["TaskComplete", "TaskComplete"]
        assert stats.skipped_since == 1

    def test_duplicate_lines_dispatch_once(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root)
        line = event_line("task_complete")
        append_lines(session_path(codex_home, "a.jsonl"), [line, line])
        append_lines(session_path(codex_home, "b.jsonl"), [line])

        stats = _runner(codex_home).run_once()

        assert read_nonempty_lines(out) == ["TaskComplete"]
        assert stats.deduped == 2

    def test_injected_dedup_cache_is_used(self, codex_home):
        cache = RecentEventCache(clock=FakeClock())
        assert _runner_with(codex_home, dedup=cache).dedup is cache

    def test_repeat_after_ttl_dispatches_again(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root)
        session = session_path(codex_home)
        clock = FakeClock()
        runner = _runner_with(codex_home, dedup=RecentEventCache(clock=clock))
        line = event_line("task_complete")

        append_lines(session, [line])
        runner.run_pass()
        clock.advance(RECENT_EVENT_TTL_MS + 1_000)
        append_lines(session, [line])
        stats = runner.run_pass()

        assert stats.deduped == 0
        assert read_nonempty_lines(out) == ["TaskComplete", "TaskComplete"]

    def test_repeat_within_ttl_is_suppressed(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root)
        session = session_path(codex_home)
        clock = FakeClock()
        runner = _runner_with(codex_home, dedup=RecentEventCache(clock=clock))
        line = event_line("task_complete")

        append_lines(session, [line])
        runner.run_pass()
        clock.advance(RECENT_EVENT_TTL_MS - 1_000)
        append_lines(session, [line])
        stats = runner.run_pass()

        assert stats.deduped == 1
        assert read_nonempty_lines(out) == ["TaskComplete"]

    def test_escalated_call_fires_permission_hook(self, codex_home, plugin_root):
        write_manifest(
            codex_home,
            plugins=[make_source(plugin_root, [
                make_rule("PermissionRequest", 'echo "$CRS_CALL_ID" >> "$CLAUDE_PLUGIN_ROOT/out.log"',
                          matcher="rm -rf"),
            ])],
        )
        append_lines(session_path(codex_home), [
            function_call_line("shell", {"command": ["rm", "-rf", "build"],
                                         "sandbox_permissions": "require_escalated"}, call_id="c1"),
            function_call_line("shell", {"command": ["ls"]}, call_id="c2"),
        ])
        _runner(codex_home).run_once()
        assert read_nonempty_lines(plugin_root / "out.log") == ["c1"]

    def test_emit_stop(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root, event_name="Stop")
        _runner(codex_home, emit_stop=True).run_once()
        assert read_nonempty_lines(out) == ["Stop"]

    def test_project_root_falls_back_to_manifest(self, codex_home, plugin_root):
        write_manifest(
            codex_home,
            plugins=[make_source(plugin_root, [
                make_rule("Stop", 'echo "$CLAUDE_PROJECT_ROOT" >> "$CLAUDE_PLUGIN_ROOT/out.log"'),
            ])],
            project_root="/work/from-manifest",
        )
        _runner(codex_home, emit_stop=True).run_once()
        assert read_nonempty_lines(plugin_root / "out.log") == ["/work/from-manifest"]

    def test_debug_trace_brackets_the_run(self, codex_home, plugin_root):
        _write_task_complete_hook(codex_home, plugin_root)
        append_lines(session_path(codex_home), TASK_LINES)
        log = codex_home / "trace.log"

        _runner(codex_home, debug_log=True, debug_log_path=log).run_once()

        records = [json.loads(line) for line in read_nonempty_lines(log)]
        assert records[0]["kind"] == "bridge-start"
        assert records[0]["mode"] == "once"
        assert records[0]["sessionFileCount"] == 1
        assert records[-1]["kind"] == "bridge-stop"
        assert "hook-command-finish" in [r["kind"] for r in records]


# =============================================================================
# Watch mode
# =============================================================================

class TestWatch:

    def test_final_pass_after_stop(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root)
        session = session_path(codex_home)
        append_lines(session, TASK_LINES)
        runner = _runner(codex_home, watch=True)
        sleeps = []

        def fake_sleep(seconds):
            sleeps.append(seconds)
            append_lines(session, [event_line("task_complete", timestamp="2026-02-28T10:05:00.000Z")])
            runner.request_stop()

        runner._sleep = fake_sleep
        assert runner.watch(install_signal_handlers=False) is True

        assert sleeps == [0.6]
        assert read_nonempty_lines(out) == ["TaskComplete", "TaskComplete"]
        assert not watch_lock_path(codex_home).exists()

    def test_stop_before_first_poll_still_runs_a_pass(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root)
        append_lines(session_path(codex_home), TASK_LINES)
        runner = _runner(codex_home, watch=True)
        runner.request_stop()

        runner.watch(install_signal_handlers=False)

        assert read_nonempty_lines(out) == ["TaskComplete"]
        assert runner.stopping

    def test_busy_lock_exits_without_dispatch(self, codex_home, plugin_root):
        out = _write_task_complete_hook(codex_home, plugin_root)
        append_lines(session_path(codex_home), TASK_LINES)
        lock = watch_lock_path(codex_home)
        lock.write_text(json.dumps({"pid": os.getppid()}), encoding="utf-8")
        log = codex_home / "trace.log"

        runner = _runner(codex_home, watch=True, debug_log=True, debug_log_path=log)
        assert runner.watch(install_signal_handlers=False) is False

        assert not out.exists()
        assert lock.exists()
        last = json.loads(read_nonempty_lines(log)[-1])
        assert last["kind"] == "bridge-stop"
        assert last["reason"] == "lock-busy"

    def test_lock_released_when_pass_raises(self, codex_home, monkeypatch):
        runner = _runner(codex_home, watch=True)

        def boom(files=None):
            raise RuntimeError("boom")

        monkeypatch.setattr(runner, "run_pass", boom)
        with pytest.raises(RuntimeError):
            runner.watch(install_signal_handlers=False)
        assert not watch_lock_path(codex_home).exists()

    def test_run_dispatches_on_watch_flag(self, codex_home):
        runner = _runner(codex_home)
        calls = []
        runner.run_once = lambda: calls.append("once")
        runner.watch = lambda: calls.append("watch") or True
        assert runner.run() is True
        assert calls == ["once"]

    def test_injected_debug_logger(self, codex_home, tmp_path):
        log = tmp_path / "injected.log"
        runner = BridgeRunner(
            BridgeConfig.load(codex_home=codex_home, debug_log=False),
            debug_log=DebugLogger(log),
        )
        runner.run_once()
        kinds = [json.loads(line)["kind"] for line in read_nonempty_lines(log)]
        assert kinds == ["bridge-start", "bridge-stop"]
