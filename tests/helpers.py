"""Builders for manifests and Codex session logs used across tests."""
import json
from pathlib import Path


def write_json(path: Path, value) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(value, indent=2) + "\n", encoding="utf-8")
    return path


def make_source(root: Path, events, *, source_id="home:demo-plugin", name="demo-plugin"):
    return {
        "id": source_id,
        "sourceType": "home",
        "name": name,
        "rootPath": str(root),
        "hookConfigPath": str(root / "hooks" / "hooks.json"),
        "events": events,
    }


def make_rule(event_name, command, *, matcher=None, timeout=10):
    return {
        "eventName": event_name,
        "matcher": matcher,
        "commands": [{"command": command, "timeout": timeout}],
    }


def write_manifest(codex_home: Path, plugins=(), top_hooks=(), project_root=None) -> Path:
    return write_json(
        codex_home / "plugins" / "claude-bridge" / "manifest.json",
        {
            "version": 1,
            "projectRoot": project_root,
            "plugins": list(plugins),
            "topHooks": list(top_hooks),
        },
    )


def event_line(raw_type: str, timestamp="2026-02-28T10:00:00.000Z", **payload) -> str:
    return json.dumps(
        {"type": "event_msg", "timestamp": timestamp, "payload": {"type": raw_type, **payload}}
    )


def function_call_line(name: str, arguments: dict, *, call_id="call_1", timestamp="2026-02-28T10:00:00.000Z") -> str:
    return json.dumps(
        {
            "type": "response_item",
            "timestamp": timestamp,
            "payload": {
                "type": "function_call",
                "name": name,
                "arguments": json.dumps(arguments),
                "call_id": call_id,
            },
        }
    )


def session_path(codex_home: Path, name="rollout-session.jsonl", day=("2026", "02", "28")) -> Path:
    path = codex_home.joinpath("sessions", *day, name)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def append_lines(path: Path, lines, *, trailing_newline=True) -> None:
    text = "\n".join(lines) + ("\n" if trailing_newline else "")
    with path.open("a", encoding="utf-8") as f:
        f.write(text)


def read_nonempty_lines(path: Path) -> list:
    if not path.exists():
        return []
    return [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


class FakeClock:
    """Millisecond clock for the dedup cache."""

    def __init__(self, now_ms: int = 1_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms
