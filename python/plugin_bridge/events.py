"""Codex session log record normalization.

Codex writes one JSON record per line into its rollout files. Two record
shapes can trigger hooks:

- ``event_msg`` records, whose ``payload.type`` is the raw event type
  (``task_started``, ``agent_message``, ``task_complete``, ...).
- ``response_item`` function calls that ask for escalated sandbox
  permissions. Codex has no dedicated approval event in the rollout, so these
  are turned into ``exec_approval_request`` / ``apply_patch_approval_request``.

Both are parsed into their own record type first and then converted into the
single :class:`Event` used by the rest of the bridge. Anything else, including
malformed JSON, is dropped silently.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Union

EXEC_APPROVAL_REQUEST = "exec_approval_request"
APPLY_PATCH_APPROVAL_REQUEST = "apply_patch_approval_request"
STOP_EVENT = "Stop"

ESCALATED_PERMISSION = "require_escalated"

# Raw Codex type -> Claude-style hook names it also satisfies.
# task_complete carries Stop: Codex emits many agent_message events per task,
# Stop hooks must run once per task.
CODEX_EVENT_MAP: dict[str, tuple[str, ...]] = {
    "exec_approval_request": ("PermissionRequest",),
    "apply_patch_approval_request": ("PermissionRequest",),
    "request_user_input": ("PermissionRequest",),
    "task_started": ("TaskStarted",),
    "session_configured": ("TaskStarted",),
    "task_complete": ("TaskComplete", "Stop"),
    "error": ("ToolError",),
    "warning": ("ToolError",),
    "turn_aborted": ("ToolError",),
    "stream_error": ("ToolError",),
    "mcp_startup_complete": ("MCPStartupComplete",),
}


@dataclass(frozen=True)
class Event:
    raw_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp_sec: Optional[int] = None

    @property
    def names(self) -> list[str]:
        return map_event_names(self.raw_type)

    @property
    def has_special_mapping(self) -> bool:
        return bool(CODEX_EVENT_MAP.get(self.raw_type))

    @property
    def matcher_text(self) -> str:
        return build_matcher_text(self)


@dataclass(frozen=True)
class EventMsgRecord:
    payload: dict[str, Any]
    timestamp_sec: Optional[int]

    def to_event(self) -> Event:
        return Event(
            raw_type=self.payload["type"],
            payload=self.payload,
            timestamp_sec=self.timestamp_sec,
        )


@dataclass(frozen=True)
class FunctionCallRecord:
    tool_name: str
    arguments: dict[str, Any]
    call_id: str
    timestamp_sec: Optional[int]

    @property
    def is_escalated(self) -> bool:
        return self.arguments.get("sandbox_permissions") == ESCALATED_PERMISSION

    def to_event(self) -> Event:
        raw_type = (
            APPLY_PATCH_APPROVAL_REQUEST if self.tool_name == "apply_patch" else EXEC_APPROVAL_REQUEST
        )
        payload = {**self.arguments, "tool_name": self.tool_name, "call_id": self.call_id}
        return Event(raw_type=raw_type, payload=payload, timestamp_sec=self.timestamp_sec)


SessionRecord = Union[EventMsgRecord, FunctionCallRecord]

_FRACTION_RE = re.compile(r"(\d{2}:\d{2}:\d{2})\.(\d+)")


def _normalize_fraction(match: "re.Match[str]") -> str:
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits.
    return f"{match.group(1)}.{match.group(2)[:6].ljust(6, '0')}"


def parse_timestamp_ms(raw: Any) -> Optional[int]:
    """ISO-8601 text -> epoch milliseconds. Non-text or unparseable input gives None."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(_normalize_fraction, text, count=1)
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    # Naive timestamps are read as local time.
    return math.floor(dt.timestamp()) * 1000 + dt.microsecond // 1000


def _timestamp_sec(record: dict[str, Any]) -> Optional[int]:
    ms = parse_timestamp_ms(record.get("timestamp"))
    return None if ms is None else ms // 1000


def parse_record(line: str) -> Optional[SessionRecord]:
    """Parse one rollout line into a hook-relevant record, or None."""
    try:
        parsed = json.loads(line)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None

    record_type = parsed.get("type")
    payload = parsed.get("payload")
    if not isinstance(payload, dict):
        return None

    if record_type == "event_msg":
        if not isinstance(payload.get("type"), str):
            return None
        return EventMsgRecord(payload=payload, timestamp_sec=_timestamp_sec(parsed))

    if record_type == "response_item":
        if payload.get("type") != "function_call":
            return None
        tool_name = payload.get("name")
        if not isinstance(tool_name, str) or not tool_name:
            return None
        raw_args = payload.get("arguments")
        if raw_args is None or raw_args == "":
            raw_args = "{}"
        if not isinstance(raw_args, str):
            return None
        try:
            arguments = json.loads(raw_args)
        except ValueError:
            return None
        if not isinstance(arguments, dict):
            return None
        call_id = payload.get("call_id")
        return FunctionCallRecord(
            tool_name=tool_name,
            arguments=arguments,
            call_id=call_id if isinstance(call_id, str) else "",
            timestamp_sec=_timestamp_sec(parsed),
        )

    return None


def normalize_line(line: str) -> Optional[Event]:
    """Turn a raw rollout line into an :class:`Event`, or None if it can't trigger hooks."""
    if not line.strip():
        return None
    record = parse_record(line)
    if record is None:
        return None
    if isinstance(record, FunctionCallRecord) and not record.is_escalated:
        return None
    return record.to_event()


def map_event_names(raw_type: str) -> list[str]:
    """Hook names an event satisfies: mapped names first, the raw type last."""
    return [*CODEX_EVENT_MAP.get(raw_type, ()), raw_type]


def build_matcher_text(event: Event) -> str:
    """Text rule matchers are applied to."""
    payload = event.payload or {}
    parts = [event.raw_type]

    tool_name = payload.get("tool_name")
    if isinstance(tool_name, str):
        parts.append(tool_name)

    command = payload.get("command")
    if isinstance(command, list):
        parts.append(" ".join(_command_part(item) for item in command))
    elif isinstance(command, str):
        parts.append(command)

    for key in ("reason", "justification", "call_id"):
        value = payload.get(key)
        if isinstance(value, str):
            parts.append(value)

    return " ".join(parts)


def _command_part(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def safe_string_value(value: Any) -> str:
    """Render a payload value for a hook environment variable."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
