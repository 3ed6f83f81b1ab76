"""Structured debug trace for the bridge.

One JSON object per line, appended by every bridge process that shares the
same log path. The competing-watcher reaper reads this file back, so record
kinds and field names are part of the bridge's cross-process contract.

Writing is best-effort: a failing write must never affect event dispatch.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


def _safe_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, default=str, separators=(",", ":"))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DebugLogger:
    """Append-only JSONL writer. A logger without a path discards every record."""

    def __init__(self, path: Optional[Path]):
        self.path = path

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def event(self, kind: str, **fields: Any) -> None:
        if self.path is None:
            return
        payload = {"ts": _now_iso(), "pid": os.getpid(), "kind": kind, **fields}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(_safe_json(payload) + "\n")
        except Exception:
            # Tracing must never crash the bridge.
            return

    __call__ = event


def read_tail_text(path: Path, max_bytes: int) -> str:
    """Return at most the last ``max_bytes`` of ``path`` decoded as UTF-8 ('' if missing)."""
    try:
        size = path.stat().st_size
    except OSError:
        return ""
    read_bytes = max(0, min(int(max_bytes), size))
    if read_bytes <= 0:
        return ""
    with path.open("rb") as f:
        f.seek(size - read_bytes)
        data = f.read(read_bytes)
    return data.decode("utf-8", errors="replace")
