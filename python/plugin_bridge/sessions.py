"""Codex session file discovery and incremental tailing.

Rollout files live under ``CODEX_HOME/sessions/YYYY/MM/DD/*.jsonl`` and are
only ever appended to. Each poll reads the bytes added since the previous
poll; a trailing line without newline is held back until it is complete.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .logging_config import PRIMARY_LOG_FILENAME, setup_logger

logger = setup_logger("plugin_bridge.sessions", PRIMARY_LOG_FILENAME)

SESSION_FILE_SUFFIX = ".jsonl"


def collect_session_files(root: Path, since_epoch_sec: Optional[float] = None) -> list[Path]:
    """Return every ``*.jsonl`` file below ``root`` in lexicographic path order.

    With ``since_epoch_sec`` set, files last modified before that second are
    left out. A missing root gives an empty list.
    """
    if not root.is_dir():
        return []

    files: list[Path] = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            if not filename.endswith(SESSION_FILE_SUFFIX):
                continue
            full_path = Path(dirpath) / filename
            try:
                if not full_path.is_file():
                    continue
                if since_epoch_sec:
                    modified_sec = int(full_path.stat().st_mtime)
                    if modified_sec < since_epoch_sec:
                        continue
            except OSError:
                # Vanished between listing and stat.
                continue
            files.append(full_path)

    return sorted(files, key=str)


@dataclass
class SessionFile:
    path: Path
    offset: int = 0
    remainder: bytes = b""


@dataclass
class TailState:
    """Per-run tail positions, keyed by session file path."""

    files: dict[str, SessionFile] = field(default_factory=dict)

    def get(self, path: Path) -> SessionFile:
        key = str(path)
        entry = self.files.get(key)
        if entry is None:
            entry = SessionFile(path=path)
            self.files[key] = entry
        return entry

    def prime(self, paths: list[Path]) -> int:
        """Start tracking new files from byte 0. Returns how many were added."""
        added = 0
        for path in paths:
            if str(path) in self.files:
                continue
            self.files[str(path)] = SessionFile(path=path)
            added += 1
        return added

    def __contains__(self, path: object) -> bool:
        return str(path) in self.files

    def __len__(self) -> int:
        return len(self.files)


def read_new_lines(entry: SessionFile) -> list[str]:
    """Read complete lines appended to ``entry.path`` since the last call.

    Updates ``entry.offset`` and ``entry.remainder`` in place. A file that got
    shorter than the stored offset is read again from the start.
    """
    size = entry.path.stat().st_size

    if size < entry.offset:
        logger.info(f"Session file shrank, re-reading from start: {entry.path}")
        entry.offset = 0
        entry.remainder = b""

    if size == entry.offset:
        return []

    with entry.path.open("rb") as f:
        f.seek(entry.offset)
        chunk = f.read(size - entry.offset)

    data = entry.remainder + chunk
    parts = data.split(b"\n")
    # Kept as bytes so a multi-byte character cut at the end of the file survives.
    entry.remainder = parts.pop()
    entry.offset += len(chunk)
    return [part.decode("utf-8", errors="replace") for part in parts]
