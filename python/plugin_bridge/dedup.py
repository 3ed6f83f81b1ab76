"""Duplicate suppression for raw session lines.

Codex can write the same record more than once (resumed sessions replay part of
their history), and hooks have side effects, so an identical line seen again
within the TTL is not dispatched a second time.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Optional

RECENT_EVENT_TTL_MS = 30_000
RECENT_EVENT_MAX = 2000


def _now_ms() -> int:
    return int(time.time() * 1000)


class RecentEventCache:
    """Sliding-window signature cache.

    Every lookup refreshes the signature's last-seen time. Entries are kept in
    last-seen order, so trimming drops expired entries from the front first
    and then the oldest remaining ones until the cache is back under capacity.
    """

    def __init__(
        self,
        *,
        ttl_ms: int = RECENT_EVENT_TTL_MS,
        max_entries: int = RECENT_EVENT_MAX,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.ttl_ms = int(ttl_ms)
        self.max_entries = max(1, int(max_entries))
        self._clock = clock or _now_ms
        self._seen: "OrderedDict[str, int]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, signature: object) -> bool:
        return signature in self._seen

    def check_and_record(self, signature: str) -> bool:
        """Record ``signature`` and return True if it was already seen within the TTL."""
        now_ms = self._clock()
        last_seen_ms = self._seen.pop(signature, None)
        self._seen[signature] = now_ms

        if len(self._seen) > self.max_entries:
            self._trim(now_ms)

        return last_seen_ms is not None and (now_ms - last_seen_ms) <= self.ttl_ms

    def _trim(self, now_ms: int) -> None:
        while self._seen:
            oldest_key, seen_at = next(iter(self._seen.items()))
            if (now_ms - seen_at) > self.ttl_ms or len(self._seen) > self.max_entries:
                del self._seen[oldest_key]
            else:
                break
