"""
MetricsWindow Class - Recent request evidence

Holds the request and response events of the trailing window. Per-source and
per-status counters are kept in step with the events, so both expire with
the window instead of growing for the life of the process.
"""

import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from guildsite.models.data_models import RequestEvent, ResponseEvent
from guildsite.utils.helpers import Clock, now_ms


class MetricsWindow:
    """
    Trailing window of request/response events.
    Responsibilities:
    - Record inbound requests by source
    - Record response status codes
    - Drop events older than the window

    Every read-then-write runs under one lock, so recording on the event loop
    and pruning from a worker thread cannot lose counter updates.
    """

    def __init__(self, window_ms: int = 60_000, clock: Optional[Clock] = None):
        self.window_ms = window_ms
        self._clock = clock or now_ms
        self._lock = threading.Lock()
        self._requests: Deque[RequestEvent] = deque()
        self._responses: Deque[ResponseEvent] = deque()
        # insertion order doubles as first-registered order for ranking
        self._source_counts: Dict[str, int] = {}
        self._status_counts: Dict[int, int] = {}

    def now(self) -> int:
        return self._clock()

    def record_request(self, source_id: str) -> None:
        event = RequestEvent(timestamp=self._clock(), source=source_id or "unknown")
        with self._lock:
            self._requests.append(event)
            self._source_counts[event.source] = self._source_counts.get(event.source, 0) + 1

    def record_response(self, status_code: int) -> None:
        event = ResponseEvent(timestamp=self._clock(), status_code=int(status_code))
        with self._lock:
            self._responses.append(event)
            self._status_counts[event.status_code] = self._status_counts.get(event.status_code, 0) + 1

    def prune(self, now: Optional[int] = None) -> int:
        """Drop leading events older than now - window_ms. Returns requests removed."""
        cutoff = (self._clock() if now is None else now) - self.window_ms

        removed = 0
        with self._lock:
            while self._requests and self._requests[0].timestamp < cutoff:
                event = self._requests.popleft()
                _decrement(self._source_counts, event.source)
                removed += 1

            while self._responses and self._responses[0].timestamp < cutoff:
                event = self._responses.popleft()
                _decrement(self._status_counts, event.status_code)

        return removed

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
            self._responses.clear()
            self._source_counts.clear()
            self._status_counts.clear()

    @property
    def request_count(self) -> int:
        with self._lock:
            return len(self._requests)

    def request_timestamps(self) -> List[int]:
        with self._lock:
            return [e.timestamp for e in self._requests]

    def request_sources(self) -> List[str]:
        with self._lock:
            return [e.source for e in self._requests]

    def source_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._source_counts)

    def status_counts(self) -> Dict[int, int]:
        with self._lock:
            return dict(self._status_counts)


def _decrement(counts: dict, key) -> None:
    remaining = counts.get(key, 0) - 1
    if remaining > 0:
        counts[key] = remaining
    else:
        counts.pop(key, None)
