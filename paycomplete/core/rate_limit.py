import math
import time
from collections import deque
from threading import Lock
from typing import Callable


class ClientRateLimiter:
    """Allows ``limit`` calls per ``window_seconds`` for each client key."""

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = Lock()

    def consume(self, key: str) -> int:
        """Record one call for ``key``.

        Returns 0 when the call is allowed, otherwise the seconds until the
        oldest call in the window expires. Rejected calls are not recorded.
        """
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - self.window_seconds:
                hits.popleft()
            if len(hits) >= self.limit:
                return max(1, math.ceil(hits[0] + self.window_seconds - now))
            hits.append(now)
            return 0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
