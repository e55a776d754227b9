from __future__ import annotations

import time
from collections import deque
from threading import Condition, Lock, Timer


class WorkQueue:
    """Deduplicating work queue with single-flight per key.

    - a key queued twice is processed once
    - a key added while it is being processed is queued again on done()
      and never handed to a second worker at the same time
    - add_after() delays a key; add_rate_limited() delays it with per-key
      exponential backoff until forget() is called
    """

    def __init__(self, backoff_base_s: float = 0.005, backoff_max_s: float = 1000.0):
        self.backoff_base_s = backoff_base_s
        self.backoff_max_s = backoff_max_s
        self._cond = Condition(Lock())
        self._queue: deque[str] = deque()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._waiting: dict[str, tuple[float, Timer]] = {}  # key -> (ready_at, timer)
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: str) -> None:
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> str | None:
        """Block until a key is available. None on shutdown or timeout."""
        with self._cond:
            while not self._queue and not self._shutting_down:
                if not self._cond.wait(timeout):
                    return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: str) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, key: str, delay_s: float) -> None:
        if delay_s <= 0:
            self.add(key)
            return
        ready_at = time.monotonic() + delay_s
        with self._cond:
            if self._shutting_down:
                return
            pending = self._waiting.get(key)
            if pending is not None:
                if pending[0] <= ready_at:
                    return
                pending[1].cancel()
            timer = Timer(delay_s, self._fire, args=(key, ready_at))
            timer.daemon = True
            self._waiting[key] = (ready_at, timer)
        timer.start()

    def _fire(self, key: str, ready_at: float) -> None:
        with self._cond:
            pending = self._waiting.get(key)
            if pending is None or pending[0] != ready_at:
                return
            del self._waiting[key]
        self.add(key)

    def add_rate_limited(self, key: str) -> float:
        with self._cond:
            n = self._failures.get(key, 0)
            self._failures[key] = n + 1
        delay = min(self.backoff_base_s * (2 ** min(n, 62)), self.backoff_max_s)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: str) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            for _, timer in self._waiting.values():
                timer.cancel()
            self._waiting.clear()
            self._cond.notify_all()
