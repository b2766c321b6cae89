from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass(frozen=True)
class Limit:
    allowed: bool
    remaining: int
    reset_after_s: float


@dataclass
class _Window:
    ends_at: float
    hits: int = 0


class RateLimiter:
    """Fixed-window counters keyed by e.g. ``"sign-in:<ip>"``.

    Process-local: with several workers each one keeps its own counters.
    Windows that have ended are swept at most once per ``sweep_interval_s``
    so one-off clients do not accumulate.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, sweep_interval_s: float = 60.0) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval_s = float(sweep_interval_s)
        self._windows: Dict[str, _Window] = {}
        self._next_sweep = clock() + self._sweep_interval_s

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def _sweep(self, now: float) -> None:
        stale = [key for key, w in self._windows.items() if w.ends_at <= now]
        for key in stale:
            del self._windows[key]
        self._next_sweep = now + self._sweep_interval_s

    def allow(self, key: str, *, limit: int, window_s: int = 60) -> Limit:
        now = self._clock()
        limit = max(1, int(limit))
        window_s = max(1, int(window_s))
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)

            w = self._windows.get(key)
            if w is None or w.ends_at <= now:
                w = self._windows[key] = _Window(ends_at=now + window_s)

            reset_after = max(0.0, w.ends_at - now)
            if w.hits >= limit:
                return Limit(False, 0, reset_after)
            w.hits += 1
            return Limit(True, limit - w.hits, reset_after)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
