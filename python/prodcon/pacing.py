"""
prodcon.pacing - Interruptible rate limiting for producer and consumer loops.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any

import numpy as np

from .config import PacingMode


@dataclass(frozen=True)
class PacingStats:
    """How closely one producer or consumer kept its per-item interval."""

    items_paced: int
    interrupted: bool
    overruns: int
    interval_s: float
    mean_interval_s: float
    p95_late_s: float
    max_late_s: float

    @property
    def items_per_second(self) -> float:
        if self.mean_interval_s <= 0:
            return 0.0
        return 1.0 / self.mean_interval_s

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["items_per_second"] = self.items_per_second
        return payload


class Pacer:
    """
    Sleep between items, waking early when `stop_event` is set.

    `delay` mode waits one full interval per call. `deadline` mode keeps a
    fixed-rate schedule and restarts it from "now" after an overrun.
    """

    def __init__(
        self,
        period_s: float,
        *,
        stop_event: threading.Event | None = None,
        mode: PacingMode = "delay",
        max_samples: int = 10_000,
    ) -> None:
        if period_s < 0:
            raise ValueError("period_s must be >= 0")
        if mode not in ("delay", "deadline"):
            raise ValueError(f"Unsupported pacing mode {mode!r}")
        if max_samples <= 0:
            raise ValueError("max_samples must be > 0")

        self.period_s = float(period_s)
        self.mode = mode
        self.stop_event = stop_event if stop_event is not None else threading.Event()

        self._next_deadline: float | None = None
        self._last_wake: float | None = None
        self._lock = threading.Lock()
        self._intervals: deque[float] = deque(maxlen=max_samples)
        self._items = 0
        self._overruns = 0

    @classmethod
    def from_rate(cls, items_per_second: float, **kwargs) -> "Pacer":
        if items_per_second <= 0:
            raise ValueError("items_per_second must be > 0")
        return cls(1.0 / items_per_second, **kwargs)

    @property
    def interrupted(self) -> bool:
        return self.stop_event.is_set()

    def interrupt(self) -> None:
        self.stop_event.set()

    def wait(self) -> bool:
        """Wait one item interval. Returns False if interrupted."""
        if self.stop_event.is_set():
            return False

        start = time.perf_counter()
        overrun = False
        if self.mode == "delay":
            sleep_s = self.period_s
        else:
            if self._next_deadline is None:
                self._next_deadline = start
            self._next_deadline += self.period_s
            sleep_s = self._next_deadline - start
            if sleep_s <= 0:
                overrun = self.period_s > 0
                self._next_deadline = start
                sleep_s = 0.0

        if sleep_s > 0 and self.stop_event.wait(sleep_s):
            return False
        if self.stop_event.is_set():
            return False

        wake = time.perf_counter()
        if self.mode == "delay" or self._last_wake is None:
            interval = wake - start
        else:
            interval = wake - self._last_wake
        self._last_wake = wake

        with self._lock:
            self._items += 1
            if overrun:
                self._overruns += 1
            self._intervals.append(interval)
        return True

    def reset_stats(self) -> None:
        with self._lock:
            self._intervals.clear()
            self._items = 0
            self._overruns = 0

    def stats(self) -> PacingStats:
        with self._lock:
            intervals = np.asarray(tuple(self._intervals), dtype=np.float64)
            items = self._items
            overruns = self._overruns

        if intervals.size == 0:
            mean_interval = p95_late = max_late = 0.0
        else:
            late = np.clip(intervals - self.period_s, 0.0, None)
            mean_interval = float(intervals.mean())
            p95_late = float(np.percentile(late, 95))
            max_late = float(late.max())

        return PacingStats(
            items_paced=items,
            interrupted=self.interrupted,
            overruns=overruns,
            interval_s=self.period_s,
            mean_interval_s=mean_interval,
            p95_late_s=p95_late,
            max_late_s=max_late,
        )
