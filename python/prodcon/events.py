"""
prodcon.events - Log-event sinks shared by buffers, streams and actors.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

LogSink = Callable[[str], None]

logger = logging.getLogger("prodcon.events")


def logging_sink(target: logging.Logger | None = None, level: int = logging.INFO) -> LogSink:
    """Adapt a logger into a log-event sink."""
    target = target or logger

    def _sink(message: str) -> None:
        target.log(level, message)

    return _sink


def null_sink(_message: str) -> None:
    return None


class EventLog:
    """
    Thread-safe in-memory event store usable as a `LogSink`.

    Keeps the most recent `maxlen` messages and optionally forwards every
    message to a logger. Ordering across producing threads is best effort.
    """

    def __init__(self, maxlen: int = 10_000, *, forward_to: logging.Logger | None = None) -> None:
        self._messages: deque[str] = deque(maxlen=maxlen)
        self._cond = threading.Condition()
        self._forward_to = forward_to

    def __call__(self, message: str) -> None:
        with self._cond:
            self._messages.append(message)
            self._cond.notify_all()
        if self._forward_to is not None:
            self._forward_to.info(message)

    def __len__(self) -> int:
        with self._cond:
            return len(self._messages)

    def __bool__(self) -> bool:
        # A sink stays truthy while empty.
        return True

    def snapshot(self) -> list[str]:
        with self._cond:
            return list(self._messages)

    def count(self, prefix: str) -> int:
        with self._cond:
            return sum(1 for message in self._messages if message.startswith(prefix))

    def with_prefix(self, prefix: str) -> list[str]:
        with self._cond:
            return [message for message in self._messages if message.startswith(prefix)]

    def wait_for(
        self,
        predicate: Callable[[list[str]], bool],
        timeout_s: float | None = None,
    ) -> bool:
        """Block until `predicate(messages)` holds; False on timeout."""
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        with self._cond:
            while not predicate(list(self._messages)):
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(timeout=remaining)
            return True

    def clear(self) -> None:
        with self._cond:
            self._messages.clear()
