"""
prodcon.buffer - Bounded ring buffers shared by in-process producers and consumers.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

from .events import LogSink, null_sink

logger = logging.getLogger("prodcon.buffer")


@dataclass(frozen=True)
class Item:
    """Unit of work moved from a producer to a consumer."""

    payload: Any
    sequence: int
    producer: str = ""

    def __str__(self) -> str:
        return str(self.payload)


class BufferState(enum.Enum):
    RUNNING = "running"
    STOPPING = "stopping"
    DRAINED = "drained"


def _describe(item: Any) -> str:
    return str(item.payload) if isinstance(item, Item) else str(item)


class BoundedBuffer:
    """
    Fixed-capacity ring buffer with blocking insert/remove and a wake-all stop.

    One lock guards the slots, both indices and the stopped flag; two
    conditions on that lock park producers (no free slot) and consumers
    (no filled slot). Every waiter re-checks `stopped` after waking and
    before touching the ring.
    """

    def __init__(self, capacity: int, *, log: LogSink | None = None) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = int(capacity)
        self._log = log if log is not None else null_sink

        self._slots: list[Any] = [None] * self.capacity
        self._write_index = 0
        self._read_index = 0
        self._count = 0

        self._lock = threading.Lock()
        self._not_full = threading.Condition(self._lock)
        self._not_empty = threading.Condition(self._lock)
        self._stopped = False
        self._active = 0
        self._inserted = 0
        self._removed = 0

    def insert(self, item: Any, *, timeout_s: float | None = None) -> bool:
        """Place `item` in the next free slot. Returns False once stopped."""
        if item is None:
            raise ValueError("None cannot be stored; it marks a rejected remove()")
        with self._lock:
            self._active += 1
            try:
                has_room = self._not_full.wait_for(
                    lambda: self._stopped or self._count < self.capacity,
                    timeout=timeout_s,
                )
                if self._stopped:
                    return False
                if not has_room:
                    raise TimeoutError("insert timed out waiting for a free slot")

                self._slots[self._write_index] = item
                self._write_index = (self._write_index + 1) % self.capacity
                self._count += 1
                self._inserted += 1
                self._log(f"Produced: {_describe(item)}")
                self._not_empty.notify()
                return True
            finally:
                self._active -= 1

    def remove(self, *, timeout_s: float | None = None) -> Any | None:
        """Take the oldest filled slot. Returns None once stopped."""
        with self._lock:
            self._active += 1
            try:
                has_item = self._not_empty.wait_for(
                    lambda: self._stopped or self._count > 0,
                    timeout=timeout_s,
                )
                if self._stopped:
                    return None
                if not has_item:
                    raise TimeoutError("remove timed out waiting for a filled slot")

                item = self._slots[self._read_index]
                self._slots[self._read_index] = None
                self._read_index = (self._read_index + 1) % self.capacity
                self._count -= 1
                self._removed += 1
                self._log(f"Consumed: {_describe(item)}")
                self._not_full.notify()
                return item
            finally:
                self._active -= 1

    def stop(self) -> None:
        """Reject all further access and wake every blocked caller."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            waiting = self._active
            self._not_full.notify_all()
            self._not_empty.notify_all()
        logger.info(f"[BUFFER] stopped with {waiting} waiter(s) to release")
        self._log("Process stopped.")

    @property
    def stopped(self) -> bool:
        with self._lock:
            return self._stopped

    @property
    def state(self) -> BufferState:
        with self._lock:
            if not self._stopped:
                return BufferState.RUNNING
            return BufferState.STOPPING if self._active else BufferState.DRAINED

    @property
    def occupancy(self) -> int:
        with self._lock:
            return self._count

    @property
    def free_slots(self) -> int:
        with self._lock:
            return self.capacity - self._count

    @property
    def write_index(self) -> int:
        with self._lock:
            return self._write_index

    @property
    def read_index(self) -> int:
        with self._lock:
            return self._read_index

    @property
    def inserted_total(self) -> int:
        with self._lock:
            return self._inserted

    @property
    def removed_total(self) -> int:
        with self._lock:
            return self._removed

    def snapshot(self) -> list[Any]:
        """Copy of the raw slots; cleared slots read as None."""
        with self._lock:
            return list(self._slots)


class SemaphoreBuffer:
    """
    Ring buffer coordinated by the classic empty/full counting semaphores plus a mutex.

    `stop()` releases `capacity` permits on both semaphores. A caller that
    takes a permit and then finds the buffer stopped hands that permit on
    before returning, so waiters beyond `capacity` are woken as well.
    """

    def __init__(self, capacity: int, *, log: LogSink | None = None) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = int(capacity)
        self._log = log if log is not None else null_sink

        self._slots: list[Any] = [None] * self.capacity
        self._write_index = 0
        self._read_index = 0
        self._count = 0

        self._mutex = threading.Lock()
        self._empty = threading.Semaphore(self.capacity)
        self._full = threading.Semaphore(0)
        self._stopped = False
        self._inserted = 0
        self._removed = 0

        self._active_lock = threading.Lock()
        self._active = 0

    def _enter(self) -> None:
        with self._active_lock:
            self._active += 1

    def _exit(self) -> None:
        with self._active_lock:
            self._active -= 1

    def insert(self, item: Any, *, timeout_s: float | None = None) -> bool:
        if item is None:
            raise ValueError("None cannot be stored; it marks a rejected remove()")
        self._enter()
        try:
            if not self._empty.acquire(timeout=timeout_s):
                if self.stopped:
                    return False
                raise TimeoutError("insert timed out waiting for a free slot")
            with self._mutex:
                rejected = self._stopped
                if not rejected:
                    self._slots[self._write_index] = item
                    self._write_index = (self._write_index + 1) % self.capacity
                    self._count += 1
                    self._inserted += 1
                    self._log(f"Produced: {_describe(item)}")
            if rejected:
                self._empty.release()
                return False
            self._full.release()
            return True
        finally:
            self._exit()

    def remove(self, *, timeout_s: float | None = None) -> Any | None:
        self._enter()
        try:
            if not self._full.acquire(timeout=timeout_s):
                if self.stopped:
                    return None
                raise TimeoutError("remove timed out waiting for a filled slot")
            with self._mutex:
                rejected = self._stopped
                item = None
                if not rejected:
                    item = self._slots[self._read_index]
                    self._slots[self._read_index] = None
                    self._read_index = (self._read_index + 1) % self.capacity
                    self._count -= 1
                    self._removed += 1
                    self._log(f"Consumed: {_describe(item)}")
            if rejected:
                self._full.release()
                return None
            self._empty.release()
            return item
        finally:
            self._exit()

    def stop(self) -> None:
        with self._mutex:
            if self._stopped:
                return
            self._stopped = True
        self._empty.release(self.capacity)
        self._full.release(self.capacity)
        logger.info(f"[BUFFER] stopped, released {self.capacity} permit(s) per semaphore")
        self._log("Process stopped.")

    @property
    def stopped(self) -> bool:
        with self._mutex:
            return self._stopped

    @property
    def state(self) -> BufferState:
        with self._mutex:
            stopped = self._stopped
        if not stopped:
            return BufferState.RUNNING
        with self._active_lock:
            return BufferState.STOPPING if self._active else BufferState.DRAINED

    @property
    def occupancy(self) -> int:
        with self._mutex:
            return self._count

    @property
    def free_slots(self) -> int:
        with self._mutex:
            return self.capacity - self._count

    @property
    def write_index(self) -> int:
        with self._mutex:
            return self._write_index

    @property
    def read_index(self) -> int:
        with self._mutex:
            return self._read_index

    @property
    def inserted_total(self) -> int:
        with self._mutex:
            return self._inserted

    @property
    def removed_total(self) -> int:
        with self._mutex:
            return self._removed

    def snapshot(self) -> list[Any]:
        with self._mutex:
            return list(self._slots)


class BufferLike(Protocol):
    """Bounded buffer contract consumed by producer/consumer actors."""

    capacity: int

    def insert(self, item: Any, *, timeout_s: float | None = None) -> bool: ...

    def remove(self, *, timeout_s: float | None = None) -> Any | None: ...

    def stop(self) -> None: ...

    @property
    def stopped(self) -> bool: ...

    @property
    def state(self) -> BufferState: ...

    @property
    def occupancy(self) -> int: ...

    @property
    def inserted_total(self) -> int: ...

    @property
    def removed_total(self) -> int: ...


def create_buffer(
    capacity: int,
    *,
    backend: str = "condition",
    log: LogSink | None = None,
) -> BufferLike:
    """
    Resolve a concrete bounded buffer.

    - `condition`: single-lock bounded queue with wake-all stop (`BoundedBuffer`).
    - `semaphore`: empty/full counting semaphores plus a mutex (`SemaphoreBuffer`).
    """
    name = str(backend).strip().lower()
    if name == "condition":
        return BoundedBuffer(capacity, log=log)
    if name == "semaphore":
        return SemaphoreBuffer(capacity, log=log)
    raise ValueError(
        f"Unsupported buffer backend {backend!r}. Expected one of: condition, semaphore."
    )
