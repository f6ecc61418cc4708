"""
prodcon.actors - Producer and consumer threads for both transport bindings.
"""

from __future__ import annotations

import logging
import random
import threading
from collections import deque

from .buffer import BufferLike, Item
from .config import PacingMode
from .events import LogSink, null_sink
from .pacing import Pacer, PacingStats
from .stream import (
    ConnectionFailure,
    StreamConnection,
    StreamListener,
    connect,
    receive_loop,
    send_sequence,
)

logger = logging.getLogger("prodcon.actors")

ITEM_VALUE_BOUND = 100


class Actor:
    """
    Named daemon thread that loops over one transport until stopped or exhausted.

    `stop()` sets the stop event, which ends any pacing wait at once, and
    calls `_interrupt()` so subclasses can unblock transport I/O. Transport
    failures are turned into log events; the thread never raises.
    """

    role = "actor"

    def __init__(
        self,
        name: str,
        *,
        period_s: float = 0.0,
        pacing: PacingMode = "delay",
        log: LogSink | None = None,
    ) -> None:
        self.name = name
        self._log = log if log is not None else null_sink
        self._stop_event = threading.Event()
        self.pacer = Pacer(period_s, stop_event=self._stop_event, mode=pacing)

        self._thread: threading.Thread | None = None
        self._state_lock = threading.Lock()
        self._finished = threading.Event()
        self._error: Exception | None = None
        self._steps = 0

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._main, name=self.name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._interrupt()

    def join(self, timeout_s: float | None = None) -> bool:
        """Wait for the thread to exit. Returns True when it has."""
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout_s)
        return not self._thread.is_alive()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    def steps(self) -> int:
        with self._state_lock:
            return self._steps

    def pacing_stats(self) -> PacingStats:
        return self.pacer.stats()

    def run(self) -> None:
        raise NotImplementedError

    def _interrupt(self) -> None:
        return None

    def _count_step(self, n: int = 1) -> None:
        with self._state_lock:
            self._steps += n

    def _fail(self, exc: Exception) -> None:
        if self.stopping:
            logger.info(f"[ACTOR] {self.name} interrupted: {exc}")
            self._log(f"{self.role.capitalize()} {self.name} stopped.")
            return
        self._error = exc
        logger.warning(f"[ACTOR] {self.name} failed: {exc}")
        self._log(f"{self.role.capitalize()} error: {exc}")

    def _main(self) -> None:
        try:
            self.run()
        except (ConnectionFailure, OSError) as exc:
            self._fail(exc)
        except Exception as exc:
            logger.exception(f"[ACTOR] {self.name} crashed")
            self._error = exc
            self._log(f"{self.role.capitalize()} error: {exc}")
        finally:
            self._finished.set()


class BufferProducer(Actor):
    """Produce bounded integers into a shared buffer until rejected, exhausted or stopped."""

    role = "producer"

    def __init__(
        self,
        name: str,
        buffer: BufferLike,
        *,
        interval_s: float,
        log: LogSink | None = None,
        pacing: PacingMode = "delay",
        max_items: int | None = None,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(name, period_s=interval_s, pacing=pacing, log=log)
        self.buffer = buffer
        self.max_items = max_items
        self._rng = rng or random.Random()
        self._sequence = 0

    def produce_item(self) -> Item:
        self._sequence += 1
        value = self._rng.randrange(ITEM_VALUE_BOUND)
        self._log(f"Producing item: {value}")
        return Item(payload=value, sequence=self._sequence, producer=self.name)

    def run(self) -> None:
        while not self.stopping:
            if self.max_items is not None and self.steps >= self.max_items:
                break
            item = self.produce_item()
            if not self.buffer.insert(item):
                break
            self._count_step()
            if not self.pacer.wait():
                break


class BufferConsumer(Actor):
    """Drain a shared buffer; a rejected remove() ends the loop."""

    role = "consumer"

    def __init__(
        self,
        name: str,
        buffer: BufferLike,
        *,
        interval_s: float,
        log: LogSink | None = None,
        pacing: PacingMode = "delay",
        max_items: int | None = None,
        keep_last: int = 10_000,
    ) -> None:
        super().__init__(name, period_s=interval_s, pacing=pacing, log=log)
        self.buffer = buffer
        self.max_items = max_items
        self._consumed: deque[Item] = deque(maxlen=keep_last)

    def consumed_items(self) -> list[Item]:
        with self._state_lock:
            return list(self._consumed)

    def consume_item(self, item: Item) -> None:
        self._log(f"Consuming item: {item}")
        with self._state_lock:
            self._consumed.append(item)

    def run(self) -> None:
        while not self.stopping:
            if self.max_items is not None and self.steps >= self.max_items:
                break
            item = self.buffer.remove()
            if item is None:
                break
            self.consume_item(item)
            self._count_step()
            if not self.pacer.wait():
                break


class StreamConsumer(Actor):
    """
    Serve one listener: accept each assigned producer in turn and drain its stream.

    Items of every accepted connection are kept in a separate batch, in
    arrival order.
    """

    role = "consumer"

    def __init__(
        self,
        name: str,
        listener: StreamListener,
        *,
        rate: float,
        log: LogSink | None = None,
        pacing: PacingMode = "delay",
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be > 0")
        super().__init__(name, period_s=1.0 / rate, pacing=pacing, log=log)
        self.listener = listener
        self._connection: StreamConnection | None = None
        self._batches: list[list[str]] = []

    def received(self) -> list[list[str]]:
        with self._state_lock:
            return [list(batch) for batch in self._batches]

    def _record(self, batch: list[str], item: str) -> None:
        with self._state_lock:
            batch.append(item)
            self._steps += 1

    def run(self) -> None:
        listener = self.listener
        try:
            if not listener.ready.is_set():
                listener.listen()
            if listener.expected_peers == 0:
                self._log(f"Consumer {self.name} has no producer assigned; closing.")
                return

            while not self.stopping and listener.accepted < listener.expected_peers:
                connection = listener.accept(stop_event=self._stop_event)
                if connection is None:
                    break
                batch: list[str] = []
                with self._state_lock:
                    self._connection = connection
                    self._batches.append(batch)
                try:
                    receive_loop(
                        connection,
                        pacer=self.pacer,
                        log=self._log,
                        on_item=lambda item, batch=batch: self._record(batch, item),
                    )
                finally:
                    with self._state_lock:
                        self._connection = None
                    connection.close()

            if self.stopping:
                self._log(f"Consumer {self.name} stopped.")
        finally:
            listener.close()

    def _interrupt(self) -> None:
        with self._state_lock:
            connection = self._connection
        if connection is not None:
            connection.shutdown()
        self.listener.close()


class StreamProducer(Actor):
    """Connect to one consumer and stream `Item 1` .. `Item count` to it."""

    role = "producer"

    def __init__(
        self,
        name: str,
        host: str,
        port: int,
        *,
        rate: float,
        count: int,
        log: LogSink | None = None,
        pacing: PacingMode = "delay",
        connect_timeout_s: float | None = None,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be > 0")
        if count < 0:
            raise ValueError("count must be >= 0")
        super().__init__(name, period_s=1.0 / rate, pacing=pacing, log=log)
        self.host = host
        self.port = int(port)
        self.count = int(count)
        self.connect_timeout_s = connect_timeout_s
        self._connection: StreamConnection | None = None

    def run(self) -> None:
        connection = connect(self.host, self.port, timeout_s=self.connect_timeout_s)
        with self._state_lock:
            self._connection = connection
        try:
            if self.stopping:
                connection.close()
                return
            sent = send_sequence(
                connection,
                self.count,
                pacer=self.pacer,
                log=self._log,
            )
            self._count_step(sent)
            if sent < self.count:
                self._log(f"Producer {self.name} stopped after {sent} item(s).")
        finally:
            with self._state_lock:
                self._connection = None

    def _interrupt(self) -> None:
        with self._state_lock:
            connection = self._connection
        if connection is not None:
            connection.shutdown()
