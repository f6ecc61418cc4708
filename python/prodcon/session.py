"""
prodcon.session - Wire actors to a transport and run them as one simulation.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any

from .actors import Actor, BufferConsumer, BufferProducer, StreamConsumer, StreamProducer
from .buffer import BufferState, create_buffer
from .config import BufferSimulationConfig, StreamSimulationConfig, to_serializable
from .events import LogSink, logging_sink
from .stream import ConnectionFailure, StreamListener, parse_sequence

logger = logging.getLogger("prodcon.session")

_POLL_S = 0.01


def _actor_summary(actor: Actor) -> dict[str, Any]:
    return {
        "steps": actor.steps,
        "finished": actor.finished,
        "error": None if actor.error is None else str(actor.error),
        "pacing": actor.pacing_stats().to_dict(),
    }


def _batch_in_order(batch: list[str]) -> bool:
    # A prefix of the sent sequence: interrupted streams stop early but never skip.
    return [parse_sequence(item) for item in batch] == list(range(1, len(batch) + 1))


@dataclass(frozen=True)
class BufferSessionReport:
    """Counters of one in-process simulation run."""

    capacity: int
    inserted: int
    removed: int
    occupancy: int
    state: BufferState
    actors: dict[str, dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "capacity": self.capacity,
            "inserted": self.inserted,
            "removed": self.removed,
            "occupancy": self.occupancy,
            "state": self.state.value,
            "actors": to_serializable(self.actors),
        }


@dataclass(frozen=True)
class StreamSessionReport:
    """Per-consumer deliveries of one networked simulation run."""

    ports: dict[str, int]
    sent: dict[str, int]
    received: dict[str, list[list[str]]]
    errors: dict[str, str]

    @property
    def total_sent(self) -> int:
        return sum(self.sent.values())

    @property
    def total_received(self) -> int:
        return sum(len(batch) for batches in self.received.values() for batch in batches)

    @property
    def out_of_order(self) -> dict[str, list[int]]:
        """Per consumer, indices of batches whose items are not `Item 1, 2, ...` in send order."""
        return {
            name: [i for i, batch in enumerate(batches) if not _batch_in_order(batch)]
            for name, batches in self.received.items()
        }

    @property
    def in_order(self) -> bool:
        return not any(self.out_of_order.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "ports": dict(self.ports),
            "sent": dict(self.sent),
            "received": {name: [list(b) for b in batches] for name, batches in self.received.items()},
            "errors": dict(self.errors),
            "total_sent": self.total_sent,
            "total_received": self.total_received,
            "in_order": self.in_order,
        }


class BufferSession:
    """Producers and consumers sharing one bounded buffer in this process."""

    def __init__(
        self,
        config: BufferSimulationConfig,
        *,
        log: LogSink | None = None,
        seed: int | None = None,
    ) -> None:
        self.config = config
        self.log = log if log is not None else logging_sink(logger)
        self.buffer = create_buffer(config.capacity, backend=config.backend, log=self.log)

        rng = random.Random(seed)
        self.producers = [
            BufferProducer(
                f"producer-{i}",
                self.buffer,
                interval_s=config.production_interval_s,
                log=self.log,
                pacing=config.pacing,
                max_items=config.items_per_producer,
                rng=random.Random(rng.getrandbits(64)),
            )
            for i in range(config.producers)
        ]
        self.consumers = [
            BufferConsumer(
                f"consumer-{i}",
                self.buffer,
                interval_s=config.consumption_interval_s,
                log=self.log,
                pacing=config.pacing,
            )
            for i in range(config.consumers)
        ]
        self._lifecycle_lock = threading.Lock()
        self._started = False
        self._stopped = False

    @property
    def actors(self) -> list[Actor]:
        return [*self.producers, *self.consumers]

    @property
    def is_running(self) -> bool:
        with self._lifecycle_lock:
            return self._started and not self._stopped

    def start(self) -> None:
        with self._lifecycle_lock:
            if self._started:
                return
            self._started = True
        logger.info(
            f"[SESSION] buffer capacity={self.config.capacity} backend={self.config.backend} "
            f"producers={len(self.producers)} consumers={len(self.consumers)}"
        )
        for actor in self.actors:
            actor.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        """Stop the buffer first so blocked actors wake, then interrupt and join every actor."""
        with self._lifecycle_lock:
            if self._stopped:
                return
            self._stopped = True
        self.buffer.stop()
        for actor in self.actors:
            actor.stop()
        for actor in self.actors:
            if not actor.join(timeout_s):
                logger.warning(f"[SESSION] {actor.name} did not exit within {timeout_s}s")

    def wait(self, timeout_s: float | None = None) -> bool:
        """Wait for every actor to exit. Returns False on timeout."""
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        for actor in self.actors:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            if not actor.join(remaining):
                return False
        return True

    def drain(self, timeout_s: float | None = None) -> bool:
        """
        Let bounded producers finish, wait for consumers to empty the buffer, then stop.

        Returns False if producers or the buffer did not settle before the timeout.
        """
        if self.config.items_per_producer is None:
            raise RuntimeError("drain() needs items_per_producer; use run_for() for open-ended runs")
        self.start()
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        settled = True
        for producer in self.producers:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            if not producer.join(remaining):
                settled = False
                break
        while settled and self.buffer.occupancy > 0:
            if deadline is not None and time.monotonic() >= deadline:
                settled = False
                break
            time.sleep(_POLL_S)
        self.stop()
        return settled

    def run_for(self, duration_s: float) -> BufferSessionReport:
        if duration_s <= 0:
            raise ValueError("duration_s must be > 0")
        self.start()
        deadline = time.perf_counter() + duration_s
        while time.perf_counter() < deadline and not all(a.finished for a in self.producers):
            time.sleep(_POLL_S)
        self.stop()
        return self.report()

    def report(self) -> BufferSessionReport:
        return BufferSessionReport(
            capacity=self.buffer.capacity,
            inserted=self.buffer.inserted_total,
            removed=self.buffer.removed_total,
            occupancy=self.buffer.occupancy,
            state=self.buffer.state,
            actors={actor.name: _actor_summary(actor) for actor in self.actors},
        )

    def check_health(self) -> None:
        for actor in self.actors:
            if actor.error is not None:
                raise RuntimeError(f"Actor failed: {actor.name}") from actor.error

    def __enter__(self) -> "BufferSession":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.stop()


class StreamSession:
    """
    One listener per consumer and one connection per producer.

    Every listener is bound before any producer starts; producer `j`
    targets consumer `j mod consumers`.
    """

    def __init__(self, config: StreamSimulationConfig, *, log: LogSink | None = None) -> None:
        self.config = config
        self.log = log if log is not None else logging_sink(logger)
        self.listeners = [
            StreamListener(
                config.host,
                config.consumer_port(i),
                log=self.log,
                expected_peers=config.peers_for_consumer(i),
            )
            for i in range(config.consumers)
        ]
        self.consumers = [
            StreamConsumer(f"consumer-{i}", listener, rate=config.consumer_rate, log=self.log)
            for i, listener in enumerate(self.listeners)
        ]
        self.producers: list[StreamProducer] = []
        self._listen_errors: dict[str, ConnectionFailure] = {}
        self._skipped: dict[str, ConnectionFailure] = {}
        self._lifecycle_lock = threading.Lock()
        self._started = False
        self._stopped = False

    @property
    def actors(self) -> list[Actor]:
        return [*self.consumers, *self.producers]

    def start(self) -> None:
        with self._lifecycle_lock:
            if self._started:
                return
            self._started = True

        for consumer in self.consumers:
            try:
                consumer.listener.listen()
            except ConnectionFailure as exc:
                self._listen_errors[consumer.name] = exc
                self.log(f"Consumer error: {exc}")
                continue
            consumer.start()

        if self.config.startup_delay_s > 0:
            time.sleep(self.config.startup_delay_s)

        for j in range(self.config.producers):
            name = f"producer-{j}"
            target = self.consumers[self.config.consumer_for_producer(j)]
            if target.name in self._listen_errors:
                # The configured port may belong to another process.
                exc = ConnectionFailure(f"{target.name} is not listening; {name} not started")
                self._skipped[name] = exc
                self.log(f"Producer error: {exc}")
                continue
            producer = StreamProducer(
                name,
                self.config.host,
                target.listener.port,
                rate=self.config.producer_rate,
                count=self.config.items_per_producer,
                log=self.log,
            )
            self.producers.append(producer)
            producer.start()
        logger.info(
            f"[SESSION] stream producers={len(self.producers)} consumers={len(self.consumers)} "
            f"ports={[c.listener.port for c in self.consumers if c.name not in self._listen_errors]}"
        )

    def wait(self, timeout_s: float | None = None) -> bool:
        """Wait until every producer and consumer has finished. Returns False on timeout."""
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        for actor in self.actors:
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            if not actor.join(remaining):
                return False
        return True

    def stop(self, *, timeout_s: float = 2.0) -> None:
        with self._lifecycle_lock:
            if self._stopped:
                return
            self._stopped = True
        for actor in self.actors:
            actor.stop()
        for actor in self.actors:
            if not actor.join(timeout_s):
                logger.warning(f"[SESSION] {actor.name} did not exit within {timeout_s}s")
        for listener in self.listeners:
            listener.close()

    def run(self, timeout_s: float | None = None) -> StreamSessionReport:
        """Start, wait for every stream to finish, stop, report."""
        self.start()
        try:
            if not self.wait(timeout_s):
                logger.warning(f"[SESSION] stream run timed out after {timeout_s}s")
        finally:
            self.stop()
        return self.report()

    def report(self) -> StreamSessionReport:
        errors = {name: str(exc) for name, exc in self._listen_errors.items()}
        errors.update({name: str(exc) for name, exc in self._skipped.items()})
        errors.update({a.name: str(a.error) for a in self.actors if a.error is not None})
        return StreamSessionReport(
            ports={
                c.name: c.listener.port
                for c in self.consumers
                if c.name not in self._listen_errors and c.listener.ready.is_set()
            },
            sent={
                **{name: 0 for name in self._skipped},
                **{p.name: p.steps for p in self.producers},
            },
            received={c.name: c.received() for c in self.consumers},
            errors=errors,
        )

    def check_health(self) -> None:
        for name, exc in {**self._listen_errors, **self._skipped}.items():
            raise RuntimeError(f"Actor failed: {name}") from exc
        for actor in self.actors:
            if actor.error is not None:
                raise RuntimeError(f"Actor failed: {actor.name}") from actor.error

    def __enter__(self) -> "StreamSession":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.stop()
