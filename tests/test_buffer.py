"""Tests for bounded buffer admission, ring order and stop semantics."""

from __future__ import annotations

import threading
import time

import pytest

from prodcon import BoundedBuffer, BufferState, Item, SemaphoreBuffer, create_buffer


def _start(target, *args) -> tuple[threading.Thread, list]:
    results: list = []
    thread = threading.Thread(target=lambda: results.append(target(*args)), daemon=True)
    thread.start()
    return thread, results


def test_round_trip_returns_same_item(make_buffer) -> None:
    buffer = make_buffer(1)
    item = Item(payload=42, sequence=1, producer="p")

    assert buffer.insert(item) is True
    assert buffer.remove() is item
    assert buffer.occupancy == 0


def test_capacity_one_blocks_second_insert_until_remove(make_buffer, event_log) -> None:
    buffer = make_buffer(1)

    assert buffer.insert(Item(42, 1))
    with pytest.raises(TimeoutError):
        buffer.insert(Item(43, 2), timeout_s=0.05)

    removed = buffer.remove()
    assert removed.payload == 42
    with pytest.raises(TimeoutError):
        buffer.remove(timeout_s=0.05)

    assert buffer.insert(Item(43, 2))
    assert event_log.count("Consumed: 42") == 1
    assert event_log.snapshot()[:2] == ["Produced: 42", "Consumed: 42"]


def test_blocked_insert_proceeds_after_remove(make_buffer) -> None:
    buffer = make_buffer(1)
    buffer.insert(Item(1, 1))

    thread, results = _start(buffer.insert, Item(2, 2))
    time.sleep(0.05)
    assert results == []

    assert buffer.remove().payload == 1
    thread.join(timeout=1.0)
    assert results == [True]
    assert buffer.remove().payload == 2


def test_ring_indices_wrap_and_removed_slots_are_cleared(make_buffer) -> None:
    buffer = make_buffer(3)
    for value in ("a", "b", "c"):
        assert buffer.insert(value)
    assert buffer.write_index == 0
    assert buffer.occupancy == 3

    assert buffer.remove() == "a"
    assert buffer.remove() == "b"
    assert buffer.read_index == 2
    assert buffer.snapshot() == [None, None, "c"]

    buffer.insert("d")
    buffer.insert("e")
    assert buffer.snapshot() == ["d", "e", "c"]
    assert [buffer.remove() for _ in range(3)] == ["c", "d", "e"]
    assert buffer.read_index == 2
    assert buffer.free_slots == 3


def test_stop_wakes_every_blocked_producer(make_buffer) -> None:
    buffer = make_buffer(2)
    buffer.insert(Item(1, 1))
    buffer.insert(Item(2, 2))

    # More waiters than capacity.
    waiters = [_start(buffer.insert, Item(10 + i, 3 + i)) for i in range(5)]
    time.sleep(0.1)
    assert buffer.state is BufferState.RUNNING

    buffer.stop()
    for thread, _ in waiters:
        thread.join(timeout=1.0)
        assert not thread.is_alive()

    assert all(results == [False] for _, results in waiters)
    assert buffer.inserted_total == 2
    assert buffer.occupancy == 2
    assert buffer.state is BufferState.DRAINED


def test_stop_wakes_every_blocked_consumer(make_buffer) -> None:
    buffer = make_buffer(3)
    waiters = [_start(buffer.remove) for _ in range(4)]
    time.sleep(0.1)

    buffer.stop()
    for thread, results in waiters:
        thread.join(timeout=1.0)
        assert not thread.is_alive()
        assert results == [None]
    assert buffer.removed_total == 0


def test_access_after_stop_is_rejected_without_mutation(make_buffer) -> None:
    buffer = make_buffer(2)
    buffer.insert(Item(7, 1))
    buffer.stop()

    assert buffer.insert(Item(8, 2)) is False
    assert buffer.remove() is None
    assert buffer.occupancy == 1
    assert buffer.snapshot()[0].payload == 7
    assert buffer.stopped is True


def test_stop_is_idempotent(make_buffer, event_log) -> None:
    buffer = make_buffer(2)
    buffer.stop()
    buffer.stop()

    assert buffer.state is BufferState.DRAINED
    assert event_log.count("Process stopped.") == 1
    assert buffer.insert(Item(1, 1)) is False
    assert buffer.remove() is None


def test_occupancy_stays_within_capacity_under_contention(make_buffer) -> None:
    capacity = 4
    per_producer = 200
    buffer = make_buffer(capacity)
    violations: list[int] = []
    consumed: dict[str, list[Item]] = {}
    sampling = threading.Event()
    sampling.set()

    def produce(name: str) -> None:
        for seq in range(1, per_producer + 1):
            buffer.insert(Item(seq, seq, producer=name))

    def consume(name: str) -> None:
        got: list[Item] = []
        consumed[name] = got
        while True:
            item = buffer.remove()
            if item is None:
                return
            got.append(item)

    def sample() -> None:
        while sampling.is_set():
            occupancy = buffer.occupancy
            if not 0 <= occupancy <= capacity:
                violations.append(occupancy)

    producers = [threading.Thread(target=produce, args=(f"p{i}",)) for i in range(4)]
    consumers = [threading.Thread(target=consume, args=(f"c{i}",)) for i in range(3)]
    sampler = threading.Thread(target=sample)
    for thread in [sampler, *consumers, *producers]:
        thread.start()
    for thread in producers:
        thread.join(timeout=10.0)

    deadline = time.monotonic() + 10.0
    while buffer.occupancy and time.monotonic() < deadline:
        time.sleep(0.01)
    buffer.stop()
    for thread in consumers:
        thread.join(timeout=2.0)
    sampling.clear()
    sampler.join(timeout=2.0)

    assert violations == []
    assert buffer.inserted_total == buffer.removed_total == 4 * per_producer
    all_items = [item for items in consumed.values() for item in items]
    assert len({(item.producer, item.sequence) for item in all_items}) == 4 * per_producer

    # Each consumer sees any one producer's items in production order.
    for items in consumed.values():
        for producer in {item.producer for item in items}:
            seqs = [item.sequence for item in items if item.producer == producer]
            assert seqs == sorted(seqs)


def test_rejects_invalid_construction_and_none_items(make_buffer) -> None:
    with pytest.raises(ValueError):
        BoundedBuffer(0)
    with pytest.raises(ValueError):
        SemaphoreBuffer(-1)
    with pytest.raises(ValueError):
        make_buffer(1).insert(None)


def test_create_buffer_resolves_backends() -> None:
    assert isinstance(create_buffer(2), BoundedBuffer)
    assert isinstance(create_buffer(2, backend=" Semaphore "), SemaphoreBuffer)
    with pytest.raises(ValueError):
        create_buffer(2, backend="ringbuffer")


def test_semaphore_stop_keeps_passing_permits_to_late_callers() -> None:
    buffer = SemaphoreBuffer(1)
    buffer.stop()
    results = [buffer.remove(timeout_s=0.5) for _ in range(5)]
    assert results == [None] * 5
    assert [buffer.insert(Item(i, i), timeout_s=0.5) for i in range(5)] == [False] * 5
