from __future__ import annotations

import logging
import threading

from prodcon import (
    BoundedBuffer,
    BufferSession,
    BufferSimulationConfig,
    EventLog,
    Item,
    logging_sink,
)


def test_event_log_filters_by_prefix() -> None:
    log = EventLog()
    for message in ("Produced: 1", "Consumed: 1", "Produced: 2"):
        log(message)

    assert len(log) == 3
    assert log.count("Produced:") == 2
    assert log.with_prefix("Consumed:") == ["Consumed: 1"]

    log.clear()
    assert log.snapshot() == []


def test_empty_event_log_is_used_as_the_sink() -> None:
    log = EventLog()
    assert bool(log) is True

    buffer = BoundedBuffer(1, log=log)
    buffer.insert(Item(42, 1))
    assert log.snapshot() == ["Produced: 42"]

    session_log = EventLog()
    session = BufferSession(BufferSimulationConfig(items_per_producer=1), log=session_log)
    assert session.log is session_log
    session.buffer.stop()
    assert session_log.snapshot() == ["Process stopped."]


def test_event_log_keeps_most_recent_messages() -> None:
    log = EventLog(maxlen=2)
    for i in range(5):
        log(f"m{i}")
    assert log.snapshot() == ["m3", "m4"]


def test_wait_for_wakes_on_new_message() -> None:
    log = EventLog()
    timer = threading.Timer(0.05, log, args=("Process stopped.",))
    timer.start()

    assert log.wait_for(lambda messages: "Process stopped." in messages, timeout_s=2.0)
    assert not log.wait_for(lambda messages: len(messages) > 5, timeout_s=0.05)
    timer.join()


def test_event_log_forwards_to_logger(caplog) -> None:
    target = logging.getLogger("prodcon.test.forward")
    log = EventLog(forward_to=target)
    with caplog.at_level(logging.INFO, logger="prodcon.test.forward"):
        log("Consumed: 9")
    assert "Consumed: 9" in caplog.messages


def test_logging_sink_emits_at_requested_level(caplog) -> None:
    target = logging.getLogger("prodcon.test.sink")
    sink = logging_sink(target, level=logging.WARNING)
    with caplog.at_level(logging.WARNING, logger="prodcon.test.sink"):
        sink("Producer error: refused")
    assert caplog.records[-1].levelno == logging.WARNING
    assert caplog.records[-1].getMessage() == "Producer error: refused"
