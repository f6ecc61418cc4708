"""
prodcon - Bounded-buffer producer/consumer coordination over two transports.

In-process, sharing one ring buffer:

    >>> config = prodcon.BufferSimulationConfig(capacity=5, producers=3, consumers=2)
    >>> with prodcon.BufferSession(config) as session:
    ...     time.sleep(2.0)
    >>> session.report().removed <= session.report().inserted

Networked, one TCP listener per consumer:

    >>> report = prodcon.StreamSession(prodcon.StreamSimulationConfig(items_per_producer=3)).run()
    >>> report.received["consumer-0"]
    [['Item 1', 'Item 2', 'Item 3']]
"""

from __future__ import annotations

from .actors import Actor, BufferConsumer, BufferProducer, StreamConsumer, StreamProducer
from .buffer import BoundedBuffer, BufferLike, BufferState, Item, SemaphoreBuffer, create_buffer
from .config import (
    BufferSimulationConfig,
    ConfigurationError,
    StreamSimulationConfig,
    load_simulation_config,
)
from .events import EventLog, LogSink, logging_sink
from .pacing import Pacer, PacingStats
from .session import BufferSession, BufferSessionReport, StreamSession, StreamSessionReport
from .stream import (
    ConnectionFailure,
    StreamConnection,
    StreamListener,
    connect,
    receive_loop,
    send_sequence,
)

__version__ = "0.1.0"

__all__ = [
    "Actor",
    "BoundedBuffer",
    "BufferConsumer",
    "BufferLike",
    "BufferProducer",
    "BufferSession",
    "BufferSessionReport",
    "BufferSimulationConfig",
    "BufferState",
    "ConfigurationError",
    "ConnectionFailure",
    "EventLog",
    "Item",
    "LogSink",
    "Pacer",
    "PacingStats",
    "SemaphoreBuffer",
    "StreamConnection",
    "StreamConsumer",
    "StreamListener",
    "StreamProducer",
    "StreamSession",
    "StreamSessionReport",
    "StreamSimulationConfig",
    "connect",
    "create_buffer",
    "load_simulation_config",
    "logging_sink",
    "receive_loop",
    "send_sequence",
]
