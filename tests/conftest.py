"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import socket
from collections.abc import Callable

import pytest

from prodcon import BufferLike, EventLog, create_buffer

LOOPBACK = "127.0.0.1"


@pytest.fixture
def event_log() -> EventLog:
    """In-memory log sink capturing every event of a test."""
    return EventLog()


@pytest.fixture(params=["condition", "semaphore"])
def buffer_backend(request: pytest.FixtureRequest) -> str:
    return request.param


@pytest.fixture
def make_buffer(buffer_backend: str, event_log: EventLog) -> Callable[[int], BufferLike]:
    """Factory for a buffer of the parametrized backend wired to `event_log`."""

    def _make(capacity: int) -> BufferLike:
        return create_buffer(capacity, backend=buffer_backend, log=event_log)

    return _make


@pytest.fixture
def closed_port() -> int:
    """A loopback port nobody is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOOPBACK, 0))
        return int(sock.getsockname()[1])
