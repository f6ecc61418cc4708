"""
prodcon.stream - Point-to-point line-delimited TCP channel between one producer and one consumer.

Wire format: UTF-8 text, one item per line, `\\n` terminated. No length
prefix, no acknowledgement, no version negotiation. Flow control is the
pacing on each side plus the kernel socket buffers.
"""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Callable, Iterator
from typing import Any

from .events import LogSink, null_sink
from .pacing import Pacer

logger = logging.getLogger("prodcon.stream")

ITEM_PREFIX = "Item "


class ConnectionFailure(ConnectionError):
    """Connect/accept/read/write failure on a stream pairing. Never retried."""


def format_item(sequence: int) -> str:
    return f"{ITEM_PREFIX}{sequence}"


def parse_sequence(token: str) -> int | None:
    """Sequence number of an `Item <n>` token, None for foreign tokens."""
    if not token.startswith(ITEM_PREFIX):
        return None
    try:
        return int(token[len(ITEM_PREFIX):])
    except ValueError:
        return None


def encode_item(item: str) -> bytes:
    if "\n" in item or "\r" in item:
        raise ValueError(f"Item must not contain line terminators: {item!r}")
    return (item + "\n").encode("utf-8")


def decode_line(line: bytes) -> str:
    return line.decode("utf-8").rstrip("\r\n")


class StreamConnection:
    """One established, exclusively owned byte stream carrying line items."""

    def __init__(self, sock: socket.socket, *, peer: Any = None) -> None:
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._lock = threading.Lock()
        self._closed = False
        self.peer = peer

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def send(self, item: str) -> None:
        data = encode_item(item)
        try:
            self._sock.sendall(data)
        except OSError as exc:
            raise ConnectionFailure(f"send to {self.peer} failed: {exc}") from exc

    def recv(self) -> str | None:
        """Next item, or None at end-of-stream."""
        try:
            line = self._reader.readline()
            if not line:
                return None
            # UnicodeDecodeError is a ValueError.
            return decode_line(line)
        except (OSError, ValueError) as exc:
            raise ConnectionFailure(f"read from {self.peer} failed: {exc}") from exc

    def __iter__(self) -> Iterator[str]:
        while True:
            item = self.recv()
            if item is None:
                return
            yield item

    def shutdown(self) -> None:
        """Wake any thread blocked on this connection; safe from any thread."""
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone or socket already closed.
            logger.debug(f"[STREAM] shutdown on {self.peer} ignored, socket not connected")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._reader.close()
        self._sock.close()

    def __enter__(self) -> "StreamConnection":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()


class StreamListener:
    """
    Listening endpoint of one consumer.

    A listener has a single lifetime: `listen()` once, then accept up to
    `expected_peers` connections, after which the listening socket is closed.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        log: LogSink | None = None,
        expected_peers: int = 1,
        accept_poll_s: float = 0.1,
    ) -> None:
        if expected_peers < 0:
            raise ValueError("expected_peers must be >= 0")
        if accept_poll_s <= 0:
            raise ValueError("accept_poll_s must be > 0")
        self.host = host
        self.requested_port = int(port)
        self.expected_peers = int(expected_peers)
        self.accept_poll_s = accept_poll_s
        self.ready = threading.Event()

        self._log = log if log is not None else null_sink
        self._sock: socket.socket | None = None
        self._lock = threading.Lock()
        self._closed = False
        self._used = False
        self._accepted = 0
        self._port: int | None = None

    @property
    def port(self) -> int:
        """Bound port; differs from the requested one when that was 0."""
        if self._port is None:
            raise RuntimeError("listen() has not been called")
        return self._port

    @property
    def accepted(self) -> int:
        with self._lock:
            return self._accepted

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def listen(self) -> "StreamListener":
        with self._lock:
            if self._used:
                raise RuntimeError("StreamListener supports a single listen() per lifetime")
            self._used = True
        try:
            sock = socket.create_server(
                (self.host, self.requested_port),
                backlog=max(self.expected_peers, 1),
            )
        except OSError as exc:
            with self._lock:
                self._closed = True
            raise ConnectionFailure(
                f"cannot listen on {self.host}:{self.requested_port}: {exc}"
            ) from exc
        sock.settimeout(self.accept_poll_s)

        with self._lock:
            self._sock = sock
            self._port = int(sock.getsockname()[1])
        logger.info(f"[STREAM] listening on {self.host}:{self._port}")
        self._log(f"Consumer waiting for connection on {self.host}:{self._port}...")
        self.ready.set()
        return self

    def accept(self, *, stop_event: threading.Event | None = None) -> StreamConnection | None:
        """
        Block until a producer connects.

        Returns None when `stop_event` is set or the listener is closed while
        waiting.
        """
        with self._lock:
            sock = self._sock
            if sock is None:
                raise RuntimeError("listen() must be called before accept()")
            if self._accepted >= self.expected_peers:
                raise RuntimeError("StreamListener has already accepted all expected peers")

        while True:
            if stop_event is not None and stop_event.is_set():
                return None
            if self.closed:
                return None
            try:
                conn, addr = sock.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self.closed or (stop_event is not None and stop_event.is_set()):
                    return None
                raise ConnectionFailure(f"accept on port {self._port} failed: {exc}") from exc
            break

        conn.settimeout(None)
        with self._lock:
            self._accepted += 1
            done = self._accepted >= self.expected_peers
        logger.info(f"[STREAM] accepted {addr} on port {self._port}")
        self._log("Connection established with producer.")
        if done:
            self.close()
        return StreamConnection(conn, peer=addr)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            sock = self._sock
        if sock is not None:
            sock.close()

    def __enter__(self) -> "StreamListener":
        if not self._used:
            self.listen()
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()


def connect(host: str, port: int, *, timeout_s: float | None = None) -> StreamConnection:
    """Open a producer connection. Fails immediately if nobody is listening."""
    try:
        sock = socket.create_connection((host, port), timeout=timeout_s)
    except OSError as exc:
        raise ConnectionFailure(f"cannot connect to {host}:{port}: {exc}") from exc
    sock.settimeout(None)
    logger.info(f"[STREAM] connected to {host}:{port}")
    return StreamConnection(sock, peer=(host, port))


def receive_loop(
    connection: StreamConnection,
    *,
    pacer: Pacer,
    log: LogSink | None = None,
    on_item: Callable[[str], None] | None = None,
) -> int:
    """
    Drain items until end-of-stream, pacing each one as consumption cost.

    Returns the number of items consumed. Stops early, without error, when
    the pacer is interrupted. A reset connection or undecodable line raises
    ConnectionFailure.
    """
    log = log if log is not None else null_sink
    consumed = 0
    while True:
        item = connection.recv()
        if item is None:
            break
        if not pacer.wait():
            break
        log(f"Consumed: {item}")
        if on_item is not None:
            on_item(item)
        consumed += 1
    return consumed


def send_sequence(
    connection: StreamConnection,
    count: int,
    *,
    pacer: Pacer,
    log: LogSink | None = None,
) -> int:
    """
    Send `Item 1` .. `Item count`, pacing before each, then close the connection.

    Returns the number of items written; fewer than `count` when interrupted.
    """
    if count < 0:
        raise ValueError("count must be >= 0")
    log = log if log is not None else null_sink
    sent = 0
    try:
        for sequence in range(1, count + 1):
            if not pacer.wait():
                break
            item = format_item(sequence)
            connection.send(item)
            log(f"Produced: {item}")
            sent += 1
    finally:
        connection.close()
    return sent
