"""Readiness detection: diagnostic-output marker scan plus a TCP connect probe.

Neither signal is enough on its own. The marker line can be logged slightly
before the listening socket accepts, and a socket-only poll cannot tell a slow
start from a broken one. The server is ready once the marker has been seen and
a probe connection has then succeeded.
"""
from __future__ import annotations

import logging
import socket
import threading
import time
from typing import IO, Callable, Optional, TextIO

from mctest.core.exceptions import ReadinessError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 4096


class MarkerWaiter:
    """Write-only sink that fires once when ``marker`` appears in the stream.

    Only the trailing ``len(marker) - 1`` bytes of previous writes are kept, so
    a marker split across any number of writes is still found while memory
    stays bounded.
    """

    def __init__(self, marker: bytes, on_match: Optional[Callable[[], None]] = None) -> None:
        if not marker:
            raise ValueError("marker must not be empty")
        self.marker = bytes(marker)
        self._on_match = on_match
        self._tail = b""
        self._lock = threading.Lock()
        self._matched = threading.Event()
        self._closed = threading.Event()

    def write(self, data: bytes) -> int:
        fire = False
        with self._lock:
            if not self._matched.is_set():
                window = self._tail + bytes(data)
                if self.marker in window:
                    self._tail = b""
                    self._matched.set()
                    fire = True
                else:
                    keep = len(self.marker) - 1
                    self._tail = window[-keep:] if keep else b""
        if fire and self._on_match is not None:
            self._on_match()
        return len(data)

    def close(self) -> None:
        """Mark end of stream; an unmatched waiter will never match now."""
        self._closed.set()

    @property
    def matched(self) -> bool:
        return self._matched.is_set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._matched.wait(timeout)


class TailBuffer:
    """Keeps the last ``limit`` bytes written, for error messages."""

    def __init__(self, limit: int = 2048) -> None:
        self.limit = limit
        self._data = bytearray()
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        with self._lock:
            self._data.extend(data)
            if len(self._data) > self.limit:
                del self._data[: len(self._data) - self.limit]
        return len(data)

    def text(self) -> str:
        with self._lock:
            return bytes(self._data).decode("utf-8", errors="replace")


def pump_stream(
    stream: IO[bytes],
    waiter: MarkerWaiter,
    *,
    tail: TailBuffer | None = None,
    echo: TextIO | None = None,
) -> None:
    """Copy ``stream`` to the waiter (and optional tail/echo) until EOF."""
    read = getattr(stream, "read1", stream.read)
    try:
        while True:
            chunk = read(_CHUNK_SIZE)
            if not chunk:
                break
            if tail is not None:
                tail.write(chunk)
            waiter.write(chunk)
            if echo is not None:
                try:
                    echo.write(chunk.decode("utf-8", errors="replace"))
                    echo.flush()
                except (OSError, ValueError):
                    # Runner closed its stream; stop echoing, keep scanning.
                    echo = None
    except (OSError, ValueError) as exc:
        logger.debug(f"Diagnostic stream closed while reading: {exc}")
    finally:
        waiter.close()
        try:
            stream.close()
        except OSError:
            pass


def start_pump(
    stream: IO[bytes],
    waiter: MarkerWaiter,
    *,
    tail: TailBuffer | None = None,
    echo: TextIO | None = None,
    name: str = "mctest-stderr",
) -> threading.Thread:
    thread = threading.Thread(
        target=pump_stream,
        args=(stream, waiter),
        kwargs={"tail": tail, "echo": echo},
        name=name,
        daemon=True,
    )
    thread.start()
    return thread


def probe_until_accepting(
    host: str,
    port: int,
    *,
    connect_timeout: float = 0.5,
    interval: float = 0.0,
    should_stop: Callable[[], bool] = lambda: False,
) -> int:
    """Connect repeatedly until the server accepts; close the probe at once.

    Returns the number of failed attempts before the successful one. Raises
    :class:`ReadinessError` when ``should_stop`` turns true between attempts.
    """
    failures = 0
    while True:
        try:
            with socket.create_connection((host, port), timeout=max(0.01, float(connect_timeout))):
                logger.debug(f"Probe connected to {host}:{port} after {failures} failed attempts")
                return failures
        except OSError:
            failures += 1
            if should_stop():
                raise ReadinessError(
                    f"Gave up probing {host}:{port}",
                    context={"host": host, "port": port, "failures": failures},
                )
            # sleep(0) still yields to the pump and worker threads.
            time.sleep(max(0.0, float(interval)))


__all__ = [
    "MarkerWaiter",
    "TailBuffer",
    "pump_stream",
    "start_pump",
    "probe_until_accepting",
]
