"""Free loopback port reservation shared by every server in the process."""
from __future__ import annotations

import logging
import socket
import threading

from mctest.core.exceptions import AllocationError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"


class PortAllocator:
    """Hand out OS-assigned free ports, never the same one twice while held.

    The OS picks a free ephemeral port for a socket bound to port 0; the socket
    is closed straight away so the server process can bind it. Ports stay
    issued until :meth:`release` so two live servers in this process cannot
    receive the same number even when the OS recycles it quickly.
    """

    def __init__(self, host: str = DEFAULT_HOST, *, max_attempts: int = 32) -> None:
        self.host = host
        self.max_attempts = max(1, int(max_attempts))
        self._lock = threading.Lock()
        self._issued: set[int] = set()

    def _candidate(self) -> int:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        with socket.socket(family, socket.SOCK_STREAM) as sock:
            sock.bind((self.host, 0))
            return int(sock.getsockname()[1])

    def reserve(self) -> int:
        with self._lock:
            for _ in range(self.max_attempts):
                try:
                    port = self._candidate()
                except OSError as exc:
                    raise AllocationError(
                        f"Could not bind a free port on {self.host}: {exc}",
                        context={"host": self.host},
                    ) from exc
                if port in self._issued:
                    continue
                self._issued.add(port)
                logger.debug(f"Reserved port {port} on {self.host}")
                return port

        raise AllocationError(
            f"No free port on {self.host} after {self.max_attempts} attempts",
            context={"host": self.host, "issued": len(self._issued)},
        )

    def release(self, port: int) -> None:
        with self._lock:
            self._issued.discard(int(port))

    def issued(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._issued)


_allocators: dict[str, PortAllocator] = {}
_allocators_lock = threading.Lock()


def allocator_for(host: str) -> PortAllocator:
    """The process-wide allocator for ``host``; one per interface."""
    with _allocators_lock:
        allocator = _allocators.get(host)
        if allocator is None:
            allocator = _allocators[host] = PortAllocator(host)
        return allocator


def default_allocator() -> PortAllocator:
    return allocator_for(DEFAULT_HOST)


def reserve_port() -> int:
    """Reserve a free port on the loopback interface."""
    return default_allocator().reserve()


def release_port(port: int) -> None:
    default_allocator().release(port)


__all__ = [
    "PortAllocator",
    "allocator_for",
    "default_allocator",
    "reserve_port",
    "release_port",
]
