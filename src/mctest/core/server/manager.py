"""Lifecycle of one ephemeral memcached instance.

Semantics:
- ``new_started_server`` only ever returns a server that is READY: the marker
  was seen on stderr and a TCP probe connection succeeded.
- Each construction attempt runs on a worker thread raced against
  ``construction_timeout_seconds``. An attempt that loses the race is
  abandoned: its process is killed (immediately, or as soon as it spawns),
  its PID file removed and its port released. A fresh attempt follows.
- Setup failures (no port, no executable, no PID file name) go to the
  reporter in the caller's thread; they are never returned as values.
- ``stop`` is idempotent and best-effort: SIGTERM, bounded wait, SIGKILL on
  timeout, then PID file removal and port release regardless.
"""
from __future__ import annotations

import logging
import subprocess
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, NoReturn

from pymemcache.client.base import Client

from mctest.core.exceptions import (
    ReadinessError,
    ReadinessTimeout,
    ServerExitedError,
    ServerStateError,
    StopTimeout,
)
from mctest.core.naming import current_test_prefix
from mctest.core.ports import PortAllocator, allocator_for
from mctest.core.reporting import FailureReporter, RaisingReporter
from mctest.core.server.launcher import LaunchedProcess, launch
from mctest.core.server.models import ServerConfig, ServerState
from mctest.core.server.pidfile import remove_pid_file, reserve_pid_file_path
from mctest.core.server.readiness import MarkerWaiter, probe_until_accepting

logger = logging.getLogger(__name__)

_MARKER_POLL_SECONDS = 0.05
_EXIT_GRACE_SECONDS = 0.2
_ABANDON_STOP_SECONDS = 2.0
_PUMP_JOIN_SECONDS = 1.0
_KILL_WAIT_SECONDS = 5.0
_STDERR_TAIL_CHARS = 500


class Server:
    """A unique memcached instance owned by one test."""

    def __init__(
        self,
        reporter: FailureReporter | None = None,
        *,
        config: ServerConfig | None = None,
        stop_timeout: float | None = None,
        allocator: PortAllocator | None = None,
        name_prefix: str | None = None,
    ) -> None:
        self.config = config or ServerConfig()
        self.reporter = reporter or RaisingReporter()
        self.stop_timeout = float(
            stop_timeout if stop_timeout is not None else self.config.stop_timeout_seconds
        )
        self.host = self.config.host
        self.port: int | None = None
        self.pid_file: Path | None = None

        self._allocator = allocator or allocator_for(self.host)
        self._name_prefix = name_prefix
        self._state = ServerState.NOT_STARTED
        self._pid: int | None = None
        self._lock = threading.RLock()
        self._abandoned = threading.Event()

        # Resources still to be released by _teardown.
        self._launched: LaunchedProcess | None = None
        self._held_port: int | None = None
        self._held_pid_file: Path | None = None

    def __repr__(self) -> str:
        return f"<Server {self.host}:{self.port} state={self._state.value} pid={self._pid}>"

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._pid

    @property
    def address(self) -> str:
        if self.port is None:
            raise ServerStateError("Server has no port yet", context={"state": self._state.value})
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def is_running(self) -> bool:
        """True while the server process has been launched and not exited."""
        with self._lock:
            launched = self._launched
        return launched is not None and launched.poll() is None

    def client(self) -> Client:
        """A pymemcache client for this server with a short operation timeout."""
        if self._state is not ServerState.READY:
            raise ServerStateError(
                f"Server is not ready (state={self._state.value})",
                context={"state": self._state.value},
            )
        timeout = self.config.client_timeout_seconds
        return Client((self.host, self.port), connect_timeout=timeout, timeout=timeout)

    def stop(self) -> None:
        """Terminate the server and clean up. Safe to call more than once."""
        with self._lock:
            if self._state is ServerState.STOPPED:
                return
            self._state = ServerState.STOPPED
        self._abandoned.set()
        with self._lock:
            launched = self._launched is not None

        try:
            self._teardown(self.stop_timeout)
        except StopTimeout as exc:
            logger.warning(f"{exc}; continuing without waiting")
        if launched:
            logger.info(f"Stopped memcached at {self.host}:{self.port} (pid {self._pid})")

    # ------------------------------------------------------------------
    # start sequence (runs on the construction worker thread)

    def _record(self, **attrs: Any) -> None:
        with self._lock:
            for name, value in attrs.items():
                setattr(self, name, value)
            if self._abandoned.is_set():
                raise ReadinessError("Start attempt was abandoned")

    def _start_sequence(self) -> None:
        with self._lock:
            if self._state is not ServerState.NOT_STARTED:
                raise ServerStateError(f"Server already {self._state.value}")
            self._state = ServerState.STARTING

        cfg = self.config
        prefix = self._name_prefix or current_test_prefix()

        port = self._allocator.reserve()
        self._record(port=port, _held_port=port)

        pid_file = reserve_pid_file_path(prefix, directory=cfg.pid_dir)
        self._record(pid_file=pid_file, _held_pid_file=pid_file)

        waiter = MarkerWaiter(cfg.marker_bytes)
        with self._lock:
            if self._abandoned.is_set():
                raise ReadinessError("Start attempt was abandoned")
            launched = launch(cfg, port, pid_file, waiter)
            self._launched = launched
            self._pid = launched.pid

        self._wait_for_marker(launched, waiter)

        try:
            probe_until_accepting(
                self.host,
                port,
                connect_timeout=cfg.probe_connect_timeout_seconds,
                interval=cfg.probe_interval_seconds,
                should_stop=lambda: self._abandoned.is_set() or launched.poll() is not None,
            )
        except ReadinessError:
            self._raise_if_exited(launched, grace=_EXIT_GRACE_SECONDS)
            raise

        with self._lock:
            if self._abandoned.is_set():
                raise ReadinessError("Start attempt was abandoned")
            self._state = ServerState.READY
        logger.info(f"memcached ready at {self.address} (pid {self._pid})")

    def _wait_for_marker(self, launched: LaunchedProcess, waiter: MarkerWaiter) -> None:
        # No timeout of its own: bounded by the construction timeout via _abandon.
        while not waiter.wait(_MARKER_POLL_SECONDS):
            if self._abandoned.is_set():
                raise ReadinessError("Start attempt was abandoned")
            if waiter.closed or launched.poll() is not None:
                self._raise_if_exited(launched, grace=_EXIT_GRACE_SECONDS)

    def _raise_if_exited(self, launched: LaunchedProcess, *, grace: float) -> None:
        try:
            code = launched.process.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            return
        launched.pump.join(timeout=_PUMP_JOIN_SECONDS)
        raise ServerExitedError(
            f"{launched.command[0]} exited with code {code} before becoming ready",
            exit_code=code,
            stderr_tail=launched.tail.text()[-_STDERR_TAIL_CHARS:],
            context={"port": self.port},
        )

    # ------------------------------------------------------------------
    # teardown

    def _abandon(self) -> None:
        """Give up on a start attempt that timed out or whose waiter was interrupted."""
        self._abandoned.set()
        with self._lock:
            self._state = ServerState.STOPPED
        self._teardown_quietly()

    def _fatal(self, error: BaseException) -> NoReturn:
        """Hand a setup failure to the owning test's reporter."""
        self.reporter.fatal(str(error) or error.__class__.__name__)
        # Reporter returned instead of aborting; never hand out a broken server.
        raise error

    def _teardown_quietly(self) -> None:
        try:
            self._teardown(min(self.stop_timeout, _ABANDON_STOP_SECONDS))
        except StopTimeout as exc:
            logger.warning(str(exc))

    def _teardown(self, timeout: float) -> None:
        with self._lock:
            launched, self._launched = self._launched, None
            pid_file, self._held_pid_file = self._held_pid_file, None
            port, self._held_port = self._held_port, None

        try:
            if launched is not None:
                self._terminate(launched, timeout)
        finally:
            remove_pid_file(pid_file)
            if port is not None:
                self._allocator.release(port)

    def _terminate(self, launched: LaunchedProcess, timeout: float) -> None:
        proc = launched.process
        if proc.poll() is None:
            try:
                proc.terminate()
            except OSError:
                pass
        try:
            proc.wait(timeout=max(0.0, float(timeout)))
        except subprocess.TimeoutExpired as exc:
            try:
                proc.kill()
                proc.wait(timeout=_KILL_WAIT_SECONDS)
            except (OSError, subprocess.TimeoutExpired):
                pass
            raise StopTimeout(
                f"memcached pid {proc.pid} did not exit within {timeout}s",
                context={"pid": proc.pid, "timeout_seconds": timeout},
            ) from exc
        finally:
            launched.pump.join(timeout=_PUMP_JOIN_SECONDS)


class _StartAttempt:
    """Runs one server's start sequence on a daemon thread."""

    def __init__(self, server: Server) -> None:
        self.server = server
        self.error: BaseException | None = None
        self.done = threading.Event()
        self._thread = threading.Thread(target=self._run, name="mctest-start", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        try:
            self.server._start_sequence()
        except BaseException as exc:  # noqa: BLE001 - handed to the caller thread
            self.error = exc
            self.server._teardown_quietly()
        finally:
            self.done.set()


def new_started_server(
    reporter: FailureReporter | None = None,
    *,
    config: ServerConfig | None = None,
    stop_timeout: float | None = None,
    allocator: PortAllocator | None = None,
) -> Server:
    """Create a memcached server and block until it accepts connections."""
    if config is None:
        # Lazy import to avoid circular dependencies
        from mctest.core.config import load_config

        config = load_config()
    reporter = reporter or RaisingReporter()
    prefix = current_test_prefix()

    timed_out = 0
    early_exits = 0
    while True:
        server = Server(
            reporter,
            config=config,
            stop_timeout=stop_timeout,
            allocator=allocator,
            name_prefix=prefix,
        )
        attempt = _StartAttempt(server)
        attempt.start()

        try:
            finished = attempt.done.wait(config.construction_timeout_seconds)
        except BaseException:
            # Interrupted while waiting; the child runs in its own session and
            # would not see the interrupt.
            server._abandon()
            raise

        if not finished:
            timed_out += 1
            early_exits = 0
            server._abandon()
            logger.warning(
                f"memcached on port {server.port} not ready after "
                f"{config.construction_timeout_seconds}s (attempt {timed_out}); retrying"
            )
            cap = config.max_construction_attempts
            if cap and timed_out >= cap:
                server._fatal(
                    ReadinessTimeout(
                        f"memcached did not become ready in {cap} attempts of "
                        f"{config.construction_timeout_seconds}s",
                        context={"attempts": cap},
                    ),
                )
            continue

        error = attempt.error
        if error is None:
            return server

        if isinstance(error, ServerExitedError):
            early_exits += 1
            logger.warning(f"{error} (early exit {early_exits}/{config.max_early_exits})")
            if error.stderr_tail:
                logger.debug(f"memcached stderr: {error.stderr_tail}")
            if early_exits < config.max_early_exits:
                continue

        server._fatal(error)


@contextmanager
def server_lifecycle(
    reporter: FailureReporter | None = None,
    *,
    config: ServerConfig | None = None,
    stop_timeout: float | None = None,
) -> Iterator[Server]:
    """Yield a started server and stop it on exit."""
    server = new_started_server(reporter, config=config, stop_timeout=stop_timeout)
    try:
        yield server
    finally:
        server.stop()


__all__ = [
    "Server",
    "new_started_server",
    "server_lifecycle",
]
