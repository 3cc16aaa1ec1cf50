from __future__ import annotations

import logging
import os
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from mctest.core.exceptions import SpawnError
from mctest.core.server.models import ServerConfig
from mctest.core.server.readiness import MarkerWaiter, TailBuffer, start_pump

logger = logging.getLogger(__name__)


@dataclass
class LaunchedProcess:
    process: subprocess.Popen[bytes]
    command: list[str]
    pump: threading.Thread
    tail: TailBuffer

    @property
    def pid(self) -> int:
        return self.process.pid

    def poll(self) -> int | None:
        return self.process.poll()


def build_command(config: ServerConfig, port: int, pid_file: Path | str) -> list[str]:
    """Command line for one memcached instance bound to ``config.host:port``."""
    return [
        *config.command,
        "-vv",
        "-l",
        config.host,
        "-p",
        str(port),
        # UDP off so concurrent instances never share the default UDP port.
        "-U",
        "0",
        "-m",
        str(config.memory_mb),
        "-I",
        str(config.max_item_size),
        "-P",
        str(pid_file),
        *config.extra_args,
    ]


def _popen_kwargs(verbose: bool) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "stdin": subprocess.DEVNULL,
        "stderr": subprocess.PIPE,
        "stdout": None if verbose else subprocess.DEVNULL,
    }
    if os.name == "posix":
        kwargs["start_new_session"] = True
    return kwargs


def launch(
    config: ServerConfig,
    port: int,
    pid_file: Path | str,
    waiter: MarkerWaiter,
) -> LaunchedProcess:
    """Start the server with its stderr piped through the readiness waiter.

    With ``config.verbose`` the diagnostics are also echoed to this process's
    stderr and the server's stdout is inherited.
    """
    argv = build_command(config, port, pid_file)
    logger.debug(f"Launching: {' '.join(argv)}")
    try:
        proc = subprocess.Popen(argv, **_popen_kwargs(config.verbose))  # noqa: S603
    except FileNotFoundError as exc:
        raise SpawnError(f"Server executable not found: {argv[0]}", command=argv) from exc
    except PermissionError as exc:
        raise SpawnError(f"Server executable is not runnable: {argv[0]}", command=argv) from exc
    except OSError as exc:
        raise SpawnError(f"Failed to start {argv[0]}: {exc}", command=argv) from exc

    tail = TailBuffer()
    assert proc.stderr is not None
    pump = start_pump(
        proc.stderr,
        waiter,
        tail=tail,
        echo=sys.stderr if config.verbose else None,
        name=f"mctest-stderr-{port}",
    )
    return LaunchedProcess(process=proc, command=argv, pump=pump, tail=tail)


__all__ = ["LaunchedProcess", "build_command", "launch"]
