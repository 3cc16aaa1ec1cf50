"""Ephemeral memcached server lifecycle.

Primitives for:
- Launching memcached on a reserved loopback port
- Waiting for readiness (stderr marker, then a TCP probe)
- Stopping with a bounded wait and cleaning up the PID file
"""

from .launcher import LaunchedProcess, build_command, launch
from .manager import Server, new_started_server, server_lifecycle
from .models import ServerConfig, ServerState
from .pidfile import read_pid_file, remove_pid_file, reserve_pid_file_path
from .readiness import MarkerWaiter, probe_until_accepting

__all__ = [
    "LaunchedProcess",
    "MarkerWaiter",
    "Server",
    "ServerConfig",
    "ServerState",
    "build_command",
    "launch",
    "new_started_server",
    "probe_until_accepting",
    "read_pid_file",
    "remove_pid_file",
    "reserve_pid_file_path",
    "server_lifecycle",
]
