from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class ServerState(str, Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ServerConfig:
    """Settings for launching, probing and stopping one memcached instance."""

    command: list[str] = field(default_factory=lambda: ["memcached"])
    host: str = "127.0.0.1"
    memory_mb: int = 8
    max_item_size: str = "256k"
    extra_args: list[str] = field(default_factory=list)
    readiness_marker: str = "server listening"
    verbose: bool = False
    pid_dir: str | None = None
    construction_timeout_seconds: float = 10.0
    stop_timeout_seconds: float = 15.0
    client_timeout_seconds: float = 1.0
    probe_connect_timeout_seconds: float = 0.5
    probe_interval_seconds: float = 0.0
    max_early_exits: int = 3
    max_construction_attempts: int = 0

    @classmethod
    def from_raw(cls, raw: Any) -> ServerConfig:
        """Build a config from the merged ``server``/``timeouts``/``retries`` mapping."""
        if not isinstance(raw, dict):
            return cls()

        server = raw.get("server") if isinstance(raw.get("server"), dict) else {}
        timeouts = raw.get("timeouts") if isinstance(raw.get("timeouts"), dict) else {}
        retries = raw.get("retries") if isinstance(raw.get("retries"), dict) else {}
        defaults = cls()

        def _as_float(v: Any, default: float) -> float:
            try:
                if v is None:
                    return float(default)
                return float(v)
            except Exception:
                return float(default)

        def _as_int(v: Any, default: int) -> int:
            try:
                if v is None:
                    return int(default)
                return int(v)
            except Exception:
                return int(default)

        command_raw = server.get("command")
        if isinstance(command_raw, str):
            command = [os.path.expandvars(command_raw.strip())]
        elif isinstance(command_raw, list) and command_raw:
            command = [os.path.expandvars(str(part)) for part in command_raw]
        else:
            command = list(defaults.command)

        extra_raw = server.get("extra_args")
        extra_args = [str(a) for a in extra_raw] if isinstance(extra_raw, list) else []

        pid_dir_raw = server.get("pid_dir")
        pid_dir = os.path.expandvars(str(pid_dir_raw).strip()) if pid_dir_raw is not None else None
        if pid_dir == "":
            pid_dir = None

        return cls(
            command=command,
            host=str(server.get("host") or defaults.host).strip(),
            memory_mb=_as_int(server.get("memory_mb"), defaults.memory_mb),
            max_item_size=str(server.get("max_item_size") or defaults.max_item_size),
            extra_args=extra_args,
            readiness_marker=str(server.get("readiness_marker") or defaults.readiness_marker),
            verbose=bool(server.get("verbose", False)),
            pid_dir=pid_dir,
            construction_timeout_seconds=_as_float(
                timeouts.get("construction_seconds"), defaults.construction_timeout_seconds
            ),
            stop_timeout_seconds=_as_float(
                timeouts.get("stop_seconds"), defaults.stop_timeout_seconds
            ),
            client_timeout_seconds=_as_float(
                timeouts.get("client_seconds"), defaults.client_timeout_seconds
            ),
            probe_connect_timeout_seconds=_as_float(
                timeouts.get("probe_connect_seconds"), defaults.probe_connect_timeout_seconds
            ),
            probe_interval_seconds=_as_float(
                timeouts.get("probe_interval_seconds"), defaults.probe_interval_seconds
            ),
            max_early_exits=_as_int(retries.get("max_early_exits"), defaults.max_early_exits),
            max_construction_attempts=_as_int(
                retries.get("max_construction_attempts"), defaults.max_construction_attempts
            ),
        )

    def with_overrides(self, **changes: Any) -> ServerConfig:
        return replace(self, **changes)

    @property
    def marker_bytes(self) -> bytes:
        return self.readiness_marker.encode("utf-8")


__all__ = ["ServerConfig", "ServerState"]
