from __future__ import annotations

import pytest

from mctest.core.server.models import ServerConfig


def test_server_config_from_raw_non_mapping_returns_defaults() -> None:
    cfg = ServerConfig.from_raw(None)
    assert cfg == ServerConfig()
    assert cfg.command == ["memcached"]
    assert cfg.host == "127.0.0.1"
    assert cfg.readiness_marker == "server listening"


def test_server_config_from_raw_reads_all_sections() -> None:
    raw = {
        "server": {
            "command": ["/opt/memcached/bin/memcached"],
            "host": "127.0.0.1",
            "memory_mb": 16,
            "max_item_size": "1m",
            "extra_args": ["-t", "2"],
            "readiness_marker": "ready now",
            "verbose": True,
            "pid_dir": "/tmp/mc",
        },
        "timeouts": {
            "construction_seconds": 3,
            "stop_seconds": 1.5,
            "client_seconds": 0.25,
            "probe_connect_seconds": 0.1,
            "probe_interval_seconds": 0.01,
        },
        "retries": {"max_early_exits": 5, "max_construction_attempts": 2},
    }

    cfg = ServerConfig.from_raw(raw)

    assert cfg.command == ["/opt/memcached/bin/memcached"]
    assert cfg.memory_mb == 16
    assert cfg.max_item_size == "1m"
    assert cfg.extra_args == ["-t", "2"]
    assert cfg.readiness_marker == "ready now"
    assert cfg.marker_bytes == b"ready now"
    assert cfg.verbose is True
    assert cfg.pid_dir == "/tmp/mc"
    assert cfg.construction_timeout_seconds == 3.0
    assert cfg.stop_timeout_seconds == 1.5
    assert cfg.client_timeout_seconds == 0.25
    assert cfg.probe_connect_timeout_seconds == 0.1
    assert cfg.probe_interval_seconds == 0.01
    assert cfg.max_early_exits == 5
    assert cfg.max_construction_attempts == 2


def test_server_config_accepts_command_as_string(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MC_HOME", "/opt/mc")
    cfg = ServerConfig.from_raw({"server": {"command": "$MC_HOME/memcached"}})
    assert cfg.command == ["/opt/mc/memcached"]


def test_server_config_blank_pid_dir_means_system_temp() -> None:
    cfg = ServerConfig.from_raw({"server": {"pid_dir": "  "}})
    assert cfg.pid_dir is None


def test_server_config_bad_numbers_fall_back_to_defaults() -> None:
    cfg = ServerConfig.from_raw({"timeouts": {"stop_seconds": "soon"}, "retries": {"max_early_exits": None}})
    assert cfg.stop_timeout_seconds == ServerConfig().stop_timeout_seconds
    assert cfg.max_early_exits == ServerConfig().max_early_exits


def test_server_config_with_overrides_returns_copy() -> None:
    base = ServerConfig()
    changed = base.with_overrides(stop_timeout_seconds=0.5, verbose=True)
    assert changed.stop_timeout_seconds == 0.5
    assert changed.verbose is True
    assert base.stop_timeout_seconds == 15.0
    assert base.verbose is False
