"""pytest fixtures for per-test memcached servers.

Registered through the ``pytest11`` entry point, so installing mctest is enough::

    def test_cache(memcached_server):
        client = memcached_server.client()
        client.set("k", b"v", noreply=False)
        assert client.get("k") == b"v"

Override ``mctest_config`` in a conftest to change how servers are launched.
"""
from __future__ import annotations

from collections.abc import Iterator

import pytest

from mctest.core.config import load_config
from mctest.core.reporting import PytestReporter
from mctest.core.server import Server, ServerConfig, server_lifecycle


@pytest.fixture
def mctest_config() -> ServerConfig:
    return load_config()


@pytest.fixture
def memcached_server(mctest_config: ServerConfig) -> Iterator[Server]:
    with server_lifecycle(PytestReporter(), config=mctest_config) as server:
        yield server
