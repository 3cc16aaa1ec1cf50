"""
mctest - standalone memcached instances for tests

Each test gets its own memcached process on a free loopback port, started
before the test body runs and stopped deterministically afterwards.
"""

from mctest.core.exceptions import MctestError, SetupError
from mctest.core.reporting import FailureReporter, PytestReporter, RaisingReporter
from mctest.core.server import Server, ServerConfig, new_started_server, server_lifecycle

__version__ = "1.0.0"
__all__ = [
    "__version__",
    "FailureReporter",
    "MctestError",
    "PytestReporter",
    "RaisingReporter",
    "Server",
    "ServerConfig",
    "SetupError",
    "new_started_server",
    "server_lifecycle",
]
