import sys
from pathlib import Path

import pytest

# Keep the repository free of Python bytecode and __pycache__ artifacts during tests.
sys.dont_write_bytecode = True

TESTS_ROOT = Path(__file__).resolve().parent
REPO_ROOT = TESTS_ROOT.parent
SRC_ROOT = REPO_ROOT / "src"

# Make src/ importable as 'mctest' and tests/ as 'helpers'
for p in (SRC_ROOT, TESTS_ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))


from mctest.core.server.models import ServerConfig
from mctest.data import clear_caches
from mctest.pytest_plugin import memcached_server  # noqa: F401
from helpers.servers import fake_server_config


@pytest.fixture(autouse=True)
def _isolated_mctest_env(monkeypatch: pytest.MonkeyPatch):
    """Keep developer MCTEST_* settings from leaking into config tests."""
    import os

    for key in list(os.environ):
        if key.startswith("MCTEST_"):
            monkeypatch.delenv(key, raising=False)
    clear_caches()
    yield
    clear_caches()


@pytest.fixture
def mctest_config(tmp_path: Path) -> ServerConfig:
    """Plugin fixtures launch the fake server unless a test overrides this."""
    return fake_server_config(tmp_path)
