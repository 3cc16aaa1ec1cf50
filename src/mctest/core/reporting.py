"""Failure reporters used to abort the owning test when server setup fails."""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from mctest.core.exceptions import SetupError


@runtime_checkable
class FailureReporter(Protocol):
    """Anything that can abort the owning test with a message.

    Implementations are expected not to return; when one does, the caller
    raises the underlying error itself.
    """

    def fatal(self, message: str) -> None: ...


class RaisingReporter:
    """Default reporter: raise :class:`SetupError`."""

    def fatal(self, message: str) -> None:
        raise SetupError(message)


class PytestReporter:
    """Fail the current pytest test without a traceback into mctest internals."""

    def fatal(self, message: str) -> None:
        import pytest

        pytest.fail(message, pytrace=False)


__all__ = ["FailureReporter", "RaisingReporter", "PytestReporter"]
