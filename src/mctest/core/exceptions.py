from __future__ import annotations

from typing import Any, Dict, Mapping


class MctestError(Exception):
    """Base exception for mctest."""

    context: Dict[str, Any]

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        if context is not None:
            # Store a shallow copy to avoid accidental mutation.
            self.context = dict(context)
        else:
            self.context = {}

    def to_json_error(self) -> Dict[str, Any]:
        """Return a JSON-serializable error payload."""
        return {
            "message": str(self),
            "code": self.__class__.__name__,
            "context": self.context,
        }


class ConfigError(MctestError, ValueError):
    """Raised when configuration cannot be loaded or fails validation."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        MctestError.__init__(self, message, context=context)
        ValueError.__init__(self, message)


class AllocationError(MctestError, RuntimeError):
    """Raised when no free local port can be reserved."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        MctestError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)


class SpawnError(MctestError, RuntimeError):
    """Raised when the server process cannot be started."""

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if command:
            ctx["command"] = list(command)
        MctestError.__init__(self, message, context=ctx)
        RuntimeError.__init__(self, message)


class PidFileError(MctestError, OSError):
    """Raised when a PID file name cannot be reserved."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        MctestError.__init__(self, message, context=context)
        OSError.__init__(self, message)


class ReadinessError(MctestError, RuntimeError):
    """Raised when the readiness gate is aborted before the server is ready."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        MctestError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)


class ServerExitedError(ReadinessError):
    """Raised when the server process exits before becoming ready."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr_tail: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        if exit_code is not None:
            ctx["exit_code"] = exit_code
        if stderr_tail:
            ctx["stderr_tail"] = stderr_tail
        super().__init__(message, context=ctx)
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail or ""


class ReadinessTimeout(MctestError, TimeoutError):
    """Raised when a server did not become ready within the construction timeout."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        MctestError.__init__(self, message, context=context)
        TimeoutError.__init__(self, message)


class StopTimeout(MctestError, TimeoutError):
    """Raised when a server process did not exit within the stop timeout."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        MctestError.__init__(self, message, context=context)
        TimeoutError.__init__(self, message)


class ServerStateError(MctestError, RuntimeError):
    """Raised when a server is used in a state that does not allow it."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        MctestError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)


class SetupError(MctestError, RuntimeError):
    """Fatal server setup failure raised by the default reporter."""

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        MctestError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)


__all__ = [
    "MctestError",
    "ConfigError",
    "AllocationError",
    "SpawnError",
    "PidFileError",
    "ReadinessError",
    "ServerExitedError",
    "ReadinessTimeout",
    "StopTimeout",
    "ServerStateError",
    "SetupError",
]
