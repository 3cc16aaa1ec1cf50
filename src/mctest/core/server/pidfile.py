from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from mctest.core.exceptions import PidFileError

logger = logging.getLogger(__name__)


def reserve_pid_file_path(prefix: str, *, directory: str | Path | None = None) -> Path:
    """Reserve a unique temp file name for the server to write its PID into.

    The file is created (which makes the name unique), closed and deleted; only
    the name is handed to the server. Two servers can therefore never be given
    the same path.
    """
    try:
        fd, name = tempfile.mkstemp(
            prefix=prefix,
            suffix=".pid",
            dir=str(directory) if directory is not None else None,
        )
    except OSError as exc:
        raise PidFileError(
            f"Could not create PID file in {directory or tempfile.gettempdir()}: {exc}",
            context={"prefix": prefix},
        ) from exc

    try:
        os.close(fd)
        os.remove(name)
    except OSError as exc:
        raise PidFileError(f"Could not release PID file name {name}: {exc}", context={"path": name}) from exc
    return Path(name)


def remove_pid_file(path: str | Path | None) -> bool:
    """Best-effort removal. Returns True when a file was actually removed."""
    if path is None:
        return False
    try:
        Path(path).unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning(f"Failed to remove PID file {path}: {exc}")
        return False


def read_pid_file(path: str | Path) -> int | None:
    """Return the PID recorded by the server, or None when absent/unreadable."""
    try:
        raw = Path(path).read_text(encoding="utf-8").strip()
    except OSError:
        return None
    try:
        return int(raw.split()[0]) if raw else None
    except ValueError:
        return None


__all__ = ["reserve_pid_file_path", "remove_pid_file", "read_pid_file"]
