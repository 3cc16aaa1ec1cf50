"""Derive a filesystem-safe name prefix from the currently running test."""
from __future__ import annotations

import inspect
import os
import re
from pathlib import Path

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def _is_test_file(filename: str) -> bool:
    name = Path(filename).name
    return name.endswith(".py") and (name.startswith("test_") or name.endswith("_test.py"))


def _sanitize(value: str) -> str:
    return _UNSAFE.sub("_", value).strip("_") or "unknown"


def _from_pytest_env() -> str | None:
    # e.g. "tests/unit/test_x.py::TestGroup::test_one[param] (call)"
    current = os.environ.get("PYTEST_CURRENT_TEST", "").strip()
    if not current:
        return None
    node = current.rsplit(" ", 1)[0]
    name = node.split("::")[-1]
    return _sanitize(name) if name else None


def current_test_prefix(stack_depth: int = 1) -> str:
    """Return ``"<test name>_"`` for the nearest enclosing test function.

    Looks for a caller frame whose function name starts with ``test`` inside a
    ``test_*.py``/``*_test.py`` file, then falls back to ``PYTEST_CURRENT_TEST``,
    then to ``TestNameNotFound_<first caller outside this package>_``.
    """
    frames = inspect.stack(context=0)[stack_depth:]
    try:
        for frame in frames:
            if frame.function.startswith("test") and _is_test_file(frame.filename):
                return f"{_sanitize(frame.function)}_"

        from_env = _from_pytest_env()
        if from_env:
            return f"{from_env}_"

        package_root = Path(__file__).resolve().parents[1]
        outside = "unknown"
        for frame in frames:
            try:
                Path(frame.filename).resolve().relative_to(package_root)
            except ValueError:
                outside = frame.function
                break
        return f"TestNameNotFound_{_sanitize(outside)}_"
    finally:
        del frames


__all__ = ["current_test_prefix"]
