"""
mctest configuration loading (YAML layers, env overrides, schema validation).

Configuration sources (highest to lowest priority):
1. ``MCTEST_VERBOSE`` (``1`` enables the diagnostic echo, anything else disables it)
2. Environment variables: ``MCTEST_<SECTION>__<KEY>``
3. YAML overlay file: explicit ``path`` argument, else ``MCTEST_CONFIG``
4. Bundled defaults: ``mctest.data/config/defaults.yaml``
"""
from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import yaml
from jsonschema import Draft202012Validator

from mctest.core.exceptions import ConfigError
from mctest.core.server.models import ServerConfig
from mctest.data import read_yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "MCTEST_"
VERBOSE_ENV = "MCTEST_VERBOSE"
CONFIG_PATH_ENV = "MCTEST_CONFIG"


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge dictionaries without mutating inputs.

    Lists in ``override`` replace lists in ``base`` entirely.

    Example:
        >>> deep_merge({"a": 1, "b": {"c": 2}}, {"b": {"d": 3}})
        {'a': 1, 'b': {'c': 2, 'd': 3}}
    """
    result: Dict[str, Any] = dict(base)
    for key, value in (override or {}).items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _as_bool(v: str) -> Optional[bool]:
    low = v.strip().lower()
    if low in {"true", "false"}:
        return low == "true"
    return None


def _as_int(v: str) -> Optional[int]:
    if re.fullmatch(r"[-+]?\d+", v.strip() or " "):
        try:
            return int(v)
        except Exception:
            return None
    return None


def _as_float(v: str) -> Optional[float]:
    s = v.strip()
    if re.fullmatch(r"[-+]?\d*\.\d+", s) or re.fullmatch(r"[-+]?\d+\.\d*", s):
        try:
            return float(s)
        except Exception:
            return None
    return None


def _as_json(v: str) -> Optional[Any]:
    s = v.strip()
    if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
        try:
            return json.loads(s)
        except Exception:
            return None
    return None


def coerce_env_value(value: str) -> Any:
    for caster in (_as_bool, _as_int, _as_float, _as_json):
        result = caster(value)
        if result is not None:
            return result
    return value.strip()


def iter_env_overrides(env: Mapping[str, str]) -> Iterator[Tuple[List[str], Any]]:
    """Yield ``(path, value)`` for every ``MCTEST_<SECTION>__<KEY>`` variable.

    Variables without a ``__`` separator (``MCTEST_VERBOSE``, ``MCTEST_CONFIG``)
    are not generic overrides and are skipped.
    """
    for key in sorted(env.keys()):
        if not key.startswith(ENV_PREFIX):
            continue
        raw = key[len(ENV_PREFIX):]
        if "__" not in raw:
            continue
        segs = raw.split("__")
        if any(seg == "" for seg in segs):
            raise ConfigError(f"Malformed {ENV_PREFIX}* key: empty segment in '{key}'")
        yield [seg.lower() for seg in segs], coerce_env_value(env[key])


def _set_nested(root: Dict[str, Any], path: List[str], value: Any) -> None:
    cur = root
    for part in path[:-1]:
        nxt = cur.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            cur[part] = nxt
        cur = nxt
    cur[path[-1]] = value


def apply_env_overrides(cfg: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
    result = deep_merge(cfg, {})
    for path, value in iter_env_overrides(env):
        # Sections are nested dicts; copy before writing so bundled defaults stay intact.
        if path[0] in result and isinstance(result[path[0]], dict):
            result[path[0]] = dict(result[path[0]])
        _set_nested(result, path, value)
    verbose = env.get(VERBOSE_ENV)
    if verbose is not None:
        server = dict(result.get("server") or {})
        server["verbose"] = verbose.strip() == "1"
        result["server"] = server
    return result


def load_yaml_file(path: Path) -> Dict[str, Any]:
    """Read a YAML overlay file; invalid YAML is an error, never silently ignored."""
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found: {path}", context={"path": str(path)}) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}", context={"path": str(path)}) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}", context={"path": str(path)})
    return data


def validate_config(cfg: Dict[str, Any]) -> None:
    """Validate a merged config mapping against the bundled JSON schema."""
    schema = read_yaml("schemas", "config.yaml")
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.absolute_path))
    if not errors:
        return
    first = errors[0]
    where = ".".join(str(p) for p in first.absolute_path) or "<root>"
    raise ConfigError(
        f"Invalid mctest configuration at {where}: {first.message}",
        context={"errors": [e.message for e in errors]},
    )


def load_raw_config(
    path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> Dict[str, Any]:
    """Load and merge all configuration layers into one validated mapping."""
    env = os.environ if env is None else env
    cfg = deep_merge(read_yaml("config", "defaults.yaml"), {})

    overlay = path if path is not None else (env.get(CONFIG_PATH_ENV) or None)
    if overlay:
        logger.debug(f"Loading mctest config overlay from {overlay}")
        cfg = deep_merge(cfg, load_yaml_file(Path(overlay).expanduser()))

    cfg = apply_env_overrides(cfg, env)
    validate_config(cfg)
    return cfg


def load_config(
    path: Path | str | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> ServerConfig:
    return ServerConfig.from_raw(load_raw_config(path, env=env))


__all__ = [
    "deep_merge",
    "coerce_env_value",
    "apply_env_overrides",
    "validate_config",
    "load_raw_config",
    "load_config",
]
