"""
Runtime settings loader.

Precedence: explicit overrides > environment (``TIMEBOX_``) > TOML file >
defaults. The TOML file holds a single ``[timebox]`` table.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any, Final

from timebox.config.settings import ConfigValidationError, TimeboxSettings, setting_types

DEFAULT_CONFIG_FILE: Final[str] = "timebox.toml"
ENV_PREFIX: Final[str] = "TIMEBOX_"
CONFIG_TABLE: Final[str] = "timebox"

_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when settings cannot be loaded or values cannot be coerced."""


def load_settings(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> TimeboxSettings:
    """Load effective settings with precedence: overrides > env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    env_map = dict(os.environ if environ is None else environ)
    types = setting_types()

    merged: dict[str, Any] = {}
    file_payload = _load_toml_file(resolved_path, required=config_path is not None)
    for key, value in file_payload.items():
        merged[key] = _coerce_value(value, types[key], f"{resolved_path.name}: {key}")

    for key, value_type in types.items():
        env_name = _env_name_for_field(key)
        raw = env_map.get(env_name)
        if raw is None:
            continue
        merged[key] = _coerce_env(raw, value_type, env_name)

    for key, value in (overrides or {}).items():
        if key not in types:
            raise ConfigLoadError(f"unknown setting override {key!r}")
        if value is None:
            continue
        merged[key] = _coerce_value(value, types[key], f"override {key}")

    try:
        return TimeboxSettings(**merged)
    except ConfigValidationError as exc:
        raise ConfigLoadError(str(exc)) from exc


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    table = parsed.get(CONFIG_TABLE, {})
    if not isinstance(table, dict):
        raise ConfigLoadError(f"[{CONFIG_TABLE}] must be a table: {path}")

    known = {item.name for item in fields(TimeboxSettings)}
    unknown = sorted(set(table) - known)
    if unknown:
        raise ConfigLoadError(f"unknown settings in {path}: {', '.join(unknown)}")
    return table


def _coerce_value(value: object, value_type: type, source: str) -> object:
    if value_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return _coerce_env(value, bool, source)
        raise ConfigLoadError(f"{source} must be a boolean")
    if value_type is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            return _coerce_env(value, int, source)
        raise ConfigLoadError(f"{source} must be an integer")
    if not isinstance(value, str):
        raise ConfigLoadError(f"{source} must be a string")
    return value


def _coerce_env(raw: str, value_type: type, env_name: str) -> object:
    value = raw.strip()
    if value_type is str:
        return value
    if value_type is int:
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{env_name} must be an integer") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise ConfigLoadError(f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")


def _env_name_for_field(name: str) -> str:
    return ENV_PREFIX + name.upper()


__all__ = [
    "CONFIG_TABLE",
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "load_settings",
]
