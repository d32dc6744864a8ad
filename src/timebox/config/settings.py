"""Typed runtime settings with defaults."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Final

DEFAULT_DEADLINE_MS: Final[int] = 250
# Same sizing as the asyncio default executor. Blocking work that overran its
# deadline keeps its thread until it returns.
DEFAULT_MAX_WORKERS: Final[int] = min(32, (os.cpu_count() or 1) + 4)
DEFAULT_COPY_CHUNK_SIZE: Final[int] = 64 * 1024


class ConfigValidationError(ValueError):
    """Raised when settings values are out of range."""


@dataclass(frozen=True, slots=True)
class TimeboxSettings:
    """Effective runtime settings."""

    default_deadline_ms: int = DEFAULT_DEADLINE_MS
    max_workers: int = DEFAULT_MAX_WORKERS
    copy_chunk_size: int = DEFAULT_COPY_CHUNK_SIZE
    log_level: str = "INFO"
    log_json: bool = True

    def __post_init__(self) -> None:
        if self.default_deadline_ms < 0:
            raise ConfigValidationError("default_deadline_ms must be >= 0")
        if self.max_workers <= 0:
            raise ConfigValidationError("max_workers must be > 0")
        if self.copy_chunk_size <= 0:
            raise ConfigValidationError("copy_chunk_size must be > 0")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigValidationError(f"unsupported log_level {self.log_level!r}")

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


def setting_types() -> dict[str, type]:
    """Map each settings field to the scalar type used for coercion."""
    mapping: dict[str, type] = {}
    defaults = TimeboxSettings()
    for item in fields(TimeboxSettings):
        mapping[item.name] = type(getattr(defaults, item.name))
    return mapping


__all__ = [
    "ConfigValidationError",
    "DEFAULT_COPY_CHUNK_SIZE",
    "DEFAULT_DEADLINE_MS",
    "DEFAULT_MAX_WORKERS",
    "TimeboxSettings",
    "setting_types",
]
