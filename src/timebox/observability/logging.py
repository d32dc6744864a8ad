"""structlog setup emitting JSON lines (or console output) through stdlib logging."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Final, TextIO

import structlog

if TYPE_CHECKING:
    from timebox.config.settings import TimeboxSettings

_ROOT_LOGGER_NAME: Final[str] = "timebox"
_HANDLER_NAME: Final[str] = "timebox-structlog"


def configure_logging(
    level: int | str = "INFO",
    *,
    json_output: bool = True,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Route structlog events for ``timebox.*`` loggers to ``stream``.

    Re-running replaces the previously installed handler, so tests and the
    CLI can call this repeatedly.
    """

    resolved_level = _parse_log_level(level)
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)
    handler.setLevel(resolved_level)

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    for existing in list(logger.handlers):
        if existing.get_name() == _HANDLER_NAME:
            logger.removeHandler(existing)
            existing.close()
    logger.addHandler(handler)
    logger.setLevel(resolved_level)
    logger.propagate = False
    return logger


def configure_logging_from_settings(
    settings: TimeboxSettings,
    *,
    stream: TextIO | None = None,
) -> logging.Logger:
    return configure_logging(settings.log_level, json_output=settings.log_json, stream=stream)


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value

    if not isinstance(value, str):
        raise ValueError(f"level must be int or str, got {type(value).__name__}")

    normalized = value.strip().upper()
    parsed = logging.getLevelName(normalized)
    if isinstance(parsed, int):
        return parsed

    raise ValueError(f"unsupported logging level {value!r}")


__all__ = [
    "configure_logging",
    "configure_logging_from_settings",
]
