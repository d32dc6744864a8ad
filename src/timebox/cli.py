"""Command-line interface for timebox."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from collections.abc import Sequence
from enum import IntEnum
from pathlib import Path

from timebox.concurrency import BlockingWork, BoundedExecutor
from timebox.config import ConfigLoadError, TimeboxSettings, load_settings
from timebox.errors import IncompleteReadError, ShortWriteError
from timebox.observability import configure_logging_from_settings
from timebox.streams import Crc32, HashlibChecksum, copy_exact, read_and_checksum


class ExitCode(IntEnum):
    SUCCESS = 0
    FAILURE = 1
    USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="timebox",
        description="Deadline-bounded execution and checksummed stream copies.",
    )
    parser.add_argument("--config", type=Path, default=None, help="path to timebox.toml")
    parser.add_argument("--log-level", default=None, help="override the configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    checksum = subparsers.add_parser("checksum", help="print the checksum of a file")
    checksum.add_argument("path", type=Path)
    checksum.add_argument("--bytes", dest="byte_count", type=_non_negative_int, default=None)
    checksum.add_argument("--algorithm", choices=("crc32", "sha256"), default="crc32")

    copy = subparsers.add_parser("copy", help="copy exactly N bytes between files")
    copy.add_argument("source", type=Path)
    copy.add_argument("destination", type=Path)
    copy.add_argument("--bytes", dest="byte_count", type=_non_negative_int, required=True)

    race = subparsers.add_parser("race", help="race a blocking sleep against a deadline")
    race.add_argument("--sleep-ms", type=_non_negative_int, required=True)
    race.add_argument("--deadline-ms", type=_non_negative_int, default=None)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args.config, overrides={"log_level": args.log_level})
    except ConfigLoadError as exc:
        print(f"config error: {exc}", file=sys.stderr)
        return int(ExitCode.USAGE)
    configure_logging_from_settings(settings)

    try:
        if args.command == "checksum":
            return _cmd_checksum(args, settings)
        if args.command == "copy":
            return _cmd_copy(args, settings)
        return _cmd_race(args, settings)
    except IncompleteReadError as exc:
        print(f"short read: {exc}", file=sys.stderr)
        return int(ExitCode.FAILURE)
    except OSError as exc:
        print(f"i/o error: {exc}", file=sys.stderr)
        return int(ExitCode.FAILURE)


def _cmd_checksum(args: argparse.Namespace, settings: TimeboxSettings) -> int:
    accumulator: Crc32 | HashlibChecksum
    accumulator = Crc32() if args.algorithm == "crc32" else HashlibChecksum(args.algorithm)
    with args.path.open("rb") as source:
        read_and_checksum(
            source, accumulator, args.byte_count, chunk_size=settings.copy_chunk_size
        )
    print(accumulator.hexdigest())
    return int(ExitCode.SUCCESS)


def _cmd_copy(args: argparse.Namespace, settings: TimeboxSettings) -> int:
    try:
        with args.source.open("rb") as source, args.destination.open("wb") as sink:
            copy_exact(source, sink, args.byte_count, chunk_size=settings.copy_chunk_size)
    except (IncompleteReadError, ShortWriteError):
        # A failed bounded copy must not leave a truncated destination behind.
        args.destination.unlink(missing_ok=True)
        raise
    crc = Crc32()
    with args.destination.open("rb") as copied:
        crc.append_stream(copied)
    print(crc.hexdigest())
    return int(ExitCode.SUCCESS)


def _cmd_race(args: argparse.Namespace, settings: TimeboxSettings) -> int:
    seconds = args.sleep_ms / 1000
    with BoundedExecutor(settings=settings) as executor:
        report = asyncio.run(
            executor.race(
                [BlockingWork(lambda: time.sleep(seconds))],
                deadline_ms=args.deadline_ms,
            )
        )
    print(json.dumps(report.to_dict(), sort_keys=True))
    return int(ExitCode.SUCCESS if report.succeeded else ExitCode.FAILURE)


def _non_negative_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from exc
    if value < 0:
        raise argparse.ArgumentTypeError("value must be >= 0")
    return value


__all__ = ["ExitCode", "build_parser", "run_cli"]
