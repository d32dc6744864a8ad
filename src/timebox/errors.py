"""Exception types shared across timebox components."""

from __future__ import annotations

import asyncio


class TimeboxError(Exception):
    """Base class for errors raised by timebox."""


class IncompleteReadError(asyncio.IncompleteReadError, TimeboxError):
    """Raised when a source is exhausted before ``expected`` bytes were read.

    ``partial`` holds the bytes read for the chunk that came up short and
    ``transferred`` counts every byte already handed to the sink before the
    shortfall was detected.
    """

    def __init__(self, partial: bytes, expected: int, *, transferred: int = 0) -> None:
        super().__init__(partial, expected)
        self.transferred = transferred

    def __reduce__(self) -> tuple[object, tuple[bytes, int, int]]:
        return (
            _rebuild_incomplete_read,
            (self.partial, self.expected, self.transferred),
        )


def _rebuild_incomplete_read(
    partial: bytes, expected: int, transferred: int
) -> IncompleteReadError:
    return IncompleteReadError(partial, expected, transferred=transferred)


class ShortWriteError(TimeboxError, OSError):
    """Raised when a sink stops accepting bytes before a chunk was written.

    ``transferred`` counts the bytes the sink did accept for the copy.
    """

    def __init__(self, expected: int, *, transferred: int) -> None:
        super().__init__(f"sink accepted {transferred} of {expected} bytes")
        self.expected = expected
        self.transferred = transferred

    def __reduce__(self) -> tuple[object, tuple[int, int]]:
        return (_rebuild_short_write, (self.expected, self.transferred))


def _rebuild_short_write(expected: int, transferred: int) -> ShortWriteError:
    return ShortWriteError(expected, transferred=transferred)


class WorkFault(TimeboxError):
    """A scheduled unit of work raised instead of completing."""

    def __init__(self, slot: str, error: BaseException) -> None:
        super().__init__(f"{slot} failed: {error!r}")
        self.slot = slot
        self.error = error


__all__ = [
    "IncompleteReadError",
    "ShortWriteError",
    "TimeboxError",
    "WorkFault",
]
