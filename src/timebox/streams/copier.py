"""Bounded byte copies and checksum folding over byte streams.

A bounded copy moves exactly ``byte_count`` bytes, in order, and raises
:class:`~timebox.errors.IncompleteReadError` when the source runs dry first.
Partial writes are retried until the sink takes the whole chunk; a sink that
stops accepting bytes raises :class:`~timebox.errors.ShortWriteError`.
Neither failure is truncated silently or caught here.
"""

from __future__ import annotations

import asyncio
import inspect
import io
from typing import TYPE_CHECKING, Any, BinaryIO, Final, NoReturn, Protocol

import structlog

from timebox.config.settings import DEFAULT_COPY_CHUNK_SIZE
from timebox.errors import IncompleteReadError, ShortWriteError

if TYPE_CHECKING:
    from timebox.concurrency.cancellation import CancellationToken
    from timebox.streams.checksum import IncrementalChecksum

_logger: Final[Any] = structlog.get_logger(__name__)


class AsyncByteSource(Protocol):
    """Anything with an ``async read(n)``, e.g. ``asyncio.StreamReader``."""

    async def read(self, n: int = -1) -> bytes: ...


class AsyncByteSink(Protocol):
    """A writer whose ``write`` may be plain or awaitable; ``drain`` is optional."""

    def write(self, data: bytes) -> object: ...


def copy_exact(
    source: BinaryIO,
    sink: BinaryIO,
    byte_count: int,
    *,
    chunk_size: int = DEFAULT_COPY_CHUNK_SIZE,
) -> None:
    """Copy exactly ``byte_count`` bytes from ``source`` to ``sink``."""

    _validate_counts(byte_count, chunk_size)
    transferred = 0
    while transferred < byte_count:
        want = min(chunk_size, byte_count - transferred)
        chunk = _read_exactly(source, want, byte_count=byte_count, transferred=transferred)
        _write_all(sink, chunk, byte_count=byte_count, transferred=transferred)
        transferred += len(chunk)


async def copy_exact_async(
    source: AsyncByteSource,
    sink: AsyncByteSink | BinaryIO,
    byte_count: int,
    *,
    cancel_token: CancellationToken | None = None,
    chunk_size: int = DEFAULT_COPY_CHUNK_SIZE,
) -> None:
    """Async :func:`copy_exact`; the token is checked before every chunk."""

    _validate_counts(byte_count, chunk_size)
    transferred = 0
    while transferred < byte_count:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        want = min(chunk_size, byte_count - transferred)
        chunk = await _read_exactly_async(
            source, want, byte_count=byte_count, transferred=transferred
        )
        await _write_all_async(sink, chunk, byte_count=byte_count, transferred=transferred)
        drain = getattr(sink, "drain", None)
        if drain is not None:
            await drain()
        transferred += len(chunk)


def read_and_checksum(
    source: BinaryIO,
    checksum: IncrementalChecksum,
    byte_count: int | None = None,
    *,
    chunk_size: int = DEFAULT_COPY_CHUNK_SIZE,
) -> None:
    """Fold ``byte_count`` bytes of ``source`` (or all of it) into ``checksum``.

    ``chunk_size`` bounds the reads of a bounded copy; the whole-stream path
    leaves chunking to ``checksum.append_stream``.
    """

    if byte_count is None:
        checksum.append_stream(source)
        return

    with io.BytesIO() as buffer:
        copy_exact(source, buffer, byte_count, chunk_size=chunk_size)
        buffer.seek(0)
        checksum.append_stream(buffer)


async def read_and_checksum_async(
    source: AsyncByteSource,
    checksum: IncrementalChecksum,
    byte_count: int | None = None,
    *,
    cancel_token: CancellationToken | None = None,
    chunk_size: int = DEFAULT_COPY_CHUNK_SIZE,
) -> None:
    if byte_count is None:
        await _append_stream_async(source, checksum, cancel_token, chunk_size)
        return

    with io.BytesIO() as buffer:
        await copy_exact_async(
            source, buffer, byte_count, cancel_token=cancel_token, chunk_size=chunk_size
        )
        buffer.seek(0)
        checksum.append_stream(buffer)


def _read_exactly(source: BinaryIO, size: int, *, byte_count: int, transferred: int) -> bytes:
    parts: list[bytes] = []
    received = 0
    while received < size:
        chunk = source.read(size - received)
        if not chunk:
            _raise_short_read(b"".join(parts), byte_count, transferred)
        parts.append(chunk)
        received += len(chunk)
    return b"".join(parts)


async def _read_exactly_async(
    source: AsyncByteSource,
    size: int,
    *,
    byte_count: int,
    transferred: int,
) -> bytes:
    readexactly = getattr(source, "readexactly", None)
    if readexactly is not None:
        try:
            return bytes(await readexactly(size))
        except asyncio.IncompleteReadError as exc:
            _raise_short_read(exc.partial, byte_count, transferred, cause=exc)

    parts: list[bytes] = []
    received = 0
    while received < size:
        chunk = await source.read(size - received)
        if not chunk:
            _raise_short_read(b"".join(parts), byte_count, transferred)
        parts.append(chunk)
        received += len(chunk)
    return b"".join(parts)


def _write_all(sink: BinaryIO, chunk: bytes, *, byte_count: int, transferred: int) -> None:
    remaining: bytes | memoryview = chunk
    while remaining:
        written = sink.write(remaining)
        if not written:
            _raise_short_write(byte_count, transferred + len(chunk) - len(remaining))
        remaining = memoryview(remaining)[written:]


async def _write_all_async(
    sink: AsyncByteSink | BinaryIO,
    chunk: bytes,
    *,
    byte_count: int,
    transferred: int,
) -> None:
    remaining: bytes | memoryview = chunk
    while remaining:
        written = sink.write(remaining)
        if inspect.isawaitable(written):
            written = await written
        if written is None:
            # Stream writers buffer the whole chunk and report nothing.
            return
        if not isinstance(written, int) or written <= 0:
            _raise_short_write(byte_count, transferred + len(chunk) - len(remaining))
        remaining = memoryview(remaining)[written:]


async def _append_stream_async(
    source: AsyncByteSource,
    checksum: IncrementalChecksum,
    cancel_token: CancellationToken | None,
    chunk_size: int,
) -> None:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    append_stream_async = getattr(checksum, "append_stream_async", None)
    if append_stream_async is not None and cancel_token is None:
        await append_stream_async(source, chunk_size=chunk_size)
        return

    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        chunk = await source.read(chunk_size)
        if not chunk:
            break
        checksum.append(chunk)


def _raise_short_read(
    partial: bytes,
    byte_count: int,
    transferred: int,
    *,
    cause: BaseException | None = None,
) -> NoReturn:
    _logger.warning(
        "bounded_copy_failed",
        expected=byte_count,
        transferred=transferred,
        partial=len(partial),
    )
    raise IncompleteReadError(partial, byte_count, transferred=transferred) from cause


def _raise_short_write(byte_count: int, transferred: int) -> NoReturn:
    _logger.warning(
        "bounded_copy_failed",
        expected=byte_count,
        transferred=transferred,
        sink_stalled=True,
    )
    raise ShortWriteError(byte_count, transferred=transferred)


def _validate_counts(byte_count: int, chunk_size: int) -> None:
    if isinstance(byte_count, bool) or not isinstance(byte_count, int):
        raise TypeError(f"byte_count must be an integer, got {type(byte_count).__name__}")
    if byte_count < 0:
        raise ValueError("byte_count must be >= 0")
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")


__all__ = [
    "AsyncByteSink",
    "AsyncByteSource",
    "copy_exact",
    "copy_exact_async",
    "read_and_checksum",
    "read_and_checksum_async",
]
