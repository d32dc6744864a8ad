"""Append-only checksum accumulators."""

from __future__ import annotations

import hashlib
import zlib
from typing import TYPE_CHECKING, BinaryIO, Final, Protocol, runtime_checkable

if TYPE_CHECKING:
    from timebox.streams.copier import AsyncByteSource

_STREAM_READ_CHUNK_BYTES: Final[int] = 64 * 1024


@runtime_checkable
class IncrementalChecksum(Protocol):
    """Accumulator that can be fed more bytes across calls without resetting."""

    def append(self, data: bytes | bytearray | memoryview) -> None: ...

    def append_stream(self, stream: BinaryIO) -> None: ...


class Crc32:
    """CRC-32 (IEEE 802.3) accumulator backed by ``zlib.crc32``."""

    __slots__ = ("_value",)

    digest_size = 4

    def __init__(self, initial: int = 0) -> None:
        self._value = initial & 0xFFFFFFFF

    @property
    def value(self) -> int:
        return self._value

    def append(self, data: bytes | bytearray | memoryview) -> None:
        self._value = zlib.crc32(data, self._value)

    def append_stream(
        self, stream: BinaryIO, *, chunk_size: int = _STREAM_READ_CHUNK_BYTES
    ) -> None:
        """Consume ``stream`` to exhaustion."""
        _require_positive_chunk(chunk_size)
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            self.append(chunk)

    async def append_stream_async(
        self,
        stream: AsyncByteSource,
        *,
        chunk_size: int = _STREAM_READ_CHUNK_BYTES,
    ) -> None:
        _require_positive_chunk(chunk_size)
        while True:
            chunk = await stream.read(chunk_size)
            if not chunk:
                break
            self.append(chunk)

    def digest(self) -> bytes:
        # Little-endian, matching System.IO.Hashing.Crc32 output.
        return self._value.to_bytes(4, "little")

    def hexdigest(self) -> str:
        return f"{self._value:08x}"

    def reset(self) -> None:
        self._value = 0

    def copy(self) -> Crc32:
        return Crc32(self._value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Crc32):
            return NotImplemented
        return self._value == other._value

    def __repr__(self) -> str:
        return f"Crc32(0x{self._value:08x})"


class HashlibChecksum:
    """Adapter exposing any ``hashlib`` algorithm as an incremental checksum."""

    def __init__(self, algorithm: str = "sha256") -> None:
        try:
            self._hash = hashlib.new(algorithm)
        except ValueError as exc:
            raise ValueError(f"unsupported hash algorithm {algorithm!r}") from exc
        self.algorithm = algorithm

    def append(self, data: bytes | bytearray | memoryview) -> None:
        self._hash.update(data)

    def append_stream(
        self, stream: BinaryIO, *, chunk_size: int = _STREAM_READ_CHUNK_BYTES
    ) -> None:
        _require_positive_chunk(chunk_size)
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            self._hash.update(chunk)

    async def append_stream_async(
        self,
        stream: AsyncByteSource,
        *,
        chunk_size: int = _STREAM_READ_CHUNK_BYTES,
    ) -> None:
        _require_positive_chunk(chunk_size)
        while True:
            chunk = await stream.read(chunk_size)
            if not chunk:
                break
            self._hash.update(chunk)

    def digest(self) -> bytes:
        return self._hash.digest()

    def hexdigest(self) -> str:
        return self._hash.hexdigest()

    def __repr__(self) -> str:
        return f"HashlibChecksum({self.algorithm!r})"


def _require_positive_chunk(chunk_size: int) -> None:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")


__all__ = [
    "Crc32",
    "HashlibChecksum",
    "IncrementalChecksum",
]
