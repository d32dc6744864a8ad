"""Bounded stream copies and incremental checksums."""

from timebox.streams.checksum import Crc32, HashlibChecksum, IncrementalChecksum
from timebox.streams.copier import (
    AsyncByteSink,
    AsyncByteSource,
    copy_exact,
    copy_exact_async,
    read_and_checksum,
    read_and_checksum_async,
)

__all__ = [
    "AsyncByteSink",
    "AsyncByteSource",
    "Crc32",
    "HashlibChecksum",
    "IncrementalChecksum",
    "copy_exact",
    "copy_exact_async",
    "read_and_checksum",
    "read_and_checksum_async",
]
