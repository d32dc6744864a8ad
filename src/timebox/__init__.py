"""timebox: deadline-bounded execution and checksummed stream copies."""

from timebox.concurrency import (
    BlockingWork,
    BoundedExecutor,
    CancellationToken,
    NonBlockingWork,
    RaceOutcome,
    RaceReport,
    RunningWork,
    WorkItem,
    await_with_timeout,
    execute_async_with_timeout,
    execute_blocking_with_timeout,
    execute_with_timeout,
    run_with_deadline,
)
from timebox.config import TimeboxSettings, load_settings
from timebox.errors import IncompleteReadError, ShortWriteError, TimeboxError, WorkFault
from timebox.streams import (
    Crc32,
    HashlibChecksum,
    IncrementalChecksum,
    copy_exact,
    copy_exact_async,
    read_and_checksum,
    read_and_checksum_async,
)

__version__ = "0.1.0"

__all__ = [
    "BlockingWork",
    "BoundedExecutor",
    "CancellationToken",
    "Crc32",
    "HashlibChecksum",
    "IncompleteReadError",
    "IncrementalChecksum",
    "NonBlockingWork",
    "RaceOutcome",
    "RaceReport",
    "RunningWork",
    "ShortWriteError",
    "TimeboxError",
    "TimeboxSettings",
    "WorkFault",
    "WorkItem",
    "__version__",
    "await_with_timeout",
    "copy_exact",
    "copy_exact_async",
    "execute_async_with_timeout",
    "execute_blocking_with_timeout",
    "execute_with_timeout",
    "load_settings",
    "read_and_checksum",
    "read_and_checksum_async",
    "run_with_deadline",
]
