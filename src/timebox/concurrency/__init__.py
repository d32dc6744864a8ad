"""Deadline-bounded execution and cooperative cancellation."""

from timebox.concurrency.cancellation import CancellationToken
from timebox.concurrency.executor import (
    BlockingWork,
    BoundedExecutor,
    NonBlockingWork,
    RaceOutcome,
    RaceReport,
    RunningWork,
    WorkItem,
)
from timebox.concurrency.timeouts import (
    await_with_timeout,
    configure_default_executor,
    default_executor,
    execute_async_with_timeout,
    execute_blocking_with_timeout,
    execute_with_timeout,
    run_with_deadline,
)

__all__ = [
    "BlockingWork",
    "BoundedExecutor",
    "CancellationToken",
    "NonBlockingWork",
    "RaceOutcome",
    "RaceReport",
    "RunningWork",
    "WorkItem",
    "await_with_timeout",
    "configure_default_executor",
    "default_executor",
    "execute_async_with_timeout",
    "execute_blocking_with_timeout",
    "execute_with_timeout",
    "run_with_deadline",
]
