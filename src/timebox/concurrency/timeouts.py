"""Call-shaped entry points over :class:`BoundedExecutor`.

These mirror the three ways work is usually handed over (a running handle, a
blocking callable, a coroutine function) and share one lazily created
executor per process.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable, Iterable

from timebox.concurrency.cancellation import CancellationToken
from timebox.concurrency.executor import (
    BlockingWork,
    BoundedExecutor,
    NonBlockingWork,
    RunningHandle,
    RunningWork,
    WorkItem,
)
from timebox.config.settings import TimeboxSettings

_DEFAULT_EXECUTOR_LOCK = threading.Lock()
_DEFAULT_EXECUTOR: BoundedExecutor | None = None


def default_executor() -> BoundedExecutor:
    """Return the shared executor, creating it on first use."""
    global _DEFAULT_EXECUTOR
    with _DEFAULT_EXECUTOR_LOCK:
        if _DEFAULT_EXECUTOR is None or _DEFAULT_EXECUTOR.closed:
            _DEFAULT_EXECUTOR = BoundedExecutor()
        return _DEFAULT_EXECUTOR


def configure_default_executor(settings: TimeboxSettings) -> BoundedExecutor:
    """Replace the shared executor with one built from ``settings``."""
    global _DEFAULT_EXECUTOR
    replacement = BoundedExecutor(settings=settings)
    with _DEFAULT_EXECUTOR_LOCK:
        previous, _DEFAULT_EXECUTOR = _DEFAULT_EXECUTOR, replacement
    if previous is not None:
        previous.close()
    return replacement


async def execute_with_timeout(
    running: RunningHandle | None = None,
    blocking: Callable[[], object] | None = None,
    non_blocking: Callable[[], Awaitable[object]] | None = None,
    *,
    deadline_ms: int | None = None,
    cancel_token: CancellationToken | None = None,
) -> bool:
    """Race any combination of the three work shapes against ``deadline_ms``."""
    items: list[WorkItem] = []
    if running is not None:
        items.append(RunningWork(running))
    if blocking is not None:
        items.append(BlockingWork(blocking))
    if non_blocking is not None:
        items.append(NonBlockingWork(non_blocking))
    return await default_executor().execute(
        items, deadline_ms=deadline_ms, cancel_token=cancel_token
    )


async def execute_blocking_with_timeout(
    func: Callable[[], object],
    deadline_ms: int | None = None,
    cancel_token: CancellationToken | None = None,
) -> bool:
    return await execute_with_timeout(
        blocking=func, deadline_ms=deadline_ms, cancel_token=cancel_token
    )


async def execute_async_with_timeout(
    func: Callable[[], Awaitable[object]],
    deadline_ms: int | None = None,
    cancel_token: CancellationToken | None = None,
) -> bool:
    return await execute_with_timeout(
        non_blocking=func, deadline_ms=deadline_ms, cancel_token=cancel_token
    )


async def await_with_timeout(
    handle: RunningHandle,
    deadline_ms: int | None = None,
    cancel_token: CancellationToken | None = None,
) -> bool:
    """Wait for work started elsewhere; the handle is never cancelled here."""
    return await execute_with_timeout(
        running=handle, deadline_ms=deadline_ms, cancel_token=cancel_token
    )


def run_with_deadline(
    items: Iterable[WorkItem],
    *,
    deadline_ms: int | None = None,
    cancel_token: CancellationToken | None = None,
    executor: BoundedExecutor | None = None,
) -> bool:
    """Synchronous wrapper for callers that do not own an event loop."""
    resolved = executor if executor is not None else default_executor()
    return asyncio.run(
        resolved.execute(items, deadline_ms=deadline_ms, cancel_token=cancel_token)
    )


__all__ = [
    "await_with_timeout",
    "configure_default_executor",
    "default_executor",
    "execute_async_with_timeout",
    "execute_blocking_with_timeout",
    "execute_with_timeout",
    "run_with_deadline",
]
