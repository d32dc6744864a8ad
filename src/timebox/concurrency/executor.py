"""Race a set of work items against a deadline and a cancellation token.

Work is described with three variants:

- ``RunningWork``: something already started elsewhere. It is awaited but
  never cancelled by the race.
- ``BlockingWork``: a synchronous callable, run on the executor's thread pool.
- ``NonBlockingWork``: a callable returning an awaitable, run as a task.

All items are joined (every one must succeed) and the join is raced against a
timer armed for the deadline. A tie between the join and the timer counts as
a timeout, and the token is checked again once the race settles.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import threading
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from timebox.concurrency.cancellation import CancellationToken
from timebox.config.settings import TimeboxSettings
from timebox.errors import WorkFault

if TYPE_CHECKING:
    from collections.abc import Sequence

RunningHandle = Awaitable[Any] | concurrent.futures.Future[Any]


@dataclass(frozen=True, slots=True)
class RunningWork:
    """Work started outside the race; awaited as-is."""

    handle: RunningHandle

    slot = "running"


@dataclass(frozen=True, slots=True)
class BlockingWork:
    """Synchronous callable scheduled on a worker thread."""

    func: Callable[[], object]

    slot = "blocking"


@dataclass(frozen=True, slots=True)
class NonBlockingWork:
    """Callable returning an awaitable, scheduled as an event-loop task."""

    func: Callable[[], Awaitable[object]]

    slot = "non_blocking"


WorkItem = RunningWork | BlockingWork | NonBlockingWork
_WORK_ITEM_TYPES = (RunningWork, BlockingWork, NonBlockingWork)


class RaceOutcome(StrEnum):
    """How a race settled."""

    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"
    FAULTED = "faulted"


@dataclass(frozen=True, slots=True)
class RaceReport:
    """Result of a single race."""

    outcome: RaceOutcome
    deadline_ms: int
    item_count: int
    elapsed_ms: float
    faults: tuple[WorkFault, ...] = field(default=())

    @property
    def succeeded(self) -> bool:
        return self.outcome is RaceOutcome.COMPLETED

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "succeeded": self.succeeded,
            "deadline_ms": self.deadline_ms,
            "item_count": self.item_count,
            "elapsed_ms": round(self.elapsed_ms, 3),
            "faults": [str(fault) for fault in self.faults],
        }


class BoundedExecutor:
    """Run work items against a deadline on a private thread pool."""

    def __init__(
        self,
        *,
        max_workers: int | None = None,
        settings: TimeboxSettings | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings if settings is not None else TimeboxSettings()
        workers = self._settings.max_workers if max_workers is None else max_workers
        if workers <= 0:
            raise ValueError("max_workers must be > 0")
        self._max_workers = workers
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._pool: concurrent.futures.ThreadPoolExecutor | None = None
        self._pool_lock = threading.Lock()
        self._closed = False

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def default_deadline_ms(self) -> int:
        return self._settings.default_deadline_ms

    @property
    def closed(self) -> bool:
        return self._closed

    async def execute(
        self,
        items: Iterable[WorkItem],
        *,
        deadline_ms: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> bool:
        """Return ``True`` only if every item finished cleanly before the deadline."""
        report = await self.race(items, deadline_ms=deadline_ms, cancel_token=cancel_token)
        return report.succeeded

    async def race(
        self,
        items: Iterable[WorkItem],
        *,
        deadline_ms: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> RaceReport:
        work_items = tuple(items)
        try:
            deadline = _validate_deadline(
                self._settings.default_deadline_ms if deadline_ms is None else deadline_ms
            )
            _validate_items(work_items)
            if self._closed:
                raise RuntimeError("executor is closed")
        except (TypeError, ValueError, RuntimeError):
            _discard_unscheduled(work_items)
            raise

        token = cancel_token or CancellationToken()
        started = time.monotonic()

        if token.is_cancelled:
            _discard_unscheduled(work_items)
            return self._report(RaceOutcome.CANCELLED, deadline, work_items, started)
        if deadline == 0:
            # Zero deadline: the timer has already elapsed, nothing is scheduled.
            _discard_unscheduled(work_items)
            return self._report(RaceOutcome.TIMED_OUT, deadline, work_items, started)

        loop = asyncio.get_running_loop()
        faults: list[WorkFault] = []
        units: list[asyncio.Future[object]] = []
        members: list[asyncio.Task[object]] = []
        try:
            for index, item in enumerate(work_items):
                label = f"{item.slot}[{index}]"
                unit = self._schedule(item, loop, token)
                units.append(unit)
                members.append(
                    asyncio.ensure_future(self._observe(label, unit, faults, token))
                )
        except BaseException:
            await _cancel_and_wait([*members, *units])
            _discard_unscheduled(work_items[len(units) :])
            raise

        join: asyncio.Future[list[object]] = asyncio.gather(*members)
        timer: asyncio.Task[bool] = asyncio.create_task(token.sleep(deadline / 1000))

        try:
            done, _ = await asyncio.wait({join, timer}, return_when=asyncio.FIRST_COMPLETED)
            outcome = _settle(join, timer, done, token)
        finally:
            await _cleanup(join, timer, [*members, *units])

        return self._report(outcome, deadline, work_items, started, tuple(faults))

    def close(self, *, wait: bool = False) -> None:
        """Shut the thread pool down; threads already running are not interrupted."""
        with self._pool_lock:
            self._closed = True
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> BoundedExecutor:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _schedule(
        self,
        item: WorkItem,
        loop: asyncio.AbstractEventLoop,
        token: CancellationToken,
    ) -> asyncio.Future[object]:
        if isinstance(item, RunningWork):
            return _shielded(item.handle)
        if isinstance(item, BlockingWork):
            return loop.run_in_executor(self._ensure_pool(), _run_blocking, item.func, token)
        return asyncio.ensure_future(_run_non_blocking(item.func, token))

    async def _observe(
        self,
        label: str,
        unit: Awaitable[object],
        faults: list[WorkFault],
        token: CancellationToken,
    ) -> object:
        try:
            return await unit
        except asyncio.CancelledError as exc:
            current = asyncio.current_task()
            if token.is_cancelled or (current is not None and current.cancelling()):
                raise
            # Cancelled from outside the race, e.g. by the owner of a running handle.
            raise self._fault(label, exc, faults) from exc
        except Exception as exc:
            raise self._fault(label, exc, faults) from exc

    def _fault(self, label: str, exc: BaseException, faults: list[WorkFault]) -> WorkFault:
        fault = WorkFault(label, exc)
        faults.append(fault)
        self._logger.warning("work_item_faulted", slot=label, error=repr(exc))
        return fault

    def _ensure_pool(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._pool_lock:
            if self._closed:
                raise RuntimeError("executor is closed")
            if self._pool is None:
                self._pool = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="timebox",
                )
            return self._pool

    def _report(
        self,
        outcome: RaceOutcome,
        deadline_ms: int,
        items: Sequence[WorkItem],
        started: float,
        faults: tuple[WorkFault, ...] = (),
    ) -> RaceReport:
        report = RaceReport(
            outcome=outcome,
            deadline_ms=deadline_ms,
            item_count=len(items),
            elapsed_ms=(time.monotonic() - started) * 1000,
            faults=faults,
        )
        self._logger.debug("race_finished", **report.to_dict())
        return report


def _settle(
    join: asyncio.Future[list[object]],
    timer: asyncio.Task[bool],
    done: set[asyncio.Future[Any]],
    token: CancellationToken,
) -> RaceOutcome:
    if token.is_cancelled:
        return RaceOutcome.CANCELLED
    if timer in done:
        return RaceOutcome.TIMED_OUT
    if join.cancelled() or join.exception() is not None:
        return RaceOutcome.FAULTED
    return RaceOutcome.COMPLETED


async def _cleanup(
    join: asyncio.Future[list[object]],
    timer: asyncio.Task[bool],
    scheduled: list[asyncio.Future[Any]],
) -> None:
    await _cancel_and_wait([timer, *scheduled])
    if not join.done():
        join.cancel()
    elif not join.cancelled():
        # Mark the join's exception as retrieved.
        join.exception()


async def _cancel_and_wait(pending: list[asyncio.Future[Any]]) -> None:
    # Cancelling a shield leaves the running handle behind it untouched.
    for future in pending:
        if not future.done():
            future.cancel()
    await asyncio.gather(*pending, return_exceptions=True)


def _shielded(handle: RunningHandle) -> asyncio.Future[object]:
    if isinstance(handle, concurrent.futures.Future):
        return asyncio.shield(asyncio.wrap_future(handle))
    return asyncio.shield(asyncio.ensure_future(handle))


def _run_blocking(func: Callable[[], object], token: CancellationToken) -> object:
    if token.is_cancelled:
        return None
    return func()


async def _run_non_blocking(
    func: Callable[[], Awaitable[object]],
    token: CancellationToken,
) -> object:
    token.raise_if_cancelled()
    awaitable = func()
    if not inspect.isawaitable(awaitable):
        kind = type(awaitable).__name__
        raise TypeError(f"non-blocking work must return an awaitable, got {kind}")
    return await awaitable


def _validate_deadline(deadline_ms: int) -> int:
    if isinstance(deadline_ms, bool) or not isinstance(deadline_ms, int):
        raise TypeError(f"deadline_ms must be an integer, got {type(deadline_ms).__name__}")
    if deadline_ms < 0:
        raise ValueError("deadline_ms must be >= 0")
    return deadline_ms


def _validate_items(items: Sequence[object]) -> None:
    for item in items:
        if not isinstance(item, _WORK_ITEM_TYPES):
            raise TypeError(f"unsupported work item {type(item).__name__}")
        if isinstance(item, RunningWork) and not _is_running_handle(item.handle):
            kind = type(item.handle).__name__
            raise TypeError(f"running work needs an awaitable or a concurrent future, got {kind}")


def _is_running_handle(handle: object) -> bool:
    return isinstance(handle, concurrent.futures.Future) or inspect.isawaitable(handle)


def _discard_unscheduled(items: Sequence[object]) -> None:
    # Close raw coroutine objects so CPython does not warn about them never
    # being awaited; anything already running is left alone.
    for item in items:
        if isinstance(item, RunningWork) and inspect.iscoroutine(item.handle):
            item.handle.close()


__all__ = [
    "BlockingWork",
    "BoundedExecutor",
    "NonBlockingWork",
    "RaceOutcome",
    "RaceReport",
    "RunningHandle",
    "RunningWork",
    "WorkItem",
]
