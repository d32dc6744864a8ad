"""
Unit tests for BoundedExecutor races.

Covers the join-vs-timer race, cooperative cancellation, fault containment,
and the guarantee that handles started elsewhere are never cancelled.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import gc
import threading
import time
import warnings
from typing import TYPE_CHECKING

import pytest

from timebox.concurrency import (
    BlockingWork,
    BoundedExecutor,
    CancellationToken,
    NonBlockingWork,
    RaceOutcome,
    RunningWork,
)
from timebox.concurrency.executor import _settle
from timebox.config import TimeboxSettings
from timebox.errors import WorkFault

if TYPE_CHECKING:
    from collections.abc import Iterator


class _RecordingLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, object]]] = []

    def debug(self, event: str, **fields: object) -> None:
        self.events.append(("debug", event, fields))

    def warning(self, event: str, **fields: object) -> None:
        self.events.append(("warning", event, fields))


@pytest.fixture
def logger() -> _RecordingLogger:
    return _RecordingLogger()


@pytest.fixture
def executor(logger: _RecordingLogger) -> Iterator[BoundedExecutor]:
    with BoundedExecutor(max_workers=4, logger=logger) as pool:
        yield pool


@pytest.fixture
def release() -> Iterator[threading.Event]:
    event = threading.Event()
    yield event
    event.set()


async def _noop() -> None:
    return None


async def _boom() -> None:
    raise RuntimeError("boom")


def _pending_race_tasks() -> list[asyncio.Task[object]]:
    names = ("_run_non_blocking", "BoundedExecutor._observe")
    return [
        task
        for task in asyncio.all_tasks()
        if not task.done() and getattr(task.get_coro(), "__qualname__", "") in names
    ]


async def test_immediate_non_blocking_work_completes(executor: BoundedExecutor) -> None:
    assert await executor.execute([NonBlockingWork(_noop)], deadline_ms=250) is True


async def test_slow_blocking_work_times_out(
    executor: BoundedExecutor, release: threading.Event
) -> None:
    started = time.monotonic()
    report = await executor.race([BlockingWork(lambda: release.wait(1.0))], deadline_ms=50)
    elapsed = time.monotonic() - started

    assert report.outcome is RaceOutcome.TIMED_OUT
    assert report.succeeded is False
    assert elapsed < 0.9


@pytest.mark.parametrize("deadline_ms", [0, 50, 250, 10_000])
async def test_pre_cancelled_token_fails_regardless_of_deadline(
    executor: BoundedExecutor, deadline_ms: int
) -> None:
    token = CancellationToken()
    token.cancel()
    calls: list[str] = []

    report = await executor.race(
        [
            BlockingWork(lambda: calls.append("blocking")),
            NonBlockingWork(_noop),
        ],
        deadline_ms=deadline_ms,
        cancel_token=token,
    )

    assert report.outcome is RaceOutcome.CANCELLED
    assert calls == []


async def test_pre_cancelled_token_closes_unscheduled_coroutine(
    executor: BoundedExecutor,
) -> None:
    token = CancellationToken()
    token.cancel()

    with warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        coro = _noop()
        assert await executor.execute([RunningWork(coro)], cancel_token=token) is False
        assert coro.cr_frame is None
        del coro
        gc.collect()


async def test_zero_items_is_vacuous_success(executor: BoundedExecutor) -> None:
    results = [await executor.execute([], deadline_ms=250) for _ in range(5)]
    assert results == [True] * 5


async def test_zero_deadline_always_times_out(executor: BoundedExecutor) -> None:
    assert (await executor.race([], deadline_ms=0)).outcome is RaceOutcome.TIMED_OUT

    done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
    done.set_result(None)
    report = await executor.race([RunningWork(done)], deadline_ms=0)
    assert report.outcome is RaceOutcome.TIMED_OUT


async def test_faulting_work_returns_false_without_raising(
    executor: BoundedExecutor, logger: _RecordingLogger
) -> None:
    report = await executor.race(
        [NonBlockingWork(_boom), BlockingWork(lambda: None)], deadline_ms=1000
    )

    assert report.outcome is RaceOutcome.FAULTED
    assert len(report.faults) == 1
    fault = report.faults[0]
    assert isinstance(fault, WorkFault)
    assert fault.slot == "non_blocking[0]"
    assert isinstance(fault.error, RuntimeError)
    assert ("warning", "work_item_faulted") in [(level, event) for level, event, _ in logger.events]


async def test_blocking_fault_is_contained(executor: BoundedExecutor) -> None:
    def explode() -> None:
        raise ValueError("bad input")

    assert await executor.execute([BlockingWork(explode)], deadline_ms=1000) is False


async def test_non_awaitable_result_is_a_fault(executor: BoundedExecutor) -> None:
    not_awaitable = NonBlockingWork(lambda: 42)  # type: ignore[arg-type,return-value]
    report = await executor.race([not_awaitable], deadline_ms=1000)
    assert report.outcome is RaceOutcome.FAULTED
    assert isinstance(report.faults[0].error, TypeError)


async def test_all_three_kinds_must_complete(executor: BoundedExecutor) -> None:
    running = asyncio.ensure_future(asyncio.sleep(0.01, result="ready"))
    report = await executor.race(
        [
            RunningWork(running),
            BlockingWork(lambda: time.sleep(0.01)),
            NonBlockingWork(lambda: asyncio.sleep(0.01)),
        ],
        deadline_ms=2000,
    )

    assert report.outcome is RaceOutcome.COMPLETED
    assert report.item_count == 3
    assert report.faults == ()


async def test_one_slow_item_fails_the_whole_join(executor: BoundedExecutor) -> None:
    report = await executor.race(
        [NonBlockingWork(_noop), NonBlockingWork(lambda: asyncio.sleep(5))],
        deadline_ms=50,
    )
    assert report.outcome is RaceOutcome.TIMED_OUT


async def test_cancellation_during_race_cancels_scheduled_tasks(
    executor: BoundedExecutor,
) -> None:
    token = CancellationToken()
    observed: list[str] = []

    async def slow() -> None:
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            observed.append("cancelled")
            raise

    timer = threading.Timer(0.02, token.cancel)
    timer.start()
    try:
        started = time.monotonic()
        report = await executor.race(
            [NonBlockingWork(slow)], deadline_ms=5000, cancel_token=token
        )
    finally:
        timer.cancel()

    assert report.outcome is RaceOutcome.CANCELLED
    assert time.monotonic() - started < 2
    assert observed == ["cancelled"]


async def test_blocking_work_can_observe_the_token(executor: BoundedExecutor) -> None:
    token = CancellationToken()
    woke: list[bool] = []

    def cooperative() -> None:
        woke.append(token.sleep_sync(5))

    asyncio.get_running_loop().call_later(0.02, token.cancel)
    report = await executor.race([BlockingWork(cooperative)], deadline_ms=5000, cancel_token=token)

    assert report.outcome is RaceOutcome.CANCELLED
    for _ in range(100):
        if woke:
            break
        await asyncio.sleep(0.01)
    assert woke == [True]


async def test_running_task_is_not_cancelled_on_timeout(executor: BoundedExecutor) -> None:
    handle = asyncio.ensure_future(asyncio.sleep(0.2, result="done"))

    report = await executor.race([RunningWork(handle)], deadline_ms=20)

    assert report.outcome is RaceOutcome.TIMED_OUT
    assert not handle.cancelled()
    assert await handle == "done"


async def test_running_concurrent_future_is_awaited(
    executor: BoundedExecutor, release: threading.Event
) -> None:
    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as outside:
        future = outside.submit(release.wait, 5)

        timed_out = await executor.race([RunningWork(future)], deadline_ms=20)
        assert timed_out.outcome is RaceOutcome.TIMED_OUT
        assert not future.cancelled()

        release.set()
        assert await executor.execute([RunningWork(future)], deadline_ms=2000) is True


async def test_externally_cancelled_handle_is_not_success(executor: BoundedExecutor) -> None:
    handle = asyncio.ensure_future(asyncio.sleep(5))
    asyncio.get_running_loop().call_later(0.01, handle.cancel)

    report = await executor.race([RunningWork(handle)], deadline_ms=2000)
    assert report.outcome is RaceOutcome.FAULTED
    assert len(report.faults) == 1
    assert report.faults[0].slot == "running[0]"
    assert isinstance(report.faults[0].error, asyncio.CancelledError)


async def test_default_deadline_comes_from_settings(logger: _RecordingLogger) -> None:
    with BoundedExecutor(settings=TimeboxSettings(default_deadline_ms=0), logger=logger) as pool:
        assert pool.default_deadline_ms == 0
        assert await pool.execute([]) is False


async def test_invalid_arguments_are_rejected(executor: BoundedExecutor) -> None:
    with pytest.raises(ValueError, match="deadline_ms"):
        await executor.race([], deadline_ms=-1)
    with pytest.raises(TypeError, match="deadline_ms"):
        await executor.race([], deadline_ms=True)
    with pytest.raises(TypeError, match="unsupported work item"):
        await executor.race([_noop])  # type: ignore[list-item]
    with pytest.raises(ValueError, match="max_workers"):
        BoundedExecutor(max_workers=0)


async def test_closed_executor_rejects_races(logger: _RecordingLogger) -> None:
    pool = BoundedExecutor(logger=logger)
    pool.close()
    with pytest.raises(RuntimeError, match="closed"):
        await pool.race([BlockingWork(lambda: None)])


async def test_report_serializes_for_logging(
    executor: BoundedExecutor, logger: _RecordingLogger
) -> None:
    report = await executor.race([NonBlockingWork(_boom)], deadline_ms=500)
    payload = report.to_dict()

    assert payload["outcome"] == "faulted"
    assert payload["succeeded"] is False
    assert payload["deadline_ms"] == 500
    assert payload["item_count"] == 1
    assert payload["faults"] == ["non_blocking[0] failed: RuntimeError('boom')"]
    assert logger.events[-1][1] == "race_finished"


async def test_tie_between_join_and_timer_counts_as_timeout() -> None:
    join: asyncio.Future[list[object]] = asyncio.get_running_loop().create_future()
    join.set_result([])
    timer = asyncio.create_task(asyncio.sleep(0, result=False))
    await timer

    done, pending = await asyncio.wait({join, timer}, return_when=asyncio.FIRST_COMPLETED)

    assert done == {join, timer}
    assert pending == set()
    assert _settle(join, timer, done, CancellationToken()) is RaceOutcome.TIMED_OUT


async def test_tie_with_cancelled_token_counts_as_cancelled() -> None:
    join: asyncio.Future[list[object]] = asyncio.get_running_loop().create_future()
    join.set_result([])
    timer = asyncio.create_task(asyncio.sleep(0, result=True))
    await timer
    token = CancellationToken()
    token.cancel()

    assert _settle(join, timer, {join, timer}, token) is RaceOutcome.CANCELLED


async def test_invalid_running_handle_is_rejected_before_scheduling(
    executor: BoundedExecutor,
) -> None:
    started: list[str] = []

    async def slow() -> None:
        started.append("slow")
        await asyncio.sleep(5)

    with pytest.raises(TypeError, match="running work needs an awaitable"):
        await executor.race(
            [NonBlockingWork(slow), RunningWork(42)],  # type: ignore[arg-type]
            deadline_ms=1000,
        )

    await asyncio.sleep(0)
    assert started == []
    assert _pending_race_tasks() == []


async def test_scheduling_failure_cancels_work_already_scheduled(
    executor: BoundedExecutor, monkeypatch: pytest.MonkeyPatch
) -> None:
    def closed_pool() -> concurrent.futures.ThreadPoolExecutor:
        raise RuntimeError("executor is closed")

    monkeypatch.setattr(executor, "_ensure_pool", closed_pool)
    running = asyncio.ensure_future(asyncio.sleep(0.05, result="kept"))

    with pytest.raises(RuntimeError, match="closed"):
        await executor.race(
            [
                RunningWork(running),
                NonBlockingWork(lambda: asyncio.sleep(5)),
                BlockingWork(lambda: None),
            ],
            deadline_ms=1000,
        )

    assert _pending_race_tasks() == []
    assert not running.cancelled()
    assert await running == "kept"
