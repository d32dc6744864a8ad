"""Cooperative cancellation shared between the event loop and worker threads."""

from __future__ import annotations

import asyncio
import threading
from contextlib import suppress


class CancellationToken:
    """One-way cooperative cancellation token.

    State lives in a ``threading.Event`` so blocking work running on a worker
    thread can poll it. Coroutines awaiting the token are woken through their
    own loop, whichever thread calls :meth:`cancel`.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._waiters: set[asyncio.Future[None]] = set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            waiters = tuple(self._waiters)
            self._waiters.clear()

        for waiter in waiters:
            loop = waiter.get_loop()
            # The loop may already be closed when a caller cancels late.
            with suppress(RuntimeError):
                loop.call_soon_threadsafe(_resolve_waiter, waiter)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")

    async def wait(self) -> None:
        """Suspend until the token is cancelled."""
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        with self._lock:
            if self._event.is_set():
                return
            self._waiters.add(waiter)
        try:
            await waiter
        finally:
            with self._lock:
                self._waiters.discard(waiter)

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return ``True`` if woken by cancellation."""
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self.wait(), timeout=max(0.0, seconds))
        except TimeoutError:
            return False
        return True

    def wait_sync(self, timeout: float | None = None) -> bool:
        """Block the calling thread until cancelled or ``timeout`` elapses."""
        return self._event.wait(timeout)

    def sleep_sync(self, seconds: float) -> bool:
        """Thread-side counterpart of :meth:`sleep` for blocking work."""
        return self._event.wait(max(0.0, seconds))

    def __repr__(self) -> str:
        state = "cancelled" if self._event.is_set() else "active"
        return f"<CancellationToken {state}>"


def _resolve_waiter(waiter: asyncio.Future[None]) -> None:
    if not waiter.done():
        waiter.set_result(None)


__all__ = ["CancellationToken"]
