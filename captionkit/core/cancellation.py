"""
Cooperative cancellation token.

A CancelToken is created per task and passed explicitly down every async
call chain (HTTP, subprocess, sleep, poll loop). Callers check it at each
suspension point; long awaits are raced against it with guard().
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from captionkit.core.error_codes import CancellationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelToken:
    """One-shot cancellation signal shared between a task and its owner."""

    def __init__(self):
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        if self._event.is_set():
            return
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception as e:
                logger.warning("Cancel callback failed: %s", e)

    def add_callback(self, cb: Callable[[], None]) -> Callable[[], None]:
        """Register cb to run on cancel; returns a function that unregisters it."""
        if self._event.is_set():
            cb()
            return lambda: None
        self._callbacks.append(cb)

        def remove():
            if cb in self._callbacks:
                self._callbacks.remove(cb)
        return remove

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise CancellationError()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await `awaitable` unless the token fires first.
        On cancel the inner operation is torn down (an in-flight HTTP request
        is aborted at the transport) and CancellationError is raised.
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise CancellationError()
        inner = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({inner, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            inner.cancel()
            raise
        finally:
            waiter.cancel()

        if inner.done():
            return inner.result()

        inner.cancel()
        try:
            await inner
        except (asyncio.CancelledError, Exception):
            pass
        raise CancellationError()

    async def sleep(self, seconds: float):
        """Sleep that wakes early (and raises) on cancel."""
        await self.guard(asyncio.sleep(seconds))
