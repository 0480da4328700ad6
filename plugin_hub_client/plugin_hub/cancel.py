"""Cooperative cancellation for the translation worker.

A :class:`CancelToken` is handed to every suspension point of one batch (the
network call, the backoff sleep). Cancelling it aborts the awaited task, so an
in-flight ``httpx`` request is torn down instead of being left to finish.
"""
from __future__ import annotations
import asyncio
from typing import Awaitable, Optional, TypeVar

from .errors import Cancelled

T = TypeVar("T")


class CancelToken:
    def __init__(self, parent: Optional["CancelToken"] = None) -> None:
        self._event = asyncio.Event()
        self.reason = ""
        if parent is not None and parent.cancelled:
            self.cancel(parent.reason)
        self._parent = parent

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or (self._parent is not None and self._parent.cancelled)

    def cancel(self, reason: str = "") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled(self.reason or (self._parent.reason if self._parent else ""))

    async def _wait(self) -> None:
        if self._parent is None:
            await self._event.wait()
            return
        own = asyncio.ensure_future(self._event.wait())
        parent = asyncio.ensure_future(self._parent._wait())
        try:
            await asyncio.wait({own, parent}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            own.cancel()
            parent.cancel()

    async def run(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the token fires first; then cancel it and raise Cancelled."""
        self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception:
            # the aborted call's outcome is discarded
            pass
        self.raise_if_cancelled()
        raise Cancelled(self.reason)

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            self.raise_if_cancelled()
            await asyncio.sleep(0)
            self.raise_if_cancelled()
            return
        await self.run(asyncio.sleep(delay))
