from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from loguru import logger

from transcript_toolchain.errors import RunCancelled

T = TypeVar("T")


class CancelToken:
    """
    One token per run, threaded through every suspension point.

    ``guard`` races an awaitable against the token so an in-flight network call
    is aborted as soon as the run is cancelled.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.info("run.cancel_requested")
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled()

    async def sleep(self, seconds: float) -> None:
        """Sleep that wakes up early (and raises) on cancellation."""
        if seconds <= 0:
            self.raise_if_cancelled()
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise RunCancelled()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        self.raise_if_cancelled()
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            work.cancel()
            raise
        finally:
            waiter.cancel()
        if work in done:
            return work.result()
        work.cancel()
        try:
            await work
        except (asyncio.CancelledError, Exception):  # noqa: BLE001
            pass
        raise RunCancelled()
