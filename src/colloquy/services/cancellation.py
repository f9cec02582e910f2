"""Cancellable suspension for a running conversation."""

import asyncio
import logging
from typing import Awaitable, TypeVar

from ..errors import ConversationCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

class CancellationToken:
    """Shared between the orchestrator and its error policy.

    Every wait in a conversation (inter-turn delay, retry backoff) goes
    through ``sleep``, and every provider call through ``guard``, so that
    ``cancel`` interrupts it.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.info("Cancellation requested")
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ConversationCancelledError()

    async def sleep(self, seconds: float) -> None:
        """Suspend for ``seconds``, raising ConversationCancelledError if cancelled."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise ConversationCancelledError()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable``, abandoning it as soon as the token fires.

        The abandoned work is cancelled and awaited before
        ConversationCancelledError is raised.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ConversationCancelledError()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task.done() and not task.cancelled():
            # Finished before the token fired, or in the same step
            return task.result()

        await asyncio.gather(task, return_exceptions=True)
        logger.info("In-flight provider call abandoned")
        raise ConversationCancelledError()
