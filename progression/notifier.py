"""In-process announcements of newly earned badges."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from catalog import Badge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeAwarded:
    session_id: str
    badge: Badge
    awarded_at: str


BadgeHandler = Callable[[BadgeAwarded], Any]


class BadgeNotifier:
    """Observer list for badge awards.

    Handlers may be plain callables or coroutine functions. When an event
    loop is running, ``publish`` only schedules delivery and returns at
    once; otherwise handlers run inline. A failing handler is logged and
    does not affect the others. Nothing is persisted.
    """

    def __init__(self) -> None:
        self._handlers: list[BadgeHandler] = []
        self._pending: set[asyncio.Future] = set()

    def subscribe(self, handler: BadgeHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: BadgeHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def publish(self, award: BadgeAwarded) -> None:
        handlers = list(self._handlers)
        if not handlers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for handler in handlers:
            if loop is None:
                self._deliver(handler, award, None)
            else:
                loop.call_soon(self._deliver, handler, award, loop)

    def _deliver(
        self,
        handler: BadgeHandler,
        award: BadgeAwarded,
        loop: asyncio.AbstractEventLoop | None,
    ) -> None:
        try:
            result = handler(award)
            if inspect.isawaitable(result) and loop is None:
                # No loop to hand it to; run it to completion here
                asyncio.run(_await(result))
                return
        except Exception:
            logger.error("Badge handler %r failed for %s", handler, award.badge.badge_id, exc_info=True)
            return

        if not inspect.isawaitable(result):
            return
        task = loop.create_task(_await(result))
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Async badge handler failed: %s", exc, exc_info=exc)

    async def drain(self) -> None:
        """Wait for scheduled deliveries, including async handlers."""
        # Let call_soon callbacks run so their tasks exist
        await asyncio.sleep(0)
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
            await asyncio.sleep(0)


async def _await(awaitable: Any) -> Any:
    return await awaitable
