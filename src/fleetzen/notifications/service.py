"""Notification service — fan sync events out to subscribers.

One input queue feeds one bounded queue per subscriber. A subscriber can
restrict itself to a set of event types (e.g. the sync banner only wants
``sync-completed``). Full queues drop events rather than block the store.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fleetzen.notifications.events import RawEvent

logger = logging.getLogger(__name__)

_BUFFER = 100


@dataclass
class _Subscription:
    queue: asyncio.Queue[RawEvent]
    types: frozenset[str] | None

    def wants(self, event: RawEvent) -> bool:
        return self.types is None or event.type in self.types


class NotificationService:
    """Asyncio-based notification fan-out service.

    Usage::

        svc = NotificationService()
        q = svc.add_subscriber("sync-banner", types={"sync-completed"})
        await svc.start()
        await svc.notify(SyncCompletedEvent(synced=2))
        event = await q.get()
        await svc.stop()
    """

    def __init__(self) -> None:
        self._input: asyncio.Queue[RawEvent] = asyncio.Queue(maxsize=_BUFFER)
        self._subscriptions: dict[str, _Subscription] = {}
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Whether the exchange loop is running."""
        return self._task is not None

    @property
    def subscribers(self) -> list[str]:
        """Registered subscriber keys."""
        return list(self._subscriptions)

    def add_subscriber(
        self,
        key: str,
        *,
        types: Iterable[str] | None = None,
        buffer: int = _BUFFER,
    ) -> asyncio.Queue[RawEvent]:
        """Register a subscriber and return its output queue.

        Args:
            key: Subscriber name; re-registering replaces the old queue.
            types: Only deliver these event types (all when ``None``).
            buffer: Queue capacity.
        """
        q: asyncio.Queue[RawEvent] = asyncio.Queue(maxsize=buffer)
        self._subscriptions[key] = _Subscription(
            queue=q,
            types=frozenset(types) if types is not None else None,
        )
        return q

    def remove_subscriber(self, key: str) -> None:
        """Unregister a subscriber."""
        self._subscriptions.pop(key, None)

    async def notify(self, event: RawEvent) -> None:
        """Enqueue an event for fan-out."""
        try:
            self._input.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Notification input queue full, dropping %s event", event.type)

    async def start(self) -> None:
        """Start the exchange loop."""
        if self._task is None:
            self._task = asyncio.create_task(self._exchange())

    async def stop(self) -> None:
        """Stop the exchange loop. Undelivered events are discarded."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _exchange(self) -> None:
        while True:
            event = await self._input.get()
            for key, sub in list(self._subscriptions.items()):
                if not sub.wants(event):
                    continue
                try:
                    sub.queue.put_nowait(event)
                except asyncio.QueueFull:
                    logger.warning("Subscriber %s queue full, dropping %s event", key, event.type)
