"""Connectivity signal — online/offline state with transition callbacks.

Whatever detects the network (an OS hook, a periodic reachability probe)
pushes its observation through :meth:`ConnectivityMonitor.set_online`.
Callbacks registered with :meth:`ConnectivityMonitor.on_online` run once
per offline → online transition, never on repeated online reports.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Tracks whether the device can reach the backend.

    Usage::

        monitor = ConnectivityMonitor(online=False)
        unsubscribe = monitor.on_online(sync_service.sync_pending)
        await monitor.set_online(True)   # callbacks run
        await monitor.set_online(True)   # no transition, nothing runs
        unsubscribe()
    """

    def __init__(self, *, online: bool = False) -> None:
        self._online = online
        self._callbacks: list[Callable[[], Awaitable[object]]] = []
        self._transitions = 0

    @property
    def is_online(self) -> bool:
        """Last reported connectivity."""
        return self._online

    @property
    def transitions(self) -> int:
        """Number of offline → online transitions observed."""
        return self._transitions

    def on_online(self, callback: Callable[[], Awaitable[object]]) -> Callable[[], None]:
        """Register *callback* for offline → online transitions.

        Returns:
            A function that unregisters the callback.
        """
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    async def set_online(self, online: bool) -> None:
        """Report the current connectivity.

        On an offline → online transition every registered callback is
        awaited concurrently. A failing callback is logged and does not
        affect the others.
        """
        was_online, self._online = self._online, online
        if was_online == online:
            return

        if not online:
            logger.info("Connectivity lost")
            return

        self._transitions += 1
        logger.info("Connectivity restored, notifying %d subscriber(s)", len(self._callbacks))
        callbacks = list(self._callbacks)
        results = await asyncio.gather(*(cb() for cb in callbacks), return_exceptions=True)
        for cb, result in zip(callbacks, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Connectivity callback %s failed",
                    getattr(cb, "__qualname__", cb),
                    exc_info=result,
                )
