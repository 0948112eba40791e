"""Notifications — sync events fanned out to subscribers.

Provides:
- ``NotificationService`` — fan-out event bus using asyncio queues
- ``DraftEvent`` / ``SyncCompletedEvent`` — event payloads
"""

from __future__ import annotations

from fleetzen.notifications.events import DraftEvent, RawEvent, SyncCompletedEvent
from fleetzen.notifications.service import NotificationService

__all__ = [
    "DraftEvent",
    "NotificationService",
    "RawEvent",
    "SyncCompletedEvent",
]
