"""Event types for the notification system.

- ``RawEvent`` — envelope with type string + JSON content
- ``DraftEvent`` — a draft changed sync state
- ``SyncCompletedEvent`` — summary of one sync sweep
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class RawEvent:
    """Generic event envelope sent to subscribers."""

    type: str
    content: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict."""
        return asdict(self)


@dataclass(frozen=True)
class DraftEvent(RawEvent):
    """Emitted when a draft is synced or fails to sync."""

    type: str = "draft"
    draft_id: str = ""
    intervention_type: str = ""
    sync_state: str = ""
    reason: str = ""


@dataclass(frozen=True)
class SyncCompletedEvent(RawEvent):
    """Emitted after a sync sweep that attempted at least one draft."""

    type: str = "sync-completed"
    synced: int = 0
    failed: int = 0
