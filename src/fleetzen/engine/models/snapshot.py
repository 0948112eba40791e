"""Immutable draft snapshots handed to store callers.

ORM rows never leave the store; callers get these frozen copies instead.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from fleetzen.engine.models.draft import InterventionType, SyncState

if TYPE_CHECKING:
    from fleetzen.engine.models.draft import DraftIntervention, DraftPhoto


@dataclass(frozen=True)
class PhotoRef:
    """Reference to a locally held photo blob."""

    id: str
    position: int
    size: int
    photo_key: str = "general"
    file_name: str = ""
    mime_type: str = "image/jpeg"

    @classmethod
    def from_model(cls, photo: DraftPhoto) -> PhotoRef:
        return cls(
            id=photo.id,
            position=photo.position,
            size=photo.size,
            photo_key=photo.photo_key,
            file_name=photo.file_name,
            mime_type=photo.mime_type,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "position": self.position,
            "size": self.size,
            "photoKey": self.photo_key,
            "fileName": self.file_name,
            "mimeType": self.mime_type,
        }


@dataclass(frozen=True)
class Draft:
    """Point-in-time copy of a stored draft intervention."""

    id: str
    intervention_type: InterventionType
    payload: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    sync_state: SyncState
    client_ref: str | None = None
    site_ref: str | None = None
    vehicle_ref: str | None = None
    agent_id: str | None = None
    current_step: int = 0
    sync_failure_reason: str | None = None
    retry_count: int = 0
    version: int = 1
    photo_refs: tuple[PhotoRef, ...] = field(default_factory=tuple)

    @classmethod
    def from_model(cls, row: DraftIntervention) -> Draft:
        return cls(
            id=row.id,
            intervention_type=InterventionType(row.intervention_type),
            payload=copy.deepcopy(row.payload or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
            expires_at=row.expires_at,
            sync_state=SyncState(row.sync_state),
            client_ref=row.client_ref,
            site_ref=row.site_ref,
            vehicle_ref=row.vehicle_ref,
            agent_id=row.agent_id,
            current_step=row.current_step,
            sync_failure_reason=row.sync_failure_reason,
            retry_count=row.retry_count,
            version=row.version,
            photo_refs=tuple(PhotoRef.from_model(p) for p in row.photos),
        )

    def is_expired(self, now: datetime) -> bool:
        """Whether *now* is past this draft's retention window."""
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the persisted-layout field names."""
        data: dict[str, Any] = {
            "id": self.id,
            "interventionType": self.intervention_type.value,
            "payload": copy.deepcopy(self.payload),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "syncState": self.sync_state.value,
            "currentStep": self.current_step,
            "retryCount": self.retry_count,
            "photoRefs": [p.to_dict() for p in self.photo_refs],
        }
        for key, value in (
            ("clientRef", self.client_ref),
            ("siteRef", self.site_ref),
            ("vehicleRef", self.vehicle_ref),
            ("agentId", self.agent_id),
            ("syncFailureReason", self.sync_failure_reason),
        ):
            if value is not None:
                data[key] = value
        return data
