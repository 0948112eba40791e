"""Draft store data models.

ORM models (``DraftIntervention``, ``DraftPhoto``) and the frozen snapshots
(``Draft``, ``PhotoRef``) returned to callers. Import :data:`ALL_MODELS`
for migration and table creation.
"""

from fleetzen.engine.models.base import Base, UTCDateTime
from fleetzen.engine.models.draft import (
    DraftIntervention,
    DraftPhoto,
    InterventionType,
    SyncState,
)
from fleetzen.engine.models.snapshot import Draft, PhotoRef

ALL_MODELS: list[type[Base]] = [
    DraftIntervention,
    DraftPhoto,
]

__all__ = [
    "ALL_MODELS",
    "Base",
    "Draft",
    "DraftIntervention",
    "DraftPhoto",
    "InterventionType",
    "PhotoRef",
    "SyncState",
    "UTCDateTime",
]
