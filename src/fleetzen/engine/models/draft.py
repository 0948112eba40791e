"""DraftIntervention / DraftPhoto models — on-device intervention drafts."""

from __future__ import annotations

import enum
from datetime import datetime  # noqa: TC003 - SQLAlchemy needs this at runtime for Mapped[datetime]
from typing import Any

from sqlalchemy import JSON, ForeignKey, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fleetzen.engine.models.base import Base


class InterventionType(enum.StrEnum):
    """Kinds of field intervention an agent can draft."""

    WASHING = "washing"
    FUEL_DELIVERY = "fuel-delivery"
    TANK_FILL = "tank-fill"


class SyncState(enum.StrEnum):
    """Hand-off state of a draft towards the remote backend."""

    LOCAL_ONLY = "local-only"
    SYNC_PENDING = "sync-pending"
    SYNCED = "synced"
    SYNC_FAILED = "sync-failed"


class DraftPhoto(Base):
    """A compressed photo blob attached to a draft.

    ``data`` is deferred so listing drafts never pulls image bytes.
    """

    __tablename__ = "draft_photos"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    draft_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("draft_interventions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, comment="Insertion order")
    photo_key: Mapped[str] = mapped_column(
        String(64), nullable=False, default="general", comment="Form slot, e.g. photosAvant"
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    mime_type: Mapped[str] = mapped_column(String(64), nullable=False, default="image/jpeg")
    size: Mapped[int] = mapped_column(Integer, nullable=False, comment="Stored byte size")
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, deferred=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    draft: Mapped[DraftIntervention] = relationship(back_populates="photos")

    def __repr__(self) -> str:
        return f"<DraftPhoto id={self.id[:8]}... draft={self.draft_id[:8]}... size={self.size}>"


class DraftIntervention(Base):
    """A provisional intervention record captured on the device.

    Every write bumps ``version``; SQLAlchemy checks it on UPDATE so a write
    based on a stale read fails instead of overwriting.
    """

    __tablename__ = "draft_interventions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, comment="Client-generated ID")
    intervention_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=dict, comment="Form fields, opaque to the store"
    )
    client_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    site_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    vehicle_ref: Mapped[str | None] = mapped_column(String(64), nullable=True)
    agent_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, comment="Display-only agent stamp"
    )
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sync_state: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=SyncState.LOCAL_ONLY.value,
        index=True,
        comment="local-only | sync-pending | synced | sync-failed",
    )
    sync_failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)

    photos: Mapped[list[DraftPhoto]] = relationship(
        back_populates="draft",
        order_by=DraftPhoto.position,
        cascade="all, delete-orphan",
        lazy="selectin",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}  # noqa: RUF012

    def __repr__(self) -> str:
        return f"<DraftIntervention id={self.id[:8]}... state={self.sync_state}>"
