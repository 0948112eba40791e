"""Draft store — on-device persistence of intervention drafts.

Responsibilities:
- Create / update drafts (shallow payload merge, fixed expiry)
- Attach photos (compressed, capped per draft, insertion order kept)
- Get / list with read-time expiry filtering (``list`` hides, ``get`` reports)
- Sync-state transitions (local-only → sync-pending → synced | sync-failed)
- Explicit reaping of expired drafts

Each operation runs in its own transaction and writes whole rows, so a
caller never observes a half-written draft. Writers to the same draft are
serialized with a per-id lock; the row ``version`` column catches writers
outside this process.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
import weakref
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import undefer
from sqlalchemy.orm.exc import StaleDataError

from fleetzen.engine.models.draft import (
    DraftIntervention,
    DraftPhoto,
    InterventionType,
    SyncState,
)
from fleetzen.engine.models.snapshot import Draft, PhotoRef
from fleetzen.errors.draft_errors import (
    ConflictError,
    DraftExpiredError,
    DraftNotFoundError,
    InvalidArgumentError,
    LimitExceededError,
    StorageFailureError,
)
from fleetzen.interventions.photos import compress_photo, jpeg_file_name

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from fleetzen.config.settings import DraftsConfig
    from fleetzen.datastore.client import Datastore

logger = logging.getLogger(__name__)

# States from which a draft may still be edited
_EDITABLE_STATES = frozenset({SyncState.LOCAL_ONLY, SyncState.SYNC_FAILED})

# Allowed sync-state transitions
_STATE_TRANSITIONS: dict[SyncState, set[SyncState]] = {
    SyncState.LOCAL_ONLY: {SyncState.SYNC_PENDING},
    SyncState.SYNC_PENDING: {SyncState.SYNCED, SyncState.SYNC_FAILED},
    SyncState.SYNC_FAILED: {SyncState.SYNC_PENDING},
    SyncState.SYNCED: set(),
}


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


class DraftStore:
    """Persistent store of draft interventions.

    Usage::

        store = DraftStore(datastore, config.drafts)
        draft = await store.create(InterventionType.WASHING)
        draft = await store.update(draft.id, {"washType": "complete"})
        drafts = await store.list()

    Args:
        datastore: An open :class:`Datastore` with the draft tables created.
        config: Retention and photo policy.
        clock: Returns the current time (UTC-aware). Defaults to the wall clock.
        agent_id: Agent identity stamped on drafts created without one.
    """

    def __init__(
        self,
        datastore: Datastore,
        config: DraftsConfig,
        *,
        clock: Callable[[], datetime] | None = None,
        agent_id: str | None = None,
    ) -> None:
        self._datastore = datastore
        self._config = config
        self._clock = clock or _utcnow
        self._agent_id = agent_id or None
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @property
    def retention_window(self) -> timedelta:
        """How long a draft stays valid after creation."""
        return timedelta(days=self._config.retention_days)

    @property
    def max_photos(self) -> int:
        """Maximum number of photos per draft."""
        return self._config.max_photos

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        intervention_type: InterventionType | str,
        initial_payload: Mapping[str, Any] | BaseModel | None = None,
        *,
        client_ref: str | None = None,
        site_ref: str | None = None,
        vehicle_ref: str | None = None,
        agent_id: str | None = None,
        current_step: int = 0,
    ) -> Draft:
        """Create and persist a new ``local-only`` draft.

        Args:
            intervention_type: One of :class:`InterventionType`.
            initial_payload: Initial form fields (may be empty).
            client_ref: Optional client reference.
            site_ref: Optional site reference.
            vehicle_ref: Optional vehicle reference.
            agent_id: Agent identity, stamped for display. Defaults to the
                store's own agent identity.
            current_step: Form step the agent is on.

        Returns:
            The stored draft.

        Raises:
            InvalidArgumentError: Unknown type or payload that is not a JSON object.
            StorageFailureError: The draft could not be written.
        """
        kind = _coerce_type(intervention_type)
        payload = _coerce_payload(initial_payload)
        now = self._clock()

        row = DraftIntervention(
            id=uuid.uuid4().hex,
            intervention_type=kind.value,
            payload=payload,
            client_ref=client_ref,
            site_ref=site_ref,
            vehicle_ref=vehicle_ref,
            agent_id=agent_id if agent_id is not None else self._agent_id,
            current_step=current_step,
            sync_state=SyncState.LOCAL_ONLY.value,
            retry_count=0,
            created_at=now,
            updated_at=now,
            expires_at=now + self.retention_window,
            photos=[],
        )

        async with self._storage_errors("create"), self._datastore.session() as session:
            session.add(row)
            await session.commit()
            draft = Draft.from_model(row)

        logger.debug("Created %s draft %s", kind.value, draft.id)
        return draft

    async def update(
        self,
        draft_id: str,
        payload_patch: Mapping[str, Any] | BaseModel,
        *,
        current_step: int | None = None,
    ) -> Draft:
        """Shallow-merge *payload_patch* into a draft's payload.

        Keys in the patch overwrite stored keys; absent keys are preserved.
        ``updated_at`` is rewritten, ``expires_at`` is not.

        Raises:
            DraftNotFoundError: Unknown draft.
            DraftExpiredError: The draft is past its retention window.
            ConflictError: The draft is being synced (or already synced).
            InvalidArgumentError: The patch is not a JSON object.
            StorageFailureError: The write failed.
        """
        patch = _coerce_payload(payload_patch)

        async with self._write(draft_id, "update") as (session, row):
            now = self._clock()
            self._check_editable(row, now)
            row.payload = {**(row.payload or {}), **patch}
            if current_step is not None:
                row.current_step = current_step
            row.updated_at = max(now, row.created_at)
            await session.commit()
            return Draft.from_model(row)

    async def add_photo(
        self,
        draft_id: str,
        data: bytes,
        *,
        photo_key: str = "general",
        file_name: str = "photo.jpg",
        mime_type: str = "image/jpeg",
    ) -> Draft:
        """Append a photo to a draft.

        When photo compression is enabled the blob is re-encoded as JPEG
        first and the stored size is the compressed size.

        Raises:
            DraftNotFoundError: Unknown draft.
            DraftExpiredError: The draft is past its retention window.
            ConflictError: The draft is being synced (or already synced).
            LimitExceededError: The draft already holds ``max_photos`` photos,
                or the blob is larger than ``max_photo_bytes``.
            InvalidArgumentError: Empty or undecodable blob.
            StorageFailureError: The write failed.
        """
        async with self._write(draft_id, "add_photo") as (session, row):
            now = self._clock()
            self._check_editable(row, now)
            if len(row.photos) >= self.max_photos:
                msg = f"draft {draft_id} already holds {self.max_photos} photos"
                raise LimitExceededError(msg)

            blob, mime_type, file_name = await self._prepare_photo(data, mime_type, file_name)
            position = max((p.position for p in row.photos), default=-1) + 1
            row.photos.append(
                DraftPhoto(
                    id=uuid.uuid4().hex,
                    draft_id=row.id,
                    position=position,
                    photo_key=photo_key,
                    file_name=file_name,
                    mime_type=mime_type,
                    size=len(blob),
                    data=blob,
                    created_at=now,
                )
            )
            row.updated_at = max(now, row.created_at)
            await session.commit()
            return Draft.from_model(row)

    async def delete(self, draft_id: str) -> None:
        """Delete a draft and its photos. Unknown ids are ignored."""
        async with (
            self._lock_for(draft_id),
            self._storage_errors("delete"),
            self._datastore.session() as session,
        ):
            await session.execute(delete(DraftPhoto).where(DraftPhoto.draft_id == draft_id))
            result = await session.execute(
                delete(DraftIntervention).where(DraftIntervention.id == draft_id)
            )
            await session.commit()

        if result.rowcount:  # type: ignore[union-attr]
            logger.debug("Deleted draft %s", draft_id)

    async def reap(self) -> int:
        """Physically remove every draft past its retention window.

        Applies regardless of sync state. Never invoked implicitly by
        reads; schedule it.

        Returns:
            Number of drafts removed.
        """
        now = self._clock()
        expired_ids = select(DraftIntervention.id).where(DraftIntervention.expires_at < now)

        async with self._storage_errors("reap"), self._datastore.session() as session:
            await session.execute(
                delete(DraftPhoto).where(DraftPhoto.draft_id.in_(expired_ids))
            )
            result = await session.execute(
                delete(DraftIntervention).where(DraftIntervention.expires_at < now)
            )
            await session.commit()

        count = result.rowcount or 0  # type: ignore[union-attr]
        if count:
            logger.info("Reaped %d expired drafts", count)
        return count

    # ------------------------------------------------------------------
    # Sync-state transitions
    # ------------------------------------------------------------------

    async def mark_sync_pending(self, draft_id: str) -> Draft:
        """Hand a draft off for submission; locks it against edits.

        Allowed from ``local-only`` and ``sync-failed`` (manual retry).
        Increments ``retry_count`` and clears any previous failure reason.

        Raises:
            DraftNotFoundError: Unknown draft.
            DraftExpiredError: Expired drafts are never offered for sync.
            ConflictError: Invalid transition.
        """
        async with self._write(draft_id, "mark_sync_pending") as (session, row):
            now = self._clock()
            if now > row.expires_at:
                raise DraftExpiredError(row.id, row.expires_at)
            self._check_transition(row, SyncState.SYNC_PENDING)
            row.sync_state = SyncState.SYNC_PENDING.value
            row.sync_failure_reason = None
            row.retry_count += 1
            await session.commit()
            return Draft.from_model(row)

    async def mark_synced(self, draft_id: str) -> None:
        """Record backend confirmation and remove the draft.

        Raises:
            DraftNotFoundError: Unknown draft.
            ConflictError: The draft is not ``sync-pending``.
        """
        async with self._write(draft_id, "mark_synced") as (session, row):
            self._check_transition(row, SyncState.SYNCED)
            row.sync_state = SyncState.SYNCED.value
            await session.delete(row)
            await session.commit()

        logger.info("Draft %s synced and removed", draft_id)

    async def mark_sync_failed(self, draft_id: str, reason: str) -> Draft:
        """Record a rejected or failed submission; the draft stays for retry.

        Raises:
            DraftNotFoundError: Unknown draft.
            ConflictError: The draft is not ``sync-pending``.
        """
        async with self._write(draft_id, "mark_sync_failed") as (session, row):
            self._check_transition(row, SyncState.SYNC_FAILED)
            row.sync_state = SyncState.SYNC_FAILED.value
            row.sync_failure_reason = reason or "unknown error"
            await session.commit()
            draft = Draft.from_model(row)

        logger.warning("Draft %s sync failed: %s", draft_id, draft.sync_failure_reason)
        return draft

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, draft_id: str) -> Draft:
        """Return a draft.

        Raises:
            DraftNotFoundError: Unknown draft.
            DraftExpiredError: The draft exists but is past ``expires_at``.
            StorageFailureError: The read failed.
        """
        draft = await self.inspect(draft_id)
        if draft.is_expired(self._clock()):
            raise DraftExpiredError(draft.id, draft.expires_at)
        return draft

    async def inspect(self, draft_id: str) -> Draft:
        """Return a draft without checking expiry.

        Raises:
            DraftNotFoundError: Unknown draft.
            StorageFailureError: The read failed.
        """
        async with self._storage_errors("inspect"), self._datastore.session() as session:
            row = await session.get(DraftIntervention, draft_id)
            if row is None:
                raise DraftNotFoundError(draft_id)
            return Draft.from_model(row)

    async def list(self) -> list[Draft]:
        """Return unexpired drafts, most recently created first.

        A storage failure is logged and yields an empty list.
        """
        now = self._clock()
        stmt = (
            select(DraftIntervention)
            .where(DraftIntervention.expires_at >= now)
            .order_by(DraftIntervention.created_at.desc(), DraftIntervention.id)
        )
        return await self._read_many(stmt, "list")

    async def list_by_state(self, state: SyncState | str) -> list[Draft]:
        """Return unexpired drafts in *state*, oldest first.

        A storage failure is logged and yields an empty list.
        """
        try:
            wanted = SyncState(state)
        except ValueError as exc:
            msg = f"unknown sync state: {state!r}"
            raise InvalidArgumentError(msg) from exc

        now = self._clock()
        stmt = (
            select(DraftIntervention)
            .where(
                DraftIntervention.sync_state == wanted.value,
                DraftIntervention.expires_at >= now,
            )
            .order_by(DraftIntervention.created_at, DraftIntervention.id)
        )
        return await self._read_many(stmt, "list_by_state")

    async def count_by_state(self) -> dict[SyncState, int]:
        """Count unexpired drafts per sync state.

        A storage failure is logged and yields all-zero counts.
        """
        counts = dict.fromkeys(SyncState, 0)
        now = self._clock()
        stmt = (
            select(DraftIntervention.sync_state, func.count(DraftIntervention.id))
            .where(DraftIntervention.expires_at >= now)
            .group_by(DraftIntervention.sync_state)
        )
        try:
            async with self._storage_errors("count_by_state"), self._datastore.session() as session:
                rows = (await session.execute(stmt)).all()
        except StorageFailureError:
            logger.exception("Draft counts unavailable")
            return counts

        for state, count in rows:
            counts[SyncState(state)] = count
        return counts

    async def get_photo_blob(self, photo_id: str) -> bytes:
        """Return the stored bytes of one photo.

        Raises:
            DraftNotFoundError: Unknown photo.
        """
        async with self._storage_errors("get_photo_blob"), self._datastore.session() as session:
            result = await session.execute(select(DraftPhoto.data).where(DraftPhoto.id == photo_id))
            data = result.scalar_one_or_none()
        if data is None:
            raise DraftNotFoundError(photo_id, what="photo")
        return data

    async def load_photos(self, draft_id: str) -> list[tuple[PhotoRef, bytes]]:
        """Return a draft's photos with their bytes, in insertion order."""
        stmt = (
            select(DraftPhoto)
            .options(undefer(DraftPhoto.data))
            .where(DraftPhoto.draft_id == draft_id)
            .order_by(DraftPhoto.position)
        )
        async with self._storage_errors("load_photos"), self._datastore.session() as session:
            photos = (await session.execute(stmt)).scalars().all()
            return [(PhotoRef.from_model(p), p.data) for p in photos]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, draft_id: str) -> asyncio.Lock:
        lock = self._locks.get(draft_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[draft_id] = lock
        return lock

    @contextlib.asynccontextmanager
    async def _storage_errors(self, action: str) -> AsyncIterator[None]:
        """Translate storage-layer exceptions into store errors."""
        try:
            yield
        except StaleDataError as exc:
            msg = f"{action}: draft was modified concurrently"
            raise ConflictError(msg) from exc
        except SQLAlchemyError as exc:
            logger.error("Draft storage %s failed: %s", action, exc)
            msg = f"{action} failed: {exc.__class__.__name__}"
            raise StorageFailureError(msg) from exc

    @contextlib.asynccontextmanager
    async def _write(
        self, draft_id: str, action: str
    ) -> AsyncIterator[tuple[AsyncSession, DraftIntervention]]:
        """Serialize on *draft_id*, open a session and load the row.

        The caller must commit; leaving the block without committing
        rolls everything back.
        """
        async with (
            self._lock_for(draft_id),
            self._storage_errors(action),
            self._datastore.session() as session,
        ):
            row = await session.get(DraftIntervention, draft_id)
            if row is None:
                raise DraftNotFoundError(draft_id)
            yield session, row

    async def _read_many(self, stmt: Any, action: str) -> list[Draft]:
        try:
            async with self._storage_errors(action), self._datastore.session() as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [Draft.from_model(r) for r in rows]
        except StorageFailureError:
            logger.exception("Draft %s unavailable, returning no drafts", action)
            return []

    async def _prepare_photo(
        self, data: bytes, mime_type: str, file_name: str
    ) -> tuple[bytes, str, str]:
        if not self._config.compress_photos:
            if not data:
                msg = "photo is empty"
                raise InvalidArgumentError(msg)
            if len(data) > self._config.max_photo_bytes:
                msg = f"photo is {len(data)} bytes, limit is {self._config.max_photo_bytes}"
                raise LimitExceededError(msg)
            return data, mime_type, file_name

        compressed = await asyncio.to_thread(
            compress_photo,
            data,
            max_dimension=self._config.photo_max_dimension,
            quality=self._config.photo_quality,
            max_input_bytes=self._config.max_photo_bytes,
        )
        return compressed.data, compressed.mime_type, jpeg_file_name(file_name)

    @staticmethod
    def _check_editable(row: DraftIntervention, now: datetime) -> None:
        if now > row.expires_at:
            raise DraftExpiredError(row.id, row.expires_at)
        if SyncState(row.sync_state) not in _EDITABLE_STATES:
            msg = f"draft {row.id} is {row.sync_state} and cannot be edited"
            raise ConflictError(msg)

    @staticmethod
    def _check_transition(row: DraftIntervention, target: SyncState) -> None:
        current = SyncState(row.sync_state)
        if target not in _STATE_TRANSITIONS[current]:
            msg = f"draft {row.id} cannot move from {current.value} to {target.value}"
            raise ConflictError(msg)


def _coerce_type(value: InterventionType | str) -> InterventionType:
    try:
        return InterventionType(value)
    except ValueError as exc:
        allowed = ", ".join(t.value for t in InterventionType)
        msg = f"unknown intervention type {value!r} (expected one of: {allowed})"
        raise InvalidArgumentError(msg) from exc


def _coerce_payload(value: Mapping[str, Any] | BaseModel | None) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", exclude_none=True)
    if not isinstance(value, Mapping):
        msg = f"payload must be a mapping, got {type(value).__name__}"
        raise InvalidArgumentError(msg)
    try:
        # stored as JSON; return what a later read will see
        return json.loads(json.dumps(dict(value)))
    except (TypeError, ValueError) as exc:
        msg = f"payload is not JSON-serializable: {exc}"
        raise InvalidArgumentError(msg) from exc
