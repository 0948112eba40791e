"""Tests for draft ORM models, the UTC column type and snapshots."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from sqlalchemy import select

from fleetzen.engine.models import (
    ALL_MODELS,
    Draft,
    DraftIntervention,
    DraftPhoto,
    InterventionType,
    PhotoRef,
    SyncState,
    UTCDateTime,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _row(**overrides) -> DraftIntervention:
    values = {
        "id": "d1",
        "intervention_type": "washing",
        "payload": {"washType": "complete"},
        "current_step": 0,
        "sync_state": SyncState.LOCAL_ONLY.value,
        "retry_count": 0,
        "created_at": T0,
        "updated_at": T0,
        "expires_at": T0 + timedelta(days=7),
        "photos": [],
    }
    values.update(overrides)
    return DraftIntervention(**values)


class TestEnums:
    def test_intervention_types(self) -> None:
        assert {t.value for t in InterventionType} == {"washing", "fuel-delivery", "tank-fill"}

    def test_sync_states(self) -> None:
        assert SyncState("sync-failed") is SyncState.SYNC_FAILED
        assert str(SyncState.LOCAL_ONLY) == "local-only"


class TestTables:
    def test_all_models(self) -> None:
        names = {m.__tablename__ for m in ALL_MODELS}
        assert names == {"draft_interventions", "draft_photos"}

    async def test_photo_cascade_on_draft_delete(self, datastore) -> None:
        async with datastore.session() as session:
            row = _row()
            row.photos.append(
                DraftPhoto(
                    id="p1",
                    draft_id="d1",
                    position=0,
                    size=3,
                    data=b"abc",
                    created_at=T0,
                )
            )
            session.add(row)
            await session.commit()

        async with datastore.session() as session:
            row = await session.get(DraftIntervention, "d1")
            await session.delete(row)
            await session.commit()

        async with datastore.session() as session:
            remaining = (await session.execute(select(DraftPhoto))).scalars().all()
        assert remaining == []


class TestUTCDateTime:
    def test_naive_bind_tagged_utc(self) -> None:
        col = UTCDateTime()
        out = col.process_bind_param(datetime(2026, 1, 1, 10, 0), None)
        assert out == datetime(2026, 1, 1, 10, 0, tzinfo=UTC)

    def test_aware_bind_converted(self) -> None:
        col = UTCDateTime()
        paris = timezone(timedelta(hours=1))
        out = col.process_bind_param(datetime(2026, 1, 1, 11, 0, tzinfo=paris), None)
        assert out == datetime(2026, 1, 1, 10, 0, tzinfo=UTC)
        assert out.tzinfo is UTC

    def test_none_passthrough(self) -> None:
        col = UTCDateTime()
        assert col.process_bind_param(None, None) is None
        assert col.process_result_value(None, None) is None

    async def test_roundtrip_is_aware(self, datastore) -> None:
        async with datastore.session() as session:
            session.add(_row())
            await session.commit()

        async with datastore.session() as session:
            row = await session.get(DraftIntervention, "d1")
            assert row.created_at == T0
            assert row.created_at.tzinfo is not None


class TestSnapshot:
    def test_from_model(self) -> None:
        row = _row(client_ref="c-9", version=4)
        row.photos.append(
            DraftPhoto(
                id="p1",
                draft_id="d1",
                position=0,
                photo_key="photosAvant",
                file_name="a.jpg",
                mime_type="image/jpeg",
                size=10,
                data=b"x" * 10,
                created_at=T0,
            )
        )
        draft = Draft.from_model(row)
        assert draft.intervention_type is InterventionType.WASHING
        assert draft.sync_state is SyncState.LOCAL_ONLY
        assert draft.client_ref == "c-9"
        assert draft.photo_refs == (
            PhotoRef(
                id="p1",
                position=0,
                size=10,
                photo_key="photosAvant",
                file_name="a.jpg",
                mime_type="image/jpeg",
            ),
        )

    def test_is_expired(self) -> None:
        draft = Draft.from_model(_row())
        assert not draft.is_expired(draft.expires_at)
        assert draft.is_expired(draft.expires_at + timedelta(microseconds=1))

    def test_to_dict(self) -> None:
        draft = Draft.from_model(_row(sync_failure_reason=None))
        data = draft.to_dict()
        assert data["id"] == "d1"
        assert data["interventionType"] == "washing"
        assert data["syncState"] == "local-only"
        assert data["createdAt"] == "2026-03-01T12:00:00+00:00"
        assert data["expiresAt"] == "2026-03-08T12:00:00+00:00"
        assert data["photoRefs"] == []
        assert "syncFailureReason" not in data
        assert "clientRef" not in data

    def test_to_dict_includes_failure_reason(self) -> None:
        draft = Draft.from_model(
            _row(sync_state=SyncState.SYNC_FAILED.value, sync_failure_reason="HTTP 500")
        )
        assert draft.to_dict()["syncFailureReason"] == "HTTP 500"
