"""Tests for DraftStore — lifecycle, expiry, photos and sync-state transitions."""

from __future__ import annotations

import asyncio
import threading
from datetime import timedelta

import pytest

from fleetzen.config.settings import DraftsConfig
from fleetzen.engine.models import InterventionType, SyncState
from fleetzen.engine.services.draft_store import DraftStore
from fleetzen.errors.draft_errors import (
    ConflictError,
    DraftExpiredError,
    DraftNotFoundError,
    InvalidArgumentError,
    LimitExceededError,
    StorageFailureError,
)
from fleetzen.interventions.payloads import WashingPayload
from fleetzen.interventions.photos import CompressedPhoto

PHOTO = b"\xff\xd8\xff\xe0fake-jpeg-bytes"


# ---------------------------------------------------------------------------
# create / get
# ---------------------------------------------------------------------------


class TestCreate:
    async def test_create_then_get(self, store, clock) -> None:
        draft = await store.create(InterventionType.WASHING, {"products": ["soap"]})

        fetched = await store.get(draft.id)
        assert fetched.id == draft.id
        assert fetched.intervention_type == InterventionType.WASHING
        assert fetched.payload == {"products": ["soap"]}
        assert fetched.sync_state == SyncState.LOCAL_ONLY
        assert fetched.created_at == fetched.updated_at == clock.now
        assert fetched.expires_at == clock.now + timedelta(days=7)
        assert fetched.photo_refs == ()
        assert fetched.retry_count == 0

    async def test_accepts_type_string(self, store) -> None:
        draft = await store.create("fuel-delivery")
        assert draft.intervention_type == InterventionType.FUEL_DELIVERY
        assert draft.payload == {}

    async def test_ids_are_unique(self, store) -> None:
        ids = {(await store.create("washing")).id for _ in range(20)}
        assert len(ids) == 20

    async def test_refs_and_agent(self, store) -> None:
        draft = await store.create(
            "tank-fill",
            client_ref="c-1",
            site_ref="s-1",
            vehicle_ref="v-1",
            agent_id="agent-7",
            current_step=2,
        )
        fetched = await store.get(draft.id)
        assert (fetched.client_ref, fetched.site_ref, fetched.vehicle_ref) == ("c-1", "s-1", "v-1")
        assert fetched.agent_id == "agent-7"
        assert fetched.current_step == 2

    async def test_default_agent_id(self, datastore, app_config, clock) -> None:
        store = DraftStore(datastore, app_config.drafts, clock=clock, agent_id="agent-dev")
        stamped = await store.create("washing")
        explicit = await store.create("washing", agent_id="agent-7")
        assert (await store.get(stamped.id)).agent_id == "agent-dev"
        assert (await store.get(explicit.id)).agent_id == "agent-7"

    async def test_no_default_agent_id(self, store) -> None:
        draft = await store.create("washing")
        assert draft.agent_id is None

    async def test_pydantic_payload(self, store) -> None:
        draft = await store.create("washing", WashingPayload(washType="express"))
        assert draft.payload == {"washType": "express", "products": []}

    async def test_unknown_type_rejected(self, store) -> None:
        with pytest.raises(InvalidArgumentError, match="unknown intervention type"):
            await store.create("painting")
        assert await store.list() == []

    async def test_non_mapping_payload_rejected(self, store) -> None:
        with pytest.raises(InvalidArgumentError, match="mapping"):
            await store.create("washing", ["not", "a", "dict"])  # type: ignore[arg-type]

    async def test_unserializable_payload_rejected(self, store) -> None:
        with pytest.raises(InvalidArgumentError, match="JSON"):
            await store.create("washing", {"when": object()})

    async def test_returned_payload_matches_stored(self, store) -> None:
        draft = await store.create("washing", {1: "a", "t": (1, 2)})
        assert draft.payload == {"1": "a", "t": [1, 2]}
        assert (await store.get(draft.id)).payload == draft.payload

        updated = await store.update(draft.id, {"u": (3,)})
        assert updated.payload == (await store.get(draft.id)).payload
        assert updated.payload["u"] == [3]

    async def test_get_unknown(self, store) -> None:
        with pytest.raises(DraftNotFoundError) as exc_info:
            await store.get("missing")
        assert exc_info.value.draft_id == "missing"

    async def test_snapshot_is_detached(self, store) -> None:
        draft = await store.create("washing", {"products": ["soap"]})
        draft.payload["products"].append("wax")
        assert (await store.get(draft.id)).payload == {"products": ["soap"]}


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------


class TestUpdate:
    async def test_shallow_merge_in_call_order(self, store, clock) -> None:
        draft = await store.create("washing", {"washType": "express", "notes": "a"})

        clock.advance(minutes=1)
        await store.update(draft.id, {"notes": "b", "duration": 10})
        last = clock.advance(minutes=1)
        await store.update(draft.id, {"products": ["soap"], "notes": "c"})

        fetched = await store.get(draft.id)
        assert fetched.payload == {
            "washType": "express",
            "notes": "c",
            "duration": 10,
            "products": ["soap"],
        }
        assert fetched.updated_at == last
        assert fetched.created_at < fetched.updated_at

    async def test_nested_values_replaced_not_merged(self, store) -> None:
        draft = await store.create("washing", {"meta": {"a": 1, "b": 2}})
        await store.update(draft.id, {"meta": {"c": 3}})
        assert (await store.get(draft.id)).payload["meta"] == {"c": 3}

    async def test_does_not_extend_expiry(self, store, clock) -> None:
        draft = await store.create("washing")
        clock.advance(days=6)
        updated = await store.update(draft.id, {"notes": "late"})
        assert updated.expires_at == draft.expires_at

    async def test_current_step(self, store) -> None:
        draft = await store.create("washing")
        updated = await store.update(draft.id, {}, current_step=3)
        assert updated.current_step == 3
        untouched = await store.update(draft.id, {"notes": "x"})
        assert untouched.current_step == 3

    async def test_updated_at_never_before_created_at(self, store, clock) -> None:
        draft = await store.create("washing")
        clock.advance(seconds=-30)
        updated = await store.update(draft.id, {"notes": "clock went back"})
        assert updated.updated_at >= updated.created_at

    async def test_version_bumps(self, store) -> None:
        draft = await store.create("washing")
        updated = await store.update(draft.id, {"notes": "x"})
        assert updated.version == draft.version + 1

    async def test_unknown(self, store) -> None:
        with pytest.raises(DraftNotFoundError):
            await store.update("missing", {"notes": "x"})

    async def test_expired(self, store, clock) -> None:
        draft = await store.create("washing")
        clock.advance(days=7, seconds=1)
        with pytest.raises(DraftExpiredError):
            await store.update(draft.id, {"notes": "x"})

    async def test_concurrent_updates_both_apply(self, store) -> None:
        draft = await store.create("washing")
        await asyncio.gather(
            store.update(draft.id, {"a": 1}),
            store.update(draft.id, {"b": 2}),
            store.update(draft.id, {"c": 3}),
        )
        fetched = await store.get(draft.id)
        assert fetched.payload == {"a": 1, "b": 2, "c": 3}
        assert fetched.version == draft.version + 3


# ---------------------------------------------------------------------------
# Photos
# ---------------------------------------------------------------------------


class TestPhotos:
    async def test_photo_cap(self, store) -> None:
        draft = await store.create("washing")
        await store.add_photo(draft.id, PHOTO, photo_key="photosAvant")
        await store.add_photo(draft.id, PHOTO + b"2", photo_key="photosApres")

        with pytest.raises(LimitExceededError):
            await store.add_photo(draft.id, PHOTO)

        fetched = await store.get(draft.id)
        assert len(fetched.photo_refs) == store.max_photos == 2

    async def test_insertion_order_and_metadata(self, store) -> None:
        draft = await store.create("washing")
        await store.add_photo(draft.id, b"first", photo_key="photosAvant", file_name="a.jpg")
        updated = await store.add_photo(draft.id, b"second!", photo_key="photosApres")

        refs = updated.photo_refs
        assert [r.photo_key for r in refs] == ["photosAvant", "photosApres"]
        assert [r.position for r in refs] == [0, 1]
        assert [r.size for r in refs] == [5, 7]
        assert refs[0].file_name == "a.jpg"

    async def test_blob_roundtrip(self, store) -> None:
        draft = await store.create("washing")
        updated = await store.add_photo(draft.id, PHOTO)
        assert await store.get_photo_blob(updated.photo_refs[0].id) == PHOTO

    async def test_load_photos(self, store) -> None:
        draft = await store.create("washing")
        await store.add_photo(draft.id, b"one")
        await store.add_photo(draft.id, b"two")
        loaded = await store.load_photos(draft.id)
        assert [data for _, data in loaded] == [b"one", b"two"]

    async def test_unknown_photo(self, store) -> None:
        with pytest.raises(DraftNotFoundError, match="photo not found"):
            await store.get_photo_blob("nope")

    async def test_empty_blob_rejected(self, store) -> None:
        draft = await store.create("washing")
        with pytest.raises(InvalidArgumentError):
            await store.add_photo(draft.id, b"")
        assert (await store.get(draft.id)).photo_refs == ()

    async def test_oversized_blob_rejected(self, datastore, clock) -> None:
        store = DraftStore(
            datastore, DraftsConfig(compress_photos=False, max_photo_bytes=4), clock=clock
        )
        draft = await store.create("washing")
        with pytest.raises(LimitExceededError):
            await store.add_photo(draft.id, b"12345")

    async def test_zero_photo_limit(self, datastore, clock) -> None:
        store = DraftStore(datastore, DraftsConfig(compress_photos=False, max_photos=0), clock=clock)
        draft = await store.create("washing")
        with pytest.raises(LimitExceededError):
            await store.add_photo(draft.id, PHOTO)

    async def test_compression_enabled(self, datastore, clock, make_image) -> None:
        store = DraftStore(
            datastore,
            DraftsConfig(compress_photos=True, photo_max_dimension=32),
            clock=clock,
        )
        draft = await store.create("washing")
        updated = await store.add_photo(draft.id, make_image((200, 100)), file_name="shot.png")

        ref = updated.photo_refs[0]
        assert ref.mime_type == "image/jpeg"
        assert ref.file_name == "shot.jpg"
        blob = await store.get_photo_blob(ref.id)
        assert ref.size == len(blob)
        assert blob[:2] == b"\xff\xd8"

    async def test_too_many_pixels_rejected(
        self, datastore, clock, make_image, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        from PIL import Image

        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
        store = DraftStore(datastore, DraftsConfig(compress_photos=True), clock=clock)
        draft = await store.create("washing")

        with pytest.raises(LimitExceededError, match="too many pixels"):
            await store.add_photo(draft.id, make_image((64, 48)))
        assert (await store.get(draft.id)).photo_refs == ()

    async def test_add_photo_updates_timestamp(self, store, clock) -> None:
        draft = await store.create("washing")
        later = clock.advance(minutes=5)
        updated = await store.add_photo(draft.id, PHOTO)
        assert updated.updated_at == later

    async def test_add_photo_expired(self, store, clock) -> None:
        draft = await store.create("washing")
        clock.advance(days=8)
        with pytest.raises(DraftExpiredError):
            await store.add_photo(draft.id, PHOTO)


# ---------------------------------------------------------------------------
# list / expiry / reap
# ---------------------------------------------------------------------------


class TestListAndExpiry:
    async def test_list_most_recent_first(self, store, clock) -> None:
        first = await store.create("washing")
        clock.advance(minutes=1)
        second = await store.create("tank-fill")
        assert [d.id for d in await store.list()] == [second.id, first.id]

    async def test_expired_hidden_from_list(self, store, clock) -> None:
        old = await store.create("washing")
        clock.advance(days=3)
        fresh = await store.create("washing")
        clock.advance(days=4, seconds=1)

        assert [d.id for d in await store.list()] == [fresh.id]
        with pytest.raises(DraftExpiredError) as exc_info:
            await store.get(old.id)
        assert exc_info.value.draft_id == old.id
        assert exc_info.value.expires_at == old.expires_at

    async def test_expiry_boundary(self, store, clock) -> None:
        draft = await store.create("washing")
        clock.now = draft.expires_at
        assert [d.id for d in await store.list()] == [draft.id]
        assert (await store.get(draft.id)).id == draft.id

    async def test_inspect_ignores_expiry(self, store, clock) -> None:
        draft = await store.create("washing")
        clock.advance(days=30)
        assert (await store.inspect(draft.id)).id == draft.id

    async def test_reads_never_delete(self, store, clock) -> None:
        draft = await store.create("washing")
        clock.advance(days=8)
        await store.list()
        with pytest.raises(DraftExpiredError):
            await store.get(draft.id)
        assert (await store.inspect(draft.id)).id == draft.id

    async def test_reap(self, store, clock) -> None:
        expired = await store.create("washing")
        await store.add_photo(expired.id, PHOTO)
        pending = await store.create("washing")
        await store.mark_sync_pending(pending.id)
        clock.advance(days=7, hours=1)
        fresh = await store.create("washing")

        assert await store.reap() == 2
        assert await store.reap() == 0
        with pytest.raises(DraftNotFoundError):
            await store.get(expired.id)
        with pytest.raises(DraftNotFoundError):
            await store.inspect(pending.id)
        assert (await store.get(fresh.id)).id == fresh.id

    async def test_list_by_state_oldest_first(self, store, clock) -> None:
        a = await store.create("washing")
        clock.advance(minutes=1)
        b = await store.create("washing")
        clock.advance(minutes=1)
        c = await store.create("washing")
        await store.mark_sync_pending(b.id)

        local = await store.list_by_state(SyncState.LOCAL_ONLY)
        assert [d.id for d in local] == [a.id, c.id]
        assert [d.id for d in await store.list_by_state("sync-pending")] == [b.id]

    async def test_list_by_state_rejects_unknown(self, store) -> None:
        with pytest.raises(InvalidArgumentError):
            await store.list_by_state("archived")

    async def test_count_by_state(self, store, clock) -> None:
        failed = await store.create("washing")
        await store.create("washing")
        await store.mark_sync_pending(failed.id)
        await store.mark_sync_failed(failed.id, "timeout")

        counts = await store.count_by_state()
        assert counts[SyncState.LOCAL_ONLY] == 1
        assert counts[SyncState.SYNC_FAILED] == 1
        assert counts[SyncState.SYNC_PENDING] == 0

        clock.advance(days=7, seconds=1)
        await store.create("tank-fill")
        counts = await store.count_by_state()
        assert counts[SyncState.LOCAL_ONLY] == 1
        assert counts[SyncState.SYNC_FAILED] == 0


# ---------------------------------------------------------------------------
# Sync-state transitions
# ---------------------------------------------------------------------------


class TestSyncTransitions:
    async def test_pending_blocks_edits(self, store) -> None:
        draft = await store.create("washing")
        pending = await store.mark_sync_pending(draft.id)
        assert pending.sync_state == SyncState.SYNC_PENDING
        assert pending.retry_count == 1

        with pytest.raises(ConflictError):
            await store.update(draft.id, {"notes": "x"})
        with pytest.raises(ConflictError):
            await store.add_photo(draft.id, PHOTO)

    async def test_failed_allows_edits(self, store) -> None:
        draft = await store.create("washing")
        await store.mark_sync_pending(draft.id)
        failed = await store.mark_sync_failed(draft.id, "network")
        assert failed.sync_state == SyncState.SYNC_FAILED
        assert failed.sync_failure_reason == "network"

        updated = await store.update(draft.id, {"notes": "fixed"})
        assert updated.payload == {"notes": "fixed"}
        assert updated.sync_state == SyncState.SYNC_FAILED

    async def test_retry_clears_reason(self, store) -> None:
        draft = await store.create("washing")
        await store.mark_sync_pending(draft.id)
        await store.mark_sync_failed(draft.id, "HTTP 500")
        again = await store.mark_sync_pending(draft.id)
        assert again.sync_failure_reason is None
        assert again.retry_count == 2

    async def test_synced_removes_draft_and_photos(self, store) -> None:
        draft = await store.create("washing")
        with_photo = await store.add_photo(draft.id, PHOTO)
        await store.mark_sync_pending(draft.id)
        await store.mark_synced(draft.id)

        with pytest.raises(DraftNotFoundError):
            await store.get(draft.id)
        with pytest.raises(DraftNotFoundError):
            await store.get_photo_blob(with_photo.photo_refs[0].id)

    @pytest.mark.parametrize(
        ("prepare", "action"),
        [
            ([], "mark_synced"),
            ([], "mark_sync_failed"),
            (["mark_sync_pending"], "mark_sync_pending"),
            (["mark_sync_pending", "mark_sync_failed"], "mark_synced"),
        ],
    )
    async def test_invalid_transitions(self, store, prepare, action) -> None:
        draft = await store.create("washing")
        for step in prepare:
            args = ("boom",) if step == "mark_sync_failed" else ()
            await getattr(store, step)(draft.id, *args)

        args = ("boom",) if action == "mark_sync_failed" else ()
        with pytest.raises(ConflictError):
            await getattr(store, action)(draft.id, *args)

    async def test_transition_unknown_id(self, store) -> None:
        with pytest.raises(DraftNotFoundError):
            await store.mark_sync_pending("missing")
        with pytest.raises(DraftNotFoundError):
            await store.mark_synced("missing")

    async def test_expired_never_offered_for_sync(self, store, clock) -> None:
        draft = await store.create("washing")
        clock.advance(days=8)
        with pytest.raises(DraftExpiredError):
            await store.mark_sync_pending(draft.id)

    async def test_empty_reason_defaulted(self, store) -> None:
        draft = await store.create("washing")
        await store.mark_sync_pending(draft.id)
        failed = await store.mark_sync_failed(draft.id, "")
        assert failed.sync_failure_reason == "unknown error"


# ---------------------------------------------------------------------------
# delete
# ---------------------------------------------------------------------------


class TestDelete:
    async def test_delete(self, store) -> None:
        draft = await store.create("washing")
        await store.add_photo(draft.id, PHOTO)
        await store.delete(draft.id)
        with pytest.raises(DraftNotFoundError):
            await store.get(draft.id)

    async def test_delete_idempotent(self, store) -> None:
        await store.delete("never-existed")
        draft = await store.create("washing")
        await store.delete(draft.id)
        await store.delete(draft.id)


# ---------------------------------------------------------------------------
# Storage failures
# ---------------------------------------------------------------------------


class TestStorageFailure:
    async def test_list_fails_open(self, store, datastore) -> None:
        await store.create("washing")
        await _drop_tables(datastore)
        assert await store.list() == []
        assert await store.list_by_state("local-only") == []
        assert set((await store.count_by_state()).values()) == {0}

    async def test_writes_fail_closed(self, store, datastore) -> None:
        await _drop_tables(datastore)
        with pytest.raises(StorageFailureError):
            await store.create("washing")

    async def test_failed_write_leaves_no_partial_record(self, store) -> None:
        draft = await store.create("washing", {"notes": "kept"})
        with pytest.raises(InvalidArgumentError):
            await store.update(draft.id, {"bad": {1, 2}})
        assert (await store.get(draft.id)).payload == {"notes": "kept"}


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    async def test_cancelled_add_photo_rolls_back(
        self, datastore, clock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        started = threading.Event()
        release = threading.Event()

        def _slow_compress(data: bytes, **kwargs) -> CompressedPhoto:
            started.set()
            release.wait(5)
            return CompressedPhoto(data=data, mime_type="image/jpeg", width=1, height=1)

        monkeypatch.setattr(
            "fleetzen.engine.services.draft_store.compress_photo", _slow_compress
        )
        store = DraftStore(datastore, DraftsConfig(compress_photos=True), clock=clock)
        draft = await store.create("washing", {"a": 1})

        task = asyncio.create_task(store.add_photo(draft.id, PHOTO))
        assert await asyncio.to_thread(started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        release.set()

        after = await store.get(draft.id)
        assert after.photo_refs == ()
        assert after.version == draft.version
        # the per-draft lock was released
        updated = await asyncio.wait_for(store.update(draft.id, {"b": 2}), timeout=1)
        assert updated.payload == {"a": 1, "b": 2}


async def _drop_tables(datastore) -> None:
    from fleetzen.datastore.migrations import drop_all_tables

    await drop_all_tables(datastore.engine)


# ---------------------------------------------------------------------------
# End-to-end scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    async def test_fill_in_washing_draft(self, store) -> None:
        draft = await store.create("washing")
        await store.update(draft.id, {"washType": "complete"})
        await store.add_photo(draft.id, PHOTO, photo_key="photosAvant")

        drafts = await store.list()
        assert len(drafts) == 1
        assert drafts[0].payload["washType"] == "complete"
        assert len(drafts[0].photo_refs) == 1

    async def test_expire_then_reap(self, store, clock) -> None:
        draft = await store.create("washing")
        clock.advance(days=7, minutes=1)

        assert await store.list() == []
        with pytest.raises(DraftExpiredError):
            await store.get(draft.id)
        assert await store.reap() == 1
        with pytest.raises(DraftNotFoundError):
            await store.get(draft.id)

    async def test_pending_then_failed_then_edit(self, store) -> None:
        draft = await store.create("washing")
        await store.mark_sync_pending(draft.id)
        with pytest.raises(ConflictError):
            await store.update(draft.id, {"notes": "x"})
        await store.mark_sync_failed(draft.id, "network")
        updated = await store.update(draft.id, {"notes": "x"})
        assert updated.payload["notes"] == "x"
