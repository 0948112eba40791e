"""Sync hand-off — move finished drafts from the device to the backend.

A sweep takes every eligible ``local-only`` draft, oldest first, and runs it
through ``mark_sync_pending`` → submit → ``mark_synced`` or
``mark_sync_failed``. Drafts are independent: one failure never stops the
batch. Drafts still being filled in (payload not yet valid for its type)
are skipped and stay local.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from fleetzen.engine.models.draft import SyncState
from fleetzen.errors.draft_errors import (
    ConflictError,
    DraftExpiredError,
    DraftNotFoundError,
    SubmissionError,
)
from fleetzen.errors.fleetzen_errors import FleetZenError
from fleetzen.interventions.payloads import is_complete, validate_payload
from fleetzen.notifications.events import DraftEvent, SyncCompletedEvent

if TYPE_CHECKING:
    from collections.abc import Callable

    from fleetzen.engine.models.snapshot import Draft
    from fleetzen.engine.services.draft_store import DraftStore
    from fleetzen.metrics.collector import DraftMetrics
    from fleetzen.notifications.events import RawEvent
    from fleetzen.notifications.service import NotificationService
    from fleetzen.sync.client import SubmissionClient
    from fleetzen.sync.connectivity import ConnectivityMonitor

logger = logging.getLogger(__name__)

_INTERRUPTED_REASON = "sync interrupted before the backend answered"


@dataclass
class SyncReport:
    """Outcome of one sweep (or one manual retry)."""

    synced: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        """Drafts actually handed to the backend."""
        return len(self.synced) + len(self.failed)


class SyncService:
    """Hands drafts to the backend when connectivity allows.

    Usage::

        sync = SyncService(store, client, notifications=notifications)
        sync.start(monitor)               # sweep on every reconnect
        report = await sync.sync_pending()
        ok = await sync.retry(draft_id)   # manual retry of a failed draft
        sync.stop()
    """

    def __init__(
        self,
        store: DraftStore,
        client: SubmissionClient,
        *,
        notifications: NotificationService | None = None,
        metrics: DraftMetrics | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._notifications = notifications
        self._metrics = metrics
        self._sweep_lock = asyncio.Lock()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def is_syncing(self) -> bool:
        """Whether a sweep is in progress."""
        return self._sweep_lock.locked()

    def start(self, monitor: ConnectivityMonitor) -> None:
        """Sweep whenever *monitor* reports the device back online."""
        if self._unsubscribe is None:
            self._unsubscribe = monitor.on_online(self.sync_pending)

    def stop(self) -> None:
        """Stop reacting to connectivity changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def sync_pending(self) -> SyncReport:
        """Submit every eligible draft, oldest first.

        Returns an empty report when another sweep is already running.
        """
        if self._sweep_lock.locked():
            logger.debug("Sync sweep already running, skipping")
            return SyncReport()

        async with self._sweep_lock:
            report = SyncReport()
            for draft in await self._store.list_by_state(SyncState.LOCAL_ONLY):
                if not is_complete(draft.intervention_type, draft.payload):
                    report.skipped.append(draft.id)
                    continue
                await self._sync_one(draft, report)

            self._record(report)
            if report.attempted:
                logger.info(
                    "Sync sweep finished: %d synced, %d failed, %d skipped",
                    len(report.synced),
                    len(report.failed),
                    len(report.skipped),
                )
                await self._notify(
                    SyncCompletedEvent(synced=len(report.synced), failed=len(report.failed))
                )
            return report

    async def retry(self, draft_id: str) -> bool:
        """Manually resubmit one ``sync-failed`` (or ``local-only``) draft.

        Returns:
            ``True`` if the backend accepted the draft, ``False`` if it
            failed again (the reason is stored on the draft).

        Raises:
            DraftNotFoundError: Unknown draft.
            DraftExpiredError: The draft is past its retention window.
            ConflictError: The draft is already being synced.
            InvalidArgumentError: The payload is not complete for its type.
        """
        draft = await self._store.get(draft_id)
        if draft.sync_state not in (SyncState.LOCAL_ONLY, SyncState.SYNC_FAILED):
            msg = f"draft {draft_id} is {draft.sync_state.value} and cannot be retried"
            raise ConflictError(msg)
        validate_payload(draft.intervention_type, draft.payload)

        async with self._sweep_lock:
            report = SyncReport()
            await self._sync_one(draft, report, strict=True)
            self._record(report)
        return draft_id in report.synced

    async def recover_interrupted(self) -> int:
        """Fail drafts left ``sync-pending`` by a previous run.

        A draft is only ``sync-pending`` while a sweep owns it, so any found
        at startup were abandoned mid-submission. They become
        ``sync-failed`` and can be retried.

        Returns:
            Number of drafts recovered.
        """
        recovered = 0
        for draft in await self._store.list_by_state(SyncState.SYNC_PENDING):
            try:
                await self._store.mark_sync_failed(draft.id, _INTERRUPTED_REASON)
            except (ConflictError, DraftNotFoundError):
                continue
            recovered += 1
        if recovered:
            logger.warning("Recovered %d draft(s) left mid-sync", recovered)
        return recovered

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _sync_one(self, draft: Draft, report: SyncReport, *, strict: bool = False) -> None:
        try:
            pending = await self._store.mark_sync_pending(draft.id)
        except (ConflictError, DraftExpiredError, DraftNotFoundError) as exc:
            # edited, reaped or claimed since it was listed
            if strict:
                raise
            logger.debug("Skipping draft %s: %s", draft.id, exc.message)
            report.skipped.append(draft.id)
            return

        try:
            photos = await self._store.load_photos(pending.id)
            if self._metrics is not None:
                with self._metrics.track_submission():
                    await self._client.submit(pending, photos)
            else:
                await self._client.submit(pending, photos)
        except FleetZenError as exc:
            reason = exc.reason if isinstance(exc, SubmissionError) else exc.message
            await self._fail(pending, reason, report)
            return

        try:
            await self._store.mark_synced(pending.id)
        except FleetZenError as exc:
            # accepted remotely; left sync-pending until recover_interrupted
            logger.exception("Draft %s accepted but could not be removed locally", pending.id)
            report.failed[pending.id] = exc.message
            return
        report.synced.append(pending.id)
        logger.info("Draft %s synced", pending.id)
        await self._notify(
            DraftEvent(
                draft_id=pending.id,
                intervention_type=pending.intervention_type.value,
                sync_state=SyncState.SYNCED.value,
            )
        )

    async def _fail(self, draft: Draft, reason: str, report: SyncReport) -> None:
        report.failed[draft.id] = reason
        try:
            await self._store.mark_sync_failed(draft.id, reason)
        except FleetZenError:
            logger.exception("Could not record sync failure for draft %s", draft.id)
            return
        await self._notify(
            DraftEvent(
                draft_id=draft.id,
                intervention_type=draft.intervention_type.value,
                sync_state=SyncState.SYNC_FAILED.value,
                reason=reason,
            )
        )

    def _record(self, report: SyncReport) -> None:
        if self._metrics is None:
            return
        self._metrics.record_sync_result("synced", len(report.synced))
        self._metrics.record_sync_result("failed", len(report.failed))
        self._metrics.record_sync_result("skipped", len(report.skipped))

    async def _notify(self, event: RawEvent) -> None:
        if self._notifications is not None:
            await self._notifications.notify(event)
