"""Background task definitions — cron job handlers.

- ``draft_reap`` (1 h) — physically remove expired drafts
- ``draft_sync`` (5 min) — sweep finished drafts to the backend
- ``connectivity_probe`` (30 s) — feed backend reachability to the monitor
- ``calculate_metrics`` (15 s) — count drafts per sync state for Prometheus

Expected store and sync failures are logged here; anything else propagates
to the task manager, which logs it and keeps the loop alive.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fleetzen.errors.fleetzen_errors import FleetZenError

if TYPE_CHECKING:
    from fleetzen.engine.client import FleetZenEngine
    from fleetzen.metrics.collector import DraftMetrics

logger = logging.getLogger(__name__)

DRAFT_REAP_PERIOD = 3600
DRAFT_SYNC_PERIOD = 300
CONNECTIVITY_PROBE_PERIOD = 30
CALCULATE_METRICS_PERIOD = 15


async def task_reap_drafts(engine: FleetZenEngine) -> None:
    """Remove drafts past their retention window, whatever their state."""
    try:
        count = await engine.draft_store.reap()
    except FleetZenError as exc:
        logger.warning("draft_reap failed: %s", exc.message)
        return
    if engine.metrics is not None:
        engine.metrics.record_reaped(count)


async def task_sync_drafts(engine: FleetZenEngine) -> None:
    """Sweep eligible drafts when the device is online.

    Catches connectivity transitions the monitor never reported.
    """
    sync = engine.sync_service
    if sync is None or not engine.connectivity.is_online:
        return
    try:
        report = await sync.sync_pending()
    except FleetZenError as exc:
        logger.warning("draft_sync failed: %s", exc.message)
        return
    if report.attempted:
        logger.debug("draft_sync attempted %d draft(s)", report.attempted)


async def task_probe_connectivity(engine: FleetZenEngine) -> None:
    """Ask the backend whether it is reachable and report the answer."""
    client = engine.submission_client
    if client is None:
        return
    await engine.connectivity.set_online(await client.ping())


async def task_calculate_metrics(engine: FleetZenEngine, metrics: DraftMetrics) -> None:
    """Publish per-state draft counts."""
    counts = await engine.draft_store.count_by_state()
    metrics.set_draft_counts({state.value: count for state, count in counts.items()})
