"""Metrics collector — Prometheus counters, gauges, histograms.

- ``fleetzen_drafts_total`` gauge-vec (one series per sync state)
- ``fleetzen_sync_submission_histogram``
- ``fleetzen_sync_results_total`` counter-vec (synced, failed, skipped)
- ``fleetzen_reaped_drafts_total``
- ``fleetzen_cron_histogram`` / ``fleetzen_cron_last_execution_gauge``
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import TYPE_CHECKING

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

_PREFIX = "fleetzen"

SYNC_RESULTS = ("synced", "failed", "skipped")


class MetricsCollector:
    """Low-level Prometheus collector that owns the registry.

    Use :class:`DraftMetrics` for the high-level tracking interface.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or CollectorRegistry()

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._registry

    def gauge(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Gauge:
        """Register and return a Gauge."""
        return Gauge(name, doc, labels, registry=self._registry)

    def histogram(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Histogram:
        """Register and return a Histogram."""
        return Histogram(name, doc, labels, registry=self._registry)

    def counter(self, name: str, doc: str, labels: tuple[str, ...] = ()) -> Counter:
        """Register and return a Counter."""
        return Counter(name, doc, labels, registry=self._registry)


class DraftMetrics:
    """Draft store and sync metrics. Histograms are in seconds."""

    def __init__(self, collector: MetricsCollector | None = None) -> None:
        self._collector = collector or MetricsCollector()

        self._drafts = self._collector.gauge(
            f"{_PREFIX}_drafts_total",
            "Unexpired drafts on the device by sync state",
            ("sync_state",),
        )
        self._submission = self._collector.histogram(
            f"{_PREFIX}_sync_submission_histogram",
            "Duration of draft submissions to the backend",
        )
        self._sync_results = self._collector.counter(
            f"{_PREFIX}_sync_results",
            "Draft sync outcomes",
            ("result",),
        )
        self._reaped = self._collector.counter(
            f"{_PREFIX}_reaped_drafts",
            "Expired drafts physically removed",
        )

        self._cron_histogram = self._collector.histogram(
            f"{_PREFIX}_cron_histogram",
            "Duration of cron job executions",
            ("job_name",),
        )
        self._cron_last = self._collector.gauge(
            f"{_PREFIX}_cron_last_execution_gauge",
            "Timestamp of last cron execution",
            ("job_name",),
        )

    @property
    def registry(self) -> CollectorRegistry:
        """Return the underlying Prometheus registry."""
        return self._collector.registry

    def set_draft_counts(self, counts: Mapping[str, int]) -> None:
        """Publish per-state draft counts (keys are sync-state values)."""
        for state, count in counts.items():
            self._drafts.labels(sync_state=str(state)).set(count)

    def record_sync_result(self, result: str, count: int = 1) -> None:
        """Count a sync outcome: ``synced``, ``failed`` or ``skipped``."""
        if result not in SYNC_RESULTS:
            msg = f"unknown sync result: {result}"
            raise ValueError(msg)
        if count:
            self._sync_results.labels(result=result).inc(count)

    def record_reaped(self, count: int) -> None:
        """Count drafts removed by the reaper."""
        if count:
            self._reaped.inc(count)

    @contextmanager
    def track_submission(self) -> Iterator[None]:
        """Track the duration of one draft submission."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._submission.observe(time.monotonic() - start)

    @contextmanager
    def track_cron(self, job_name: str) -> Iterator[None]:
        """Track the duration of a cron job and record last execution time."""
        start = time.monotonic()
        try:
            yield
        finally:
            self._cron_histogram.labels(job_name=job_name).observe(time.monotonic() - start)
            self._cron_last.labels(job_name=job_name).set(time.time())
