"""Prometheus metrics for the draft store, sync hand-off and cron jobs."""

from __future__ import annotations

from fleetzen.metrics.collector import DraftMetrics, MetricsCollector

__all__ = ["DraftMetrics", "MetricsCollector"]
