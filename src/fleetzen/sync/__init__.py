"""Sync hand-off between the draft store and the FleetZen backend."""

from __future__ import annotations

from fleetzen.sync.client import SubmissionClient, build_submission_body
from fleetzen.sync.connectivity import ConnectivityMonitor
from fleetzen.sync.service import SyncReport, SyncService

__all__ = [
    "ConnectivityMonitor",
    "SubmissionClient",
    "SyncReport",
    "SyncService",
    "build_submission_body",
]
