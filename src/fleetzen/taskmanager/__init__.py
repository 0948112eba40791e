"""Periodic background jobs (reaping, sync sweeps, metrics)."""

from __future__ import annotations

from fleetzen.taskmanager.manager import CronJob, JobStats, TaskManager

__all__ = ["CronJob", "JobStats", "TaskManager"]
