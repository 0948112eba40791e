"""FleetZenEngine — owns the draft store and the services around it."""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING

from fleetzen.datastore.client import Datastore
from fleetzen.datastore.migrations import run_auto_migrate
from fleetzen.engine.services.draft_store import DraftStore
from fleetzen.metrics.collector import DraftMetrics
from fleetzen.notifications.service import NotificationService
from fleetzen.sync.client import SubmissionClient
from fleetzen.sync.connectivity import ConnectivityMonitor
from fleetzen.sync.service import SyncService
from fleetzen.taskmanager.manager import CronJob, TaskManager
from fleetzen.taskmanager.tasks import (
    task_calculate_metrics,
    task_probe_connectivity,
    task_reap_drafts,
    task_sync_drafts,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from fleetzen.config.settings import AppConfig

_ERR_NOT_INITIALIZED = "Engine not initialized. Call initialize() first."


class FleetZenEngine:
    """Central engine for the field-agent device.

    Lifecycle::

        engine = FleetZenEngine(config)
        await engine.initialize()
        draft = await engine.draft_store.create("washing")
        ...
        await engine.close()
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        clock: Callable[[], datetime] | None = None,
        online: bool = False,
    ) -> None:
        """Initialize engine with configuration.

        Args:
            config: Application configuration.
            clock: Time source for the draft store (tests pass a fake).
            online: Initial connectivity; the probe job corrects it.
        """
        self._config = config
        self._clock = clock
        self._initial_online = online
        self._initialized = False

        self._datastore: Datastore | None = None
        self._draft_store: DraftStore | None = None
        self._connectivity: ConnectivityMonitor | None = None
        self._submission_client: SubmissionClient | None = None
        self._sync: SyncService | None = None
        self._metrics: DraftMetrics | None = None
        self._notifications: NotificationService | None = None
        self._task_manager: TaskManager | None = None

    async def initialize(self) -> None:
        """Open the datastore, create tables, and start services.

        A failure part-way releases whatever was already started, so the
        engine can be initialized again.

        Raises:
            RuntimeError: If already initialized.
        """
        if self._initialized:
            msg = "Engine already initialized"
            raise RuntimeError(msg)

        try:
            await self._start_services()
        except BaseException:
            await self._teardown()
            raise
        self._initialized = True

    async def _start_services(self) -> None:
        self._datastore = Datastore(self._config.db)
        await self._datastore.open()
        await run_auto_migrate(self._datastore.engine)

        if self._config.metrics.enabled:
            self._metrics = DraftMetrics()

        if self._config.notifications.enabled:
            self._notifications = NotificationService()
            await self._notifications.start()

        self._draft_store = DraftStore(
            self._datastore,
            self._config.drafts,
            clock=self._clock,
            agent_id=self._config.agent_id,
        )
        self._connectivity = ConnectivityMonitor(online=self._initial_online)

        if self._config.sync.enabled:
            self._submission_client = SubmissionClient(self._config.sync)
            await self._submission_client.connect()
            self._sync = SyncService(
                self._draft_store,
                self._submission_client,
                notifications=self._notifications,
                metrics=self._metrics,
            )
            await self._sync.recover_interrupted()
            self._sync.start(self._connectivity)

        if self._config.task.enabled:
            self._task_manager = TaskManager(metrics=self._metrics)
            self._register_jobs(self._task_manager)
            await self._task_manager.start()

    def _register_jobs(self, tm: TaskManager) -> None:
        task = self._config.task
        tm.register(
            "draft_reap",
            CronJob(handler=partial(task_reap_drafts, self), period=task.reap_period),
        )
        if self._sync is not None:
            tm.register(
                "connectivity_probe",
                CronJob(
                    handler=partial(task_probe_connectivity, self),
                    period=task.connectivity_period,
                    run_on_start=True,
                ),
            )
            tm.register(
                "draft_sync",
                CronJob(handler=partial(task_sync_drafts, self), period=task.sync_period),
            )
        if self._metrics is not None:
            tm.register(
                "calculate_metrics",
                CronJob(
                    handler=partial(task_calculate_metrics, self, self._metrics),
                    period=task.metrics_period,
                    run_on_start=True,
                ),
            )

    async def close(self) -> None:
        """Shut down services and connections. Safe to call twice."""
        if not self._initialized:
            return
        await self._teardown()
        self._initialized = False

    async def _teardown(self) -> None:
        # Stop task manager first (jobs use every other service)
        if self._task_manager is not None:
            await self._task_manager.stop()
            self._task_manager = None

        if self._sync is not None:
            self._sync.stop()
            self._sync = None

        if self._submission_client is not None:
            await self._submission_client.close()
            self._submission_client = None

        if self._notifications is not None:
            await self._notifications.stop()
            self._notifications = None

        if self._datastore is not None:
            await self._datastore.close()
            self._datastore = None

        self._draft_store = None
        self._connectivity = None
        self._metrics = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def config(self) -> AppConfig:
        """Get the application configuration."""
        return self._config

    @property
    def datastore(self) -> Datastore:
        """Get the datastore instance.

        Raises:
            RuntimeError: If engine not initialized.
        """
        if self._datastore is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._datastore

    @property
    def draft_store(self) -> DraftStore:
        """Get the draft store."""
        if self._draft_store is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._draft_store

    @property
    def connectivity(self) -> ConnectivityMonitor:
        """Get the connectivity monitor."""
        if self._connectivity is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._connectivity

    @property
    def sync_service(self) -> SyncService | None:
        """Get the sync service (None if sync is disabled)."""
        return self._sync

    @property
    def submission_client(self) -> SubmissionClient | None:
        """Get the submission client (None if sync is disabled)."""
        return self._submission_client

    @property
    def metrics(self) -> DraftMetrics | None:
        """Get the draft metrics (None if disabled)."""
        return self._metrics

    @property
    def notification_service(self) -> NotificationService | None:
        """Get the notification service (None if disabled)."""
        return self._notifications

    @property
    def task_manager(self) -> TaskManager | None:
        """Get the task manager (None if not enabled)."""
        return self._task_manager

    async def health_check(self) -> dict[str, str]:
        """Report the status of each component.

        Returns:
            Component name → ``ok``, ``error``, ``disabled``, ``offline``
            or ``not_initialized``.
        """
        if not self._initialized:
            return {
                "engine": "not_initialized",
                "datastore": "unknown",
                "sync": "unknown",
                "tasks": "unknown",
            }

        status = {"engine": "ok"}
        datastore_ok = self._datastore is not None and await self._datastore.ping()
        status["datastore"] = "ok" if datastore_ok else "error"

        if self._sync is None:
            status["sync"] = "disabled"
        elif self._connectivity is not None and self._connectivity.is_online:
            status["sync"] = "ok"
        else:
            status["sync"] = "offline"

        if self._task_manager is None:
            status["tasks"] = "disabled"
        else:
            status["tasks"] = "ok" if self._task_manager.is_running else "error"
        return status
