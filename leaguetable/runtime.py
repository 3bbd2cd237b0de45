"""
Explicit wiring of the automation services.

Nothing here is a module-level singleton: callers construct a TableAutomation,
start it, pass it (or its parts) around and stop it.

Usage:
    async with TableAutomation(settings) as automation:
        await automation.admin.enqueue_recalculation(...)
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from leaguetable.admin import AutomationAdmin
from leaguetable.automation import MatchHooks, MatchLifecycle, install_match_hooks
from leaguetable.calculation import TableCalculationEngine
from leaguetable.config import AutomationSettings, get_settings
from leaguetable.database import (
    close_db,
    create_engine,
    create_session_class,
    create_session_factory,
    init_db,
)
from leaguetable.queue import QueueManager
from leaguetable.repository import TableRepository
from leaguetable.snapshots import SnapshotService

logger = logging.getLogger(__name__)


class TableAutomation:
    """Owns the database engine, queue, snapshots, lifecycle and admin facade."""

    def __init__(
        self,
        settings: Optional[AutomationSettings] = None,
        db_engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings or get_settings()
        self._owns_db_engine = db_engine is None
        self.db_engine = db_engine or create_engine(self.settings)
        # Hooks listen on this class only, so instances never see each other's commits
        self.session_class = create_session_class()
        self.session_factory = create_session_factory(self.db_engine, sync_session_class=self.session_class)

        self.repository = TableRepository(self.session_factory)
        self.engine = TableCalculationEngine(
            self.repository,
            slow_warning_seconds=self.settings.CALC_SLOW_WARNING_SECONDS,
        )
        self.queue = QueueManager(self.engine, self.settings)
        self.snapshots = SnapshotService(self.repository, self.settings, queue=self.queue)
        self.lifecycle = MatchLifecycle(self.queue, enabled=self.settings.TRIGGER_ENABLED)
        self.admin = AutomationAdmin(
            self.queue,
            self.snapshots,
            repository=self.repository,
            engine=self.engine,
            db_engine=self.db_engine,
        )
        self.hooks: Optional[MatchHooks] = None

    async def start(self, install_hooks: bool = True, create_tables: bool = True) -> None:
        if create_tables:
            await init_db(self.db_engine)
        if install_hooks:
            self.hooks = install_match_hooks(self.lifecycle, target=self.session_class)
        await self.queue.start()
        logger.info(
            f"[AUTOMATION] Started (concurrency={self.settings.QUEUE_CONCURRENCY}, "
            f"hooks={'on' if self.hooks else 'off'}, trigger_enabled={self.lifecycle.enabled})"
        )

    async def stop(self) -> None:
        if self.hooks is not None:
            self.hooks.uninstall()
            self.hooks = None
        await self.queue.stop()
        if self._owns_db_engine:
            await close_db(self.db_engine)
        logger.info("[AUTOMATION] Stopped")

    async def __aenter__(self) -> "TableAutomation":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
