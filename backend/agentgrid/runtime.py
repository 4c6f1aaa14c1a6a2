"""
Wiring of coordinator, event bus, detector and dispatcher for one process
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from agentgrid.backup import SnapshotBackupManager
from agentgrid.consolidation import (
    ConsolidationExecutor,
    ConsolidationPlanner,
    FieldAnalyzer,
    SafeConsolidationEngine,
)
from agentgrid.coordination import FileLockStore, LockCoordinator
from agentgrid.core.config import Settings, get_settings
from agentgrid.core.logging_utils import configure_logging
from agentgrid.dispatch import AgentDispatcher, DispatcherOptions, EngineSet
from agentgrid.events import EventBus, EventDetector
from agentgrid.monitoring import CoordinationMetrics
from agentgrid.store import RateLimitedStoreClient

logger = structlog.get_logger(__name__)


@dataclass
class AgentGridRuntime:
    settings: Settings
    coordinator: LockCoordinator
    event_bus: EventBus
    detector: Optional[EventDetector]
    dispatcher: AgentDispatcher
    metrics: CoordinationMetrics
    store: Optional[RateLimitedStoreClient] = None
    backup: Optional[SnapshotBackupManager] = None

    @classmethod
    def build(
        cls,
        settings: Optional[Settings] = None,
        store: Any = None,
        engines: Optional[EngineSet] = None,
        analyzer: Optional[FieldAnalyzer] = None,
        metrics: Optional[CoordinationMetrics] = None,
        agent_name: Optional[str] = None,
        enable_detector: bool = True,
    ) -> "AgentGridRuntime":
        """
        Construct every component with file-backed coordination.

        Args:
            settings: Settings instance (global settings if omitted)
            store: Backend table store; wrapped with rate limiting and mutation locks
            engines: Audit/optimize/backup/consolidate engines; backup and
                consolidate default to the built-in ones when a store is given
            analyzer: Field analyzer feeding the built-in consolidation engine
            metrics: Prometheus metrics collector
            agent_name: Holder id for locks and status records
            enable_detector: Whether to run automatic event detection
        """
        settings = settings or get_settings()
        metrics = metrics or CoordinationMetrics()
        engines = engines or EngineSet()

        coordinator = LockCoordinator(
            agent_name=agent_name,
            lock_store=FileLockStore(settings.LOCK_DIR),
            status_store=FileLockStore(settings.STATUS_DIR),
            settings=settings,
        )
        event_bus = EventBus(settings=settings, metrics=metrics)

        client = None
        backup = None
        if store is not None:
            client = RateLimitedStoreClient(store, coordinator=coordinator, settings=settings)
            tables = settings.monitored_tables
            if not tables and hasattr(store, "table_names"):
                tables = store.table_names()
            backup = SnapshotBackupManager(client, tables, settings.BACKUP_DIRECTORY)

            if engines.backup is None:
                engines.backup = backup
            if engines.consolidate is None and analyzer is not None:
                executor = ConsolidationExecutor(client, backup, coordinator, settings=settings)
                engines.consolidate = SafeConsolidationEngine(analyzer, ConsolidationPlanner(settings), executor)

        detector = EventDetector(event_bus, store=client, settings=settings) if enable_detector else None
        dispatcher = AgentDispatcher(
            coordinator,
            event_bus,
            engines=engines,
            detector=detector,
            settings=settings,
            metrics=metrics,
        )

        return cls(
            settings=settings,
            coordinator=coordinator,
            event_bus=event_bus,
            detector=detector,
            dispatcher=dispatcher,
            metrics=metrics,
            store=client,
            backup=backup,
        )

    async def start(self, options: Optional[DispatcherOptions] = None):
        configure_logging(settings=self.settings)
        swept = await self.coordinator.initialize()
        await self.dispatcher.start(options)
        logger.info(
            "Agent grid runtime started",
            agent=self.coordinator.agent_name,
            environment=self.settings.ENVIRONMENT,
            swept=swept,
        )

    async def stop(self):
        await self.dispatcher.stop()
        await self.event_bus.close()
        logger.info("Agent grid runtime stopped", agent=self.coordinator.agent_name)

    def status(self) -> Dict[str, Any]:
        return {
            "dispatcher": self.dispatcher.status(),
            "event_bus": self.event_bus.status(),
            "coordinator": self.coordinator.status(),
            "store": self.store.stats() if self.store is not None else None,
        }
