"""
Threshold and calendar driven event detection
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import psutil
import structlog

from agentgrid.coordination.models import utc_now
from agentgrid.core.config import Settings, get_settings
from agentgrid.events.event_bus import EventBus
from agentgrid.events.payloads import (
    DatabaseGrowthPayload,
    EventType,
    GrowthChange,
    PerformanceIssuePayload,
    PerformanceMetrics,
    ScheduledOptimizationPayload,
    calculate_performance_severity,
)
from agentgrid.events.schedules import ScheduleEntry, ScheduleTable
from agentgrid.store.client import QueryOperation

logger = structlog.get_logger(__name__)

# Disk usage is reported with each probe but never triggers an event
BREACH_METRICS = ("response_time_ms", "error_rate", "memory_usage")

SOURCE = "event-detector"
SCHEDULE_SLEEP_CAP_SECONDS = 60.0


class DetectorState(str, Enum):
    STOPPED = "stopped"
    MONITORING = "monitoring"


@dataclass
class DatabaseSnapshot:
    tables: Dict[str, int] = field(default_factory=dict)
    fields: Dict[str, int] = field(default_factory=dict)


class PerformanceProvider(Protocol):
    async def collect(self) -> PerformanceMetrics: ...


class CountProvider(Protocol):
    async def collect(self) -> DatabaseSnapshot: ...


class SystemPerformanceProvider:
    """Store latency and error rate plus host memory and disk utilization"""

    def __init__(self, store: Any = None, disk_path: str = "/"):
        self.store = store
        self.disk_path = disk_path

    async def collect(self) -> PerformanceMetrics:
        response_time_ms = 0.0
        error_rate = 0.0
        if self.store is not None:
            start = time.perf_counter()
            await self.store.test_connection()
            response_time_ms = (time.perf_counter() - start) * 1000
            error_rate = float(getattr(self.store, "error_rate", 0.0))

        memory = psutil.virtual_memory()
        disk = await asyncio.to_thread(psutil.disk_usage, self.disk_path)
        return PerformanceMetrics(
            response_time_ms=response_time_ms,
            error_rate=error_rate,
            memory_usage=memory.percent / 100,
            disk_usage=disk.percent / 100,
        )


class StoreCountProvider:
    """Record counts per table and non-empty value counts per table.field"""

    def __init__(self, store: Any, tables: List[str]):
        self.store = store
        self.tables = list(tables)

    async def collect(self) -> DatabaseSnapshot:
        snapshot = DatabaseSnapshot()
        for table in self.tables:
            records = await self.store.query(table, QueryOperation.SELECT)
            snapshot.tables[table] = len(records)
            field_counts: Dict[str, int] = defaultdict(int)
            for record in records:
                for name, value in record.get("fields", {}).items():
                    if value not in (None, "", [], {}):
                        field_counts[f"{table}.{name}"] += 1
            snapshot.fields.update(field_counts)
        return snapshot


def compute_growth(
    previous: Dict[str, int], current: Dict[str, int], threshold: float, scope: str
) -> List[GrowthChange]:
    """Per-key relative growth; keys without a positive prior count never fire"""
    changes = []
    for key, current_count in current.items():
        previous_count = previous.get(key, 0)
        growth = (current_count - previous_count) / previous_count if previous_count > 0 else 0
        if growth > threshold:
            changes.append(
                GrowthChange(
                    scope=scope,
                    key=key,
                    previous=previous_count,
                    current=current_count,
                    growth_rate=round(growth * 100),
                )
            )
    return changes


class EventDetector:
    """
    Publishes events while monitoring:
    - Performance probe at a fixed interval
    - Data growth probe at a fixed interval
    - Calendar schedules from a ScheduleTable
    """

    def __init__(
        self,
        event_bus: EventBus,
        store: Any = None,
        settings: Optional[Settings] = None,
        performance_provider: Optional[PerformanceProvider] = None,
        count_provider: Optional[CountProvider] = None,
        schedule_table: Optional[ScheduleTable] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        self.event_bus = event_bus
        self.store = store
        self.clock = clock

        self.performance_provider = performance_provider or SystemPerformanceProvider(store)
        if count_provider is None and store is not None:
            tables = self.settings.monitored_tables
            if not tables and hasattr(store, "table_names"):
                tables = store.table_names()
            count_provider = StoreCountProvider(store, tables)
        self.count_provider = count_provider
        self.schedule_table = schedule_table or ScheduleTable(timezone=self.settings.SCHEDULE_TIMEZONE)

        self.thresholds = {
            "response_time_ms": self.settings.RESPONSE_TIME_THRESHOLD_MS,
            "error_rate": self.settings.ERROR_RATE_THRESHOLD,
            "memory_usage": self.settings.MEMORY_USAGE_THRESHOLD,
            "disk_usage": self.settings.DISK_USAGE_THRESHOLD,
        }
        self.growth_threshold = self.settings.GROWTH_THRESHOLD

        self.state = DetectorState.STOPPED
        self._tasks: Dict[str, asyncio.Task] = {}
        self.last_metrics: Optional[PerformanceMetrics] = None
        self._last_snapshot: Optional[DatabaseSnapshot] = None
        self._last_schedule_fire: Optional[datetime] = None

        self.stats = {
            "performance_checks": 0,
            "database_checks": 0,
            "schedules_fired": 0,
            "events_published": 0,
            "probe_errors": 0,
        }

    @property
    def is_monitoring(self) -> bool:
        return self.state == DetectorState.MONITORING

    async def start(self):
        if self.is_monitoring:
            logger.warning("Event detector already monitoring")
            return

        self._tasks["performance"] = asyncio.create_task(
            self._run_periodic(
                "performance",
                self.settings.PERFORMANCE_CHECK_INTERVAL_SECONDS,
                self.check_performance,
            )
        )
        if self.count_provider is not None:
            self._tasks["database"] = asyncio.create_task(
                self._run_periodic(
                    "database",
                    self.settings.DATABASE_CHECK_INTERVAL_SECONDS,
                    self.check_database_growth,
                )
            )
        self._tasks["schedule"] = asyncio.create_task(self._schedule_loop())

        self.state = DetectorState.MONITORING
        logger.info("Event detector started", probes=sorted(self._tasks))

    async def stop(self):
        """Cancel every probe and scheduler task and wait for them to finish"""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.state = DetectorState.STOPPED
        logger.info("Event detector stopped")

    async def _run_periodic(self, name: str, interval: float, probe: Callable[[], Awaitable[Any]]):
        while True:
            await asyncio.sleep(interval)
            try:
                await probe()
            except Exception as e:
                self.stats["probe_errors"] += 1
                logger.error("Probe failed", probe=name, error=str(e))

    def _breaches(self, metrics: PerformanceMetrics) -> List[str]:
        values = metrics.model_dump()
        return [name for name in BREACH_METRICS if values[name] > self.thresholds[name]]

    async def check_performance(self) -> Optional[str]:
        """Run one performance probe; returns the event id if a threshold was crossed"""
        metrics = await self.performance_provider.collect()
        self.last_metrics = metrics
        self.stats["performance_checks"] += 1

        breaches = self._breaches(metrics)
        if not breaches:
            return None

        logger.warning("Performance threshold exceeded", breaches=breaches, metrics=metrics.model_dump())
        return await self._publish(
            EventType.PERFORMANCE_ISSUE,
            PerformanceIssuePayload(
                metrics=metrics,
                thresholds=dict(self.thresholds),
                breaches=breaches,
                severity=calculate_performance_severity(metrics),
            ),
        )

    async def check_database_growth(self) -> Optional[str]:
        """Run one growth probe against the previous snapshot"""
        if self.count_provider is None:
            return None

        snapshot = await self.count_provider.collect()
        previous = self._last_snapshot or DatabaseSnapshot()
        self._last_snapshot = snapshot
        self.stats["database_checks"] += 1

        changes = compute_growth(previous.tables, snapshot.tables, self.growth_threshold, "table")
        changes += compute_growth(previous.fields, snapshot.fields, self.growth_threshold, "field")
        if not changes:
            return None

        logger.info("Database growth detected", changes=[c.key for c in changes])
        return await self._publish(
            EventType.DATABASE_GROWTH,
            DatabaseGrowthPayload(changes=changes, threshold=self.growth_threshold),
        )

    async def _schedule_loop(self):
        while True:
            now = self.clock()
            after = max(now, self._last_schedule_fire) if self._last_schedule_fire else now
            fire_at, entries = self.schedule_table.next_due(after)

            while True:
                remaining = (fire_at - self.clock()).total_seconds()
                if remaining <= 0:
                    break
                await asyncio.sleep(min(remaining, SCHEDULE_SLEEP_CAP_SECONDS))

            self._last_schedule_fire = fire_at
            try:
                await self.fire_schedules(entries, fire_at)
            except Exception as e:
                self.stats["probe_errors"] += 1
                logger.error("Scheduled trigger failed", error=str(e))

    async def fire_schedules(self, entries: List[ScheduleEntry], scheduled_for: datetime) -> List[str]:
        event_ids = []
        for entry in entries:
            logger.info("Scheduled trigger fired", schedule=entry.name, operations=list(entry.operations))
            self.stats["schedules_fired"] += 1
            event_ids.append(
                await self._publish(
                    EventType.SCHEDULED_OPTIMIZATION,
                    ScheduledOptimizationPayload(
                        schedule=entry.name,
                        cadence=entry.cadence.value,
                        operations=list(entry.operations),
                        scheduled_for=scheduled_for,
                    ),
                )
            )
        return event_ids

    async def _publish(self, event_type: EventType, payload: Any, source: str = SOURCE) -> str:
        event_id = await self.event_bus.publish(event_type, payload, source=source)
        self.stats["events_published"] += 1
        return event_id

    async def manual_trigger(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> str:
        """Publish a detector event on demand, monitoring or not"""
        data = dict(data or {})

        if event_type == EventType.PERFORMANCE_ISSUE.value:
            metrics = PerformanceMetrics.model_validate(data.get("metrics", data))
            payload = {
                **data,
                "metrics": metrics,
                "thresholds": dict(self.thresholds),
                "breaches": self._breaches(metrics),
                "severity": calculate_performance_severity(metrics),
            }
            return await self._publish(EventType.PERFORMANCE_ISSUE, payload, source="manual")

        if event_type == EventType.DATABASE_GROWTH.value:
            payload = {"changes": [], "threshold": self.growth_threshold, **data}
            return await self._publish(EventType.DATABASE_GROWTH, payload, source="manual")

        if event_type == EventType.SCHEDULED_OPTIMIZATION.value:
            payload = {"schedule": "manual", "cadence": "manual", "operations": [], **data}
            return await self._publish(EventType.SCHEDULED_OPTIMIZATION, payload, source="manual")

        return await self._publish(
            EventType.MANUAL_TRIGGER,
            {"operation": str(event_type), "data": data},
            source="manual",
        )

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "active_probes": sorted(self._tasks),
            "thresholds": dict(self.thresholds),
            "growth_threshold": self.growth_threshold,
            "last_metrics": self.last_metrics.model_dump() if self.last_metrics else None,
            "tracked_tables": dict(self._last_snapshot.tables) if self._last_snapshot else {},
            "schedules": self.schedule_table.upcoming(self.clock()),
            "stats": dict(self.stats),
        }
