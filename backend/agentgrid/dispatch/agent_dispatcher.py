"""
Event-driven agent dispatcher

Each bus event is routed to an agent type and run as a spawn: a unit of work
holding its own ``agent-{id}`` lock (plus a shared scope for every backup or
consolidate operation it runs) for as long as its engines run.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

import structlog

from agentgrid.coordination.lock_coordinator import LockCoordinator
from agentgrid.coordination.models import LockToken, utc_now
from agentgrid.core.config import Settings, get_settings
from agentgrid.core.exceptions import EngineUnavailable
from agentgrid.core.logging_utils import get_coordination_logger
from agentgrid.dispatch.engines import AgentContext, AgentType, EngineSet
from agentgrid.events.event_bus import Event, EventBus
from agentgrid.events.event_detector import EventDetector
from agentgrid.events.payloads import EventSeverity, EventType

logger = structlog.get_logger(__name__)

SOURCE = "agent-dispatcher"

EVENT_ROUTES: Dict[EventType, AgentType] = {
    EventType.PERFORMANCE_ISSUE: AgentType.AUDIT,
    EventType.DATABASE_GROWTH: AgentType.OPTIMIZE,
    EventType.SCHEDULED_OPTIMIZATION: AgentType.MAINTENANCE,
    EventType.MANUAL_TRIGGER: AgentType.MANUAL,
    EventType.BACKUP_REQUIRED: AgentType.BACKUP,
    EventType.FIELD_CONSOLIDATION_NEEDED: AgentType.CONSOLIDATE,
    EventType.DATA_INTEGRITY_ISSUE: AgentType.AUDIT,
}

# Operation names (schedule entries, manual triggers) to engine names
OPERATION_ENGINES: Dict[str, str] = {
    "audit": "audit",
    "health_check": "audit",
    "data_integrity_issue": "audit",
    "optimize": "optimize",
    "backup": "backup",
    "backup_required": "backup",
    "consolidate": "consolidate",
    "consolidate_fields": "consolidate",
    "field_consolidation_needed": "consolidate",
}

# Engines that must not interleave across the whole deployment
SHARED_LOCK_SCOPES: Dict[str, str] = {
    "consolidate": "store-consolidation",
    "backup": "store-backup",
}

COMPLETION_NOTICE_TYPES = {AgentType.OPTIMIZE, AgentType.CONSOLIDATE, AgentType.MAINTENANCE}


@dataclass
class DispatcherOptions:
    monitoring: bool = True
    heartbeat: bool = True


@dataclass
class SpawnResult:
    agent_id: str
    agent_type: AgentType
    result: Any
    duration_seconds: float


@dataclass
class ActiveAgent:
    agent_id: str
    agent_type: AgentType
    operations: List[str]
    lock_scopes: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_type": self.agent_type.value,
            "operations": list(self.operations),
            "lock_scopes": list(self.lock_scopes),
            "started_at": self.started_at.isoformat(),
        }


class AgentDispatcher:
    """
    Turns events into agent spawns:
    - Fixed event type to agent type routing
    - Per-spawn locks and bookkeeping with guaranteed cleanup
    - Running statistics and bounded shutdown drain
    """

    def __init__(
        self,
        coordinator: LockCoordinator,
        event_bus: EventBus,
        engines: Optional[EngineSet] = None,
        detector: Optional[EventDetector] = None,
        settings: Optional[Settings] = None,
        metrics: Any = None,
    ):
        self.settings = settings or get_settings()
        self.coordinator = coordinator
        self.event_bus = event_bus
        self.engines = engines or EngineSet()
        self.detector = detector
        self.metrics = metrics
        self.log = get_coordination_logger(__name__, component=SOURCE)

        self.active_agents: Dict[str, ActiveAgent] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._subscribed: List[EventType] = []
        self.is_running = False

        self.stats = {
            "total_agents": 0,
            "successful_agents": 0,
            "failed_agents": 0,
            "avg_execution_time": 0.0,
            "events_routed": 0,
        }

    async def start(self, options: Optional[DispatcherOptions] = None):
        if self.is_running:
            logger.warning("Agent dispatcher already running")
            return

        options = options or DispatcherOptions()
        for event_type in EVENT_ROUTES:
            self.event_bus.subscribe(event_type, self._handle_event)
            self._subscribed.append(event_type)

        if options.heartbeat:
            await self.coordinator.start_heartbeat()
        if options.monitoring and self.detector is not None:
            await self.detector.start()

        self.is_running = True
        logger.info(
            "Agent dispatcher started",
            routes={e.value: a.value for e, a in EVENT_ROUTES.items()},
            engines=self.engines.available(),
        )

    async def stop(self):
        """Stop detection, wait (bounded) for in-flight agents, then shut down coordination"""
        if self.detector is not None:
            await self.detector.stop()

        for event_type in self._subscribed:
            self.event_bus.unsubscribe(event_type, self._handle_event)
        self._subscribed.clear()

        remaining = await self._drain(self.settings.SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
        if remaining:
            logger.warning(
                "Shutdown drain timed out with agents still running",
                remaining=remaining,
                timeout=self.settings.SHUTDOWN_DRAIN_TIMEOUT_SECONDS,
            )

        await self.coordinator.safe_shutdown()
        self.is_running = False
        logger.info("Agent dispatcher stopped", stats=dict(self.stats))

    async def _drain(self, timeout: float) -> List[str]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        pending = [t for t in self._tasks if not t.done()]
        if pending:
            await asyncio.wait(pending, timeout=timeout)

        # Direct spawn() callers are not tracked as tasks
        while self.active_agents and loop.time() < deadline:
            await asyncio.sleep(min(0.05, max(deadline - loop.time(), 0)))

        return sorted(self.active_agents)

    async def _handle_event(self, event: Event):
        agent_type = EVENT_ROUTES[event.type]
        self.stats["events_routed"] += 1

        if (
            event.type == EventType.DATA_INTEGRITY_ISSUE
            and event.payload.severity == EventSeverity.CRITICAL
        ):
            await self.event_bus.publish(
                EventType.BACKUP_REQUIRED,
                {
                    "reason": f"Critical data integrity issue: {event.payload.issue}",
                    "triggered_by": event.id,
                },
                source=SOURCE,
            )

        config = event.payload.model_dump()
        config["event_id"] = event.id
        self._launch(agent_type, config, event)

    def _launch(self, agent_type: AgentType, config: Dict[str, Any], event: Optional[Event] = None):
        task = asyncio.create_task(self._spawn_for_event(agent_type, config, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _spawn_for_event(self, agent_type: AgentType, config: Dict[str, Any], event: Optional[Event]):
        try:
            await self.spawn(agent_type, config, event=event)
        except Exception as e:
            self.log.error_event(
                "event_agent_failed",
                e,
                agent_type=agent_type.value,
                event_id=event.id if event else None,
            )

    def _resolve_operations(self, agent_type: AgentType, config: Dict[str, Any]) -> List[Tuple[str, str]]:
        if agent_type == AgentType.MAINTENANCE:
            names = list(config.get("operations", []))
        elif agent_type == AgentType.MANUAL:
            names = [config.get("operation", "")]
        else:
            names = [agent_type.value]

        resolved = []
        for name in names:
            engine_name = OPERATION_ENGINES.get(name)
            if engine_name is None:
                raise EngineUnavailable(name or "<none>", agent_type.value)
            self.engines.require(engine_name, agent_type.value)
            resolved.append((name, engine_name))
        return resolved

    @staticmethod
    def _shared_scopes(operations: List[Tuple[str, str]]) -> List[str]:
        # Fixed acquisition order across spawns
        return sorted({SHARED_LOCK_SCOPES[e] for _, e in operations if e in SHARED_LOCK_SCOPES})

    async def spawn(
        self,
        agent_type: AgentType,
        config: Optional[Dict[str, Any]] = None,
        event: Optional[Event] = None,
    ) -> SpawnResult:
        """Run one agent to completion; engine errors propagate after cleanup"""
        agent_type = AgentType(agent_type)
        config = dict(config or {})
        operations = self._resolve_operations(agent_type, config)

        agent_id = f"{agent_type.value}-{uuid.uuid4().hex[:8]}"
        context = AgentContext(agent_id=agent_id, agent_type=agent_type, config=config, event=event)
        log = self.log.bind(agent_id=agent_id, agent_type=agent_type.value)

        tokens: List[LockToken] = []
        success = False
        start = time.perf_counter()
        if self.metrics:
            self.metrics.record_spawn_started()

        try:
            tokens.append(
                await self.coordinator.acquire(
                    f"agent-{agent_id}", timeout=self.settings.SPAWN_LOCK_TIMEOUT_SECONDS
                )
            )
            for shared_scope in self._shared_scopes(operations):
                tokens.append(
                    await self.coordinator.acquire(
                        shared_scope, timeout=self.settings.SPAWN_LOCK_TIMEOUT_SECONDS
                    )
                )
            context.held_scopes = [t.scope for t in tokens]

            self.active_agents[agent_id] = ActiveAgent(
                agent_id=agent_id,
                agent_type=agent_type,
                operations=[name for name, _ in operations],
                lock_scopes=[t.scope for t in tokens],
            )
            log.dispatch_event("agent_started", operations=[name for name, _ in operations])

            result = await self._execute(context, operations)
            success = True
        finally:
            for token in reversed(tokens):
                try:
                    await self.coordinator.release(token)
                except Exception as e:
                    log.error_event("lock_release_failed", e, scope=token.scope)
            self.active_agents.pop(agent_id, None)
            duration = time.perf_counter() - start
            self._record_completion(agent_type, success, duration)
            log.dispatch_event(
                "agent_finished", success=success, duration_seconds=round(duration, 3)
            )

        if agent_type in COMPLETION_NOTICE_TYPES:
            await self.event_bus.publish(
                EventType.OPTIMIZATION_COMPLETED,
                {
                    "agent_id": agent_id,
                    "agent_type": agent_type.value,
                    "duration_seconds": duration,
                    "result": result if isinstance(result, dict) else {"value": result},
                },
                source=SOURCE,
            )

        return SpawnResult(
            agent_id=agent_id,
            agent_type=agent_type,
            result=result,
            duration_seconds=duration,
        )

    async def _execute(self, context: AgentContext, operations: List[Tuple[str, str]]) -> Any:
        results = {}
        for name, engine_name in operations:
            results[name] = await self._run_engine(engine_name, context)
        if context.agent_type in (AgentType.MAINTENANCE, AgentType.MANUAL):
            return {"operations": results}
        return results[operations[0][0]]

    async def _run_engine(self, engine_name: str, context: AgentContext) -> Any:
        engine = self.engines.require(engine_name, context.agent_type.value)
        scope = context.config.get("scope", "full")

        if engine_name == "audit":
            return await engine.audit(scope, context)
        if engine_name == "optimize":
            return await engine.optimize(scope, context)
        if engine_name == "backup":
            backup_id = await engine.create_backup(
                {
                    "type": context.config.get("backup_type", "full"),
                    "reason": context.config.get("reason", f"{context.agent_type.value} agent"),
                    "agent_id": context.agent_id,
                }
            )
            return {"backup_id": backup_id}
        return await engine.consolidate(context)

    def _record_completion(self, agent_type: AgentType, success: bool, duration: float):
        stats = self.stats
        stats["total_agents"] += 1
        if success:
            stats["successful_agents"] += 1
        else:
            stats["failed_agents"] += 1

        n = stats["total_agents"]
        stats["avg_execution_time"] = (stats["avg_execution_time"] * (n - 1) + duration) / n

        if self.metrics:
            self.metrics.record_spawn_finished(agent_type.value, success, duration)

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "active_agents": [a.to_dict() for a in self.active_agents.values()],
            "in_flight_tasks": len([t for t in self._tasks if not t.done()]),
            "stats": dict(self.stats),
            "engines": self.engines.available(),
            "detector": self.detector.status() if self.detector else None,
            "event_bus": self.event_bus.status(),
            "coordinator": self.coordinator.status(),
        }
