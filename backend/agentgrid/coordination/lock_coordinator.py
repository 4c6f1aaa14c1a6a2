"""
Cross-process lock coordination with heartbeats and compatibility checks

Mutual exclusion is poll-and-verify: write a candidate lock record, wait a
short fixed delay, re-read it and compare identity and timestamp. This narrows
but does not close the window in which two agents can both believe they hold
the same scope. Stale records (older than the lock timeout) may be evicted by
any agent.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

import structlog
from pydantic import ValidationError

from agentgrid.coordination.lock_store import FileLockStore, LockStore
from agentgrid.coordination.models import (
    AgentState,
    CompatibilityReport,
    Conflict,
    LockRecord,
    LockToken,
    StatusRecord,
    utc_now,
)
from agentgrid.core.config import Settings, get_settings
from agentgrid.core.exceptions import LockTimeout
from agentgrid.core.logging_utils import get_coordination_logger

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConflictRule:
    """A status pattern that blocks other agents from mutating the store"""

    reason: str
    matches: Callable[[StatusRecord], bool]


DEFAULT_CONFLICT_RULES = (
    ConflictRule(
        "Deployment in progress",
        lambda s: "deploy" in s.agent_id and s.state == "deploying",
    ),
    ConflictRule(
        "Git hooks validation in progress",
        lambda s: s.agent_id == "git-hooks-agent" and s.state == "validating",
    ),
    ConflictRule(
        "Agent holds an exclusive resource",
        lambda s: bool(s.metadata.get("exclusive_resource")),
    ),
)


def evaluate_compatibility(
    records: Iterable[StatusRecord],
    rules: Iterable[ConflictRule] = DEFAULT_CONFLICT_RULES,
) -> CompatibilityReport:
    """Pure check of active status records against conflict rules"""
    rules = tuple(rules)
    conflicts = []
    for record in records:
        for rule in rules:
            if rule.matches(record):
                conflicts.append(Conflict(record.agent_id, record.state, rule.reason))
                break
    return CompatibilityReport(compatible=not conflicts, conflicts=conflicts)


class LockCoordinator:
    """
    Lock and liveness coordination for one agent:
    - Named lock scopes with stale-lock eviction
    - Periodic heartbeat status records
    - Compatibility checks against other active agents
    """

    def __init__(
        self,
        agent_name: Optional[str] = None,
        lock_store: Optional[LockStore] = None,
        status_store: Optional[LockStore] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
        conflict_rules: Iterable[ConflictRule] = DEFAULT_CONFLICT_RULES,
    ):
        self.settings = settings or get_settings()
        self.agent_name = agent_name or self.settings.AGENT_NAME
        self.lock_store = lock_store if lock_store is not None else FileLockStore(self.settings.LOCK_DIR)
        self.status_store = (
            status_store if status_store is not None else FileLockStore(self.settings.STATUS_DIR)
        )
        self.clock = clock
        self.conflict_rules = tuple(conflict_rules)
        self.log = get_coordination_logger(__name__, agent=self.agent_name)

        self.lock_timeout = self.settings.LOCK_TIMEOUT_SECONDS
        self.heartbeat_interval = self.settings.HEARTBEAT_INTERVAL_SECONDS

        self._held: Dict[str, LockToken] = {}
        self._state = AgentState.IDLE.value
        self._message = ""
        self._metadata: Dict[str, Any] = {}
        self._heartbeat_task: Optional[asyncio.Task] = None
        self.initialized = False

        self.stats = {
            "locks_acquired": 0,
            "locks_released": 0,
            "release_refused": 0,
            "lock_timeouts": 0,
            "races_lost": 0,
            "stale_evicted": 0,
        }

    async def initialize(self) -> Dict[str, int]:
        """Sweep stale records left by crashed runs, then announce this agent"""
        evicted_locks = await self._sweep(self.lock_store, self._lock_is_stale)
        evicted_statuses = await self._sweep(self.status_store, self._status_is_stale)
        await self.update_status(AgentState.STARTING, "Agent initialized")
        self.initialized = True

        logger.info(
            "Lock coordinator initialized",
            agent=self.agent_name,
            evicted_locks=evicted_locks,
            evicted_statuses=evicted_statuses,
        )
        return {"locks": evicted_locks, "statuses": evicted_statuses}

    async def _sweep(self, store: LockStore, is_stale: Callable[[Dict[str, Any]], bool]) -> int:
        evicted = 0
        for key in await store.list_keys():
            record = await store.read(key)
            if record is None:
                age = await store.age_seconds(key)
                stale = age is not None and age > self.lock_timeout
            else:
                stale = is_stale(record)
            if stale and await store.remove(key):
                evicted += 1
                logger.info("Removed stale coordination record", key=key)
        self.stats["stale_evicted"] += evicted
        return evicted

    def _lock_is_stale(self, raw: Dict[str, Any]) -> bool:
        try:
            return LockRecord.model_validate(raw).is_stale(self.clock(), self.lock_timeout)
        except ValidationError:
            return True

    def _status_is_stale(self, raw: Dict[str, Any]) -> bool:
        try:
            record = StatusRecord.model_validate(raw)
        except ValidationError:
            return True
        return (self.clock() - record.updated_at).total_seconds() > self.lock_timeout

    async def _read_lock(self, scope: str) -> Optional[LockRecord]:
        raw = await self.lock_store.read(scope)
        if raw is None:
            return None
        try:
            return LockRecord.model_validate(raw)
        except ValidationError as e:
            logger.warning("Malformed lock record", scope=scope, error=str(e))
            return None

    async def _evict_if_stale(self, scope: str, record: Optional[LockRecord]) -> bool:
        if record is not None:
            if not record.is_stale(self.clock(), self.lock_timeout):
                return False
            logger.warning(
                "Evicting stale lock",
                scope=scope,
                holder=record.holder_id,
                age_seconds=round(record.age_seconds(self.clock()), 3),
            )
        else:
            # Unreadable record: fall back to the store's own age
            age = await self.lock_store.age_seconds(scope)
            if age is None or age <= self.lock_timeout:
                return False
            logger.warning("Evicting unreadable stale lock", scope=scope)

        await self.lock_store.remove(scope)
        self.stats["stale_evicted"] += 1
        self.log.lock_event("stale_evicted", scope=scope)
        return True

    async def _try_acquire(self, scope: str) -> Optional[LockToken]:
        existing = await self._read_lock(scope)
        if existing is not None and not await self._evict_if_stale(scope, existing):
            return None

        candidate = LockRecord(
            holder_id=self.agent_name,
            operation=scope,
            acquired_at=self.clock(),
            lock_id=uuid.uuid4().hex,
        )
        if not await self.lock_store.write_if_absent(scope, candidate.model_dump(mode="json")):
            if existing is None:
                await self._evict_if_stale(scope, await self._read_lock(scope))
            return None

        await asyncio.sleep(self.settings.LOCK_VERIFY_DELAY_SECONDS)

        current = await self._read_lock(scope)
        if (
            current is None
            or current.holder_id != candidate.holder_id
            or current.lock_id != candidate.lock_id
            or current.acquired_at != candidate.acquired_at
        ):
            self.stats["races_lost"] += 1
            logger.debug("Lost lock verification race", scope=scope)
            return None

        return LockToken(
            scope=scope,
            holder_id=candidate.holder_id,
            lock_id=candidate.lock_id,
            acquired_at=candidate.acquired_at,
        )

    async def acquire(self, operation: str, timeout: Optional[float] = None) -> LockToken:
        """Acquire the lock scope named ``operation`` or raise LockTimeout"""
        if timeout is None:
            timeout = self.settings.LOCK_ACQUIRE_TIMEOUT_SECONDS

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempts = 0

        while True:
            attempts += 1
            token = await self._try_acquire(operation)
            if token is not None:
                self._held[token.lock_id] = token
                self.stats["locks_acquired"] += 1
                await self.update_status(AgentState.WORKING, f"Holding lock for {operation}")
                self.log.lock_event("acquired", scope=operation, lock_id=token.lock_id, attempts=attempts)
                return token

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(self.settings.LOCK_RETRY_DELAY_SECONDS, remaining))

        self.stats["lock_timeouts"] += 1
        logger.error("Lock acquisition timed out", scope=operation, timeout=timeout, attempts=attempts)
        raise LockTimeout(operation, timeout)

    async def release(self, token: LockToken) -> bool:
        """Release a held lock; returns False if the caller is not the current holder"""
        self._held.pop(token.lock_id, None)
        current = await self._read_lock(token.scope)

        if (
            current is None
            or current.holder_id != token.holder_id
            or current.lock_id != token.lock_id
        ):
            self.stats["release_refused"] += 1
            logger.warning(
                "Release refused, lock not held by caller",
                scope=token.scope,
                caller=token.holder_id,
                holder=current.holder_id if current else None,
            )
            return False

        await self.lock_store.remove(token.scope)
        self.stats["locks_released"] += 1
        if not self._held:
            await self.update_status(AgentState.IDLE, "Ready")
        self.log.lock_event("released", scope=token.scope, lock_id=token.lock_id)
        return True

    @asynccontextmanager
    async def lock(self, operation: str, timeout: Optional[float] = None) -> AsyncIterator[LockToken]:
        token = await self.acquire(operation, timeout)
        try:
            yield token
        finally:
            await self.release(token)

    def held_scopes(self) -> List[str]:
        return sorted(token.scope for token in self._held.values())

    async def update_status(
        self,
        state: Any,
        message: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StatusRecord:
        """Record a state transition and write it immediately"""
        self._state = state.value if isinstance(state, AgentState) else str(state)
        self._message = message
        if metadata is not None:
            self._metadata = dict(metadata)
        return await self.heartbeat()

    async def heartbeat(self) -> StatusRecord:
        """Overwrite this agent's status record with a fresh timestamp"""
        record = StatusRecord(
            agent_id=self.agent_name,
            state=self._state,
            message=self._message,
            updated_at=self.clock(),
            metadata=self._metadata,
        )
        await self.status_store.write(self.agent_name, record.model_dump(mode="json"))
        return record

    async def start_heartbeat(self):
        if self._heartbeat_task and not self._heartbeat_task.done():
            return
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info("Heartbeat started", agent=self.agent_name, interval=self.heartbeat_interval)

    async def stop_heartbeat(self):
        if self._heartbeat_task and not self._heartbeat_task.done():
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
        self._heartbeat_task = None

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.heartbeat()
            except Exception as e:
                logger.error("Heartbeat write failed", agent=self.agent_name, error=str(e))

    async def list_active(self, include_self: bool = False) -> List[StatusRecord]:
        """Status records whose last heartbeat is within two intervals"""
        now = self.clock()
        active = []
        for key in await self.status_store.list_keys():
            raw = await self.status_store.read(key)
            if raw is None:
                continue
            try:
                record = StatusRecord.model_validate(raw)
            except ValidationError:
                logger.warning("Malformed status record", key=key)
                continue
            if not include_self and record.agent_id == self.agent_name:
                continue
            if record.is_active(now, self.heartbeat_interval):
                active.append(record)
        return active

    async def check_compatibility(self) -> CompatibilityReport:
        report = evaluate_compatibility(await self.list_active(), self.conflict_rules)
        if not report.compatible:
            logger.info(
                "Conflicting agents active",
                conflicts=[c.agent_id for c in report.conflicts],
            )
        return report

    async def wait_for_compatibility(self, max_wait: Optional[float] = None) -> bool:
        """Poll until no conflicting agent is active; False once max_wait elapses"""
        if max_wait is None:
            max_wait = self.settings.COMPATIBILITY_MAX_WAIT_SECONDS

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait
        waited = False

        while True:
            report = await self.check_compatibility()
            if report.compatible:
                if waited:
                    await self.update_status(AgentState.IDLE, "Ready")
                return True

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(
                    "Timed out waiting for compatibility",
                    max_wait=max_wait,
                    conflicts=report.to_dict()["conflicts"],
                )
                return False

            waited = True
            await self.update_status(
                AgentState.WAITING,
                "Waiting for: " + ", ".join(c.agent_id for c in report.conflicts),
            )
            await asyncio.sleep(min(self.settings.COMPATIBILITY_POLL_SECONDS, remaining))

    async def safe_shutdown(self):
        """Stop heartbeats, release every held lock and mark this agent stopped"""
        await self.stop_heartbeat()
        for token in list(self._held.values()):
            await self.release(token)
        await self.update_status(AgentState.STOPPED, "Agent shutdown")
        logger.info("Lock coordinator shut down", agent=self.agent_name)

    def status(self) -> Dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "state": self._state,
            "message": self._message,
            "initialized": self.initialized,
            "held_locks": self.held_scopes(),
            "heartbeat_running": bool(self._heartbeat_task and not self._heartbeat_task.done()),
            "lock_timeout": self.lock_timeout,
            "heartbeat_interval": self.heartbeat_interval,
            "stats": dict(self.stats),
        }
