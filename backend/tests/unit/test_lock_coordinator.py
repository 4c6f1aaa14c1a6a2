"""
Test lock coordination: mutual exclusion, staleness, heartbeats and compatibility
"""

import asyncio
import contextlib
from unittest.mock import Mock

import pytest

from agentgrid.coordination import (
    AgentState,
    ConflictRule,
    LockCoordinator,
    StatusRecord,
    evaluate_compatibility,
)
from agentgrid.coordination.models import utc_now
from agentgrid.core.exceptions import LockTimeout
from tests.helpers import lock_record, status_record


class TestLockAcquisition:
    """Test acquire and release"""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self, coordinator, lock_store):
        """Test a free scope is acquired and released"""
        token = await coordinator.acquire("db-write")

        assert token.scope == "db-write"
        assert token.holder_id == "test-agent"
        assert coordinator.held_scopes() == ["db-write"]
        assert (await lock_store.read("db-write"))["holder_id"] == "test-agent"

        assert await coordinator.release(token) is True
        assert await lock_store.read("db-write") is None
        assert coordinator.held_scopes() == []
        assert coordinator.stats["locks_acquired"] == 1
        assert coordinator.stats["locks_released"] == 1

    @pytest.mark.asyncio
    async def test_lock_milestones_logged(self, coordinator):
        """Test acquire and release are logged as lock events"""
        coordinator.log = Mock()

        token = await coordinator.acquire("db-write")
        await coordinator.release(token)

        events = [c.args[0] for c in coordinator.log.lock_event.call_args_list]
        assert events == ["acquired", "released"]
        assert coordinator.log.lock_event.call_args.kwargs == {"scope": "db-write", "lock_id": token.lock_id}

    @pytest.mark.asyncio
    async def test_acquire_marks_agent_working(self, coordinator, status_store):
        """Test holding a lock sets the working state, releasing the last one goes idle"""
        token = await coordinator.acquire("db-write")
        assert (await status_store.read("test-agent"))["state"] == AgentState.WORKING.value

        await coordinator.release(token)
        assert (await status_store.read("test-agent"))["state"] == AgentState.IDLE.value

    @pytest.mark.asyncio
    async def test_mutual_exclusion_between_agents(self, make_coordinator):
        """Test at most one agent is inside the critical section at any time"""
        inside = 0
        max_inside = 0
        completed = []

        async def worker(name):
            nonlocal inside, max_inside
            agent = make_coordinator(name)
            async with agent.lock("shared-scope", timeout=5):
                inside += 1
                max_inside = max(max_inside, inside)
                await asyncio.sleep(0.02)
                inside -= 1
            completed.append(name)

        await asyncio.gather(*(worker(f"agent-{i}") for i in range(4)))

        assert max_inside == 1
        assert sorted(completed) == ["agent-0", "agent-1", "agent-2", "agent-3"]

    @pytest.mark.asyncio
    async def test_timeout_when_held_by_other(self, coordinator, make_coordinator):
        """Test LockTimeout is raised when another agent keeps the scope"""
        other = make_coordinator("other-agent")
        await other.acquire("db-write")

        with pytest.raises(LockTimeout) as exc_info:
            await coordinator.acquire("db-write", timeout=0.05)

        assert exc_info.value.error_code == "LOCK_001"
        assert exc_info.value.operation == "db-write"
        assert coordinator.stats["lock_timeouts"] == 1

    @pytest.mark.asyncio
    async def test_stale_lock_is_evicted(self, coordinator, lock_store):
        """Test a lock older than the lock timeout is taken over"""
        await lock_store.write("db-write", lock_record("crashed-agent", "db-write", age_seconds=60))

        token = await coordinator.acquire("db-write", timeout=0.5)

        assert token.holder_id == "test-agent"
        assert coordinator.stats["stale_evicted"] == 1

    @pytest.mark.asyncio
    async def test_fresh_lock_is_not_evicted(self, coordinator, lock_store):
        """Test a lock younger than the timeout blocks acquisition"""
        await lock_store.write("db-write", lock_record("busy-agent", "db-write", age_seconds=5))

        with pytest.raises(LockTimeout):
            await coordinator.acquire("db-write", timeout=0.05)

        assert (await lock_store.read("db-write"))["holder_id"] == "busy-agent"

    @pytest.mark.asyncio
    async def test_release_refused_for_non_holder(self, coordinator, lock_store):
        """Test release leaves another holder's record in place"""
        token = await coordinator.acquire("db-write")
        await lock_store.write("db-write", lock_record("thief", "db-write"))

        assert await coordinator.release(token) is False
        assert (await lock_store.read("db-write"))["holder_id"] == "thief"
        assert coordinator.stats["release_refused"] == 1

    @pytest.mark.asyncio
    async def test_lock_context_releases_on_error(self, coordinator, lock_store):
        """Test the context manager releases when the body raises"""
        with pytest.raises(RuntimeError):
            async with coordinator.lock("db-write"):
                raise RuntimeError("boom")

        assert await lock_store.read("db-write") is None


class TestInitializeAndShutdown:
    """Test startup sweep and safe shutdown"""

    @pytest.mark.asyncio
    async def test_initialize_sweeps_stale_records(self, coordinator, lock_store, status_store):
        """Test stale locks and statuses are removed and fresh ones kept"""
        await lock_store.write("old", lock_record("crashed", "old", age_seconds=120))
        await lock_store.write("new", lock_record("alive", "new", age_seconds=1))
        await status_store.write("crashed", status_record("crashed", "working", age_seconds=120))

        swept = await coordinator.initialize()

        assert swept == {"locks": 1, "statuses": 1}
        assert await lock_store.read("old") is None
        assert await lock_store.read("new") is not None
        assert await status_store.read("crashed") is None
        assert (await status_store.read("test-agent"))["state"] == AgentState.STARTING.value
        assert coordinator.initialized

    @pytest.mark.asyncio
    async def test_initialize_sweeps_malformed_lock(self, coordinator, lock_store):
        """Test a lock record that fails validation counts as stale"""
        await lock_store.write("junk", {"holder_id": "x"})

        swept = await coordinator.initialize()

        assert swept["locks"] == 1

    @pytest.mark.asyncio
    async def test_safe_shutdown_releases_everything(self, coordinator, lock_store, status_store):
        """Test shutdown releases held locks and records the stopped state"""
        await coordinator.acquire("a")
        await coordinator.acquire("b")
        await coordinator.start_heartbeat()

        await coordinator.safe_shutdown()

        assert await lock_store.list_keys() == []
        assert (await status_store.read("test-agent"))["state"] == AgentState.STOPPED.value
        assert coordinator.status()["heartbeat_running"] is False


class TestHeartbeat:
    """Test heartbeat status records"""

    @pytest.mark.asyncio
    async def test_heartbeat_refreshes_status(self, coordinator, status_store):
        """Test the heartbeat loop keeps rewriting the status record"""
        first = await coordinator.heartbeat()
        await coordinator.start_heartbeat()
        await asyncio.sleep(0.15)
        await coordinator.stop_heartbeat()

        record = StatusRecord.model_validate(await status_store.read("test-agent"))
        assert record.updated_at > first.updated_at

    @pytest.mark.asyncio
    async def test_start_heartbeat_is_idempotent(self, coordinator):
        """Test a second start does not spawn another loop"""
        await coordinator.start_heartbeat()
        task = coordinator._heartbeat_task
        await coordinator.start_heartbeat()

        assert coordinator._heartbeat_task is task
        await coordinator.stop_heartbeat()


class TestCompatibility:
    """Test conflict detection between active agents"""

    def test_evaluate_compatibility_rules(self):
        """Test default rules flag deployments, hook validation and exclusive resources"""
        now = utc_now()
        records = [
            StatusRecord(agent_id="deploy-agent", state="deploying", updated_at=now),
            StatusRecord(agent_id="git-hooks-agent", state="validating", updated_at=now),
            StatusRecord(agent_id="etl", state="working", updated_at=now, metadata={"exclusive_resource": "db"}),
            StatusRecord(agent_id="audit-1", state="working", updated_at=now),
        ]

        report = evaluate_compatibility(records)

        assert not report.compatible
        assert [c.agent_id for c in report.conflicts] == ["deploy-agent", "git-hooks-agent", "etl"]
        assert report.to_dict()["conflicts"][0]["reason"] == "Deployment in progress"

    def test_custom_rules(self):
        """Test caller-supplied conflict rules"""
        rule = ConflictRule("Busy", lambda s: s.state == "busy")
        record = StatusRecord(agent_id="x", state="busy", updated_at=utc_now())

        assert not evaluate_compatibility([record], [rule]).compatible
        assert evaluate_compatibility([record], []).compatible

    @pytest.mark.asyncio
    async def test_inactive_and_self_records_ignored(self, coordinator, status_store):
        """Test stale heartbeats and the agent's own record never conflict"""
        await status_store.write("deploy-agent", status_record("deploy-agent", "deploying", age_seconds=10))
        await coordinator.update_status("deploying")

        report = await coordinator.check_compatibility()

        assert report.compatible

    @pytest.mark.asyncio
    async def test_active_conflict_detected(self, coordinator, status_store):
        """Test a live deploying agent blocks compatibility"""
        await status_store.write("deploy-agent", status_record("deploy-agent", "deploying"))

        report = await coordinator.check_compatibility()

        assert not report.compatible
        assert report.conflicts[0].agent_id == "deploy-agent"

    @pytest.mark.asyncio
    async def test_wait_for_compatibility_times_out(self, coordinator, status_store):
        """Test waiting gives up after max_wait and leaves the waiting state"""

        async def keep_alive():
            while True:
                await status_store.write("deploy-agent", status_record("deploy-agent", "deploying"))
                await asyncio.sleep(0.01)

        refresher = asyncio.create_task(keep_alive())
        try:
            assert await coordinator.wait_for_compatibility(max_wait=0.05) is False
        finally:
            refresher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await refresher

        assert coordinator.status()["state"] == AgentState.WAITING.value

    @pytest.mark.asyncio
    async def test_wait_for_compatibility_succeeds_when_conflict_clears(self, coordinator, status_store):
        """Test waiting returns once the conflicting agent goes away"""
        await status_store.write("deploy-agent", status_record("deploy-agent", "deploying"))

        async def clear_later():
            await asyncio.sleep(0.03)
            await status_store.remove("deploy-agent")

        clearer = asyncio.create_task(clear_later())
        assert await coordinator.wait_for_compatibility(max_wait=1) is True
        await clearer

        assert coordinator.status()["state"] == AgentState.IDLE.value

    def test_default_agent_name_from_settings(self, fast_settings, lock_store, status_store):
        """Test the holder id falls back to AGENT_NAME"""
        agent = LockCoordinator(lock_store=lock_store, status_store=status_store, settings=fast_settings)

        assert agent.agent_name == fast_settings.AGENT_NAME
