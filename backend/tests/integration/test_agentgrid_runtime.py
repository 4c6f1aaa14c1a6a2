"""
End-to-end runtime tests: events in, agents spawned, store consolidated
"""

import pytest

from agentgrid.consolidation import StaticFieldAnalyzer
from agentgrid.dispatch import DispatcherOptions
from agentgrid.events import EventType
from agentgrid.runtime import AgentGridRuntime
from agentgrid.store import InMemoryTableStore, QueryOperation

pytestmark = pytest.mark.integration

QUIET = DispatcherOptions(monitoring=False, heartbeat=False)

OPPORTUNITIES = [
    {
        "kind": "duplicate",
        "fields": ["Contacts.Email", "Contacts.Email Address"],
        "priority": "high",
        "risk": "low",
        "complexity": "low",
    }
]


@pytest.fixture
def backend():
    return InMemoryTableStore(
        {
            "Contacts": [
                {"Name": "Ada", "Email": "ada@example.com"},
                {"Name": "Bob", "Email Address": "bob@example.com"},
            ],
            "Leads": [{"Company": "Acme"}],
        }
    )


@pytest.fixture
def runtime(fast_settings, backend):
    return AgentGridRuntime.build(
        settings=fast_settings,
        store=backend,
        analyzer=StaticFieldAnalyzer(OPPORTUNITIES),
        agent_name="grid-test",
        enable_detector=False,
    )


async def settle(runtime):
    for _ in range(5):
        await runtime.event_bus.wait_until_idle(timeout=2)
        await runtime.dispatcher._drain(2)


def collect(runtime, event_type):
    received = []
    runtime.event_bus.subscribe(event_type, received.append)
    return received


class TestAgentGridRuntime:
    """Test the wired runtime against file-backed coordination"""

    def test_build_wires_components(self, runtime, fast_settings):
        """Test the built-in backup and consolidation engines are installed"""
        engines = runtime.dispatcher.engines

        assert engines.backup is runtime.backup
        assert engines.consolidate is not None
        assert engines.audit is None
        assert runtime.backup.tables == ["Contacts", "Leads"]
        assert runtime.coordinator.agent_name == "grid-test"
        assert runtime.status()["store"]["requests"] == 0

    @pytest.mark.asyncio
    async def test_confirmed_consolidation_event(self, runtime, backend):
        """Test a confirmed field_consolidation_needed event merges the fields"""
        completed = collect(runtime, EventType.OPTIMIZATION_COMPLETED)
        await runtime.start(QUIET)

        await runtime.event_bus.publish(
            EventType.FIELD_CONSOLIDATION_NEEDED,
            {"tables": ["Contacts"], "dry_run": False, "confirmed": True},
        )
        await settle(runtime)

        records = await backend.query("Contacts", QueryOperation.SELECT)
        assert [r["fields"] for r in records] == [
            {"Name": "Ada", "Email": "ada@example.com"},
            {"Name": "Bob", "Email": "bob@example.com"},
        ]
        assert runtime.dispatcher.stats["successful_agents"] == 1

        result = completed[0].payload.result
        assert result["dry_run"] is False
        assert result["summary"]["successful_operations"] == 1
        assert result["validation_passed"] is True
        assert await runtime.backup.list_backups() == [result["summary"]["backup_id"]]

        await runtime.stop()

    @pytest.mark.asyncio
    async def test_default_consolidation_is_dry_run(self, runtime, backend):
        """Test an unconfirmed event only plans"""
        completed = collect(runtime, EventType.OPTIMIZATION_COMPLETED)
        await runtime.start(QUIET)
        before = await backend.query("Contacts", QueryOperation.SELECT)

        await runtime.event_bus.publish(EventType.FIELD_CONSOLIDATION_NEEDED, {"tables": ["Contacts"]})
        await settle(runtime)

        assert await backend.query("Contacts", QueryOperation.SELECT) == before
        assert completed[0].payload.result["dry_run"] is True
        assert await runtime.backup.list_backups() == []

        await runtime.stop()

    @pytest.mark.asyncio
    async def test_backup_required_event(self, runtime):
        """Test backup_required spawns a backup agent writing a backup file"""
        await runtime.start(QUIET)

        await runtime.event_bus.publish(EventType.BACKUP_REQUIRED, {"reason": "pre-release"})
        await settle(runtime)

        backups = await runtime.backup.list_backups()
        assert len(backups) == 1
        document = await runtime.backup.load(backups[0])
        assert document["options"]["reason"] == "pre-release"
        assert set(document["tables"]) == {"Contacts", "Leads"}

        await runtime.stop()

    @pytest.mark.asyncio
    async def test_missing_engine_is_contained(self, runtime):
        """Test an event for an absent engine fails its agent without stopping the runtime"""
        await runtime.start(QUIET)

        await runtime.event_bus.publish(EventType.PERFORMANCE_ISSUE, {"metrics": {"response_time_ms": 5000}})
        await runtime.event_bus.publish(EventType.BACKUP_REQUIRED, {"reason": "after failure"})
        await settle(runtime)

        assert runtime.dispatcher.stats["events_routed"] == 2
        assert len(await runtime.backup.list_backups()) == 1

        await runtime.stop()

    @pytest.mark.asyncio
    async def test_stop_leaves_no_locks(self, runtime):
        """Test shutdown releases every lock and marks the agent stopped"""
        await runtime.start(DispatcherOptions(monitoring=False, heartbeat=True))
        await runtime.event_bus.publish(EventType.FIELD_CONSOLIDATION_NEEDED, {})
        await settle(runtime)

        await runtime.stop()

        assert await runtime.coordinator.lock_store.list_keys() == []
        status = await runtime.coordinator.status_store.read("grid-test")
        assert status["state"] == "stopped"
        assert runtime.dispatcher.is_running is False
