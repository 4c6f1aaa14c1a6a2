"""
Shared fixtures: fast settings, in-memory stores and mock engines
"""

from unittest.mock import AsyncMock, Mock

import pytest

from agentgrid.coordination import InMemoryLockStore, LockCoordinator
from agentgrid.core.config import Settings
from agentgrid.dispatch import EngineSet
from agentgrid.events import EventBus, MemoryEventLog
from agentgrid.store import InMemoryTableStore


@pytest.fixture
def fast_settings(tmp_path):
    """Settings with millisecond timings and tmp directories"""
    return Settings(
        LOCK_DIR=str(tmp_path / "locks"),
        STATUS_DIR=str(tmp_path / "status"),
        LOCK_TIMEOUT_SECONDS=30,
        LOCK_ACQUIRE_TIMEOUT_SECONDS=1,
        LOCK_VERIFY_DELAY_SECONDS=0.01,
        LOCK_RETRY_DELAY_SECONDS=0.01,
        HEARTBEAT_INTERVAL_SECONDS=0.05,
        COMPATIBILITY_POLL_SECONDS=0.01,
        EVENT_LOG_ENABLED=False,
        EVENT_LOG_PATH=str(tmp_path / "logs" / "events.log"),
        PERFORMANCE_CHECK_INTERVAL_SECONDS=0.01,
        DATABASE_CHECK_INTERVAL_SECONDS=0.01,
        SPAWN_LOCK_TIMEOUT_SECONDS=1,
        SHUTDOWN_DRAIN_TIMEOUT_SECONDS=1,
        CONSOLIDATION_PHASE_PAUSE_SECONDS=0,
        BACKUP_DIRECTORY=str(tmp_path / "backups"),
        BACKUP_MIN_FREE_BYTES=0,
        STORE_RATE_LIMIT_REQUESTS=1000,
        STORE_RATE_LIMIT_WINDOW_SECONDS=1,
    )


@pytest.fixture
def lock_store():
    return InMemoryLockStore()


@pytest.fixture
def status_store():
    return InMemoryLockStore()


@pytest.fixture
def coordinator(fast_settings, lock_store, status_store):
    """Coordinator backed by shared in-memory stores"""
    return LockCoordinator(
        agent_name="test-agent",
        lock_store=lock_store,
        status_store=status_store,
        settings=fast_settings,
    )


@pytest.fixture
def make_coordinator(fast_settings, lock_store, status_store):
    """Factory for extra coordinators sharing the same stores (simulated processes)"""

    def _make(name: str) -> LockCoordinator:
        return LockCoordinator(
            agent_name=name,
            lock_store=lock_store,
            status_store=status_store,
            settings=fast_settings,
        )

    return _make


@pytest.fixture
def event_log():
    return MemoryEventLog()


@pytest.fixture
def event_bus(fast_settings, event_log):
    return EventBus(settings=fast_settings, log_sink=event_log)


@pytest.fixture
def table_store():
    """Contacts table with overlapping email fields"""
    return InMemoryTableStore(
        {
            "Contacts": [
                {"Name": "Ada", "Email": "ada@example.com", "Email Address": ""},
                {"Name": "Bob", "Email": "", "Email Address": "bob@example.com"},
                {"Name": "Cy", "Email": "cy@example.com", "Email Address": "cy@example.com"},
            ],
            "Leads": [
                {"Company": "Acme", "Phone": "555-0100"},
            ],
        }
    )


@pytest.fixture
def mock_engines():
    """EngineSet whose engines are async mocks"""
    audit = Mock()
    audit.audit = AsyncMock(return_value={"issues": 0})
    optimize = Mock()
    optimize.optimize = AsyncMock(return_value={"optimized": True})
    backup = Mock()
    backup.create_backup = AsyncMock(return_value="backup-1")
    backup.restore = AsyncMock(return_value={"restored": True})
    consolidate = Mock()
    consolidate.consolidate = AsyncMock(return_value={"consolidated": 0})
    return EngineSet(audit=audit, optimize=optimize, backup=backup, consolidate=consolidate)


@pytest.fixture
def mock_backup():
    """Backup collaborator recording every call"""
    backup = Mock()
    backup.create_backup = AsyncMock(return_value="backup-1")
    backup.create_snapshot = AsyncMock(return_value="snapshot-1")
    backup.restore = AsyncMock(return_value={"restored": True})
    return backup
