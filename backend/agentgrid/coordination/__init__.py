"""
Cross-process lock and heartbeat coordination
"""

from .lock_coordinator import (
    DEFAULT_CONFLICT_RULES,
    ConflictRule,
    LockCoordinator,
    evaluate_compatibility,
)
from .lock_store import FileLockStore, InMemoryLockStore, LockStore
from .models import (
    AgentState,
    CompatibilityReport,
    Conflict,
    LockRecord,
    LockToken,
    StatusRecord,
)

__all__ = [
    "LockCoordinator",
    "ConflictRule",
    "DEFAULT_CONFLICT_RULES",
    "evaluate_compatibility",
    "LockStore",
    "FileLockStore",
    "InMemoryLockStore",
    "AgentState",
    "CompatibilityReport",
    "Conflict",
    "LockRecord",
    "LockToken",
    "StatusRecord",
]
