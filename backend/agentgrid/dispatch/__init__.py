"""
Agent dispatch: routing events to engines under coordinator locks
"""

from .agent_dispatcher import (
    EVENT_ROUTES,
    OPERATION_ENGINES,
    SHARED_LOCK_SCOPES,
    ActiveAgent,
    AgentDispatcher,
    DispatcherOptions,
    SpawnResult,
)
from .engines import (
    AgentContext,
    AgentType,
    AuditEngine,
    BackupEngine,
    ConsolidationEngine,
    EngineSet,
    OptimizationEngine,
)

__all__ = [
    "AgentDispatcher",
    "DispatcherOptions",
    "SpawnResult",
    "ActiveAgent",
    "EVENT_ROUTES",
    "OPERATION_ENGINES",
    "SHARED_LOCK_SCOPES",
    "AgentContext",
    "AgentType",
    "AuditEngine",
    "OptimizationEngine",
    "BackupEngine",
    "ConsolidationEngine",
    "EngineSet",
]
