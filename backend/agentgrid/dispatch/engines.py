"""
Engine interfaces invoked by dispatched agents
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from agentgrid.coordination.models import utc_now
from agentgrid.core.exceptions import EngineUnavailable


class AgentType(str, Enum):
    AUDIT = "audit"
    OPTIMIZE = "optimize"
    MAINTENANCE = "maintenance"
    BACKUP = "backup"
    CONSOLIDATE = "consolidate"
    MANUAL = "manual"


@dataclass
class AgentContext:
    """What a spawned agent knows about itself and its trigger"""

    agent_id: str
    agent_type: AgentType
    config: Dict[str, Any] = field(default_factory=dict)
    event: Any = None
    started_at: datetime = field(default_factory=utc_now)
    held_scopes: List[str] = field(default_factory=list)


@runtime_checkable
class AuditEngine(Protocol):
    async def audit(self, scope: str, context: AgentContext) -> Dict[str, Any]: ...


@runtime_checkable
class OptimizationEngine(Protocol):
    async def optimize(self, scope: str, context: AgentContext) -> Dict[str, Any]: ...


@runtime_checkable
class BackupEngine(Protocol):
    async def create_backup(self, options: Dict[str, Any]) -> str: ...

    async def restore(self, backup_id: str, reason: str) -> Dict[str, Any]: ...


@runtime_checkable
class ConsolidationEngine(Protocol):
    async def consolidate(self, context: AgentContext) -> Dict[str, Any]: ...


@dataclass
class EngineSet:
    """Optional engine references; a missing one fails the spawn up front"""

    audit: Optional[AuditEngine] = None
    optimize: Optional[OptimizationEngine] = None
    backup: Optional[BackupEngine] = None
    consolidate: Optional[ConsolidationEngine] = None

    def require(self, name: str, agent_type: Optional[str] = None) -> Any:
        engine = getattr(self, name, None) if name in ("audit", "optimize", "backup", "consolidate") else None
        if engine is None:
            raise EngineUnavailable(name, agent_type)
        return engine

    def available(self) -> Dict[str, bool]:
        return {
            "audit": self.audit is not None,
            "optimize": self.optimize is not None,
            "backup": self.backup is not None,
            "consolidate": self.consolidate is not None,
        }
