"""
Coordination records persisted in the lock and status stores
"""

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AgentState(str, Enum):
    """Lifecycle states written to status records"""

    STARTING = "starting"
    IDLE = "idle"
    WORKING = "working"
    WAITING = "waiting"
    STOPPED = "stopped"


class LockRecord(BaseModel):
    """Current holder of a lock scope"""

    holder_id: str
    operation: str
    acquired_at: datetime
    process_id: int = Field(default_factory=os.getpid)
    lock_id: str

    def age_seconds(self, now: datetime) -> float:
        return (now - self.acquired_at).total_seconds()

    def is_stale(self, now: datetime, lock_timeout: float) -> bool:
        return self.age_seconds(now) > lock_timeout


class StatusRecord(BaseModel):
    """Heartbeat record, one per agent"""

    agent_id: str
    state: str = AgentState.IDLE.value
    message: str = ""
    updated_at: datetime
    process_id: int = Field(default_factory=os.getpid)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def is_active(self, now: datetime, heartbeat_interval: float) -> bool:
        return (now - self.updated_at).total_seconds() < 2 * heartbeat_interval


@dataclass(frozen=True)
class LockToken:
    """Proof of acquisition handed back to the caller"""

    scope: str
    holder_id: str
    lock_id: str
    acquired_at: datetime


@dataclass
class Conflict:
    agent_id: str
    state: str
    reason: str


@dataclass
class CompatibilityReport:
    compatible: bool
    conflicts: List[Conflict] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compatible": self.compatible,
            "conflicts": [c.__dict__ for c in self.conflicts],
        }
