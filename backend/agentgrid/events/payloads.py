"""
Event types and their typed payloads
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Types of events flowing through the bus"""

    PERFORMANCE_ISSUE = "performance_issue"
    DATABASE_GROWTH = "database_growth"
    SCHEDULED_OPTIMIZATION = "scheduled_optimization"
    MANUAL_TRIGGER = "manual_trigger"
    BACKUP_REQUIRED = "backup_required"
    FIELD_CONSOLIDATION_NEEDED = "field_consolidation_needed"
    DATA_INTEGRITY_ISSUE = "data_integrity_issue"
    OPTIMIZATION_COMPLETED = "optimization_completed"


class EventSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EventPayload(BaseModel):
    """Base payload; unknown keys are kept so manual publishers can attach context"""

    model_config = ConfigDict(extra="allow")


class PerformanceMetrics(BaseModel):
    response_time_ms: float = 0.0
    error_rate: float = 0.0
    memory_usage: float = 0.0
    disk_usage: float = 0.0


class PerformanceIssuePayload(EventPayload):
    metrics: PerformanceMetrics
    thresholds: Dict[str, float] = Field(default_factory=dict)
    breaches: List[str] = Field(default_factory=list)
    severity: EventSeverity = EventSeverity.MEDIUM


class GrowthChange(BaseModel):
    scope: str  # "table" or "field"
    key: str
    previous: int
    current: int
    growth_rate: int  # percent, rounded


class DatabaseGrowthPayload(EventPayload):
    changes: List[GrowthChange]
    threshold: float


class ScheduledOptimizationPayload(EventPayload):
    schedule: str
    cadence: str
    operations: List[str]
    scheduled_for: Optional[datetime] = None


class ManualTriggerPayload(EventPayload):
    operation: str
    data: Dict[str, Any] = Field(default_factory=dict)


class BackupRequiredPayload(EventPayload):
    reason: str
    triggered_by: Optional[str] = None


class FieldConsolidationPayload(EventPayload):
    tables: List[str] = Field(default_factory=list)
    dry_run: bool = True
    confirmed: bool = False


class DataIntegrityPayload(EventPayload):
    issue: str
    severity: EventSeverity = EventSeverity.MEDIUM
    table: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class OptimizationCompletedPayload(EventPayload):
    agent_id: str
    agent_type: str
    duration_seconds: float
    result: Dict[str, Any] = Field(default_factory=dict)


PAYLOAD_MODELS: Dict[EventType, Type[EventPayload]] = {
    EventType.PERFORMANCE_ISSUE: PerformanceIssuePayload,
    EventType.DATABASE_GROWTH: DatabaseGrowthPayload,
    EventType.SCHEDULED_OPTIMIZATION: ScheduledOptimizationPayload,
    EventType.MANUAL_TRIGGER: ManualTriggerPayload,
    EventType.BACKUP_REQUIRED: BackupRequiredPayload,
    EventType.FIELD_CONSOLIDATION_NEEDED: FieldConsolidationPayload,
    EventType.DATA_INTEGRITY_ISSUE: DataIntegrityPayload,
    EventType.OPTIMIZATION_COMPLETED: OptimizationCompletedPayload,
}


def build_payload(event_type: EventType, payload: Any) -> EventPayload:
    """Validate a dict (or pass through a model) into the payload type for ``event_type``"""
    model = PAYLOAD_MODELS[event_type]
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    return model.model_validate(payload or {})


def calculate_performance_severity(metrics: PerformanceMetrics) -> EventSeverity:
    if metrics.error_rate > 0.1 or metrics.response_time_ms > 5000:
        return EventSeverity.CRITICAL
    if metrics.error_rate > 0.05 or metrics.response_time_ms > 3000:
        return EventSeverity.HIGH
    return EventSeverity.MEDIUM
