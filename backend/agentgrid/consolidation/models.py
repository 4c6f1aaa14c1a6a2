"""
Consolidation opportunities, plans, operations and execution results
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from agentgrid.coordination.models import utc_now


class OpportunityKind(str, Enum):
    DUPLICATE = "duplicate"
    SIMILAR = "similar"
    CONTENT_OVERLAP = "content-overlap"
    RENAME = "rename"


class Level(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class OperationKind(str, Enum):
    DUPLICATE_FIELD_CONSOLIDATION = "duplicate-field-consolidation"
    SIMILAR_FIELD_MERGE = "similar-field-merge"
    CONTENT_OVERLAP_RESOLUTION = "content-overlap-resolution"
    FIELD_RENAME = "field-rename"


def split_field(qualified: str) -> Tuple[str, str]:
    """'Table.Field' -> ('Table', 'Field')"""
    table, _, name = qualified.partition(".")
    return table, name or table


class ConsolidationOpportunity(BaseModel):
    """Candidate field merge produced by similarity analysis"""

    model_config = ConfigDict(frozen=True)

    kind: OpportunityKind
    fields: Tuple[str, ...] = Field(min_length=1)
    priority: Level = Level.MEDIUM
    risk: Level = Level.MEDIUM
    complexity: Level = Level.MEDIUM
    estimated_savings: float = 0.0
    description: str = ""

    @property
    def tables(self) -> List[str]:
        return list(dict.fromkeys(split_field(f)[0] for f in self.fields))

    @property
    def field_names(self) -> List[str]:
        return [split_field(f)[1] for f in self.fields]


@dataclass(frozen=True)
class Operation:
    """Base operation; concrete kinds below"""

    kind: ClassVar[OperationKind]

    description: str
    source_fields: Tuple[str, ...]
    target_field: str
    affected_tables: Tuple[str, ...]
    estimated_records: int
    risk: Level
    complexity: Level

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["risk"] = self.risk.value
        data["complexity"] = self.complexity.value
        data["source_fields"] = list(self.source_fields)
        data["affected_tables"] = list(self.affected_tables)
        return data


@dataclass(frozen=True)
class DuplicateFieldConsolidation(Operation):
    kind: ClassVar[OperationKind] = OperationKind.DUPLICATE_FIELD_CONSOLIDATION


@dataclass(frozen=True)
class SimilarFieldMerge(Operation):
    kind: ClassVar[OperationKind] = OperationKind.SIMILAR_FIELD_MERGE

    merge_strategy: str = "prefer_first_non_empty"
    conflict_resolution: str = "keep_first"

    @property
    def field1(self) -> str:
        return self.source_fields[0]

    @property
    def field2(self) -> Optional[str]:
        return self.source_fields[1] if len(self.source_fields) > 1 else None


@dataclass(frozen=True)
class ContentOverlapResolution(Operation):
    kind: ClassVar[OperationKind] = OperationKind.CONTENT_OVERLAP_RESOLUTION

    resolution_strategy: str = "clear_duplicates"


@dataclass(frozen=True)
class FieldRename(Operation):
    kind: ClassVar[OperationKind] = OperationKind.FIELD_RENAME

    @property
    def table(self) -> str:
        return split_field(self.source_fields[0])[0]

    @property
    def old_name(self) -> str:
        return split_field(self.source_fields[0])[1]

    @property
    def new_name(self) -> str:
        return self.target_field


@dataclass
class Phase:
    name: str
    description: str
    risk_level: Level
    operations: List[Operation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "risk_level": self.risk_level.value,
            "operations": [op.to_dict() for op in self.operations],
        }


@dataclass
class RiskAssessment:
    level: Level
    high_risk_operations: int
    medium_risk_operations: int
    factors: List[str] = field(default_factory=list)
    mitigations: List[str] = field(default_factory=list)


@dataclass
class ConsolidationPlan:
    id: str
    created_at: datetime
    opportunities: List[ConsolidationOpportunity]
    phases: List[Phase]
    safety_checks: List[str]
    rollback_plan: Dict[str, Any]
    validation_steps: List[str]
    risk_assessment: RiskAssessment
    estimated_duration: str
    estimated_minutes: int
    excluded: List[ConsolidationOpportunity] = field(default_factory=list)

    @property
    def total_operations(self) -> int:
        return sum(len(phase.operations) for phase in self.phases)

    def affected_tables(self) -> List[str]:
        tables: Dict[str, None] = {}
        for phase in self.phases:
            for op in phase.operations:
                tables.update(dict.fromkeys(op.affected_tables))
        return list(tables)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "opportunities": [o.model_dump(mode="json") for o in self.opportunities],
            "phases": [p.to_dict() for p in self.phases],
            "safety_checks": list(self.safety_checks),
            "rollback_plan": self.rollback_plan,
            "validation_steps": list(self.validation_steps),
            "risk_assessment": {
                **asdict(self.risk_assessment),
                "level": self.risk_assessment.level.value,
            },
            "estimated_duration": self.estimated_duration,
            "excluded": [o.model_dump(mode="json") for o in self.excluded],
        }


@dataclass
class ExecutionOptions:
    dry_run: bool = True
    confirmed: bool = False
    skip_backup: bool = False
    pause_between_phases: bool = True
    # Set by a caller that already holds store-consolidation for this run
    holds_consolidation_lock: bool = False


@dataclass
class PreCheck:
    name: str
    passed: bool
    message: str = ""


@dataclass
class OperationResult:
    kind: str
    description: str
    started_at: datetime = field(default_factory=utc_now)
    success: bool = False
    result: Dict[str, Any] = field(default_factory=dict)
    snapshot_id: Optional[str] = None
    validation: Optional[Dict[str, Any]] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class PhaseResult:
    name: str
    risk_level: str
    started_at: datetime = field(default_factory=utc_now)
    operations: List[OperationResult] = field(default_factory=list)
    success: bool = False
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class ExecutionResult:
    """Outcome of one execute_plan call; owned by that call only"""

    plan_id: str
    dry_run: bool
    started_at: datetime = field(default_factory=utc_now)
    pre_checks: List[PreCheck] = field(default_factory=list)
    safety_backup_id: Optional[str] = None
    phases: List[PhaseResult] = field(default_factory=list)
    validation: Dict[str, Any] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)
    rollback: Optional[Dict[str, Any]] = None
    success: bool = False
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
