"""
Consolidation planning: selection, phasing, risk and safety validation
"""

import re
import time
import uuid
from typing import Callable, Dict, List, Optional, Sequence, Type

import structlog

from agentgrid.coordination.models import utc_now
from agentgrid.consolidation.models import (
    ConsolidationOpportunity,
    ConsolidationPlan,
    ContentOverlapResolution,
    DuplicateFieldConsolidation,
    FieldRename,
    Level,
    Operation,
    OpportunityKind,
    Phase,
    RiskAssessment,
    SimilarFieldMerge,
    split_field,
)
from agentgrid.core.config import Settings, get_settings
from agentgrid.core.exceptions import NoOpportunities, UnsafePlan
from agentgrid.core.logging_decorators import log_execution_time
from agentgrid.core.logging_utils import get_coordination_logger

logger = structlog.get_logger(__name__)

RECORDS_PER_TABLE_ESTIMATE = 100

SAFETY_CHECKS = [
    "Comprehensive backup before execution",
    "Dry-run validation required",
    "User confirmation for each phase",
    "Real-time data integrity monitoring",
    "Automatic rollback on validation failure",
]

VALIDATION_STEPS = [
    "Pre-execution data integrity baseline",
    "Per-operation result validation",
    "Cross-table consistency checks",
    "Data loss prevention verification",
    "Post-execution comprehensive validation",
]

MITIGATIONS = [
    "Comprehensive backup before execution",
    "Phased execution with validation",
    "Automatic rollback on failure",
    "Dry-run testing required",
]

# (name, description, risk) in execution order
PHASE_LAYOUT = [
    ("Low-Risk Consolidations", "Safe consolidations with minimal impact", Level.LOW),
    ("Medium-Risk Consolidations", "Consolidations requiring careful validation", Level.MEDIUM),
]

OPERATION_TYPES: Dict[OpportunityKind, Type[Operation]] = {
    OpportunityKind.DUPLICATE: DuplicateFieldConsolidation,
    OpportunityKind.SIMILAR: SimilarFieldMerge,
    OpportunityKind.CONTENT_OVERLAP: ContentOverlapResolution,
    OpportunityKind.RENAME: FieldRename,
}

_WORD_SPLIT = re.compile(r"[\s_-]+")


def common_target_name(fields: Sequence[str]) -> str:
    """First word of the first field name contained in every field name, else Consolidated_{first}"""
    names = [split_field(f)[1] for f in fields]
    first = names[0]
    lowered = [name.lower() for name in names]
    for word in _WORD_SPLIT.split(first):
        # Containment, not whole-word match: "Email" is common to "Emails"
        if word and all(word.lower() in name for name in lowered):
            return word
    return f"Consolidated_{first}"


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} minutes"
    return f"{minutes // 60}h {minutes % 60}m"


class ConsolidationPlanner:
    """Turns analyzer opportunities into a phased, validated plan"""

    def __init__(self, settings: Optional[Settings] = None, clock: Callable = utc_now):
        self.settings = settings or get_settings()
        self.clock = clock
        self.log = get_coordination_logger(__name__)

    @log_execution_time()
    def create_plan(
        self,
        opportunities: Sequence[ConsolidationOpportunity],
        selection: Optional[Sequence[int]] = None,
    ) -> ConsolidationPlan:
        opportunities = [ConsolidationOpportunity.model_validate(o) for o in opportunities]

        if selection is None:
            selected = self.auto_select(opportunities)
        else:
            selected = [opportunities[i] for i in selection if 0 <= i < len(opportunities)]

        if not selected:
            raise NoOpportunities()

        excluded = [o for o in selected if o.risk in (Level.HIGH, Level.CRITICAL)]
        if excluded:
            logger.warning(
                "High-risk opportunities excluded from plan",
                excluded=len(excluded),
                fields=[list(o.fields) for o in excluded],
            )

        phases = self.build_phases(selected)
        if not phases:
            raise UnsafePlan(
                "No executable operations remain after excluding high-risk opportunities",
                ["All selected opportunities are high risk"],
            )

        minutes = self.estimate_minutes(selected)
        plan = ConsolidationPlan(
            id=f"consolidation-plan-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}",
            created_at=self.clock(),
            opportunities=selected,
            phases=phases,
            safety_checks=list(SAFETY_CHECKS),
            rollback_plan=self.build_rollback_plan(selected),
            validation_steps=list(VALIDATION_STEPS),
            risk_assessment=self.assess_risk(selected),
            estimated_duration=format_duration(minutes),
            estimated_minutes=minutes,
            excluded=excluded,
        )

        self.validate_plan(plan)

        self.log.consolidation_event(
            "plan_created",
            plan_id=plan.id,
            phases=len(plan.phases),
            operations=plan.total_operations,
            risk=plan.risk_assessment.level.value,
            estimated_duration=plan.estimated_duration,
        )
        return plan

    def auto_select(self, opportunities: Sequence[ConsolidationOpportunity]) -> List[ConsolidationOpportunity]:
        safe = [
            o for o in opportunities
            if o.priority == Level.HIGH and o.risk == Level.LOW and o.complexity == Level.LOW
        ]
        return safe[: self.settings.CONSOLIDATION_AUTO_SELECT_LIMIT]

    def build_phases(self, opportunities: Sequence[ConsolidationOpportunity]) -> List[Phase]:
        phases = []
        for name, description, risk in PHASE_LAYOUT:
            members = [o for o in opportunities if o.risk == risk]
            if members:
                phases.append(
                    Phase(
                        name=name,
                        description=description,
                        risk_level=risk,
                        operations=[self.to_operation(o) for o in members],
                    )
                )
        return phases

    def to_operation(self, opportunity: ConsolidationOpportunity) -> Operation:
        operation_type = OPERATION_TYPES.get(opportunity.kind, FieldRename)
        tables = tuple(opportunity.tables)
        if operation_type is FieldRename and len(opportunity.fields) > 1:
            target = split_field(opportunity.fields[1])[1]
        else:
            target = common_target_name(opportunity.fields)

        return operation_type(
            description=opportunity.description or f"{operation_type.kind.value}: {', '.join(opportunity.fields)}",
            source_fields=tuple(opportunity.fields),
            target_field=target,
            affected_tables=tables,
            estimated_records=len(tables) * RECORDS_PER_TABLE_ESTIMATE,
            risk=opportunity.risk,
            complexity=opportunity.complexity,
        )

    def assess_risk(self, opportunities: Sequence[ConsolidationOpportunity]) -> RiskAssessment:
        high = sum(1 for o in opportunities if o.risk in (Level.HIGH, Level.CRITICAL))
        medium = sum(1 for o in opportunities if o.risk == Level.MEDIUM)

        if high > 0:
            level = Level.HIGH
        elif medium > 2:
            level = Level.MEDIUM
        else:
            level = Level.LOW

        factors = []
        tables = {t for o in opportunities for t in o.tables}
        if len(tables) > 5:
            factors.append(f"High table impact: {len(tables)} tables affected")
        complex_count = sum(1 for o in opportunities if o.complexity == Level.HIGH)
        if complex_count:
            factors.append(f"Complex operations: {complex_count} high-complexity consolidations")

        return RiskAssessment(
            level=level,
            high_risk_operations=high,
            medium_risk_operations=medium,
            factors=factors,
            mitigations=list(MITIGATIONS),
        )

    @staticmethod
    def estimate_minutes(opportunities: Sequence[ConsolidationOpportunity]) -> int:
        # execution + backup + validation + risk surcharges
        n = len(opportunities)
        high = sum(1 for o in opportunities if o.risk in (Level.HIGH, Level.CRITICAL))
        medium = sum(1 for o in opportunities if o.risk == Level.MEDIUM)
        return 5 * n + 10 + 2 * n + 10 * high + 5 * medium

    @staticmethod
    def build_rollback_plan(opportunities: Sequence[ConsolidationOpportunity]) -> Dict:
        return {
            "backup_strategy": "comprehensive-pre-execution",
            "rollback_points": [
                {
                    "point": f"after-opportunity-{i + 1}",
                    "description": f"Rollback point after {o.kind.value} consolidation",
                    "fields": list(o.fields),
                }
                for i, o in enumerate(opportunities)
            ],
            "emergency_procedure": "immediate-safety-backup-restore",
            "validation_required": True,
        }

    def validate_plan(self, plan: ConsolidationPlan):
        """Reject plans exceeding the operation or table caps"""
        violations = []
        max_ops = self.settings.CONSOLIDATION_MAX_OPERATIONS
        max_tables = self.settings.CONSOLIDATION_MAX_TABLES

        if plan.total_operations > max_ops:
            violations.append(f"Too many operations in single plan (max {max_ops})")
        if len(plan.affected_tables()) > max_tables:
            violations.append(f"Too many tables affected (max {max_tables})")

        if violations:
            logger.error("Consolidation plan failed safety validation", plan_id=plan.id, violations=violations)
            raise UnsafePlan(f"Plan safety validation failed: {'; '.join(violations)}", violations)
