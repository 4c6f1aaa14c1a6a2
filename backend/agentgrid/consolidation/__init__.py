"""
Field consolidation planning and safe execution
"""

from .engine import FieldAnalyzer, SafeConsolidationEngine, StaticFieldAnalyzer
from .executor import CONSOLIDATION_LOCK_SCOPE, ConsolidationExecutor, free_disk_bytes
from .models import (
    ConsolidationOpportunity,
    ConsolidationPlan,
    ContentOverlapResolution,
    DuplicateFieldConsolidation,
    ExecutionOptions,
    ExecutionResult,
    FieldRename,
    Level,
    Operation,
    OperationKind,
    OperationResult,
    OpportunityKind,
    Phase,
    PhaseResult,
    PreCheck,
    RiskAssessment,
    SimilarFieldMerge,
)
from .operations import OperationRunner
from .planner import ConsolidationPlanner, common_target_name, format_duration

__all__ = [
    "CONSOLIDATION_LOCK_SCOPE",
    "ConsolidationExecutor",
    "ConsolidationOpportunity",
    "ConsolidationPlan",
    "ConsolidationPlanner",
    "ContentOverlapResolution",
    "DuplicateFieldConsolidation",
    "ExecutionOptions",
    "ExecutionResult",
    "FieldAnalyzer",
    "FieldRename",
    "Level",
    "Operation",
    "OperationKind",
    "OperationResult",
    "OperationRunner",
    "OpportunityKind",
    "Phase",
    "PhaseResult",
    "PreCheck",
    "RiskAssessment",
    "SafeConsolidationEngine",
    "SimilarFieldMerge",
    "StaticFieldAnalyzer",
    "common_target_name",
    "format_duration",
    "free_disk_bytes",
]
