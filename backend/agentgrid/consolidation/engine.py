"""
Consolidation engine used by dispatched consolidate agents
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import structlog

from agentgrid.consolidation.executor import CONSOLIDATION_LOCK_SCOPE, ConsolidationExecutor
from agentgrid.consolidation.models import ConsolidationOpportunity, ExecutionOptions
from agentgrid.consolidation.planner import ConsolidationPlanner
from agentgrid.dispatch.engines import AgentContext

logger = structlog.get_logger(__name__)


@runtime_checkable
class FieldAnalyzer(Protocol):
    """Similarity analysis producing consolidation candidates"""

    async def analyze(self, tables: Sequence[str]) -> List[ConsolidationOpportunity]: ...


class StaticFieldAnalyzer:
    """Analyzer returning a fixed list of opportunities, filtered by table"""

    def __init__(self, opportunities: Sequence[Any]):
        self.opportunities = [ConsolidationOpportunity.model_validate(o) for o in opportunities]

    async def analyze(self, tables: Sequence[str]) -> List[ConsolidationOpportunity]:
        if not tables:
            return list(self.opportunities)
        wanted = set(tables)
        return [o for o in self.opportunities if set(o.tables) & wanted]


class SafeConsolidationEngine:
    """Analyze, plan and execute; dry-run unless the trigger says otherwise"""

    def __init__(
        self,
        analyzer: FieldAnalyzer,
        planner: ConsolidationPlanner,
        executor: ConsolidationExecutor,
    ):
        self.analyzer = analyzer
        self.planner = planner
        self.executor = executor

    @staticmethod
    def options_from(config: Dict[str, Any]) -> ExecutionOptions:
        return ExecutionOptions(
            dry_run=bool(config.get("dry_run", True)),
            confirmed=bool(config.get("confirmed", False)),
            skip_backup=bool(config.get("skip_backup", False)),
            pause_between_phases=bool(config.get("pause_between_phases", True)),
        )

    async def consolidate(self, context: AgentContext) -> Dict[str, Any]:
        config = context.config
        tables: List[str] = list(config.get("tables") or [])
        selection: Optional[List[int]] = config.get("selection")
        options = self.options_from(config)
        # The dispatcher holds the scope for consolidate agents and consolidate operations
        options.holds_consolidation_lock = CONSOLIDATION_LOCK_SCOPE in context.held_scopes

        opportunities = await self.analyzer.analyze(tables)
        logger.info(
            "Consolidation analysis complete",
            agent_id=context.agent_id,
            tables=tables,
            opportunities=len(opportunities),
        )

        plan = self.planner.create_plan(opportunities, selection)
        execution = await self.executor.execute_plan(plan, options)

        return {
            "plan_id": plan.id,
            "dry_run": options.dry_run,
            "risk_level": plan.risk_assessment.level.value,
            "estimated_duration": plan.estimated_duration,
            "excluded": [list(o.fields) for o in plan.excluded],
            "summary": execution.summary,
            "validation_passed": execution.validation.get("passed", False),
        }
