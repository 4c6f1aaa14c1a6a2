"""
Safe execution of consolidation plans with backup, validation and rollback
"""

import asyncio
import contextlib
import os
from dataclasses import asdict
from typing import Any, Callable, Dict, List, Optional, Tuple

import psutil
import structlog

from agentgrid.coordination.models import utc_now
from agentgrid.consolidation.models import (
    ConsolidationPlan,
    ExecutionOptions,
    ExecutionResult,
    Operation,
    OperationResult,
    PhaseResult,
    PreCheck,
)
from agentgrid.consolidation.operations import OperationRunner
from agentgrid.core.config import Settings, get_settings
from agentgrid.core.exceptions import OperationFailure, PreExecutionCheckFailed, RollbackFailed
from agentgrid.core.logging_decorators import log_execution_time
from agentgrid.core.logging_utils import get_coordination_logger

logger = structlog.get_logger(__name__)

CONSOLIDATION_LOCK_SCOPE = "store-consolidation"


def free_disk_bytes(path: str) -> int:
    """Free bytes on the filesystem holding ``path`` (or its nearest existing parent)"""
    path = os.path.abspath(path)
    while not os.path.exists(path):
        parent = os.path.dirname(path)
        if parent == path:
            break
        path = parent
    return psutil.disk_usage(path).free


class ConsolidationExecutor:
    """
    Runs a plan phase by phase:
    - Pre-checks gate every side effect
    - Non-dry runs hold the consolidation lock, back up first and snapshot per operation
    - Any operation failure triggers exactly one emergency restore
    """

    def __init__(
        self,
        store,
        backup,
        coordinator,
        settings: Optional[Settings] = None,
        runner: Optional[OperationRunner] = None,
        storage_probe: Optional[Callable[[], int]] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.store = store
        self.backup = backup
        self.coordinator = coordinator
        self.settings = settings or get_settings()
        self.runner = runner or OperationRunner(store)
        self.storage_probe = storage_probe or (lambda: free_disk_bytes(self.settings.BACKUP_DIRECTORY))
        self._sleep = sleep
        self.log = get_coordination_logger(__name__)

    async def pre_execution_checks(
        self, plan: Optional[ConsolidationPlan], options: ExecutionOptions
    ) -> List[PreCheck]:
        checks = [
            PreCheck(
                name="plan-exists",
                passed=bool(plan and plan.phases),
                message="Plan loaded" if plan and plan.phases else "No consolidation plan with phases",
            ),
            PreCheck(
                name="user-confirmation",
                passed=options.dry_run or options.confirmed,
                message="Confirmed" if options.dry_run or options.confirmed else "Execution not confirmed",
            ),
        ]

        try:
            connected = bool(await self.store.test_connection())
            message = "Store reachable" if connected else "Store connection test failed"
        except Exception as e:
            connected, message = False, f"Store connection error: {e}"
        checks.append(PreCheck(name="database-connectivity", passed=connected, message=message))

        try:
            report = await self.coordinator.check_compatibility()
            compatible = report.compatible
            message = "No conflicting agents" if compatible else (
                "Conflicting agents: " + ", ".join(c.agent_id for c in report.conflicts)
            )
        except Exception as e:
            compatible, message = False, f"Coordination check failed: {e}"
        checks.append(PreCheck(name="agent-coordination", passed=compatible, message=message))

        try:
            free = int(self.storage_probe())
            enough = free >= self.settings.BACKUP_MIN_FREE_BYTES
            message = f"{free} bytes free" if enough else (
                f"Only {free} bytes free, need {self.settings.BACKUP_MIN_FREE_BYTES}"
            )
        except Exception as e:
            enough, message = False, f"Storage probe failed: {e}"
        checks.append(PreCheck(name="disk-space", passed=enough, message=message))

        return checks

    @log_execution_time()
    async def execute_plan(
        self, plan: Optional[ConsolidationPlan], options: Optional[ExecutionOptions] = None
    ) -> ExecutionResult:
        options = options or ExecutionOptions()
        result = ExecutionResult(plan_id=plan.id if plan else "", dry_run=options.dry_run)

        result.pre_checks = await self.pre_execution_checks(plan, options)
        failed = [asdict(check) for check in result.pre_checks if not check.passed]
        if failed:
            logger.error("Pre-execution checks failed", plan_id=result.plan_id, failed=[c["name"] for c in failed])
            raise PreExecutionCheckFailed(failed)

        self.log.consolidation_event(
            "plan_started",
            plan_id=plan.id,
            dry_run=options.dry_run,
            phases=len(plan.phases),
            operations=plan.total_operations,
        )

        async with self._mutation_guard(options):
            await self._execute(plan, options, result)

        result.completed_at = utc_now()
        result.summary = self.summarize(plan, result)
        self.log.consolidation_event(
            "plan_finished",
            plan_id=plan.id,
            dry_run=options.dry_run,
            success=result.success,
            successful_operations=result.summary["successful_operations"],
        )
        return result

    @contextlib.asynccontextmanager
    async def _mutation_guard(self, options: ExecutionOptions):
        if options.dry_run or options.holds_consolidation_lock:
            yield
            return
        async with self.coordinator.lock(CONSOLIDATION_LOCK_SCOPE):
            yield

    async def _execute(self, plan: ConsolidationPlan, options: ExecutionOptions, result: ExecutionResult):
        if not options.dry_run and not options.skip_backup:
            try:
                result.safety_backup_id = await self.backup.create_backup(
                    {"type": "pre-consolidation", "plan_id": plan.id}
                )
            except Exception as e:
                logger.error("Safety backup failed", plan_id=plan.id, error=str(e))
                raise PreExecutionCheckFailed(
                    [{"name": "safety-backup", "passed": False, "message": str(e)}]
                ) from e
            logger.info("Safety backup created", plan_id=plan.id, backup_id=result.safety_backup_id)

        executed: List[Tuple[Operation, Dict[str, Any]]] = []

        for phase_index, phase in enumerate(plan.phases):
            phase_result = PhaseResult(name=phase.name, risk_level=phase.risk_level.value)
            result.phases.append(phase_result)
            logger.info("Starting phase", plan_id=plan.id, phase=phase.name, operations=len(phase.operations))

            for operation_index, operation in enumerate(phase.operations):
                op_result = OperationResult(kind=operation.kind.value, description=operation.description)
                phase_result.operations.append(op_result)

                error: Optional[Exception] = None
                try:
                    await self._execute_operation(plan, operation, options, op_result)
                except Exception as e:
                    error = e

                op_result.completed_at = utc_now()
                if error is None and op_result.success:
                    executed.append((operation, op_result.result))
                    continue

                detail = str(error) if error else "Validation failed: " + "; ".join(op_result.validation["issues"])
                op_result.error = detail
                phase_result.error = detail
                phase_result.completed_at = utc_now()
                await self._fail(result, options, phase_index, operation_index, detail, error)

            phase_result.success = True
            phase_result.completed_at = utc_now()
            self.log.consolidation_event("phase_completed", plan_id=plan.id, phase=phase.name)

            if options.pause_between_phases and not options.dry_run and phase_index < len(plan.phases) - 1:
                await self._sleep(self.settings.CONSOLIDATION_PHASE_PAUSE_SECONDS)

        if options.dry_run:
            result.validation = {"skipped": True, "passed": True, "operations": []}
        else:
            result.validation = await self.post_validate(executed)
        result.success = result.validation["passed"]

    async def _execute_operation(
        self,
        plan: ConsolidationPlan,
        operation: Operation,
        options: ExecutionOptions,
        op_result: OperationResult,
    ):
        if options.dry_run:
            op_result.result = self.runner.describe(operation)
            op_result.success = True
            return

        if not options.skip_backup:
            data = await self.runner.capture(operation)
            op_result.snapshot_id = await self.backup.create_snapshot(
                data,
                {
                    "plan_id": plan.id,
                    "operation": operation.kind.value,
                    "description": operation.description,
                },
            )

        op_result.result = await self.runner.run(operation)
        op_result.validation = await self.runner.validate(operation, op_result.result)
        op_result.success = op_result.validation["passed"]

    async def _fail(
        self,
        result: ExecutionResult,
        options: ExecutionOptions,
        phase_index: int,
        operation_index: int,
        detail: str,
        cause: Optional[Exception],
    ):
        result.success = False
        result.error = detail
        result.completed_at = utc_now()
        log = logger.bind(plan_id=result.plan_id, phase_index=phase_index, operation_index=operation_index)

        if options.dry_run:
            log.error("Dry-run operation failed", error=detail)
            raise OperationFailure(detail, phase_index, operation_index, result=result) from cause

        backup_id = result.safety_backup_id
        log.error("Operation failed, starting emergency rollback", error=detail, backup_id=backup_id)

        if backup_id is None:
            result.rollback = {"attempted": False, "succeeded": False, "error": "no safety backup"}
            log.critical("No safety backup available for emergency rollback")
            raise RollbackFailed(
                "No safety backup available for emergency rollback",
                phase_index,
                operation_index,
                result=result,
            ) from cause

        try:
            restored = await self.backup.restore(backup_id, f"Emergency rollback: {detail}")
        except Exception as e:
            result.rollback = {"attempted": True, "succeeded": False, "backup_id": backup_id, "error": str(e)}
            log.critical("Emergency rollback failed", backup_id=backup_id, error=str(e))
            raise RollbackFailed(
                f"Emergency rollback failed: {e}",
                phase_index,
                operation_index,
                backup_id=backup_id,
                result=result,
            ) from e

        result.rollback = {"attempted": True, "succeeded": True, "backup_id": backup_id, "restore": restored}
        log.warning("Emergency rollback completed", backup_id=backup_id)
        raise OperationFailure(
            detail,
            phase_index,
            operation_index,
            backup_id=backup_id,
            rollback_attempted=True,
            rollback_succeeded=True,
            result=result,
        ) from cause

    async def post_validate(self, executed: List[Tuple[Operation, Dict[str, Any]]]) -> Dict[str, Any]:
        checks = []
        for operation, op_result in executed:
            validation = await self.runner.validate(operation, op_result)
            checks.append({"kind": operation.kind.value, "description": operation.description, **validation})

        passed = all(check["passed"] for check in checks)
        if not passed:
            logger.error(
                "Post-execution validation failed",
                failed=[c["description"] for c in checks if not c["passed"]],
            )
        return {"skipped": False, "passed": passed, "operations": checks}

    @staticmethod
    def summarize(plan: ConsolidationPlan, result: ExecutionResult) -> Dict[str, Any]:
        operations = [op for phase in plan.phases for op in phase.operations]
        succeeded = [r for phase in result.phases for r in phase.operations if r.success]
        duration = ((result.completed_at or utc_now()) - result.started_at).total_seconds()

        return {
            "plan_id": plan.id,
            "execution_date": result.started_at.isoformat(),
            "dry_run": result.dry_run,
            "total_phases": len(plan.phases),
            "successful_phases": sum(1 for phase in result.phases if phase.success),
            "total_operations": len(operations),
            "successful_operations": len(succeeded),
            "fields_consolidated": sum(len(op.source_fields) for op in operations) if result.success else 0,
            "tables_affected": plan.affected_tables(),
            "duration_seconds": round(duration, 3),
            "backup_created": result.safety_backup_id is not None,
            "backup_id": result.safety_backup_id,
            "validation_passed": result.validation.get("passed", False),
        }
