"""
Custom exceptions for agent coordination
"""

from typing import Any, Dict, List, Optional

from agentgrid.core.error_definitions import CoordinationErrorCodes


class AgentGridException(Exception):
    """Base exception for coordination errors with error code registry integration"""

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None,
    ):
        from agentgrid.core.error_registry import get_error_info

        self.detail = detail
        self.error_code = error_code
        self.additional_context = additional_context or {}

        error_info = get_error_info(error_code) if error_code else None
        if error_info:
            self.error_name = error_info.name
            self.error_category = error_info.category.value
            self.error_severity = error_info.severity.value
            self.is_retryable = error_info.is_retryable
            self.suggested_actions = error_info.suggested_actions
            self.user_message = error_info.user_message
        else:
            self.error_name = "UnknownError" if error_code else "GenericError"
            self.error_category = "unknown"
            self.error_severity = "medium"
            self.is_retryable = False
            self.suggested_actions = []
            self.user_message = detail

        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for status reports and logs"""
        error_dict = {
            "code": self.error_code,
            "name": self.error_name,
            "message": self.user_message,
            "detail": self.detail,
            "category": self.error_category,
            "severity": self.error_severity,
            "retryable": self.is_retryable,
        }

        if self.suggested_actions:
            error_dict["suggested_actions"] = self.suggested_actions

        if self.additional_context:
            error_dict["context"] = self.additional_context

        return error_dict


class LockTimeout(AgentGridException):
    """Lock could not be acquired within the timeout"""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(
            f"Could not acquire lock for '{operation}' within {timeout:g}s",
            CoordinationErrorCodes.LOCK_001.value,
            {"operation": operation, "timeout_seconds": timeout},
        )


class NoOpportunities(AgentGridException):
    """Nothing was selected for consolidation planning"""

    def __init__(self, detail: str = "No consolidation opportunities selected"):
        super().__init__(detail, CoordinationErrorCodes.PLAN_001.value)


class UnsafePlan(AgentGridException):
    """Plan rejected by the safety validator before any side effect"""

    def __init__(self, detail: str, violations: Optional[List[str]] = None):
        self.violations = violations or []
        super().__init__(
            detail,
            CoordinationErrorCodes.PLAN_002.value,
            {"violations": self.violations} if self.violations else None,
        )


class PreExecutionCheckFailed(AgentGridException):
    """One or more pre-execution checks failed; nothing was mutated"""

    def __init__(self, failed_checks: List[Dict[str, Any]]):
        self.failed_checks = failed_checks
        names = ", ".join(check["name"] for check in failed_checks)
        super().__init__(
            f"Pre-execution checks failed: {names}",
            CoordinationErrorCodes.EXEC_001.value,
            {"failed_checks": failed_checks},
        )


class OperationFailure(AgentGridException):
    """A mutation failed mid-phase"""

    def __init__(
        self,
        detail: str,
        phase_index: int,
        operation_index: int,
        backup_id: Optional[str] = None,
        rollback_attempted: bool = False,
        rollback_succeeded: bool = False,
        result: Any = None,
        error_code: Optional[str] = None,
    ):
        self.phase_index = phase_index
        self.operation_index = operation_index
        self.backup_id = backup_id
        self.rollback_attempted = rollback_attempted
        self.rollback_succeeded = rollback_succeeded
        self.result = result
        super().__init__(
            detail,
            error_code or CoordinationErrorCodes.EXEC_002.value,
            {
                "phase_index": phase_index,
                "operation_index": operation_index,
                "backup_id": backup_id,
                "rollback_attempted": rollback_attempted,
                "rollback_succeeded": rollback_succeeded,
            },
        )


class RollbackFailed(OperationFailure):
    """Emergency rollback failed; the store may be left partially mutated"""

    def __init__(
        self,
        detail: str,
        phase_index: int,
        operation_index: int,
        backup_id: Optional[str] = None,
        result: Any = None,
    ):
        super().__init__(
            detail,
            phase_index,
            operation_index,
            backup_id=backup_id,
            rollback_attempted=True,
            rollback_succeeded=False,
            result=result,
            error_code=CoordinationErrorCodes.EXEC_003.value,
        )


class EventHandlerError(AgentGridException):
    """A subscriber failed while handling an event"""

    def __init__(self, event_id: str, event_type: str, error: Exception):
        self.event_id = event_id
        self.event_type = event_type
        self.original_error = error
        super().__init__(
            f"Handler for {event_type} event {event_id} failed: {error}",
            CoordinationErrorCodes.EVT_001.value,
            {"event_id": event_id, "event_type": event_type},
        )


class EngineUnavailable(AgentGridException):
    """A required engine was not injected"""

    def __init__(self, engine: str, agent_type: Optional[str] = None):
        self.engine = engine
        super().__init__(
            f"Engine '{engine}' is not available",
            CoordinationErrorCodes.ENG_001.value,
            {"engine": engine, "agent_type": agent_type},
        )


class StoreError(AgentGridException):
    """External store query failed"""

    def __init__(self, detail: str, error_code: Optional[str] = None):
        super().__init__(detail, error_code or CoordinationErrorCodes.STORE_001.value)


class RateLimitExceeded(StoreError):
    """Client-side rate limit window exhausted"""

    def __init__(self, detail: str = "Store rate limit exceeded"):
        super().__init__(detail, CoordinationErrorCodes.STORE_002.value)


class ConfigurationError(AgentGridException):
    """Configuration related errors"""

    def __init__(self, detail: str, error_code: Optional[str] = None):
        super().__init__(detail, error_code or CoordinationErrorCodes.CFG_001.value)
