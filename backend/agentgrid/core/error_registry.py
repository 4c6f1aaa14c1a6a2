"""
Error code registry system
Registration and lookup logic for error codes
"""

from typing import Any, Dict, List, Optional

from agentgrid.core.error_definitions import (
    CoordinationErrorCodes,
    ErrorCategory,
    ErrorCodeInfo,
    ErrorSeverity,
)


class ErrorCodeRegistry:
    """Central registry for error codes and their metadata"""

    def __init__(self):
        self._registry: Dict[str, ErrorCodeInfo] = {}
        self._initialize_registry()

    def _initialize_registry(self):
        """Initialize the error code registry with all error codes"""

        self._register_error(
            CoordinationErrorCodes.LOCK_001.value,
            "LockTimeout",
            "A lock could not be acquired before the timeout elapsed",
            ErrorCategory.COORDINATION,
            ErrorSeverity.HIGH,
            "Another agent is holding the requested lock.",
            False,
            ["Inspect active agents", "Retry the operation later"],
        )

        self._register_error(
            CoordinationErrorCodes.PLAN_001.value,
            "NoOpportunities",
            "No consolidation opportunities were selected for planning",
            ErrorCategory.PLANNING,
            ErrorSeverity.LOW,
            "There is nothing to consolidate.",
            False,
            ["Run a fresh analysis", "Pass an explicit selection"],
        )

        self._register_error(
            CoordinationErrorCodes.PLAN_002.value,
            "UnsafePlan",
            "The consolidation plan exceeds configured safety limits",
            ErrorCategory.PLANNING,
            ErrorSeverity.MEDIUM,
            "The plan is too large to execute safely.",
            False,
            ["Select fewer opportunities", "Split the work into several plans"],
            ["PLAN_001"],
        )

        self._register_error(
            CoordinationErrorCodes.EXEC_001.value,
            "PreExecutionCheckFailed",
            "A pre-execution safety check failed before any mutation",
            ErrorCategory.EXECUTION,
            ErrorSeverity.MEDIUM,
            "Execution was aborted before changing any data.",
            True,
            ["Review the failed checks", "Confirm the plan explicitly"],
        )

        self._register_error(
            CoordinationErrorCodes.EXEC_002.value,
            "OperationFailure",
            "A consolidation operation failed while mutating the store",
            ErrorCategory.EXECUTION,
            ErrorSeverity.HIGH,
            "A consolidation step failed and changes were rolled back.",
            False,
            ["Inspect the partial execution result", "Verify the restored data"],
            ["EXEC_003"],
        )

        self._register_error(
            CoordinationErrorCodes.EXEC_003.value,
            "RollbackFailed",
            "Emergency rollback failed after an operation failure",
            ErrorCategory.EXECUTION,
            ErrorSeverity.CRITICAL,
            "The store may be partially modified with no automatic recovery.",
            False,
            [
                "Stop all agents touching the store",
                "Restore manually from the safety backup",
            ],
            ["EXEC_002"],
        )

        self._register_error(
            CoordinationErrorCodes.EVT_001.value,
            "EventHandlerError",
            "An event handler raised while processing an event",
            ErrorCategory.EVENTS,
            ErrorSeverity.LOW,
            "An event could not be fully processed.",
            False,
            ["Check the handler logs"],
        )

        self._register_error(
            CoordinationErrorCodes.ENG_001.value,
            "EngineUnavailable",
            "A required operation engine was not configured",
            ErrorCategory.DISPATCH,
            ErrorSeverity.HIGH,
            "The requested agent cannot run in this deployment.",
            False,
            ["Inject the missing engine when building the dispatcher"],
        )

        self._register_error(
            CoordinationErrorCodes.STORE_001.value,
            "StoreError",
            "A query against the external store failed",
            ErrorCategory.STORE,
            ErrorSeverity.MEDIUM,
            "The data store request failed.",
            True,
            ["Check store connectivity", "Retry the request"],
        )

        self._register_error(
            CoordinationErrorCodes.STORE_002.value,
            "RateLimitExceeded",
            "The client-side request window is exhausted",
            ErrorCategory.RATE_LIMIT,
            ErrorSeverity.LOW,
            "Too many store requests; slow down.",
            True,
            ["Wait for the rate limit window to pass"],
            ["STORE_001"],
        )

        self._register_error(
            CoordinationErrorCodes.CFG_001.value,
            "ConfigurationError",
            "The runtime configuration is invalid",
            ErrorCategory.CONFIGURATION,
            ErrorSeverity.HIGH,
            "The agent is misconfigured.",
            False,
            ["Check environment variables and .env"],
        )

    def _register_error(
        self,
        code: str,
        name: str,
        description: str,
        category: ErrorCategory,
        severity: ErrorSeverity,
        user_message: str,
        is_retryable: bool = False,
        suggested_actions: Optional[List[str]] = None,
        related_codes: Optional[List[str]] = None,
    ):
        """Register an error code with its metadata"""
        self._registry[code] = ErrorCodeInfo(
            code=code,
            name=name,
            description=description,
            category=category,
            severity=severity,
            user_message=user_message,
            is_retryable=is_retryable,
            suggested_actions=suggested_actions or [],
            related_codes=related_codes or [],
        )

    def get_error_info(self, code: str) -> Optional[ErrorCodeInfo]:
        """Get error information by code"""
        return self._registry.get(code)

    def get_errors_by_category(self, category: ErrorCategory) -> List[ErrorCodeInfo]:
        """Get all errors in a specific category"""
        return [info for info in self._registry.values() if info.category == category]

    def validate_error_code(self, code: str) -> bool:
        """Validate if an error code exists in the registry"""
        return code in self._registry

    def get_registry_stats(self) -> Dict[str, Any]:
        """Get statistics about the error registry"""
        category_counts: Dict[str, int] = {}
        severity_counts: Dict[str, int] = {}

        for info in self._registry.values():
            category_counts[info.category.value] = (
                category_counts.get(info.category.value, 0) + 1
            )
            severity_counts[info.severity.value] = (
                severity_counts.get(info.severity.value, 0) + 1
            )

        return {
            "total_errors": len(self._registry),
            "categories": category_counts,
            "severities": severity_counts,
            "retryable_errors": len(
                [info for info in self._registry.values() if info.is_retryable]
            ),
        }


_error_registry = ErrorCodeRegistry()


def get_error_info(code: str) -> Optional[ErrorCodeInfo]:
    """Convenience function to get error information"""
    return _error_registry.get_error_info(code)


def get_error_registry() -> ErrorCodeRegistry:
    return _error_registry
