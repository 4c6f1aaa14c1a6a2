"""
Error definitions and enums
Pure data structures for error classification
"""

from dataclasses import dataclass
from enum import Enum, unique
from typing import List, Optional


class ErrorSeverity(Enum):
    """Error severity levels"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification"""

    COORDINATION = "coordination"
    PLANNING = "planning"
    EXECUTION = "execution"
    EVENTS = "events"
    DISPATCH = "dispatch"
    STORE = "store"
    RATE_LIMIT = "rate_limit"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


@dataclass
class ErrorCodeInfo:
    """Information about a specific error code"""

    code: str
    name: str
    description: str
    category: ErrorCategory
    severity: ErrorSeverity
    user_message: str
    is_retryable: bool = False
    suggested_actions: Optional[List[str]] = None
    related_codes: Optional[List[str]] = None


@unique
class CoordinationErrorCodes(Enum):
    """Agent coordination error codes"""

    # Locking (LOCK_001-099)
    LOCK_001 = "LOCK_001"  # Lock acquisition timed out

    # Planning (PLAN_001-099)
    PLAN_001 = "PLAN_001"  # No opportunities to plan
    PLAN_002 = "PLAN_002"  # Plan exceeds safety limits

    # Execution (EXEC_001-099)
    EXEC_001 = "EXEC_001"  # Pre-execution check failed
    EXEC_002 = "EXEC_002"  # Operation failed mid-phase
    EXEC_003 = "EXEC_003"  # Emergency rollback failed

    # Events (EVT_001-099)
    EVT_001 = "EVT_001"  # Event handler raised

    # Dispatch (ENG_001-099)
    ENG_001 = "ENG_001"  # Required engine not injected

    # Store client (STORE_001-099)
    STORE_001 = "STORE_001"  # Store query failed
    STORE_002 = "STORE_002"  # Client-side rate limit exceeded

    # Configuration (CFG_001-099)
    CFG_001 = "CFG_001"  # Invalid configuration
