"""
Execution Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Classification of tiering action failures.

ERROR CATEGORIES:
1. Validation Errors - The action can never succeed as defined
2. Storage Errors - The storage engine rejected or failed
3. Concurrency Errors - Contention on the partition
4. Network Errors - Communication failures
5. Timeout Errors - The action overran its timeout

RETRYABLE vs TERMINAL:
- Retryable: the entry returns to PENDING on its next eligible
  evaluation
- Terminal: the (policy, partition) pair is blocked until the
  policy is corrected or the block is cleared

============================================================
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Set

from core.exceptions import ActionError


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    VALIDATION = "VALIDATION"
    """Action parameters or target are invalid."""

    STORAGE = "STORAGE"
    """Storage engine failed."""

    CONCURRENCY = "CONCURRENCY"
    """Lock or resource contention."""

    NETWORK = "NETWORK"
    """Connection to the storage engine failed."""

    TIMEOUT = "TIMEOUT"
    """Action exceeded its timeout."""

    INTERNAL = "INTERNAL"
    """Internal system error."""


class ErrorSeverity(Enum):
    """Error severity levels."""

    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    """Error code."""

    category: ErrorCategory
    """Error category."""

    severity: ErrorSeverity
    """Error severity."""

    is_retryable: bool
    """Whether the entry may run again on a later pass."""

    description: str
    """Human-readable description."""

    recommended_action: str
    """What an operator should do."""

    alert_operator: bool = False
    """Whether a single occurrence is alerted."""


ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    # ========== RETRYABLE ==========
    "TIMEOUT": ErrorCodeInfo(
        code="TIMEOUT",
        category=ErrorCategory.TIMEOUT,
        severity=ErrorSeverity.ERROR,
        is_retryable=True,
        description="Action did not finish within its timeout",
        recommended_action="Check the storage engine; raise the action timeout if the partition is large",
        alert_operator=True,
    ),
    "LOCK_CONTENTION": ErrorCodeInfo(
        code="LOCK_CONTENTION",
        category=ErrorCategory.CONCURRENCY,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Partition was locked by another session",
        recommended_action="None; retried on the next pass",
    ),
    "CONNECTION_ERROR": ErrorCodeInfo(
        code="CONNECTION_ERROR",
        category=ErrorCategory.NETWORK,
        severity=ErrorSeverity.ERROR,
        is_retryable=True,
        description="Connection to the storage engine failed",
        recommended_action="Check storage engine availability",
    ),
    "STORAGE_BUSY": ErrorCodeInfo(
        code="STORAGE_BUSY",
        category=ErrorCategory.STORAGE,
        severity=ErrorSeverity.WARNING,
        is_retryable=True,
        description="Storage engine is temporarily out of resources",
        recommended_action="None; retried on the next pass",
    ),
    "STORAGE_ERROR": ErrorCodeInfo(
        code="STORAGE_ERROR",
        category=ErrorCategory.STORAGE,
        severity=ErrorSeverity.ERROR,
        is_retryable=True,
        description="Storage engine reported an unclassified failure",
        recommended_action="Inspect the error message in the execution log",
    ),

    # ========== TERMINAL ==========
    "INVALID_TARGET_LOCATION": ErrorCodeInfo(
        code="INVALID_TARGET_LOCATION",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Move target is not a location of the dataset's tier template",
        recommended_action="Correct the policy's target location",
        alert_operator=True,
    ),
    "ACTION_MISMATCH": ErrorCodeInfo(
        code="ACTION_MISMATCH",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Action cannot be dispatched (unknown custom action or action type)",
        recommended_action="Register the custom action or correct the policy",
        alert_operator=True,
    ),
    "PARTITION_NOT_FOUND": ErrorCodeInfo(
        code="PARTITION_NOT_FOUND",
        category=ErrorCategory.STORAGE,
        severity=ErrorSeverity.WARNING,
        is_retryable=False,
        description="Partition no longer exists in the storage engine",
        recommended_action="Refresh partition metadata",
    ),
    "INVALID_PARAMETERS": ErrorCodeInfo(
        code="INVALID_PARAMETERS",
        category=ErrorCategory.VALIDATION,
        severity=ErrorSeverity.ERROR,
        is_retryable=False,
        description="Storage engine rejected the action parameters",
        recommended_action="Correct the policy's codec or parameters",
        alert_operator=True,
    ),

    # ========== INTERNAL ==========
    "INTERNAL_ERROR": ErrorCodeInfo(
        code="INTERNAL_ERROR",
        category=ErrorCategory.INTERNAL,
        severity=ErrorSeverity.CRITICAL,
        is_retryable=True,
        description="Unexpected internal error",
        recommended_action="Investigate error logs",
        alert_operator=True,
    ),
}


def get_error_info(code: str) -> ErrorCodeInfo:
    """
    Get error info for a code.

    Unknown codes are treated like STORAGE_ERROR under their own name.
    """
    info = ERROR_CODES.get(code)
    if info is not None:
        return info
    fallback = ERROR_CODES["STORAGE_ERROR"]
    return ErrorCodeInfo(
        code=code,
        category=fallback.category,
        severity=fallback.severity,
        is_retryable=fallback.is_retryable,
        description=f"Unknown error: {code}",
        recommended_action=fallback.recommended_action,
    )


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    return get_error_info(code).is_retryable


def classify_exception(error: BaseException) -> str:
    """Error code for an exception raised by an action."""
    if isinstance(error, ActionError):
        return error.error_code
    if isinstance(error, asyncio.TimeoutError):
        return "TIMEOUT"
    if isinstance(error, (ConnectionError, OSError)):
        return "CONNECTION_ERROR"
    return "STORAGE_ERROR"


# ============================================================
# ERROR SETS
# ============================================================

RETRYABLE_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if info.is_retryable
}

TERMINAL_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if not info.is_retryable
}
