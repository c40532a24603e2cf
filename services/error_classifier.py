# ============================================================================
# ERROR CLASSIFIER
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Service - Per-record failure classification
# PURPOSE: Map a record processor failure message to a category + retryable flag
# CREATED: 18 OCT 2026
# ============================================================================
"""
Error Classifier

Pure, deterministic classification of failure messages. The loop stores
the category on the failed record; retryable is logged with the failure
and exposed to callers.

Buckets are checked in order (first match wins):
    transient   retryable   timeouts, refused connections, unavailable services
    validation  permanent   bad format, missing fields, rule violations
    system      retryable   database, pool, memory, disk, overload
    permanent   permanent   not found, unauthorized, forbidden, malformed

Unmatched messages that mention "exception" or "error" are system
errors; everything else (including empty messages) is permanent.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol, Tuple


class ErrorCategory(str, Enum):
    """Per-record failure categories."""
    TRANSIENT_ERROR = "TRANSIENT_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    PERMANENT_ERROR = "PERMANENT_ERROR"


@dataclass(frozen=True)
class Classification:
    """Result of classify()."""
    category: ErrorCategory
    retryable: bool


class ErrorClassifierProtocol(Protocol):
    """What the orchestrator needs from a classifier."""

    def classify(self, error_message: Optional[str]) -> Classification:
        ...


_TRANSIENT = re.compile(
    r"timeout|connection.*refused|service.*unavailable|network.*error|temporary.*failure|retry.*later"
)
_VALIDATION = re.compile(
    r"validation|invalid.*format|missing.*field|constraint.*violation|business.*rule"
)
_SYSTEM = re.compile(
    r"database.*error|connection.*pool|out.*of.*memory|disk.*space|system.*overload"
)
_PERMANENT = re.compile(
    r"not.*found|unauthorized|forbidden|unsupported.*operation|malformed.*data"
)


class ErrorClassifier:
    """Regex bucket classifier."""

    RULES: List[Tuple[re.Pattern, Classification]] = [
        (_TRANSIENT, Classification(ErrorCategory.TRANSIENT_ERROR, True)),
        (_VALIDATION, Classification(ErrorCategory.VALIDATION_ERROR, False)),
        (_SYSTEM, Classification(ErrorCategory.SYSTEM_ERROR, True)),
        (_PERMANENT, Classification(ErrorCategory.PERMANENT_ERROR, False)),
    ]

    def classify(self, error_message: Optional[str]) -> Classification:
        if not error_message:
            return Classification(ErrorCategory.PERMANENT_ERROR, False)

        message = error_message.lower()
        for pattern, classification in self.RULES:
            if pattern.search(message):
                return classification

        if "exception" in message or "error" in message:
            return Classification(ErrorCategory.SYSTEM_ERROR, True)

        return Classification(ErrorCategory.PERMANENT_ERROR, False)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "ErrorCategory",
    "Classification",
    "ErrorClassifierProtocol",
    "ErrorClassifier",
]
