# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Foundation - Core enums and base contracts
# PURPOSE: Define status enums and the session identity contract
# CREATED: 18 OCT 2026
# EXPORTS: SessionStatus, RecordStatus, FetchErrorCategory, SessionKey
# DEPENDENCIES: enum, pydantic
# ============================================================================
"""
Base contracts for the packet processing system.

These define the minimal identity fields that cross boundaries:
- SQL (PostgreSQL)
- HTTP (control API)
- Python (orchestrator loop)

Boundary-specific models inherit from these contracts.
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field


# ============================================================================
# STATUS ENUMS
# ============================================================================

class SessionStatus(str, Enum):
    """
    Packet processing session states.

    State transitions:
        ACTIVE -> PAUSED -> ACTIVE
               -> COMPLETED
               -> FAILED -> ACTIVE
               -> CANCELLED
        PAUSED -> CANCELLED
    """
    ACTIVE = "active"            # Loop running (or scheduled)
    PAUSED = "paused"            # Stopped at a packet boundary, resumable
    FAILED = "failed"            # Fetch or loop failure, resumable
    CANCELLED = "cancelled"      # Manually cancelled
    COMPLETED = "completed"      # Endpoint exhausted

    def is_terminal(self) -> bool:
        """Check if this is a final state (no further transitions)."""
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)

    def is_open(self) -> bool:
        """ACTIVE or PAUSED - the states that make start() a no-op."""
        return self in (SessionStatus.ACTIVE, SessionStatus.PAUSED)


class RecordStatus(str, Enum):
    """
    Per-record states within a session.

    State transitions:
        PENDING -> PROCESSING -> SUCCESS
                              -> FAILED -> PENDING (manual retry)
        (any unsettled) -> SKIPPED (packet re-fetched after interruption)
    """
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    def is_terminal(self) -> bool:
        """Counted states: SUCCESS and FAILED feed the session counters."""
        return self in (RecordStatus.SUCCESS, RecordStatus.FAILED)


class FetchErrorCategory(str, Enum):
    """Failure categories surfaced by the pagination client and the loop."""
    CLIENT_ERROR = "CLIENT_ERROR"                            # 4xx, never retried
    SERVER_ERROR = "SERVER_ERROR"                            # 5xx
    CONNECTION_ERROR = "CONNECTION_ERROR"                    # transport failure
    RESPONSE_PROCESSING_ERROR = "RESPONSE_PROCESSING_ERROR"  # unparseable body
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"                    # loop-level exception

    def is_retryable(self) -> bool:
        """Whether the pagination client retries this category."""
        return self in (
            FetchErrorCategory.SERVER_ERROR,
            FetchErrorCategory.CONNECTION_ERROR,
            FetchErrorCategory.UNKNOWN_ERROR,
        )


# ============================================================================
# BASE DATA CONTRACTS
# ============================================================================

class SessionKey(BaseModel):
    """
    Session identity - (activity_id, application_date).

    Unique at the store; the idempotency key for start().
    """
    activity_id: str = Field(..., min_length=1, max_length=128)
    application_date: date

    model_config = {"frozen": True}

    @property
    def processing_id(self) -> str:
        """Processing identifier returned to callers of start()."""
        return f"{self.activity_id}-{self.application_date.isoformat()}"

    def __str__(self) -> str:
        return self.processing_id


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "SessionStatus",
    "RecordStatus",
    "FetchErrorCategory",
    "SessionKey",
]
