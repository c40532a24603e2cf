# ============================================================================
# PACKET SESSION MODEL
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core model - One resumable packet processing run
# PURPOSE: Track checkpoint offset, counters and control state per key
# CREATED: 18 OCT 2026
# EXPORTS: PacketSession
# DEPENDENCIES: pydantic
# ============================================================================
"""
Packet Session Model

A PacketSession represents one resumable run that pulls packets from a
paginated endpoint for an (activity_id, application_date) pair.

The session row is the durable resume point: current_offset is the next
pagination offset to fetch and is only advanced after every record of a
packet reached a terminal per-record status.
"""

from datetime import date, datetime
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, computed_field

from core.contracts import SessionKey, SessionStatus


class PacketSession(BaseModel):
    """
    A packet processing session.

    Maps to: packetproc.packet_sessions table

    Lifecycle:
        1. Created ACTIVE by start() (idempotent on the key)
        2. ACTIVE -> PAUSED / CANCELLED by control operations
        3. ACTIVE -> COMPLETED when the endpoint is exhausted
        4. ACTIVE -> FAILED on fetch failure or loop exception
        5. PAUSED / FAILED -> ACTIVE by resume()
    """

    # =========================================================================
    # SQL DDL METADATA (Used by PydanticToSQL generator)
    # =========================================================================
    __sql_table__: ClassVar[str] = "packet_sessions"
    __sql_schema__: ClassVar[str] = "packetproc"
    __sql_primary_key__: ClassVar[List[str]] = ["session_id"]
    __sql_foreign_keys__: ClassVar[Dict[str, str]] = {}
    __sql_unique__: ClassVar[List[tuple]] = [
        ("uq_packet_sessions_key", ["activity_id", "application_date"]),
    ]
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_packet_sessions_activity", ["activity_id"]),
        ("idx_packet_sessions_date", ["application_date"]),
        ("idx_packet_sessions_type", ["activity_type"]),
        ("idx_packet_sessions_status", ["status"]),
        ("idx_packet_sessions_created", ["created_at"]),
        ("idx_packet_sessions_endpoint", ["endpoint_url"]),
        # Stale ACTIVE detection
        ("idx_packet_sessions_last_processed", ["last_processed_at"], "status = 'active'"),
    ]

    # Allowed control transitions. Same-state writes are not transitions.
    ALLOWED_TRANSITIONS: ClassVar[Dict[SessionStatus, FrozenSet[SessionStatus]]] = {
        SessionStatus.ACTIVE: frozenset({
            SessionStatus.PAUSED,
            SessionStatus.COMPLETED,
            SessionStatus.FAILED,
            SessionStatus.CANCELLED,
        }),
        SessionStatus.PAUSED: frozenset({SessionStatus.ACTIVE, SessionStatus.CANCELLED}),
        SessionStatus.FAILED: frozenset({SessionStatus.ACTIVE}),
        SessionStatus.COMPLETED: frozenset(),
        SessionStatus.CANCELLED: frozenset(),
    }

    # Identity
    session_id: str = Field(..., max_length=160, description="Processing id: {activity_id}-{application_date}")
    activity_id: str = Field(..., max_length=128)
    application_date: date

    # Caller-supplied context
    activity_type: Optional[str] = Field(default=None, max_length=100)
    activity_status: Optional[str] = Field(default=None, max_length=50)
    endpoint_url: str = Field(..., max_length=500)
    packet_size: int = Field(default=10, gt=0)

    # Progress (monotonic, owned by the orchestrator loop)
    total_records: int = Field(default=0, ge=0)
    processed_records: int = Field(default=0, ge=0)
    failed_records: int = Field(default=0, ge=0)
    current_offset: int = Field(default=0, ge=0, description="Next pagination offset to fetch")
    packet_count: int = Field(default=0, ge=0, description="Checkpointed packets so far")

    status: SessionStatus = Field(default=SessionStatus.ACTIVE)

    # Diagnostics
    error_message: Optional[str] = Field(default=None, max_length=2000)
    error_category: Optional[str] = Field(default=None, max_length=50)
    failure_reason: Optional[str] = Field(default=None, max_length=500)
    http_status_code: Optional[int] = Field(default=None)
    stack_trace: Optional[str] = Field(default=None)
    total_processing_time_ms: int = Field(default=0, ge=0)
    last_packet_processing_time_ms: Optional[int] = Field(default=None)
    last_processed_record_id: Optional[str] = Field(default=None, max_length=255)
    last_processed_record_data: Optional[Any] = Field(default=None)

    # Headers replayed on every fetch; last response headers for diagnosis
    request_headers: Dict[str, str] = Field(default_factory=dict)
    response_headers: Dict[str, str] = Field(default_factory=dict)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)
    paused_at: Optional[datetime] = Field(default=None)
    cancelled_at: Optional[datetime] = Field(default=None)
    last_processed_at: Optional[datetime] = Field(default=None)

    # Optimistic locking
    version: int = Field(
        default=1,
        ge=1,
        description="Version for optimistic locking - incremented on each update"
    )

    @classmethod
    def for_key(cls, key: SessionKey, **kwargs) -> "PacketSession":
        """Build a new ACTIVE session for an identity key."""
        return cls(
            session_id=key.processing_id,
            activity_id=key.activity_id,
            application_date=key.application_date,
            **kwargs,
        )

    @classmethod
    def sources_for(cls, target: SessionStatus) -> List[SessionStatus]:
        """States from which a transition into target is allowed."""
        return [
            source for source, targets in cls.ALLOWED_TRANSITIONS.items()
            if target in targets
        ]

    @property
    def key(self) -> SessionKey:
        return SessionKey(activity_id=self.activity_id, application_date=self.application_date)

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """Check if session is COMPLETED or CANCELLED."""
        return self.status.is_terminal()

    @computed_field
    @property
    def settled_records(self) -> int:
        """processed + failed; equals the SUCCESS/FAILED record count."""
        return self.processed_records + self.failed_records

    def can_transition_to(self, new_status: SessionStatus) -> bool:
        """
        Validate if a status transition is allowed.

        Valid transitions:
            ACTIVE -> PAUSED, COMPLETED, FAILED, CANCELLED
            PAUSED -> ACTIVE, CANCELLED
            FAILED -> ACTIVE
            COMPLETED, CANCELLED -> (none)
        """
        return new_status in self.ALLOWED_TRANSITIONS.get(self.status, frozenset())


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["PacketSession"]
