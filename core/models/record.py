# ============================================================================
# PACKET RECORD MODEL
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core model - One dispatched record within a session
# PURPOSE: Per-record status, payload snapshot and retry bookkeeping
# CREATED: 18 OCT 2026
# EXPORTS: PacketRecord
# DEPENDENCIES: pydantic
# ============================================================================
"""
Packet Record Model

One row per record fetched from the endpoint, created PENDING the instant
it is fetched and moved PROCESSING -> SUCCESS / FAILED by the loop.

Ordering within a session is (packet_number, record_index); packet numbers
are 1-based and continue across resume.
"""

import uuid
from datetime import date, datetime
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from core.contracts import RecordStatus


def _new_record_key() -> str:
    return uuid.uuid4().hex


class PacketRecord(BaseModel):
    """
    A single record dispatched to the record processor.

    Maps to: packetproc.packet_records table
    """

    # =========================================================================
    # SQL DDL METADATA (Used by PydanticToSQL generator)
    # =========================================================================
    __sql_table__: ClassVar[str] = "packet_records"
    __sql_schema__: ClassVar[str] = "packetproc"
    __sql_primary_key__: ClassVar[List[str]] = ["record_key"]
    __sql_foreign_keys__: ClassVar[Dict[str, str]] = {
        "session_id": "packetproc.packet_sessions(session_id)"
    }
    __sql_unique__: ClassVar[List[tuple]] = []
    __sql_indexes__: ClassVar[List[tuple]] = [
        ("idx_packet_records_session", ["session_id"]),
        ("idx_packet_records_status", ["status"]),
        ("idx_packet_records_order", ["session_id", "packet_number", "record_index"]),
        ("idx_packet_records_identity", ["activity_id", "application_date", "record_id"]),
        ("idx_packet_records_retryable", ["session_id"], "status = 'failed'"),
    ]

    record_key: str = Field(default_factory=_new_record_key, max_length=32)
    session_id: str = Field(..., max_length=160)
    activity_id: str = Field(..., max_length=128)
    application_date: date
    record_id: str = Field(..., max_length=255)

    packet_number: int = Field(..., ge=1)
    record_index: int = Field(..., ge=0)

    status: RecordStatus = Field(default=RecordStatus.PENDING)
    record_data: Optional[Any] = Field(default=None)

    # Failure detail
    error_message: Optional[str] = Field(default=None, max_length=2000)
    error_category: Optional[str] = Field(default=None, max_length=50)
    failure_reason: Optional[str] = Field(default=None, max_length=500)
    stack_trace: Optional[str] = Field(default=None)
    processing_time_ms: Optional[int] = Field(default=None)

    # Retry bookkeeping (max_retries copied from config at creation)
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=3, ge=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    processed_at: Optional[datetime] = Field(default=None)
    failed_at: Optional[datetime] = Field(default=None)
    retry_scheduled_at: Optional[datetime] = Field(default=None)

    @computed_field
    @property
    def can_retry(self) -> bool:
        """FAILED with retry budget left."""
        return self.status == RecordStatus.FAILED and self.retry_count < self.max_retries

    def mark_processing(self) -> None:
        if self.status != RecordStatus.PENDING:
            raise ValueError(f"Cannot start processing record in {self.status.value}")
        self.status = RecordStatus.PROCESSING
        self.processed_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()

    def mark_success(self, processing_time_ms: int) -> None:
        if self.status != RecordStatus.PROCESSING:
            raise ValueError(f"Cannot mark record SUCCESS from {self.status.value}")
        self.status = RecordStatus.SUCCESS
        self.processing_time_ms = processing_time_ms
        self.error_message = None
        self.error_category = None
        self.failure_reason = None
        self.stack_trace = None
        self.updated_at = datetime.utcnow()

    def mark_failed(
        self,
        error_message: str,
        error_category: str,
        processing_time_ms: int,
        stack_trace: Optional[str] = None,
    ) -> None:
        if self.status != RecordStatus.PROCESSING:
            raise ValueError(f"Cannot mark record FAILED from {self.status.value}")
        self.status = RecordStatus.FAILED
        self.error_message = error_message[:2000]
        self.error_category = error_category
        self.failure_reason = f"Processing error: {error_message}"[:500]
        self.processing_time_ms = processing_time_ms
        self.stack_trace = stack_trace
        self.failed_at = datetime.utcnow()
        self.updated_at = datetime.utcnow()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["PacketRecord"]
