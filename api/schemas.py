# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# CREATED: 18 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the packet processing API.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.contracts import RecordStatus, SessionStatus


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class StartRequest(BaseModel):
    """Request to start (or look up) packet processing for a key."""
    endpoint_url: str = Field(..., min_length=1, max_length=500, description="Paginated endpoint")
    activity_id: str = Field(..., min_length=1, max_length=128)
    application_date: date
    packet_size: int = Field(default=10, description="Records per packet; non-positive uses the default")
    activity_type: Optional[str] = Field(None, max_length=100)
    activity_status: Optional[str] = Field(None, max_length=50)
    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Headers sent with every fetch",
    )
    forward_request_headers: bool = Field(
        default=False,
        description="Also replay this request's own headers (hop-by-hop headers excluded)",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "endpoint_url": "https://api.example.com/records",
                    "activity_id": "act-1",
                    "application_date": "2024-01-01",
                    "packet_size": 10,
                    "activity_type": "reconciliation",
                    "headers": {"Authorization": "Bearer <token>"},
                }
            ]
        }
    }


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class StartResponse(BaseModel):
    """Start accepted; processing continues in the background."""
    processing_id: str
    activity_id: str
    application_date: date
    activity_type: Optional[str] = None
    activity_status: Optional[str] = None
    endpoint_url: str
    packet_size: int
    status: str = "STARTED"
    test_mode: bool = False
    headers: Optional[Dict[str, str]] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class SessionResponse(BaseModel):
    """Packet session response."""
    session_id: str
    activity_id: str
    application_date: date
    activity_type: Optional[str] = None
    activity_status: Optional[str] = None
    endpoint_url: str
    packet_size: int
    total_records: int
    processed_records: int
    failed_records: int
    current_offset: int
    packet_count: int
    status: SessionStatus
    error_message: Optional[str] = None
    error_category: Optional[str] = None
    http_status_code: Optional[int] = None
    total_processing_time_ms: int = 0
    last_packet_processing_time_ms: Optional[int] = None
    last_processed_record_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None
    version: int = 1

    model_config = {"from_attributes": True}


class SessionListResponse(BaseModel):
    """List of sessions response."""
    sessions: List[SessionResponse]
    count: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ControlResponse(BaseModel):
    """Result of pause / resume / cancel / retry."""
    activity_id: str
    application_date: date
    success: bool
    status: Optional[SessionStatus] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class RecordResponse(BaseModel):
    """Packet record response."""
    record_key: str
    record_id: str
    packet_number: int
    record_index: int
    status: RecordStatus
    record_data: Optional[Any] = None
    error_message: Optional[str] = None
    error_category: Optional[str] = None
    failure_reason: Optional[str] = None
    processing_time_ms: Optional[int] = None
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime
    processed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    retry_scheduled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class RecordListResponse(BaseModel):
    """Records of one session."""
    session_id: str
    records: List[RecordResponse]
    count: int
    status_counts: Dict[str, int] = {}


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[str] = None
    processing_id: Optional[str] = None
