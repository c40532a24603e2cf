# ============================================================================
# PACKET MODELS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core model - Fetch results and packet checkpoints
# PURPOSE: Data passed between pagination client, loop and session store
# CREATED: 18 OCT 2026
# EXPORTS: PacketMetadata, PageResult, PacketCheckpoint
# DEPENDENCIES: pydantic
# ============================================================================
"""
Packet Models

PageResult is what the pagination client returns for one fetch; it never
raises, failures are carried as success=False with a category.

PacketCheckpoint is the delta the loop writes to the session after every
record of a packet has settled. The store applies it as increments so a
concurrent control operation on the same row is never overwritten.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.contracts import FetchErrorCategory


class PacketMetadata(BaseModel):
    """Pagination metadata read from response headers (0 / False when absent)."""
    total_records: int = 0
    has_more_records: bool = False
    next_offset: int = 0
    current_offset: int = 0
    packet_size: int = 0
    server_processing_time_ms: int = 0
    server_timestamp: Optional[str] = None


class PageResult(BaseModel):
    """
    Result of one pagination fetch.

    has_more_records and next_offset are resolved values: header first,
    then the body-derived fallback. has_more_records is None only when a
    producer cannot tell; the loop then compares the count to the packet size.
    """
    success: bool = True
    records: List[Any] = Field(default_factory=list)

    endpoint_url: str = ""
    offset: int = 0
    limit: int = 0

    total_records: int = 0
    has_more_records: Optional[bool] = None
    next_offset: int = 0
    metadata: Optional[PacketMetadata] = None

    http_status_code: Optional[int] = None
    response_headers: Dict[str, str] = Field(default_factory=dict)
    attempts: int = 1
    fetched_at: datetime = Field(default_factory=datetime.utcnow)

    # Failure detail
    error_message: Optional[str] = None
    error_category: Optional[FetchErrorCategory] = None

    @property
    def records_fetched(self) -> int:
        return len(self.records)

    @classmethod
    def failure(
        cls,
        endpoint_url: str,
        offset: int,
        limit: int,
        error_message: str,
        error_category: FetchErrorCategory,
        http_status_code: Optional[int] = None,
        attempts: int = 1,
    ) -> "PageResult":
        """Create a failed fetch result."""
        return cls(
            success=False,
            endpoint_url=endpoint_url,
            offset=offset,
            limit=limit,
            error_message=error_message,
            error_category=error_category,
            http_status_code=http_status_code,
            attempts=attempts,
        )


class PacketCheckpoint(BaseModel):
    """Progress delta for one settled packet."""
    records_fetched: int = Field(default=0, ge=0, description="Added to current_offset")
    processed_delta: int = Field(default=0, ge=0)
    failed_delta: int = Field(default=0, ge=0)
    total_records: int = Field(default=0, ge=0, description="Lower bound for total_records")

    last_processed_record_id: Optional[str] = None
    last_processed_record_data: Optional[Any] = None
    packet_processing_time_ms: int = Field(default=0, ge=0)

    http_status_code: Optional[int] = None
    response_headers: Optional[Dict[str, str]] = None
    processed_at: datetime = Field(default_factory=datetime.utcnow)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["PacketMetadata", "PageResult", "PacketCheckpoint"]
