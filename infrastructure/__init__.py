# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Infrastructure - Schema deployment and outbound HTTP
# PURPOSE: Database bootstrap and the pagination client
# CREATED: 18 OCT 2026
# ============================================================================
"""
Infrastructure module for the packet processor.

Provides:
- DatabaseInitializer: Bootstrap the packetproc schema from Pydantic models
- PaginationClient: Fetch packets from paginated HTTP endpoints

Usage:
    from infrastructure import DatabaseInitializer, PaginationClient

    result = await DatabaseInitializer(pool).initialize_all()

    async with PaginationClient() as client:
        page = await client.fetch_page(url, offset=0, limit=10)
"""

from infrastructure.database_initializer import (
    DatabaseInitializer,
    InitializationResult,
    StepResult,
)
from infrastructure.pagination_client import (
    PaginationClient,
    ResponseProcessingError,
    parse_metadata,
    parse_records,
)

__all__ = [
    "DatabaseInitializer",
    "InitializationResult",
    "StepResult",
    "PaginationClient",
    "ResponseProcessingError",
    "parse_metadata",
    "parse_records",
]
