# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# CREATED: 18 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

Models define SQL metadata via __sql_* ClassVar attributes for DDL generation:
    - Pydantic models define structure
    - PydanticToSQL reads __sql_* metadata
    - PostgreSQL schema generated from models
"""

from core.models.session import PacketSession
from core.models.record import PacketRecord
from core.models.packet import PacketMetadata, PageResult, PacketCheckpoint

__all__ = [
    # Session
    "PacketSession",
    # Record
    "PacketRecord",
    # Fetch / checkpoint
    "PacketMetadata",
    "PageResult",
    "PacketCheckpoint",
]
