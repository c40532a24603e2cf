# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core module initialization
# PURPOSE: Export core contracts, models, and schema utilities
# CREATED: 18 OCT 2026
# ============================================================================

from core.contracts import SessionStatus, RecordStatus, FetchErrorCategory, SessionKey
from core.models import (
    PacketSession,
    PacketRecord,
    PacketMetadata,
    PageResult,
    PacketCheckpoint,
)
from core.schema import PydanticToSQL

__all__ = [
    # Enums / identity
    "SessionStatus",
    "RecordStatus",
    "FetchErrorCategory",
    "SessionKey",
    # Models
    "PacketSession",
    "PacketRecord",
    "PacketMetadata",
    "PageResult",
    "PacketCheckpoint",
    # Schema
    "PydanticToSQL",
]
