# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for packet session control
# CREATED: 18 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the packet processor.
"""

from .routes import router, set_services
from .schemas import (
    StartRequest,
    StartResponse,
    SessionResponse,
    RecordResponse,
    ControlResponse,
)

__all__ = [
    "router",
    "set_services",
    "StartRequest",
    "StartResponse",
    "SessionResponse",
    "RecordResponse",
    "ControlResponse",
]
