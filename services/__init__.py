# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Business logic layer
# PURPOSE: Session control and failure classification
# CREATED: 18 OCT 2026
# ============================================================================
"""
Services Module

Usage:
    from services import SessionService, ErrorClassifier

    service = SessionService(session_repo, record_repo, orchestrator)
    processing_id = await service.start(endpoint_url, "act-1", date(2024, 1, 1))
"""

from .error_classifier import Classification, ErrorCategory, ErrorClassifier, ErrorClassifierProtocol
from .session_service import SessionExistsError, SessionService

__all__ = [
    "SessionService",
    "SessionExistsError",
    "ErrorClassifier",
    "ErrorClassifierProtocol",
    "ErrorCategory",
    "Classification",
]
