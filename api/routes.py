# ============================================================================
# API ROUTES
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints for packet session control and inspection
# CREATED: 18 OCT 2026
# ============================================================================
"""
API Routes

FastAPI routes for the packet processor, mounted under /api/v1.

Control endpoints map the service's boolean results:
- unknown session -> 404
- state does not allow the operation -> 400
- start on a finished session -> 409
"""

import logging
from datetime import date
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from core.contracts import RecordStatus, SessionStatus
from core.models import PacketSession
from services import SessionExistsError
from .schemas import (
    ControlResponse,
    ErrorResponse,
    RecordListResponse,
    RecordResponse,
    SessionListResponse,
    SessionResponse,
    StartRequest,
    StartResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/packet-processing")

# Request headers never replayed to the paginated endpoint
HOP_BY_HOP_HEADERS = frozenset({
    "host", "content-length", "content-type", "connection", "keep-alive",
    "transfer-encoding", "te", "trailer", "upgrade", "proxy-authorization",
    "proxy-authenticate", "accept-encoding",
})

TEST_MODE_HEADERS = {
    "X-Test-Mode": "true",
    "X-Client-Version": "1.0",
    "X-Request-Source": "packet-processor",
}


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# These will be set by the main app at startup

_session_service = None
_orchestrator = None


def set_services(session_service, orchestrator=None):
    """Set service instances for dependency injection."""
    global _session_service, _orchestrator
    _session_service = session_service
    _orchestrator = orchestrator


def get_session_service():
    if _session_service is None:
        raise HTTPException(500, "Services not initialized")
    return _session_service


def _session_list(sessions: List[PacketSession]) -> SessionListResponse:
    return SessionListResponse(
        sessions=[SessionResponse.model_validate(s) for s in sessions],
        count=len(sessions),
    )


def _forwardable(request: Request) -> Dict[str, str]:
    return {
        name: value for name, value in request.headers.items()
        if name.lower() not in HOP_BY_HOP_HEADERS
    }


# ============================================================================
# START
# ============================================================================

async def _start(body: StartRequest, request: Request, extra_headers: Optional[Dict[str, str]] = None) -> StartResponse:
    service = get_session_service()

    headers: Dict[str, str] = {}
    if body.forward_request_headers:
        headers.update(_forwardable(request))
    headers.update(body.headers)
    headers.update(extra_headers or {})

    try:
        processing_id = await service.start(
            endpoint_url=body.endpoint_url,
            activity_id=body.activity_id,
            application_date=body.application_date,
            packet_size=body.packet_size,
            headers=headers,
            activity_type=body.activity_type,
            activity_status=body.activity_status,
        )
    except SessionExistsError as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))

    session = await service.status(body.activity_id, body.application_date)
    return StartResponse(
        processing_id=processing_id,
        activity_id=body.activity_id,
        application_date=body.application_date,
        activity_type=body.activity_type,
        activity_status=body.activity_status,
        endpoint_url=body.endpoint_url,
        packet_size=session.packet_size if session else body.packet_size,
        test_mode=extra_headers is not None,
        headers=headers if extra_headers is not None else None,
    )


@router.post(
    "/start",
    response_model=StartResponse,
    status_code=202,
    tags=["Packet Processing"],
    responses={
        400: {"model": ErrorResponse, "description": "Invalid request"},
        409: {"model": ErrorResponse, "description": "Key holds a finished session"},
    },
)
async def start_processing(body: StartRequest, request: Request):
    """
    Start packet processing for (activity_id, application_date).

    Returns immediately with the processing id. Repeating the call while
    the session is ACTIVE or PAUSED returns the same id.
    """
    logger.info(
        f"Start requested for {body.activity_id} on {body.application_date} "
        f"(endpoint={body.endpoint_url}, packet_size={body.packet_size})"
    )
    return await _start(body, request)


@router.post(
    "/test-headers",
    response_model=StartResponse,
    status_code=202,
    tags=["Packet Processing"],
    responses={409: {"model": ErrorResponse}},
)
async def start_with_test_headers(body: StartRequest, request: Request):
    """Start processing with test marker headers added to every fetch."""
    return await _start(body, request, extra_headers=dict(TEST_MODE_HEADERS))


# ============================================================================
# SESSION QUERIES
# ============================================================================

@router.get("/sessions", response_model=SessionListResponse, tags=["Packet Processing"])
async def list_open_sessions():
    """ACTIVE and PAUSED sessions, oldest first."""
    return _session_list(await get_session_service().list_active_or_paused())


@router.get("/sessions/stale", response_model=SessionListResponse, tags=["Packet Processing"])
async def list_stale_sessions(
    older_than_minutes: Optional[int] = Query(None, ge=1, description="Defaults to PACKET_STALE_AFTER_MINUTES"),
):
    """ACTIVE sessions with no checkpoint recently (for external monitors)."""
    return _session_list(await get_session_service().list_stale(older_than_minutes))


@router.get("/sessions/counts", tags=["Packet Processing"])
async def count_sessions() -> Dict[str, int]:
    """Session counts by status."""
    return await get_session_service().count_by_status()


@router.get("/sessions/by-status/{status}", response_model=SessionListResponse, tags=["Packet Processing"])
async def list_sessions_by_status(status: SessionStatus):
    return _session_list(await get_session_service().list_by_status(status))


@router.get("/sessions/by-endpoint", response_model=SessionListResponse, tags=["Packet Processing"])
async def list_sessions_by_endpoint(endpoint_url: str = Query(..., min_length=1)):
    """ACTIVE sessions fetching from endpoint_url."""
    return _session_list(await get_session_service().list_active_by_endpoint(endpoint_url))


@router.get("/activity/{activity_id}/sessions", response_model=SessionListResponse, tags=["Packet Processing"])
async def list_sessions_by_activity(activity_id: str):
    return _session_list(await get_session_service().list_by_activity(activity_id))


@router.get("/date/{application_date}/sessions", response_model=SessionListResponse, tags=["Packet Processing"])
async def list_sessions_by_date(application_date: date):
    return _session_list(await get_session_service().list_by_date(application_date))


@router.get("/activity-type/{activity_type}/sessions", response_model=SessionListResponse, tags=["Packet Processing"])
async def list_sessions_by_type(activity_type: str):
    return _session_list(await get_session_service().list_by_type(activity_type))


# ============================================================================
# PER-SESSION
# ============================================================================

@router.get(
    "/activity/{activity_id}/date/{application_date}/status",
    response_model=SessionResponse,
    tags=["Packet Processing"],
    responses={404: {"model": ErrorResponse}},
)
async def get_session_status(activity_id: str, application_date: date):
    """Current session state, counters and last error."""
    session = await get_session_service().status(activity_id, application_date)
    if session is None:
        raise HTTPException(404, f"Session not found for activity {activity_id} on {application_date}")
    return SessionResponse.model_validate(session)


@router.get(
    "/activity/{activity_id}/date/{application_date}/records",
    response_model=RecordListResponse,
    tags=["Packet Processing"],
    responses={404: {"model": ErrorResponse}},
)
async def list_session_records(
    activity_id: str,
    application_date: date,
    status: Optional[RecordStatus] = Query(None, description="Filter by record status"),
    packet_number: Optional[int] = Query(None, ge=1),
    limit: int = Query(1000, ge=1, le=10000),
):
    """Records of a session in fetch order."""
    service = get_session_service()
    records = await service.list_records(
        activity_id, application_date, status=status, packet_number=packet_number, limit=limit
    )
    if records is None:
        raise HTTPException(404, f"Session not found for activity {activity_id} on {application_date}")

    counts = await service.record_counts(activity_id, application_date) or {}
    return RecordListResponse(
        session_id=f"{activity_id}-{application_date.isoformat()}",
        records=[RecordResponse.model_validate(r) for r in records],
        count=len(records),
        status_counts=counts,
    )


async def _control(operation: str, activity_id: str, application_date: date) -> ControlResponse:
    service = get_session_service()
    success = await getattr(service, operation)(activity_id, application_date)
    session = await service.status(activity_id, application_date)

    if session is None:
        raise HTTPException(404, f"Session not found for activity {activity_id} on {application_date}")
    if not success:
        raise HTTPException(
            400,
            f"Cannot {operation.replace('_', ' ')} session {session.session_id} "
            f"in status: {session.status.value}",
        )

    logger.info(f"{operation} accepted for {session.session_id} (now {session.status.value})")
    return ControlResponse(
        activity_id=activity_id,
        application_date=application_date,
        success=True,
        status=session.status,
    )


@router.post(
    "/activity/{activity_id}/date/{application_date}/pause",
    response_model=ControlResponse,
    tags=["Packet Processing"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def pause_session(activity_id: str, application_date: date):
    """ACTIVE -> PAUSED. The loop stops after its current packet."""
    return await _control("pause", activity_id, application_date)


@router.post(
    "/activity/{activity_id}/date/{application_date}/resume",
    response_model=ControlResponse,
    tags=["Packet Processing"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def resume_session(activity_id: str, application_date: date):
    """PAUSED / FAILED -> ACTIVE, continuing from the checkpoint."""
    return await _control("resume", activity_id, application_date)


@router.post(
    "/activity/{activity_id}/date/{application_date}/cancel",
    response_model=ControlResponse,
    tags=["Packet Processing"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def cancel_session(activity_id: str, application_date: date):
    """ACTIVE / PAUSED -> CANCELLED."""
    return await _control("cancel", activity_id, application_date)


@router.post(
    "/activity/{activity_id}/date/{application_date}/retry",
    response_model=ControlResponse,
    tags=["Packet Processing"],
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def retry_failed_records(activity_id: str, application_date: date):
    """Reset retryable FAILED records to PENDING (resumes a PAUSED session)."""
    return await _control("retry_failed_records", activity_id, application_date)


# ============================================================================
# ORCHESTRATOR
# ============================================================================

@router.get("/orchestrator/stats", tags=["Orchestrator"])
async def get_orchestrator_stats():
    """Loop counters: running loops, packets, records, failures."""
    if _orchestrator is None:
        raise HTTPException(500, "Orchestrator not initialized")
    return _orchestrator.stats
