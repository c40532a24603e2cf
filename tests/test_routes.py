# ============================================================================
# PACKET PROCESSING ROUTES TESTS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Tests - HTTP control API
# PURPOSE: Verify status codes, request mapping and response bodies
# CREATED: 18 OCT 2026
# ============================================================================
"""
Packet Processing Routes Tests

Tests api/routes.py with FastAPI TestClient and a mocked SessionService.

Run with:
    pytest tests/test_routes.py -v
"""

from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes import TEST_MODE_HEADERS, router, set_services
from core.contracts import RecordStatus, SessionKey, SessionStatus
from services import SessionExistsError


BASE = "/api/v1/packet-processing"
SESSION_PATH = f"{BASE}/activity/act-1/date/2024-01-01"

START_BODY = {
    "endpoint_url": "https://api.example.com/records",
    "activity_id": "act-1",
    "application_date": "2024-01-01",
    "packet_size": 10,
}


# ============================================================================
# FIXTURES
# ============================================================================

def _make_test_app(session_service, orchestrator=None):
    """Create a test FastAPI app with packet routes and mocked services."""
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")
    set_services(session_service, orchestrator=orchestrator)
    return app


@pytest.fixture
def svc():
    return AsyncMock()


@pytest.fixture
def client(svc):
    return TestClient(_make_test_app(svc))


# ============================================================================
# START
# ============================================================================

class TestStart:
    """POST /start and /test-headers."""

    def test_start_accepted(self, svc, client, make_session):
        svc.start = AsyncMock(return_value="act-1-2024-01-01")
        svc.status = AsyncMock(return_value=make_session())

        resp = client.post(f"{BASE}/start", json=START_BODY)

        assert resp.status_code == 202
        data = resp.json()
        assert data["processing_id"] == "act-1-2024-01-01"
        assert data["status"] == "STARTED"
        assert data["packet_size"] == 10
        assert data["test_mode"] is False
        assert data["headers"] is None

        kwargs = svc.start.call_args.kwargs
        assert kwargs["activity_id"] == "act-1"
        assert kwargs["application_date"] == date(2024, 1, 1)
        assert kwargs["headers"] == {}

    def test_caller_headers_passed(self, svc, client, make_session):
        svc.start = AsyncMock(return_value="act-1-2024-01-01")
        svc.status = AsyncMock(return_value=make_session())

        client.post(f"{BASE}/start", json={**START_BODY, "headers": {"Authorization": "Bearer t"}})

        assert svc.start.call_args.kwargs["headers"] == {"Authorization": "Bearer t"}

    def test_forward_request_headers_drops_hop_by_hop(self, svc, client, make_session):
        svc.start = AsyncMock(return_value="act-1-2024-01-01")
        svc.status = AsyncMock(return_value=make_session())

        client.post(
            f"{BASE}/start",
            json={**START_BODY, "forward_request_headers": True},
            headers={"X-Trace-Id": "abc", "Connection": "keep-alive"},
        )

        headers = {k.lower(): v for k, v in svc.start.call_args.kwargs["headers"].items()}
        assert headers["x-trace-id"] == "abc"
        assert "host" not in headers
        assert "connection" not in headers
        assert "content-length" not in headers

    def test_finished_session_conflict(self, svc, client):
        key = SessionKey(activity_id="act-1", application_date=date(2024, 1, 1))
        svc.start = AsyncMock(side_effect=SessionExistsError(key, SessionStatus.COMPLETED))

        resp = client.post(f"{BASE}/start", json=START_BODY)

        assert resp.status_code == 409
        assert "completed" in resp.json()["detail"]

    def test_invalid_input(self, svc, client):
        svc.start = AsyncMock(side_effect=ValueError("endpoint_url is required"))

        resp = client.post(f"{BASE}/start", json={**START_BODY, "endpoint_url": " "})

        assert resp.status_code == 400

    def test_missing_required_field(self, client):
        body = dict(START_BODY)
        del body["endpoint_url"]

        resp = client.post(f"{BASE}/start", json=body)

        assert resp.status_code == 422

    def test_test_headers_added(self, svc, client, make_session):
        svc.start = AsyncMock(return_value="act-1-2024-01-01")
        svc.status = AsyncMock(return_value=make_session())

        resp = client.post(f"{BASE}/test-headers", json={**START_BODY, "headers": {"X-Custom": "1"}})

        assert resp.status_code == 202
        data = resp.json()
        assert data["test_mode"] is True
        assert data["headers"]["X-Custom"] == "1"
        for name, value in TEST_MODE_HEADERS.items():
            assert data["headers"][name] == value
        assert svc.start.call_args.kwargs["headers"]["X-Test-Mode"] == "true"

    def test_services_not_initialized(self):
        app = FastAPI()
        app.include_router(router, prefix="/api/v1")
        set_services(None)

        resp = TestClient(app).post(f"{BASE}/start", json=START_BODY)

        assert resp.status_code == 500


# ============================================================================
# QUERIES
# ============================================================================

class TestQueries:
    """Session status, lists and records."""

    def test_status(self, svc, client, make_session):
        svc.status = AsyncMock(return_value=make_session(current_offset=20, processed_records=20, packet_count=2))

        resp = client.get(f"{SESSION_PATH}/status")

        assert resp.status_code == 200
        data = resp.json()
        assert data["session_id"] == "act-1-2024-01-01"
        assert data["status"] == "active"
        assert data["current_offset"] == 20
        assert data["packet_count"] == 2

    def test_status_unknown(self, svc, client):
        svc.status = AsyncMock(return_value=None)

        resp = client.get(f"{SESSION_PATH}/status")

        assert resp.status_code == 404

    def test_bad_date(self, client):
        resp = client.get(f"{BASE}/activity/act-1/date/not-a-date/status")
        assert resp.status_code == 422

    def test_open_sessions(self, svc, client, make_session):
        svc.list_active_or_paused = AsyncMock(return_value=[make_session(), make_session(SessionStatus.PAUSED)])

        resp = client.get(f"{BASE}/sessions")

        assert resp.status_code == 200
        assert resp.json()["count"] == 2

    def test_stale_sessions(self, svc, client):
        svc.list_stale = AsyncMock(return_value=[])

        resp = client.get(f"{BASE}/sessions/stale", params={"older_than_minutes": 15})

        assert resp.status_code == 200
        svc.list_stale.assert_awaited_once_with(15)

    def test_counts(self, svc, client):
        svc.count_by_status = AsyncMock(return_value={"active": 2, "paused": 0})

        resp = client.get(f"{BASE}/sessions/counts")

        assert resp.json() == {"active": 2, "paused": 0}

    def test_by_activity_date_and_type(self, svc, client, make_session):
        svc.list_by_activity = AsyncMock(return_value=[make_session()])
        svc.list_by_date = AsyncMock(return_value=[make_session()])
        svc.list_by_type = AsyncMock(return_value=[])

        assert client.get(f"{BASE}/activity/act-1/sessions").json()["count"] == 1
        assert client.get(f"{BASE}/date/2024-01-01/sessions").json()["count"] == 1
        assert client.get(f"{BASE}/activity-type/recon/sessions").json()["count"] == 0
        svc.list_by_date.assert_awaited_once_with(date(2024, 1, 1))

    def test_by_status_and_endpoint(self, svc, client, make_session):
        svc.list_by_status = AsyncMock(return_value=[make_session(SessionStatus.FAILED)])
        svc.list_active_by_endpoint = AsyncMock(return_value=[])

        resp = client.get(f"{BASE}/sessions/by-status/failed")
        assert resp.json()["sessions"][0]["status"] == "failed"
        svc.list_by_status.assert_awaited_once_with(SessionStatus.FAILED)

        resp = client.get(f"{BASE}/sessions/by-endpoint", params={"endpoint_url": "https://api.example.com/records"})
        assert resp.json()["count"] == 0
        svc.list_active_by_endpoint.assert_awaited_once_with("https://api.example.com/records")

        assert client.get(f"{BASE}/sessions/by-status/bogus").status_code == 422

    def test_records(self, svc, client, make_record):
        svc.list_records = AsyncMock(return_value=[
            make_record(1, 0, RecordStatus.SUCCESS),
            make_record(1, 1, RecordStatus.FAILED, error_category="VALIDATION_ERROR"),
        ])
        svc.record_counts = AsyncMock(return_value={"success": 1, "failed": 1})

        resp = client.get(f"{SESSION_PATH}/records", params={"status": "failed", "packet_number": 1})

        assert resp.status_code == 200
        data = resp.json()
        assert data["session_id"] == "act-1-2024-01-01"
        assert data["count"] == 2
        assert data["records"][1]["error_category"] == "VALIDATION_ERROR"
        assert data["status_counts"] == {"success": 1, "failed": 1}

        kwargs = svc.list_records.call_args.kwargs
        assert kwargs["status"] == RecordStatus.FAILED
        assert kwargs["packet_number"] == 1

    def test_records_unknown_session(self, svc, client):
        svc.list_records = AsyncMock(return_value=None)

        resp = client.get(f"{SESSION_PATH}/records")

        assert resp.status_code == 404


# ============================================================================
# CONTROL
# ============================================================================

class TestControl:
    """pause / resume / cancel / retry."""

    @pytest.mark.parametrize("path, method, status", [
        ("pause", "pause", SessionStatus.PAUSED),
        ("resume", "resume", SessionStatus.ACTIVE),
        ("cancel", "cancel", SessionStatus.CANCELLED),
        ("retry", "retry_failed_records", SessionStatus.COMPLETED),
    ])
    def test_accepted(self, svc, client, make_session, path, method, status):
        setattr(svc, method, AsyncMock(return_value=True))
        svc.status = AsyncMock(return_value=make_session(status))

        resp = client.post(f"{SESSION_PATH}/{path}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["status"] == status.value
        getattr(svc, method).assert_awaited_once_with("act-1", date(2024, 1, 1))

    def test_rejected_transition(self, svc, client, make_session):
        svc.pause = AsyncMock(return_value=False)
        svc.status = AsyncMock(return_value=make_session(SessionStatus.COMPLETED))

        resp = client.post(f"{SESSION_PATH}/pause")

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot pause session act-1-2024-01-01 in status: completed"

    def test_retry_on_cancelled(self, svc, client, make_session):
        svc.retry_failed_records = AsyncMock(return_value=False)
        svc.status = AsyncMock(return_value=make_session(SessionStatus.CANCELLED))

        resp = client.post(f"{SESSION_PATH}/retry")

        assert resp.status_code == 400
        assert "cancelled" in resp.json()["detail"]

    def test_unknown_session(self, svc, client):
        svc.cancel = AsyncMock(return_value=False)
        svc.status = AsyncMock(return_value=None)

        resp = client.post(f"{SESSION_PATH}/cancel")

        assert resp.status_code == 404


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class TestOrchestratorStats:

    def test_stats(self, svc):
        orchestrator = MagicMock()
        orchestrator.stats = {"running": True, "running_loops": 1}
        client = TestClient(_make_test_app(svc, orchestrator))

        resp = client.get(f"{BASE}/orchestrator/stats")

        assert resp.status_code == 200
        assert resp.json()["running_loops"] == 1

    def test_stats_without_orchestrator(self, client):
        resp = client.get(f"{BASE}/orchestrator/stats")
        assert resp.status_code == 500
