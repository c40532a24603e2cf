# ============================================================================
# MODEL TESTS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Tests - Session / record models and configuration defaults
# PURPOSE: Verify state machines, identity and derived fields
# CREATED: 18 OCT 2026
# ============================================================================
"""
Model Tests

Covers:
1. SessionKey identity and processing id
2. PacketSession transition table
3. PacketRecord status progression and retry budget
4. Configuration defaults and environment overrides

Run with:
    pytest tests/test_models.py -v
"""

from datetime import date

import pytest
from pydantic import ValidationError

from core.config import PacketDefaults, get_defaults, reset_defaults
from core.contracts import RecordStatus, SessionKey, SessionStatus
from core.models import PacketCheckpoint, PacketSession


# ============================================================================
# IDENTITY
# ============================================================================

class TestSessionKey:
    """(activity_id, application_date) identifies a session."""

    def test_processing_id(self):
        key = SessionKey(activity_id="act-1", application_date=date(2024, 1, 1))
        assert key.processing_id == "act-1-2024-01-01"
        assert str(key) == "act-1-2024-01-01"

    def test_equal_keys_hash_equal(self):
        a = SessionKey(activity_id="act-1", application_date=date(2024, 1, 1))
        b = SessionKey(activity_id="act-1", application_date=date(2024, 1, 1))
        assert a == b
        assert len({a, b}) == 1

    def test_empty_activity_rejected(self):
        with pytest.raises(ValidationError):
            SessionKey(activity_id="", application_date=date(2024, 1, 1))

    def test_for_key_builds_active_session(self, key):
        session = PacketSession.for_key(key, endpoint_url="https://api.example.com/records")
        assert session.session_id == "act-1-2024-01-01"
        assert session.status == SessionStatus.ACTIVE
        assert session.key == key
        assert session.current_offset == 0
        assert session.packet_count == 0


# ============================================================================
# SESSION STATE MACHINE
# ============================================================================

class TestSessionTransitions:
    """Allowed control transitions."""

    @pytest.mark.parametrize("source, target", [
        (SessionStatus.ACTIVE, SessionStatus.PAUSED),
        (SessionStatus.ACTIVE, SessionStatus.COMPLETED),
        (SessionStatus.ACTIVE, SessionStatus.FAILED),
        (SessionStatus.ACTIVE, SessionStatus.CANCELLED),
        (SessionStatus.PAUSED, SessionStatus.ACTIVE),
        (SessionStatus.PAUSED, SessionStatus.CANCELLED),
        (SessionStatus.FAILED, SessionStatus.ACTIVE),
    ])
    def test_allowed(self, make_session, source, target):
        assert make_session(source).can_transition_to(target)

    @pytest.mark.parametrize("source, target", [
        (SessionStatus.PAUSED, SessionStatus.PAUSED),
        (SessionStatus.PAUSED, SessionStatus.COMPLETED),
        (SessionStatus.FAILED, SessionStatus.CANCELLED),
        (SessionStatus.FAILED, SessionStatus.PAUSED),
        (SessionStatus.COMPLETED, SessionStatus.ACTIVE),
        (SessionStatus.CANCELLED, SessionStatus.ACTIVE),
        (SessionStatus.ACTIVE, SessionStatus.ACTIVE),
    ])
    def test_rejected(self, make_session, source, target):
        assert not make_session(source).can_transition_to(target)

    def test_sources_for(self):
        assert set(PacketSession.sources_for(SessionStatus.ACTIVE)) == {SessionStatus.PAUSED, SessionStatus.FAILED}
        assert set(PacketSession.sources_for(SessionStatus.CANCELLED)) == {SessionStatus.ACTIVE, SessionStatus.PAUSED}
        assert PacketSession.sources_for(SessionStatus.COMPLETED) == [SessionStatus.ACTIVE]

    def test_terminal_and_open(self):
        assert SessionStatus.COMPLETED.is_terminal()
        assert SessionStatus.CANCELLED.is_terminal()
        assert not SessionStatus.FAILED.is_terminal()
        assert SessionStatus.ACTIVE.is_open()
        assert SessionStatus.PAUSED.is_open()
        assert not SessionStatus.FAILED.is_open()

    def test_settled_records(self, make_session):
        session = make_session(processed_records=20, failed_records=3)
        assert session.settled_records == 23

    def test_packet_size_must_be_positive(self, make_session):
        with pytest.raises(ValidationError):
            make_session(packet_size=0)


# ============================================================================
# RECORD STATE MACHINE
# ============================================================================

class TestRecordStatus:
    """PENDING -> PROCESSING -> SUCCESS / FAILED."""

    def test_success_path(self, make_record):
        record = make_record(1, 0)
        record.mark_processing()
        assert record.status == RecordStatus.PROCESSING
        assert record.processed_at is not None

        record.mark_success(12)
        assert record.status == RecordStatus.SUCCESS
        assert record.processing_time_ms == 12
        assert record.error_message is None

    def test_failure_path(self, make_record):
        record = make_record(1, 0)
        record.mark_processing()
        record.mark_failed("Missing field: amount", "VALIDATION_ERROR", 5, stack_trace="tb")

        assert record.status == RecordStatus.FAILED
        assert record.error_category == "VALIDATION_ERROR"
        assert record.failure_reason == "Processing error: Missing field: amount"
        assert record.stack_trace == "tb"
        assert record.failed_at is not None
        assert record.can_retry

    def test_long_error_truncated(self, make_record):
        record = make_record(1, 0, RecordStatus.PROCESSING)
        record.mark_failed("x" * 5000, "PERMANENT_ERROR", 1)
        assert len(record.error_message) == 2000
        assert len(record.failure_reason) == 500

    def test_cannot_skip_processing(self, make_record):
        record = make_record(1, 0)
        with pytest.raises(ValueError):
            record.mark_success(1)
        with pytest.raises(ValueError):
            record.mark_failed("boom", "SYSTEM_ERROR", 1)

    def test_cannot_process_twice(self, make_record):
        record = make_record(1, 0, RecordStatus.SUCCESS)
        with pytest.raises(ValueError):
            record.mark_processing()

    @pytest.mark.parametrize("status, retry_count, max_retries, expected", [
        (RecordStatus.FAILED, 0, 3, True),
        (RecordStatus.FAILED, 2, 3, True),
        (RecordStatus.FAILED, 3, 3, False),
        (RecordStatus.FAILED, 0, 0, False),
        (RecordStatus.SUCCESS, 0, 3, False),
        (RecordStatus.SKIPPED, 0, 3, False),
    ])
    def test_can_retry(self, make_record, status, retry_count, max_retries, expected):
        record = make_record(1, 0, status, retry_count=retry_count, max_retries=max_retries)
        assert record.can_retry is expected

    def test_terminal_statuses(self):
        assert RecordStatus.SUCCESS.is_terminal()
        assert RecordStatus.FAILED.is_terminal()
        assert not RecordStatus.SKIPPED.is_terminal()
        assert not RecordStatus.PENDING.is_terminal()


class TestPacketCheckpoint:
    def test_defaults(self):
        checkpoint = PacketCheckpoint(records_fetched=10, processed_delta=9, failed_delta=1)
        assert checkpoint.records_fetched == 10
        assert checkpoint.last_processed_record_id is None
        assert checkpoint.response_headers is None

    def test_negative_deltas_rejected(self):
        with pytest.raises(ValidationError):
            PacketCheckpoint(processed_delta=-1)


# ============================================================================
# CONFIGURATION
# ============================================================================

class TestDefaults:
    """Environment overrides and packet size resolution."""

    @pytest.mark.parametrize("requested, expected", [(None, 10), (0, 10), (-1, 10), (1, 1), (500, 500)])
    def test_resolve_packet_size(self, requested, expected):
        assert PacketDefaults().resolve_packet_size(requested) == expected

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PACKET_DEFAULT_SIZE", "25")
        monkeypatch.setenv("PACKET_MAX_RETRIES", "5")
        monkeypatch.setenv("PACKET_RESUME_ACTIVE_ON_STARTUP", "true")
        monkeypatch.setenv("FETCH_RETRY_MAX_ATTEMPTS", "2")
        monkeypatch.setenv("HTTP_READ_TIMEOUT_MS", "1000")
        reset_defaults()
        try:
            defaults = get_defaults()
            assert defaults.packet.default_packet_size == 25
            assert defaults.packet.max_retries == 5
            assert defaults.packet.resume_active_on_startup is True
            assert defaults.fetch_retry.max_attempts == 2
            assert defaults.http.read_timeout_ms == 1000
        finally:
            reset_defaults()

    def test_builtin_values(self):
        defaults = PacketDefaults()
        assert defaults.default_packet_size == 10
        assert defaults.max_retries == 3
        assert defaults.retry_delay_ms == 5000
        assert defaults.resume_active_on_startup is False
