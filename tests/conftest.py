# ============================================================================
# TEST FIXTURES - IN-MEMORY STORE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Tests - Shared fixtures
# PURPOSE: In-memory session/record repositories, fake endpoint, processors
# CREATED: 18 OCT 2026
# ============================================================================
"""
Shared test fixtures.

InMemorySessionRepository / InMemoryRecordRepository mirror the
psycopg repositories method for method, including compare-and-set
transitions, increment-only checkpoints and the failed counter
adjustment on retry reset. Rows are stored as copies so tests see only
what was written.
"""

from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Set

import pytest

from core.config import PacketDefaults
from core.contracts import FetchErrorCategory, RecordStatus, SessionKey, SessionStatus
from core.models import PacketCheckpoint, PacketMetadata, PacketRecord, PacketSession, PageResult
from processors import ProcessResult, RecordContext, RecordProcessor


_STAMPS = {
    SessionStatus.PAUSED: "paused_at",
    SessionStatus.CANCELLED: "cancelled_at",
    SessionStatus.COMPLETED: "completed_at",
}


# ============================================================================
# REPOSITORIES
# ============================================================================

class InMemorySessionRepository:
    """Same surface as repositories.SessionRepository."""

    def __init__(self):
        self.rows: Dict[str, PacketSession] = {}
        self.records: Optional["InMemoryRecordRepository"] = None

    def seed(self, session: PacketSession) -> PacketSession:
        self.rows[session.session_id] = session.model_copy(deep=True)
        return session

    def row(self, key: SessionKey) -> Optional[PacketSession]:
        return self.rows.get(key.processing_id)

    async def create_if_absent(self, session: PacketSession) -> bool:
        if session.session_id in self.rows:
            return False
        self.rows[session.session_id] = session.model_copy(deep=True)
        return True

    async def get(self, key: SessionKey) -> Optional[PacketSession]:
        row = self.row(key)
        return row.model_copy(deep=True) if row else None

    def _select(self, predicate: Callable[[PacketSession], bool]) -> List[PacketSession]:
        return [s.model_copy(deep=True) for s in self.rows.values() if predicate(s)]

    async def list_by_activity(self, activity_id: str, limit: int = 500) -> List[PacketSession]:
        return self._select(lambda s: s.activity_id == activity_id)[:limit]

    async def list_by_date(self, application_date: date, limit: int = 500) -> List[PacketSession]:
        return self._select(lambda s: s.application_date == application_date)[:limit]

    async def list_by_type(self, activity_type: str, limit: int = 500) -> List[PacketSession]:
        return self._select(lambda s: s.activity_type == activity_type)[:limit]

    async def list_by_status(self, status: SessionStatus, limit: int = 500) -> List[PacketSession]:
        return self._select(lambda s: s.status == status)[:limit]

    async def list_active_or_paused(self, limit: int = 500) -> List[PacketSession]:
        sessions = self._select(lambda s: s.status.is_open())
        return sorted(sessions, key=lambda s: s.created_at)[:limit]

    async def list_stale_active(self, cutoff: datetime, limit: int = 500) -> List[PacketSession]:
        def last_seen(s: PacketSession) -> datetime:
            return s.last_processed_at or s.started_at or s.created_at

        sessions = self._select(
            lambda s: s.status == SessionStatus.ACTIVE and last_seen(s) < cutoff
        )
        return sorted(sessions, key=last_seen)[:limit]

    async def list_completed_with_open_records(self, limit: int = 500) -> List[PacketSession]:
        def has_open(s: PacketSession) -> bool:
            return self.records is not None and any(
                r.status in (RecordStatus.PENDING, RecordStatus.PROCESSING)
                for r in self.records.for_session(s.session_id)
            )

        return self._select(lambda s: s.status == SessionStatus.COMPLETED and has_open(s))[:limit]

    async def list_active_by_endpoint(self, endpoint_url: str) -> List[PacketSession]:
        return self._select(
            lambda s: s.status == SessionStatus.ACTIVE and s.endpoint_url == endpoint_url
        )

    async def count_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for session in self.rows.values():
            counts[session.status.value] = counts.get(session.status.value, 0) + 1
        return counts

    async def transition(
        self,
        key: SessionKey,
        target: SessionStatus,
        sources: Optional[List[SessionStatus]] = None,
    ) -> Optional[PacketSession]:
        sources = sources if sources is not None else PacketSession.sources_for(target)
        row = self.row(key)
        if row is None or row.status not in sources:
            return None

        row.status = target
        if target in _STAMPS:
            setattr(row, _STAMPS[target], datetime.utcnow())
        row.updated_at = datetime.utcnow()
        row.version += 1
        return row.model_copy(deep=True)

    async def mark_failed(
        self,
        key: SessionKey,
        error_message: str,
        error_category: str,
        http_status_code: Optional[int] = None,
        stack_trace: Optional[str] = None,
        response_headers: Optional[Dict[str, str]] = None,
    ) -> bool:
        row = self.row(key)
        if row is None or row.status != SessionStatus.ACTIVE:
            return False

        row.status = SessionStatus.FAILED
        row.error_message = error_message[:2000]
        row.error_category = error_category
        row.failure_reason = error_message[:500]
        row.http_status_code = http_status_code
        row.stack_trace = stack_trace
        if response_headers is not None:
            row.response_headers = response_headers
        row.version += 1
        return True

    async def record_packet(self, key: SessionKey, checkpoint: PacketCheckpoint) -> Optional[PacketSession]:
        row = self.row(key)
        if row is None:
            return None

        row.current_offset += checkpoint.records_fetched
        row.processed_records += checkpoint.processed_delta
        row.failed_records += checkpoint.failed_delta
        row.total_records = max(row.total_records, checkpoint.total_records)
        row.packet_count += 1
        row.total_processing_time_ms += checkpoint.packet_processing_time_ms
        row.last_packet_processing_time_ms = checkpoint.packet_processing_time_ms
        if checkpoint.last_processed_record_id is not None:
            row.last_processed_record_id = checkpoint.last_processed_record_id
        if checkpoint.last_processed_record_data is not None:
            row.last_processed_record_data = checkpoint.last_processed_record_data
        if checkpoint.http_status_code is not None:
            row.http_status_code = checkpoint.http_status_code
        if checkpoint.response_headers is not None:
            row.response_headers = checkpoint.response_headers
        row.last_processed_at = checkpoint.processed_at
        row.version += 1
        return row.model_copy(deep=True)


class InMemoryRecordRepository:
    """Same surface as repositories.RecordRepository."""

    def __init__(self, sessions: InMemorySessionRepository):
        self.sessions = sessions
        sessions.records = self
        self.rows: Dict[str, PacketRecord] = {}

    def seed(self, record: PacketRecord) -> PacketRecord:
        self.rows[record.record_key] = record.model_copy(deep=True)
        return record

    def for_session(self, session_id: str) -> List[PacketRecord]:
        records = [r for r in self.rows.values() if r.session_id == session_id]
        return sorted(records, key=lambda r: (r.packet_number, r.record_index))

    async def create(self, record: PacketRecord) -> PacketRecord:
        self.rows[record.record_key] = record.model_copy(deep=True)
        return record

    async def update(self, record: PacketRecord) -> bool:
        if record.record_key not in self.rows:
            return False
        record.updated_at = datetime.utcnow()
        self.rows[record.record_key] = record.model_copy(deep=True)
        return True

    async def list_for_session(
        self,
        session_id: str,
        status: Optional[RecordStatus] = None,
        packet_number: Optional[int] = None,
        limit: int = 1000,
    ) -> List[PacketRecord]:
        records = [
            r.model_copy(deep=True) for r in self.for_session(session_id)
            if (status is None or r.status == status)
            and (packet_number is None or r.packet_number == packet_number)
        ]
        return records[:limit]

    async def list_pending(self, session_id: str, up_to_packet: Optional[int] = None) -> List[PacketRecord]:
        records = await self.list_for_session(session_id, status=RecordStatus.PENDING, limit=100000)
        if up_to_packet is not None:
            records = [r for r in records if r.packet_number <= up_to_packet]
        return records

    def _retryable_failed(self, session_id: str) -> List[PacketRecord]:
        session = self.sessions.rows.get(session_id)
        if session is None or session.status == SessionStatus.CANCELLED:
            return []
        return [
            r for r in self.for_session(session_id)
            if r.status == RecordStatus.FAILED
            and r.retry_count < r.max_retries
            and r.packet_number <= session.packet_count
        ]

    async def count_by_status(self, session_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.for_session(session_id):
            counts[record.status.value] = counts.get(record.status.value, 0) + 1
        return counts

    async def settle_retry(self, record: PacketRecord) -> bool:
        row = self.rows.get(record.record_key)
        if row is None or row.status != RecordStatus.PROCESSING:
            return False

        record.updated_at = datetime.utcnow()
        self.rows[record.record_key] = record.model_copy(deep=True)

        session = self.sessions.rows.get(record.session_id)
        if session is not None:
            if record.status == RecordStatus.SUCCESS:
                session.processed_records += 1
            else:
                session.failed_records += 1
            session.total_processing_time_ms += record.processing_time_ms or 0
            session.last_processed_record_id = record.record_id
            session.last_processed_record_data = record.record_data
            session.last_processed_at = datetime.utcnow()
            session.version += 1
        return True

    async def reset_retryable_failed(self, session_id: str, scheduled_at: datetime) -> List[PacketRecord]:
        reset = []
        for row in self._retryable_failed(session_id):
            row.status = RecordStatus.PENDING
            row.retry_count += 1
            row.retry_scheduled_at = scheduled_at
            reset.append(row.model_copy(deep=True))

        session = self.sessions.rows.get(session_id)
        if reset and session is not None:
            session.failed_records -= len(reset)
            session.version += 1
        return reset

    async def skip_unsettled(self, session_id: str, after_packet: int) -> int:
        skipped = 0
        for record in self.for_session(session_id):
            if record.packet_number > after_packet and record.status != RecordStatus.SKIPPED:
                record.status = RecordStatus.SKIPPED
                record.failure_reason = "Packet re-fetched after interruption"
                skipped += 1
        return skipped

    async def requeue_interrupted(self, session_id: str, up_to_packet: int) -> int:
        requeued = 0
        for record in self.for_session(session_id):
            if record.packet_number <= up_to_packet and record.status == RecordStatus.PROCESSING:
                record.status = RecordStatus.PENDING
                record.processed_at = None
                requeued += 1
        return requeued


# ============================================================================
# ENDPOINT AND PROCESSORS
# ============================================================================

class FakeEndpoint:
    """
    Paginated endpoint over a fixed list, served through fetch_page().

    failures maps an offset to a PageResult (or exception) returned once
    for that offset.
    """

    def __init__(self, records: List[Any], total_header: Optional[int] = None):
        self.records = records
        self.total_header = total_header
        self.failures: Dict[int, Any] = {}
        self.calls: List[Dict[str, Any]] = []

    def fail_at(self, offset: int, outcome: Any) -> None:
        self.failures[offset] = outcome

    async def fetch_page(self, endpoint_url: str, offset: int, limit: int, headers=None) -> PageResult:
        self.calls.append({"url": endpoint_url, "offset": offset, "limit": limit, "headers": headers})

        outcome = self.failures.pop(offset, None)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome

        page = self.records[offset:offset + limit]
        total = self.total_header if self.total_header is not None else len(self.records)
        return PageResult(
            success=True,
            records=page,
            endpoint_url=endpoint_url,
            offset=offset,
            limit=limit,
            total_records=total,
            has_more_records=offset + len(page) < len(self.records),
            next_offset=offset + len(page),
            metadata=PacketMetadata(total_records=total),
            http_status_code=200,
        )

    async def close(self) -> None:
        pass


class ScriptedProcessor(RecordProcessor):
    """
    Processor driven by record ids.

    fail_ids fail on the first attempt only; raise_ids raise on every
    attempt; hooks run (awaited) before a record with that id is handled.
    """

    name = "scripted"

    def __init__(
        self,
        fail_ids: Optional[Set[str]] = None,
        raise_ids: Optional[Dict[str, Exception]] = None,
        hooks: Optional[Dict[str, Callable]] = None,
    ):
        self.fail_ids = fail_ids or set()
        self.raise_ids = raise_ids or {}
        self.hooks = hooks or {}
        self.seen: List[RecordContext] = []

    async def process(self, context: RecordContext) -> ProcessResult:
        self.seen.append(context)

        hook = self.hooks.get(context.record_id)
        if hook is not None:
            await hook(context)

        if context.record_id in self.raise_ids:
            raise self.raise_ids[context.record_id]

        if context.record_id in self.fail_ids and context.retry_count == 0:
            return ProcessResult.failure_result(f"Validation failed: missing field on {context.record_id}")

        return ProcessResult.success_result()


def make_records(count: int, prefix: str = "r") -> List[Dict[str, Any]]:
    return [{"id": f"{prefix}-{i}", "value": i} for i in range(count)]


def failed_page(offset: int, limit: int, status: int = 503) -> PageResult:
    return PageResult.failure(
        "https://api.example.com/records",
        offset,
        limit,
        f"Server error: {status} - unavailable",
        FetchErrorCategory.SERVER_ERROR,
        http_status_code=status,
        attempts=5,
    )


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def session_repo():
    return InMemorySessionRepository()


@pytest.fixture
def record_repo(session_repo):
    return InMemoryRecordRepository(session_repo)


@pytest.fixture
def packet_defaults():
    return PacketDefaults(
        default_packet_size=10,
        max_retries=3,
        retry_delay_ms=0,
        stale_after_minutes=30,
        resume_active_on_startup=False,
    )


@pytest.fixture
def key():
    return SessionKey(activity_id="act-1", application_date=date(2024, 1, 1))


@pytest.fixture
def make_session(key):
    """Factory for PacketSession rows under the default key."""
    def _make(status: SessionStatus = SessionStatus.ACTIVE, **kwargs) -> PacketSession:
        fields = {
            "endpoint_url": "https://api.example.com/records",
            "packet_size": 10,
            "status": status,
            "started_at": datetime.utcnow(),
        }
        fields.update(kwargs)
        return PacketSession.for_key(key, **fields)
    return _make


@pytest.fixture
def make_record(key):
    """Factory for PacketRecord rows under the default key."""
    def _make(
        packet_number: int,
        record_index: int,
        status: RecordStatus = RecordStatus.PENDING,
        **kwargs,
    ) -> PacketRecord:
        fields = {
            "session_id": key.processing_id,
            "activity_id": key.activity_id,
            "application_date": key.application_date,
            "record_id": f"r-{(packet_number - 1) * 10 + record_index}",
            "packet_number": packet_number,
            "record_index": record_index,
            "status": status,
        }
        fields.update(kwargs)
        return PacketRecord(**fields)
    return _make
