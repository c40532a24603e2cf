# ============================================================================
# PACKET ORCHESTRATOR
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Per-session fetch / dispatch / checkpoint loop
# PURPOSE: Drive packet sessions from ACTIVE to COMPLETED or FAILED
# CREATED: 18 OCT 2026
# ============================================================================
"""
Packet Orchestrator

Runs one background task per ACTIVE session. Each task repeats:

1. Reload the session; stop unless it is ACTIVE (pause / cancel land here)
2. Re-dispatch records reset by retry_failed_records (PENDING records of
   already checkpointed packets), in packet / index order
3. Fetch the next packet at current_offset / packet_size
4. Create, process and settle every record of the packet, one at a time
5. Checkpoint: advance current_offset and counters in one increment
6. Stop with COMPLETED when the endpoint reports no more records

Retried records are settled one at a time, each together with its counter
increment. On entry the loop skips records of an uncheckpointed packet and
requeues retries left PROCESSING by an earlier loop.

Per-record failures are absorbed and classified. A failed fetch marks the
session FAILED. Any other exception is recorded as PROCESSING_ERROR.
Task cancellation (shutdown) leaves the session ACTIVE.

Scheduling is exclusive per session key within this process: schedule()
refuses while a live task owns the key. A loop that is about to exit
releases the key and re-reads the session once more, taking the key back
if a resume (or a retry on a COMPLETED session) arrived in between.

Usage:
    orchestrator = PacketOrchestrator(session_repo, record_repo, client, processor)
    await orchestrator.start()
    orchestrator.schedule(key)
    ...
    await orchestrator.stop()
"""

import asyncio
import logging
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.config import PacketDefaults, get_defaults
from core.contracts import FetchErrorCategory, RecordStatus, SessionKey, SessionStatus
from core.logging import log_checkpoint, log_context
from core.models import PacketCheckpoint, PacketRecord, PacketSession, PageResult
from infrastructure.pagination_client import PaginationClient
from processors import RecordContext, RecordProcessor
from repositories import RecordRepository, SessionRepository
from services.error_classifier import ErrorClassifier, ErrorClassifierProtocol

logger = logging.getLogger(__name__)

# Fields checked (in order) for a record's own identifier
RECORD_ID_FIELDS = ("id", "recordId", "key")


def extract_record_id(record_data: Any, key: SessionKey, packet_number: int, record_index: int) -> str:
    """
    Identifier of a fetched record.

    Uses the record's own id / recordId / key field when present, else a
    positional id unique within the session.
    """
    if isinstance(record_data, dict):
        for name in RECORD_ID_FIELDS:
            value = record_data.get(name)
            if value is not None and str(value).strip():
                return str(value)[:255]
    return f"{key.processing_id}-{packet_number}-{record_index}"


class PacketOrchestrator:
    """
    Background loop runner for packet sessions.

    Owns no session state of its own: everything the loop needs to resume
    lives in the session and record rows.
    """

    def __init__(
        self,
        session_repo: SessionRepository,
        record_repo: RecordRepository,
        client: PaginationClient,
        processor: RecordProcessor,
        classifier: Optional[ErrorClassifierProtocol] = None,
        defaults: Optional[PacketDefaults] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            session_repo: Session persistence
            record_repo: Record persistence
            client: Pagination client used for every fetch
            processor: Per-record work
            classifier: Per-record failure classifier
            defaults: Packet defaults (from env when omitted)
        """
        self.session_repo = session_repo
        self.record_repo = record_repo
        self.client = client
        self.processor = processor
        self.classifier = classifier or ErrorClassifier()
        self.defaults = defaults or get_defaults().packet

        # State
        self._running = False
        self._stop_event = asyncio.Event()
        self._tasks: Dict[str, asyncio.Task] = {}

        # Metrics
        self._started_at: Optional[datetime] = None
        self._loops_started = 0
        self._packets_processed = 0
        self._records_processed = 0
        self._records_failed = 0
        self._records_retried = 0
        self._sessions_completed = 0
        self._sessions_failed = 0
        self._errors = 0
        self._last_packet_at: Optional[datetime] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start accepting sessions; optionally reschedule orphaned ACTIVE ones."""
        if self._running:
            logger.warning("Orchestrator already running")
            return

        self._running = True
        self._stop_event.clear()
        self._started_at = datetime.now(timezone.utc)
        logger.info("Packet orchestrator started")

        if self.defaults.resume_active_on_startup:
            await self.recover_active_sessions()

    async def stop(self) -> None:
        """
        Stop the orchestrator.

        Cancels every running loop. Sessions keep their status and last
        checkpoint; a packet interrupted here is fetched again later.
        """
        logger.info(f"Stopping packet orchestrator ({len(self._tasks)} running loops)")

        self._running = False
        self._stop_event.set()

        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        logger.info(
            f"Packet orchestrator stopped (loops_started={self._loops_started}, "
            f"packets={self._packets_processed}, records={self._records_processed}, "
            f"failed={self._records_failed})"
        )

    async def recover_active_sessions(self) -> int:
        """
        Schedule a loop for every ACTIVE session that has none here.

        Returns:
            Number of loops scheduled
        """
        sessions = [
            s for s in await self.session_repo.list_active_or_paused()
            if s.status == SessionStatus.ACTIVE
        ]
        sessions += await self.session_repo.list_completed_with_open_records()

        scheduled = 0
        for session in sessions:
            if self.schedule(session.key):
                scheduled += 1

        if scheduled:
            logger.info(f"Recovered {scheduled} sessions (ACTIVE or interrupted retry passes)")
        return scheduled

    # =========================================================================
    # SCHEDULING
    # =========================================================================

    def schedule(self, key: SessionKey) -> bool:
        """
        Start the loop for a session unless one is already running.

        Also used for COMPLETED sessions whose failed records were reset:
        the loop then re-dispatches them without fetching.

        Returns:
            True if a new task was created
        """
        if not self._running:
            logger.warning(f"Orchestrator not running, {key} not scheduled")
            return False

        processing_id = key.processing_id
        existing = self._tasks.get(processing_id)
        if existing is not None and not existing.done():
            logger.debug(f"Loop for {processing_id} already running")
            return False

        self._tasks[processing_id] = asyncio.create_task(
            self._run_session(key),
            name=f"packet-loop-{processing_id}",
        )
        self._loops_started += 1
        logger.debug(f"Scheduled loop for {processing_id}")
        return True

    def is_scheduled(self, key: SessionKey) -> bool:
        task = self._tasks.get(key.processing_id)
        return task is not None and not task.done()

    async def wait_until_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no loop is running (loops may hand off to each other)."""
        async def _drain() -> None:
            while self._tasks:
                await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

        await asyncio.wait_for(_drain(), timeout=timeout)

    def _release(self, processing_id: str) -> None:
        """Drop the key's task entry if it is the calling task."""
        if self._tasks.get(processing_id) is asyncio.current_task():
            del self._tasks[processing_id]

    def _claim(self, processing_id: str) -> bool:
        """Take the key for the calling task unless another task holds it."""
        if processing_id in self._tasks:
            return False
        self._tasks[processing_id] = asyncio.current_task()
        return True

    # =========================================================================
    # SESSION LOOP
    # =========================================================================

    async def _run_session(self, key: SessionKey) -> None:
        """Task body: run the loop and record unexpected failures on the session."""
        processing_id = key.processing_id
        with log_context(
            activity_id=key.activity_id,
            application_date=key.application_date.isoformat(),
            component="orchestrator",
        ):
            try:
                await self._loop(key)
            except asyncio.CancelledError:
                logger.info(f"Loop for {processing_id} cancelled, session left resumable")
                raise
            except Exception as e:
                self._errors += 1
                logger.exception(f"Loop for {processing_id} crashed: {e}")
                await self._record_processing_error(key, e)
            finally:
                self._release(processing_id)

    async def _loop(self, key: SessionKey) -> None:
        recovered = False

        while True:
            session = await self.session_repo.get(key)
            if session is None:
                logger.warning(f"Session {key} not found, loop exiting")
                return

            if not recovered and session.status in (SessionStatus.ACTIVE, SessionStatus.COMPLETED):
                await self._recover_interrupted(session)
                recovered = True

            if session.status == SessionStatus.ACTIVE:
                if await self._iterate(session):
                    continue
            elif session.status == SessionStatus.COMPLETED:
                await self._dispatch_pending(session)

            if not await self._hand_off(key):
                return

    async def _recover_interrupted(self, session: PacketSession) -> None:
        """Undo what a stopped loop left half done for this session."""
        skipped = await self.record_repo.skip_unsettled(session.session_id, session.packet_count)
        requeued = await self.record_repo.requeue_interrupted(session.session_id, session.packet_count)
        log_checkpoint("session_loop_entered", {
            "status": session.status.value,
            "current_offset": session.current_offset,
            "packet_count": session.packet_count,
            "skipped": skipped,
            "requeued": requeued,
        }, logger)

    async def _hand_off(self, key: SessionKey) -> bool:
        """
        Release the key, then check whether work arrived meanwhile.

        Returns:
            True if this task took the key back and should keep looping
        """
        processing_id = key.processing_id
        self._release(processing_id)

        session = await self.session_repo.get(key)
        if session is None or processing_id in self._tasks:
            return False

        if session.status == SessionStatus.ACTIVE:
            return self._claim(processing_id)

        if session.status == SessionStatus.COMPLETED:
            pending = await self.record_repo.list_pending(session.session_id, up_to_packet=session.packet_count)
            if pending:
                return self._claim(processing_id)

        logger.debug(f"Loop for {processing_id} exiting ({session.status.value})")
        return False

    async def _iterate(self, session: PacketSession) -> bool:
        """
        One loop iteration for an ACTIVE session.

        Returns:
            True to continue with the next packet
        """
        await self._dispatch_pending(session)

        packet_number = session.packet_count + 1
        with log_context(packet_number=packet_number):
            page = await self.client.fetch_page(
                session.endpoint_url,
                offset=session.current_offset,
                limit=session.packet_size,
                headers=session.request_headers,
            )

            if not page.success:
                await self._fail_fetch(session, page)
                return False

            if not page.records:
                logger.info(f"Endpoint exhausted at offset {session.current_offset}")
                await self._complete(session.key)
                return False

            updated = await self._process_packet(session, page, packet_number)
            if updated is None:
                return False

            if page.has_more_records is not None:
                has_more = page.has_more_records
            else:
                has_more = page.records_fetched >= session.packet_size

            if not has_more:
                await self._complete(session.key)
                return False

        return True

    # =========================================================================
    # PACKET PROCESSING
    # =========================================================================

    async def _process_packet(
        self,
        session: PacketSession,
        page: PageResult,
        packet_number: int,
    ) -> Optional[PacketSession]:
        """Create and settle every record of a fetched packet, then checkpoint."""
        started = time.monotonic()
        processed = 0
        failed = 0
        last: Optional[PacketRecord] = None

        for index, data in enumerate(page.records):
            record = PacketRecord(
                session_id=session.session_id,
                activity_id=session.activity_id,
                application_date=session.application_date,
                record_id=extract_record_id(data, session.key, packet_number, index),
                packet_number=packet_number,
                record_index=index,
                record_data=data,
                max_retries=self.defaults.max_retries,
            )
            await self.record_repo.create(record)
            await self._process_record(session, record)

            if record.status == RecordStatus.SUCCESS:
                processed += 1
            else:
                failed += 1
            last = record

        fetched = page.records_fetched
        header_total = page.metadata.total_records if page.metadata else 0
        checkpoint = PacketCheckpoint(
            records_fetched=fetched,
            processed_delta=processed,
            failed_delta=failed,
            total_records=max(header_total, session.current_offset + fetched),
            last_processed_record_id=last.record_id if last else None,
            last_processed_record_data=last.record_data if last else None,
            packet_processing_time_ms=int((time.monotonic() - started) * 1000),
            http_status_code=page.http_status_code,
            response_headers=page.response_headers or None,
        )
        updated = await self.session_repo.record_packet(session.key, checkpoint)

        self._packets_processed += 1
        self._last_packet_at = datetime.now(timezone.utc)

        if updated is not None:
            log_checkpoint("packet_checkpointed", {
                "records": fetched,
                "processed": processed,
                "failed": failed,
                "current_offset": updated.current_offset,
                "packet_ms": checkpoint.packet_processing_time_ms,
            }, logger)
        return updated

    async def _dispatch_pending(self, session: PacketSession) -> int:
        """
        Re-dispatch records reset to PENDING by a retry request.

        Only packets that were already checkpointed are considered. Each
        record is settled together with its counter increment; the offset
        and packet count do not move.

        Returns:
            Number of records re-dispatched
        """
        pending = await self.record_repo.list_pending(session.session_id, up_to_packet=session.packet_count)
        if not pending:
            return 0

        logger.info(f"Re-dispatching {len(pending)} retried records")
        processed = 0
        failed = 0

        for record in pending:
            await self._process_record(session, record, retry=True)
            if record.status == RecordStatus.SUCCESS:
                processed += 1
            else:
                failed += 1

        self._records_retried += len(pending)
        log_checkpoint("retry_pass_settled", {"processed": processed, "failed": failed}, logger)
        return len(pending)

    async def _process_record(self, session: PacketSession, record: PacketRecord, retry: bool = False) -> None:
        """
        PENDING -> PROCESSING -> SUCCESS / FAILED for one record.

        A retried record is persisted through settle_retry, which also
        counts it; a fresh record is counted by its packet checkpoint.
        """
        with log_context(record_id=record.record_id):
            record.mark_processing()
            await self.record_repo.update(record)

            context = RecordContext(
                session_id=session.session_id,
                activity_id=session.activity_id,
                application_date=session.application_date,
                record_id=record.record_id,
                packet_number=record.packet_number,
                record_index=record.record_index,
                record_data=record.record_data,
                retry_count=record.retry_count,
                activity_type=session.activity_type,
                activity_status=session.activity_status,
            )

            started = time.monotonic()
            error_message: Optional[str] = None
            stack_trace: Optional[str] = None
            try:
                result = await self.processor.process(context)
                if not result.success:
                    error_message = result.error_message or "Record processor reported failure"
            except Exception as e:
                error_message = str(e) or type(e).__name__
                stack_trace = traceback.format_exc()
                logger.warning(f"Record processor raised: {error_message}")
            elapsed_ms = int((time.monotonic() - started) * 1000)

            if error_message is None:
                record.mark_success(elapsed_ms)
                self._records_processed += 1
            else:
                classification = self.classifier.classify(error_message)
                record.mark_failed(error_message, classification.category.value, elapsed_ms, stack_trace)
                self._records_failed += 1
                logger.info(
                    f"Record {record.record_id} failed ({classification.category.value}, "
                    f"retryable={classification.retryable}): {error_message[:200]}"
                )

            if retry:
                await self.record_repo.settle_retry(record)
            else:
                await self.record_repo.update(record)

    # =========================================================================
    # TERMINAL OUTCOMES
    # =========================================================================

    async def _complete(self, key: SessionKey) -> None:
        completed = await self.session_repo.transition(
            key, SessionStatus.COMPLETED, sources=[SessionStatus.ACTIVE]
        )
        if completed is None:
            logger.info(f"Session {key} left ACTIVE before completion, not completed")
            return

        self._sessions_completed += 1
        log_checkpoint("session_completed", {
            "processed_records": completed.processed_records,
            "failed_records": completed.failed_records,
            "current_offset": completed.current_offset,
            "packet_count": completed.packet_count,
        }, logger)

    async def _fail_fetch(self, session: PacketSession, page: PageResult) -> None:
        category = page.error_category or FetchErrorCategory.UNKNOWN_ERROR
        message = page.error_message or "Fetch failed"
        failed = await self.session_repo.mark_failed(
            session.key,
            error_message=message,
            error_category=category.value,
            http_status_code=page.http_status_code,
            response_headers=page.response_headers or None,
        )
        if failed:
            self._sessions_failed += 1
            log_checkpoint("session_failed", {
                "error_category": category.value,
                "http_status_code": page.http_status_code,
                "attempts": page.attempts,
                "current_offset": session.current_offset,
            }, logger)
        else:
            logger.warning(f"Fetch failure not recorded, session {session.key} left ACTIVE: {message}")

    async def _record_processing_error(self, key: SessionKey, error: Exception) -> None:
        stack_trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        failed = await self.session_repo.mark_failed(
            key,
            error_message=f"Processing error: {error}",
            error_category=FetchErrorCategory.PROCESSING_ERROR.value,
            stack_trace=stack_trace,
        )
        if failed:
            self._sessions_failed += 1
            log_checkpoint("session_failed", {
                "error_category": FetchErrorCategory.PROCESSING_ERROR.value,
                "error": str(error)[:500],
            }, logger)

    # =========================================================================
    # STATS AND PROPERTIES
    # =========================================================================

    @property
    def is_running(self) -> bool:
        """Check if orchestrator is running."""
        return self._running

    @property
    def running_sessions(self) -> List[str]:
        return sorted(pid for pid, task in self._tasks.items() if not task.done())

    @property
    def stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics."""
        uptime_seconds = None
        if self._started_at:
            uptime_seconds = (datetime.now(timezone.utc) - self._started_at).total_seconds()

        return {
            "running": self._running,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "uptime_seconds": uptime_seconds,
            "processor": getattr(self.processor, "name", type(self.processor).__name__),
            "running_loops": len(self.running_sessions),
            "running_sessions": self.running_sessions,
            "loops_started": self._loops_started,
            "packets_processed": self._packets_processed,
            "records_processed": self._records_processed,
            "records_failed": self._records_failed,
            "records_retried": self._records_retried,
            "sessions_completed": self._sessions_completed,
            "sessions_failed": self._sessions_failed,
            "errors": self._errors,
            "last_packet_at": self._last_packet_at.isoformat() if self._last_packet_at else None,
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["PacketOrchestrator", "extract_record_id", "RECORD_ID_FIELDS"]
