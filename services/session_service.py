# ============================================================================
# SESSION SERVICE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Packet session control surface
# PURPOSE: Start, inspect, pause, resume, cancel and retry packet sessions
# CREATED: 18 OCT 2026
# ============================================================================
"""
Session Service

Control operations for packet sessions. Processing itself runs in the
orchestrator's background tasks; every operation here returns as soon as
the session row reflects the request.

- start() is idempotent on (activity_id, application_date)
- pause / resume / cancel return False when the current state does not
  allow the transition (or the key is unknown) and change nothing
- retry_failed_records() resets retryable FAILED records to PENDING and
  makes sure a loop will pick them up

Usage:
    service = SessionService(session_repo, record_repo, orchestrator)
    processing_id = await service.start(
        endpoint_url="https://api.example.com/records",
        activity_id="act-1",
        application_date=date(2024, 1, 1),
        packet_size=10,
    )
    await service.pause("act-1", date(2024, 1, 1))
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from core.config import PacketDefaults, get_defaults
from core.contracts import RecordStatus, SessionKey, SessionStatus
from core.logging import log_checkpoint, log_context
from core.models import PacketRecord, PacketSession
from repositories import RecordRepository, SessionRepository

logger = logging.getLogger(__name__)


class SessionExistsError(Exception):
    """A finished session already holds the key; start() will not reuse it."""

    def __init__(self, key: SessionKey, status: SessionStatus):
        self.key = key
        self.status = status
        super().__init__(
            f"Session {key.processing_id} already exists with status {status.value}"
        )


class SessionService:
    """Service for packet session lifecycle management."""

    def __init__(
        self,
        session_repo: SessionRepository,
        record_repo: RecordRepository,
        orchestrator: Optional["PacketOrchestrator"] = None,
        defaults: Optional[PacketDefaults] = None,
    ):
        """
        Initialize session service.

        Args:
            session_repo: Session persistence
            record_repo: Record persistence
            orchestrator: Loop runner; without one sessions are persisted
                but not processed by this process
            defaults: Packet defaults (from env when omitted)
        """
        self.session_repo = session_repo
        self.record_repo = record_repo
        self.orchestrator = orchestrator
        self.defaults = defaults or get_defaults().packet

    # =========================================================================
    # START
    # =========================================================================

    async def start(
        self,
        endpoint_url: str,
        activity_id: str,
        application_date: date,
        packet_size: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
        activity_type: Optional[str] = None,
        activity_status: Optional[str] = None,
    ) -> str:
        """
        Start processing for a key, or return the running session's id.

        Args:
            endpoint_url: Paginated endpoint to pull from
            activity_id: Activity identifier
            application_date: Application date
            packet_size: Records per packet (non-positive -> default)
            headers: Request headers replayed on every fetch
            activity_type: Caller context
            activity_status: Caller context

        Returns:
            Processing id of the new or existing ACTIVE / PAUSED session

        Raises:
            ValueError: empty endpoint or activity id
            SessionExistsError: the key holds a COMPLETED, CANCELLED or
                FAILED session (FAILED sessions are continued with resume)
        """
        if not endpoint_url or not endpoint_url.strip():
            raise ValueError("endpoint_url is required")
        if not activity_id or not activity_id.strip():
            raise ValueError("activity_id is required")

        key = SessionKey(activity_id=activity_id.strip(), application_date=application_date)

        with log_context(activity_id=key.activity_id, application_date=application_date.isoformat()):
            existing = await self.session_repo.get(key)
            if existing is not None:
                return self._reuse(existing)

            session = PacketSession.for_key(
                key,
                endpoint_url=endpoint_url.strip(),
                packet_size=self.defaults.resolve_packet_size(packet_size),
                request_headers=dict(headers or {}),
                activity_type=activity_type,
                activity_status=activity_status,
                started_at=datetime.utcnow(),
            )

            if not await self.session_repo.create_if_absent(session):
                # Lost a concurrent start for the same key
                existing = await self.session_repo.get(key)
                if existing is None:
                    raise RuntimeError(f"Session {key} vanished after conflicting insert")
                return self._reuse(existing)

            log_checkpoint("session_started", {
                "endpoint_url": session.endpoint_url,
                "packet_size": session.packet_size,
                "header_count": len(session.request_headers),
            }, logger)

            self._schedule(key)
            return session.session_id

    def _reuse(self, existing: PacketSession) -> str:
        if not existing.status.is_open():
            raise SessionExistsError(existing.key, existing.status)

        logger.info(
            f"Session {existing.session_id} already {existing.status.value}, "
            f"returning existing processing id"
        )
        if existing.status == SessionStatus.ACTIVE:
            # No-op when this process already runs the loop
            self._schedule(existing.key)
        return existing.session_id

    def _schedule(self, key: SessionKey) -> bool:
        if self.orchestrator is None:
            logger.warning(f"No orchestrator attached, {key} will not be processed here")
            return False
        return self.orchestrator.schedule(key)

    # =========================================================================
    # CONTROL
    # =========================================================================

    async def status(self, activity_id: str, application_date: date) -> Optional[PacketSession]:
        """Current session for a key, None if unknown."""
        return await self.session_repo.get(self._key(activity_id, application_date))

    async def pause(self, activity_id: str, application_date: date) -> bool:
        """
        ACTIVE -> PAUSED.

        The running loop finishes its current packet, checkpoints, and stops
        at the next status check.
        """
        return await self._transition(activity_id, application_date, SessionStatus.PAUSED)

    async def resume(self, activity_id: str, application_date: date) -> bool:
        """PAUSED / FAILED -> ACTIVE, then schedule the loop from the checkpoint."""
        key = self._key(activity_id, application_date)
        if not await self._transition(activity_id, application_date, SessionStatus.ACTIVE):
            return False

        self._schedule(key)
        return True

    async def cancel(self, activity_id: str, application_date: date) -> bool:
        """ACTIVE / PAUSED -> CANCELLED (final)."""
        return await self._transition(activity_id, application_date, SessionStatus.CANCELLED)

    async def _transition(self, activity_id: str, application_date: date, target: SessionStatus) -> bool:
        key = self._key(activity_id, application_date)
        updated = await self.session_repo.transition(key, target)
        if updated is None:
            current = await self.session_repo.get(key)
            if current is None:
                logger.warning(f"Cannot move {key} to {target.value}: session not found")
            elif current.can_transition_to(target):
                logger.warning(
                    f"Cannot move {key} to {target.value}: status changed concurrently "
                    f"(now {current.status.value})"
                )
            else:
                logger.warning(
                    f"Cannot move {key} to {target.value} from {current.status.value}"
                )
            return False
        return True

    async def retry_failed_records(self, activity_id: str, application_date: date) -> bool:
        """
        Reset retryable FAILED records to PENDING (retry_count + 1).

        What happens next depends on the session:
            PAUSED     resumed; the loop re-dispatches the records first
            ACTIVE     the running loop picks them up at its next iteration
            FAILED     records wait for an explicit resume
            COMPLETED  a retry pass re-dispatches them without fetching

        Returns:
            False if the key is unknown or the session is CANCELLED,
            True otherwise (also when nothing was retryable)
        """
        key = self._key(activity_id, application_date)
        session = await self.session_repo.get(key)
        if session is None:
            logger.error(f"Session not found for {key}")
            return False

        if session.status == SessionStatus.CANCELLED:
            logger.warning(f"Session {key} is cancelled, failed records not retried")
            return False

        scheduled_at = datetime.utcnow() + timedelta(milliseconds=self.defaults.retry_delay_ms)
        reset = await self.record_repo.reset_retryable_failed(session.session_id, scheduled_at)

        if reset:
            logger.info(f"Retrying {len(reset)} failed records for {key} ({session.status.value})")
        else:
            logger.info(f"No retryable failed records for {key}")

        if session.status in (SessionStatus.ACTIVE, SessionStatus.COMPLETED):
            # Loop entry also requeues retries a stopped loop left PROCESSING
            self._schedule(key)
        elif reset and session.status == SessionStatus.PAUSED:
            await self.resume(activity_id, application_date)

        return True

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_by_activity(self, activity_id: str) -> List[PacketSession]:
        return await self.session_repo.list_by_activity(activity_id)

    async def list_by_date(self, application_date: date) -> List[PacketSession]:
        return await self.session_repo.list_by_date(application_date)

    async def list_by_type(self, activity_type: str) -> List[PacketSession]:
        return await self.session_repo.list_by_type(activity_type)

    async def list_by_status(self, status: SessionStatus) -> List[PacketSession]:
        return await self.session_repo.list_by_status(status)

    async def list_active_by_endpoint(self, endpoint_url: str) -> List[PacketSession]:
        """ACTIVE sessions currently paging through endpoint_url."""
        return await self.session_repo.list_active_by_endpoint(endpoint_url)

    async def list_active_or_paused(self) -> List[PacketSession]:
        return await self.session_repo.list_active_or_paused()

    async def list_stale(self, older_than_minutes: Optional[int] = None) -> List[PacketSession]:
        """ACTIVE sessions without a checkpoint in the last N minutes."""
        minutes = older_than_minutes if older_than_minutes is not None else self.defaults.stale_after_minutes
        cutoff = datetime.utcnow() - timedelta(minutes=minutes)
        return await self.session_repo.list_stale_active(cutoff)

    async def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in SessionStatus}
        counts.update(await self.session_repo.count_by_status())
        return counts

    async def list_records(
        self,
        activity_id: str,
        application_date: date,
        status: Optional[RecordStatus] = None,
        packet_number: Optional[int] = None,
        limit: int = 1000,
    ) -> Optional[List[PacketRecord]]:
        """Records of a session in fetch order; None if the session is unknown."""
        key = self._key(activity_id, application_date)
        session = await self.session_repo.get(key)
        if session is None:
            return None
        return await self.record_repo.list_for_session(
            session.session_id, status=status, packet_number=packet_number, limit=limit
        )

    async def record_counts(self, activity_id: str, application_date: date) -> Optional[Dict[str, int]]:
        key = self._key(activity_id, application_date)
        session = await self.session_repo.get(key)
        if session is None:
            return None
        counts = {status.value: 0 for status in RecordStatus}
        counts.update(await self.record_repo.count_by_status(session.session_id))
        return counts

    @staticmethod
    def _key(activity_id: str, application_date: date) -> SessionKey:
        return SessionKey(activity_id=activity_id, application_date=application_date)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["SessionService", "SessionExistsError"]
