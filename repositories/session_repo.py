# ============================================================================
# SESSION REPOSITORY
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Packet session persistence
# PURPOSE: Database access for packet_sessions table
# CREATED: 18 OCT 2026
# ============================================================================
"""
Session Repository

CRUD and query operations for packet sessions.

Concurrency model (one row per session key, written by the loop and by
control operations at the same time):
- Uniqueness of (activity_id, application_date) is enforced by a UNIQUE
  constraint; create_if_absent() is INSERT ... ON CONFLICT DO NOTHING.
- Status changes are compare-and-set: UPDATE ... WHERE status IN (sources).
  A transition that lost a race updates zero rows and reports failure.
- Loop checkpoints are applied as increments in a single UPDATE and never
  write status, so a concurrent pause or cancel is never overwritten.
- Every write bumps version and updated_at.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import SessionKey, SessionStatus
from core.models import PacketCheckpoint, PacketSession
from .database import TABLE_RECORDS, TABLE_SESSIONS

logger = logging.getLogger(__name__)


def _status_list(statuses: Iterable[SessionStatus]) -> sql.Composed:
    """Render statuses as a literal list for IN (...) against the enum column."""
    return sql.SQL(", ").join(sql.Literal(s.value) for s in statuses)


# Timestamp column stamped when entering each state
_TRANSITION_TIMESTAMPS = {
    SessionStatus.PAUSED: "paused_at",
    SessionStatus.CANCELLED: "cancelled_at",
    SessionStatus.COMPLETED: "completed_at",
}


class SessionRepository:
    """Repository for PacketSession entities."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def create_if_absent(self, session: PacketSession) -> bool:
        """
        Insert a new session unless one already exists for its key.

        Returns:
            True if this call created the row, False if the key was taken
        """
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    session_id, activity_id, application_date, activity_type,
                    activity_status, endpoint_url, packet_size, total_records,
                    processed_records, failed_records, current_offset, packet_count,
                    status, total_processing_time_ms, request_headers,
                    response_headers, created_at, updated_at, started_at, version
                ) VALUES (
                    %(session_id)s, %(activity_id)s, %(application_date)s, %(activity_type)s,
                    %(activity_status)s, %(endpoint_url)s, %(packet_size)s, 0,
                    0, 0, 0, 0,
                    %(status)s, 0, %(request_headers)s,
                    %(response_headers)s, %(created_at)s, %(updated_at)s, %(started_at)s, 1
                )
                ON CONFLICT DO NOTHING
                """).format(TABLE_SESSIONS),
                {
                    "session_id": session.session_id,
                    "activity_id": session.activity_id,
                    "application_date": session.application_date,
                    "activity_type": session.activity_type,
                    "activity_status": session.activity_status,
                    "endpoint_url": session.endpoint_url,
                    "packet_size": session.packet_size,
                    "status": session.status.value,
                    "request_headers": Json(session.request_headers),
                    "response_headers": Json(session.response_headers),
                    "created_at": session.created_at,
                    "updated_at": session.updated_at,
                    "started_at": session.started_at,
                },
            )
            created = result.rowcount == 1
            if created:
                logger.info(
                    f"Created session {session.session_id} "
                    f"(endpoint={session.endpoint_url}, packet_size={session.packet_size})"
                )
            return created

    async def get(self, key: SessionKey) -> Optional[PacketSession]:
        """Get a session by its identity key."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {}
                WHERE activity_id = %s AND application_date = %s
                """).format(TABLE_SESSIONS),
                (key.activity_id, key.application_date),
            )
            row = await result.fetchone()

            if row is None:
                return None

            return self._row_to_session(row)

    async def _list(self, where: sql.Composable, params: tuple = (), order: str = "created_at DESC", limit: int = 500) -> List[PacketSession]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT * FROM {} WHERE {} ORDER BY {} LIMIT %s").format(
                    TABLE_SESSIONS, where, sql.SQL(order)
                ),
                (*params, limit),
            )
            rows = await result.fetchall()
            return [self._row_to_session(row) for row in rows]

    async def list_by_activity(self, activity_id: str, limit: int = 500) -> List[PacketSession]:
        return await self._list(sql.SQL("activity_id = %s"), (activity_id,), limit=limit)

    async def list_by_date(self, application_date: date, limit: int = 500) -> List[PacketSession]:
        return await self._list(sql.SQL("application_date = %s"), (application_date,), limit=limit)

    async def list_by_type(self, activity_type: str, limit: int = 500) -> List[PacketSession]:
        return await self._list(sql.SQL("activity_type = %s"), (activity_type,), limit=limit)

    async def list_by_status(self, status: SessionStatus, limit: int = 500) -> List[PacketSession]:
        return await self._list(
            sql.SQL("status = {}").format(sql.Literal(status.value)), limit=limit
        )

    async def list_active_or_paused(self, limit: int = 500) -> List[PacketSession]:
        """ACTIVE and PAUSED sessions, oldest first."""
        return await self._list(
            sql.SQL("status IN ({})").format(
                _status_list([SessionStatus.ACTIVE, SessionStatus.PAUSED])
            ),
            order="created_at ASC",
            limit=limit,
        )

    async def list_stale_active(self, cutoff: datetime, limit: int = 500) -> List[PacketSession]:
        """
        ACTIVE sessions that have not checkpointed since cutoff.

        Sessions that never checkpointed are judged by started_at.
        """
        return await self._list(
            sql.SQL(
                "status = 'active' AND COALESCE(last_processed_at, started_at, created_at) < %s"
            ),
            (cutoff,),
            order="COALESCE(last_processed_at, started_at, created_at) ASC",
            limit=limit,
        )

    async def list_completed_with_open_records(self, limit: int = 500) -> List[PacketSession]:
        """COMPLETED sessions holding PENDING or PROCESSING records (an interrupted retry pass)."""
        return await self._list(
            sql.SQL("""
            status = 'completed' AND EXISTS (
                SELECT 1 FROM {} r
                WHERE r.session_id = {}.session_id
                  AND r.status IN ('pending', 'processing')
            )
            """).format(TABLE_RECORDS, TABLE_SESSIONS),
            order="updated_at ASC",
            limit=limit,
        )

    async def list_active_by_endpoint(self, endpoint_url: str) -> List[PacketSession]:
        return await self._list(
            sql.SQL("status = 'active' AND endpoint_url = %s"), (endpoint_url,)
        )

    async def count_by_status(self) -> Dict[str, int]:
        """Session counts keyed by status value."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT status::text AS status, COUNT(*) AS count
                FROM {}
                GROUP BY status
                """).format(TABLE_SESSIONS),
            )
            rows = await result.fetchall()
            return {row["status"]: row["count"] for row in rows}

    # =========================================================================
    # STATUS TRANSITIONS (compare-and-set)
    # =========================================================================

    async def transition(
        self,
        key: SessionKey,
        target: SessionStatus,
        sources: Optional[List[SessionStatus]] = None,
    ) -> Optional[PacketSession]:
        """
        Move a session into target if it is currently in one of sources.

        Args:
            key: Session identity
            target: New status
            sources: Allowed current states (defaults to the model's table)

        Returns:
            Updated session, or None if the key is unknown or the current
            status does not allow the transition
        """
        sources = sources if sources is not None else PacketSession.sources_for(target)
        if not sources:
            return None

        stamp = sql.SQL("")
        if target in _TRANSITION_TIMESTAMPS:
            stamp = sql.SQL(", {} = NOW()").format(sql.Identifier(_TRANSITION_TIMESTAMPS[target]))

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {table} SET
                    status = {target},
                    updated_at = NOW(),
                    version = version + 1
                    {stamp}
                WHERE activity_id = %s
                  AND application_date = %s
                  AND status IN ({sources})
                RETURNING *
                """).format(
                    table=TABLE_SESSIONS,
                    target=sql.Literal(target.value),
                    stamp=stamp,
                    sources=_status_list(sources),
                ),
                (key.activity_id, key.application_date),
            )
            row = await result.fetchone()

            if row is None:
                logger.debug(f"Transition to {target.value} rejected for {key}")
                return None

            logger.info(f"Session {key} -> {target.value}")
            return self._row_to_session(row)

    async def mark_failed(
        self,
        key: SessionKey,
        error_message: str,
        error_category: str,
        http_status_code: Optional[int] = None,
        stack_trace: Optional[str] = None,
        response_headers: Optional[Dict[str, str]] = None,
    ) -> bool:
        """
        ACTIVE -> FAILED with error detail.

        Returns False if the session already left ACTIVE (paused or
        cancelled concurrently); the error is then only logged by the caller.
        """
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    status = 'failed',
                    error_message = %(error_message)s,
                    error_category = %(error_category)s,
                    failure_reason = %(failure_reason)s,
                    http_status_code = %(http_status_code)s,
                    stack_trace = %(stack_trace)s,
                    response_headers = COALESCE(%(response_headers)s, response_headers),
                    updated_at = NOW(),
                    version = version + 1
                WHERE activity_id = %(activity_id)s
                  AND application_date = %(application_date)s
                  AND status = 'active'
                """).format(TABLE_SESSIONS),
                {
                    "activity_id": key.activity_id,
                    "application_date": key.application_date,
                    "error_message": error_message[:2000],
                    "error_category": error_category,
                    "failure_reason": error_message[:500],
                    "http_status_code": http_status_code,
                    "stack_trace": stack_trace,
                    "response_headers": Json(response_headers) if response_headers is not None else None,
                },
            )
            failed = result.rowcount > 0
            if failed:
                logger.warning(f"Session {key} FAILED ({error_category}): {error_message[:200]}")
            return failed

    # =========================================================================
    # CHECKPOINTS (increments, never touch status)
    # =========================================================================

    async def record_packet(self, key: SessionKey, checkpoint: PacketCheckpoint) -> Optional[PacketSession]:
        """
        Apply a settled packet's progress to the session.

        current_offset and the counters are incremented in place; the
        status column is left alone so a pause written meanwhile survives.

        Returns:
            Session as stored after the update, None if the key is unknown
        """
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    current_offset = current_offset + %(records_fetched)s,
                    processed_records = processed_records + %(processed_delta)s,
                    failed_records = failed_records + %(failed_delta)s,
                    total_records = GREATEST(total_records, %(total_records)s),
                    packet_count = packet_count + 1,
                    total_processing_time_ms = total_processing_time_ms + %(packet_time_ms)s,
                    last_packet_processing_time_ms = %(packet_time_ms)s,
                    last_processed_record_id = COALESCE(%(last_record_id)s, last_processed_record_id),
                    last_processed_record_data = COALESCE(%(last_record_data)s, last_processed_record_data),
                    http_status_code = COALESCE(%(http_status_code)s, http_status_code),
                    response_headers = COALESCE(%(response_headers)s, response_headers),
                    last_processed_at = %(processed_at)s,
                    updated_at = NOW(),
                    version = version + 1
                WHERE activity_id = %(activity_id)s
                  AND application_date = %(application_date)s
                RETURNING *
                """).format(TABLE_SESSIONS),
                {
                    "activity_id": key.activity_id,
                    "application_date": key.application_date,
                    "records_fetched": checkpoint.records_fetched,
                    "processed_delta": checkpoint.processed_delta,
                    "failed_delta": checkpoint.failed_delta,
                    "total_records": checkpoint.total_records,
                    "packet_time_ms": checkpoint.packet_processing_time_ms,
                    "last_record_id": checkpoint.last_processed_record_id,
                    "last_record_data": (
                        Json(checkpoint.last_processed_record_data)
                        if checkpoint.last_processed_record_data is not None else None
                    ),
                    "http_status_code": checkpoint.http_status_code,
                    "response_headers": (
                        Json(checkpoint.response_headers)
                        if checkpoint.response_headers is not None else None
                    ),
                    "processed_at": checkpoint.processed_at,
                },
            )
            row = await result.fetchone()

            if row is None:
                logger.error(f"Checkpoint for unknown session {key}")
                return None

            session = self._row_to_session(row)
            logger.debug(
                f"Checkpoint {key}: offset={session.current_offset} "
                f"processed={session.processed_records} failed={session.failed_records}"
            )
            return session

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _row_to_session(self, row: Dict[str, Any]) -> PacketSession:
        """Convert database row to PacketSession model."""
        return PacketSession(
            session_id=row["session_id"],
            activity_id=row["activity_id"],
            application_date=row["application_date"],
            activity_type=row.get("activity_type"),
            activity_status=row.get("activity_status"),
            endpoint_url=row["endpoint_url"],
            packet_size=row["packet_size"],
            total_records=row.get("total_records") or 0,
            processed_records=row.get("processed_records") or 0,
            failed_records=row.get("failed_records") or 0,
            current_offset=row.get("current_offset") or 0,
            packet_count=row.get("packet_count") or 0,
            status=SessionStatus(row["status"]),
            error_message=row.get("error_message"),
            error_category=row.get("error_category"),
            failure_reason=row.get("failure_reason"),
            http_status_code=row.get("http_status_code"),
            stack_trace=row.get("stack_trace"),
            total_processing_time_ms=row.get("total_processing_time_ms") or 0,
            last_packet_processing_time_ms=row.get("last_packet_processing_time_ms"),
            last_processed_record_id=row.get("last_processed_record_id"),
            last_processed_record_data=row.get("last_processed_record_data"),
            request_headers=row.get("request_headers") or {},
            response_headers=row.get("response_headers") or {},
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            paused_at=row.get("paused_at"),
            cancelled_at=row.get("cancelled_at"),
            last_processed_at=row.get("last_processed_at"),
            version=row.get("version") or 1,
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["SessionRepository"]
