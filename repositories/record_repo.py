# ============================================================================
# RECORD REPOSITORY
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Packet record persistence
# PURPOSE: Database access for packet_records table
# CREATED: 18 OCT 2026
# ============================================================================
"""
Record Repository

CRUD and query operations for records dispatched within a session.

Records are ordered by (packet_number, record_index) everywhere the loop
reads them back, so replays follow the original fetch order.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import RecordStatus
from core.models import PacketRecord
from .database import TABLE_RECORDS, TABLE_SESSIONS

logger = logging.getLogger(__name__)


class RecordRepository:
    """Repository for PacketRecord entities."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def create(self, record: PacketRecord) -> PacketRecord:
        """Insert a record (normally PENDING, the instant it is fetched)."""
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (
                    record_key, session_id, activity_id, application_date, record_id,
                    packet_number, record_index, status, record_data,
                    retry_count, max_retries, created_at, updated_at
                ) VALUES (
                    %(record_key)s, %(session_id)s, %(activity_id)s, %(application_date)s, %(record_id)s,
                    %(packet_number)s, %(record_index)s, %(status)s, %(record_data)s,
                    %(retry_count)s, %(max_retries)s, %(created_at)s, %(updated_at)s
                )
                """).format(TABLE_RECORDS),
                {
                    "record_key": record.record_key,
                    "session_id": record.session_id,
                    "activity_id": record.activity_id,
                    "application_date": record.application_date,
                    "record_id": record.record_id,
                    "packet_number": record.packet_number,
                    "record_index": record.record_index,
                    "status": record.status.value,
                    "record_data": Json(record.record_data) if record.record_data is not None else None,
                    "retry_count": record.retry_count,
                    "max_retries": record.max_retries,
                    "created_at": record.created_at,
                    "updated_at": record.updated_at,
                },
            )
            logger.debug(
                f"Created record {record.record_id} "
                f"(packet={record.packet_number}, index={record.record_index})"
            )
            return record

    async def update(self, record: PacketRecord) -> bool:
        """
        Persist a record's status and outcome fields.

        Records are written only by the loop that owns the session, so no
        version check is needed here.
        """
        record.updated_at = datetime.utcnow()

        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    status = %(status)s,
                    error_message = %(error_message)s,
                    error_category = %(error_category)s,
                    failure_reason = %(failure_reason)s,
                    stack_trace = %(stack_trace)s,
                    processing_time_ms = %(processing_time_ms)s,
                    processed_at = %(processed_at)s,
                    failed_at = %(failed_at)s,
                    updated_at = %(updated_at)s
                WHERE record_key = %(record_key)s
                """).format(TABLE_RECORDS),
                {
                    "record_key": record.record_key,
                    "status": record.status.value,
                    "error_message": record.error_message,
                    "error_category": record.error_category,
                    "failure_reason": record.failure_reason,
                    "stack_trace": record.stack_trace,
                    "processing_time_ms": record.processing_time_ms,
                    "processed_at": record.processed_at,
                    "failed_at": record.failed_at,
                    "updated_at": record.updated_at,
                },
            )
            return result.rowcount > 0

    async def settle_retry(self, record: PacketRecord) -> bool:
        """
        Persist a retried record's outcome and count it on the session.

        Record and session counters change in one statement, so a retry
        pass interrupted between records never leaves a settled record
        uncounted. Only a PROCESSING row is settled.

        Returns:
            True if the record was settled and counted
        """
        record.updated_at = datetime.utcnow()
        succeeded = record.status == RecordStatus.SUCCESS

        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                WITH settled AS (
                    UPDATE {records} SET
                        status = %(status)s,
                        error_message = %(error_message)s,
                        error_category = %(error_category)s,
                        failure_reason = %(failure_reason)s,
                        stack_trace = %(stack_trace)s,
                        processing_time_ms = %(processing_time_ms)s,
                        processed_at = %(processed_at)s,
                        failed_at = %(failed_at)s,
                        updated_at = %(updated_at)s
                    WHERE record_key = %(record_key)s
                      AND status = 'processing'
                    RETURNING session_id, record_id, record_data
                )
                UPDATE {sessions} AS s SET
                    processed_records = s.processed_records + %(processed_delta)s,
                    failed_records = s.failed_records + %(failed_delta)s,
                    total_processing_time_ms = s.total_processing_time_ms + %(processing_time_ms)s,
                    last_processed_record_id = settled.record_id,
                    last_processed_record_data = settled.record_data,
                    last_processed_at = NOW(),
                    updated_at = NOW(),
                    version = s.version + 1
                FROM settled
                WHERE s.session_id = settled.session_id
                """).format(records=TABLE_RECORDS, sessions=TABLE_SESSIONS),
                {
                    "record_key": record.record_key,
                    "status": record.status.value,
                    "error_message": record.error_message,
                    "error_category": record.error_category,
                    "failure_reason": record.failure_reason,
                    "stack_trace": record.stack_trace,
                    "processing_time_ms": record.processing_time_ms or 0,
                    "processed_at": record.processed_at,
                    "failed_at": record.failed_at,
                    "updated_at": record.updated_at,
                    "processed_delta": 1 if succeeded else 0,
                    "failed_delta": 0 if succeeded else 1,
                },
            )
            settled = result.rowcount > 0
            if not settled:
                logger.warning(f"Retried record {record.record_id} was not PROCESSING, outcome dropped")
            return settled

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def list_for_session(
        self,
        session_id: str,
        status: Optional[RecordStatus] = None,
        packet_number: Optional[int] = None,
        limit: int = 1000,
    ) -> List[PacketRecord]:
        """Records of a session in fetch order, optionally filtered."""
        filters = [sql.SQL("session_id = %s")]
        params: List[Any] = [session_id]

        if status is not None:
            filters.append(sql.SQL("status = {}").format(sql.Literal(status.value)))
        if packet_number is not None:
            filters.append(sql.SQL("packet_number = %s"))
            params.append(packet_number)

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT * FROM {} WHERE {}
                ORDER BY packet_number ASC, record_index ASC
                LIMIT %s
                """).format(TABLE_RECORDS, sql.SQL(" AND ").join(filters)),
                (*params, limit),
            )
            rows = await result.fetchall()
            return [self._row_to_record(row) for row in rows]

    async def list_pending(self, session_id: str, up_to_packet: Optional[int] = None) -> List[PacketRecord]:
        """
        PENDING records in fetch order.

        up_to_packet restricts to already-checkpointed packets, which is
        where retried records live.
        """
        records = await self.list_for_session(session_id, status=RecordStatus.PENDING, limit=100000)
        if up_to_packet is not None:
            records = [r for r in records if r.packet_number <= up_to_packet]
        return records

    async def count_by_status(self, session_id: str) -> Dict[str, int]:
        """Record counts for a session keyed by status value."""
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                SELECT status::text AS status, COUNT(*) AS count
                FROM {}
                WHERE session_id = %s
                GROUP BY status
                """).format(TABLE_RECORDS),
                (session_id,),
            )
            rows = await result.fetchall()
            return {row["status"]: row["count"] for row in rows}

    # =========================================================================
    # BULK TRANSITIONS
    # =========================================================================

    async def reset_retryable_failed(self, session_id: str, scheduled_at: datetime) -> List[PacketRecord]:
        """
        FAILED (retry_count < max_retries) -> PENDING, retry_count + 1.

        The session's failed_records counter is decremented by the number
        of reset rows in the same statement, so processed + failed keeps
        matching the SUCCESS/FAILED record count. Nothing is reset once the
        session is CANCELLED.

        Returns:
            The reset records in fetch order
        """
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("""
                WITH reset AS (
                    UPDATE {records} SET
                        status = 'pending',
                        retry_count = retry_count + 1,
                        retry_scheduled_at = %(scheduled_at)s,
                        updated_at = NOW()
                    WHERE session_id = %(session_id)s
                      AND status = 'failed'
                      AND retry_count < max_retries
                      AND packet_number <= (
                          SELECT packet_count FROM {sessions}
                          WHERE session_id = %(session_id)s
                            AND status <> 'cancelled'
                      )
                    RETURNING *
                ), adjusted AS (
                    UPDATE {sessions} SET
                        failed_records = failed_records - (SELECT COUNT(*) FROM reset),
                        updated_at = NOW(),
                        version = version + 1
                    WHERE session_id = %(session_id)s
                      AND EXISTS (SELECT 1 FROM reset)
                    RETURNING session_id
                )
                SELECT * FROM reset
                ORDER BY packet_number ASC, record_index ASC
                """).format(records=TABLE_RECORDS, sessions=TABLE_SESSIONS),
                {"session_id": session_id, "scheduled_at": scheduled_at},
            )
            rows = await result.fetchall()
            records = [self._row_to_record(row) for row in rows]

            if records:
                logger.info(f"Reset {len(records)} failed records to PENDING for {session_id}")
            return records

    async def skip_unsettled(self, session_id: str, after_packet: int) -> int:
        """
        Mark records of packets beyond the last checkpoint as SKIPPED.

        Those packets were interrupted before their checkpoint and will be
        fetched again from current_offset, so their rows must not count.

        Returns:
            Number of records skipped
        """
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    status = 'skipped',
                    failure_reason = 'Packet re-fetched after interruption',
                    updated_at = NOW()
                WHERE session_id = %s
                  AND packet_number > %s
                  AND status <> 'skipped'
                """).format(TABLE_RECORDS),
                (session_id, after_packet),
            )
            skipped = result.rowcount
            if skipped:
                logger.warning(
                    f"Skipped {skipped} records of interrupted packets "
                    f"(> packet {after_packet}) for {session_id}"
                )
            return skipped

    async def requeue_interrupted(self, session_id: str, up_to_packet: int) -> int:
        """
        PROCESSING -> PENDING for records of checkpointed packets.

        Such a record was mid-retry when its loop stopped; it was never
        counted, so it goes back to the retry queue with its retry_count.

        Returns:
            Number of records requeued
        """
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("""
                UPDATE {} SET
                    status = 'pending',
                    processed_at = NULL,
                    updated_at = NOW()
                WHERE session_id = %s
                  AND packet_number <= %s
                  AND status = 'processing'
                """).format(TABLE_RECORDS),
                (session_id, up_to_packet),
            )
            requeued = result.rowcount
            if requeued:
                logger.warning(f"Requeued {requeued} interrupted retries for {session_id}")
            return requeued

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _row_to_record(self, row: Dict[str, Any]) -> PacketRecord:
        """Convert database row to PacketRecord model."""
        return PacketRecord(
            record_key=row["record_key"],
            session_id=row["session_id"],
            activity_id=row["activity_id"],
            application_date=row["application_date"],
            record_id=row["record_id"],
            packet_number=row["packet_number"],
            record_index=row["record_index"],
            status=RecordStatus(row["status"]),
            record_data=row.get("record_data"),
            error_message=row.get("error_message"),
            error_category=row.get("error_category"),
            failure_reason=row.get("failure_reason"),
            stack_trace=row.get("stack_trace"),
            processing_time_ms=row.get("processing_time_ms"),
            retry_count=row.get("retry_count") or 0,
            max_retries=row.get("max_retries") if row.get("max_retries") is not None else 3,
            created_at=row["created_at"],
            updated_at=row.get("updated_at") or row["created_at"],
            processed_at=row.get("processed_at"),
            failed_at=row.get("failed_at"),
            retry_scheduled_at=row.get("retry_scheduled_at"),
        )


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["RecordRepository"]
