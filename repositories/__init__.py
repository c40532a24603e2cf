# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Database access layer
# PURPOSE: CRUD operations for packet sessions and records
# CREATED: 18 OCT 2026
# ============================================================================
"""
Repositories Module

Provides database access for packet processing entities.
Uses psycopg3 async with connection pooling.

Usage:
    from repositories import get_pool, SessionRepository

    pool = await get_pool()
    session_repo = SessionRepository(pool)
    session = await session_repo.get(key)
"""

from .database import get_pool, init_pool, close_pool
from .session_repo import SessionRepository
from .record_repo import RecordRepository

__all__ = [
    "get_pool",
    "init_pool",
    "close_pool",
    "SessionRepository",
    "RecordRepository",
]
