# ============================================================================
# PACKET PROCESSOR - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - FastAPI application entry point
# PURPOSE: Main application with background session loops
# CREATED: 18 OCT 2026
# ============================================================================
"""
Packet Processor Main Application

FastAPI application that:
1. Provides HTTP API for starting and controlling processing sessions
2. Runs one background loop per active session
3. Manages database connections and the shared HTTP client

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from __version__ import __version__, BUILD_DATE, EPOCH

from repositories import init_pool, close_pool, SessionRepository, RecordRepository
from services import SessionService, ErrorClassifier
from orchestrator import PacketOrchestrator
from infrastructure import PaginationClient
from processors import get_processor
from api.routes import router, set_services

# Health check system (importing health registers the checks)
from health import health_router, configure_health, get_checks

from core.logging import configure_logging

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = logging.getLogger(__name__)

# Global instances
_orchestrator: PacketOrchestrator = None
_client: PaginationClient = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes services on startup, cleans up on shutdown.
    """
    global _orchestrator, _client

    logger.info(f"Starting Packet Processor v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    # Initialize database pool
    pool = await init_pool(
        min_size=int(os.environ.get("DB_POOL_MIN", "2")),
        max_size=int(os.environ.get("DB_POOL_MAX", "10")),
    )
    logger.info("Database pool initialized")

    # Optional: Bootstrap schema on startup (for development)
    if os.environ.get("AUTO_BOOTSTRAP_SCHEMA", "").lower() == "true":
        logger.info("Auto-bootstrap enabled, deploying schema...")
        from infrastructure import DatabaseInitializer
        result = await DatabaseInitializer(pool).initialize_all(dry_run=False)
        if result.success:
            logger.info("Schema bootstrap completed successfully")
        else:
            logger.warning(f"Schema bootstrap had issues: {result.errors}")

    session_repo = SessionRepository(pool)
    record_repo = RecordRepository(pool)

    processor_name = os.environ.get("RECORD_PROCESSOR", "accept")
    processor = get_processor(processor_name)
    logger.info(f"Using record processor: {processor_name}")

    _client = PaginationClient()
    _orchestrator = PacketOrchestrator(
        session_repo,
        record_repo,
        _client,
        processor,
        classifier=ErrorClassifier(),
    )
    session_service = SessionService(session_repo, record_repo, orchestrator=_orchestrator)

    # Set services for API routes
    set_services(session_service, orchestrator=_orchestrator)

    # Start orchestrator (reschedules ACTIVE sessions when configured)
    await _orchestrator.start()
    logger.info("Orchestrator started")

    configure_health(pool=pool, orchestrator=_orchestrator)
    logger.info(f"Health checks initialized ({len(get_checks())} checks registered)")

    yield

    # Shutdown
    logger.info("Shutting down Packet Processor...")

    await _orchestrator.stop()
    await _client.close()
    await close_pool()

    logger.info("Packet Processor stopped")


# Create FastAPI app
app = FastAPI(
    title="Packet Processor",
    description=f"Epoch {EPOCH} resumable packet processing engine",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include health check routes (no prefix - /livez, /readyz, /health)
app.include_router(health_router)

# Include API routes
app.include_router(router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Packet Processor",
        "version": __version__,
        "epoch": EPOCH,
        "build_date": BUILD_DATE,
        "status": "running",
        "docs": "/docs",
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
