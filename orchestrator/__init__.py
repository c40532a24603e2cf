# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Packet processing loop
# PURPOSE: Run one fetch / dispatch / checkpoint loop per ACTIVE session
# CREATED: 18 OCT 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import PacketOrchestrator

    orchestrator = PacketOrchestrator(session_repo, record_repo, client, processor)
    await orchestrator.start()
    orchestrator.schedule(key)
"""

from .loop import PacketOrchestrator, extract_record_id

__all__ = ["PacketOrchestrator", "extract_record_id"]
