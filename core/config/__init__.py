# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 18 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the packet processor.
"""

from core.config.defaults import (
    PacketDefaults,
    FetchRetryDefaults,
    HttpDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "PacketDefaults",
    "FetchRetryDefaults",
    "HttpDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
