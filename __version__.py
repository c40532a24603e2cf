# ============================================================================
# VERSION - PACKET PROCESSOR
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# ============================================================================
"""
Version information for the packet processor.

This is the single source of truth for the application version.
Updated manually for each release.
"""
__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-18"

EPOCH = 1
CODENAME = "Packet Processor"
