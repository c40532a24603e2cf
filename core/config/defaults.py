# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for packet processing, fetch retry, HTTP
# CREATED: 18 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for packet processing.
These can be overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class PacketDefaults:
    """
    Defaults for the packet processing loop.

    Controls packet size, per-record retry budget and stale detection.
    """
    default_packet_size: int = 10
    max_retries: int = 3            # copied onto each record at creation
    retry_delay_ms: int = 5000      # recorded as retry_scheduled_at offset

    # ACTIVE sessions with no checkpoint for this long are reported as stale
    stale_after_minutes: int = 30

    # Reschedule ACTIVE sessions that have no running loop at startup
    resume_active_on_startup: bool = False

    def resolve_packet_size(self, packet_size: Optional[int]) -> int:
        """Non-positive or missing packet sizes fall back to the default."""
        if packet_size is None or packet_size <= 0:
            return self.default_packet_size
        return packet_size

    @classmethod
    def from_env(cls) -> "PacketDefaults":
        """Create from environment variables."""
        return cls(
            default_packet_size=int(os.getenv("PACKET_DEFAULT_SIZE", 10)),
            max_retries=int(os.getenv("PACKET_MAX_RETRIES", 3)),
            retry_delay_ms=int(os.getenv("PACKET_RETRY_DELAY_MS", 5000)),
            stale_after_minutes=int(os.getenv("PACKET_STALE_AFTER_MINUTES", 30)),
            resume_active_on_startup=_env_bool("PACKET_RESUME_ACTIVE_ON_STARTUP", False),
        )


@dataclass(frozen=True)
class FetchRetryDefaults:
    """
    Retry policy for pagination fetches.

    Exponential backoff: delay before attempt n+1 is
    min(initial_delay_ms * multiplier ** (n - 1), max_delay_ms).
    4xx responses are never retried.
    """
    max_attempts: int = 5
    initial_delay_ms: int = 500
    multiplier: float = 1.5
    max_delay_ms: int = 5000

    def delay_seconds(self, attempt: int) -> float:
        """Backoff after the given (1-based) failed attempt."""
        delay_ms = self.initial_delay_ms * (self.multiplier ** max(attempt - 1, 0))
        return min(delay_ms, self.max_delay_ms) / 1000.0

    @classmethod
    def from_env(cls) -> "FetchRetryDefaults":
        """Create from environment variables."""
        return cls(
            max_attempts=int(os.getenv("FETCH_RETRY_MAX_ATTEMPTS", 5)),
            initial_delay_ms=int(os.getenv("FETCH_RETRY_INITIAL_DELAY_MS", 500)),
            multiplier=float(os.getenv("FETCH_RETRY_MULTIPLIER", 1.5)),
            max_delay_ms=int(os.getenv("FETCH_RETRY_MAX_DELAY_MS", 5000)),
        )


@dataclass(frozen=True)
class HttpDefaults:
    """
    Defaults for outbound HTTP to paginated endpoints.

    Client identity and protocol version are sent as tracing headers.
    """
    connect_timeout_ms: int = 5000
    read_timeout_ms: int = 30000
    client_name: str = "packet-processor"
    protocol_version: str = "1.0"

    @classmethod
    def from_env(cls) -> "HttpDefaults":
        """Create from environment variables."""
        return cls(
            connect_timeout_ms=int(os.getenv("HTTP_CONNECT_TIMEOUT_MS", 5000)),
            read_timeout_ms=int(os.getenv("HTTP_READ_TIMEOUT_MS", 30000)),
            client_name=os.getenv("PACKET_CLIENT_NAME", "packet-processor"),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    packet: PacketDefaults = field(default_factory=PacketDefaults)
    fetch_retry: FetchRetryDefaults = field(default_factory=FetchRetryDefaults)
    http: HttpDefaults = field(default_factory=HttpDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            packet=PacketDefaults.from_env(),
            fetch_retry=FetchRetryDefaults.from_env(),
            http=HttpDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "PacketDefaults",
    "FetchRetryDefaults",
    "HttpDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
