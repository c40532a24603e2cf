# ============================================================================
# PAGINATION CLIENT
# ============================================================================
# EPOCH: 1 - PACKET PROCESSING
# STATUS: Infrastructure - Outbound HTTP to paginated endpoints
# PURPOSE: Fetch one packet (page) of records with retry and backoff
# CREATED: 18 OCT 2026
# ============================================================================
"""
Pagination Client

Issues GET requests for one page of records at offset/limit and turns the
response into a PageResult. Never raises for HTTP or parsing failures:
the loop inspects PageResult.success and error_category.

Retry policy:
- 5xx, transport errors and unexpected errors are retried with
  exponential backoff (FetchRetryDefaults)
- 4xx is never retried
- An unparseable body is not retried

Body shapes recognized:
- top-level JSON list
- object with a "data", "records" or "items" list
- anything else is treated as a single record

Usage:
    async with PaginationClient() as client:
        result = await client.fetch_page(url, offset=0, limit=10, headers={})
"""

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from core.config import FetchRetryDefaults, HttpDefaults, get_defaults
from core.contracts import FetchErrorCategory
from core.models import PacketMetadata, PageResult

logger = logging.getLogger(__name__)

# Wrapper fields checked in order
RECORD_COLLECTION_FIELDS = ("data", "records", "items")

# Pagination metadata headers
HEADER_TOTAL_RECORDS = "X-Total-Records"
HEADER_HAS_MORE = "X-Has-More-Records"
HEADER_NEXT_OFFSET = "X-Next-Offset"
HEADER_CURRENT_OFFSET = "X-Current-Offset"
HEADER_PACKET_SIZE = "X-Packet-Size"
HEADER_SERVER_PROCESSING_TIME = "X-Server-Processing-Time"
HEADER_SERVER_TIMESTAMP = "X-Server-Timestamp"


class ResponseProcessingError(ValueError):
    """Body could not be decoded into records."""


def parse_records(body: bytes) -> List[Any]:
    """
    Extract the record collection from a response body.

    Raises:
        ResponseProcessingError: body is not valid JSON
    """
    if not body or not body.strip():
        return []

    try:
        decoded = json.loads(body)
    except ValueError as e:
        raise ResponseProcessingError(f"Invalid JSON body: {e}") from e

    if isinstance(decoded, list):
        return decoded

    if isinstance(decoded, dict):
        for name in RECORD_COLLECTION_FIELDS:
            value = decoded.get(name)
            if isinstance(value, list):
                return value

    return [decoded]


def _int_header(headers: httpx.Headers, name: str) -> int:
    raw = headers.get(name)
    if raw is None or not raw.strip():
        return 0
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning(f"Unparseable pagination header {name}={raw!r}, using 0")
        return 0


def parse_metadata(headers: httpx.Headers) -> PacketMetadata:
    """Read pagination headers; missing or bad values default to 0 / False."""
    has_more_raw = (headers.get(HEADER_HAS_MORE) or "").strip().lower()
    return PacketMetadata(
        total_records=_int_header(headers, HEADER_TOTAL_RECORDS),
        has_more_records=has_more_raw in ("true", "1"),
        next_offset=_int_header(headers, HEADER_NEXT_OFFSET),
        current_offset=_int_header(headers, HEADER_CURRENT_OFFSET),
        packet_size=_int_header(headers, HEADER_PACKET_SIZE),
        server_processing_time_ms=_int_header(headers, HEADER_SERVER_PROCESSING_TIME),
        server_timestamp=headers.get(HEADER_SERVER_TIMESTAMP),
    )


class PaginationClient:
    """
    Async pagination client backed by httpx.AsyncClient.

    One client is shared by all session loops; httpx pools connections
    per host.
    """

    def __init__(
        self,
        http: Optional[HttpDefaults] = None,
        retry: Optional[FetchRetryDefaults] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            http: Timeouts and client identity (defaults from env)
            retry: Backoff policy (defaults from env)
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Backoff sleep, injectable for tests
        """
        defaults = get_defaults()
        self.http = http or defaults.http
        self.retry = retry or defaults.fetch_retry
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.http.read_timeout_ms / 1000.0,
                    connect=self.http.connect_timeout_ms / 1000.0,
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "PaginationClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # REQUEST BUILDING
    # =========================================================================

    @staticmethod
    def build_url(endpoint_url: str, offset: int, limit: int) -> str:
        """Append offset/limit, keeping any query the endpoint already has."""
        return str(httpx.URL(endpoint_url).copy_merge_params({"offset": offset, "limit": limit}))

    def build_headers(self, headers: Optional[Dict[str, str]], offset: int, limit: int) -> Dict[str, str]:
        """Caller headers plus request-tracing headers (tracing wins on clash)."""
        now_ms = int(time.time() * 1000)
        merged = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        merged.update(headers or {})
        merged.update({
            "X-Packet-Offset": str(offset),
            "X-Packet-Limit": str(limit),
            "X-Packet-Request-Time": str(now_ms),
            "X-Packet-Request-Id": f"req_{now_ms}_{uuid.uuid4().hex[:8]}",
            "X-Packet-Client": self.http.client_name,
            "X-Packet-Version": self.http.protocol_version,
        })
        return merged

    # =========================================================================
    # FETCH
    # =========================================================================

    async def fetch_page(
        self,
        endpoint_url: str,
        offset: int,
        limit: int,
        headers: Optional[Dict[str, str]] = None,
    ) -> PageResult:
        """
        Fetch one page of records.

        Args:
            endpoint_url: Paginated endpoint
            offset: Pagination offset (the session checkpoint)
            limit: Packet size
            headers: Caller headers forwarded on every attempt

        Returns:
            PageResult; success=False carries error_category and message
        """
        url = self.build_url(endpoint_url, offset, limit)
        last_failure: Optional[PageResult] = None

        max_attempts = max(self.retry.max_attempts, 1)

        for attempt in range(1, max_attempts + 1):
            outcome = await self._attempt(url, endpoint_url, offset, limit, headers, attempt)

            if outcome.success:
                return outcome

            last_failure = outcome
            if not outcome.error_category.is_retryable():
                logger.warning(f"Fetch failed without retry: {outcome.error_message}")
                return outcome

            if attempt < max_attempts:
                delay = self.retry.delay_seconds(attempt)
                logger.warning(
                    f"Fetch attempt {attempt}/{max_attempts} failed "
                    f"({outcome.error_category.value}), retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        logger.error(
            f"Fetch of {endpoint_url} at offset {offset} failed after "
            f"{max_attempts} attempts: {last_failure.error_message}"
        )
        return last_failure

    async def _attempt(
        self,
        url: str,
        endpoint_url: str,
        offset: int,
        limit: int,
        headers: Optional[Dict[str, str]],
        attempt: int,
    ) -> PageResult:
        def failure(message: str, category: FetchErrorCategory, status: Optional[int] = None) -> PageResult:
            return PageResult.failure(
                endpoint_url, offset, limit, message, category,
                http_status_code=status, attempts=attempt,
            )

        try:
            response = await self._get_client().get(url, headers=self.build_headers(headers, offset, limit))
        except (httpx.TimeoutException, httpx.TransportError) as e:
            return failure(f"Connection error: {e}", FetchErrorCategory.CONNECTION_ERROR)
        except Exception as e:
            logger.exception(f"Unexpected error fetching {url}: {e}")
            return failure(f"Unexpected error: {e}", FetchErrorCategory.UNKNOWN_ERROR)

        status = response.status_code
        if 400 <= status < 500:
            return failure(f"Client error: {status} - {response.text[:500]}", FetchErrorCategory.CLIENT_ERROR, status)
        if status >= 500:
            return failure(f"Server error: {status} - {response.text[:500]}", FetchErrorCategory.SERVER_ERROR, status)
        if not response.is_success:
            return failure(f"Unexpected error: HTTP {status}", FetchErrorCategory.UNKNOWN_ERROR, status)

        try:
            records = parse_records(response.content)
        except ResponseProcessingError as e:
            return failure(f"Response processing error: {e}", FetchErrorCategory.RESPONSE_PROCESSING_ERROR, status)

        metadata = parse_metadata(response.headers)
        fetched = len(records)

        result = PageResult(
            success=True,
            records=records,
            endpoint_url=endpoint_url,
            offset=offset,
            limit=limit,
            total_records=metadata.total_records if metadata.total_records > 0 else fetched,
            has_more_records=metadata.has_more_records or fetched == limit,
            next_offset=metadata.next_offset if metadata.next_offset > 0 else offset + fetched,
            metadata=metadata,
            http_status_code=status,
            response_headers=dict(response.headers),
            attempts=attempt,
        )
        logger.debug(
            f"Fetched {fetched} records from {endpoint_url} "
            f"(offset={offset}, limit={limit}, has_more={result.has_more_records})"
        )
        return result


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "PaginationClient",
    "ResponseProcessingError",
    "parse_records",
    "parse_metadata",
]
