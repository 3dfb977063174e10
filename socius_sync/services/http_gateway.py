"""
Socius Sync — HTTP Remote Gateway
===================================

What:  RemoteGateway implementation over the collection REST API.
How:   httpx.AsyncClient for the calls, tenacity for bounded retries of
       transient failures, and a circuit breaker shared by every collection
       on the same API so an offline device fails fast.
Who:   Built by SociusClient, one gateway per collection plus one document
       gateway for the physical stats; called only by the sync engines.

Resilience Strategy:
    1. Transport errors (offline, DNS, refused, timeout) and 5xx responses
       are retried with exponential backoff and jitter. POST is idempotent
       on client_id, so a retried create never duplicates a record.
    2. 4xx responses are final and do not count against the breaker: the
       remote is reachable, it just refused this request.
    3. After cb_failure_threshold consecutive failed calls the breaker opens
       and every call raises CircuitBreakerOpenError without touching the
       network until cb_recovery_timeout has passed.
"""

import logging
import time
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from socius_sync.config import settings
from socius_sync.exceptions import (
    CircuitBreakerOpenError,
    RemoteGatewayError,
    RemoteNotFoundError,
    RemoteServerError,
    RemoteUnavailableError,
)
from socius_sync.services.gateway_base import RemoteGateway

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Fails calls fast while the remote API is known to be down.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all calls)
            → can_execute() raises CircuitBreakerOpenError
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (probing)
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (restart the timer)

    All engines run on one event loop and the breaker never awaits, so its
    counters need no lock. Several calls may probe at once in HALF_OPEN.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check if a call is allowed through.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout has not elapsed.
        """
        if self.state == self.OPEN:
            elapsed = time.monotonic() - (self.last_failure_time or 0)
            if elapsed < self.recovery_timeout:
                raise CircuitBreakerOpenError(
                    recovery_time=max(1, int(self.recovery_timeout - elapsed))
                )
            logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (remote reachable again)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (probe failed)")
            self.state = self.OPEN
        elif self.state == self.CLOSED and self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


def create_circuit_breaker() -> CircuitBreaker:
    return CircuitBreaker(
        failure_threshold=settings.cb_failure_threshold,
        recovery_timeout=settings.cb_recovery_timeout,
    )


def create_http_client(
    base_url: Optional[str] = None,
    token: Optional[str] = None,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    AsyncClient for the collection API.

    `transport` lets tests route requests into the reference server
    in-process (httpx.ASGITransport).
    """
    headers = {"Accept": "application/json"}
    token = settings.api_token if token is None else token
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(
        base_url=base_url or settings.api_base_url,
        headers=headers,
        timeout=timeout or settings.api_timeout,
        transport=transport,
    )


# ══════════════════════════════════════════════════════════════════════════
# HTTP Resources
# ══════════════════════════════════════════════════════════════════════════

class HttpResource:
    """
    One REST path on the collection API, with retry and breaker handling.

    Args:
        client:           Shared AsyncClient (owned by the caller)
        path:             Resource path, e.g. "/workouts/activities"
        circuit_breaker:  Shared breaker; a private one is created when omitted
        max_attempts, min_wait, max_wait:
                          Retry policy; defaults come from settings
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        path: str,
        circuit_breaker: Optional[CircuitBreaker] = None,
        max_attempts: Optional[int] = None,
        min_wait: Optional[float] = None,
        max_wait: Optional[float] = None,
    ):
        self.client = client
        self.path = "/" + path.strip("/")
        self.circuit_breaker = circuit_breaker or create_circuit_breaker()
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.min_wait = settings.retry_min_wait if min_wait is None else min_wait
        self.max_wait = settings.retry_max_wait if max_wait is None else max_wait

    def _item_url(self, record_id: str) -> str:
        return f"{self.path}/{quote(record_id, safe='')}"

    async def _request(
        self,
        method: str,
        url: str,
        json: Optional[Any] = None,
    ) -> httpx.Response:
        """
        Send one logical call: breaker check, retried send, breaker bookkeeping.

        Raises:
            CircuitBreakerOpenError: breaker is open, nothing was sent
            RemoteUnavailableError: transport failed on every attempt
            RemoteServerError: remote answered 5xx on every attempt
        """
        request_id = uuid.uuid4().hex[:8]
        self.circuit_breaker.can_execute()

        try:
            response = await self._send_with_retry(method, url, json, request_id)
        except httpx.TransportError as e:
            self.circuit_breaker.record_failure()
            logger.warning("[%s] %s %s unreachable: %s", request_id, method, url, str(e))
            raise RemoteUnavailableError(
                context={"request_id": request_id, "method": method, "url": url},
            )
        except RemoteServerError:
            self.circuit_breaker.record_failure()
            raise

        self.circuit_breaker.record_success()
        return response

    async def _send_with_retry(
        self,
        method: str,
        url: str,
        json: Optional[Any],
        request_id: str,
    ) -> httpx.Response:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type((httpx.TransportError, RemoteServerError)),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.min_wait,
                max=self.max_wait,
                jitter=1,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send_once(method, url, json, request_id)
        raise RemoteGatewayError(message="Retry loop ended without a result")

    async def _send_once(
        self,
        method: str,
        url: str,
        json: Optional[Any],
        request_id: str,
    ) -> httpx.Response:
        start_time = time.perf_counter()
        response = await self.client.request(
            method,
            url,
            json=json,
            headers={"X-Request-ID": request_id},
        )
        duration_ms = (time.perf_counter() - start_time) * 1000

        if response.status_code >= 500:
            logger.warning(
                "[%s] %s %s answered %d after %.0fms",
                request_id, method, url, response.status_code, duration_ms,
            )
            raise RemoteServerError(
                message=f"Remote answered {response.status_code} to {method} {url}",
                status_code=response.status_code,
                context={"request_id": request_id},
            )

        logger.debug(
            "[%s] %s %s → %d in %.0fms",
            request_id, method, url, response.status_code, duration_ms,
        )
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, record_id: Optional[str] = None) -> None:
        if response.status_code == 404 and record_id is not None:
            raise RemoteNotFoundError(record_id=record_id)
        if response.status_code >= 400:
            raise RemoteGatewayError(
                message=(
                    f"Remote rejected {response.request.method} {response.request.url.path} "
                    f"with {response.status_code}"
                ),
                status_code=response.status_code,
                context={"body": response.text[:200]},
            )

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RemoteGatewayError(
                message="Remote answered with a body that is not JSON",
                status_code=response.status_code,
                context={"error": str(e)},
            )

    async def health_check(self) -> bool:
        """GET /health outside the breaker and retry policy; never raises."""
        try:
            response = await self.client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Remote health check failed: %s", str(e))
            return False


class HttpRemoteGateway(HttpResource, RemoteGateway):
    """
    A collection on the REST API.

    Endpoints:
        POST   {path}        create (idempotent on client_id)
        GET    {path}        list
        PUT    {path}/{id}   update
        DELETE {path}/{id}   delete (404 counts as success)
    """

    async def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("POST", self.path, json=body)
        self._raise_for_status(response)
        stored = self._json(response)
        return stored if isinstance(stored, dict) else dict(body)

    async def list(self) -> List[Dict[str, Any]]:
        response = await self._request("GET", self.path)
        self._raise_for_status(response)
        data = self._json(response)
        if not isinstance(data, list):
            raise RemoteGatewayError(
                message=f"Expected a JSON array from GET {self.path}",
                status_code=response.status_code,
                context={"type": type(data).__name__},
            )
        return data

    async def update(self, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("PUT", self._item_url(record_id), json=patch)
        self._raise_for_status(response, record_id=record_id)
        stored = self._json(response)
        return stored if isinstance(stored, dict) else {}

    async def delete(self, record_id: str) -> None:
        response = await self._request("DELETE", self._item_url(record_id))
        if response.status_code == 404:
            logger.debug("Remote %s/%s already absent", self.path, record_id)
            return
        self._raise_for_status(response)


class HttpDocumentGateway(HttpResource):
    """
    A single JSON document on the REST API (GET to read, POST to replace).

    Used for /workouts/stats.
    """

    async def fetch(self) -> Optional[Dict[str, Any]]:
        """The stored document, or None when the remote has none (404 or null)."""
        response = await self._request("GET", self.path)
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        data = self._json(response)
        if data is not None and not isinstance(data, dict):
            raise RemoteGatewayError(
                message=f"Expected a JSON object from GET {self.path}",
                status_code=response.status_code,
            )
        return data

    async def store(self, body: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._request("POST", self.path, json=body)
        self._raise_for_status(response)
        stored = self._json(response)
        return stored if isinstance(stored, dict) else dict(body)
