"""
Socius Sync — Custom Exception Hierarchy
==========================================

What:  Application-specific exceptions for the sync engine, its collaborators
       and the reference server.
How:   Each exception carries a message and an optional context dict. The
       engine catches gateway and store errors at its boundary; the reference
       server turns them into JSON error responses.

Exception Hierarchy:
    SociusSyncError (base)
    ├── ValidationError            → caller passed an invalid payload (400 on the server)
    ├── RecordNotFoundError        → unknown record id (404 on the server)
    ├── LocalStoreError            → on-device snapshot could not be written
    ├── DatabaseError              → reference server persistence failed (500)
    └── RemoteGatewayError         → any failed call to the remote collection API
        ├── RemoteNotFoundError        → remote answered 404 for a record
        ├── RemoteServerError          → remote answered 5xx (retried)
        ├── RemoteUnavailableError     → transport failure: DNS, connect, timeout
        └── CircuitBreakerOpenError    → call rejected locally, remote recently down

Propagation policy:
    RemoteGatewayError and LocalStoreError never escape SyncEngine; they are
    logged and the affected record simply stays unsynced. ValidationError and
    RecordNotFoundError are programming errors of the caller and are raised.
"""

from typing import Any, Dict, Optional


class SociusSyncError(Exception):
    """
    Base exception for all Socius Sync errors.

    Attributes:
        message:  Human-readable error description
        context:  Additional debug info (logged, never shown to the end user)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(SociusSyncError):
    """
    Raised when a record payload or patch fails validation.

    When:    add() with a missing domain field, update() touching an immutable
             field, a POST body the server cannot accept.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class RecordNotFoundError(SociusSyncError):
    """
    Raised when a record id is not present in a collection.

    When:    SyncEngine.update() for an id that was never added or already
             deleted; PUT /{collection}/{id} on the reference server.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        collection: str = "record",
        record_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {collection} record was not found"
        if record_id:
            message = f"{collection} record '{record_id}' was not found"
        ctx = context or {}
        ctx["collection"] = collection
        if record_id:
            ctx["record_id"] = record_id
        super().__init__(message=message, context=ctx)
        self.collection = collection
        self.record_id = record_id


class LocalStoreError(SociusSyncError):
    """
    Raised when the on-device snapshot cannot be written.

    Reads never raise: an unreadable or corrupt snapshot loads as an empty
    collection. Writes raise this so the engine can log the failure and keep
    serving its in-memory collection.
    """

    def __init__(
        self,
        message: str = "Local store operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(SociusSyncError):
    """
    Raised by the reference server when a query or commit fails.

    HTTP:    500 Internal Server Error (details logged server-side only)
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RemoteGatewayError(SociusSyncError):
    """
    Raised when a call to the remote collection API fails.

    Attributes:
        status_code:  HTTP status of the failed response, None for transport errors
    """

    def __init__(
        self,
        message: str = "Remote collection API call failed",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code


class RemoteNotFoundError(RemoteGatewayError):
    """The remote store has no record with the requested client id."""

    def __init__(
        self,
        record_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if record_id:
            ctx["record_id"] = record_id
        super().__init__(
            message=f"Remote record '{record_id}' does not exist",
            status_code=404,
            context=ctx,
        )


class RemoteServerError(RemoteGatewayError):
    """The remote answered with a 5xx status. Retried by the gateway."""


class RemoteUnavailableError(RemoteGatewayError):
    """Transport-level failure (offline, DNS, refused connection, timeout)."""

    def __init__(
        self,
        message: str = "Remote collection API is unreachable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, status_code=None, context=context)


class CircuitBreakerOpenError(RemoteGatewayError):
    """
    Raised when the gateway circuit breaker is OPEN.

    When:    After cb_failure_threshold consecutive failed calls, until
             cb_recovery_timeout seconds have passed.
    HTTP:    503 Service Unavailable (when surfaced by a server)

    State machine:
        CLOSED → (threshold failures) → OPEN → (recovery timeout) → HALF_OPEN
        HALF_OPEN → success → CLOSED
        HALF_OPEN → failure → OPEN
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            "Remote collection API is marked unavailable after repeated failures. "
            f"Calls resume in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
