"""
Portfolio API — Custom Exception Hierarchy
===========================================

What:  Application-specific exceptions, each carrying its HTTP status code.
How:   Every exception class holds a message and an optional context dict.
       The fault translator (core/errors.py) turns them into structured JSON
       error responses using the class-level `status_code`.
Who:   Raised by the router, middleware, services and handlers.

Exception Hierarchy:
    PortfolioAPIError (base)             → 500
    ├── NotFoundError                    → 404 no route / no resource
    ├── InvalidHandlerError              → 500 unresolvable Controller@action
    ├── ValidationError                  → 400 client input failed validation
    ├── RateLimitExceededError           → 429 carries retry_after
    ├── ForbiddenOriginError             → 403 CORS policy
    ├── PayloadTooLargeError             → 413 declared body over the cap
    ├── SuspiciousInputError             → 400 injection signature matched
    ├── InternalFaultError               → 500 anything uncaught
    ├── DatabaseError                    → 500
    ├── RateLimitStoreError              → 500
    └── EmailDeliveryError               → 502
"""

from typing import Any, Dict, List, Optional


class PortfolioAPIError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, only returned outside production)
    """

    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class NotFoundError(PortfolioAPIError):
    """
    Raised when no route matches, or a requested resource does not exist.

    HTTP: 404 Not Found
    """

    status_code = 404
    error_code = "not_found"

    def __init__(
        self,
        message: Optional[str] = None,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"The requested {resource} was not found"
            if resource_id:
                message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class InvalidHandlerError(PortfolioAPIError):
    """
    Raised when a route references a controller or action that does not exist.

    Symbolic handlers are resolved when the route is registered, so this
    normally surfaces at startup rather than during a request.
    HTTP: 500 Internal Server Error
    """

    status_code = 500
    error_code = "invalid_handler"


class ValidationError(PortfolioAPIError):
    """
    Raised when client input fails validation.

    `errors` holds every individual violation so the client can fix all of
    them at once.
    HTTP: 400 Bad Request
    """

    status_code = 400
    error_code = "validation_error"

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[List[str]] = None,
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        self.errors = list(errors or [])
        if self.errors:
            ctx["errors"] = self.errors
        super().__init__(message=message, context=ctx)
        self.field = field


class RateLimitExceededError(PortfolioAPIError):
    """
    Raised when a client exceeds one of the per-IP rate limits.

    HTTP: 429 Too Many Requests, with a Retry-After header equal to the
    configured window of the limit that triggered.
    """

    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 900,
        message: str = "Too many requests. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class ForbiddenOriginError(PortfolioAPIError):
    """Request Origin is not on the CORS allow-list. HTTP: 403 Forbidden"""

    status_code = 403
    error_code = "origin_not_allowed"

    def __init__(self, origin: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["origin"] = origin
        super().__init__(message="CORS: Origin not allowed", context=ctx)
        self.origin = origin


class PayloadTooLargeError(PortfolioAPIError):
    """Declared Content-Length exceeds the fixed cap. HTTP: 413"""

    status_code = 413
    error_code = "payload_too_large"

    def __init__(
        self,
        max_size: int,
        declared_size: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"max_size": max_size, "declared_size": declared_size})
        super().__init__(message="Request payload too large", context=ctx)


class SuspiciousInputError(PortfolioAPIError):
    """Request body or query matched an injection signature. HTTP: 400"""

    status_code = 400
    error_code = "suspicious_input"

    def __init__(
        self,
        message: str = "Invalid characters detected in request",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InternalFaultError(PortfolioAPIError):
    """
    Response-side stand-in for an uncaught fault that is not a
    PortfolioAPIError. HTTP: 500

    Built by the fault translator; the original exception stays in the logs.
    """

    status_code = 500
    error_code = "internal_error"


class DatabaseError(PortfolioAPIError):
    """
    Raised when database operations fail unexpectedly.

    The message returned to the client is always generic; details (SQL,
    constraint names) go to the server log only.
    HTTP: 500 Internal Server Error
    """

    status_code = 500
    error_code = "database_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitStoreError(PortfolioAPIError):
    """The rate-limit document could not be written. HTTP: 500"""

    status_code = 500
    error_code = "rate_limit_store_error"


class EmailDeliveryError(PortfolioAPIError):
    """
    Raised when the e-mail provider rejects or fails a send after retries.

    HTTP: 502 Bad Gateway (the upstream provider failed, not this service)
    """

    status_code = 502
    error_code = "email_delivery_error"

    def __init__(
        self,
        message: str = "E-mail delivery failed",
        provider: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if provider:
            ctx["provider"] = provider
        super().__init__(message=message, context=ctx)
        self.provider = provider
