"""
Portfolio API — Fault Translation
==================================

What:  Turns any exception into a structured JSON error response.
How:   The status comes from the fault's declared `status_code` when it has
       one (PortfolioAPIError and friends), else 500. Outside production the
       body also carries a `debug` block (type, file, line, traceback, request).
Who:   Used by the middleware chain (faults raised by middleware) and by the
       Application Driver (faults raised by the router or handlers).

Response shape:
    {
        "error": true,
        "error_code": "not_found",
        "message": "Route not found: GET /nope",
        "status_code": 404,
        "timestamp": "2024-01-15T12:00:00+00:00"
    }
"""

import logging
import traceback
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from portfolio_api.core.envelope import ApiResponse, RequestEnvelope
from portfolio_api.exceptions import (
    ForbiddenOriginError,
    InternalFaultError,
    PortfolioAPIError,
    RateLimitExceededError,
    ValidationError,
)

logger = logging.getLogger(__name__)

GENERIC_FAULT_MESSAGE = "Internal server error"


def status_code_for(exc: BaseException) -> int:
    """Declared HTTP status of a fault, defaulting to 500."""
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and 400 <= status <= 599:
        return status
    return 500


def fault_location(exc: BaseException) -> Tuple[str, int]:
    """File and line where the fault was raised (innermost frame)."""
    tb = exc.__traceback__
    if tb is None:
        return "unknown", 0
    while tb.tb_next is not None:
        tb = tb.tb_next
    return tb.tb_frame.f_code.co_filename, tb.tb_lineno


def log_fault(exc: BaseException, request: Optional[RequestEnvelope]) -> None:
    """Log a fault with request method/path, message and location."""
    method = request.method if request else "UNKNOWN"
    path = request.path if request else "UNKNOWN"
    filename, line = fault_location(exc)
    status = status_code_for(exc)
    message = exc.message if isinstance(exc, PortfolioAPIError) else str(exc)

    if status >= 500:
        logger.error(
            "%s: %s in %s:%d - Request: %s %s",
            type(exc).__name__, message, filename, line, method, path,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
    else:
        logger.warning(
            "%s: %s in %s:%d - Request: %s %s",
            type(exc).__name__, message, filename, line, method, path,
        )


class FaultTranslator:
    """Builds error responses; verbosity depends on the environment."""

    def __init__(self, expose_details: bool = False):
        self.expose_details = expose_details

    def translate(
        self,
        exc: BaseException,
        request: Optional[RequestEnvelope] = None,
    ) -> ApiResponse:
        status = status_code_for(exc)
        headers: Dict[str, str] = {}

        if isinstance(exc, PortfolioAPIError):
            fault = exc
        else:
            # Unexpected faults may carry internals in their message
            fault = InternalFaultError(
                message=str(exc) if self.expose_details and str(exc) else GENERIC_FAULT_MESSAGE
            )

        body: Dict[str, Any] = {
            "error": True,
            "error_code": fault.error_code,
            "message": fault.message,
            "status_code": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        if isinstance(exc, ValidationError) and exc.errors:
            body["errors"] = exc.errors

        if isinstance(exc, ForbiddenOriginError):
            body["origin"] = exc.origin

        if isinstance(exc, RateLimitExceededError):
            body["retry_after"] = exc.retry_after
            headers["Retry-After"] = str(exc.retry_after)

        if self.expose_details:
            body["debug"] = self._debug_block(exc, request)

        return ApiResponse(status_code=status, body=body, headers=headers)

    @staticmethod
    def _debug_block(exc: BaseException, request: Optional[RequestEnvelope]) -> Dict[str, Any]:
        filename, line = fault_location(exc)
        debug: Dict[str, Any] = {
            "type": type(exc).__name__,
            "file": filename,
            "line": line,
            "trace": "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            ),
        }
        if isinstance(exc, PortfolioAPIError) and exc.context:
            debug["context"] = exc.context
        if request is not None:
            debug["request_info"] = {
                "method": request.method,
                "path": request.path,
                "raw_uri": request.raw_uri,
            }
        return debug


# Translator installed for the current request by ErrorHandlerMiddleware
_active_translator: ContextVar[Optional[FaultTranslator]] = ContextVar(
    "active_fault_translator", default=None
)


def open_translator_scope() -> Token:
    """Start a request with no translator installed; pair with close."""
    return _active_translator.set(None)


def close_translator_scope(token: Token) -> None:
    _active_translator.reset(token)


def activate_translator(translator: FaultTranslator) -> None:
    _active_translator.set(translator)


def active_translator(default: FaultTranslator) -> FaultTranslator:
    return _active_translator.get() or default
