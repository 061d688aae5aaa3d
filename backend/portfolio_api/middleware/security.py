"""
Portfolio API — Security Headers Middleware
============================================

What:  Hardening response headers, a request size cap and a coarse
       injection-signature scan of user input.
How:   Headers are parked on the request's outgoing headers; the checks raise
       PayloadTooLargeError (413) or SuspiciousInputError (400), which the
       chain turns into error responses before routing.

The signature scan is a tripwire for obvious markup/script payloads, not an
HTML sanitizer. Output encoding remains the consumer's job.
"""

import json
import logging
import re
from typing import Optional, Pattern, Tuple

from portfolio_api.core.envelope import ApiResponse, RequestEnvelope
from portfolio_api.core.middleware import Middleware
from portfolio_api.exceptions import PayloadTooLargeError, SuspiciousInputError

logger = logging.getLogger(__name__)

MAX_REQUEST_SIZE = 10 * 1024 * 1024  # 10 MiB

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self'; style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: https:; connect-src 'self'"
    ),
    "Server": "Portfolio-API",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"

SUSPICIOUS_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE | re.DOTALL)
    for pattern in (
        r"<script[^>]*>.*?</script>",
        r"javascript:",
        r"\bon\w+\s*=",
        r"<iframe[^>]*>.*?</iframe>",
        r"data:text/html",
        r"<object[^>]*>.*?</object>",
        r"<embed[^>]*>",
    )
)


def scan_for_injection(text: str) -> Optional[str]:
    """Return the first matching signature's pattern, or None."""
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(text):
            return pattern.pattern
    return None


class SecurityHeadersMiddleware(Middleware):
    def __init__(self, max_request_size: int = MAX_REQUEST_SIZE):
        self.max_request_size = max_request_size

    async def handle(self, request: RequestEnvelope) -> Optional[ApiResponse]:
        self._set_security_headers(request)
        self._validate_request_size(request)
        self._validate_input(request)
        return None

    @staticmethod
    def _set_security_headers(request: RequestEnvelope) -> None:
        for name, value in SECURITY_HEADERS.items():
            request.outgoing_headers.set(name, value)
        if request.is_https:
            request.outgoing_headers.set("Strict-Transport-Security", HSTS_VALUE)

    def _validate_request_size(self, request: RequestEnvelope) -> None:
        declared = request.content_length
        if declared > self.max_request_size:
            logger.warning(
                "Rejected oversized request from %s: %d bytes declared (max %d)",
                request.client_ip, declared, self.max_request_size,
            )
            raise PayloadTooLargeError(max_size=self.max_request_size, declared_size=declared)

    @staticmethod
    def _validate_input(request: RequestEnvelope) -> None:
        # Scanned as serialized JSON so nested values are covered too
        all_input = json.dumps(request.body, default=str) + json.dumps(request.query, default=str)
        matched = scan_for_injection(all_input)
        if matched is not None:
            logger.warning(
                "Suspicious input detected from IP: %s (%s %s)",
                request.client_ip, request.method, request.path,
            )
            raise SuspiciousInputError(context={"pattern": matched})
