"""
Portfolio API — CORS Middleware
================================

What:  Enforces the cross-origin allow-list and answers browser preflights.
How:   Compares the Origin header (trailing slash stripped) against the
       configured allow-list by exact string match.
When:  After the request id is assigned, before security checks and rate
       limiting, so a rejected origin never consumes rate-limit budget.

Policy:
    Origin absent        → permissive method/header/max-age headers, continue
    Origin allowed       → full CORS headers incl. credentials, continue
    Origin not allowed   → 403 (ForbiddenOriginError)
    OPTIONS (absent or allowed origin) → 200 preflight body, router skipped

Unlisted-origin escape hatch:
    With CORS_ALLOW_UNLISTED_ORIGINS=true and APP_ENV other than development,
    requests from unlisted origins are treated like allowed ones (origin
    echoed, preflight answered) and a warning is logged for each one.
    Off by default.
"""

import logging
from typing import Iterable, Optional

from portfolio_api.config import Settings
from portfolio_api.core.envelope import ApiResponse, RequestEnvelope
from portfolio_api.core.middleware import Middleware
from portfolio_api.exceptions import ForbiddenOriginError

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "POST", "PUT", "DELETE", "OPTIONS")
ALLOWED_HEADERS = ("Content-Type", "Authorization", "X-Requested-With")
MAX_AGE = "86400"  # 24 hours


def normalize_origin(origin: str) -> str:
    return origin.strip().rstrip("/")


class CORSMiddleware(Middleware):
    """
    Args:
        allowed_origins:        Exact origins accepted (normalized on construction)
        allow_unlisted_origins: Escape hatch, see module docstring
    """

    def __init__(self, allowed_origins: Iterable[str], allow_unlisted_origins: bool = False):
        self.allowed_origins = frozenset(
            normalize_origin(o) for o in allowed_origins if o.strip()
        )
        self.allow_unlisted_origins = allow_unlisted_origins

    @classmethod
    def from_settings(cls, settings: Settings) -> "CORSMiddleware":
        return cls(
            allowed_origins=settings.allowed_origins_list,
            # Development already accepts the local origins; never loosen it further
            allow_unlisted_origins=(
                settings.cors_allow_unlisted_origins and not settings.is_development
            ),
        )

    def is_origin_allowed(self, origin: str) -> bool:
        return normalize_origin(origin) in self.allowed_origins

    async def handle(self, request: RequestEnvelope) -> Optional[ApiResponse]:
        origin = request.origin

        if not origin:
            self._set_basic_headers(request)
        elif self.is_origin_allowed(origin):
            self._set_origin_headers(request, origin)
        elif self.allow_unlisted_origins:
            logger.warning(
                "CORS: passing request from unlisted origin %s (%s %s)",
                origin, request.method, request.path,
            )
            self._set_origin_headers(request, origin)
        else:
            logger.warning("CORS: blocked request from unauthorized origin %s", origin)
            raise ForbiddenOriginError(origin=origin)

        if request.method == "OPTIONS":
            return ApiResponse(
                status_code=200,
                body={
                    "message": "CORS preflight successful",
                    "allowed_methods": list(ALLOWED_METHODS),
                    "allowed_headers": list(ALLOWED_HEADERS),
                },
            )
        return None

    @staticmethod
    def _set_basic_headers(request: RequestEnvelope) -> None:
        headers = request.outgoing_headers
        headers.set("Access-Control-Allow-Methods", ", ".join(ALLOWED_METHODS))
        headers.set("Access-Control-Allow-Headers", ", ".join(ALLOWED_HEADERS))
        headers.set("Access-Control-Max-Age", MAX_AGE)

    def _set_origin_headers(self, request: RequestEnvelope, origin: str) -> None:
        headers = request.outgoing_headers
        headers.set("Access-Control-Allow-Origin", origin)
        headers.set("Access-Control-Allow-Credentials", "true")
        self._set_basic_headers(request)
        headers.set("Vary", "Origin")
