"""
Portfolio API — Middleware Package
===================================

What:  Request interceptors run by the MiddlewareChain before routing.

Default chain (order matters):
    Request → [ErrorHandler] → [RequestID] → [CORS] → [Security] → [RateLimit] → Router

    1. ErrorHandler first: installs the fault translator for everything after it
    2. RequestID: correlation id for all later log lines
    3. CORS: rejects foreign origins and answers preflights early
    4. Security: hardening headers, size cap, injection scan
    5. RateLimit last: only requests that passed the policy checks count
"""

from portfolio_api.middleware.cors import CORSMiddleware
from portfolio_api.middleware.error_handler import ErrorHandlerMiddleware
from portfolio_api.middleware.rate_limit import RateLimitMiddleware
from portfolio_api.middleware.request_id import RequestIDMiddleware, request_id_var
from portfolio_api.middleware.security import SecurityHeadersMiddleware

__all__ = [
    "CORSMiddleware",
    "ErrorHandlerMiddleware",
    "RateLimitMiddleware",
    "RequestIDMiddleware",
    "SecurityHeadersMiddleware",
    "request_id_var",
]
