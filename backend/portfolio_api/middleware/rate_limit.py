"""
Portfolio API — Rate Limiting Middleware
==========================================

What:  Per-IP request throttling in front of the router.
How:   Delegates accounting to the RateLimiter service (sliding window log,
       persisted in the rate-limit store) and raises RateLimitExceededError
       when a limit is hit. The chain renders that as 429 with Retry-After.
When:  Last in the default chain, so requests rejected by CORS or the
       security checks do not consume budget.

Limits (configurable via settings):
    general:  RATE_LIMIT_REQUESTS per RATE_LIMIT_WINDOW seconds, every path
    contact:  CONTACT_RATE_LIMIT per CONTACT_RATE_WINDOW seconds, counted for
              POSTs under CONTACT_PATH_PREFIX

The health check is excluded so load balancer probes cannot exhaust a
client's budget.
"""

from typing import Iterable, Optional

from portfolio_api.core.envelope import ApiResponse, RequestEnvelope
from portfolio_api.core.middleware import Middleware
from portfolio_api.exceptions import RateLimitExceededError
from portfolio_api.services.rate_limiter import CONTACT, RateLimiter

EXCLUDED_PATHS = frozenset({"/health"})

GENERAL_LIMIT_MESSAGE = "Too many requests. Please try again later."
CONTACT_LIMIT_MESSAGE = "Too many contact form submissions. Please try again later."


class RateLimitMiddleware(Middleware):
    def __init__(self, limiter: RateLimiter, excluded_paths: Optional[Iterable[str]] = None):
        self.limiter = limiter
        self.excluded_paths = (
            frozenset(excluded_paths) if excluded_paths is not None else EXCLUDED_PATHS
        )

    async def handle(self, request: RequestEnvelope) -> Optional[ApiResponse]:
        if request.path in self.excluded_paths:
            return None

        decision = await self.limiter.check(request.client_ip, request.path, request.method)
        if decision.allowed:
            return None

        raise RateLimitExceededError(
            retry_after=decision.retry_after,
            message=CONTACT_LIMIT_MESSAGE if decision.category == CONTACT else GENERAL_LIMIT_MESSAGE,
            context={
                "client_ip": request.client_ip,
                "category": decision.category,
                "count": decision.count,
                "limit": decision.limit,
            },
        )
