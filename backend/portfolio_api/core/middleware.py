"""
Portfolio API — Middleware Chain
=================================

What:  Ordered list of request interceptors run before routing.
How:   Each middleware's `handle(request)` returns either None (continue) or
       an ApiResponse (stop). The first response ends the chain; later
       middleware and the router never run for that request.
       A PortfolioAPIError raised by a middleware is turned into its error
       response right here, so middleware-detected faults (CORS, payload
       size, injection, rate limit) never reach the router.

Execution model:
    Request → [mw 1] → [mw 2] → ... → [mw n] → Router.dispatch
                 │        │              │
                 └────────┴──── response ┴──→ returned as final response

    Stages run one after another within the request; no stage starts before
    the previous one has finished.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, List, Optional

from portfolio_api.core.envelope import ApiResponse, RequestEnvelope
from portfolio_api.core.errors import FaultTranslator, active_translator, log_fault
from portfolio_api.exceptions import PortfolioAPIError

logger = logging.getLogger(__name__)


class Middleware(ABC):
    """A request interceptor: return None to continue, a response to stop."""

    @abstractmethod
    async def handle(self, request: RequestEnvelope) -> Optional[ApiResponse]:
        raise NotImplementedError

    @property
    def name(self) -> str:
        return type(self).__name__


class MiddlewareChain:
    """Runs middleware in registration order with short-circuiting."""

    def __init__(
        self,
        translator: Optional[FaultTranslator] = None,
        middleware: Iterable[Middleware] = (),
    ):
        self._translator = translator or FaultTranslator()
        self._middleware: List[Middleware] = list(middleware)

    def add(self, middleware: Middleware) -> "MiddlewareChain":
        self._middleware.append(middleware)
        return self

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self._middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    async def handle(self, request: RequestEnvelope) -> Optional[ApiResponse]:
        for middleware in self._middleware:
            try:
                result = await middleware.handle(request)
            except PortfolioAPIError as exc:
                log_fault(exc, request)
                return active_translator(self._translator).translate(exc, request)

            if result is not None:
                logger.debug(
                    "%s short-circuited %s %s with %d",
                    middleware.name, request.method, request.path, result.status_code,
                )
                return result
        return None
