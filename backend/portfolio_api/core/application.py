"""
Portfolio API — Application Driver
===================================

What:  Runs one request through the pipeline and produces its response.
How:   Envelope → middleware chain → (unless short-circuited) router
       dispatch → render. Any fault raised along the way is logged and
       translated into a structured error response with the fault's status
       (500 when it declares none).
Who:   Called by the FastAPI catch-all route in `main.py`; tests may call
       `handle()` directly with a hand-built RequestEnvelope.

Request lifecycle:
    1. build_envelope(starlette request)         one envelope per request
    2. bind envelope → current_request()          visible to handlers
    3. chain.handle(envelope)                     may short-circuit
    4. router.dispatch(method, path)              when nothing short-circuited
    5. fault → log_fault + translator.translate   translator installed by
                                                  ErrorHandlerMiddleware, or
                                                  the driver's default
    6. render_response + access log line
"""

import logging
import time
from typing import Optional

from starlette.requests import Request
from starlette.responses import Response

from portfolio_api.core.envelope import (
    ApiResponse,
    RequestEnvelope,
    bind_request,
    build_envelope,
    render_response,
    unbind_request,
)
from portfolio_api.core.errors import (
    FaultTranslator,
    active_translator,
    close_translator_scope,
    log_fault,
    open_translator_scope,
)
from portfolio_api.core.middleware import MiddlewareChain
from portfolio_api.core.routing import Router

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("portfolio_api.access")

# Too frequent to be worth an access line each
QUIET_PATHS = frozenset({"/health"})


class Application:
    """
    Args:
        router:     Route table and dispatcher
        chain:      Middleware run before routing
        translator: Fault translator used when no middleware installed one
    """

    def __init__(
        self,
        router: Router,
        chain: MiddlewareChain,
        translator: Optional[FaultTranslator] = None,
    ):
        self.router = router
        self.chain = chain
        self.translator = translator or FaultTranslator()

    async def handle(self, envelope: RequestEnvelope) -> ApiResponse:
        """Produce the response for one envelope. Never raises for app faults."""
        request_token = bind_request(envelope)
        translator_token = open_translator_scope()
        try:
            try:
                response = await self.chain.handle(envelope)
                if response is None:
                    response = await self.router.dispatch(envelope.method, envelope.path)
            except Exception as exc:
                log_fault(exc, envelope)
                response = active_translator(self.translator).translate(exc, envelope)
            return response
        finally:
            close_translator_scope(translator_token)
            unbind_request(request_token)

    async def run(self, request: Request) -> Response:
        """Full HTTP round trip for a Starlette request."""
        # perf_counter: monotonic, sub-microsecond resolution
        start_time = time.perf_counter()

        envelope = await build_envelope(request)
        response = await self.handle(envelope)

        try:
            rendered = render_response(response, envelope.outgoing_headers)
        except (TypeError, ValueError) as exc:
            # Handler returned something that cannot be serialized
            log_fault(exc, envelope)
            rendered = render_response(self.translator.translate(exc, envelope), envelope.outgoing_headers)

        duration_ms = (time.perf_counter() - start_time) * 1000
        self._log_access(envelope, rendered.status_code, duration_ms)
        return rendered

    @staticmethod
    def _log_access(envelope: RequestEnvelope, status: int, duration_ms: float) -> None:
        if envelope.path in QUIET_PATHS:
            return

        # 5xx → ERROR, 4xx → WARNING, everything else → INFO
        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO

        access_logger.log(
            level,
            "%s %s %d %.1fms from %s",
            envelope.method,
            envelope.path,
            status,
            duration_ms,
            envelope.client_ip,
            extra={
                "method": envelope.method,
                "path": envelope.path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": envelope.client_ip,
            },
        )
