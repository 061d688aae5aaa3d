"""
Portfolio API — Request ID Middleware
======================================

What:  Assigns a correlation id to each request and returns it to the client.
How:   Reuses the client's X-Request-ID when present, otherwise generates a
       short UUID; stores it in a ContextVar read by the logging filter and
       parks it on the outgoing X-Request-ID header.
When:  Right after the error handler, so every later log line of the
       request carries the id.
"""

import uuid
from contextvars import ContextVar
from typing import Optional

from portfolio_api.core.envelope import ApiResponse, RequestEnvelope
from portfolio_api.core.middleware import Middleware

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

MAX_CLIENT_ID_LENGTH = 64


class RequestIDMiddleware(Middleware):
    """
    Behavior:
        1. Use the client-provided X-Request-ID (trimmed, max 64 chars)
        2. Otherwise generate an 8 character UUID prefix
        3. Store it in `request_id_var` for the log filter
        4. Add it to the response headers
    """

    async def handle(self, request: RequestEnvelope) -> Optional[ApiResponse]:
        rid = request.header("x-request-id").strip()[:MAX_CLIENT_ID_LENGTH]
        if not rid:
            rid = str(uuid.uuid4())[:8]

        request_id_var.set(rid)
        request.outgoing_headers.set("X-Request-ID", rid)
        return None
