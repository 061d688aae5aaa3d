"""
Portfolio API — Request/Response Envelope
==========================================

What:  The value objects that travel through the pipeline.
       - RequestEnvelope: one normalized, read-only view of the inbound request
       - ApiResponse:     the terminal result of a middleware or handler
       - OutgoingHeaders: response headers accumulated before output starts
How:   `build_envelope()` turns a Starlette request into a RequestEnvelope
       (path, query, lower-cased headers, parsed body, client IP);
       `render_response()` serializes an ApiResponse into a Starlette response.
Who:   Built once per request by the Application Driver; read by middleware,
       the router and handlers (via `current_request()`).

Client IP resolution order:
    1. First entry of X-Forwarded-For
    2. X-Real-IP
    3. X-Client-IP / Client-IP
    4. Peer address of the connection
    Each candidate is accepted only if it is a globally routable address.
    When none qualifies, the raw peer address is used.
"""

import dataclasses
import ipaddress
import json
import logging
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel
from starlette.requests import Request
from starlette.responses import Response

from portfolio_api.core.paths import normalize_path

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"

CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "x-client-ip", "client-ip")

UNKNOWN_CLIENT_IP = "0.0.0.0"


# ══════════════════════════════════════════════════════════════════════════
# Outgoing headers
# ══════════════════════════════════════════════════════════════════════════

class OutgoingHeaders:
    """
    Response headers set by middleware before the final response exists.

    Middleware such as CORS and the security headers pass through without
    producing a response, so the headers they set are parked here and merged
    into whatever response the request ends with. Once output has started
    (`mark_sent()`), further writes are ignored instead of failing.
    """

    def __init__(self) -> None:
        self._headers: Dict[str, str] = {}
        self._sent = False

    @property
    def sent(self) -> bool:
        return self._sent

    def set(self, name: str, value: str) -> None:
        if self._sent:
            logger.debug("Ignoring header '%s': output already started", name)
            return
        self._headers[name.lower()] = str(value)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self._headers.get(name.lower(), default)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._headers)

    def mark_sent(self) -> None:
        self._sent = True

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._headers

    def __repr__(self) -> str:
        return f"<OutgoingHeaders sent={self._sent} {self._headers!r}>"


# ══════════════════════════════════════════════════════════════════════════
# Request envelope
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RequestEnvelope:
    """
    Immutable view of one inbound HTTP request.

    `path` is normalized on construction (no trailing slash except root) and
    `method` is upper-cased. `headers` keys are lower-case. `body` is the
    decoded JSON/form payload, or an empty dict.
    """

    method: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = field(default_factory=dict)
    client_ip: str = UNKNOWN_CLIENT_IP
    raw_uri: str = ""
    raw_body: bytes = b""
    scheme: str = "http"
    server_port: Optional[int] = None
    outgoing_headers: OutgoingHeaders = field(
        default_factory=OutgoingHeaders, compare=False, repr=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "path", normalize_path(self.path))
        object.__setattr__(
            self, "headers", {k.lower(): v for k, v in self.headers.items()}
        )
        if not self.raw_uri:
            object.__setattr__(self, "raw_uri", self.path)

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    @property
    def origin(self) -> str:
        return self.header("origin").strip()

    @property
    def user_agent(self) -> str:
        return self.header("user-agent")

    @property
    def content_length(self) -> int:
        """Declared Content-Length, or 0 when absent or malformed."""
        try:
            return max(int(self.header("content-length", "0")), 0)
        except ValueError:
            return 0

    @property
    def is_https(self) -> bool:
        """HTTPS as seen directly or as reported by a reverse proxy."""
        return (
            self.scheme == "https"
            or self.server_port == 443
            or self.header("x-forwarded-proto").lower() == "https"
            or self.header("x-forwarded-ssl").lower() == "on"
        )


_current_request: ContextVar[Optional[RequestEnvelope]] = ContextVar(
    "current_request", default=None
)


def bind_request(envelope: RequestEnvelope) -> Token:
    """Make `envelope` the request returned by `current_request()`."""
    return _current_request.set(envelope)


def unbind_request(token: Token) -> None:
    _current_request.reset(token)


def current_request() -> RequestEnvelope:
    """
    Return the envelope of the request being handled.

    Handlers only receive path parameters; body, query and client details are
    read from here.

    Raises:
        RuntimeError: called outside of a request
    """
    envelope = _current_request.get()
    if envelope is None:
        raise RuntimeError("No request is being handled in this context")
    return envelope


def is_public_ip(candidate: str) -> bool:
    """True for syntactically valid, globally routable IPv4/IPv6 addresses."""
    try:
        return ipaddress.ip_address(candidate.strip()).is_global
    except ValueError:
        return False


def resolve_client_ip(headers: Mapping[str, str], peer: Optional[str]) -> str:
    """Pick the client address from proxy headers, then the peer address."""
    candidates = []
    for name in CLIENT_IP_HEADERS:
        value = headers.get(name, "").strip()
        if value:
            # X-Forwarded-For: client, proxy1, proxy2
            candidates.append(value.split(",")[0].strip())
    if peer:
        candidates.append(peer)

    for candidate in candidates:
        if is_public_ip(candidate):
            return candidate
    return peer or UNKNOWN_CLIENT_IP


def parse_body(raw_body: bytes, content_type: str) -> Any:
    """
    Decode the request body according to its declared content type.

    JSON that fails to decode is treated as an empty body, not an error.
    Content types other than JSON and url-encoded forms yield an empty body.
    """
    if not raw_body:
        return {}

    media_type = content_type.split(";")[0].strip().lower()

    if media_type == "application/json" or media_type.endswith("+json"):
        try:
            decoded = json.loads(raw_body)
        except ValueError:
            logger.debug("Discarding undecodable JSON body (%d bytes)", len(raw_body))
            return {}
        return decoded if isinstance(decoded, (dict, list)) else {}

    if media_type == "application/x-www-form-urlencoded":
        text = raw_body.decode("utf-8", errors="replace")
        return dict(parse_qsl(text, keep_blank_values=True))

    return {}


async def build_envelope(request: Request) -> RequestEnvelope:
    """Build the single RequestEnvelope for a Starlette request."""
    raw_body = await request.body()
    headers = {key.lower(): value for key, value in request.headers.items()}
    peer = request.client.host if request.client else None

    raw_uri = request.url.path
    if request.url.query:
        raw_uri = f"{raw_uri}?{request.url.query}"

    server = request.scope.get("server")
    server_port = server[1] if server else request.url.port

    return RequestEnvelope(
        method=request.method,
        path=request.url.path,
        query=dict(request.query_params),
        headers=headers,
        body=parse_body(raw_body, headers.get("content-type", "")),
        client_ip=resolve_client_ip(headers, peer),
        raw_uri=raw_uri,
        raw_body=raw_body,
        scheme=request.url.scheme,
        server_port=server_port,
    )


# ══════════════════════════════════════════════════════════════════════════
# Response
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ApiResponse:
    """Terminal result of a middleware or handler: status, headers, body."""

    status_code: int = 200
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "ApiResponse":
        """Wrap a plain handler result in a 200 response."""
        if isinstance(value, ApiResponse):
            return value
        return cls(status_code=200, body=value)


def _is_structured(body: Any) -> bool:
    return (
        isinstance(body, (Mapping, list, tuple, set, frozenset, BaseModel))
        or dataclasses.is_dataclass(body)
        or hasattr(body, "__dict__")
    )


def serialize_body(body: Any) -> str:
    """
    Serialize a response body.

    - mappings, sequences, models and other objects → indented JSON
    - strings → passed through verbatim
    - anything else (numbers, booleans, None, ...) → {"data": value}
    """
    if isinstance(body, str):
        return body
    if not _is_structured(body):
        body = {"data": body}
    return json.dumps(jsonable_encoder(body), indent=2, ensure_ascii=False)


def render_response(response: ApiResponse, outgoing: OutgoingHeaders) -> Response:
    """
    Produce the Starlette response, merging headers parked by middleware.

    The response's own headers take precedence over parked ones. After this
    call the outgoing headers are marked as sent.
    """
    headers = outgoing.as_dict()
    headers.update({name.lower(): str(value) for name, value in response.headers.items()})
    headers.setdefault("content-type", JSON_CONTENT_TYPE)
    outgoing.mark_sent()

    return Response(
        content=serialize_body(response.body),
        status_code=response.status_code,
        headers=headers,
    )
