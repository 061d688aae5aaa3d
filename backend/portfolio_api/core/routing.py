"""
Portfolio API — Route Table & Dispatcher
=========================================

What:  Stores method + path → handler bindings and dispatches requests to them.
How:   Routes live in one ordered mapping per HTTP method. Dispatch tries an
       exact lookup first, then the parameterized patterns in registration
       order; the first match wins (no best-match scoring).
Who:   Populated by the route modules at startup; called by the Application
       Driver when no middleware short-circuited the request.

Pattern syntax:
    "/api/contact/messages/{id}"
    `{name}` matches exactly one non-empty path segment (no "/").
    Captured values are passed to the handler positionally, left to right.

Handler forms:
    - any callable (sync or async) taking the path parameters positionally
    - "Controller@action": resolved through the HandlerRegistry when the route
      is registered, so a bad binding fails at startup, not per request
"""

import inspect
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple, Union

from portfolio_api.core.envelope import ApiResponse
from portfolio_api.core.paths import join_paths, normalize_path
from portfolio_api.exceptions import InvalidHandlerError, NotFoundError

logger = logging.getLogger(__name__)

HTTP_METHODS = ("GET", "POST", "PUT", "DELETE", "OPTIONS")

PREFLIGHT_ALLOWED_HEADERS = "Content-Type, Authorization"
PREFLIGHT_MAX_AGE = "86400"

_PLACEHOLDER = re.compile(r"\{([^{}/]+)\}")

Handler = Callable[..., Any]
HandlerSpec = Union[Handler, str]


# ══════════════════════════════════════════════════════════════════════════
# Handler registry
# ══════════════════════════════════════════════════════════════════════════

class HandlerRegistry:
    """
    Maps stable controller names to controller instances.

    `resolve("ContactController@create")` returns the bound `create` method
    of the registered ContactController.
    """

    def __init__(self) -> None:
        self._controllers: Dict[str, Any] = {}

    def register(self, name: str, controller: Any) -> None:
        self._controllers[name] = controller

    def resolve(self, reference: str) -> Handler:
        """
        Raises:
            InvalidHandlerError: malformed reference, unknown controller or
                                 unknown action
        """
        controller_name, sep, action_name = reference.partition("@")
        if not sep or not controller_name or not action_name:
            raise InvalidHandlerError(
                message=f"Invalid handler format: {reference}",
                context={"handler": reference},
            )

        controller = self._controllers.get(controller_name)
        if controller is None:
            raise InvalidHandlerError(
                message=f"Controller not found: {controller_name}",
                context={"handler": reference},
            )

        action = getattr(controller, action_name, None)
        if action_name.startswith("_") or not callable(action):
            raise InvalidHandlerError(
                message=f"Method not found: {controller_name}::{action_name}",
                context={"handler": reference},
            )
        return action


# ══════════════════════════════════════════════════════════════════════════
# Route table
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class Route:
    method: str
    pattern: str
    handler: Handler
    regex: Optional[Pattern[str]] = None
    param_names: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_parameterized(self) -> bool:
        return self.regex is not None

    def match(self, path: str) -> Optional[Tuple[str, ...]]:
        """Positional parameters when `path` matches, else None."""
        if self.regex is None:
            return () if path == self.pattern else None
        found = self.regex.fullmatch(path)
        return found.groups() if found else None


def compile_pattern(pattern: str) -> Tuple[Optional[Pattern[str]], Tuple[str, ...]]:
    """
    Convert a route pattern into an anchored matcher.

    Literal text is escaped; each `{name}` becomes `([^/]+)`. Returns
    (None, ()) for patterns without placeholders.
    """
    names = tuple(_PLACEHOLDER.findall(pattern))
    if not names:
        return None, ()

    parts = []
    position = 0
    for placeholder in _PLACEHOLDER.finditer(pattern):
        parts.append(re.escape(pattern[position:placeholder.start()]))
        parts.append(r"([^/]+)")
        position = placeholder.end()
    parts.append(re.escape(pattern[position:]))
    return re.compile("".join(parts)), names


class RouteGroup:
    """Registers routes under a shared path prefix. Usable as a context manager."""

    def __init__(self, router: "Router", prefix: str):
        self._router = router
        self.prefix = normalize_path(prefix)

    def __enter__(self) -> "RouteGroup":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        return None

    def add_route(self, method: str, path: str, handler: HandlerSpec) -> Route:
        return self._router.add_route(method, join_paths(self.prefix, path), handler)

    def group(self, prefix: str) -> "RouteGroup":
        return RouteGroup(self._router, join_paths(self.prefix, prefix))

    def get(self, path: str, handler: HandlerSpec) -> Route:
        return self.add_route("GET", path, handler)

    def post(self, path: str, handler: HandlerSpec) -> Route:
        return self.add_route("POST", path, handler)

    def put(self, path: str, handler: HandlerSpec) -> Route:
        return self.add_route("PUT", path, handler)

    def delete(self, path: str, handler: HandlerSpec) -> Route:
        return self.add_route("DELETE", path, handler)

    def options(self, path: str, handler: HandlerSpec) -> Route:
        return self.add_route("OPTIONS", path, handler)


class Router(RouteGroup):
    """
    Route table plus dispatcher.

    Re-registering the same method and normalized path replaces the previous
    handler (last registration wins) while keeping the route's original
    position in the matching order.
    """

    def __init__(self, registry: Optional[HandlerRegistry] = None):
        super().__init__(self, "/")
        self.registry = registry or HandlerRegistry()
        self._routes: Dict[str, Dict[str, Route]] = {method: {} for method in HTTP_METHODS}
        self._registration_order: List[Tuple[str, str]] = []

    # ── Registration ──────────────────────────────────────────────────────

    def add_route(self, method: str, path: str, handler: HandlerSpec) -> Route:
        method = method.upper()
        if method not in self._routes:
            raise ValueError(f"Unsupported HTTP method: {method}")

        pattern = normalize_path(path)
        resolved = self._resolve_handler(handler)
        regex, names = compile_pattern(pattern)

        if pattern in self._routes[method]:
            logger.debug("Replacing handler for %s %s", method, pattern)
        else:
            self._registration_order.append((method, pattern))

        route = Route(method=method, pattern=pattern, handler=resolved, regex=regex, param_names=names)
        self._routes[method][pattern] = route
        return route

    def group(self, prefix: str) -> RouteGroup:
        return RouteGroup(self, prefix)

    def _resolve_handler(self, handler: HandlerSpec) -> Handler:
        if isinstance(handler, str):
            return self.registry.resolve(handler)
        if not callable(handler):
            raise InvalidHandlerError(
                message=f"Invalid handler: {handler!r}",
                context={"handler": repr(handler)},
            )
        return handler

    def routes(self) -> List[Tuple[str, str]]:
        """All (method, pattern) pairs in first-registration order."""
        return list(self._registration_order)

    # ── Matching ──────────────────────────────────────────────────────────

    def match(self, method: str, path: str) -> Optional[Tuple[Route, Tuple[str, ...]]]:
        """Find the route for `method` and a normalized `path`."""
        table = self._routes.get(method.upper(), {})

        exact = table.get(path)
        if exact is not None and not exact.is_parameterized:
            return exact, ()

        for route in table.values():
            if not route.is_parameterized:
                continue
            params = route.match(path)
            if params is not None:
                return route, params
        return None

    def allowed_methods(self, path: str) -> List[str]:
        """Methods with a route matching `path`, OPTIONS first."""
        path = normalize_path(path)
        allowed = ["OPTIONS"]
        for method in HTTP_METHODS:
            if method != "OPTIONS" and self.match(method, path) is not None:
                allowed.append(method)
        return allowed

    # ── Dispatch ──────────────────────────────────────────────────────────

    async def dispatch(self, method: str, path: str) -> ApiResponse:
        """
        Run the handler bound to `method` and `path`.

        Raises:
            NotFoundError: nothing matched (and no preflight could be built)
            Any exception raised by the handler, unchanged
        """
        method = method.upper()
        path = normalize_path(path)

        found = self.match(method, path)
        if found is not None:
            route, params = found
            return await self._invoke(route, params)

        if method == "OPTIONS":
            preflight = self._preflight(path)
            if preflight is not None:
                return preflight

        raise NotFoundError(
            message=f"Route not found: {method} {path}",
            context={"method": method, "path": path},
        )

    async def _invoke(self, route: Route, params: Tuple[str, ...]) -> ApiResponse:
        result = route.handler(*params)
        if inspect.isawaitable(result):
            result = await result
        return ApiResponse.coerce(result)

    def _preflight(self, path: str) -> Optional[ApiResponse]:
        allowed = self.allowed_methods(path)
        if len(allowed) == 1:
            return None

        methods = ", ".join(allowed)
        return ApiResponse(
            status_code=200,
            body={"message": "CORS preflight", "allowed_methods": allowed},
            headers={
                "Allow": methods,
                "Access-Control-Allow-Methods": methods,
                "Access-Control-Allow-Headers": PREFLIGHT_ALLOWED_HEADERS,
                "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
            },
        )
