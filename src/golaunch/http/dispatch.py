"""
=============================================================================
DISPATCH TABLE
=============================================================================

Maps request paths to handler functions.

The table is an ordinary object built by the caller and handed to the
server, not a process-wide registry that handlers add themselves to:

    routes = DispatchTable()
    routes.register("/", handle_root)
    routes.register("/health", handle_health)

    server = HTTPServer(config, routes)

=============================================================================
PATTERN MATCHING
=============================================================================

Two kinds of pattern, the same rules as Go's http.ServeMux:

    "/health"   EXACT    matches /health only
    "/"         SUBTREE  (trailing slash) matches / and everything below
    "/static/"  SUBTREE  matches /static/, /static/css/site.css, ...

When several patterns match, the LONGEST wins:

    request path        candidates              winner
    ────────────        ──────────              ──────
    /health             "/health", "/"          "/health"
    /health/            "/"                     "/"
    /favicon.ico        "/"                     "/"

So with "/" registered every path has a handler; 404 only happens for
tables without a root pattern.

=============================================================================
PATH CLEANING
=============================================================================

Requests for a non-canonical path are redirected (301) to the cleaned
path instead of being dispatched:

    //health        → /health
    /a/../health    → /health
    /./             → /

Matching and cleaning see the percent-decoded path ("/heal%74h" is
"/health"); the Location of a redirect is re-encoded.

Trailing slashes are kept ("/x/" stays "/x/"). CONNECT requests are never
redirected.

=============================================================================
"""

import logging
import posixpath
from urllib.parse import quote
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .request import HTTPRequest
from .response import HTTPResponse, moved_permanently, not_found


logger = logging.getLogger(__name__)


Handler = Callable[[HTTPRequest], HTTPResponse]


@dataclass(frozen=True)
class Route:
    """A registered pattern and its handler."""
    pattern: str
    handler: Handler

    @property
    def is_subtree(self) -> bool:
        return self.pattern.endswith("/")

    def matches(self, path: str) -> bool:
        if self.is_subtree:
            return path.startswith(self.pattern)
        return path == self.pattern


def clean_path(path: str) -> str:
    """
    Canonical form of a URL path.

    Resolves "." and "..", collapses repeated slashes, keeps a trailing
    slash, and never climbs above "/".
    """
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path

    cleaned = posixpath.normpath(path)
    # normpath keeps exactly two leading slashes (POSIX allows it)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    if path.endswith("/") and cleaned != "/":
        cleaned += "/"
    return cleaned


class DispatchTable:
    """
    Explicit path → handler table.

    Patterns must start with "/". Registering the same pattern twice is an
    error; the table never silently replaces a handler.
    """

    def __init__(self, routes: Optional[Dict[str, Handler]] = None):
        self._routes: Dict[str, Route] = {}
        for pattern, handler in (routes or {}).items():
            self.register(pattern, handler)

    def register(self, pattern: str, handler: Handler) -> Route:
        """
        Add a pattern.

        Args:
            pattern: "/exact" or "/subtree/".
            handler: Function taking an HTTPRequest, returning an HTTPResponse.

        Returns:
            The new Route.

        Raises:
            ValueError: Invalid or duplicate pattern.
        """
        if not pattern.startswith("/"):
            raise ValueError(f"Pattern must start with '/': {pattern!r}")
        if pattern in self._routes:
            raise ValueError(f"Multiple registrations for {pattern}")
        if not callable(handler):
            raise ValueError(f"Handler for {pattern} is not callable")

        route = Route(pattern=pattern, handler=handler)
        self._routes[pattern] = route
        return route

    def route(self, pattern: str):
        """
        Decorator form of register().

            @routes.route("/health")
            def health(request):
                return text("OK\\n")
        """
        def decorator(handler: Handler) -> Handler:
            self.register(pattern, handler)
            return handler
        return decorator

    @property
    def patterns(self) -> list:
        """Registered patterns, longest first (match order)."""
        return sorted(self._routes, key=len, reverse=True)

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, pattern: str) -> bool:
        return pattern in self._routes

    def match(self, path: str) -> Optional[Route]:
        """
        Find the route for an already-clean path.

        Returns:
            The longest matching Route, or None.
        """
        exact = self._routes.get(path)
        if exact is not None:
            return exact

        for pattern in self.patterns:
            route = self._routes[pattern]
            if route.is_subtree and route.matches(path):
                return route
        return None

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """
        Dispatch a request.

        1. Non-canonical path → 301 to the clean one
        2. Longest matching pattern → its handler
        3. No match → 404
        """
        if request.method != "CONNECT" and request.path.startswith("/"):
            cleaned = clean_path(request.path)
            if cleaned != request.path:
                location = quote(cleaned, errors="surrogateescape")
                if request.query:
                    location += f"?{request.query}"
                logger.debug(f"Redirecting {request.path} to {location}")
                return moved_permanently(location)

        route = self.match(request.path)
        if route is None:
            return not_found()

        return route.handler(request)
