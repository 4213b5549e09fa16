"""
=============================================================================
REQUEST HANDLERS
=============================================================================

A handler is a plain function: HTTPRequest in, HTTPResponse out.

    ┌──────────────┬──────────────────────────────┬────────┐
    │ Pattern      │ Body                         │ Status │
    ├──────────────┼──────────────────────────────┼────────┤
    │ /            │ Welcome to the Go Web App!\n │ 200    │
    │ /health      │ OK\n                         │ 200    │
    └──────────────┴──────────────────────────────┴────────┘

Both answer any method and never fail. "/" is a subtree pattern, so it
also serves every path that "/health" doesn't match.

=============================================================================
"""

from ..http import DispatchTable
from .index import handle_root, GREETING
from .health import handle_health, HEALTHY


def default_routes() -> DispatchTable:
    """Build the server's dispatch table."""
    routes = DispatchTable()
    routes.register("/", handle_root)
    routes.register("/health", handle_health)
    return routes


__all__ = [
    "default_routes",
    "handle_root",
    "handle_health",
    "GREETING",
    "HEALTHY",
]
