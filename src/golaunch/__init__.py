"""
=============================================================================
GOLAUNCH
=============================================================================

A minimal HTTP server with a graceful-shutdown lifecycle:

    - Two routes: "/" (greeting) and "/health" (liveness)
    - PORT environment variable, default 8080
    - SIGINT/SIGTERM → stop accepting, drain for up to 5s, exit

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    golaunch/
    ├── __init__.py       # Package exports
    ├── __main__.py       # CLI entry point (python -m golaunch)
    ├── config.py         # ServerConfig
    ├── errors.py         # BindError, ShutdownTimeout, ...
    ├── server.py         # HTTPServer: start / shutdown
    ├── lifecycle.py      # run(): signals, exit codes
    │
    ├── core/             # Low-level plumbing
    │   ├── socket_server.py
    │   ├── connection.py
    │   ├── workers.py
    │   └── signals.py
    │
    ├── http/             # HTTP protocol
    │   ├── request.py
    │   ├── response.py
    │   ├── dispatch.py
    │   └── status_codes.py
    │
    └── handlers/         # "/" and "/health"
        ├── index.py
        └── health.py

=============================================================================
QUICK START
=============================================================================

    from golaunch import run, ExitCode

    raise SystemExit(run())

Or with explicit control over the lifecycle:

    from golaunch import HTTPServer, ServerConfig, TerminationSignal

    server = HTTPServer(ServerConfig(port=3000))
    server.start()

    with TerminationSignal() as termination:
        termination.wait()

    server.shutdown()

=============================================================================
"""

__version__ = "1.0.0"
__author__ = "golaunch contributors"

from .config import ServerConfig
from .errors import (
    LaunchError,
    BindError,
    LifecycleError,
    ShutdownError,
    ShutdownTimeout,
)
from .server import HTTPServer, ServerState
from .lifecycle import ExitCode, run, configure_logging
from .core import TerminationSignal
from .http import DispatchTable, HTTPRequest, HTTPResponse
from .handlers import default_routes

__all__ = [
    # Lifecycle
    "run",
    "ExitCode",
    "configure_logging",
    "HTTPServer",
    "ServerState",
    "TerminationSignal",

    # Configuration
    "ServerConfig",

    # Routing
    "DispatchTable",
    "default_routes",
    "HTTPRequest",
    "HTTPResponse",

    # Errors
    "LaunchError",
    "BindError",
    "LifecycleError",
    "ShutdownError",
    "ShutdownTimeout",
]
