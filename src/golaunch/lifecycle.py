"""
=============================================================================
PROCESS LIFECYCLE
=============================================================================

The whole life of the process in one function:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                              run()                                   │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   configure         ServerConfig.from_env()    (PORT, default 8080) │
    │       │                                                              │
    │   start             HTTPServer.start()         ──► BindError → 1    │
    │       │                                                              │
    │   await             TerminationSignal.wait()   (SIGINT / SIGTERM)   │
    │       │                                                              │
    │   shutdown          HTTPServer.shutdown()   ──► ShutdownTimeout → 2  │
    │       │                                     ──► ShutdownError → 3    │
    │       ▼                                                              │
    │   exit 0                                                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Errors travel as exceptions up to here and are turned into exit codes in one
place. Nothing below this module calls sys.exit() or logs a fatal line.

=============================================================================
WHY DISTINCT EXIT CODES?
=============================================================================

A supervisor (systemd, Kubernetes, a CI script) sees only the exit status.
"Couldn't bind" means the deployment is broken and a restart loop won't help;
"drain timed out" means some requests were cut off but the process did stop.
Folding them into one non-zero code hides that difference.

=============================================================================
"""

import logging
from enum import IntEnum
from typing import Optional

from .config import ServerConfig
from .core import TerminationSignal
from .errors import BindError, ShutdownError, ShutdownTimeout
from .http import DispatchTable
from .server import HTTPServer


logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ExitCode(IntEnum):
    """Process exit status, one per outcome."""
    OK = 0
    BIND_FAILURE = 1
    SHUTDOWN_TIMEOUT = 2
    SHUTDOWN_FAILURE = 3


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger for console output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )


def run(config: Optional[ServerConfig] = None,
        routes: Optional[DispatchTable] = None,
        termination: Optional[TerminationSignal] = None) -> ExitCode:
    """
    Start the server, wait for termination, shut down gracefully.

    Args:
        config: Server configuration (default: from the environment).
        routes: Dispatch table (default: "/" and "/health").
        termination: Token to wait on. When omitted, a token wired to
                     SIGINT/SIGTERM is created, and the previous signal
                     handlers are restored before returning. A token
                     passed in is used as is, no OS handlers involved.

    Returns:
        The exit code for the outcome.
    """
    if config is None:
        config = ServerConfig.from_env()

    owns_signals = termination is None
    if owns_signals:
        termination = TerminationSignal()
        # Installed before binding so a signal during startup isn't lost
        termination.install()

    try:
        server = HTTPServer(config, routes)

        try:
            server.start()
        except BindError as e:
            logger.critical(f"Could not listen on {config.port}: {e.reason}")
            return ExitCode.BIND_FAILURE

        reason = termination.wait()
        logger.info(f"Received {reason}, shutting down")

        try:
            server.shutdown()
        except ShutdownTimeout as e:
            logger.error(f"Server forced to shutdown: {e}")
            return ExitCode.SHUTDOWN_TIMEOUT
        except ShutdownError as e:
            logger.error(f"Server forced to shutdown: {e}")
            return ExitCode.SHUTDOWN_FAILURE

        logger.info("Server gracefully stopped")
        return ExitCode.OK

    finally:
        if owns_signals:
            termination.restore()
