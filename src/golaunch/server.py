"""
=============================================================================
HTTP SERVER LIFECYCLE
=============================================================================

HTTPServer ties the components together and owns the server's lifecycle:
bind, serve, drain, stop.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                           HTTPServer                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │   HTTPServer    │                          │
    │                        │   (lifecycle)   │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │            ┌────────────────────┼────────────────────┐              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐        │
    │    │ SocketServer │    │ WorkerGroup  │    │DispatchTable │        │
    │    │  (listener)  │    │ (1 thread /  │    │ (path → fn)  │        │
    │    │              │    │  connection) │    │              │        │
    │    └──────────────┘    └──────────────┘    └──────────────┘        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
STATE MACHINE
=============================================================================

    UNSTARTED ──start()──► LISTENING ──shutdown()──► DRAINING ──► STOPPED
        │                                                            ▲
        └──────────── start() fails with BindError ──────────────────┘

Every other call is a LifecycleError: start() twice, shutdown() before
start(), shutdown() twice. A stopped server is never restarted; build a new
one.

=============================================================================
GRACEFUL SHUTDOWN
=============================================================================

    1. Close the listener           new connections are refused
    2. Close the worker group       nothing new gets a worker
    3. Drain, polling until the deadline:
         - close connections that are idle (no request in progress)
         - wait for the workers serving the others
       The poll interval starts at 1ms and doubles up to 500ms, so a fast
       drain returns fast and a slow one doesn't spin.
    4. Deadline passed?
         - abort whatever is still open, including connections still
           lingering in close() after their last response
         - raise ShutdownTimeout

While draining, every response carries "Connection: close" and the
keep-alive loop ends after it, so busy connections finish their current
request and nothing more.

=============================================================================
"""

import logging
import threading
import time
from enum import Enum
from typing import Optional, Tuple

from .config import ServerConfig
from .core import SocketServer, Connection, WorkerGroup
from .errors import BindError, LifecycleError, ShutdownError, ShutdownTimeout
from .handlers import default_routes
from .http import (
    HTTPRequest, RequestParser, HTTPParseError,
    HTTPResponse, HTTPStatus, DispatchTable, error,
)


logger = logging.getLogger(__name__)


SHUTDOWN_POLL_INTERVAL_MIN = 0.001
SHUTDOWN_POLL_INTERVAL_MAX = 0.5


class ServerState(Enum):
    """Server lifecycle states."""
    UNSTARTED = "unstarted"
    LISTENING = "listening"
    DRAINING = "draining"
    STOPPED = "stopped"


class HTTPServer:
    """
    HTTP/1.1 server with an explicit start/shutdown lifecycle.

    =========================================================================
    USAGE
    =========================================================================

        server = HTTPServer(ServerConfig(port=8080))
        server.start()              # BindError if the port is taken

        ...                         # wait for a termination signal

        server.shutdown()           # ShutdownTimeout after 5s of draining

    start() returns as soon as the listener is bound; connections are
    served on background threads. The caller decides when to stop.

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None,
                 routes: Optional[DispatchTable] = None):
        """
        Initialize the server.

        Args:
            config: Server configuration. Defaults are used if not provided.
            routes: Dispatch table. Defaults to "/" and "/health".
        """
        self.config = config or ServerConfig()
        self.config.validate()  # Fail-fast on invalid config

        # ─────────────────────────────────────────────────────────────────
        # CORE COMPONENTS
        # ─────────────────────────────────────────────────────────────────

        self._socket_server = SocketServer(self.config)
        self._workers = WorkerGroup()
        self._parser = RequestParser()
        self._routes = routes

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME STATE
        # ─────────────────────────────────────────────────────────────────

        self._state = ServerState.UNSTARTED
        self._state_lock = threading.Lock()

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); only valid after start()."""
        return self._socket_server.address

    @property
    def routes(self) -> Optional[DispatchTable]:
        return self._routes

    @property
    def active_connections(self) -> int:
        """Connections that still have a worker thread."""
        return self._workers.active

    @property
    def _draining(self) -> bool:
        return self._state is not ServerState.LISTENING

    def _transition(self, expected: ServerState, new: ServerState, operation: str):
        with self._state_lock:
            if self._state is not expected:
                raise LifecycleError(
                    f"cannot {operation}: server is {self._state.value}"
                )
            self._state = new

    # =========================================================================
    # STARTUP
    # =========================================================================

    def start(self, routes: Optional[DispatchTable] = None) -> Tuple[str, int]:
        """
        Bind the listener and start serving in the background.

        Args:
            routes: Dispatch table to serve; overrides the one given to
                    the constructor.

        Returns:
            The bound (host, port).

        Raises:
            LifecycleError: If the server was already started.
            BindError: If the listener can't be bound. The server is
                       STOPPED afterwards.
        """
        with self._state_lock:
            if self._state is not ServerState.UNSTARTED:
                raise LifecycleError(
                    f"cannot start: server is {self._state.value}"
                )

            if routes is not None:
                self._routes = routes
            elif self._routes is None:
                self._routes = default_routes()

            try:
                host, port = self._socket_server.bind()
            except BindError:
                self._state = ServerState.STOPPED
                raise

            self._state = ServerState.LISTENING

        self._socket_server.serve(self._handle_connection)
        logger.info(f"Server starting on port {port}")
        logger.debug(f"Listening on {host}:{port}, routes: {', '.join(self._routes.patterns)}")
        return host, port

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stop the server gracefully.

        =====================================================================
        GRACEFUL SHUTDOWN PROCESS
        =====================================================================

        1. Stop accepting new connections
        2. Close idle connections, let busy ones finish their request
        3. At the deadline, force-close what is left

        =====================================================================

        Args:
            timeout: Drain deadline in seconds (default: config.shutdown_timeout).

        Raises:
            LifecycleError: If the server is not listening.
            ShutdownTimeout: If connections had to be force-closed.
            ShutdownError: If releasing a resource failed.
        """
        self._transition(ServerState.LISTENING, ServerState.DRAINING, "shut down")

        if timeout is None:
            timeout = self.config.shutdown_timeout
        deadline = time.monotonic() + timeout

        logger.debug(f"Draining {self.active_connections} connection(s), deadline {timeout:g}s")

        try:
            if not self._socket_server.stop(max(0.0, deadline - time.monotonic())):
                logger.warning("Accept loop did not exit before the deadline")
            self._workers.close()

            if self._drain(deadline):
                logger.debug(f"Drained cleanly: {self._workers.stats}")
                return

            remaining = self._force_close()
            if remaining:
                raise ShutdownTimeout(timeout, remaining)
        except OSError as e:
            raise ShutdownError(f"shutdown failed: {e}") from e
        finally:
            with self._state_lock:
                self._state = ServerState.STOPPED

    def _drain(self, deadline: float) -> bool:
        """
        Poll until every worker has exited or the deadline passes.

        Returns:
            True if no connection is left.
        """
        interval = SHUTDOWN_POLL_INTERVAL_MIN

        while True:
            self._close_idle_connections()

            remaining = deadline - time.monotonic()
            if self._workers.wait(max(0.0, min(interval, remaining))):
                return True
            if remaining <= interval:
                return False

            interval = min(interval * 2, SHUTDOWN_POLL_INTERVAL_MAX)

    def _close_idle_connections(self) -> int:
        closed = 0
        for worker in self._workers.workers:
            if worker.connection.close_if_idle():
                closed += 1
        return closed

    def _force_close(self) -> int:
        """
        Abort every connection that is still open.

        Busy connections count, and so do connections still lingering in
        close() after their last response. Connections already closed by
        the idle sweep are not counted; their workers are only moments
        from exiting.

        Returns:
            Number of connections that were interrupted.
        """
        aborted = 0
        for worker in self._workers.workers:
            if worker.connection.abort():
                aborted += 1
                logger.warning(f"[{worker.connection.id}] Force-closed connection")
        return aborted

    # =========================================================================
    # REQUEST HANDLING
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """
        Hand a new connection to its own worker thread.

        Called by SocketServer on the accept thread for each new client.
        """
        if self._draining:
            conn.close()
            return

        try:
            self._workers.spawn(conn, self._process_connection)
        except RuntimeError as e:
            # Group closed by shutdown, or no more threads available
            logger.warning(f"[{conn.id}] Rejecting connection: {e}")
            conn.close()

    def _process_connection(self, conn: Connection):
        """
        Serve requests on one connection (runs in a worker thread).

        =====================================================================
        CONNECTION PROCESSING LOOP
        =====================================================================

        1. Read request from socket
        2. Parse HTTP request
        3. Dispatch to the handler
        4. Send response
        5. Keep-alive and not draining: repeat from step 1

        =====================================================================
        """
        with conn:  # Context manager ensures connection is closed
            while True:
                # ─────────────────────────────────────────────────────────
                # READ REQUEST
                # ─────────────────────────────────────────────────────────
                try:
                    raw_request = conn.read_request()
                except ValueError as e:
                    logger.debug(f"[{conn.id}] {e}")
                    self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE)
                    break
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT)
                    break

                if raw_request is None:
                    break  # Client went away, keep-alive expired, or swept

                # ─────────────────────────────────────────────────────────
                # PARSE REQUEST
                # ─────────────────────────────────────────────────────────
                try:
                    request = self._parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    logger.debug(f"[{conn.id}] Bad request: {e}")
                    self._send_error(conn, e.status_code)
                    break

                # ─────────────────────────────────────────────────────────
                # DISPATCH
                # ─────────────────────────────────────────────────────────
                if not conn.begin_processing():
                    break  # Aborted while the request was being read

                response = self._dispatch(conn, request)

                # ─────────────────────────────────────────────────────────
                # CONNECTION HEADERS
                # ─────────────────────────────────────────────────────────
                keep_alive = (
                    request.is_keep_alive
                    and self.config.keep_alive
                    and not self._draining
                )
                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive",
                        f"timeout={int(self.config.keep_alive_timeout)}"
                    )
                else:
                    response.headers["Connection"] = "close"

                # ─────────────────────────────────────────────────────────
                # SEND RESPONSE
                # ─────────────────────────────────────────────────────────
                response_bytes = response.to_bytes(
                    self.config.server_name,
                    include_body=request.method != "HEAD",
                )
                sent = conn.send_response(response_bytes)

                logger.debug(
                    f"[{conn.id}] {request.method} {request.path} "
                    f"{request.version} → {int(response.status)}"
                )

                # ─────────────────────────────────────────────────────────
                # KEEP-ALIVE OR CLOSE
                # ─────────────────────────────────────────────────────────
                if not sent or not keep_alive or self._draining:
                    break

                if not conn.set_keep_alive():
                    break

    def _dispatch(self, conn: Connection, request: HTTPRequest) -> HTTPResponse:
        try:
            return self._routes.handle(request)
        except Exception as e:
            logger.exception(f"[{conn.id}] Handler error for {request.path}: {e}")
            return error(HTTPStatus.INTERNAL_SERVER_ERROR)

    def _send_error(self, conn: Connection, status: HTTPStatus):
        """
        Send an error response for a request that never reached a handler.

        The connection is closed right after, so the response says so.
        """
        response = error(status)
        response.headers["Connection"] = "close"
        conn.send_response(response.to_bytes(self.config.server_name))


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# HTTPServer is the lifecycle controller:
#
# 1. start(): bind synchronously (BindError), then serve in the background
# 2. Request flow: accept → worker thread → parse → dispatch → respond
# 3. shutdown(): stop listening, sweep idle connections, wait for busy ones,
#    force-close at the deadline (ShutdownTimeout)
#
# KEY DESIGN DECISIONS:
# - One thread per connection, tracked by WorkerGroup
# - Shutdown never waits on a connection that has no request in progress
# - The caller owns signal handling (see golaunch.lifecycle)
# =============================================================================
