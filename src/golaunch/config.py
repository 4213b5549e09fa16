"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Environment variable PORT                                      │
    │      └── PORT=3000 python -m golaunch                              │
    │                                                                      │
    │   2. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The listen port is the ONLY setting read from the environment. Everything
else is a code-level default that tests and embedders may override by
constructing ServerConfig directly.

=============================================================================
WHY IS THE PORT NOT PARSED HERE?
=============================================================================

A bad PORT value ("http", "99999", " 3000 ") is reported by the bind step,
together with every other reason a listener can fail to come up.
Configuration never fails: from_env() keeps the raw string untouched and
SocketServer.bind() accepts only plain decimal digits, raising BindError
for anything else.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple, Union


DEFAULT_PORT = 8080
"""Port used when PORT is unset or empty."""

DEFAULT_SHUTDOWN_TIMEOUT = 5.0
"""Seconds in-flight requests get to finish once shutdown starts."""


@dataclass
class ServerConfig:
    """
    Configuration for the server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size, timeout

    HTTP SETTINGS
    - keep_alive, keep_alive_timeout, max_request_size, server_name

    LIFECYCLE
    - shutdown_timeout

    LOGGING
    - log_level

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """
    The IP address to bind to.
    "0.0.0.0" binds all interfaces, which is what a container needs. IPv6
    clients are accepted too where the platform supports dual-stack sockets.
    """

    port: Union[int, str] = DEFAULT_PORT
    """
    The port to listen on, as an int or as the raw PORT string.
    0 asks the OS for a free port (handy in tests).
    """

    backlog: int = 128
    """Maximum number of queued, not yet accepted connections."""

    buffer_size: int = 8192
    """Size of each recv() call in bytes."""

    timeout: Optional[float] = 30.0
    """
    Socket timeout in seconds for reading the first request.
    None = blocking (a silent client would pin a worker forever).
    """

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Allow several requests on one TCP connection."""

    keep_alive_timeout: float = 5.0
    """Idle time after which a keep-alive connection is closed."""

    max_request_size: int = 1024 * 1024  # 1 MiB
    """Largest request (headers + body) accepted, in bytes."""

    server_name: str = "golaunch/1.0"
    """Value of the Server response header."""

    # ─────────────────────────────────────────────────────────────────────
    # LIFECYCLE
    # ─────────────────────────────────────────────────────────────────────

    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    """
    Drain deadline in seconds. Connections still busy when it elapses are
    force-closed and shutdown reports a timeout.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Create configuration from the process environment.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        PORT    Listen port (default: 8080, also when set but empty)

        =====================================================================

        Args:
            environ: Mapping to read instead of os.environ (for tests).

        Returns:
            A config bound to all interfaces on the resolved port.
        """
        if environ is None:
            environ = os.environ

        port = environ.get("PORT", "")
        return cls(port=port or DEFAULT_PORT)

    @property
    def address(self) -> Tuple[str, Union[int, str]]:
        """The (host, port) pair the listener will bind, port unparsed."""
        return (self.host, self.port)

    def validate(self) -> None:
        """
        Validate configuration values.

        The port is deliberately not checked here; see the module docstring.

        Raises:
            ValueError: If a numeric setting is out of range.
        """
        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")

        if self.shutdown_timeout < 0:
            raise ValueError("shutdown_timeout must be >= 0")

        if self.max_request_size < self.buffer_size:
            raise ValueError("max_request_size must be >= buffer_size")
