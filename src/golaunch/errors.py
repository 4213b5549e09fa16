"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every failure the lifecycle controller can report is one of the exceptions
below. They are raised where the failure happens and only turned into an
exit code at the very top (golaunch.lifecycle.run).

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        EXCEPTION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   LaunchError                                                        │
    │    ├── BindError          Listener could not bind (fatal)           │
    │    ├── LifecycleError     Operation invoked out of order            │
    │    └── ShutdownError      Shutdown failed                           │
    │         └── ShutdownTimeout   Drain deadline exceeded               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from typing import Tuple, Union


class LaunchError(Exception):
    """Base class for all server lifecycle errors."""


class BindError(LaunchError):
    """
    Raised when the listener cannot be bound.

    Covers "address already in use", "permission denied" and port values
    that are not valid port numbers at all (e.g. PORT=http).

    Attributes:
        address: The (host, port) pair we tried to bind, port as given.
        reason: Human-readable cause.
    """

    def __init__(self, address: Tuple[str, Union[int, str]], reason: str):
        self.address = address
        self.reason = reason
        host, port = address
        super().__init__(f"cannot bind {host}:{port}: {reason}")


class LifecycleError(LaunchError):
    """
    Raised when a lifecycle operation is called in the wrong state.

    Example: start() on a server that is already listening, or a second
    shutdown().
    """


class ShutdownError(LaunchError):
    """Raised when graceful shutdown fails."""


class ShutdownTimeout(ShutdownError):
    """
    Raised when in-flight requests outlive the shutdown deadline.

    By the time this is raised the remaining connections have already been
    force-closed; the exception only reports what happened.

    Attributes:
        timeout: The deadline that elapsed, in seconds.
        remaining: Number of connections that had to be force-closed.
    """

    def __init__(self, timeout: float, remaining: int):
        self.timeout = timeout
        self.remaining = remaining
        super().__init__(
            f"deadline of {timeout:g}s exceeded, "
            f"force-closed {remaining} connection(s)"
        )
