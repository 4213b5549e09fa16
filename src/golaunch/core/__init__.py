"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The low-level plumbing underneath the lifecycle controller.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Binds the listening socket (BindError if it can't)               │
    │  • Runs the accept() loop on a background thread                    │
    │  • Stops on request, closing the listener                           │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ new connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          WORKER GROUP                                │
    │  • One daemon thread per connection                                 │
    │  • Knows which connections are still open                           │
    │  • wait(timeout) for the drain phase of shutdown                    │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ each worker serves
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  • Buffered request reading, keep-alive                             │
    │  • Idle/busy state for the shutdown sweep                           │
    └─────────────────────────────────────────────────────────────────────┘

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      TERMINATION SIGNAL                              │
    │  • One-shot token fired by SIGINT/SIGTERM (or a test)               │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState
from .workers import WorkerGroup, ConnectionWorker
from .signals import TerminationSignal

__all__ = [
    "SocketServer",       # Listening socket + accept thread
    "Connection",         # Client socket wrapper
    "ConnectionState",    # Connection lifecycle states
    "WorkerGroup",        # Tracks per-connection threads
    "ConnectionWorker",   # Thread serving one connection
    "TerminationSignal",  # One-shot shutdown token
]
