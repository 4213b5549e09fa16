"""
=============================================================================
CONNECTION WORKERS
=============================================================================

Every accepted connection is served by its own worker thread. The
WorkerGroup keeps track of those threads so shutdown can see which
connections are still open, sweep the idle ones, and wait for the rest.

=============================================================================
WHY ONE THREAD PER CONNECTION (AND NOT A FIXED POOL)?
=============================================================================

A keep-alive connection holds its worker for as long as the client keeps it
open. With a fixed-size pool, a handful of idle browsers can starve every
other client. One thread per connection costs a thread stack each, but for
a server with two constant routes that is the right trade: no queueing, no
503s, and the drain logic only has to ask "are any workers left?".

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          WorkerGroup                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   accept loop ──► spawn(conn, handler)                               │
    │                      │                                               │
    │                      ▼                                               │
    │              ┌───────────────┐  ┌───────────────┐                    │
    │              │ConnectionWorker│  │ConnectionWorker│   ...            │
    │              │  handler(conn) │  │  handler(conn) │                  │
    │              └───────┬───────┘  └───────┬───────┘                    │
    │                      │ exits            │ exits                      │
    │                      ▼                  ▼                            │
    │                _discard(worker) ──► notify waiters                   │
    │                                                                      │
    │   shutdown ──► close()  ──► wait(timeout) ──► True when empty        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Workers are daemon threads: a handler that never returns cannot keep the
process alive once shutdown has given up on it.

=============================================================================
"""

import threading
import time
import logging
from enum import Enum
from typing import Callable, List

from .connection import Connection


logger = logging.getLogger(__name__)


ConnectionHandler = Callable[[Connection], None]


class WorkerState(Enum):
    """Worker thread states."""
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


class ConnectionWorker(threading.Thread):
    """
    Thread serving a single connection.

    Runs handler(connection) once and removes itself from its group when
    the handler returns or raises.
    """

    def __init__(self, group: "WorkerGroup", connection: Connection, handler: ConnectionHandler):
        super().__init__(name=f"conn-{connection.id}", daemon=True)
        self.group = group
        self.connection = connection
        self.handler = handler
        self.state = WorkerState.STARTING
        self.started_at = 0.0

    def run(self):
        self.state = WorkerState.RUNNING
        self.started_at = time.monotonic()

        try:
            self.handler(self.connection)
        except Exception as e:
            # One bad connection must not take the accept loop down with it
            logger.exception(f"Worker {self.name} failed: {e}")
            self.group._record_failure()
        finally:
            self.state = WorkerState.STOPPED
            elapsed = time.monotonic() - self.started_at
            logger.debug(f"Worker {self.name} finished after {elapsed:.3f}s")
            self.group._discard(self)


class WorkerGroup:
    """
    Tracks the live ConnectionWorker threads.

    Thread-safe: spawn() is called from the accept loop, _discard() from
    the workers, wait() and close() from the main thread.
    """

    def __init__(self):
        self._workers: List[ConnectionWorker] = []
        self._cond = threading.Condition()
        self._closed = False

        self.spawned = 0
        self.failed = 0

    def spawn(self, connection: Connection, handler: ConnectionHandler) -> ConnectionWorker:
        """
        Start a worker thread for a connection.

        Raises:
            RuntimeError: If the group has been closed.
        """
        with self._cond:
            if self._closed:
                raise RuntimeError("Worker group is closed")

            worker = ConnectionWorker(self, connection, handler)
            self._workers.append(worker)
            self.spawned += 1

        try:
            worker.start()
        except RuntimeError:
            # Thread limit reached; forget the worker so drain can finish
            self._discard(worker)
            raise
        return worker

    def _record_failure(self) -> None:
        with self._cond:
            self.failed += 1

    def _discard(self, worker: ConnectionWorker) -> None:
        with self._cond:
            if worker in self._workers:
                self._workers.remove(worker)
            self._cond.notify_all()

    def close(self) -> None:
        """Refuse further spawns. Running workers are left alone."""
        with self._cond:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def workers(self) -> List[ConnectionWorker]:
        """Snapshot of the live workers."""
        with self._cond:
            return list(self._workers)

    @property
    def active(self) -> int:
        """Number of live workers (= open connections)."""
        with self._cond:
            return len(self._workers)

    def wait(self, timeout: float) -> bool:
        """
        Wait until no workers are left.

        Returns early as soon as the group is empty.

        Args:
            timeout: Maximum time to wait in seconds.

        Returns:
            True if the group is empty, False if the timeout elapsed first.
        """
        with self._cond:
            return self._cond.wait_for(lambda: not self._workers, timeout=timeout)

    @property
    def stats(self) -> dict:
        """Counters for debug logging."""
        return {
            "active": self.active,
            "spawned": self.spawned,
            "failed": self.failed,
        }
