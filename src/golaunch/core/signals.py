"""
=============================================================================
TERMINATION SIGNAL
=============================================================================

A one-shot cancellation token that the main thread waits on until the
process is asked to stop.

=============================================================================
SIGNALS
=============================================================================

SIGINT (2):   Sent when the user presses Ctrl+C
SIGTERM (15): Sent by docker stop, systemd stop, kill <pid>

SIGKILL (9) cannot be caught. That's why docker stop waits (10s by default)
between SIGTERM and SIGKILL: it is our window for a graceful shutdown.

=============================================================================
WHY AN EXPLICIT TOKEN?
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │    OS signal ──► handler ──► token.trigger("SIGTERM")               │
    │                                    │                                 │
    │    test code ──────────────► token.trigger("test")                  │
    │                                    │                                 │
    │                                    ▼                                 │
    │                       main thread: token.wait()                      │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The signal handler does nothing but trigger the token. Everything that
follows runs in the main thread after wait() returns, so the sequence can be
exercised in tests without sending real signals.

The token fires once. The first reason is kept; later triggers (a second
Ctrl+C while draining) are ignored.

=============================================================================
"""

import signal
import logging
import threading
from typing import Callable, Dict, Iterable, Optional


logger = logging.getLogger(__name__)


DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class TerminationSignal:
    """
    Single-fire notification that the process should terminate.

    Usage:
        termination = TerminationSignal()
        with termination:                # installs SIGINT/SIGTERM handlers
            server.start()
            reason = termination.wait()  # blocks until a signal arrives
            server.shutdown()
    """

    def __init__(self, signals: Iterable[signal.Signals] = DEFAULT_SIGNALS):
        self._signals = tuple(signals)
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None

        # Handlers we replaced, restored by restore()
        self._original_handlers: Dict[signal.Signals, Callable] = {}

    @property
    def is_set(self) -> bool:
        """True once the token has fired."""
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        """What fired the token (e.g. "SIGTERM"), None if it hasn't fired."""
        return self._reason

    def trigger(self, reason: str = "manual trigger") -> bool:
        """
        Fire the token.

        Safe to call from a signal handler or any thread.

        Returns:
            True if this call fired the token, False if it already had.
        """
        with self._lock:
            if self._reason is not None:
                return False
            self._reason = reason
        self._event.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Block until the token fires.

        Args:
            timeout: Seconds to wait. None = wait forever.

        Returns:
            The reason the token fired, or None on timeout.
        """
        if self._event.wait(timeout):
            return self._reason
        return None

    # =========================================================================
    # OS SIGNAL BRIDGE
    # =========================================================================

    def _handle_signal(self, signum, frame):
        """Signal handler: translate the signal into a trigger."""
        self.trigger(signal.Signals(signum).name)

    def install(self) -> None:
        """
        Route the configured OS signals to this token.

        Must be called from the main thread (a Python restriction on
        signal.signal). The previous handlers are saved for restore().
        """
        for sig in self._signals:
            self._original_handlers[sig] = signal.signal(sig, self._handle_signal)
        logger.debug(
            "Installed handlers for " + ", ".join(s.name for s in self._signals)
        )

    def restore(self) -> None:
        """Put back the handlers that install() replaced."""
        for sig, handler in self._original_handlers.items():
            # None means the old handler wasn't installed from Python
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        self._original_handlers.clear()

    def __enter__(self) -> "TerminationSignal":
        self.install()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.restore()
        return False
