"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

This module wraps a raw client socket with the higher-level API the server
needs: buffered request reading, whole-response writing, and a state that
tells the shutdown sequence whether the connection is busy or idle.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

TCP only guarantees that bytes arrive in order and intact. One recv() may
return half a request line, or two pipelined requests at once, so we buffer
until the header terminator (\r\n\r\n) shows up and then read exactly
Content-Length more bytes. Anything left over stays in the buffer for the
next request on the same connection.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► READING ──────► PROCESSING ──────► WRITING ────────┐
     │             │                                    │           │
     │             │                                    │           ▼
     │             │                                    │      KEEP_ALIVE
     │             ▼                                    │           │
     └──────────► CLOSING ◄─────────────────────────────┴───────────┘
                    │
                    ▼
                  CLOSED

NEW and KEEP_ALIVE are the IDLE states: the connection is open but no byte
of a request has arrived. During shutdown idle connections are closed right
away while busy ones get to finish.

The idle → READING transition races with the shutdown sweep (bytes can
arrive just as the sweep decides to close). Both sides take the connection
lock, so exactly one of them wins:

    worker:  recv() returns data ──► _enter(READING) ──► lock ──► ok?
    sweep:   close_if_idle()      ──► lock ──► still idle? ──► CLOSING

Once a connection is CLOSING no other state can be entered.

=============================================================================
CLOSING WITHOUT LOSING THE RESPONSE
=============================================================================

Closing a socket that still has unread client bytes makes the kernel send
RST, which can destroy a response the client hasn't read yet. close()
therefore sends FIN first and reads whatever the client still sends. That
linger is capped in both time (LINGER_TIMEOUT) and volume (LINGER_MAX_BYTES):
a client that keeps sending after "Connection: close" gets cut off instead
of holding the worker.

abort() shuts a lingering socket down too, so nothing outlives the
shutdown deadline.

=============================================================================
"""

import socket
import threading
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional


logger = logging.getLogger(__name__)


LINGER_TIMEOUT = 0.5
"""Total seconds close() spends reading what the client still sends."""

LINGER_MAX_BYTES = 64 * 1024
"""Bytes close() reads before giving up on a client that won't stop."""


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"                # Just accepted, nothing read yet
    READING = "reading"        # Bytes of a request are arriving
    PROCESSING = "processing"  # Request parsed, handler is executing
    WRITING = "writing"        # Sending response data
    KEEP_ALIVE = "keep_alive"  # Response sent, waiting for next request
    CLOSING = "closing"        # Close requested (drain, abort or normal)
    CLOSED = "closed"          # Socket released


IDLE_STATES = frozenset({ConnectionState.NEW, ConnectionState.KEEP_ALIVE})
FINAL_STATES = frozenset({ConnectionState.CLOSING, ConnectionState.CLOSED})


@dataclass(eq=False)
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket.
        address: Client's (ip, port) tuple.
        id: Short unique identifier used in log lines.
        state: Current connection state.
        requests_handled: Number of requests read on this connection.
    """

    # Required parameters
    socket: socket.socket
    address: tuple

    # Generated/default parameters
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    requests_handled: int = 0

    # Configuration (passed from ServerConfig)
    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 1024 * 1024

    # Internal state
    _buffer: bytes = field(default=b"", repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _released: bool = field(default=False, repr=False)  # Swept or aborted

    def __post_init__(self):
        # Blocking mode; timeouts are managed per read
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def is_idle(self) -> bool:
        """True while no request is in progress on this connection."""
        return self.state in IDLE_STATES

    @property
    def is_closed(self) -> bool:
        return self.state in FINAL_STATES

    def _enter(self, state: ConnectionState) -> bool:
        """
        Move to a new state unless the connection is already closing.

        Returns:
            True if the transition happened.
        """
        with self._lock:
            if self.state in FINAL_STATES:
                return False
            self.state = state
            return True

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request from the socket.

        ┌─────────────────────────────────────────────────────────────────┐
        │                    read_request() Flow                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │   keep-alive? ──► shorter timeout                               │
        │        │                                                         │
        │   while no \r\n\r\n:  recv() → buffer                           │
        │        │           (first bytes: idle → READING)                │
        │        │                                                         │
        │   Content-Length ──► recv() until body complete                 │
        │        │                                                         │
        │   split off one request, keep the rest for pipelining           │
        │                                                                  │
        └─────────────────────────────────────────────────────────────────┘

        Returns:
            Complete request bytes, or None if the peer closed the
            connection, the keep-alive wait timed out, or the connection
            was closed by the shutdown sweep.

        Raises:
            TimeoutError: If the first request does not arrive in time.
            ValueError: If the request exceeds max_request_size.
        """
        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        # Pipelined bytes already buffered mean a request is under way
        if self._buffer and not self._enter(ConnectionState.READING):
            return None

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None  # Peer closed, or we were shut down

                if not self._buffer and not self._enter(ConnectionState.READING):
                    return None  # Lost the race against the shutdown sweep

                self._buffer += chunk
                if len(self._buffer) > self.max_request_size:
                    raise ValueError(f"Request too large: {len(self._buffer)} bytes")

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            if body_start + content_length > self.max_request_size:
                raise ValueError(
                    f"Request too large: {body_start + content_length} bytes"
                )

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break  # Connection closed mid-body; parser reports it
                self._buffer += chunk

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            return request_data

        except socket.timeout:
            if self.requests_handled > 0 and not self._buffer:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if not self.is_closed:
                self.socket.settimeout(self.timeout)

    def _recv(self) -> bytes:
        """
        Receive data, mapping a dead socket to b"".

        socket.timeout is a subclass of OSError, so it is re-raised first.
        """
        try:
            return self.socket.recv(self.buffer_size)
        except socket.timeout:
            raise
        except OSError:
            return b""

    @staticmethod
    def _parse_content_length(headers: bytes) -> int:
        """
        Find Content-Length in raw header bytes.

        Only what is needed to frame the request; full header parsing
        happens in RequestParser.

        Returns:
            The declared length, or 0 if absent or unparsable.
        """
        header_str = headers.decode("latin-1").lower()
        for line in header_str.split("\r\n")[1:]:
            if line.startswith("content-length:"):
                try:
                    return max(int(line.split(":", 1)[1].strip()), 0)
                except ValueError:
                    return 0
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def begin_processing(self) -> bool:
        """Mark that a parsed request is being handled."""
        return self._enter(ConnectionState.PROCESSING)

    def send_response(self, data: bytes) -> bool:
        """
        Send a complete response.

        Uses sendall() so a full kernel buffer never leaves us with a
        partially written response.

        Returns:
            True if everything was sent, False if the connection is gone.
        """
        if not self._enter(ConnectionState.WRITING):
            return False

        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    def set_keep_alive(self) -> bool:
        """Mark the connection idle, waiting for the next request."""
        return self._enter(ConnectionState.KEEP_ALIVE)

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close_if_idle(self) -> bool:
        """
        Close the connection if no request is in progress.

        Called by the shutdown sweep from another thread. Shutting the
        socket down (rather than closing it) wakes the worker blocked in
        recv(); the worker then releases the socket itself.

        Returns:
            True if the connection was idle and is now closing.
        """
        with self._lock:
            if self.state not in IDLE_STATES:
                return False
            self.state = ConnectionState.CLOSING
            self._released = True

        self._shutdown_socket()
        logger.debug(f"[{self.id}] Closed idle connection")
        return True

    def abort(self) -> bool:
        """
        Forcibly terminate the connection, busy or not.

        Used when the shutdown deadline expires. The peer sees the
        connection close without (the rest of) a response. A connection
        that is still lingering in close() is cut off as well.

        Returns:
            True if the connection was still open and had not already been
            swept or aborted.
        """
        with self._lock:
            if self.state is ConnectionState.CLOSED or self._released:
                return False
            self.state = ConnectionState.CLOSING
            self._released = True

        self._shutdown_socket()
        logger.debug(f"[{self.id}] Connection aborted")
        return True

    def _shutdown_socket(self) -> None:
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # Already disconnected

    def close(self) -> None:
        """
        Close the connection gracefully.

        1. shutdown(SHUT_WR): send FIN, we're done writing
        2. drain whatever the client still sent, within the linger limits
        3. close(): release the file descriptor
        """
        with self._lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        self._linger()

        try:
            self.socket.close()
        except OSError:
            pass

        with self._lock:
            self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def _linger(self) -> None:
        """Read and discard client bytes until EOF, abort() or a linger limit."""
        deadline = time.monotonic() + LINGER_TIMEOUT
        drained = 0

        try:
            # abort() may leave bytes queued that recv() still returns
            while drained < LINGER_MAX_BYTES and not self._released:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self.socket.settimeout(remaining)
                chunk = self.socket.recv(1024)
                if not chunk:
                    return
                drained += len(chunk)
        except OSError:
            return  # Includes socket.timeout; we're closing anyway

        if drained:
            logger.debug(f"[{self.id}] Client still sending after {drained} bytes, cutting off")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
