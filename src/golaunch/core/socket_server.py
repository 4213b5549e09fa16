"""
=============================================================================
LOW-LEVEL TCP SOCKET SERVER
=============================================================================

This module owns the listening socket: it binds it, runs the accept loop on
a background thread, and closes it again when asked to stop.

=============================================================================
SOCKET LIFECYCLE (Server Side)
=============================================================================

    1. socket()    Create a socket file descriptor
    2. bind()      Associate the socket with an IP:PORT       ◄── bind()
    3. listen()    OS starts queueing incoming connections    ◄── bind()
    4. accept()    Take one queued connection, get a NEW      ◄── accept thread
                   socket just for that client
    5. close()     Release the listening socket               ◄── accept thread

Steps 1-3 run synchronously in the caller's thread, so a port that cannot
be bound is reported immediately as BindError, before anything else starts.
Step 4 loops on its own thread so the main thread is free to wait for a
termination signal.

=============================================================================
STOPPING THE ACCEPT LOOP
=============================================================================

A thread blocked in accept() has to be woken up:

    main thread                           accept thread
    ───────────                           ─────────────
    stop()                                accept()   (blocked)
      _running = False                       │
      listener.shutdown(SHUT_RDWR) ────────► │ raises OSError (Linux)
      join()                                 ▼
        │                                 loop sees _running == False
        │                                 close listener
        ◄──────────────────────────────── thread exits

Not every platform wakes accept() on shutdown(), so the listener also has a
short timeout and the loop re-checks _running whenever it expires.

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR:  Rebind right after a restart instead of waiting ~60s for
               TIME_WAIT to expire. Still fails if another socket is
               actively listening on the port.

TCP_NODELAY:   Disable Nagle's algorithm; responses are tiny and should go
               out immediately.

SO_REUSEPORT is NOT set: with it, a second process could bind the same port
and we would never see "address already in use".

=============================================================================
ALL INTERFACES: IPv4 AND IPv6
=============================================================================

A wildcard host ("", "0.0.0.0" or "::") means "every interface", for IPv6
clients too. Where the platform supports it, the listener is one AF_INET6
socket with IPV6_V6ONLY switched off, which also accepts IPv4 clients
(they show up as ::ffff:a.b.c.d). Elsewhere it falls back to plain IPv4.

    host            platform has dual-stack     listener
    ────            ───────────────────────     ────────
    "0.0.0.0"       yes                         [::]:port, v4 + v6
    "0.0.0.0"       no                          0.0.0.0:port, v4 only
    "127.0.0.1"     either                      127.0.0.1:port

=============================================================================
"""

import socket
import logging
import threading
from typing import Callable, Optional, Tuple

from ..config import ServerConfig
from ..errors import BindError
from .connection import Connection


logger = logging.getLogger(__name__)


ACCEPT_POLL_INTERVAL = 0.5
"""Seconds between _running checks while accept() has nothing to return."""

WILDCARD_HOSTS = ("", "0.0.0.0", "::")


class SocketServer:
    """
    Low-level TCP socket server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SocketServer Internals                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    bind()            socket() + setsockopt() + bind() + listen()    │
    │        │             raises BindError                                │
    │        ▼                                                             │
    │    serve(callback)   start the accept thread, return immediately    │
    │        │                                                             │
    │        └──► _accept_loop()                                           │
    │                 while running:                                       │
    │                     accept()      wait for a connection              │
    │                     Connection()  wrap the client socket             │
    │                     callback(conn)                                   │
    │                                                                      │
    │    stop(timeout)     wake accept(), join the thread                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Usage:
        server = SocketServer(config)
        server.bind()                    # BindError if the port is taken
        server.serve(handle_connection)  # returns at once
        ...
        server.stop(timeout=5.0)
    """

    def __init__(self, config: ServerConfig):
        self.config = config

        # Created in bind(), closed by the accept thread
        self._socket: Optional[socket.socket] = None
        self._address: Optional[Tuple[str, int]] = None

        self._running = False
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port).

        After bind() this is the real address, which matters when port 0
        let the OS pick a free port.
        """
        if self._address is None:
            raise RuntimeError("Socket server is not bound")
        return self._address

    @staticmethod
    def _parse_port(raw_port) -> int:
        """
        Turn the configured port into a number.

        Strings must be plain ASCII digits: " 3000 ", "+80" and "8_080"
        are rejected even though int() would take them.

        Raises:
            ValueError: If the port is not a decimal number.
        """
        if isinstance(raw_port, int) and not isinstance(raw_port, bool):
            return raw_port
        if isinstance(raw_port, str) and raw_port.isascii() and raw_port.isdigit():
            return int(raw_port)
        raise ValueError(f"invalid port {raw_port!r}")

    @staticmethod
    def _listen_address(host: str, port: int) -> Tuple[socket.AddressFamily, tuple, bool]:
        """
        Pick the address family and bind address for a configured host.

        Returns:
            (family, address, dualstack)
        """
        if host in WILDCARD_HOSTS and socket.has_dualstack_ipv6():
            return socket.AF_INET6, ("::", port), True
        if host == "::":
            return socket.AF_INET6, (host, port), False
        return socket.AF_INET, (host or "0.0.0.0", port), False

    def _create_socket(self, family: socket.AddressFamily, dualstack: bool = False) -> socket.socket:
        sock = socket.socket(family, socket.SOCK_STREAM)
        if dualstack:
            # Accept IPv4-mapped clients on the same socket
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        return sock

    def bind(self) -> Tuple[str, int]:
        """
        Create the listening socket.

        The configured port is parsed here, so a nonsense PORT value fails
        the same way as a port that is already taken.

        Returns:
            The bound (host, port).

        Raises:
            BindError: If the port is invalid or the address can't be bound.
        """
        if self._socket is not None:
            raise RuntimeError("Socket server is already bound")

        host, raw_port = self.config.address

        try:
            port = self._parse_port(raw_port)
        except ValueError as e:
            raise BindError(self.config.address, str(e)) from None

        family, bind_address, dualstack = self._listen_address(host, port)

        sock = None
        try:
            sock = self._create_socket(family, dualstack)
            # OverflowError: port outside 0-65535
            sock.bind(bind_address)
            sock.listen(self.config.backlog)
        except (OSError, OverflowError) as e:
            if sock is not None:
                sock.close()
            logger.debug(f"Failed to bind to {host}:{raw_port}: {e}")
            raise BindError(self.config.address, str(e)) from e

        self._socket = sock
        self._address = sock.getsockname()[:2]
        return self._address

    def serve(self, connection_handler: Callable[[Connection], None]) -> threading.Thread:
        """
        Start accepting connections on a background thread.

        Args:
            connection_handler: Called (on the accept thread) with every
                                new Connection. Must not block.

        Returns:
            The accept thread.
        """
        if self._socket is None:
            raise RuntimeError("bind() must be called before serve()")
        if self._thread is not None:
            raise RuntimeError("Socket server is already serving")

        self._running = True
        self._thread = threading.Thread(
            target=self._accept_loop,
            args=(connection_handler,),
            name="accept-loop",
            daemon=True,
        )
        self._thread.start()

        host, port = self.address
        logger.debug(f"Accepting connections on {host}:{port}")
        return self._thread

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        try:
            while self._running:
                try:
                    client_socket, client_address = self._socket.accept()
                except socket.timeout:
                    continue  # Re-check _running
                except OSError as e:
                    # stop() shut the listener down, or something broke
                    if self._running:
                        logger.error(f"Accept error: {e}")
                    break

                if not self._running:
                    client_socket.close()
                    break

                logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

                conn = Connection(
                    socket=client_socket,
                    address=client_address,
                    buffer_size=self.config.buffer_size,
                    timeout=self.config.timeout,
                    keep_alive_timeout=self.config.keep_alive_timeout,
                    max_request_size=self.config.max_request_size,
                )
                connection_handler(conn)
        finally:
            self._running = False
            self._close_listener()

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Stop accepting connections and release the listener.

        New connection attempts are refused once this returns True.

        Args:
            timeout: Maximum seconds to wait for the accept thread.

        Returns:
            True if the accept loop has exited.
        """
        self._running = False

        if self._thread is None:
            # Bound but never served: nothing else owns the socket
            self._close_listener()
            return True

        sock = self._socket
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass  # Not supported on listeners everywhere; poll covers it

        self._thread.join(timeout)
        stopped = not self._thread.is_alive()
        if stopped:
            logger.debug("Socket server stopped")
        return stopped

    def _close_listener(self):
        sock, self._socket = self._socket, None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass  # Already closed
