"""
Integration tests for HTTPServer: real sockets, real threads.
"""

import http.client
import socket
import threading
import time

import pytest

from golaunch import (
    HTTPServer,
    ServerConfig,
    ServerState,
    BindError,
    LifecycleError,
    ShutdownTimeout,
)
from golaunch.core import connection as connection_module
from golaunch.http import DispatchTable, text


GREETING = b"Welcome to the Go Web App!\n"


def read_response(sock: socket.socket) -> bytes:
    """Read one Content-Length framed response without waiting for EOF."""
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(4096)
        assert chunk, "connection closed before the headers"
        data += chunk

    head, _, body = data.partition(b"\r\n\r\n")
    length = int(head.lower().split(b"content-length:")[1].split(b"\r\n")[0])
    while len(body) < length:
        chunk = sock.recv(4096)
        assert chunk, "connection closed before the body"
        body += chunk
    return head + b"\r\n\r\n" + body


def start_trickle(sock: socket.socket, stop: threading.Event) -> threading.Thread:
    """Send one byte every 50ms until stopped or the server cuts us off."""
    def trickle():
        while not stop.is_set():
            try:
                sock.send(b"x")
            except OSError:
                return
            stop.wait(0.05)

    thread = threading.Thread(target=trickle, daemon=True)
    thread.start()
    return thread


def wait_until(condition, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.02)
    return condition()


@pytest.fixture
def blocked_port():
    """A port another socket is already listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        yield s.getsockname()[1]


class TestRoutes:
    """The two fixed routes over the wire."""

    def test_root(self, running_server, http_request):
        """Test GET / returns the greeting."""
        status, headers, body = http_request(running_server.address, "/")

        assert status == 200
        assert body == GREETING
        assert headers["content-type"] == "text/plain; charset=utf-8"
        assert headers["content-length"] == str(len(GREETING))
        assert headers["server"] == "golaunch/1.0"
        assert "date" in headers

    def test_health(self, running_server, http_request):
        """Test GET /health returns OK."""
        status, _, body = http_request(running_server.address, "/health")

        assert status == 200
        assert body == b"OK\n"

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "PATCH", "OPTIONS"])
    def test_any_method(self, running_server, http_request, method):
        """Test that the method doesn't affect routing."""
        status, _, body = http_request(
            running_server.address, "/health", method=method, body=b"ignored"
        )

        assert status == 200
        assert body == b"OK\n"

    def test_query_string_ignored(self, running_server, http_request):
        """Test that a query string doesn't change the route."""
        _, _, body = http_request(running_server.address, "/health?verbose=1")

        assert body == b"OK\n"

    @pytest.mark.parametrize("path", ["/favicon.ico", "/health/", "/a/b/c"])
    def test_unknown_paths_served_by_root(self, running_server, http_request, path):
        """Test that "/" catches every other path."""
        status, _, body = http_request(running_server.address, path)

        assert status == 200
        assert body == GREETING

    def test_percent_encoded_path(self, running_server, http_request):
        """Test that routing sees the decoded path."""
        status, _, body = http_request(running_server.address, "/heal%74h")

        assert status == 200
        assert body == b"OK\n"

    def test_unclean_path_redirected(self, running_server, http_request):
        """Test the 301 for a non-canonical path."""
        status, headers, _ = http_request(running_server.address, "/x/../health")

        assert status == 301
        assert headers["location"] == "/health"

    def test_head_has_no_body(self, running_server, http_request):
        """Test that HEAD returns headers only."""
        status, headers, body = http_request(running_server.address, "/health", method="HEAD")

        assert status == 200
        assert body == b""
        assert headers["content-length"] == "3"

    def test_handler_error_returns_500(self, config, http_request):
        """Test that a raising handler yields 500 and the server keeps going."""
        def broken(request):
            raise RuntimeError("boom")

        routes = DispatchTable({"/": broken, "/health": lambda request: text("OK\n")})
        server = HTTPServer(config, routes)
        server.start()
        try:
            status, _, body = http_request(server.address, "/")
            assert status == 500
            assert body == b"500 Internal Server Error\n"

            assert http_request(server.address, "/health")[0] == 200
        finally:
            server.shutdown()


class TestConnections:
    """Keep-alive and protocol errors."""

    def test_keep_alive(self, running_server):
        """Test several requests on one connection."""
        host, port = running_server.address
        conn = http.client.HTTPConnection(host, port, timeout=5.0)
        try:
            for path, expected in [("/", GREETING), ("/health", b"OK\n"), ("/", GREETING)]:
                conn.request("GET", path)
                response = conn.getresponse()
                assert response.read() == expected
                assert response.getheader("Connection") == "keep-alive"
        finally:
            conn.close()

    def test_http10_closes(self, running_server, raw_request):
        """Test that HTTP/1.0 without keep-alive gets one response."""
        data = raw_request(running_server.address, b"GET /health HTTP/1.0\r\n\r\n")

        assert data.startswith(b"HTTP/1.1 200 OK\r\n")
        assert b"Connection: close\r\n" in data
        assert data.endswith(b"\r\n\r\nOK\n")

    def test_pipelined_requests(self, running_server, raw_request):
        """Test two requests sent back to back."""
        data = raw_request(
            running_server.address,
            b"GET /health HTTP/1.1\r\n\r\nGET / HTTP/1.1\r\nConnection: close\r\n\r\n",
        )

        assert data.count(b"HTTP/1.1 200 OK") == 2
        assert data.endswith(GREETING)

    @pytest.mark.parametrize("request_bytes, status", [
        (b"GET / HTTP/2.0\r\n\r\n", b"505"),
        (b"NOT A REQUEST\r\n\r\n", b"400"),
        (b"GET / HTTP/1.1\r\nbad header\r\n\r\n", b"400"),
        (b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n", b"501"),
        (b"POST / HTTP/1.1\r\nContent-Length: 99999999\r\n\r\n", b"413"),
    ])
    def test_protocol_errors(self, running_server, raw_request, request_bytes, status):
        """Test error responses for requests that never reach a handler."""
        data = raw_request(running_server.address, request_bytes)

        assert data.startswith(b"HTTP/1.1 " + status + b" ")
        assert b"Connection: close\r\n" in data

    def test_request_timeout(self, raw_request):
        """Test 408 for a client that connects and sends nothing."""
        server = HTTPServer(ServerConfig(host="127.0.0.1", port=0, timeout=0.2))
        server.start()
        try:
            data = raw_request(server.address, b"")
            assert data.startswith(b"HTTP/1.1 408 Request Timeout\r\n")
        finally:
            server.shutdown()

    def test_lingering_client_released(self, running_server):
        """Test that a client still sending after "Connection: close" doesn't keep its worker."""
        stop = threading.Event()

        with socket.create_connection(running_server.address, timeout=5.0) as client:
            client.sendall(b"GET /health HTTP/1.0\r\n\r\n")
            assert read_response(client).endswith(b"OK\n")
            trickler = start_trickle(client, stop)

            try:
                assert wait_until(lambda: running_server.active_connections == 0, timeout=3.0)
            finally:
                stop.set()
                trickler.join(timeout=2.0)


class TestLifecycle:
    """start() / shutdown() state machine."""

    def test_start_returns_bound_address(self, config):
        """Test that port 0 resolves to a real port."""
        server = HTTPServer(config)
        assert server.state is ServerState.UNSTARTED

        host, port = server.start()
        try:
            assert server.state is ServerState.LISTENING
            assert host == "127.0.0.1"
            assert port > 0
            assert server.address == (host, port)
        finally:
            server.shutdown()

        assert server.state is ServerState.STOPPED

    def test_port_from_config(self, free_port, http_request):
        """Test listening on a configured port."""
        server = HTTPServer(ServerConfig(host="127.0.0.1", port=str(free_port)))
        server.start()
        try:
            assert server.address[1] == free_port
            assert http_request(("127.0.0.1", free_port), "/health")[2] == b"OK\n"
        finally:
            server.shutdown()

    def test_bind_failure(self, blocked_port):
        """Test that an occupied port raises BindError."""
        server = HTTPServer(ServerConfig(host="127.0.0.1", port=blocked_port))

        with pytest.raises(BindError) as exc_info:
            server.start()

        assert exc_info.value.address == ("127.0.0.1", blocked_port)
        assert server.state is ServerState.STOPPED

    @pytest.mark.skipif(not socket.has_dualstack_ipv6(), reason="needs dual-stack sockets")
    def test_wildcard_host_serves_ipv4_and_ipv6(self, http_request):
        """Test that binding all interfaces accepts both address families."""
        server = HTTPServer(ServerConfig(host="0.0.0.0", port=0))
        host, port = server.start()
        try:
            assert host == "::"
            assert http_request(("127.0.0.1", port), "/health")[2] == b"OK\n"
            assert http_request(("::1", port), "/health")[2] == b"OK\n"
        finally:
            server.shutdown()

    @pytest.mark.parametrize("port", [
        "http", "99999", "-1", " 3000 ", "+80", "8_080", "３０００", "   ",
    ])
    def test_invalid_port(self, port):
        """Test that unusable port values fail at bind time."""
        server = HTTPServer(ServerConfig(host="127.0.0.1", port=port))

        with pytest.raises(BindError):
            server.start()

    def test_invalid_config_rejected(self):
        """Test that the constructor validates the configuration."""
        with pytest.raises(ValueError):
            HTTPServer(ServerConfig(backlog=0))

    def test_start_twice(self, running_server):
        """Test that a second start() is refused."""
        with pytest.raises(LifecycleError):
            running_server.start()

    def test_start_after_bind_failure(self, blocked_port):
        """Test that a failed server can't be started again."""
        server = HTTPServer(ServerConfig(host="127.0.0.1", port=blocked_port))
        with pytest.raises(BindError):
            server.start()

        with pytest.raises(LifecycleError):
            server.start()

    def test_shutdown_before_start(self, config):
        """Test that shutdown() needs a listening server."""
        with pytest.raises(LifecycleError):
            HTTPServer(config).shutdown()

    def test_shutdown_twice(self, running_server):
        """Test that shutdown happens at most once."""
        running_server.shutdown()

        with pytest.raises(LifecycleError):
            running_server.shutdown()


class TestGracefulShutdown:
    """Draining behaviour."""

    def test_shutdown_without_connections_is_fast(self, running_server):
        """Test that an unused server stops at once."""
        start = time.monotonic()
        running_server.shutdown()

        assert time.monotonic() - start < 1.0

    def test_refuses_connections_after_shutdown(self, running_server):
        """Test that the listener is closed."""
        address = running_server.address
        running_server.shutdown()

        with pytest.raises(OSError):
            socket.create_connection(address, timeout=1.0).close()

    def test_idle_keep_alive_does_not_delay(self, running_server):
        """Test that an idle connection is closed right away."""
        host, port = running_server.address
        conn = http.client.HTTPConnection(host, port, timeout=5.0)
        try:
            conn.request("GET", "/health")
            assert conn.getresponse().read() == b"OK\n"

            start = time.monotonic()
            running_server.shutdown(timeout=3.0)
            assert time.monotonic() - start < 1.0
        finally:
            conn.close()

    def test_in_flight_request_completes(self, config, http_request):
        """Test that a busy connection gets to finish its response."""
        entered = threading.Event()

        def slow(request):
            entered.set()
            time.sleep(0.3)
            return text("slow\n")

        server = HTTPServer(config, DispatchTable({"/": slow}))
        server.start()

        result = {}

        def client():
            result["response"] = http_request(server.address, "/")

        thread = threading.Thread(target=client)
        thread.start()
        assert entered.wait(2.0)

        server.shutdown(timeout=2.0)
        thread.join(timeout=2.0)

        status, headers, body = result["response"]
        assert status == 200
        assert body == b"slow\n"
        assert headers["connection"] == "close"

    def test_deadline_force_closes(self, config, http_request):
        """Test that a stuck handler is cut off at the deadline."""
        entered = threading.Event()
        release = threading.Event()

        def stuck(request):
            entered.set()
            release.wait(10.0)
            return text("too late\n")

        server = HTTPServer(config, DispatchTable({"/": stuck}))
        server.start()

        result = {}

        def client():
            try:
                result["response"] = http_request(server.address, "/")
            except (http.client.HTTPException, OSError) as e:
                result["error"] = e

        thread = threading.Thread(target=client)
        thread.start()
        assert entered.wait(2.0)

        start = time.monotonic()
        try:
            with pytest.raises(ShutdownTimeout) as exc_info:
                server.shutdown(timeout=0.2)

            assert time.monotonic() - start < 1.5
            assert exc_info.value.timeout == 0.2
            assert exc_info.value.remaining == 1
            assert server.state is ServerState.STOPPED

            thread.join(timeout=2.0)
            assert "error" in result
        finally:
            release.set()

    def test_lingering_client_is_force_closed(self, running_server, monkeypatch):
        """Test that a client still sending after its response can't outlast the deadline."""
        monkeypatch.setattr(connection_module, "LINGER_TIMEOUT", 5.0)
        stop = threading.Event()

        with socket.create_connection(running_server.address, timeout=5.0) as client:
            client.sendall(b"GET / HTTP/1.0\r\n\r\n")
            assert read_response(client).endswith(GREETING)
            trickler = start_trickle(client, stop)

            try:
                start = time.monotonic()
                with pytest.raises(ShutdownTimeout) as exc_info:
                    running_server.shutdown(timeout=0.2)

                assert time.monotonic() - start < 1.5
                assert exc_info.value.remaining == 1
                assert wait_until(lambda: running_server.active_connections == 0)
            finally:
                stop.set()
                trickler.join(timeout=2.0)
