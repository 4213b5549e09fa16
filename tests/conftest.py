"""
pytest configuration and fixtures.
"""

import http.client
import socket
from typing import Callable, Dict, Generator, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from golaunch import HTTPServer, ServerConfig, ServerState


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /health?verbose=1&verbose=2 HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: text/plain\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a body."""
    body = b"name=gopher"
    return (
        b"POST / HTTP/1.1\r\n"
        b"Host: localhost:8080\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        b"Content-Length: %d\r\n"
        b"Connection: close\r\n"
        b"\r\n"
    ) % len(body) + body


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def config() -> ServerConfig:
    """Test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        timeout=5.0,
        keep_alive_timeout=5.0,
        shutdown_timeout=2.0,
        log_level="DEBUG",
    )


@pytest.fixture
def running_server(config: ServerConfig) -> Generator[HTTPServer, None, None]:
    """A started server with the default routes, shut down afterwards."""
    server = HTTPServer(config)
    server.start()

    yield server

    if server.state is ServerState.LISTENING:
        server.shutdown(timeout=1.0)


Response = Tuple[int, Dict[str, str], bytes]


@pytest.fixture
def http_request() -> Callable[..., Response]:
    """
    Send one request with http.client.

    Returns (status, headers, body); header names are lowercased.
    """
    def send(address: Tuple[str, int], path: str = "/", method: str = "GET",
             headers: Optional[Dict[str, str]] = None, body: Optional[bytes] = None) -> Response:
        host, port = address
        conn = http.client.HTTPConnection(host, port, timeout=5.0)
        try:
            conn.request(method, path, body=body, headers=headers or {})
            response = conn.getresponse()
            data = response.read()
            return (
                response.status,
                {name.lower(): value for name, value in response.getheaders()},
                data,
            )
        finally:
            conn.close()

    return send


@pytest.fixture
def raw_request() -> Callable[[Tuple[str, int], bytes], bytes]:
    """
    Send raw bytes and read until the server closes the connection.
    """
    def send(address: Tuple[str, int], data: bytes, timeout: float = 5.0) -> bytes:
        with socket.create_connection(address, timeout=timeout) as s:
            s.sendall(data)
            chunks = []
            while True:
                chunk = s.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
            return b"".join(chunks)

    return send
