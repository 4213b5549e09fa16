"""
=============================================================================
HTTP RESPONSE
=============================================================================

Builds HTTP/1.1 responses per RFC 7230.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  HTTP/1.1 200 OK\r\n                          ← status line         │
    │  Content-Type: text/plain; charset=utf-8\r\n  ← headers             │
    │  Content-Length: 3\r\n                        ← auto-added          │
    │  Date: Mon, 19 Oct 2026 12:00:00 GMT\r\n      ← auto-added          │
    │  Server: golaunch/1.0\r\n                     ← auto-added          │
    │  \r\n                                                                │
    │  OK\n                                         ← body                │
    └─────────────────────────────────────────────────────────────────────┘

Handlers return an HTTPResponse; the server adds the connection headers
and calls to_bytes(). The helpers at the bottom cover every response this
server produces.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from html import escape
from typing import Dict, Union

from .status_codes import HTTPStatus


TEXT_PLAIN = "text/plain; charset=utf-8"
TEXT_HTML = "text/html; charset=utf-8"


@dataclass
class HTTPResponse:
    """
    An HTTP response to be sent to the client.

    Attributes:
        status: Status code.
        headers: Response headers (names as they should appear on the wire).
        body: Body bytes.
        version: Protocol version for the status line.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """E.g. "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a header; returns self for chaining."""
        self.headers[name] = value
        return self

    def to_bytes(self, server_name: str = "golaunch/1.0", include_body: bool = True) -> bytes:
        """
        Serialize the response for socket.sendall().

        Content-Length, Date and Server are added unless already set.

        Args:
            server_name: Value for the Server header.
            include_body: False for HEAD requests. Content-Length still
                          describes the body that a GET would have returned.

        Returns:
            Status line, headers and (optionally) body as bytes.
        """
        response_headers = dict(self.headers)
        response_headers.setdefault("Content-Length", str(len(self.body)))
        response_headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        response_headers.setdefault("Server", server_name)

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in response_headers.items())
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("latin-1") + b"\r\n"
        return header_bytes + self.body if include_body else header_bytes


def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231 IMF-fixdate).

    Example: Mon, 19 Oct 2026 12:00:00 GMT

    Spelled out by hand because strftime("%a %b") follows the locale.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def text(body: Union[str, bytes], status: HTTPStatus = HTTPStatus.OK) -> HTTPResponse:
    """
    Plain-text response.

    Example:
        return text("OK\\n")
    """
    if isinstance(body, str):
        body = body.encode("utf-8")
    return HTTPResponse(status=status, headers={"Content-Type": TEXT_PLAIN}, body=body)


def error(status: HTTPStatus, message: str = "") -> HTTPResponse:
    """
    Plain-text error response: "<message>\\n".

    Defaults to "<code> <phrase>", e.g. "400 Bad Request".
    """
    response = text(f"{message or f'{int(status)} {status.phrase}'}\n", status)
    response.set_header("X-Content-Type-Options", "nosniff")
    return response


def not_found() -> HTTPResponse:
    """404 with the plain "404 page not found" body."""
    return error(HTTPStatus.NOT_FOUND, "404 page not found")


def moved_permanently(location: str) -> HTTPResponse:
    """301 redirect with a small HTML body pointing at the new location."""
    body = f'<a href="{escape(location)}">{HTTPStatus.MOVED_PERMANENTLY.phrase}</a>.\n\n'
    return HTTPResponse(
        status=HTTPStatus.MOVED_PERMANENTLY,
        headers={"Location": location, "Content-Type": TEXT_HTML},
        body=body.encode("utf-8"),
    )
