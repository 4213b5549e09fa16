"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.x request bytes into HTTPRequest objects (RFC 7230).

    ┌─────────────────────────────────────────────────────────────────────┐
    │  GET /health?verbose=1 HTTP/1.1\r\n      ← request line              │
    │  Host: localhost:8080\r\n                ← headers                   │
    │  Connection: keep-alive\r\n                                          │
    │  \r\n                                    ← end of headers            │
    │  <Content-Length bytes>                  ← body (optional)           │
    └─────────────────────────────────────────────────────────────────────┘

The handlers here never look at the request, but the server still needs a
correct parse: the method decides whether a body is sent (HEAD), the path
picks the handler, and the version plus Connection header decide keep-alive.

=============================================================================
WHAT IS REJECTED
=============================================================================

    400  Request line or header line that doesn't parse
    400  A "%" in the path that isn't a two-digit hex escape
    501  Transfer-Encoding (only Content-Length bodies are read)
    505  Anything but HTTP/1.0 and HTTP/1.1

Any method token is accepted; routing ignores the method.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Dict
from urllib.parse import unquote, urlsplit
import re

from .status_codes import HTTPStatus


class HTTPParseError(Exception):
    """
    Raised when a request can't be parsed.

    Carries the status code the client should receive.
    """

    def __init__(self, message: str, status_code: HTTPStatus = HTTPStatus.BAD_REQUEST):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Attributes:
        method: Request method as sent ("GET", "POST", ...).
        path: Path without query string, percent-decoded.
        version: "HTTP/1.0" or "HTTP/1.1".
        headers: Header names lowercased → value.
        query: Raw query string (without "?").
        body: Body bytes (exactly Content-Length).
        client_address: (ip, port) of the client.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query: str = ""
    body: bytes = b""
    client_address: tuple = ("", 0)

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client wants the connection kept open.

        HTTP/1.1 keeps alive unless "Connection: close";
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        tokens = {t.strip() for t in self.headers.get("connection", "").lower().split(",")}

        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens


class RequestParser:
    """
    Parses raw request bytes into HTTPRequest objects.

    The connection has already framed the request (headers plus exactly
    Content-Length body bytes); the parser only has to make sense of it.
    """

    # method = token (RFC 7230 §3.1.1, §3.2.6)
    REQUEST_LINE_PATTERN = re.compile(
        r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+) (\S+) (HTTP/\d\.\d)$"
    )
    HEADER_PATTERN = re.compile(r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+):[ \t]*(.*?)[ \t]*$")
    # "%" not followed by two hex digits
    BAD_ESCAPE_PATTERN = re.compile(r"%(?![0-9A-Fa-f]{2})")

    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    def parse(self, data: bytes, client_address: tuple = ("", 0)) -> HTTPRequest:
        """
        Parse one framed request.

        Args:
            data: Raw request bytes as returned by Connection.read_request().
            client_address: Client's (ip, port) tuple.

        Returns:
            Parsed HTTPRequest.

        Raises:
            HTTPParseError: If the request is malformed or unsupported.
        """
        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        # Headers are ISO-8859-1 on the wire; latin-1 never fails to decode
        lines = data[:header_end].decode("latin-1").split("\r\n")
        body = data[header_end + 4:]

        method, target, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        if "transfer-encoding" in headers:
            raise HTTPParseError(
                f"Unsupported Transfer-Encoding: {headers['transfer-encoding']}",
                status_code=HTTPStatus.NOT_IMPLEMENTED,
            )

        content_length = self._content_length(headers)
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        path, query = self._split_target(target)

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query=query,
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> tuple:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()

        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=HTTPStatus.HTTP_VERSION_NOT_SUPPORTED,
            )

        return method, target, version

    @staticmethod
    def _split_target(target: str) -> tuple:
        """
        Split a request target into (path, query).

            origin-form    /health?x=1          → ("/health", "x=1")
            absolute-form  http://h:80/health   → ("/health", "")
            asterisk-form  *                    → ("*", "")

        Origin-form is split by hand: urlsplit() would read "//a/b" as a
        host "a" and path "/b".

        The path is percent-decoded ("/heal%74h" → "/health"); the query
        is left as sent.

        Raises:
            HTTPParseError: If the path has a malformed %-escape.
        """
        if target.startswith("/"):
            path, _, query = target.partition("?")
        else:
            parts = urlsplit(target)
            if not parts.scheme:
                return target, ""
            path, query = parts.path or "/", parts.query

        if RequestParser.BAD_ESCAPE_PATTERN.search(path):
            raise HTTPParseError(f"Invalid URL escape in path: {path!r}")
        return unquote(path, errors="surrogateescape"), query

    def _parse_headers(self, lines: list) -> Dict[str, str]:
        """
        Parse header lines into a dict with lowercase names.

        Repeated headers are joined with ", " (RFC 7230 §3.2.2).
        Obsolete line folding is rejected.
        """
        headers: Dict[str, str] = {}

        for line in lines:
            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Invalid header line: {line!r}")

            name, value = match.group(1).lower(), match.group(2)
            if name in headers:
                headers[name] = f"{headers[name]}, {value}"
            else:
                headers[name] = value

        return headers

    @staticmethod
    def _content_length(headers: Dict[str, str]) -> int:
        raw = headers.get("content-length")
        if raw is None:
            return 0

        # "5, 5" from a repeated header is fine; "5, 6" is smuggling bait
        values = {v.strip() for v in raw.split(",")}
        if len(values) != 1:
            raise HTTPParseError(f"Conflicting Content-Length: {raw}")

        value = values.pop()
        if not value.isdigit():
            raise HTTPParseError(f"Invalid Content-Length: {raw}")
        return int(value)
