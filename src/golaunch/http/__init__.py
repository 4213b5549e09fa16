"""
=============================================================================
HTTP PROTOCOL COMPONENTS
=============================================================================

    request.py       Raw bytes → HTTPRequest
    response.py      HTTPResponse → raw bytes, response helpers
    dispatch.py      Path → handler table
    status_codes.py  Status codes and reason phrases

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError
from .response import (
    HTTPResponse,
    text,               # 200 (or any status) plain text
    error,              # 4xx/5xx plain text
    not_found,          # 404 page not found
    moved_permanently,  # 301 to the cleaned path
)
from .dispatch import DispatchTable, Route, Handler, clean_path
from .status_codes import HTTPStatus

__all__ = [
    # Request parsing
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",

    # Responses
    "HTTPResponse",
    "text",
    "error",
    "not_found",
    "moved_permanently",

    # Dispatch
    "DispatchTable",
    "Route",
    "Handler",
    "clean_path",

    # Status codes
    "HTTPStatus",
]
