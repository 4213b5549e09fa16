"""Root handler."""

from ..http import HTTPRequest, HTTPResponse, text


GREETING = "Welcome to the Go Web App!\n"


def handle_root(request: HTTPRequest) -> HTTPResponse:
    """Return the greeting for "/" and every path below it."""
    return text(GREETING)
