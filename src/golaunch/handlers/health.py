"""
=============================================================================
HEALTH CHECK
=============================================================================

Liveness endpoint for load balancers and orchestrators:

    livenessProbe:
      httpGet:
        path: /health
        port: 8080

It answers "OK\n" whenever the process can serve a request at all. There
are no dependencies to check, so there is no separate readiness probe.

During shutdown the listener is closed first, so probes start failing with
"connection refused" while in-flight requests drain. That is exactly what
takes the instance out of rotation.

=============================================================================
"""

from ..http import HTTPRequest, HTTPResponse, text


HEALTHY = "OK\n"


def handle_health(request: HTTPRequest) -> HTTPResponse:
    """Report that the server is up."""
    return text(HEALTHY)
