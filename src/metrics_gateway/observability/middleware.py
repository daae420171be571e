"""
metrics_gateway.observability.middleware

HTTP middleware for request-scoped logging context.

Responsibilities:
- Generate/propagate request IDs.
- Bind request metadata into structlog contextvars.
- Remove inbound trust-boundary headers so only the gateway can set them.
"""

from __future__ import annotations

import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from metrics_gateway.auth.context import TRUST_HEADERS

# `X-Auth-Token` is a credential and `X-User-Domain-Name` a basic-auth hint; both
# are overwritten once the caller is authenticated.
_SPOOFABLE = frozenset(h.lower().encode("latin-1") for h in TRUST_HEADERS) - {
    b"x-auth-token",
    b"x-user-domain-name",
}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    - Ensures every request has a request id
    - Binds request-scoped contextvars for structured logs
    - Drops identity headers a client may have forged
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.scope["headers"] = [
            (k, v) for k, v in request.scope["headers"] if k.lower() not in _SPOOFABLE
        ]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )
        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()

        response.headers["x-request-id"] = request_id
        return response


# --- Module Notes -----------------------------------------------------------
# Downstream consumers trust the X-User-*/X-Project-*/X-Roles headers, so the
# filter has to run before any auth dependency writes them.
