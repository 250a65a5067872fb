"""
Request logging for the funding API.

Each request gets a short request id (echoed back in ``x-request-id``). Webhook
deliveries are tagged with their provider and withdrawal calls with the user id,
so a deposit or withdrawal can be followed across the log lines it produces.
"""

import time
import uuid
from typing import Dict

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("perpmate.http")

QUIET_PATHS = {"/", "/healthz"}


def request_context(request: Request) -> Dict[str, str]:
    """Log fields derived from the route being called."""
    parts = [part for part in request.url.path.split("/") if part]
    if len(parts) >= 2 and parts[0] == "webhooks":
        return {"webhook_provider": parts[1]}
    if len(parts) >= 2 and parts[0] == "withdrawals":
        return {"user_id": parts[1]}
    return {}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, **request_context(request))

        started = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
            response.headers["x-request-id"] = request_id
            return response
        finally:
            status = response.status_code if response is not None else 500
            if status >= 500:
                level = "error"
            elif status >= 400:
                level = "warning"
            elif request.url.path in QUIET_PATHS:
                level = "debug"
            else:
                level = "info"
            getattr(logger, level)(
                "api_request",
                method=request.method,
                path=request.url.path,
                status=status,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
            )
