"""Correlation ID middleware."""

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "x-correlation-id"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with a correlation id.

    The id is echoed in the response and becomes the ``request_id`` of any
    audit entry written while serving the request, so an operator action can
    be traced from the HTTP log to the ledger.
    """

    async def dispatch(self, request: Request, call_next):
        """Process request with correlation ID."""
        # Producers may pass their own id through
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response: Response = await call_next(request)

        response.headers[CORRELATION_HEADER] = correlation_id
        if request.url.path.startswith("/v1/"):
            logger.info(
                "Request served",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                },
            )
        return response
