"""Correlation ID middleware."""

import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Tag requests and responses with a correlation ID and start time."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        request.state.started_at = time.perf_counter()

        response: Response = await call_next(request)

        response.headers["x-correlation-id"] = correlation_id
        return response
