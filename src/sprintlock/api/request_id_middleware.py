"""
RequestID middleware for the sprintlock API.

Every response carries ``X-Request-ID``: the caller's value when supplied,
otherwise a fresh UUID. The id is also visible to the JSONL formatter for the
duration of the request.
"""

import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.request_context import request_id_context


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware for request ID propagation with JSONL logging support."""

    def __init__(self, app, service_name: str = "unknown") -> None:
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_context.set(request_id)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_context.reset(token)
