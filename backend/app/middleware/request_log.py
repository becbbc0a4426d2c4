import logging
import re
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logging_config import request_id_ctx_var

logger = logging.getLogger("app.request")

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def _incoming_request_id(request: Request) -> str | None:
    candidate = (request.headers.get("X-Request-ID") or "").strip()
    return candidate if _REQUEST_ID_RE.match(candidate) else None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag each request with a request id (propagated from X-Request-ID when sane) and log it."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = _incoming_request_id(request) or str(uuid.uuid4())
        token = request_id_ctx_var.set(request_id)
        start = time.perf_counter()
        request.state.request_id = request_id
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            logger.info(
                "request",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": status_code,
                    "duration_ms": int((time.perf_counter() - start) * 1000),
                },
            )
            request_id_ctx_var.reset(token)
