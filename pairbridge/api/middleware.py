"""Request-logging middleware for FastAPI.

Phone numbers arrive in the query string, so logged queries keep only the
last digits of ``number``.
"""

from __future__ import annotations

import logging
import time
import uuid
from urllib.parse import parse_qsl, urlencode

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("pairbridge.api")

VISIBLE_DIGITS = 4


def mask_number(value: str) -> str:
    """``0771234567`` -> ``******4567``."""
    if len(value) <= VISIBLE_DIGITS:
        return "*" * len(value)
    return "*" * (len(value) - VISIBLE_DIGITS) + value[-VISIBLE_DIGITS:]


def loggable_query(query: str) -> str:
    if not query:
        return ""
    pairs = [
        (key, mask_number(value) if key == "number" else value)
        for key, value in parse_qsl(query, keep_blank_values=True)
    ]
    return urlencode(pairs, safe="*")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Attach a request ID (honouring an incoming X-Request-ID) and log the exchange."""

    async def dispatch(self, request: Request, call_next):  # noqa: ANN001
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            "method=%s path=%s query=%s status_code=%s duration_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            loggable_query(request.url.query),
            response.status_code,
            duration_ms,
            request_id,
        )

        response.headers["X-Request-ID"] = request_id
        return response
