from __future__ import annotations

import logging
import re
import time
from typing import Callable, Dict, Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

log = logging.getLogger("policyfold.api")

REQUEST_ID_HEADER = "X-Request-ID"
CONVERSION_ID_HEADER = "X-Conversion-ID"

_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def request_id_from(request: Request) -> str:
    """Client supplied request id, or a fresh one.

    Security notes:
    - Only short ``[A-Za-z0-9._-]`` ids are echoed back and logged.

    """

    candidate = request.headers.get(REQUEST_ID_HEADER, "")
    if _SAFE_REQUEST_ID.match(candidate):
        return candidate
    return uuid4().hex


class ConversionTraceMiddleware(BaseHTTPMiddleware):
    """Tie each request to the conversion it ran.

    Endpoints that convert set ``request.state.conversion_id`` and
    ``request.state.event_counts``. The response then carries both the request
    id and the conversion id, and one ``api_request`` record is logged with
    the event counts. Uploaded documents are never logged.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        request.state.request_id = request_id_from(request)
        start = time.monotonic()
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request.state.request_id
            conversion_id = getattr(request.state, "conversion_id", None)
            if conversion_id:
                response.headers[CONVERSION_ID_HEADER] = conversion_id
            return response
        finally:
            event_counts: Dict[str, int] = getattr(request.state, "event_counts", None) or {}
            log.info(
                "api_request",
                extra={
                    "request_id": request.state.request_id,
                    "conversion_id": getattr(request.state, "conversion_id", None),
                    "event_counts": event_counts,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": getattr(response, "status_code", None),
                    "duration_ms": int((time.monotonic() - start) * 1000),
                },
            )
