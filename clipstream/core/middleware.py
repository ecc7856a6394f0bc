"""HTTP middleware for request ID propagation and correlation.

Every request/response pair carries a correlation id so limiter decisions and
error responses can be matched with log lines:

- Accepts the incoming request id header or generates a UUID
- Stores it in contextvars for the rest of the request lifecycle
- Echoes it (plus the total duration) in the response headers

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response

from clipstream.core.config import settings
from clipstream.core.logging import clear_request_id, set_request_id

_MAX_REQUEST_ID_LENGTH = 128


def _resolve_request_id(request: Request, header_name: str) -> str:
    incoming = request.headers.get(header_name, "").strip()
    if incoming and len(incoming) <= _MAX_REQUEST_ID_LENGTH:
        return incoming
    return str(uuid.uuid4())


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request id to the context and add it to the response.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        The downstream response with ``X-Request-ID`` (or the configured
        header) and ``X-Request-Duration-ms`` headers added.
    """

    header_name = settings.log.request_id_header
    request_id = _resolve_request_id(request, header_name)
    request.state.request_id = request_id
    set_request_id(request_id)

    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
    finally:
        clear_request_id()

    duration_ms = (time.perf_counter() - start) * 1000
    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
