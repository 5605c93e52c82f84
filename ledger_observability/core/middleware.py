"""HTTP middleware for request context, correlation and completion logging.

The middleware:
- Accepts incoming X-Request-ID header or generates a UUID
- Installs a fresh RequestContext (request id, client ip, user agent, start time)
- Injects request_id and duration into response headers
- Writes one ``request.completed`` record per request (health checks excluded)
- Records the ``request_duration_ms`` timing sample
- Resets the context after completion to prevent leaks between requests

Usage:
    app.middleware("http")(request_context_middleware)
"""

from __future__ import annotations

import logging
import uuid

from fastapi import Request, Response
from fastapi.concurrency import run_in_threadpool

from ledger_observability.core.request_context import (
    RequestContext,
    get_request_context,
    reset_request_context,
    start_request_context,
)

logger = logging.getLogger("ledger_observability.request")

DURATION_HEADER = "X-Request-Duration-ms"


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def request_context_middleware(request: Request, call_next) -> Response:
    """Run the request inside its own ``RequestContext``.

    The context object is shared by reference with handlers and inner
    middleware, so values they set (``user_id``, the throttle decision) are
    visible when the completion record is written.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The response from the next handler with request_id and
            duration headers added.
    """

    settings = request.app.state.settings
    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())

    token = start_request_context(
        request_id=request_id,
        client_ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    context = get_request_context()
    try:
        try:
            response: Response = await call_next(request)
        except Exception:
            await _complete(request, context, 500)
            raise

        duration_ms = await _complete(request, context, response.status_code)
        response.headers[header_name] = request_id
        response.headers.setdefault(DURATION_HEADER, f"{duration_ms:.2f}")
        return response
    finally:
        reset_request_context(token)


async def _complete(request: Request, context: RequestContext, status_code: int) -> float:
    duration_ms = context.duration_ms()
    path = request.url.path
    settings = request.app.state.settings
    if path in settings.log.excluded_paths:
        return duration_ms

    fields = {
        "method": request.method,
        "path": path,
        "status": status_code,
        "ip": context.client_ip,
        "duration_ms": duration_ms,
    }
    if context.rate_limit is not None:
        fields["rate_limited"] = not context.rate_limit.allowed
    logger.info("request.completed", extra=fields)

    if settings.metrics.track_request_timing:
        tracker = request.app.state.services.tracker
        await run_in_threadpool(
            tracker.track_api_response_time,
            duration_ms,
            {"method": request.method, "path": path, "status": status_code},
        )
    return duration_ms
