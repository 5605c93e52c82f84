"""Rate limiting middleware.

This module wires the rate limiter into the HTTP layer. It runs inside the
request context middleware, so the decision it stores on the context ends up
in the completion log record.

Behaviour:
- Denied: 429 with ``X-RateLimit-*``, ``Retry-After`` and a JSON body.
- Allowed: ``X-RateLimit-*`` attached only when the final status is < 400.
- Counter store down with fail-closed: 503 ``rate_limiter_unavailable``.
- Disabled via ``RATE_LIMIT_ENABLED=false``.
"""

from __future__ import annotations

from fastapi import Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ledger_observability.core.middleware import client_ip
from ledger_observability.core.request_context import get_request_context, get_request_id


async def rate_limit_middleware(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the configured throttle rules.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: Either the throttle response or the handler's response.
    """

    rate_limit_settings = request.app.state.settings.rate_limit
    if not rate_limit_settings.enabled:
        return await call_next(request)

    limiter = request.app.state.services.rate_limiter
    decision = await run_in_threadpool(
        limiter.evaluate,
        request.method,
        request.url.path,
        client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    if decision is None:
        return await call_next(request)

    context = get_request_context()
    if context is not None and (decision.has_quota or not decision.allowed):
        context.rate_limit = decision

    if not decision.allowed:
        if decision.degraded:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "error": {
                        "code": "rate_limiter_unavailable",
                        "message": "Request throttling is temporarily unavailable.",
                        "request_id": get_request_id(),
                    }
                },
            )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=decision.error_body(),
            headers=decision.headers(),
        )

    response: Response = await call_next(request)
    if rate_limit_settings.include_headers and response.status_code < 400:
        response.headers.update(decision.headers())
    return response
