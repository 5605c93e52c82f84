"""Application factory for FastAPI app.

Centralizes app construction (settings, services, middleware, handlers,
routers) so tests can build isolated apps with their own settings, clocks
and stores.
"""

from __future__ import annotations

from fastapi import FastAPI

from ledger_observability.api.routes import health_router, ledger_router, metrics_router
from ledger_observability.core.config import Settings, settings as default_settings
from ledger_observability.core.container import Services, build_services
from ledger_observability.core.exception_handlers import setup_exception_handlers
from ledger_observability.core.logging import configure_logging
from ledger_observability.core.middleware import request_context_middleware
from ledger_observability.core.rate_limit import rate_limit_middleware


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Settings override; defaults to the environment-loaded settings.
        services: Prebuilt services (tests inject clocks and stores this way).

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    settings = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title=settings.app.title,
        description=(
            "Ledger API observability core: metric tracking, rollups, threshold "
            "alerts and per-client request throttling with X-RateLimit-* headers."
        ),
        version="0.1.0",
        debug=settings.app.debug,
    )
    app.state.settings = settings
    app.state.services = services or build_services(settings)

    # Middleware: the last registered runs outermost, so the request context
    # wraps throttling and sees its decision.
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_context_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(ledger_router, prefix="/v1")
    app.include_router(metrics_router, prefix="/v1")
    app.include_router(health_router)

    return app
