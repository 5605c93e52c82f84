from __future__ import annotations

from ledger_observability.api.routes.health import router as health_router
from ledger_observability.api.routes.ledger import router as ledger_router
from ledger_observability.api.routes.metrics import router as metrics_router

__all__ = ["health_router", "ledger_router", "metrics_router"]
