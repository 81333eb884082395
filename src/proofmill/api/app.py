from __future__ import annotations

import os
from typing import Optional

from fastapi import FastAPI

from proofmill.api.health_state import HealthState
from proofmill.api.routes_public import public_router
from proofmill.api.structured_logging import RequestLogMiddleware


def create_app(health: Optional[HealthState] = None) -> FastAPI:
    """Create the health/stats FastAPI application.

    The pipeline owns the HealthState and pushes totals into it; this app
    only reads from it. Tests pass their own HealthState.
    """
    mode = os.environ.get("PROOFMILL_MODE", "prod").strip().lower()

    # Disable docs in production.
    if mode == "prod":
        app = FastAPI(
            title="Proofmill Health",
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
    else:
        app = FastAPI(title="Proofmill Health")

    app.state.health = health if health is not None else HealthState()

    app.add_middleware(RequestLogMiddleware)
    app.include_router(public_router)
    return app
