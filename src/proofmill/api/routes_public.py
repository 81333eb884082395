from __future__ import annotations

from fastapi import APIRouter

from proofmill.api.routes_public_parts.health import router as health_router
from proofmill.api.routes_public_parts.metrics import router as metrics_router

public_router = APIRouter()

public_router.include_router(health_router, prefix="", tags=["health"])

# Ops
public_router.include_router(metrics_router, prefix="", tags=["metrics"])
