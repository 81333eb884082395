"""Pydantic response schemas for the health/stats endpoint."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ProofCounts(BaseModel):
    total: int = Field(..., description="Submissions dispatched")
    successful: int = Field(..., description="Submissions included")
    failed: int = Field(..., description="Submissions failed after retries or generation errors")
    success_rate: str = Field(..., description="Percentage, one decimal")


class HealthPayload(BaseModel):
    status: str = Field(..., description="healthy | unhealthy")
    service: str
    version: str
    uptime_s: int
    timestamp: str
    last_proof_time: Optional[str] = None
    proofs: ProofCounts


class RuntimeInfo(BaseModel):
    milliseconds: int
    formatted: str


class StatsPayload(BaseModel):
    service: str
    status: str
    runtime: RuntimeInfo
    proofs: ProofCounts
    last_proof_time: Optional[str] = None
    timestamp: str
    pipeline: Dict[str, Any] = Field(default_factory=dict)
