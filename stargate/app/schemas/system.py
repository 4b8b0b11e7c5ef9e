"""Pydantic models for the health endpoint."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel


class ComponentHealth(BaseModel):
    """State of one downstream dependency."""

    status: Literal["ok", "unavailable", "disabled"]
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Response schema for ``GET /health``."""

    status: Literal["ok", "degraded"]
    service: str
    herald: ComponentHealth
    warden: ComponentHealth
    redis: ComponentHealth
