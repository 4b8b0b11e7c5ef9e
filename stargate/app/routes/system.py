"""Liveness and metrics endpoints."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, Response

from ..config import Settings
from ..dependencies import get_herald_client, get_session_store, get_settings, get_warden_client
from ..herald import HeraldClient
from ..metrics import render_latest
from ..schemas.system import ComponentHealth, HealthResponse
from ..sessions import SessionStore
from ..warden import WardenClient

router = APIRouter(tags=["system"])

PROBE_TIMEOUT_SECONDS = 2.0


async def _probe(check: Callable[[], Awaitable[None]]) -> ComponentHealth:
    started = time.perf_counter()
    try:
        await asyncio.wait_for(check(), timeout=PROBE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        return ComponentHealth(status="unavailable", error="timeout")
    except Exception as exc:
        return ComponentHealth(status="unavailable", error=str(exc) or type(exc).__name__)
    latency = round((time.perf_counter() - started) * 1000, 2)
    return ComponentHealth(status="ok", latency_ms=latency)


async def _constant(value: ComponentHealth) -> ComponentHealth:
    return value


@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health(
    config: Settings = Depends(get_settings),
    store: SessionStore = Depends(get_session_store),
    herald: HeraldClient | None = Depends(get_herald_client),
    warden: WardenClient | None = Depends(get_warden_client),
) -> HealthResponse:
    """Report dependency state. Liveness itself never fails."""

    disabled = ComponentHealth(status="disabled")
    herald_state, warden_state, redis_state = await asyncio.gather(
        _probe(herald.health) if herald is not None else _constant(disabled),
        _probe(warden.health) if warden is not None else _constant(disabled),
        _probe(store.storage.ping) if config.session_storage.enabled else _constant(disabled),
    )
    degraded = any(item.status == "unavailable" for item in (herald_state, warden_state, redis_state))
    return HealthResponse(
        status="degraded" if degraded else "ok",
        service="stargate",
        herald=herald_state,
        warden=warden_state,
        redis=redis_state,
    )


@router.get("/metrics")
async def metrics() -> Response:
    payload, content_type = render_latest()
    return Response(content=payload, media_type=content_type)


__all__ = ["router"]
