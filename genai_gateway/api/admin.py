"""Admin endpoints for key health, usage statistics and counter resets."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool

from genai_gateway.services import GatewayServices, get_services
from genai_gateway.storage.usage import start_of_day

router = APIRouter(prefix="/admin/genai-usage")

Services = Annotated[GatewayServices, Depends(get_services)]

_STATS_WINDOWS = {"today": 0, "week": 7, "month": 30}


@router.get("/key-health")
async def key_health(services: Services) -> dict:
    statuses = await services.keys.all_statuses()
    capacity = await services.keys.total_available_capacity()
    return {
        "keys": [status.as_dict() for status in statuses],
        "total_available_requests": capacity,
        "summary": {
            "total_keys": len(statuses),
            "available_keys": sum(1 for s in statuses if s.available),
            "exhausted_keys": sum(
                1 for s in statuses if not s.available and s.requests_today >= s.max_requests
            ),
            "failed_keys": sum(
                1 for s in statuses if not s.available and s.consecutive_failures > 0
            ),
        },
    }


@router.get("/stats/{window}")
async def usage_stats(window: str, services: Services) -> dict:
    days_back = _STATS_WINDOWS.get(window)
    if days_back is None:
        raise HTTPException(status_code=404, detail=f"Unknown stats window '{window}'")
    return await run_in_threadpool(services.usage.stats_since, start_of_day(days_back=days_back))


@router.get("/recent-errors")
def recent_errors(
    services: Services, limit: Annotated[int, Query(ge=1, le=200)] = 50
) -> dict:
    return {"errors": services.usage.recent_errors(limit=limit)}


@router.post("/reset-keys")
async def reset_keys(services: Services) -> dict:
    await services.keys.reset_all()
    return {"message": "All API key counters have been reset successfully"}
