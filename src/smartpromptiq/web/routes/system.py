"""Queue and cache administration endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from smartpromptiq.core.cache import KNOWN_CACHES, all_cache_stats, get_cache
from smartpromptiq.core.request_queue import get_request_queue
from smartpromptiq.db.users_repository import UserRecord
from smartpromptiq.web.deps import admin_user
from smartpromptiq.web.schemas import MaxConcurrentRequest

router = APIRouter(prefix="/api", tags=["system"])


@router.get("/queue/status")
async def queue_status() -> dict[str, Any]:
    """Generation queue load."""
    return get_request_queue().get_status()


@router.post("/queue/max-concurrent")
async def set_max_concurrent(
    request: MaxConcurrentRequest,
    user: UserRecord = Depends(admin_user),
) -> dict[str, Any]:
    """Change the queue concurrency cap (admin only)."""
    queue = get_request_queue()
    queue.set_max_concurrent(request.max_concurrent)
    return queue.get_status()


@router.get("/cache/stats")
async def cache_stats() -> dict[str, Any]:
    """Hit/miss statistics for the named caches."""
    return {"caches": all_cache_stats()}


@router.delete("/cache/{name}")
async def clear_cache(
    name: str,
    user: UserRecord = Depends(admin_user),
) -> dict[str, Any]:
    """Empty a named cache (admin only)."""
    if name not in KNOWN_CACHES:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Cache '{name}' not found",
        )
    removed = get_cache(name).clear()
    return {"cache": name, "removed": removed}
