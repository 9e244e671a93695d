"""
Operator endpoints — pipeline activity feed and cache control.
Mounted at /admin/actions/. Flushing is disabled unless ADMIN_ACTIONS_ENABLED.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from kira.config import settings
from kira.dependencies import get_cache
from kira.services.activity_log import recent
from kira.services.cache import ResultCache

router = APIRouter(prefix="/admin/actions", tags=["admin-actions"])
logger = logging.getLogger(__name__)


@router.get("/activity")
async def get_activity(limit: int = 60, category: str | None = None):
    """Returns recent pipeline activity events, newest first."""
    return JSONResponse(recent(limit=limit, category=category))


@router.get("/cache")
async def cache_stats(cache: ResultCache = Depends(get_cache)):
    return JSONResponse(cache.stats())


@router.post("/cache/flush")
async def flush_cache(cache: ResultCache = Depends(get_cache)):
    if not settings.ADMIN_ACTIONS_ENABLED:
        raise HTTPException(status_code=403, detail="Admin actions are disabled")
    count = cache.invalidate_all()
    logger.info("Manual cache flush dropped %d entries", count)
    return JSONResponse({"flushed": count})
