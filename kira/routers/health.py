import logging

from fastapi import APIRouter, Request

from kira.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    state = request.app.state

    pool = getattr(state, "pool", None)
    browser_status = "running" if pool is not None and pool.is_running else "stopped"

    cache = getattr(state, "cache", None)
    cache_stats = cache.stats() if cache is not None else None

    scheduler = getattr(state, "scheduler", None)
    scheduler_status = "running" if scheduler and scheduler.running else "stopped"

    pipeline = getattr(state, "pipeline", None)
    pipeline_stats = (
        {"builds": pipeline.builds, "coalesced": pipeline.coalesced}
        if pipeline is not None
        else None
    )

    # browser is lazy: "stopped" before the first render is healthy
    overall_status = "ok"
    if pool is not None and pool.starts and not pool.is_running:
        overall_status = "degraded"

    return {
        "status": overall_status,
        "message": f"{settings.APP_NAME} server is running",
        "browser": browser_status,
        "browser_restarts": pool.restarts if pool is not None else 0,
        "cache": cache_stats,
        "scheduler": scheduler_status,
        "pipeline": pipeline_stats,
    }
