import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from kira.config import settings
from kira.errors import InfrastructureError
from kira.services.activity_log import log_activity
from kira.services.cache import ResultCache
from kira.services.render_pool import RenderPool

logger = logging.getLogger(__name__)


def create_scheduler(cache: ResultCache, pool: RenderPool) -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone="UTC")
    scheduler.add_job(
        sweep_cache,
        "interval",
        seconds=settings.CACHE_SWEEP_SECONDS,
        args=[cache],
        id="cache_sweep_job",
        replace_existing=True,
    )
    scheduler.add_job(
        watchdog_render_pool,
        "interval",
        seconds=settings.POOL_WATCHDOG_SECONDS,
        args=[pool],
        id="pool_watchdog_job",
        replace_existing=True,
    )
    return scheduler


async def sweep_cache(cache: ResultCache) -> int:
    """Drop expired entries so memory does not wait for the next lookup."""
    removed = cache.sweep()
    if removed:
        logger.info("Cache sweep: removed %d expired entries", removed)
    return removed


async def watchdog_render_pool(pool: RenderPool) -> None:
    """
    Self-healing watchdog: a browser that crashed while idle is relaunched
    here instead of on the next user request. A pool that was never started
    is left alone.
    """
    restarts_before = pool.restarts
    try:
        await pool.health_check()
    except InfrastructureError as exc:
        logger.error("Watchdog could not restart rendering engine: %s", exc)
        return
    if pool.restarts > restarts_before:
        log_activity("warn", "system", "Watchdog: rendering engine relaunched")
        logger.warning("Watchdog: relaunched dead rendering engine")
    else:
        logger.debug("Watchdog: rendering engine %s", "running" if pool.is_running else "idle")
