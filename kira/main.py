import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from kira.config import settings
from kira.errors import ActivityError
from kira.routers.admin_actions import router as admin_actions_router
from kira.routers.graph import router as graph_router
from kira.routers.health import router as health_router
from kira.services.cache import ResultCache
from kira.services.pipeline import ActivityPipeline
from kira.services.render_pool import RenderPool
from kira.services.scheduler import create_scheduler
from kira.services.sources import build_sources
from kira.services.step_renderer import TEMPLATES_DIR, StepRenderer

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── STARTUP ──────────────────────────────────────────────────────────────
    # the browser itself starts lazily on the first render
    pool = RenderPool(browser_args=settings.BROWSER_ARGS)
    cache = ResultCache(ttl_seconds=settings.CACHE_TTL_SECONDS)
    sources = build_sources()
    pipeline = ActivityPipeline(sources, StepRenderer(pool), cache)

    app.state.pool = pool
    app.state.cache = cache
    app.state.pipeline = pipeline

    scheduler = create_scheduler(cache, pool)
    scheduler.start()
    app.state.scheduler = scheduler
    logger.info("Scheduler started")

    yield

    # ── SHUTDOWN ─────────────────────────────────────────────────────────────
    scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")
    await pool.shutdown()
    for source in sources.values():
        await source.close()
    cache.invalidate_all()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.include_router(graph_router)
app.include_router(health_router)
app.include_router(admin_actions_router)

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))


# ── Request logging middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s → %d [%.1fms]",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


# ── Pipeline errors → status codes ────────────────────────────────────────────
@app.exception_handler(ActivityError)
async def activity_error_handler(request: Request, exc: ActivityError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    else:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(
        {"error": exc.message, "type": type(exc).__name__, "status": exc.status_code},
        status_code=exc.status_code,
    )


# ── Global 500 handler ────────────────────────────────────────────────────────
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
    return JSONResponse({"error": str(exc), "status": 500}, status_code=500)


# ── Demo page ─────────────────────────────────────────────────────────────────
@app.get("/")
async def index(request: Request):
    return templates.TemplateResponse(
        request, "index.html", {"app_name": settings.APP_NAME}
    )
