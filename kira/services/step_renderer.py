import asyncio
import logging
import time
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from playwright.async_api import Error as PlaywrightError

from kira.config import settings
from kira.errors import RenderError
from kira.schemas import RenderJob
from kira.services.activity_log import log_activity
from kira.services.render_pool import RenderPool

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
GRAPH_TEMPLATE = "graph.html"

SIZE_DIMENSIONS: dict[str, dict[str, int]] = {
    "small":  {"width": 600,  "height": 400},
    "medium": {"width": 1200, "height": 630},   # GitHub social preview size
    "large":  {"width": 1600, "height": 900},
}


def build_template_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(TEMPLATES_DIR),
        autoescape=select_autoescape(["html"]),
    )


class StepRenderer:
    """Renders one step of the graph template to a PNG frame."""

    def __init__(
        self,
        pool: RenderPool,
        settle_ms: list[int] | None = None,
        timeout_ms: int | None = None,
        concurrency: int | None = None,
        env: Environment | None = None,
    ) -> None:
        self._pool = pool
        self._settle_ms = list(settle_ms if settle_ms is not None else settings.RENDER_SETTLE_MS)
        self._timeout_ms = timeout_ms if timeout_ms is not None else settings.RENDER_TIMEOUT_MS
        self._semaphore = asyncio.Semaphore(concurrency or settings.RENDER_CONCURRENCY)
        self._env = env or build_template_env()

    def settle_seconds(self, step: int) -> float:
        # steps past the configured list reuse the last value
        index = min(step, len(self._settle_ms)) - 1
        return self._settle_ms[index] / 1000 if index >= 0 else 0.0

    def build_html(self, job: RenderJob) -> str:
        template = self._env.get_template(GRAPH_TEMPLATE)
        return template.render(
            activity_data=job.views.model_dump(mode="json"),
            step=job.step,
            style=job.style,
            viewport=SIZE_DIMENSIONS[job.size],
        )

    async def render_step(self, job: RenderJob) -> bytes:
        try:
            html = self.build_html(job)
        except TemplateError as exc:
            raise RenderError(f"Template injection failed for step {job.step}: {exc}") from exc

        started = time.perf_counter()
        async with self._semaphore:
            async with self._pool.context(SIZE_DIMENSIONS[job.size]) as ctx:
                try:
                    await ctx.page.set_content(
                        html, wait_until="networkidle", timeout=self._timeout_ms
                    )
                    await asyncio.sleep(self.settle_seconds(job.step))
                    frame = await ctx.page.screenshot(
                        type="png", full_page=False, timeout=self._timeout_ms
                    )
                except PlaywrightError as exc:
                    logger.error("Step %d render failed: %s", job.step, exc)
                    log_activity("error", "render", f"Step {job.step} failed — {exc}")
                    raise RenderError(f"Step {job.step} render failed: {exc}") from exc

        logger.info(
            "Rendered step %d (%s, %s) in %.1fms, %d bytes",
            job.step, job.style, job.size,
            (time.perf_counter() - started) * 1000, len(frame),
        )
        return frame
