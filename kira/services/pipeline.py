"""
Request pipeline: cache → fetch → transform → render → compose → cache.

Concurrent misses for the same cache key are coalesced: the first caller
starts one build task, later callers await that same task, so N identical
requests cost one fetch and one set of renders. Failed builds are never
cached and every waiter sees the same exception.
"""
import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping

from kira.config import settings
from kira.errors import InvalidInputError
from kira.schemas import Artifact, RenderJob, StructuredViews
from kira.services.activity_log import log_activity
from kira.services.cache import ResultCache, build_cache_key
from kira.services.compositor import FRAME_COUNT, compose, encode_frame
from kira.services.sources import ActivitySource, resolve_source
from kira.services.step_renderer import SIZE_DIMENSIONS, StepRenderer
from kira.services.transformer import transform

logger = logging.getLogger(__name__)


def _consume_exception(task: asyncio.Task) -> None:
    # every waiter may have been cancelled before a failed build finished
    if not task.cancelled():
        task.exception()


class ActivityPipeline:
    def __init__(
        self,
        sources: Mapping[str, ActivitySource],
        renderer: StepRenderer,
        cache: ResultCache,
        delays_ms: list[int] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.sources = sources
        self.renderer = renderer
        self.cache = cache
        self._delays_ms = list(delays_ms if delays_ms is not None else settings.FRAME_DELAYS_MS)
        self._rng = rng
        self._inflight: dict[str, asyncio.Task] = {}
        self.builds = 0
        self.coalesced = 0

    # ── entry points ─────────────────────────────────────────────────────────

    async def render_sequence(
        self,
        identity: str,
        source: str,
        style: str = "deathnote",
        size: str = "medium",
    ) -> Artifact:
        adapter = self._validate(identity, source, size)
        key = build_cache_key("graph", source, identity, style, size)
        return await self._cached(
            key, lambda: self._build_sequence(adapter, identity, style, size)
        )

    async def render_single(
        self,
        identity: str,
        source: str,
        step: int,
        style: str = "deathnote",
        size: str = "medium",
    ) -> Artifact:
        if not 1 <= step <= FRAME_COUNT:
            raise InvalidInputError(f"Step must be between 1 and {FRAME_COUNT}")
        adapter = self._validate(identity, source, size)
        key = build_cache_key("frame", source, identity, style, size, step)
        return await self._cached(
            key, lambda: self._build_single(adapter, identity, step, style, size)
        )

    # ── internals ────────────────────────────────────────────────────────────

    def _validate(self, identity: str, source: str, size: str) -> ActivitySource:
        if not identity or not identity.strip():
            raise InvalidInputError("User parameter is required")
        if size not in SIZE_DIMENSIONS:
            raise InvalidInputError(f"Unknown size: {size}")
        return resolve_source(self.sources, source)

    async def _cached(self, key: str, build: Callable[[], Awaitable[Artifact]]) -> Artifact:
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._build_and_store(key, build))
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
            task.add_done_callback(_consume_exception)
        else:
            self.coalesced += 1
            logger.debug("Joining in-flight build for %s", key)

        # shield: one impatient client must not cancel the build for the others
        return await asyncio.shield(task)

    async def _build_and_store(self, key: str, build: Callable[[], Awaitable[Artifact]]) -> Artifact:
        self.builds += 1
        started = time.perf_counter()
        artifact = await build()
        self.cache.put(key, artifact)
        logger.info(
            "Built %s: %s, %d bytes in %.1fms",
            key, artifact.kind.value, len(artifact.data),
            (time.perf_counter() - started) * 1000,
        )
        return artifact

    async def _views(self, adapter: ActivitySource, identity: str) -> StructuredViews:
        logger.info("Fetching %s data for %s", adapter.name, identity)
        activity = await adapter.fetch_activity(identity)
        return transform(activity.records, identity=activity.identity, rng=self._rng)

    async def _build_sequence(
        self, adapter: ActivitySource, identity: str, style: str, size: str
    ) -> Artifact:
        views = await self._views(adapter, identity)
        jobs = [
            RenderJob(views=views, step=step, style=style, size=size)
            for step in range(1, FRAME_COUNT + 1)
        ]
        # return_exceptions: a failing step must not cancel its siblings
        results = await asyncio.gather(
            *[self.renderer.render_step(job) for job in jobs],
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            log_activity(
                "error", "render",
                f"{identity}: {len(failures)}/{FRAME_COUNT} steps failed — {failures[0]}",
            )
            raise failures[0]

        loop = asyncio.get_running_loop()
        artifact = await loop.run_in_executor(None, compose, results, self._delays_ms)
        log_activity("success", "render", f"{adapter.name}/{identity}: {artifact.kind.value} WebP")
        return artifact

    async def _build_single(
        self, adapter: ActivitySource, identity: str, step: int, style: str, size: str
    ) -> Artifact:
        views = await self._views(adapter, identity)
        frame = await self.renderer.render_step(
            RenderJob(views=views, step=step, style=style, size=size)
        )
        loop = asyncio.get_running_loop()
        artifact = await loop.run_in_executor(None, encode_frame, frame)
        log_activity("success", "render", f"{adapter.name}/{identity}: step {step} frame")
        return artifact
