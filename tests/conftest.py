import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import asyncio
import io
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from PIL import Image
from playwright.async_api import Error as PlaywrightError

from kira.dependencies import get_cache, get_pipeline
from kira.errors import RenderError
from kira.main import app
from kira.schemas import ActivityRecord, ActivitySet
from kira.services.cache import ResultCache
from kira.services.pipeline import ActivityPipeline

STEP_COLORS = {1: (200, 0, 0), 2: (0, 200, 0), 3: (0, 0, 200), 4: (200, 200, 0)}


def make_png(color=(0, 0, 0), size=(64, 40)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def record(kind: str, iso: str, subject: str = "octo/repo") -> ActivityRecord:
    return ActivityRecord(
        kind=kind,
        timestamp=datetime.fromisoformat(iso.replace("Z", "+00:00")),
        subject=subject,
        detail=kind,
    )


# ── Source / renderer fakes ───────────────────────────────────────────────────

class FakeSource:
    def __init__(self, name="github", records=None, error: Exception | None = None):
        self.name = name
        self.records = records if records is not None else [
            record("commit", "2024-01-01T10:00:00Z"),
            record("commit", "2024-01-01T10:30:00Z"),
            record("bookmark", "2024-01-08T09:00:00Z"),
        ]
        self.error = error
        self.calls = 0
        self.closed = False

    async def fetch_activity(self, identity: str) -> ActivitySet:
        self.calls += 1
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return ActivitySet(
            identity=identity,
            records=tuple(self.records),
            fetched_at=datetime.now(timezone.utc),
        )

    async def close(self) -> None:
        self.closed = True


class FakeRenderer:
    def __init__(self, fail_steps=(), delay: float = 0.0):
        self.fail_steps = set(fail_steps)
        self.delay = delay
        self.jobs = []
        self.completed = []

    async def render_step(self, job) -> bytes:
        self.jobs.append(job)
        # later steps finish first so ordering is actually exercised
        await asyncio.sleep(self.delay * (5 - job.step))
        if job.step in self.fail_steps:
            raise RenderError(f"step {job.step} exploded")
        self.completed.append(job.step)
        return make_png(STEP_COLORS[job.step])


# ── Playwright fakes ──────────────────────────────────────────────────────────

class FakePage:
    def __init__(self, fail_on=None):
        self.fail_on = fail_on
        self.html = None
        self.set_content_kwargs = None
        self.screenshot_kwargs = None

    async def set_content(self, html, **kwargs):
        if self.fail_on == "set_content":
            raise PlaywrightError("Timeout 30000ms exceeded")
        self.html = html
        self.set_content_kwargs = kwargs

    async def screenshot(self, **kwargs):
        if self.fail_on == "screenshot":
            raise PlaywrightError("Target closed")
        self.screenshot_kwargs = kwargs
        return make_png()


class FakeContext:
    def __init__(self, browser, viewport, page_fail_on=None):
        self.browser = browser
        self.viewport = viewport
        self.page = FakePage(page_fail_on)
        self.closed = False

    async def new_page(self):
        return self.page

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, page_fail_on=None):
        self.connected = True
        self.closed = False
        self.page_fail_on = page_fail_on
        self.contexts = []

    def is_connected(self) -> bool:
        return self.connected

    async def new_context(self, viewport=None):
        if not self.connected:
            raise PlaywrightError("Browser has been closed")
        ctx = FakeContext(self, viewport, self.page_fail_on)
        self.contexts.append(ctx)
        return ctx

    async def close(self):
        self.closed = True
        self.connected = False


class FakeLauncher:
    """Counts launches; fails the first ``failures`` attempts."""

    def __init__(self, failures: int = 0, page_fail_on=None):
        self.failures = failures
        self.page_fail_on = page_fail_on
        self.browsers = []

    async def __call__(self):
        await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("chromium executable not found")
        browser = FakeBrowser(self.page_fail_on)
        self.browsers.append(browser)
        return browser


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def fake_renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def cache() -> ResultCache:
    return ResultCache(ttl_seconds=3600)


@pytest.fixture
def pipeline(fake_source, fake_renderer, cache) -> ActivityPipeline:
    hatena = FakeSource(name="hatena", records=[record("bookmark", "2024-01-08T09:00:00Z")])
    return ActivityPipeline(
        {"github": fake_source, "hatena": hatena},
        fake_renderer,
        cache,
        delays_ms=[1500, 1500, 1500, 3000],
    )


@pytest_asyncio.fixture
async def client(pipeline, cache) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_cache] = lambda: cache
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
