"""
Source adapters — fetch a user's raw activity from a remote service.

Every adapter exposes ``fetch_activity(identity) -> ActivitySet`` and raises
NotFoundError when the identity is unknown upstream, UpstreamError for any
other failure. Errors are surfaced as-is; nothing here retries.
"""
import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import feedparser
import httpx
from pydantic import ValidationError

from kira.config import settings
from kira.errors import InvalidInputError, NotFoundError, UpstreamError
from kira.schemas import ActivityRecord, ActivitySet
from kira.services.activity_log import log_activity

logger = logging.getLogger(__name__)

UTC = timezone.utc


class ActivitySource(Protocol):
    name: str

    async def fetch_activity(self, identity: str) -> ActivitySet: ...

    async def close(self) -> None: ...


def _newest_first(identity: str, records: list[ActivityRecord]) -> ActivitySet:
    records.sort(key=lambda r: r.timestamp, reverse=True)
    return ActivitySet(identity=identity, records=tuple(records), fetched_at=datetime.now(UTC))


class GitHubSource:
    name = "github"

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        token = settings.GITHUB_TOKEN if token is None else token
        headers = {"Accept": "application/vnd.github.v3+json"}
        if token:
            headers["Authorization"] = f"token {token}"
        else:
            logger.warning("No GitHub token configured — rate limits will be restrictive")

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.GITHUB_API_URL,
            headers=headers,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def _get(self, identity: str, path: str, params: dict[str, Any]) -> Any:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"GitHub request failed: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f'User "{identity}" not found on GitHub')
        if response.status_code >= 400:
            raise UpstreamError(
                f"GitHub answered {response.status_code} for {path}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(f"GitHub returned invalid JSON for {path}") from exc

    async def get_user_events(self, identity: str, pages: int | None = None) -> list[ActivityRecord]:
        pages = min(pages or settings.GITHUB_EVENT_PAGES, 10)
        records: list[ActivityRecord] = []

        for page in range(1, pages + 1):
            data = await self._get(
                identity, f"/users/{identity}/events/public", {"per_page": 100, "page": page}
            )
            if not isinstance(data, list):
                raise UpstreamError("GitHub events response is not a list")
            if not data:
                break
            for event in data:
                try:
                    records.append(
                        ActivityRecord(
                            kind=event["type"],
                            timestamp=event["created_at"],
                            subject=(event.get("repo") or {}).get("name") or "unknown",
                            detail=event["type"],
                        )
                    )
                except (KeyError, TypeError, ValidationError) as exc:
                    raise UpstreamError(f"Unexpected GitHub event shape: {exc}") from exc

        logger.info("Fetched %d events for %s", len(records), identity)
        return records

    async def _repo_commits(self, identity: str, repo: str, since: str) -> list[ActivityRecord]:
        data = await self._get(
            identity,
            f"/repos/{identity}/{repo}/commits",
            {"author": identity, "per_page": 100, "since": since},
        )
        records = []
        for item in data if isinstance(data, list) else []:
            commit = item.get("commit") or {}
            message = (commit.get("message") or "").strip()
            records.append(
                ActivityRecord(
                    kind="commit",
                    timestamp=commit["author"]["date"],
                    subject=repo,
                    detail=message.splitlines()[0] if message else "Activity",
                )
            )
        return records

    async def get_user_commits(self, identity: str) -> list[ActivityRecord]:
        repos = await self._get(
            identity, f"/users/{identity}/repos", {"per_page": 100, "sort": "updated"}
        )
        if not isinstance(repos, list):
            raise UpstreamError("GitHub repos response is not a list")

        since = (datetime.now(UTC) - timedelta(days=settings.GITHUB_COMMIT_DAYS)).isoformat()
        try:
            names = [r["name"] for r in repos[: settings.GITHUB_REPO_LIMIT] if r.get("name")]
        except (AttributeError, KeyError, TypeError) as exc:
            raise UpstreamError(f"Unexpected GitHub repo shape: {exc}") from exc
        results = await asyncio.gather(
            *[self._repo_commits(identity, name, since) for name in names],
            return_exceptions=True,
        )

        records: list[ActivityRecord] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                # empty repos answer 409, forks without access 404 — skip them
                logger.debug("Skipping commits for %s/%s: %s", identity, name, result)
                continue
            records.extend(result)

        logger.info("Fetched %d commits for %s", len(records), identity)
        return records

    async def fetch_activity(self, identity: str) -> ActivitySet:
        events, commits = await asyncio.gather(
            self.get_user_events(identity),
            self.get_user_commits(identity),
            return_exceptions=True,
        )
        for result in (events, commits):
            if isinstance(result, BaseException):
                raise result
        log_activity("info", "fetch", f"GitHub {identity}: {len(events) + len(commits)} records")
        return _newest_first(identity, events + commits)

    async def close(self) -> None:
        await self._client.aclose()


class HatenaSource:
    name = "hatena"

    def __init__(
        self,
        base_url: str | None = None,
        limit: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._limit = limit or settings.HATENA_BOOKMARK_LIMIT
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.HATENA_BASE_URL,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    @staticmethod
    def _entry_timestamp(entry: Mapping[str, Any]) -> datetime:
        # dc:date lands in updated_parsed, pubDate in published_parsed
        parsed = entry.get("updated_parsed") or entry.get("published_parsed")
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=UTC)
            except (TypeError, ValueError):
                pass
        return datetime.now(UTC)

    async def get_bookmarks(self, identity: str) -> list[ActivityRecord]:
        try:
            response = await self._client.get(f"/{identity}/rss")
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Failed to fetch Hatena bookmarks: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(
                f'Hatena user "{identity}" not found or has no public bookmarks'
            )
        if response.status_code >= 400:
            raise UpstreamError(f"Hatena answered {response.status_code}")

        feed = feedparser.parse(response.content)
        if feed.bozo and not feed.entries:
            raise UpstreamError(f"Hatena feed could not be parsed: {feed.get('bozo_exception')}")

        records = [
            ActivityRecord(
                kind="bookmark",
                timestamp=self._entry_timestamp(entry),
                subject=entry.get("link") or "activity",
                detail=entry.get("title") or "No title",
            )
            for entry in feed.entries[: self._limit]
        ]
        logger.info("Fetched %d bookmarks for %s", len(records), identity)
        return records

    async def fetch_activity(self, identity: str) -> ActivitySet:
        records = await self.get_bookmarks(identity)
        log_activity("info", "fetch", f"Hatena {identity}: {len(records)} bookmarks")
        return _newest_first(identity, records)

    async def close(self) -> None:
        await self._client.aclose()


def build_sources() -> dict[str, ActivitySource]:
    return {"github": GitHubSource(), "hatena": HatenaSource()}


def resolve_source(sources: Mapping[str, ActivitySource], tag: str) -> ActivitySource:
    try:
        return sources[tag]
    except KeyError:
        raise InvalidInputError(f"Unknown source: {tag}") from None
