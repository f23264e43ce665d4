"""
Background Jobs Module
======================

The four scheduled jobs (feeds, sites, resolve, zoos), a dispatcher for
manual runs, and the arq worker settings that put them on cron.
Every run writes one crawl_logs row.
"""

from __future__ import annotations

import json
import logging
import os
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from urllib.parse import parse_qs, urlparse

from arq import create_pool, cron
from arq.connections import RedisSettings

from zoo_babies.config import PipelineConfig, get_default_config
from zoo_babies.core.enums import FEED_SOURCE_KINDS, FingerprintKind, JobName, SourceKind
from zoo_babies.core.schema import BabyEvent, CrawlLog, FeedItem, Fingerprint, NewsItem, Source, Zoo
from zoo_babies.db import get_store
from zoo_babies.db.base import Store
from zoo_babies.ingestion.crawler import Crawler
from zoo_babies.ingestion.normalizer import chunk, domain_of, fingerprint
from zoo_babies.ingestion.parsers import extract_links, parse_open_graph, parse_source_payload
from zoo_babies.ingestion.resolver import EntityResolver
from zoo_babies.ingestion.signals import BIRTH_KEYWORDS, extract_signals

logger = logging.getLogger(__name__)

WIKIPEDIA_API_URL = "https://ja.wikipedia.org/w/api.php"
WIKIPEDIA_ZOO_CATEGORY = "Category:日本の動物園"
ZOO_TITLE_PAREN_RE = re.compile(r"\s*[(（][^)）]*[)）]\s*")

YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
YOUTUBE_FEED_URL = "https://www.youtube.com/feeds/videos.xml"
YOUTUBE_MAX_RESULTS = 20


class UnknownJobError(ValueError):
    """Raised when a job name does not match any known job."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown job '{name}'")
        self.name = name


@dataclass
class JobResult:
    """Counters for one job run; becomes the crawl_logs row."""

    job: str
    ok: bool = True
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    total: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def fail(self, error: Exception | str) -> None:
        """Mark the run failed."""
        self.ok = False
        self.errors.append(str(error))

    def to_crawl_log(self) -> CrawlLog:
        """Build the telemetry row for this run."""
        return CrawlLog(
            job=self.job,
            ok=self.ok,
            started_at=self.started_at,
            finished_at=self.finished_at or datetime.now(UTC),
            total=self.total,
            inserted=self.inserted,
            updated=self.updated,
            skipped=self.skipped,
            error="; ".join(self.errors) if self.errors else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job": self.job,
            "ok": self.ok,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total": self.total,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class IngestBuffer:
    """Rows collected during one ingestion run, deduplicated by URL (last wins)."""

    fingerprint_kind: FingerprintKind
    events: dict[str, BabyEvent] = field(default_factory=dict)
    news_items: dict[str, NewsItem] = field(default_factory=dict)
    fingerprints: dict[str, Fingerprint] = field(default_factory=dict)
    source_ids: list[str] = field(default_factory=list)

    def add(self, event: BabyEvent, news_item: NewsItem | None = None) -> None:
        """Buffer an event, plus an optional news row sharing its URL."""
        self.events[event.url] = event
        fp = fingerprint(event.url)
        self.fingerprints[fp] = Fingerprint(fp=fp, kind=self.fingerprint_kind)
        if news_item is not None:
            self.news_items[news_item.url] = news_item


def build_event(item: FeedItem, source: Source) -> BabyEvent:
    """
    Turn a parsed item into a candidate event.

    Args:
        item: Parsed feed or page item (URL already canonical)
        source: Source the item came from

    Returns:
        BabyEvent with signals and an advisory birthday
    """
    signals = extract_signals(item)
    return BabyEvent(
        url=item.url,
        title=item.title,
        published_at=item.published_at,
        thumbnail_url=item.thumbnail_url,
        zoo_id=source.zoo_id,
        species=signals.species.canonical if signals.species else None,
        source_id=source.id,
        source_kind=source.kind,
        signal_birth=signals.is_birth,
        signal_name=signals.name,
        signal_age_days=signals.age_days,
        birthday=signals.birthday,
    )


def build_news_item(item: FeedItem, source: Source) -> NewsItem:
    """Display row for a feed item."""
    return NewsItem(
        url=item.url,
        title=item.title or None,
        published_at=item.published_at,
        thumbnail_url=item.thumbnail_url,
        source_name=item.source_name or source.name or domain_of(source.url),
        source_url=source.url,
        source_id=source.id,
    )


async def log_job(store: Store, result: JobResult) -> None:
    """Write the crawl_logs row; a failure here is logged and swallowed."""
    result.finished_at = result.finished_at or datetime.now(UTC)
    logger.info(
        f"{result.job.upper()} JOB STATS ok={result.ok} total={result.total} "
        f"inserted={result.inserted} updated={result.updated} skipped={result.skipped}"
    )
    try:
        await store.insert_crawl_log(result.to_crawl_log())
    except Exception as e:
        logger.warning(f"Failed to write crawl log for job '{result.job}': {e}")


async def flush_buffer(store: Store, buffer: IngestBuffer, config: PipelineConfig, result: JobResult) -> None:
    """
    Write buffered rows in chunks, then stamp last_checked on every attempted source.

    The first failing write stops the remaining ones and marks the run failed.
    """
    limits = config.limits
    try:
        for part in chunk(list(buffer.fingerprints.values()), limits.fingerprint_chunk_size):
            await store.upsert_fingerprints(part)
        for part in chunk(list(buffer.news_items.values()), limits.row_chunk_size):
            await store.upsert_news_items(part)
        for part in chunk(list(buffer.events.values()), limits.row_chunk_size):
            result.inserted += await store.upsert_events(part)
        if buffer.source_ids:
            await store.touch_sources(buffer.source_ids, datetime.now(UTC))
    except Exception as e:
        logger.error(f"Batched write for job '{result.job}' failed: {e}")
        result.fail(e)


async def _run_logged(
    job: JobName,
    body: Callable[[JobResult], Awaitable[None]],
    store: Store,
) -> JobResult:
    """Run a job body, always writing its crawl log; unexpected errors are re-raised."""
    result = JobResult(job=job.value)
    try:
        await body(result)
    except Exception as e:
        logger.exception(f"Job '{job.value}' failed")
        result.fail(e)
        await log_job(store, result)
        raise
    await log_job(store, result)
    return result


def youtube_channel_id(url: str) -> str | None:
    """Channel id from a /channel/<id> page URL or a ?channel_id= feed URL."""
    parts = urlparse(url)
    host = (parts.hostname or "").lower()
    if not (host == "youtube.com" or host.endswith(".youtube.com")):
        return None
    segments = [s for s in parts.path.split("/") if s]
    if len(segments) >= 2 and segments[0] == "channel":
        return segments[1]
    ids = parse_qs(parts.query).get("channel_id")
    return ids[0] if ids else None


def feed_request(source: Source, youtube_api_key: str | None = None) -> tuple[str, dict[str, Any] | None]:
    """
    Decide what to fetch for a feed source.

    Youtube sources that name a channel are read through the Data API
    search endpoint when a key is configured, otherwise through the
    channel's public Atom feed. Everything else is fetched as stored.

    Returns:
        (url, query params)
    """
    if source.kind != SourceKind.YOUTUBE:
        return source.url, None
    channel_id = youtube_channel_id(source.url)
    if not channel_id:
        return source.url, None
    if youtube_api_key:
        return YOUTUBE_SEARCH_URL, {
            "key": youtube_api_key,
            "channelId": channel_id,
            "part": "snippet",
            "order": "date",
            "maxResults": str(YOUTUBE_MAX_RESULTS),
            "type": "video",
        }
    return YOUTUBE_FEED_URL, {"channel_id": channel_id}


async def ingest_feed_source(
    crawler: Crawler,
    source: Source,
    buffer: IngestBuffer,
    youtube_api_key: str | None = None,
) -> int:
    """
    Fetch and parse one feed source into the buffer.

    Returns:
        Number of items parsed
    """
    url, params = feed_request(source, youtube_api_key)
    fetched = await crawler.fetch_or_raise(url, params=params)
    items = parse_source_payload(source.kind, fetched.text, fetched.mime_type)
    for item in items:
        buffer.add(build_event(item, source), build_news_item(item, source))
    return len(items)


def select_detail_links(links: list[tuple[str, str]], fallback: int, limit: int) -> list[str]:
    """
    Pick the detail pages to follow from a listing page.

    Links whose anchor text looks like a birth announcement win; when
    none does, the first ``fallback`` links are used instead.
    """
    matching = [url for url, text in links if BIRTH_KEYWORDS.search(text)]
    selected = matching or [url for url, _ in links[:fallback]]
    return selected[:limit]


async def ingest_site_source(
    crawler: Crawler,
    source: Source,
    buffer: IngestBuffer,
    config: PipelineConfig,
) -> int:
    """
    Crawl one site source: listing page, then selected detail pages.

    Detail page failures are logged and skipped; a listing failure raises.

    Returns:
        Number of detail pages turned into events
    """
    listing = await crawler.fetch_or_raise(source.url)
    links = extract_links(listing.text, source.url)
    selected = select_detail_links(
        links,
        fallback=config.limits.site_fallback_links,
        limit=config.limits.max_detail_pages_per_source,
    )
    logger.debug(f"{source.url}: {len(links)} same-domain links, following {len(selected)}")

    count = 0
    for url in selected:
        page = await crawler.fetch(url)
        if not page.success:
            logger.warning(f"Detail page {url} failed: {page.error}")
            continue
        item = parse_open_graph(page.text, url)
        if item is None:
            continue
        buffer.add(build_event(item, source))
        count += 1
    return count


async def _ingest_sources(
    job: JobName,
    kinds: tuple[SourceKind, ...],
    limit: int,
    ingest_one: Callable[[Source, IngestBuffer], Awaitable[int]],
    fingerprint_kind: FingerprintKind,
    store: Store,
    config: PipelineConfig,
) -> JobResult:
    async def body(result: JobResult) -> None:
        sources = await store.list_sources(kinds, limit)
        logger.info(f"Job '{job.value}': {len(sources)} sources due")
        buffer = IngestBuffer(fingerprint_kind=fingerprint_kind)

        for source in sources:
            buffer.source_ids.append(source.id)
            try:
                result.total += await ingest_one(source, buffer)
            except Exception as e:
                logger.error(f"Source {source.url} failed: {e}")
                result.skipped += 1

        await flush_buffer(store, buffer, config, result)

    return await _run_logged(job, body, store)


async def run_feeds_job(
    store: Store | None = None,
    crawler: Crawler | None = None,
    config: PipelineConfig | None = None,
) -> JobResult:
    """
    Ingest the least recently checked rss/youtube/googlenews sources.

    Every item becomes a candidate event and a news row.
    """
    config = config or get_default_config()
    store = store or get_store(config)
    crawler = crawler or Crawler.from_config(config.global_config)

    async def ingest_one(source: Source, buffer: IngestBuffer) -> int:
        return await ingest_feed_source(crawler, source, buffer, config.youtube_api_key)

    return await _ingest_sources(
        JobName.FEEDS,
        FEED_SOURCE_KINDS,
        config.limits.max_feed_sources_per_run,
        ingest_one,
        FingerprintKind.NEWS,
        store,
        config,
    )


async def run_sites_job(
    store: Store | None = None,
    crawler: Crawler | None = None,
    config: PipelineConfig | None = None,
) -> JobResult:
    """Ingest detail pages linked from the least recently checked site sources."""
    config = config or get_default_config()
    store = store or get_store(config)
    crawler = crawler or Crawler.from_config(config.global_config)

    async def ingest_one(source: Source, buffer: IngestBuffer) -> int:
        return await ingest_site_source(crawler, source, buffer, config)

    return await _ingest_sources(
        JobName.SITES,
        (SourceKind.SITE,),
        config.limits.max_site_sources_per_run,
        ingest_one,
        FingerprintKind.BABY,
        store,
        config,
    )


async def run_resolve_job(
    store: Store | None = None,
    config: PipelineConfig | None = None,
) -> JobResult:
    """Resolve one batch of unprocessed events."""
    config = config or get_default_config()
    store = store or get_store(config)
    resolver = EntityResolver(store, config.resolution)

    async def body(result: JobResult) -> None:
        stats = await resolver.resolve_batch()
        result.total = stats.events
        result.inserted = stats.created
        result.updated = stats.matched
        result.skipped = stats.unlinked + stats.failed
        result.errors.extend(stats.errors)

    return await _run_logged(JobName.RESOLVE, body, store)


def clean_zoo_title(title: str) -> str:
    """Strip parenthetical qualifiers from a Wikipedia page title."""
    return ZOO_TITLE_PAREN_RE.sub("", title).strip()


async def fetch_zoo_titles(crawler: Crawler, max_pages: int) -> list[str]:
    """
    List the Wikipedia category of Japanese zoos.

    Follows ``cmcontinue`` for at most ``max_pages`` pages and retries once
    on 403/429.
    """
    params: dict[str, Any] = {
        "action": "query",
        "list": "categorymembers",
        "cmtitle": WIKIPEDIA_ZOO_CATEGORY,
        "cmlimit": "500",
        "format": "json",
    }
    titles: list[str] = []
    for _ in range(max(1, max_pages)):
        fetched = await crawler.fetch_or_raise(
            WIKIPEDIA_API_URL,
            params=params,
            retry_statuses={403, 429},
            max_retries=2,
        )
        payload = json.loads(fetched.content)
        members = (payload.get("query") or {}).get("categorymembers") or []
        titles.extend(m.get("title", "") for m in members)

        token = (payload.get("continue") or {}).get("cmcontinue")
        if not token:
            break
        params = {**params, "cmcontinue": token}
    return titles


async def run_zoos_job(
    store: Store | None = None,
    crawler: Crawler | None = None,
    config: PipelineConfig | None = None,
) -> JobResult:
    """Refresh the zoo list from Wikipedia and upsert on name."""
    config = config or get_default_config()
    store = store or get_store(config)
    crawler = crawler or Crawler.from_config(config.global_config)

    async def body(result: JobResult) -> None:
        titles = await fetch_zoo_titles(crawler, config.limits.max_wikipedia_pages)
        result.total = len(titles)
        names = {clean_zoo_title(t) for t in titles}
        zoos = [Zoo(name=name) for name in sorted(n for n in names if n)]
        result.skipped = result.total - len(zoos)
        if zoos:
            result.inserted = await store.upsert_zoos(zoos)

    return await _run_logged(JobName.ZOOS, body, store)


JOB_RUNNERS: dict[JobName, Callable[..., Awaitable[JobResult]]] = {
    JobName.FEEDS: run_feeds_job,
    JobName.SITES: run_sites_job,
    JobName.RESOLVE: run_resolve_job,
    JobName.ZOOS: run_zoos_job,
}


def parse_job_name(name: str | None) -> JobName:
    """Map a user-supplied job name to a JobName, raising UnknownJobError."""
    try:
        return JobName((name or "").strip().lower())
    except ValueError:
        raise UnknownJobError(name or "") from None


async def run_job(name: str | JobName, **kwargs: Any) -> JobResult:
    """
    Run a job by name.

    Args:
        name: One of feeds, sites, resolve, zoos
        **kwargs: Injected store/crawler/config

    Returns:
        The job's result
    """
    job = name if isinstance(name, JobName) else parse_job_name(name)
    if job == JobName.RESOLVE:
        kwargs.pop("crawler", None)
    store = kwargs.get("store")
    if store is None:
        kwargs["store"] = store = get_store(kwargs.get("config"))
        owns_store = True
    else:
        owns_store = False
    try:
        return await JOB_RUNNERS[job](**kwargs)
    finally:
        if owns_store:
            await store.aclose()


# arq integration


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


async def feeds_task(ctx: dict[str, Any]) -> dict[str, Any]:
    """arq task wrapper for the feeds job."""
    return (await run_job(JobName.FEEDS)).to_dict()


async def sites_task(ctx: dict[str, Any]) -> dict[str, Any]:
    """arq task wrapper for the sites job."""
    return (await run_job(JobName.SITES)).to_dict()


async def resolve_task(ctx: dict[str, Any]) -> dict[str, Any]:
    """arq task wrapper for the resolve job."""
    return (await run_job(JobName.RESOLVE)).to_dict()


async def zoos_task(ctx: dict[str, Any]) -> dict[str, Any]:
    """arq task wrapper for the zoos job."""
    return (await run_job(JobName.ZOOS)).to_dict()


class WorkerSettings:
    """
    arq worker settings.

    Run with: arq zoo_babies.ingestion.jobs.WorkerSettings
    """

    functions = [feeds_task, sites_task, resolve_task, zoos_task]
    cron_jobs = [
        cron(feeds_task, minute=0),
        cron(sites_task, minute=20),
        cron(resolve_task, minute=40),
        cron(zoos_task, hour=18, minute=15),
    ]
    redis_settings = get_redis_settings()
    max_jobs = 1
    job_timeout = 600
    timezone = UTC


TASK_NAMES: dict[JobName, str] = {
    JobName.FEEDS: "feeds_task",
    JobName.SITES: "sites_task",
    JobName.RESOLVE: "resolve_task",
    JobName.ZOOS: "zoos_task",
}


async def enqueue_job(name: str | JobName) -> str | None:
    """
    Enqueue a job for the arq worker instead of running it inline.

    Args:
        name: One of feeds, sites, resolve, zoos

    Returns:
        arq job ID, or None when an identical job is already queued
    """
    job = name if isinstance(name, JobName) else parse_job_name(name)
    redis = await create_pool(get_redis_settings())
    try:
        queued = await redis.enqueue_job(TASK_NAMES[job])
    finally:
        await redis.close()
    return queued.job_id if queued else None
