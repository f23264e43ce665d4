"""Tests for the scheduled jobs."""

from datetime import UTC, date, datetime

import httpx
import pytest
from sqlalchemy import select

from zoo_babies.config import PipelineConfig
from zoo_babies.core.enums import JobName, SourceKind
from zoo_babies.core.schema import BabyEvent, Source
from zoo_babies.db.models import (
    BabyDB,
    BabyEventDB,
    BabyLinkDB,
    CrawlLogDB,
    FingerprintDB,
    NewsItemDB,
    SourceDB,
    ZooDB,
)
from zoo_babies.db.repositories import SqlStore
from zoo_babies.ingestion.crawler import Crawler, FetchError
from zoo_babies.ingestion.jobs import (
    YOUTUBE_FEED_URL,
    YOUTUBE_SEARCH_URL,
    UnknownJobError,
    WorkerSettings,
    clean_zoo_title,
    feed_request,
    parse_job_name,
    run_feeds_job,
    run_job,
    run_resolve_job,
    run_sites_job,
    run_zoos_job,
    select_detail_links,
    youtube_channel_id,
)

RSS_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>東京ズーネット</title>
    <item>
      <title>ジャイアントパンダの赤ちゃん「さくら」誕生（2025年6月1日）</title>
      <link>https://www.tokyo-zoo.net/topic/topics_detail?kind=news&amp;inst=ueno&amp;link_num=1</link>
      <pubDate>Mon, 02 Jun 2025 10:00:00 +0900</pubDate>
    </item>
  </channel>
</rss>
"""

LISTING_PAGE = """<html><body>
<a href="/zoo/news/1.html">キリンの赤ちゃん誕生</a>
<a href="/zoo/news/2.html">休園日のお知らせ</a>
<a href="https://other.example.com/x">ライオンの赤ちゃん誕生</a>
</body></html>
"""

DETAIL_PAGE = """<html><head>
<meta property="og:title" content="アミメキリンの赤ちゃんが誕生しました">
<meta property="og:image" content="/img/kirin.jpg">
<meta property="article:published_time" content="2025-07-03T09:00:00+09:00">
</head><body></body></html>
"""


def _crawler(handler) -> Crawler:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Crawler(user_agent="TestBot/1.0", max_retries=1, backoff=0, client=client)


def _rows(session_factory, model) -> list:
    with session_factory() as session:
        return list(session.scalars(select(model)).all())


def _feed_handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "www.tokyo-zoo.net":
        return httpx.Response(200, text=RSS_FEED, headers={"content-type": "application/rss+xml"})
    return httpx.Response(500, text="down")


class TestFeedsJob:
    """Tests for the feeds job."""

    @pytest.mark.asyncio
    async def test_ingest_is_idempotent(self, store: SqlStore, ueno: str, session_factory) -> None:
        """Test that two runs over the same feed leave one row per URL."""
        config = PipelineConfig()

        first = await run_feeds_job(store=store, crawler=_crawler(_feed_handler), config=config)
        second = await run_feeds_job(store=store, crawler=_crawler(_feed_handler), config=config)

        assert first.ok and second.ok
        assert first.total == 1
        assert first.inserted == 1
        assert second.inserted == 0

        (event,) = _rows(session_factory, BabyEventDB)
        assert event.species == "ジャイアントパンダ"
        assert event.signal_birth is True
        assert event.signal_name == "さくら"
        assert event.birthday == date(2025, 6, 1)
        assert event.zoo_id == ueno
        assert event.source_kind == "rss"
        assert event.processed_at is None

        (fp,) = _rows(session_factory, FingerprintDB)
        assert fp.kind == "news"
        assert len(_rows(session_factory, NewsItemDB)) == 1

        logs = _rows(session_factory, CrawlLogDB)
        assert [(log.job, log.ok) for log in logs] == [("feeds", True), ("feeds", True)]

        (source,) = _rows(session_factory, SourceDB)
        assert source.last_checked is not None

    @pytest.mark.asyncio
    async def test_ingest_then_resolve(self, store: SqlStore, ueno: str, session_factory) -> None:
        """Test that an ingested announcement becomes a baby with one link."""
        config = PipelineConfig()
        await run_feeds_job(store=store, crawler=_crawler(_feed_handler), config=config)

        result = await run_resolve_job(store=store, config=config)

        assert result.ok
        assert result.total == 1
        assert result.inserted == 1
        (baby,) = _rows(session_factory, BabyDB)
        assert baby.name == "さくら"
        assert baby.zoo_id == ueno
        assert len(_rows(session_factory, BabyLinkDB)) == 1

        again = await run_resolve_job(store=store, config=config)
        assert again.total == 0

    @pytest.mark.asyncio
    async def test_failing_source_is_skipped(self, store: SqlStore, ueno: str, add_rows, session_factory) -> None:
        """Test that one broken source neither stops the run nor escapes rotation."""
        add_rows(SourceDB(id="s2", url="https://broken.example.jp/rss", kind="rss"))

        result = await run_feeds_job(store=store, crawler=_crawler(_feed_handler), config=PipelineConfig())

        assert result.ok
        assert result.total == 1
        assert result.skipped == 1
        assert all(s.last_checked is not None for s in _rows(session_factory, SourceDB))

    @pytest.mark.asyncio
    async def test_write_failure_marks_run_failed(self, session_factory, ueno: str) -> None:
        """Test that a failed batched write is logged with ok=false and sources stay due."""

        class FailingNewsStore(SqlStore):
            async def upsert_news_items(self, items):
                raise RuntimeError("news table unavailable")

        store = FailingNewsStore(session_factory)
        result = await run_feeds_job(store=store, crawler=_crawler(_feed_handler), config=PipelineConfig())

        assert result.ok is False
        (log,) = _rows(session_factory, CrawlLogDB)
        assert log.ok is False
        assert "news table unavailable" in log.error
        (source,) = _rows(session_factory, SourceDB)
        assert source.last_checked is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged_and_raised(self, session_factory) -> None:
        """Test that a failure outside per-source handling still writes a crawl log."""

        class FailingSourcesStore(SqlStore):
            async def list_sources(self, kinds, limit):
                raise RuntimeError("sources unavailable")

        store = FailingSourcesStore(session_factory)
        with pytest.raises(RuntimeError):
            await run_feeds_job(store=store, crawler=_crawler(_feed_handler), config=PipelineConfig())

        (log,) = _rows(session_factory, CrawlLogDB)
        assert log.ok is False
        assert log.job == "feeds"


class TestYouTubeSources:
    """Tests for channel sources in the feeds job."""

    CHANNEL = "https://www.youtube.com/channel/UCzoo"

    SEARCH = {
        "items": [
            {
                "id": {"kind": "youtube#video", "videoId": "vid1"},
                "snippet": {"title": "カピバラの赤ちゃん", "publishedAt": "2025-05-01T03:00:00Z"},
            }
        ]
    }

    ATOM = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom" xmlns:media="http://search.yahoo.com/mrss/">
  <entry>
    <title>コツメカワウソの赤ちゃん</title>
    <link rel="alternate" href="https://www.youtube.com/watch?v=vid2"/>
    <published>2025-05-02T03:00:00+00:00</published>
  </entry>
</feed>
"""

    def test_channel_id(self) -> None:
        """Test channel page and feed URLs, and URLs that name no channel."""
        assert youtube_channel_id("https://www.youtube.com/channel/UCzoo/videos") == "UCzoo"
        assert youtube_channel_id("https://www.youtube.com/feeds/videos.xml?channel_id=UCzoo") == "UCzoo"
        assert youtube_channel_id("https://www.youtube.com/@ueno") is None
        assert youtube_channel_id("https://example.jp/channel/UCzoo") is None

    def test_feed_request(self) -> None:
        """Test that only youtube sources are rewritten."""
        rss = Source(id="s1", url="https://www.tokyo-zoo.net/feed.xml", kind=SourceKind.RSS)
        assert feed_request(rss, "key") == (rss.url, None)

        channel = Source(id="yt1", url=self.CHANNEL, kind=SourceKind.YOUTUBE)
        url, params = feed_request(channel, "key")
        assert url == YOUTUBE_SEARCH_URL
        assert params["channelId"] == "UCzoo"
        assert feed_request(channel) == (YOUTUBE_FEED_URL, {"channel_id": "UCzoo"})

    @pytest.mark.asyncio
    async def test_search_with_api_key(self, store: SqlStore, add_rows, session_factory) -> None:
        """Test that a configured key sends a Data API search for the channel."""
        add_rows(SourceDB(id="yt1", url=self.CHANNEL, kind="youtube", name="上野動物園公式"))
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=self.SEARCH)

        config = PipelineConfig(youtube_api_key="test-key")
        result = await run_feeds_job(store=store, crawler=_crawler(handler), config=config)

        assert result.ok
        assert result.total == 1
        (request,) = seen
        assert request.url.host == "www.googleapis.com"
        assert request.url.path == "/youtube/v3/search"
        assert dict(request.url.params) == {
            "key": "test-key",
            "channelId": "UCzoo",
            "part": "snippet",
            "order": "date",
            "maxResults": "20",
            "type": "video",
        }
        (event,) = _rows(session_factory, BabyEventDB)
        assert event.url == "https://www.youtube.com/watch?v=vid1"
        assert event.source_kind == "youtube"
        (news,) = _rows(session_factory, NewsItemDB)
        assert news.source_url == self.CHANNEL

    @pytest.mark.asyncio
    async def test_atom_feed_without_key(self, store: SqlStore, add_rows, session_factory) -> None:
        """Test that the public channel feed is read when no key is configured."""
        add_rows(SourceDB(id="yt1", url=self.CHANNEL, kind="youtube"))
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=self.ATOM, headers={"content-type": "application/atom+xml"})

        result = await run_feeds_job(store=store, crawler=_crawler(handler), config=PipelineConfig())

        assert result.ok
        (request,) = seen
        assert request.url.path == "/feeds/videos.xml"
        assert request.url.params["channel_id"] == "UCzoo"
        (event,) = _rows(session_factory, BabyEventDB)
        assert event.url == "https://www.youtube.com/watch?v=vid2"
        assert event.species == "コツメカワウソ"


class TestResolveJob:
    """Tests for the resolve job's crawl log."""

    @pytest.mark.asyncio
    async def test_event_errors_reach_crawl_log(self, session_factory, ueno: str) -> None:
        """Test that per-event failures are written even though the run succeeds."""

        class FailingLookupStore(SqlStore):
            async def find_matching_baby(self, zoo_id, species, earliest, latest):
                raise RuntimeError("lookup failed")

        store = FailingLookupStore(session_factory)
        await store.upsert_events(
            [
                BabyEvent(
                    url="https://news.example.jp/1",
                    title="ジャイアントパンダの赤ちゃん（2025年6月1日）",
                    published_at=datetime(2025, 6, 21, tzinfo=UTC),
                    zoo_id=ueno,
                )
            ]
        )

        result = await run_resolve_job(store=store, config=PipelineConfig())

        assert result.ok
        assert result.skipped == 1
        (log,) = _rows(session_factory, CrawlLogDB)
        assert log.ok is True
        assert "lookup failed" in log.error


class TestSitesJob:
    """Tests for the sites job."""

    def test_select_detail_links(self) -> None:
        """Test keyword preference, fallback and limit."""
        links = [
            ("https://a.jp/1", "お知らせ"),
            ("https://a.jp/2", "ゾウの赤ちゃん誕生"),
            ("https://a.jp/3", "イベント"),
            ("https://a.jp/4", "カバが出産"),
        ]
        assert select_detail_links(links, fallback=3, limit=5) == ["https://a.jp/2", "https://a.jp/4"]
        assert select_detail_links(links, fallback=3, limit=1) == ["https://a.jp/2"]

        plain = [(f"https://a.jp/{i}", "お知らせ") for i in range(1, 5)]
        assert select_detail_links(plain, fallback=3, limit=5) == ["https://a.jp/1", "https://a.jp/2", "https://a.jp/3"]

    @pytest.mark.asyncio
    async def test_follows_matching_same_domain_links(self, store: SqlStore, add_rows, session_factory) -> None:
        """Test that only keyword links on the listing's own domain are fetched."""
        add_rows(
            ZooDB(id="z2", name="市立動物園"),
            SourceDB(id="site1", url="https://www.city.example.jp/zoo/news/", kind="site", zoo_id="z2"),
        )
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            if request.url.path == "/zoo/news/":
                return httpx.Response(200, text=LISTING_PAGE, headers={"content-type": "text/html"})
            return httpx.Response(200, text=DETAIL_PAGE, headers={"content-type": "text/html"})

        result = await run_sites_job(store=store, crawler=_crawler(handler), config=PipelineConfig())

        assert result.ok
        assert result.total == 1
        assert requested == ["/zoo/news/", "/zoo/news/1.html"]

        (event,) = _rows(session_factory, BabyEventDB)
        assert event.url == "https://www.city.example.jp/zoo/news/1.html"
        assert event.title == "アミメキリンの赤ちゃんが誕生しました"
        assert event.thumbnail_url == "https://www.city.example.jp/img/kirin.jpg"
        assert event.zoo_id == "z2"
        assert event.source_kind == "site"
        (fp,) = _rows(session_factory, FingerprintDB)
        assert fp.kind == "baby"
        assert _rows(session_factory, NewsItemDB) == []


class TestZoosJob:
    """Tests for the zoos job."""

    def test_clean_zoo_title(self) -> None:
        """Test that parenthetical qualifiers are stripped."""
        assert clean_zoo_title("天王寺動物園 (大阪市)") == "天王寺動物園"
        assert clean_zoo_title("円山動物園（札幌市）") == "円山動物園"
        assert clean_zoo_title("上野動物園") == "上野動物園"

    @pytest.mark.asyncio
    async def test_paginates_and_retries(self, store: SqlStore, session_factory) -> None:
        """Test cmcontinue pagination, a retried 403, and name upserts."""
        calls: list[dict[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            params = dict(request.url.params)
            calls.append(params)
            if len(calls) == 1:
                return httpx.Response(403)
            if "cmcontinue" not in params:
                return httpx.Response(
                    200,
                    json={
                        "continue": {"cmcontinue": "page|2"},
                        "query": {"categorymembers": [{"title": "上野動物園"}, {"title": "天王寺動物園 (大阪市)"}]},
                    },
                )
            return httpx.Response(
                200,
                json={"query": {"categorymembers": [{"title": "円山動物園（札幌市）"}, {"title": "上野動物園"}]}},
            )

        result = await run_zoos_job(store=store, crawler=_crawler(handler), config=PipelineConfig())

        assert result.ok
        assert result.total == 4
        assert result.inserted == 3
        assert len(calls) == 3
        assert calls[0]["cmtitle"] == "Category:日本の動物園"
        assert calls[2]["cmcontinue"] == "page|2"
        assert sorted(z.name for z in _rows(session_factory, ZooDB)) == ["上野動物園", "円山動物園", "天王寺動物園"]

    @pytest.mark.asyncio
    async def test_persistent_rejection_fails_job(self, store: SqlStore, session_factory) -> None:
        """Test that a refused category listing fails the run and is logged."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429)

        with pytest.raises(FetchError):
            await run_zoos_job(store=store, crawler=_crawler(handler), config=PipelineConfig())

        (log,) = _rows(session_factory, CrawlLogDB)
        assert log.job == "zoos"
        assert log.ok is False


class TestDispatch:
    """Tests for job dispatch and worker wiring."""

    def test_parse_job_name(self) -> None:
        """Test case and whitespace tolerance."""
        assert parse_job_name(" Feeds ") == JobName.FEEDS
        with pytest.raises(UnknownJobError):
            parse_job_name("nope")
        with pytest.raises(UnknownJobError):
            parse_job_name(None)

    @pytest.mark.asyncio
    async def test_run_job_unknown(self) -> None:
        """Test that an unknown name fails before any work."""
        with pytest.raises(UnknownJobError):
            await run_job("bogus")

    @pytest.mark.asyncio
    async def test_run_job_resolve_ignores_crawler(self, store: SqlStore) -> None:
        """Test that the resolve job runs with an injected store and no fetching."""
        result = await run_job("resolve", store=store, crawler=object(), config=PipelineConfig())
        assert result.job == "resolve"
        assert result.ok

    def test_worker_schedule(self) -> None:
        """Test that every job is registered and scheduled."""
        names = {f.__name__ for f in WorkerSettings.functions}
        assert names == {"feeds_task", "sites_task", "resolve_task", "zoos_task"}
        assert len(WorkerSettings.cron_jobs) == 4
        assert WorkerSettings.max_jobs == 1
