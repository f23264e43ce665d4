"""Enums shared across the crawler and resolver."""

from enum import Enum


class SourceKind(str, Enum):
    """Kind of a configured source."""

    RSS = "rss"
    YOUTUBE = "youtube"
    GOOGLENEWS = "googlenews"
    SITE = "site"


FEED_SOURCE_KINDS: tuple[SourceKind, ...] = (
    SourceKind.RSS,
    SourceKind.YOUTUBE,
    SourceKind.GOOGLENEWS,
)


class FingerprintKind(str, Enum):
    """Content kind a fingerprint was recorded for."""

    NEWS = "news"
    BABY = "baby"


class JobName(str, Enum):
    """Jobs that can be scheduled or triggered manually."""

    FEEDS = "feeds"
    SITES = "sites"
    RESOLVE = "resolve"
    ZOOS = "zoos"
