"""
Store Contract
==============

The operations the pipeline needs from the persisted store. Every
write is either an insert-or-ignore keyed on a natural key or a patch
guarded by a filter, so repeating a call never duplicates rows.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import date, datetime

from zoo_babies.core.enums import SourceKind
from zoo_babies.core.schema import (
    Baby,
    BabyEvent,
    BabyLink,
    CrawlLog,
    Fingerprint,
    NewsItem,
    Source,
    Zoo,
)


class StoreError(Exception):
    """A store call failed."""

    def __init__(self, method: str, path: str, status_code: int = 0, body: str = "") -> None:
        super().__init__(f"store {method} {path} -> {status_code}: {body}")
        self.method = method
        self.path = path
        self.status_code = status_code
        self.body = body


class Store(ABC):
    """Abstract persisted store."""

    # Sources

    @abstractmethod
    async def list_sources(self, kinds: Sequence[SourceKind], limit: int) -> list[Source]:
        """Enabled sources of the given kinds, least recently checked first."""

    @abstractmethod
    async def list_zoo_sources(self) -> list[Source]:
        """Site sources that are tied to a zoo."""

    @abstractmethod
    async def touch_sources(self, source_ids: Sequence[str], checked_at: datetime) -> None:
        """Set last_checked on the given sources in one call."""

    # Zoos

    @abstractmethod
    async def list_zoos(self) -> list[Zoo]:
        """All zoos."""

    @abstractmethod
    async def upsert_zoos(self, zoos: Sequence[Zoo]) -> int:
        """Insert zoos by name, ignoring existing names. Returns rows inserted."""

    # Ingestion

    @abstractmethod
    async def upsert_fingerprints(self, fingerprints: Sequence[Fingerprint]) -> int:
        """Insert fingerprints, ignoring known (fp, kind) pairs. Returns rows inserted."""

    @abstractmethod
    async def upsert_events(self, events: Sequence[BabyEvent]) -> int:
        """Insert candidate events by URL, ignoring known URLs. Returns rows inserted."""

    @abstractmethod
    async def upsert_news_items(self, items: Sequence[NewsItem]) -> int:
        """Insert news items by URL, ignoring known URLs. Returns rows inserted."""

    # Resolution

    @abstractmethod
    async def list_unprocessed_events(self, limit: int) -> list[BabyEvent]:
        """Events with no processed_at, newest first."""

    @abstractmethod
    async def mark_events_processed(self, event_ids: Sequence[str], processed_at: datetime) -> None:
        """Stamp processed_at on events that do not have one yet."""

    @abstractmethod
    async def find_matching_baby(
        self,
        zoo_id: str,
        species: str,
        earliest: date,
        latest: date,
    ) -> Baby | None:
        """One baby of this zoo and species born within [earliest, latest]."""

    @abstractmethod
    async def insert_baby(self, baby: Baby) -> Baby:
        """Insert a baby and return it with its id."""

    @abstractmethod
    async def backfill_baby_thumbnail(self, baby_id: str, thumbnail_url: str) -> None:
        """Set the thumbnail of a baby that has none."""

    @abstractmethod
    async def insert_links(self, links: Sequence[BabyLink]) -> int:
        """Insert event links, ignoring events already linked. Returns rows inserted."""

    # Telemetry

    @abstractmethod
    async def insert_crawl_log(self, log: CrawlLog) -> None:
        """Append a crawl log row."""

    async def aclose(self) -> None:
        """Release connections."""
