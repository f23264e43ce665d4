"""Pydantic v2 models for the rows the pipeline reads and writes."""

from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from zoo_babies.core.enums import FingerprintKind, SourceKind


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


class Row(BaseModel):
    """Base for store rows: accepts ORM objects and ignores unknown columns."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    def to_row(self, exclude_none: bool = False) -> dict[str, Any]:
        """Serialize to a JSON-safe dict suitable for the REST store."""
        return self.model_dump(mode="json", exclude_none=exclude_none)


class Source(Row):
    """A configured feed or site to poll."""

    id: str
    url: str
    kind: SourceKind
    name: str | None = None
    zoo_id: str | None = None
    enabled: bool = True
    last_checked: datetime | None = None


class Zoo(Row):
    """Reference zoo entity."""

    id: str | None = None
    name: str
    website: str | None = None


class FeedItem(BaseModel):
    """Uniform shape produced by every parser."""

    title: str
    url: str
    published_at: datetime | None = None
    thumbnail_url: str | None = None
    source_name: str | None = None


class Fingerprint(Row):
    """Dedup marker for a canonical URL."""

    fp: str
    kind: FingerprintKind


class BabyEvent(Row):
    """One observed mention of a possible birth or naming."""

    id: str | None = None
    url: str
    title: str
    published_at: datetime | None = None
    thumbnail_url: str | None = None
    zoo_id: str | None = None
    species: str | None = None
    source_id: str | None = None
    source_kind: SourceKind | None = None
    signal_birth: bool = False
    signal_name: str | None = None
    signal_age_days: int | None = None
    birthday: date | None = None
    processed_at: datetime | None = None


class Baby(Row):
    """Canonical animal record shown in the catalog."""

    id: str | None = None
    name: str
    species: str | None = None
    birthday: date | None = None
    thumbnail_url: str | None = None
    zoo_id: str | None = None


class BabyLink(Row):
    """Ties a candidate event to the animal it was resolved to."""

    event_id: str
    baby_id: str


class NewsItem(Row):
    """Display-only news entry."""

    url: str
    title: str | None = None
    published_at: datetime | None = None
    thumbnail_url: str | None = None
    source_name: str | None = None
    source_url: str | None = None
    source_id: str | None = None


class CrawlLog(Row):
    """Telemetry row written once per job run."""

    job: str
    ok: bool
    started_at: datetime = Field(default_factory=_utc_now)
    finished_at: datetime = Field(default_factory=_utc_now)
    total: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    error: str | None = None
