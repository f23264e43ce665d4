"""SQLAlchemy ORM models mirroring the hosted store's tables.

Used by SqlStore for local runs and tests. Natural keys carry unique
constraints so inserts can use ON CONFLICT DO NOTHING.
"""

from datetime import UTC, date, datetime
from uuid import uuid4

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ZooDB(Base):
    """Reference zoo."""

    __tablename__ = "zoos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<ZooDB(id={self.id}, name='{self.name}')>"


class SourceDB(Base):
    """A feed or site to poll."""

    __tablename__ = "sources"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    url: Mapped[str] = mapped_column(String(1000), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    zoo_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("zoos.id"), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    last_checked: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<SourceDB(id={self.id}, kind={self.kind}, url='{self.url}')>"


class FingerprintDB(Base):
    """Dedup marker for a canonical URL."""

    __tablename__ = "fingerprints"
    __table_args__ = (UniqueConstraint("fp", "kind", name="uq_fingerprints_fp_kind"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    fp: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


class BabyEventDB(Base):
    """Candidate event; url is the natural key."""

    __tablename__ = "baby_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    url: Mapped[str] = mapped_column(String(1000), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    zoo_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("zoos.id"), nullable=True)
    species: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("sources.id"), nullable=True)
    source_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    signal_birth: Mapped[bool] = mapped_column(Boolean, default=False)
    signal_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    signal_age_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    birthday: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<BabyEventDB(id={self.id}, url='{self.url}')>"


class BabyDB(Base):
    """Canonical animal record."""

    __tablename__ = "babies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    species: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    birthday: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    zoo_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("zoos.id"), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)

    def __repr__(self) -> str:
        return f"<BabyDB(id={self.id}, name='{self.name}')>"


class BabyLinkDB(Base):
    """Event to baby link; each event links at most once."""

    __tablename__ = "baby_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("baby_events.id"), nullable=False, unique=True
    )
    baby_id: Mapped[str] = mapped_column(String(36), ForeignKey("babies.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)


class NewsItemDB(Base):
    """Display-only news entry."""

    __tablename__ = "news_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    url: Mapped[str] = mapped_column(String(1000), nullable=False, unique=True)
    title: Mapped[str | None] = mapped_column(String(300), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    source_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    source_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("sources.id"), nullable=True)


class CrawlLogDB(Base):
    """Append-only job telemetry."""

    __tablename__ = "crawl_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    ok: Mapped[bool] = mapped_column(Boolean, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    total: Mapped[int] = mapped_column(Integer, default=0)
    inserted: Mapped[int] = mapped_column(Integer, default=0)
    updated: Mapped[int] = mapped_column(Integer, default=0)
    skipped: Mapped[int] = mapped_column(Integer, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
