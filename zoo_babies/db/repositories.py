"""
SQL Store
=========

Store implementation on SQLAlchemy. Natural-key upserts use the
dialect's INSERT ... ON CONFLICT DO NOTHING (SQLite or PostgreSQL).
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker

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
from zoo_babies.db.base import Store
from zoo_babies.db.models import (
    BabyDB,
    BabyEventDB,
    BabyLinkDB,
    Base,
    CrawlLogDB,
    FingerprintDB,
    NewsItemDB,
    SourceDB,
    ZooDB,
)


def _to_columns(model: BaseModel, drop: Sequence[str] = ()) -> dict[str, Any]:
    """Dump a pydantic row to column values, unwrapping enums."""
    row = model.model_dump()
    for key in drop:
        row.pop(key, None)
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in row.items()}


class SqlStore(Store):
    """Store backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def _insert_ignore(
        self,
        session: Session,
        model: type[Base],
        rows: list[dict[str, Any]],
        conflict_columns: list[str],
    ) -> int:
        if session.get_bind().dialect.name == "postgresql":
            insert_fn = pg_insert
        else:
            insert_fn = sqlite_insert
        inserted = 0
        for row in rows:
            stmt = insert_fn(model).values(**row).on_conflict_do_nothing(index_elements=conflict_columns)
            inserted += session.execute(stmt).rowcount or 0
        return inserted

    def _upsert(self, model: type[Base], rows: list[dict[str, Any]], conflict_columns: list[str]) -> int:
        if not rows:
            return 0
        with self._session_factory() as session:
            inserted = self._insert_ignore(session, model, rows, conflict_columns)
            session.commit()
        return inserted

    # Sources

    async def list_sources(self, kinds: Sequence[SourceKind], limit: int) -> list[Source]:
        kind_values = [SourceKind(k).value for k in kinds]
        with self._session_factory() as session:
            stmt = (
                select(SourceDB)
                .where(SourceDB.enabled.is_(True), SourceDB.kind.in_(kind_values))
                .order_by(SourceDB.last_checked.asc().nulls_first(), SourceDB.id)
                .limit(limit)
            )
            return [Source.model_validate(s) for s in session.scalars(stmt)]

    async def list_zoo_sources(self) -> list[Source]:
        with self._session_factory() as session:
            stmt = select(SourceDB).where(
                SourceDB.kind == SourceKind.SITE.value, SourceDB.zoo_id.is_not(None)
            )
            return [Source.model_validate(s) for s in session.scalars(stmt)]

    async def touch_sources(self, source_ids: Sequence[str], checked_at: datetime) -> None:
        if not source_ids:
            return
        with self._session_factory() as session:
            session.execute(
                update(SourceDB).where(SourceDB.id.in_(list(source_ids))).values(last_checked=checked_at)
            )
            session.commit()

    # Zoos

    async def list_zoos(self) -> list[Zoo]:
        with self._session_factory() as session:
            return [Zoo.model_validate(z) for z in session.scalars(select(ZooDB))]

    async def upsert_zoos(self, zoos: Sequence[Zoo]) -> int:
        rows = [_to_columns(z, drop=("id",)) for z in zoos]
        return self._upsert(ZooDB, rows, ["name"])

    # Ingestion

    async def upsert_fingerprints(self, fingerprints: Sequence[Fingerprint]) -> int:
        return self._upsert(FingerprintDB, [_to_columns(f) for f in fingerprints], ["fp", "kind"])

    async def upsert_events(self, events: Sequence[BabyEvent]) -> int:
        rows = [_to_columns(e, drop=("id", "processed_at")) for e in events]
        return self._upsert(BabyEventDB, rows, ["url"])

    async def upsert_news_items(self, items: Sequence[NewsItem]) -> int:
        return self._upsert(NewsItemDB, [_to_columns(i) for i in items], ["url"])

    # Resolution

    async def list_unprocessed_events(self, limit: int) -> list[BabyEvent]:
        with self._session_factory() as session:
            stmt = (
                select(BabyEventDB)
                .where(BabyEventDB.processed_at.is_(None))
                .order_by(BabyEventDB.published_at.desc().nulls_last(), BabyEventDB.id)
                .limit(limit)
            )
            return [BabyEvent.model_validate(e) for e in session.scalars(stmt)]

    async def mark_events_processed(self, event_ids: Sequence[str], processed_at: datetime) -> None:
        if not event_ids:
            return
        with self._session_factory() as session:
            session.execute(
                update(BabyEventDB)
                .where(BabyEventDB.id.in_(list(event_ids)), BabyEventDB.processed_at.is_(None))
                .values(processed_at=processed_at)
            )
            session.commit()

    async def find_matching_baby(
        self,
        zoo_id: str,
        species: str,
        earliest: date,
        latest: date,
    ) -> Baby | None:
        with self._session_factory() as session:
            stmt = (
                select(BabyDB)
                .where(
                    BabyDB.zoo_id == zoo_id,
                    BabyDB.species == species,
                    BabyDB.birthday >= earliest,
                    BabyDB.birthday <= latest,
                )
                .order_by(BabyDB.birthday.asc())
                .limit(1)
            )
            found = session.scalars(stmt).first()
            return Baby.model_validate(found) if found else None

    async def insert_baby(self, baby: Baby) -> Baby:
        with self._session_factory() as session:
            row = BabyDB(**_to_columns(baby, drop=("id",)))
            session.add(row)
            session.commit()
            session.refresh(row)
            return Baby.model_validate(row)

    async def backfill_baby_thumbnail(self, baby_id: str, thumbnail_url: str) -> None:
        with self._session_factory() as session:
            session.execute(
                update(BabyDB)
                .where(BabyDB.id == baby_id, BabyDB.thumbnail_url.is_(None))
                .values(thumbnail_url=thumbnail_url)
            )
            session.commit()

    async def insert_links(self, links: Sequence[BabyLink]) -> int:
        return self._upsert(BabyLinkDB, [_to_columns(link) for link in links], ["event_id"])

    # Telemetry

    async def insert_crawl_log(self, log: CrawlLog) -> None:
        with self._session_factory() as session:
            session.add(CrawlLogDB(**_to_columns(log)))
            session.commit()
