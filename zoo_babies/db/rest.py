"""
REST Store
==========

Store implementation for the hosted PostgREST API (Supabase). Filters
use PostgREST query syntax; upserts rely on ``on_conflict`` with
``resolution=ignore-duplicates``.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

import httpx

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
from zoo_babies.db.base import Store, StoreError

logger = logging.getLogger(__name__)

Params = list[tuple[str, str]]

UPSERT_PREFER = "resolution=ignore-duplicates,return=representation"


def _in_list(values: Sequence[str]) -> str:
    return f"in.({','.join(values)})"


class RestStore(Store):
    """PostgREST client over httpx."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            base_url: Project URL, e.g. https://xxxx.supabase.co
            service_key: Service role key, sent as apikey and bearer token
            timeout: Request timeout in seconds
            client: Optional pre-built client (tests inject a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
        }
        if client is None:
            client = httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=timeout)
        else:
            client.headers.update(headers)
        self._client = client

    async def _request(
        self,
        method: str,
        table: str,
        params: Params | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        path = f"/rest/v1/{table}"
        headers = {"Content-Type": "application/json"}
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._client.request(
                method, f"{self.base_url}{path}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            raise StoreError(method, path, 0, str(e)) from e

        if not response.is_success:
            raise StoreError(method, path, response.status_code, response.text)

        if not response.content:
            return None
        return response.json()

    async def _upsert(self, table: str, on_conflict: str, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        inserted = await self._request(
            "POST", table, params=[("on_conflict", on_conflict)], json=rows, prefer=UPSERT_PREFER
        )
        return len(inserted or [])

    # Sources

    async def list_sources(self, kinds: Sequence[SourceKind], limit: int) -> list[Source]:
        params: Params = [
            ("select", "*"),
            ("enabled", "eq.true"),
            ("kind", _in_list([SourceKind(k).value for k in kinds])),
            ("order", "last_checked.asc.nullsfirst"),
            ("limit", str(limit)),
        ]
        rows = await self._request("GET", "sources", params=params)
        return [Source.model_validate(r) for r in rows or []]

    async def list_zoo_sources(self) -> list[Source]:
        params: Params = [
            ("select", "*"),
            ("kind", f"eq.{SourceKind.SITE.value}"),
            ("zoo_id", "not.is.null"),
        ]
        rows = await self._request("GET", "sources", params=params)
        return [Source.model_validate(r) for r in rows or []]

    async def touch_sources(self, source_ids: Sequence[str], checked_at: datetime) -> None:
        if not source_ids:
            return
        await self._request(
            "PATCH",
            "sources",
            params=[("id", _in_list(source_ids))],
            json={"last_checked": checked_at.isoformat()},
            prefer="return=minimal",
        )

    # Zoos

    async def list_zoos(self) -> list[Zoo]:
        rows = await self._request("GET", "zoos", params=[("select", "id,name,website")])
        return [Zoo.model_validate(r) for r in rows or []]

    async def upsert_zoos(self, zoos: Sequence[Zoo]) -> int:
        rows = [z.to_row(exclude_none=True) for z in zoos]
        return await self._upsert("zoos", "name", rows)

    # Ingestion

    async def upsert_fingerprints(self, fingerprints: Sequence[Fingerprint]) -> int:
        return await self._upsert("fingerprints", "fp,kind", [f.to_row() for f in fingerprints])

    async def upsert_events(self, events: Sequence[BabyEvent]) -> int:
        rows = [e.to_row() for e in events]
        for row in rows:
            row.pop("id", None)
            row.pop("processed_at", None)
        return await self._upsert("baby_events", "url", rows)

    async def upsert_news_items(self, items: Sequence[NewsItem]) -> int:
        return await self._upsert("news_items", "url", [i.to_row() for i in items])

    # Resolution

    async def list_unprocessed_events(self, limit: int) -> list[BabyEvent]:
        params: Params = [
            ("select", "*"),
            ("processed_at", "is.null"),
            ("order", "published_at.desc.nullslast"),
            ("limit", str(limit)),
        ]
        rows = await self._request("GET", "baby_events", params=params)
        return [BabyEvent.model_validate(r) for r in rows or []]

    async def mark_events_processed(self, event_ids: Sequence[str], processed_at: datetime) -> None:
        if not event_ids:
            return
        await self._request(
            "PATCH",
            "baby_events",
            params=[("id", _in_list(event_ids)), ("processed_at", "is.null")],
            json={"processed_at": processed_at.isoformat()},
            prefer="return=minimal",
        )

    async def find_matching_baby(
        self,
        zoo_id: str,
        species: str,
        earliest: date,
        latest: date,
    ) -> Baby | None:
        params: Params = [
            ("select", "id,name,species,birthday,thumbnail_url,zoo_id"),
            ("zoo_id", f"eq.{zoo_id}"),
            ("species", f"eq.{species}"),
            ("birthday", f"gte.{earliest.isoformat()}"),
            ("birthday", f"lte.{latest.isoformat()}"),
            ("order", "birthday.asc"),
            ("limit", "1"),
        ]
        rows = await self._request("GET", "babies", params=params)
        return Baby.model_validate(rows[0]) if rows else None

    async def insert_baby(self, baby: Baby) -> Baby:
        row = baby.to_row()
        row.pop("id", None)
        rows = await self._request("POST", "babies", json=[row], prefer="return=representation")
        if not rows:
            raise StoreError("POST", "/rest/v1/babies", 0, "insert returned no row")
        return Baby.model_validate(rows[0])

    async def backfill_baby_thumbnail(self, baby_id: str, thumbnail_url: str) -> None:
        await self._request(
            "PATCH",
            "babies",
            params=[("id", f"eq.{baby_id}"), ("thumbnail_url", "is.null")],
            json={"thumbnail_url": thumbnail_url},
            prefer="return=minimal",
        )

    async def insert_links(self, links: Sequence[BabyLink]) -> int:
        return await self._upsert("baby_links", "event_id", [link.to_row() for link in links])

    # Telemetry

    async def insert_crawl_log(self, log: CrawlLog) -> None:
        await self._request("POST", "crawl_logs", json=[log.to_row()], prefer="return=minimal")

    async def aclose(self) -> None:
        await self._client.aclose()
