"""
Feed Parser Module
==================

Turns raw feed XML, article HTML and YouTube API JSON into FeedItem
objects. Feed parsing is deliberately tolerant: blocks are matched with
regular expressions rather than a strict XML parser, and entries that
do not yield a usable URL are dropped. HTML pages go through
BeautifulSoup so unquoted attributes and stray markup still parse.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from zoo_babies.core.enums import SourceKind
from zoo_babies.core.schema import FeedItem
from zoo_babies.ingestion.normalizer import (
    decode_entities,
    domain_of,
    normalize_url,
    parse_timestamp,
    strip_cdata,
)

logger = logging.getLogger(__name__)

_BLOCK_RE = re.compile(r"<item\b[\s\S]*?</item>|<entry\b[\s\S]*?</entry>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_ATTR_RE = re.compile(r"""([a-zA-Z_:][-a-zA-Z0-9_:.]*)\s*=\s*(?:"([^"]*)"|'([^']*)')""")

MAX_TITLE_LENGTH = 300


def _text_between(block: str, tag: str) -> str | None:
    m = re.search(rf"<{re.escape(tag)}(?:\s[^>]*)?>([\s\S]*?)</{re.escape(tag)}>", block, re.IGNORECASE)
    return m.group(1).strip() if m else None


def _attr_value(block: str, tag: str, attr: str) -> str | None:
    for m in re.finditer(rf"<{re.escape(tag)}\b([^>]*)>", block, re.IGNORECASE):
        attrs = _parse_attrs(m.group(1))
        if attrs.get(attr):
            return attrs[attr]
    return None


def _parse_attrs(fragment: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for m in _ATTR_RE.finditer(fragment):
        value = m.group(2) if m.group(2) is not None else m.group(3)
        attrs[m.group(1).lower()] = decode_entities(value)
    return attrs


def _clean_text(raw: str | None) -> str:
    text = decode_entities(strip_cdata(raw))
    text = _TAG_RE.sub("", text)
    return re.sub(r"\s+", " ", text).strip()


def _atom_link(block: str) -> str | None:
    """Prefer rel="alternate" (or no rel) among Atom <link href> elements."""
    fallback = None
    for m in re.finditer(r"<link\b([^>]*)>", block, re.IGNORECASE):
        attrs = _parse_attrs(m.group(1))
        href = attrs.get("href")
        if not href:
            continue
        if attrs.get("rel", "alternate") == "alternate":
            return href
        fallback = fallback or href
    return fallback


def parse_feed(xml: str) -> list[FeedItem]:
    """
    Parse an RSS 2.0 or Atom document.

    Link priority is Atom <link href>, then RSS <link>, then <guid>.
    Date priority is <pubDate>, then <updated>, then <published>.

    Args:
        xml: Raw feed text

    Returns:
        Items with a canonical URL, in document order
    """
    items: list[FeedItem] = []

    for block in _BLOCK_RE.findall(xml or ""):
        title = _clean_text(_text_between(block, "title"))[:MAX_TITLE_LENGTH]

        link = _atom_link(block) or _text_between(block, "link") or _text_between(block, "guid") or ""
        url = normalize_url(decode_entities(strip_cdata(link)))
        if not url:
            continue

        published_raw = (
            _text_between(block, "pubDate")
            or _text_between(block, "updated")
            or _text_between(block, "published")
            or _text_between(block, "dc:date")
        )
        published_at = parse_timestamp(strip_cdata(published_raw))

        thumbnail = (
            _attr_value(block, "media:thumbnail", "url")
            or _attr_value(block, "media:content", "url")
            or _attr_value(block, "enclosure", "url")
        )

        items.append(
            FeedItem(
                title=title,
                url=url,
                published_at=published_at,
                thumbnail_url=thumbnail,
                source_name=domain_of(url),
            )
        )

    return items


def _collapse(text: str | None) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _meta_content(soup: BeautifulSoup) -> dict[str, str]:
    """Collect <meta property|name=... content=...> pairs, first occurrence wins."""
    found: dict[str, str] = {}
    for tag in soup.find_all("meta"):
        key = (tag.get("property") or tag.get("name") or "").lower()
        content = tag.get("content")
        if key and content and key not in found:
            found[key] = content.strip()
    return found


def parse_open_graph(html: str, fetch_url: str) -> FeedItem | None:
    """
    Extract an article from a single HTML page via Open Graph tags.

    Args:
        html: Page HTML
        fetch_url: URL the page was fetched from, used when og:url is absent

    Returns:
        FeedItem, or None when the page has no title or no usable URL
    """
    soup = BeautifulSoup(html or "", "html.parser")
    meta = _meta_content(soup)

    title = meta.get("og:title") or (soup.title.get_text() if soup.title else "")
    title = _collapse(title)[:MAX_TITLE_LENGTH]
    if not title:
        return None

    og_url = meta.get("og:url")
    url = normalize_url(urljoin(fetch_url, og_url)) if og_url else None
    url = url or normalize_url(fetch_url)
    if not url:
        return None

    published_raw = meta.get("article:published_time")
    if not published_raw:
        time_tag = soup.find("time", datetime=True)
        published_raw = time_tag["datetime"] if time_tag else None

    image = meta.get("og:image")
    return FeedItem(
        title=title,
        url=url,
        published_at=parse_timestamp(published_raw),
        thumbnail_url=urljoin(fetch_url, image) if image else None,
        source_name=domain_of(url),
    )


def extract_links(html: str, base_url: str) -> list[tuple[str, str]]:
    """
    List same-domain links of a listing page with their anchor text.

    Args:
        html: Listing page HTML
        base_url: URL the page was fetched from

    Returns:
        (canonical URL, anchor text) pairs in page order, deduplicated
    """
    base_domain = domain_of(base_url)
    base_canonical = normalize_url(base_url)
    seen: set[str] = set()
    links: list[tuple[str, str]] = []

    soup = BeautifulSoup(html or "", "html.parser")
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("#", "javascript:", "mailto:")):
            continue
        url = normalize_url(urljoin(base_url, href))
        if not url or url == base_canonical or url in seen:
            continue
        if domain_of(url) != base_domain:
            continue
        seen.add(url)
        links.append((url, _collapse(anchor.get_text())))

    return links


def parse_youtube_api(payload: dict[str, Any] | str | bytes) -> list[FeedItem]:
    """
    Parse a YouTube Data API v3 search response.

    Args:
        payload: Decoded JSON object or raw JSON text

    Returns:
        One item per video result
    """
    if isinstance(payload, (str, bytes)):
        payload = json.loads(payload)

    items: list[FeedItem] = []
    for entry in payload.get("items") or []:
        video_id = (entry.get("id") or {}).get("videoId")
        snippet = entry.get("snippet")
        if not video_id or not snippet:
            continue
        thumbnails = snippet.get("thumbnails") or {}
        thumb = (thumbnails.get("medium") or thumbnails.get("default") or {}).get("url")
        url = normalize_url(f"https://www.youtube.com/watch?v={video_id}")
        if not url:
            continue
        items.append(
            FeedItem(
                title=_clean_text(snippet.get("title") or "")[:MAX_TITLE_LENGTH],
                url=url,
                published_at=parse_timestamp(snippet.get("publishedAt")),
                thumbnail_url=thumb,
                source_name="YouTube",
            )
        )
    return items


def parse_source_payload(kind: SourceKind, content: str | bytes, mime_type: str) -> list[FeedItem]:
    """
    Parse a fetched feed body according to its content type.

    JSON bodies from youtube sources go through the Data API parser,
    everything else is treated as RSS/Atom. Bytes are read as UTF-8;
    pass FetchResult.text to honour a declared charset.
    """
    text = content.decode("utf-8", errors="replace") if isinstance(content, bytes) else content
    if kind == SourceKind.YOUTUBE and (mime_type.endswith("json") or text.lstrip().startswith("{")):
        return parse_youtube_api(text)
    return parse_feed(text)
