"""
URL & Text Normalizer Module
============================

Canonicalizes URLs for deduplication and parses the date formats that
show up in Japanese zoo news.
"""

from __future__ import annotations

import hashlib
import html
import re
import unicodedata
from collections.abc import Iterator, Sequence
from datetime import UTC, date, datetime
from email.utils import parsedate_to_datetime
from typing import TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

T = TypeVar("T")

# Query parameters that never change the content behind a URL
TRACKING_PARAMS: frozenset[str] = frozenset(
    {
        "gclid",
        "fbclid",
        "yclid",
        "mc_cid",
        "mc_eid",
        "igshid",
        "ref_src",
        "spm",
    }
)

# Hosts that are rewritten to their primary form
HOST_ALIASES: dict[str, str] = {
    "youtube.com": "www.youtube.com",
    "m.youtube.com": "www.youtube.com",
    "mobile.twitter.com": "twitter.com",
    "m.facebook.com": "www.facebook.com",
    "m.yahoo.co.jp": "www.yahoo.co.jp",
    "sp.mainichi.jp": "mainichi.jp",
}

# Redirector hosts and the query parameter that carries the real target
REDIRECTORS: tuple[tuple[str, str, tuple[str, ...]], ...] = (
    ("news.google.com", "", ("url",)),
    ("www.google.com", "/url", ("q", "url")),
    ("www.google.co.jp", "/url", ("q", "url")),
    ("google.com", "/url", ("q", "url")),
)

MAX_UNWRAP_DEPTH = 5

_AMP_SUFFIX_RE = re.compile(r"/amp/?$", re.IGNORECASE)
_CDATA_RE = re.compile(r"<!\[CDATA\[(.*?)\]\]>", re.DOTALL)

_ISO_DATE_RE = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_JP_DATE_RE = re.compile(r"(\d{4})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日?")
_SLASH_DATE_RE = re.compile(r"(\d{4})/(\d{1,2})/(\d{1,2})")
_MONTH_DAY_RE = re.compile(r"(\d{1,2})\s*月\s*(\d{1,2})\s*日")


def _is_tracking_param(key: str, value: str) -> bool:
    k = key.lower()
    if k.startswith("utm_") or k in TRACKING_PARAMS:
        return True
    # AMP switches
    if k == "amp" and value.lower() in ("", "1", "true"):
        return True
    if k == "outputtype" and value.lower() == "amp":
        return True
    return False


def normalize_url(url: str | None, _depth: int = 0) -> str | None:
    """
    Canonicalize a URL for deduplication.

    Rewrites short links and mobile hosts, unwraps redirector links,
    strips fragments, tracking parameters and AMP suffixes.

    Args:
        url: Raw URL, possibly relative garbage or None

    Returns:
        Canonical URL, or None if the input cannot be used
    """
    if not url:
        return None
    url = url.strip()
    if not url:
        return None

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        return None
    host = (parts.hostname or "").lower().rstrip(".")
    if not host:
        return None

    path = parts.path
    query = parse_qsl(parts.query, keep_blank_values=True)

    # Short links
    if host == "youtu.be":
        video_id = path.strip("/").split("/")[0]
        if not video_id:
            return None
        host, path = "www.youtube.com", "/watch"
        query = [("v", video_id)] + [(k, v) for k, v in query if k != "v"]
        scheme = "https"

    host = HOST_ALIASES.get(host, host)

    # Redirectors
    if _depth < MAX_UNWRAP_DEPTH:
        for redirect_host, redirect_path, params in REDIRECTORS:
            if host != redirect_host and not host.endswith("." + redirect_host):
                continue
            if redirect_path and path != redirect_path:
                continue
            for key, value in query:
                if key in params and value:
                    target = normalize_url(value, _depth + 1)
                    if target:
                        return target

    kept = [(k, v) for k, v in query if not _is_tracking_param(k, v)]

    while _AMP_SUFFIX_RE.search(path):
        path = _AMP_SUFFIX_RE.sub("", path)
    if not path:
        path = "/"

    netloc = f"[{host}]" if ":" in host else host
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        netloc = f"{netloc}:{port}"

    return urlunsplit((scheme, netloc, path, urlencode(kept, doseq=True), ""))


def fingerprint(url: str) -> str:
    """
    Compute the dedup key for a canonical URL.

    Args:
        url: Canonical URL (output of normalize_url)

    Returns:
        Hex-encoded SHA-256 digest
    """
    return hashlib.sha256(url.encode("utf-8")).hexdigest()


def domain_of(url: str | None) -> str:
    """Return the hostname of a URL without a leading www., or an empty string."""
    if not url:
        return ""
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def strip_cdata(text: str | None) -> str:
    """Remove CDATA wrappers and surrounding whitespace."""
    if not text:
        return ""
    return _CDATA_RE.sub(r"\1", text).strip()


def decode_entities(text: str | None) -> str:
    """Decode HTML/XML character references."""
    if not text:
        return ""
    return html.unescape(text)


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(text: str | None, reference: date | None = None) -> date | None:
    """
    Find a calendar date in free text.

    Understands 2025-09-03, 2025/9/3, 2025年9月3日 and 9月3日. A month/day
    without a year takes the year of ``reference`` (today when omitted).

    Args:
        text: Text to search
        reference: Date supplying the year for month/day-only matches

    Returns:
        The first date found, or None
    """
    if not text:
        return None
    text = unicodedata.normalize("NFKC", text)

    for pattern in (_ISO_DATE_RE, _JP_DATE_RE, _SLASH_DATE_RE):
        m = pattern.search(text)
        if m:
            found = _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
            if found:
                return found

    m = _MONTH_DAY_RE.search(text)
    if m:
        year = (reference or date.today()).year
        return _safe_date(year, int(m.group(1)), int(m.group(2)))

    return None


def parse_timestamp(text: str | None) -> datetime | None:
    """
    Parse a feed timestamp (RFC 822 or ISO 8601).

    Naive values are taken to be UTC. Falls back to parse_date for
    date-only strings.
    """
    if not text:
        return None
    text = text.strip()
    if not text:
        return None

    parsed: datetime | None = None
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        parsed = None

    if parsed is None:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            parsed = None

    if parsed is None:
        found = parse_date(text)
        if found is None:
            return None
        parsed = datetime(found.year, found.month, found.day)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def chunk(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split a sequence into lists of at most ``size`` items."""
    for i in range(0, len(items), size):
        yield list(items[i : i + size])
