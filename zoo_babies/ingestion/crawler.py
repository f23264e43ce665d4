"""
Web Crawler Module
==================

Provides HTTP fetching for feeds, listing pages, article pages and
the Wikipedia API, with bounded retries and content hashing.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import Collection
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import httpx
from bs4 import UnicodeDammit

from zoo_babies.config import DEFAULT_USER_AGENT, GlobalConfig

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """An outbound fetch failed or returned a non-2xx status."""

    def __init__(self, url: str, message: str, status_code: int = 0) -> None:
        super().__init__(f"fetch {url} -> {message}")
        self.url = url
        self.status_code = status_code


@dataclass
class FetchResult:
    """Result of fetching a URL."""

    url: str
    content: bytes
    content_hash: str
    mime_type: str
    status_code: int
    fetched_at: datetime
    error: str | None = None
    encoding: str | None = None

    @property
    def success(self) -> bool:
        """Check if fetch was successful."""
        return self.error is None and 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        """
        Content decoded to text.

        The Content-Type charset wins, then a BOM or an in-document
        declaration (<meta charset>, <?xml encoding?>), then UTF-8 and
        the detector's guesses. UTF-8 with replacement if nothing decodes.
        """
        if not self.content:
            return ""
        dammit = UnicodeDammit(
            self.content,
            known_definite_encodings=[self.encoding] if self.encoding else [],
            is_html="html" in self.mime_type,
        )
        if dammit.unicode_markup is None:
            return self.content.decode("utf-8", errors="replace")
        return dammit.unicode_markup

    def raise_for_error(self) -> None:
        """Raise FetchError unless the fetch succeeded."""
        if not self.success:
            raise FetchError(self.url, self.error or f"HTTP {self.status_code}", self.status_code)


class Crawler:
    """
    Async HTTP fetcher.

    Features:
    - Descriptive User-Agent on every request
    - Retries on transport errors and on configurable statuses
    - Content hashing
    - Optional shared httpx.AsyncClient (injected in tests)
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 20.0,
        max_retries: int = 1,
        backoff: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff = backoff
        self._client = client

    @classmethod
    def from_config(cls, config: GlobalConfig, client: httpx.AsyncClient | None = None) -> Crawler:
        """Create crawler from configuration."""
        return cls(
            user_agent=config.user_agent,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            client=client,
        )

    @staticmethod
    def compute_hash(content: bytes) -> str:
        """
        Compute SHA-256 hash of content.

        Args:
            content: Raw bytes to hash

        Returns:
            Hex-encoded SHA-256 hash
        """
        return hashlib.sha256(content).hexdigest()

    async def _get(self, url: str, params: dict[str, Any] | None, headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, params=params, headers=headers, follow_redirects=True)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url, params=params, headers=headers, follow_redirects=True)

    async def fetch(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        retry_statuses: Collection[int] = (429, 503),
        max_retries: int | None = None,
    ) -> FetchResult:
        """
        Fetch a URL.

        Args:
            url: URL to fetch
            params: Optional query parameters
            retry_statuses: Response statuses worth another attempt
            max_retries: Total attempts, overriding the crawler default

        Returns:
            FetchResult with content or error
        """
        fetched_at = datetime.now(UTC)
        attempts = max(1, max_retries or self.max_retries)
        headers = {"User-Agent": self.user_agent}

        last_error: str | None = None
        last_status = 0
        for attempt in range(attempts):
            try:
                response = await self._get(url, params, headers)
                content = response.content
                mime_type = response.headers.get("content-type", "").split(";")[0].strip()
                last_status = response.status_code

                if response.status_code in retry_statuses and attempt < attempts - 1:
                    logger.warning(
                        f"HTTP {response.status_code} from {url} (attempt {attempt + 1}/{attempts})"
                    )
                    last_error = f"HTTP {response.status_code}"
                else:
                    error = None if response.is_success else f"HTTP {response.status_code}"
                    return FetchResult(
                        url=url,
                        content=content,
                        content_hash=self.compute_hash(content),
                        mime_type=mime_type,
                        status_code=response.status_code,
                        fetched_at=fetched_at,
                        error=error,
                        encoding=response.charset_encoding,
                    )

            except httpx.TimeoutException:
                last_error = f"Timeout after {self.timeout}s"
                logger.warning(f"Timeout fetching {url} (attempt {attempt + 1}/{attempts})")
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(f"HTTP error fetching {url}: {e} (attempt {attempt + 1}/{attempts})")

            # Wait before retry with exponential backoff
            if attempt < attempts - 1 and self.backoff > 0:
                await asyncio.sleep(self.backoff * 2**attempt)

        return FetchResult(
            url=url,
            content=b"",
            content_hash="",
            mime_type="",
            status_code=last_status,
            fetched_at=fetched_at,
            error=last_error or "Unknown error",
        )

    async def fetch_or_raise(self, url: str, **kwargs: Any) -> FetchResult:
        """Fetch a URL and raise FetchError on failure."""
        result = await self.fetch(url, **kwargs)
        result.raise_for_error()
        return result
