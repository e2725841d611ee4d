"""
Wiki page retrieval through a CORS relay.

Each fetch goes through the configured relay, treats rate limiting and
non-2xx responses as failures, and sniffs successful responses for the
wiki's "page does not exist" text. A failure on the primary wiki domain is
retried once on the mirror domain after a short pause.
"""

import asyncio
import logging
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from ..config import ArchiveConfig
from .urls import url_for

logger = logging.getLogger("dnd-archive")


NOT_FOUND_MARKERS = (
    "The page does not (yet) exist",
    "This page does not exist yet",
    "This page does not yet exist",
    "This page does not exist",
    "page does not exist yet",
    "page does not yet exist",
)


class FetchFailure(Exception):
    """Raised when a wiki page could not be retrieved from any domain."""

    def __init__(self, message: str, attempted_urls: list[str]):
        super().__init__(message)
        self.attempted_urls = list(attempted_urls)

    @property
    def source_url(self) -> str:
        """All attempted URLs joined in the order they were tried."""
        return " → ".join(self.attempted_urls)


class FetchResult(BaseModel):
    """HTML of a wiki page and every URL tried to get it."""

    html: str = Field(description="Raw page HTML")
    attempted_urls: list[str] = Field(description="URLs tried, in order; the last one succeeded")

    @property
    def source_url(self) -> str:
        return " → ".join(self.attempted_urls)


def is_page_not_found(html: str) -> bool:
    """Check whether a 2xx response is really the wiki's missing-page notice."""
    return any(marker in html for marker in NOT_FOUND_MARKERS)


class WikiFetcher:
    """Fetch wiki pages with mirror fallback.

    Args:
        config: Wiki base, relay, delays and timeout. Defaults are used when omitted.
        client: Optional shared ``httpx.AsyncClient``. When omitted, a client
            is opened per ``fetch`` call.
    """

    def __init__(
        self,
        config: ArchiveConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or ArchiveConfig()
        self._client = client

    def url_for(self, wiki_kind: str, name: str) -> str:
        """Primary-domain URL for a reference name."""
        return url_for(wiki_kind, name, self.config.wiki_base)

    def fallback_url(self, url: str) -> str | None:
        """Mirror URL for ``url``, or None when ``url`` is not on the primary domain."""
        parsed = httpx.URL(url)
        if parsed.host != self.config.primary_domain:
            return None
        return str(parsed.copy_with(host=self.config.wiki_fallback_domain))

    async def fetch(self, url: str) -> FetchResult:
        """Fetch a wiki page, falling back to the mirror domain once.

        Raises:
            FetchFailure: If every attempt failed. ``attempted_urls`` lists
                the primary URL and, where applicable, the mirror URL.
        """
        if self._client is not None:
            return await self._fetch_with_fallback(self._client, url)

        async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
            return await self._fetch_with_fallback(client, url)

    async def fetch_reference(self, wiki_kind: str, name: str) -> FetchResult:
        """Fetch the page for a named spell, magic item or feat."""
        return await self.fetch(self.url_for(wiki_kind, name))

    async def _fetch_with_fallback(self, client: httpx.AsyncClient, url: str) -> FetchResult:
        attempted: list[str] = []

        try:
            html = await self._attempt(client, url, attempted)
            return FetchResult(html=html, attempted_urls=attempted)
        except FetchFailure as first_error:
            fallback = self.fallback_url(url)
            if fallback is None:
                logger.info(f"Wiki fetch failed (no fallback): {first_error}")
                raise FetchFailure(str(first_error), attempted) from first_error

            logger.info(
                f"Wiki fetch failed, waiting {self.config.fallback_delay}s before trying {fallback}"
            )
            await asyncio.sleep(self.config.fallback_delay)

        try:
            html = await self._attempt(client, fallback, attempted)
            return FetchResult(html=html, attempted_urls=attempted)
        except FetchFailure as e:
            url_list = " → ".join(attempted)
            logger.warning(f"Wiki fetch failed on every domain: {url_list}")
            raise FetchFailure(f"Failed after trying: {url_list}", attempted) from e

    async def _attempt(self, client: httpx.AsyncClient, url: str, attempted: list[str]) -> str:
        """One relay request. Appends ``url`` to ``attempted`` before sending."""
        attempted.append(url)
        relay_url = self.config.cors_proxy + quote(url, safe="!*'()")
        logger.debug(f"Fetching wiki page: {url}")

        try:
            response = await client.get(relay_url)
        except httpx.TimeoutException:
            raise FetchFailure(f"Timed out fetching {url}", attempted) from None
        except httpx.RequestError as e:
            raise FetchFailure(f"Failed to connect while fetching {url}: {e}", attempted) from None

        if response.status_code == 429:
            logger.info(f"Rate limited (429) at {url}")
            raise FetchFailure(f"Rate limited (429) at {url}", attempted)

        if not response.is_success:
            logger.info(f"Got HTTP {response.status_code} at {url}")
            raise FetchFailure(
                f"Failed to fetch: HTTP {response.status_code} {response.reason_phrase}",
                attempted,
            )

        html = response.text
        if is_page_not_found(html):
            logger.info(f"Wiki reports page not found at {url}")
            raise FetchFailure("Wiki page not found", attempted)

        return html
