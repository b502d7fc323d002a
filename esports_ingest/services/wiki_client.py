"""
Client for the public esports wiki (MediaWiki ``api.php``).

Catalogs are category listings (``generator=categorymembers`` with
``gcmcontinue`` continuation); detail pages are fetched as rendered HTML through
``action=parse``. No authentication; the wiki asks for a descriptive
User-Agent and at most one request every two seconds.

Callers take a RateLimiter slot for ``host_key`` before each call (the
orchestrator does this per attempt); the client only reports throttling
and successes back to the limiter.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from esports_ingest.config import get_settings
from esports_ingest.services.rate_limiter import RateLimiter
from esports_ingest.services.sync.base import (
    RETRYABLE_EXCEPTIONS,
    check_response,
    parse_datetime,
    translate_transport_error,
)
from esports_ingest.services.sync.errors import ItemNotFoundError, UnparsableItemError

logger = logging.getLogger(__name__)

CATEGORY_PAGE_SIZE = 200
ARTICLE_NAMESPACE = 0


@dataclass
class CategoryMember:
    title: str
    revised_at: datetime | None = None


@dataclass
class CategoryPage:
    members: list[CategoryMember]
    next_continuation: str | None

    @property
    def titles(self) -> list[str]:
        return [m.title for m in self.members]


class WikiClient:
    """
    MediaWiki reader.

    Args:
        rate_limiter: Shared per-host limiter, told about throttling
        http: Injected HTTP client (tests pass one on a MockTransport)
        api_url: ``api.php`` endpoint
        base_url: Prefix for page URLs (``<base_url>/<Title>``)
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        http: httpx.AsyncClient | None = None,
        api_url: str | None = None,
        base_url: str | None = None,
    ):
        settings = get_settings()
        self.rate_limiter = rate_limiter
        self.api_url = api_url or settings.wiki_api_url
        self.base_url = (base_url or settings.wiki_base_url).rstrip("/")
        self.http = http or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds,
            follow_redirects=True,
            headers={"User-Agent": settings.wiki_user_agent, "Accept-Encoding": "gzip"},
        )
        self.host_key = httpx.URL(self.api_url).host

    def page_url(self, title: str) -> str:
        return f"{self.base_url}/{title.replace(' ', '_')}"

    def title_from_url(self, url: str) -> str:
        """Inverse of ``page_url`` for URLs under ``base_url``."""
        path = url[len(self.base_url):] if url.startswith(self.base_url) else httpx.URL(url).path
        return path.strip("/").replace("_", " ")

    async def _query(self, params: dict[str, Any], item_id: str | None = None) -> dict[str, Any]:
        try:
            response = await self.http.get(self.api_url, params={**params, "format": "json"})
        except RETRYABLE_EXCEPTIONS as e:
            raise translate_transport_error(e, self.host_key) from e
        check_response(response, host_key=self.host_key, rate_limiter=self.rate_limiter, item_id=item_id)
        try:
            return response.json()
        except ValueError as e:
            raise UnparsableItemError(f"Non-JSON response from {self.host_key} for {item_id}") from e

    async def list_category(self, category: str, continuation: str | None = None) -> CategoryPage:
        """
        One page of articles in ``category`` with their latest revision time.

        Uses the category as a query generator so each member carries the
        timestamp of its latest revision in the same request.
        """
        params = {
            "action": "query",
            "generator": "categorymembers",
            "gcmtitle": category,
            "gcmlimit": CATEGORY_PAGE_SIZE,
            "gcmtype": "page",
            "gcmnamespace": ARTICLE_NAMESPACE,
            "prop": "revisions",
            "rvprop": "timestamp",
            "formatversion": 2,
        }
        if continuation:
            params["gcmcontinue"] = continuation

        data = await self._query(params, item_id=category)
        members = []
        for page in data.get("query", {}).get("pages", []):
            if page.get("ns", ARTICLE_NAMESPACE) != ARTICLE_NAMESPACE or page.get("missing"):
                continue
            revisions = page.get("revisions") or []
            revised_at = parse_datetime(revisions[0].get("timestamp")) if revisions else None
            members.append(CategoryMember(title=page["title"], revised_at=revised_at))
        members.sort(key=lambda m: m.title)

        next_continuation = data.get("continue", {}).get("gcmcontinue")
        logger.debug(f"{category}: {len(members)} pages, continue={next_continuation}")
        return CategoryPage(members=members, next_continuation=next_continuation)

    async def get_page_html(self, title: str) -> str | None:
        """Rendered HTML of a page; None when the page renders empty."""
        data = await self._query(
            {"action": "parse", "page": title, "prop": "text", "formatversion": 2},
            item_id=title,
        )
        if "error" in data:
            code = data["error"].get("code")
            if code == "missingtitle":
                raise ItemNotFoundError(f"Wiki page '{title}' does not exist")
            raise UnparsableItemError(f"Wiki error for '{title}': {code}")

        text = data.get("parse", {}).get("text")
        # formatversion=1 nests the HTML under "*"
        if isinstance(text, dict):
            text = text.get("*")
        return text or None
