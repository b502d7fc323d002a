"""
Organization sync source.

Catalog: the wiki's team category. Detail: the team page, reduced to
organization fields by a pluggable page parser.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esports_ingest.config import get_settings
from esports_ingest.models import Organization
from esports_ingest.services.sync.base import is_stale_by_age, title_to_slug
from esports_ingest.services.sync.errors import MissingFieldError
from esports_ingest.services.sync.parsers import parse_organization_page
from esports_ingest.services.sync.store import RecordStore
from esports_ingest.services.sync.types import (
    CatalogPage,
    IndexEntry,
    LocalRecord,
    SyncTarget,
    UpsertOutcome,
)
from esports_ingest.services.wiki_client import WikiClient
from esports_ingest.utils.timestamps import as_utc, utcnow

logger = logging.getLogger(__name__)


class OrganizationSyncSource:
    """Organizations from the public wiki."""

    name = "organizations"

    def __init__(
        self,
        db: AsyncSession,
        wiki: WikiClient,
        *,
        category: str | None = None,
        stale_after: timedelta | None = None,
        parse_page: Callable[[str, str], dict[str, Any]] = parse_organization_page,
        now: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.db = db
        self.wiki = wiki
        self.category = category or settings.wiki_organizations_category
        self.stale_after = stale_after or timedelta(hours=settings.sync_stale_after_hours)
        self.parse_page = parse_page
        self.now = now
        self.host_key = wiki.host_key
        self.origin = str(httpx.URL(wiki.base_url).copy_with(path="/"))
        self.store = RecordStore(db, Organization, "slug", alias_columns=("wiki_url",))

    async def load_local_index(self) -> dict[str, IndexEntry]:
        result = await self.db.execute(
            select(Organization.slug, Organization.last_synced_at, Organization.source_updated_at)
        )
        return {
            slug: IndexEntry(last_synced_at=as_utc(synced), source_updated_at=as_utc(updated))
            for slug, synced, updated in result.all()
        }

    async def list_catalog(self, continuation: str | None) -> CatalogPage:
        page = await self.wiki.list_category(self.category, continuation)
        targets = [
            SyncTarget(
                canonical_id=title_to_slug(member.title),
                remote_locator=member.title,
                completeness_hint=member.revised_at,
            )
            for member in page.members
        ]
        return CatalogPage(targets=targets, next_continuation=page.next_continuation)

    def is_stale(self, target: SyncTarget, local_index: dict[str, IndexEntry]) -> bool:
        return is_stale_by_age(
            local_index.get(target.canonical_id),
            target.completeness_hint,
            self.stale_after,
            self.now(),
        )

    async def fetch_detail(self, target: SyncTarget) -> dict[str, Any] | None:
        html = await self.wiki.get_page_html(target.remote_locator)
        if html is None:
            return None
        return {
            "slug": target.canonical_id,
            "title": target.remote_locator,
            "wiki_url": self.wiki.page_url(target.remote_locator),
            "revised_at": target.completeness_hint,
            "fields": self.parse_page(html, self.origin),
        }

    def to_local_records(self, item: dict[str, Any]) -> LocalRecord:
        fields = dict(item["fields"])
        fields["name"] = fields.get("name") or item["title"]
        if not fields["name"]:
            raise MissingFieldError("name", item["slug"])
        return LocalRecord(
            canonical_id=item["slug"],
            fields=fields,
            aliases={"wiki_url": item["wiki_url"]},
            source_updated_at=item["revised_at"],
        )

    async def upsert(self, record: LocalRecord) -> UpsertOutcome:
        return await self.store.merge_upsert(record)
