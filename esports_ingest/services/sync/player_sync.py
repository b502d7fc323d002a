"""
Player sync source.

Catalog: the wiki's player category. Detail: the player page. When a
PlatformClient is supplied, players with a known platform display name but
no account id are enriched through an account lookup; a missing account is
not an error, an auth failure is.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esports_ingest.config import get_settings
from esports_ingest.models import Player
from esports_ingest.services.platform_client import PlatformClient
from esports_ingest.services.sync.base import is_stale_by_age, title_to_slug
from esports_ingest.services.sync.errors import ItemNotFoundError, MissingFieldError
from esports_ingest.services.sync.parsers import parse_player_page
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


class PlayerSyncSource:
    name = "players"

    def __init__(
        self,
        db: AsyncSession,
        wiki: WikiClient,
        *,
        platform: PlatformClient | None = None,
        category: str | None = None,
        stale_after: timedelta | None = None,
        parse_page: Callable[[str, str], dict[str, Any]] = parse_player_page,
        now: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.db = db
        self.wiki = wiki
        self.platform = platform
        self.category = category or settings.wiki_players_category
        self.stale_after = stale_after or timedelta(hours=settings.sync_stale_after_hours)
        self.parse_page = parse_page
        self.now = now
        self.host_key = wiki.host_key
        self.origin = str(httpx.URL(wiki.base_url).copy_with(path="/"))
        self.store = RecordStore(
            db, Player, "player_id", alias_columns=("wiki_url", "platform_account_id")
        )
        # Canonical ids that already have an account id; filled by load_local_index
        self._with_account: set[str] = set()

    async def load_local_index(self) -> dict[str, IndexEntry]:
        result = await self.db.execute(
            select(
                Player.player_id,
                Player.last_synced_at,
                Player.source_updated_at,
                Player.platform_account_id,
            )
        )
        index = {}
        self._with_account = set()
        for player_id, synced, updated, account_id in result.all():
            index[player_id] = IndexEntry(last_synced_at=as_utc(synced), source_updated_at=as_utc(updated))
            if account_id:
                self._with_account.add(player_id)
        return index

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

        fields = self.parse_page(html, self.origin)
        account_id = None
        display_name = fields.get("platform_display_name")
        if self.platform is not None and display_name and target.canonical_id not in self._with_account:
            account_id = await self._lookup_account_id(display_name)

        return {
            "player_id": target.canonical_id,
            "title": target.remote_locator,
            "wiki_url": self.wiki.page_url(target.remote_locator),
            "revised_at": target.completeness_hint,
            "platform_account_id": account_id,
            "fields": fields,
        }

    async def _lookup_account_id(self, display_name: str) -> str | None:
        try:
            account = await self.platform.lookup_account(display_name)
        except ItemNotFoundError:
            logger.info(f"No platform account for display name '{display_name}'")
            return None
        return account.get("id") if isinstance(account, dict) else None

    def to_local_records(self, item: dict[str, Any]) -> LocalRecord:
        fields = dict(item["fields"])
        fields["current_ign"] = fields.get("current_ign") or item["title"]
        if not fields["current_ign"]:
            raise MissingFieldError("current_ign", item["player_id"])
        return LocalRecord(
            canonical_id=item["player_id"],
            fields=fields,
            aliases={
                "wiki_url": item["wiki_url"],
                "platform_account_id": item["platform_account_id"],
            },
            source_updated_at=item["revised_at"],
        )

    async def upsert(self, record: LocalRecord) -> UpsertOutcome:
        return await self.store.merge_upsert(record)
