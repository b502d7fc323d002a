"""
Earnings sync source.

Catalog: local players that have a wiki page (optionally one organization's
roster). Detail: the player's results page; every prize placement on it
becomes one Earning row keyed ``<player_id>:<tournament slug>:<date>``.
Per-player and per-organization totals are recomputed by the job runner
after the pass (see ``services.jobs.recompute_earnings_rollups``).
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from esports_ingest.config import get_settings
from esports_ingest.models import Earning, Player
from esports_ingest.services.sync.base import is_stale_by_age, title_to_slug
from esports_ingest.services.sync.parsers import parse_results_table
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

RESULTS_SUBPAGE = "Results"


def earning_id(player_id: str, tournament_name: str, tournament_date) -> str:
    return f"{player_id}:{title_to_slug(tournament_name)}:{tournament_date.isoformat()}"


class EarningsSyncSource:
    """
    Args:
        db: SQLAlchemy async session
        wiki: Wiki client for results pages
        org_slug: Limit the pass to players currently on this organization
        parse_results: Results-page extractor
    """

    name = "earnings"
    fetches_catalog = False

    def __init__(
        self,
        db: AsyncSession,
        wiki: WikiClient,
        *,
        org_slug: str | None = None,
        stale_after: timedelta | None = None,
        parse_results: Callable[[str], list[dict[str, Any]]] = parse_results_table,
        now: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.db = db
        self.wiki = wiki
        self.org_slug = org_slug
        self.stale_after = stale_after or timedelta(hours=settings.sync_stale_after_hours)
        self.parse_results = parse_results
        self.now = now
        self.host_key = wiki.host_key
        self.store = RecordStore(db, Earning, "earning_id")

    async def load_local_index(self) -> dict[str, IndexEntry]:
        # Keyed by player: a player's earnings are fetched together
        result = await self.db.execute(
            select(Earning.player_id, func.max(Earning.last_synced_at)).group_by(Earning.player_id)
        )
        return {player_id: IndexEntry(last_synced_at=as_utc(synced)) for player_id, synced in result.all()}

    async def list_catalog(self, continuation: str | None) -> CatalogPage:
        query = (
            select(Player.player_id, Player.wiki_url)
            .where(Player.wiki_url.is_not(None), Player.is_active == True)
            .order_by(Player.player_id)
        )
        if self.org_slug:
            query = query.where(Player.org_slug == self.org_slug)
        result = await self.db.execute(query)

        targets = [
            SyncTarget(
                canonical_id=player_id,
                remote_locator=f"{self.wiki.title_from_url(wiki_url)}/{RESULTS_SUBPAGE}",
            )
            for player_id, wiki_url in result.all()
        ]
        logger.info(f"{len(targets)} players to check for earnings")
        return CatalogPage(targets=targets)

    def is_stale(self, target: SyncTarget, local_index: dict[str, IndexEntry]) -> bool:
        return is_stale_by_age(local_index.get(target.canonical_id), None, self.stale_after, self.now())

    async def fetch_detail(self, target: SyncTarget) -> dict[str, Any] | None:
        html = await self.wiki.get_page_html(target.remote_locator)
        if html is None:
            return None
        return {"player_id": target.canonical_id, "results": self.parse_results(html)}

    def to_local_records(self, item: dict[str, Any]) -> list[LocalRecord]:
        player_id = item["player_id"]
        records: dict[str, LocalRecord] = {}
        for row in item["results"]:
            key = earning_id(player_id, row["tournament_name"], row["tournament_date"])
            # Same tournament listed twice on a page (e.g. team and solo tables)
            if key in records:
                continue
            records[key] = LocalRecord(
                canonical_id=key,
                fields={
                    "player_id": player_id,
                    "tournament_name": row["tournament_name"],
                    "tournament_date": row["tournament_date"],
                    "tier": row.get("tier"),
                    "placement": row.get("placement"),
                    "prize_usd": row.get("prize_usd"),
                },
            )
        return list(records.values())

    async def upsert(self, record: LocalRecord) -> UpsertOutcome:
        return await self.store.merge_upsert(record)
