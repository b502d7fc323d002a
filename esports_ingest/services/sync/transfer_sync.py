"""
Transfer sync source.

The transfers portal lists every move inline, so the catalog page already
carries each item and ``fetch_detail`` makes no request. Transfers have no
remote id; the canonical id is a content hash of date, player and both
organizations. A known transfer is never re-fetched.
"""
import logging
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esports_ingest.config import get_settings
from esports_ingest.models import Transfer
from esports_ingest.services.sync.base import content_hash, title_to_slug
from esports_ingest.services.sync.errors import FatalPipelineError
from esports_ingest.services.sync.parsers import parse_transfer_rows
from esports_ingest.services.sync.store import RecordStore
from esports_ingest.services.sync.types import (
    CatalogPage,
    IndexEntry,
    LocalRecord,
    SyncTarget,
    UpsertOutcome,
)
from esports_ingest.services.wiki_client import WikiClient
from esports_ingest.utils.timestamps import as_utc

logger = logging.getLogger(__name__)


def transfer_id(row: dict[str, Any]) -> str:
    return content_hash(row["transfer_date"], row["player_name"], row.get("from_org"), row.get("to_org"))


class TransferSyncSource:
    name = "transfers"
    fetches_detail = False

    def __init__(self, db: AsyncSession, wiki: WikiClient, *, page: str | None = None, parse_rows=parse_transfer_rows):
        self.db = db
        self.wiki = wiki
        self.page = page or get_settings().wiki_transfers_page
        self.parse_rows = parse_rows
        self.host_key = wiki.host_key
        self.origin = str(httpx.URL(wiki.base_url).copy_with(path="/"))
        self.store = RecordStore(db, Transfer, "transfer_id")

    async def load_local_index(self) -> dict[str, IndexEntry]:
        result = await self.db.execute(select(Transfer.transfer_id, Transfer.last_synced_at))
        return {
            tid: IndexEntry(last_synced_at=as_utc(synced), complete=True)
            for tid, synced in result.all()
        }

    async def list_catalog(self, continuation: str | None) -> CatalogPage:
        html = await self.wiki.get_page_html(self.page)
        if html is None:
            raise FatalPipelineError(f"Transfers page '{self.page}' rendered empty")
        rows = self.parse_rows(html, self.origin)
        logger.info(f"{len(rows)} transfers listed on {self.page}")
        return CatalogPage(
            targets=[
                SyncTarget(canonical_id=transfer_id(row), remote_locator=self.page, payload=row)
                for row in rows
            ]
        )

    def is_stale(self, target: SyncTarget, local_index: dict[str, IndexEntry]) -> bool:
        return target.canonical_id not in local_index

    async def fetch_detail(self, target: SyncTarget) -> dict[str, Any] | None:
        return target.payload

    def to_local_records(self, item: dict[str, Any]) -> LocalRecord:
        player_id = None
        if item.get("player_wiki_url"):
            player_id = title_to_slug(self.wiki.title_from_url(item["player_wiki_url"]))
        return LocalRecord(
            canonical_id=transfer_id(item),
            fields={
                "player_name": item["player_name"],
                "player_id": player_id,
                "player_wiki_url": item.get("player_wiki_url"),
                "from_org": item.get("from_org"),
                "to_org": item.get("to_org"),
                "transfer_type": item.get("transfer_type"),
                "details": item.get("details"),
                "transfer_date": item["transfer_date"],
                "reference_url": item.get("reference_url"),
            },
        )

    async def upsert(self, record: LocalRecord) -> UpsertOutcome:
        return await self.store.merge_upsert(record)
