"""
Tournament sync source.

Catalog: the platform's event downloads, one region per catalog page
(continuation is the next region). Detail: the event's window schedule.
Events whose last window has ended and was recorded as such are complete
and never re-fetched by age.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from esports_ingest.config import get_settings
from esports_ingest.models import Tournament
from esports_ingest.services.platform_client import EVENT_REGIONS, PlatformClient
from esports_ingest.services.sync.base import is_stale_by_age, parse_datetime
from esports_ingest.services.sync.errors import MissingFieldError
from esports_ingest.services.sync.store import RecordStore
from esports_ingest.services.sync.types import (
    CatalogPage,
    IndexEntry,
    LocalRecord,
    SyncTarget,
    UpsertOutcome,
)
from esports_ingest.utils.timestamps import as_utc, utcnow

logger = logging.getLogger(__name__)


def _window_bounds(windows: list[dict[str, Any]]) -> tuple[datetime | None, datetime | None]:
    begins = [t for t in (parse_datetime(w.get("beginTime")) for w in windows) if t]
    ends = [t for t in (parse_datetime(w.get("endTime")) for w in windows) if t]
    return (min(begins) if begins else None, max(ends) if ends else None)


def _region_from_event_id(event_id: str) -> str | None:
    # e.g. epicgames_S27_FNCS_Major1_EU
    tail = event_id.rsplit("_", 1)[-1].upper()
    return tail if tail in EVENT_REGIONS else None


class TournamentSyncSource:
    name = "tournaments"

    def __init__(
        self,
        db: AsyncSession,
        platform: PlatformClient,
        *,
        regions: tuple[str, ...] = EVENT_REGIONS,
        stale_after: timedelta | None = None,
        now: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.db = db
        self.platform = platform
        self.regions = regions
        self.stale_after = stale_after or timedelta(hours=settings.sync_stale_after_hours)
        self.now = now
        self.host_key = platform.events_host
        self.store = RecordStore(db, Tournament, "tournament_id")

    async def load_local_index(self) -> dict[str, IndexEntry]:
        result = await self.db.execute(
            select(
                Tournament.tournament_id,
                Tournament.last_synced_at,
                Tournament.source_updated_at,
                Tournament.is_completed,
            )
        )
        return {
            tournament_id: IndexEntry(
                last_synced_at=as_utc(synced),
                source_updated_at=as_utc(updated),
                complete=bool(completed),
            )
            for tournament_id, synced, updated, completed in result.all()
        }

    async def list_catalog(self, continuation: str | None) -> CatalogPage:
        index = int(continuation) if continuation else 0
        region = self.regions[index]
        events = await self.platform.download_events(region)
        logger.info(f"Region {region}: {len(events)} events")

        targets = []
        for event in events:
            event_id = event.get("eventId")
            if not event_id:
                continue
            _, last_end = _window_bounds(event.get("eventWindows") or [])
            targets.append(
                SyncTarget(
                    canonical_id=event_id,
                    remote_locator=event_id,
                    completeness_hint=last_end,
                    payload={**event, "_region": region},
                )
            )

        next_index = index + 1
        return CatalogPage(
            targets=targets,
            next_continuation=str(next_index) if next_index < len(self.regions) else None,
        )

    def is_stale(self, target: SyncTarget, local_index: dict[str, IndexEntry]) -> bool:
        entry = local_index.get(target.canonical_id)
        # A schedule ending in the future is only "newer" once it is over
        hint = target.completeness_hint
        if hint is not None and hint > self.now():
            hint = None
        return is_stale_by_age(entry, hint, self.stale_after, self.now())

    async def fetch_detail(self, target: SyncTarget) -> dict[str, Any] | None:
        windows = await self.platform.get_event_windows(target.remote_locator)
        event = target.payload or {"eventId": target.remote_locator}
        return {"event": event, "windows": windows or event.get("eventWindows") or []}

    def to_local_records(self, item: dict[str, Any]) -> LocalRecord:
        event = item["event"]
        event_id = event.get("eventId")
        if not event_id:
            raise MissingFieldError("eventId")

        windows = item["windows"]
        first_begin, last_end = _window_bounds(windows)
        now = self.now()
        completed = last_end is not None and last_end <= now

        return LocalRecord(
            canonical_id=event_id,
            fields={
                "name": event.get("displayDataId") or event_id,
                "region": _region_from_event_id(event_id) or event.get("_region"),
                "format": event.get("longFormatTitle"),
                "start_date": first_begin.date() if first_begin else None,
                "end_date": last_end.date() if last_end else None,
                "window_count": len(windows) or None,
                "is_completed": completed,
            },
            # While an event runs its schedule is live data; once over it is final
            source_updated_at=last_end if completed else now,
        )

    async def upsert(self, record: LocalRecord) -> UpsertOutcome:
        return await self.store.merge_upsert(record)
