"""Value types shared by the orchestrator and entity-family sources."""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from esports_ingest.utils.timestamps import utcnow


@dataclass
class SyncTarget:
    """One catalog entry to reconcile."""

    canonical_id: str
    remote_locator: str
    # Remote "last modified" (or equivalent) compared against the local row
    completeness_hint: datetime | None = None
    # The full remote item, for catalogs whose listing already carries it
    payload: Any = None


@dataclass
class CatalogPage:
    targets: list[SyncTarget]
    next_continuation: str | None = None


@dataclass(frozen=True)
class IndexEntry:
    """What the local store knows about one canonical id."""

    last_synced_at: datetime | None = None
    source_updated_at: datetime | None = None
    # Finished remote entity that will not change again
    complete: bool = False


@dataclass
class LocalRecord:
    """Normalized value handed to the store."""

    canonical_id: str
    fields: dict[str, Any]
    # Alias column -> value, used to find a row first written by another source
    aliases: dict[str, Any] = field(default_factory=dict)
    source_updated_at: datetime | None = None


class UpsertOutcome(str, enum.Enum):
    created = "created"
    updated = "updated"


@dataclass(frozen=True)
class ItemError:
    item_id: str
    message: str


@dataclass(frozen=True)
class JobStats:
    job_name: str
    created: int
    updated: int
    skipped: int
    errors: tuple[ItemError, ...]
    started_at: datetime
    finished_at: datetime
    cancelled: bool = False

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> str:
        text = (
            f"{self.job_name}: created={self.created} updated={self.updated} "
            f"skipped={self.skipped} errors={len(self.errors)} ({self.duration_seconds:.1f}s)"
        )
        if self.cancelled:
            text += " [cancelled]"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_name": self.job_name,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": [{"item_id": e.item_id, "message": e.message} for e in self.errors],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "cancelled": self.cancelled,
        }


@dataclass
class StatsAccumulator:
    """Mutable counters for one pass; ``freeze()`` produces the JobStats."""

    job_name: str
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[ItemError] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    cancelled: bool = False

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome == UpsertOutcome.created:
            self.created += 1
        else:
            self.updated += 1

    def add_error(self, item_id: str, message: str) -> None:
        self.errors.append(ItemError(item_id=item_id, message=message))

    def freeze(self) -> JobStats:
        return JobStats(
            job_name=self.job_name,
            created=self.created,
            updated=self.updated,
            skipped=self.skipped,
            errors=tuple(self.errors),
            started_at=self.started_at,
            finished_at=utcnow(),
            cancelled=self.cancelled,
        )


class SyncSource(Protocol):
    """Capabilities one entity family provides to the orchestrator."""

    name: str
    host_key: str

    async def load_local_index(self) -> Any: ...

    async def list_catalog(self, continuation: str | None) -> CatalogPage: ...

    def is_stale(self, target: SyncTarget, local_index: Any) -> bool: ...

    async def fetch_detail(self, target: SyncTarget) -> Any | None: ...

    def to_local_records(self, item: Any) -> LocalRecord | list[LocalRecord]: ...

    async def upsert(self, record: LocalRecord) -> UpsertOutcome: ...
