"""
Persistent-store verbs used by the entity-family sources.

A ``RecordStore`` wraps one ORM model keyed by its canonical id column.
Each upsert commits on its own so one failing item never rolls back the
items reconciled before it.
"""
import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from esports_ingest.services.sync.errors import PermanentItemError
from esports_ingest.services.sync.merge import is_empty, merge_fill_gaps, remote_is_newer
from esports_ingest.services.sync.types import LocalRecord, UpsertOutcome
from esports_ingest.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


class RecordStore:
    """
    Args:
        db: SQLAlchemy async session
        model: ORM class
        key: Name of the canonical id column
        alias_columns: Unique columns through which a row first written by
            another source can be found
    """

    def __init__(
        self,
        db: AsyncSession,
        model: type,
        key: str,
        alias_columns: tuple[str, ...] = (),
    ):
        self.db = db
        self.model = model
        self.key = key
        self.alias_columns = alias_columns

    @property
    def key_column(self):
        return getattr(self.model, self.key)

    async def find_many(self, *criteria) -> list:
        result = await self.db.execute(select(self.model).where(*criteria))
        return list(result.scalars().all())

    async def find_unique(self, key_value: Any):
        result = await self.db.execute(select(self.model).where(self.key_column == key_value))
        return result.scalar_one_or_none()

    async def find_by_aliases(self, aliases: dict[str, Any]):
        for column in self.alias_columns:
            value = aliases.get(column)
            if is_empty(value):
                continue
            result = await self.db.execute(
                select(self.model).where(getattr(self.model, column) == value)
            )
            row = result.scalar_one_or_none()
            if row is not None:
                return row
        return None

    async def count(self, *criteria) -> int:
        result = await self.db.execute(select(func.count()).select_from(self.model).where(*criteria))
        return result.scalar_one()

    async def _commit(self, item_id: str) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise PermanentItemError(f"Conflicting row for {item_id}: {e.orig}") from e
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def upsert(
        self,
        key_value: Any,
        create_payload: dict[str, Any],
        update_payload: dict[str, Any],
    ) -> UpsertOutcome:
        """Insert ``create_payload`` or apply ``update_payload`` to the existing row."""
        row = await self.find_unique(key_value)
        if row is None:
            self.db.add(self.model(**{self.key: key_value, **create_payload}))
            outcome = UpsertOutcome.created
        else:
            for column, value in update_payload.items():
                setattr(row, column, value)
            outcome = UpsertOutcome.updated
        await self._commit(str(key_value))
        return outcome

    async def merge_upsert(self, record: LocalRecord) -> UpsertOutcome:
        """
        Reconcile ``record`` under the gap-filling merge policy.

        The row keeps its canonical id when it is found through an alias;
        alias values are only ever filled, never replaced.
        """
        now = utcnow()
        row = await self.find_unique(record.canonical_id)
        if row is None:
            row = await self.find_by_aliases(record.aliases)
            if row is not None:
                logger.debug(
                    f"{self.model.__tablename__}: {record.canonical_id} matched existing "
                    f"{getattr(row, self.key)} by alias"
                )

        if row is None:
            payload = {k: v for k, v in record.fields.items() if not is_empty(v)}
            payload.update({k: v for k, v in record.aliases.items() if not is_empty(v)})
            payload["source_updated_at"] = record.source_updated_at
            payload["last_synced_at"] = now
            return await self.upsert(record.canonical_id, payload, {})

        local_fields = {column: getattr(row, column) for column in record.fields}
        merged = merge_fill_gaps(
            local_fields,
            record.fields,
            local_updated_at=row.source_updated_at,
            remote_updated_at=record.source_updated_at,
        )
        local_aliases = {column: getattr(row, column) for column in record.aliases}
        merged.update(merge_fill_gaps(local_aliases, record.aliases))

        update_payload = {k: v for k, v in merged.items() if getattr(row, k) != v}
        if remote_is_newer(row.source_updated_at, record.source_updated_at):
            update_payload["source_updated_at"] = record.source_updated_at
        update_payload["last_synced_at"] = now

        for column, value in update_payload.items():
            setattr(row, column, value)
        await self._commit(record.canonical_id)
        return UpsertOutcome.updated
