"""
Persisted device-auth credentials.

The TokenManager falls back to this store when no credential is configured
statically; the most recently used active record wins.
"""
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from esports_ingest.models import DeviceCredential
from esports_ingest.services.platform_auth import Credential, CredentialOrigin
from esports_ingest.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


def _to_credential(row: DeviceCredential) -> Credential:
    return Credential(
        source_id=str(row.id),
        device_id=row.device_id,
        shared_secret=row.secret,
        subject_id=row.subject_id,
        origin=CredentialOrigin.persisted_store,
    )


class DeviceCredentialStore:
    """
    Credential store backed by the ``device_credentials`` table.

    Opens a short-lived session per call: the TokenManager outlives any
    single job's session.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def find_active_most_recently_used(self, exclude: set[str] | None = None) -> Credential | None:
        """
        Return the active credential used most recently (never-used ones last).

        Args:
            exclude: source ids to skip, used when falling back to a second record
        """
        async with self.session_factory() as db:
            query = (
                select(DeviceCredential)
                .where(DeviceCredential.is_active == True)
                .order_by(
                    DeviceCredential.last_used_at.is_(None),
                    DeviceCredential.last_used_at.desc(),
                    DeviceCredential.id.desc(),
                )
            )
            if exclude:
                query = query.where(DeviceCredential.id.not_in([int(i) for i in exclude]))
            result = await db.execute(query.limit(1))
            row = result.scalar_one_or_none()
            return _to_credential(row) if row else None

    async def mark_used(self, source_id: str) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(DeviceCredential)
                .where(DeviceCredential.id == int(source_id))
                .values(last_used_at=utcnow())
            )
            await db.commit()

    async def upsert(
        self,
        subject_id: str,
        device_id: str,
        secret: str,
        display_name: str | None = None,
    ) -> Credential:
        """Store new secret material for a subject, superseding the old one."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(DeviceCredential).where(DeviceCredential.subject_id == subject_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = DeviceCredential(subject_id=subject_id, device_id=device_id, secret=secret)
                db.add(row)
            else:
                row.device_id = device_id
                row.secret = secret
                row.is_active = True
            if display_name:
                row.display_name = display_name
            await db.commit()
            await db.refresh(row)
            logger.info(f"Stored device credential for account {subject_id}")
            return _to_credential(row)

    async def deactivate(self, source_id: str) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(DeviceCredential)
                .where(DeviceCredential.id == int(source_id))
                .values(is_active=False)
            )
            await db.commit()
