"""
Job runners.

A job is one orchestrator pass for one entity family plus whatever the
family needs afterwards (earnings rollups). The process-wide collaborators
(rate limiter, token manager, HTTP clients) live on an ``IngestContext``
built once per process and shared by every job, so that concurrent jobs
against the same host serialize through one limiter bucket and share one
token.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta

import httpx
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from esports_ingest.config import Settings, get_settings
from esports_ingest.database import AsyncSessionLocal
from esports_ingest.models import Earning, Organization, Player
from esports_ingest.services.credential_store import DeviceCredentialStore
from esports_ingest.services.notifications import (
    notify_job_failure,
    notify_job_result,
    notify_token_refresh,
)
from esports_ingest.services.platform_auth import PlatformAuthClient, PlatformAuthError
from esports_ingest.services.platform_client import PlatformClient
from esports_ingest.services.rate_limiter import RateLimiter
from esports_ingest.services.sync.earnings_sync import EarningsSyncSource
from esports_ingest.services.sync.errors import FatalPipelineError
from esports_ingest.services.sync.orchestrator import SyncOrchestrator
from esports_ingest.services.sync.organization_sync import OrganizationSyncSource
from esports_ingest.services.sync.player_sync import PlayerSyncSource
from esports_ingest.services.sync.tournament_sync import TournamentSyncSource
from esports_ingest.services.sync.transfer_sync import TransferSyncSource
from esports_ingest.services.sync.types import JobStats, SyncSource
from esports_ingest.services.token_manager import (
    EXCHANGE_FAILURES,
    TokenManager,
    static_credential_from_settings,
)
from esports_ingest.services.wiki_client import WikiClient

logger = logging.getLogger(__name__)

JOB_NAMES = ("organizations", "players", "tournaments", "earnings", "transfers")

ORG_SCOPE_PREFIX = "org:"


# ==================== Scope ====================

@dataclass(frozen=True)
class JobScope:
    """``all``, ``org:<slug>`` or a single canonical id."""

    org_slug: str | None = None
    entity_id: str | None = None

    @classmethod
    def parse(cls, scope: str | None) -> "JobScope":
        if not scope or scope == "all":
            return cls()
        if scope.startswith(ORG_SCOPE_PREFIX):
            slug = scope[len(ORG_SCOPE_PREFIX):].strip()
            if not slug:
                raise ValueError("Empty organization slug in scope")
            return cls(org_slug=slug)
        return cls(entity_id=scope)

    def __str__(self) -> str:
        if self.org_slug:
            return f"{ORG_SCOPE_PREFIX}{self.org_slug}"
        return self.entity_id or "all"


# ==================== Process context ====================

def build_rate_limiter(settings: Settings) -> RateLimiter:
    return RateLimiter(
        settings.rate_limit_host_delays,
        jitter=settings.rate_limit_jitter_seconds,
        backoff_base=settings.rate_limit_backoff_base_seconds,
        max_backoff=settings.rate_limit_max_backoff_seconds,
    )


class IngestContext:
    """
    Collaborators shared by every job in one process.

    Args:
        settings: Application settings
        session_factory: Async session factory for jobs and the credential store
        rate_limiter: Injected limiter (built from settings if omitted)
        token_manager: Injected token manager (built from settings if omitted)
        wiki_http: HTTP client for the wiki
        platform_http: HTTP client for the platform API
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal,
        *,
        rate_limiter: RateLimiter | None = None,
        token_manager: TokenManager | None = None,
        wiki_http: httpx.AsyncClient | None = None,
        platform_http: httpx.AsyncClient | None = None,
        orchestrator: SyncOrchestrator | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.rate_limiter = rate_limiter or build_rate_limiter(self.settings)
        self.platform_http = platform_http or httpx.AsyncClient(timeout=self.settings.http_timeout_seconds)
        self.wiki = WikiClient(self.rate_limiter, http=wiki_http)
        self.token_manager = token_manager or TokenManager(
            PlatformAuthClient(http=self.platform_http, rate_limiter=self.rate_limiter),
            static_credential=static_credential_from_settings(self.settings),
            credential_store=DeviceCredentialStore(session_factory),
            refresh_buffer=timedelta(seconds=self.settings.token_refresh_buffer_seconds),
        )
        self.platform = PlatformClient(self.token_manager, self.rate_limiter, http=self.platform_http)
        self.orchestrator = orchestrator or SyncOrchestrator.from_settings(self.rate_limiter, self.settings)
        # Jobs currently running in this process
        self.running: set[str] = set()

    async def aclose(self) -> None:
        await self.wiki.http.aclose()
        await self.platform_http.aclose()


_context: IngestContext | None = None


def get_ingest_context() -> IngestContext:
    """Process-wide context (built on first use)."""
    global _context
    if _context is None:
        _context = IngestContext()
    return _context


def get_token_manager() -> TokenManager:
    return get_ingest_context().token_manager


# ==================== Rollups ====================

async def recompute_earnings_rollups(db: AsyncSession, org_slug: str | None = None) -> int:
    """
    Recompute ``Player.total_earnings`` from earnings rows, then
    ``Organization.total_earnings`` from current roster players.

    Returns:
        Number of organizations updated
    """
    player_totals = await db.execute(
        select(Earning.player_id, func.sum(Earning.prize_usd)).group_by(Earning.player_id)
    )
    for player_id, total in player_totals.all():
        await db.execute(
            update(Player).where(Player.player_id == player_id).values(total_earnings=total or 0.0)
        )

    org_query = (
        select(Player.org_slug, func.sum(Player.total_earnings))
        .where(Player.org_slug.is_not(None), Player.is_active == True)
        .group_by(Player.org_slug)
    )
    if org_slug:
        org_query = org_query.where(Player.org_slug == org_slug)
    org_totals = await db.execute(org_query)

    updated = 0
    for slug, total in org_totals.all():
        result = await db.execute(
            update(Organization).where(Organization.slug == slug).values(total_earnings=total or 0.0)
        )
        updated += result.rowcount or 0

    await db.commit()
    logger.info(f"Recomputed earnings rollups for {updated} organizations")
    return updated


# ==================== Runner ====================

class JobRunner:
    """
    Runs one entity-family job against the shared context.

    Args:
        context: Process-wide collaborators
        notify: Send a Telegram summary after each job
    """

    def __init__(self, context: IngestContext, *, notify: bool = True):
        self.context = context
        self.notify = notify

    async def _platform_for_enrichment(self) -> PlatformClient | None:
        tm = self.context.token_manager
        if not tm.is_ready:
            try:
                await tm.initialize()
            except EXCHANGE_FAILURES as e:
                logger.warning(f"Platform token unavailable, skipping account enrichment: {e}")
                return None
        if not tm.is_ready:
            logger.info("No platform credentials, skipping account enrichment")
            return None
        return self.context.platform

    async def build_source(self, job_name: str, db: AsyncSession, scope: JobScope) -> SyncSource:
        ctx = self.context
        if scope.org_slug and job_name not in ("organizations", "earnings"):
            raise ValueError(f"Scope '{scope}' is not supported for {job_name}")

        if job_name == "organizations":
            return OrganizationSyncSource(db, ctx.wiki)
        if job_name == "players":
            return PlayerSyncSource(db, ctx.wiki, platform=await self._platform_for_enrichment())
        if job_name == "tournaments":
            return TournamentSyncSource(db, ctx.platform)
        if job_name == "earnings":
            return EarningsSyncSource(db, ctx.wiki, org_slug=scope.org_slug)
        if job_name == "transfers":
            return TransferSyncSource(db, ctx.wiki)
        raise ValueError(f"Unknown job '{job_name}', expected one of {', '.join(JOB_NAMES)}")

    @staticmethod
    def target_filter(job_name: str, scope: JobScope):
        if scope.entity_id:
            return lambda target: target.canonical_id == scope.entity_id
        if scope.org_slug and job_name == "organizations":
            return lambda target: target.canonical_id == scope.org_slug
        return None

    async def run(
        self,
        job_name: str,
        scope: str | None = "all",
        *,
        stop_event: asyncio.Event | None = None,
    ) -> JobStats | None:
        """
        Run ``job_name`` for ``scope``.

        Returns:
            Final JobStats, or None when the same job is already running in this process

        Raises:
            ValueError: unknown job or unsupported scope
            FatalPipelineError: the pass was aborted
        """
        if job_name not in JOB_NAMES:
            raise ValueError(f"Unknown job '{job_name}', expected one of {', '.join(JOB_NAMES)}")
        parsed = JobScope.parse(scope)

        if job_name in self.context.running:
            logger.warning(f"Job {job_name} is already running, skipping")
            return None

        self.context.running.add(job_name)
        logger.info(f"Starting job {job_name} (scope={parsed})")
        try:
            async with self.context.session_factory() as db:
                source = await self.build_source(job_name, db, parsed)
                stats = await self.context.orchestrator.run(
                    source,
                    target_filter=self.target_filter(job_name, parsed),
                    stop_event=stop_event,
                )
                if job_name == "earnings" and (stats.created or stats.updated):
                    await recompute_earnings_rollups(db, org_slug=parsed.org_slug)
        except FatalPipelineError as e:
            logger.error(f"Job {job_name} aborted: {e}")
            if self.notify:
                await notify_job_failure(job_name, e)
            raise
        except Exception as e:
            logger.exception(f"Job {job_name} failed")
            if self.notify:
                await notify_job_failure(job_name, e)
            raise
        finally:
            self.context.running.discard(job_name)

        logger.info(f"Job finished - {stats.summary()}")
        if self.notify:
            await notify_job_result(stats)
        return stats


async def run_job(job_name: str, scope: str | None = "all", *, notify: bool = True) -> JobStats | None:
    """Run one job with the process-wide context."""
    return await JobRunner(get_ingest_context(), notify=notify).run(job_name, scope)


async def refresh_platform_token(context: IngestContext | None = None, *, notify: bool = True) -> dict:
    """
    Force a token refresh and report the new expiry.

    Raises:
        PlatformAuthError: when no credential could be exchanged
    """
    tm = (context or get_ingest_context()).token_manager
    try:
        await tm.refresh()
    except PlatformAuthError as e:
        logger.error(f"Scheduled token refresh failed: {e}")
        if notify:
            await notify_token_refresh(False, str(e))
        raise

    info = tm.token_info() or {}
    minutes = round(info.get("expires_in_seconds", 0) / 60)
    logger.info(f"Token refreshed, expires in {minutes} minutes")
    if notify:
        await notify_token_refresh(True, f"Account {info.get('account_id')}, expires in {minutes} minutes")
    return {
        "account_id": info.get("account_id"),
        "expires_at": info["expires_at"].isoformat() if info.get("expires_at") else None,
        "expires_in_minutes": minutes,
    }
