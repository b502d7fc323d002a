"""
Celery tasks for scheduled ingestion.

Every task runs its job on the worker's shared event loop so the rate
limiter and token manager carry over between invocations.
"""
import logging

from celery.signals import worker_process_shutdown

from esports_ingest.services.jobs import refresh_platform_token as _refresh_platform_token
from esports_ingest.services.jobs import run_job
from esports_ingest.tasks import celery_app
from esports_ingest.utils.async_celery import cleanup_event_loop, run_async

logger = logging.getLogger(__name__)


def _run(job_name: str, scope: str = "all") -> dict:
    stats = run_async(run_job(job_name, scope))
    if stats is None:
        return {"job_name": job_name, "skipped": True, "reason": "already running"}
    return stats.to_dict()


@celery_app.task(name="esports_ingest.tasks.sync_tasks.sync_organizations")
def sync_organizations(scope: str = "all"):
    """Celery task: Sync organizations from the wiki."""
    return _run("organizations", scope)


@celery_app.task(name="esports_ingest.tasks.sync_tasks.sync_players")
def sync_players(scope: str = "all"):
    """Celery task: Sync players from the wiki, with account enrichment."""
    return _run("players", scope)


@celery_app.task(name="esports_ingest.tasks.sync_tasks.sync_tournaments")
def sync_tournaments(scope: str = "all"):
    """Celery task: Sync tournaments from the platform events API."""
    return _run("tournaments", scope)


@celery_app.task(name="esports_ingest.tasks.sync_tasks.sync_earnings")
def sync_earnings(scope: str = "all"):
    """Celery task: Sync player earnings and recompute organization totals."""
    return _run("earnings", scope)


@celery_app.task(name="esports_ingest.tasks.sync_tasks.sync_transfers")
def sync_transfers(scope: str = "all"):
    """Celery task: Sync roster transfers."""
    return _run("transfers", scope)


@celery_app.task(name="esports_ingest.tasks.sync_tasks.refresh_platform_token")
def refresh_platform_token():
    """Celery task: Refresh the platform token ahead of expiry."""
    return run_async(_refresh_platform_token())


@worker_process_shutdown.connect
def _close_event_loop(**kwargs):
    cleanup_event_loop()
