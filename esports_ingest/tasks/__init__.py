from celery import Celery
from celery.schedules import crontab

from esports_ingest.config import get_settings

settings = get_settings()

celery_app = Celery(
    "esports_ingest_tasks",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["esports_ingest.tasks.sync_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Jobs hold a per-host rate limiter and one token; keep them in one worker process
    worker_prefetch_multiplier=1,
)

if settings.sync_schedule_enabled:
    celery_app.conf.beat_schedule = {
        "refresh-platform-token-every-4h": {
            "task": "esports_ingest.tasks.sync_tasks.refresh_platform_token",
            "schedule": crontab(minute=0, hour="*/4"),
        },
        "sync-organizations-every-12h": {
            "task": "esports_ingest.tasks.sync_tasks.sync_organizations",
            "schedule": crontab(minute=30, hour="*/12"),
        },
        "sync-players-daily": {
            "task": "esports_ingest.tasks.sync_tasks.sync_players",
            "schedule": crontab(hour=2, minute=0),
        },
        "sync-earnings-daily": {
            "task": "esports_ingest.tasks.sync_tasks.sync_earnings",
            "schedule": crontab(hour=3, minute=0),
        },
        "sync-tournaments-every-6h": {
            "task": "esports_ingest.tasks.sync_tasks.sync_tournaments",
            "schedule": crontab(minute=15, hour="*/6"),
        },
        "sync-transfers-daily": {
            "task": "esports_ingest.tasks.sync_tasks.sync_transfers",
            "schedule": crontab(hour=6, minute=0),
        },
    }
else:
    celery_app.conf.beat_schedule = {}
