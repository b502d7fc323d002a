import html
import logging

import httpx

from esports_ingest.config import get_settings
from esports_ingest.services.sync.types import JobStats

logger = logging.getLogger(__name__)

# Item errors listed in a summary message; the rest are counted
MAX_LISTED_ERRORS = 5


async def send_telegram_message(text: str) -> None:
    settings = get_settings()
    if not settings.telegram_notifications_enabled:
        return
    if not settings.telegram_bot_token or not settings.telegram_chat_id:
        logger.warning("Telegram token/chat_id not configured, skipping notification")
        return

    url = f"https://api.telegram.org/bot{settings.telegram_bot_token}/sendMessage"
    payload = {
        "chat_id": settings.telegram_chat_id,
        "text": text,
        "parse_mode": "HTML",
    }
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            resp = await client.post(url, json=payload)
            if resp.status_code != 200:
                logger.error("Telegram API error %s: %s", resp.status_code, resp.text[:200])
    except Exception:
        logger.exception("Failed to send Telegram notification")


def format_job_stats(stats: JobStats) -> str:
    icon = "✅" if not stats.errors else "⚠️"
    lines = [
        f"{icon} Sync <b>{html.escape(stats.job_name)}</b> finished",
        "",
        f"➕ Created: {stats.created}",
        f"✏️ Updated: {stats.updated}",
        f"⏭ Skipped: {stats.skipped}",
        f"❌ Errors: {len(stats.errors)}",
        f"⏱ {stats.duration_seconds:.0f}s",
    ]
    if stats.cancelled:
        lines.append("\U0001f6d1 Cancelled before completion")
    if stats.errors:
        lines.append("")
        for error in stats.errors[:MAX_LISTED_ERRORS]:
            lines.append(f"• {html.escape(error.item_id)}: {html.escape(error.message[:150])}")
        remaining = len(stats.errors) - MAX_LISTED_ERRORS
        if remaining > 0:
            lines.append(f"… and {remaining} more")
    return "\n".join(lines)


def format_job_failure(job_name: str, error: BaseException) -> str:
    return (
        f"\U0001f6a8 Sync <b>{html.escape(job_name)}</b> failed\n\n"
        f"{html.escape(error.__class__.__name__)}: {html.escape(str(error)[:500])}"
    )


async def notify_job_result(stats: JobStats) -> None:
    await send_telegram_message(format_job_stats(stats))


async def notify_job_failure(job_name: str, error: BaseException) -> None:
    await send_telegram_message(format_job_failure(job_name, error))


async def notify_token_refresh(ok: bool, detail: str) -> None:
    if ok:
        text = f"\U0001f511 Platform token refreshed\n{html.escape(detail)}"
    else:
        text = f"\U0001f6a8 Platform token refresh <b>failed</b>\n{html.escape(detail)}"
    await send_telegram_message(text)
