"""
Shared helpers for sync sources.

Value parsing for scraped fields and translation of HTTP outcomes into the
sync error taxonomy, used by every source client and entity family.
"""
import hashlib
import logging
import re
from datetime import datetime, date, timedelta
from typing import Any

import httpx

from esports_ingest.services.rate_limiter import RateLimiter
from esports_ingest.services.sync.errors import (
    AuthFetchError,
    ItemNotFoundError,
    PermanentItemError,
    TransientFetchError,
)
from esports_ingest.services.sync.types import IndexEntry
from esports_ingest.utils.timestamps import as_utc

logger = logging.getLogger(__name__)

# Transport failures worth another attempt
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.ReadError,
)

THROTTLE_STATUSES = {429, 503}


# ==================== Value parsing ====================

_DATE_FORMATS = ("%Y-%m-%d", "%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%Y/%m/%d")


def parse_date(value: Any) -> date | None:
    """Parse date from string or return None."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        # Infobox dates often carry a trailing "(age 23)"
        text = re.sub(r"\s*\(.*?\)\s*$", "", text)
        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    return None


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO-8601 timestamps as returned by the platform API."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def parse_money(value: Any) -> float | None:
    """'$1,250,000' -> 1250000.0"""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = re.sub(r"[^\d.]", "", str(value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_placement(value: Any) -> int | None:
    """'1st' -> 1, '3rd-4th' -> 3"""
    if value is None:
        return None
    match = re.search(r"\d+", str(value))
    return int(match.group()) if match else None


def clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text or None


def title_to_slug(title: str) -> str:
    """Wiki page title -> stable canonical slug."""
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def content_hash(*parts: Any) -> str:
    joined = "|".join("" if p is None else str(p).strip().lower() for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:40]


# ==================== HTTP outcome translation ====================

def retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def check_response(
    response: httpx.Response,
    *,
    host_key: str,
    rate_limiter: RateLimiter | None = None,
    item_id: str | None = None,
) -> httpx.Response:
    """
    Raise the sync error matching a non-2xx response.

    Throttling statuses are reported to the rate limiter before raising so
    the next ``acquire`` for the host waits out the backoff.
    """
    status = response.status_code
    if status < 400:
        if rate_limiter is not None:
            rate_limiter.record_success(host_key)
        return response

    label = item_id or str(response.request.url)
    if status in THROTTLE_STATUSES:
        if rate_limiter is not None:
            rate_limiter.penalize(host_key, retry_after_seconds(response))
        raise TransientFetchError(f"{host_key} throttled ({status}) on {label}", status_code=status)
    if status >= 500:
        raise TransientFetchError(f"{host_key} returned {status} for {label}", status_code=status)
    if status in (401, 403):
        raise AuthFetchError(f"{host_key} rejected credentials ({status}) for {label}", status_code=status)
    if status == 404:
        raise ItemNotFoundError(f"{label} not found on {host_key}")
    raise PermanentItemError(f"{host_key} returned {status} for {label}")


def translate_transport_error(exc: Exception, host_key: str) -> TransientFetchError:
    return TransientFetchError(f"{host_key} request failed: {exc.__class__.__name__}: {exc}")


# ==================== Staleness ====================

def is_stale_by_age(
    entry: IndexEntry | None,
    completeness_hint: datetime | None,
    stale_after: timedelta,
    now: datetime,
) -> bool:
    """
    Default staleness rule.

    Unknown ids are stale. A remote hint newer than the stored
    ``source_updated_at`` is stale. Complete entities are never refreshed by
    age; everything else is once ``stale_after`` has passed since the last sync.
    """
    if entry is None or entry.last_synced_at is None:
        return True
    if completeness_hint is not None and (
        entry.source_updated_at is None or as_utc(completeness_hint) > as_utc(entry.source_updated_at)
    ):
        return True
    if entry.complete:
        return False
    return as_utc(now) - as_utc(entry.last_synced_at) >= stale_after
