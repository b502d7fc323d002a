"""
Sync orchestrator.

Drives one incremental pass for an entity family:

1. Build the local index (one batched query)
2. Stream catalog pages, skipping targets the index says are fresh
3. Fetch each stale target under the rate limiter, retrying transient
   failures per item
4. Merge-upsert the resulting records
5. Return frozen JobStats

One bad item never aborts the pass. Only an unreachable catalog, an
unavailable store or a run of auth failures does (FatalPipelineError).
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx
from sqlalchemy.exc import InterfaceError, OperationalError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from esports_ingest.config import Settings
from esports_ingest.services.platform_auth import PlatformAuthError
from esports_ingest.services.rate_limiter import RateLimiter
from esports_ingest.services.sync.errors import (
    AuthFetchError,
    EmptyResultError,
    FatalPipelineError,
    SyncError,
    TransientFetchError,
)
from esports_ingest.services.sync.types import (
    CatalogPage,
    JobStats,
    LocalRecord,
    StatsAccumulator,
    SyncSource,
    SyncTarget,
)

logger = logging.getLogger(__name__)

# Store failures that mean the database itself is gone
STORE_UNAVAILABLE = (OperationalError, InterfaceError)

# Item failures that count towards the consecutive-auth-failure threshold
AUTH_FAILURES = (AuthFetchError, PlatformAuthError)


class SyncOrchestrator:
    """
    Generic incremental sync engine.

    Args:
        rate_limiter: Shared per-host limiter; one slot per fetch attempt
        max_attempts: Attempts per item (and per catalog page) for transient errors
        retry_min_seconds: Lower bound of the exponential retry wait
        retry_max_seconds: Upper bound of the exponential retry wait
        auth_failure_threshold: Consecutive auth-failed items that abort the job
        sleep: Sleep used between retries (tests pass a no-op)
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        *,
        max_attempts: int = 3,
        retry_min_seconds: float = 2.0,
        retry_max_seconds: float = 30.0,
        auth_failure_threshold: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.rate_limiter = rate_limiter
        self.max_attempts = max_attempts
        self.retry_min_seconds = retry_min_seconds
        self.retry_max_seconds = retry_max_seconds
        self.auth_failure_threshold = auth_failure_threshold
        self.sleep = sleep

    @classmethod
    def from_settings(cls, rate_limiter: RateLimiter, settings: Settings) -> "SyncOrchestrator":
        return cls(
            rate_limiter,
            max_attempts=settings.sync_max_attempts,
            retry_min_seconds=settings.sync_retry_min_seconds,
            retry_max_seconds=settings.sync_retry_max_seconds,
            auth_failure_threshold=settings.sync_auth_failure_threshold,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=self.retry_min_seconds, max=self.retry_max_seconds),
            retry=retry_if_exception_type(TransientFetchError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )

    # ==================== Pass ====================

    async def run(
        self,
        source: SyncSource,
        *,
        target_filter: Callable[[SyncTarget], bool] | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> JobStats:
        """
        Run one full (or filtered) pass for ``source``.

        Args:
            source: Entity-family capabilities
            target_filter: Keep only targets for which this returns True
            stop_event: When set, no new fetches are issued and the stats so far are returned

        Raises:
            FatalPipelineError: catalog unreachable, store unavailable, auth threshold reached
        """
        stats = StatsAccumulator(job_name=source.name)
        logger.info(f"Starting {source.name} sync")

        try:
            local_index = await source.load_local_index()
        except STORE_UNAVAILABLE as e:
            raise FatalPipelineError(f"{source.name}: store unavailable: {e}") from e

        consecutive_auth_failures = 0
        seen: set[str] = set()
        continuation: str | None = None

        while True:
            page = await self._list_catalog(source, continuation)

            for target in page.targets:
                if stop_event is not None and stop_event.is_set():
                    logger.info(f"{source.name} sync cancelled")
                    stats.cancelled = True
                    return self._finish(stats)

                if target.canonical_id in seen:
                    continue
                seen.add(target.canonical_id)

                if target_filter is not None and not target_filter(target):
                    continue
                if not source.is_stale(target, local_index):
                    stats.skipped += 1
                    continue

                try:
                    await self._reconcile(source, target, stats)
                except STORE_UNAVAILABLE as e:
                    raise FatalPipelineError(f"{source.name}: store unavailable: {e}") from e
                except AUTH_FAILURES as e:
                    consecutive_auth_failures += 1
                    self._item_failed(stats, target, e)
                    if consecutive_auth_failures >= self.auth_failure_threshold:
                        raise FatalPipelineError(
                            f"{source.name}: {consecutive_auth_failures} consecutive auth failures, aborting"
                        ) from e
                except SyncError as e:
                    self._item_failed(stats, target, e)
                except Exception as e:
                    # Parser bugs on one odd page must not stop the pass
                    logger.exception(f"{source.name}: unexpected error on {target.canonical_id}")
                    self._item_failed(stats, target, e)
                else:
                    consecutive_auth_failures = 0

            continuation = page.next_continuation
            if not continuation:
                break

        return self._finish(stats)

    async def _list_catalog(self, source: SyncSource, continuation: str | None) -> CatalogPage:
        # Catalogs built from the local store make no request
        remote = getattr(source, "fetches_catalog", True)
        try:
            async for attempt in self._retrying():
                with attempt:
                    if remote:
                        await self.rate_limiter.acquire(source.host_key)
                    return await source.list_catalog(continuation)
        except (SyncError, PlatformAuthError, httpx.HTTPError) as e:
            raise FatalPipelineError(f"{source.name}: catalog unreachable: {e}") from e
        except STORE_UNAVAILABLE as e:
            raise FatalPipelineError(f"{source.name}: store unavailable: {e}") from e

    async def _fetch_detail(self, source: SyncSource, target: SyncTarget) -> Any | None:
        # Sources whose catalog already carries each item make no request here
        remote = getattr(source, "fetches_detail", True)
        async for attempt in self._retrying():
            with attempt:
                if remote:
                    await self.rate_limiter.acquire(source.host_key)
                return await source.fetch_detail(target)

    async def _reconcile(self, source: SyncSource, target: SyncTarget, stats: StatsAccumulator) -> None:
        item = await self._fetch_detail(source, target)
        if item is None:
            raise EmptyResultError(f"No data returned for {target.canonical_id}")

        records = source.to_local_records(item)
        if isinstance(records, LocalRecord):
            records = [records]
        if not records:
            raise EmptyResultError(f"No records parsed for {target.canonical_id}")

        # Counted only once every record of the item is stored; rows written
        # before a failing one stay committed and are re-merged on the next pass
        outcomes = [await source.upsert(record) for record in records]
        for outcome in outcomes:
            stats.record(outcome)

    def _item_failed(self, stats: StatsAccumulator, target: SyncTarget, error: Exception) -> None:
        message = f"{error.__class__.__name__}: {error}"
        logger.warning(f"Failed to sync {target.canonical_id}: {message}")
        stats.add_error(target.canonical_id, message)

    def _finish(self, stats: StatsAccumulator) -> JobStats:
        result = stats.freeze()
        logger.info(f"Sync complete - {result.summary()}")
        return result
