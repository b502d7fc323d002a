"""
Per-host request spacing for outbound calls.

Every source client calls ``acquire(host)`` before a request. Hosts have a
minimum spacing between granted slots; a caller that sees a throttling
response reports it with ``penalize(host)``, which pushes the next slot out
with exponential backoff. State lives in memory only and resets on restart.
"""
import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class MonotonicClock:
    """Wall clock backed by ``time.monotonic`` and ``asyncio.sleep``."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass
class _HostBucket:
    min_delay: float
    last_granted: float | None = None
    next_allowed: float = 0.0
    penalties: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class RateLimiter:
    """
    Shared limiter keyed by remote host.

    Args:
        host_delays: Minimum seconds between requests, per host key
        default_delay: Spacing for hosts not listed (0 = unbounded)
        jitter: Upper bound of a uniform random delay added to each spacing
        backoff_base: First penalty delay; doubles on each consecutive penalty
        max_backoff: Cap for a single penalty delay
        clock: Time source (virtual clock in tests)
    """

    def __init__(
        self,
        host_delays: dict[str, float] | None = None,
        *,
        default_delay: float = 0.0,
        jitter: float = 0.0,
        backoff_base: float = 2.0,
        max_backoff: float = 60.0,
        clock: Clock | None = None,
    ):
        self.host_delays = dict(host_delays or {})
        self.default_delay = default_delay
        self.jitter = jitter
        self.backoff_base = backoff_base
        self.max_backoff = max_backoff
        self.clock = clock or MonotonicClock()
        self._buckets: dict[str, _HostBucket] = {}

    def _bucket(self, host_key: str) -> _HostBucket:
        bucket = self._buckets.get(host_key)
        if bucket is None:
            bucket = _HostBucket(min_delay=self.host_delays.get(host_key, self.default_delay))
            self._buckets[host_key] = bucket
        return bucket

    async def acquire(self, host_key: str) -> None:
        """Wait until one more request to ``host_key`` may be issued."""
        bucket = self._bucket(host_key)
        async with bucket.lock:
            # A penalty may move next_allowed while we sleep
            wait = bucket.next_allowed - self.clock.monotonic()
            while wait > 0:
                logger.debug(f"Rate limit: waiting {wait:.2f}s for {host_key}")
                await self.clock.sleep(wait)
                wait = bucket.next_allowed - self.clock.monotonic()

            now = self.clock.monotonic()
            bucket.last_granted = now
            spacing = bucket.min_delay
            if spacing > 0 and self.jitter > 0:
                spacing += random.uniform(0, self.jitter)
            bucket.next_allowed = max(bucket.next_allowed, now + spacing)

    def penalize(self, host_key: str, suggested_delay: float | None = None) -> float:
        """
        Report a throttling response from ``host_key``.

        Returns the new next-allowed monotonic timestamp.
        """
        bucket = self._bucket(host_key)
        bucket.penalties += 1
        delay = self.backoff_base * (2 ** (bucket.penalties - 1))
        if suggested_delay is not None:
            delay = max(delay, suggested_delay)
        delay = min(delay, self.max_backoff)

        bucket.next_allowed = max(bucket.next_allowed, self.clock.monotonic() + delay)
        logger.warning(
            f"Throttled by {host_key} (penalty #{bucket.penalties}), backing off {delay:.1f}s"
        )
        return bucket.next_allowed

    def record_success(self, host_key: str) -> None:
        """Reset the consecutive-penalty counter after a successful request."""
        bucket = self._buckets.get(host_key)
        if bucket is not None:
            bucket.penalties = 0

    def next_allowed(self, host_key: str) -> float:
        return self._bucket(host_key).next_allowed
