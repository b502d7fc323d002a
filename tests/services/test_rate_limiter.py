import asyncio
from unittest.mock import patch

import pytest

from esports_ingest.services.rate_limiter import RateLimiter


@pytest.mark.asyncio
class TestRateLimiterSpacing:
    async def test_consecutive_acquires_are_spaced_by_host_delay(self, fake_clock):
        limiter = RateLimiter({"liquipedia.net": 2.0}, clock=fake_clock)

        for _ in range(3):
            await limiter.acquire("liquipedia.net")

        assert fake_clock.sleeps == [2.0, 2.0]
        assert fake_clock.now == 4.0

    async def test_hosts_are_independent(self, fake_clock):
        limiter = RateLimiter({"a.test": 5.0, "b.test": 5.0}, clock=fake_clock)

        await limiter.acquire("a.test")
        await limiter.acquire("b.test")

        assert fake_clock.sleeps == []

    async def test_unlisted_host_uses_default_delay(self, fake_clock):
        limiter = RateLimiter({"a.test": 5.0}, clock=fake_clock)

        await limiter.acquire("other.test")
        await limiter.acquire("other.test")

        assert fake_clock.sleeps == []

    async def test_concurrent_callers_are_granted_in_sequence(self, fake_clock):
        limiter = RateLimiter({"h.test": 1.0}, clock=fake_clock)
        grants = []

        async def take():
            await limiter.acquire("h.test")
            grants.append(fake_clock.monotonic())

        await asyncio.gather(take(), take(), take())

        assert grants == [0.0, 1.0, 2.0]

    async def test_jitter_is_added_to_spacing(self, fake_clock):
        limiter = RateLimiter({"h.test": 2.0}, jitter=0.5, clock=fake_clock)

        with patch("esports_ingest.services.rate_limiter.random.uniform", return_value=0.25):
            await limiter.acquire("h.test")

        assert limiter.next_allowed("h.test") == 2.25


@pytest.mark.asyncio
class TestRateLimiterPenalties:
    async def test_penalty_doubles_per_consecutive_throttle(self, fake_clock):
        limiter = RateLimiter(backoff_base=2.0, max_backoff=60.0, clock=fake_clock)

        assert limiter.penalize("h.test") == 2.0
        assert limiter.penalize("h.test") == 4.0
        assert limiter.penalize("h.test") == 8.0

    async def test_penalty_is_capped(self, fake_clock):
        limiter = RateLimiter(backoff_base=2.0, max_backoff=5.0, clock=fake_clock)

        for _ in range(5):
            next_allowed = limiter.penalize("h.test")

        assert next_allowed == 5.0

    async def test_retry_after_hint_extends_backoff(self, fake_clock):
        limiter = RateLimiter(backoff_base=2.0, max_backoff=60.0, clock=fake_clock)

        assert limiter.penalize("h.test", suggested_delay=30.0) == 30.0

    async def test_next_acquire_waits_out_the_penalty(self, fake_clock):
        limiter = RateLimiter(backoff_base=3.0, clock=fake_clock)

        limiter.penalize("h.test")
        await limiter.acquire("h.test")

        assert fake_clock.sleeps == [3.0]

    async def test_success_resets_the_penalty_counter(self, fake_clock):
        limiter = RateLimiter(backoff_base=2.0, clock=fake_clock)
        limiter.penalize("h.test")
        limiter.penalize("h.test")

        fake_clock.now = 100.0
        limiter.record_success("h.test")

        assert limiter.penalize("h.test") == 102.0

    async def test_penalty_never_moves_next_slot_earlier(self, fake_clock):
        limiter = RateLimiter({"h.test": 10.0}, backoff_base=1.0, clock=fake_clock)
        await limiter.acquire("h.test")

        limiter.penalize("h.test")

        assert limiter.next_allowed("h.test") == 10.0

    async def test_penalty_during_pending_wait_delays_the_grant(self, clock_factory):
        penalties = []

        class ThrottledWhileSleeping(clock_factory):
            async def sleep(self, seconds: float) -> None:
                # An in-flight request is throttled while this caller waits
                if not penalties:
                    penalties.append(limiter.penalize("h.test"))
                await super().sleep(seconds)

        clock = ThrottledWhileSleeping()
        limiter = RateLimiter({"h.test": 2.0}, backoff_base=10.0, clock=clock)
        await limiter.acquire("h.test")

        await limiter.acquire("h.test")

        assert penalties == [10.0]
        assert clock.sleeps == [2.0, 8.0]
        assert clock.now == 10.0
