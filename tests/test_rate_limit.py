import asyncio

import pytest

from wa_delivery.rate_limit import RateLimiter


@pytest.mark.asyncio
async def test_concurrent_admits_respect_ceiling(fake_clock):
    limiter = RateLimiter(max_calls=5, window_ms=1000, clock=fake_clock)

    results = await asyncio.gather(*(limiter.admit("pn-1") for _ in range(12)))

    assert results.count(True) == 5
    assert results.count(False) == 7
    assert limiter.snapshot("pn-1").count == 5


@pytest.mark.asyncio
async def test_under_ceiling_everything_admitted(fake_clock):
    limiter = RateLimiter(max_calls=80, window_ms=1000, clock=fake_clock)

    results = await asyncio.gather(*(limiter.admit("pn-1") for _ in range(30)))

    assert all(results)


@pytest.mark.asyncio
async def test_senders_have_independent_windows(fake_clock):
    limiter = RateLimiter(max_calls=1, window_ms=1000, clock=fake_clock)

    assert await limiter.admit("pn-1") is True
    assert await limiter.admit("pn-1") is False
    assert await limiter.admit("pn-2") is True


@pytest.mark.asyncio
async def test_window_resets_after_reset_time(fake_clock):
    limiter = RateLimiter(max_calls=2, window_ms=1000, clock=fake_clock)
    assert await limiter.admit("pn-1")
    assert await limiter.admit("pn-1")
    assert not await limiter.admit("pn-1")

    # Still inside the window at exactly reset_at
    fake_clock.advance(1.0)
    assert not await limiter.admit("pn-1")

    fake_clock.advance(0.001)
    assert await limiter.admit("pn-1")
    window = limiter.snapshot("pn-1")
    assert window.count == 1
    assert window.reset_at == pytest.approx(fake_clock.now + 1.0)


@pytest.mark.asyncio
async def test_seconds_until_reset_and_reset(fake_clock):
    limiter = RateLimiter(max_calls=1, window_ms=500, clock=fake_clock)
    assert limiter.seconds_until_reset("pn-1") == 0.0
    assert limiter.snapshot("pn-1") is None

    await limiter.admit("pn-1")
    fake_clock.advance(0.2)
    assert limiter.seconds_until_reset("pn-1") == pytest.approx(0.3)

    limiter.reset()
    assert limiter.snapshot("pn-1") is None
    assert await limiter.admit("pn-1") is True


def test_invalid_configuration_rejected():
    with pytest.raises(ValueError):
        RateLimiter(max_calls=0)
    with pytest.raises(ValueError):
        RateLimiter(window_ms=0)
