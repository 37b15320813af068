"""
tests/test_rate_limit.py
Tests for the fixed-window rate limiter and its HTTP middleware.
"""

import asyncio
import threading

import pytest
from httpx import AsyncClient

from main import app
from shared.middleware.rate_limit import (
    FixedWindowRateLimiter,
    RateLimitDecision,
    RedisRateLimiter,
    rate_limit_response_body,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Window Semantics ──────────────────────────────────────────

def test_allows_up_to_limit_then_blocks():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=3, clock=clock)

    decisions = [limiter.check("ip") for _ in range(4)]

    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert [d.remaining for d in decisions] == [2, 1, 0, 0]
    assert decisions[-1].retry_after == 60


def test_retry_after_rounds_up_and_is_at_least_one():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=1, clock=clock)
    limiter.check("ip")

    clock.advance(59.2)
    assert limiter.check("ip").retry_after == 1

    clock.advance(0.79)
    assert limiter.check("ip").retry_after == 1


def test_window_resets_exactly_at_reset_time():
    """A window whose reset_at equals now has expired."""
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=1, clock=clock)
    first = limiter.check("ip")
    assert not limiter.check("ip").allowed

    clock.advance(60)
    fresh = limiter.check("ip")
    assert fresh.allowed
    assert fresh.remaining == 0
    assert fresh.reset_at == first.reset_at + 60


def test_keys_are_independent():
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=1, clock=FakeClock())
    assert limiter.check("a").allowed
    assert limiter.check("b").allowed
    assert not limiter.check("a").allowed


def test_sweep_removes_only_expired_windows():
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=5, clock=clock)
    limiter.check("old")
    clock.advance(30)
    limiter.check("new")
    clock.advance(30)

    assert limiter.sweep() == 1
    assert len(limiter) == 1


def test_concurrent_checks_never_over_admit():
    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=50)
    results = []
    lock = threading.Lock()

    def worker():
        for _ in range(20):
            decision = limiter.check("shared")
            with lock:
                results.append(decision.allowed)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 200
    assert results.count(True) == 50


def test_invalid_configuration_rejected():
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(window_seconds=0, max_requests=10)
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(window_seconds=10, max_requests=0)


def test_decision_headers_use_iso_reset():
    decision = RateLimitDecision(
        allowed=True, limit=100, remaining=99, reset_at=1_700_000_900.0, retry_after=0
    )
    assert decision.headers() == {
        "X-RateLimit-Limit": "100",
        "X-RateLimit-Remaining": "99",
        "X-RateLimit-Reset": "2023-11-14T22:28:20Z",
    }


def test_response_body_shape():
    decision = RateLimitDecision(allowed=False, limit=1, remaining=0, reset_at=0.0, retry_after=42)
    assert rate_limit_response_body(decision) == {
        "error": "Too Many Requests",
        "message": "Rate limit exceeded. Please try again later.",
        "retryAfterSeconds": 42,
    }


# ── Redis Backend ─────────────────────────────────────────────

class _FakePipeline:
    def __init__(self, store):
        self.store = store
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))

    def pttl(self, key):
        self.ops.append(("pttl", key))

    async def execute(self):
        out = []
        for op, key in self.ops:
            if op == "incr":
                count, ttl = self.store.get(key, (0, -1))
                self.store[key] = (count + 1, ttl)
                out.append(count + 1)
            else:
                out.append(self.store.get(key, (0, -2))[1])
        return out


class _FakeRedis:
    def __init__(self):
        self.store = {}

    def pipeline(self):
        return _FakePipeline(self.store)

    async def pexpire(self, key, ms):
        count, _ = self.store[key]
        self.store[key] = (count, ms)


@pytest.mark.asyncio
async def test_redis_limiter_sets_expiry_on_first_hit():
    fake = _FakeRedis()
    limiter = RedisRateLimiter(lambda: fake, window_seconds=60, max_requests=2, clock=FakeClock())

    first = await limiter.is_allowed("rate_limit:ip")
    second = await limiter.is_allowed("rate_limit:ip")
    third = await limiter.is_allowed("rate_limit:ip")

    assert fake.store["rate_limit:ip"] == (3, 60_000)
    assert [first.allowed, second.allowed, third.allowed] == [True, True, False]
    assert third.retry_after == 60


# ── Middleware ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_middleware_returns_429_with_headers(client: AsyncClient):
    app.state.rate_limiter = FixedWindowRateLimiter(window_seconds=900, max_requests=2)
    payload = {"query": "query { trips { totalCount } }"}

    ok = await client.post("/graphql", json=payload)
    assert ok.status_code == 200
    assert ok.headers["X-RateLimit-Limit"] == "2"
    assert ok.headers["X-RateLimit-Remaining"] == "1"
    assert ok.headers["X-RateLimit-Reset"].endswith("Z")

    await client.post("/graphql", json=payload)
    blocked = await client.post("/graphql", json=payload)

    assert blocked.status_code == 429
    assert int(blocked.headers["Retry-After"]) >= 1
    assert blocked.json()["error"] == "Too Many Requests"


@pytest.mark.asyncio
async def test_health_is_exempt(client: AsyncClient):
    app.state.rate_limiter = FixedWindowRateLimiter(window_seconds=900, max_requests=1)

    for _ in range(3):
        response = await client.get("/health")
        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers


@pytest.mark.asyncio
async def test_forwarded_for_separates_clients(client: AsyncClient):
    app.state.rate_limiter = FixedWindowRateLimiter(window_seconds=900, max_requests=1)

    a = await client.get("/", headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.1"})
    b = await client.get("/", headers={"X-Forwarded-For": "10.0.0.2"})
    a_again = await client.get("/", headers={"X-Forwarded-For": "10.0.0.1"})

    assert (a.status_code, b.status_code, a_again.status_code) == (200, 200, 429)


@pytest.mark.asyncio
async def test_sweeper_task_can_be_cancelled():
    from shared.middleware.rate_limit import run_sweeper

    limiter = FixedWindowRateLimiter(window_seconds=60, max_requests=1)
    task = asyncio.create_task(run_sweeper(limiter, 0.01))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
