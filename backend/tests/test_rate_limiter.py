import threading

from app.services.rate_limiter import (
    FixedWindowRateLimiter,
    InMemoryQuotaStore,
    RedisQuotaStore,
    build_rate_limiter,
)


class FakeRedisScript:
    """Evaluates the fixed-window script against a dict, the way Redis would."""

    def __init__(self, server):
        self.server = server

    def __call__(self, keys, args):
        key, window_ms = keys[0], int(args[0])
        with self.server.lock:
            count, ttl = self.server.data.get(key, (0, -2))
            count += 1
            if count == 1 or ttl < 0:
                ttl = window_ms
            self.server.data[key] = (count, ttl)
            return [count, ttl]


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.lock = threading.Lock()
        self.scripts = []

    def register_script(self, script):
        self.scripts.append(script)
        return FakeRedisScript(self)

    def get(self, name):
        entry = self.data.get(name)
        return None if entry is None else str(entry[0])

    def pttl(self, name):
        entry = self.data.get(name)
        return -2 if entry is None else entry[1]


def _limiter(clock, max_requests=100, window_seconds=60, store=None):
    return FixedWindowRateLimiter(store if store is not None else InMemoryQuotaStore(), max_requests, window_seconds, clock)


def test_counts_down_then_rejects(clock):
    limiter = _limiter(clock)

    remaining = [limiter.hit("ip:1.2.3.4").remaining for _ in range(100)]
    rejected = limiter.hit("ip:1.2.3.4")

    assert remaining == list(range(99, -1, -1))
    assert rejected.allowed is False
    assert rejected.remaining == 0
    assert rejected.limit == 100
    assert rejected.retry_after == 60


def test_retry_after_shrinks_as_window_ages(clock):
    limiter = _limiter(clock, max_requests=1)
    first = limiter.hit("k")
    clock.advance(seconds=45.5)

    decision = limiter.hit("k")

    assert not decision.allowed
    assert decision.retry_after == 15
    assert decision.reset_epoch == first.reset_epoch


def test_window_resets_after_expiry(clock):
    limiter = _limiter(clock, max_requests=2)
    limiter.hit("k")
    limiter.hit("k")
    assert not limiter.hit("k").allowed

    clock.advance(seconds=60)
    fresh = limiter.hit("k")

    assert fresh.allowed
    assert fresh.remaining == 1


def test_keys_are_independent(clock):
    limiter = _limiter(clock, max_requests=1)
    assert limiter.hit("user:1").allowed
    assert not limiter.hit("user:1").allowed
    assert limiter.hit("user:2").allowed


def test_concurrent_hits_lose_no_increments(clock):
    store = InMemoryQuotaStore()
    limiter = _limiter(clock, max_requests=10_000, store=store)
    seen = []
    lock = threading.Lock()

    def burst():
        counts = [limiter.max_requests - limiter.hit("shared").remaining for _ in range(200)]
        with lock:
            seen.extend(counts)

    threads = [threading.Thread(target=burst) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(seen) == list(range(1, 2001))


def test_memory_store_prunes_expired_windows_at_capacity(clock):
    store = InMemoryQuotaStore(max_keys=3)
    now = clock.timestamp()
    for key in ("a", "b", "c"):
        store.increment(key, 10, now)

    store.increment("d", 10, now + 10)

    assert len(store) == 1


def test_memory_store_keeps_live_windows_when_full(clock):
    store = InMemoryQuotaStore(max_keys=10)
    limiter = _limiter(clock, max_requests=2, store=store)
    limiter.hit("victim")
    limiter.hit("victim")
    assert limiter.hit("victim").allowed is False

    for index in range(20):
        limiter.hit(f"spray-{index}")

    blocked = limiter.hit("victim")
    assert blocked.allowed is False
    assert blocked.remaining == 0
    # New clients past capacity share one window
    assert store.increment("late-comer", 60, clock.timestamp())[0] > 1
    assert len(store) == 11


def test_peek_reports_quota_without_counting(clock):
    limiter = _limiter(clock, max_requests=5)
    fresh = limiter.peek("k")
    limiter.hit("k")
    limiter.hit("k")

    assert fresh.remaining == 5 and fresh.allowed
    assert limiter.peek("k").remaining == 3
    assert limiter.peek("k").remaining == 3
    assert limiter.hit("k").remaining == 2


def test_redis_store_hashes_keys_and_sets_expiry_once(clock):
    server = FakeRedis()
    store = RedisQuotaStore(server)
    limiter = _limiter(clock, max_requests=2, store=store)

    first = limiter.hit("ip:10.0.0.1")
    limiter.hit("ip:10.0.0.1")
    third = limiter.hit("ip:10.0.0.1")

    assert limiter.backend == "redis"
    assert len(server.scripts) == 1
    [(key, (count, ttl))] = server.data.items()
    assert key.startswith("ratelimit:")
    assert "10.0.0.1" not in key
    assert count == 3
    assert ttl == 60_000
    assert first.allowed and first.remaining == 1
    assert not third.allowed
    assert third.retry_after == 60


def test_build_rate_limiter_defaults_to_memory(settings, clock):
    limiter = build_rate_limiter(settings, clock)
    assert limiter.backend == "memory"
    assert limiter.max_requests == settings.RATE_LIMIT_MAX_REQUESTS


def test_redis_store_peek_reads_without_incrementing(clock):
    server = FakeRedis()
    limiter = _limiter(clock, max_requests=3, store=RedisQuotaStore(server))

    assert limiter.peek("ip:10.0.0.2").remaining == 3
    limiter.hit("ip:10.0.0.2")
    status = limiter.peek("ip:10.0.0.2")

    assert status.remaining == 2
    assert status.reset_epoch == int(clock.timestamp()) + 60
    [(count, _)] = server.data.values()
    assert count == 1
