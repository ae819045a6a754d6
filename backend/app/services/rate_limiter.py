"""Fixed-window rate limiting over a pluggable quota store."""

from __future__ import annotations

import hashlib
import logging
import math
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from app.config import Settings
from app.core.clock import SystemClock, system_clock

logger = logging.getLogger(__name__)


class QuotaStore(Protocol):
    """Atomic increment-with-window contract."""

    def increment(self, key: str, window_seconds: int, now: float) -> Tuple[int, float]:
        """Count one request for key; returns (count in current window, window reset epoch)."""
        ...

    def peek(self, key: str, now: float) -> Optional[Tuple[int, float]]:
        """Current (count, window reset epoch) for key without counting, None when no live window."""
        ...


@dataclass
class _Window:
    count: int
    reset_at: float


OVERFLOW_KEY = "__overflow__"


class InMemoryQuotaStore:
    """
    Process-local counters.

    Correct for a single instance only; multiple instances each see a
    fraction of the traffic and admit up to N times the limit.

    Live windows are never evicted. Once max_keys live windows exist,
    clients without one share a single overflow window until stale
    windows can be pruned.
    """

    def __init__(self, max_keys: int = 100_000) -> None:
        self._lock = threading.Lock()
        self._windows: Dict[str, _Window] = {}
        self._max_keys = max(1, max_keys)

    def increment(self, key: str, window_seconds: int, now: float) -> Tuple[int, float]:
        with self._lock:
            if key not in self._windows and len(self._windows) >= self._max_keys:
                self._prune(now)
                if len(self._windows) >= self._max_keys:
                    key = OVERFLOW_KEY
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                if key == OVERFLOW_KEY:
                    logger.warning("Rate limiter at capacity %d; new clients share the overflow window",
                                   self._max_keys)
                window = _Window(count=1, reset_at=now + window_seconds)
                self._windows[key] = window
            else:
                window.count += 1
            return window.count, window.reset_at

    def peek(self, key: str, now: float) -> Optional[Tuple[int, float]]:
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                return None
            return window.count, window.reset_at

    def _prune(self, now: float) -> None:
        # Caller holds the lock
        for stale in [k for k, w in self._windows.items() if now >= w.reset_at]:
            del self._windows[stale]

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class RedisQuotaStore:
    """Counters shared by every instance through Redis."""

    _FIXED_WINDOW_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
  redis.call('PEXPIRE', KEYS[1], ARGV[1])
  ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""

    def __init__(self, client, prefix: str = "ratelimit") -> None:
        self.client = client
        self.prefix = prefix
        self._fixed_window = self.client.register_script(self._FIXED_WINDOW_SCRIPT)

    @classmethod
    def from_url(cls, redis_url: str, *, socket_timeout: float = 2.0) -> "RedisQuotaStore":
        from redis import Redis

        client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def _normalize_key(self, key: str) -> str:
        """Hash the caller key so user-controlled input cannot collide across namespaces."""
        digest = hashlib.sha256(key.encode()).hexdigest()
        return f"{self.prefix}:{digest}"

    def increment(self, key: str, window_seconds: int, now: float) -> Tuple[int, float]:
        count, ttl_ms = self._fixed_window(
            keys=[self._normalize_key(key)],
            args=[int(window_seconds * 1000)],
        )
        return int(count), now + int(ttl_ms) / 1000.0

    def peek(self, key: str, now: float) -> Optional[Tuple[int, float]]:
        name = self._normalize_key(key)
        count = self.client.get(name)
        ttl_ms = self.client.pttl(name)
        if count is None or ttl_ms is None or int(ttl_ms) < 0:
            return None
        return int(count), now + int(ttl_ms) / 1000.0


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    @property
    def reset_epoch(self) -> int:
        return int(math.ceil(self.reset_at))


class FixedWindowRateLimiter:
    """Count every request (admitted or rejected) and compare against the limit."""

    def __init__(
        self,
        store: QuotaStore,
        max_requests: int = 100,
        window_seconds: int = 60,
        clock: Optional[SystemClock] = None,
    ) -> None:
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock or system_clock

    @property
    def backend(self) -> str:
        return "redis" if isinstance(self.store, RedisQuotaStore) else "memory"

    def hit(self, key: str) -> RateLimitDecision:
        """
        Record one request for key

        Args:
            key: Client identity, e.g. "user:42" or "ip:10.0.0.1"

        Returns:
            RateLimitDecision: Whether to admit, plus header values
        """
        now = self.clock.timestamp()
        count, reset_at = self.store.increment(key, self.window_seconds, now)
        allowed = count <= self.max_requests
        retry_after = 0 if allowed else max(1, int(math.ceil(reset_at - now)))
        return RateLimitDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=reset_at,
            retry_after=retry_after,
        )

    def peek(self, key: str) -> RateLimitDecision:
        """Quota state for key without counting a request; used where limiting does not apply."""
        now = self.clock.timestamp()
        current = self.store.peek(key, now)
        count, reset_at = current if current is not None else (0, now + self.window_seconds)
        return RateLimitDecision(
            allowed=True,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=reset_at,
            retry_after=0,
        )


def build_rate_limiter(app_settings: Settings, clock: Optional[SystemClock] = None) -> FixedWindowRateLimiter:
    """Select the quota store named by RATE_LIMIT_BACKEND."""
    backend = app_settings.RATE_LIMIT_BACKEND.lower().strip()
    if backend == "redis":
        store = RedisQuotaStore.from_url(app_settings.REDIS_URL)
    elif backend == "memory":
        store = InMemoryQuotaStore(max_keys=app_settings.RATE_LIMIT_MAX_TRACKED_KEYS)
    else:
        raise RuntimeError(f"Unknown RATE_LIMIT_BACKEND: {app_settings.RATE_LIMIT_BACKEND}")
    logger.info("Rate limiter backend: %s (%d requests / %ds)", backend,
                app_settings.RATE_LIMIT_MAX_REQUESTS, app_settings.RATE_LIMIT_WINDOW_SECONDS)
    return FixedWindowRateLimiter(
        store,
        max_requests=app_settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=app_settings.RATE_LIMIT_WINDOW_SECONDS,
        clock=clock,
    )
