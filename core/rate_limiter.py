"""
Fixed-window rate limiter keyed by (identity, endpoint class)

Guards login, impersonation and other sensitive operations:
- allow() increments the current window and returns False once count > limit
- the counter resets when the window rolls over
- memory backend for a single process, Redis backend for a fleet
- graceful degradation on Redis failure (configurable)
"""
import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

import redis
from prometheus_client import Counter, Histogram

from core.clock import Clock, utcnow
from core.exceptions import RateLimited

logger = logging.getLogger(__name__)

rate_limit_exceeded = Counter(
    'auth_rate_limit_exceeded_total',
    'Requests rejected by the rate limiter',
    ['endpoint_class']
)

rate_limit_backend_failures = Counter(
    'auth_rate_limit_backend_failures_total',
    'Rate limit backend errors',
    ['backend']
)

rate_limit_check_latency = Histogram(
    'auth_rate_limit_check_latency_seconds',
    'Latency of rate limit checks',
    ['backend']
)


class EndpointClass(str, Enum):
    LOGIN = "login"
    IMPERSONATION = "impersonation"
    PASSWORD_CHANGE = "password_change"
    ADMIN_OPERATIONS = "admin_operations"
    GENERAL = "general"


class RateLimitKey(NamedTuple):
    identity: str
    endpoint_class: str

    def __str__(self) -> str:
        return f"{self.endpoint_class}:{self.identity}"


@dataclass(frozen=True)
class RateLimitPolicy:
    endpoint_class: EndpointClass
    limit: int
    window_seconds: int


@dataclass
class RateLimitWindow:
    """Counter for one key within one fixed window"""
    key: RateLimitKey
    window_start: float
    count: int
    window_seconds: int

    def expired(self, now: float) -> bool:
        return now >= self.window_start + self.window_seconds


def default_policies(settings=None) -> Dict[EndpointClass, RateLimitPolicy]:
    """Per-class limits, from settings when given"""
    if settings is None:
        return {
            EndpointClass.LOGIN: RateLimitPolicy(EndpointClass.LOGIN, 5, 15 * 60),
            EndpointClass.IMPERSONATION: RateLimitPolicy(EndpointClass.IMPERSONATION, 10, 60 * 60),
            EndpointClass.PASSWORD_CHANGE: RateLimitPolicy(EndpointClass.PASSWORD_CHANGE, 3, 60 * 60),
            EndpointClass.ADMIN_OPERATIONS: RateLimitPolicy(EndpointClass.ADMIN_OPERATIONS, 20, 5 * 60),
            EndpointClass.GENERAL: RateLimitPolicy(EndpointClass.GENERAL, 100, 15 * 60),
        }
    return {
        EndpointClass.LOGIN: RateLimitPolicy(
            EndpointClass.LOGIN,
            settings.RATE_LIMIT_LOGIN,
            settings.RATE_LIMIT_LOGIN_WINDOW_SECONDS,
        ),
        EndpointClass.IMPERSONATION: RateLimitPolicy(
            EndpointClass.IMPERSONATION,
            settings.RATE_LIMIT_IMPERSONATION,
            settings.RATE_LIMIT_IMPERSONATION_WINDOW_SECONDS,
        ),
        EndpointClass.PASSWORD_CHANGE: RateLimitPolicy(
            EndpointClass.PASSWORD_CHANGE,
            settings.RATE_LIMIT_PASSWORD_CHANGE,
            settings.RATE_LIMIT_PASSWORD_CHANGE_WINDOW_SECONDS,
        ),
        EndpointClass.ADMIN_OPERATIONS: RateLimitPolicy(
            EndpointClass.ADMIN_OPERATIONS,
            settings.RATE_LIMIT_ADMIN_OPERATIONS,
            settings.RATE_LIMIT_ADMIN_OPERATIONS_WINDOW_SECONDS,
        ),
        EndpointClass.GENERAL: RateLimitPolicy(
            EndpointClass.GENERAL,
            settings.RATE_LIMIT_GENERAL,
            settings.RATE_LIMIT_GENERAL_WINDOW_SECONDS,
        ),
    }


class MemoryBackend:
    """
    In-process fixed windows

    Keys hash onto a fixed set of lock stripes. A key always maps to the
    same lock, so increment, reset and sweep of one key are serialized
    and sweeping never hands out a second lock for a live key.
    """

    name = "memory"

    def __init__(self, stripes: int = 64):
        self._windows: Dict[RateLimitKey, RateLimitWindow] = {}
        self._stripes: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def _lock_for(self, key: RateLimitKey) -> threading.Lock:
        return self._stripes[hash(key) % len(self._stripes)]

    def increment(self, key: RateLimitKey, window_seconds: int, now: float) -> int:
        with self._lock_for(key):
            window = self._windows.get(key)
            if window is None or window.expired(now) or window.window_seconds != window_seconds:
                window = RateLimitWindow(key=key, window_start=now, count=0, window_seconds=window_seconds)
                self._windows[key] = window
            window.count += 1
            return window.count

    def retry_after(self, key: RateLimitKey, window_seconds: int, now: float) -> int:
        window = self._windows.get(key)
        if window is None or window.expired(now):
            return 0
        return max(1, math.ceil(window.window_start + window.window_seconds - now))

    def get(self, key: RateLimitKey) -> Optional[RateLimitWindow]:
        return self._windows.get(key)

    def reset(self, key: Optional[RateLimitKey] = None):
        keys = list(self._windows) if key is None else [key]
        for k in keys:
            with self._lock_for(k):
                self._windows.pop(k, None)

    def sweep(self, now: float) -> int:
        removed = 0
        for k in list(self._windows):
            with self._lock_for(k):
                window = self._windows.get(k)
                # re-checked under the lock: a concurrent increment may have opened a new window
                if window is not None and window.expired(now):
                    del self._windows[k]
                    removed += 1
        return removed


class RedisBackend:
    """
    Distributed fixed windows: INCR + EXPIRE in one pipeline

    Key: rate_limit:{endpoint_class}:{identity}:{window index}
    """

    name = "redis"

    def __init__(self, client):
        self.client = client

    @staticmethod
    def _redis_key(key: RateLimitKey, window_seconds: int, now: float) -> str:
        return f"rate_limit:{key.endpoint_class}:{key.identity}:{int(now // window_seconds)}"

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        return cls(redis.Redis.from_url(url, decode_responses=True, socket_timeout=1))

    def increment(self, key: RateLimitKey, window_seconds: int, now: float) -> int:
        redis_key = self._redis_key(key, window_seconds, now)
        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, window_seconds + 1)
        results = pipe.execute()
        return int(results[0])

    def retry_after(self, key: RateLimitKey, window_seconds: int, now: float) -> int:
        return max(1, math.ceil(window_seconds - (now % window_seconds)))

    def reset(self, key: Optional[RateLimitKey] = None):
        if key is None:
            for redis_key in self.client.scan_iter(match="rate_limit:*"):
                self.client.delete(redis_key)
        else:
            for redis_key in self.client.scan_iter(match=f"rate_limit:{key.endpoint_class}:{key.identity}:*"):
                self.client.delete(redis_key)

    def sweep(self, now: float) -> int:
        # keys expire on their own
        return 0


class RateLimiter:
    """
    Fixed-window limiter

    Example:
        limiter = RateLimiter()
        key = RateLimitKey(identity=client_ip, endpoint_class="login")
        if not limiter.allow(key, limit=5, window_seconds=900):
            raise RateLimited(retry_after=limiter.retry_after(key, 900))
    """

    def __init__(
        self,
        backend=None,
        policies: Optional[Dict[EndpointClass, RateLimitPolicy]] = None,
        allow_on_backend_failure: bool = True,
        enabled: bool = True,
        clock: Clock = utcnow,
    ):
        self.backend = backend if backend is not None else MemoryBackend()
        self.policies = policies if policies is not None else default_policies()
        self.allow_on_backend_failure = allow_on_backend_failure
        self.enabled = enabled
        self._clock = clock
        logger.info(
            f"RateLimiter initialized: backend={self.backend.name}, enabled={enabled}, "
            f"fail_open={allow_on_backend_failure}"
        )

    @classmethod
    def from_settings(cls, settings, clock: Clock = utcnow) -> "RateLimiter":
        if settings.RATE_LIMIT_BACKEND == "redis":
            backend = RedisBackend.from_url(settings.REDIS_URL)
        else:
            backend = MemoryBackend()
        return cls(
            backend=backend,
            policies=default_policies(settings),
            allow_on_backend_failure=settings.RATE_LIMIT_FAIL_OPEN,
            enabled=settings.RATE_LIMIT_ENABLED,
            clock=clock,
        )

    def _now(self) -> float:
        return self._clock().timestamp()

    def allow(self, key: RateLimitKey, limit: int, window_seconds: int) -> bool:
        """
        Count one request against key's current window

        Returns:
            False once the count exceeds limit within the window
        """
        if not self.enabled:
            return True
        with rate_limit_check_latency.labels(backend=self.backend.name).time():
            try:
                count = self.backend.increment(key, window_seconds, self._now())
            except Exception as e:
                rate_limit_backend_failures.labels(backend=self.backend.name).inc()
                logger.error(f"Rate limit backend failure for {key}: {e}")
                if self.allow_on_backend_failure:
                    logger.warning(f"Allowing request for {key} due to backend failure")
                    return True
                return False

        if count > limit:
            rate_limit_exceeded.labels(endpoint_class=key.endpoint_class).inc()
            logger.warning(f"Rate limit exceeded for {key}: {count}/{limit} in {window_seconds}s")
            return False
        return True

    def retry_after(self, key: RateLimitKey, window_seconds: int) -> int:
        """Seconds until key's window rolls over"""
        try:
            return self.backend.retry_after(key, window_seconds, self._now())
        except Exception as e:
            logger.error(f"Rate limit backend failure computing retry-after for {key}: {e}")
            return window_seconds

    def policy(self, endpoint_class: EndpointClass) -> RateLimitPolicy:
        return self.policies[EndpointClass(endpoint_class)]

    def check(self, endpoint_class: EndpointClass, identity: str) -> RateLimitKey:
        """
        Apply the class policy to identity

        Raises:
            RateLimited: when the identity is over its limit
        """
        policy = self.policy(endpoint_class)
        key = RateLimitKey(identity=identity, endpoint_class=policy.endpoint_class.value)
        if not self.allow(key, policy.limit, policy.window_seconds):
            raise RateLimited(
                retry_after=self.retry_after(key, policy.window_seconds),
                details={"endpoint_class": policy.endpoint_class.value},
            )
        return key

    def sweep(self) -> int:
        """Drop windows that have rolled over"""
        removed = self.backend.sweep(self._now())
        if removed:
            logger.debug(f"Rate limiter sweep removed {removed} stale windows")
        return removed

    def reset(self, key: Optional[RateLimitKey] = None):
        """Reset one key or every key (admin/testing operation)"""
        self.backend.reset(key)
        logger.info(f"Rate limiter reset: {key or 'all'}")
