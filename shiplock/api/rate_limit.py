from __future__ import annotations

import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Tuple


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    retry_after_seconds: int = 0


class TokenBucketRateLimiter:
    """In-memory token bucket, one bucket per identity.

    Policy:
    - Limit is requests per minute (RPM) with a burst capacity.
    - Secret endpoints may charge more than one token per call (cost).

    Security notes:
    - Memory-only and per-process. Multi-worker deployments need a shared
      limiter in front of the service.
    - Identity keys are truncated, and idle buckets are evicted once the
      table exceeds max_buckets.

    """

    def __init__(
        self,
        *,
        rpm: int = 120,
        burst: Optional[int] = None,
        max_key_len: int = 128,
        max_buckets: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._rpm = max(1, int(rpm))
        self._capacity = float(burst) if burst is not None else float(max(2, self._rpm))
        self._refill_per_sec = self._rpm / 60.0
        self._max_key_len = max_key_len
        self._max_buckets = max(1, int(max_buckets))
        self._clock = clock

        # identity -> (tokens, last_ts)
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._lock = Lock()

    @staticmethod
    def from_env() -> "TokenBucketRateLimiter":
        """Create a limiter from SHIPLOCK_RATE_LIMIT_RPM / SHIPLOCK_RATE_LIMIT_BURST."""

        def _int(name: str) -> Optional[int]:
            raw = os.environ.get(name, "").strip()
            if not raw:
                return None
            try:
                return int(raw)
            except ValueError:
                return None

        rpm = _int("SHIPLOCK_RATE_LIMIT_RPM") or 120
        return TokenBucketRateLimiter(rpm=rpm, burst=_int("SHIPLOCK_RATE_LIMIT_BURST"))

    def _evict_idle(self, now: float) -> None:
        full_after = self._capacity / self._refill_per_sec
        idle = [k for k, (_, last) in self._buckets.items() if now - last >= full_after]
        for k in idle:
            del self._buckets[k]

    def check(self, identity: str, *, cost: float = 1.0) -> RateLimitDecision:
        """Consume cost tokens for an identity if available."""

        identity = (identity or "anonymous")[: self._max_key_len]
        cost = max(0.0, float(cost))

        now = self._clock()
        with self._lock:
            if identity not in self._buckets and len(self._buckets) >= self._max_buckets:
                self._evict_idle(now)
            tokens, last = self._buckets.get(identity, (self._capacity, now))
            tokens = min(self._capacity, tokens + max(0.0, now - last) * self._refill_per_sec)

            if tokens >= cost:
                self._buckets[identity] = (tokens - cost, now)
                return RateLimitDecision(allowed=True)

            missing = cost - tokens
            retry_after = int(max(1.0, missing / self._refill_per_sec))
            self._buckets[identity] = (tokens, now)
            return RateLimitDecision(allowed=False, retry_after_seconds=retry_after)
