# utils/rate_limiter.py - In-memory sliding window rate limiter
"""
Sliding window rate limiter keyed by an opaque identifier (anonymous session id).

Each identifier gets its own window of recent admissions. Records for
identifiers that go quiet are evicted by a sweep that piggybacks on
check_rate_limit calls, so the key space cleans itself without a background task.
State lives in process memory only: restarting the server resets all quotas.
"""

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from config import (
    RATE_LIMIT_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
    RATE_LIMIT_IDLE_EXPIRY_SECONDS,
)
from utils.logger import get_rate_limit_logger

logger = get_rate_limit_logger()


@dataclass
class RateRecord:
    """Recent admissions for one identifier."""
    timestamps: List[float] = field(default_factory=list)
    last_touched: float = 0.0


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after: Optional[int] = None  # whole seconds, >= 1 when denied


@dataclass(frozen=True)
class RateLimitStatus:
    count: int
    next_allowed_at: Optional[float] = None


class RateLimiter:
    """
    Per-identifier sliding window limiter with idle eviction.

    Args:
        max_requests: Admissions allowed per identifier inside one window
        window_seconds: Width of the sliding window
        sweep_interval_seconds: Minimum spacing between eviction sweeps
        idle_expiry_seconds: Inactivity after which a record may be evicted
        clock: Time source returning seconds (defaults to time.time)
    """

    def __init__(
        self,
        max_requests: int = RATE_LIMIT_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        sweep_interval_seconds: float = RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
        idle_expiry_seconds: float = RATE_LIMIT_IDLE_EXPIRY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        if idle_expiry_seconds <= 0:
            raise ValueError("idle_expiry_seconds must be positive")

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.idle_expiry_seconds = idle_expiry_seconds
        self._clock = clock

        self._records: Dict[str, RateRecord] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._records

    def _in_window(self, timestamps: List[float], now: float) -> List[float]:
        return [ts for ts in timestamps if now - ts < self.window_seconds]

    def _is_idle(self, record: RateRecord, now: float) -> bool:
        return now - record.last_touched > self.idle_expiry_seconds

    def _sweep(self, now: float) -> None:
        """Evict idle records. Caller must hold the lock."""
        if now - self._last_sweep < self.sweep_interval_seconds:
            return
        self._last_sweep = now

        try:
            evicted = 0
            for identifier in list(self._records):
                record = self._records[identifier]
                if self._is_idle(record, now):
                    del self._records[identifier]
                    evicted += 1
                else:
                    record.timestamps = self._in_window(record.timestamps, now)
            logger.debug(f"Sweep evicted {evicted} idle records, {len(self._records)} remain")
        except Exception:
            # A failed sweep must never deny an otherwise valid request
            logger.exception("Rate limiter sweep failed")

    def check_rate_limit(self, identifier: str, now: Optional[float] = None) -> RateLimitResult:
        """
        Decide whether identifier may proceed, recording the admission if so.

        Args:
            identifier: Opaque caller key (session id)
            now: Current time in seconds, defaults to the limiter clock

        Returns:
            RateLimitResult with allowed=False and a retry_after hint of at least
            one second when the window is full
        """
        if now is None:
            now = self._clock()

        with self._lock:
            self._sweep(now)

            record = self._records.get(identifier)
            if record is None:
                record = RateRecord(last_touched=now)
                self._records[identifier] = record

            record.timestamps = self._in_window(record.timestamps, now)
            record.last_touched = now

            if len(record.timestamps) >= self.max_requests:
                oldest = min(record.timestamps)
                retry_after = math.ceil(self.window_seconds - (now - oldest))
                return RateLimitResult(allowed=False, retry_after=max(retry_after, 1))

            record.timestamps.append(now)
            return RateLimitResult(allowed=True)

    def get_rate_limit_status(self, identifier: str, now: Optional[float] = None) -> RateLimitStatus:
        """Report usage for identifier without consuming quota or refreshing its idle clock."""
        if now is None:
            now = self._clock()

        with self._lock:
            record = self._records.get(identifier)
            if record is None:
                return RateLimitStatus(count=0)
            recent = self._in_window(record.timestamps, now)

        if len(recent) >= self.max_requests:
            return RateLimitStatus(
                count=len(recent),
                next_allowed_at=min(recent) + self.window_seconds,
            )
        return RateLimitStatus(count=len(recent))

    def reset_rate_limit(self, identifier: str) -> None:
        """Forget identifier entirely (e.g. after it signs in)."""
        with self._lock:
            self._records.pop(identifier, None)
