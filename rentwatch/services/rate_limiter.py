"""Fixed-window rate limiting over an injectable counter store"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from rentwatch.domain.exceptions import RateLimitExceededError
from rentwatch.infrastructure.observability.metrics import rate_limited_counter


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining_attempts: int
    reset_in: float


class RateLimitStore(Protocol):
    def get(self, key: str) -> Optional[RateLimitEntry]: ...

    def set(self, key: str, entry: RateLimitEntry) -> None: ...

    def purge_expired(self, now: float) -> int: ...


class InMemoryRateLimitStore:
    """Process-local store; one instance per limiter"""

    def __init__(self):
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[RateLimitEntry]:
        with self._lock:
            return self._entries.get(key)

    def set(self, key: str, entry: RateLimitEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def purge_expired(self, now: float) -> int:
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.reset_at]
            for key in expired:
                del self._entries[key]
            return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RateLimiter:
    """
    Allow at most max_attempts per key within window_seconds.

    The window opens on the first attempt for a key and resets once it has
    elapsed.
    """

    def __init__(
        self,
        max_attempts: int,
        window_seconds: float,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], float] = time.monotonic,
        action: str = "default",
    ):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.clock = clock
        self.action = action
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitDecision:
        """Count an attempt for the key and report whether it is allowed"""
        with self._lock:
            now = self.clock()
            entry = self.store.get(key)

            if entry is None or now > entry.reset_at:
                self.store.set(key, RateLimitEntry(count=1, reset_at=now + self.window_seconds))
                return RateLimitDecision(True, self.max_attempts - 1, self.window_seconds)

            if entry.count >= self.max_attempts:
                rate_limited_counter.labels(action=self.action).inc()
                return RateLimitDecision(False, 0, entry.reset_at - now)

            entry.count += 1
            self.store.set(key, entry)
            return RateLimitDecision(True, self.max_attempts - entry.count, entry.reset_at - now)

    def enforce(self, key: str) -> RateLimitDecision:
        """check() that raises RateLimitExceededError when refused"""
        decision = self.check(key)
        if not decision.allowed:
            raise RateLimitExceededError(key, decision.reset_in)
        return decision

    def purge_expired(self) -> int:
        return self.store.purge_expired(self.clock())
