"""Fixed-window attempt governor keyed by action and client identity."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Protocol

from mfa_gateway.core.config import RateBudget


@dataclass
class RateWindow:
    """Attempt counter for one key until `reset_at`."""

    key: str
    attempts: int
    reset_at: float


@dataclass(frozen=True)
class RateDecision:
    """Outcome of one governed attempt."""

    allowed: bool
    remaining: int
    reset_at: float
    limit: int


class RateLimitStore(Protocol):
    """Counter storage; `hit` must be atomic per key."""

    def hit(
        self, key: str, *, max_attempts: int, window_seconds: float, now: float
    ) -> RateDecision: ...


class InMemoryRateLimitStore:
    """Single-process counter map guarded by a lock.

    Keys are never evicted. Multi-process deployments need a shared store
    implementing `RateLimitStore`.
    """

    def __init__(self) -> None:
        self._windows: dict[str, RateWindow] = {}
        self._lock = Lock()

    def hit(
        self, key: str, *, max_attempts: int, window_seconds: float, now: float
    ) -> RateDecision:
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                window = RateWindow(key=key, attempts=1, reset_at=now + window_seconds)
                self._windows[key] = window
                return RateDecision(
                    allowed=True,
                    remaining=max_attempts - 1,
                    reset_at=window.reset_at,
                    limit=max_attempts,
                )

            if window.attempts >= max_attempts:
                return RateDecision(
                    allowed=False,
                    remaining=0,
                    reset_at=window.reset_at,
                    limit=max_attempts,
                )

            window.attempts += 1
            return RateDecision(
                allowed=True,
                remaining=max_attempts - window.attempts,
                reset_at=window.reset_at,
                limit=max_attempts,
            )


class RateGovernor:
    """Applies per-action budgets on top of a counter store."""

    def __init__(
        self,
        store: RateLimitStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock

    def check(self, key: str, max_attempts: int, window_seconds: float) -> RateDecision:
        """Count one attempt for `key` and report whether it is allowed."""
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        return self._store.hit(
            key,
            max_attempts=max_attempts,
            window_seconds=window_seconds,
            now=self._clock(),
        )

    def check_budget(self, budget: RateBudget, client_id: str) -> RateDecision:
        """Count one attempt of `budget.action` for the client identity."""
        return self.check(
            f"{budget.action}:{client_id}", budget.max_attempts, budget.window_seconds
        )

    def headers(self, decision: RateDecision) -> dict[str, str]:
        """Return `X-RateLimit-*` headers for a decision."""
        reset_in = math.ceil(decision.reset_at - self._clock())
        return {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(max(0, reset_in)),
        }
