"""Brute-force protection for the authentication gate.

Two layered lockouts, both consulted before any credential comparison:
  - Per-source: cumulative failure count per client address.
  - Global: failures inside a trailing sliding window, across all sources.

Rules are evaluated in ascending threshold order and the highest one
reached decides the lock. A lock is only ever replaced by a higher rule
while it is active, and never shortened. Failure counts accumulate until
a successful authentication; there is no decay.
"""
from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from threading import Lock

from ..observability import get_logger
from ..observability.metrics import AUTH_FAILURES_TOTAL, AUTH_LOCKOUTS_TOTAL
from .errors import LockoutError

logger = get_logger(__name__)

SCOPE_GLOBAL = 'global'
SCOPE_SOURCE = 'ip'

GLOBAL_WINDOW_SECONDS = 300.0  # 5 min
CLEANUP_INTERVAL_SECONDS = 300.0  # 5 min
RETENTION_SECONDS = 1800.0  # 30 min


@dataclass(frozen=True)
class LockoutRule:
    """Reaching ``threshold`` failures locks for ``duration`` seconds."""
    threshold: int
    duration: float


SOURCE_LOCKOUT_RULES: tuple[LockoutRule, ...] = (
    LockoutRule(5, 60),
    LockoutRule(10, 300),
    LockoutRule(20, 900),
)

GLOBAL_LOCKOUT_RULES: tuple[LockoutRule, ...] = (
    LockoutRule(100, 120),
    LockoutRule(200, 600),
    LockoutRule(500, 1800),
)


@dataclass
class AttemptInfo:
    """Failure history for one client address."""
    fail_count: int = 0
    locked_until: float = 0.0
    last_failure: float = 0.0
    tier: int = -1


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    retry_after: float = 0.0
    scope: str | None = None

    @property
    def retry_after_header(self) -> str:
        """Remaining seconds, rounded up, plus one."""
        return str(math.ceil(self.retry_after) + 1)


def _apply_rules(
    rules: tuple[LockoutRule, ...],
    count: int,
    now: float,
    locked_until: float,
    tier: int,
) -> tuple[float, int]:
    """Return the (locked_until, tier) pair after one more failure."""
    reached = -1
    for index, rule in enumerate(rules):
        if count >= rule.threshold:
            reached = index
    if reached < 0:
        return locked_until, tier
    if now < locked_until and reached <= tier:
        return locked_until, tier
    return max(locked_until, now + rules[reached].duration), reached


class AuthRateLimiter:
    """Thread-safe per-source and global lockout tracker.

    One instance is owned by the app and shared by every request; all
    state lives behind a single lock.
    """

    def __init__(
        self,
        source_rules: tuple[LockoutRule, ...] = SOURCE_LOCKOUT_RULES,
        global_rules: tuple[LockoutRule, ...] = GLOBAL_LOCKOUT_RULES,
        window_seconds: float = GLOBAL_WINDOW_SECONDS,
        retention_seconds: float = RETENTION_SECONDS,
    ):
        self.source_rules = source_rules
        self.global_rules = global_rules
        self.window_seconds = window_seconds
        self.retention_seconds = retention_seconds

        self._attempts: dict[str, AttemptInfo] = {}
        self._global_failures: list[float] = []
        self._global_locked_until = 0.0
        self._global_tier = -1
        self._lock = Lock()
        self._cleanup_task: asyncio.Task | None = None

    def _prune_global(self, now: float) -> None:
        cutoff = now - self.window_seconds
        self._global_failures[:] = [t for t in self._global_failures if t > cutoff]

    def check(self, source: str, now: float | None = None) -> LockoutStatus:
        """Report whether ``source`` may attempt authentication.

        The global lock is checked first and wins when both are active.
        """
        now = now if now is not None else time.time()
        with self._lock:
            self._prune_global(now)
            if now < self._global_locked_until:
                return LockoutStatus(True, self._global_locked_until - now, SCOPE_GLOBAL)
            info = self._attempts.get(source)
            if info is not None and now < info.locked_until:
                return LockoutStatus(True, info.locked_until - now, SCOPE_SOURCE)
        return LockoutStatus(False)

    def ensure_allowed(self, source: str, now: float | None = None) -> None:
        """Raise LockoutError if ``source`` is locked out."""
        status = self.check(source, now)
        if status.locked:
            AUTH_LOCKOUTS_TOTAL.labels(scope=status.scope).inc()
            raise LockoutError(status.scope, status.retry_after)

    def record_failure(self, source: str, now: float | None = None) -> AttemptInfo:
        """Record a credential mismatch from ``source``."""
        now = now if now is not None else time.time()
        with self._lock:
            info = self._attempts.setdefault(source, AttemptInfo())
            info.fail_count += 1
            info.last_failure = now
            info.locked_until, info.tier = _apply_rules(
                self.source_rules, info.fail_count, now, info.locked_until, info.tier,
            )

            self._global_failures.append(now)
            self._prune_global(now)
            global_count = len(self._global_failures)
            self._global_locked_until, self._global_tier = _apply_rules(
                self.global_rules, global_count, now,
                self._global_locked_until, self._global_tier,
            )
            snapshot = AttemptInfo(info.fail_count, info.locked_until, info.last_failure, info.tier)

        AUTH_FAILURES_TOTAL.inc()
        logger.warning(
            'auth_failure',
            client_ip=source,
            source_failures=snapshot.fail_count,
            global_failures=global_count,
        )
        return snapshot

    def record_success(self, source: str) -> None:
        """Reset ``source``'s count and lock. The global window is untouched."""
        with self._lock:
            info = self._attempts.get(source)
            if info is not None:
                info.fail_count = 0
                info.locked_until = 0.0
                info.tier = -1

    def attempts(self, source: str) -> AttemptInfo | None:
        with self._lock:
            info = self._attempts.get(source)
            if info is None:
                return None
            return AttemptInfo(info.fail_count, info.locked_until, info.last_failure, info.tier)

    def global_failure_count(self, now: float | None = None) -> int:
        now = now if now is not None else time.time()
        with self._lock:
            self._prune_global(now)
            return len(self._global_failures)

    def cleanup(self, now: float | None = None) -> int:
        """Prune the global window and drop idle, unlocked sources.

        Returns:
            Number of per-source entries removed.
        """
        now = now if now is not None else time.time()
        cutoff = now - self.retention_seconds
        with self._lock:
            stale = [
                source for source, info in self._attempts.items()
                if info.locked_until <= now and info.last_failure < cutoff
            ]
            for source in stale:
                del self._attempts[source]
            self._prune_global(now)
        if stale:
            logger.debug('rate_limiter_cleanup', removed=len(stale))
        return len(stale)

    # ── Background cleanup ──

    async def run_cleanup(self, interval: float = CLEANUP_INTERVAL_SECONDS) -> None:
        while True:
            await asyncio.sleep(interval)
            self.cleanup()

    def start(self, interval: float = CLEANUP_INTERVAL_SECONDS) -> None:
        """Start the periodic cleanup task on the running loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self.run_cleanup(interval))

    async def stop(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
