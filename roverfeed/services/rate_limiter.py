"""Per-identity hourly/daily request quotas.

Counters live behind ``CounterStore.try_consume``, which checks both windows
and increments both in one atomic step. Two stores are provided:

- ``MemoryCounterStore``: process-local, guarded by a single lock. Counts are
  not shared between instances; running more than one API replica multiplies
  the effective quota.
- ``SqlCounterStore``: rows in ``rate_window_counters``, shared by every
  instance that uses the same database.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.orm import Session

from roverfeed.core.config import settings
from roverfeed.core.db import SessionLocal, dialect_insert
from roverfeed.core.logging import get_logger
from roverfeed.models.rate_limits import WINDOW_DAY, WINDOW_HOUR, RateWindowCounter

log = get_logger("rate_limiter")

UNLIMITED = -1
DEFAULT_TIER = "free"

TIER_LIMITS: Dict[str, Tuple[int, int]] = {
    "free": (60, 500),
    "pro": (5000, 100000),
    "unlimited": (UNLIMITED, UNLIMITED),
}


def hour_start(now: datetime) -> datetime:
    return now.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


def day_start(now: datetime) -> datetime:
    return now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def as_utc(value: datetime) -> datetime:
    """Normalise a stored timestamp to aware UTC; naive values are already UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ConsumeResult:
    allowed: bool
    hour_count: int
    day_count: int
    exceeded: Optional[str] = None  # "hour" | "day" when denied


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    tier: str
    hourly_limit: int
    daily_limit: int
    hourly_remaining: Optional[int]  # None when unlimited
    daily_remaining: Optional[int]
    hourly_reset_at: int  # unix seconds
    daily_reset_at: int
    exceeded: Optional[str] = None

    def headers(self) -> Dict[str, str]:
        def fmt(value: Optional[int]) -> str:
            return "unlimited" if value is None or value == UNLIMITED else str(value)

        return {
            "X-RateLimit-Limit-Hour": fmt(self.hourly_limit),
            "X-RateLimit-Remaining-Hour": fmt(self.hourly_remaining),
            "X-RateLimit-Reset-Hour": str(self.hourly_reset_at),
            "X-RateLimit-Limit-Day": fmt(self.daily_limit),
            "X-RateLimit-Remaining-Day": fmt(self.daily_remaining),
            "X-RateLimit-Reset-Day": str(self.daily_reset_at),
            "X-RateLimit-Tier": self.tier,
        }


class CounterStore(ABC):
    """Interface for the atomic check-and-increment of both windows."""

    shared_across_instances = False

    @abstractmethod
    def try_consume(
        self,
        identity: str,
        hour: datetime,
        day: datetime,
        hourly_limit: int,
        daily_limit: int,
    ) -> ConsumeResult:
        """Increment both counters if neither bounded counter is at its limit.

        A denied call increments nothing. Counts are post-increment when
        allowed and current when denied.
        """


class MemoryCounterStore(CounterStore):
    """Counters in a dict keyed by ``(identity, kind, window_start)``."""

    PRUNE_EVERY = 1000

    def __init__(self) -> None:
        self._counts: Dict[Tuple[str, str, datetime], int] = {}
        self._lock = threading.Lock()
        self._calls = 0

    def try_consume(self, identity, hour, day, hourly_limit, daily_limit) -> ConsumeResult:
        hour_key = (identity, WINDOW_HOUR, hour)
        day_key = (identity, WINDOW_DAY, day)
        with self._lock:
            self._calls += 1
            if self._calls % self.PRUNE_EVERY == 0:
                self._prune(hour, day)

            hour_count = self._counts.get(hour_key, 0)
            day_count = self._counts.get(day_key, 0)

            if hourly_limit != UNLIMITED and hour_count >= hourly_limit:
                return ConsumeResult(False, hour_count, day_count, exceeded=WINDOW_HOUR)
            if daily_limit != UNLIMITED and day_count >= daily_limit:
                return ConsumeResult(False, hour_count, day_count, exceeded=WINDOW_DAY)

            self._counts[hour_key] = hour_count + 1
            self._counts[day_key] = day_count + 1
            return ConsumeResult(True, hour_count + 1, day_count + 1)

    def _prune(self, hour: datetime, day: datetime) -> None:
        # Expired windows are never read again
        current = {WINDOW_HOUR: hour, WINDOW_DAY: day}
        stale = [key for key in self._counts if key[2] < current[key[1]]]
        for key in stale:
            del self._counts[key]


class SqlCounterStore(CounterStore):
    """Counters in ``rate_window_counters``; each call is one transaction.

    The limit check is part of the UPDATE's WHERE clause, so concurrent
    requests from several instances can never push a counter past its limit.
    Counters of closed windows are deleted every ``PRUNE_EVERY`` calls.
    """

    shared_across_instances = True
    PRUNE_EVERY = 1000

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory
        self._calls = 0
        self._calls_lock = threading.Lock()

    def try_consume(self, identity, hour, day, hourly_limit, daily_limit) -> ConsumeResult:
        with self._calls_lock:
            self._calls += 1
            due = self._calls % self.PRUNE_EVERY == 0
        if due:
            self.prune(hour, day)

        windows = ((WINDOW_HOUR, hour, hourly_limit), (WINDOW_DAY, day, daily_limit))
        with self.session_factory() as db:
            try:
                for kind, start, _ in windows:
                    stmt = dialect_insert(db, RateWindowCounter).values(
                        identity=identity, window_start=start, window_kind=kind, count=0
                    )
                    db.execute(
                        stmt.on_conflict_do_nothing(
                            index_elements=["identity", "window_start", "window_kind"]
                        )
                    )

                for kind, start, limit in windows:
                    stmt = (
                        update(RateWindowCounter)
                        .where(
                            RateWindowCounter.identity == identity,
                            RateWindowCounter.window_start == start,
                            RateWindowCounter.window_kind == kind,
                        )
                        .values(count=RateWindowCounter.count + 1)
                        .execution_options(synchronize_session=False)
                    )
                    if limit != UNLIMITED:
                        stmt = stmt.where(RateWindowCounter.count < limit)
                    if db.execute(stmt).rowcount == 0:
                        db.rollback()
                        hour_count, day_count = self._counts(db, identity, hour, day)
                        return ConsumeResult(False, hour_count, day_count, exceeded=kind)

                hour_count, day_count = self._counts(db, identity, hour, day)
                db.commit()
            except Exception:
                db.rollback()
                raise
        return ConsumeResult(True, hour_count, day_count)

    def prune(self, hour: datetime, day: datetime) -> int:
        """Delete counters of windows that have already closed; returns rows removed."""
        stmt = delete(RateWindowCounter).where(
            or_(
                and_(RateWindowCounter.window_kind == WINDOW_HOUR, RateWindowCounter.window_start < hour),
                and_(RateWindowCounter.window_kind == WINDOW_DAY, RateWindowCounter.window_start < day),
            )
        )
        with self.session_factory() as db:
            try:
                removed = db.execute(stmt).rowcount
                db.commit()
            except Exception:
                db.rollback()
                raise
        if removed:
            log.debug(f"Pruned {removed} expired rate limit counters")
        return removed

    @staticmethod
    def _counts(db: Session, identity: str, hour: datetime, day: datetime) -> Tuple[int, int]:
        stmt = select(RateWindowCounter.window_kind, RateWindowCounter.window_start, RateWindowCounter.count).where(
            RateWindowCounter.identity == identity,
            RateWindowCounter.window_kind.in_([WINDOW_HOUR, WINDOW_DAY]),
            RateWindowCounter.window_start.in_([hour, day]),
        )
        counts = {WINDOW_HOUR: 0, WINDOW_DAY: 0}
        wanted = {WINDOW_HOUR: hour, WINDOW_DAY: day}
        for kind, start, count in db.execute(stmt).all():
            if as_utc(start) == wanted[kind]:
                counts[kind] = count
        return counts[WINDOW_HOUR], counts[WINDOW_DAY]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Decides whether one inbound request may proceed, consuming quota if so."""

    def __init__(
        self,
        store: Optional[CounterStore] = None,
        tiers: Optional[Dict[str, Tuple[int, int]]] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store or MemoryCounterStore()
        self.tiers = dict(TIER_LIMITS)
        self.tiers.update({name.lower(): tuple(limits) for name, limits in (tiers or {}).items()})
        self.clock = clock

    def resolve_tier(self, tier: str) -> Tuple[str, Tuple[int, int]]:
        """Canonical tier name and its (hourly, daily) limits; unknown tiers get the default tier."""
        name = (tier or "").lower()
        limits = self.tiers.get(name)
        if limits is None:
            log.warning(f"Unknown tier {tier!r}, defaulting to {DEFAULT_TIER} tier limits")
            return DEFAULT_TIER, self.tiers[DEFAULT_TIER]
        return name, limits

    def get_limits_for_tier(self, tier: str) -> Tuple[int, int]:
        return self.resolve_tier(tier)[1]

    def check_and_consume(self, identity: str, tier: str, now: Optional[datetime] = None) -> RateLimitDecision:
        tier, (hourly_limit, daily_limit) = self.resolve_tier(tier)
        now = now or self.clock()
        hour = hour_start(now)
        day = day_start(now)

        result = self.store.try_consume(identity, hour, day, hourly_limit, daily_limit)

        def remaining(limit: int, count: int) -> Optional[int]:
            if limit == UNLIMITED:
                return None
            return max(0, limit - count)

        decision = RateLimitDecision(
            allowed=result.allowed,
            tier=tier,
            hourly_limit=hourly_limit,
            daily_limit=daily_limit,
            hourly_remaining=remaining(hourly_limit, result.hour_count),
            daily_remaining=remaining(daily_limit, result.day_count),
            hourly_reset_at=int((hour + timedelta(hours=1)).timestamp()),
            daily_reset_at=int((day + timedelta(days=1)).timestamp()),
            exceeded=result.exceeded,
        )
        if not decision.allowed:
            log.warning(
                f"Rate limit exceeded for {identity} (tier: {tier}). "
                f"Hourly: {result.hour_count}/{hourly_limit}, Daily: {result.day_count}/{daily_limit}"
            )
        return decision


def build_rate_limiter() -> RateLimiter:
    """Limiter configured from settings (RATE_LIMIT_BACKEND, RATE_LIMIT_TIERS)."""
    if settings.RATE_LIMIT_BACKEND == "database":
        store: CounterStore = SqlCounterStore()
    else:
        store = MemoryCounterStore()
    return RateLimiter(store=store, tiers=settings.RATE_LIMIT_TIERS)
