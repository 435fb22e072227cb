"""
Per-user daily quota and per-minute throttle.

Quota is consumed when a call is admitted, not when it succeeds, so a
provider timeout never refunds a free user's allowance.
"""

import threading
import time
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Callable, Mapping

import structlog

from coachcore.errors import QuotaExceeded, RateLimited
from coachcore.models import QuotaState, Tier

logger = structlog.get_logger()


class LimitKind(Enum):
    DAILY = "daily"
    PER_MINUTE = "per_minute"


@dataclass(frozen=True, slots=True)
class QuotaDecision:
    allowed: "bool"
    limit: "LimitKind | None" = None
    # seconds until the rejected call could succeed
    retry_after: "float" = 0.0
    # None when the tier has no daily ceiling
    remaining_today: "int | None" = None
    daily_limit: "int | None" = None

    def raise_for_rejection(self) -> "None":
        """
        raises the user-facing error matching the rejection, no-op when
        the call was allowed.
        """
        if self.allowed:
            return
        if self.limit is LimitKind.DAILY:
            raise QuotaExceeded(self.daily_limit or 0, self.retry_after)
        raise RateLimited(self.retry_after)


class _UserSlot:
    def __init__(self, state: "QuotaState") -> "None":
        self.lock: "threading.Lock" = threading.Lock()
        self.state = state
        # set once the slot was dropped by evict_stale(); a caller still
        # holding it must look the user up again
        self.evicted = False


class QuotaLimiter:
    """
    QuotaLimiter: Is a thread-safe tracker of per-user daily counts and a
    reset-on-expiry minute window.

    Each user owns a slot with its own lock, so a check for one user is
    atomic (no two concurrent calls can both pass a limit that should stop
    the second) while never waiting on another user's traffic.
    """

    def __init__(
        self,
        daily_limits: "Mapping[Tier, int | None]",
        max_per_minute: "int" = 60,
        window_seconds: "float" = 60.0,
        clock: "Callable[[], float]" = time.time,
        tz: "tzinfo" = timezone.utc,
    ) -> "None":
        if max_per_minute < 1:
            raise ValueError("max_per_minute must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self._daily_limits = dict(daily_limits)
        self._max_per_minute = max_per_minute
        self._window = window_seconds
        self._clock = clock
        self._tz = tz
        self._registry_lock: "threading.Lock" = threading.Lock()
        self._slots: "dict[str, _UserSlot]" = {}

    def _today(self, now: "float") -> "date":
        return datetime.fromtimestamp(now, tz=self._tz).date()

    def _seconds_until_tomorrow(self, now: "float") -> "float":
        current = datetime.fromtimestamp(now, tz=self._tz)
        midnight = datetime.combine(
            current.date() + timedelta(days=1), datetime.min.time(), tzinfo=self._tz
        )
        return (midnight - current).total_seconds()

    def _slot(self, user_id: "str", now: "float") -> "_UserSlot":
        with self._registry_lock:
            slot = self._slots.get(user_id)
            if slot is None:
                slot = _UserSlot(
                    QuotaState(
                        daily_count=0,
                        day=self._today(now),
                        window_count=0,
                        window_start=now,
                    )
                )
                self._slots[user_id] = slot
            return slot

    def daily_limit(self, tier: "Tier") -> "int | None":
        limit = self._daily_limits.get(tier)
        # zero or negative ceilings mean unlimited
        if limit is None or limit <= 0:
            return None
        return limit

    def check_and_consume(self, user_id: "str", tier: "Tier") -> "QuotaDecision":
        """
        evaluates the daily quota, then the minute window, for user_id and
        counts the call against both when it is allowed.
        """
        limit = self.daily_limit(tier)

        while True:
            now = self._clock()
            slot = self._slot(user_id, now)
            with slot.lock:
                if slot.evicted:
                    continue
                return self._evaluate(user_id, slot.state, limit, now)

    def _evaluate(
        self,
        user_id: "str",
        state: "QuotaState",
        limit: "int | None",
        now: "float",
    ) -> "QuotaDecision":
        today = self._today(now)
        if state.day != today:
            state.daily_count = 0
            state.day = today

        if limit is not None and state.daily_count >= limit:
            logger.info("quota_rejected", user_id=user_id, limit="daily")
            return QuotaDecision(
                allowed=False,
                limit=LimitKind.DAILY,
                retry_after=self._seconds_until_tomorrow(now),
                remaining_today=0,
                daily_limit=limit,
            )

        elapsed = now - state.window_start
        if state.window_count == 0 or elapsed >= self._window:
            state.window_count = 0
            state.window_start = now
            elapsed = 0.0

        if state.window_count >= self._max_per_minute:
            logger.info("quota_rejected", user_id=user_id, limit="per_minute")
            return QuotaDecision(
                allowed=False,
                limit=LimitKind.PER_MINUTE,
                retry_after=self._window - elapsed,
                remaining_today=None if limit is None else limit - state.daily_count,
                daily_limit=limit,
            )

        state.daily_count += 1
        state.window_count += 1
        return QuotaDecision(
            allowed=True,
            remaining_today=None if limit is None else limit - state.daily_count,
            daily_limit=limit,
        )

    def state(self, user_id: "str") -> "QuotaState | None":
        """
        returns a snapshot of the user's counters, None for unseen users.
        """
        with self._registry_lock:
            slot = self._slots.get(user_id)
        if slot is None:
            return None
        with slot.lock:
            return replace(slot.state)

    def restore(self, user_id: "str", state: "QuotaState") -> "None":
        """
        seeds the counters of a user, e.g. from an external store at
        startup.
        """
        slot = self._slot(user_id, self._clock())
        with slot.lock:
            slot.state = replace(state)

    def evict_stale(self) -> "int":
        """
        drops users whose counters would be reset on their next call: a
        day marker before today and an elapsed minute window.
        Returns the number of evicted users.
        """
        now = self._clock()
        today = self._today(now)
        evicted = 0
        with self._registry_lock:
            for user_id, slot in list(self._slots.items()):
                # skip users with a call in progress
                if not slot.lock.acquire(blocking=False):
                    continue
                try:
                    state = slot.state
                    if state.day < today and now - state.window_start >= self._window:
                        slot.evicted = True
                        del self._slots[user_id]
                        evicted += 1
                finally:
                    slot.lock.release()
        return evicted
