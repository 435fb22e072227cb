import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import ManualClock
from coachcore.errors import QuotaExceeded, RateLimited
from coachcore.models import QuotaState, Tier
from coachcore.quota import LimitKind, QuotaLimiter

# 2023-11-14T22:13:20Z
START = 1_700_000_000.0


def _limiter(
    clock: "ManualClock",
    free: "int | None" = 2,
    per_minute: "int" = 60,
) -> "QuotaLimiter":
    return QuotaLimiter(
        daily_limits={Tier.FREE: free, Tier.PRO: None},
        max_per_minute=per_minute,
        window_seconds=60.0,
        clock=clock,
    )


class TestDailyQuota:
    def test_free_tier_third_call_rejected(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=2)

        first = limiter.check_and_consume("user-1", Tier.FREE)
        second = limiter.check_and_consume("user-1", Tier.FREE)
        third = limiter.check_and_consume("user-1", Tier.FREE)

        assert first.allowed and second.allowed
        assert third.allowed is False
        assert third.limit is LimitKind.DAILY
        with pytest.raises(QuotaExceeded) as exc_info:
            third.raise_for_rejection()
        assert exc_info.value.limit == 2

    def test_rejection_reports_time_until_next_day(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=1)
        limiter.check_and_consume("user-1", Tier.FREE)
        decision = limiter.check_and_consume("user-1", Tier.FREE)

        now = datetime.fromtimestamp(START, tz=timezone.utc)
        midnight = datetime.combine(
            now.date() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc
        )
        assert decision.retry_after == pytest.approx((midnight - now).total_seconds())

    def test_counter_resets_on_new_day(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=2)
        today = datetime.fromtimestamp(START, tz=timezone.utc).date()
        limiter.restore(
            "user-1",
            QuotaState(
                daily_count=2,
                day=today - timedelta(days=1),
                window_count=0,
                window_start=START - 3600,
            ),
        )

        decision = limiter.check_and_consume("user-1", Tier.FREE)

        assert decision.allowed is True
        state = limiter.state("user-1")
        assert state is not None
        assert state.daily_count == 1
        assert state.day == today

    def test_rollover_after_midnight(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=1)
        limiter.check_and_consume("user-1", Tier.FREE)
        assert limiter.check_and_consume("user-1", Tier.FREE).allowed is False

        clock.advance(24 * 3600)
        assert limiter.check_and_consume("user-1", Tier.FREE).allowed is True

    def test_pro_tier_is_unlimited(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=1, per_minute=1000)
        for _ in range(50):
            decision = limiter.check_and_consume("user-1", Tier.PRO)
            assert decision.allowed is True
            assert decision.remaining_today is None

    def test_users_are_independent(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=1)
        assert limiter.check_and_consume("user-1", Tier.FREE).allowed is True
        assert limiter.check_and_consume("user-2", Tier.FREE).allowed is True
        assert limiter.check_and_consume("user-1", Tier.FREE).allowed is False


class TestMinuteWindow:
    def test_rejects_past_ceiling_with_wait_time(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=None, per_minute=3)
        for _ in range(3):
            assert limiter.check_and_consume("user-1", Tier.FREE).allowed is True
            clock.advance(10)

        decision = limiter.check_and_consume("user-1", Tier.FREE)
        assert decision.allowed is False
        assert decision.limit is LimitKind.PER_MINUTE
        # window anchored at the first call, 30s have elapsed
        assert decision.retry_after == pytest.approx(30.0)
        with pytest.raises(RateLimited) as exc_info:
            decision.raise_for_rejection()
        assert exc_info.value.wait_seconds == pytest.approx(30.0)

    def test_window_resets_after_expiry(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=None, per_minute=1)
        assert limiter.check_and_consume("user-1", Tier.FREE).allowed is True
        assert limiter.check_and_consume("user-1", Tier.FREE).allowed is False

        clock.advance(60)
        assert limiter.check_and_consume("user-1", Tier.FREE).allowed is True

    def test_daily_limit_checked_before_window(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=1, per_minute=1)
        limiter.check_and_consume("user-1", Tier.FREE)
        decision = limiter.check_and_consume("user-1", Tier.FREE)
        assert decision.limit is LimitKind.DAILY

    def test_rejection_does_not_consume(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock, free=5, per_minute=1)
        limiter.check_and_consume("user-1", Tier.FREE)
        limiter.check_and_consume("user-1", Tier.FREE)
        state = limiter.state("user-1")
        assert state is not None
        assert state.daily_count == 1


class TestConcurrency:
    def test_concurrent_calls_never_exceed_limit(self) -> "None":
        limiter = QuotaLimiter(
            daily_limits={Tier.FREE: 10},
            max_per_minute=1000,
        )
        results: "list[bool]" = []
        results_lock = threading.Lock()

        def worker() -> "None":
            for _ in range(10):
                decision = limiter.check_and_consume("user-1", Tier.FREE)
                with results_lock:
                    results.append(decision.allowed)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 10
        assert len(results) == 80


class TestEviction:
    def test_evicts_users_from_previous_days(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock)
        limiter.check_and_consume("user-1", Tier.FREE)
        clock.advance(24 * 3600)
        limiter.check_and_consume("user-2", Tier.FREE)

        assert limiter.evict_stale() == 1
        assert limiter.state("user-1") is None
        assert limiter.state("user-2") is not None

    def test_unseen_user_has_no_state(self, clock: "ManualClock") -> "None":
        assert _limiter(clock).state("nobody") is None

    def test_day_marker_uses_limiter_clock(self, clock: "ManualClock") -> "None":
        limiter = _limiter(clock)
        limiter.check_and_consume("user-1", Tier.FREE)
        state = limiter.state("user-1")
        assert state is not None
        assert state.day == date(2023, 11, 14)
