"""Unit tests for plan limits and limit evaluation."""

from dataclasses import dataclass
from decimal import Decimal

import pytest

from voxledger.domain.billing.limits import (
    PLAN_LIMITS,
    LimitStatus,
    UsageLimits,
    evaluate,
    evaluate_minutes,
    limits_for,
    status_for,
)


@dataclass
class _Snapshot:
    monthly_minutes: int


class TestPlanLimits:
    """Test the static plan table."""

    @pytest.mark.parametrize(
        ("plan", "monthly", "daily", "threshold", "overage"),
        [
            ("FREE", 10, 2, 0.8, "0.08"),
            ("STARTER", 100, 10, 0.8, "0.07"),
            ("PRO", 500, 25, 0.85, "0.06"),
            ("ENTERPRISE", 2000, 100, 0.9, "0.05"),
            ("ADMIN", 1000, 50, 0.9, "0.05"),
            ("GOD_MODE", 999999, 999999, 0.95, "0.03"),
        ],
    )
    def test_plan_table(self, plan, monthly, daily, threshold, overage):
        limits = PLAN_LIMITS[plan]

        assert limits.monthly_minute_limit == monthly
        assert limits.daily_minute_limit == daily
        assert limits.warning_threshold == threshold
        assert limits.overage_rate == Decimal(overage)

    def test_limits_for_is_case_insensitive(self):
        assert limits_for("pro") is PLAN_LIMITS["PRO"]
        assert limits_for(" Starter ") is PLAN_LIMITS["STARTER"]

    def test_unknown_plan_falls_back_to_free(self):
        """An unknown plan gets the most restrictive limits."""
        assert limits_for("PLATINUM") is PLAN_LIMITS["FREE"]
        assert limits_for(None) is PLAN_LIMITS["FREE"]
        assert limits_for("") is PLAN_LIMITS["FREE"]

    def test_invalid_limits_rejected(self):
        with pytest.raises(ValueError):
            UsageLimits(
                monthly_minute_limit=0,
                daily_minute_limit=1,
                warning_threshold=0.8,
                overage_rate=Decimal("0.01"),
            )
        with pytest.raises(ValueError):
            UsageLimits(
                monthly_minute_limit=10,
                daily_minute_limit=1,
                warning_threshold=1.5,
                overage_rate=Decimal("0.01"),
            )


class TestEvaluate:
    """Test limit status evaluation."""

    def test_safe_below_threshold(self):
        """Six minutes of a ten-minute plan is safe."""
        result = evaluate(_Snapshot(monthly_minutes=6), PLAN_LIMITS["FREE"])

        assert result.status == LimitStatus.SAFE
        assert result.percent_used == pytest.approx(0.6)
        assert result.minutes_remaining == 4
        assert result.message == "Usage within limits. 6/10 minutes used."

    def test_warning_at_threshold(self):
        result = evaluate(_Snapshot(monthly_minutes=9), PLAN_LIMITS["FREE"])

        assert result.status == LimitStatus.WARNING
        assert result.percent_used == pytest.approx(0.9)
        assert result.minutes_remaining == 1
        assert result.message == "Approaching usage limit. 9/10 minutes used (90%)."

    def test_warning_threshold_is_inclusive(self):
        result = evaluate_minutes(8, PLAN_LIMITS["FREE"])

        assert result.status == LimitStatus.WARNING

    def test_exceeded_at_limit(self):
        result = evaluate_minutes(10, PLAN_LIMITS["FREE"])

        assert result.status == LimitStatus.EXCEEDED
        assert result.minutes_remaining == 0

    def test_exceeded_above_limit(self):
        result = evaluate_minutes(12, PLAN_LIMITS["FREE"])

        assert result.status == LimitStatus.EXCEEDED
        assert result.percent_used == pytest.approx(1.2)
        assert result.minutes_remaining == 0
        assert "Overage charges apply" in result.message

    def test_zero_usage(self):
        result = evaluate_minutes(0, PLAN_LIMITS["PRO"])

        assert result.status == LimitStatus.SAFE
        assert result.minutes_remaining == 500

    def test_status_severity_order(self):
        assert LimitStatus.SAFE.severity < LimitStatus.WARNING.severity
        assert LimitStatus.WARNING.severity < LimitStatus.EXCEEDED.severity

    def test_status_for_uses_plan_threshold(self):
        assert status_for(0.84, PLAN_LIMITS["PRO"]) == LimitStatus.SAFE
        assert status_for(0.85, PLAN_LIMITS["PRO"]) == LimitStatus.WARNING
