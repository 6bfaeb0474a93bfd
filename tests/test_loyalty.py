"""Test loyalty tiers, earning and redemption."""
from decimal import Decimal

import pytest

from core.errors import ErrorCode
from domain.domain_config import DEFAULT_TIERS
from domain.loyalty import (
    LoyaltyTier,
    calculate_points,
    can_redeem,
    determine_tier,
    new_balance,
    next_tier,
    points_required,
    points_to_next_tier,
    redeemable_discount,
    redemption_value,
    tier_progress,
    validate_points_transaction,
    will_upgrade_tier,
)

BRONZE, SILVER, GOLD, PLATINUM = DEFAULT_TIERS


def test_gold_tier_at_1800_points():
    assert determine_tier(1800, DEFAULT_TIERS).id == "gold"
    assert points_to_next_tier(1800, DEFAULT_TIERS) == 3200
    assert tier_progress(1800, DEFAULT_TIERS) == pytest.approx(8.5714, abs=1e-3)


def test_thresholds_are_inclusive():
    assert determine_tier(499, DEFAULT_TIERS).id == "bronze"
    assert determine_tier(500, DEFAULT_TIERS).id == "silver"
    assert next_tier(500, DEFAULT_TIERS).id == "gold"


def test_top_tier():
    assert determine_tier(12000, DEFAULT_TIERS).id == "platinum"
    assert points_to_next_tier(12000, DEFAULT_TIERS) is None
    assert tier_progress(5000, DEFAULT_TIERS) == 100.0


def test_tier_is_monotonic_and_progress_bounded():
    previous = 0
    for points in range(0, 8000, 25):
        threshold = determine_tier(points, DEFAULT_TIERS).min_points
        assert threshold >= previous
        previous = threshold
        assert 0.0 <= tier_progress(points, DEFAULT_TIERS) <= 100.0


def test_unsorted_table_and_missing_zero_threshold():
    tiers = [LoyaltyTier("b", "B", 300), LoyaltyTier("a", "A", 100)]
    assert determine_tier(10, tiers).id == "a"
    assert determine_tier(350, tiers).id == "b"


def test_empty_tier_table_is_rejected():
    with pytest.raises(ValueError):
        determine_tier(10, [])


def test_points_use_tier_multiplier_half_up():
    calc = calculate_points(Decimal("65.00"), SILVER)
    assert calc.base_points == 65
    assert calc.total_points == 81
    assert calc.bonus_points == 16

    assert calculate_points(Decimal("10.20"), SILVER).total_points == 13
    assert calculate_points(Decimal("2.5"), BRONZE).total_points == 3


def test_negative_amount_cannot_earn():
    with pytest.raises(ValueError):
        calculate_points(Decimal("-1"), BRONZE)


def test_redemption():
    assert redemption_value(250) == Decimal("2.5")
    assert points_required(Decimal("2.5")) == 250
    assert points_required(Decimal("0.015")) == 2
    assert redeemable_discount(10000, Decimal("20.00")) == Decimal("20.00")
    assert redeemable_discount(-5, Decimal("20.00")) == 0
    assert can_redeem(100, 100)
    assert not can_redeem(100, 0)


def test_points_transaction_must_be_covered():
    result = validate_points_transaction(100, -150)
    assert result.error_code == ErrorCode.LOYALTY_INSUFFICIENT_POINTS
    assert result.details == {"available": 100, "required": 150}
    assert validate_points_transaction(100, -100).passed
    assert new_balance(100, -150) == 0


def test_will_upgrade_tier():
    assert will_upgrade_tier(450, 100, DEFAULT_TIERS).id == "silver"
    assert will_upgrade_tier(100, 10, DEFAULT_TIERS) is None
