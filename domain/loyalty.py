"""Loyalty tier calculator.

Derives tier, bonus multiplier and progress from lifetime points. The tier
table is always passed in; the default table lives in ``domain_config``.
"""

import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from core.errors import ErrorCode
from domain.money import to_decimal
from domain.rules_engine import RuleResult


@dataclass(frozen=True)
class LoyaltyTier:
    id: str
    name: str
    min_points: int
    points_multiplier: Decimal = Decimal("1.0")
    benefits: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PointsCalculation:
    base_points: int
    bonus_points: int
    total_points: int
    multiplier: Decimal


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _ascending(tiers: Sequence[LoyaltyTier]) -> list[LoyaltyTier]:
    if not tiers:
        raise ValueError("Tier table must contain at least one tier")
    return sorted(tiers, key=lambda t: t.min_points)


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------

def determine_tier(lifetime_points: int, tiers: Sequence[LoyaltyTier]) -> LoyaltyTier:
    """Highest tier whose threshold is <= lifetime_points.

    Falls back to the lowest tier when the table has no zero threshold.
    """
    ordered = _ascending(tiers)
    current = ordered[0]
    for tier in ordered:
        if lifetime_points >= tier.min_points:
            current = tier
    return current


def next_tier(lifetime_points: int, tiers: Sequence[LoyaltyTier]) -> LoyaltyTier | None:
    return next((t for t in _ascending(tiers) if t.min_points > lifetime_points), None)


def points_to_next_tier(lifetime_points: int, tiers: Sequence[LoyaltyTier]) -> int | None:
    """Points still needed for the next tier, or None at the top tier."""
    upcoming = next_tier(lifetime_points, tiers)
    if upcoming is None:
        return None
    return upcoming.min_points - lifetime_points


def tier_progress(lifetime_points: int, tiers: Sequence[LoyaltyTier]) -> float:
    """Percentage (0-100) between the current and the next tier threshold."""
    upcoming = next_tier(lifetime_points, tiers)
    if upcoming is None:
        return 100.0

    current = determine_tier(lifetime_points, tiers)
    tier_range = upcoming.min_points - current.min_points
    if tier_range <= 0:
        return 0.0
    progress = (lifetime_points - current.min_points) / tier_range * 100
    return min(100.0, max(0.0, progress))


def will_upgrade_tier(
    lifetime_points: int,
    points_to_earn: int,
    tiers: Sequence[LoyaltyTier],
) -> LoyaltyTier | None:
    """The tier reached after earning ``points_to_earn``, if it is a higher one."""
    before = determine_tier(lifetime_points, tiers)
    after = determine_tier(lifetime_points + points_to_earn, tiers)
    if after.min_points > before.min_points:
        return after
    return None


# ---------------------------------------------------------------------------
# Earning
# ---------------------------------------------------------------------------

def calculate_points(
    amount: Decimal | int | float,
    tier: LoyaltyTier,
    points_per_unit: int = 1,
) -> PointsCalculation:
    """Points for a purchase or visit: amount x rate x tier multiplier, half-up."""
    base = to_decimal(amount) * points_per_unit
    if base < 0:
        raise ValueError("Cannot earn points on a negative amount")

    base_points = _round_half_up(base)
    total_points = _round_half_up(base * tier.points_multiplier)
    return PointsCalculation(
        base_points=base_points,
        bonus_points=total_points - base_points,
        total_points=total_points,
        multiplier=tier.points_multiplier,
    )


# ---------------------------------------------------------------------------
# Redemption
# ---------------------------------------------------------------------------

def redemption_value(points: int, points_per_unit: int = 100) -> Decimal:
    """Currency value of ``points`` (100 points = 1 unit by default)."""
    return Decimal(points) / points_per_unit


def points_required(value: Decimal | int | float, points_per_unit: int = 100) -> int:
    return math.ceil(to_decimal(value) * points_per_unit)


def redeemable_discount(
    points: int,
    order_total: Decimal,
    points_per_unit: int = 100,
) -> Decimal:
    """Discount the points buy on this order, capped at the order total."""
    return min(redemption_value(max(points, 0), points_per_unit), to_decimal(order_total))


def can_redeem(current_points: int, points_to_redeem: int) -> bool:
    return 0 < points_to_redeem <= current_points


def validate_points_transaction(current_points: int, points_delta: int) -> RuleResult:
    """Redemptions (negative deltas) must be covered by the current balance."""
    if points_delta < 0 and current_points < abs(points_delta):
        return RuleResult.fail(
            "points_transaction",
            ErrorCode.LOYALTY_INSUFFICIENT_POINTS,
            f"Nicht genügend Punkte. Verfügbar: {current_points}, Benötigt: {abs(points_delta)}",
            available=current_points,
            required=abs(points_delta),
        )
    return RuleResult.ok("points_transaction")


def new_balance(current_points: int, points_delta: int) -> int:
    return max(0, current_points + points_delta)
