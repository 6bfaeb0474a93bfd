"""Dataclass-based salon configuration.

Thresholds, tables and limits live in frozen dataclasses so the rule
functions receive them as plain arguments instead of reading globals.
Per-salon booking rules are stored in the database (see ``BookingRules``);
everything here is shop-wide.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal

from domain.loyalty import LoyaltyTier


# ---------------------------------------------------------------------------
# Nested config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ShippingMethod:
    id: str
    name: str
    description: str
    price: Decimal
    estimated_days: str


DEFAULT_SHIPPING_METHODS: tuple[ShippingMethod, ...] = (
    ShippingMethod("standard", "Standardversand", "Lieferung in 3-5 Werktagen", Decimal("8.90"), "3-5"),
    ShippingMethod("express", "Expressversand", "Lieferung in 1-2 Werktagen", Decimal("14.90"), "1-2"),
    ShippingMethod("pickup", "Abholung im Salon", "Kostenlos abholen im Salon", Decimal("0.00"), "1"),
)


@dataclass(frozen=True)
class ShopConfig:
    """Checkout pricing rules."""

    currency: str = "chf"
    free_shipping_threshold: Decimal = Decimal("50.00")
    shipping_methods: tuple[ShippingMethod, ...] = DEFAULT_SHIPPING_METHODS

    def shipping_method(self, method_id: str) -> ShippingMethod | None:
        return next((m for m in self.shipping_methods if m.id == method_id), None)


DEFAULT_TIERS: tuple[LoyaltyTier, ...] = (
    LoyaltyTier("bronze", "Bronze", 0, Decimal("1.0"), ("Punkte sammeln",)),
    LoyaltyTier("silver", "Silber", 500, Decimal("1.25"), ("25% Bonuspunkte", "Prioritäts-Buchung")),
    LoyaltyTier(
        "gold", "Gold", 1500, Decimal("1.5"),
        ("50% Bonuspunkte", "Prioritäts-Buchung", "Exklusive Angebote"),
    ),
    LoyaltyTier(
        "platinum", "Platin", 5000, Decimal("2.0"),
        ("100% Bonuspunkte", "VIP-Service", "Kostenlose Upgrades"),
    ),
)


@dataclass(frozen=True)
class LoyaltyConfig:
    """Customer loyalty program settings."""

    points_per_currency_unit: int = 1  # earned per CHF spent
    points_per_redemption_unit: int = 100  # 100 points = CHF 1
    tiers: tuple[LoyaltyTier, ...] = DEFAULT_TIERS


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SalonConfig:
    """Complete shop-wide configuration.

    Usage::

        config = SalonConfig.default()
        method = config.shop.shipping_method("standard")
    """

    shop: ShopConfig = field(default_factory=ShopConfig)
    loyalty: LoyaltyConfig = field(default_factory=LoyaltyConfig)

    @classmethod
    def default(cls) -> "SalonConfig":
        """Create config with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "SALON_") -> "SalonConfig":
        """Create config from environment variables.

        Example: SALON_FREE_SHIPPING_THRESHOLD=75.00
        """
        shop_overrides = {}
        threshold = os.getenv(f"{prefix}FREE_SHIPPING_THRESHOLD")
        if threshold:
            shop_overrides["free_shipping_threshold"] = Decimal(threshold)
        currency = os.getenv(f"{prefix}CURRENCY")
        if currency:
            shop_overrides["currency"] = currency.lower()

        loyalty_overrides = {}
        per_unit = os.getenv(f"{prefix}POINTS_PER_CURRENCY_UNIT")
        if per_unit:
            loyalty_overrides["points_per_currency_unit"] = int(per_unit)
        per_redemption = os.getenv(f"{prefix}POINTS_PER_REDEMPTION_UNIT")
        if per_redemption:
            loyalty_overrides["points_per_redemption_unit"] = int(per_redemption)

        return cls(shop=ShopConfig(**shop_overrides), loyalty=LoyaltyConfig(**loyalty_overrides))
