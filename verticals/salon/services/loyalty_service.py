"""Loyalty service: points balances, tiers and their audit trail.

``lifetime_points`` only grows (it decides the tier); ``current_points`` is
the redeemable balance. Every balance change writes a LoyaltyTransaction.
"""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import DomainError, error_from_result
from domain.domain_config import LoyaltyConfig
from domain.loyalty import (
    calculate_points,
    determine_tier,
    new_balance,
    next_tier,
    points_to_next_tier,
    redemption_value,
    tier_progress,
    validate_points_transaction,
)
from verticals.salon.models.db_models import LoyaltyAccount, LoyaltyTransaction
from verticals.salon.repository import LoyaltyRepository

logger = logging.getLogger(__name__)


class LoyaltyService:
    def __init__(self, session: AsyncSession, config: LoyaltyConfig | None = None):
        self.session = session
        self.config = config or LoyaltyConfig()
        self.accounts = LoyaltyRepository(session)

    async def _account(self, salon_id: UUID, customer_id: UUID) -> LoyaltyAccount:
        account = await self.accounts.get_account(salon_id, customer_id, for_update=True)
        if account is None:
            account = LoyaltyAccount(
                salon_id=salon_id,
                customer_id=customer_id,
                current_points=0,
                lifetime_points=0,
                tier_id=determine_tier(0, self.config.tiers).id,
                is_enrolled=True,
            )
            self.session.add(account)
            await self.session.flush()
        return account

    def _log(
        self,
        account: LoyaltyAccount,
        points: int,
        transaction_type: str,
        reference_type: str | None,
        reference_id: str | None,
        description: str | None,
    ) -> None:
        self.session.add(
            LoyaltyTransaction(
                salon_id=account.salon_id,
                account_id=account.id,
                points=points,
                transaction_type=transaction_type,
                balance_after=account.current_points,
                reference_type=reference_type,
                reference_id=reference_id,
                description=description,
            )
        )

    async def get_summary(self, salon_id: UUID, customer_id: UUID) -> dict:
        account = await self._account(salon_id, customer_id)
        tiers = self.config.tiers
        tier = determine_tier(account.lifetime_points, tiers)
        upcoming = next_tier(account.lifetime_points, tiers)
        return {
            **account.to_dict(),
            "tier": {"id": tier.id, "name": tier.name, "benefits": list(tier.benefits)},
            "next_tier": {"id": upcoming.id, "name": upcoming.name} if upcoming else None,
            "points_to_next_tier": points_to_next_tier(account.lifetime_points, tiers),
            "tier_progress": round(tier_progress(account.lifetime_points, tiers), 2),
            "redemption_value": str(
                redemption_value(account.current_points, self.config.points_per_redemption_unit)
            ),
            "transactions": await self.accounts.transactions(account.id),
        }

    async def award_points(
        self,
        salon_id: UUID,
        customer_id: UUID,
        amount: Decimal,
        *,
        reference_type: str | None = None,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> int:
        """Earn points on ``amount`` at the customer's current tier multiplier."""
        account = await self._account(salon_id, customer_id)
        if not account.is_enrolled:
            return 0

        tier = determine_tier(account.lifetime_points, self.config.tiers)
        calc = calculate_points(amount, tier, self.config.points_per_currency_unit)
        if calc.total_points == 0:
            return 0

        account.current_points += calc.total_points
        account.lifetime_points += calc.total_points
        new_tier = determine_tier(account.lifetime_points, self.config.tiers)
        if new_tier.id != account.tier_id:
            logger.info(
                "Loyalty tier changed",
                extra={"customer_id": str(customer_id), "from": account.tier_id, "to": new_tier.id},
            )
            account.tier_id = new_tier.id
        self._log(account, calc.total_points, "earn", reference_type, reference_id, description)
        await self.session.flush()
        return calc.total_points

    async def redeem_points(
        self,
        salon_id: UUID,
        customer_id: UUID,
        points: int,
        *,
        reference_type: str | None = None,
        reference_id: str | None = None,
    ) -> Decimal:
        """Spend ``points``; returns their currency value."""
        account = await self._account(salon_id, customer_id)
        result = validate_points_transaction(account.current_points, -points)
        if not result.passed:
            raise error_from_result(result, DomainError, http_status=409)

        account.current_points = new_balance(account.current_points, -points)
        self._log(account, -points, "redeem", reference_type, reference_id, None)
        await self.session.flush()
        return redemption_value(points, self.config.points_per_redemption_unit)

    async def restore_points(
        self,
        salon_id: UUID,
        customer_id: UUID,
        points: int,
        *,
        reference_type: str | None = None,
        reference_id: str | None = None,
    ) -> None:
        """Give back points redeemed on an order that was cancelled.

        Only the redeemable balance is restored; lifetime points were never
        reduced by the redemption.
        """
        if points <= 0:
            return
        account = await self._account(salon_id, customer_id)
        account.current_points += points
        self._log(account, points, "restore", reference_type, reference_id, None)
        await self.session.flush()
