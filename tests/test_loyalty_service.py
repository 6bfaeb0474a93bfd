"""Test loyalty accounts against the database."""
from decimal import Decimal

import pytest

from conftest import CUSTOMER_ID, OTHER_SALON_ID, SALON_ID
from core.errors import DomainError, ErrorCode
from verticals.salon.repository import LoyaltyRepository
from verticals.salon.services.loyalty_service import LoyaltyService


@pytest.fixture
def loyalty(session):
    return LoyaltyService(session)


@pytest.mark.asyncio
async def test_new_customer_starts_at_bronze(loyalty):
    summary = await loyalty.get_summary(SALON_ID, CUSTOMER_ID)

    assert summary["current_points"] == 0
    assert summary["tier"]["id"] == "bronze"
    assert summary["next_tier"] == {"id": "silver", "name": "Silber"}
    assert summary["points_to_next_tier"] == 500
    assert summary["tier_progress"] == 0.0
    assert summary["transactions"] == []


@pytest.mark.asyncio
async def test_tier_multiplier_applies_after_upgrade(loyalty):
    assert await loyalty.award_points(SALON_ID, CUSTOMER_ID, Decimal("600")) == 600
    # silver earns 25% more
    assert await loyalty.award_points(SALON_ID, CUSTOMER_ID, Decimal("100")) == 125

    summary = await loyalty.get_summary(SALON_ID, CUSTOMER_ID)
    assert summary["lifetime_points"] == 725
    assert summary["tier_id"] == "silver"
    assert summary["tier"]["name"] == "Silber"
    assert summary["points_to_next_tier"] == 775
    assert summary["redemption_value"] == "7.25"


@pytest.mark.asyncio
async def test_accounts_are_per_salon(loyalty):
    await loyalty.award_points(SALON_ID, CUSTOMER_ID, Decimal("50"))
    other = await loyalty.get_summary(OTHER_SALON_ID, CUSTOMER_ID)
    assert other["lifetime_points"] == 0


@pytest.mark.asyncio
async def test_redeem_and_restore(loyalty):
    await loyalty.award_points(SALON_ID, CUSTOMER_ID, Decimal("300"))

    value = await loyalty.redeem_points(SALON_ID, CUSTOMER_ID, 200, reference_type="order", reference_id="o-1")
    assert value == Decimal("2")
    await loyalty.restore_points(SALON_ID, CUSTOMER_ID, 200, reference_type="order", reference_id="o-1")

    summary = await loyalty.get_summary(SALON_ID, CUSTOMER_ID)
    assert summary["current_points"] == 300
    assert summary["lifetime_points"] == 300
    assert sorted(t["transaction_type"] for t in summary["transactions"]) == ["earn", "redeem", "restore"]
    assert {t["points"] for t in summary["transactions"]} == {300, -200, 200}


@pytest.mark.asyncio
async def test_redeem_more_than_balance(loyalty):
    await loyalty.award_points(SALON_ID, CUSTOMER_ID, Decimal("10"))
    with pytest.raises(DomainError) as exc_info:
        await loyalty.redeem_points(SALON_ID, CUSTOMER_ID, 11)
    assert exc_info.value.code == ErrorCode.LOYALTY_INSUFFICIENT_POINTS
    assert exc_info.value.http_status == 409
    assert exc_info.value.details == {"available": 10, "required": 11}


@pytest.mark.asyncio
async def test_unenrolled_customer_earns_nothing(loyalty, session):
    await loyalty.get_summary(SALON_ID, CUSTOMER_ID)
    account = await LoyaltyRepository(session).get_account(SALON_ID, CUSTOMER_ID)
    account.is_enrolled = False

    assert await loyalty.award_points(SALON_ID, CUSTOMER_ID, Decimal("80")) == 0
    assert (await loyalty.get_summary(SALON_ID, CUSTOMER_ID))["current_points"] == 0


@pytest.mark.asyncio
async def test_restore_nothing_is_noop(loyalty):
    await loyalty.restore_points(SALON_ID, CUSTOMER_ID, 0)
    assert (await loyalty.get_summary(SALON_ID, CUSTOMER_ID))["transactions"] == []
