"""Gift voucher rules.

A voucher belongs to one salon, carries a remaining balance that only ever
decreases, and may expire.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from core.errors import ErrorCode
from core.messages import get_error_message
from domain.booking import as_utc
from domain.money import to_decimal
from domain.rules_engine import RuleResult

CODE_LENGTH = 12
_CODE_GROUP = 4


@dataclass(frozen=True)
class Voucher:
    code: str
    salon_id: str
    total_value: Decimal
    remaining_value: Decimal
    expires_at: datetime | None = None
    is_active: bool = True


def normalize_code(code: str) -> str:
    """Upper-case and strip everything but letters and digits."""
    return re.sub(r"[^A-Z0-9]", "", code.upper())


def format_code(code: str) -> str:
    """``ABCD1234EFGH`` -> ``ABCD-1234-EFGH``."""
    clean = normalize_code(code)
    return "-".join(clean[i:i + _CODE_GROUP] for i in range(0, len(clean), _CODE_GROUP))


def _fail(error_code: ErrorCode, **details) -> RuleResult:
    return RuleResult.fail("voucher", error_code, get_error_message(error_code.value), **details)


def validate_voucher(voucher: Voucher | None, salon_id: str, now: datetime) -> RuleResult:
    """Whether ``voucher`` can be used at ``salon_id`` right now."""
    if voucher is None:
        return _fail(ErrorCode.VOUCHER_NOT_FOUND)
    if not voucher.is_active or str(voucher.salon_id) != str(salon_id):
        return _fail(ErrorCode.VOUCHER_NOT_APPLICABLE, code=voucher.code)
    if voucher.expires_at is not None and as_utc(voucher.expires_at) < as_utc(now):
        return _fail(ErrorCode.VOUCHER_EXPIRED, code=voucher.code)
    if to_decimal(voucher.remaining_value) <= 0:
        return _fail(ErrorCode.VOUCHER_ALREADY_USED, code=voucher.code)
    return RuleResult.ok("voucher", "Voucher valid", remaining=str(voucher.remaining_value))


def validate_redemption(
    voucher: Voucher | None,
    amount: Decimal | int | float,
    salon_id: str,
    now: datetime,
) -> RuleResult:
    """``validate_voucher`` plus a balance check for an explicit amount."""
    result = validate_voucher(voucher, salon_id, now)
    if not result.passed:
        return result
    if to_decimal(amount) > to_decimal(voucher.remaining_value):
        return _fail(
            ErrorCode.VOUCHER_INSUFFICIENT_BALANCE,
            code=voucher.code,
            remaining=str(voucher.remaining_value),
            requested=str(amount),
        )
    return result


def redemption_amount(voucher: Voucher, order_total: Decimal) -> Decimal:
    return max(Decimal("0"), min(to_decimal(voucher.remaining_value), to_decimal(order_total)))


def new_voucher_balance(remaining: Decimal, redeemed: Decimal) -> Decimal:
    return max(Decimal("0"), to_decimal(remaining) - max(to_decimal(redeemed), Decimal("0")))


def is_expiring_soon(voucher: Voucher, now: datetime, within_days: int = 30) -> bool:
    if voucher.expires_at is None:
        return False
    expires = as_utc(voucher.expires_at)
    now = as_utc(now)
    return now <= expires <= now + timedelta(days=within_days)


def days_until_expiry(voucher: Voucher, now: datetime) -> int | None:
    """Whole days left (rounded up), 0 once expired, None without expiry."""
    if voucher.expires_at is None:
        return None
    seconds = (as_utc(voucher.expires_at) - as_utc(now)).total_seconds()
    return max(0, math.ceil(seconds / 86400))
