"""Stock ledger.

Inventory levels only change through signed movements. Every mutation
yields exactly one ``StockMovement`` whose delta is the real change to the
level, so a product's level is always the sum of its movements.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping

from core.errors import ErrorCode
from domain.rules_engine import RuleResult


class MovementType(str, Enum):
    SALE = "sale"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class StockRequest:
    product_id: str
    quantity: int
    product_name: str | None = None


@dataclass(frozen=True)
class StockChange:
    old_stock: int
    new_stock: int
    requested_quantity: int
    reconciliation_warning: bool = False

    @property
    def delta(self) -> int:
        return self.new_stock - self.old_stock


@dataclass(frozen=True)
class StockMovement:
    """Immutable ledger entry."""

    product_id: str
    delta: int
    movement_type: MovementType
    reference_type: str | None = None
    reference_id: str | None = None
    requested_quantity: int | None = None


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def reserve_stock(
    requests: Iterable[StockRequest],
    availability: Mapping[str, int],
) -> RuleResult:
    """All-or-nothing availability check across an order's lines.

    Quantities for the same product are summed; unknown products count as
    zero available. Nothing is applied here: a passed result means every
    line fits.
    """
    requested: dict[str, int] = {}
    names: dict[str, str | None] = {}
    for req in requests:
        if req.quantity <= 0:
            raise ValueError("Requested quantity must be positive")
        requested[req.product_id] = requested.get(req.product_id, 0) + req.quantity
        names.setdefault(req.product_id, req.product_name)

    shortages = [
        {
            "product_id": product_id,
            "product_name": names[product_id],
            "requested": quantity,
            "available": availability.get(product_id, 0),
        }
        for product_id, quantity in requested.items()
        if quantity > availability.get(product_id, 0)
    ]
    if shortages:
        return RuleResult.fail(
            "stock_reservation",
            ErrorCode.ORDER_ITEM_OUT_OF_STOCK,
            f"Insufficient stock for {len(shortages)} product(s)",
            shortages=shortages,
        )
    return RuleResult.ok("stock_reservation", "All items in stock", requested=requested)


def apply_sale(stock: int, quantity: int) -> StockChange:
    """Deduct ``quantity``; floors at zero and flags a reconciliation warning."""
    if quantity < 0:
        raise ValueError("Sale quantity must be non-negative")
    new_stock = stock - quantity
    if new_stock < 0:
        return StockChange(stock, 0, quantity, reconciliation_warning=True)
    return StockChange(stock, new_stock, quantity)


def apply_refund_restock(stock: int, quantity: int, max_cap: int | None = None) -> StockChange:
    """Add ``quantity`` back, capped at ``max_cap`` when one is configured."""
    if quantity < 0:
        raise ValueError("Restock quantity must be non-negative")
    new_stock = stock + quantity
    if max_cap is not None:
        new_stock = min(new_stock, max(max_cap, stock))
    return StockChange(stock, new_stock, quantity)


def is_low_stock(level: int, minimum: int) -> bool:
    return level <= minimum


def replay(movements: Iterable[StockMovement]) -> int:
    """Level reconstructed from the movement history."""
    return sum(m.delta for m in movements)


# ---------------------------------------------------------------------------
# In-memory ledger
# ---------------------------------------------------------------------------

@dataclass
class StockLedger:
    """A product's level together with its movement history.

    Usage::

        ledger = StockLedger("prod-1", opening_balance=10, max_cap=20)
        ledger.sell(3, reference_id="ORD-1")
        ledger.restock(3, reference_id="ORD-1")
        assert ledger.level == replay(ledger.movements)
    """

    product_id: str
    opening_balance: int = 0
    max_cap: int | None = None
    movements: list[StockMovement] = field(default_factory=list)

    def __post_init__(self):
        if self.opening_balance < 0:
            raise ValueError("Opening balance must be non-negative")
        if self.opening_balance:
            self._record(self.opening_balance, MovementType.ADJUSTMENT, "opening_balance", None, None)

    @property
    def level(self) -> int:
        return replay(self.movements)

    def _record(
        self,
        delta: int,
        movement_type: MovementType,
        reference_type: str | None,
        reference_id: str | None,
        requested: int | None,
    ) -> StockMovement:
        movement = StockMovement(
            product_id=self.product_id,
            delta=delta,
            movement_type=movement_type,
            reference_type=reference_type,
            reference_id=reference_id,
            requested_quantity=requested,
        )
        self.movements.append(movement)
        return movement

    def sell(self, quantity: int, reference_id: str | None = None) -> StockChange:
        change = apply_sale(self.level, quantity)
        self._record(change.delta, MovementType.SALE, "order", reference_id, quantity)
        return change

    def restock(self, quantity: int, reference_id: str | None = None) -> StockChange:
        change = apply_refund_restock(self.level, quantity, self.max_cap)
        self._record(change.delta, MovementType.REFUND, "order_refund", reference_id, quantity)
        return change

    def adjust(self, new_level: int, note: str | None = None) -> StockChange:
        """Manual stock count: set the level to ``new_level``."""
        if new_level < 0:
            raise ValueError("Stock level must be non-negative")
        change = StockChange(self.level, new_level, new_level)
        self._record(change.delta, MovementType.ADJUSTMENT, "adjustment", note, None)
        return change
