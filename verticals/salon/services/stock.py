"""Inventory service: persists the stock ledger.

Every change to ``Product.stock_quantity`` goes through this service and
writes exactly one ``StockMovementRecord`` whose ``delta`` is the applied
change, so the level can always be rebuilt from the movements.
"""

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ErrorCode, InsufficientStockError, NotFoundError, ValidationError
from domain.money import to_smallest_unit
from domain.stock_ledger import (
    MovementType,
    StockChange,
    StockRequest,
    apply_refund_restock,
    apply_sale,
    is_low_stock,
    reserve_stock,
)
from verticals.salon.models.db_models import Order, Product, StockMovementRecord
from verticals.salon.models.schemas import ProductCreate
from verticals.salon.repository import ProductRepository, StockMovementRepository

logger = logging.getLogger(__name__)


class InventoryService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.products = ProductRepository(session)
        self.movements = StockMovementRepository(session)

    async def check_availability(
        self, salon_id: UUID, requests: list[StockRequest]
    ) -> dict[UUID, Product]:
        """Lock the requested products and verify every line fits.

        Returns the locked rows keyed by id. Raises InsufficientStockError
        listing every shortage; nothing is deducted here.
        """
        locked = await self.products.lock_many(salon_id, (UUID(r.product_id) for r in requests))
        availability = {
            str(product.id): product.stock_quantity
            for product in locked.values()
            if product.is_active
        }
        result = reserve_stock(requests, availability)
        if not result.passed:
            logger.info(
                "Stock reservation failed",
                extra={"salon_id": str(salon_id), "shortages": len(result.details["shortages"])},
            )
            raise InsufficientStockError(result.details["shortages"])
        return locked

    def _record(
        self,
        product: Product,
        change: StockChange,
        movement_type: MovementType,
        reference_type: str | None,
        reference_id: str | None,
        requested: int | None,
        notes: str | None = None,
    ) -> StockMovementRecord:
        product.stock_quantity = change.new_stock
        movement = StockMovementRecord(
            salon_id=product.salon_id,
            product_id=product.id,
            delta=change.delta,
            movement_type=movement_type.value,
            reference_type=reference_type,
            reference_id=reference_id,
            requested_quantity=requested,
            stock_after=change.new_stock,
            notes=notes,
        )
        self.session.add(movement)
        if is_low_stock(change.new_stock, product.minimum_stock):
            logger.info(
                "Low stock",
                extra={"product_id": str(product.id), "stock": change.new_stock},
            )
        return movement

    async def deduct_for_order(self, order: Order) -> list[StockChange]:
        """Apply the sale of every order line. No-op if already deducted."""
        if order.stock_deducted:
            return []
        locked = await self.products.lock_many(order.salon_id, (i.product_id for i in order.items))
        changes = []
        for item in order.items:
            product = locked.get(item.product_id)
            if product is None:
                logger.warning(
                    "Product missing during stock deduction",
                    extra={"order_id": str(order.id), "product_id": str(item.product_id)},
                )
                continue
            change = apply_sale(product.stock_quantity, item.quantity)
            if change.reconciliation_warning:
                logger.warning(
                    "Stock floored at zero, reconciliation needed",
                    extra={
                        "order_id": str(order.id),
                        "product_id": str(product.id),
                        "stock": change.old_stock,
                        "requested": item.quantity,
                    },
                )
            self._record(product, change, MovementType.SALE, "order", str(order.id), item.quantity)
            changes.append(change)
        order.stock_deducted = True
        await self.session.flush()
        return changes

    async def restock_for_order(self, order: Order) -> list[StockChange]:
        """Return every line of a fully refunded or cancelled order to stock."""
        if not order.stock_deducted:
            return []
        locked = await self.products.lock_many(order.salon_id, (i.product_id for i in order.items))
        changes = []
        for item in order.items:
            product = locked.get(item.product_id)
            if product is None:
                continue
            change = apply_refund_restock(product.stock_quantity, item.quantity, product.max_stock)
            self._record(
                product, change, MovementType.REFUND, "order_refund", str(order.id), item.quantity
            )
            changes.append(change)
        order.stock_deducted = False
        await self.session.flush()
        return changes

    async def add_product(self, salon_id: UUID, data: ProductCreate) -> dict:
        """Create a product. Its starting stock is booked as an opening adjustment."""
        product = Product(
            salon_id=salon_id,
            name=data.name,
            sku=data.sku,
            price_minor=to_smallest_unit(data.price),
            stock_quantity=0,
            minimum_stock=data.minimum_stock,
            max_stock=data.max_stock,
        )
        self.session.add(product)
        await self.session.flush()
        if data.opening_stock:
            change = StockChange(0, data.opening_stock, data.opening_stock)
            self._record(product, change, MovementType.ADJUSTMENT, "opening_balance", None, None)
            await self.session.flush()
        logger.info(
            "Product created",
            extra={"product_id": str(product.id), "opening_stock": data.opening_stock},
        )
        return product.to_dict()

    async def _locked_product(self, salon_id: UUID, product_id: UUID) -> Product:
        locked = await self.products.lock_many(salon_id, [product_id])
        product = locked.get(product_id)
        if product is None:
            raise NotFoundError(ErrorCode.NOT_FOUND, "Produkt nicht gefunden.")
        return product

    async def receive(
        self, salon_id: UUID, product_id: UUID, quantity: int, notes: str | None = None
    ) -> dict:
        """Goods received from a supplier; not capped by ``max_stock``."""
        if quantity <= 0:
            raise ValidationError({"quantity": "Menge muss positiv sein."})
        product = await self._locked_product(salon_id, product_id)
        change = StockChange(product.stock_quantity, product.stock_quantity + quantity, quantity)
        self._record(product, change, MovementType.ADJUSTMENT, "goods_receipt", None, quantity, notes)
        await self.session.flush()
        logger.info(
            "Stock received",
            extra={"product_id": str(product_id), "quantity": quantity, "stock": change.new_stock},
        )
        return product.to_dict()

    async def adjust(
        self, salon_id: UUID, product_id: UUID, new_level: int, notes: str | None = None
    ) -> dict:
        """Manual stock count."""
        product = await self._locked_product(salon_id, product_id)
        change = StockChange(product.stock_quantity, new_level, new_level)
        self._record(product, change, MovementType.ADJUSTMENT, "adjustment", None, None, notes)
        await self.session.flush()
        logger.info(
            "Stock adjusted",
            extra={"product_id": str(product_id), "old": change.old_stock, "new": new_level},
        )
        return product.to_dict()

    async def history(self, salon_id: UUID, product_id: UUID) -> list[dict]:
        return [m.to_dict() for m in await self.movements.for_product(salon_id, product_id)]

    async def reconcile(self, salon_id: UUID, product_id: UUID) -> dict:
        """Compare the stored level with the sum of the product's movements."""
        product = await self.products.get_instance(product_id, salon_id)
        if product is None:
            raise NotFoundError(ErrorCode.NOT_FOUND, "Produkt nicht gefunden.")
        ledger_total = await self.movements.total_delta(salon_id, product_id)
        in_sync = ledger_total == product.stock_quantity
        if not in_sync:
            logger.warning(
                "Stock level differs from movement ledger",
                extra={
                    "product_id": str(product_id),
                    "stock": product.stock_quantity,
                    "ledger_total": ledger_total,
                },
            )
        return {
            "product_id": str(product_id),
            "stock_quantity": product.stock_quantity,
            "ledger_total": ledger_total,
            "in_sync": in_sync,
        }

    async def low_stock(self, salon_id: UUID) -> list[dict]:
        return await self.products.low_stock(salon_id)
