"""Salon API router.

Standard router pattern:
- ``RequestContext`` injected per request (salon, role, customer)
- services built per request from the session and collaborators
- services raise DomainError subclasses; ``api.main`` turns them into JSON
- staff-only routes depend on ``require_staff`` / ``require_admin``
"""

from dataclasses import asdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from api.middleware import (
    RequestContext,
    get_request_context,
    require_admin,
    require_staff,
)
from core.csv_export import export_appointments_rows, export_orders_rows
from core.database import get_session
from core.errors import ValidationError
from domain.booking import CancellationActor
from domain.order_states import OrderStatus
from verticals.salon.config import config
from verticals.salon.models.schemas import (
    AppointmentCancel,
    AppointmentCreate,
    OrderCancel,
    OrderCreate,
    OrderStatusUpdate,
    PaginatedResponse,
    PlaceOrderResponse,
    PointsRedemption,
    ProductCreate,
    RefundRequest,
    ShipRequest,
    StockAdjustment,
    StockReceipt,
    TimeSlotResponse,
    WebhookResponse,
)
from verticals.salon.notifications import EmailNotifier, get_notifier
from verticals.salon.payments import PaymentGateway, get_payment_gateway
from verticals.salon.services.booking_service import BookingService
from verticals.salon.services.loyalty_service import LoyaltyService
from verticals.salon.services.order_service import OrderService
from verticals.salon.services.stock import InventoryService
from verticals.salon.services.webhook_service import WebhookService

router = APIRouter()


# ============================================================================
# Service factories
# ============================================================================

def get_booking_service(
    session: AsyncSession = Depends(get_session),
    notifier: EmailNotifier = Depends(get_notifier),
) -> BookingService:
    return BookingService(session, notifier, LoyaltyService(session, config.loyalty))


def get_order_service(
    session: AsyncSession = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    notifier: EmailNotifier = Depends(get_notifier),
) -> OrderService:
    return OrderService(session, gateway, notifier, config)


def get_webhook_service(
    session: AsyncSession = Depends(get_session),
    notifier: EmailNotifier = Depends(get_notifier),
) -> WebhookService:
    return WebhookService(session, notifier, config)


def get_inventory_service(session: AsyncSession = Depends(get_session)) -> InventoryService:
    return InventoryService(session)


def get_loyalty_service(session: AsyncSession = Depends(get_session)) -> LoyaltyService:
    return LoyaltyService(session, config.loyalty)


def _require_customer(ctx: RequestContext) -> UUID:
    if ctx.customer_id is None:
        raise ValidationError({"X-Customer-ID": "Pflichtfeld."})
    return ctx.customer_id


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _day_range(start: Optional[date], end: Optional[date]) -> tuple[datetime | None, datetime | None]:
    """Inclusive date range as a half-open UTC interval."""
    return (
        _midnight(start) if start else None,
        _midnight(end) + timedelta(days=1) if end else None,
    )


# ============================================================================
# Booking Endpoints
# ============================================================================

@router.get("/slots", response_model=list[TimeSlotResponse])
async def get_slots(
    staff_id: UUID,
    day: date,
    service_ids: list[UUID] = Query(...),
    ctx: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
):
    """Candidate slots for one staff member and day, with availability."""
    slots = await service.get_available_slots(ctx.salon_id, staff_id, day, service_ids)
    return [TimeSlotResponse(**asdict(slot)) for slot in slots]


@router.post("/appointments", status_code=201)
async def create_appointment(
    request: AppointmentCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
):
    """Book an appointment; it is confirmed right away."""
    return await service.create_appointment(ctx.salon_id, request, customer_id=ctx.customer_id)


@router.post("/appointments/{appointment_id}/cancel")
async def cancel_appointment(
    appointment_id: UUID,
    request: AppointmentCancel,
    ctx: RequestContext = Depends(get_request_context),
    service: BookingService = Depends(get_booking_service),
):
    """Cancel an appointment. Staff cancel as admin and skip the cutoff."""
    actor = CancellationActor.ADMIN if ctx.is_staff else CancellationActor.CUSTOMER
    return await service.cancel_appointment(
        ctx.salon_id,
        appointment_id,
        actor=actor,
        customer_id=ctx.customer_id,
        reason=request.reason,
    )


@router.post("/appointments/{appointment_id}/confirm")
async def confirm_appointment(
    appointment_id: UUID,
    ctx: RequestContext = Depends(require_staff),
    service: BookingService = Depends(get_booking_service),
):
    return await service.confirm_appointment(ctx.salon_id, appointment_id)


@router.post("/appointments/{appointment_id}/complete")
async def complete_appointment(
    appointment_id: UUID,
    ctx: RequestContext = Depends(require_staff),
    service: BookingService = Depends(get_booking_service),
):
    return await service.complete_appointment(ctx.salon_id, appointment_id)


@router.post("/appointments/{appointment_id}/no-show")
async def mark_no_show(
    appointment_id: UUID,
    ctx: RequestContext = Depends(require_staff),
    service: BookingService = Depends(get_booking_service),
):
    return await service.mark_no_show(ctx.salon_id, appointment_id)


# ============================================================================
# Order Endpoints
# ============================================================================

@router.post("/orders", status_code=201, response_model=PlaceOrderResponse)
async def place_order(
    request: OrderCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: OrderService = Depends(get_order_service),
):
    """Checkout. Card orders return the payment intent's client secret."""
    return await service.place_order(ctx.salon_id, request, customer_id=ctx.customer_id)


@router.get("/orders", response_model=PaginatedResponse)
async def list_orders(
    status: Optional[OrderStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    ctx: RequestContext = Depends(require_staff),
    service: OrderService = Depends(get_order_service),
):
    orders, total = await service.list_orders(ctx.salon_id, page=page, limit=limit, status=status)
    return {
        "data": orders,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


@router.get("/orders/{order_id}")
async def get_order(
    order_id: UUID,
    ctx: RequestContext = Depends(require_staff),
    service: OrderService = Depends(get_order_service),
):
    return await service.get_order(ctx.salon_id, order_id)


@router.patch("/orders/{order_id}/status")
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdate,
    ctx: RequestContext = Depends(require_staff),
    service: OrderService = Depends(get_order_service),
):
    """Move an order along the status table."""
    return await service.update_status(ctx.salon_id, order_id, request.status)


@router.post("/orders/{order_id}/ship")
async def ship_order(
    order_id: UUID,
    request: ShipRequest,
    ctx: RequestContext = Depends(require_staff),
    service: OrderService = Depends(get_order_service),
):
    return await service.mark_shipped(ctx.salon_id, order_id, request.tracking_number)


@router.post("/orders/{order_id}/cancel")
async def cancel_order(
    order_id: UUID,
    request: Optional[OrderCancel] = None,
    ctx: RequestContext = Depends(get_request_context),
    service: OrderService = Depends(get_order_service),
):
    """Cancel an order; captured payments are refunded. Customers can only cancel their own orders."""
    customer_id = None if ctx.is_staff else _require_customer(ctx)
    reason = request.reason if request else None
    return await service.cancel_order(ctx.salon_id, order_id, customer_id=customer_id, reason=reason)


@router.post("/orders/{order_id}/refund")
async def refund_order(
    order_id: UUID,
    request: RefundRequest,
    ctx: RequestContext = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    """Refund part or all of a paid order. Repeats are clamped, never doubled."""
    return await service.refund_order(ctx.salon_id, order_id, request.amount, request.reason)


# ============================================================================
# Inventory Endpoints
# ============================================================================

@router.get("/products/low-stock")
async def get_low_stock(
    ctx: RequestContext = Depends(require_staff),
    service: InventoryService = Depends(get_inventory_service),
):
    """Active products at or below their minimum stock."""
    products = await service.low_stock(ctx.salon_id)
    return {"data": products, "count": len(products)}


@router.post("/products", status_code=201)
async def create_product(
    request: ProductCreate,
    ctx: RequestContext = Depends(require_admin),
    service: InventoryService = Depends(get_inventory_service),
):
    """Add a product; opening stock is booked as a ledger movement."""
    return await service.add_product(ctx.salon_id, request)


@router.post("/products/{product_id}/stock")
async def adjust_stock(
    product_id: UUID,
    request: StockAdjustment,
    ctx: RequestContext = Depends(require_admin),
    service: InventoryService = Depends(get_inventory_service),
):
    return await service.adjust(ctx.salon_id, product_id, request.new_level, request.notes)


@router.post("/products/{product_id}/receive")
async def receive_stock(
    product_id: UUID,
    request: StockReceipt,
    ctx: RequestContext = Depends(require_admin),
    service: InventoryService = Depends(get_inventory_service),
):
    return await service.receive(ctx.salon_id, product_id, request.quantity, request.notes)


@router.get("/products/{product_id}/reconcile")
async def reconcile_stock(
    product_id: UUID,
    ctx: RequestContext = Depends(require_staff),
    service: InventoryService = Depends(get_inventory_service),
):
    return await service.reconcile(ctx.salon_id, product_id)


@router.get("/products/{product_id}/movements")
async def get_stock_movements(
    product_id: UUID,
    ctx: RequestContext = Depends(require_staff),
    service: InventoryService = Depends(get_inventory_service),
):
    movements = await service.history(ctx.salon_id, product_id)
    return {"data": movements, "count": len(movements)}


# ============================================================================
# Loyalty Endpoints
# ============================================================================

@router.get("/loyalty")
async def get_loyalty_summary(
    ctx: RequestContext = Depends(get_request_context),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    """Balance, tier, progress to the next tier and recent transactions."""
    return await service.get_summary(ctx.salon_id, _require_customer(ctx))


@router.post("/loyalty/redeem")
async def redeem_points(
    request: PointsRedemption,
    ctx: RequestContext = Depends(get_request_context),
    service: LoyaltyService = Depends(get_loyalty_service),
):
    value = await service.redeem_points(ctx.salon_id, _require_customer(ctx), request.points)
    return {"points": request.points, "value": f"{value:.2f}"}


# ============================================================================
# Webhooks
# ============================================================================

@router.post("/webhooks/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    gateway: PaymentGateway = Depends(get_payment_gateway),
    service: WebhookService = Depends(get_webhook_service),
):
    """Signature-verified Stripe events; replays answer ``already_processed``."""
    payload = await request.body()
    event = gateway.construct_event(payload, request.headers.get("Stripe-Signature"))
    result = await service.process_event(event)
    return result.to_dict()


# ============================================================================
# CSV Exports
# ============================================================================

@router.get("/exports/orders.csv")
async def export_orders(
    start: Optional[date] = None,
    end: Optional[date] = None,
    ctx: RequestContext = Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    rows = await service.export_rows(ctx.salon_id, *_day_range(start, end))
    return Response(
        content=export_orders_rows(rows),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="bestellungen.csv"'},
    )


@router.get("/exports/appointments.csv")
async def export_appointments(
    start: date,
    end: date,
    ctx: RequestContext = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    range_start, range_end = _day_range(start, end)
    rows = await service.list_between(ctx.salon_id, range_start, range_end)
    return Response(
        content=export_appointments_rows(rows),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="termine.csv"'},
    )
