"""Pydantic schemas for API request/response validation."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.order_states import OrderStatus, PaymentMethod

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ShippingMethodId(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    PICKUP = "pickup"


# ---------------------------------------------------------------------------
# Booking
# ---------------------------------------------------------------------------

class AppointmentCreate(BaseModel):
    staff_id: UUID
    staff_name: Optional[str] = Field(None, max_length=200)
    service_ids: list[UUID] = Field(..., min_length=1, max_length=10)
    starts_at: datetime
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_email: Optional[str] = Field(None, pattern=EMAIL_PATTERN)
    notes: Optional[str] = Field(None, max_length=2000)


class AppointmentCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Shop
# ---------------------------------------------------------------------------

class OrderItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., ge=1, le=99)


class OrderCreate(BaseModel):
    items: list[OrderItemCreate] = Field(..., min_length=1)
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_email: str = Field(..., pattern=EMAIL_PATTERN)
    shipping_method: ShippingMethodId = ShippingMethodId.STANDARD
    payment_method: PaymentMethod = PaymentMethod.CARD
    voucher_code: Optional[str] = Field(None, max_length=32)
    points_to_redeem: int = Field(0, ge=0)


class OrderCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class RefundRequest(BaseModel):
    # None refunds whatever is still refundable
    amount: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    reason: Optional[str] = Field(None, max_length=500)


class ShipRequest(BaseModel):
    tracking_number: Optional[str] = Field(None, max_length=100)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=300)
    sku: Optional[str] = Field(None, max_length=64)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    opening_stock: int = Field(0, ge=0)
    minimum_stock: int = Field(5, ge=0)
    max_stock: Optional[int] = Field(None, gt=0)


class StockAdjustment(BaseModel):
    new_level: int = Field(..., ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class StockReceipt(BaseModel):
    quantity: int = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Loyalty
# ---------------------------------------------------------------------------

class PointsRedemption(BaseModel):
    points: int = Field(..., gt=0)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class TimeSlotResponse(BaseModel):
    staff_id: str
    starts_at: datetime
    ends_at: datetime
    available: bool


class PlaceOrderResponse(BaseModel):
    order: dict
    client_secret: Optional[str] = None


class WebhookResponse(BaseModel):
    received: bool = True
    status: str
    action: Optional[str] = None


class PaginatedResponse(BaseModel):
    data: list
    pagination: dict
