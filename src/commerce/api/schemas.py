"""Pydantic request/response schemas for the commerce API.

These are external contracts, separate from internal Protean commands.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class LineSchema(BaseModel):
    unit_id: str
    quantity: int = Field(ge=1)


class CheckoutItemSchema(LineSchema):
    unit_price: float = Field(ge=0.0)


class StatusResponse(BaseModel):
    status: str = "ok"


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------
class CheckoutRequest(BaseModel):
    order_id: str | None = None
    customer_id: str | None = None
    items: list[CheckoutItemSchema] = Field(min_length=1)
    tax: float = Field(ge=0.0, default=0.0)
    shipping: float = Field(ge=0.0, default=0.0)
    discount: float = Field(ge=0.0, default=0.0)


class CheckoutResponse(BaseModel):
    order_id: str
    reservation_id: str
    payment_intent_id: str
    total: float
    expires_at: datetime
    needs_review: bool = False


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class AdvanceOrderRequest(BaseModel):
    status: str


class CancelOrderRequest(BaseModel):
    reason: str
    cancelled_by: str = "Customer"


class RefundOrderRequest(BaseModel):
    reason: str


class FlagOrderRequest(BaseModel):
    reason: str


class OrderNoteSchema(BaseModel):
    kind: str
    message: str
    author: str | None = None
    created_at: datetime | None = None


class OrderResponse(BaseModel):
    order_id: str
    status: str
    payment_status: str
    reservation_id: str | None = None
    payment_intent_id: str | None = None
    total: float
    needs_review: bool = False
    cancellation_reason: str | None = None
    notes: list[OrderNoteSchema] = []


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------
class RegisterStockRequest(BaseModel):
    unit_id: str
    total_quantity: int = Field(ge=0, default=0)
    low_stock_threshold: int = Field(ge=0, default=5)


class ReceiveStockRequest(BaseModel):
    quantity: int = Field(ge=1)
    reference: str | None = None


class AdjustStockRequest(BaseModel):
    new_total: int = Field(ge=0)
    reason: str


class StockResponse(BaseModel):
    unit_id: str
    total_quantity: int
    reserved_quantity: int
    available_quantity: int


class StockMovementResponse(BaseModel):
    movement: str
    reservation_id: str | None = None
    quantity_change: int
    reserved_change: int
    total_quantity: int
    reserved_quantity: int
    available_quantity: int
    note: str | None = None
    occurred_at: datetime


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------
class ReserveRequest(BaseModel):
    order_id: str
    lines: list[LineSchema] = Field(min_length=1)
    expires_in_minutes: int | None = Field(default=None, ge=1)


class ReleaseRequest(BaseModel):
    reason: str


class ReservationResponse(BaseModel):
    reservation_id: str
    order_id: str
    status: str
    lines: list[LineSchema]
    created_at: datetime
    expires_at: datetime
    release_reason: str | None = None


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------
class PaymentWebhookRequest(BaseModel):
    provider_event_id: str
    order_id: str
    outcome: str


class PaymentWebhookResponse(BaseModel):
    provider_event_id: str
    order_id: str
    effect: str


class TrackingWebhookRequest(BaseModel):
    tracking_number: str
    status: str
    occurred_at: datetime | None = None
    description: str | None = None


class TrackingUpdateResponse(BaseModel):
    order_id: str
    outcome: str


class RegisterShipmentRequest(BaseModel):
    carrier: str
    tracking_number: str


class ShipmentResponse(BaseModel):
    order_id: str
    carrier: str
    tracking_number: str
    carrier_status: str | None = None
    normalized_status: str | None = None
    exception_type: str | None = None
    last_event_at: datetime | None = None
    active: bool


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
class ExpireReservationsRequest(BaseModel):
    as_of: datetime | None = None


class ExpireReservationsResponse(BaseModel):
    expired: int
    abandoned_orders_cancelled: int


class ReconcileTrackingResponse(BaseModel):
    checked: int
    failed: int
    outcomes: dict[str, int]
