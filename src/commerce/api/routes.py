"""FastAPI routes for the commerce core.

Routes that write take row locks and may back off between attempts, so they
are plain ``def`` and FastAPI runs them in its threadpool. Reads stay
``async``.
"""

import json
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Header, HTTPException

from commerce.api.schemas import (
    AdjustStockRequest,
    AdvanceOrderRequest,
    CancelOrderRequest,
    CheckoutRequest,
    CheckoutResponse,
    ExpireReservationsRequest,
    ExpireReservationsResponse,
    FlagOrderRequest,
    LineSchema,
    OrderNoteSchema,
    OrderResponse,
    PaymentWebhookRequest,
    PaymentWebhookResponse,
    ReceiveStockRequest,
    ReconcileTrackingResponse,
    RefundOrderRequest,
    RegisterShipmentRequest,
    RegisterStockRequest,
    ReleaseRequest,
    ReservationResponse,
    ReserveRequest,
    ShipmentResponse,
    StatusResponse,
    StockMovementResponse,
    StockResponse,
    TrackingUpdateResponse,
    TrackingWebhookRequest,
)
from commerce.carrier import get_carrier
from commerce.checkout.checkout import Checkout
from commerce.gateway import get_gateway
from commerce.order.lifecycle import OrderLifecycle
from commerce.order.order import CancellationActor, OrderStatus
from commerce.payment.gate import PaymentConfirmationGate
from commerce.projections.stock_movement import movements_for
from commerce.reservation.engine import ReservationEngine
from commerce.reservation.expiry import cancel_abandoned_orders, expire_stale_reservations
from commerce.stock.management import adjust_stock, get_stock, receive_stock, register_stock
from commerce.tracking.reconciliation import TrackingReconciler, find_by_tracking_number, reconcile_tracking


def _order_response(order) -> OrderResponse:
    return OrderResponse(
        order_id=str(order.id),
        status=order.status,
        payment_status=order.payment_status,
        reservation_id=str(order.reservation_id) if order.reservation_id else None,
        payment_intent_id=order.payment_intent_id,
        total=order.totals.total if order.totals else 0.0,
        needs_review=bool(order.needs_review),
        cancellation_reason=order.cancellation_reason,
        notes=[
            OrderNoteSchema(kind=note.kind, message=note.message, author=note.author, created_at=note.created_at)
            for note in order.notes
        ],
    )


def _stock_response(record) -> StockResponse:
    return StockResponse(
        unit_id=str(record.unit_id),
        total_quantity=record.total_quantity,
        reserved_quantity=record.reserved_quantity,
        available_quantity=record.available_quantity,
    )


def _reservation_response(reservation) -> ReservationResponse:
    return ReservationResponse(
        reservation_id=str(reservation.id),
        order_id=str(reservation.order_id),
        status=reservation.status,
        lines=[LineSchema(unit_id=line.unit_id, quantity=line.quantity) for line in reservation.requested_lines],
        created_at=reservation.created_at,
        expires_at=reservation.expires_at,
        release_reason=reservation.release_reason,
    )


def _shipment_response(state) -> ShipmentResponse:
    return ShipmentResponse(
        order_id=str(state.order_id),
        carrier=state.carrier,
        tracking_number=state.tracking_number,
        carrier_status=state.carrier_status,
        normalized_status=state.normalized_status,
        exception_type=state.exception_type,
        last_event_at=state.last_event_at,
        active=bool(state.active),
    )


# ---------------------------------------------------------------------------
# Checkout Router
# ---------------------------------------------------------------------------
checkout_router = APIRouter(prefix="/checkout", tags=["checkout"])


@checkout_router.post("", status_code=201, response_model=CheckoutResponse)
def checkout(body: CheckoutRequest) -> CheckoutResponse:
    result = Checkout().place_order(
        items=[item.model_dump() for item in body.items],
        customer_id=body.customer_id,
        tax=body.tax,
        shipping=body.shipping,
        discount=body.discount,
        order_id=body.order_id,
    )
    return CheckoutResponse(
        order_id=result.order_id,
        reservation_id=result.reservation_id,
        payment_intent_id=result.payment_intent_id,
        total=result.total,
        expires_at=result.expires_at,
        needs_review=result.needs_review,
    )


# ---------------------------------------------------------------------------
# Order Router
# ---------------------------------------------------------------------------
order_router = APIRouter(prefix="/orders", tags=["orders"])


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    return _order_response(OrderLifecycle().get(order_id))


@order_router.put("/{order_id}/advance", response_model=OrderResponse)
def advance_order(order_id: str, body: AdvanceOrderRequest) -> OrderResponse:
    try:
        target = OrderStatus(body.status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown order status: {body.status}") from None
    return _order_response(OrderLifecycle().advance(order_id, target))


@order_router.put("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(order_id: str, body: CancelOrderRequest) -> OrderResponse:
    try:
        actor = CancellationActor(body.cancelled_by)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown actor: {body.cancelled_by}") from None
    return _order_response(OrderLifecycle().cancel(order_id, body.reason, actor))


@order_router.put("/{order_id}/refund", response_model=OrderResponse)
def refund_order(order_id: str, body: RefundOrderRequest) -> OrderResponse:
    return _order_response(OrderLifecycle().refund(order_id, body.reason))


@order_router.put("/{order_id}/flag", response_model=StatusResponse)
def flag_order(order_id: str, body: FlagOrderRequest) -> StatusResponse:
    OrderLifecycle().flag_for_review(order_id, body.reason)
    return StatusResponse(status="flagged")


@order_router.post("/{order_id}/shipment", status_code=201, response_model=ShipmentResponse)
def register_shipment(order_id: str, body: RegisterShipmentRequest) -> ShipmentResponse:
    state = TrackingReconciler().register_shipment(order_id, body.carrier, body.tracking_number)
    return _shipment_response(state)


@order_router.get("/{order_id}/shipment", response_model=ShipmentResponse)
async def get_shipment(order_id: str) -> ShipmentResponse:
    return _shipment_response(TrackingReconciler().get(order_id))


# ---------------------------------------------------------------------------
# Stock Router
# ---------------------------------------------------------------------------
stock_router = APIRouter(prefix="/stock", tags=["stock"])


@stock_router.post("", status_code=201, response_model=StockResponse)
def register(body: RegisterStockRequest) -> StockResponse:
    unit_id = register_stock(body.unit_id, body.total_quantity, body.low_stock_threshold)
    return _stock_response(get_stock(unit_id))


@stock_router.get("/{unit_id}", response_model=StockResponse)
async def stock_level(unit_id: str) -> StockResponse:
    return _stock_response(get_stock(unit_id))


@stock_router.put("/{unit_id}/receive", response_model=StockResponse)
def receive(unit_id: str, body: ReceiveStockRequest) -> StockResponse:
    receive_stock(unit_id, body.quantity, reference=body.reference)
    return _stock_response(get_stock(unit_id))


@stock_router.put("/{unit_id}/adjust", response_model=StockResponse)
def adjust(unit_id: str, body: AdjustStockRequest) -> StockResponse:
    adjust_stock(unit_id, body.new_total, body.reason)
    return _stock_response(get_stock(unit_id))


@stock_router.get("/{unit_id}/movements", response_model=list[StockMovementResponse])
async def stock_movements(unit_id: str) -> list[StockMovementResponse]:
    return [
        StockMovementResponse(
            movement=entry.movement,
            reservation_id=str(entry.reservation_id) if entry.reservation_id else None,
            quantity_change=entry.quantity_change,
            reserved_change=entry.reserved_change,
            total_quantity=entry.total_quantity,
            reserved_quantity=entry.reserved_quantity,
            available_quantity=entry.available_quantity,
            note=entry.note,
            occurred_at=entry.occurred_at,
        )
        for entry in movements_for(unit_id)
    ]


# ---------------------------------------------------------------------------
# Reservation Router
# ---------------------------------------------------------------------------
reservation_router = APIRouter(prefix="/reservations", tags=["reservations"])


@reservation_router.post("", status_code=201, response_model=ReservationResponse)
def reserve(body: ReserveRequest) -> ReservationResponse:
    expires_at = None
    if body.expires_in_minutes:
        expires_at = datetime.now(UTC) + timedelta(minutes=body.expires_in_minutes)
    reservation = ReservationEngine().reserve(
        body.order_id,
        [line.model_dump() for line in body.lines],
        expires_at=expires_at,
    )
    return _reservation_response(reservation)


@reservation_router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(reservation_id: str) -> ReservationResponse:
    return _reservation_response(ReservationEngine().get(reservation_id))


@reservation_router.put("/{reservation_id}/confirm", response_model=ReservationResponse)
def confirm(reservation_id: str) -> ReservationResponse:
    return _reservation_response(ReservationEngine().confirm(reservation_id))


@reservation_router.put("/{reservation_id}/release", response_model=ReservationResponse)
def release(reservation_id: str, body: ReleaseRequest) -> ReservationResponse:
    return _reservation_response(ReservationEngine().release(reservation_id, body.reason))


# ---------------------------------------------------------------------------
# Webhook Routers
# ---------------------------------------------------------------------------
payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.post("/webhook", response_model=PaymentWebhookResponse)
def payment_webhook(
    body: PaymentWebhookRequest,
    x_gateway_signature: str = Header(default=""),
) -> PaymentWebhookResponse:
    """Apply a payment outcome. Redeliveries of the same event are acknowledged, not reapplied."""
    if not get_gateway().verify_webhook_signature(json.dumps(body.model_dump()), x_gateway_signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    result = PaymentConfirmationGate().handle_payment_event(body.provider_event_id, body.order_id, body.outcome)
    return PaymentWebhookResponse(
        provider_event_id=result.provider_event_id,
        order_id=result.order_id,
        effect=result.effect.value,
    )


tracking_router = APIRouter(prefix="/tracking", tags=["tracking"])


@tracking_router.post("/webhook", response_model=TrackingUpdateResponse)
def tracking_webhook(
    body: TrackingWebhookRequest,
    x_carrier_signature: str = Header(default=""),
) -> TrackingUpdateResponse:
    if not get_carrier().verify_webhook_signature(json.dumps(body.model_dump(mode="json")), x_carrier_signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    state = find_by_tracking_number(body.tracking_number)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Unknown tracking number: {body.tracking_number}")

    outcome = TrackingReconciler().ingest(state.order_id, body.status, body.occurred_at, body.description)
    return TrackingUpdateResponse(order_id=str(state.order_id), outcome=outcome.value)


# ---------------------------------------------------------------------------
# Maintenance: periodic background job endpoints
# ---------------------------------------------------------------------------
maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@maintenance_router.post("/expire-reservations", response_model=ExpireReservationsResponse)
def expire_reservations(body: ExpireReservationsRequest | None = None) -> ExpireReservationsResponse:
    """Release holds past their expiry. Safe to call from several schedulers at once."""
    as_of = body.as_of if body else None
    expired = expire_stale_reservations(as_of)
    abandoned = cancel_abandoned_orders(as_of)
    return ExpireReservationsResponse(expired=expired, abandoned_orders_cancelled=abandoned)


@maintenance_router.post("/reconcile-tracking", response_model=ReconcileTrackingResponse)
def reconcile() -> ReconcileTrackingResponse:
    summary = reconcile_tracking()
    return ReconcileTrackingResponse(checked=summary.checked, failed=summary.failed, outcomes=summary.outcomes)
