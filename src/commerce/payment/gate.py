"""Payment confirmation gate: turns provider outcomes into order effects.

The processor delivers each outcome at least once. A delivery is applied in
one unit of work that:

1. returns immediately if the provider event id was already processed;
2. on success confirms the reservation and moves the order to PROCESSING,
   on failure releases the reservation and cancels the order;
3. records the ProcessedPaymentEvent.

Nothing is committed unless all three steps succeed, so a crash leaves the
event unrecorded and the redelivery applies it from scratch.

A reservation that was resolved the other way in the meantime (success
arriving after the sweeper expired the hold, failure after a confirmation)
is not an error for the provider: the event is recorded as
``ALREADY_RESOLVED`` and the order is flagged for manual review.
"""

from dataclasses import dataclass

import structlog
from protean import handle
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.errors import InvalidStateError
from commerce.order.cancellation import apply_cancellation
from commerce.order.lifecycle import order_lock_keys, transition_order
from commerce.order.order import CancellationActor, NoteKind, Order, OrderStatus
from commerce.payment.processed_event import (
    GateEffect,
    PaymentOutcome,
    ProcessedPaymentEvent,
    find_processed,
)
from commerce.reservation.engine import confirm_reservation, current_reservation, release_reservation
from commerce.utils.concurrency import run_exclusive

logger = structlog.get_logger(__name__)

PAYMENT_FAILED_REASON = "payment_failed"


@dataclass(frozen=True)
class GateResult:
    provider_event_id: str
    order_id: str
    effect: GateEffect


@commerce.command(part_of="ProcessedPaymentEvent")
class HandlePaymentEvent:
    provider_event_id = String(required=True, max_length=255)
    order_id = Identifier(required=True)
    outcome = String(required=True, choices=PaymentOutcome)


def _apply_success(order, reservation) -> GateEffect:
    if reservation is None:
        order.flag_for_review("Payment succeeded but the order has no reservation", kind=NoteKind.PAYMENT)
        return GateEffect.ALREADY_RESOLVED

    try:
        confirm_reservation(reservation)
    except InvalidStateError:
        logger.warning(
            "Payment succeeded after reservation was resolved",
            order_id=str(order.id),
            reservation_id=str(reservation.id),
            reservation_status=reservation.status,
        )
        order.flag_for_review(
            f"Payment succeeded after reservation {reservation.id} was {reservation.status.lower()}; refund required",
            kind=NoteKind.PAYMENT,
        )
        return GateEffect.ALREADY_RESOLVED

    if order.order_status == OrderStatus.PENDING:
        transition_order(order, OrderStatus.PROCESSING)
        return GateEffect.APPLIED

    logger.info("Order already past pending", order_id=str(order.id), status=order.status)
    return GateEffect.ALREADY_RESOLVED


def _apply_failure(order, reservation) -> GateEffect:
    if reservation is not None:
        try:
            release_reservation(reservation, PAYMENT_FAILED_REASON)
        except InvalidStateError:
            logger.warning(
                "Payment failure for a confirmed reservation",
                order_id=str(order.id),
                reservation_id=str(reservation.id),
            )
            order.flag_for_review(
                f"Payment failure received after reservation {reservation.id} was confirmed",
                kind=NoteKind.PAYMENT,
            )
            return GateEffect.ALREADY_RESOLVED

    if order.order_status == OrderStatus.PENDING:
        apply_cancellation(
            order,
            PAYMENT_FAILED_REASON,
            cancelled_by=CancellationActor.SYSTEM,
            payment_failed=True,
        )
        return GateEffect.APPLIED

    logger.info("Order already past pending", order_id=str(order.id), status=order.status)
    return GateEffect.ALREADY_RESOLVED


@commerce.command_handler(part_of=ProcessedPaymentEvent)
class PaymentGateHandler:
    @handle(HandlePaymentEvent)
    def handle_payment_event(self, command):
        if find_processed(command.provider_event_id) is not None:
            logger.info("Duplicate payment event ignored", provider_event_id=command.provider_event_id)
            return GateResult(command.provider_event_id, str(command.order_id), GateEffect.DUPLICATE)

        outcome = PaymentOutcome.parse(command.outcome)
        orders = current_domain.repository_for(Order)
        order = orders.get(command.order_id)
        reservation = current_reservation(order.id)

        if outcome == PaymentOutcome.SUCCEEDED:
            effect = _apply_success(order, reservation)
        else:
            effect = _apply_failure(order, reservation)

        orders.add(order)
        current_domain.repository_for(ProcessedPaymentEvent).add(
            ProcessedPaymentEvent.record(
                provider_event_id=command.provider_event_id,
                order_id=command.order_id,
                outcome=outcome,
                effect=effect,
            )
        )

        logger.info(
            "Payment event processed",
            provider_event_id=command.provider_event_id,
            order_id=str(order.id),
            outcome=outcome.value,
            effect=effect.value,
            order_status=order.status,
        )
        return GateResult(command.provider_event_id, str(order.id), effect)


class PaymentConfirmationGate:
    def handle_payment_event(self, provider_event_id, order_id, outcome) -> GateResult:
        outcome = PaymentOutcome.parse(outcome)
        if find_processed(provider_event_id) is not None:
            logger.info("Duplicate payment event ignored", provider_event_id=provider_event_id)
            return GateResult(provider_event_id, str(order_id), GateEffect.DUPLICATE)

        return run_exclusive(
            "handle_payment_event",
            lambda: [*order_lock_keys(order_id), f"payment_event:{provider_event_id}"],
            HandlePaymentEvent(
                provider_event_id=provider_event_id,
                order_id=str(order_id),
                outcome=outcome.value,
            ),
        )
