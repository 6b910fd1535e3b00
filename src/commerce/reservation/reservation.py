"""Reservation aggregate: a temporary hold on stock for one order.

State Machine:
    HELD → CONFIRMED          (payment succeeded)
    HELD → RELEASED           (payment failed, order cancelled)
    HELD → EXPIRED            (hold ran out before payment)

CONFIRMED, RELEASED and EXPIRED are terminal: the status never changes
again and nothing re-enters HELD. A confirmed reservation still owns its
reserved units until the order ships (committed_at) or is cancelled or
refunded before shipment (restocked_at).
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from commerce.domain import commerce
from commerce.errors import InvalidStateError
from commerce.reservation.events import (
    ReservationCommitted,
    ReservationConfirmed,
    ReservationHeld,
    ReservationReleased,
    ReservationRestocked,
)


class ReservationStatus(Enum):
    HELD = "Held"
    CONFIRMED = "Confirmed"
    RELEASED = "Released"
    EXPIRED = "Expired"


_RELEASED_STATUSES = {ReservationStatus.RELEASED.value, ReservationStatus.EXPIRED.value}

EXPIRY_REASON = "expired"


@dataclass(frozen=True)
class Line:
    """A requested ``{unit_id, quantity}`` pair."""

    unit_id: str
    quantity: int

    def as_dict(self) -> dict:
        return {"unit_id": self.unit_id, "quantity": self.quantity}


def normalize_lines(lines) -> list[Line]:
    """Coerce mappings, tuples or Lines into validated Lines, keeping their order."""
    if not lines:
        raise ValidationError({"lines": ["A reservation needs at least one line"]})

    normalized = []
    for raw in lines:
        if isinstance(raw, Line):
            line = raw
        elif isinstance(raw, dict):
            line = Line(unit_id=raw.get("unit_id"), quantity=raw.get("quantity"))
        else:
            unit_id, quantity = raw
            line = Line(unit_id=unit_id, quantity=quantity)

        if not line.unit_id:
            raise ValidationError({"lines": ["Every line needs a unit_id"]})
        if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity <= 0:
            raise ValidationError({"lines": [f"Quantity for {line.unit_id} must be a positive integer"]})
        normalized.append(Line(unit_id=str(line.unit_id), quantity=line.quantity))

    unit_ids = [line.unit_id for line in normalized]
    if len(unit_ids) != len(set(unit_ids)):
        raise ValidationError({"lines": ["Each unit may appear only once per reservation"]})
    return normalized


def lines_from_json(payload: str) -> list[Line]:
    return normalize_lines(json.loads(payload))


def lines_to_json(lines) -> str:
    return json.dumps([line.as_dict() for line in lines])


@commerce.entity(part_of="Reservation")
class ReservationLine:
    unit_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    position = Integer(default=0)


@commerce.aggregate
class Reservation:
    order_id = Identifier(required=True)
    lines = HasMany(ReservationLine)
    status = String(choices=ReservationStatus, default=ReservationStatus.HELD.value)
    created_at = DateTime(required=True)
    expires_at = DateTime(required=True)
    confirmed_at = DateTime()
    released_at = DateTime()
    release_reason = String(max_length=100)
    committed_at = DateTime()
    restocked_at = DateTime()

    @classmethod
    def hold(cls, reservation_id, order_id, lines, expires_at, now=None):
        now = now or datetime.now(UTC)
        reservation = cls(
            id=reservation_id,
            order_id=order_id,
            status=ReservationStatus.HELD.value,
            created_at=now,
            expires_at=expires_at,
        )
        for index, line in enumerate(lines):
            reservation.add_lines(ReservationLine(unit_id=line.unit_id, quantity=line.quantity, position=index))
        reservation.raise_(
            ReservationHeld(
                reservation_id=str(reservation.id),
                order_id=str(order_id),
                lines=lines_to_json(lines),
                created_at=reservation.created_at,
                expires_at=reservation.expires_at,
            )
        )
        return reservation

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def requested_lines(self) -> list[Line]:
        ordered = sorted(self.lines, key=lambda line: line.position or 0)
        return [Line(unit_id=str(line.unit_id), quantity=line.quantity) for line in ordered]

    @property
    def unit_ids(self) -> list[str]:
        return [line.unit_id for line in self.requested_lines]

    def matches(self, lines) -> bool:
        return self.requested_lines == list(lines)

    @property
    def is_held(self) -> bool:
        return self.status == ReservationStatus.HELD.value

    @property
    def is_confirmed(self) -> bool:
        return self.status == ReservationStatus.CONFIRMED.value

    @property
    def is_released(self) -> bool:
        return self.status in _RELEASED_STATUSES

    @property
    def owns_stock(self) -> bool:
        """Whether the reservation's units are still counted as reserved in the ledger."""
        if self.is_held:
            return True
        return self.is_confirmed and self.committed_at is None and self.restocked_at is None

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def confirm(self) -> bool:
        """HELD → CONFIRMED. Returns False when already confirmed."""
        if self.is_confirmed:
            return False
        if not self.is_held:
            raise InvalidStateError(str(self.id), self.status, "confirm")

        self.status = ReservationStatus.CONFIRMED.value
        self.confirmed_at = datetime.now(UTC)
        self.raise_(
            ReservationConfirmed(
                reservation_id=str(self.id),
                order_id=str(self.order_id),
                confirmed_at=self.confirmed_at,
            )
        )
        return True

    def release(self, reason) -> bool:
        """HELD → RELEASED, or EXPIRED for the expiry reason. Returns False when already released."""
        if self.is_released:
            return False
        if not self.is_held:
            raise InvalidStateError(str(self.id), self.status, "release")

        if reason == EXPIRY_REASON:
            self.status = ReservationStatus.EXPIRED.value
        else:
            self.status = ReservationStatus.RELEASED.value
        self.release_reason = reason
        self.released_at = datetime.now(UTC)
        self.raise_(
            ReservationReleased(
                reservation_id=str(self.id),
                order_id=str(self.order_id),
                status=self.status,
                reason=reason,
                released_at=self.released_at,
            )
        )
        return True

    def mark_committed(self) -> bool:
        if self.committed_at is not None:
            return False
        if not self.is_confirmed or self.restocked_at is not None:
            raise InvalidStateError(str(self.id), self.status, "commit")

        self.committed_at = datetime.now(UTC)
        self.raise_(
            ReservationCommitted(
                reservation_id=str(self.id),
                order_id=str(self.order_id),
                committed_at=self.committed_at,
            )
        )
        return True

    def mark_restocked(self) -> bool:
        if self.restocked_at is not None:
            return False
        if not self.is_confirmed or self.committed_at is not None:
            raise InvalidStateError(str(self.id), self.status, "restock")

        self.restocked_at = datetime.now(UTC)
        self.raise_(
            ReservationRestocked(
                reservation_id=str(self.id),
                order_id=str(self.order_id),
                restocked_at=self.restocked_at,
            )
        )
        return True
