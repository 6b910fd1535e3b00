"""Domain events for the Reservation aggregate."""

from protean.fields import DateTime, Identifier, String, Text

from commerce.domain import commerce


@commerce.event(part_of="Reservation")
class ReservationHeld:
    __version__ = 1

    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    lines = Text(required=True)  # JSON: list of {unit_id, quantity}
    created_at = DateTime(required=True)
    expires_at = DateTime(required=True)


@commerce.event(part_of="Reservation")
class ReservationConfirmed:
    __version__ = 1

    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    confirmed_at = DateTime(required=True)


@commerce.event(part_of="Reservation")
class ReservationReleased:
    """Held stock went back to the ledger; status is Released or Expired."""

    __version__ = 1

    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    status = String(required=True)
    reason = String(max_length=100)
    released_at = DateTime(required=True)


@commerce.event(part_of="Reservation")
class ReservationCommitted:
    __version__ = 1

    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    committed_at = DateTime(required=True)


@commerce.event(part_of="Reservation")
class ReservationRestocked:
    """A confirmed reservation's stock was returned after cancellation or refund."""

    __version__ = 1

    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    restocked_at = DateTime(required=True)
