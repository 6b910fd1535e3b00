"""ShippingTrackingState aggregate: what the carrier last told us about a shipment.

One record per order, keyed by the order id. ``progress`` is the rank of the
furthest progress status recorded and only ever grows; ``normalized_status``
is the latest accepted status for display and may read ``exception`` while
progress stays where it was.
"""

from datetime import UTC, datetime

from protean.fields import Boolean, DateTime, Identifier, Integer, String

from commerce.domain import commerce
from commerce.tracking.events import (
    ShipmentRegistered,
    ShippingExceptionRecorded,
    TrackingProgressed,
    TrackingStopped,
)
from commerce.tracking.normalization import STATUS_RANK, ShippingException, TrackingStatus
from commerce.utils.clock import as_utc


@commerce.aggregate
class ShippingTrackingState:
    order_id = Identifier(identifier=True, required=True)
    carrier = String(required=True, max_length=50)
    tracking_number = String(required=True, max_length=100)
    carrier_status = String(max_length=100)
    normalized_status = String(choices=TrackingStatus)
    progress = Integer(default=0, min_value=0)
    exception_type = String(max_length=50)
    last_event_at = DateTime()
    active = Boolean(default=True)
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def start(cls, order_id, carrier, tracking_number):
        now = datetime.now(UTC)
        state = cls(
            order_id=order_id,
            carrier=carrier,
            tracking_number=tracking_number,
            progress=0,
            active=True,
            created_at=now,
            updated_at=now,
        )
        state.raise_(
            ShipmentRegistered(
                order_id=str(order_id),
                carrier=carrier,
                tracking_number=tracking_number,
                registered_at=now,
            )
        )
        return state

    def is_newer(self, event_at) -> bool:
        return self.last_event_at is None or as_utc(event_at) > as_utc(self.last_event_at)

    def _seen(self, event_at):
        if self.is_newer(event_at):
            self.last_event_at = event_at
        self.updated_at = datetime.now(UTC)

    def record_progress(self, raw_status, status: TrackingStatus, event_at) -> bool:
        """Record a progress status. Returns False when its rank is not ahead of ``progress``."""
        rank = STATUS_RANK[status]
        if rank <= (self.progress or 0):
            return False

        self.progress = rank
        self.carrier_status = raw_status
        self.normalized_status = status.value
        self._seen(event_at)
        self.raise_(
            TrackingProgressed(
                order_id=str(self.order_id),
                carrier_status=raw_status,
                normalized_status=status.value,
                event_at=event_at,
            )
        )
        return True

    def record_exception(self, raw_status, exception: ShippingException, event_at):
        self.carrier_status = raw_status
        self.normalized_status = TrackingStatus.EXCEPTION.value
        self.exception_type = exception.type.value
        self._seen(event_at)
        self.raise_(
            ShippingExceptionRecorded(
                order_id=str(self.order_id),
                carrier_status=raw_status,
                exception_type=exception.type.value,
                event_at=event_at,
            )
        )

    def stop(self, reason):
        if not self.active:
            return
        self.active = False
        self.updated_at = datetime.now(UTC)
        self.raise_(TrackingStopped(order_id=str(self.order_id), reason=reason, stopped_at=self.updated_at))
