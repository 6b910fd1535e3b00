"""Domain events for the ShippingTrackingState aggregate."""

from protean.fields import DateTime, Identifier, String

from commerce.domain import commerce


@commerce.event(part_of="ShippingTrackingState")
class ShipmentRegistered:
    __version__ = 1

    order_id = Identifier(required=True)
    carrier = String(required=True, max_length=50)
    tracking_number = String(required=True, max_length=100)
    registered_at = DateTime(required=True)


@commerce.event(part_of="ShippingTrackingState")
class TrackingProgressed:
    __version__ = 1

    order_id = Identifier(required=True)
    carrier_status = String(required=True, max_length=100)
    normalized_status = String(required=True, max_length=20)
    event_at = DateTime(required=True)


@commerce.event(part_of="ShippingTrackingState")
class ShippingExceptionRecorded:
    __version__ = 1

    order_id = Identifier(required=True)
    carrier_status = String(required=True, max_length=100)
    exception_type = String(required=True, max_length=50)
    event_at = DateTime(required=True)


@commerce.event(part_of="ShippingTrackingState")
class TrackingStopped:
    __version__ = 1

    order_id = Identifier(required=True)
    reason = String(max_length=100)
    stopped_at = DateTime(required=True)
