"""Carrier status normalization and shipping exception classification.

Carriers report free-form statuses ("IN_TRANSIT", "Out for delivery",
"RTS"...). They are reduced to three normalized statuses. Only the two
progress statuses are ranked; an exception is a side channel and never
moves progress backwards or forwards.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from commerce.utils.clock import as_utc


class TrackingStatus(Enum):
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    EXCEPTION = "exception"


STATUS_RANK = {
    TrackingStatus.IN_TRANSIT: 1,
    TrackingStatus.DELIVERED: 2,
}


class ExceptionType(Enum):
    RETURNED_TO_SENDER = "returned_to_sender"
    DELIVERY_FAILED = "delivery_failed"
    LOST = "lost"
    DAMAGED = "damaged"
    ADDRESS_ISSUE = "address_issue"
    WEATHER_DELAY = "weather_delay"
    CUSTOMS_DELAY = "customs_delay"
    AT_RISK = "at_risk"
    OTHER = "other"


_IN_TRANSIT = {
    "in_transit",
    "transit",
    "shipped",
    "picked_up",
    "accepted",
    "label_created",
    "out_for_delivery",
    "arrived_at_facility",
    "departed_facility",
}
_DELIVERED = {"delivered", "delivered_to_mailbox", "delivered_to_neighbor", "picked_up_by_customer"}
_EXCEPTION = {
    "exception",
    "failure",
    "failed_attempt",
    "delivery_failed",
    "returned",
    "returned_to_sender",
    "lost",
    "damaged",
    "address_issue",
    "held",
    "delayed",
    "weather_delay",
    "customs",
    "customs_delay",
    "at_risk",
}


_ALIASES = {"rts": "returned_to_sender", "return_to_sender": "returned_to_sender"}


def _canonical(raw: str) -> str:
    key = "_".join(str(raw or "").strip().lower().replace("-", " ").split())
    return _ALIASES.get(key, key)


def normalize_status(raw_status) -> TrackingStatus | None:
    """Map a carrier status onto a TrackingStatus, or None when unrecognized."""
    key = _canonical(raw_status)
    if key in _DELIVERED:
        return TrackingStatus.DELIVERED
    if key in _IN_TRANSIT:
        return TrackingStatus.IN_TRANSIT
    if key in _EXCEPTION:
        return TrackingStatus.EXCEPTION
    return None


@dataclass(frozen=True)
class ShippingException:
    type: ExceptionType
    message: str
    requires_action: bool
    suggested_action: str

    def as_note(self) -> str:
        return f"Shipping exception: {self.type.value}. {self.message}. Suggested action: {self.suggested_action}"


# Checked in order; the first rule whose keywords match the status or description wins
_RULES = [
    (
        ExceptionType.RETURNED_TO_SENDER,
        ("returned", "return to sender"),
        "Package returned to sender",
        True,
        "Contact customer to verify address and reship",
    ),
    (
        ExceptionType.DELIVERY_FAILED,
        ("delivery_failed", "failed_attempt", "delivery attempt failed", "no one available"),
        "Delivery attempt failed, recipient not available",
        True,
        "Contact customer to schedule redelivery",
    ),
    (
        ExceptionType.ADDRESS_ISSUE,
        ("address",),
        "Address verification failed or incorrect",
        True,
        "Contact customer to verify shipping address",
    ),
    (
        ExceptionType.LOST,
        ("lost",),
        "Carrier reports the package as lost",
        True,
        "File claim with carrier and prepare refund or replacement",
    ),
    (
        ExceptionType.DAMAGED,
        ("damaged", "damage"),
        "Carrier reports the package as damaged",
        True,
        "File damage claim and prepare replacement",
    ),
    (
        ExceptionType.AT_RISK,
        ("at_risk",),
        "No tracking updates for an extended period, package may be lost",
        True,
        "File claim with carrier and prepare refund or replacement",
    ),
    (
        ExceptionType.WEATHER_DELAY,
        ("weather", "storm"),
        "Delayed due to weather conditions",
        False,
        "Notify customer of delay, carrier will resume delivery when safe",
    ),
    (
        ExceptionType.CUSTOMS_DELAY,
        ("customs", "clearance"),
        "Delayed in customs clearance",
        False,
        "Normal for international shipments, may require 1-3 days",
    ),
]


def classify_exception(raw_status, description: str | None = None) -> ShippingException:
    status = _canonical(raw_status)
    text = (description or "").lower()
    for exception_type, keywords, message, requires_action, suggested in _RULES:
        if any(keyword in status or keyword in text for keyword in keywords):
            return ShippingException(exception_type, message, requires_action, suggested)

    return ShippingException(
        ExceptionType.OTHER,
        description or f"Carrier reported {raw_status}",
        True,
        "Review the shipment with the carrier",
    )


def at_risk_since(normalized: TrackingStatus | None, last_update: datetime | None, threshold) -> datetime | None:
    """When an in-transit shipment that stopped reporting became at risk, else None.

    ``threshold`` is the silence (a timedelta) after which the shipment counts
    as at risk. The moment is derived from the last carrier update, so repeated
    checks of the same silent shipment yield the same timestamp.
    """
    if normalized != TrackingStatus.IN_TRANSIT or last_update is None:
        return None
    return as_utc(last_update) + threshold
