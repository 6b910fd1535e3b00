"""Carrier port: abstract interface for shipping carrier tracking.

The domain code programs against the port; adapters are swapped via
configuration. Responses are untrusted: statuses arrive in any order and may
repeat, so callers rank them rather than applying them as they come.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


class CarrierError(Exception):
    """The carrier could not be reached or rejected the request."""


@dataclass(frozen=True)
class TrackingInfo:
    """Latest tracking state for one shipment.

    ``status`` is the carrier's raw status string. ``events`` is the carrier's
    event list, newest last, each a dict with status, description,
    location and occurred_at.
    """

    status: str
    last_update: datetime | None = None
    events: list[dict] = field(default_factory=list)


class CarrierPort(ABC):
    """Abstract interface for carrier adapters."""

    @abstractmethod
    def get_tracking(self, tracking_number: str) -> TrackingInfo:
        """Fetch the current tracking state. Raises CarrierError on failure."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """Verify that a webhook callback is authentic."""
        ...
