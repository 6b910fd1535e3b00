"""Fake carrier adapter: scripted tracking responses for tests and development.

Each tracking number answers with the last response scripted for it; an
unscripted number reports ``in_transit`` as of now.
"""

from datetime import UTC, datetime

from commerce.carrier.port import CarrierError, CarrierPort, TrackingInfo


class FakeCarrier(CarrierPort):
    def __init__(self):
        self.should_succeed = True
        self.failure_reason = "Carrier unavailable"
        self.responses: dict[str, TrackingInfo] = {}
        self.requests: list[str] = []

    def configure(self, should_succeed: bool = True, failure_reason: str = "Carrier unavailable"):
        """Configure the fake carrier behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def script(self, tracking_number: str, status: str, last_update: datetime | None = None, events=None):
        """Make ``tracking_number`` report ``status`` until scripted again."""
        when = last_update or datetime.now(UTC)
        self.responses[tracking_number] = TrackingInfo(
            status=status,
            last_update=when,
            events=list(events or [{"status": status, "occurred_at": when.isoformat()}]),
        )

    def get_tracking(self, tracking_number: str) -> TrackingInfo:
        self.requests.append(tracking_number)
        if not self.should_succeed:
            raise CarrierError(self.failure_reason)

        if tracking_number in self.responses:
            return self.responses[tracking_number]

        now = datetime.now(UTC)
        return TrackingInfo(
            status="in_transit",
            last_update=now,
            events=[
                {
                    "status": "in_transit",
                    "location": "Distribution Center, NY",
                    "description": "Package in transit",
                    "occurred_at": now.isoformat(),
                }
            ],
        )

    def verify_webhook_signature(self, _payload: str, _signature: str) -> bool:
        # FakeCarrier accepts any signature (or empty signature) for testing
        return True
