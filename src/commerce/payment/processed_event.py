"""ProcessedPaymentEvent aggregate: the payment webhook dedupe table.

One row per provider event id, written in the same unit of work as the
effect of that event. Rows are never updated.
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce


class PaymentOutcome(Enum):
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @classmethod
    def parse(cls, value):
        """Accept enum members, names or values in any case ("succeeded", "FAILED")."""
        if isinstance(value, cls):
            return value
        for member in cls:
            if str(value).lower() in (member.name.lower(), member.value.lower()):
                return member
        raise ValidationError({"outcome": [f"Unknown payment outcome: {value}"]})


class GateEffect(Enum):
    APPLIED = "Applied"
    DUPLICATE = "Duplicate"
    ALREADY_RESOLVED = "Already_Resolved"


@commerce.aggregate
class ProcessedPaymentEvent:
    provider_event_id = String(identifier=True, required=True, max_length=255)
    order_id = Identifier(required=True)
    outcome = String(choices=PaymentOutcome, required=True)
    effect = String(choices=GateEffect, default=GateEffect.APPLIED.value)
    processed_at = DateTime(required=True)

    @classmethod
    def record(cls, provider_event_id, order_id, outcome: PaymentOutcome, effect: GateEffect):
        return cls(
            provider_event_id=provider_event_id,
            order_id=order_id,
            outcome=outcome.value,
            effect=effect.value,
            processed_at=datetime.now(UTC),
        )


def find_processed(provider_event_id) -> ProcessedPaymentEvent | None:
    try:
        return current_domain.repository_for(ProcessedPaymentEvent).get(provider_event_id)
    except ObjectNotFoundError:
        return None
