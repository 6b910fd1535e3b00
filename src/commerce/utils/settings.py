"""Domain tunables read from the ``[custom]`` section of domain.toml.

Hold duration, job intervals and retry bounds are configuration, not
constants. Every value has a default so the domain runs without a
``[custom]`` section.
"""

from datetime import timedelta
from typing import Any

from protean.utils.globals import current_domain

DEFAULTS: dict[str, Any] = {
    "reservation_hold_minutes": 15,
    "sweeper_interval_seconds": 60,
    "tracking_interval_seconds": 300,
    "lock_timeout_seconds": 2.0,
    "max_retries": 5,
    "retry_backoff_seconds": 0.01,
    "low_stock_threshold": 5,
    "at_risk_after_days": 7,
}


def setting(name: str) -> Any:
    """Return a tunable from the active domain's config, falling back to its default."""
    custom = current_domain.config.get("custom") or {}
    return custom.get(name, DEFAULTS[name])


def hold_duration() -> timedelta:
    return timedelta(minutes=setting("reservation_hold_minutes"))


def at_risk_after() -> timedelta:
    return timedelta(days=setting("at_risk_after_days"))
