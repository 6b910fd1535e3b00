"""Carrier status normalization, exception classification and tracking progress."""

from datetime import UTC, datetime, timedelta

import pytest

from commerce.tracking.normalization import (
    ExceptionType,
    TrackingStatus,
    at_risk_since,
    classify_exception,
    normalize_status,
)
from commerce.tracking.tracking import ShippingTrackingState

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestNormalizeStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("in_transit", TrackingStatus.IN_TRANSIT),
            ("IN TRANSIT", TrackingStatus.IN_TRANSIT),
            ("Out-for-delivery", TrackingStatus.IN_TRANSIT),
            ("delivered", TrackingStatus.DELIVERED),
            ("Delivered to mailbox", TrackingStatus.DELIVERED),
            ("exception", TrackingStatus.EXCEPTION),
            ("RTS", TrackingStatus.EXCEPTION),
            ("customs", TrackingStatus.EXCEPTION),
        ],
    )
    def test_known_statuses(self, raw, expected):
        assert normalize_status(raw) == expected

    @pytest.mark.parametrize("raw", ["", None, "teleported", "label_printed_maybe"])
    def test_unknown_statuses(self, raw):
        assert normalize_status(raw) is None


class TestClassifyException:
    @pytest.mark.parametrize(
        "raw,description,expected,requires_action",
        [
            ("returned", None, ExceptionType.RETURNED_TO_SENDER, True),
            ("rts", None, ExceptionType.RETURNED_TO_SENDER, True),
            ("exception", "Delivery attempt failed - no one available", ExceptionType.DELIVERY_FAILED, True),
            ("exception", "Incorrect address", ExceptionType.ADDRESS_ISSUE, True),
            ("lost", None, ExceptionType.LOST, True),
            ("damaged", None, ExceptionType.DAMAGED, True),
            ("delayed", "Severe storm in region", ExceptionType.WEATHER_DELAY, False),
            ("customs", None, ExceptionType.CUSTOMS_DELAY, False),
            ("at_risk", None, ExceptionType.AT_RISK, True),
            ("exception", "Something odd happened", ExceptionType.OTHER, True),
        ],
    )
    def test_classification(self, raw, description, expected, requires_action):
        exception = classify_exception(raw, description)
        assert exception.type == expected
        assert exception.requires_action is requires_action
        assert exception.suggested_action

    def test_note_mentions_type_and_action(self):
        note = classify_exception("returned").as_note()
        assert "returned_to_sender" in note
        assert "reship" in note


class TestAtRisk:
    def test_in_transit_shipment_is_at_risk_after_threshold(self):
        assert at_risk_since(TrackingStatus.IN_TRANSIT, T0, timedelta(days=7)) == T0 + timedelta(days=7)

    def test_other_statuses_are_never_at_risk(self):
        assert at_risk_since(TrackingStatus.DELIVERED, T0, timedelta(days=7)) is None
        assert at_risk_since(None, T0, timedelta(days=7)) is None

    def test_naive_timestamps_are_treated_as_utc(self):
        naive = T0.replace(tzinfo=None)
        assert at_risk_since(TrackingStatus.IN_TRANSIT, naive, timedelta(days=1)) == T0 + timedelta(days=1)


class TestTrackingProgress:
    def _state(self):
        return ShippingTrackingState.start(order_id="ord-001", carrier="fake", tracking_number="TRK-1")

    def test_progress_only_moves_forward(self):
        state = self._state()
        assert state.record_progress("delivered", TrackingStatus.DELIVERED, T0 + timedelta(hours=2))
        assert not state.record_progress("in_transit", TrackingStatus.IN_TRANSIT, T0 + timedelta(hours=1))
        assert state.progress == 2
        assert state.normalized_status == TrackingStatus.DELIVERED.value

    def test_repeated_status_is_discarded(self):
        state = self._state()
        assert state.record_progress("in_transit", TrackingStatus.IN_TRANSIT, T0)
        assert not state.record_progress("in_transit", TrackingStatus.IN_TRANSIT, T0 + timedelta(hours=1))

    def test_exception_keeps_progress(self):
        state = self._state()
        state.record_progress("in_transit", TrackingStatus.IN_TRANSIT, T0)
        state.record_exception("lost", classify_exception("lost"), T0 + timedelta(hours=1))
        assert state.progress == 1
        assert state.normalized_status == TrackingStatus.EXCEPTION.value
        assert state.exception_type == ExceptionType.LOST.value
        assert state.last_event_at == T0 + timedelta(hours=1)

    def test_last_event_at_never_moves_back(self):
        state = self._state()
        state.record_progress("delivered", TrackingStatus.DELIVERED, T0 + timedelta(hours=5))
        state.record_exception("lost", classify_exception("lost"), T0)
        assert state.last_event_at == T0 + timedelta(hours=5)
        assert not state.is_newer(T0 + timedelta(hours=4))

    def test_stop_deactivates_once(self):
        state = self._state()
        state.stop("delivered")
        state.stop("delivered")
        assert state.active is False
        assert len([e for e in state._events if type(e).__name__ == "TrackingStopped"]) == 1
