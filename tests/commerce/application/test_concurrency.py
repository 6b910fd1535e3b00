"""Concurrent reservations never oversell and races resolve to one outcome."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st

from commerce.domain import commerce
from commerce.errors import ConcurrencyExhaustedError, InsufficientStockError
from commerce.order.lifecycle import OrderLifecycle
from commerce.order.order import OrderStatus
from commerce.payment.gate import PaymentConfirmationGate
from commerce.reservation.engine import ReservationEngine
from commerce.reservation.expiry import expire_stale_reservations
from commerce.stock.management import get_stock, register_stock
from commerce.utils import concurrency
from commerce.utils.clock import utcnow
from commerce.utils.concurrency import row_locks, unit_key
from commerce.utils.settings import DEFAULTS

pytestmark = pytest.mark.slow


def _run_concurrently(calls):
    """Run each zero-argument callable in its own thread and domain context.

    Returns one ``(result, error)`` pair per call, in order.
    """
    start = threading.Barrier(len(calls))

    def _worker(call):
        with commerce.domain_context():
            start.wait()
            try:
                return call(), None
            except Exception as exc:  # noqa: BLE001
                return None, exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_worker, calls))


def _reserve(unit_id, quantity):
    order_id = f"ord-{uuid4().hex[:8]}"
    return lambda: ReservationEngine().reserve(order_id, [(unit_id, quantity)])


class TestNoOversell:
    def test_ten_buyers_five_units(self):
        register_stock("hot-unit", 5)

        outcomes = _run_concurrently([_reserve("hot-unit", 1) for _ in range(10)])

        succeeded = [result for result, error in outcomes if error is None]
        refused = [error for _, error in outcomes if error is not None]
        assert len(succeeded) == 5
        assert len(refused) == 5
        assert all(isinstance(error, InsufficientStockError) for error in refused)

        record = get_stock("hot-unit")
        assert record.reserved_quantity == 5
        assert record.available_quantity == 0

    @given(
        total=st.integers(min_value=0, max_value=8),
        requests=st.lists(st.integers(min_value=1, max_value=4), min_size=1, max_size=6),
    )
    def test_reserved_never_exceeds_total(self, total, requests):
        unit_id = f"unit-{uuid4().hex[:8]}"
        register_stock(unit_id, total)

        outcomes = _run_concurrently([_reserve(unit_id, quantity) for quantity in requests])

        granted = sum(result.requested_lines[0].quantity for result, error in outcomes if error is None)
        for _, error in outcomes:
            assert error is None or isinstance(error, InsufficientStockError)

        record = get_stock(unit_id)
        assert granted <= total
        assert record.reserved_quantity == granted
        assert record.available_quantity == total - granted

    def test_concurrent_release_and_reserve_balance_out(self):
        register_stock("hot-unit", 4)
        engine = ReservationEngine()
        held = [engine.reserve(f"ord-{i}", [("hot-unit", 1)]) for i in range(4)]

        calls = [lambda r=r: engine.release(r.id, "payment_failed") for r in held]
        calls += [_reserve("hot-unit", 1) for _ in range(4)]
        outcomes = _run_concurrently(calls)

        new_holds = [result for result, error in outcomes[4:] if error is None]
        assert all(error is None for _, error in outcomes[:4])
        assert get_stock("hot-unit").reserved_quantity == len(new_holds)


class TestRaces:
    def test_payment_and_expiry_agree(self, place_order):
        placed = place_order(lines={"A": 2})
        later = utcnow() + timedelta(minutes=16)

        outcomes = _run_concurrently(
            [
                lambda: PaymentConfirmationGate().handle_payment_event("evt_1", "ord-001", "succeeded"),
                lambda: expire_stale_reservations(as_of=later),
            ]
        )
        assert all(error is None for _, error in outcomes)

        order = OrderLifecycle().get("ord-001")
        reservation = ReservationEngine().get(placed.reservation_id)
        record = get_stock("A")
        if order.status == OrderStatus.PROCESSING.value:
            assert reservation.is_confirmed
            assert record.reserved_quantity == 2
        else:
            assert order.status == OrderStatus.CANCELLED.value
            assert reservation.is_released
            assert record.reserved_quantity == 0
            assert order.needs_review is True

    def test_duplicate_webhooks_apply_once(self, place_order):
        place_order(lines={"A": 2})

        outcomes = _run_concurrently(
            [
                lambda: PaymentConfirmationGate().handle_payment_event("evt_1", "ord-001", "succeeded")
                for _ in range(4)
            ]
        )

        effects = sorted(result.effect.value for result, _ in outcomes)
        assert effects == ["Applied", "Duplicate", "Duplicate", "Duplicate"]
        assert get_stock("A").reserved_quantity == 2


class TestContention:
    @pytest.fixture()
    def impatient(self, monkeypatch):
        tunables = {**DEFAULTS, "lock_timeout_seconds": 0.05, "max_retries": 2, "retry_backoff_seconds": 0.0}
        monkeypatch.setattr(concurrency, "setting", tunables.__getitem__)

    def test_held_lock_exhausts_retries(self, impatient):
        register_stock("hot-unit", 5)
        locked = threading.Event()
        done = threading.Event()

        def _hold():
            with row_locks.hold([unit_key("hot-unit")], timeout=1):
                locked.set()
                done.wait(timeout=5)

        holder = threading.Thread(target=_hold)
        holder.start()
        try:
            locked.wait(timeout=5)
            with pytest.raises(ConcurrencyExhaustedError) as exc:
                ReservationEngine().reserve("ord-001", [("hot-unit", 1)])
        finally:
            done.set()
            holder.join()

        assert exc.value.attempts == 2
        assert get_stock("hot-unit").reserved_quantity == 0

    def test_lock_is_free_again_afterwards(self, impatient):
        register_stock("hot-unit", 5)
        with row_locks.hold([unit_key("hot-unit")], timeout=1):
            pass
        reservation = ReservationEngine().reserve("ord-001", [("hot-unit", 1)])
        assert reservation.is_held


class TestLockRegistry:
    def test_registry_empties_once_locks_are_released(self):
        with row_locks.hold([unit_key("A"), unit_key("B")], timeout=1):
            assert len(row_locks) == 2
        assert len(row_locks) == 0

    def test_registry_does_not_grow_with_orders_seen(self, place_order):
        register_stock("bulk", 100)
        before = len(row_locks)

        for i in range(50):
            place_order(order_id=f"ord-{i:03}", lines={"bulk": 1})
            PaymentConfirmationGate().handle_payment_event(f"evt-{i:03}", f"ord-{i:03}", "failed")

        assert len(row_locks) == before
        assert get_stock("bulk").available_quantity == 100

    def test_waiter_and_holder_share_one_lock(self):
        locked = threading.Event()
        done = threading.Event()

        def _hold():
            with row_locks.hold([unit_key("A")], timeout=1):
                locked.set()
                done.wait(timeout=5)

        holder = threading.Thread(target=_hold)
        holder.start()
        try:
            locked.wait(timeout=5)
            with pytest.raises(concurrency.LockTimeout):
                with row_locks.hold([unit_key("A")], timeout=0.05):
                    pass
            assert len(row_locks) == 1
        finally:
            done.set()
            holder.join()
        assert len(row_locks) == 0
