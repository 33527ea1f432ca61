"""
Reservation expiry worker tests.

Verifies:
- One sweep expires holds older than the worker's threshold
- start() runs the sweep on its own thread and stop() joins it
"""

import threading
from datetime import timedelta

from tankflow.models import InventoryReservation
from tankflow.services import reservation_service
from tankflow.services.expiry_worker import ReservationExpiryWorker
from tankflow.time_utils import utcnow

from conftest import tank_items


# =============================================================================
# SWEEP
# =============================================================================


class TestRunOnce:
    def test_expires_backdated_hold(self, app, db_session, stocked_depot, make_order):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 2))
        [hold] = reservation_service.reserve_for_assignment(
            db_session,
            order_id=order.id,
            assignment_id=stocked_depot["assignment_id"],
            items=[{"item_type": "tank", "item_id": stocked_depot["tank_type_id"], "quantity": 2}],
        )
        hold.activated_at = utcnow() - timedelta(hours=30)
        db_session.commit()

        worker = ReservationExpiryWorker(app, threshold_hours=24)
        assert worker.run_once() == 1

        db_session.expire_all()
        assert db_session.get(InventoryReservation, hold.id).status == "EXPIRED"
        assert reservation_service.get_available_quantity(
            db_session, stocked_depot["assignment_id"], "tank", stocked_depot["tank_type_id"]
        ) == 10

    def test_fresh_hold_is_left_alone(self, app, db_session, stocked_depot, make_order):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 1))
        [hold] = reservation_service.reserve_for_assignment(
            db_session,
            order_id=order.id,
            assignment_id=stocked_depot["assignment_id"],
            items=[{"item_type": "tank", "item_id": stocked_depot["tank_type_id"], "quantity": 1}],
        )

        assert ReservationExpiryWorker(app, threshold_hours=24).run_once() == 0

        db_session.expire_all()
        assert db_session.get(InventoryReservation, hold.id).status == "ACTIVE"


# =============================================================================
# THREAD LIFECYCLE
# =============================================================================


class TestStartStop:
    def test_start_runs_sweep_and_stop_joins(self, app, monkeypatch):
        worker = ReservationExpiryWorker(app, interval=3600)
        swept = threading.Event()
        monkeypatch.setattr(worker, "run_once", lambda: swept.set() or 0)

        worker.start()
        thread = worker._thread
        assert worker.running
        assert thread.name == "reservation-expiry-worker"
        assert thread.daemon
        assert swept.wait(2)

        worker.stop()

        assert not worker.running
        assert worker._thread is None
        assert not thread.is_alive()

    def test_failed_sweep_keeps_thread_alive(self, app, monkeypatch):
        worker = ReservationExpiryWorker(app, interval=0.01)
        calls = []
        second_call = threading.Event()

        def failing_sweep():
            calls.append(1)
            if len(calls) >= 2:
                second_call.set()
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(worker, "run_once", failing_sweep)

        worker.start()
        try:
            assert second_call.wait(2)
            assert worker.running
        finally:
            worker.stop()
        assert not worker.running

    def test_stop_without_start_is_noop(self, app):
        worker = ReservationExpiryWorker(app)
        worker.stop()
        assert not worker.running
