"""
Workflow reporting tests: timelines, stuck orders, attention list and metrics.
"""

from datetime import timedelta

import pytest

from tankflow.errors import BadRequestError
from tankflow.models import Order, OrderStatusHistory
from tankflow.services import workflow_reporting, workflow_service
from tankflow.time_utils import utcnow

from conftest import OPERATOR_ID, tank_items


def _backdate(session, order_id, hours_per_step):
    """Spread the order's history so each step took hours_per_step hours."""
    entries = (
        session.query(OrderStatusHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusHistory.id.asc())
        .all()
    )
    start = utcnow() - timedelta(hours=hours_per_step * len(entries))
    for index, entry in enumerate(entries):
        entry.created_at = start + timedelta(hours=hours_per_step * index)
    order = session.get(Order, order_id)
    order.created_at = start
    order.status_changed_at = entries[-1].created_at
    session.commit()


@pytest.fixture
def delivered_order(db_session, stocked_depot, make_order):
    order = make_order(tank_items(stocked_depot["tank_type_id"], 2))
    workflow_service.confirm_order(db_session, order.id, OPERATOR_ID, assignment_id=stocked_depot["assignment_id"])
    workflow_service.reserve_order(db_session, order.id, OPERATOR_ID)
    workflow_service.dispatch_order(db_session, order.id, OPERATOR_ID)
    workflow_service.complete_delivery(db_session, order.id, OPERATOR_ID)
    workflow_service.fulfill_order(db_session, order.id, OPERATOR_ID)
    return order


class TestTimeline:
    def test_durations_between_entries(self, db_session, delivered_order):
        _backdate(db_session, delivered_order.id, 2)

        timeline = workflow_reporting.get_order_timeline(db_session, delivered_order.id)

        assert timeline["current_status"] == "FULFILLED"
        assert [e["to_status"] for e in timeline["timeline"]] == [
            "PENDING", "CONFIRMED", "RESERVED", "IN_TRANSIT", "DELIVERED", "FULFILLED",
        ]
        assert [e["duration_minutes"] for e in timeline["timeline"]] == [120, 120, 120, 120, 120, None]
        assert timeline["total_minutes"] == 600
        assert timeline["timeline"][0]["description"].startswith("Order created")


class TestStuckAndAttention:
    def test_stuck_orders(self, db_session, tank_type, make_order):
        stuck = make_order(tank_items(tank_type.id, 1))
        make_order(tank_items(tank_type.id, 1))
        _backdate(db_session, stuck.id, 30)

        rows = workflow_reporting.get_stuck_orders(db_session, threshold_hours=24)
        assert [r["id"] for r in rows] == [stuck.id]
        assert rows[0]["hours_in_status"] >= 30

        assert workflow_reporting.get_stuck_orders(db_session, status="CONFIRMED", threshold_hours=24) == []
        with pytest.raises(BadRequestError):
            workflow_reporting.get_stuck_orders(db_session, status="LOST")

    def test_attention_priorities(self, db_session, stocked_depot, make_order):
        tank_id = stocked_depot["tank_type_id"]
        failed = make_order(tank_items(tank_id, 1))
        workflow_service.confirm_order(db_session, failed.id, OPERATOR_ID, assignment_id=stocked_depot["assignment_id"])
        workflow_service.reserve_order(db_session, failed.id, OPERATOR_ID)
        workflow_service.dispatch_order(db_session, failed.id, OPERATOR_ID)
        workflow_service.fail_delivery(db_session, failed.id, OPERATOR_ID, reason="Vehicle breakdown")

        old_pending = make_order(tank_items(tank_id, 1))
        _backdate(db_session, old_pending.id, 30)
        aging_pending = make_order(tank_items(tank_id, 1))
        _backdate(db_session, aging_pending.id, 6)
        make_order(tank_items(tank_id, 1))

        rows = workflow_reporting.get_orders_requiring_attention(db_session)
        assert [(r["order"]["id"], r["priority"]) for r in rows] == [
            (old_pending.id, "high"),
            (failed.id, "high"),
            (aging_pending.id, "medium"),
        ]

    def test_ready_for_reservation(self, db_session, stocked_depot, make_order):
        tank_id = stocked_depot["tank_type_id"]
        fits = make_order(tank_items(tank_id, 4))
        too_big = make_order(tank_items(tank_id, 40))
        unassigned = make_order(tank_items(tank_id, 1))
        workflow_service.confirm_order(db_session, fits.id, OPERATOR_ID, assignment_id=stocked_depot["assignment_id"])
        workflow_service.confirm_order(db_session, too_big.id, OPERATOR_ID, assignment_id=stocked_depot["assignment_id"])
        workflow_service.confirm_order(db_session, unassigned.id, OPERATOR_ID)

        ready = workflow_reporting.get_orders_ready_for_transition(db_session, "CONFIRMED", "RESERVED")
        assert [o.id for o in ready] == [fits.id]
        assert workflow_reporting.get_orders_ready_for_transition(db_session, "PENDING", "DELIVERED") == []


class TestMetrics:
    def test_workflow_metrics(self, db_session, stocked_depot, delivered_order, make_order):
        cancelled = make_order(tank_items(stocked_depot["tank_type_id"], 1))
        workflow_service.cancel_order(db_session, cancelled.id, OPERATOR_ID, reason="Customer cancelled")

        metrics = workflow_reporting.get_workflow_metrics(db_session)

        assert metrics["total_orders"] == 2
        assert metrics["orders_by_status"]["FULFILLED"] == 1
        assert metrics["orders_by_status"]["CANCELLED"] == 1
        assert metrics["status_transition_counts"]["NONE->PENDING"] == 2
        assert metrics["status_transition_counts"]["IN_TRANSIT->DELIVERED"] == 1
        assert metrics["delivery_success_rate"] == 100.0
        assert metrics["cancellation_rate"] == 50.0
        assert {"reason": "Customer cancelled", "count": 1} in metrics["top_reasons"]
        assert sum(day["count"] for day in metrics["daily_order_creation"]) == 2

    def test_bottlenecks(self, db_session, delivered_order):
        _backdate(db_session, delivered_order.id, 5)

        result = workflow_reporting.get_status_transition_metrics(db_session, bottleneck_threshold_hours=3)

        assert result["transition_counts"]["DELIVERED->FULFILLED"] == 1
        assert result["average_time_in_status_hours"]["RESERVED"] == 5.0
        assert "FULFILLED" not in result["average_time_in_status_hours"]
        assert {b["status"] for b in result["bottlenecks"]} == {
            "PENDING", "CONFIRMED", "RESERVED", "IN_TRANSIT", "DELIVERED",
        }
