"""
Order workflow tests.

Verifies:
- Only edges in the transition table are accepted
- The expected from_status guards against concurrent moves (Conflict)
- Side effects (holds, delivery postings, releases) commit with the status
- Status history is an unbroken walk of the state machine
"""

from datetime import timedelta

import pytest

from tankflow.domain import ItemType, OrderStatus, ReservationStatus, TankBucket
from tankflow.errors import BadRequestError, ConflictError, NotFoundError, PermissionDeniedError
from tankflow.models import (
    InventoryReservation,
    Order,
    OrderStatusHistory,
    OrderTransactionLink,
    TankTransaction,
    TankType,
)
from tankflow.services import concurrency, ledger_service, reservation_service, workflow_service
from tankflow.time_utils import utcnow

from conftest import OPERATOR_ID, stock, tank_items

S = OrderStatus


def _status(session, order_id):
    session.expire_all()
    return session.get(Order, order_id).status


def _history(session, order_id):
    return [(h.from_status, h.to_status) for h in workflow_service.get_status_history(session, order_id)]


@pytest.fixture
def confirmed_order(db_session, stocked_depot, make_order):
    order = make_order(tank_items(stocked_depot["tank_type_id"], 3))
    workflow_service.confirm_order(db_session, order.id, OPERATOR_ID, assignment_id=stocked_depot["assignment_id"])
    return order


# =============================================================================
# TRANSITION TABLE
# =============================================================================


class TestTransitionTable:
    def test_terminal_statuses(self):
        assert workflow_service.TERMINAL_STATUSES == {S.FULFILLED, S.CANCELLED}
        assert workflow_service.get_allowed_transitions("FULFILLED") == []

    def test_allowed_edges(self):
        assert workflow_service.can_transition("PENDING", "CONFIRMED")
        assert workflow_service.can_transition(S.FAILED, S.IN_TRANSIT)
        assert not workflow_service.can_transition("PENDING", "DELIVERED")
        assert not workflow_service.can_transition("PENDING", "SHIPPED")

    def test_every_edge_has_roles_and_reasons(self):
        edges = {(a, b) for a, targets in workflow_service.STATUS_TRANSITIONS.items() for b in targets}
        assert edges == set(workflow_service.TRANSITION_ROLES)
        assert edges == set(workflow_service.TRANSITION_REASONS)

    def test_suggested_reasons(self):
        assert "Customer not available" in workflow_service.get_suggested_reasons("IN_TRANSIT", "FAILED")
        assert workflow_service.is_valid_transition_reason("IN_TRANSIT", "FAILED", "Wrong address")
        assert not workflow_service.is_valid_transition_reason("IN_TRANSIT", "FAILED", "")

    def test_configuration_shape(self):
        config = workflow_service.get_workflow_configuration()
        assert config["allowed_transitions"]["RESERVED"] == ["CANCELLED", "IN_TRANSIT"]
        assert "PENDING->CONFIRMED" in config["required_roles"]


# =============================================================================
# GUARDS
# =============================================================================


class TestGuards:
    def test_second_confirm_is_conflict(self, db_session, make_order, stocked_depot):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 1))
        workflow_service.perform_transition(db_session, order.id, "PENDING", "CONFIRMED", OPERATOR_ID)

        with pytest.raises(ConflictError) as exc:
            workflow_service.perform_transition(db_session, order.id, "PENDING", "CONFIRMED", OPERATOR_ID)

        assert "Expected 'PENDING', but current status is 'CONFIRMED'" in str(exc.value)
        assert _history(db_session, order.id) == [(None, "PENDING"), ("PENDING", "CONFIRMED")]

    def test_edge_not_in_table_is_bad_request(self, db_session, make_order, stocked_depot):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 1))

        with pytest.raises(BadRequestError) as exc:
            workflow_service.perform_transition(db_session, order.id, "PENDING", "IN_TRANSIT", OPERATOR_ID)

        assert "Allowed transitions: CANCELLED, CONFIRMED" in str(exc.value)
        assert _status(db_session, order.id) == "PENDING"

    def test_unknown_status_value(self, db_session, make_order, stocked_depot):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 1))
        with pytest.raises(BadRequestError):
            workflow_service.perform_transition(db_session, order.id, "PENDING", "SHIPPED", OPERATOR_ID)

    def test_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            workflow_service.perform_transition(db_session, 9999, "PENDING", "CONFIRMED", OPERATOR_ID)

    def test_role_checked_when_supplied(self, db_session, make_order, stocked_depot):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 1))
        with pytest.raises(PermissionDeniedError):
            workflow_service.perform_transition(
                db_session, order.id, "PENDING", "CONFIRMED", OPERATOR_ID, actor_role="driver"
            )
        workflow_service.perform_transition(
            db_session, order.id, "PENDING", "CONFIRMED", OPERATOR_ID, actor_role="operator"
        )
        assert _status(db_session, order.id) == "CONFIRMED"

    def test_failure_requires_reason(self, db_session, make_order, stocked_depot):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 1))
        with pytest.raises(BadRequestError):
            workflow_service.fail_delivery(db_session, order.id, OPERATOR_ID, reason="")
        with pytest.raises(BadRequestError):
            workflow_service.cancel_order(db_session, order.id, OPERATOR_ID, reason=None)


# =============================================================================
# SIDE EFFECTS
# =============================================================================


class TestLifecycle:
    def test_happy_path_posts_sales_and_fulfills(self, db_session, stocked_depot, make_order):
        tank_id = stocked_depot["tank_type_id"]
        order = make_order(
            tank_items(tank_id, 3)
            + [{"item_type": "item", "inventory_item_id": stocked_depot["item_id"], "quantity": 2}]
        )

        workflow_service.confirm_order(db_session, order.id, OPERATOR_ID, assignment_id=stocked_depot["assignment_id"])
        workflow_service.reserve_order(db_session, order.id, OPERATOR_ID)
        assert reservation_service.get_available_quantity(
            db_session, stocked_depot["assignment_id"], "tank", tank_id
        ) == 7

        workflow_service.dispatch_order(db_session, order.id, OPERATOR_ID, actor_role="driver")
        delivered = workflow_service.complete_delivery(db_session, order.id, OPERATOR_ID)
        assert delivered.delivery_date is not None

        db_session.expire_all()
        line = ledger_service.get_tank_line(db_session, stocked_depot["snapshot_id"], tank_id)
        assert (line.current_full, line.current_empty) == (7, 7)
        item_line = ledger_service.get_item_line(db_session, stocked_depot["snapshot_id"], stocked_depot["item_id"])
        assert item_line.current_quantity == 3

        holds = reservation_service.list_order_reservations(db_session, order.id)
        assert {h.status for h in holds} == {ReservationStatus.FULFILLED.value}

        links = db_session.query(OrderTransactionLink).filter_by(order_id=order.id).all()
        assert len(links) == 3
        assert db_session.query(TankTransaction).filter_by(order_id=order.id).count() == 2

        workflow_service.fulfill_order(db_session, order.id, OPERATOR_ID)
        assert _history(db_session, order.id) == [
            (None, "PENDING"),
            ("PENDING", "CONFIRMED"),
            ("CONFIRMED", "RESERVED"),
            ("RESERVED", "IN_TRANSIT"),
            ("IN_TRANSIT", "DELIVERED"),
            ("DELIVERED", "FULFILLED"),
        ]

    def test_history_is_a_valid_walk(self, db_session, confirmed_order):
        workflow_service.reserve_order(db_session, confirmed_order.id, OPERATOR_ID)
        workflow_service.dispatch_order(db_session, confirmed_order.id, OPERATOR_ID)
        workflow_service.fail_delivery(db_session, confirmed_order.id, OPERATOR_ID, reason="Wrong address")
        workflow_service.retry_delivery(db_session, confirmed_order.id, OPERATOR_ID)

        entries = workflow_service.get_status_history(db_session, confirmed_order.id)
        assert entries[0].from_status is None
        for prev, entry in zip(entries, entries[1:]):
            assert entry.from_status == prev.to_status
            assert workflow_service.can_transition(entry.from_status, entry.to_status)
        assert entries[-1].to_status == _status(db_session, confirmed_order.id)

    def test_reserve_without_assignment(self, db_session, stocked_depot, make_order):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 1))
        workflow_service.confirm_order(db_session, order.id, OPERATOR_ID)

        with pytest.raises(BadRequestError):
            workflow_service.reserve_order(db_session, order.id, OPERATOR_ID)
        assert _status(db_session, order.id) == "CONFIRMED"

    def test_reserve_short_of_stock_rolls_back(self, db_session, stocked_depot, make_order):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 11))
        workflow_service.confirm_order(db_session, order.id, OPERATOR_ID, assignment_id=stocked_depot["assignment_id"])

        with pytest.raises(ConflictError):
            workflow_service.reserve_order(db_session, order.id, OPERATOR_ID)

        assert _status(db_session, order.id) == "CONFIRMED"
        assert db_session.query(InventoryReservation).count() == 0
        assert db_session.query(OrderStatusHistory).filter_by(order_id=order.id).count() == 2

    def test_reserve_only_tops_up_missing_quantity(self, db_session, stocked_depot, confirmed_order):
        reservation_service.reserve_for_assignment(
            db_session,
            order_id=confirmed_order.id,
            assignment_id=stocked_depot["assignment_id"],
            items=[{"item_type": "tank", "item_id": stocked_depot["tank_type_id"], "quantity": 2}],
        )
        workflow_service.reserve_order(db_session, confirmed_order.id, OPERATOR_ID)

        holds = reservation_service.list_order_reservations(db_session, confirmed_order.id, status="ACTIVE")
        assert sorted(h.reserved_quantity for h in holds) == [1, 2]

    def test_cancel_releases_holds(self, db_session, stocked_depot, confirmed_order):
        workflow_service.reserve_order(db_session, confirmed_order.id, OPERATOR_ID)
        workflow_service.cancel_order(db_session, confirmed_order.id, OPERATOR_ID, reason="Customer cancelled")

        assert _status(db_session, confirmed_order.id) == "CANCELLED"
        holds = reservation_service.list_order_reservations(db_session, confirmed_order.id)
        assert [h.status for h in holds] == [ReservationStatus.CANCELLED.value]
        assert reservation_service.get_available_quantity(
            db_session, stocked_depot["assignment_id"], "tank", stocked_depot["tank_type_id"]
        ) == 10

    def test_in_transit_cannot_be_cancelled(self, db_session, confirmed_order):
        workflow_service.reserve_order(db_session, confirmed_order.id, OPERATOR_ID)
        workflow_service.dispatch_order(db_session, confirmed_order.id, OPERATOR_ID)
        with pytest.raises(BadRequestError):
            workflow_service.cancel_order(db_session, confirmed_order.id, OPERATOR_ID, reason="Customer cancelled")

    def test_delivery_without_active_holds_is_conflict(self, db_session, stocked_depot, confirmed_order):
        workflow_service.reserve_order(db_session, confirmed_order.id, OPERATOR_ID)
        workflow_service.dispatch_order(db_session, confirmed_order.id, OPERATOR_ID)
        reservation_service.cancel(db_session, confirmed_order.id)

        with pytest.raises(ConflictError):
            workflow_service.complete_delivery(db_session, confirmed_order.id, OPERATOR_ID)

        assert _status(db_session, confirmed_order.id) == "IN_TRANSIT"
        line = ledger_service.get_tank_line(db_session, stocked_depot["snapshot_id"], stocked_depot["tank_type_id"])
        assert line.current_full == 10

    def test_retry_restores_expired_holds(self, db_session, stocked_depot, confirmed_order):
        workflow_service.reserve_order(db_session, confirmed_order.id, OPERATOR_ID)
        workflow_service.dispatch_order(db_session, confirmed_order.id, OPERATOR_ID)
        workflow_service.fail_delivery(db_session, confirmed_order.id, OPERATOR_ID, reason="Customer not available")

        [hold] = reservation_service.list_order_reservations(db_session, confirmed_order.id)
        hold.activated_at = utcnow() - timedelta(hours=30)
        db_session.commit()
        assert reservation_service.expire_old_reservations(db_session, 24) == 1

        workflow_service.retry_delivery(db_session, confirmed_order.id, OPERATOR_ID)
        holds = reservation_service.list_order_reservations(db_session, confirmed_order.id, status="ACTIVE")
        assert [h.reserved_quantity for h in holds] == [3]

        workflow_service.complete_delivery(db_session, confirmed_order.id, OPERATOR_ID)
        assert _status(db_session, confirmed_order.id) == "DELIVERED"

    def test_delivery_locks_lines_in_sorted_order(self, db_session, stocked_depot, make_order, monkeypatch):
        big = TankType(name="45 kg", weight_kg=45)
        db_session.add(big)
        db_session.commit()
        stock(db_session, stocked_depot["assignment_id"], ItemType.TANK, big.id, 5, TankBucket.FULL)

        order = make_order(tank_items(big.id, 1) + tank_items(stocked_depot["tank_type_id"], 1))
        workflow_service.confirm_order(db_session, order.id, OPERATOR_ID, assignment_id=stocked_depot["assignment_id"])
        workflow_service.reserve_order(db_session, order.id, OPERATOR_ID)
        workflow_service.dispatch_order(db_session, order.id, OPERATOR_ID)

        acquired = []
        lock_for = concurrency._lock_for

        def recording_lock_for(key):
            acquired.append(key)
            return lock_for(key)

        monkeypatch.setattr(concurrency, "_lock_for", recording_lock_for)
        workflow_service.complete_delivery(db_session, order.id, OPERATOR_ID)

        assert acquired == sorted(acquired)
        assert {key[2] for key in acquired} == {big.id, stocked_depot["tank_type_id"]}


# =============================================================================
# BULK
# =============================================================================


class TestBulk:
    def test_bulk_confirm_reports_each_order(self, db_session, stocked_depot, make_order):
        tank_id = stocked_depot["tank_type_id"]
        first = make_order(tank_items(tank_id, 1))
        second = make_order(tank_items(tank_id, 1))
        already = make_order(tank_items(tank_id, 1))
        workflow_service.confirm_order(db_session, already.id, OPERATOR_ID)

        result = workflow_service.bulk_status_transition(
            db_session, [first.id, second.id, already.id, 9999], "CONFIRMED", OPERATOR_ID, "Order details verified"
        )

        assert result["successful"] == [first.id, second.id]
        failed = {f["order_id"]: f["kind"] for f in result["failed"]}
        assert failed == {already.id: "bad_request", 9999: "not_found"}

    def test_bulk_with_expected_status(self, db_session, stocked_depot, make_order):
        order = make_order(tank_items(stocked_depot["tank_type_id"], 1))
        workflow_service.confirm_order(db_session, order.id, OPERATOR_ID)

        result = workflow_service.bulk_status_transition(
            db_session, [order.id], "CANCELLED", OPERATOR_ID, "Duplicate order", from_status="PENDING"
        )
        assert result["failed"][0]["kind"] == "conflict"
