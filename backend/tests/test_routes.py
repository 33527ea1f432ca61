"""
HTTP API tests.

Verifies:
- Mutating endpoints require X-Actor-Id (401)
- Domain errors map to 400 / 403 / 404 / 409 JSON bodies
- Order, reservation and ledger endpoints drive the services end to end
"""

import pytest

from conftest import OPERATOR_ID, actor_headers, tank_items


def _create_order(client, tank_type_id, quantity=2, **extra):
    resp = client.post(
        "/api/orders",
        json={"delivery_address": "Calle Los Pinos 8", "items": tank_items(tank_type_id, quantity), **extra},
        headers=actor_headers(),
    )
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def _transition(client, order_id, from_status, to_status, role=None, **extra):
    return client.post(
        f"/api/orders/{order_id}/transition",
        json={"from_status": from_status, "to_status": to_status, **extra},
        headers=actor_headers(role=role),
    )


# =============================================================================
# ACTOR IDENTITY (401)
# =============================================================================


class TestActorRequired:
    @pytest.mark.parametrize(
        "path",
        [
            "/api/orders",
            "/api/orders/1/transition",
            "/api/reservations",
            "/api/reservations/expire",
            "/api/inventory/transactions",
        ],
    )
    def test_missing_actor(self, client, db_session, path):
        resp = client.post(path, json={})
        assert resp.status_code == 401

    def test_malformed_actor(self, client, db_session):
        resp = client.post("/api/orders", json={}, headers={"X-Actor-Id": "abc"})
        assert resp.status_code == 401


# =============================================================================
# ORDERS
# =============================================================================


class TestOrderRoutes:
    def test_create_and_fetch(self, client, db_session, tank_type):
        created = _create_order(client, tank_type.id, customer_name="Luis")

        assert created["status"] == "PENDING"
        assert created["created_by"] == OPERATOR_ID
        assert created["total_amount_cents"] == 9000

        resp = client.get(f"/api/orders/{created['id']}")
        assert resp.status_code == 200
        assert resp.get_json()["order_number"] == created["order_number"]

    def test_create_missing_items(self, client, db_session):
        resp = client.post("/api/orders", json={"delivery_address": "x"}, headers=actor_headers())
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "bad_request"

    def test_unknown_order_is_404(self, client, db_session):
        resp = client.get("/api/orders/9999")
        assert resp.status_code == 404
        assert resp.get_json()["kind"] == "not_found"

    def test_double_transition_conflicts(self, client, db_session, tank_type):
        order = _create_order(client, tank_type.id)

        first = _transition(client, order["id"], "PENDING", "CONFIRMED")
        second = _transition(client, order["id"], "PENDING", "CONFIRMED")

        assert first.status_code == 200
        assert first.get_json()["status"] == "CONFIRMED"
        assert second.status_code == 409
        assert "CONFIRMED" in second.get_json()["error"]

    def test_off_table_transition_is_400(self, client, db_session, tank_type):
        order = _create_order(client, tank_type.id)
        resp = _transition(client, order["id"], "PENDING", "DELIVERED")
        assert resp.status_code == 400

    def test_role_denied(self, client, db_session, tank_type):
        order = _create_order(client, tank_type.id)
        resp = _transition(client, order["id"], "PENDING", "CONFIRMED", role="driver")
        assert resp.status_code == 403
        assert resp.get_json()["kind"] == "forbidden"

    def test_full_lifecycle_over_http(self, client, db_session, stocked_depot):
        order = _create_order(client, stocked_depot["tank_type_id"], quantity=3)
        steps = [
            ("PENDING", "CONFIRMED", {"assignment_id": stocked_depot["assignment_id"]}),
            ("CONFIRMED", "RESERVED", {}),
            ("RESERVED", "IN_TRANSIT", {}),
            ("IN_TRANSIT", "DELIVERED", {}),
            ("DELIVERED", "FULFILLED", {}),
        ]
        for from_status, to_status, extra in steps:
            resp = _transition(client, order["id"], from_status, to_status, **extra)
            assert resp.status_code == 200, resp.get_json()

        history = client.get(f"/api/orders/{order['id']}/history").get_json()["history"]
        assert [h["to_status"] for h in history][-1] == "FULFILLED"

        status = client.get(f"/api/inventory/locations/{stocked_depot['location_id']}/status").get_json()
        [tank_row] = status["tanks"]
        assert (tank_row["current_full"], tank_row["reserved"]) == (7, 0)

    def test_allowed_transitions(self, client, db_session, tank_type):
        order = _create_order(client, tank_type.id)
        resp = client.get(f"/api/orders/{order['id']}/allowed-transitions")
        assert resp.status_code == 200
        assert resp.get_json()["allowed_transitions"] == ["CANCELLED", "CONFIRMED"]


# =============================================================================
# RESERVATIONS
# =============================================================================


class TestReservationRoutes:
    def test_availability_and_reserve(self, client, db_session, stocked_depot):
        order = _create_order(client, stocked_depot["tank_type_id"], quantity=4)
        items = [{"item_type": "tank", "item_id": stocked_depot["tank_type_id"], "quantity": 4}]

        report = client.post(
            "/api/reservations/availability",
            json={"location_id": stocked_depot["location_id"], "items": items},
        ).get_json()
        assert report["available"] is True

        resp = client.post(
            "/api/reservations",
            json={"order_id": order["id"], "location_id": stocked_depot["location_id"], "items": items},
            headers=actor_headers(),
        )
        assert resp.status_code == 201
        [reservation] = resp.get_json()["reservations"]
        assert reservation["reserved_quantity"] == 4
        assert reservation["snapshot_id"] == stocked_depot["snapshot_id"]

        summary = client.get(f"/api/reservations/orders/{order['id']}").get_json()
        assert summary["status"] == "complete"

    def test_reserve_beyond_stock_is_409(self, client, db_session, stocked_depot):
        order = _create_order(client, stocked_depot["tank_type_id"], quantity=11)
        resp = client.post(
            "/api/reservations",
            json={
                "order_id": order["id"],
                "location_id": stocked_depot["location_id"],
                "items": [{"item_type": "tank", "item_id": stocked_depot["tank_type_id"], "quantity": 11}],
            },
            headers=actor_headers(),
        )
        assert resp.status_code == 409
        assert "Insufficient" in resp.get_json()["error"]

    def test_non_integer_item_id_is_400(self, client, db_session, stocked_depot):
        order = _create_order(client, stocked_depot["tank_type_id"], quantity=1)
        resp = client.post(
            "/api/reservations",
            json={
                "order_id": order["id"],
                "location_id": stocked_depot["location_id"],
                "items": [{"item_type": "tank", "item_id": "abc", "quantity": 1}],
            },
            headers=actor_headers(),
        )
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "bad_request"

    def test_conflicts_requires_params(self, client, db_session):
        resp = client.get("/api/reservations/conflicts")
        assert resp.status_code == 400


# =============================================================================
# LEDGER
# =============================================================================


class TestInventoryRoutes:
    def test_post_sale(self, client, db_session, stocked_depot):
        resp = client.post(
            "/api/inventory/transactions",
            json={
                "transaction_type": "SALE",
                "item_type": "tank",
                "item_id": stocked_depot["tank_type_id"],
                "quantity": 2,
                "assignment_id": stocked_depot["assignment_id"],
            },
            headers=actor_headers(),
        )
        assert resp.status_code == 201
        body = resp.get_json()
        assert (body["current_full"], body["current_empty"]) == (8, 6)

    def test_transfer_without_target_is_400(self, client, db_session, stocked_depot):
        resp = client.post(
            "/api/inventory/transactions",
            json={
                "transaction_type": "TRANSFER",
                "item_type": "tank",
                "item_id": stocked_depot["tank_type_id"],
                "quantity": 2,
                "tank_bucket": "full",
                "assignment_id": stocked_depot["assignment_id"],
            },
            headers=actor_headers(),
        )
        assert resp.status_code == 400

    def test_strategies_listed(self, client, db_session):
        resp = client.get("/api/inventory/strategies")
        assert resp.status_code == 200


# =============================================================================
# WORKFLOW
# =============================================================================


class TestWorkflowRoutes:
    def test_config(self, client, db_session):
        config = client.get("/api/workflow/config").get_json()
        assert config["allowed_transitions"]["IN_TRANSIT"] == ["DELIVERED", "FAILED"]
        assert config["allowed_transitions"]["FULFILLED"] == []

    def test_reasons_require_both_statuses(self, client, db_session):
        assert client.get("/api/workflow/reasons?from_status=PENDING").status_code == 400
        resp = client.get("/api/workflow/reasons?from_status=PENDING&to_status=CONFIRMED")
        assert "Order details verified" in resp.get_json()["reasons"]

    def test_stuck_empty(self, client, db_session):
        resp = client.get("/api/workflow/stuck?threshold_hours=1")
        assert resp.status_code == 200
        assert resp.get_json() == {"orders": []}
