# backend/tankflow/routes/orders.py
"""
Order intake and workflow transition API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from tankflow.decorators import require_actor
from tankflow.errors import TankflowError
from tankflow.extensions import db
from tankflow.services import order_service, workflow_reporting, workflow_service
from tankflow.validation import get_json_body, parse_datetime_field, parse_int, require_fields


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _error(e: Exception, action: str):
    db.session.rollback()
    if isinstance(e, TankflowError):
        return jsonify(e.to_dict()), e.status_code
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal error"}), 500


@orders_bp.route("", methods=["POST"])
@require_actor
def create_order():
    """
    Create a PENDING order.

    Request body:
    {
        "delivery_address": str,
        "items": [{"item_type": "tank"|"item", "tank_type_id"|"inventory_item_id": int,
                   "quantity": int, "unit_price_cents": int}],
        "customer_id": int (optional),
        "customer_name": str (optional),
        "customer_phone": str (optional),
        "assignment_id": int (optional),
        "priority": int (optional),
        "payment_method": "cash"|"yape"|"plin"|"transfer" (optional),
        "notes": str (optional)
    }

    Returns:
        201: Order created
        400: Invalid request
        404: Assignment not found
    """
    try:
        data = get_json_body(request)
        require_fields(data, "delivery_address", "items")
        order = order_service.create_order(
            db.session,
            created_by=g.actor_id,
            delivery_address=data["delivery_address"],
            items=data["items"],
            customer_id=data.get("customer_id"),
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            location_reference=data.get("location_reference"),
            assignment_id=data.get("assignment_id"),
            priority=data.get("priority", 1),
            payment_method=data.get("payment_method", "cash"),
            payment_status=data.get("payment_status", "pending"),
            delivery_date=parse_datetime_field(data, "delivery_date"),
            notes=data.get("notes"),
        )
        return jsonify(order.to_dict()), 201
    except Exception as e:
        return _error(e, "create order")


@orders_bp.route("", methods=["GET"])
def list_orders():
    orders = order_service.list_orders(
        db.session,
        status=request.args.get("status") or None,
        assignment_id=parse_int(request.args.get("assignment_id"), "assignment_id"),
        limit=parse_int(request.args.get("limit"), "limit", default=100, minimum=1),
        offset=parse_int(request.args.get("offset"), "offset", default=0, minimum=0),
    )
    return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]}), 200


@orders_bp.route("/<int:order_id>", methods=["GET"])
def get_order(order_id: int):
    order = order_service.get_order(db.session, order_id)
    return jsonify(order.to_dict()), 200


@orders_bp.route("/<int:order_id>/transition", methods=["POST"])
@require_actor
def transition_order(order_id: int):
    """
    Move an order between workflow states.

    Request body:
    {
        "from_status": str,
        "to_status": str,
        "reason": str (optional),
        "assignment_id": int (optional, CONFIRMED/RESERVED),
        "expires_at": ISO-8601 (optional, RESERVED)
    }

    Returns:
        200: Order after transition
        400: Transition not allowed
        403: Role may not perform this transition
        404: Order not found
        409: Status mismatch or insufficient stock
    """
    try:
        data = get_json_body(request)
        require_fields(data, "from_status", "to_status")
        order = workflow_service.perform_transition(
            db.session,
            order_id,
            data["from_status"],
            data["to_status"],
            g.actor_id,
            data.get("reason"),
            actor_role=g.actor_role,
            assignment_id=data.get("assignment_id"),
            expires_at=parse_datetime_field(data, "expires_at"),
            expiry_hours=current_app.config["RESERVATION_EXPIRY_HOURS"],
            lock_timeout=current_app.config["LINE_LOCK_TIMEOUT_SECONDS"],
        )
        return jsonify(order.to_dict()), 200
    except Exception as e:
        return _error(e, "transition order")


@orders_bp.route("/bulk-transition", methods=["POST"])
@require_actor
def bulk_transition():
    """
    Request body: {"order_ids": [int], "to_status": str, "from_status": str (optional), "reason": str (optional)}

    Returns 200 with {"successful": [...], "failed": [{"order_id", "error"}]}.
    """
    try:
        data = get_json_body(request)
        require_fields(data, "order_ids", "to_status")
        result = workflow_service.bulk_status_transition(
            db.session,
            list(data["order_ids"]),
            data["to_status"],
            g.actor_id,
            data.get("reason"),
            from_status=data.get("from_status"),
            actor_role=g.actor_role,
            expiry_hours=current_app.config["RESERVATION_EXPIRY_HOURS"],
            lock_timeout=current_app.config["LINE_LOCK_TIMEOUT_SECONDS"],
        )
        return jsonify(result), 200
    except Exception as e:
        return _error(e, "bulk transition orders")


@orders_bp.route("/<int:order_id>/history", methods=["GET"])
def order_history(order_id: int):
    entries = workflow_service.get_status_history(db.session, order_id)
    return jsonify({"history": [entry.to_dict() for entry in entries]}), 200


@orders_bp.route("/<int:order_id>/timeline", methods=["GET"])
def order_timeline(order_id: int):
    return jsonify(workflow_reporting.get_order_timeline(db.session, order_id)), 200


@orders_bp.route("/<int:order_id>/allowed-transitions", methods=["GET"])
def allowed_transitions(order_id: int):
    status = workflow_service.get_order_current_status(db.session, order_id)
    return jsonify({
        "status": status.value,
        "allowed_transitions": workflow_service.get_allowed_transitions(status),
    }), 200


@orders_bp.route("/<int:order_id>/assignment", methods=["PATCH"])
@require_actor
def assign_order(order_id: int):
    try:
        data = get_json_body(request)
        require_fields(data, "assignment_id")
        order = order_service.assign_order(db.session, order_id, data["assignment_id"])
        return jsonify(order.to_dict()), 200
    except Exception as e:
        return _error(e, "assign order")


@orders_bp.route("/<int:order_id>/payment-status", methods=["PATCH"])
@require_actor
def update_payment_status(order_id: int):
    try:
        data = get_json_body(request)
        require_fields(data, "payment_status")
        order = order_service.update_payment_status(db.session, order_id, data["payment_status"])
        return jsonify(order.to_dict()), 200
    except Exception as e:
        return _error(e, "update payment status")
