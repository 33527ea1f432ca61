# backend/tankflow/routes/reservations.py
"""
Inventory reservation API routes.
"""
from flask import Blueprint, current_app, jsonify, request

from tankflow.decorators import require_actor
from tankflow.errors import BadRequestError, TankflowError
from tankflow.extensions import db
from tankflow.services import reservation_service
from tankflow.validation import get_json_body, parse_datetime_field, parse_float, parse_int, require_fields


reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/reservations")


def _error(e: Exception, action: str):
    db.session.rollback()
    if isinstance(e, TankflowError):
        return jsonify(e.to_dict()), e.status_code
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal error"}), 500


@reservations_bp.route("/availability", methods=["POST"])
def check_availability():
    """
    Request body: {"location_id": int, "items": [{"item_type", "item_id", "quantity"}]}

    Returns 200 with per-item required/available/reserved/on-hand and a sufficiency flag.
    """
    data = get_json_body(request)
    require_fields(data, "location_id", "items")
    report = reservation_service.check_availability(db.session, data["location_id"], data["items"])
    return jsonify(report), 200


@reservations_bp.route("/validate", methods=["POST"])
def validate_request():
    data = get_json_body(request)
    require_fields(data, "assignment_id", "items")
    result = reservation_service.validate_reservation_request(
        db.session,
        data["assignment_id"],
        data["items"],
        max_quantity=current_app.config["MAX_RESERVATION_QUANTITY"],
    )
    return jsonify(result), 200


@reservations_bp.route("", methods=["POST"])
@require_actor
def create_reservations():
    """
    Hold stock for an order.

    Request body:
    {
        "order_id": int,
        "location_id": int,
        "items": [{"item_type": "tank"|"item", "item_id": int, "quantity": int}],
        "expires_at": ISO-8601 (optional)
    }

    Returns:
        201: Reservations created
        400: Invalid request / no active assignment
        404: Order or location not found
        409: Insufficient inventory (nothing reserved)
    """
    try:
        data = get_json_body(request)
        require_fields(data, "order_id", "location_id", "items")
        reservations = reservation_service.reserve(
            db.session,
            order_id=data["order_id"],
            location_id=data["location_id"],
            items=data["items"],
            expires_at=parse_datetime_field(data, "expires_at"),
            expiry_hours=current_app.config["RESERVATION_EXPIRY_HOURS"],
            lock_timeout=current_app.config["LINE_LOCK_TIMEOUT_SECONDS"],
        )
        return jsonify({"reservations": [r.to_dict() for r in reservations]}), 201
    except Exception as e:
        return _error(e, "create reservations")


@reservations_bp.route("/bulk", methods=["POST"])
@require_actor
def bulk_reserve():
    try:
        data = get_json_body(request)
        require_fields(data, "requests")
        requests = []
        for entry in data["requests"]:
            requests.append({**entry, "expires_at": parse_datetime_field(entry, "expires_at")})
        result = reservation_service.bulk_reserve_items(
            db.session,
            requests,
            expiry_hours=current_app.config["RESERVATION_EXPIRY_HOURS"],
            lock_timeout=current_app.config["LINE_LOCK_TIMEOUT_SECONDS"],
        )
        return jsonify(result), 200
    except Exception as e:
        return _error(e, "bulk reserve")


@reservations_bp.route("/bulk-cancel", methods=["POST"])
@require_actor
def bulk_cancel():
    try:
        data = get_json_body(request)
        require_fields(data, "order_ids")
        return jsonify(reservation_service.bulk_cancel_reservations(db.session, list(data["order_ids"]))), 200
    except Exception as e:
        return _error(e, "bulk cancel reservations")


@reservations_bp.route("/orders/<int:order_id>", methods=["GET"])
def order_summary(order_id: int):
    return jsonify(reservation_service.get_order_reservation_summary(db.session, order_id)), 200


@reservations_bp.route("/orders/<int:order_id>/cancel", methods=["POST"])
@require_actor
def cancel_order_reservations(order_id: int):
    try:
        count = reservation_service.cancel(db.session, order_id)
        return jsonify({"order_id": order_id, "cancelled": count}), 200
    except Exception as e:
        return _error(e, "cancel reservations")


@reservations_bp.route("/orders/<int:order_id>/fulfill", methods=["POST"])
@require_actor
def fulfill_order_reservations(order_id: int):
    try:
        count = reservation_service.fulfill(db.session, order_id)
        return jsonify({"order_id": order_id, "fulfilled": count}), 200
    except Exception as e:
        return _error(e, "fulfill reservations")


@reservations_bp.route("/orders/<int:order_id>/restore", methods=["POST"])
@require_actor
def restore_order_reservations(order_id: int):
    try:
        restored = reservation_service.restore_expired_reservations(
            db.session,
            order_id,
            expiry_hours=current_app.config["RESERVATION_EXPIRY_HOURS"],
            lock_timeout=current_app.config["LINE_LOCK_TIMEOUT_SECONDS"],
        )
        return jsonify({"order_id": order_id, "reservations": [r.to_dict() for r in restored]}), 200
    except Exception as e:
        return _error(e, "restore reservations")


@reservations_bp.route("/orders/<int:order_id>/expiry", methods=["POST"])
@require_actor
def set_order_expiry(order_id: int):
    try:
        data = get_json_body(request)
        require_fields(data, "expires_at")
        count = reservation_service.set_order_reservation_expiry(
            db.session, order_id, parse_datetime_field(data, "expires_at")
        )
        return jsonify({"order_id": order_id, "updated": count}), 200
    except Exception as e:
        return _error(e, "set reservation expiry")


@reservations_bp.route("/<int:reservation_id>/extend", methods=["POST"])
@require_actor
def extend_reservation(reservation_id: int):
    try:
        data = get_json_body(request)
        require_fields(data, "expires_at")
        reservation = reservation_service.extend_reservation_expiry(
            db.session, reservation_id, parse_datetime_field(data, "expires_at")
        )
        return jsonify(reservation.to_dict()), 200
    except Exception as e:
        return _error(e, "extend reservation")


@reservations_bp.route("/expire", methods=["POST"])
@require_actor
def expire_reservations():
    try:
        data = get_json_body(request)
        threshold = parse_float(
            data.get("threshold_hours"),
            "threshold_hours",
            default=current_app.config["RESERVATION_EXPIRY_HOURS"],
        )
        count = reservation_service.expire_old_reservations(db.session, threshold)
        return jsonify({"expired": count}), 200
    except Exception as e:
        return _error(e, "expire reservations")


@reservations_bp.route("/expiring", methods=["GET"])
def expiring_reservations():
    within = parse_float(
        request.args.get("within_hours"),
        "within_hours",
        default=current_app.config["RESERVATION_EXPIRING_SOON_HOURS"],
    )
    rows = reservation_service.find_expiring_reservations(
        db.session,
        within_hours=within,
        assignment_id=parse_int(request.args.get("assignment_id"), "assignment_id"),
    )
    return jsonify({"reservations": [r.to_dict() for r in rows]}), 200


@reservations_bp.route("/conflicts", methods=["GET"])
def conflicts():
    assignment_id = parse_int(request.args.get("assignment_id"), "assignment_id")
    item_id = parse_int(request.args.get("item_id"), "item_id")
    item_type = request.args.get("item_type")
    if assignment_id is None or item_id is None or not item_type:
        raise BadRequestError("assignment_id, item_type and item_id are required")
    report = reservation_service.find_conflicting_reservations(
        db.session,
        assignment_id,
        item_type,
        item_id,
        exclude_order_id=parse_int(request.args.get("exclude_order_id"), "exclude_order_id"),
    )
    return jsonify(report), 200


@reservations_bp.route("/assignments/<int:assignment_id>/optimize", methods=["GET"])
def optimize(assignment_id: int):
    return jsonify(reservation_service.optimize_reservations(db.session, assignment_id)), 200


@reservations_bp.route("/metrics", methods=["GET"])
def metrics():
    result = reservation_service.get_reservation_metrics(
        db.session,
        assignment_id=parse_int(request.args.get("assignment_id"), "assignment_id"),
        expiring_soon_hours=current_app.config["RESERVATION_EXPIRING_SOON_HOURS"],
    )
    return jsonify(result), 200
