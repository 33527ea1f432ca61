# backend/tankflow/routes/inventory.py
"""
Ledger posting and inventory status API routes.
"""
from flask import Blueprint, current_app, g, jsonify, request

from tankflow.decorators import require_actor
from tankflow.domain import ItemType, parse_enum
from tankflow.errors import BadRequestError, TankflowError
from tankflow.extensions import db
from tankflow.services import ledger_service, reservation_service, transaction_service
from tankflow.services.transaction_strategies import TransactionRequest, supported_transactions
from tankflow.validation import get_json_body, parse_int


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.route("/transactions", methods=["POST"])
@require_actor
def post_transaction():
    """
    Post one stock movement.

    Request body:
    {
        "transaction_type": "SALE"|"PURCHASE"|"RETURN"|"TRANSFER"|"ASSIGNMENT",
        "item_type": "tank"|"item",
        "item_id": int,
        "quantity": int,
        "assignment_id": int  (or "snapshot_id": int),
        "tank_bucket": "full"|"empty" (RETURN/TRANSFER/ASSIGNMENT of tanks),
        "target_assignment_id": int (TRANSFER),
        "note": str (optional)
    }

    Returns:
        201: Postings written, with resulting on-hand quantities
        400: Invalid request (nothing written)
        404: Ledger line or snapshot not found
        409: Insufficient stock
    """
    try:
        data = get_json_body(request)
        tx_request = TransactionRequest.from_dict(data, actor_id=g.actor_id)
        result = transaction_service.process_transaction(
            db.session,
            tx_request,
            lock_timeout=current_app.config["LINE_LOCK_TIMEOUT_SECONDS"],
        )
        return jsonify(result.to_dict()), 201
    except TankflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to post inventory transaction")
        return jsonify({"error": "Internal error"}), 500


@inventory_bp.route("/transactions/preview", methods=["POST"])
@require_actor
def preview_transaction():
    data = get_json_body(request)
    tx_request = TransactionRequest.from_dict(data, actor_id=g.actor_id)
    return jsonify(transaction_service.preview_transaction(db.session, tx_request)), 200


@inventory_bp.route("/transactions/batch", methods=["POST"])
@require_actor
def post_batch():
    """Request body: {"transactions": [...]}. Each entry commits or fails on its own."""
    try:
        data = get_json_body(request)
        entries = data.get("transactions")
        if not isinstance(entries, list) or not entries:
            raise BadRequestError("transactions must be a non-empty list")
        requests = [TransactionRequest.from_dict(entry, actor_id=g.actor_id) for entry in entries]
        return jsonify(transaction_service.process_batch(db.session, requests)), 200
    except TankflowError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to post inventory transaction batch")
        return jsonify({"error": "Internal error"}), 500


@inventory_bp.route("/strategies", methods=["GET"])
def list_strategies():
    return jsonify({"strategies": supported_transactions()}), 200


@inventory_bp.route("/snapshots/<int:snapshot_id>/transactions", methods=["GET"])
def snapshot_transactions(snapshot_id: int):
    item_type = parse_enum(ItemType, request.args.get("item_type", "tank"), "item_type")
    item_id = parse_int(request.args.get("item_id"), "item_id")
    limit = parse_int(request.args.get("limit"), "limit", default=100, minimum=1)
    if item_type == ItemType.TANK:
        rows = ledger_service.list_tank_transactions(
            db.session, snapshot_id=snapshot_id, tank_type_id=item_id, limit=limit
        )
    else:
        rows = ledger_service.list_item_transactions(
            db.session, snapshot_id=snapshot_id, inventory_item_id=item_id, limit=limit
        )
    return jsonify({"transactions": [row.to_dict() for row in rows]}), 200


@inventory_bp.route("/locations/<int:location_id>/status", methods=["GET"])
def location_status(location_id: int):
    return jsonify(reservation_service.get_current_inventory_status(db.session, location_id)), 200
