# backend/tankflow/routes/workflow.py
"""
Read-only workflow visibility routes (configuration, metrics, stuck orders).
"""
from flask import Blueprint, current_app, jsonify, request

from tankflow.errors import BadRequestError
from tankflow.extensions import db
from tankflow.services import workflow_reporting, workflow_service
from tankflow.validation import parse_float, parse_int


workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/workflow")


@workflow_bp.route("/config", methods=["GET"])
def configuration():
    return jsonify(workflow_service.get_workflow_configuration()), 200


@workflow_bp.route("/reasons", methods=["GET"])
def suggested_reasons():
    from_status = request.args.get("from_status")
    to_status = request.args.get("to_status")
    if not from_status or not to_status:
        raise BadRequestError("from_status and to_status are required")
    return jsonify({"reasons": workflow_service.get_suggested_reasons(from_status, to_status)}), 200


@workflow_bp.route("/metrics", methods=["GET"])
def metrics():
    result = workflow_reporting.get_workflow_metrics(
        db.session,
        start=request.args.get("start"),
        end=request.args.get("end"),
    )
    return jsonify(result), 200


@workflow_bp.route("/transition-metrics", methods=["GET"])
def transition_metrics():
    result = workflow_reporting.get_status_transition_metrics(
        db.session,
        bottleneck_threshold_hours=parse_float(
            request.args.get("bottleneck_hours"),
            "bottleneck_hours",
            default=current_app.config["BOTTLENECK_THRESHOLD_HOURS"],
        ),
        start=request.args.get("start"),
        end=request.args.get("end"),
    )
    return jsonify(result), 200


@workflow_bp.route("/stuck", methods=["GET"])
def stuck_orders():
    rows = workflow_reporting.get_stuck_orders(
        db.session,
        status=request.args.get("status") or None,
        threshold_hours=parse_float(
            request.args.get("threshold_hours"),
            "threshold_hours",
            default=current_app.config["STUCK_ORDER_THRESHOLD_HOURS"],
        ),
        location_id=parse_int(request.args.get("location_id"), "location_id"),
    )
    return jsonify({"orders": rows}), 200


@workflow_bp.route("/attention", methods=["GET"])
def attention():
    return jsonify({"orders": workflow_reporting.get_orders_requiring_attention(db.session)}), 200


@workflow_bp.route("/ready", methods=["GET"])
def ready_for_transition():
    from_status = request.args.get("from_status")
    to_status = request.args.get("to_status")
    if not from_status or not to_status:
        raise BadRequestError("from_status and to_status are required")
    orders = workflow_reporting.get_orders_ready_for_transition(
        db.session,
        from_status,
        to_status,
        limit=parse_int(request.args.get("limit"), "limit", default=50, minimum=1),
    )
    return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]}), 200
