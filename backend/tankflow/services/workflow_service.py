# Overview: Service-layer operations for the order workflow; encapsulates business logic and database work.

"""
tankflow Order Workflow

================================================================================
STATE MACHINE:
    PENDING -> CONFIRMED -> RESERVED -> IN_TRANSIT -> DELIVERED -> FULFILLED
       |           |           |            |
       v           v           v            v
    CANCELLED   CANCELLED   CANCELLED     FAILED -> IN_TRANSIT (retry)
                                            |
                                            v
                                         CANCELLED

    FULFILLED and CANCELLED are terminal.

RULES (NON-NEGOTIABLE):
1. perform_transition is the only writer of Order.status.
2. The caller states the status it expects to move from. A mismatch with
   the persisted status is a Conflict (someone else moved the order first).
3. The status write, the history row and every side effect commit together
   or not at all.
4. History rows are append-only.

SIDE EFFECTS (same transaction):
    -> RESERVED          hold the order's items at its assignment
    -> DELIVERED         post a SALE per active hold, link it, fulfill holds
    -> CANCELLED         release active holds
    FAILED -> IN_TRANSIT restore holds the sweep expired meanwhile
================================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..domain import ItemType, OrderStatus, ReservationStatus, TransactionType, parse_enum
from ..errors import BadRequestError, ConflictError, NotFoundError, PermissionDeniedError, TankflowError
from ..models import LocationAssignment, Order, OrderStatusHistory, OrderTransactionLink
from ..time_utils import utcnow
from . import reservation_service, transaction_service
from .concurrency import (
    DEFAULT_LINE_LOCK_TIMEOUT_SECONDS,
    acquire_line_locks,
    line_key,
    lock_for_update,
    run_unit_of_work,
)
from .transaction_strategies import TransactionRequest

logger = logging.getLogger(__name__)

S = OrderStatus

STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELLED}),
    S.CONFIRMED: frozenset({S.RESERVED, S.CANCELLED}),
    S.RESERVED: frozenset({S.IN_TRANSIT, S.CANCELLED}),
    S.IN_TRANSIT: frozenset({S.DELIVERED, S.FAILED}),
    S.DELIVERED: frozenset({S.FULFILLED}),
    S.FAILED: frozenset({S.IN_TRANSIT, S.CANCELLED}),
    S.FULFILLED: frozenset(),
    S.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in STATUS_TRANSITIONS.items() if not targets)

STATUS_DESCRIPTIONS: dict[OrderStatus, str] = {
    S.PENDING: "Order created, awaiting confirmation",
    S.CONFIRMED: "Order confirmed, ready for inventory reservation",
    S.RESERVED: "Inventory reserved, ready for delivery",
    S.IN_TRANSIT: "Order out for delivery",
    S.DELIVERED: "Order delivered successfully",
    S.FULFILLED: "Order complete, invoice generated",
    S.CANCELLED: "Order cancelled",
    S.FAILED: "Delivery failed, requires attention",
}

TRANSITION_REASONS: dict[tuple[OrderStatus, OrderStatus], list[str]] = {
    (S.PENDING, S.CONFIRMED): ["Order details verified", "Customer confirmed by phone", "Payment received"],
    (S.PENDING, S.CANCELLED): ["Customer cancelled", "Duplicate order", "Invalid address"],
    (S.CONFIRMED, S.RESERVED): ["Inventory successfully reserved"],
    (S.CONFIRMED, S.CANCELLED): ["Customer cancelled", "Insufficient inventory"],
    (S.RESERVED, S.IN_TRANSIT): ["Driver assigned", "Out for delivery"],
    (S.RESERVED, S.CANCELLED): ["Customer cancelled", "Reservation expired"],
    (S.IN_TRANSIT, S.DELIVERED): ["Successfully delivered"],
    (S.IN_TRANSIT, S.FAILED): ["Customer not available", "Wrong address", "Vehicle breakdown"],
    (S.DELIVERED, S.FULFILLED): ["Invoice generated", "Payment collected"],
    (S.FAILED, S.IN_TRANSIT): ["Retry delivery", "Customer available now"],
    (S.FAILED, S.CANCELLED): ["Unable to deliver", "Customer cancelled"],
}

# Roles allowed on each edge. Enforced only when the caller passes actor_role.
TRANSITION_ROLES: dict[tuple[OrderStatus, OrderStatus], frozenset[str]] = {
    (S.PENDING, S.CONFIRMED): frozenset({"operator", "admin"}),
    (S.PENDING, S.CANCELLED): frozenset({"operator", "admin"}),
    (S.CONFIRMED, S.RESERVED): frozenset({"operator", "admin"}),
    (S.CONFIRMED, S.CANCELLED): frozenset({"operator", "admin"}),
    (S.RESERVED, S.IN_TRANSIT): frozenset({"operator", "driver", "admin"}),
    (S.RESERVED, S.CANCELLED): frozenset({"operator", "admin"}),
    (S.IN_TRANSIT, S.DELIVERED): frozenset({"driver", "operator", "admin"}),
    (S.IN_TRANSIT, S.FAILED): frozenset({"driver", "operator", "admin"}),
    (S.DELIVERED, S.FULFILLED): frozenset({"operator", "admin"}),
    (S.FAILED, S.IN_TRANSIT): frozenset({"operator", "driver", "admin"}),
    (S.FAILED, S.CANCELLED): frozenset({"operator", "admin"}),
}


def _status(value, field: str = "status") -> OrderStatus:
    return parse_enum(OrderStatus, value, field)


def can_transition(from_status, to_status) -> bool:
    try:
        return _status(to_status) in STATUS_TRANSITIONS[_status(from_status)]
    except BadRequestError:
        return False


def get_allowed_transitions(status) -> list[str]:
    return sorted(s.value for s in STATUS_TRANSITIONS[_status(status)])


def validate_transition(from_status, to_status) -> None:
    from_s = _status(from_status, "from_status")
    to_s = _status(to_status, "to_status")
    if to_s not in STATUS_TRANSITIONS[from_s]:
        allowed = ", ".join(get_allowed_transitions(from_s)) or "none"
        raise BadRequestError(
            f"Cannot transition from '{from_s.value}' to '{to_s.value}'. Allowed transitions: {allowed}"
        )


def check_actor_role(actor_role: str, from_status, to_status) -> None:
    roles = TRANSITION_ROLES.get((_status(from_status), _status(to_status)), frozenset())
    if actor_role not in roles:
        raise PermissionDeniedError(
            f"Role '{actor_role}' may not move orders from {_status(from_status).value} "
            f"to {_status(to_status).value}"
        )


def get_suggested_reasons(from_status, to_status) -> list[str]:
    return list(TRANSITION_REASONS.get((_status(from_status), _status(to_status)), []))


def is_valid_transition_reason(from_status, to_status, reason: str | None) -> bool:
    """True when the reason is one of the suggested reasons for that edge."""
    return bool(reason) and reason in get_suggested_reasons(from_status, to_status)


def get_workflow_configuration() -> dict:
    return {
        "statuses": [s.value for s in OrderStatus],
        "terminal_statuses": sorted(s.value for s in TERMINAL_STATUSES),
        "allowed_transitions": {
            from_s.value: sorted(t.value for t in targets)
            for from_s, targets in STATUS_TRANSITIONS.items()
        },
        "status_descriptions": {s.value: text for s, text in STATUS_DESCRIPTIONS.items()},
        "transition_reasons": {
            f"{a.value}->{b.value}": list(reasons) for (a, b), reasons in TRANSITION_REASONS.items()
        },
        "required_roles": {
            f"{a.value}->{b.value}": sorted(roles) for (a, b), roles in TRANSITION_ROLES.items()
        },
    }


# ---------------------------------------------------------------------------
# Side effects
# ---------------------------------------------------------------------------

def _attach_assignment(session, order: Order, assignment_id: int | None) -> None:
    if assignment_id is None:
        return
    if session.get(LocationAssignment, assignment_id) is None:
        raise NotFoundError(f"Assignment {assignment_id} not found")
    order.assignment_id = assignment_id


def _hold_order_items(session, order: Order, *, expires_at, expiry_hours: int, lock_timeout: float) -> None:
    """Reserve whatever part of the order is not already held."""
    if order.assignment_id is None:
        raise BadRequestError(
            f"Order {order.order_number} has no assignment; attach one before reserving"
        )

    held: dict[tuple, int] = {}
    for r in reservation_service.list_order_reservations(session, order.id, status=ReservationStatus.ACTIVE):
        key = (r.item_type, r.item_id)
        held[key] = held.get(key, 0) + r.reserved_quantity

    missing = []
    for item in reservation_service.items_from_order(order):
        short = item.quantity - held.get((item.item_type.value, item.item_id), 0)
        if short > 0:
            missing.append({"item_type": item.item_type.value, "item_id": item.item_id, "quantity": short})
    if not missing:
        return

    reservation_service.reserve_for_assignment(
        session,
        order_id=order.id,
        assignment_id=order.assignment_id,
        items=missing,
        expires_at=expires_at,
        expiry_hours=expiry_hours,
        commit=False,
        lock_timeout=lock_timeout,
    )


def _post_delivery(session, order: Order, actor_id: int, *, lock_timeout: float) -> None:
    """Turn every active hold into a SALE posting on its pinned snapshot."""
    holds = reservation_service.list_order_reservations(session, order.id, status=ReservationStatus.ACTIVE)
    if order.items and not holds:
        raise ConflictError(
            f"Order {order.order_number} has no active reservations to deliver; "
            "restore or re-reserve stock first"
        )

    # All lines up front, in sorted order, like reserve and restore.
    acquire_line_locks(
        session,
        [line_key(hold.assignment_id, hold.item_type, hold.item_id) for hold in holds],
        timeout=lock_timeout,
    )

    for hold in holds:
        result = transaction_service.process_transaction(
            session,
            TransactionRequest(
                transaction_type=TransactionType.SALE,
                item_type=ItemType(hold.item_type),
                item_id=hold.item_id,
                quantity=hold.reserved_quantity,
                actor_id=actor_id,
                snapshot_id=hold.snapshot_id,
                order_id=order.id,
                reference_id=hold.id,
                note=f"Delivery of {order.order_number}",
            ),
            commit=False,
            lock_timeout=lock_timeout,
        )
        for tx_id in result.transaction_ids:
            link = OrderTransactionLink(order_id=order.id, reservation_id=hold.id)
            if hold.item_type == ItemType.TANK.value:
                link.tank_transaction_id = tx_id
            else:
                link.item_transaction_id = tx_id
            session.add(link)

    reservation_service.fulfill(session, order.id, commit=False)


def _apply_side_effects(
    session,
    order: Order,
    from_s: OrderStatus,
    to_s: OrderStatus,
    *,
    actor_id: int,
    assignment_id: int | None,
    expires_at,
    expiry_hours: int,
    lock_timeout: float,
) -> None:
    if to_s == S.CONFIRMED:
        _attach_assignment(session, order, assignment_id)
    elif to_s == S.RESERVED:
        _attach_assignment(session, order, assignment_id)
        _hold_order_items(
            session, order, expires_at=expires_at, expiry_hours=expiry_hours, lock_timeout=lock_timeout
        )
    elif to_s == S.IN_TRANSIT and from_s == S.FAILED:
        reservation_service.restore_expired_reservations(
            session, order.id, expiry_hours=expiry_hours, commit=False, lock_timeout=lock_timeout
        )
    elif to_s == S.DELIVERED:
        _post_delivery(session, order, actor_id, lock_timeout=lock_timeout)
    elif to_s == S.CANCELLED:
        reservation_service.cancel(session, order.id, commit=False)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def perform_transition(
    session,
    order_id: int,
    from_status,
    to_status,
    actor_id: int,
    reason: str | None = None,
    *,
    actor_role: str | None = None,
    assignment_id: int | None = None,
    expires_at: datetime | None = None,
    expiry_hours: int = reservation_service.DEFAULT_EXPIRY_HOURS,
    lock_timeout: float = DEFAULT_LINE_LOCK_TIMEOUT_SECONDS,
    commit: bool = True,
) -> Order:
    """
    Move an order from `from_status` to `to_status`.

    Raises:
        NotFoundError: order absent
        ConflictError: persisted status differs from from_status, or a side
            effect ran out of stock
        BadRequestError: to_status not reachable from from_status
        PermissionDeniedError: actor_role given and not allowed on this edge
    """
    from_s = _status(from_status, "from_status")
    to_s = _status(to_status, "to_status")
    if not actor_id:
        raise BadRequestError("actor_id is required")

    def _op() -> Order:
        order = lock_for_update(session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status != from_s.value:
            raise ConflictError(
                f"Order status mismatch. Expected '{from_s.value}', but current status is '{order.status}'"
            )
        validate_transition(from_s, to_s)
        if actor_role is not None:
            check_actor_role(actor_role, from_s, to_s)

        _apply_side_effects(
            session,
            order,
            from_s,
            to_s,
            actor_id=actor_id,
            assignment_id=assignment_id,
            expires_at=expires_at,
            expiry_hours=expiry_hours,
            lock_timeout=lock_timeout,
        )

        now = utcnow()
        order.status = to_s.value
        order.status_changed_at = now
        if to_s == S.DELIVERED:
            order.delivery_date = now
        session.add(OrderStatusHistory(
            order_id=order.id,
            from_status=from_s.value,
            to_status=to_s.value,
            actor_id=actor_id,
            reason=reason,
            created_at=now,
        ))
        session.flush()
        logger.info(
            "Order %s %s -> %s by %s", order.order_number, from_s.value, to_s.value, actor_id
        )
        return order

    return run_unit_of_work(session, _op, commit=commit)


def get_order_current_status(session, order_id: int) -> OrderStatus:
    status = session.query(Order.status).filter_by(id=order_id).scalar()
    if status is None:
        raise NotFoundError(f"Order {order_id} not found")
    return OrderStatus(status)


def confirm_order(session, order_id: int, actor_id: int, *, assignment_id: int | None = None, reason: str | None = None, **kwargs) -> Order:
    return perform_transition(
        session, order_id, S.PENDING, S.CONFIRMED, actor_id,
        reason or "Order details verified", assignment_id=assignment_id, **kwargs,
    )


def reserve_order(session, order_id: int, actor_id: int, *, expires_at: datetime | None = None, reason: str | None = None, **kwargs) -> Order:
    return perform_transition(
        session, order_id, S.CONFIRMED, S.RESERVED, actor_id,
        reason or "Inventory successfully reserved", expires_at=expires_at, **kwargs,
    )


def dispatch_order(session, order_id: int, actor_id: int, *, reason: str | None = None, **kwargs) -> Order:
    return perform_transition(
        session, order_id, S.RESERVED, S.IN_TRANSIT, actor_id, reason or "Driver assigned", **kwargs,
    )


def complete_delivery(session, order_id: int, actor_id: int, *, reason: str | None = None, **kwargs) -> Order:
    return perform_transition(
        session, order_id, S.IN_TRANSIT, S.DELIVERED, actor_id, reason or "Successfully delivered", **kwargs,
    )


def fail_delivery(session, order_id: int, actor_id: int, *, reason: str, **kwargs) -> Order:
    if not reason:
        raise BadRequestError("A reason is required when a delivery fails")
    return perform_transition(session, order_id, S.IN_TRANSIT, S.FAILED, actor_id, reason, **kwargs)


def retry_delivery(session, order_id: int, actor_id: int, *, reason: str | None = None, **kwargs) -> Order:
    return perform_transition(
        session, order_id, S.FAILED, S.IN_TRANSIT, actor_id, reason or "Retry delivery", **kwargs,
    )


def fulfill_order(session, order_id: int, actor_id: int, *, reason: str | None = None, **kwargs) -> Order:
    return perform_transition(
        session, order_id, S.DELIVERED, S.FULFILLED, actor_id, reason or "Invoice generated", **kwargs,
    )


def cancel_order(session, order_id: int, actor_id: int, *, reason: str, **kwargs) -> Order:
    """Cancel from whatever status the order is in now (if cancellable)."""
    if not reason:
        raise BadRequestError("A reason is required to cancel an order")
    current = get_order_current_status(session, order_id)
    return perform_transition(session, order_id, current, S.CANCELLED, actor_id, reason, **kwargs)


def bulk_status_transition(
    session,
    order_ids: list[int],
    to_status,
    actor_id: int,
    reason: str | None = None,
    *,
    from_status=None,
    **kwargs,
) -> dict:
    """
    Transition many orders, each in its own unit of work.

    Without from_status each order moves from its current status.
    """
    to_s = _status(to_status, "to_status")
    successful: list[int] = []
    failed: list[dict] = []
    for order_id in order_ids:
        try:
            expected = from_status if from_status is not None else get_order_current_status(session, order_id)
            perform_transition(session, order_id, expected, to_s, actor_id, reason, **kwargs)
            successful.append(order_id)
        except TankflowError as e:
            session.rollback()
            failed.append({"order_id": order_id, "error": str(e), "kind": e.kind})
    return {"successful": successful, "failed": failed}


def get_status_history(session, order_id: int) -> list[OrderStatusHistory]:
    if session.get(Order, order_id) is None:
        raise NotFoundError(f"Order {order_id} not found")
    return (
        session.query(OrderStatusHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusHistory.created_at.asc(), OrderStatusHistory.id.asc())
        .all()
    )
