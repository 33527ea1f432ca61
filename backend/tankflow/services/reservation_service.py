# Overview: Service-layer operations for inventory reservations; encapsulates business logic and database work.

"""
Inventory reservation engine.

RESERVATION INVARIANTS (authoritative):
1. available(assignment, item) = on_hand(current snapshot) - sum(ACTIVE holds),
   and never drops below zero through this module.
2. Availability checks and inserts for one (assignment, item) are serialized:
   the line lock is taken and the ledger row is read FOR UPDATE before the
   sum is computed, and the lock is held until the transaction ends.
3. reserve() is all-or-nothing across its items.
4. fulfill()/cancel() are idempotent; no ACTIVE holds means no-op.
5. Holds are never deleted and never partially fulfilled.

Conflict reports (find_conflicting_reservations / optimize_reservations) are
advisory: on-hand can shrink after a hold was placed (corrections, direct
sales), and the reports surface that to operators without resolving it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy import func, or_

from ..domain import ItemType, ReservationStatus, parse_enum
from ..errors import BadRequestError, ConflictError, NotFoundError, TankflowError
from ..models import InventoryReservation, Order
from ..time_utils import hours_between, to_utc_z, utcnow
from . import ledger_service
from .concurrency import (
    DEFAULT_LINE_LOCK_TIMEOUT_SECONDS,
    acquire_line_locks,
    line_key,
    lock_for_update,
    run_unit_of_work,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_HOURS = 24
DEFAULT_EXPIRING_SOON_HOURS = 2
MAX_RESERVATION_QUANTITY = 1000


@dataclass(frozen=True)
class ReservationItem:
    item_type: ItemType
    item_id: int
    quantity: int

    @classmethod
    def from_dict(cls, data: dict) -> "ReservationItem":
        """
        Accepts {"item_type", "item_id", "quantity"} or the order-line shape
        with tank_type_id / inventory_item_id.
        """
        item_type = parse_enum(ItemType, data.get("item_type"), "item_type")
        item_id = data.get("item_id")
        if item_id is None:
            item_id = data.get("tank_type_id") if item_type == ItemType.TANK else data.get("inventory_item_id")
        if item_id is None:
            raise BadRequestError(f"item_id is required for {item_type.value} reservations")
        if not isinstance(item_id, int) or isinstance(item_id, bool) or item_id <= 0:
            raise BadRequestError(f"item_id must be a positive integer, got {item_id!r}")
        quantity = data.get("quantity")
        return cls(item_type=item_type, item_id=item_id, quantity=quantity)

    @property
    def label(self) -> str:
        return f"{self.item_type.value} ID {self.item_id}"


def _coerce_items(items: Iterable) -> list[ReservationItem]:
    """Normalize request items and merge duplicate lines."""
    merged: dict[tuple, int] = {}
    order: list[tuple] = []
    for raw in items or []:
        item = raw if isinstance(raw, ReservationItem) else ReservationItem.from_dict(raw)
        qty = item.quantity
        if not isinstance(qty, int) or isinstance(qty, bool):
            raise BadRequestError(f"Quantity for {item.label} must be an integer")
        if qty <= 0:
            raise BadRequestError(f"Quantity for {item.label} must be positive (got {qty})")
        key = (item.item_type, item.item_id)
        if key not in merged:
            order.append(key)
            merged[key] = 0
        merged[key] += qty
    if not order:
        raise BadRequestError("At least one item is required")
    return [ReservationItem(item_type=t, item_id=i, quantity=merged[(t, i)]) for t, i in order]


def items_from_order(order: Order) -> list[ReservationItem]:
    return [
        ReservationItem(item_type=ItemType(line.item_type), item_id=line.item_id, quantity=line.quantity)
        for line in order.items
    ]


def _item_filter(item_type, item_id):
    item_type = ItemType(item_type)
    if item_type == ItemType.TANK:
        return (
            InventoryReservation.item_type == ItemType.TANK.value,
            InventoryReservation.tank_type_id == item_id,
        )
    return (
        InventoryReservation.item_type == ItemType.ITEM.value,
        InventoryReservation.inventory_item_id == item_id,
    )


def _get_order(session, order_id: int) -> Order:
    order = session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


# ---------------------------------------------------------------------------
# Quantities
# ---------------------------------------------------------------------------

def get_reserved_quantity(
    session,
    assignment_id: int,
    item_type,
    item_id: int,
    *,
    exclude_order_id: int | None = None,
) -> int:
    query = session.query(func.coalesce(func.sum(InventoryReservation.reserved_quantity), 0)).filter(
        InventoryReservation.assignment_id == assignment_id,
        InventoryReservation.status == ReservationStatus.ACTIVE.value,
        *_item_filter(item_type, item_id),
    )
    if exclude_order_id is not None:
        query = query.filter(InventoryReservation.order_id != exclude_order_id)
    return int(query.scalar() or 0)


def get_quantity_breakdown(
    session,
    assignment_id: int,
    item_type,
    item_id: int,
    *,
    exclude_order_id: int | None = None,
    for_update: bool = False,
) -> dict:
    """on_hand / reserved / available for one line of the assignment's live snapshot."""
    item_type = parse_enum(ItemType, item_type, "item_type")
    snapshot_id = ledger_service.get_current_snapshot_id(session, assignment_id)
    on_hand = ledger_service.get_on_hand(session, snapshot_id, item_type, item_id, for_update=for_update)
    reserved = get_reserved_quantity(
        session, assignment_id, item_type, item_id, exclude_order_id=exclude_order_id
    )
    return {
        "snapshot_id": snapshot_id,
        "on_hand": on_hand,
        "reserved": reserved,
        "available": max(on_hand - reserved, 0),
    }


def get_available_quantity(
    session,
    assignment_id: int,
    item_type,
    item_id: int,
    *,
    exclude_order_id: int | None = None,
) -> int:
    return get_quantity_breakdown(
        session, assignment_id, item_type, item_id, exclude_order_id=exclude_order_id
    )["available"]


def can_reserve_quantity(
    session,
    assignment_id: int,
    item_type,
    item_id: int,
    quantity: int,
    *,
    exclude_order_id: int | None = None,
) -> bool:
    available = get_available_quantity(
        session, assignment_id, item_type, item_id, exclude_order_id=exclude_order_id
    )
    return quantity <= available


def _availability_rows(session, assignment_id: int, items: list[ReservationItem], *, for_update: bool = False) -> list[dict]:
    rows = []
    for item in items:
        breakdown = get_quantity_breakdown(
            session, assignment_id, item.item_type, item.item_id, for_update=for_update
        )
        rows.append({
            "item_type": item.item_type.value,
            "item_id": item.item_id,
            "required_quantity": item.quantity,
            "available_quantity": breakdown["available"],
            "reserved_quantity": breakdown["reserved"],
            "on_hand_quantity": breakdown["on_hand"],
            "sufficient": breakdown["available"] >= item.quantity,
        })
    return rows


def check_availability(session, location_id: int, items: Iterable) -> dict:
    """Read-only availability report for the location's current assignment."""
    assignment = ledger_service.resolve_current_assignment(session, location_id)
    return check_assignment_availability(session, assignment.id, items)


def check_assignment_availability(session, assignment_id: int, items: Iterable) -> dict:
    normalized = _coerce_items(items)
    rows = _availability_rows(session, assignment_id, normalized)
    short = [row for row in rows if not row["sufficient"]]
    if short:
        message = "Insufficient inventory: " + "; ".join(
            f"{row['item_type']} ID {row['item_id']} (need {row['required_quantity']}, "
            f"available {row['available_quantity']})"
            for row in short
        )
    else:
        message = "All items available"
    return {
        "assignment_id": assignment_id,
        "available": not short,
        "items": rows,
        "message": message,
    }


def validate_reservation_request(
    session,
    assignment_id: int,
    items: Iterable,
    *,
    max_quantity: int = MAX_RESERVATION_QUANTITY,
) -> dict:
    """Collect every problem with a request instead of stopping at the first."""
    errors: list[str] = []
    warnings: list[str] = []
    try:
        normalized = _coerce_items(items)
    except BadRequestError as e:
        return {"valid": False, "errors": [str(e)], "warnings": []}

    for item in normalized:
        if item.quantity > max_quantity:
            errors.append(
                f"Quantity for {item.label} exceeds the per-reservation limit of {max_quantity}"
            )

    try:
        rows = _availability_rows(session, assignment_id, normalized)
    except NotFoundError as e:
        return {"valid": False, "errors": errors + [str(e)], "warnings": warnings}

    for row in rows:
        label = f"{row['item_type']} ID {row['item_id']}"
        if not row["sufficient"]:
            errors.append(
                f"Insufficient inventory for {label} "
                f"(need {row['required_quantity']}, available {row['available_quantity']})"
            )
        elif row["required_quantity"] == row["available_quantity"]:
            warnings.append(f"Reserving all available stock for {label}")

    return {"valid": not errors, "errors": errors, "warnings": warnings}


# ---------------------------------------------------------------------------
# Reserve
# ---------------------------------------------------------------------------

def _reserve_at_assignment(
    session,
    *,
    order_id: int,
    assignment_id: int,
    items: Iterable,
    expires_at: datetime | None,
    expiry_hours: int,
    lock_timeout: float,
) -> list[InventoryReservation]:
    """Core reserve logic without commit. Caller owns the transaction."""
    normalized = _coerce_items(items)
    _get_order(session, order_id)

    now = utcnow()
    if expires_at is None:
        expires_at = now + timedelta(hours=expiry_hours)
    elif expires_at <= now:
        raise BadRequestError("expires_at must be in the future")

    snapshot_id = ledger_service.get_current_snapshot_id(session, assignment_id)

    acquire_line_locks(
        session,
        [line_key(assignment_id, item.item_type.value, item.item_id) for item in normalized],
        timeout=lock_timeout,
    )

    shortages = []
    for item in normalized:
        on_hand = ledger_service.get_on_hand(
            session, snapshot_id, item.item_type, item.item_id, for_update=True
        )
        reserved = get_reserved_quantity(session, assignment_id, item.item_type, item.item_id)
        available = max(on_hand - reserved, 0)
        if available < item.quantity:
            shortages.append(f"{item.label} (need {item.quantity}, available {available})")
    if shortages:
        raise ConflictError("Insufficient inventory: " + "; ".join(shortages))

    reservations = []
    for item in normalized:
        reservation = InventoryReservation(
            order_id=order_id,
            assignment_id=assignment_id,
            snapshot_id=snapshot_id,
            item_type=item.item_type.value,
            tank_type_id=item.item_id if item.item_type == ItemType.TANK else None,
            inventory_item_id=item.item_id if item.item_type == ItemType.ITEM else None,
            reserved_quantity=item.quantity,
            status=ReservationStatus.ACTIVE.value,
            expires_at=expires_at,
            activated_at=now,
            created_at=now,
        )
        session.add(reservation)
        reservations.append(reservation)
    session.flush()

    logger.info(
        "Reserved %s line(s) for order %s on assignment %s",
        len(reservations), order_id, assignment_id,
    )
    return reservations


def reserve(
    session,
    *,
    order_id: int,
    location_id: int,
    items: Iterable,
    expires_at: datetime | None = None,
    expiry_hours: int = DEFAULT_EXPIRY_HOURS,
    commit: bool = True,
    lock_timeout: float = DEFAULT_LINE_LOCK_TIMEOUT_SECONDS,
) -> list[InventoryReservation]:
    """
    Hold stock for an order at a location's current assignment.

    Raises:
        NotFoundError: order or location missing
        BadRequestError: bad items, no active assignment, expiry in the past
        ConflictError: any item short; nothing is reserved
    """
    def _op():
        assignment = ledger_service.resolve_current_assignment(session, location_id)
        return _reserve_at_assignment(
            session,
            order_id=order_id,
            assignment_id=assignment.id,
            items=items,
            expires_at=expires_at,
            expiry_hours=expiry_hours,
            lock_timeout=lock_timeout,
        )

    return run_unit_of_work(session, _op, commit=commit)


def reserve_for_assignment(
    session,
    *,
    order_id: int,
    assignment_id: int,
    items: Iterable,
    expires_at: datetime | None = None,
    expiry_hours: int = DEFAULT_EXPIRY_HOURS,
    commit: bool = True,
    lock_timeout: float = DEFAULT_LINE_LOCK_TIMEOUT_SECONDS,
) -> list[InventoryReservation]:
    """Same as reserve(), for callers that already hold the assignment id."""
    def _op():
        return _reserve_at_assignment(
            session,
            order_id=order_id,
            assignment_id=assignment_id,
            items=items,
            expires_at=expires_at,
            expiry_hours=expiry_hours,
            lock_timeout=lock_timeout,
        )

    return run_unit_of_work(session, _op, commit=commit)


# ---------------------------------------------------------------------------
# Status changes
# ---------------------------------------------------------------------------

def list_order_reservations(session, order_id: int, *, status=None) -> list[InventoryReservation]:
    query = session.query(InventoryReservation).filter_by(order_id=order_id)
    if status is not None:
        query = query.filter(
            InventoryReservation.status == parse_enum(ReservationStatus, status, "status").value
        )
    return query.order_by(InventoryReservation.created_at.asc(), InventoryReservation.id.asc()).all()


def _resolve_active(session, order_id: int, new_status: ReservationStatus) -> int:
    _get_order(session, order_id)
    rows = lock_for_update(
        session.query(InventoryReservation).filter_by(
            order_id=order_id, status=ReservationStatus.ACTIVE.value
        )
    ).all()
    now = utcnow()
    for reservation in rows:
        reservation.status = new_status.value
        reservation.resolved_at = now
    session.flush()
    if rows:
        logger.info("%s %s reservation(s) for order %s", new_status.value.lower(), len(rows), order_id)
    return len(rows)


def fulfill(session, order_id: int, *, commit: bool = True) -> int:
    """Mark every ACTIVE hold of the order FULFILLED. Returns the count (0 on repeat)."""
    return run_unit_of_work(
        session, lambda: _resolve_active(session, order_id, ReservationStatus.FULFILLED), commit=commit
    )


def cancel(session, order_id: int, *, commit: bool = True) -> int:
    """Release every ACTIVE hold of the order. Returns the count (0 on repeat)."""
    return run_unit_of_work(
        session, lambda: _resolve_active(session, order_id, ReservationStatus.CANCELLED), commit=commit
    )


def expire_old_reservations(
    session,
    threshold_hours: float = DEFAULT_EXPIRY_HOURS,
    *,
    now: datetime | None = None,
    commit: bool = True,
) -> int:
    """
    Move stale ACTIVE holds to EXPIRED.

    A hold is stale when it has been active longer than threshold_hours, or
    its own expires_at has passed. Returns the number expired.
    """
    if threshold_hours is None or threshold_hours <= 0:
        raise BadRequestError("threshold_hours must be positive")

    def _op() -> int:
        current = now or utcnow()
        cutoff = current - timedelta(hours=threshold_hours)
        rows = lock_for_update(
            session.query(InventoryReservation).filter(
                InventoryReservation.status == ReservationStatus.ACTIVE.value,
                or_(
                    InventoryReservation.activated_at < cutoff,
                    InventoryReservation.expires_at <= current,
                ),
            )
        ).all()
        for reservation in rows:
            reservation.status = ReservationStatus.EXPIRED.value
            reservation.resolved_at = current
        session.flush()
        if rows:
            logger.info("Expired %s reservation(s) older than %sh", len(rows), threshold_hours)
        return len(rows)

    return run_unit_of_work(session, _op, commit=commit)


def restore_expired_reservations(
    session,
    order_id: int,
    *,
    expiry_hours: int = DEFAULT_EXPIRY_HOURS,
    commit: bool = True,
    lock_timeout: float = DEFAULT_LINE_LOCK_TIMEOUT_SECONDS,
) -> list[InventoryReservation]:
    """
    Re-activate an order's EXPIRED holds.

    Availability is re-checked under the same locks as reserve(); if any line
    no longer has the stock, nothing is restored (ConflictError).
    """
    def _op():
        _get_order(session, order_id)
        expired = list_order_reservations(session, order_id, status=ReservationStatus.EXPIRED)
        if not expired:
            return []

        needed: dict[tuple, int] = {}
        for reservation in expired:
            key = (reservation.assignment_id, reservation.item_type, reservation.item_id)
            needed[key] = needed.get(key, 0) + reservation.reserved_quantity

        acquire_line_locks(
            session,
            [line_key(a, t, i) for (a, t, i) in needed],
            timeout=lock_timeout,
        )

        shortages = []
        for (assignment_id, item_type, item_id), qty in needed.items():
            breakdown = get_quantity_breakdown(
                session, assignment_id, item_type, item_id, for_update=True
            )
            if breakdown["available"] < qty:
                shortages.append(
                    f"{item_type} ID {item_id} (need {qty}, available {breakdown['available']})"
                )
        if shortages:
            raise ConflictError("Cannot restore reservations, insufficient inventory: " + "; ".join(shortages))

        now = utcnow()
        for reservation in expired:
            reservation.status = ReservationStatus.ACTIVE.value
            reservation.activated_at = now
            reservation.expires_at = now + timedelta(hours=expiry_hours)
            reservation.resolved_at = None
        session.flush()
        logger.info("Restored %s expired reservation(s) for order %s", len(expired), order_id)
        return expired

    return run_unit_of_work(session, _op, commit=commit)


def extend_reservation_expiry(session, reservation_id: int, expires_at: datetime, *, commit: bool = True) -> InventoryReservation:
    def _op():
        reservation = lock_for_update(
            session.query(InventoryReservation).filter_by(id=reservation_id)
        ).first()
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        if reservation.status != ReservationStatus.ACTIVE.value:
            raise BadRequestError(
                f"Only active reservations can be extended (reservation {reservation_id} is {reservation.status})"
            )
        if expires_at is None or expires_at <= utcnow():
            raise BadRequestError("expires_at must be in the future")
        reservation.expires_at = expires_at
        session.flush()
        return reservation

    return run_unit_of_work(session, _op, commit=commit)


def set_order_reservation_expiry(session, order_id: int, expires_at: datetime, *, commit: bool = True) -> int:
    """Set expires_at on every ACTIVE hold of an order. Returns the count."""
    def _op() -> int:
        if expires_at is None or expires_at <= utcnow():
            raise BadRequestError("expires_at must be in the future")
        rows = list_order_reservations(session, order_id, status=ReservationStatus.ACTIVE)
        for reservation in rows:
            reservation.expires_at = expires_at
        session.flush()
        return len(rows)

    return run_unit_of_work(session, _op, commit=commit)


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------

def bulk_reserve_items(session, requests: Iterable[dict], **kwargs) -> dict:
    """
    Reserve for several orders, each in its own unit of work.

    Each request: {"order_id", "location_id", "items", "expires_at"?}.
    """
    successful = []
    failed = []
    for request in requests:
        order_id = request.get("order_id")
        try:
            reservations = reserve(
                session,
                order_id=order_id,
                location_id=request.get("location_id"),
                items=request.get("items"),
                expires_at=request.get("expires_at"),
                **kwargs,
            )
            successful.append({
                "order_id": order_id,
                "reservation_ids": [r.id for r in reservations],
            })
        except TankflowError as e:
            failed.append({"order_id": order_id, "error": str(e)})
    return {"successful": successful, "failed": failed}


def bulk_cancel_reservations(session, order_ids: Iterable[int]) -> dict:
    successful = []
    failed = []
    for order_id in order_ids:
        try:
            count = cancel(session, order_id)
            successful.append({"order_id": order_id, "cancelled": count})
        except TankflowError as e:
            failed.append({"order_id": order_id, "error": str(e)})
    return {"successful": successful, "failed": failed}


# ---------------------------------------------------------------------------
# Diagnostics & metrics (read-only)
# ---------------------------------------------------------------------------

def find_expiring_reservations(
    session,
    *,
    within_hours: float = DEFAULT_EXPIRING_SOON_HOURS,
    assignment_id: int | None = None,
    now: datetime | None = None,
) -> list[InventoryReservation]:
    cutoff = (now or utcnow()) + timedelta(hours=within_hours)
    query = session.query(InventoryReservation).filter(
        InventoryReservation.status == ReservationStatus.ACTIVE.value,
        InventoryReservation.expires_at.isnot(None),
        InventoryReservation.expires_at <= cutoff,
    )
    if assignment_id is not None:
        query = query.filter(InventoryReservation.assignment_id == assignment_id)
    return query.order_by(InventoryReservation.expires_at.asc(), InventoryReservation.id.asc()).all()


def find_conflicting_reservations(
    session,
    assignment_id: int,
    item_type,
    item_id: int,
    *,
    exclude_order_id: int | None = None,
) -> dict:
    """
    FIFO walk of the ACTIVE holds on one line.

    Holds are covered in creation order until on-hand runs out; the rest are
    reported as at risk.
    """
    item_type = parse_enum(ItemType, item_type, "item_type")
    snapshot_id = ledger_service.get_current_snapshot_id(session, assignment_id)
    on_hand = ledger_service.get_on_hand(session, snapshot_id, item_type, item_id)

    query = session.query(InventoryReservation).filter(
        InventoryReservation.assignment_id == assignment_id,
        InventoryReservation.status == ReservationStatus.ACTIVE.value,
        *_item_filter(item_type, item_id),
    )
    if exclude_order_id is not None:
        query = query.filter(InventoryReservation.order_id != exclude_order_id)
    holds = query.order_by(InventoryReservation.created_at.asc(), InventoryReservation.id.asc()).all()

    remaining = on_hand
    rows = []
    at_risk = []
    total = 0
    for hold in holds:
        total += hold.reserved_quantity
        covered = hold.reserved_quantity <= remaining
        if covered:
            remaining -= hold.reserved_quantity
        else:
            at_risk.append(hold.id)
        rows.append({**hold.to_dict(), "covered": covered})

    return {
        "assignment_id": assignment_id,
        "item_type": item_type.value,
        "item_id": item_id,
        "on_hand": on_hand,
        "total_reserved": total,
        "shortage": max(total - on_hand, 0),
        "has_conflict": total > on_hand,
        "reservations": rows,
        "at_risk_reservation_ids": at_risk,
    }


def optimize_reservations(session, assignment_id: int) -> dict:
    """Scan every reserved line of an assignment for over-reservation."""
    lines = (
        session.query(
            InventoryReservation.item_type,
            InventoryReservation.tank_type_id,
            InventoryReservation.inventory_item_id,
        )
        .filter(
            InventoryReservation.assignment_id == assignment_id,
            InventoryReservation.status == ReservationStatus.ACTIVE.value,
        )
        .distinct()
        .all()
    )

    conflicts = []
    for item_type, tank_type_id, inventory_item_id in lines:
        item_id = tank_type_id if item_type == ItemType.TANK.value else inventory_item_id
        report = find_conflicting_reservations(session, assignment_id, item_type, item_id)
        if report["has_conflict"]:
            conflicts.append({
                "item_type": item_type,
                "item_id": item_id,
                "total_reserved": report["total_reserved"],
                "available": report["on_hand"],
                "shortage": report["shortage"],
                "at_risk_reservation_ids": report["at_risk_reservation_ids"],
            })

    conflicts.sort(key=lambda c: (c["item_type"], c["item_id"]))
    return {"assignment_id": assignment_id, "optimized": not conflicts, "conflicts": conflicts}


def get_reservation_metrics(
    session,
    *,
    assignment_id: int | None = None,
    expiring_soon_hours: float = DEFAULT_EXPIRING_SOON_HOURS,
    top: int = 10,
) -> dict:
    base = session.query(InventoryReservation)
    if assignment_id is not None:
        base = base.filter(InventoryReservation.assignment_id == assignment_id)

    by_status = {status.value: 0 for status in ReservationStatus}
    status_rows = (
        base.with_entities(InventoryReservation.status, func.count(InventoryReservation.id))
        .group_by(InventoryReservation.status)
        .all()
    )
    for status, count in status_rows:
        by_status[status] = int(count)

    top_rows = (
        base.with_entities(
            InventoryReservation.item_type,
            InventoryReservation.tank_type_id,
            InventoryReservation.inventory_item_id,
            func.sum(InventoryReservation.reserved_quantity).label("total"),
            func.count(InventoryReservation.id).label("holds"),
        )
        .filter(InventoryReservation.status == ReservationStatus.ACTIVE.value)
        .group_by(
            InventoryReservation.item_type,
            InventoryReservation.tank_type_id,
            InventoryReservation.inventory_item_id,
        )
        .order_by(func.sum(InventoryReservation.reserved_quantity).desc())
        .limit(top)
        .all()
    )

    resolved = (
        base.with_entities(InventoryReservation.activated_at, InventoryReservation.resolved_at)
        .filter(InventoryReservation.resolved_at.isnot(None))
        .all()
    )
    durations = [hours_between(start, end) for start, end in resolved if start and end]

    return {
        "total_active": by_status[ReservationStatus.ACTIVE.value],
        "by_status": by_status,
        "expiring_soon": len(find_expiring_reservations(
            session, within_hours=expiring_soon_hours, assignment_id=assignment_id
        )),
        "top_reserved_items": [
            {
                "item_type": row.item_type,
                "item_id": row.tank_type_id if row.item_type == ItemType.TANK.value else row.inventory_item_id,
                "total_reserved": int(row.total or 0),
                "reservation_count": int(row.holds or 0),
            }
            for row in top_rows
        ],
        "average_duration_hours": round(sum(durations) / len(durations), 2) if durations else 0.0,
    }


def get_order_reservation_summary(session, order_id: int) -> dict:
    order = _get_order(session, order_id)
    reservations = list_order_reservations(session, order_id)
    active = [r for r in reservations if r.status == ReservationStatus.ACTIVE.value]

    reserved_by_item: dict[tuple, int] = {}
    for r in active:
        key = (r.item_type, r.item_id)
        reserved_by_item[key] = reserved_by_item.get(key, 0) + r.reserved_quantity

    lines = []
    covered = 0
    for item in items_from_order(order):
        reserved = reserved_by_item.get((item.item_type.value, item.item_id), 0)
        if reserved >= item.quantity:
            covered += 1
        lines.append({
            "item_type": item.item_type.value,
            "item_id": item.item_id,
            "required_quantity": item.quantity,
            "reserved_quantity": reserved,
        })

    if lines and covered == len(lines):
        status = "complete"
    elif active:
        status = "partial"
    else:
        status = "none"

    expiries = [r.expires_at for r in active if r.expires_at is not None]
    earliest = min(expiries) if expiries else None
    return {
        "order_id": order_id,
        "status": status,
        "items": lines,
        "total_reserved": sum(r.reserved_quantity for r in active),
        "earliest_expiry": to_utc_z(earliest),
        "reservations": [r.to_dict() for r in reservations],
    }


def get_current_inventory_status(session, location_id: int) -> dict:
    """Per-line on-hand / reserved / available for a location's live snapshot."""
    assignment = ledger_service.resolve_current_assignment(session, location_id)
    snapshot_id = ledger_service.get_current_snapshot_id(session, assignment.id)
    tanks, items = ledger_service.list_snapshot_lines(session, snapshot_id)

    tank_rows = []
    for line in tanks:
        reserved = get_reserved_quantity(session, assignment.id, ItemType.TANK, line.tank_type_id)
        tank_rows.append({
            "tank_type_id": line.tank_type_id,
            "current_full": line.current_full,
            "current_empty": line.current_empty,
            "reserved": reserved,
            "available": max(line.current_full - reserved, 0),
        })

    item_rows = []
    for line in items:
        reserved = get_reserved_quantity(session, assignment.id, ItemType.ITEM, line.inventory_item_id)
        item_rows.append({
            "inventory_item_id": line.inventory_item_id,
            "current_quantity": line.current_quantity,
            "reserved": reserved,
            "available": max(line.current_quantity - reserved, 0),
        })

    return {
        "location_id": location_id,
        "assignment_id": assignment.id,
        "snapshot_id": snapshot_id,
        "tanks": tank_rows,
        "items": item_rows,
    }
