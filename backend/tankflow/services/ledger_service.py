# Overview: Service-layer operations for the per-assignment stock ledger; encapsulates business logic and database work.

"""
Ledger accessor.

LEDGER INVARIANTS (authoritative):
1. On-hand quantities live on ledger lines scoped to one inventory snapshot.
2. The live snapshot of an assignment is found ONLY through
   CurrentInventoryPointer; never by tank type or item id alone.
3. Quantities change one signed delta at a time, each paired with exactly
   one transaction-log row in the same database transaction.
4. No bucket may go negative; a posting that would do so is refused
   before anything is written.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, update

from ..domain import ItemType, TransactionType
from ..errors import BadRequestError, ConflictError, NotFoundError
from ..models import (
    CurrentInventoryPointer,
    InventorySnapshot,
    ItemTransaction,
    LedgerItemLine,
    LedgerTankLine,
    Location,
    LocationAssignment,
    TankTransaction,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Assignment / snapshot resolution
# ---------------------------------------------------------------------------

def resolve_current_assignment(session, location_id: int) -> LocationAssignment:
    """
    Return the location's active assignment that has a live snapshot.

    Latest start_date wins when several assignments overlap.
    """
    location = session.get(Location, location_id)
    if location is None:
        raise NotFoundError(f"Location {location_id} not found")

    now = utcnow()
    assignment = (
        session.query(LocationAssignment)
        .join(
            CurrentInventoryPointer,
            CurrentInventoryPointer.assignment_id == LocationAssignment.id,
        )
        .filter(
            LocationAssignment.location_id == location_id,
            LocationAssignment.start_date <= now,
            or_(LocationAssignment.end_date.is_(None), LocationAssignment.end_date > now),
        )
        .order_by(LocationAssignment.start_date.desc(), LocationAssignment.id.desc())
        .first()
    )
    if assignment is None:
        raise BadRequestError(f"No active assignment found for location {location_id}")
    return assignment


def get_current_snapshot_id(session, assignment_id: int) -> int:
    pointer = session.get(CurrentInventoryPointer, assignment_id)
    if pointer is None:
        raise NotFoundError(f"Assignment {assignment_id} has no current inventory snapshot")
    return pointer.snapshot_id


def get_snapshot_assignment_id(session, snapshot_id: int) -> int:
    snapshot = session.get(InventorySnapshot, snapshot_id)
    if snapshot is None:
        raise NotFoundError(f"Inventory snapshot {snapshot_id} not found")
    return snapshot.assignment_id


def set_current_snapshot(session, *, assignment_id: int, snapshot_id: int, set_by: int | None = None) -> None:
    """
    Point an assignment at a snapshot (single-row UPDATE, insert on first use).

    In-flight reservations keep the snapshot id they pinned.
    """
    snapshot = session.get(InventorySnapshot, snapshot_id)
    if snapshot is None:
        raise NotFoundError(f"Inventory snapshot {snapshot_id} not found")
    if snapshot.assignment_id != assignment_id:
        raise BadRequestError(
            f"Snapshot {snapshot_id} belongs to assignment {snapshot.assignment_id}, not {assignment_id}"
        )

    result = session.execute(
        update(CurrentInventoryPointer)
        .where(CurrentInventoryPointer.assignment_id == assignment_id)
        .values(snapshot_id=snapshot_id, set_at=utcnow(), set_by=set_by)
    )
    if not result.rowcount:
        session.add(CurrentInventoryPointer(
            assignment_id=assignment_id,
            snapshot_id=snapshot_id,
            set_by=set_by,
        ))
    session.flush()


# ---------------------------------------------------------------------------
# Lines
# ---------------------------------------------------------------------------

def get_tank_line(session, snapshot_id: int, tank_type_id: int, *, for_update: bool = False) -> LedgerTankLine | None:
    query = session.query(LedgerTankLine).filter_by(snapshot_id=snapshot_id, tank_type_id=tank_type_id)
    if for_update:
        query = lock_for_update(query)
    return query.first()


def get_item_line(session, snapshot_id: int, inventory_item_id: int, *, for_update: bool = False) -> LedgerItemLine | None:
    query = session.query(LedgerItemLine).filter_by(snapshot_id=snapshot_id, inventory_item_id=inventory_item_id)
    if for_update:
        query = lock_for_update(query)
    return query.first()


def get_line(session, snapshot_id: int, item_type: str, item_id: int, *, for_update: bool = False):
    if item_type == ItemType.TANK:
        return get_tank_line(session, snapshot_id, item_id, for_update=for_update)
    return get_item_line(session, snapshot_id, item_id, for_update=for_update)


def ensure_tank_line(session, snapshot_id: int, tank_type_id: int) -> LedgerTankLine:
    line = get_tank_line(session, snapshot_id, tank_type_id, for_update=True)
    if line is None:
        line = LedgerTankLine(snapshot_id=snapshot_id, tank_type_id=tank_type_id)
        session.add(line)
        session.flush()
    return line


def ensure_item_line(session, snapshot_id: int, inventory_item_id: int) -> LedgerItemLine:
    line = get_item_line(session, snapshot_id, inventory_item_id, for_update=True)
    if line is None:
        line = LedgerItemLine(snapshot_id=snapshot_id, inventory_item_id=inventory_item_id)
        session.add(line)
        session.flush()
    return line


def line_on_hand(line, item_type: str) -> int:
    """
    Quantity available to promise from a line.

    Tanks count full cylinders only: deliveries hand out full tanks and
    collect empties, so empties are never reservable stock.
    """
    if line is None:
        return 0
    if item_type == ItemType.TANK:
        return int(line.current_full or 0)
    return int(line.current_quantity or 0)


def get_on_hand(session, snapshot_id: int, item_type: str, item_id: int, *, for_update: bool = False) -> int:
    line = get_line(session, snapshot_id, item_type, item_id, for_update=for_update)
    return line_on_hand(line, item_type)


# ---------------------------------------------------------------------------
# Postings
# ---------------------------------------------------------------------------

def post_tank_delta(
    session,
    line: LedgerTankLine,
    *,
    transaction_type: TransactionType,
    actor_id: int,
    full_change: int = 0,
    empty_change: int = 0,
    order_id: int | None = None,
    reference_id: int | None = None,
    note: str | None = None,
) -> TankTransaction:
    """Apply one signed full/empty delta to a tank line and log it."""
    if full_change == 0 and empty_change == 0:
        raise BadRequestError("Tank posting must change at least one bucket")

    new_full = line.current_full + full_change
    new_empty = line.current_empty + empty_change
    if new_full < 0:
        raise ConflictError(
            f"Insufficient full tanks for tank type {line.tank_type_id} "
            f"(need {-full_change}, available {line.current_full})"
        )
    if new_empty < 0:
        raise ConflictError(
            f"Insufficient empty tanks for tank type {line.tank_type_id} "
            f"(need {-empty_change}, available {line.current_empty})"
        )

    line.current_full = new_full
    line.current_empty = new_empty

    tx = TankTransaction(
        tank_line_id=line.id,
        transaction_type=TransactionType(transaction_type).value,
        full_change=full_change,
        empty_change=empty_change,
        actor_id=actor_id,
        order_id=order_id,
        reference_id=reference_id,
        note=note,
    )
    session.add(tx)
    session.flush()
    logger.debug(
        "tank line %s %s full%+d empty%+d -> full=%s empty=%s",
        line.id, tx.transaction_type, full_change, empty_change, new_full, new_empty,
    )
    return tx


def post_item_delta(
    session,
    line: LedgerItemLine,
    *,
    transaction_type: TransactionType,
    actor_id: int,
    quantity_change: int,
    order_id: int | None = None,
    reference_id: int | None = None,
    note: str | None = None,
) -> ItemTransaction:
    """Apply one signed delta to an item line and log it."""
    if quantity_change == 0:
        raise BadRequestError("Item posting must change the quantity")

    new_qty = line.current_quantity + quantity_change
    if new_qty < 0:
        raise ConflictError(
            f"Insufficient stock for item {line.inventory_item_id} "
            f"(need {-quantity_change}, available {line.current_quantity})"
        )
    line.current_quantity = new_qty

    tx = ItemTransaction(
        item_line_id=line.id,
        transaction_type=TransactionType(transaction_type).value,
        quantity_change=quantity_change,
        actor_id=actor_id,
        order_id=order_id,
        reference_id=reference_id,
        note=note,
    )
    session.add(tx)
    session.flush()
    logger.debug(
        "item line %s %s %+d -> %s", line.id, tx.transaction_type, quantity_change, new_qty,
    )
    return tx


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def list_tank_transactions(session, *, snapshot_id: int, tank_type_id: int | None = None, limit: int = 100) -> list[TankTransaction]:
    query = (
        session.query(TankTransaction)
        .join(LedgerTankLine, LedgerTankLine.id == TankTransaction.tank_line_id)
        .filter(LedgerTankLine.snapshot_id == snapshot_id)
    )
    if tank_type_id is not None:
        query = query.filter(LedgerTankLine.tank_type_id == tank_type_id)
    return query.order_by(TankTransaction.created_at.desc(), TankTransaction.id.desc()).limit(limit).all()


def list_item_transactions(session, *, snapshot_id: int, inventory_item_id: int | None = None, limit: int = 100) -> list[ItemTransaction]:
    query = (
        session.query(ItemTransaction)
        .join(LedgerItemLine, LedgerItemLine.id == ItemTransaction.item_line_id)
        .filter(LedgerItemLine.snapshot_id == snapshot_id)
    )
    if inventory_item_id is not None:
        query = query.filter(LedgerItemLine.inventory_item_id == inventory_item_id)
    return query.order_by(ItemTransaction.created_at.desc(), ItemTransaction.id.desc()).limit(limit).all()


def list_snapshot_lines(session, snapshot_id: int) -> tuple[list[LedgerTankLine], list[LedgerItemLine]]:
    tanks = (
        session.query(LedgerTankLine)
        .filter_by(snapshot_id=snapshot_id)
        .order_by(LedgerTankLine.tank_type_id.asc())
        .all()
    )
    items = (
        session.query(LedgerItemLine)
        .filter_by(snapshot_id=snapshot_id)
        .order_by(LedgerItemLine.inventory_item_id.asc())
        .all()
    )
    return tanks, items
