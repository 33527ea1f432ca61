# Overview: Service-layer operations for orders; encapsulates business logic and database work.

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..domain import ItemType, OrderStatus, PaymentMethod, PaymentStatus, parse_enum
from ..errors import BadRequestError, ConflictError, NotFoundError
from ..models import LocationAssignment, Order, OrderItem, OrderNumberSequence, OrderStatusHistory
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_unit_of_work

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "ORD"
ORDER_NUMBER_PAD = 3

# Orders in these states no longer accept an assignment change
_ASSIGNMENT_LOCKED = {
    OrderStatus.RESERVED.value,
    OrderStatus.IN_TRANSIT.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.FULFILLED.value,
    OrderStatus.CANCELLED.value,
}


def format_order_number(year: int, number: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}-{year}-{number:0{ORDER_NUMBER_PAD}d}"


def next_order_number(session, *, year: int | None = None) -> str:
    """
    Atomically allocate the next ORD-YYYY-NNN number.

    Uses an UPDATE ... next_number + 1 on the per-year row; the first order of
    a year inserts the row inside a savepoint so a concurrent insert falls
    back to the UPDATE path.
    """
    year = year or utcnow().year
    stmt = (
        update(OrderNumberSequence)
        .where(OrderNumberSequence.year == year)
        .values(next_number=OrderNumberSequence.next_number + 1)
    )

    result = session.execute(stmt)
    if not result.rowcount:
        try:
            with session.begin_nested():
                session.add(OrderNumberSequence(year=year, next_number=2))
            return format_order_number(year, 1)
        except IntegrityError:
            result = session.execute(stmt)
            if not result.rowcount:
                raise

    current = session.query(OrderNumberSequence.next_number).filter_by(year=year).scalar()
    return format_order_number(year, current - 1)


def _build_items(raw_items) -> list[OrderItem]:
    if not raw_items:
        raise BadRequestError("Order must contain at least one item")

    lines = []
    for index, raw in enumerate(raw_items):
        try:
            item_type = parse_enum(ItemType, raw["item_type"], "item_type")
            quantity = raw["quantity"]
        except KeyError as e:
            raise BadRequestError(f"Item {index}: missing required field {e}")

        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise BadRequestError(f"Item {index}: quantity must be a positive integer")

        unit_price = raw.get("unit_price_cents", 0)
        if not isinstance(unit_price, int) or isinstance(unit_price, bool) or unit_price < 0:
            raise BadRequestError(f"Item {index}: unit_price_cents must be a non-negative integer")

        if item_type == ItemType.TANK:
            tank_type_id = raw.get("tank_type_id") or raw.get("item_id")
            if not tank_type_id:
                raise BadRequestError(f"Item {index}: tank_type_id is required for tank items")
            line = OrderItem(item_type=item_type.value, tank_type_id=tank_type_id)
        else:
            inventory_item_id = raw.get("inventory_item_id") or raw.get("item_id")
            if not inventory_item_id:
                raise BadRequestError(f"Item {index}: inventory_item_id is required for item lines")
            line = OrderItem(item_type=item_type.value, inventory_item_id=inventory_item_id)

        line.quantity = quantity
        line.unit_price_cents = unit_price
        line.total_price_cents = unit_price * quantity
        lines.append(line)
    return lines


def create_order(
    session,
    *,
    created_by: int,
    delivery_address: str,
    items: list[dict],
    customer_id: int | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    location_reference: str | None = None,
    assignment_id: int | None = None,
    priority: int = 1,
    payment_method: str = PaymentMethod.CASH.value,
    payment_status: str = PaymentStatus.PENDING.value,
    delivery_date: datetime | None = None,
    notes: str | None = None,
    commit: bool = True,
) -> Order:
    """
    Create a PENDING order with its lines and the creation history entry.

    No stock is held at this point; holds are placed on CONFIRMED -> RESERVED.
    """
    if not created_by:
        raise BadRequestError("created_by is required")
    if not delivery_address or not delivery_address.strip():
        raise BadRequestError("delivery_address is required")
    if not isinstance(priority, int) or priority < 1:
        raise BadRequestError("priority must be a positive integer")

    method = parse_enum(PaymentMethod, payment_method, "payment_method")
    pay_status = parse_enum(PaymentStatus, payment_status, "payment_status")
    _build_items(items)

    def _op() -> Order:
        lines = _build_items(items)
        if assignment_id is not None and session.get(LocationAssignment, assignment_id) is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")

        now = utcnow()
        order = Order(
            order_number=next_order_number(session, year=now.year),
            customer_id=customer_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            delivery_address=delivery_address.strip(),
            location_reference=location_reference,
            assignment_id=assignment_id,
            status=OrderStatus.PENDING.value,
            priority=priority,
            payment_method=method.value,
            payment_status=pay_status.value,
            total_amount_cents=sum(line.total_price_cents for line in lines),
            created_by=created_by,
            delivery_date=delivery_date,
            notes=notes,
            status_changed_at=now,
            created_at=now,
        )
        order.items = lines
        session.add(order)
        session.flush()

        session.add(OrderStatusHistory(
            order_id=order.id,
            from_status=None,
            to_status=OrderStatus.PENDING.value,
            actor_id=created_by,
            reason="Order created",
            created_at=now,
        ))
        session.flush()
        logger.info("Created order %s (%s)", order.order_number, order.id)
        return order

    return run_unit_of_work(session, _op, commit=commit)


def get_order(session, order_id: int) -> Order:
    order = session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_order_by_number(session, order_number: str) -> Order:
    order = session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFoundError(f"Order {order_number} not found")
    return order


def list_orders(
    session,
    *,
    status: str | None = None,
    assignment_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Order]:
    query = session.query(Order)
    if status:
        query = query.filter(Order.status == parse_enum(OrderStatus, status, "status").value)
    if assignment_id is not None:
        query = query.filter(Order.assignment_id == assignment_id)
    return (
        query.order_by(Order.priority.desc(), Order.created_at.asc(), Order.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def assign_order(session, order_id: int, assignment_id: int, *, commit: bool = True) -> Order:
    """Attach (or move) an order to an operator/location assignment before stock is held."""
    def _op() -> Order:
        order = lock_for_update(session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status in _ASSIGNMENT_LOCKED:
            raise ConflictError(
                f"Cannot change assignment of order {order.order_number} in status {order.status}"
            )
        if session.get(LocationAssignment, assignment_id) is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        order.assignment_id = assignment_id
        session.flush()
        return order

    return run_unit_of_work(session, _op, commit=commit)


def update_payment_status(session, order_id: int, payment_status: str, *, commit: bool = True) -> Order:
    new_status = parse_enum(PaymentStatus, payment_status, "payment_status")

    def _op() -> Order:
        order = lock_for_update(session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status == OrderStatus.CANCELLED.value:
            raise ConflictError(f"Order {order.order_number} is cancelled")
        order.payment_status = new_status.value
        session.flush()
        return order

    return run_unit_of_work(session, _op, commit=commit)
