from __future__ import annotations

from ..extensions import db
from ..domain import OrderStatus, PaymentMethod, PaymentStatus, ReservationStatus
from ..time_utils import to_utc_z, utcnow


class Order(db.Model):
    """
    Customer order for gas tanks and accessories.

    WORKFLOW INVARIANTS:
    - status changes only through workflow_service.perform_transition
    - every status change has exactly one OrderStatusHistory row
    - version_id guards against lost updates between concurrent transitions
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.Index("ix_orders_status_changed", "status", "status_changed_at"),
        db.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'RESERVED', 'IN_TRANSIT', "
            "'DELIVERED', 'FULFILLED', 'CANCELLED', 'FAILED')",
            name="ck_orders_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)

    # Customer identity is external; name/phone are captured for dispatch
    customer_id = db.Column(db.Integer, nullable=True, index=True)
    customer_name = db.Column(db.String(128), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    delivery_address = db.Column(db.String(255), nullable=False)
    location_reference = db.Column(db.String(255), nullable=True)

    # Nullable until an operator/location is attached
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("location_assignments.id"), nullable=True, index=True
    )

    status = db.Column(db.String(16), nullable=False, default=OrderStatus.PENDING.value, index=True)
    priority = db.Column(db.Integer, nullable=False, default=1)
    payment_method = db.Column(db.String(16), nullable=False, default=PaymentMethod.CASH.value)
    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.PENDING.value)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)
    delivery_date = db.Column(db.DateTime, nullable=True)

    status_changed_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    assignment = db.relationship("LocationAssignment")
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "delivery_address": self.delivery_address,
            "location_reference": self.location_reference,
            "assignment_id": self.assignment_id,
            "status": self.status,
            "priority": self.priority,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "total_amount_cents": self.total_amount_cents,
            "created_by": self.created_by,
            "notes": self.notes,
            "delivery_date": to_utc_z(self.delivery_date),
            "status_changed_at": to_utc_z(self.status_changed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """One order line: either a tank type or an accessory, never both."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        db.CheckConstraint(
            "(item_type = 'tank' AND tank_type_id IS NOT NULL AND inventory_item_id IS NULL) OR "
            "(item_type = 'item' AND inventory_item_id IS NOT NULL AND tank_type_id IS NULL)",
            name="ck_order_items_one_target",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    item_type = db.Column(db.String(8), nullable=False)
    tank_type_id = db.Column(db.Integer, db.ForeignKey("tank_types.id"), nullable=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    total_price_cents = db.Column(db.Integer, nullable=False, default=0)

    @property
    def item_id(self) -> int:
        return self.tank_type_id if self.item_type == "tank" else self.inventory_item_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "item_type": self.item_type,
            "tank_type_id": self.tank_type_id,
            "inventory_item_id": self.inventory_item_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }


class OrderStatusHistory(db.Model):
    """
    Append-only audit trail of order status changes.

    Never updated or deleted. from_status is NULL only for the creation entry.
    """
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_status_history_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    actor_id = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    order = db.relationship("Order", backref=db.backref("history", lazy=True, order_by="OrderStatusHistory.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "actor_id": self.actor_id,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class InventoryReservation(db.Model):
    """
    Soft hold against one ledger line for one order.

    RESERVATION INVARIANTS (authoritative):
    1. For a fixed (assignment, item), sum(reserved_quantity) over ACTIVE rows
       never exceeds the on-hand quantity of the assignment's current snapshot.
    2. snapshot_id is pinned at creation; pointer swaps do not rewrite it.
    3. After creation only status / expires_at / resolved_at change.
    4. Rows are never deleted.
    """
    __tablename__ = "inventory_reservations"
    __table_args__ = (
        db.CheckConstraint("reserved_quantity > 0", name="ck_inventory_reservations_qty_positive"),
        db.CheckConstraint(
            "(item_type = 'tank' AND tank_type_id IS NOT NULL AND inventory_item_id IS NULL) OR "
            "(item_type = 'item' AND inventory_item_id IS NOT NULL AND tank_type_id IS NULL)",
            name="ck_inventory_reservations_one_target",
        ),
        db.CheckConstraint(
            "status IN ('ACTIVE', 'FULFILLED', 'CANCELLED', 'EXPIRED')",
            name="ck_inventory_reservations_status",
        ),
        db.Index("ix_inventory_reservations_pool", "assignment_id", "item_type", "status"),
        db.Index("ix_inventory_reservations_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("location_assignments.id"), nullable=False, index=True
    )
    snapshot_id = db.Column(db.Integer, db.ForeignKey("inventory_snapshots.id"), nullable=False)

    item_type = db.Column(db.String(8), nullable=False)
    tank_type_id = db.Column(db.Integer, db.ForeignKey("tank_types.id"), nullable=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=True)
    reserved_quantity = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ReservationStatus.ACTIVE.value, index=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    # Start of the current hold; reset when an expired hold is restored
    activated_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    resolved_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("reservations", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def item_id(self) -> int:
        return self.tank_type_id if self.item_type == "tank" else self.inventory_item_id

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "assignment_id": self.assignment_id,
            "snapshot_id": self.snapshot_id,
            "item_type": self.item_type,
            "tank_type_id": self.tank_type_id,
            "inventory_item_id": self.inventory_item_id,
            "reserved_quantity": self.reserved_quantity,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at),
            "activated_at": to_utc_z(self.activated_at),
            "resolved_at": to_utc_z(self.resolved_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class OrderTransactionLink(db.Model):
    """Ledger postings made on behalf of an order (written on delivery)."""
    __tablename__ = "order_transaction_links"
    __table_args__ = (
        db.CheckConstraint(
            "(tank_transaction_id IS NOT NULL AND item_transaction_id IS NULL) OR "
            "(item_transaction_id IS NOT NULL AND tank_transaction_id IS NULL)",
            name="ck_order_transaction_links_one_target",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    reservation_id = db.Column(db.Integer, db.ForeignKey("inventory_reservations.id"), nullable=True)
    tank_transaction_id = db.Column(db.Integer, db.ForeignKey("tank_transactions.id"), nullable=True)
    item_transaction_id = db.Column(db.Integer, db.ForeignKey("item_transactions.id"), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "reservation_id": self.reservation_id,
            "tank_transaction_id": self.tank_transaction_id,
            "item_transaction_id": self.item_transaction_id,
            "created_at": to_utc_z(self.created_at),
        }


class OrderNumberSequence(db.Model):
    """Atomic per-year counter behind ORD-YYYY-NNN order numbers."""
    __tablename__ = "order_number_sequences"

    year = db.Column(db.Integer, primary_key=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
