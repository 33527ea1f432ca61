from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class TankType(db.Model):
    """Catalog identity for a gas tank size/brand. Read-through only."""
    __tablename__ = "tank_types"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    weight_kg = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "weight_kg": self.weight_kg, "is_active": self.is_active}


class InventoryItem(db.Model):
    """Catalog identity for an accessory (regulators, hoses, ...)."""
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_inventory_items_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "sku": self.sku, "name": self.name, "is_active": self.is_active}


class LedgerTankLine(db.Model):
    """
    On-hand tank counts for one tank type inside one snapshot.

    LEDGER INVARIANTS:
    - current_full / current_empty change only through post_tank_delta,
      one signed delta per TankTransaction row
    - neither bucket may go negative
    """
    __tablename__ = "ledger_tank_lines"
    __table_args__ = (
        db.UniqueConstraint("snapshot_id", "tank_type_id", name="uq_ledger_tank_lines_snapshot_type"),
        db.CheckConstraint("current_full >= 0", name="ck_ledger_tank_lines_full_nonneg"),
        db.CheckConstraint("current_empty >= 0", name="ck_ledger_tank_lines_empty_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    snapshot_id = db.Column(db.Integer, db.ForeignKey("inventory_snapshots.id"), nullable=False, index=True)
    tank_type_id = db.Column(db.Integer, db.ForeignKey("tank_types.id"), nullable=False, index=True)

    assigned_full = db.Column(db.Integer, nullable=False, default=0)
    assigned_empty = db.Column(db.Integer, nullable=False, default=0)
    current_full = db.Column(db.Integer, nullable=False, default=0)
    current_empty = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    tank_type = db.relationship("TankType")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "snapshot_id": self.snapshot_id,
            "tank_type_id": self.tank_type_id,
            "assigned_full": self.assigned_full,
            "assigned_empty": self.assigned_empty,
            "current_full": self.current_full,
            "current_empty": self.current_empty,
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerItemLine(db.Model):
    """On-hand count for one accessory inside one snapshot."""
    __tablename__ = "ledger_item_lines"
    __table_args__ = (
        db.UniqueConstraint("snapshot_id", "inventory_item_id", name="uq_ledger_item_lines_snapshot_item"),
        db.CheckConstraint("current_quantity >= 0", name="ck_ledger_item_lines_qty_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    snapshot_id = db.Column(db.Integer, db.ForeignKey("inventory_snapshots.id"), nullable=False, index=True)
    inventory_item_id = db.Column(db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True)

    assigned_quantity = db.Column(db.Integer, nullable=False, default=0)
    current_quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    inventory_item = db.relationship("InventoryItem")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "snapshot_id": self.snapshot_id,
            "inventory_item_id": self.inventory_item_id,
            "assigned_quantity": self.assigned_quantity,
            "current_quantity": self.current_quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class TankTransaction(db.Model):
    """
    Append-only log row for one signed posting against a LedgerTankLine.

    SALE/PURCHASE produce two rows (outgoing bucket first, then incoming).
    """
    __tablename__ = "tank_transactions"
    __table_args__ = (
        db.Index("ix_tank_transactions_line_created", "tank_line_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tank_line_id = db.Column(db.Integer, db.ForeignKey("ledger_tank_lines.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    full_change = db.Column(db.Integer, nullable=False, default=0)
    empty_change = db.Column(db.Integer, nullable=False, default=0)
    actor_id = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    reference_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    line = db.relationship("LedgerTankLine", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tank_line_id": self.tank_line_id,
            "transaction_type": self.transaction_type,
            "full_change": self.full_change,
            "empty_change": self.empty_change,
            "actor_id": self.actor_id,
            "order_id": self.order_id,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class ItemTransaction(db.Model):
    """Append-only log row for one signed posting against a LedgerItemLine."""
    __tablename__ = "item_transactions"
    __table_args__ = (
        db.Index("ix_item_transactions_line_created", "item_line_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_line_id = db.Column(db.Integer, db.ForeignKey("ledger_item_lines.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False, index=True)
    quantity_change = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    reference_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    line = db.relationship("LedgerItemLine", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_line_id": self.item_line_id,
            "transaction_type": self.transaction_type,
            "quantity_change": self.quantity_change,
            "actor_id": self.actor_id,
            "order_id": self.order_id,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
