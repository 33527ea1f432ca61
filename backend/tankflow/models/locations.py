from __future__ import annotations

from ..extensions import db
from ..domain import SnapshotStatus
from ..time_utils import to_utc_z, utcnow


class Location(db.Model):
    """
    A physical store/depot that holds stock.

    Locations never hold stock directly: stock lives in the ledger of the
    location's current assignment (operator x location), through the
    snapshot pointer.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_locations_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Location id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "address": self.address,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class LocationAssignment(db.Model):
    """
    Pairing of an operator (external user id) with a location.

    One assignment scopes one ledger and one reservation pool. An assignment
    is active while end_date is NULL or in the future.
    """
    __tablename__ = "location_assignments"
    __table_args__ = (
        db.Index("ix_location_assignments_location_active", "location_id", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    start_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    end_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    location = db.relationship("Location", backref=db.backref("assignments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "location_id": self.location_id,
            "start_date": to_utc_z(self.start_date),
            "end_date": to_utc_z(self.end_date),
        }


class InventorySnapshot(db.Model):
    """
    One ledger version for an assignment.

    Ledger lines (LedgerTankLine / LedgerItemLine) hang off a snapshot.
    Older snapshots stay readable after the pointer moves on.
    """
    __tablename__ = "inventory_snapshots"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('CREATED', 'ASSIGNED', 'VALIDATED')",
            name="ck_inventory_snapshots_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("location_assignments.id"), nullable=False, index=True
    )
    status = db.Column(db.String(16), nullable=False, default=SnapshotStatus.CREATED.value)
    assigned_by = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    assignment = db.relationship("LocationAssignment", backref=db.backref("snapshots", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "status": self.status,
            "assigned_by": self.assigned_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }


class CurrentInventoryPointer(db.Model):
    """
    Per-assignment pointer to the live snapshot.

    Swapping the pointer is a single-row UPDATE. Reservations pin the
    snapshot id they were created against, so a swap never rewrites them.
    """
    __tablename__ = "current_inventory_pointers"

    assignment_id = db.Column(
        db.Integer, db.ForeignKey("location_assignments.id"), primary_key=True
    )
    snapshot_id = db.Column(db.Integer, db.ForeignKey("inventory_snapshots.id"), nullable=False)
    set_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    set_by = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "assignment_id": self.assignment_id,
            "snapshot_id": self.snapshot_id,
            "set_at": to_utc_z(self.set_at),
            "set_by": self.set_by,
        }
