"""Initial tankflow schema: depots, snapshot ledger, orders and reservations

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=nullable)


def upgrade():
    # ------------------------------------------------------------------
    # Locations, assignments and the snapshot pointer
    # ------------------------------------------------------------------
    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("address", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_locations_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "location_assignments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        _timestamp("start_date"),
        sa.Column("end_date", sa.DateTime(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("location_assignments", schema=None) as batch_op:
        batch_op.create_index("ix_location_assignments_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_location_assignments_location_id", ["location_id"], unique=False)
        batch_op.create_index("ix_location_assignments_location_active", ["location_id", "end_date"], unique=False)

    op.create_table(
        "inventory_snapshots",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="CREATED"),
        sa.Column("assigned_by", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint("status IN ('CREATED', 'ASSIGNED', 'VALIDATED')", name="ck_inventory_snapshots_status"),
        sa.ForeignKeyConstraint(["assignment_id"], ["location_assignments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_snapshots", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_snapshots_assignment_id", ["assignment_id"], unique=False)

    op.create_table(
        "current_inventory_pointers",
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("snapshot_id", sa.Integer(), nullable=False),
        _timestamp("set_at"),
        sa.Column("set_by", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["assignment_id"], ["location_assignments.id"]),
        sa.ForeignKeyConstraint(["snapshot_id"], ["inventory_snapshots.id"]),
        sa.PrimaryKeyConstraint("assignment_id"),
    )

    # ------------------------------------------------------------------
    # Catalog and ledger lines
    # ------------------------------------------------------------------
    op.create_table(
        "tank_types",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("weight_kg", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "inventory_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(64), nullable=True),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku", name="uq_inventory_items_sku"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "ledger_tank_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("snapshot_id", sa.Integer(), nullable=False),
        sa.Column("tank_type_id", sa.Integer(), nullable=False),
        sa.Column("assigned_full", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("assigned_empty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_full", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_empty", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("updated_at"),
        sa.CheckConstraint("current_full >= 0", name="ck_ledger_tank_lines_full_nonneg"),
        sa.CheckConstraint("current_empty >= 0", name="ck_ledger_tank_lines_empty_nonneg"),
        sa.ForeignKeyConstraint(["snapshot_id"], ["inventory_snapshots.id"]),
        sa.ForeignKeyConstraint(["tank_type_id"], ["tank_types.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("snapshot_id", "tank_type_id", name="uq_ledger_tank_lines_snapshot_type"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ledger_tank_lines", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_tank_lines_snapshot_id", ["snapshot_id"], unique=False)
        batch_op.create_index("ix_ledger_tank_lines_tank_type_id", ["tank_type_id"], unique=False)

    op.create_table(
        "ledger_item_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("snapshot_id", sa.Integer(), nullable=False),
        sa.Column("inventory_item_id", sa.Integer(), nullable=False),
        sa.Column("assigned_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("current_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("updated_at"),
        sa.CheckConstraint("current_quantity >= 0", name="ck_ledger_item_lines_qty_nonneg"),
        sa.ForeignKeyConstraint(["snapshot_id"], ["inventory_snapshots.id"]),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("snapshot_id", "inventory_item_id", name="uq_ledger_item_lines_snapshot_item"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("ledger_item_lines", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_item_lines_snapshot_id", ["snapshot_id"], unique=False)
        batch_op.create_index("ix_ledger_item_lines_inventory_item_id", ["inventory_item_id"], unique=False)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("customer_name", sa.String(128), nullable=True),
        sa.Column("customer_phone", sa.String(32), nullable=True),
        sa.Column("delivery_address", sa.String(255), nullable=False),
        sa.Column("location_reference", sa.String(255), nullable=True),
        sa.Column("assignment_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("payment_method", sa.String(16), nullable=False, server_default="cash"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_by", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("delivery_date", sa.DateTime(), nullable=True),
        _timestamp("status_changed_at"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'RESERVED', 'IN_TRANSIT', "
            "'DELIVERED', 'FULFILLED', 'CANCELLED', 'FAILED')",
            name="ck_orders_status",
        ),
        sa.ForeignKeyConstraint(["assignment_id"], ["location_assignments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_customer_id", ["customer_id"], unique=False)
        batch_op.create_index("ix_orders_assignment_id", ["assignment_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_status_changed", ["status", "status_changed_at"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("item_type", sa.String(8), nullable=False),
        sa.Column("tank_type_id", sa.Integer(), nullable=True),
        sa.Column("inventory_item_id", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("total_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        sa.CheckConstraint(
            "(item_type = 'tank' AND tank_type_id IS NOT NULL AND inventory_item_id IS NULL) OR "
            "(item_type = 'item' AND inventory_item_id IS NOT NULL AND tank_type_id IS NULL)",
            name="ck_order_items_one_target",
        ),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["tank_type_id"], ["tank_types.id"]),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index("ix_order_items_order_id", ["order_id"], unique=False)

    op.create_table(
        "order_status_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("to_status", sa.String(16), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_status_history", schema=None) as batch_op:
        batch_op.create_index("ix_order_status_history_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_status_history_order_created", ["order_id", "created_at"], unique=False)

    op.create_table(
        "order_number_sequences",
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("year"),
    )

    # ------------------------------------------------------------------
    # Ledger postings
    # ------------------------------------------------------------------
    op.create_table(
        "tank_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tank_line_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("full_change", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("empty_change", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tank_line_id"], ["ledger_tank_lines.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("tank_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_tank_transactions_tank_line_id", ["tank_line_id"], unique=False)
        batch_op.create_index("ix_tank_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_tank_transactions_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_tank_transactions_line_created", ["tank_line_id", "created_at"], unique=False)

    op.create_table(
        "item_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("item_line_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=True),
        sa.Column("reference_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["item_line_id"], ["ledger_item_lines.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("item_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_item_transactions_item_line_id", ["item_line_id"], unique=False)
        batch_op.create_index("ix_item_transactions_transaction_type", ["transaction_type"], unique=False)
        batch_op.create_index("ix_item_transactions_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_item_transactions_line_created", ["item_line_id", "created_at"], unique=False)

    # ------------------------------------------------------------------
    # Reservations and order <-> posting links
    # ------------------------------------------------------------------
    op.create_table(
        "inventory_reservations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("snapshot_id", sa.Integer(), nullable=False),
        sa.Column("item_type", sa.String(8), nullable=False),
        sa.Column("tank_type_id", sa.Integer(), nullable=True),
        sa.Column("inventory_item_id", sa.Integer(), nullable=True),
        sa.Column("reserved_quantity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        _timestamp("activated_at"),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint("reserved_quantity > 0", name="ck_inventory_reservations_qty_positive"),
        sa.CheckConstraint(
            "(item_type = 'tank' AND tank_type_id IS NOT NULL AND inventory_item_id IS NULL) OR "
            "(item_type = 'item' AND inventory_item_id IS NOT NULL AND tank_type_id IS NULL)",
            name="ck_inventory_reservations_one_target",
        ),
        sa.CheckConstraint(
            "status IN ('ACTIVE', 'FULFILLED', 'CANCELLED', 'EXPIRED')",
            name="ck_inventory_reservations_status",
        ),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["assignment_id"], ["location_assignments.id"]),
        sa.ForeignKeyConstraint(["snapshot_id"], ["inventory_snapshots.id"]),
        sa.ForeignKeyConstraint(["tank_type_id"], ["tank_types.id"]),
        sa.ForeignKeyConstraint(["inventory_item_id"], ["inventory_items.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("inventory_reservations", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_reservations_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_inventory_reservations_assignment_id", ["assignment_id"], unique=False)
        batch_op.create_index("ix_inventory_reservations_status", ["status"], unique=False)
        batch_op.create_index(
            "ix_inventory_reservations_pool", ["assignment_id", "item_type", "status"], unique=False
        )
        batch_op.create_index("ix_inventory_reservations_order_status", ["order_id", "status"], unique=False)

    op.create_table(
        "order_transaction_links",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("reservation_id", sa.Integer(), nullable=True),
        sa.Column("tank_transaction_id", sa.Integer(), nullable=True),
        sa.Column("item_transaction_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "(tank_transaction_id IS NOT NULL AND item_transaction_id IS NULL) OR "
            "(item_transaction_id IS NOT NULL AND tank_transaction_id IS NULL)",
            name="ck_order_transaction_links_one_target",
        ),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["reservation_id"], ["inventory_reservations.id"]),
        sa.ForeignKeyConstraint(["tank_transaction_id"], ["tank_transactions.id"]),
        sa.ForeignKeyConstraint(["item_transaction_id"], ["item_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("order_transaction_links", schema=None) as batch_op:
        batch_op.create_index("ix_order_transaction_links_order_id", ["order_id"], unique=False)


def downgrade():
    op.drop_table("order_transaction_links")
    op.drop_table("inventory_reservations")
    op.drop_table("item_transactions")
    op.drop_table("tank_transactions")
    op.drop_table("order_number_sequences")
    op.drop_table("order_status_history")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("ledger_item_lines")
    op.drop_table("ledger_tank_lines")
    op.drop_table("inventory_items")
    op.drop_table("tank_types")
    op.drop_table("current_inventory_pointers")
    op.drop_table("inventory_snapshots")
    op.drop_table("location_assignments")
    op.drop_table("locations")
