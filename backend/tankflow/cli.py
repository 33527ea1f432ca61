# Overview: Flask CLI command groups for bootstrap, reservation maintenance, and workflow inspection.

# backend/tankflow/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (no-op for tables that already exist).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo [--full 20] [--empty 5]
#   Create a demo location, operator assignment, live snapshot and stocked tank line.
#
# Reservations:
# - python -m flask reservations expire [--threshold-hours 24]
#   Expire stale ACTIVE holds once (cron entry point).
# - python -m flask reservations sweep [--interval 300]
#   Run the expiry sweeper in the foreground until interrupted.
# - python -m flask reservations conflicts --assignment-id 1
#   Report lines where active holds exceed on-hand stock.
#
# Orders:
# - python -m flask orders stuck [--status PENDING] [--threshold-hours 24]
#   List orders that have not changed status for too long.
# - python -m flask orders metrics
#   Print workflow counts, rates and bottlenecks.

import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .domain import ItemType, SnapshotStatus, TankBucket, TransactionType
from .extensions import db
from .models import InventorySnapshot, Location, LocationAssignment, TankType
from .services import ledger_service, reservation_service, transaction_service, workflow_reporting
from .services.expiry_worker import ReservationExpiryWorker
from .services.transaction_strategies import TransactionRequest


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for sample data.")


@system_group.command('seed-demo')
@click.option('--operator-id', type=int, default=1, show_default=True, help='External user id of the operator')
@click.option('--full', 'full_qty', type=int, default=20, show_default=True)
@click.option('--empty', 'empty_qty', type=int, default=5, show_default=True)
@with_appcontext
def seed_demo(operator_id, full_qty, empty_qty):
    """
    Create a demo depot with stock, ready for orders.

    Creates:
    - Location "Main Depot" (code MAIN) if missing
    - An open assignment of the operator to that location
    - A snapshot pointed to by the assignment
    - A 10 kg tank type stocked through ASSIGNMENT postings
    """
    location = db.session.query(Location).filter_by(code="MAIN").first()
    if not location:
        location = Location(name="Main Depot", code="MAIN")
        db.session.add(location)
        db.session.flush()
        click.echo(f"PASS Created location: {location.name} (ID: {location.id})")
    else:
        click.echo(f"PASS Using existing location: {location.name} (ID: {location.id})")

    assignment = LocationAssignment(user_id=operator_id, location_id=location.id)
    db.session.add(assignment)
    db.session.flush()

    snapshot = InventorySnapshot(
        assignment_id=assignment.id,
        status=SnapshotStatus.ASSIGNED.value,
        assigned_by=operator_id,
    )
    db.session.add(snapshot)
    db.session.flush()
    ledger_service.set_current_snapshot(
        db.session, assignment_id=assignment.id, snapshot_id=snapshot.id, set_by=operator_id
    )

    tank_type = db.session.query(TankType).filter_by(name="10 kg").first()
    if not tank_type:
        tank_type = TankType(name="10 kg", weight_kg=10)
        db.session.add(tank_type)
    db.session.commit()
    click.echo(f"PASS Assignment {assignment.id} -> snapshot {snapshot.id}")

    for bucket, qty in ((TankBucket.FULL, full_qty), (TankBucket.EMPTY, empty_qty)):
        transaction_service.process_transaction(
            db.session,
            TransactionRequest(
                transaction_type=TransactionType.ASSIGNMENT,
                item_type=ItemType.TANK,
                item_id=tank_type.id,
                quantity=qty,
                actor_id=operator_id,
                assignment_id=assignment.id,
                tank_bucket=bucket,
                note="Demo stock",
            ),
        )
    click.echo(f"PASS Stocked tank type {tank_type.id}: {full_qty} full, {empty_qty} empty")
    click.echo(f"\nLocation ID: {location.id}   Assignment ID: {assignment.id}")


@click.group('reservations')
def reservations_group():
    """Reservation maintenance commands."""


@reservations_group.command('expire')
@click.option('--threshold-hours', type=float, default=None, help='Defaults to RESERVATION_EXPIRY_HOURS')
@with_appcontext
def expire_reservations_cli(threshold_hours):
    """Expire ACTIVE holds older than the threshold or past their expires_at."""
    threshold = threshold_hours or current_app.config["RESERVATION_EXPIRY_HOURS"]
    count = reservation_service.expire_old_reservations(db.session, threshold)
    click.echo(f"Expired {count} reservation(s) older than {threshold} hours.")


@reservations_group.command('sweep')
@click.option('--interval', type=float, default=None, help='Seconds between sweeps')
@with_appcontext
def sweep_reservations_cli(interval):
    """Run the expiry sweeper in the foreground. Ctrl+C to stop."""
    worker = ReservationExpiryWorker(
        current_app._get_current_object(),
        interval=interval or current_app.config["RESERVATION_SWEEP_INTERVAL_SECONDS"],
        threshold_hours=current_app.config["RESERVATION_EXPIRY_HOURS"],
    )
    click.echo(f"START Sweeping every {worker.interval}s (threshold {worker.threshold_hours}h)")
    worker.start()
    try:
        while worker.running:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nSTOP Stopping sweeper...")
    finally:
        worker.stop()


@reservations_group.command('conflicts')
@click.option('--assignment-id', type=int, required=True)
@with_appcontext
def reservation_conflicts_cli(assignment_id):
    """List lines whose active holds exceed on-hand stock (FIFO, oldest covered first)."""
    report = reservation_service.optimize_reservations(db.session, assignment_id)
    if report["optimized"]:
        click.echo(f"PASS No over-reserved lines for assignment {assignment_id}.")
        return

    click.echo("\n" + "=" * 72)
    click.echo(f"{'Type':<6} {'Item':<8} {'Reserved':<10} {'On hand':<10} {'Short':<8} {'At risk holds'}")
    click.echo("=" * 72)
    for c in report["conflicts"]:
        at_risk = ", ".join(str(i) for i in c["at_risk_reservation_ids"]) or "-"
        click.echo(
            f"{c['item_type']:<6} {c['item_id']:<8} {c['total_reserved']:<10} "
            f"{c['available']:<10} {c['shortage']:<8} {at_risk}"
        )
    click.echo("=" * 72 + "\n")


@click.group('orders')
def orders_group():
    """Order workflow inspection commands."""


@orders_group.command('stuck')
@click.option('--status', default=None, help='Only this status (default: every non-terminal status)')
@click.option('--threshold-hours', type=float, default=None, help='Defaults to STUCK_ORDER_THRESHOLD_HOURS')
@with_appcontext
def stuck_orders_cli(status, threshold_hours):
    """List orders whose status has not changed within the threshold."""
    threshold = threshold_hours or current_app.config["STUCK_ORDER_THRESHOLD_HOURS"]
    rows = workflow_reporting.get_stuck_orders(db.session, status=status, threshold_hours=threshold)
    if not rows:
        click.echo(f"No orders stuck for more than {threshold} hours.")
        return

    click.echo("\n" + "=" * 64)
    click.echo(f"{'ID':<6} {'Number':<16} {'Status':<12} {'Assignment':<12} {'Hours'}")
    click.echo("=" * 64)
    for row in rows:
        click.echo(
            f"{row['id']:<6} {row['order_number']:<16} {row['status']:<12} "
            f"{row['assignment_id'] or '-':<12} {row['hours_in_status']}"
        )
    click.echo("=" * 64 + "\n")


@orders_group.command('metrics')
@with_appcontext
def order_metrics_cli():
    """Print workflow metrics and status bottlenecks."""
    metrics = workflow_reporting.get_workflow_metrics(db.session)
    transitions = workflow_reporting.get_status_transition_metrics(
        db.session, bottleneck_threshold_hours=current_app.config["BOTTLENECK_THRESHOLD_HOURS"]
    )

    click.echo(f"Total orders: {metrics['total_orders']}")
    for status, count in metrics["orders_by_status"].items():
        click.echo(f"   {status:<12} {count}")
    click.echo(f"Delivery success rate: {metrics['delivery_success_rate']}%")
    click.echo(f"Cancellation rate: {metrics['cancellation_rate']}%")
    click.echo(f"Average processing time: {metrics['average_processing_time_hours']}h")

    if transitions["bottlenecks"]:
        click.echo("\nBottlenecks:")
        for b in transitions["bottlenecks"]:
            click.echo(f"   {b['status']:<12} avg {b['average_hours']}h over {b['samples']} order(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(reservations_group)
    app.cli.add_command(orders_group)
