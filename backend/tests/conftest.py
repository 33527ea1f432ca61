"""
Pytest fixtures for tankflow backend tests.

Provides test database setup, a stocked depot (location, assignment,
live snapshot, ledger lines) and a test client.
"""

import pytest

from tankflow import create_app
from tankflow.domain import ItemType, SnapshotStatus, TankBucket, TransactionType
from tankflow.extensions import db
from tankflow.models import InventoryItem, InventorySnapshot, Location, LocationAssignment, TankType
from tankflow.services import ledger_service, order_service, transaction_service
from tankflow.services.transaction_strategies import TransactionRequest

OPERATOR_ID = 7


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LINE_LOCK_TIMEOUT_SECONDS': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_depot(session, name: str, code: str, *, user_id: int = OPERATOR_ID) -> dict:
    """Location + active assignment + live snapshot. Returns the ids."""
    location = Location(name=name, code=code)
    session.add(location)
    session.flush()

    assignment = LocationAssignment(user_id=user_id, location_id=location.id)
    session.add(assignment)
    session.flush()

    snapshot = InventorySnapshot(
        assignment_id=assignment.id,
        status=SnapshotStatus.ASSIGNED.value,
        assigned_by=user_id,
    )
    session.add(snapshot)
    session.flush()
    ledger_service.set_current_snapshot(
        session, assignment_id=assignment.id, snapshot_id=snapshot.id, set_by=user_id
    )
    session.commit()
    return {"location_id": location.id, "assignment_id": assignment.id, "snapshot_id": snapshot.id}


def stock(session, assignment_id: int, item_type, item_id: int, quantity: int, bucket=None):
    """Stock a line through an ASSIGNMENT posting."""
    if item_type == ItemType.TANK and bucket is None:
        bucket = TankBucket.FULL
    return transaction_service.process_transaction(
        session,
        TransactionRequest(
            transaction_type=TransactionType.ASSIGNMENT,
            item_type=ItemType(item_type),
            item_id=item_id,
            quantity=quantity,
            actor_id=OPERATOR_ID,
            assignment_id=assignment_id,
            tank_bucket=bucket,
        ),
    )


@pytest.fixture(scope='function')
def depot(db_session):
    """Main depot with its live snapshot."""
    return make_depot(db_session, "Main Depot", "MAIN")


@pytest.fixture(scope='function')
def other_depot(db_session):
    """Second depot, used as a transfer target."""
    return make_depot(db_session, "North Depot", "NORTH", user_id=OPERATOR_ID + 1)


@pytest.fixture(scope='function')
def tank_type(db_session):
    tank = TankType(name="10 kg", weight_kg=10)
    db_session.add(tank)
    db_session.commit()
    return tank


@pytest.fixture(scope='function')
def accessory(db_session):
    item = InventoryItem(sku="REG-01", name="Regulator")
    db_session.add(item)
    db_session.commit()
    return item


@pytest.fixture(scope='function')
def stocked_depot(db_session, depot, tank_type, accessory):
    """Main depot holding 10 full / 4 empty tanks and 5 regulators."""
    stock(db_session, depot["assignment_id"], ItemType.TANK, tank_type.id, 10, TankBucket.FULL)
    stock(db_session, depot["assignment_id"], ItemType.TANK, tank_type.id, 4, TankBucket.EMPTY)
    stock(db_session, depot["assignment_id"], ItemType.ITEM, accessory.id, 5)
    return {**depot, "tank_type_id": tank_type.id, "item_id": accessory.id}


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory for PENDING orders."""
    def _make(items, *, assignment_id=None, priority=1):
        return order_service.create_order(
            db_session,
            created_by=OPERATOR_ID,
            delivery_address="Av. Arequipa 123",
            customer_name="Rosa",
            items=items,
            assignment_id=assignment_id,
            priority=priority,
        )
    return _make


def tank_items(tank_type_id: int, quantity: int) -> list[dict]:
    return [{"item_type": "tank", "tank_type_id": tank_type_id, "quantity": quantity, "unit_price_cents": 4500}]


def actor_headers(actor_id: int = OPERATOR_ID, role: str | None = None) -> dict:
    """Helper to create actor identity headers."""
    headers = {'X-Actor-Id': str(actor_id)}
    if role:
        headers['X-Actor-Role'] = role
    return headers
