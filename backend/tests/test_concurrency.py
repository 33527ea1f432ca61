# Overview: Threaded concurrency tests for reservations, order numbers and transitions.

"""
Concurrency tests against a file-backed SQLite database.

Each worker thread pushes its own app context so it gets its own session,
mirroring separate requests.
"""
import os
import tempfile
import threading
import unittest

from tankflow import create_app
from tankflow.domain import ItemType, TankBucket
from tankflow.errors import ConflictError
from tankflow.extensions import db
from tankflow.models import InventoryReservation, Order, TankType
from tankflow.services import order_service, reservation_service, workflow_service

from conftest import OPERATOR_ID, make_depot, stock, tank_items


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            self.depot = make_depot(db.session, "Concurrency Depot", "CONC")
            tank = TankType(name="45 kg", weight_kg=45)
            db.session.add(tank)
            db.session.commit()
            self.tank_type_id = tank.id
            stock(db.session, self.depot["assignment_id"], ItemType.TANK, tank.id, 10, TankBucket.FULL)

            self.order_ids = []
            for _ in range(2):
                order = order_service.create_order(
                    db.session,
                    created_by=OPERATOR_ID,
                    delivery_address="Av. Grau 300",
                    items=tank_items(tank.id, 6),
                    assignment_id=self.depot["assignment_id"],
                )
                self.order_ids.append(order.id)

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, target, args_list):
        results = []
        errors = []
        lock = threading.Lock()

        def worker(*args):
            with self.app.app_context():
                try:
                    value = target(*args)
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def test_concurrent_reservations_never_oversell(self):
        items = [{"item_type": "tank", "item_id": self.tank_type_id, "quantity": 6}]

        def reserve(order_id):
            return reservation_service.reserve(
                db.session,
                order_id=order_id,
                location_id=self.depot["location_id"],
                items=items,
                lock_timeout=10,
            )

        results, errors = self._run_threads(reserve, [(oid,) for oid in self.order_ids])

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], ConflictError)

        with self.app.app_context():
            held = db.session.query(InventoryReservation).filter_by(status="ACTIVE").all()
            self.assertEqual(sum(r.reserved_quantity for r in held), 6)

    def test_concurrent_confirm_only_one_wins(self):
        order_id = self.order_ids[0]

        def confirm(actor_id):
            return workflow_service.confirm_order(db.session, order_id, actor_id).id

        results, errors = self._run_threads(confirm, [(OPERATOR_ID,), (OPERATOR_ID + 1,)])

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], ConflictError)

        with self.app.app_context():
            self.assertEqual(db.session.get(Order, order_id).status, "CONFIRMED")

    def test_concurrent_order_numbers_are_unique(self):
        def create(_):
            order = order_service.create_order(
                db.session,
                created_by=OPERATOR_ID,
                delivery_address="Jr. Union 12",
                items=tank_items(self.tank_type_id, 1),
            )
            return order.order_number

        results, errors = self._run_threads(create, [(i,) for i in range(4)])

        self.assertEqual(errors, [])
        self.assertEqual(len(set(results)), 4)


if __name__ == "__main__":
    unittest.main()
