# backend/tankflow/__init__.py
import logging

from flask import Flask, jsonify

from .config import Config
from .errors import TankflowError
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.getLogger("tankflow").setLevel(app.config["LOG_LEVEL"])
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.orders import orders_bp
    from .routes.reservations import reservations_bp
    from .routes.inventory import inventory_bp
    from .routes.workflow import workflow_bp

    app.register_blueprint(orders_bp)
    app.register_blueprint(reservations_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(workflow_bp)

    @app.errorhandler(TankflowError)
    def handle_domain_error(e: TankflowError):
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config.get("RESERVATION_SWEEP_ENABLED") and not app.config.get("TESTING"):
        from .services.expiry_worker import ReservationExpiryWorker

        worker = ReservationExpiryWorker(
            app,
            interval=app.config["RESERVATION_SWEEP_INTERVAL_SECONDS"],
            threshold_hours=app.config["RESERVATION_EXPIRY_HOURS"],
        )
        worker.start()
        app.extensions["reservation_expiry_worker"] = worker

    return app
