# backend/supplydesk/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate
from .validation import EngineError


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.catalog import products_bp, categories_bp
    from .routes.users import users_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(users_bp)

    @app.errorhandler(EngineError)
    def handle_engine_error(e: EngineError):
        # Routes handle their own errors; this catches anything that slips past them
        from .routes import error_response
        return error_response(e)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
