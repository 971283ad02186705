# backend/partsflow/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stock import stock_bp
    from .routes.purchase_orders import purchase_orders_bp
    from .routes.stock_inwards import stock_inwards_bp
    from .routes.stock_issues import stock_issues_bp
    from .routes.counter_sales import counter_sales_bp
    from .routes.purchase_returns import purchase_returns_bp
    from .routes.stock_transfers import stock_transfers_bp
    from .routes.stock_alerts import stock_alerts_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(purchase_orders_bp)
    app.register_blueprint(stock_inwards_bp)
    app.register_blueprint(stock_issues_bp)
    app.register_blueprint(counter_sales_bp)
    app.register_blueprint(purchase_returns_bp)
    app.register_blueprint(stock_transfers_bp)
    app.register_blueprint(stock_alerts_bp)

    from .errors import register_error_handlers
    register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
