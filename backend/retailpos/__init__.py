# backend/retailpos/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Payment gateway and report cache live on the app, not in module globals
    from .services.gateway import gateway_from_config
    from .services.cache import TTLCache
    app.extensions["payment_gateway"] = gateway_from_config(app.config)
    app.extensions["report_cache"] = TTLCache(ttl=app.config.get("REPORT_CACHE_TTL", 300))

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.payments import payments_bp
    from .routes.inventory import inventory_bp
    from .routes.reports import reports_bp
    from .routes.activity import activity_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(reports_bp)
    app.register_blueprint(activity_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
