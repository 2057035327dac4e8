# backend/stockzen/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate
from .logging_config import configure_logging


def create_app(config_overrides: dict | None = None, *, rate_limiter=None, notification_dispatcher=None) -> Flask:
    """
    Application factory.

    rate_limiter / notification_dispatcher are injectable so tests can
    control time and capture outbound notifications. Otherwise they are
    built from config.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.notification_service import NotificationDispatcher
    from .services.rate_limit_service import SlidingWindowRateLimiter

    if rate_limiter is None:
        rate_limiter = SlidingWindowRateLimiter(
            limit=app.config["SYNC_RATE_LIMIT"],
            window_seconds=app.config["SYNC_RATE_WINDOW_SECONDS"],
        )
    if notification_dispatcher is None:
        notification_dispatcher = NotificationDispatcher.from_config(app.config)

    app.extensions["stockzen.sync_rate_limiter"] = rate_limiter
    app.extensions["stockzen.notifications"] = notification_dispatcher

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sync import sync_bp
    from .routes.inventory import inventory_bp
    from .routes.products import products_bp
    from .routes.alerts import alerts_bp
    from .routes.tenant import tenant_bp
    from .routes.dashboard import dashboard_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(alerts_bp)
    app.register_blueprint(tenant_bp)
    app.register_blueprint(dashboard_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
