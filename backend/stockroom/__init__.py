# backend/stockroom/__init__.py
from flask import Flask, g, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import Config
from .context import EXTENSION_KEY, build_context
from .errors import StoreError
from .extensions import db, migrate


def _open_store(app: Flask, ctx) -> None:
    """
    Probe the collection engine and create missing tables.

    Any engine failure leaves the store in degraded mode (flat-storage
    fallback) instead of failing app startup.
    """
    with app.app_context():
        try:
            db.session.execute(text("SELECT 1"))
            if app.config.get("AUTO_CREATE_SCHEMA", True):
                db.create_all()
            db.session.commit()
            ctx.available = True
        except SQLAlchemyError:
            db.session.rollback()
            ctx.available = False
            app.logger.warning("Collection store unavailable; running in degraded mode", exc_info=True)
            ctx.monitor.log_error("init_error")
            return

        if app.config.get("MIGRATE_ON_STARTUP", True):
            from .services import migration_service
            try:
                migration_service.migrate_from_legacy(ctx)
            except StoreError:
                app.logger.exception("Startup migration failed; legacy data kept for the next attempt")


def create_app(test_config=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    ctx = build_context(app.config)
    app.extensions[EXTENSION_KEY] = ctx
    _open_store(app, ctx)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.sales import sales_bp
    from .routes.settings import settings_bp
    from .routes.store import store_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(store_bp)

    @app.before_request
    def load_actor():
        # Audit attribution only; no authentication happens here.
        g.user_id = request.headers.get("X-User-Id")
        g.user_name = request.headers.get("X-User-Name")

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    from .services.maintenance_service import MaintenanceScheduler
    ctx.scheduler = MaintenanceScheduler(
        app,
        ctx,
        sync_interval=app.config.get("SYNC_INTERVAL_SECONDS", 300),
        cleanup_interval=app.config.get("CLEANUP_INTERVAL_SECONDS", 86400),
    )
    return app


def start_maintenance(app: Flask) -> bool:
    """
    Start the background maintenance loop for a served app.

    NOTE: create_app() never starts it. Every `flask <cmd>` run builds the
    app too, and a started loop writes sync backups on start and at exit.
    """
    ctx = app.extensions[EXTENSION_KEY]
    if not app.config.get("MAINTENANCE_ENABLED", True) or not ctx.available:
        return False
    ctx.scheduler.start()
    return True
