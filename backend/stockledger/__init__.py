# backend/stockledger/__init__.py
from flask import Flask

from .cache import init_cache
from .config import Config
from .extensions import db, migrate


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    init_cache(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stock import stock_bp
    from .routes.sales import sales_bp
    from .routes.returns import returns_bp
    from .routes.pos import pos_bp
    from .routes.sync import sync_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(pos_bp)
    app.register_blueprint(sync_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    if app.config.get("AUTO_SYNC_ENABLED"):
        from .services.sync_scheduler import init_auto_sync
        init_auto_sync(app)

    return app
