# backend/wishcraft/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Overrides must land before db.init_app reads SQLALCHEMY_DATABASE_URI
        app.config.update(test_config)

    # app.logger is the "wishcraft" logger; service module loggers propagate to it
    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.webhooks import webhooks_bp
    from .routes.registries import registries_bp
    from .routes.group_gifts import group_gifts_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(registries_bp)
    app.register_blueprint(group_gifts_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
