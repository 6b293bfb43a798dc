# backend/lpgledger/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app, which builds the engine
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.directory import directory_bp
    from .routes.b2b import b2b_bp
    from .routes.b2c import b2c_bp
    from .routes.pricing import pricing_bp
    from .routes.cylinders import cylinders_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(directory_bp)
    app.register_blueprint(b2b_bp)
    app.register_blueprint(b2c_bp)
    app.register_blueprint(pricing_bp)
    app.register_blueprint(cylinders_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
