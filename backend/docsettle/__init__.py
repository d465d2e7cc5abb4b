# backend/docsettle/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app.logger.setLevel(level)


def create_app(config_object=Config) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.documents import documents_bp
    from .routes.transfers import transfers_bp
    from .routes.outstanding import outstanding_bp
    from .routes.payments import payments_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(documents_bp)
    app.register_blueprint(transfers_bp)
    app.register_blueprint(outstanding_bp)
    app.register_blueprint(payments_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
