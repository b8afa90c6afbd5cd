# backend/pos_core/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must be applied before db.init_app binds the engine
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.cart import cart_bp
    from .routes.checkout import checkout_bp
    from .routes.refunds import refunds_bp
    from .routes.coupons import coupons_bp
    from .routes.inventory import inventory_bp
    from .routes.loyalty import loyalty_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(refunds_bp)
    app.register_blueprint(coupons_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(loyalty_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
