"""
bizdocs/__init__.py

Flask application factory for the Business Documents service
(customers, catalog, quotations, invoices, delivery notes, payments).

Production mindset:
- JSON API only; every route enforces permissions server-side.
- PostgreSQL-ready (SQLAlchemy + migrations) but SQLite is used for dev.
- Money is Decimal end to end and serialized as strings.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify

from .errors import register_error_handlers
from .extensions import csrf, db, login_manager, migrate
from .models import User

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _configure_logging(app: Flask) -> None:
    """Route the package loggers to stderr at LOG_LEVEL."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    logger = logging.getLogger("bizdocs")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    app.logger.setLevel(level)


def create_app(config_object="config.Config") -> Flask:
    """
    Create and configure the Flask application.

    config_object: dotted import path or a config class (tests pass
    config.TestConfig).
    """
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(app)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        if not str(user_id).isdigit():
            return None
        user = db.session.get(User, int(user_id))
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required"}), 401

    register_error_handlers(app)

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth import auth_bp
    from .blueprints.catalog import catalog_bp
    from .blueprints.customers import customers_bp
    from .blueprints.delivery_notes import delivery_notes_bp
    from .blueprints.invoices import invoices_bp
    from .blueprints.quotations import quotations_bp
    from .blueprints.users import users_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(quotations_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(delivery_notes_bp)
    app.register_blueprint(users_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables (dev shortcut for `flask db upgrade`)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed")
    def seed_command():
        """Seed permissions and default roles."""
        from .seed import seed_permissions_and_roles

        seed_permissions_and_roles()
        click.echo("Permissions and default roles seeded.")

    @app.cli.command("create-admin")
    @click.option("--email", required=True)
    @click.option("--username", default="admin", show_default=True)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    def create_admin_command(email: str, username: str, password: str):
        """Create a super_admin user."""
        from .seed import create_admin

        try:
            user = create_admin(email=email, username=username, password=password)
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Administrator {user.username} created.")

    # ----------------------------------------------------------------------
    # Health
    # ----------------------------------------------------------------------
    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok", "app": app.config.get("APP_NAME")})

    return app
