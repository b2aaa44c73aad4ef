"""
buildbooks/__init__.py

Flask application factory for BuildBooks, the contractor business manager.

Architecture:
- buildbooks.engine: pure financial document engine (totals, lifecycle, conversion).
- buildbooks.models / buildbooks.store: owner-scoped persistence (Flask-SQLAlchemy).
- buildbooks.blueprints.*: JSON API, one blueprint per business area.

IMPORTANT:
- Clients are never trusted. Ownership, validation and status transitions are enforced server-side.
- Engine errors are translated to JSON responses here, in one place.
"""

from __future__ import annotations

import logging

import click
from flask import Flask, jsonify, url_for
from flask_login import current_user
from flask_wtf.csrf import CSRFError
from werkzeug.exceptions import HTTPException

from .engine.errors import EngineError, InvalidTransition, NotFound, ValidationError
from .extensions import csrf, db, login_manager, migrate
from .logging_config import configure_logging
from .models import User
from .security import unauthorized_response

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# API SECTIONS (discovery only; security enforced in routes)
# -------------------------------------------------------------------
API_SECTIONS = [
    {"key": "clients", "label": "Clients", "endpoint": "clients.list_clients"},
    {"key": "projects", "label": "Projects", "endpoint": "projects.list_projects"},
    {"key": "estimates", "label": "Estimates", "endpoint": "estimates.list_estimates"},
    {"key": "invoices", "label": "Invoices", "endpoint": "invoices.list_invoices"},
    {"key": "purchases", "label": "Purchases", "endpoint": "purchases.list_purchases"},
    {"key": "change_orders", "label": "Change Orders", "endpoint": "change_orders.list_change_orders"},
    {"key": "dashboard", "label": "Dashboard", "endpoint": "dashboard.stats"},
    {"key": "admin", "label": "Administration", "endpoint": "admin.list_users", "admin_only": True},
]

ERROR_STATUS = {
    ValidationError: 400,
    NotFound: 404,
    InvalidTransition: 409,
}


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(EngineError)
    def _engine_error(err: EngineError):
        db.session.rollback()
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(err, cls)), 400)
        if status == 409:
            logger.info("rejected transition: %s", err.message, extra={"code": err.code})
        return jsonify(err.to_dict()), status

    @app.errorhandler(CSRFError)
    def _csrf_error(err: CSRFError):
        return jsonify({"error": "CSRF_FAILED", "message": err.description}), 400

    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        return jsonify({"error": err.name.upper().replace(" ", "_"), "message": err.description}), err.code


def create_app(config_object: str | type = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> User | None:
        """Load user for Flask-Login."""
        try:
            user = db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def _unauthorized():
        return unauthorized_response()

    _register_error_handlers(app)

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.admin import admin_bp
    from .blueprints.auth import auth_bp
    from .blueprints.change_orders import change_orders_bp
    from .blueprints.clients import clients_bp
    from .blueprints.dashboard import dashboard_bp
    from .blueprints.estimates import estimates_bp
    from .blueprints.invoices import invoices_bp
    from .blueprints.projects import projects_bp
    from .blueprints.purchases import purchases_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(projects_bp)
    app.register_blueprint(estimates_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(change_orders_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(admin_bp)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("init-db")
    def init_db_command():
        """Create all tables (development; use `flask db upgrade` otherwise)."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed-demo")
    @click.option("--email", default="demo@buildbooks.local", show_default=True)
    @click.option("--password", default="demo-password", show_default=True)
    def seed_demo_command(email: str, password: str):
        """Seed a demo contractor with a client, project and estimate."""
        from .seed import seed_demo_data

        user = seed_demo_data(email=email, password=password)
        click.echo(f"Demo data ready for {user.email}.")

    @app.cli.command("grant-admin")
    @click.argument("email")
    def grant_admin_command(email: str):
        """Give an existing user the admin role."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if user is None:
            raise click.ClickException(f"No user with email {email}.")
        user.role = "admin"
        db.session.commit()
        click.echo(f"{user.email} is now an admin.")

    # ----------------------------------------------------------------------
    # Home
    # ----------------------------------------------------------------------
    @app.route("/")
    def index():
        """API discovery: sections visible to the current session."""
        sections = []
        if current_user.is_authenticated:
            sections = [
                {"key": s["key"], "label": s["label"], "url": url_for(s["endpoint"])}
                for s in API_SECTIONS
                if current_user.is_admin or not s.get("admin_only", False)
            ]
        return jsonify(
            {
                "app": app.config.get("APP_NAME"),
                "authenticated": current_user.is_authenticated,
                "sections": sections,
            }
        )

    return app
