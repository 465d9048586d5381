from __future__ import annotations

import logging

import click
from flask import Flask, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.core.auth import auth_bp
from app.core.config import Config
from app.core.errors import FormsError, Unauthenticated
from app.core.extensions import db, login_manager, migrate
from app.core.models import User, seed_demo_data, seed_root_user
from app.core.notifications import EXTENSION_KEY as NOTIFICATIONS_KEY, LogNotificationService
from app.core.realtime import EXTENSION_KEY as REALTIME_KEY, InMemoryRealtimeBus
from app.core.side_effects import init_side_effects
from app.core.tenancy import load_tenant_context
from app.forms import forms_bp


def create_app(config_object: type[Config] | None = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))
    logging.getLogger("app").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    init_side_effects(app)
    app.extensions[NOTIFICATIONS_KEY] = LogNotificationService()
    app.extensions[REALTIME_KEY] = InMemoryRealtimeBus()

    app.before_request(load_tenant_context)

    app.register_blueprint(auth_bp)
    app.register_blueprint(forms_bp)

    register_cli(app)
    register_error_handlers(app)
    return app


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(FormsError)
    def forms_error(error: FormsError):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def storage_error(error: SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Storage failure: %s", error.__class__.__name__)
        return jsonify({"error": "infrastructure_error", "message": "Storage is unavailable, try again later"}), 500

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        return jsonify({"error": error.name.lower().replace(" ", "_"), "message": error.description}), error.code


def register_cli(app: Flask) -> None:
    @app.cli.command("seed-root")
    @click.option("--email", default=None, help="Root email (defaults to ROOT_EMAIL).")
    @click.option("--password", default=None, help="Root password (defaults to ROOT_PASSWORD).")
    def seed_root(email: str | None, password: str | None) -> None:
        """Create the root superuser."""
        email = email or app.config["ROOT_EMAIL"]
        password = password or app.config["ROOT_PASSWORD"]
        if User.query.filter_by(email=email.strip().lower()).first():
            click.echo("Seed skipped: root user already exists.")
            return
        seed_root_user(db.session, email, password)
        click.echo(f"Root user {email} created.")

    @app.cli.command("seed-demo")
    @click.option("--reset", is_flag=True, help="Delete existing data before seed.")
    def seed_demo(reset: bool) -> None:
        """Seed a demo company with its administrator and collaborators."""
        if reset:
            db.drop_all()
            db.create_all()
        if not User.query.first():
            seed_demo_data(db.session)
            click.echo("Demo data seeded.")
        else:
            click.echo("Seed skipped: existing users found.")


@login_manager.user_loader
def load_user(user_id: str) -> User | None:
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    error = Unauthenticated()
    return jsonify(error.to_dict()), error.status_code
