from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest
from werkzeug.security import generate_password_hash

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.config import Config
from app.core.extensions import db
from app.core.models import Abonnement, Company, FormTemplate, Role, User, seed_demo_data
from app.core.notifications import EXTENSION_KEY as NOTIFICATIONS_KEY, OutboxNotificationService


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    SIDE_EFFECTS_INLINE = True


@pytest.fixture
def app():
    app = create_app(TestConfig)
    app.extensions[NOTIFICATIONS_KEY] = OutboxNotificationService()
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def outbox(app):
    return app.extensions[NOTIFICATIONS_KEY]


@pytest.fixture
def bus(app):
    return app.extensions["realtime"]


@pytest.fixture
def demo(app):
    """Seeded actors and records of the demo company."""

    class Demo:
        root = User.query.filter_by(email="root@example.com").one()
        admin = User.query.filter_by(email="admin@acme.local").one()
        technician = User.query.filter_by(email="bob@acme.local").one()
        validator = User.query.filter_by(email="alice@acme.local").one()
        company = Company.query.filter_by(name="Acme Inspections").one()
        template = FormTemplate.query.filter_by(title="Site inspection").one()

    return Demo


@pytest.fixture
def make_company(app):
    def _make(
        name: str = "Globex",
        max_users: int = 10,
        available_forms: int = 5,
        forms_to_create: int = 10,
        starts_on: date | None = None,
        ends_on: date | None = None,
    ) -> Company:
        today = date.today()
        company = Company(name=name, email=f"contact@{name.lower()}.test", max_users=max_users)
        db.session.add(company)
        db.session.flush()
        db.session.add(
            Abonnement(
                company_id=company.id,
                available_forms=available_forms,
                forms_to_create=forms_to_create,
                starts_on=starts_on or today - timedelta(days=1),
                ends_on=ends_on or today + timedelta(days=30),
            )
        )
        db.session.commit()
        return company

    return _make


@pytest.fixture
def make_user(app):
    def _make(company: Company | None, role: Role, name: str = "User", password: str = "secret123") -> User:
        slug = f"{name.lower().replace(' ', '.')}.{role.value}"
        domain = company.name.lower() if company else "root"
        user = User(
            name=name,
            email=f"{slug}@{domain}.test",
            password_hash=generate_password_hash(password),
            role=role,
            company_id=company.id if company else None,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def login(client):
    def _login(email: str, password: str):
        return client.post("/auth/login", json={"email": email, "password": password})

    return _login
