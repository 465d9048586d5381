"""Companies, subscription windows and the template creation quota."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, update

from app.core.errors import InvalidPayload, NoActiveSubscription, QuotaExhausted, SeatLimitReached
from app.core.extensions import db
from app.core.models import Abonnement, Company, FormTemplate, Role, User
from app.core.permissions import Operation, authorize
from app.core.utils import fetch, optional_text, parse_iso_date, require_int, require_text, unit_of_work
from app.forms.cascade import purge_company
from app.forms.identity import announce_account, new_account

logger = logging.getLogger(__name__)


@dataclass
class CompanyCreation:
    company: Company
    abonnement: Abonnement
    administrator: User


def governing_abonnement(company_id: int, today: date | None = None, for_update: bool = False) -> Abonnement | None:
    """Subscription whose window contains ``today``; the latest started wins on overlap."""
    day = today or date.today()
    query = (
        Abonnement.query.filter(Abonnement.company_id == company_id)
        .filter(Abonnement.starts_on <= day)
        .filter(Abonnement.ends_on >= day)
        .order_by(Abonnement.starts_on.desc(), Abonnement.id.desc())
    )
    if for_update:
        query = query.with_for_update()
    return query.first()


def active_template_count(company_id: int) -> int:
    return (
        db.session.query(func.count(FormTemplate.id))
        .filter(FormTemplate.company_id == company_id, FormTemplate.is_active.is_(True))
        .scalar()
    )


def reserve_template_slot(company_id: int, today: date | None = None) -> Abonnement:
    """Consume one creation from the governing subscription.

    Runs inside the caller's transaction: if the template insert fails the
    rollback restores the budget. The subscription row is locked (where the
    backend supports row locks) so concurrent creations for one company
    serialize on it.
    """
    abonnement = governing_abonnement(company_id, today, for_update=True)
    if abonnement is None:
        logger.info("Template slot refused for company_id=%s: no active subscription", company_id)
        raise NoActiveSubscription(company_id=company_id)
    if abonnement.forms_to_create <= 0:
        logger.info("Template slot refused for company_id=%s: quota exhausted", company_id)
        raise QuotaExhausted(company_id=company_id)
    active = active_template_count(company_id)
    if active >= abonnement.available_forms:
        logger.info(
            "Template slot refused for company_id=%s: %s active of %s",
            company_id,
            active,
            abonnement.available_forms,
        )
        raise SeatLimitReached(active=active, available_forms=abonnement.available_forms)

    result = db.session.execute(
        update(Abonnement)
        .where(Abonnement.id == abonnement.id, Abonnement.forms_to_create > 0)
        .values(forms_to_create=Abonnement.forms_to_create - 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise QuotaExhausted(company_id=company_id)
    db.session.refresh(abonnement)
    return abonnement


def _subscription_window(payload: dict) -> tuple[date, date]:
    starts_on = parse_iso_date(payload.get("starts_on"), "starts_on")
    ends_on = parse_iso_date(payload.get("ends_on"), "ends_on")
    if ends_on <= starts_on:
        raise InvalidPayload("ends_on must be after starts_on", field="ends_on")
    return starts_on, ends_on


def _ensure_company_unique(name: str, email: str, exclude_id: int | None = None) -> None:
    query = Company.query.filter((Company.name == name) | (func.lower(Company.email) == email))
    if exclude_id is not None:
        query = query.filter(Company.id != exclude_id)
    if query.first() is not None:
        raise InvalidPayload("A company with that name or email already exists", field="email")


def create_company(actor: User, payload: dict) -> CompanyCreation:
    authorize(actor, Operation.COMPANY_CREATE)
    name = require_text(payload, "name")
    email = require_text(payload, "email").lower()
    max_users = require_int(payload, "max_users", minimum=1)
    available_forms = require_int(payload, "available_forms")
    forms_to_create = require_int(payload, "forms_to_create")
    starts_on, ends_on = _subscription_window(payload)
    admin_name = require_text(payload, "admin_name")
    admin_email = require_text(payload, "admin_email")

    with unit_of_work():
        _ensure_company_unique(name, email)
        company = Company(
            name=name,
            email=email,
            phone=optional_text(payload, "phone", max_length=20),
            address=optional_text(payload, "address"),
            max_users=max_users,
        )
        db.session.add(company)
        db.session.flush()
        abonnement = Abonnement(
            company_id=company.id,
            available_forms=available_forms,
            forms_to_create=forms_to_create,
            starts_on=starts_on,
            ends_on=ends_on,
        )
        db.session.add(abonnement)
        administrator, password = new_account(admin_name, admin_email, Role.ADMINISTRATOR, company.id)

    logger.info("Company company_id=%s created with administrator user_id=%s", company.id, administrator.id)
    announce_account(administrator, password)
    return CompanyCreation(company=company, abonnement=abonnement, administrator=administrator)


def list_companies(actor: User) -> list[Company]:
    authorize(actor, Operation.COMPANY_LIST)
    return Company.query.order_by(Company.name.asc()).all()


def company_by_id(actor: User, company_id: int, operation: Operation = Operation.COMPANY_GET) -> Company:
    authorize(actor, operation)
    company = fetch(Company, company_id, "Company")
    authorize(actor, operation, company)
    return company


def update_company(actor: User, company_id: int, payload: dict, today: date | None = None) -> Company:
    company = company_by_id(actor, company_id, Operation.COMPANY_UPDATE)
    with unit_of_work():
        name = require_text(payload, "name") if "name" in payload else company.name
        email = require_text(payload, "email").lower() if "email" in payload else company.email
        _ensure_company_unique(name, email, exclude_id=company.id)
        company.name = name
        company.email = email
        if "phone" in payload:
            company.phone = optional_text(payload, "phone", max_length=20)
        if "address" in payload:
            company.address = optional_text(payload, "address")
        if "max_users" in payload:
            company.max_users = require_int(payload, "max_users", minimum=1)

        if "available_forms" in payload or "forms_to_create" in payload:
            abonnement = governing_abonnement(company.id, today, for_update=True)
            if abonnement is None:
                raise NoActiveSubscription(company_id=company.id)
            if "available_forms" in payload:
                abonnement.available_forms = require_int(payload, "available_forms")
            if "forms_to_create" in payload:
                abonnement.forms_to_create = require_int(payload, "forms_to_create")
    return company


def add_abonnement(actor: User, company_id: int, payload: dict) -> Abonnement:
    company = company_by_id(actor, company_id, Operation.ABONNEMENT_CREATE)
    starts_on, ends_on = _subscription_window(payload)
    with unit_of_work():
        abonnement = Abonnement(
            company_id=company.id,
            available_forms=require_int(payload, "available_forms"),
            forms_to_create=require_int(payload, "forms_to_create"),
            starts_on=starts_on,
            ends_on=ends_on,
        )
        db.session.add(abonnement)
    logger.info("Abonnement abonnement_id=%s added to company_id=%s", abonnement.id, company.id)
    return abonnement


def _set_company_active(company: Company, active: bool) -> None:
    with unit_of_work():
        company.is_active = active
        db.session.execute(
            update(User)
            .where(User.company_id == company.id)
            .values(is_active=active)
            .execution_options(synchronize_session="fetch")
        )
    logger.info("Company company_id=%s and its users is_active=%s", company.id, active)


def deactivate_company(actor: User, company_id: int) -> Company:
    company = company_by_id(actor, company_id, Operation.COMPANY_DEACTIVATE)
    _set_company_active(company, False)
    return company


def activate_company(actor: User, company_id: int) -> Company:
    company = company_by_id(actor, company_id, Operation.COMPANY_ACTIVATE)
    _set_company_active(company, True)
    return company


def delete_company(actor: User, company_id: int) -> dict[str, int]:
    company = company_by_id(actor, company_id, Operation.COMPANY_DELETE)
    with unit_of_work():
        removed = purge_company(company.id)
    return dict(removed)
