from __future__ import annotations

import logging
import secrets
import string

from flask import current_app
from sqlalchemy import func
from werkzeug.security import check_password_hash, generate_password_hash

from app.core.errors import InvalidPayload, NotFound, StillReferenced, UserLimitReached
from app.core.extensions import db
from app.core.models import COLLABORATOR_ROLES, Company, FormSubmission, Role, User
from app.core.notifications import notify_account_created
from app.core.permissions import Operation, authorize
from app.core.utils import fetch, require_text, unit_of_work
from app.forms.cascade import purge_pairings_of, purge_user_records

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_temporary_password(length: int | None = None) -> str:
    size = length or current_app.config.get("TEMP_PASSWORD_LENGTH", 12)
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(size))


def _normalize_email(raw: str) -> str:
    email = raw.strip().lower()
    local, _, domain = email.partition("@")
    if not local or "." not in domain:
        raise InvalidPayload("Invalid email", field="email")
    return email


def _ensure_email_free(email: str, exclude_user_id: int | None = None) -> None:
    query = User.query.filter(func.lower(User.email) == email)
    if exclude_user_id is not None:
        query = query.filter(User.id != exclude_user_id)
    if query.first() is not None:
        raise InvalidPayload("Email already in use", field="email")


def _parse_collaborator_role(raw) -> Role:
    try:
        role = Role(raw)
    except ValueError as exc:
        raise InvalidPayload("Role must be technician or validator", field="role") from exc
    if role not in COLLABORATOR_ROLES:
        raise InvalidPayload("Role must be technician or validator", field="role")
    return role


def new_account(name: str, email: str, role: Role, company_id: int | None) -> tuple[User, str]:
    """Stage a user with a temporary password. The caller commits and then announces it."""
    normalized = _normalize_email(email)
    _ensure_email_free(normalized)
    password = generate_temporary_password()
    user = User(
        name=name,
        email=normalized,
        password_hash=generate_password_hash(password),
        role=role,
        company_id=company_id,
        is_active=True,
    )
    db.session.add(user)
    db.session.flush()
    return user, password


def announce_account(user: User, temporary_password: str) -> None:
    notify_account_created(user.to_dict(), temporary_password)


def create_collaborator(actor: User, payload: dict) -> User:
    authorize(actor, Operation.COLLABORATOR_CREATE)
    name = require_text(payload, "name")
    email = require_text(payload, "email")
    role = _parse_collaborator_role(payload.get("role"))

    with unit_of_work():
        company = fetch(Company, actor.company_id, "Company")
        current_users = User.query.filter_by(company_id=company.id).count()
        if current_users >= company.max_users:
            raise UserLimitReached(max_users=company.max_users)
        user, password = new_account(name, email, role, company.id)

    logger.info("Collaborator user_id=%s created in company_id=%s", user.id, user.company_id)
    announce_account(user, password)
    return user


def list_collaborators(actor: User) -> list[User]:
    authorize(actor, Operation.COLLABORATOR_LIST)
    return (
        User.query.filter(User.company_id == actor.company_id)
        .filter(User.role.in_(list(COLLABORATOR_ROLES)))
        .order_by(User.name.asc(), User.id.asc())
        .all()
    )


def collaborator_by_id(actor: User, user_id: int, operation: Operation = Operation.COLLABORATOR_GET) -> User:
    authorize(actor, operation)
    user = fetch(User, user_id, "Collaborator")
    if user.role not in COLLABORATOR_ROLES:
        raise NotFound("Collaborator not found", id=user_id)
    authorize(actor, operation, user)
    return user


def update_collaborator(actor: User, user_id: int, payload: dict) -> User:
    user = collaborator_by_id(actor, user_id, Operation.COLLABORATOR_UPDATE)
    with unit_of_work():
        if "name" in payload:
            user.name = require_text(payload, "name")
        if "email" in payload:
            email = _normalize_email(require_text(payload, "email"))
            _ensure_email_free(email, exclude_user_id=user.id)
            user.email = email
        if "role" in payload:
            role = _parse_collaborator_role(payload.get("role"))
            if role != user.role:
                # A pairing is only valid for the role the user had when paired
                dropped = purge_pairings_of([user.id])
                logger.info(
                    "Collaborator user_id=%s role %s -> %s, %s pairings dropped",
                    user.id,
                    user.role.value,
                    role.value,
                    dropped,
                )
                user.role = role
    return user


def set_collaborator_active(actor: User, user_id: int, active: bool) -> User:
    operation = Operation.COLLABORATOR_ACTIVATE if active else Operation.COLLABORATOR_DEACTIVATE
    user = collaborator_by_id(actor, user_id, operation)
    with unit_of_work():
        user.is_active = active
    logger.info("Collaborator user_id=%s is_active=%s", user.id, active)
    return user


def delete_collaborator(actor: User, user_id: int) -> dict[str, int]:
    user = collaborator_by_id(actor, user_id, Operation.COLLABORATOR_DELETE)
    decided_for_others = (
        FormSubmission.query.filter(FormSubmission.validated_by == user.id)
        .filter(FormSubmission.user_id != user.id)
        .count()
    )
    if decided_for_others:
        raise StillReferenced(
            "The collaborator has decided submissions of other users; deactivate instead",
            submissions=decided_for_others,
        )
    with unit_of_work():
        removed = purge_user_records([user.id])
        db.session.delete(user)
    removed["users"] = 1
    logger.info("Collaborator user_id=%s deleted: %s", user_id, dict(removed))
    return dict(removed)


def set_administrator_active(actor: User, user_id: int, active: bool) -> User:
    operation = Operation.ADMINISTRATOR_ACTIVATE if active else Operation.ADMINISTRATOR_DEACTIVATE
    authorize(actor, operation)
    admin = fetch(User, user_id, "Administrator")
    if admin.role != Role.ADMINISTRATOR:
        raise NotFound("Administrator not found", id=user_id)
    with unit_of_work():
        admin.is_active = active
    logger.info("Administrator user_id=%s is_active=%s", admin.id, active)
    return admin


def change_password(actor: User, current_password: str, new_password: str) -> None:
    authorize(actor, Operation.PASSWORD_CHANGE)
    if not check_password_hash(actor.password_hash, current_password or ""):
        raise InvalidPayload("The provided password does not match your current password", field="current_password")
    if not isinstance(new_password, str) or len(new_password) < MIN_PASSWORD_LENGTH:
        raise InvalidPayload(
            f"The new password must be at least {MIN_PASSWORD_LENGTH} characters",
            field="new_password",
        )
    with unit_of_work():
        actor.password_hash = generate_password_hash(new_password)


def message_recipients(actor: User) -> list[User]:
    authorize(actor, Operation.DISCUSSION_LIST)
    return (
        User.query.filter(User.company_id == actor.company_id)
        .filter(User.id != actor.id)
        .filter(User.is_active.is_(True))
        .order_by(User.name.asc())
        .all()
    )
