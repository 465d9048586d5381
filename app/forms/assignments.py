"""Who may fill which template, and which validator may approve whom."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from app.core.errors import DuplicatePairing, InvalidPayload, NotFound, TenantMismatch
from app.core.extensions import db
from app.core.models import (
    COLLABORATOR_ROLES,
    FormAssignment,
    FormTemplate,
    Role,
    User,
    ValidatorTechnicianAssignment,
)
from app.core.permissions import Operation, authorize
from app.core.utils import fetch, parse_optional_datetime, unit_of_work
from app.forms.templates import template_by_id

logger = logging.getLogger(__name__)

PAIRING_UNIQUE_CONSTRAINT = "uq_validator_technician_assignment"


def _company_user(template: FormTemplate, user_id: int, label: str) -> User:
    user = fetch(User, user_id, label)
    if user.company_id != template.company_id:
        raise TenantMismatch(f"{label} belongs to another company", user_id=user_id)
    return user


def assign_form(actor: User, template_id: int, user_id: int, due_date=None) -> FormAssignment:
    template = template_by_id(actor, template_id, Operation.ASSIGNMENT_CREATE)
    user = _company_user(template, user_id, "User")
    if user.role not in COLLABORATOR_ROLES:
        raise InvalidPayload("Only technicians and validators can be assigned forms", field="user_id")

    due = parse_optional_datetime(due_date, "due_date")
    if due is not None and due < datetime.now(timezone.utc):
        raise InvalidPayload("due_date cannot be in the past", field="due_date")

    with unit_of_work():
        assignment = FormAssignment(
            form_template_id=template.id,
            user_id=user.id,
            assigned_by=actor.id,
            due_date=due,
        )
        db.session.add(assignment)
    logger.info(
        "Assignment assignment_id=%s: template_id=%s to user_id=%s",
        assignment.id,
        template.id,
        user.id,
    )
    return assignment


def _pair_members(template: FormTemplate, validator_id: int, technician_id: int) -> tuple[User, User]:
    validator = _company_user(template, validator_id, "Validator")
    if validator.role != Role.VALIDATOR:
        raise InvalidPayload("The selected user is not a validator", field="validator_id")
    technician = _company_user(template, technician_id, "Technician")
    if technician.role != Role.TECHNICIAN:
        raise InvalidPayload("The selected user is not a technician", field="technician_id")
    return validator, technician


def is_paired(template_id: int, validator_id: int, technician_id: int) -> bool:
    return (
        ValidatorTechnicianAssignment.query.filter_by(
            form_template_id=template_id,
            validator_id=validator_id,
            technician_id=technician_id,
        ).first()
        is not None
    )


def _violates_pairing_uniqueness(exc: IntegrityError) -> bool:
    # Postgres and MySQL name the constraint, SQLite lists the table's columns
    message = str(exc.orig)
    if PAIRING_UNIQUE_CONSTRAINT in message:
        return True
    return "UNIQUE" in message.upper() and f"{ValidatorTechnicianAssignment.__tablename__}." in message


def pair_validator(actor: User, template_id: int, validator_id: int, technician_id: int) -> ValidatorTechnicianAssignment:
    template = template_by_id(actor, template_id, Operation.PAIRING_CREATE)
    validator, technician = _pair_members(template, validator_id, technician_id)
    if is_paired(template.id, validator.id, technician.id):
        raise DuplicatePairing(
            form_template_id=template.id,
            validator_id=validator.id,
            technician_id=technician.id,
        )

    pairing = ValidatorTechnicianAssignment(
        form_template_id=template.id,
        validator_id=validator.id,
        technician_id=technician.id,
    )
    try:
        with unit_of_work():
            db.session.add(pairing)
    except IntegrityError as exc:
        if not _violates_pairing_uniqueness(exc):
            raise
        # Lost a race with an identical insert.
        raise DuplicatePairing(
            form_template_id=template.id,
            validator_id=validator.id,
            technician_id=technician.id,
        ) from exc
    logger.info(
        "Pairing pairing_id=%s: validator_id=%s for technician_id=%s on template_id=%s",
        pairing.id,
        validator.id,
        technician.id,
        template.id,
    )
    return pairing


def assign_validator_to_technicians(
    actor: User,
    template_id: int,
    validator_id: int,
    technician_ids: list[int],
) -> list[ValidatorTechnicianAssignment]:
    """Make ``validator_id`` the only validator of each listed technician for the template."""
    template = template_by_id(actor, template_id, Operation.PAIRING_CREATE)
    if not isinstance(technician_ids, list) or not technician_ids:
        raise InvalidPayload("technician_ids must be a non-empty list", field="technician_ids")

    members = [_pair_members(template, validator_id, technician_id) for technician_id in technician_ids]
    validator = members[0][0]
    technicians = {technician.id: technician for _, technician in members}

    with unit_of_work():
        db.session.execute(
            delete(ValidatorTechnicianAssignment)
            .where(ValidatorTechnicianAssignment.form_template_id == template.id)
            .where(ValidatorTechnicianAssignment.technician_id.in_(list(technicians)))
            .execution_options(synchronize_session="fetch")
        )
        pairings = [
            ValidatorTechnicianAssignment(
                form_template_id=template.id,
                validator_id=validator.id,
                technician_id=technician_id,
            )
            for technician_id in sorted(technicians)
        ]
        db.session.add_all(pairings)
    logger.info(
        "Validator user_id=%s now pairs technicians %s on template_id=%s",
        validator.id,
        sorted(technicians),
        template.id,
    )
    return pairings


def list_assignments(actor: User) -> list[FormAssignment]:
    authorize(actor, Operation.ASSIGNMENT_LIST)
    return (
        FormAssignment.query.join(FormTemplate, FormAssignment.form_template_id == FormTemplate.id)
        .filter(FormTemplate.company_id == actor.company_id)
        .filter(FormAssignment.assigned_by == actor.id)
        .order_by(FormAssignment.created_at.desc(), FormAssignment.id.desc())
        .all()
    )


def list_pairings(actor: User, template_id: int) -> list[ValidatorTechnicianAssignment]:
    template = template_by_id(actor, template_id, Operation.PAIRING_LIST)
    return (
        ValidatorTechnicianAssignment.query.filter_by(form_template_id=template.id)
        .order_by(ValidatorTechnicianAssignment.id.asc())
        .all()
    )


def active_assignment_for(user_id: int, template_id: int) -> FormAssignment | None:
    return (
        FormAssignment.query.filter_by(user_id=user_id, form_template_id=template_id, is_completed=False)
        .order_by(FormAssignment.created_at.desc(), FormAssignment.id.desc())
        .first()
    )


def list_assigned_forms(actor: User) -> list[FormAssignment]:
    authorize(actor, Operation.ASSIGNED_FORM_LIST)
    return (
        FormAssignment.query.join(FormTemplate, FormAssignment.form_template_id == FormTemplate.id)
        .filter(FormAssignment.user_id == actor.id)
        .filter(FormAssignment.is_completed.is_(False))
        .filter(FormTemplate.is_active.is_(True))
        .order_by(FormAssignment.created_at.desc(), FormAssignment.id.desc())
        .all()
    )


def assigned_form(actor: User, template_id: int) -> FormAssignment:
    authorize(actor, Operation.ASSIGNED_FORM_GET)
    assignment = active_assignment_for(actor.id, template_id)
    if assignment is None:
        raise NotFound("Assigned form not found", form_template_id=template_id)
    authorize(actor, Operation.ASSIGNED_FORM_GET, assignment)
    return assignment
