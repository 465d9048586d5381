from __future__ import annotations

from datetime import date

from sqlalchemy import func

from app.core.extensions import db
from app.core.models import (
    COLLABORATOR_ROLES,
    FormAssignment,
    FormSubmission,
    FormTemplate,
    Role,
    SubmissionStatus,
    User,
    ValidatorTechnicianAssignment,
)
from app.core.permissions import Operation, authorize
from app.forms.tenants import governing_abonnement


def _by_status(query) -> dict[str, int]:
    counts = {status.value: 0 for status in SubmissionStatus}
    for status, total in query.group_by(FormSubmission.status).all():
        counts[SubmissionStatus(status).value] = total
    return counts


def admin_dashboard(actor: User, today: date | None = None) -> dict[str, object]:
    authorize(actor, Operation.DASHBOARD_ADMIN)
    company_id = actor.company_id
    collaborators = User.query.filter(User.company_id == company_id, User.role.in_(list(COLLABORATOR_ROLES)))
    templates = FormTemplate.query.filter(FormTemplate.company_id == company_id)
    abonnement = governing_abonnement(company_id, today)

    submissions = (
        db.session.query(FormSubmission.status, func.count(FormSubmission.id))
        .join(FormTemplate, FormSubmission.form_template_id == FormTemplate.id)
        .filter(FormTemplate.company_id == company_id)
    )
    return {
        "collaborators": {
            "total": collaborators.count(),
            "active": collaborators.filter(User.is_active.is_(True)).count(),
        },
        "templates": {
            "total": templates.count(),
            "active": templates.filter(FormTemplate.is_active.is_(True)).count(),
        },
        "abonnement": abonnement.to_dict() if abonnement else None,
        "submissions_by_status": _by_status(submissions),
    }


def collaborator_dashboard(actor: User) -> dict[str, object]:
    authorize(actor, Operation.DASHBOARD_COLLABORATOR)
    assignments = FormAssignment.query.filter(FormAssignment.user_id == actor.id)
    own = db.session.query(FormSubmission.status, func.count(FormSubmission.id)).filter(
        FormSubmission.user_id == actor.id
    )
    stats: dict[str, object] = {
        "assignments": {
            "active": assignments.filter(FormAssignment.is_completed.is_(False)).count(),
            "completed": assignments.filter(FormAssignment.is_completed.is_(True)).count(),
        },
        "submissions_by_status": _by_status(own),
    }

    if actor.role == Role.VALIDATOR:
        stats["pending_validation"] = (
            FormSubmission.query.join(
                ValidatorTechnicianAssignment,
                (ValidatorTechnicianAssignment.form_template_id == FormSubmission.form_template_id)
                & (ValidatorTechnicianAssignment.technician_id == FormSubmission.user_id),
            )
            .filter(ValidatorTechnicianAssignment.validator_id == actor.id)
            .filter(FormSubmission.status == SubmissionStatus.SUBMITTED)
            .count()
        )
        stats["decided"] = FormSubmission.query.filter(FormSubmission.validated_by == actor.id).count()
    return stats
