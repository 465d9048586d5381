"""Submission state machine.

Statuses move ``draft -> submitted -> validated | refused``. Every transition
is a conditional UPDATE guarded by the status the caller started from, so two
concurrent decisions on one submission cannot both win.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import update

from app.core.errors import ImmutableState, InvalidPayload, NotFound, PairingRequired, StateConflict
from app.core.extensions import db
from app.core.models import FormSubmission, FormTemplate, Role, SubmissionStatus, User, ValidatorTechnicianAssignment, utcnow
from app.core.permissions import Operation, authorize
from app.core.realtime import broadcast, user_channel
from app.core.utils import fetch, unit_of_work
from app.forms.assignments import active_assignment_for, is_paired
from app.forms.templates import load_template

logger = logging.getLogger(__name__)

SUBMISSION_TRANSITIONS: dict[SubmissionStatus, set[SubmissionStatus]] = {
    SubmissionStatus.DRAFT: {SubmissionStatus.DRAFT, SubmissionStatus.SUBMITTED},
    SubmissionStatus.SUBMITTED: {SubmissionStatus.VALIDATED, SubmissionStatus.REFUSED},
    SubmissionStatus.VALIDATED: set(),
    SubmissionStatus.REFUSED: set(),
}

DECISION_EVENTS = {
    SubmissionStatus.VALIDATED: "submission.validated",
    SubmissionStatus.REFUSED: "submission.refused",
}


def _parse_status(raw: Any) -> SubmissionStatus:
    try:
        return SubmissionStatus(raw)
    except ValueError as exc:
        raise InvalidPayload("Unknown submission status", field="expected_status") from exc


def _expected_status(
    submission: FormSubmission,
    target: SubmissionStatus,
    expected_status: Any = None,
) -> SubmissionStatus:
    """Status the transition to ``target`` will compare against.

    A source that can never reach ``target`` is immutable; a caller
    expectation that is legal but no longer matches the stored row is a
    conflict.
    """
    stored = submission.status
    source = stored if expected_status is None else _parse_status(expected_status)
    if target not in SUBMISSION_TRANSITIONS[source]:
        raise ImmutableState(
            f"A {source.value} submission cannot become {target.value}",
            submission_id=submission.id,
            status=source.value,
        )
    if source != stored:
        raise StateConflict(submission_id=submission.id, expected=source.value, actual=stored.value)
    return source


def _compare_and_swap(submission: FormSubmission, expected: SubmissionStatus, **values: Any) -> FormSubmission:
    with unit_of_work():
        result = db.session.execute(
            update(FormSubmission)
            .where(FormSubmission.id == submission.id, FormSubmission.status == expected)
            .values(updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info("CAS lost for submission_id=%s expecting %s", submission.id, expected.value)
            raise StateConflict(submission_id=submission.id, expected=expected.value)
    db.session.refresh(submission)
    return submission


def _clean_form_data(template: FormTemplate, form_data: Any) -> dict[str, Any]:
    if not isinstance(form_data, dict):
        raise InvalidPayload("form_data must be an object keyed by field id", field="form_data")
    unknown = sorted(set(form_data) - set(template.field_ids()))
    if unknown:
        raise InvalidPayload("form_data has keys that are not fields of the form", field="form_data", unknown=unknown)
    return dict(form_data)


def _clean_location(location_data: Any) -> dict | None:
    if location_data is not None and not isinstance(location_data, dict):
        raise InvalidPayload("location_data must be an object", field="location_data")
    return location_data


def _missing_required(template: FormTemplate, form_data: dict[str, Any]) -> list[str]:
    missing = []
    for field in template.fields or []:
        if not field.get("required"):
            continue
        value = form_data.get(field["id"])
        if value is None or value == "" or value == []:
            missing.append(field["id"])
    return missing


def load_submission(submission_id: int) -> FormSubmission:
    return fetch(FormSubmission, submission_id, "Submission")


def _own_submission(actor: User, submission_id: int, operation: Operation) -> FormSubmission:
    authorize(actor, operation)
    submission = load_submission(submission_id)
    authorize(actor, operation, submission)
    if submission.user_id != actor.id:
        raise NotFound("Submission not found", id=submission_id)
    return submission


def create_submission(
    actor: User,
    template_id: int,
    form_data: Any,
    location_data: Any = None,
    submit: bool = False,
) -> FormSubmission:
    """Draft a submission, or file it straight away when ``submit`` is set.

    A submitted creation checks required fields before anything is written.
    """
    authorize(actor, Operation.SUBMISSION_CREATE)
    template = load_template(template_id)
    authorize(actor, Operation.SUBMISSION_CREATE, template)
    if active_assignment_for(actor.id, template.id) is None:
        raise NotFound("Assigned form not found", form_template_id=template.id)
    if not template.is_active:
        raise ImmutableState("The form is no longer active", form_template_id=template.id)

    cleaned = _clean_form_data(template, form_data)
    location = _clean_location(location_data)
    status = SubmissionStatus.DRAFT
    if submit:
        missing = _missing_required(template, cleaned)
        if missing:
            raise InvalidPayload("Required fields are empty", field="form_data", missing=missing)
        status = SubmissionStatus.SUBMITTED

    with unit_of_work():
        submission = FormSubmission(
            form_template_id=template.id,
            user_id=actor.id,
            form_data=cleaned,
            location_data=location,
            status=status,
        )
        db.session.add(submission)
    logger.info(
        "Submission submission_id=%s created as %s by user_id=%s", submission.id, status.value, actor.id
    )
    return submission


def get_submission(actor: User, submission_id: int) -> FormSubmission:
    """Visible to its submitter and to validators paired with the submitter."""
    authorize(actor, Operation.SUBMISSION_GET)
    submission = load_submission(submission_id)
    authorize(actor, Operation.SUBMISSION_GET, submission)
    if submission.user_id == actor.id:
        return submission
    if actor.role == Role.VALIDATOR and is_paired(submission.form_template_id, actor.id, submission.user_id):
        return submission
    raise NotFound("Submission not found", id=submission_id)


def merged_content(submission: FormSubmission) -> list[dict[str, Any]]:
    """Template fields in order, each with the value the submitter entered."""
    data = submission.form_data or {}
    return [dict(field, value=data.get(field["id"])) for field in submission.form_template.fields or []]


def update_submission(
    actor: User,
    submission_id: int,
    form_data: Any,
    location_data: Any = None,
    expected_status: Any = None,
) -> FormSubmission:
    submission = _own_submission(actor, submission_id, Operation.SUBMISSION_UPDATE)
    expected = _expected_status(submission, SubmissionStatus.DRAFT, expected_status)
    values: dict[str, Any] = {"form_data": _clean_form_data(submission.form_template, form_data)}
    if location_data is not None:
        values["location_data"] = _clean_location(location_data)
    return _compare_and_swap(submission, expected, **values)


def submit_submission(actor: User, submission_id: int, expected_status: Any = None) -> FormSubmission:
    submission = _own_submission(actor, submission_id, Operation.SUBMISSION_SUBMIT)
    expected = _expected_status(submission, SubmissionStatus.SUBMITTED, expected_status)
    missing = _missing_required(submission.form_template, submission.form_data or {})
    if missing:
        raise InvalidPayload("Required fields are empty", field="form_data", missing=missing)
    _compare_and_swap(submission, expected, status=SubmissionStatus.SUBMITTED)
    logger.info("Submission submission_id=%s submitted", submission.id)
    return submission


def _decide(
    actor: User,
    submission_id: int,
    operation: Operation,
    target: SubmissionStatus,
    expected_status: Any = None,
) -> FormSubmission:
    authorize(actor, operation)
    submission = load_submission(submission_id)
    authorize(actor, operation, submission)
    expected = _expected_status(submission, target, expected_status)
    if not is_paired(submission.form_template_id, actor.id, submission.user_id):
        raise PairingRequired(
            form_template_id=submission.form_template_id,
            technician_id=submission.user_id,
        )

    _compare_and_swap(
        submission,
        expected,
        status=target,
        validated_by=actor.id,
        validated_at=utcnow(),
    )
    logger.info("Submission submission_id=%s %s by user_id=%s", submission.id, target.value, actor.id)
    broadcast(
        user_channel(submission.user_id),
        DECISION_EVENTS[target],
        {
            "submission_id": submission.id,
            "form_template_id": submission.form_template_id,
            "status": target.value,
            "validated_by": actor.id,
        },
    )
    return submission


def validate_submission(actor: User, submission_id: int, expected_status: Any = None) -> FormSubmission:
    return _decide(actor, submission_id, Operation.SUBMISSION_VALIDATE, SubmissionStatus.VALIDATED, expected_status)


def refuse_submission(actor: User, submission_id: int, expected_status: Any = None) -> FormSubmission:
    return _decide(actor, submission_id, Operation.SUBMISSION_REFUSE, SubmissionStatus.REFUSED, expected_status)


def list_own_submissions(actor: User) -> list[FormSubmission]:
    authorize(actor, Operation.SUBMISSION_LIST_OWN)
    return (
        FormSubmission.query.filter(FormSubmission.user_id == actor.id)
        .order_by(FormSubmission.created_at.desc(), FormSubmission.id.desc())
        .all()
    )


def list_pending_validation(actor: User) -> list[FormSubmission]:
    authorize(actor, Operation.SUBMISSION_LIST_PENDING)
    query = (
        FormSubmission.query.join(FormTemplate, FormSubmission.form_template_id == FormTemplate.id)
        .filter(FormTemplate.company_id == actor.company_id)
        .filter(FormSubmission.status == SubmissionStatus.SUBMITTED)
    )
    if actor.role == Role.VALIDATOR:
        query = query.join(
            ValidatorTechnicianAssignment,
            (ValidatorTechnicianAssignment.form_template_id == FormSubmission.form_template_id)
            & (ValidatorTechnicianAssignment.technician_id == FormSubmission.user_id),
        ).filter(ValidatorTechnicianAssignment.validator_id == actor.id)
    return query.order_by(FormSubmission.created_at.asc(), FormSubmission.id.asc()).all()
