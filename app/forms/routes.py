from __future__ import annotations

from flask import jsonify, request
from flask_login import current_user, login_required

from app.core.errors import InvalidPayload, RoleForbidden
from app.core.permissions import Operation, authorize, require_operation
from app.core.realtime import realtime_bus
from app.core.utils import parse_id
from app.forms import forms_bp
from app.forms.assignments import (
    assign_form,
    assign_validator_to_technicians,
    assigned_form,
    list_assigned_forms,
    list_assignments,
    list_pairings,
    pair_validator,
)
from app.forms.dashboard import admin_dashboard, collaborator_dashboard
from app.forms.discussions import discussion_by_id, list_discussions, mark_read, send_message
from app.forms.identity import (
    collaborator_by_id,
    create_collaborator,
    delete_collaborator,
    list_collaborators,
    message_recipients,
    set_administrator_active,
    set_collaborator_active,
    update_collaborator,
)
from app.forms.submissions import (
    create_submission,
    get_submission,
    list_own_submissions,
    list_pending_validation,
    merged_content,
    refuse_submission,
    submit_submission,
    update_submission,
    validate_submission,
)
from app.forms.templates import (
    create_template,
    deactivate_template,
    delete_template,
    list_templates,
    template_by_id,
    update_template,
)
from app.forms.tenants import (
    activate_company,
    add_abonnement,
    company_by_id,
    create_company,
    deactivate_company,
    delete_company,
    list_companies,
    update_company,
)


def _actor():
    return current_user._get_current_object()


def _payload() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidPayload("Request body must be a JSON object")
    return payload


def _listing(items) -> dict:
    return {"data": [item.to_dict() for item in items]}


# Root: companies


@forms_bp.post("/companies")
@login_required
@require_operation(Operation.COMPANY_CREATE)
def company_create():
    created = create_company(_actor(), _payload())
    return (
        jsonify(
            {
                "company": created.company.to_dict(),
                "administrator": created.administrator.to_dict(),
            }
        ),
        201,
    )


@forms_bp.get("/companies")
@login_required
@require_operation(Operation.COMPANY_LIST)
def company_list():
    return jsonify(_listing(list_companies(_actor())))


@forms_bp.get("/companies/<int:company_id>")
@login_required
def company_detail(company_id: int):
    company = company_by_id(_actor(), company_id)
    data = company.to_dict()
    data["users"] = [user.to_dict() for user in company.users]
    return jsonify(data)


@forms_bp.put("/companies/<int:company_id>")
@login_required
def company_update(company_id: int):
    return jsonify(update_company(_actor(), company_id, _payload()).to_dict())


@forms_bp.post("/companies/<int:company_id>/deactivate")
@login_required
def company_deactivate(company_id: int):
    return jsonify(deactivate_company(_actor(), company_id).to_dict())


@forms_bp.post("/companies/<int:company_id>/activate")
@login_required
def company_activate(company_id: int):
    return jsonify(activate_company(_actor(), company_id).to_dict())


@forms_bp.delete("/companies/<int:company_id>")
@login_required
def company_delete(company_id: int):
    return jsonify({"deleted": delete_company(_actor(), company_id)})


@forms_bp.post("/companies/<int:company_id>/abonnements")
@login_required
def abonnement_create(company_id: int):
    return jsonify(add_abonnement(_actor(), company_id, _payload()).to_dict()), 201


@forms_bp.post("/administrators/<int:user_id>/activate")
@login_required
def administrator_activate(user_id: int):
    return jsonify(set_administrator_active(_actor(), user_id, True).to_dict())


@forms_bp.post("/administrators/<int:user_id>/deactivate")
@login_required
def administrator_deactivate(user_id: int):
    return jsonify(set_administrator_active(_actor(), user_id, False).to_dict())


# Administrator: collaborators


@forms_bp.post("/collaborators")
@login_required
@require_operation(Operation.COLLABORATOR_CREATE)
def collaborator_create():
    return jsonify(create_collaborator(_actor(), _payload()).to_dict()), 201


@forms_bp.get("/collaborators")
@login_required
def collaborator_list():
    return jsonify(_listing(list_collaborators(_actor())))


@forms_bp.get("/collaborators/<int:user_id>")
@login_required
def collaborator_detail(user_id: int):
    return jsonify(collaborator_by_id(_actor(), user_id).to_dict())


@forms_bp.put("/collaborators/<int:user_id>")
@login_required
def collaborator_update(user_id: int):
    return jsonify(update_collaborator(_actor(), user_id, _payload()).to_dict())


@forms_bp.post("/collaborators/<int:user_id>/activate")
@login_required
def collaborator_activate(user_id: int):
    return jsonify(set_collaborator_active(_actor(), user_id, True).to_dict())


@forms_bp.post("/collaborators/<int:user_id>/deactivate")
@login_required
def collaborator_deactivate(user_id: int):
    return jsonify(set_collaborator_active(_actor(), user_id, False).to_dict())


@forms_bp.delete("/collaborators/<int:user_id>")
@login_required
def collaborator_delete(user_id: int):
    return jsonify({"deleted": delete_collaborator(_actor(), user_id)})


# Templates (administrator, or root naming a company)


@forms_bp.post("/form-templates")
@login_required
@require_operation(Operation.TEMPLATE_CREATE)
def template_create():
    payload = _payload()
    company_id = payload.get("company_id")
    template = create_template(
        _actor(),
        payload.get("title"),
        payload.get("fields"),
        description=payload.get("description"),
        company_id=parse_id(company_id, "company_id") if company_id is not None else None,
    )
    return jsonify(template.to_dict()), 201


@forms_bp.get("/form-templates")
@login_required
def template_list():
    company_id = request.args.get("company_id", type=int)
    return jsonify(_listing(list_templates(_actor(), company_id=company_id)))


@forms_bp.get("/form-templates/<int:template_id>")
@login_required
def template_detail(template_id: int):
    return jsonify(template_by_id(_actor(), template_id).to_dict())


@forms_bp.put("/form-templates/<int:template_id>")
@login_required
def template_update(template_id: int):
    return jsonify(update_template(_actor(), template_id, _payload()).to_dict())


@forms_bp.post("/form-templates/<int:template_id>/deactivate")
@login_required
def template_deactivate(template_id: int):
    return jsonify(deactivate_template(_actor(), template_id).to_dict())


@forms_bp.delete("/form-templates/<int:template_id>")
@login_required
def template_delete(template_id: int):
    return jsonify({"deleted": delete_template(_actor(), template_id)})


# Administrator: assignments and pairings


@forms_bp.post("/form-assignments")
@login_required
@require_operation(Operation.ASSIGNMENT_CREATE)
def assignment_create():
    payload = _payload()
    assignment = assign_form(
        _actor(),
        parse_id(payload.get("form_template_id"), "form_template_id"),
        parse_id(payload.get("user_id"), "user_id"),
        due_date=payload.get("due_date"),
    )
    return jsonify(assignment.to_dict()), 201


@forms_bp.get("/form-assignments")
@login_required
def assignment_list():
    return jsonify(_listing(list_assignments(_actor())))


@forms_bp.post("/form-templates/<int:template_id>/pairings")
@login_required
@require_operation(Operation.PAIRING_CREATE)
def pairing_create(template_id: int):
    payload = _payload()
    if "technician_ids" in payload:
        pairings = assign_validator_to_technicians(
            _actor(),
            template_id,
            parse_id(payload.get("validator_id"), "validator_id"),
            [parse_id(value, "technician_ids") for value in payload.get("technician_ids") or []],
        )
        return jsonify(_listing(pairings)), 201
    pairing = pair_validator(
        _actor(),
        template_id,
        parse_id(payload.get("validator_id"), "validator_id"),
        parse_id(payload.get("technician_id"), "technician_id"),
    )
    return jsonify(pairing.to_dict()), 201


@forms_bp.get("/form-templates/<int:template_id>/pairings")
@login_required
def pairing_list(template_id: int):
    return jsonify(_listing(list_pairings(_actor(), template_id)))


@forms_bp.get("/admin/dashboard")
@login_required
def admin_dashboard_stats():
    return jsonify(admin_dashboard(_actor()))


# Technicians and validators


@forms_bp.get("/assigned-forms")
@login_required
def assigned_form_list():
    return jsonify(_listing(list_assigned_forms(_actor())))


@forms_bp.get("/assigned-forms/<int:template_id>")
@login_required
def assigned_form_detail(template_id: int):
    return jsonify(assigned_form(_actor(), template_id).to_dict())


@forms_bp.get("/form-submissions")
@login_required
def submission_list():
    return jsonify(_listing(list_own_submissions(_actor())))


@forms_bp.post("/form-submissions")
@login_required
@require_operation(Operation.SUBMISSION_CREATE)
def submission_create():
    payload = _payload()
    status = payload.get("status", "draft")
    if status not in ("draft", "submitted"):
        raise InvalidPayload("status must be draft or submitted", field="status")
    submission = create_submission(
        _actor(),
        parse_id(payload.get("form_template_id"), "form_template_id"),
        payload.get("form_data"),
        location_data=payload.get("location_data"),
        submit=status == "submitted",
    )
    return jsonify(submission.to_dict()), 201


@forms_bp.get("/form-submissions/<int:submission_id>")
@login_required
def submission_detail(submission_id: int):
    submission = get_submission(_actor(), submission_id)
    data = submission.to_dict()
    data["content"] = merged_content(submission)
    return jsonify(data)


@forms_bp.put("/form-submissions/<int:submission_id>")
@login_required
def submission_update(submission_id: int):
    payload = _payload()
    submission = update_submission(
        _actor(),
        submission_id,
        payload.get("form_data"),
        location_data=payload.get("location_data"),
        expected_status=payload.get("expected_status"),
    )
    return jsonify(submission.to_dict())


@forms_bp.post("/form-submissions/<int:submission_id>/submit")
@login_required
def submission_submit(submission_id: int):
    payload = _payload()
    return jsonify(submit_submission(_actor(), submission_id, payload.get("expected_status")).to_dict())


@forms_bp.get("/validator/submissions")
@login_required
def submission_pending():
    return jsonify(_listing(list_pending_validation(_actor())))


@forms_bp.post("/form-submissions/<int:submission_id>/validate")
@login_required
def submission_validate(submission_id: int):
    payload = _payload()
    return jsonify(validate_submission(_actor(), submission_id, payload.get("expected_status")).to_dict())


@forms_bp.post("/form-submissions/<int:submission_id>/refuse")
@login_required
def submission_refuse(submission_id: int):
    payload = _payload()
    return jsonify(refuse_submission(_actor(), submission_id, payload.get("expected_status")).to_dict())


@forms_bp.get("/collaborator/dashboard")
@login_required
def collaborator_dashboard_stats():
    return jsonify(collaborator_dashboard(_actor()))


# Discussions and realtime


@forms_bp.get("/message-recipients")
@login_required
def recipient_list():
    return jsonify(_listing(message_recipients(_actor())))


@forms_bp.post("/discussions")
@login_required
@require_operation(Operation.DISCUSSION_SEND)
def discussion_send():
    payload = _payload()
    discussion = send_message(
        _actor(),
        parse_id(payload.get("recipient_id"), "recipient_id"),
        payload.get("content"),
    )
    return jsonify(discussion.to_dict()), 201


@forms_bp.get("/discussions")
@login_required
def discussion_list():
    return jsonify(_listing(list_discussions(_actor())))


@forms_bp.get("/discussions/<int:discussion_id>")
@login_required
def discussion_detail(discussion_id: int):
    return jsonify(discussion_by_id(_actor(), discussion_id).to_dict())


@forms_bp.post("/discussions/<int:discussion_id>/read")
@login_required
def discussion_read(discussion_id: int):
    return jsonify(mark_read(_actor(), discussion_id).to_dict())


@forms_bp.post("/broadcasting/auth")
@login_required
def broadcasting_auth():
    actor = _actor()
    authorize(actor, Operation.CHANNEL_AUTHORIZE)
    channel_name = _payload().get("channel_name") or request.form.get("channel_name", "")
    if not realtime_bus().authorize_channel(actor, channel_name):
        raise RoleForbidden("You may not subscribe to this channel", channel=channel_name)
    return jsonify({"channel": channel_name, "authorized": True})
