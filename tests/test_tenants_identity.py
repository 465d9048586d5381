from __future__ import annotations

from datetime import date, timedelta

import pytest
from werkzeug.security import check_password_hash

from app.core.errors import (
    Deactivated,
    InvalidPayload,
    NotFound,
    RoleForbidden,
    StillReferenced,
    TenantMismatch,
    UserLimitReached,
)
from app.core.extensions import db
from app.core.models import (
    Abonnement,
    Company,
    Discussion,
    FormAssignment,
    FormSubmission,
    FormTemplate,
    Role,
    SubmissionStatus,
    User,
    ValidatorTechnicianAssignment,
)
from app.core.permissions import Operation, authorize
from app.forms.assignments import is_paired
from app.forms.discussions import send_message
from app.forms.identity import (
    change_password,
    collaborator_by_id,
    create_collaborator,
    delete_collaborator,
    list_collaborators,
    set_administrator_active,
    set_collaborator_active,
    update_collaborator,
)
from app.forms.submissions import create_submission, submit_submission, validate_submission
from app.forms.templates import delete_template
from app.forms.tenants import (
    activate_company,
    add_abonnement,
    create_company,
    deactivate_company,
    delete_company,
    update_company,
)

DATA = {"site": "South yard", "visited_on": "2026-10-02", "risk": "high"}


def _company_payload(**overrides):
    today = date.today()
    payload = {
        "name": "Stark Surveys",
        "email": "hello@stark.test",
        "max_users": 3,
        "available_forms": 2,
        "forms_to_create": 4,
        "starts_on": today.isoformat(),
        "ends_on": (today + timedelta(days=90)).isoformat(),
        "admin_name": "Pepper",
        "admin_email": "Pepper@Stark.test",
    }
    payload.update(overrides)
    return payload


def test_create_company_provisions_admin_and_notifies(demo, outbox):
    created = create_company(demo.root, _company_payload())
    assert created.company.max_users == 3
    assert created.abonnement.forms_to_create == 4
    assert created.administrator.role == Role.ADMINISTRATOR
    assert created.administrator.email == "pepper@stark.test"

    message = outbox.messages[-1]
    assert message.to == "pepper@stark.test"
    assert message.context["role"] == "administrator"
    assert check_password_hash(created.administrator.password_hash, message.context["password"])


def test_create_company_validates_input(demo):
    with pytest.raises(InvalidPayload):
        create_company(demo.root, _company_payload(ends_on=date.today().isoformat()))
    with pytest.raises(InvalidPayload):
        create_company(demo.root, _company_payload(name="Acme Inspections"))
    with pytest.raises(InvalidPayload):
        create_company(demo.root, _company_payload(admin_email="admin@acme.local"))
    with pytest.raises(RoleForbidden):
        create_company(demo.admin, _company_payload())
    assert Company.query.filter_by(name="Stark Surveys").count() == 0


def test_update_company_adjusts_governing_abonnement(demo):
    update_company(demo.root, demo.company.id, {"phone": "555-0100", "available_forms": 7, "forms_to_create": 20})
    db.session.expire_all()
    abonnement = Abonnement.query.filter_by(company_id=demo.company.id).one()
    assert (abonnement.available_forms, abonnement.forms_to_create) == (7, 20)
    assert demo.company.phone == "555-0100"

    with pytest.raises(InvalidPayload):
        update_company(demo.root, demo.company.id, {"forms_to_create": -1})


def test_add_abonnement_requires_ordered_window(demo):
    today = date.today()
    with pytest.raises(InvalidPayload):
        add_abonnement(
            demo.root,
            demo.company.id,
            {"available_forms": 1, "forms_to_create": 1, "starts_on": today.isoformat(), "ends_on": today.isoformat()},
        )
    added = add_abonnement(
        demo.root,
        demo.company.id,
        {
            "available_forms": 1,
            "forms_to_create": 1,
            "starts_on": today.isoformat(),
            "ends_on": (today + timedelta(days=1)).isoformat(),
        },
    )
    assert added.company_id == demo.company.id


def test_company_deactivation_cascades_to_users(demo):
    deactivate_company(demo.root, demo.company.id)
    db.session.expire_all()
    assert not demo.company.is_active
    assert User.query.filter_by(company_id=demo.company.id, is_active=True).count() == 0
    assert FormTemplate.query.filter_by(company_id=demo.company.id).count() == 1
    with pytest.raises(Deactivated):
        authorize(demo.technician, Operation.ASSIGNED_FORM_LIST)

    activate_company(demo.root, demo.company.id)
    db.session.expire_all()
    assert User.query.filter_by(company_id=demo.company.id, is_active=False).count() == 0


def test_delete_company_removes_everything_it_owns(demo, make_company, make_user):
    survivor = make_company(name="Survivor")
    survivor_admin = make_user(survivor, Role.ADMINISTRATOR, name="Survivor Admin")
    submission = create_submission(demo.technician, demo.template.id, DATA)
    submit_submission(demo.technician, submission.id)
    send_message(demo.technician, demo.validator.id, "Ready for review")

    removed = delete_company(demo.root, demo.company.id)
    assert removed["companies"] == 1
    assert removed["users"] == 3
    assert removed["templates"] == 1

    db.session.expire_all()
    assert db.session.get(Company, demo.company.id) is None
    for model in (FormTemplate, FormAssignment, FormSubmission, ValidatorTechnicianAssignment, Discussion):
        assert model.query.count() == 0
    assert Abonnement.query.filter_by(company_id=survivor.id).count() == 1
    assert db.session.get(User, survivor_admin.id) is not None


def test_delete_template_cascades(demo):
    # One template with two submissions, one pairing, two assignments.
    for _ in range(2):
        create_submission(demo.technician, demo.template.id, DATA)
    removed = delete_template(demo.admin, demo.template.id)
    assert removed == {"pairings": 1, "submissions": 2, "assignments": 2, "templates": 1}
    db.session.expire_all()
    assert FormSubmission.query.count() == 0
    assert ValidatorTechnicianAssignment.query.count() == 0
    assert FormAssignment.query.count() == 0


def test_collaborator_seat_limit(demo, outbox, make_company, make_user):
    small = make_company(name="Tiny", max_users=2)
    admin = make_user(small, Role.ADMINISTRATOR, name="Tiny Admin")
    tech = create_collaborator(admin, {"name": "Tess", "email": "tess@tiny.test", "role": "technician"})
    assert tech.company_id == small.id
    assert outbox.messages[-1].to == "tess@tiny.test"

    with pytest.raises(UserLimitReached):
        create_collaborator(admin, {"name": "Vic", "email": "vic@tiny.test", "role": "validator"})
    with pytest.raises(InvalidPayload):
        create_collaborator(demo.admin, {"name": "Boss", "email": "boss@acme.local", "role": "administrator"})


def test_collaborator_management_is_tenant_scoped(demo, make_company, make_user):
    other = make_company(name="Hooli")
    other_admin = make_user(other, Role.ADMINISTRATOR, name="Hooli Admin")
    with pytest.raises(TenantMismatch):
        collaborator_by_id(other_admin, demo.technician.id)
    assert list_collaborators(other_admin) == []
    assert {user.id for user in list_collaborators(demo.admin)} == {demo.technician.id, demo.validator.id}
    with pytest.raises(NotFound):
        collaborator_by_id(demo.admin, demo.admin.id)

    updated = update_collaborator(demo.admin, demo.technician.id, {"name": "Robert", "email": "ROBERT@acme.local"})
    assert (updated.name, updated.email) == ("Robert", "robert@acme.local")
    set_collaborator_active(demo.admin, demo.technician.id, False)
    assert not demo.technician.is_active


def test_delete_collaborator_refused_while_referenced(demo):
    submission = create_submission(demo.technician, demo.template.id, DATA)
    submit_submission(demo.technician, submission.id)
    validate_submission(demo.validator, submission.id)

    with pytest.raises(StillReferenced):
        delete_collaborator(demo.admin, demo.validator.id)

    removed = delete_collaborator(demo.admin, demo.technician.id)
    assert removed["submissions"] == 1
    assert removed["users"] == 1
    db.session.expire_all()
    assert User.query.filter_by(email="bob@acme.local").first() is None
    assert FormSubmission.query.filter_by(status=SubmissionStatus.VALIDATED).count() == 0


def test_root_toggles_administrators(demo):
    set_administrator_active(demo.root, demo.admin.id, False)
    assert not demo.admin.is_active
    with pytest.raises(NotFound):
        set_administrator_active(demo.root, demo.technician.id, False)
    set_administrator_active(demo.root, demo.admin.id, True)
    assert demo.admin.is_active


def test_change_password(demo):
    with pytest.raises(InvalidPayload):
        change_password(demo.technician, "wrong", "longenough")
    with pytest.raises(InvalidPayload):
        change_password(demo.technician, "bob12345", "short")
    change_password(demo.technician, "bob12345", "a-much-better-one")
    assert check_password_hash(demo.technician.password_hash, "a-much-better-one")


def test_role_change_drops_pairings(demo):
    assert is_paired(demo.template.id, demo.validator.id, demo.technician.id)
    update_collaborator(demo.admin, demo.technician.id, {"role": "validator"})
    db.session.expire_all()
    assert demo.technician.role == Role.VALIDATOR
    assert not is_paired(demo.template.id, demo.validator.id, demo.technician.id)
    assert ValidatorTechnicianAssignment.query.count() == 0

    # Same role again keeps everything in place.
    update_collaborator(demo.admin, demo.validator.id, {"role": "validator", "name": "Alice"})
    assert demo.validator.name == "Alice"


def test_counts_must_be_whole_numbers(demo):
    with pytest.raises(InvalidPayload):
        create_company(demo.root, _company_payload(available_forms=2.7))
    with pytest.raises(InvalidPayload):
        update_company(demo.root, demo.company.id, {"max_users": 4.5})
    update_company(demo.root, demo.company.id, {"max_users": 6.0})
    assert demo.company.max_users == 6
