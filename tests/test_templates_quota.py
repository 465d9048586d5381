from __future__ import annotations

from datetime import date, timedelta

import pytest

from app.core.errors import (
    NoActiveSubscription,
    QuotaExhausted,
    RoleForbidden,
    SchemaInvalid,
    SeatLimitReached,
    TenantMismatch,
)
from app.core.extensions import db
from app.core.models import Abonnement, FormTemplate, Role
from app.forms import templates as template_service
from app.forms.templates import (
    create_template,
    deactivate_template,
    list_templates,
    template_by_id,
    update_template,
    validate_fields,
)
from app.forms.tenants import governing_abonnement

SITE_FIELDS = [
    {"id": "site", "label": "Site", "type": "text", "required": True},
    {"id": "risk", "label": "Risk level", "type": "select", "required": True, "options": ["low", "high"]},
]


def _abonnement(company_id: int) -> Abonnement:
    db.session.expire_all()
    return Abonnement.query.filter_by(company_id=company_id).order_by(Abonnement.id.desc()).first()


def test_seat_limit_and_release_on_deactivate(make_company, make_user):
    company = make_company(name="Seats", available_forms=2, forms_to_create=3)
    admin = make_user(company, Role.ADMINISTRATOR, name="Seat Admin")

    first = create_template(admin, "First", SITE_FIELDS)
    assert _abonnement(company.id).forms_to_create == 2
    create_template(admin, "Second", SITE_FIELDS)
    assert _abonnement(company.id).forms_to_create == 1
    with pytest.raises(SeatLimitReached):
        create_template(admin, "Third", SITE_FIELDS)
    assert _abonnement(company.id).forms_to_create == 1

    deactivate_template(admin, first.id)
    create_template(admin, "Third", SITE_FIELDS)
    assert _abonnement(company.id).forms_to_create == 0
    active = FormTemplate.query.filter_by(company_id=company.id, is_active=True).count()
    assert active == 2


def test_quota_exhausted_and_no_subscription(make_company, make_user):
    company = make_company(name="Budget", available_forms=5, forms_to_create=1)
    admin = make_user(company, Role.ADMINISTRATOR, name="Budget Admin")
    create_template(admin, "Only one", SITE_FIELDS)
    with pytest.raises(QuotaExhausted):
        create_template(admin, "One too many", SITE_FIELDS)
    assert _abonnement(company.id).forms_to_create == 0

    today = date.today()
    expired = make_company(
        name="Expired",
        starts_on=today - timedelta(days=60),
        ends_on=today - timedelta(days=1),
    )
    expired_admin = make_user(expired, Role.ADMINISTRATOR, name="Expired Admin")
    with pytest.raises(NoActiveSubscription):
        create_template(expired_admin, "Too late", SITE_FIELDS)


def test_failed_creation_does_not_consume_quota(monkeypatch, make_company, make_user):
    company = make_company(name="Rollback", forms_to_create=3)
    admin = make_user(company, Role.ADMINISTRATOR, name="Rollback Admin")

    def broken_insert(*args, **kwargs):
        raise RuntimeError("storage went away")

    monkeypatch.setattr(template_service, "_new_template", broken_insert)
    for _ in range(2):
        with pytest.raises(RuntimeError):
            create_template(admin, "Never stored", SITE_FIELDS)

    assert _abonnement(company.id).forms_to_create == 3
    assert FormTemplate.query.filter_by(company_id=company.id).count() == 0


def test_invalid_schema_never_touches_quota(make_company, make_user):
    company = make_company(name="Schema", forms_to_create=2)
    admin = make_user(company, Role.ADMINISTRATOR, name="Schema Admin")
    with pytest.raises(SchemaInvalid):
        create_template(admin, "Bad", [{"id": "a", "label": "A", "type": "rainbow"}])
    assert _abonnement(company.id).forms_to_create == 2


def test_latest_started_window_governs(make_company):
    today = date.today()
    company = make_company(name="Overlap", forms_to_create=4, starts_on=today - timedelta(days=10))
    newer = Abonnement(
        company_id=company.id,
        available_forms=1,
        forms_to_create=1,
        starts_on=today - timedelta(days=2),
        ends_on=today + timedelta(days=2),
    )
    db.session.add(newer)
    db.session.commit()
    assert governing_abonnement(company.id).id == newer.id
    assert governing_abonnement(company.id, today - timedelta(days=5)).forms_to_create == 4


def test_validate_fields_collects_every_problem():
    with pytest.raises(SchemaInvalid) as excinfo:
        validate_fields(
            [
                {"id": "a", "label": "A", "type": "text"},
                {"id": "a", "label": "Again", "type": "text"},
                {"id": "b", "label": "", "type": "number", "required": "yes"},
                {"id": "c", "label": "C", "type": "select", "options": []},
                {"id": "d", "label": "D", "type": "date", "options": ["x"]},
                {"id": "e", "label": "E", "type": "radio", "options": ["ok", " "]},
            ]
        )
    messages = [error["message"] for error in excinfo.value.details["errors"]]
    assert "duplicate field id 'a'" in messages
    assert "label is required" in messages
    assert "required must be a boolean" in messages
    assert "select fields need at least one non-empty text option" in messages
    assert "date fields do not take options" in messages
    assert "radio fields need at least one non-empty text option" in messages

    with pytest.raises(SchemaInvalid):
        validate_fields([])


def test_validate_fields_normalizes():
    normalized = validate_fields(
        [{"id": " site ", "label": " Site ", "type": "checkbox", "options": [" a ", "b"], "extra": 1}]
    )
    assert normalized == [
        {"id": "site", "label": "Site", "type": "checkbox", "required": False, "options": ["a", "b"]}
    ]


def test_update_template_has_no_quota_effect(demo):
    before = _abonnement(demo.company.id).forms_to_create
    updated = update_template(
        demo.admin,
        demo.template.id,
        {"title": "Site inspection v2", "fields": SITE_FIELDS},
    )
    assert updated.title == "Site inspection v2"
    assert updated.field_ids() == ["site", "risk"]
    assert _abonnement(demo.company.id).forms_to_create == before


def test_template_tenant_scope(demo, make_company, make_user):
    other = make_company(name="Initech")
    other_admin = make_user(other, Role.ADMINISTRATOR, name="Other Admin")

    with pytest.raises(TenantMismatch):
        template_by_id(other_admin, demo.template.id)
    assert list_templates(other_admin) == []
    assert [template.id for template in list_templates(demo.root)] == [demo.template.id]

    created = create_template(demo.root, "Root made", SITE_FIELDS, company_id=other.id)
    assert created.company_id == other.id
    with pytest.raises(RoleForbidden):
        create_template(demo.technician, "Nope", SITE_FIELDS)
