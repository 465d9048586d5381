from __future__ import annotations

import logging
from datetime import date
from typing import Any

from app.core.errors import InvalidPayload, SchemaInvalid
from app.core.extensions import db
from app.core.models import OPTION_FIELD_TYPES, FieldType, FormTemplate, User
from app.core.permissions import Operation, authorize
from app.core.tenancy import scope_to_actor, target_company_id
from app.core.utils import fetch, optional_text, require_text, unit_of_work
from app.forms.cascade import purge_templates
from app.forms.tenants import reserve_template_slot

logger = logging.getLogger(__name__)


def _field_error(errors: list, position: int, raw: Any, message: str) -> None:
    field_id = raw.get("id") if isinstance(raw, dict) else None
    errors.append({"index": position, "field": field_id, "message": message})


def validate_fields(fields: Any) -> list[dict[str, Any]]:
    """Check a field list and return it normalized; raise ``SchemaInvalid`` listing every problem."""
    if not isinstance(fields, list) or not fields:
        raise SchemaInvalid("A form needs at least one field", errors=[{"message": "fields must be a non-empty list"}])

    errors: list[dict[str, Any]] = []
    normalized: list[dict[str, Any]] = []
    seen_ids: set[str] = set()

    for position, raw in enumerate(fields):
        if not isinstance(raw, dict):
            _field_error(errors, position, raw, "field definition must be an object")
            continue

        field_id = raw.get("id")
        if not isinstance(field_id, str) or not field_id.strip():
            _field_error(errors, position, raw, "id is required")
        elif field_id.strip() in seen_ids:
            _field_error(errors, position, raw, f"duplicate field id '{field_id.strip()}'")
        else:
            seen_ids.add(field_id.strip())

        label = raw.get("label")
        if not isinstance(label, str) or not label.strip():
            _field_error(errors, position, raw, "label is required")

        required = raw.get("required", False)
        if not isinstance(required, bool):
            _field_error(errors, position, raw, "required must be a boolean")

        try:
            field_type = FieldType(raw.get("type"))
        except ValueError:
            _field_error(errors, position, raw, f"unknown field type '{raw.get('type')}'")
            continue

        options = raw.get("options")
        if field_type in OPTION_FIELD_TYPES:
            if (
                not isinstance(options, list)
                or not options
                or not all(isinstance(option, str) and option.strip() for option in options)
            ):
                _field_error(errors, position, raw, f"{field_type.value} fields need at least one non-empty text option")
                continue
        elif options not in (None, []):
            _field_error(errors, position, raw, f"{field_type.value} fields do not take options")
            continue

        entry: dict[str, Any] = {
            "id": field_id.strip() if isinstance(field_id, str) else field_id,
            "label": label.strip() if isinstance(label, str) else label,
            "type": field_type.value,
            "required": required,
        }
        if field_type in OPTION_FIELD_TYPES:
            entry["options"] = [option.strip() for option in options]
        normalized.append(entry)

    if errors:
        raise SchemaInvalid(errors=errors)
    return normalized


def _new_template(company_id: int, creator: User, title: str, description: str | None, fields: list) -> FormTemplate:
    template = FormTemplate(
        company_id=company_id,
        created_by=creator.id,
        title=title,
        description=description,
        fields=fields,
        is_active=True,
    )
    db.session.add(template)
    db.session.flush()
    return template


def create_template(
    actor: User,
    title: str,
    fields: Any,
    description: str | None = None,
    company_id: int | None = None,
    today: date | None = None,
) -> FormTemplate:
    authorize(actor, Operation.TEMPLATE_CREATE)
    clean_title = require_text({"title": title}, "title")
    clean_description = optional_text({"description": description}, "description", max_length=10_000)
    normalized = validate_fields(fields)
    owner_company_id = target_company_id(actor, company_id)

    with unit_of_work():
        abonnement = reserve_template_slot(owner_company_id, today)
        template = _new_template(owner_company_id, actor, clean_title, clean_description, normalized)

    logger.info(
        "Template template_id=%s created for company_id=%s (forms_to_create=%s)",
        template.id,
        owner_company_id,
        abonnement.forms_to_create,
    )
    return template


def load_template(template_id: int) -> FormTemplate:
    return fetch(FormTemplate, template_id, "Form template")


def template_by_id(actor: User, template_id: int, operation: Operation = Operation.TEMPLATE_GET) -> FormTemplate:
    authorize(actor, operation)
    template = load_template(template_id)
    authorize(actor, operation, template)
    return template


def list_templates(actor: User, company_id: int | None = None, include_inactive: bool = True) -> list[FormTemplate]:
    authorize(actor, Operation.TEMPLATE_LIST)
    query = scope_to_actor(FormTemplate.query, FormTemplate.company_id, actor)
    if company_id is not None:
        query = query.filter(FormTemplate.company_id == company_id)
    if not include_inactive:
        query = query.filter(FormTemplate.is_active.is_(True))
    return query.order_by(FormTemplate.created_at.desc(), FormTemplate.id.desc()).all()


def update_template(actor: User, template_id: int, payload: dict) -> FormTemplate:
    template = template_by_id(actor, template_id, Operation.TEMPLATE_UPDATE)
    if not payload:
        raise InvalidPayload("Nothing to update")
    with unit_of_work():
        if "title" in payload:
            template.title = require_text(payload, "title")
        if "description" in payload:
            template.description = optional_text(payload, "description", max_length=10_000)
        if "fields" in payload:
            template.fields = validate_fields(payload["fields"])
    return template


def deactivate_template(actor: User, template_id: int) -> FormTemplate:
    template = template_by_id(actor, template_id, Operation.TEMPLATE_DEACTIVATE)
    with unit_of_work():
        template.is_active = False
    logger.info("Template template_id=%s deactivated", template.id)
    return template


def delete_template(actor: User, template_id: int) -> dict[str, int]:
    template = template_by_id(actor, template_id, Operation.TEMPLATE_DELETE)
    with unit_of_work():
        removed = purge_templates([template.id])
    logger.info("Template template_id=%s deleted: %s", template_id, dict(removed))
    return dict(removed)
