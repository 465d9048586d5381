from __future__ import annotations

from flask import g
from flask_login import current_user

from app.core.errors import InvalidPayload, NotFound
from app.core.extensions import db
from app.core.models import Company, Role


def load_tenant_context() -> None:
    g.company = None
    if not current_user.is_authenticated:
        return
    g.company = current_user.company


def target_company_id(actor, company_id: int | None = None) -> int:
    """Company an operation acts on.

    Company members always act on their own company. Root has none, so it
    must name one explicitly.
    """
    if actor.role != Role.ROOT:
        return actor.company_id
    if company_id is None:
        raise InvalidPayload("company_id is required for root", field="company_id")
    if db.session.get(Company, company_id) is None:
        raise NotFound("Company not found", company_id=company_id)
    return company_id


def scope_to_actor(query, company_column, actor):
    if actor.role == Role.ROOT:
        return query
    return query.filter(company_column == actor.company_id)
