"""Explicit deletion traversals.

Nothing here relies on database ``ON DELETE`` rules: owned rows are removed
child-first, by id, so the outcome is the same on every backend. Callers own
the transaction.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from sqlalchemy import delete, or_, select

from app.core.extensions import db
from app.core.models import (
    Abonnement,
    Company,
    Discussion,
    FormAssignment,
    FormSubmission,
    FormTemplate,
    User,
    ValidatorTechnicianAssignment,
)

logger = logging.getLogger(__name__)


def _delete(statement) -> int:
    return db.session.execute(statement.execution_options(synchronize_session="fetch")).rowcount


def purge_templates(template_ids: Iterable[int]) -> Counter:
    ids = sorted(set(template_ids))
    removed: Counter = Counter()
    if not ids:
        return removed
    removed["pairings"] = _delete(
        delete(ValidatorTechnicianAssignment).where(ValidatorTechnicianAssignment.form_template_id.in_(ids))
    )
    removed["submissions"] = _delete(delete(FormSubmission).where(FormSubmission.form_template_id.in_(ids)))
    removed["assignments"] = _delete(delete(FormAssignment).where(FormAssignment.form_template_id.in_(ids)))
    removed["templates"] = _delete(delete(FormTemplate).where(FormTemplate.id.in_(ids)))
    return removed


def purge_pairings_of(user_ids: Iterable[int]) -> int:
    ids = sorted(set(user_ids))
    if not ids:
        return 0
    return _delete(
        delete(ValidatorTechnicianAssignment).where(
            or_(
                ValidatorTechnicianAssignment.validator_id.in_(ids),
                ValidatorTechnicianAssignment.technician_id.in_(ids),
            )
        )
    )


def purge_user_records(user_ids: Iterable[int]) -> Counter:
    ids = sorted(set(user_ids))
    removed: Counter = Counter()
    if not ids:
        return removed
    removed["pairings"] = purge_pairings_of(ids)
    removed["submissions"] = _delete(delete(FormSubmission).where(FormSubmission.user_id.in_(ids)))
    removed["assignments"] = _delete(delete(FormAssignment).where(FormAssignment.user_id.in_(ids)))
    removed["discussions"] = _delete(
        delete(Discussion).where(or_(Discussion.sender_id.in_(ids), Discussion.recipient_id.in_(ids)))
    )
    return removed


def purge_company(company_id: int) -> Counter:
    template_ids = db.session.scalars(select(FormTemplate.id).where(FormTemplate.company_id == company_id)).all()
    user_ids = db.session.scalars(select(User.id).where(User.company_id == company_id)).all()

    removed = purge_templates(template_ids)
    removed.update(purge_user_records(user_ids))
    removed["users"] = _delete(delete(User).where(User.company_id == company_id))
    removed["abonnements"] = _delete(delete(Abonnement).where(Abonnement.company_id == company_id))
    removed["companies"] = _delete(delete(Company).where(Company.id == company_id))
    logger.info("Purged company_id=%s: %s", company_id, dict(removed))
    return removed
