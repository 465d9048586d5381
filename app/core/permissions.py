"""Role and tenant authorization.

``check`` is the single decision function: it never touches the database
or the request, so it can be evaluated for any actor/operation/resource
triple. Services call ``authorize`` (the raising form) before doing any
work; views use ``require_operation`` to fail fast on role alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import wraps

from flask_login import current_user

from app.core.errors import AuthorizationError, Deactivated, RoleForbidden, TenantMismatch, Unauthenticated
from app.core.models import Role


class Operation(str, Enum):
    COMPANY_CREATE = "company.create"
    COMPANY_LIST = "company.list"
    COMPANY_GET = "company.get"
    COMPANY_UPDATE = "company.update"
    COMPANY_DEACTIVATE = "company.deactivate"
    COMPANY_ACTIVATE = "company.activate"
    COMPANY_DELETE = "company.delete"
    ABONNEMENT_CREATE = "abonnement.create"
    ADMINISTRATOR_ACTIVATE = "administrator.activate"
    ADMINISTRATOR_DEACTIVATE = "administrator.deactivate"

    COLLABORATOR_CREATE = "collaborator.create"
    COLLABORATOR_LIST = "collaborator.list"
    COLLABORATOR_GET = "collaborator.get"
    COLLABORATOR_UPDATE = "collaborator.update"
    COLLABORATOR_DEACTIVATE = "collaborator.deactivate"
    COLLABORATOR_ACTIVATE = "collaborator.activate"
    COLLABORATOR_DELETE = "collaborator.delete"

    TEMPLATE_CREATE = "template.create"
    TEMPLATE_LIST = "template.list"
    TEMPLATE_GET = "template.get"
    TEMPLATE_UPDATE = "template.update"
    TEMPLATE_DEACTIVATE = "template.deactivate"
    TEMPLATE_DELETE = "template.delete"

    ASSIGNMENT_CREATE = "assignment.create"
    ASSIGNMENT_LIST = "assignment.list"
    PAIRING_CREATE = "pairing.create"
    PAIRING_LIST = "pairing.list"

    ASSIGNED_FORM_LIST = "assigned_form.list"
    ASSIGNED_FORM_GET = "assigned_form.get"
    SUBMISSION_LIST_OWN = "submission.list_own"
    SUBMISSION_GET = "submission.get"
    SUBMISSION_CREATE = "submission.create"
    SUBMISSION_UPDATE = "submission.update"
    SUBMISSION_SUBMIT = "submission.submit"
    SUBMISSION_LIST_PENDING = "submission.list_pending"
    SUBMISSION_VALIDATE = "submission.validate"
    SUBMISSION_REFUSE = "submission.refuse"

    DASHBOARD_ADMIN = "dashboard.admin"
    DASHBOARD_COLLABORATOR = "dashboard.collaborator"

    DISCUSSION_SEND = "discussion.send"
    DISCUSSION_LIST = "discussion.list"
    DISCUSSION_READ = "discussion.read"

    CHANNEL_AUTHORIZE = "channel.authorize"
    PASSWORD_CHANGE = "password.change"


_ROOT = frozenset({Role.ROOT})
_ADMIN = frozenset({Role.ADMINISTRATOR})
_ADMIN_OR_ROOT = frozenset({Role.ADMINISTRATOR, Role.ROOT})
_WORKERS = frozenset({Role.TECHNICIAN, Role.VALIDATOR})
_VALIDATOR = frozenset({Role.VALIDATOR})
_COMPANY_MEMBERS = frozenset({Role.ADMINISTRATOR, Role.TECHNICIAN, Role.VALIDATOR})
_EVERYONE = frozenset(Role)

OPERATION_ROLES: dict[Operation, frozenset[Role]] = {
    Operation.COMPANY_CREATE: _ROOT,
    Operation.COMPANY_LIST: _ROOT,
    Operation.COMPANY_GET: _ROOT,
    Operation.COMPANY_UPDATE: _ROOT,
    Operation.COMPANY_DEACTIVATE: _ROOT,
    Operation.COMPANY_ACTIVATE: _ROOT,
    Operation.COMPANY_DELETE: _ROOT,
    Operation.ABONNEMENT_CREATE: _ROOT,
    Operation.ADMINISTRATOR_ACTIVATE: _ROOT,
    Operation.ADMINISTRATOR_DEACTIVATE: _ROOT,
    Operation.COLLABORATOR_CREATE: _ADMIN,
    Operation.COLLABORATOR_LIST: _ADMIN,
    Operation.COLLABORATOR_GET: _ADMIN,
    Operation.COLLABORATOR_UPDATE: _ADMIN,
    Operation.COLLABORATOR_DEACTIVATE: _ADMIN,
    Operation.COLLABORATOR_ACTIVATE: _ADMIN,
    Operation.COLLABORATOR_DELETE: _ADMIN,
    Operation.TEMPLATE_CREATE: _ADMIN_OR_ROOT,
    Operation.TEMPLATE_LIST: _ADMIN_OR_ROOT,
    Operation.TEMPLATE_GET: _ADMIN_OR_ROOT,
    Operation.TEMPLATE_UPDATE: _ADMIN_OR_ROOT,
    Operation.TEMPLATE_DEACTIVATE: _ADMIN_OR_ROOT,
    Operation.TEMPLATE_DELETE: _ADMIN_OR_ROOT,
    Operation.ASSIGNMENT_CREATE: _ADMIN,
    Operation.ASSIGNMENT_LIST: _ADMIN,
    Operation.PAIRING_CREATE: _ADMIN,
    Operation.PAIRING_LIST: _ADMIN,
    Operation.ASSIGNED_FORM_LIST: _WORKERS,
    Operation.ASSIGNED_FORM_GET: _WORKERS,
    Operation.SUBMISSION_LIST_OWN: _WORKERS,
    Operation.SUBMISSION_GET: _WORKERS,
    Operation.SUBMISSION_CREATE: _WORKERS,
    Operation.SUBMISSION_UPDATE: _WORKERS,
    Operation.SUBMISSION_SUBMIT: _WORKERS,
    Operation.SUBMISSION_LIST_PENDING: frozenset({Role.ADMINISTRATOR, Role.VALIDATOR}),
    Operation.SUBMISSION_VALIDATE: _VALIDATOR,
    Operation.SUBMISSION_REFUSE: _VALIDATOR,
    Operation.DASHBOARD_ADMIN: _ADMIN,
    Operation.DASHBOARD_COLLABORATOR: _WORKERS,
    Operation.DISCUSSION_SEND: _COMPANY_MEMBERS,
    Operation.DISCUSSION_LIST: _COMPANY_MEMBERS,
    Operation.DISCUSSION_READ: _COMPANY_MEMBERS,
    Operation.CHANNEL_AUTHORIZE: _EVERYONE,
    Operation.PASSWORD_CHANGE: _EVERYONE,
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: type[AuthorizationError] | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def _is_authenticated(actor) -> bool:
    return actor is not None and bool(getattr(actor, "is_authenticated", False))


def check(actor, operation: Operation, resource=None) -> Decision:
    if not _is_authenticated(actor):
        return Decision(False, Unauthenticated)
    if not actor.is_active:
        return Decision(False, Deactivated)
    if actor.role not in OPERATION_ROLES[operation]:
        return Decision(False, RoleForbidden)
    if resource is not None and actor.role != Role.ROOT:
        resource_company_id = getattr(resource, "company_id", None)
        if resource_company_id is not None and resource_company_id != actor.company_id:
            return Decision(False, TenantMismatch)
    return ALLOW


def authorize(actor, operation: Operation, resource=None) -> None:
    decision = check(actor, operation, resource)
    if not decision:
        raise decision.reason(operation=operation.value)


def require_operation(operation: Operation):
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            authorize(current_user._get_current_object(), operation)
            return fn(*args, **kwargs)

        return wrapper

    return decorator
