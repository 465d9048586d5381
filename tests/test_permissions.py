from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.core.errors import Deactivated, RoleForbidden, TenantMismatch, Unauthenticated
from app.core.permissions import OPERATION_ROLES, Operation, authorize, check
from app.core.models import Role


def _actor(role: Role, company_id: int | None = 1, is_active: bool = True):
    return SimpleNamespace(role=role, company_id=company_id, is_active=is_active, is_authenticated=True)


def test_every_operation_has_a_role_set():
    assert set(OPERATION_ROLES) == set(Operation)
    assert all(OPERATION_ROLES[operation] for operation in Operation)


@pytest.mark.parametrize("operation", list(Operation))
def test_roles_outside_the_table_are_denied_even_on_own_tenant(operation):
    resource = SimpleNamespace(company_id=1)
    for role in Role:
        decision = check(_actor(role), operation, resource)
        if role in OPERATION_ROLES[operation]:
            assert decision.allowed
        else:
            assert not decision.allowed
            assert decision.reason is RoleForbidden


def test_rules_apply_in_order():
    resource = SimpleNamespace(company_id=2)

    assert check(None, Operation.TEMPLATE_LIST).reason is Unauthenticated
    anonymous = SimpleNamespace(is_authenticated=False, is_active=True, role=Role.ADMINISTRATOR, company_id=1)
    assert check(anonymous, Operation.TEMPLATE_LIST).reason is Unauthenticated

    inactive = _actor(Role.TECHNICIAN, is_active=False)
    # Deactivation wins over the role and tenant failures that would follow.
    assert check(inactive, Operation.COMPANY_DELETE, resource).reason is Deactivated
    assert check(_actor(Role.TECHNICIAN), Operation.COMPANY_DELETE, resource).reason is RoleForbidden
    assert check(_actor(Role.ADMINISTRATOR), Operation.TEMPLATE_GET, resource).reason is TenantMismatch


def test_root_crosses_tenants_and_unscoped_resources_pass():
    root = _actor(Role.ROOT, company_id=None)
    assert check(root, Operation.TEMPLATE_DELETE, SimpleNamespace(company_id=42)).allowed
    assert check(_actor(Role.ADMINISTRATOR), Operation.TEMPLATE_GET, SimpleNamespace(company_id=None)).allowed
    assert check(_actor(Role.ADMINISTRATOR), Operation.TEMPLATE_GET, SimpleNamespace(company_id=1)).allowed


def test_authorize_raises_the_denial_reason():
    with pytest.raises(RoleForbidden) as excinfo:
        authorize(_actor(Role.VALIDATOR), Operation.COLLABORATOR_CREATE)
    assert excinfo.value.details == {"operation": "collaborator.create"}
    assert excinfo.value.status_code == 403

    with pytest.raises(Unauthenticated) as excinfo:
        authorize(None, Operation.PASSWORD_CHANGE)
    assert excinfo.value.status_code == 401


def test_checks_are_reevaluated_after_deactivation(demo):
    assert check(demo.admin, Operation.COLLABORATOR_LIST).allowed
    demo.admin.is_active = False
    assert check(demo.admin, Operation.COLLABORATOR_LIST).reason is Deactivated
