# tests/test_authz.py
"""
Tests for role + scope authorization.
"""

from dataclasses import FrozenInstanceError

import pytest

from accounts.authz import (
    ActorContext,
    Decision,
    DenyReason,
    authorize,
    check,
    entitled_actions,
    require,
    resolve_actor,
)
from accounts.models import Role
from accounts.role_defaults import ROLE_DEFAULTS
from organization.context import ResolutionContext
from organization.errors import Forbidden


pytestmark = pytest.mark.django_db


# =============================================================================
# resolve_actor
# =============================================================================

def test_resolve_actor_builds_context(sales_admin, sales):
    actor = resolve_actor(sales_admin)

    assert actor.tenant_id == sales.id
    assert actor.roles == frozenset({"admin", "user"})
    assert not actor.is_superuser


@pytest.mark.parametrize("status", ["inactive", "suspended"])
def test_resolve_actor_rejects_inactive_accounts(make_user, sales, status):
    user = make_user(sales, status=status)

    with pytest.raises(Forbidden):
        resolve_actor(user)


def test_resolve_actor_rejects_missing_user():
    with pytest.raises(Forbidden):
        resolve_actor(None)


# =============================================================================
# authorize
# =============================================================================

def test_role_without_capability_is_denied_in_scope(sales_member_actor, sales):
    decision = authorize(sales_member_actor, "tenant.create", sales.id)

    assert decision == Decision.deny("tenant.create", DenyReason.ROLE_INSUFFICIENT)
    assert not decision


def test_right_role_out_of_scope_is_denied(sales_admin_actor, tree):
    decision = authorize(sales_admin_actor, "tenant.create", tree["support"].id)

    assert not decision.allowed
    assert decision.reason == DenyReason.OUT_OF_SCOPE


def test_role_is_checked_before_scope(sales_member_actor, tree):
    decision = authorize(sales_member_actor, "tenant.delete", tree["support"].id)

    assert decision.reason == DenyReason.ROLE_INSUFFICIENT


def test_right_role_in_scope_is_allowed(sales_admin_actor, tree):
    assert authorize(sales_admin_actor, "tenant.rename", tree["sales_east"].id).allowed
    assert check(sales_admin_actor, "tenant.rename", tree["sales"].id)
    assert not check(sales_admin_actor, "tenant.rename", tree["root"].id)


def test_superuser_bypasses_role_and_scope(superuser_actor, tree, other_org):
    assert authorize(superuser_actor, "tenant.delete", tree["root"].id).allowed
    assert authorize(superuser_actor, "role.manage", other_org.id).allowed


def test_require_raises_forbidden_with_reason(sales_admin_actor, tree):
    with pytest.raises(Forbidden) as exc:
        require(sales_admin_actor, "tenant.rename", tree["support"].id)

    assert exc.value.reason == DenyReason.OUT_OF_SCOPE
    assert exc.value.status_code == 403


def test_unknown_target_is_out_of_scope(sales_admin_actor, tree):
    assert authorize(sales_admin_actor, "tenant.view", 55555).reason == DenyReason.OUT_OF_SCOPE


# =============================================================================
# Role entitlements
# =============================================================================

def test_defaults_apply_without_role_rows(sales_admin_actor, tree):
    assert entitled_actions(sales_admin_actor) == frozenset(ROLE_DEFAULTS["admin"] | ROLE_DEFAULTS["user"])


def test_role_row_of_organization_root_overrides_defaults(sales_member, sales_member_actor, tree):
    Role.objects.create(
        organization=tree["root"],
        name="user",
        actions=["tenant.view", "tenant.create"],
    )

    assert entitled_actions(sales_member_actor) == frozenset({"tenant.view", "tenant.create"})
    assert authorize(sales_member_actor, "tenant.create", tree["sales_east"].id).allowed
    assert not authorize(sales_member_actor, "todo.manage", tree["sales"].id).allowed


def test_role_rows_of_other_organizations_are_ignored(sales_member_actor, tree, other_org):
    Role.objects.create(organization=other_org, name="user", actions=["tenant.delete"])

    assert "tenant.delete" not in entitled_actions(sales_member_actor)


def test_custom_role_name_without_row_grants_nothing(make_user, sales):
    actor = resolve_actor(make_user(sales, roles=["auditor"]))

    assert entitled_actions(actor) == frozenset()


def test_entitlements_are_memoised_per_context(sales_admin_actor, tree, django_assert_num_queries):
    ctx = ResolutionContext()
    entitled_actions(sales_admin_actor, ctx)

    with django_assert_num_queries(0):
        entitled_actions(sales_admin_actor, ctx)
        authorize(sales_admin_actor, "tenant.view", tree["sales"].id, ctx)


def test_actor_context_is_immutable(sales_admin_actor):
    with pytest.raises(FrozenInstanceError):
        sales_admin_actor.tenant_id = 1
    assert isinstance(sales_admin_actor, ActorContext)
