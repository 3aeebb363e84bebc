# tests/test_inheritance.py
"""
Tests for effective permission resolution.
"""

import pytest

from organization.context import ResolutionContext
from organization.errors import CycleDetected
from organization.hierarchy import HierarchySnapshot, TenantRecord
from organization.inheritance import (
    available_applications,
    check_grantable,
    effective_permissions,
    effective_permissions_for_many,
)
from organization.models import Tenant


pytestmark = pytest.mark.django_db


X, Y, Z = "CAN_USE_HIYARI", "CAN_USE_TODO", "CAN_USE_SCHEDULE"


@pytest.fixture
def chain(db, applications):
    """Root -> A -> B with Root granting X and A granting Y."""
    root = Tenant.objects.create(name="Root")
    a = Tenant.objects.create(name="A", parent=root)
    b = Tenant.objects.create(name="B", parent=a)
    root.own_permissions.add(applications[X])
    a.own_permissions.add(applications[Y])
    return root, a, b


def test_root_a_b_example(chain):
    root, a, b = chain

    assert effective_permissions(b.id) == {X, Y}
    assert effective_permissions(a.id) == {X, Y}
    assert effective_permissions(root.id) == {X}


def test_ancestor_grant_reaches_every_descendant(chain, applications):
    root, a, b = chain
    b.own_permissions.add(applications[Z])

    for tenant in (root, a, b):
        assert X in effective_permissions(tenant.id)
    assert effective_permissions(b.id) == {X, Y, Z}


def test_child_may_hold_keys_no_ancestor_has(chain, applications):
    root, a, b = chain
    b.own_permissions.add(applications[Z])

    assert Z in effective_permissions(b.id)
    assert Z not in effective_permissions(a.id)


def test_unknown_or_malformed_tenant_has_nothing(chain):
    assert effective_permissions(987654) == frozenset()
    assert effective_permissions(None) == frozenset()
    assert effective_permissions("nope") == frozenset()


def test_chain_stops_at_missing_parent(chain):
    root, a, b = chain
    Tenant.objects.filter(pk=root.pk).delete()

    assert effective_permissions(b.id) == {Y}


def test_cycle_in_parent_chain_raises():
    snapshot = HierarchySnapshot([
        TenantRecord(1, "a", 2, frozenset({X})),
        TenantRecord(2, "b", 1, frozenset({Y})),
    ])

    with pytest.raises(CycleDetected):
        effective_permissions(1, context=ResolutionContext(snapshot=snapshot))


def test_results_are_memoised_per_context(chain, django_assert_num_queries):
    root, a, b = chain
    ctx = ResolutionContext()
    effective_permissions(b.id, context=ctx)

    with django_assert_num_queries(0):
        result = effective_permissions_for_many([root.id, a.id, b.id], context=ctx)

    assert result == {root.id: {X}, a.id: {X, Y}, b.id: {X, Y}}


def test_fresh_resolution_sees_grant_changes(chain):
    root, a, b = chain
    root.own_permissions.clear()

    assert effective_permissions(b.id) == {Y}


def test_check_grantable_returns_missing_keys(chain):
    root, a, b = chain

    assert check_grantable(b.id, {X, Y}) == set()
    assert check_grantable(root.id, {X, Y, Z}) == {Y, Z}


def test_available_applications_for_user(chain, make_user):
    root, a, b = chain
    user = make_user(b)

    keys = set(available_applications(user).values_list("permission_key", flat=True))

    assert keys == {X, Y}


def test_available_applications_without_tenant_is_empty(chain):
    class Anonymous:
        tenant_id = None

    assert available_applications(Anonymous()).count() == 0
