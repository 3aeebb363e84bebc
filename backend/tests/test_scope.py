# tests/test_scope.py
"""
Tests for access scope resolution.
"""

import pytest

from organization.context import ResolutionContext
from organization.errors import CycleDetected
from organization.hierarchy import HierarchySnapshot, TenantRecord
from organization.models import Tenant
from organization.scope import (
    accessible_tenant_ids,
    accessible_tenant_ids_for,
    coerce_tenant_id,
    is_accessible,
    organization_listing,
    scope_queryset,
)


pytestmark = pytest.mark.django_db


def test_every_tenant_can_see_itself(tree, other_org):
    for tenant in list(tree.values()) + [other_org]:
        assert tenant.id in accessible_tenant_ids(tenant.id)


def test_root_sees_the_whole_tree(tree, other_org):
    ids = accessible_tenant_ids(tree["root"].id)

    assert sorted(ids) == sorted(t.id for t in tree.values())
    assert ids[0] == tree["root"].id
    assert other_org.id not in ids


def test_department_never_sees_ancestors_or_siblings(tree):
    ids = accessible_tenant_ids(tree["sales"].id)

    assert ids == [tree["sales"].id, tree["sales_east"].id]


@pytest.mark.parametrize("bad_id", [None, "", "abc", 999999, True])
def test_invalid_ids_fail_closed(tree, bad_id):
    assert accessible_tenant_ids(bad_id) == []


def test_numeric_string_ids_are_accepted(tree):
    assert accessible_tenant_ids(str(tree["sales_east"].id)) == [tree["sales_east"].id]


def test_coerce_tenant_id_accepts_model_instances(root):
    assert coerce_tenant_id(root) == root.id


def test_cycle_is_raised_not_truncated():
    snapshot = HierarchySnapshot([
        TenantRecord(1, "a", None),
        TenantRecord(2, "b", 3),
        TenantRecord(3, "c", 2),
    ])
    ctx = ResolutionContext(snapshot=snapshot)

    assert accessible_tenant_ids(1, context=ctx) == [1]
    with pytest.raises(CycleDetected):
        accessible_tenant_ids(2, context=ctx)


def test_superuser_sees_every_tenant(superuser, tree, other_org, platform):
    ids = accessible_tenant_ids_for(superuser)

    assert set(ids) == set(Tenant.objects.values_list("id", flat=True))


def test_regular_user_scope_follows_tenant(sales_member, tree):
    assert accessible_tenant_ids_for(sales_member) == [tree["sales"].id, tree["sales_east"].id]
    assert accessible_tenant_ids_for(None) == []


def test_is_accessible(tree):
    assert is_accessible(tree["root"].id, tree["sales_east"].id)
    assert not is_accessible(tree["sales"].id, tree["support"].id)
    assert not is_accessible(tree["sales"].id, tree["root"].id)
    assert not is_accessible(tree["sales"].id, None)


def test_scope_queryset_restricts_rows(tree, make_user):
    from django.contrib.auth import get_user_model

    make_user(tree["sales_east"])
    make_user(tree["support"])
    make_user(tree["root"])

    User = get_user_model()
    visible = scope_queryset(User.objects.all(), tree["sales"].id)

    assert set(visible.values_list("tenant_id", flat=True)) == {tree["sales_east"].id}
    assert scope_queryset(User.objects.all(), "garbage").count() == 0


def test_context_memoises_scope(tree, django_assert_num_queries):
    ctx = ResolutionContext()
    accessible_tenant_ids(tree["root"].id, context=ctx)

    with django_assert_num_queries(0):
        assert accessible_tenant_ids(tree["root"].id, context=ctx)[0] == tree["root"].id
        assert accessible_tenant_ids(tree["sales"].id, context=ctx)


def test_organization_listing_marks_accessible_rows(tree, make_user):
    make_user(tree["sales"])
    make_user(tree["sales"])

    rows = organization_listing(tree["sales"].id)

    assert [(row["name"], row["depth"]) for row in rows] == [
        ("Acme", 0),
        ("Sales", 1),
        ("Sales East", 2),
        ("Support", 1),
    ]
    by_name = {row["name"]: row for row in rows}
    assert by_name["Acme"]["is_accessible"] is False
    assert by_name["Support"]["is_accessible"] is False
    assert by_name["Sales East"]["is_accessible"] is True
    assert by_name["Sales"]["user_count"] == 2
    assert by_name["Acme"]["user_count"] == 0


def test_organization_listing_for_unknown_tenant_is_empty(tree):
    assert organization_listing(424242) == []
