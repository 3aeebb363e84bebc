# tests/test_hierarchy.py
"""
Tests for descendant/root resolution and tree building.
"""

import pytest

from organization.errors import BrokenChain, CycleDetected, NotFound, ValidationError
from organization.hierarchy import (
    HierarchySnapshot,
    TenantRecord,
    build_tree,
    descendants_of,
    flatten_tree,
    root_of,
)
from organization.models import Tenant


def _snapshot(*rows):
    return HierarchySnapshot(TenantRecord(tid, f"t{tid}", parent) for tid, parent in rows)


def _shape(forest):
    return [(node.id, _shape(node.children)) for node in forest]


# =============================================================================
# Snapshot traversal
# =============================================================================

def test_descendants_include_self_and_whole_subtree():
    snapshot = _snapshot((1, None), (2, 1), (3, 2), (4, 1), (5, None))

    assert snapshot.descendants_of(1) == {1, 2, 3, 4}
    assert snapshot.descendants_of(2) == {2, 3}
    assert snapshot.descendants_of(5) == {5}


def test_ordered_descendants_is_breadth_first():
    snapshot = _snapshot((1, None), (2, 1), (3, 2), (4, 1))

    assert snapshot.ordered_descendants(1) == [1, 2, 4, 3]


def test_descendants_of_unknown_tenant_raises_not_found():
    with pytest.raises(NotFound):
        _snapshot((1, None)).descendants_of(99)


def test_cycle_in_subtree_raises():
    snapshot = _snapshot((1, None), (2, 3), (3, 2))

    with pytest.raises(CycleDetected):
        snapshot.root_of(2)


def test_root_of_walks_to_the_top():
    snapshot = _snapshot((1, None), (2, 1), (3, 2))

    assert snapshot.root_of(3) == 1
    assert snapshot.root_of(1) == 1
    assert snapshot.ancestors_of(3) == [2, 1]


def test_root_of_broken_chain():
    snapshot = _snapshot((2, 1), (3, 2))

    with pytest.raises(BrokenChain) as exc:
        snapshot.root_of(3)
    assert exc.value.missing_parent_id == 1
    assert snapshot.top_of(3) == 2


def test_integrity_issues_reports_cycles_and_broken_chains_once():
    snapshot = _snapshot((1, None), (2, 99), (3, 4), (4, 5), (5, 3))

    issues = snapshot.integrity_issues()
    kinds = sorted(issue.kind for issue in issues)

    assert kinds == ["broken_chain", "cycle"]


# =============================================================================
# build_tree / flatten_tree
# =============================================================================

def test_build_tree_nests_children_in_input_order():
    records = [
        TenantRecord(1, "Acme", None),
        TenantRecord(2, "Sales", 1),
        TenantRecord(3, "Support", 1),
        TenantRecord(4, "Sales East", 2),
    ]

    forest = build_tree(records)

    assert _shape(forest) == [(1, [(2, [(4, [])]), (3, [])])]


def test_build_tree_treats_missing_parent_as_forest_root():
    records = [TenantRecord(2, "Sales", 1), TenantRecord(4, "Sales East", 2)]

    forest = build_tree(records)

    assert [node.id for node in forest] == [2]


def test_build_tree_marks_accessibility_and_user_counts():
    records = [TenantRecord(1, "Acme", None), TenantRecord(2, "Sales", 1)]

    forest = build_tree(records, accessible_ids=[2], user_counts={1: 3})

    assert forest[0].is_accessible is False
    assert forest[0].user_count == 3
    assert forest[0].children[0].is_accessible is True
    assert forest[0].children[0].user_count == 0


def test_build_tree_rejects_duplicate_ids():
    with pytest.raises(ValidationError):
        build_tree([TenantRecord(1, "a", None), TenantRecord(1, "b", None)])


def test_build_tree_rejects_cycles():
    with pytest.raises(CycleDetected):
        build_tree([TenantRecord(1, "a", 2), TenantRecord(2, "b", 1)])


def test_build_tree_accepts_mappings():
    forest = build_tree([{"id": 1, "name": "Acme", "parent_id": None}, {"id": 2, "name": "x", "parent": 1}])

    assert forest[0].children[0].id == 2


def test_flatten_then_rebuild_yields_identical_shape():
    records = [
        TenantRecord(1, "Acme", None),
        TenantRecord(5, "Globex", None),
        TenantRecord(2, "Sales", 1),
        TenantRecord(3, "Support", 1),
        TenantRecord(4, "Sales East", 2),
        TenantRecord(6, "Globex Ops", 5),
    ]
    forest = build_tree(records)

    flattened = [node.to_record() for node, _ in flatten_tree(forest)]
    rebuilt = build_tree(flattened)

    assert _shape(rebuilt) == _shape(forest)


def test_flatten_tree_reports_depth_pre_order():
    forest = build_tree([
        TenantRecord(1, "Acme", None),
        TenantRecord(2, "Sales", 1),
        TenantRecord(3, "Sales East", 2),
        TenantRecord(4, "Support", 1),
    ])

    assert [(node.id, depth) for node, depth in flatten_tree(forest)] == [
        (1, 0),
        (2, 1),
        (3, 2),
        (4, 1),
    ]


# =============================================================================
# Database-backed snapshot
# =============================================================================

@pytest.mark.django_db
def test_snapshot_loads_tenants_and_grants(tree, applications):
    tree["sales"].own_permissions.add(applications["CAN_USE_TODO"])

    snapshot = HierarchySnapshot.load()

    assert len(snapshot) == 4
    assert snapshot.get(tree["sales"].id).own_permissions == frozenset({"CAN_USE_TODO"})
    assert snapshot.children_of(tree["root"].id) == [tree["sales"].id, tree["support"].id]


@pytest.mark.django_db
def test_module_level_helpers_read_storage(tree):
    assert root_of(tree["sales_east"].id) == tree["root"].id
    assert descendants_of(tree["sales"].id) == {tree["sales"].id, tree["sales_east"].id}


@pytest.mark.django_db
def test_orphans_after_parent_removed_surface_as_broken_chain(tree):
    Tenant.objects.filter(pk=tree["root"].pk).delete()

    with pytest.raises(BrokenChain):
        root_of(tree["sales_east"].id)
