# organization/hierarchy.py
"""
Graph algorithms over tenant parent links.

Tenants are loaded once into a ``HierarchySnapshot`` that keeps an explicit
child index in memory. Every traversal carries a visited set and raises
CycleDetected when it meets a tenant twice.

Usage:
    snapshot = HierarchySnapshot.load()
    snapshot.descendants_of(dept_id)   # {dept_id, sub_a, sub_b, ...}
    snapshot.root_of(sub_a)            # organization root id

    forest = build_tree(Tenant.objects.filter(pk__in=ids))
    for node, depth in flatten_tree(forest):
        ...
"""
from collections import defaultdict, deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple, Optional

from organization.errors import BrokenChain, CycleDetected, NotFound, ValidationError


class TenantRecord(NamedTuple):
    """Immutable view of one tenant row, as the resolvers see it."""

    id: int
    name: str
    parent_id: Optional[int]
    own_permissions: frozenset = frozenset()


@dataclass
class TenantNode:
    id: int
    name: str
    parent_id: Optional[int] = None
    is_accessible: bool = True
    user_count: Optional[int] = None
    children: list = field(default_factory=list)

    def to_record(self) -> TenantRecord:
        return TenantRecord(self.id, self.name, self.parent_id)


class HierarchyIssue(NamedTuple):
    kind: str  # "cycle" or "broken_chain"
    tenant_id: int
    detail: str


def as_record(item) -> TenantRecord:
    """Coerce a TenantRecord, Tenant model instance or mapping into a record."""
    if isinstance(item, TenantRecord):
        return item
    if isinstance(item, Mapping):
        parent_id = item.get("parent_id", item.get("parent"))
        return TenantRecord(
            id=item["id"],
            name=item.get("name", ""),
            parent_id=parent_id,
            own_permissions=frozenset(item.get("own_permissions", ())),
        )
    return TenantRecord(
        id=item.id,
        name=getattr(item, "name", ""),
        parent_id=getattr(item, "parent_id", None),
    )


class HierarchySnapshot:
    """
    In-memory adjacency index over a set of tenant records.

    A snapshot is a point-in-time read. It is never shared between
    requests; see ``organization.context.ResolutionContext``.
    """

    def __init__(self, records: Iterable):
        self._records: dict[int, TenantRecord] = {}
        self._children: dict[int, list[int]] = defaultdict(list)
        for item in records:
            record = as_record(item)
            self._records[record.id] = record
        for record in self._records.values():
            if record.parent_id is not None:
                self._children[record.parent_id].append(record.id)

    @classmethod
    def load(cls, using: str = "default") -> "HierarchySnapshot":
        """Read every tenant and its own grants (two queries)."""
        from organization.models import Tenant

        grants = defaultdict(set)
        through = Tenant.own_permissions.through
        for tenant_id, key in through.objects.using(using).values_list(
            "tenant_id", "application__permission_key"
        ):
            grants[tenant_id].add(key)

        rows = Tenant.objects.using(using).order_by("id").values_list("id", "name", "parent_id")
        return cls(
            TenantRecord(tid, name, parent_id, frozenset(grants.get(tid, ())))
            for tid, name, parent_id in rows
        )

    def __contains__(self, tenant_id) -> bool:
        return tenant_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def ids(self) -> list[int]:
        return list(self._records)

    def get(self, tenant_id) -> Optional[TenantRecord]:
        return self._records.get(tenant_id)

    def records(self) -> list[TenantRecord]:
        return list(self._records.values())

    def children_of(self, tenant_id) -> list[int]:
        return list(self._children.get(tenant_id, ()))

    def _require(self, tenant_id) -> TenantRecord:
        record = self._records.get(tenant_id)
        if record is None:
            raise NotFound(f"Tenant {tenant_id} not found.")
        return record

    def ordered_descendants(self, tenant_id) -> list[int]:
        """
        Breadth-first list of ``tenant_id`` and everything beneath it.

        Raises:
            NotFound: unknown tenant
            CycleDetected: a child link leads back to a visited tenant
        """
        self._require(tenant_id)
        ordered = [tenant_id]
        visited = {tenant_id}
        queue = deque([tenant_id])
        while queue:
            current = queue.popleft()
            for child_id in self._children.get(current, ()):
                if child_id in visited:
                    raise CycleDetected(child_id)
                visited.add(child_id)
                ordered.append(child_id)
                queue.append(child_id)
        return ordered

    def descendants_of(self, tenant_id) -> set[int]:
        """Every tenant reachable through child links, including ``tenant_id``."""
        return set(self.ordered_descendants(tenant_id))

    def ancestors_of(self, tenant_id) -> list[int]:
        """
        Parent chain of ``tenant_id``, nearest first (excludes the tenant).

        Raises:
            NotFound: unknown tenant
            BrokenChain: a parent id references a missing tenant
            CycleDetected: the chain loops
        """
        current = self._require(tenant_id)
        chain = []
        seen = {current.id}
        while current.parent_id is not None:
            parent = self._records.get(current.parent_id)
            if parent is None:
                raise BrokenChain(current.id, current.parent_id)
            if parent.id in seen:
                raise CycleDetected(parent.id)
            seen.add(parent.id)
            chain.append(parent.id)
            current = parent
        return chain

    def root_of(self, tenant_id) -> int:
        """Organization root of ``tenant_id`` (itself when it has no parent)."""
        chain = self.ancestors_of(tenant_id)
        return chain[-1] if chain else tenant_id

    def top_of(self, tenant_id) -> int:
        """
        Topmost tenant still present above ``tenant_id``.

        Same as ``root_of`` on healthy data; on a broken chain it stops at the
        orphaned tenant instead of raising. Cycles still raise.
        """
        current = self._require(tenant_id)
        seen = {current.id}
        while current.parent_id is not None and current.parent_id in self._records:
            current = self._records[current.parent_id]
            if current.id in seen:
                raise CycleDetected(current.id)
            seen.add(current.id)
        return current.id

    def integrity_issues(self) -> list[HierarchyIssue]:
        """Report every broken parent reference and every cycle (once each)."""
        issues = []
        for record in self._records.values():
            if record.parent_id is not None and record.parent_id not in self._records:
                issues.append(
                    HierarchyIssue(
                        "broken_chain",
                        record.id,
                        f"Tenant {record.id} ({record.name}) references missing parent {record.parent_id}.",
                    )
                )

        resolved: set[int] = set()
        for start in self._records:
            if start in resolved:
                continue
            path: list[int] = []
            on_path: set[int] = set()
            current = start
            while current is not None and current in self._records and current not in resolved:
                if current in on_path:
                    members = path[path.index(current):]
                    issues.append(
                        HierarchyIssue(
                            "cycle",
                            current,
                            f"Cycle through tenants {sorted(members)}.",
                        )
                    )
                    break
                on_path.add(current)
                path.append(current)
                current = self._records[current].parent_id
            resolved.update(path)
        return issues


def descendants_of(tenant_id, snapshot: Optional[HierarchySnapshot] = None) -> set[int]:
    if snapshot is None:
        snapshot = HierarchySnapshot.load()
    return snapshot.descendants_of(tenant_id)


def root_of(tenant_id, snapshot: Optional[HierarchySnapshot] = None) -> int:
    if snapshot is None:
        snapshot = HierarchySnapshot.load()
    return snapshot.root_of(tenant_id)


def build_tree(
    flat_list: Iterable,
    accessible_ids: Optional[Iterable[int]] = None,
    user_counts: Optional[dict] = None,
) -> list[TenantNode]:
    """
    Convert a flat list of tenants into a forest.

    A tenant whose parent is not in ``flat_list`` becomes a root of the
    returned forest even if it has a real parent elsewhere, so partial
    sub-trees render. Children keep the input order.

    Args:
        flat_list: TenantRecords, Tenant instances or mappings
        accessible_ids: when given, nodes outside it get is_accessible=False
        user_counts: optional {tenant_id: direct user count}

    Raises:
        ValidationError: the same id appears twice
        CycleDetected: some tenants are only reachable through a cycle
    """
    records = [as_record(item) for item in flat_list]
    accessible = set(accessible_ids) if accessible_ids is not None else None

    nodes: dict[int, TenantNode] = {}
    for record in records:
        if record.id in nodes:
            raise ValidationError(f"Duplicate tenant id {record.id} in input.")
        nodes[record.id] = TenantNode(
            id=record.id,
            name=record.name,
            parent_id=record.parent_id,
            is_accessible=accessible is None or record.id in accessible,
            user_count=user_counts.get(record.id, 0) if user_counts is not None else None,
        )

    forest = []
    for record in records:
        node = nodes[record.id]
        parent = nodes.get(record.parent_id) if record.parent_id is not None else None
        if parent is None:
            forest.append(node)
        else:
            parent.children.append(node)

    placed = {node.id for node, _ in flatten_tree(forest)}
    if len(placed) != len(nodes):
        stranded = sorted(set(nodes) - placed)
        raise CycleDetected(
            stranded[0],
            detail=f"Tenants {stranded} are only reachable through a cycle.",
        )
    return forest


def flatten_tree(forest: Iterable[TenantNode], depth: int = 0):
    """
    Depth-first, pre-order walk yielding ``(node, depth)`` pairs.

    Iterative, so a corrupted (cyclic) forest cannot recurse forever; a node
    seen twice raises CycleDetected.
    """
    stack = [(node, depth) for node in reversed(list(forest))]
    seen = set()
    while stack:
        node, level = stack.pop()
        if id(node) in seen:
            raise CycleDetected(node.id)
        seen.add(id(node))
        yield node, level
        for child in reversed(node.children):
            stack.append((child, level + 1))
