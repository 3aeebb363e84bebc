"""
Per-request resolution context.

Scope and permission resolution recompute from storage on every call. A
caller that resolves many tenants in one request (bulk import validation,
listing pages) creates one ``ResolutionContext`` and passes it along so
the snapshot is read once and derived sets are memoised:

    ctx = ResolutionContext()
    for row in rows:
        ids = accessible_tenant_ids(actor.tenant_id, context=ctx)
        perms = effective_permissions(row["tenant_id"], context=ctx)

A context must not outlive the request or transaction that created it.
It is a plain object, never stored at module level.
"""
from typing import Optional

from organization.hierarchy import HierarchySnapshot


class ResolutionContext:
    """Lazily loaded snapshot plus memo tables for one resolution pass."""

    def __init__(self, snapshot: Optional[HierarchySnapshot] = None, using: str = "default"):
        self._snapshot = snapshot
        self.using = using
        self.accessible: dict[int, tuple] = {}
        self.effective: dict[int, frozenset] = {}
        self.entitlements: dict[tuple, frozenset] = {}

    @property
    def snapshot(self) -> HierarchySnapshot:
        if self._snapshot is None:
            self._snapshot = HierarchySnapshot.load(using=self.using)
        return self._snapshot

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def invalidate(self) -> None:
        """Drop the snapshot and memo tables (after a mutation in the same request)."""
        self._snapshot = None
        self.accessible.clear()
        self.effective.clear()
        self.entitlements.clear()


def ensure_context(context: Optional[ResolutionContext]) -> ResolutionContext:
    return context if context is not None else ResolutionContext()
