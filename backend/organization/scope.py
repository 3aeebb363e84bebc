# organization/scope.py
"""
Access scope resolution.

An actor sees its own tenant and everything beneath it, never ancestors or
siblings. Every domain listing intersects with this set:

    todos = scope_queryset(Todo.objects.all(), actor.tenant_id)

The read path fails closed. A missing, malformed or unknown tenant id
yields an empty scope so callers default to "nothing visible". A cycle is
data corruption and is raised, never truncated.
"""
import logging
from typing import Optional

from django.conf import settings
from django.db.models import Count

from organization.context import ResolutionContext, ensure_context
from organization.errors import CycleDetected
from organization.hierarchy import build_tree, flatten_tree
from organization.models import Tenant

logger = logging.getLogger(__name__)


def coerce_tenant_id(value) -> Optional[int]:
    """Normalise a tenant id (int, numeric str or Tenant). None if malformed."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Tenant):
        return value.pk
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def accessible_tenant_ids(actor_tenant_id, context: Optional[ResolutionContext] = None) -> list[int]:
    """
    Ordered ids the actor tenant may see: itself first, then descendants
    breadth-first.

    Returns [] for None, malformed or unknown ids.

    Raises:
        CycleDetected: the subtree under the actor loops
    """
    tenant_id = coerce_tenant_id(actor_tenant_id)
    if tenant_id is None:
        logger.debug("scope.invalid_tenant_id", extra={"tenant_id": str(actor_tenant_id)})
        return []

    ctx = ensure_context(context)
    cached = ctx.accessible.get(tenant_id)
    if cached is not None:
        return list(cached)

    snapshot = ctx.snapshot
    if tenant_id not in snapshot:
        logger.debug("scope.unknown_tenant", extra={"tenant_id": tenant_id})
        return []

    try:
        ids = snapshot.ordered_descendants(tenant_id)
    except CycleDetected as exc:
        logger.error(
            "scope.cycle_detected",
            extra={"tenant_id": tenant_id, "cycle_at": exc.tenant_id},
        )
        raise

    ctx.accessible[tenant_id] = tuple(ids)
    return list(ids)


def is_superuser(user) -> bool:
    roles = getattr(user, "roles", None) or ()
    return settings.ORGANIZATION_SUPERUSER_ROLE in roles


def accessible_tenant_ids_for(user, context: Optional[ResolutionContext] = None) -> list[int]:
    """
    Scope for a user: superusers see every tenant, everyone else their
    own subtree.
    """
    if user is None:
        return []
    if is_superuser(user):
        return sorted(ensure_context(context).snapshot.ids())
    return accessible_tenant_ids(getattr(user, "tenant_id", None), context=context)


def is_accessible(actor_tenant_id, target_tenant_id, context: Optional[ResolutionContext] = None) -> bool:
    target = coerce_tenant_id(target_tenant_id)
    if target is None:
        return False
    return target in accessible_tenant_ids(actor_tenant_id, context=context)


def scope_queryset(queryset, actor_tenant_id, field: str = "tenant", context: Optional[ResolutionContext] = None):
    """Restrict ``queryset`` to rows whose ``field`` is in the actor's scope."""
    ids = accessible_tenant_ids(actor_tenant_id, context=context)
    if not ids:
        return queryset.none()
    return queryset.filter(**{f"{field}__in": ids})


def direct_user_counts(tenant_ids) -> dict[int, int]:
    from django.contrib.auth import get_user_model

    rows = (
        get_user_model().objects
        .filter(tenant_id__in=list(tenant_ids))
        .values("tenant_id")
        .annotate(n=Count("id"))
        .values_list("tenant_id", "n")
    )
    return dict(rows)


def organization_listing(actor_tenant_id, context: Optional[ResolutionContext] = None) -> list[dict]:
    """
    The actor's whole organization, flattened depth-first for display.

    Each row carries ``depth``, ``is_accessible`` (inside the actor's own
    subtree) and the tenant's direct ``user_count``. An organization whose
    root was removed is listed from its topmost surviving tenant.
    """
    tenant_id = coerce_tenant_id(actor_tenant_id)
    ctx = ensure_context(context)
    if tenant_id is None or tenant_id not in ctx.snapshot:
        return []

    snapshot = ctx.snapshot
    top_id = snapshot.top_of(tenant_id)
    org_ids = snapshot.ordered_descendants(top_id)
    forest = build_tree(
        [snapshot.get(tid) for tid in org_ids],
        accessible_ids=accessible_tenant_ids(tenant_id, context=ctx),
        user_counts=direct_user_counts(org_ids),
    )
    rows = []
    for node, depth in flatten_tree(forest):
        rows.append({
            "id": node.id,
            "name": node.name,
            "parent_id": node.parent_id,
            "depth": depth,
            "is_accessible": node.is_accessible,
            "user_count": node.user_count,
        })
    return rows
