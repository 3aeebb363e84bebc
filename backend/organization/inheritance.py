# organization/inheritance.py
"""
Effective application permissions.

    effective(t) = own(t) | effective(parent(t))
    effective(root) = own(root)

Grants flow strictly downward and only ever add: a descendant holds every
key any ancestor holds, and may hold keys no ancestor was granted.
"""
import logging
from typing import Iterable, Optional

from organization.context import ResolutionContext, ensure_context
from organization.errors import CycleDetected
from organization.models import Application
from organization.scope import coerce_tenant_id

logger = logging.getLogger(__name__)


def effective_permissions(tenant_id, context: Optional[ResolutionContext] = None) -> frozenset:
    """
    Union of the tenant's own grants and all of its ancestors' grants.

    Unknown tenants resolve to an empty set. A parent reference to a
    missing tenant ends the chain there. Results for every tenant on the
    walked chain are memoised in ``context``.

    Raises:
        CycleDetected: the parent chain loops
    """
    tid = coerce_tenant_id(tenant_id)
    if tid is None:
        return frozenset()

    ctx = ensure_context(context)
    snapshot = ctx.snapshot

    chain = []
    seen = set()
    inherited = frozenset()
    current = tid
    while current is not None:
        if current in ctx.effective:
            inherited = ctx.effective[current]
            break
        record = snapshot.get(current)
        if record is None:
            if chain:
                logger.warning(
                    "permissions.broken_chain",
                    extra={"tenant_id": chain[-1].id, "missing_parent_id": current},
                )
            break
        if current in seen:
            logger.error("permissions.cycle_detected", extra={"tenant_id": current})
            raise CycleDetected(current)
        seen.add(current)
        chain.append(record)
        current = record.parent_id

    result = inherited
    for record in reversed(chain):
        result = result | record.own_permissions
        ctx.effective[record.id] = result

    return ctx.effective.get(tid, frozenset())


def effective_permissions_for_many(tenant_ids: Iterable, context: Optional[ResolutionContext] = None) -> dict:
    ctx = ensure_context(context)
    return {tid: effective_permissions(tid, context=ctx) for tid in tenant_ids}


def check_grantable(tenant_id, keys: Iterable[str], context: Optional[ResolutionContext] = None) -> set[str]:
    """Keys from ``keys`` that the tenant does not effectively hold."""
    return set(keys) - effective_permissions(tenant_id, context=context)


def available_applications(user, context: Optional[ResolutionContext] = None):
    """Applications the user's tenant effectively has (dashboard listing)."""
    keys = effective_permissions(getattr(user, "tenant_id", None), context=context)
    if not keys:
        return Application.objects.none()
    return Application.objects.filter(permission_key__in=keys)
