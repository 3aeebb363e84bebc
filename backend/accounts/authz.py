# accounts/authz.py
"""
Authorization for hierarchy-scoped actions.

Provides:
- ActorContext: Immutable context for the acting user
- resolve_actor: Build the context from an authenticated user
- authorize: Allow/Deny decision for (actor, action, target tenant)
- require: Raise Forbidden unless authorize allows

A decision needs BOTH:
1. a role entitling the action (roles belong to the actor's organization root)
2. the target tenant inside the actor's accessible scope

Holders of the global superuser role skip both checks.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional

from django.conf import settings

from accounts.models import Role, User
from accounts.role_defaults import ROLE_DEFAULTS
from organization.context import ResolutionContext, ensure_context
from organization.errors import BrokenChain, Forbidden
from organization.scope import coerce_tenant_id, is_accessible

logger = logging.getLogger(__name__)


class DenyReason(str, Enum):
    ROLE_INSUFFICIENT = "RoleInsufficient"
    OUT_OF_SCOPE = "OutOfScope"


DENY_MESSAGES = {
    DenyReason.ROLE_INSUFFICIENT: "Your role does not allow this action.",
    DenyReason.OUT_OF_SCOPE: "The target department is outside your organization scope.",
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    action: str
    reason: Optional[DenyReason] = None

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def allow(cls, action: str) -> "Decision":
        return cls(allowed=True, action=action)

    @classmethod
    def deny(cls, action: str, reason: DenyReason) -> "Decision":
        return cls(allowed=False, action=action, reason=reason)


@dataclass(frozen=True)
class ActorContext:
    """
    Immutable context for the current actor.

    Attributes:
        user: The authenticated user
        tenant_id: The tenant the user belongs to
        roles: Role names held by the user
    """
    user: object
    tenant_id: Optional[int]
    roles: FrozenSet[str]

    @property
    def is_superuser(self) -> bool:
        return settings.ORGANIZATION_SUPERUSER_ROLE in self.roles

    def has_role(self, name: str) -> bool:
        return name in self.roles


def resolve_actor(user) -> ActorContext:
    """
    Build an ActorContext from an already-authenticated user.

    Raises:
        Forbidden: no user, or the account is not active
    """
    if user is None or not getattr(user, "is_authenticated", False):
        raise Forbidden("Authentication required.")

    status = getattr(user, "status", User.Status.ACTIVE)
    if status != User.Status.ACTIVE or not getattr(user, "is_active", True):
        raise Forbidden("This account is not active.")

    return ActorContext(
        user=user,
        tenant_id=user.tenant_id,
        roles=frozenset(user.roles or ()),
    )


def entitled_actions(actor: ActorContext, context: Optional[ResolutionContext] = None) -> frozenset:
    """
    Actions granted by the actor's roles.

    Role rows of the actor's organization root win; role names without a
    row fall back to ROLE_DEFAULTS. An actor whose organization root cannot
    be resolved gets nothing.
    """
    names = set(actor.roles) - {settings.ORGANIZATION_SUPERUSER_ROLE}
    tenant_id = coerce_tenant_id(actor.tenant_id)
    if not names or tenant_id is None:
        return frozenset()

    ctx = ensure_context(context)
    if tenant_id not in ctx.snapshot:
        return frozenset()
    try:
        org_id = ctx.snapshot.root_of(tenant_id)
    except BrokenChain:
        logger.warning("authz.orphaned_actor", extra={"tenant_id": tenant_id})
        return frozenset()

    key = (org_id, frozenset(names))
    cached = ctx.entitlements.get(key)
    if cached is not None:
        return cached

    actions = set()
    found = set()
    for name, role_actions in Role.objects.filter(
        organization_id=org_id, name__in=names
    ).values_list("name", "actions"):
        found.add(name)
        actions.update(role_actions or ())
    for name in names - found:
        actions.update(ROLE_DEFAULTS.get(name, ()))

    result = frozenset(actions)
    ctx.entitlements[key] = result
    return result


def authorize(
    actor: ActorContext,
    action: str,
    target_tenant_id,
    context: Optional[ResolutionContext] = None,
) -> Decision:
    """
    Decide whether ``actor`` may perform ``action`` on ``target_tenant_id``.

    Role entitlement is checked before scope, so an actor failing both is
    reported as RoleInsufficient.
    """
    if actor.is_superuser:
        return Decision.allow(action)

    ctx = ensure_context(context)
    if action not in entitled_actions(actor, ctx):
        decision = Decision.deny(action, DenyReason.ROLE_INSUFFICIENT)
    elif not is_accessible(actor.tenant_id, target_tenant_id, ctx):
        decision = Decision.deny(action, DenyReason.OUT_OF_SCOPE)
    else:
        return Decision.allow(action)

    logger.info(
        "authz.denied",
        extra={
            "action": action,
            "reason": decision.reason.value,
            "actor_tenant_id": actor.tenant_id,
            "target_tenant_id": str(target_tenant_id),
        },
    )
    return decision


def require(
    actor: ActorContext,
    action: str,
    target_tenant_id,
    context: Optional[ResolutionContext] = None,
) -> None:
    """
    Require that ``authorize`` allows the action.

    Raises:
        Forbidden: with ``reason`` set to the DenyReason

    Example:
        require(actor, "tenant.rename", tenant_id)
        # If we get here, the action is allowed
    """
    decision = authorize(actor, action, target_tenant_id, context)
    if not decision.allowed:
        raise Forbidden(DENY_MESSAGES[decision.reason], reason=decision.reason)


def check(
    actor: ActorContext,
    action: str,
    target_tenant_id,
    context: Optional[ResolutionContext] = None,
) -> bool:
    """Check without raising."""
    return authorize(actor, action, target_tenant_id, context).allowed


def require_superuser(actor: ActorContext) -> None:
    if not actor.is_superuser:
        raise Forbidden(
            "Superuser privileges are required.",
            reason=DenyReason.ROLE_INSUFFICIENT,
        )
