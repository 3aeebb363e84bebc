# organization/commands.py
"""
Command layer for tenant hierarchy mutations.

ALL changes to the tenant tree go through these commands:
- Creating roots and child tenants
- Renaming
- Replacing a tenant's own application grants
- Deleting a leaf tenant
- Superuser deletion of a tenant with its direct members

Each command authorizes the actor, validates its input and performs its
writes inside one unit of work (see organization.transactions). Errors are
raised as organization.errors types.
"""
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from django.db import IntegrityError
from django.db.models import OuterRef, ProtectedError, Subquery

from accounts.authz import ActorContext, DenyReason, authorize, require, require_superuser
from organization.context import ResolutionContext
from organization.errors import (
    Conflict,
    DuplicateName,
    NotFound,
    ParentNotAccessible,
    UnknownPermissionKey,
    ValidationError,
)
from organization.models import Application, Tenant
from organization.scope import coerce_tenant_id
from organization.transactions import UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeDeletionResult:
    tenant_id: int
    users_deleted: int
    todos_deleted: int


def _clean_name(name) -> str:
    cleaned = name.strip() if isinstance(name, str) else ""
    if not cleaned:
        raise ValidationError("Department name is required.")
    if len(cleaned) > Tenant._meta.get_field("name").max_length:
        raise ValidationError("Department name is too long.")
    return cleaned


def lock_tenant(tenant_id, uow: UnitOfWork) -> Tenant:
    """Fetch a tenant, locking the row when running transactionally."""
    tid = coerce_tenant_id(tenant_id)
    if tid is None:
        raise NotFound(f"Tenant {tenant_id} not found.")
    qs = Tenant.objects.using(uow.using)
    if uow.atomic:
        qs = qs.select_for_update()
    tenant = qs.filter(pk=tid).first()
    if tenant is None:
        raise NotFound(f"Tenant {tid} not found.")
    return tenant


def _duplicate_name(name: str) -> DuplicateName:
    return DuplicateName(f"A department named '{name}' already exists.")


# =============================================================================
# Creation
# =============================================================================

def create_root_tenant(name: str) -> Tenant:
    """
    Create a new organization root.

    Used by registration; there is no actor yet.

    Raises:
        ValidationError: blank name
        DuplicateName: name already used by another tenant
    """
    name = _clean_name(name)
    try:
        with unit_of_work() as uow:
            if Tenant.objects.using(uow.using).name_taken(name):
                raise _duplicate_name(name)
            tenant = Tenant.objects.using(uow.using).create(name=name)
    except IntegrityError as exc:
        raise _duplicate_name(name) from exc

    logger.info("tenant.root_created", extra={"tenant_id": tenant.id, "tenant_name": name})
    return tenant


def create_child_tenant(actor: ActorContext, parent_id, name: str) -> Tenant:
    """
    Create a department under ``parent_id`` (the actor's own tenant when None).

    Raises:
        Forbidden: the actor's role does not allow tenant.create
        ParentNotAccessible: parent outside the actor's scope (an unknown
            parent is outside every non-superuser scope)
        ValidationError: blank name, or parent does not exist
        DuplicateName: name already used by another tenant
    """
    if parent_id is None:
        parent_id = actor.tenant_id
    name = _clean_name(name)

    decision = authorize(actor, "tenant.create", parent_id)
    if not decision.allowed:
        if decision.reason == DenyReason.OUT_OF_SCOPE:
            raise ParentNotAccessible(reason=decision.reason)
        require(actor, "tenant.create", parent_id)

    pid = coerce_tenant_id(parent_id)
    if pid is None:
        raise ValidationError(f"Parent tenant {parent_id} does not exist.")

    try:
        with unit_of_work() as uow:
            try:
                parent = lock_tenant(pid, uow)
            except NotFound as exc:
                raise ValidationError(f"Parent tenant {pid} does not exist.") from exc
            if Tenant.objects.using(uow.using).name_taken(name):
                raise _duplicate_name(name)
            tenant = Tenant.objects.using(uow.using).create(name=name, parent=parent)
    except IntegrityError as exc:
        raise _duplicate_name(name) from exc

    logger.info(
        "tenant.created",
        extra={"tenant_id": tenant.id, "parent_id": pid, "actor_id": getattr(actor.user, "pk", None)},
    )
    return tenant


# =============================================================================
# Updates
# =============================================================================

def rename_tenant(actor: ActorContext, tenant_id, new_name: str) -> Tenant:
    """
    Rename a tenant inside the actor's scope.

    Scope is checked before existence, so an id outside the scope is
    Forbidden whether or not it exists.
    """
    require(actor, "tenant.rename", tenant_id)
    name = _clean_name(new_name)

    try:
        with unit_of_work() as uow:
            tenant = lock_tenant(tenant_id, uow)
            if tenant.name == name:
                return tenant
            if Tenant.objects.using(uow.using).name_taken(name, exclude_id=tenant.pk):
                raise _duplicate_name(name)
            old_name = tenant.name
            tenant.name = name
            tenant.save(using=uow.using, update_fields=["name", "updated_at"])
    except IntegrityError as exc:
        raise _duplicate_name(name) from exc

    logger.info(
        "tenant.renamed",
        extra={"tenant_id": tenant.id, "old_name": old_name, "new_name": name},
    )
    return tenant


def update_permissions(actor: ActorContext, tenant_id, new_own_permissions: Iterable[str]) -> Tenant:
    """
    Replace the tenant's own application grants.

    Every key must exist in the application registry. Descendants inherit
    the new set on their next resolution; the log entry records how many
    tenants that touches.

    Raises:
        UnknownPermissionKey: one or more keys are not registered
    """
    require(actor, "tenant.manage_permissions", tenant_id)

    keys = set(new_own_permissions or ())
    unknown = Application.objects.unknown_keys(keys)
    if unknown:
        raise UnknownPermissionKey(unknown)

    with unit_of_work() as uow:
        tenant = lock_tenant(tenant_id, uow)
        before = set(tenant.own_permissions.using(uow.using).values_list("permission_key", flat=True))
        tenant.own_permissions.set(
            Application.objects.using(uow.using).filter(permission_key__in=keys)
        )
        affected = ResolutionContext(using=uow.using).snapshot.descendants_of(tenant.pk)

    logger.info(
        "tenant.permissions_updated",
        extra={
            "tenant_id": tenant.pk,
            "added": sorted(keys - before),
            "removed": sorted(before - keys),
            "affected_tenants": len(affected),
        },
    )
    return tenant


# =============================================================================
# Deletion
# =============================================================================

def _blocking_conflict(tenant_id, using: str) -> Optional[Conflict]:
    children = Tenant.objects.using(using).count_children(tenant_id)
    if children:
        return Conflict(f"Cannot delete: {children} sub-departments exist.")
    users = Tenant.objects.using(using).count_users(tenant_id)
    if users:
        return Conflict(f"Cannot delete: {users} users belong to this department.")
    todos = Tenant.objects.using(using).count_todos(tenant_id)
    if todos:
        return Conflict(f"Cannot delete: {todos} todos are filed under this department.")
    return None


def delete_leaf_tenant(actor: ActorContext, tenant_id) -> int:
    """
    Delete a tenant that has no sub-tenants, no users and no todos.

    Nothing cascades. On the sequential fallback the counts are read again
    right before the delete.

    Returns:
        The deleted tenant id

    Raises:
        Conflict: children, users or todos exist
    """
    require(actor, "tenant.delete", tenant_id)

    try:
        with unit_of_work() as uow:
            tenant = lock_tenant(tenant_id, uow)
            conflict = _blocking_conflict(tenant.pk, uow.using)
            if conflict is None and not uow.atomic:
                conflict = _blocking_conflict(tenant.pk, uow.using)
            if conflict is not None:
                logger.warning(
                    "tenant.delete_blocked",
                    extra={"tenant_id": tenant.pk, "detail": conflict.message},
                )
                raise conflict
            deleted_id = tenant.pk
            tenant.delete(using=uow.using)
    except ProtectedError as exc:
        raise Conflict("Cannot delete: records still reference this department.") from exc

    logger.info("tenant.deleted", extra={"tenant_id": deleted_id})
    return deleted_id


def delete_root_with_direct_members(actor: ActorContext, tenant_id) -> CascadeDeletionResult:
    """
    Superuser deletion of a tenant, its direct users and their todos.

    Child tenants and their users are left in place; they keep the removed
    id as parent and surface as broken chains afterwards. Todos filed under
    the tenant but owned by users elsewhere are moved to their owner's
    tenant. The organization's Role rows go with the tenant; the log entry
    counts them.
    """
    from django.contrib.auth import get_user_model
    from tasks.models import Todo

    require_superuser(actor)
    User = get_user_model()

    with unit_of_work() as uow:
        tenant = lock_tenant(tenant_id, uow)
        if not tenant.is_root:
            logger.warning(
                "tenant.cascade_delete_non_root",
                extra={"tenant_id": tenant.pk, "parent_id": tenant.parent_id},
            )
        children = Tenant.objects.using(uow.using).count_children(tenant.pk)
        roles = tenant.roles.using(uow.using).count()

        user_ids = list(
            User.objects.using(uow.using).filter(tenant_id=tenant.pk).values_list("pk", flat=True)
        )
        todos_deleted, _ = Todo.objects.using(uow.using).filter(user_id__in=user_ids).delete()
        owner_tenant = User.objects.using(uow.using).filter(pk=OuterRef("user_id")).values("tenant_id")[:1]
        todos_moved = (
            Todo.objects.using(uow.using)
            .filter(tenant_id=tenant.pk)
            .update(tenant_id=Subquery(owner_tenant))
        )
        users_deleted = User.objects.using(uow.using).delete_by_tenant(tenant.pk)
        deleted_id = tenant.pk
        tenant.delete(using=uow.using)

    result = CascadeDeletionResult(
        tenant_id=deleted_id,
        users_deleted=users_deleted,
        todos_deleted=todos_deleted,
    )
    logger.info(
        "tenant.cascade_deleted",
        extra={
            "tenant_id": result.tenant_id,
            "users_deleted": users_deleted,
            "todos_deleted": todos_deleted,
            "todos_moved": todos_moved,
            "roles_deleted": roles,
            "orphaned_children": children,
        },
    )
    return result
