# accounts/commands.py
"""
Command layer for users and roles.

ALL security-critical account mutations go through these commands:
- Organization registration (root tenant + roles + owner)
- User creation and relocation between tenants
- Application grants to users
- Role management

Every command takes the acting ActorContext first (registration excepted),
authorizes against the target tenant and writes inside one unit of work.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db import IntegrityError

from accounts.authz import ActorContext, require
from accounts.models import Role
from accounts.role_defaults import ROLE_DEFAULTS, ROLE_DESCRIPTIONS, unknown_actions
from organization.commands import create_root_tenant, lock_tenant
from organization.context import ResolutionContext, ensure_context
from organization.errors import (
    DuplicateName,
    Forbidden,
    NotFound,
    UnknownPermissionKey,
    ValidationError,
)
from organization.inheritance import check_grantable
from organization.models import Application, Tenant
from organization.scope import accessible_tenant_ids, coerce_tenant_id
from organization.transactions import UnitOfWork, unit_of_work

logger = logging.getLogger(__name__)

User = get_user_model()


@dataclass(frozen=True)
class RegistrationResult:
    tenant: Tenant
    user: object


@dataclass
class ImportRowResult:
    index: int
    errors: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _clean_email(email) -> str:
    email = email.strip().lower() if isinstance(email, str) else ""
    try:
        validate_email(email)
    except DjangoValidationError as exc:
        raise ValidationError("A valid email address is required.") from exc
    return email


def _check_password(password, user=None) -> None:
    try:
        validate_password(password or "", user=user)
    except DjangoValidationError as exc:
        raise ValidationError(" ".join(exc.messages)) from exc


def _duplicate_email(email: str) -> DuplicateName:
    return DuplicateName(f"The email address '{email}' is already registered.")


def _get_user(user_id, uow: UnitOfWork):
    qs = User.objects.using(uow.using)
    if uow.atomic:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=user_id)
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"User {user_id} not found.")


def _organization_id(tenant_id, context: Optional[ResolutionContext] = None) -> int:
    ctx = ensure_context(context)
    tid = coerce_tenant_id(tenant_id)
    if tid is None or tid not in ctx.snapshot:
        raise NotFound(f"Tenant {tenant_id} not found.")
    return ctx.snapshot.root_of(tid)


def assignable_role_names(tenant_id, context: Optional[ResolutionContext] = None) -> set[str]:
    """Role names usable for users of ``tenant_id``'s organization."""
    org_id = _organization_id(tenant_id, context)
    names = set(Role.objects.filter(organization_id=org_id).values_list("name", flat=True))
    return names | set(ROLE_DEFAULTS)


def _check_roles(actor: ActorContext, roles: Iterable[str], tenant_id) -> list[str]:
    roles = sorted(set(roles) | {"user"})
    superuser_role = settings.ORGANIZATION_SUPERUSER_ROLE
    if superuser_role in roles and not actor.is_superuser:
        raise Forbidden(f"Only a superuser can assign the '{superuser_role}' role.")

    unknown = set(roles) - assignable_role_names(tenant_id) - {superuser_role}
    if unknown:
        raise ValidationError(f"Unknown role(s): {', '.join(sorted(unknown))}")
    return roles


# =============================================================================
# Registration (Tenant + Roles + owner User atomic creation)
# =============================================================================

def register_organization(tenant_name: str, email: str, password: str, name: str = "") -> RegistrationResult:
    """
    Register a new organization with its first administrator.

    Atomically:
    1. Creates the root tenant
    2. Creates its default roles (admin, user)
    3. Creates the owner user holding the admin role

    Raises:
        ValidationError: blank tenant name, bad email or weak password
        DuplicateName: tenant name or email already taken
    """
    email = _clean_email(email)
    _check_password(password)

    try:
        with unit_of_work() as uow:
            if User.objects.using(uow.using).filter(email__iexact=email).exists():
                raise _duplicate_email(email)

            tenant = create_root_tenant(tenant_name)
            for role_name, actions in ROLE_DEFAULTS.items():
                Role.objects.using(uow.using).create(
                    organization=tenant,
                    name=role_name,
                    description=ROLE_DESCRIPTIONS.get(role_name, ""),
                    actions=sorted(actions),
                )
            user = User.objects.db_manager(uow.using).create_user(
                email=email,
                password=password,
                name=(name or "").strip() or email.split("@")[0],
                tenant=tenant,
                roles=["admin", "user"],
            )
    except IntegrityError as exc:
        raise _duplicate_email(email) from exc

    logger.info(
        "organization.registered",
        extra={"tenant_id": tenant.pk, "user_id": user.pk},
    )
    return RegistrationResult(tenant=tenant, user=user)


# =============================================================================
# Users
# =============================================================================

def create_user(
    actor: ActorContext,
    tenant_id,
    email: str,
    password: str,
    name: str = "",
    roles: Optional[Iterable[str]] = None,
):
    """
    Create a user in a tenant inside the actor's scope.

    Every user holds the ``user`` role in addition to ``roles``.

    Raises:
        Forbidden: role or scope violation, or assigning the superuser role
        NotFound: tenant does not exist (superuser actors only)
        DuplicateName: email already registered
    """
    require(actor, "user.create", tenant_id)
    email = _clean_email(email)
    _check_password(password)

    try:
        with unit_of_work() as uow:
            tenant = lock_tenant(tenant_id, uow)
            role_names = _check_roles(actor, roles or (), tenant.pk)
            if User.objects.using(uow.using).filter(email__iexact=email).exists():
                raise _duplicate_email(email)
            user = User.objects.db_manager(uow.using).create_user(
                email=email,
                password=password,
                name=(name or "").strip() or email.split("@")[0],
                tenant=tenant,
                roles=role_names,
            )
    except IntegrityError as exc:
        raise _duplicate_email(email) from exc

    logger.info(
        "user.created",
        extra={"user_id": user.pk, "tenant_id": tenant.pk, "roles": role_names},
    )
    return user


def relocate_user(actor: ActorContext, user_id, target_tenant_id):
    """
    Move a user to another tenant.

    Both the user's current tenant and the target must be in the actor's
    scope. Application grants the user holds must still be available at
    the target unless the actor is a superuser.
    Todos the user owns under the old tenant move along.
    """
    with unit_of_work() as uow:
        user = _get_user(user_id, uow)
        ctx = ResolutionContext(using=uow.using)
        require(actor, "user.relocate", user.tenant_id, ctx)
        require(actor, "user.relocate", target_tenant_id, ctx)

        target = lock_tenant(target_tenant_id, uow)
        if target.pk == user.tenant_id:
            return user

        if not actor.is_superuser:
            missing = check_grantable(target.pk, user.permissions or (), ctx)
            if missing:
                raise Forbidden(
                    "The user holds applications not available in the target department: "
                    + ", ".join(sorted(missing))
                )

        source_id = user.tenant_id
        user.tenant = target
        user.save(using=uow.using, update_fields=["tenant"])
        todos_moved = user.todos.using(uow.using).filter(tenant_id=source_id).update(tenant=target)

    logger.info(
        "user.relocated",
        extra={
            "user_id": user.pk,
            "from_tenant_id": source_id,
            "to_tenant_id": target.pk,
            "todos_moved": todos_moved,
        },
    )
    return user


def grant_user_permissions(actor: ActorContext, user_id, keys: Iterable[str]):
    """
    Replace the applications granted to a user.

    Raises:
        UnknownPermissionKey: a key is not registered
        Forbidden: a key is not available to the user's tenant (non-superusers)
    """
    keys = sorted(set(keys or ()))
    unknown = Application.objects.unknown_keys(keys)
    if unknown:
        raise UnknownPermissionKey(unknown)

    with unit_of_work() as uow:
        user = _get_user(user_id, uow)
        ctx = ResolutionContext(using=uow.using)
        require(actor, "user.manage", user.tenant_id, ctx)

        if not actor.is_superuser:
            missing = check_grantable(user.tenant_id, keys, ctx)
            if missing:
                raise Forbidden(
                    "Applications not available to this department cannot be granted: "
                    + ", ".join(sorted(missing))
                )

        user.permissions = keys
        user.save(using=uow.using, update_fields=["permissions"])

    logger.info("user.permissions_granted", extra={"user_id": user.pk, "keys": keys})
    return user


def validate_import_rows(actor: ActorContext, rows: Iterable[dict]) -> list[ImportRowResult]:
    """
    Validate parsed bulk-import rows before anything is written.

    Each row is a mapping with ``email``, ``tenant_id`` and optional
    ``permissions``. One ResolutionContext serves the whole batch.
    """
    rows = list(rows)
    ctx = ResolutionContext()
    if actor.is_superuser:
        scope = set(ctx.snapshot.ids())
    else:
        scope = set(accessible_tenant_ids(actor.tenant_id, ctx))

    emails = [
        row.get("email").strip().lower()
        for row in rows
        if isinstance(row.get("email"), str)
    ]
    taken = set(
        User.objects.filter(email__in=emails).values_list("email", flat=True)
    )
    registry = set(Application.objects.values_list("permission_key", flat=True))

    results = []
    seen_emails = set()
    for index, row in enumerate(rows):
        result = ImportRowResult(index=index)

        email = row.get("email")
        email = email.strip().lower() if isinstance(email, str) else ""
        if not email:
            result.errors.append("email is required")
        elif email in taken:
            result.errors.append(f"email {email} is already registered")
        elif email in seen_emails:
            result.errors.append(f"email {email} appears more than once")
        seen_emails.add(email)

        tenant_id = coerce_tenant_id(row.get("tenant_id"))
        if tenant_id is None or tenant_id not in scope:
            result.errors.append(f"tenant {row.get('tenant_id')} is not accessible")
        else:
            keys = set(row.get("permissions") or ())
            unknown = keys - registry
            if unknown:
                result.errors.append(f"unknown permission key(s): {', '.join(sorted(unknown))}")
            if not actor.is_superuser:
                missing = check_grantable(tenant_id, keys - unknown, ctx)
                if missing:
                    result.errors.append(
                        f"not available to tenant {tenant_id}: {', '.join(sorted(missing))}"
                    )

        results.append(result)

    invalid = sum(1 for r in results if not r.ok)
    if invalid:
        logger.info("user.import_rejected_rows", extra={"rows": len(results), "invalid": invalid})
    return results


# =============================================================================
# Roles
# =============================================================================

def _clean_role_name(name) -> str:
    cleaned = name.strip() if isinstance(name, str) else ""
    if not cleaned:
        raise ValidationError("Role name is required.")
    return cleaned


def _clean_actions(actions) -> list[str]:
    actions = set(actions or ())
    unknown = unknown_actions(actions)
    if unknown:
        raise ValidationError(f"Unknown action(s): {', '.join(sorted(unknown))}")
    return sorted(actions)


def _duplicate_role(name: str) -> DuplicateName:
    return DuplicateName(f"A role named '{name}' already exists in this organization.")


def roles_for_tenant(tenant_id, context: Optional[ResolutionContext] = None):
    """Role rows of the organization ``tenant_id`` belongs to."""
    return Role.objects.filter(organization_id=_organization_id(tenant_id, context))


def create_role(
    actor: ActorContext,
    name: str,
    description: str = "",
    actions: Iterable[str] = (),
    organization_id=None,
) -> Role:
    """
    Create a role in the actor's organization.

    ``organization_id`` defaults to the root of the actor's tenant.
    """
    org_id = _organization_id(organization_id if organization_id is not None else actor.tenant_id)
    require(actor, "role.manage", org_id)
    name = _clean_role_name(name)
    actions = _clean_actions(actions)

    try:
        with unit_of_work() as uow:
            organization = lock_tenant(org_id, uow)
            if Role.objects.using(uow.using).filter(organization=organization, name=name).exists():
                raise _duplicate_role(name)
            role = Role.objects.using(uow.using).create(
                organization=organization,
                name=name,
                description=(description or "").strip(),
                actions=actions,
            )
    except IntegrityError as exc:
        raise _duplicate_role(name) from exc

    logger.info("role.created", extra={"role_id": role.pk, "organization_id": org_id, "role_name": name})
    return role


def update_role(
    actor: ActorContext,
    role_id,
    name: Optional[str] = None,
    description: Optional[str] = None,
    actions: Optional[Iterable[str]] = None,
) -> Role:
    """Update a role's name, description or actions. Omitted fields are unchanged."""
    try:
        role = Role.objects.get(pk=role_id)
    except (Role.DoesNotExist, ValueError, TypeError):
        raise NotFound(f"Role {role_id} not found.")
    require(actor, "role.manage", role.organization_id)

    updates = {}
    if name is not None:
        updates["name"] = _clean_role_name(name)
    if description is not None:
        updates["description"] = description.strip()
    if actions is not None:
        updates["actions"] = _clean_actions(actions)
    if not updates:
        return role

    try:
        with unit_of_work() as uow:
            role = Role.objects.using(uow.using).select_for_update().get(pk=role.pk) if uow.atomic else role
            new_name = updates.get("name")
            if new_name and new_name != role.name and Role.objects.using(uow.using).filter(
                organization_id=role.organization_id, name=new_name
            ).exists():
                raise _duplicate_role(new_name)
            for attr, value in updates.items():
                setattr(role, attr, value)
            role.save(using=uow.using, update_fields=[*updates, "updated_at"])
    except IntegrityError as exc:
        raise _duplicate_role(updates.get("name", role.name)) from exc

    logger.info("role.updated", extra={"role_id": role.pk, "fields": sorted(updates)})
    return role
