"""
Organization models: the tenant forest and the application registry.

Tenant rows form a forest through ``parent``. The link is not a
database constraint. The superuser deletion path removes a root without
touching its sub-tenants, which then keep pointing at the removed id. The
hierarchy resolver reports those as broken chains.
"""
from django.apps import apps
from django.contrib.auth import get_user_model
from django.db import models


class ApplicationQuerySet(models.QuerySet):
    def is_valid_permission_key(self, key: str) -> bool:
        return self.filter(permission_key=key).exists()

    def unknown_keys(self, keys) -> set[str]:
        """Return the subset of ``keys`` that is not in the registry."""
        keys = set(keys)
        if not keys:
            return set()
        known = set(
            self.filter(permission_key__in=keys).values_list("permission_key", flat=True)
        )
        return keys - known


class Application(models.Model):
    """
    A grantable application (capability) in the closed registry.

    Tenants and users may only hold permission keys that exist here.
    """

    permission_key = models.CharField(max_length=100, unique=True)
    name = models.CharField(max_length=150)
    description = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ApplicationQuerySet.as_manager()

    class Meta:
        ordering = ["permission_key"]

    def __str__(self):
        return f"{self.name} ({self.permission_key})"


class TenantQuerySet(models.QuerySet):
    def find_by_id(self, tenant_id):
        return self.filter(pk=tenant_id).first()

    def find_by_parent(self, parent_id):
        return self.filter(parent_id=parent_id).order_by("id")

    def count_children(self, tenant_id) -> int:
        return self.filter(parent_id=tenant_id).count()

    def count_users(self, tenant_id) -> int:
        return get_user_model().objects.count_by_tenant(tenant_id)

    def count_todos(self, tenant_id) -> int:
        Todo = apps.get_model("tasks", "Todo")
        return Todo.objects.using(self.db).filter(tenant_id=tenant_id).count()

    def name_taken(self, name: str, exclude_id=None) -> bool:
        qs = self.filter(name=name)
        if exclude_id is not None:
            qs = qs.exclude(pk=exclude_id)
        return qs.exists()


class Tenant(models.Model):
    """
    An organizational unit: company (root), department or sub-department.
    """

    name = models.CharField(max_length=150, unique=True)

    parent = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name="children",
        help_text="Parent tenant. Empty for organization roots.",
    )

    own_permissions = models.ManyToManyField(
        Application,
        blank=True,
        related_name="granted_tenants",
        help_text="Applications granted directly to this tenant (not inherited).",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TenantQuerySet.as_manager()

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return self.name

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def own_permission_keys(self) -> frozenset[str]:
        return frozenset(self.own_permissions.values_list("permission_key", flat=True))
