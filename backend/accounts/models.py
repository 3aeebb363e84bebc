from django.conf import settings
from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models
from django.utils.translation import gettext_lazy as _


def default_roles():
    return ["user"]


class UserQuerySet(models.QuerySet):
    def count_by_tenant(self, tenant_id) -> int:
        return self.filter(tenant_id=tenant_id).count()

    def delete_by_tenant(self, tenant_id) -> int:
        """Delete every user directly in ``tenant_id``; return how many."""
        _, per_model = self.filter(tenant_id=tenant_id).delete()
        return per_model.get(self.model._meta.label, 0)


class UserManager(BaseUserManager.from_queryset(UserQuerySet)):
    use_in_migrations = True

    def _create_user(self, email, password, **extra_fields):
        if not email:
            raise ValueError("The given email must be set")
        email = self.normalize_email(email).lower()
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_user(self, email, password=None, **extra_fields):
        extra_fields.setdefault("is_staff", False)
        extra_fields.setdefault("is_superuser", False)
        return self._create_user(email, password, **extra_fields)

    def create_superuser(self, email, password, **extra_fields):
        extra_fields.setdefault("is_staff", True)
        extra_fields.setdefault("is_superuser", True)

        if extra_fields.get("is_staff") is not True:
            raise ValueError("Superuser must have is_staff=True.")
        if extra_fields.get("is_superuser") is not True:
            raise ValueError("Superuser must have is_superuser=True.")

        roles = list(extra_fields.get("roles") or [])
        if settings.ORGANIZATION_SUPERUSER_ROLE not in roles:
            roles.append(settings.ORGANIZATION_SUPERUSER_ROLE)
        extra_fields["roles"] = roles

        return self._create_user(email, password, **extra_fields)


class User(AbstractUser):
    class Status(models.TextChoices):
        ACTIVE = "active", _("Active")
        INACTIVE = "inactive", _("Inactive")
        SUSPENDED = "suspended", _("Suspended")

    username = None
    email = models.EmailField("email address", unique=True)
    name = models.CharField(max_length=150)

    tenant = models.ForeignKey(
        "organization.Tenant",
        on_delete=models.PROTECT,
        related_name="users",
    )
    roles = models.JSONField(default=default_roles, blank=True)
    permissions = models.JSONField(
        default=list,
        blank=True,
        help_text="Application keys granted to this user; must be available to the tenant.",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    force_password_reset = models.BooleanField(default=False)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = ["name", "tenant"]

    objects = UserManager()

    def __str__(self):
        return self.email


class Role(models.Model):
    """
    A named set of actions, scoped to an organization (root tenant).
    """

    organization = models.ForeignKey(
        "organization.Tenant",
        on_delete=models.CASCADE,
        related_name="roles",
        help_text="Root tenant of the organization that owns this role.",
    )
    name = models.CharField(max_length=100)
    description = models.CharField(max_length=255, blank=True, default="")
    actions = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Role")
        verbose_name_plural = _("Roles")
        ordering = ["organization_id", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["organization", "name"],
                name="role_unique_name_per_organization",
            ),
        ]

    def __str__(self):
        return self.name
