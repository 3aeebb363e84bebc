"""
Todos owned by users and attributed to a tenant.

Listings are always scoped by the hierarchy:

    Todo.objects.accessible_from(actor.tenant_id)
"""
from django.conf import settings
from django.db import models

from organization.scope import scope_queryset


class TodoQuerySet(models.QuerySet):
    def accessible_from(self, tenant_id, context=None):
        """Todos attributed to ``tenant_id`` or any tenant beneath it."""
        return scope_queryset(self, tenant_id, field="tenant", context=context)

    def owned_by(self, user):
        return self.filter(user=user)

    def open(self):
        return self.filter(completed=False)


class Todo(models.Model):
    class Priority(models.TextChoices):
        HIGH = "high", "High"
        MEDIUM = "medium", "Medium"
        LOW = "low", "Low"

    text = models.CharField(max_length=500)
    completed = models.BooleanField(default=False)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    due_date = models.DateField(null=True, blank=True)
    scheduled_date = models.DateField(null=True, blank=True)
    tags = models.JSONField(default=list, blank=True)

    tenant = models.ForeignKey(
        "organization.Tenant",
        on_delete=models.PROTECT,
        related_name="todos",
        help_text="Tenant the todo is filed under. Follows its owner on relocation.",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="todos",
        help_text="Owner of the todo.",
    )
    creator = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="created_todos",
    )
    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="requested_todos",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TodoQuerySet.as_manager()

    class Meta:
        ordering = ["completed", "due_date", "id"]
        indexes = [
            models.Index(fields=["tenant", "completed"], name="todo_tenant_completed_idx"),
        ]

    def __str__(self):
        return self.text
