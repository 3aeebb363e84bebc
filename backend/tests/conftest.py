# tests/conftest.py
"""
Pytest fixtures for the tenant hierarchy tests.

The default tree:

    Acme (root)
    ├── Sales
    │   └── Sales East
    └── Support

plus an unrelated organization "Globex" and a "Platform" root that hosts
the superuser.
"""

import pytest
from django.contrib.auth import get_user_model

from accounts.authz import ActorContext, resolve_actor
from organization.models import Application, Tenant


User = get_user_model()


# =============================================================================
# Application registry
# =============================================================================

@pytest.fixture
def applications(db):
    """Register the applications used across tests, keyed by permission_key."""
    apps = {}
    for key, name in (
        ("CAN_USE_HIYARI", "Hiyari-Navi"),
        ("CAN_USE_TODO", "Todo"),
        ("CAN_USE_SCHEDULE", "Schedule"),
    ):
        apps[key] = Application.objects.create(permission_key=key, name=name)
    return apps


# =============================================================================
# Tenant tree
# =============================================================================

@pytest.fixture
def root(db):
    return Tenant.objects.create(name="Acme")


@pytest.fixture
def sales(root):
    return Tenant.objects.create(name="Sales", parent=root)


@pytest.fixture
def sales_east(sales):
    return Tenant.objects.create(name="Sales East", parent=sales)


@pytest.fixture
def support(root):
    return Tenant.objects.create(name="Support", parent=root)


@pytest.fixture
def tree(root, sales, sales_east, support):
    return {"root": root, "sales": sales, "sales_east": sales_east, "support": support}


@pytest.fixture
def other_org(db):
    return Tenant.objects.create(name="Globex")


@pytest.fixture
def platform(db):
    return Tenant.objects.create(name="Platform")


# =============================================================================
# Users & actors
# =============================================================================

@pytest.fixture
def make_user(db):
    """Factory: make_user(tenant, "a@test.com", roles=["admin"])."""
    counter = {"n": 0}

    def _make(tenant, email=None, roles=("user",), **extra):
        counter["n"] += 1
        email = email or f"user{counter['n']}@test.com"
        return User.objects.create_user(
            email=email,
            password="testpass123",
            name=email.split("@")[0],
            tenant=tenant,
            roles=list(roles),
            **extra,
        )

    return _make


@pytest.fixture
def root_admin(make_user, root):
    return make_user(root, "admin@acme.test", roles=["admin", "user"])


@pytest.fixture
def sales_admin(make_user, sales):
    return make_user(sales, "sales-admin@acme.test", roles=["admin", "user"])


@pytest.fixture
def sales_member(make_user, sales):
    return make_user(sales, "member@acme.test", roles=["user"])


@pytest.fixture
def superuser(make_user, platform):
    return make_user(platform, "root@platform.test", roles=["superuser"])


@pytest.fixture
def root_admin_actor(root_admin) -> ActorContext:
    return resolve_actor(root_admin)


@pytest.fixture
def sales_admin_actor(sales_admin) -> ActorContext:
    return resolve_actor(sales_admin)


@pytest.fixture
def sales_member_actor(sales_member) -> ActorContext:
    return resolve_actor(sales_member)


@pytest.fixture
def superuser_actor(superuser) -> ActorContext:
    return resolve_actor(superuser)
