# accounts/role_defaults.py

ACTIONS = (
    # Organization tree
    "tenant.view",
    "tenant.create",
    "tenant.rename",
    "tenant.delete",
    "tenant.manage_permissions",

    # Users
    "user.view",
    "user.create",
    "user.manage",
    "user.relocate",

    # Roles
    "role.view",
    "role.manage",

    # Tasks
    "todo.view",
    "todo.manage",
)

# Roles seeded for every new organization. A Role row with the same name
# overrides these; names with no row fall back to this table.
ROLE_DEFAULTS = {
    "admin": {
        "tenant.view",
        "tenant.create",
        "tenant.rename",
        "tenant.delete",
        "tenant.manage_permissions",

        "user.view",
        "user.create",
        "user.manage",
        "user.relocate",

        "role.view",
        "role.manage",

        "todo.view",
        "todo.manage",
    },
    "user": {
        "tenant.view",

        "todo.view",
        "todo.manage",
    },
}

ROLE_DESCRIPTIONS = {
    "admin": "Administrator",
    "user": "Member",
}


def all_action_codes() -> set[str]:
    return set(ACTIONS)


def unknown_actions(actions) -> set[str]:
    return set(actions) - all_action_codes()
