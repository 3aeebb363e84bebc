# organization/application_defaults.py

# Applications registered by `manage.py seed_applications`.
# permission_key is the value stored in tenant and user grants.
DEFAULT_APPLICATIONS = (
    {
        "permission_key": "CAN_USE_HIYARI",
        "name": "Hiyari-Navi",
        "description": "Record and share near-miss incidents to raise safety awareness.",
    },
    {
        "permission_key": "CAN_USE_TODO",
        "name": "Todo",
        "description": "Personal and requested tasks with due dates and tags.",
    },
    {
        "permission_key": "CAN_USE_SCHEDULE",
        "name": "Schedule",
        "description": "Shared team calendar.",
    },
)


def default_permission_keys() -> set[str]:
    return {app["permission_key"] for app in DEFAULT_APPLICATIONS}
