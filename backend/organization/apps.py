import logging
import sys

from django.apps import AppConfig
from django.conf import settings


logger = logging.getLogger(__name__)


class OrganizationConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "organization"
    verbose_name = "Tenant Hierarchy"

    def ready(self):
        """
        Run the startup integrity check of the tenant hierarchy.

        Behavior controlled by ORGANIZATION_HIERARCHY_CHECK:
        - "error": Raises RuntimeError on cycles or broken chains
        - "warn" (default): Logs the issues but allows startup
        - "skip": Skips check entirely (tests)
        """
        if "migrate" in sys.argv or "makemigrations" in sys.argv:
            return

        mode = getattr(settings, "ORGANIZATION_HIERARCHY_CHECK", "warn")
        if mode == "skip":
            logger.debug("Hierarchy check skipped (ORGANIZATION_HIERARCHY_CHECK=skip)")
            return

        from django.db import connection
        from django.db.utils import OperationalError, ProgrammingError

        try:
            tables = set(connection.introspection.table_names())
        except (OperationalError, ProgrammingError):
            logger.debug("Hierarchy check skipped (database not ready)")
            return
        if "organization_tenant" not in tables:
            logger.debug("Hierarchy check skipped (tables not yet created)")
            return

        self._check_hierarchy(mode)

    def _check_hierarchy(self, mode: str):
        from organization.hierarchy import HierarchySnapshot

        snapshot = HierarchySnapshot.load()
        issues = snapshot.integrity_issues()
        if not issues:
            logger.info(
                "Hierarchy check passed: %s tenants, no cycles or broken chains",
                len(snapshot),
            )
            return

        message = (
            f"HIERARCHY CHECK FAILED ({len(issues)} issues):\n"
            + "\n".join(f"  - [{issue.kind}] {issue.detail}" for issue in issues[:20])
            + "\nRun: python manage.py verify_hierarchy"
        )
        if mode == "error":
            raise RuntimeError(message)
        logger.warning(message)
