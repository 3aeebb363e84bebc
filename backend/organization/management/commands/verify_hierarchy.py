"""
Verify the tenant hierarchy.

Reports every parent reference to a missing tenant (broken chain) and every
cycle. Exits non-zero when any issue is found, so it can gate deploys.

Usage:
    python manage.py verify_hierarchy
"""
from django.core.management.base import BaseCommand, CommandError

from organization.hierarchy import HierarchySnapshot


class Command(BaseCommand):
    help = "Check the tenant hierarchy for cycles and broken parent references"

    def handle(self, *args, **options):
        snapshot = HierarchySnapshot.load()
        issues = snapshot.integrity_issues()

        self.stdout.write(f"Checked {len(snapshot)} tenants")

        if not issues:
            self.stdout.write(self.style.SUCCESS("OK: no cycles or broken chains"))
            return

        for issue in issues:
            self.stdout.write(self.style.ERROR(f"  {issue.kind.upper()}: {issue.detail}"))

        raise CommandError(f"{len(issues)} hierarchy issue(s) found")
