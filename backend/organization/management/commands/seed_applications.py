"""
Seed the application registry.

Usage:
    python manage.py seed_applications
    python manage.py seed_applications --dry-run

This is idempotent - applications whose permission_key already exists are
skipped.
"""
from django.core.management.base import BaseCommand

from organization.application_defaults import DEFAULT_APPLICATIONS
from organization.models import Application


class Command(BaseCommand):
    help = "Register the default applications that tenants can be granted"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be done without making changes",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]

        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN - no changes will be made\n"))

        existing = set(Application.objects.values_list("permission_key", flat=True))
        created = 0
        skipped = 0

        for app in DEFAULT_APPLICATIONS:
            key = app["permission_key"]
            if key in existing:
                self.stdout.write(f"  SKIP: {app['name']} ({key}) - already registered")
                skipped += 1
                continue

            if dry_run:
                self.stdout.write(f"  WOULD CREATE: {app['name']} ({key})")
            else:
                Application.objects.create(**app)
                self.stdout.write(f"  CREATED: {app['name']} ({key})")
            created += 1

        verb = "Would create" if dry_run else "Created"
        self.stdout.write(self.style.SUCCESS(f"Done! {verb} {created}, skipped {skipped}."))
