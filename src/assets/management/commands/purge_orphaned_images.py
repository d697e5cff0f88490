"""Management command to remove unreferenced asset image files."""

from datetime import timedelta

from django.core.management.base import BaseCommand

from assets.services.images import (
    find_orphaned_images,
    purge_orphaned_images,
)


class Command(BaseCommand):
    help = "Delete image files in ASSET_IMAGE_DIR that no asset references"

    def add_arguments(self, parser):
        parser.add_argument(
            "--min-age",
            type=int,
            default=60,
            help="Skip files modified within this many minutes (default 60)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List orphaned files without deleting them",
        )

    def handle(self, *args, **options):
        min_age = timedelta(minutes=options["min_age"])

        if options["dry_run"]:
            orphans = find_orphaned_images(min_age=min_age)
            for name in orphans:
                self.stdout.write(f"  {name}")
            self.stdout.write(f"{len(orphans)} orphaned image file(s) found")
            return

        count = purge_orphaned_images(min_age=min_age)
        self.stdout.write(
            self.style.SUCCESS(f"Removed {count} orphaned image file(s)")
        )
