from django.core.management.base import BaseCommand, CommandError

from ledger_core.models import Company
from ledger_core.services.legacy import backfill_payment_applications


class Command(BaseCommand):
    help = "Create payment applications from allocations recorded in transaction descriptions"

    def add_arguments(self, parser):
        parser.add_argument("--company", type=str, help="Company slug (default: all companies)")
        parser.add_argument("--dry-run", action="store_true",
                            help="Report what would be created without writing")

    def handle(self, *args, **options):
        companies = Company.objects.all()
        if options["company"]:
            companies = companies.filter(slug=options["company"])
            if not companies.exists():
                raise CommandError(f"No company with slug {options['company']!r}")

        for company in companies.order_by("pk"):
            summary = backfill_payment_applications(company, dry_run=options["dry_run"])
            self.stdout.write(
                f"{company.name}: scanned {summary['scanned']}, "
                f"created {summary['created']}, skipped {summary['skipped']}"
            )
        if options["dry_run"]:
            self.stdout.write(self.style.WARNING("Dry run, nothing was written"))
        else:
            self.stdout.write(self.style.SUCCESS("Backfill complete"))
