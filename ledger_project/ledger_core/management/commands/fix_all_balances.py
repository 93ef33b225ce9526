from django.core.management.base import BaseCommand, CommandError

from ledger_core.models import Company
from ledger_core.services.balances import fix_all_balances


class Command(BaseCommand):
    help = "Rebuild cached account, document and credit balances from the ledger"

    def add_arguments(self, parser):
        parser.add_argument("--company", type=str, help="Company slug (default: all companies)")

    def handle(self, *args, **options):
        company = None
        if options["company"]:
            company = Company.objects.filter(slug=options["company"]).first()
            if company is None:
                raise CommandError(f"No company with slug {options['company']!r}")

        summary = fix_all_balances(company)
        for key, value in summary.items():
            self.stdout.write(f"{key}: {value}")
        self.stdout.write(self.style.SUCCESS("Balances rebuilt"))
