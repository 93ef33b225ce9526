from django.core.management.base import BaseCommand, CommandError

from ledger_core.exceptions import ExternalServiceError
from ledger_core.models import Company
from ledger_core.services.currency import fetch_exchange_rates


class Command(BaseCommand):
    help = "Fetch today's exchange rates for every home currency in use"

    def add_arguments(self, parser):
        parser.add_argument("--currency", type=str, help="Only refresh this home currency")

    def handle(self, *args, **options):
        if options["currency"]:
            homes = [options["currency"].upper()]
        else:
            homes = sorted(set(Company.objects.values_list("default_currency_id", flat=True)))

        for home in homes:
            try:
                stored = fetch_exchange_rates(home)
            except ExternalServiceError as exc:
                raise CommandError(str(exc)) from exc
            self.stdout.write(self.style.SUCCESS(f"{home}: stored {stored} rate(s)"))
