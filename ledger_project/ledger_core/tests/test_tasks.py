from decimal import Decimal
from unittest import mock

from django.test import override_settings

from .. import tasks
from ..exceptions import ExternalServiceError
from ..models import Account, Transaction

from .helpers import LedgerTestCase


class RepairTaskTests(LedgerTestCase):

    def test_fix_all_balances_for_one_company(self):
        invoice = self.make_invoice("100.00")
        Account.objects.filter(pk=self.ar.pk).update(balance=Decimal("0.00"))
        Transaction.objects.filter(pk=invoice.pk).update(balance=Decimal("0.00"))

        summary = tasks.fix_all_balances(self.company.pk)
        self.assertEqual(summary["accounts_fixed"], 1)
        self.assertEqual(summary["documents_fixed"], 1)
        self.assertEqual(self.balance(self.ar), Decimal("100.00"))

    def test_fix_all_balances_is_repeatable(self):
        self.make_invoice("100.00")
        tasks.fix_all_balances()
        self.assertEqual(
            tasks.fix_all_balances(),
            {"accounts_fixed": 0, "documents_fixed": 0, "credits_fixed": 0},
        )

    def test_batch_recalculation(self):
        self.make_invoice("100.00")
        self.assertEqual(
            tasks.batch_recalculate_invoice_balances(self.company.pk), {"checked": 1, "updated": 0})


class ExchangeRateTaskTests(LedgerTestCase):

    @override_settings(LEDGER={"EXCHANGE_RATE_API_KEY": ""})
    def test_provider_failure_records_zero(self):
        self.assertEqual(tasks.refresh_exchange_rates("USD"), {"USD": 0})

    def test_every_home_currency_is_refreshed(self):
        with mock.patch("ledger_core.services.currency.fetch_exchange_rates", return_value=3) as fetch:
            self.assertEqual(tasks.refresh_exchange_rates(), {"USD": 3})
        fetch.assert_called_once_with("USD")

    def test_failure_for_one_currency_does_not_stop_the_rest(self):
        from ..models import Company

        Company.objects.create(name="Euro Co", default_currency=self.eur)
        outcomes = {"EUR": ExternalServiceError("exchange-rate", "down"), "USD": 4}

        def fake_fetch(home):
            outcome = outcomes[home]
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        with mock.patch("ledger_core.services.currency.fetch_exchange_rates", side_effect=fake_fetch):
            self.assertEqual(tasks.refresh_exchange_rates(), {"EUR": 0, "USD": 4})
