import datetime
from decimal import Decimal

import httpx
from django.test import override_settings

from ..exceptions import ExternalServiceError, NotFoundError
from ..models import Account, Currency, ExchangeRate, FxRealization, FxRevaluation
from ..services.balances import verify_account_balances
from ..services.currency import (calculate_realized_gain_loss, can_change_currency,
                                 fetch_exchange_rates, foreign_currency_balances,
                                 get_exchange_rate, refresh_exchange_rates,
                                 revalue_foreign_balances, set_exchange_rate)
from ..services.payment import receive_payment
from ..services.posting import delete_transaction

from .helpers import LedgerTestCase


def provider(payload, status_code=200):
    def handler(request):
        return httpx.Response(status_code, json=payload)
    return httpx.Client(transport=httpx.MockTransport(handler))


class RealizedGainLossTests(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.ar_eur = self.eur_receivable()

    def pay_in_eur(self, invoice, amount, rate):
        return receive_payment(
            self.company, self.customer, self.today, self.bank, Decimal(amount),
            applications=[{"invoice_id": invoice.pk, "amount": Decimal(amount)}],
            currency="EUR", exchange_rate=rate,
        )

    def test_formula(self):
        self.assertEqual(calculate_realized_gain_loss(Decimal("135.00"), "1.35", "1.40"), Decimal("5.00"))
        self.assertEqual(calculate_realized_gain_loss(Decimal("135.00"), "1.35", "1.30"), Decimal("-5.00"))

    def test_payment_at_a_higher_rate_realizes_a_gain(self):
        invoice = self.make_invoice("100.00", currency="EUR", exchange_rate="1.35")
        payment = self.pay_in_eur(invoice, "100.00", "1.40")

        self.assertEqual(self.reload(invoice).balance, Decimal("0.00"))
        self.assertEqual(self.reload(invoice).status, "completed")
        self.assertEqual(self.balance(self.bank), Decimal("140.00"))
        self.assertEqual(self.balance(self.ar_eur), Decimal("0.00"))
        self.assertEqual(self.balance(self.fx_gain), Decimal("5.00"))

        realization = FxRealization.objects.get(invoice=invoice)
        self.assertEqual(realization.payment_id, payment.pk)
        self.assertEqual(realization.gain_loss_amount, Decimal("5.00"))
        self.assertEqual(realization.foreign_amount, Decimal("100.00"))
        self.assertEqual(payment.status, "completed")

    def test_payment_at_a_lower_rate_realizes_a_loss(self):
        invoice = self.make_invoice("100.00", currency="EUR", exchange_rate="1.35")
        self.pay_in_eur(invoice, "100.00", "1.30")
        self.assertEqual(self.balance(self.fx_loss), Decimal("5.00"))
        self.assertEqual(self.balance(self.ar_eur), Decimal("0.00"))
        self.assertEqual(self.balance(self.bank), Decimal("130.00"))

    def test_deleting_the_payment_reverses_the_realization(self):
        invoice = self.make_invoice("100.00", currency="EUR", exchange_rate="1.35")
        payment = self.pay_in_eur(invoice, "100.00", "1.40")
        delete_transaction(payment.pk)
        self.assertFalse(FxRealization.objects.exists())
        self.assertEqual(self.balance(self.fx_gain), Decimal("0.00"))
        self.assertEqual(self.balance(self.ar_eur), Decimal("135.00"))
        self.assertEqual(self.reload(invoice).balance, Decimal("135.00"))

    def test_payment_in_another_currency_is_rejected(self):
        from django.core.exceptions import ValidationError

        invoice = self.make_invoice("100.00", currency="EUR", exchange_rate="1.35")
        with self.assertRaises(ValidationError):
            self.pay_invoice(invoice, "135.00")


class RevaluationTests(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.ar_eur = self.eur_receivable()
        self.invoice = self.make_invoice("100.00", currency="EUR", exchange_rate="1.35")

    def test_open_balance_is_reported_at_its_booked_rate(self):
        [balance] = foreign_currency_balances(self.company, self.today)
        self.assertEqual(balance.account, self.ar_eur)
        self.assertEqual(balance.currency, "EUR")
        self.assertEqual(balance.foreign_balance, Decimal("100.00"))
        self.assertEqual(balance.home_balance, Decimal("135.00"))
        self.assertEqual(balance.weighted_rate, Decimal("1.35"))

    def test_only_the_change_since_the_last_run_is_posted(self):
        month_end = datetime.date(2025, 3, 31)
        set_exchange_rate("EUR", "USD", "1.40", month_end)

        journal = revalue_foreign_balances(self.company, month_end)
        self.assertIsNotNone(journal)
        self.assertEqual(journal.amount, Decimal("5.00"))
        self.assertEqual(self.balance(self.ar_eur), Decimal("140.00"))
        self.assertEqual(self.balance(self.fx_gain), Decimal("5.00"))

        self.assertIsNone(revalue_foreign_balances(self.company, month_end))

        next_month = datetime.date(2025, 4, 30)
        journal = revalue_foreign_balances(self.company, next_month, rates={"EUR": "1.30"})
        self.assertEqual(journal.amount, Decimal("10.00"))
        self.assertEqual(self.balance(self.fx_loss), Decimal("10.00"))
        self.assertEqual(self.balance(self.ar_eur), Decimal("130.00"))

        latest = FxRevaluation.objects.filter(revaluation_date=next_month).get()
        self.assertEqual(latest.unrealized_gain_loss, Decimal("-5.00"))
        self.assertEqual(latest.adjustment_amount, Decimal("-10.00"))

    def test_settlement_unwinds_earlier_revaluation(self):
        revalue_foreign_balances(self.company, datetime.date(2025, 3, 31), rates={"EUR": "1.40"})
        receive_payment(
            self.company, self.customer, datetime.date(2025, 4, 5), self.bank, Decimal("100.00"),
            applications=[{"invoice_id": self.invoice.pk, "amount": Decimal("100.00")}],
            currency="EUR", exchange_rate="1.40",
        )
        # the month-end adjustment is still on the books until the next run
        self.assertEqual(self.balance(self.ar_eur), Decimal("5.00"))
        self.assertEqual(foreign_currency_balances(self.company, datetime.date(2025, 4, 30)), [])

        journal = revalue_foreign_balances(
            self.company, datetime.date(2025, 4, 30), rates={"EUR": "1.40"})
        self.assertEqual(journal.amount, Decimal("5.00"))
        self.assertEqual(self.balance(self.ar_eur), Decimal("0.00"))
        self.assertEqual(self.balance(self.fx_gain), Decimal("5.00"))
        self.assertEqual(self.balance(self.fx_loss), Decimal("0.00"))
        self.assertEqual(self.balance(self.bank), Decimal("140.00"))
        self.assertEqual(verify_account_balances(self.company), [])

        closing = FxRevaluation.objects.get(journal=journal)
        self.assertEqual(closing.foreign_balance, Decimal("0.00"))
        self.assertEqual(closing.unrealized_gain_loss, Decimal("0.00"))
        self.assertEqual(closing.adjustment_amount, Decimal("-5.00"))

        self.assertIsNone(revalue_foreign_balances(self.company, datetime.date(2025, 5, 31)))

    def test_missing_rate_stops_the_run(self):
        with self.assertRaises(NotFoundError):
            revalue_foreign_balances(self.company, datetime.date(2025, 3, 31))
        self.assertFalse(FxRevaluation.objects.exists())


class CurrencyLockTests(LedgerTestCase):

    def test_contact_with_history_keeps_its_currency(self):
        self.assertTrue(can_change_currency(self.customer))
        self.make_invoice("10.00")
        self.assertFalse(can_change_currency(self.customer))

    def test_account_with_postings_keeps_its_currency(self):
        ar_eur = self.eur_receivable()
        self.assertTrue(can_change_currency(ar_eur))
        self.make_invoice("10.00", currency="EUR", exchange_rate="1.35")
        self.assertFalse(can_change_currency(Account.objects.get(pk=ar_eur.pk)))

    def test_other_entities_are_not_locked(self):
        with self.assertRaises(TypeError):
            can_change_currency(self.company)


class ExchangeRateTests(LedgerTestCase):

    def test_direct_and_inverse_lookup(self):
        set_exchange_rate("EUR", "USD", "1.25", self.today)
        self.assertEqual(get_exchange_rate("EUR", "USD", self.today), Decimal("1.25"))
        self.assertEqual(get_exchange_rate("USD", "EUR", self.today), Decimal("0.8"))
        self.assertEqual(get_exchange_rate("USD", "USD", self.today), Decimal("1"))

    def test_latest_rate_on_or_before_the_date(self):
        set_exchange_rate("EUR", "USD", "1.10", datetime.date(2025, 1, 1))
        set_exchange_rate("EUR", "USD", "1.20", datetime.date(2025, 2, 1))
        self.assertEqual(
            get_exchange_rate("EUR", "USD", datetime.date(2025, 1, 15)), Decimal("1.10"))
        self.assertEqual(get_exchange_rate("EUR", "USD", self.today), Decimal("1.20"))
        with self.assertRaises(NotFoundError):
            get_exchange_rate("EUR", "USD", datetime.date(2024, 12, 31))


@override_settings(LEDGER={"EXCHANGE_RATE_API_KEY": "k"})
class ProviderTests(LedgerTestCase):

    def setUp(self):
        super().setUp()
        Currency.objects.create(code="GBP", name="Pound Sterling", symbol="£")

    def test_rates_are_stored_as_foreign_to_home(self):
        client = provider({
            "result": "success",
            "conversion_rates": {"USD": 1, "EUR": 0.8, "GBP": 0.5, "XYZ": 3},
        })
        stored = fetch_exchange_rates("USD", self.today, client=client)
        self.assertEqual(stored, 2)
        self.assertEqual(get_exchange_rate("EUR", "USD", self.today), Decimal("1.25"))
        self.assertEqual(get_exchange_rate("GBP", "USD", self.today), Decimal("2"))
        self.assertFalse(ExchangeRate.objects.get(from_currency="EUR").is_manual)

    def test_manual_rate_for_the_day_is_kept(self):
        set_exchange_rate("EUR", "USD", "1.11", self.today)
        client = provider({"result": "success", "conversion_rates": {"EUR": 0.8}})
        self.assertEqual(fetch_exchange_rates("USD", self.today, client=client), 0)
        self.assertEqual(get_exchange_rate("EUR", "USD", self.today), Decimal("1.11"))

    def test_provider_error_is_raised(self):
        client = provider({"result": "error", "error-type": "invalid-key"})
        with self.assertRaises(ExternalServiceError):
            fetch_exchange_rates("USD", self.today, client=client)

    def test_http_failure_is_raised(self):
        client = provider({}, status_code=503)
        with self.assertRaises(ExternalServiceError):
            fetch_exchange_rates("USD", self.today, client=client)

    def test_refresh_degrades_to_zero(self):
        client = provider({}, status_code=503)
        self.assertEqual(refresh_exchange_rates("USD", self.today, client=client), 0)

    @override_settings(LEDGER={"EXCHANGE_RATE_API_KEY": ""})
    def test_missing_api_key(self):
        with self.assertRaises(ExternalServiceError):
            fetch_exchange_rates("USD", self.today)
