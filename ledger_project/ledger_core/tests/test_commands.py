from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase, override_settings

from ..models import (Account, Company, ImportedTransaction,
                      PaymentApplication, Transaction)
from ..services.matching import find_matches_for_bank_transaction


class DemoTenantCommandTests(TestCase):

    def setUp(self):
        self.out = StringIO()
        call_command("create_demo_tenant", company_name="Demo Ltd", stdout=self.out)
        self.company = Company.objects.get(slug="demo-ltd")

    def test_demo_tenant_is_created(self):
        self.assertIn("Demo tenant setup complete!", self.out.getvalue())
        self.assertTrue(self.company.memberships.filter(role="owner").exists())
        self.assertTrue(Account.objects.for_company(self.company).filter(code="1210").exists())

        invoice = Transaction.objects.get(company=self.company, reference="INV-1001")
        self.assertEqual(invoice.amount, Decimal("1130.00"))
        self.assertEqual(invoice.balance, Decimal("630.00"))
        bill = Transaction.objects.get(company=self.company, reference="BILL-2001")
        self.assertEqual(bill.balance, Decimal("100.00"))

    def test_demo_bank_row_matches_the_invoice(self):
        row = ImportedTransaction.objects.get(company=self.company)
        invoice = Transaction.objects.get(company=self.company, reference="INV-1001")
        # the row is for what is still open after the first payment
        self.assertEqual(row.amount, invoice.balance)
        best = find_matches_for_bank_transaction(row.pk)[0]
        self.assertEqual(best.transaction_id, invoice.pk)
        self.assertEqual(best.confidence, 100)

    def test_fix_all_balances_command(self):
        out = StringIO()
        call_command("fix_all_balances", company="demo-ltd", stdout=out)
        self.assertIn("accounts_fixed: 0", out.getvalue())
        self.assertIn("Balances rebuilt", out.getvalue())

    def test_unknown_company(self):
        with self.assertRaises(CommandError):
            call_command("fix_all_balances", company="nope", stdout=StringIO())

    def test_backfill_dry_run(self):
        out = StringIO()
        call_command("backfill_payment_applications", dry_run=True, stdout=out)
        self.assertIn("Demo Ltd: scanned 0, created 0, skipped 0", out.getvalue())
        self.assertIn("Dry run", out.getvalue())
        self.assertEqual(PaymentApplication.objects.filter(company=self.company).count(), 1)

    @override_settings(LEDGER={"EXCHANGE_RATE_API_KEY": ""})
    def test_refresh_without_api_key_fails(self):
        with self.assertRaises(CommandError):
            call_command("refresh_exchange_rates", currency="usd", stdout=StringIO())
