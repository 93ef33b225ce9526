from decimal import Decimal

from ..models import PaymentApplication
from ..services.legacy import backfill_payment_applications, parse_applied_amounts

from .helpers import LedgerTestCase


class ParseAppliedAmountsTests(LedgerTestCase):

    def test_amount_to_invoice(self):
        [found] = parse_applied_amounts("Applied $2,500.00 to invoice #1009")
        self.assertEqual(found.amount, Decimal("2500.00"))
        self.assertEqual(found.invoice_ref, "1009")
        self.assertIsNone(found.source_ref)

    def test_credit_from_a_named_source(self):
        [found] = parse_applied_amounts(
            "Applied credit from deposit #DEP-7 on May 22, 2025 Applied to invoice #1009")
        self.assertIsNone(found.amount)
        self.assertEqual(found.source_ref, "DEP-7")
        self.assertEqual(found.invoice_ref, "1009")

    def test_several_mentions_keep_their_order(self):
        found = parse_applied_amounts(
            "Applied $100.00 to invoice #A-1. Applied $50 to invoice #A-2")
        self.assertEqual([f.invoice_ref for f in found], ["A-1", "A-2"])
        self.assertEqual([f.amount for f in found], [Decimal("100.00"), Decimal("50.00")])

    def test_plain_text(self):
        self.assertEqual(parse_applied_amounts("Customer deposit"), [])
        self.assertEqual(parse_applied_amounts(None), [])


class BackfillTests(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.invoice = self.make_invoice("800.00", reference="1009")
        self.deposit = self.make_deposit("500.00", description="Applied $300.00 to invoice #1009")

    def test_backfill_creates_the_application(self):
        summary = backfill_payment_applications(self.company)
        self.assertEqual(summary, {"scanned": 1, "created": 1, "skipped": 0})

        application = PaymentApplication.objects.get(payment=self.deposit)
        self.assertEqual(application.invoice_id, self.invoice.pk)
        self.assertEqual(application.amount_applied, Decimal("300.00"))
        self.assertEqual(self.reload(self.invoice).balance, Decimal("500.00"))
        self.assertEqual(self.reload(self.deposit).balance, Decimal("-200.00"))

    def test_backfill_runs_once(self):
        backfill_payment_applications(self.company)
        again = backfill_payment_applications(self.company)
        self.assertEqual(again["created"], 0)
        self.assertEqual(again["skipped"], 1)
        self.assertEqual(PaymentApplication.objects.count(), 1)

    def test_dry_run_writes_nothing(self):
        summary = backfill_payment_applications(self.company, dry_run=True)
        self.assertEqual(summary["created"], 1)
        self.assertFalse(PaymentApplication.objects.exists())
        self.assertEqual(self.reload(self.invoice).balance, Decimal("800.00"))

    def test_other_customers_invoice_is_skipped(self):
        other = self.customer.__class__.objects.create(
            company=self.company, name="Globex", contact_type="customer")
        self.make_deposit("100.00", contact=other, description="Applied $100.00 to invoice #1009")
        summary = backfill_payment_applications(self.company)
        self.assertEqual(summary["created"], 1)
        self.assertEqual(summary["skipped"], 1)

    def test_allocation_is_capped_at_what_is_open(self):
        self.pay_invoice(self.invoice, "700.00")
        backfill_payment_applications(self.company)
        application = PaymentApplication.objects.get(payment=self.deposit)
        self.assertEqual(application.amount_applied, Decimal("100.00"))
        self.assertEqual(self.reload(self.invoice).status, "completed")
