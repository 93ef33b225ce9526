import datetime
from decimal import Decimal
from unittest import mock

from ..models import Account, PaymentApplication, Transaction
from ..services.balances import (applied_from_ledger,
                                 batch_recalculate_invoice_balances,
                                 batch_update_invoice_statuses,
                                 fix_all_balances,
                                 recalculate_invoice_balance,
                                 verify_account_balances)
from ..services.posting import delete_transaction

from .helpers import LedgerTestCase


class InvoiceLifecycleTests(LedgerTestCase):

    def test_partial_payments_and_deletion_scenario(self):
        invoice = self.make_invoice("1000.00", reference="1001")

        first = self.pay_invoice(invoice, "600.00", reference="P-1")
        invoice = self.reload(invoice)
        self.assertEqual(invoice.balance, Decimal("400.00"))
        self.assertEqual(invoice.status, "open")

        self.pay_invoice(invoice, "400.00", reference="P-2")
        invoice = self.reload(invoice)
        self.assertEqual(invoice.balance, Decimal("0.00"))
        self.assertEqual(invoice.status, "completed")

        delete_transaction(first.pk)
        invoice = self.reload(invoice)
        self.assertEqual(invoice.balance, Decimal("600.00"))
        self.assertEqual(invoice.status, "open")
        self.assertEqual(self.balance(self.ar), Decimal("600.00"))
        self.assertEqual(self.balance(self.bank), Decimal("400.00"))

    def test_deleting_the_only_payment_restores_the_full_amount(self):
        invoice = self.make_invoice("250.00")
        payment = self.pay_invoice(invoice, "250.00")
        self.assertEqual(self.reload(invoice).status, "completed")

        delete_transaction(payment.pk)
        invoice = self.reload(invoice)
        self.assertEqual(invoice.balance, Decimal("250.00"))
        self.assertEqual(invoice.status, "open")
        self.assertFalse(PaymentApplication.objects.filter(invoice=invoice).exists())
        self.assertEqual(verify_account_balances(self.company), [])

    def test_deleting_an_invoice_frees_the_payment_as_credit(self):
        invoice = self.make_invoice("300.00")
        payment = self.pay_invoice(invoice, "300.00")
        delete_transaction(invoice.pk)
        payment = self.reload(payment)
        self.assertEqual(payment.status, "unapplied_credit")
        self.assertEqual(payment.balance, Decimal("-300.00"))


class RecalculationTests(LedgerTestCase):

    def test_recalculation_is_idempotent(self):
        invoice = self.make_invoice("1000.00")
        self.pay_invoice(invoice, "100.00")
        Transaction.objects.filter(pk=invoice.pk).update(balance=Decimal("5.00"))

        fixed = recalculate_invoice_balance(invoice.pk)
        self.assertEqual(fixed.balance, Decimal("900.00"))

        with mock.patch.object(Transaction, "save") as save:
            recalculate_invoice_balance(invoice.pk)
        save.assert_not_called()

    def test_force_update_always_writes(self):
        invoice = self.make_invoice("10.00")
        with mock.patch.object(Transaction, "save") as save:
            recalculate_invoice_balance(invoice.pk, force_update=True)
        save.assert_called_once()

    def test_applied_amount_never_exceeds_invoice_amount(self):
        invoice = self.make_invoice("100.00")
        deposit = self.make_deposit("500.00")
        # bypass the service guards to fake corrupt data
        PaymentApplication.objects.create(
            company=self.company, payment=deposit, invoice=invoice, amount_applied=Decimal("150.00"))
        invoice = recalculate_invoice_balance(invoice.pk)
        self.assertEqual(invoice.balance, Decimal("0.00"))
        self.assertEqual(invoice.status, "completed")

    def test_ledger_mode_counts_settlement_postings(self):
        invoice = self.make_invoice("800.00")
        self.pay_invoice(invoice, "300.00")
        self.assertEqual(applied_from_ledger(invoice), Decimal("300.00"))
        invoice = recalculate_invoice_balance(invoice.pk, use_only_ledger_entries=True)
        self.assertEqual(invoice.balance, Decimal("500.00"))

    def test_draft_documents_are_left_alone(self):
        draft = self.make_invoice("70.00", status="draft")
        Transaction.objects.filter(pk=draft.pk).update(balance=Decimal("1.00"))
        self.assertEqual(recalculate_invoice_balance(draft.pk).balance, Decimal("1.00"))


class DisplayStatusTests(LedgerTestCase):

    def test_overdue_and_partial_are_derived(self):
        invoice = self.make_invoice("100.00")
        later = invoice.due_date + datetime.timedelta(days=1)
        self.assertEqual(invoice.display_status(today=self.today), "open")
        self.assertEqual(invoice.display_status(today=later), "overdue")

        self.pay_invoice(invoice, "40.00")
        invoice = self.reload(invoice)
        self.assertEqual(invoice.status, "open")
        self.assertEqual(invoice.display_status(today=self.today), "partial")

    def test_completed_is_shown_as_is(self):
        invoice = self.make_invoice("100.00")
        self.pay_invoice(invoice, "100.00")
        later = self.today + datetime.timedelta(days=90)
        self.assertEqual(self.reload(invoice).display_status(today=later), "completed")


class RepairTests(LedgerTestCase):

    def test_fix_all_balances_rebuilds_cached_values(self):
        invoice = self.make_invoice("500.00")
        self.pay_invoice(invoice, "200.00")
        Account.objects.filter(pk=self.ar.pk).update(balance=Decimal("999.99"))
        Transaction.objects.filter(pk=invoice.pk).update(balance=Decimal("0.00"), status="paid")

        summary = fix_all_balances(self.company)
        self.assertEqual(summary["accounts_fixed"], 1)
        self.assertEqual(summary["documents_fixed"], 1)
        self.assertEqual(self.balance(self.ar), Decimal("300.00"))
        invoice = self.reload(invoice)
        self.assertEqual(invoice.balance, Decimal("300.00"))
        self.assertEqual(invoice.status, "open")

        # second run finds nothing to do
        again = fix_all_balances(self.company)
        self.assertEqual(again, {"accounts_fixed": 0, "documents_fixed": 0, "credits_fixed": 0})

    def test_batch_recalculation_counts_changes(self):
        first = self.make_invoice("10.00")
        self.make_invoice("20.00")
        Transaction.objects.filter(pk=first.pk).update(balance=Decimal("0.00"))
        self.assertEqual(
            batch_recalculate_invoice_balances(self.company), {"checked": 2, "updated": 1})

    def test_legacy_statuses_are_normalized(self):
        invoice = self.make_invoice("10.00")
        Transaction.objects.filter(pk=invoice.pk).update(status="overdue")
        summary = batch_update_invoice_statuses(self.company, today=self.today)
        self.assertEqual(summary["normalized"], 1)
        self.assertEqual(self.reload(invoice).status, "open")
