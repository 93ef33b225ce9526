import datetime
from decimal import Decimal

from django.core.exceptions import ValidationError

from ..exceptions import EntityInUseError, UnbalancedEntriesError
from ..models import AuditLog, LedgerEntry, Transaction
from ..services.balances import verify_account_balances
from ..services.documents import create_journal_entry
from ..services.posting import (create_transaction, delete_transaction,
                                repost_transaction, update_transaction)

from .helpers import LedgerTestCase


class PostingTests(LedgerTestCase):

    def journal(self, rows, **data):
        header = {"date": self.today, "reference": "JE-1", **data}
        return create_journal_entry(self.company, header, rows)

    def test_balanced_journal_entry_moves_account_balances(self):
        je = self.journal([
            {"account": self.bank.pk, "debit": "250.00"},
            {"account": self.loan.pk, "credit": "250.00"},
        ])
        self.assertEqual(je.amount, Decimal("250.00"))
        self.assertEqual(je.ledger_entries.count(), 2)
        self.assertEqual(self.balance(self.bank), Decimal("250.00"))
        self.assertEqual(self.balance(self.loan), Decimal("250.00"))

    def test_unbalanced_journal_entry_is_rejected_without_writes(self):
        with self.assertRaises(UnbalancedEntriesError):
            self.journal([
                {"account": self.bank.pk, "debit": "250.00"},
                {"account": self.loan.pk, "credit": "200.00"},
            ])
        self.assertFalse(Transaction.objects.filter(type="journal_entry").exists())
        self.assertEqual(self.balance(self.bank), Decimal("0.00"))

    def test_journal_entry_needs_two_rows(self):
        with self.assertRaises(ValidationError):
            self.journal([{"account": self.bank.pk, "debit": "10.00"}])

    def test_entry_with_both_sides_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.journal([
                {"account": self.bank.pk, "debit": "10.00", "credit": "10.00"},
                {"account": self.loan.pk, "credit": "10.00"},
            ])

    def test_inactive_account_cannot_be_posted_to(self):
        self.loan.is_active = False
        self.loan.save()
        with self.assertRaises(ValidationError):
            self.journal([
                {"account": self.bank.pk, "debit": "10.00"},
                {"account": self.loan.pk, "credit": "10.00"},
            ])

    def test_every_posting_balances(self):
        self.make_invoice("1000.00", reference="1001")
        self.make_bill("300.00")
        self.make_sales_receipt("75.00")
        for tx in Transaction.objects.all():
            entries = list(tx.ledger_entries.all())
            self.assertEqual(
                sum(e.debit for e in entries), sum(e.credit for e in entries), str(tx))

    def test_update_transaction_moves_entry_dates_with_the_document(self):
        invoice = self.make_invoice("100.00")
        new_date = self.today + datetime.timedelta(days=2)
        update_transaction(invoice.pk, {"date": new_date, "description": "Re-dated"})
        self.assertEqual(
            set(invoice.ledger_entries.values_list("date", flat=True)), {new_date})

    def test_update_transaction_rejects_posting_fields(self):
        invoice = self.make_invoice("100.00")
        with self.assertRaises(ValidationError):
            update_transaction(invoice.pk, {"payment_account": self.bank})

    def test_posted_totals_only_change_through_repost(self):
        invoice = self.make_invoice("100.00", description="Consulting")
        for patch in ({"amount": Decimal("250.00")}, {"tax_amount": "5.00", "description": "x"}):
            with self.assertRaises(ValidationError):
                update_transaction(invoice.pk, patch)

        invoice = self.reload(invoice)
        self.assertEqual(invoice.amount, Decimal("100.00"))
        self.assertEqual(invoice.balance, Decimal("100.00"))
        self.assertEqual(invoice.description, "Consulting")
        self.assertEqual(self.balance(self.ar), Decimal("100.00"))
        self.assertEqual(verify_account_balances(self.company), [])

        # restating the same total is not a change
        update_transaction(invoice.pk, {"amount": "100.00", "reference": "INV-9"})
        self.assertEqual(self.reload(invoice).reference, "INV-9")

    def test_unused_deposit_amount_moves_its_credit_balance(self):
        deposit = self.make_deposit("200.00")
        update_transaction(deposit.pk, {"amount": Decimal("150.00")})
        deposit = self.reload(deposit)
        self.assertEqual(deposit.amount, Decimal("150.00"))
        self.assertEqual(deposit.balance, Decimal("-150.00"))

    def test_repost_replaces_entries_and_keeps_cache_in_step(self):
        je = self.journal([
            {"account": self.bank.pk, "debit": "100.00"},
            {"account": self.loan.pk, "credit": "100.00"},
        ])
        repost_transaction(
            je.pk,
            ledger_entries=[
                LedgerEntry(account=self.bank, debit=Decimal("40.00")),
                LedgerEntry(account=self.loan, credit=Decimal("40.00")),
            ],
            patch={"amount": Decimal("40.00")},
        )
        self.assertEqual(self.balance(self.bank), Decimal("40.00"))
        self.assertEqual(self.balance(self.loan), Decimal("40.00"))
        self.assertEqual(verify_account_balances(self.company), [])

    def test_delete_reverses_account_balances(self):
        invoice = self.make_invoice("500.00")
        delete_transaction(invoice.pk)
        self.assertEqual(self.balance(self.ar), Decimal("0.00"))
        self.assertEqual(self.balance(self.sales), Decimal("0.00"))
        self.assertFalse(LedgerEntry.objects.exists())

    def test_cached_balances_match_the_ledger_after_a_mixed_sequence(self):
        invoice = self.make_invoice("1000.00")
        payment = self.pay_invoice(invoice, "400.00")
        self.make_bill("120.00")
        self.make_expense("30.00")
        delete_transaction(payment.pk)
        self.assertEqual(verify_account_balances(self.company), [])

    def test_direct_delete_of_posted_transaction_is_refused(self):
        invoice = self.make_invoice("100.00")
        with self.assertRaises(EntityInUseError):
            invoice.delete()

    def test_draft_transaction_stores_no_entries(self):
        tx = Transaction(company=self.company, type="journal_entry", date=self.today, status="draft")
        create_transaction(tx, [], [
            LedgerEntry(account=self.bank, debit=Decimal("5.00")),
            LedgerEntry(account=self.loan, credit=Decimal("5.00")),
        ])
        self.assertFalse(tx.ledger_entries.exists())
        # nothing is posted yet, so the header total is free to move
        update_transaction(tx.pk, {"amount": Decimal("7.00")})
        self.assertEqual(self.reload(tx).amount, Decimal("7.00"))

    def test_activity_log_is_written_after_commit(self):
        with self.captureOnCommitCallbacks(execute=True):
            invoice = self.make_invoice("100.00")
        self.assertTrue(
            AuditLog.objects.filter(
                action="create", object_type="Transaction", object_id=str(invoice.pk)
            ).exists()
        )
