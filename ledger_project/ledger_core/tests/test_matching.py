import datetime
from decimal import Decimal

from django.core.exceptions import ValidationError

from ..models import BankTransactionMatch, ImportedTransaction, Transaction
from ..services.matching import (categorize_imported_transaction, confirm_match,
                                 confirm_multi_match,
                                 find_matches_for_bank_transaction,
                                 ignore_imported_transaction, link_manual_match,
                                 undo_match)

from .helpers import LedgerTestCase


class BankFeedTestCase(LedgerTestCase):

    def imported(self, amount, name, date=None):
        return ImportedTransaction.objects.create(
            company=self.company,
            bank_account=self.bank,
            date=date or self.today + datetime.timedelta(days=1),
            name=name,
            amount=Decimal(amount),
        )

    def reload_imported(self, row):
        return ImportedTransaction.objects.get(pk=row.pk)


class SuggestionTests(BankFeedTestCase):

    def test_exact_invoice_match_scores_every_signal(self):
        invoice = self.make_invoice("1000.00", reference="1001")
        row = self.imported("1000.00", "ACME CORP PAYMENT 1001")

        [best] = find_matches_for_bank_transaction(row.pk)
        self.assertEqual(best.transaction_id, invoice.pk)
        self.assertEqual(best.confidence, 100)
        self.assertEqual(best.match_type, "exact")
        self.assertIn("Invoice # in description", best.match_reason)

    def test_weak_candidates_are_left_out(self):
        other = self.customer.__class__.objects.create(
            company=self.company, name="Globex", contact_type="customer")
        self.make_invoice("400.00", contact=other)
        row = self.imported("1000.00", "ACME CORP PAYMENT")
        self.assertEqual(find_matches_for_bank_transaction(row.pk), [])

    def test_amount_within_tolerance(self):
        invoice = self.make_invoice("1010.00")
        row = self.imported("1000.00", "Wire transfer")
        [suggestion] = find_matches_for_bank_transaction(row.pk)
        self.assertEqual(suggestion.transaction_id, invoice.pk)
        self.assertEqual(suggestion.match_type, "tolerance")
        self.assertEqual(suggestion.confidence, 60)

    def test_withdrawals_look_at_bills(self):
        bill = self.make_bill("300.00")
        self.make_invoice("300.00")
        row = self.imported("-300.00", "Paper Supply")
        suggestions = find_matches_for_bank_transaction(row.pk)
        self.assertEqual([s.transaction_id for s in suggestions], [bill.pk])

    def test_results_are_deterministic(self):
        self.make_invoice("250.00")
        self.make_invoice("250.00")
        self.make_sales_receipt("250.00")
        row = self.imported("250.00", "Deposit")

        first = [(s.transaction_id, s.confidence) for s in find_matches_for_bank_transaction(row.pk)]
        second = [(s.transaction_id, s.confidence) for s in find_matches_for_bank_transaction(row.pk)]
        self.assertEqual(first, second)
        self.assertEqual(len(first), 3)
        # ties fall back to id order
        confidences = [c for _, c in first]
        self.assertEqual(confidences, sorted(confidences, reverse=True))


class ConfirmTests(BankFeedTestCase):

    def test_confirm_creates_a_payment_and_undo_removes_it(self):
        invoice = self.make_invoice("1000.00", reference="1001")
        row = self.imported("1000.00", "ACME CORP PAYMENT 1001")

        payment = confirm_match(row.pk, invoice.pk)
        row = self.reload_imported(row)
        self.assertEqual(row.status, "matched")
        self.assertEqual(row.matched_via, "created")
        self.assertEqual(row.matched_transaction_id, payment.pk)
        self.assertEqual(payment.date, row.date)
        self.assertEqual(self.reload(invoice).status, "completed")
        self.assertEqual(self.balance(self.bank), Decimal("1000.00"))

        undo_match(row.pk)
        row = self.reload_imported(row)
        self.assertEqual(row.status, "unmatched")
        self.assertIsNone(row.matched_transaction_id)
        self.assertFalse(Transaction.objects.filter(pk=payment.pk).exists())
        self.assertEqual(self.reload(invoice).balance, Decimal("1000.00"))
        self.assertEqual(self.balance(self.bank), Decimal("0.00"))

    def test_deposit_larger_than_the_invoice_leaves_credit(self):
        invoice = self.make_invoice("900.00")
        row = self.imported("1000.00", "Acme Corp")
        payment = confirm_match(row.pk, invoice.pk)
        self.assertEqual(self.reload(invoice).balance, Decimal("0.00"))
        self.assertEqual(payment.status, "unapplied_credit")
        self.assertEqual(payment.balance, Decimal("-100.00"))

    def test_matched_rows_cannot_be_confirmed_again(self):
        invoice = self.make_invoice("100.00")
        row = self.imported("100.00", "Acme Corp")
        confirm_match(row.pk, invoice.pk)
        with self.assertRaises(ValidationError):
            confirm_match(row.pk, invoice.pk)

    def test_bill_withdrawal_pays_the_bill(self):
        bill = self.make_bill("300.00")
        row = self.imported("-300.00", "Paper Supply")
        confirm_match(row.pk, bill.pk)
        self.assertEqual(self.reload(bill).status, "completed")
        self.assertEqual(self.balance(self.bank), Decimal("-300.00"))
        self.assertEqual(self.balance(self.ap), Decimal("0.00"))

    def test_multi_match_splits_the_row(self):
        first = self.make_invoice("300.00")
        second = self.make_invoice("200.00")
        row = self.imported("500.00", "Acme Corp")

        payments = confirm_multi_match(row.pk, [
            {"transaction_id": first.pk, "amount": "300.00"},
            {"transaction_id": second.pk, "amount": "200.00"},
        ])
        self.assertEqual(len(payments), 2)
        row = self.reload_imported(row)
        self.assertTrue(row.is_multi_match)
        self.assertEqual(row.matched_via, "multi")
        self.assertEqual(BankTransactionMatch.objects.filter(imported_transaction=row).count(), 2)
        self.assertEqual(self.reload(first).balance, Decimal("0.00"))
        self.assertEqual(self.reload(second).balance, Decimal("0.00"))

        undo_match(row.pk)
        self.assertFalse(BankTransactionMatch.objects.exists())
        self.assertEqual(self.reload(first).balance, Decimal("300.00"))
        self.assertEqual(self.reload(second).balance, Decimal("200.00"))
        self.assertEqual(self.reload_imported(row).status, "unmatched")

    def test_multi_match_must_add_up(self):
        first = self.make_invoice("300.00")
        row = self.imported("500.00", "Acme Corp")
        with self.assertRaises(ValidationError):
            confirm_multi_match(row.pk, [{"transaction_id": first.pk, "amount": "300.00"}])
        self.assertFalse(Transaction.objects.filter(type="payment").exists())


class ManualAndCategorizeTests(BankFeedTestCase):

    def test_existing_entry_is_linked_without_posting(self):
        receipt = self.make_sales_receipt("75.00")
        row = self.imported("75.00", "Counter sale", date=self.today)
        [suggestion] = find_matches_for_bank_transaction(row.pk)
        self.assertEqual(suggestion.transaction_id, receipt.pk)

        before = Transaction.objects.count()
        link_manual_match(row.pk, receipt.pk)
        self.assertEqual(Transaction.objects.count(), before)
        self.assertEqual(self.reload_imported(row).matched_via, "manual")

        # a linked entry is not offered for another row
        again = self.imported("75.00", "Counter sale", date=self.today)
        self.assertEqual(find_matches_for_bank_transaction(again.pk), [])

        undo_match(row.pk)
        self.assertTrue(Transaction.objects.filter(pk=receipt.pk).exists())

    def test_documents_cannot_be_linked(self):
        invoice = self.make_invoice("75.00")
        row = self.imported("75.00", "Acme Corp")
        with self.assertRaises(ValidationError):
            link_manual_match(row.pk, invoice.pk)

    def test_withdrawal_categorized_as_expense(self):
        row = self.imported("-45.50", "STAPLES #123")
        expense = categorize_imported_transaction(row.pk, self.expense.pk)
        self.assertEqual(expense.type, "expense")
        self.assertEqual(expense.amount, Decimal("45.50"))
        self.assertEqual(self.balance(self.bank), Decimal("-45.50"))
        self.assertEqual(self.balance(self.expense), Decimal("45.50"))
        self.assertEqual(self.reload_imported(row).matched_via, "categorized")

        undo_match(row.pk)
        self.assertEqual(self.balance(self.bank), Decimal("0.00"))

    def test_deposit_categorized_as_transfer(self):
        savings = self.bank.__class__.objects.create(
            company=self.company, code="1010", name="Savings", ac_type="bank")
        row = self.imported("200.00", "From savings")
        categorize_imported_transaction(row.pk, savings.pk, tx_type="transfer")
        self.assertEqual(self.balance(self.bank), Decimal("200.00"))
        self.assertEqual(self.balance(savings), Decimal("-200.00"))

    def test_unknown_category_type(self):
        row = self.imported("-10.00", "Fee")
        with self.assertRaises(ValidationError):
            categorize_imported_transaction(row.pk, self.expense.pk, tx_type="invoice")

    def test_ignored_rows_are_closed(self):
        invoice = self.make_invoice("10.00")
        row = self.imported("10.00", "Acme Corp")
        ignore_imported_transaction(row.pk)
        self.assertEqual(self.reload_imported(row).status, "ignored")
        with self.assertRaises(ValidationError):
            confirm_match(row.pk, invoice.pk)
