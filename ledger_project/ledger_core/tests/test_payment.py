from decimal import Decimal

from django.core.exceptions import ValidationError

from ..exceptions import (CreditInUse, EntityInUseError, NotFoundError,
                          PaymentExceedsBalance)
from ..models import PaymentApplication, Transaction
from ..services.documents import create_cheque
from ..services.payment import (apply_credit, is_deposit_applied_to_invoices,
                                pay_bills, receive_payment, unapply_credit)
from ..services.posting import delete_transaction

from .helpers import LedgerTestCase


class ReceivePaymentTests(LedgerTestCase):

    def test_payment_posts_bank_against_receivable(self):
        invoice = self.make_invoice("1000.00")
        payment = self.pay_invoice(invoice, "1000.00")
        self.assertEqual(payment.type, "payment")
        self.assertEqual(payment.status, "completed")
        self.assertEqual(payment.balance, Decimal("0.00"))
        self.assertEqual(self.balance(self.bank), Decimal("1000.00"))
        self.assertEqual(self.balance(self.ar), Decimal("0.00"))
        settlement = payment.ledger_entries.get(credit__gt=0)
        self.assertEqual(settlement.document_id, invoice.pk)

    def test_payment_over_the_remaining_balance_is_rejected(self):
        invoice = self.make_invoice("1000.00")
        before = Transaction.objects.count()
        with self.assertRaises(PaymentExceedsBalance) as caught:
            self.pay_invoice(invoice, "1200.00")
        self.assertIn("exceeds remaining balance of $1000.00", str(caught.exception))
        self.assertEqual(Transaction.objects.count(), before)
        self.assertEqual(self.balance(self.bank), Decimal("0.00"))

    def test_applications_cannot_exceed_the_payment(self):
        invoice = self.make_invoice("1000.00")
        with self.assertRaises(ValidationError):
            receive_payment(
                self.company, self.customer, self.today, self.bank, Decimal("500.00"),
                applications=[{"invoice_id": invoice.pk, "amount": Decimal("600.00")}],
            )

    def test_overpayment_stays_as_unapplied_credit(self):
        first = self.make_invoice("1000.00")
        second = self.make_invoice("200.00")
        payment = receive_payment(
            self.company, self.customer, self.today, self.bank, Decimal("1200.00"),
            applications=[{"invoice_id": first.pk, "amount": Decimal("1000.00")}],
        )
        self.assertEqual(payment.status, "unapplied_credit")
        self.assertEqual(payment.balance, Decimal("-200.00"))

        apply_credit(second.pk, payment.pk, Decimal("200.00"))
        self.assertEqual(self.reload(payment).status, "completed")
        self.assertEqual(self.reload(second).status, "completed")
        self.assertEqual(self.balance(self.ar), Decimal("0.00"))

    def test_one_payment_settles_several_invoices(self):
        first = self.make_invoice("100.00")
        second = self.make_invoice("50.00")
        receive_payment(
            self.company, self.customer, self.today, self.bank, Decimal("150.00"),
            applications=[
                {"invoice_id": first.pk, "amount": Decimal("100.00")},
                {"invoice_id": second.pk, "amount": Decimal("50.00")},
            ],
        )
        self.assertEqual(self.reload(first).balance, Decimal("0.00"))
        self.assertEqual(self.reload(second).balance, Decimal("0.00"))

    def test_payment_with_deposit_credit_in_the_same_settlement(self):
        invoice = self.make_invoice("500.00")
        deposit = self.make_deposit("200.00")
        payment = receive_payment(
            self.company, self.customer, self.today, self.bank, Decimal("300.00"),
            applications=[{"invoice_id": invoice.pk, "amount": Decimal("300.00")}],
            credit_applications=[
                {"source_id": deposit.pk, "invoice_id": invoice.pk, "amount": Decimal("200.00")},
            ],
        )
        self.assertEqual(self.reload(invoice).status, "completed")
        deposit = self.reload(deposit)
        self.assertEqual(deposit.status, "completed")
        self.assertEqual(deposit.balance, Decimal("0.00"))
        routed = PaymentApplication.objects.get(payment=deposit)
        self.assertEqual(routed.applied_via_id, payment.pk)

        # removing the settlement hands the deposit credit back
        delete_transaction(payment.pk)
        deposit = self.reload(deposit)
        self.assertEqual(deposit.status, "unapplied_credit")
        self.assertEqual(deposit.balance, Decimal("-200.00"))
        self.assertEqual(self.reload(invoice).balance, Decimal("500.00"))

    def test_deposit_credit_cannot_be_overdrawn(self):
        invoice = self.make_invoice("500.00")
        deposit = self.make_deposit("100.00")
        with self.assertRaises(ValidationError):
            receive_payment(
                self.company, self.customer, self.today, self.bank, Decimal("0.00"),
                credit_applications=[
                    {"source_id": deposit.pk, "invoice_id": invoice.pk, "amount": Decimal("150.00")},
                ],
            )

    def test_invoice_of_another_customer_is_rejected(self):
        other = self.customer.__class__.objects.create(
            company=self.company, name="Other Customer", contact_type="customer")
        invoice = self.make_invoice("100.00", contact=other)
        with self.assertRaises(ValidationError):
            receive_payment(
                self.company, self.customer, self.today, self.bank, Decimal("100.00"),
                applications=[{"invoice_id": invoice.pk, "amount": Decimal("100.00")}],
            )

    def test_unknown_invoice_is_not_found(self):
        with self.assertRaises(NotFoundError):
            receive_payment(
                self.company, self.customer, self.today, self.bank, Decimal("10.00"),
                applications=[{"invoice_id": 987654, "amount": Decimal("10.00")}],
            )


class BillPaymentTests(LedgerTestCase):

    def prepay(self, amount):
        return create_cheque(self.company, {
            "date": self.today, "contact": self.vendor.pk,
            "payment_account": self.bank.pk, "amount": str(amount),
        })

    def test_cash_and_cheque_credit_pay_a_bill(self):
        bill = self.make_bill("300.00")
        cheque = self.prepay("100.00")
        payment = pay_bills(
            self.company, self.vendor, self.today, self.bank, Decimal("200.00"),
            bill_allocations=[{"bill_id": bill.pk, "amount": Decimal("300.00")}],
            cheque_credits=[{"source_id": cheque.pk, "amount": Decimal("100.00")}],
        )
        self.assertEqual(payment.amount, Decimal("200.00"))
        bill = self.reload(bill)
        self.assertEqual(bill.balance, Decimal("0.00"))
        self.assertEqual(bill.status, "completed")
        cheque = self.reload(cheque)
        self.assertEqual(cheque.balance, Decimal("0.00"))
        self.assertEqual(cheque.status, "completed")
        self.assertEqual(self.balance(self.ap), Decimal("0.00"))
        self.assertEqual(self.balance(self.bank), Decimal("-300.00"))

    def test_cash_plus_credits_must_cover_the_bills(self):
        bill = self.make_bill("300.00")
        cheque = self.prepay("100.00")
        before = Transaction.objects.count()
        with self.assertRaises(ValidationError):
            pay_bills(
                self.company, self.vendor, self.today, self.bank, Decimal("150.00"),
                bill_allocations=[{"bill_id": bill.pk, "amount": Decimal("300.00")}],
                cheque_credits=[{"source_id": cheque.pk, "amount": Decimal("100.00")}],
            )
        self.assertEqual(Transaction.objects.count(), before)
        self.assertEqual(self.reload(bill).balance, Decimal("300.00"))

    def test_invoice_cannot_be_paid_as_a_bill(self):
        invoice = self.make_invoice("10.00")
        with self.assertRaises(ValidationError):
            pay_bills(
                self.company, self.vendor, self.today, self.bank, Decimal("10.00"),
                bill_allocations=[{"bill_id": invoice.pk, "amount": Decimal("10.00")}],
            )


class CreditApplicationTests(LedgerTestCase):

    def test_deposit_in_use_cannot_be_deleted(self):
        invoice = self.make_invoice("1000.00")
        deposit = self.make_deposit("500.00")
        application = apply_credit(invoice.pk, deposit.pk, Decimal("200.00"))
        self.assertEqual(self.reload(deposit).balance, Decimal("-300.00"))
        self.assertEqual(self.reload(invoice).balance, Decimal("800.00"))

        with self.assertRaises(EntityInUseError) as caught:
            delete_transaction(deposit.pk)
        self.assertIsInstance(caught.exception, CreditInUse)
        self.assertIn(application.pk, caught.exception.references)

        unapply_credit(application.pk)
        self.assertEqual(self.reload(deposit).balance, Decimal("-500.00"))
        self.assertEqual(self.reload(invoice).balance, Decimal("1000.00"))
        delete_transaction(deposit.pk)
        self.assertFalse(Transaction.objects.filter(pk=deposit.pk).exists())

    def test_usage_signals(self):
        deposit = self.make_deposit("500.00")
        self.assertFalse(is_deposit_applied_to_invoices(deposit).is_applied)

        Transaction.objects.filter(pk=deposit.pk).update(balance=Decimal("-100.00"))
        self.assertTrue(is_deposit_applied_to_invoices(self.reload(deposit)).is_applied)

    def test_legacy_description_counts_as_usage(self):
        deposit = self.make_deposit("500.00", description="Applied $200.00 to invoice #1009")
        usage = is_deposit_applied_to_invoices(deposit)
        self.assertTrue(usage.is_applied)
        self.assertIn("#1009", usage.details[0])

    def test_credit_from_another_contact_is_rejected(self):
        other = self.customer.__class__.objects.create(
            company=self.company, name="Other Customer", contact_type="customer")
        invoice = self.make_invoice("100.00")
        deposit = self.make_deposit("100.00", contact=other)
        with self.assertRaises(ValidationError):
            apply_credit(invoice.pk, deposit.pk, Decimal("50.00"))

    def test_routed_applications_are_not_unapplied_directly(self):
        invoice = self.make_invoice("100.00")
        self.pay_invoice(invoice, "100.00")
        application = PaymentApplication.objects.get(invoice=invoice)
        with self.assertRaises(ValidationError):
            unapply_credit(application.pk)

    def test_total_applied_never_exceeds_the_credit(self):
        first = self.make_invoice("400.00")
        second = self.make_invoice("400.00")
        deposit = self.make_deposit("500.00")
        apply_credit(first.pk, deposit.pk, Decimal("400.00"))
        with self.assertRaises(ValidationError):
            apply_credit(second.pk, deposit.pk, Decimal("200.00"))
        self.assertEqual(
            sum(a.amount_applied for a in PaymentApplication.objects.filter(payment=deposit)),
            Decimal("400.00"),
        )
