from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from ..managers import LedgerEntryManager, TenantManager
from ..money import round2
from .account import Account
from .currency import Currency
from .entitymembership import Company
from .transaction import Transaction


# ---------- Ledger entries ----------
class LedgerEntry(models.Model):
    """
    One debit or credit posting to one account. The entries of a
    transaction always balance. debit/credit are home-currency amounts;
    currency/exchange_rate/foreign_amount record the original figures.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    transaction = models.ForeignKey(
        Transaction, on_delete=models.CASCADE, related_name="ledger_entries")
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="ledger_entries")
    description = models.CharField(max_length=400, blank=True, default="")

    debit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    credit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    date = models.DateField()

    currency = models.ForeignKey(
        Currency,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="ledger_entries",
    )
    exchange_rate = models.DecimalField(
        max_digits=18, decimal_places=6, null=True, blank=True)
    foreign_amount = models.DecimalField(
        max_digits=18, decimal_places=2, null=True, blank=True)

    # invoice/bill this posting settles (payments, credits, FX realization)
    document = models.ForeignKey(
        Transaction,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="settlement_entries",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    objects = LedgerEntryManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "account", "date"], name="ledger_core_le_acc_idx"),
            models.Index(fields=["company", "transaction"], name="ledger_core_le_tx_idx"),
            models.Index(fields=["company", "document"], name="ledger_core_le_doc_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(debit__gte=0) & models.Q(credit__gte=0),
                name="ledger_entry_non_negative",
            ),
        ]
        verbose_name_plural = "ledger entries"

    def __str__(self):
        side = f"Dr {self.debit}" if self.debit else f"Cr {self.credit}"
        return f"{self.account} {side}"

    @property
    def signed_effect(self):
        return self.account.signed_effect(self.debit, self.credit)

    @property
    def net(self):
        """debit - credit, regardless of the account's normal side."""
        return (self.debit or Decimal("0")) - (self.credit or Decimal("0"))

    def clean(self):
        if (self.debit or 0) < 0 or (self.credit or 0) < 0:
            raise ValidationError("Debit and credit must be non-negative.")
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError(
                f"Account {self.account} belongs to another company.")
        if self.transaction_id and self.transaction.company_id != self.company_id:
            raise ValidationError(
                "Ledger entry must belong to the same company as its transaction.")

    def save(self, *args, **kwargs):
        self.debit = round2(self.debit)
        self.credit = round2(self.credit)
        self.full_clean()
        return super().save(*args, **kwargs)


# ---------- Payment applications ----------
class PaymentApplication(models.Model):
    """
    Allocation of part of a credit source (payment, deposit, cheque,
    credit note) to an invoice or bill. The only record used to compute
    what has been applied and to reverse it on deletion.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # the credit source
    payment = models.ForeignKey(
        Transaction, on_delete=models.CASCADE, related_name="applications_made")
    # the invoice or bill paid down
    invoice = models.ForeignKey(
        Transaction, on_delete=models.CASCADE, related_name="applications_received")
    amount_applied = models.DecimalField(max_digits=18, decimal_places=2)

    # settlement (payment) that consumed a deposit/cheque credit; deleting
    # that settlement gives the credit back
    applied_via = models.ForeignKey(
        Transaction,
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="applications_routed",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "payment"], name="ledger_core_app_pay_idx"),
            models.Index(fields=["company", "invoice"], name="ledger_core_app_inv_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_applied__gt=0),
                name="payment_application_positive",
            ),
        ]

    def __str__(self):
        return f"{self.payment} → {self.invoice} ({self.amount_applied})"

    def clean(self):
        if self.amount_applied is None or self.amount_applied <= 0:
            raise ValidationError("Applied amount must be positive.")
        if self.payment_id == self.invoice_id:
            raise ValidationError("A transaction cannot be applied to itself.")
        if self.invoice.type not in ("invoice", "bill"):
            raise ValidationError(
                f"Credits can only be applied to invoices or bills, not {self.invoice.type}.")
        for tx in (self.payment, self.invoice):
            if tx.company_id != self.company_id:
                raise ValidationError(
                    "Payment and invoice must belong to the same company.")

    def save(self, *args, **kwargs):
        self.amount_applied = round2(self.amount_applied)
        self.full_clean()
        return super().save(*args, **kwargs)
