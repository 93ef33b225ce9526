from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from ..managers import TenantManager
from .account import Account
from .currency import Currency
from .entitymembership import Company
from .transaction import Transaction

IMPORTED_STATUS = [
    ("unmatched", "Unmatched"),
    ("matched", "Matched"),
    ("ignored", "Ignored"),
    ("deleted", "Deleted"),
]

# How an imported row got reconciled; undo reverses accordingly
MATCHED_VIA = [
    ("created", "Created payment"),
    ("manual", "Linked existing entry"),
    ("categorized", "Categorized"),
    ("multi", "Split across several documents"),
]


# ---------- Bank feed ----------
class ImportedTransaction(models.Model):
    """
    Normalized row from a bank feed or statement import.
    amount: positive = money in (deposit), negative = money out.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    bank_account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="imported_transactions")
    date = models.DateField()
    name = models.CharField(max_length=255)
    merchant_name = models.CharField(max_length=255, null=True, blank=True)
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    currency = models.ForeignKey(
        Currency, null=True, blank=True, on_delete=models.PROTECT)
    status = models.CharField(
        max_length=12, choices=IMPORTED_STATUS, default="unmatched")

    matched_transaction = models.ForeignKey(
        Transaction,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="imported_matches",
    )
    matched_via = models.CharField(
        max_length=12, choices=MATCHED_VIA, blank=True, default="")
    is_multi_match = models.BooleanField(default=False)
    suggested_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="suggested_for_imports",
    )
    # provider id, used to skip duplicates on re-import
    external_id = models.CharField(max_length=128, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "status"], name="ledger_core_imp_status_idx"),
            models.Index(fields=["company", "bank_account", "date"], name="ledger_core_imp_bank_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "external_id"],
                name="uq_imported_external_id",
            )
        ]

    def __str__(self):
        return f"{self.date} {self.name} {self.amount} [{self.status}]"

    @property
    def is_deposit(self):
        return self.amount > 0

    @property
    def absolute_amount(self):
        return abs(self.amount or Decimal("0"))

    def clean(self):
        if self.bank_account_id and self.bank_account.company_id != self.company_id:
            raise ValidationError("Bank account must belong to the same company.")
        if self.amount == 0:
            raise ValidationError({"amount": "Imported amount cannot be zero."})

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


class BankTransactionMatch(models.Model):
    """One leg of an imported transaction split across several documents."""

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    imported_transaction = models.ForeignKey(
        ImportedTransaction, on_delete=models.CASCADE, related_name="matches")
    transaction = models.ForeignKey(
        Transaction, on_delete=models.CASCADE, related_name="bank_matches")
    amount = models.DecimalField(max_digits=18, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "imported_transaction"], name="ledger_core_match_imp_idx")]

    def __str__(self):
        return f"{self.imported_transaction_id} ↔ {self.transaction} ({self.amount})"
