from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from ..managers import TenantManager
from .account import Account
from .entitymembership import Company
from .ledger import LedgerEntry

RECONCILIATION_STATUS = [
    ("in_progress", "In progress"),
    ("completed", "Completed"),
]


# ---------- Bank statement reconciliation ----------
class Reconciliation(models.Model):
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="reconciliations")
    statement_date = models.DateField()
    statement_ending_balance = models.DecimalField(max_digits=18, decimal_places=2)
    # ending balance of the previous completed session
    opening_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    cleared_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    # statement_ending_balance - cleared_balance; must be ~0 to complete
    difference = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    status = models.CharField(
        max_length=12, choices=RECONCILIATION_STATUS, default="in_progress")
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "account", "statement_date"], name="ledger_core_recon_idx")]

    def __str__(self):
        return f"Reconciliation {self.account} @ {self.statement_date} [{self.status}]"

    def clean(self):
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError("Account must belong to the same company.")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


class ReconciliationItem(models.Model):
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    reconciliation = models.ForeignKey(
        Reconciliation, on_delete=models.CASCADE, related_name="items")
    ledger_entry = models.ForeignKey(
        LedgerEntry, on_delete=models.CASCADE, related_name="reconciliation_items")
    is_cleared = models.BooleanField(default=False)

    objects = TenantManager()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["reconciliation", "ledger_entry"],
                name="uq_reconciliation_entry",
            )
        ]

    def __str__(self):
        mark = "x" if self.is_cleared else " "
        return f"[{mark}] {self.ledger_entry}"
