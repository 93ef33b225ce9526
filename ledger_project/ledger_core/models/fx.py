from django.db import models

from ..managers import TenantManager
from .account import AC_TYPES, Account
from .currency import Currency
from .entitymembership import Company
from .ledger import PaymentApplication
from .transaction import Transaction


class FxRealization(models.Model):
    """
    Gain or loss crystallized when a foreign invoice/bill is settled at a
    rate other than its own. Tied to the allocation that caused it, so
    removing the allocation removes the realization.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    application = models.ForeignKey(
        PaymentApplication, on_delete=models.CASCADE, related_name="fx_realizations")
    # transaction whose ledger entries carry the gain/loss posting
    payment = models.ForeignKey(
        Transaction, on_delete=models.CASCADE, related_name="fx_realizations")
    invoice = models.ForeignKey(
        Transaction, on_delete=models.CASCADE, related_name="fx_realizations_received")
    currency = models.ForeignKey(Currency, on_delete=models.PROTECT)
    foreign_amount = models.DecimalField(max_digits=18, decimal_places=2)
    original_rate = models.DecimalField(max_digits=18, decimal_places=6)
    payment_rate = models.DecimalField(max_digits=18, decimal_places=6)
    # positive = gain, negative = loss (home currency)
    gain_loss_amount = models.DecimalField(max_digits=18, decimal_places=2)
    # accounts posted to, kept so the posting can be reversed exactly
    gain_loss_account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="+")
    control_account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="+")
    realized_date = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "realized_date"], name="ledger_core_fxr_date_idx")]

    def __str__(self):
        return f"FX realized {self.gain_loss_amount} on {self.invoice}"


class FxRevaluation(models.Model):
    """Unrealized gain/loss snapshot for one open foreign balance."""

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    # journal entry that posted the adjustment
    journal = models.ForeignKey(
        Transaction, on_delete=models.CASCADE, related_name="fx_revaluations")
    revaluation_date = models.DateField()
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="fx_revaluations")
    account_type = models.CharField(max_length=32, choices=AC_TYPES)
    currency = models.ForeignKey(Currency, on_delete=models.PROTECT)
    foreign_balance = models.DecimalField(max_digits=18, decimal_places=2)
    original_rate = models.DecimalField(max_digits=18, decimal_places=6)
    revaluation_rate = models.DecimalField(max_digits=18, decimal_places=6)
    # cumulative unrealized amount at revaluation_date
    unrealized_gain_loss = models.DecimalField(max_digits=18, decimal_places=2)
    # what this run actually posted (cumulative minus earlier runs)
    adjustment_amount = models.DecimalField(max_digits=18, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "revaluation_date"], name="ledger_core_fxv_date_idx"),
            models.Index(fields=["company", "account", "currency"], name="ledger_core_fxv_acc_idx"),
        ]

    def __str__(self):
        return f"FX revaluation {self.account} {self.currency_id} @ {self.revaluation_date}"
