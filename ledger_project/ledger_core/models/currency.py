from django.core.exceptions import ValidationError
from django.db import models


# ---------- Currency ----------
class Currency(models.Model):
    """
    ISO currencies. Use currency.code FK in other tables instead of free-text.
    """
    code = models.CharField(max_length=3, primary_key=True)  # 'USD', 'EUR'
    name = models.CharField(max_length=64)  # 'US Dollar'
    symbol = models.CharField(max_length=8, blank=True, null=True)  # '$'
    # Avoid mistakes like storing 12.345 for JPY (which has no sub-units)
    decimal_places = models.PositiveSmallIntegerField(default=2)

    def __str__(self):
        return f"{self.code} ({self.symbol or ''})"

    class Meta:
        verbose_name_plural = "currencies"


# ---------- Exchange rates ----------
class ExchangeRate(models.Model):
    """
    Units of to_currency per one unit of from_currency on a given day.
    Shared reference data, so not tenant scoped.
    """
    from_currency = models.ForeignKey(
        Currency, on_delete=models.PROTECT, related_name="rates_from")
    to_currency = models.ForeignKey(
        Currency, on_delete=models.PROTECT, related_name="rates_to")
    rate = models.DecimalField(max_digits=18, decimal_places=6)
    effective_date = models.DateField()
    # True when typed in by a user, False when fetched from the provider
    is_manual = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["from_currency", "to_currency", "effective_date"],
                name="uq_exchange_rate_pair_date",
            ),
            models.CheckConstraint(
                condition=models.Q(rate__gt=0), name="ck_exchange_rate_positive"
            ),
        ]
        indexes = [
            models.Index(fields=["from_currency", "to_currency", "effective_date"], name="ledger_core_rate_pair_idx"),
        ]

    def __str__(self):
        return f"{self.from_currency_id}->{self.to_currency_id} {self.rate} @ {self.effective_date}"

    def clean(self):
        if self.from_currency_id == self.to_currency_id:
            raise ValidationError("An exchange rate needs two different currencies.")

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
