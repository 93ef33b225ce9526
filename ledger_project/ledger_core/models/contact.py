from django.core.exceptions import ValidationError
from django.db import models

from ..managers import TenantManager
from .currency import Currency
from .entitymembership import Company

CONTACT_TYPES = [
    ("customer", "Customer"),
    ("vendor", "Vendor"),
    ("both", "Customer & Vendor"),
]


# ---------- Contacts (customers and vendors) ----------
class Contact(models.Model):
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    name = models.CharField(max_length=200)
    contact_type = models.CharField(
        max_length=10, choices=CONTACT_TYPES, default="customer")
    email = models.EmailField(null=True, blank=True)

    # Optional billing currency. Locked once the contact has transactions
    currency = models.ForeignKey(
        Currency,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="contacts",
    )
    payment_terms_days = models.PositiveIntegerField(default=30)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "name"], name="ledger_core_contact_idx")]

    def __str__(self):
        return self.name

    @property
    def is_customer(self):
        return self.contact_type in ("customer", "both")

    @property
    def is_vendor(self):
        return self.contact_type in ("vendor", "both")

    def has_transactions(self):
        return self.transactions.exists()

    def clean(self):
        if not self.pk:
            return
        old_currency = (
            Contact.objects.filter(pk=self.pk)
            .values_list("currency_id", flat=True)
            .first()
        )
        if old_currency != self.currency_id and self.has_transactions():
            raise ValidationError(
                {"currency": f"Currency of {self.name} is locked: "
                 "the contact already has transactions."}
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
