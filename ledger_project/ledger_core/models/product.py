from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from ..managers import TenantManager
from .account import Account
from .entitymembership import Company


# ---------- Sales tax ----------
class SalesTax(models.Model):
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    name = models.CharField(max_length=100)
    # percentage, e.g. 13.0000 for 13%
    rate = models.DecimalField(max_digits=7, decimal_places=4)
    # liability account the collected tax is credited to
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="sales_taxes")
    is_active = models.BooleanField(default=True)

    objects = TenantManager()

    class Meta:
        verbose_name_plural = "sales taxes"

    def __str__(self):
        return f"{self.name} ({self.rate}%)"

    def tax_for(self, amount):
        return amount * self.rate / Decimal("100")

    def clean(self):
        if self.rate is not None and self.rate < 0:
            raise ValidationError({"rate": "Tax rate cannot be negative."})
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError(
                "Tax account must belong to the same company as the tax."
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


# ---------- Products (optional product/service) ----------
class Product(models.Model):  # something a company sells & purchases
    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    sku = models.CharField(max_length=80, null=True, blank=True)
    name = models.CharField(max_length=200)

    # Invoice lines for this product post revenue here by default
    """ Example: "Web Hosting" → posts to "4000: Sales Revenue". """
    sales_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="products_sales_account",
    )

    # Bill lines for this product post here by default
    purchase_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="products_purchase_account",
    )

    default_unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00")
    )
    is_active = models.BooleanField(default=True)

    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "name"], name="ledger_core_product_idx")]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "sku"], name="uq_company_product_sku"
            )
        ]

    def __str__(self):
        return self.name

    """ Can’t create a Product for Company A
    but point it to an Account from Company B """

    def clean(self):
        sac = self.sales_account
        if sac and sac.company_id != self.company_id:
            raise ValidationError(
                "Sales account must belong to the same company as the product."
            )
        if (
            self.purchase_account
            and self.purchase_account.company_id != self.company_id
        ):
            raise ValidationError(
                "Purchase account must belong to the same company as the product."
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
