from django.conf import settings
from django.contrib.auth.models import AbstractUser, UserManager
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils.text import slugify

from ..managers import TenantManager


class Company(models.Model):

    """Tenant / Organization. Every ledger row hangs off one of these."""
    name = models.CharField(max_length=200)

    slug = models.SlugField(max_length=80, unique=True, blank=True)

    # Home currency: ledger debit/credit amounts are always stored in it
    default_currency = models.ForeignKey(
        "Currency",
        on_delete=models.PROTECT,
        related_name="companies",
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="owned_companies",
    )

    # Month (1-12) that opens the accounting year; bounds P&L reporting
    # and the retained earnings split
    fiscal_year_start_month = models.PositiveSmallIntegerField(
        default=1,
        validators=[MinValueValidator(1), MaxValueValidator(12)],
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "companies"

    def __str__(self):
        return self.name

    @property
    def home_currency(self):
        return self.default_currency_id

    def save(self, *args, **kwargs):
        if not self.slug:
            base = slugify(self.name) or "company"
            slug, i = base, 1
            while Company.objects.filter(slug=slug).exclude(pk=self.pk).exists():
                slug = f"{base}-{i}"
                i += 1
            self.slug = slug
        self.full_clean()
        return super().save(*args, **kwargs)


class User(AbstractUser):
    """
    Custom user so an authenticated caller can be attached to activity logs.
    AUTH_USER_MODEL = "ledger_core.User" must be set before the first migrate.
    """
    default_company = models.ForeignKey(
        "Company",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="default_users",
    )

    phone = models.CharField(max_length=32, blank=True)

    objects = UserManager()

    class Meta:
        indexes = [models.Index(fields=["default_company"], name="ledger_core_default_c_idx")]

    def __str__(self):
        return self.get_full_name() or self.username


class EntityMembership(models.Model):  # join model between User and Company

    ROLE_CHOICES = [
        ("owner", "Owner"),
        ("admin", "Admin"),
        ("accountant", "Accountant"),
        ("viewer", "Viewer"),  # read-only access
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="memberships",
    )

    company = models.ForeignKey(
        "Company", on_delete=models.CASCADE, related_name="memberships"
    )

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default="viewer")

    # suspended memberships are kept instead of deleted
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["user", "company"], name="uq_user_company_membership"
            ),
        ]

        indexes = [
            models.Index(fields=["company", "user"], name="ledger_core_member_idx"),
        ]

    def __str__(self):
        return f"{self.user} @ {self.company} ({self.role})"

    def clean(self):
        """
        A user's default_company must be one of their memberships.
        The membership being validated counts.
        """
        default_company_id = getattr(self.user, "default_company_id", None)
        if not default_company_id or default_company_id == self.company_id:
            return
        others = self.user.memberships.all()
        if self.pk:
            others = others.exclude(pk=self.pk)
        if not others.filter(company_id=default_company_id).exists():
            raise ValidationError(
                f"Default company {self.user.default_company} must be a user's membership."
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
