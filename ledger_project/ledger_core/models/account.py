from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import models

from ..managers import TenantManager
from .currency import Currency
from .entitymembership import Company

# Chart of accounts types
AC_TYPES = [
    ("accounts_receivable", "Accounts Receivable"),
    ("current_assets", "Current Assets"),
    ("bank", "Bank"),
    ("property_plant_equipment", "Property, Plant & Equipment"),
    ("long_term_assets", "Long-term Assets"),
    ("accounts_payable", "Accounts Payable"),
    ("credit_card", "Credit Card"),
    ("other_current_liabilities", "Other Current Liabilities"),
    ("long_term_liabilities", "Long-term Liabilities"),
    ("equity", "Equity"),
    ("income", "Income"),
    ("other_income", "Other Income"),
    ("cost_of_goods_sold", "Cost of Goods Sold"),
    ("expenses", "Expenses"),
    ("other_expense", "Other Expense"),
]

# Types whose balance grows on the debit side. Everything else is credit-normal
DEBIT_NORMAL_TYPES = frozenset({
    "accounts_receivable",
    "current_assets",
    "bank",
    "property_plant_equipment",
    "long_term_assets",
    "cost_of_goods_sold",
    "expenses",
    "other_expense",
})

ASSET_TYPES = (
    "accounts_receivable",
    "current_assets",
    "bank",
    "property_plant_equipment",
    "long_term_assets",
)
LIABILITY_TYPES = (
    "accounts_payable",
    "credit_card",
    "other_current_liabilities",
    "long_term_liabilities",
)
EQUITY_TYPES = ("equity",)

# P&L types: reset every fiscal year, folded into retained earnings
INCOME_STATEMENT_TYPES = (
    "income",
    "other_income",
    "cost_of_goods_sold",
    "expenses",
    "other_expense",
)

CASH_FLOW_CATEGORIES = [
    ("operating", "Operating"),
    ("investing", "Investing"),
    ("financing", "Financing"),
    ("none", "None"),
]

# Roles the engine needs resolved per company instead of hard-coded ids
ACCOUNT_ROLES = [
    ("accounts_receivable", "Accounts Receivable"),
    ("accounts_payable", "Accounts Payable"),
    ("default_revenue", "Default Revenue"),
    ("default_expense", "Default Expense"),
    ("sales_tax_payable", "Sales Tax Payable"),
    ("fx_gain", "Foreign Exchange Gain"),
    ("fx_loss", "Foreign Exchange Loss"),
    ("retained_earnings", "Retained Earnings"),
]


def is_debit_normal(ac_type):
    return ac_type in DEBIT_NORMAL_TYPES


def signed_effect(ac_type, debit, credit):
    """Change to an account's balance caused by one debit/credit pair."""
    debit = debit or Decimal("0")
    credit = credit or Decimal("0")
    if is_debit_normal(ac_type):
        return debit - credit
    return credit - debit


class Account(models.Model):
    """
    Ledger account in the chart of accounts.
    - code is optional but unique per company when set
    - ac_type decides the normal side and which statement it lands on
    - balance is a cached mirror of the ledger, written only by the
      posting engine (services.posting) and the repair job
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    code = models.CharField(max_length=32, blank=True, default="")
    name = models.CharField(max_length=200)

    ac_type = models.CharField(max_length=32, choices=AC_TYPES)

    # null = home currency. Foreign AR/AP/bank accounts carry their currency
    # so balances stay segregated for revaluation
    currency = models.ForeignKey(
        Currency,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="accounts",
    )
    sales_tax_type = models.CharField(max_length=32, blank=True, default="")

    balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    # “soft deactivate” accounts (stop new postings) without deleting history
    is_active = models.BooleanField(default=True)

    cash_flow_category = models.CharField(
        max_length=16, choices=CASH_FLOW_CATEGORIES, default="none")

    # marker for accounts that must reconcile with subledgers (AR, AP)
    is_control_account = models.BooleanField(default=False)

    # stamped by a completed bank reconciliation
    last_reconciled_date = models.DateField(null=True, blank=True)
    last_reconciled_balance = models.DecimalField(
        max_digits=18, decimal_places=2, null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "ac_type"], name="ledger_core_acc_type_idx"),
            models.Index(fields=["company", "code"], name="ledger_core_acc_code_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["company", "code"],
                condition=~models.Q(code=""),
                name="uq_company_account_code",
            )
        ]

    def __str__(self):
        if self.code:
            return f"{self.code} – {self.name}"
        return self.name

    @property
    def debit_normal(self):
        return is_debit_normal(self.ac_type)

    @property
    def is_income_statement(self):
        return self.ac_type in INCOME_STATEMENT_TYPES

    def signed_effect(self, debit, credit):
        return signed_effect(self.ac_type, debit, credit)

    def clean(self):
        if not self.pk:
            return
        old = Account.objects.filter(pk=self.pk).values(
            "currency_id", "ac_type").first()
        if not old:
            return
        from .ledger import LedgerEntry

        used = LedgerEntry.objects.filter(account_id=self.pk).exists()
        # currency lock: history is denominated in the old currency
        if used and old["currency_id"] != self.currency_id:
            raise ValidationError(
                {"currency": "Cannot change the currency of an account "
                 "that already has ledger entries."}
            )
        # flipping the normal side would silently re-sign the cached balance
        if used and is_debit_normal(old["ac_type"]) != is_debit_normal(self.ac_type):
            raise ValidationError(
                {"ac_type": "Cannot move an account with ledger entries "
                 "between debit-normal and credit-normal types."}
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)


class AccountRoleMapping(models.Model):
    """Per-company binding of an engine role (AR, FX gain...) to an account."""

    company = models.ForeignKey(
        Company, on_delete=models.CASCADE, related_name="account_roles")
    role = models.CharField(max_length=32, choices=ACCOUNT_ROLES)
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="roles")

    objects = TenantManager()

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["company", "role"], name="uq_company_account_role"
            )
        ]

    def __str__(self):
        return f"{self.role} → {self.account}"

    def clean(self):
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError(
                "Role account must belong to the same company as the mapping."
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        return super().save(*args, **kwargs)
