import datetime
import secrets
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from ..managers import LineItemManager, TransactionManager
from ..money import round2
from .account import Account
from .contact import Contact
from .currency import Currency
from .entitymembership import Company
from .product import Product, SalesTax

TRANSACTION_TYPES = [
    ("invoice", "Invoice"),
    ("expense", "Expense"),
    ("journal_entry", "Journal Entry"),
    ("deposit", "Deposit"),
    ("payment", "Payment"),
    ("bill", "Bill"),
    ("cheque", "Cheque"),
    ("sales_receipt", "Sales Receipt"),
    ("transfer", "Transfer"),
    ("customer_credit", "Customer Credit"),
    ("vendor_credit", "Vendor Credit"),
]

TRANSACTION_STATUSES = [
    ("open", "Open"),
    ("paid", "Paid"),
    ("completed", "Completed"),
    # overdue/partial are derived at read time (display_status),
    # kept here so legacy rows still validate
    ("overdue", "Overdue"),
    ("partial", "Partial"),
    ("unapplied_credit", "Unapplied Credit"),
    ("quotation", "Quotation"),
    ("draft", "Draft"),
    ("approved", "Approved"),
    ("cancelled", "Cancelled"),
]

PAYMENT_METHODS = [
    ("cash", "Cash"),
    ("cheque", "Cheque"),
    ("credit_card", "Credit Card"),
    ("bank_transfer", "Bank Transfer"),
    ("other", "Other"),
]

# Documents whose balance is an amount still owed
DOCUMENT_TYPES = ("invoice", "bill")

# Transactions that can hold unapplied credit (negative balance)
CREDIT_SOURCE_TYPES = (
    "payment", "deposit", "cheque", "customer_credit", "vendor_credit")

# Statuses that never carry ledger postings
UNPOSTED_STATUSES = ("quotation", "draft")

""" Per-type payload rules.
    requires: fields that must be set
    forbids: fields that make no sense for the type
    statuses: statuses the type may be saved with """
TRANSACTION_TYPE_RULES = {
    "invoice": {
        "requires": ("contact",),
        "forbids": ("payment_account",),
        "statuses": ("open", "paid", "completed", "overdue", "partial",
                     "quotation", "draft", "approved", "cancelled"),
    },
    "bill": {
        "requires": ("contact",),
        "forbids": ("payment_account",),
        "statuses": ("open", "paid", "completed", "overdue", "partial",
                     "draft", "approved", "cancelled"),
    },
    "expense": {
        "requires": ("payment_account",),
        "forbids": (),
        "statuses": ("completed", "draft", "cancelled"),
    },
    "cheque": {
        "requires": ("payment_account",),
        "forbids": (),
        "statuses": ("completed", "unapplied_credit", "draft", "cancelled"),
    },
    "payment": {
        "requires": ("payment_account",),
        "forbids": ("due_date",),
        "statuses": ("completed", "unapplied_credit", "cancelled"),
    },
    "deposit": {
        "requires": ("payment_account",),
        "forbids": ("due_date",),
        "statuses": ("completed", "unapplied_credit", "cancelled"),
    },
    "journal_entry": {
        "requires": (),
        "forbids": ("payment_account", "due_date"),
        "statuses": ("completed", "draft"),
    },
    "transfer": {
        "requires": ("payment_account",),
        "forbids": ("contact", "due_date"),
        "statuses": ("completed",),
    },
    "sales_receipt": {
        "requires": ("payment_account",),
        "forbids": ("due_date",),
        "statuses": ("completed", "draft", "cancelled"),
    },
    "customer_credit": {
        "requires": ("contact",),
        "forbids": ("payment_account",),
        "statuses": ("unapplied_credit", "completed", "cancelled"),
    },
    "vendor_credit": {
        "requires": ("contact",),
        "forbids": ("payment_account",),
        "statuses": ("unapplied_credit", "completed", "cancelled"),
    },
}


def _new_secure_token():
    return secrets.token_urlsafe(24)


# ---------- Transaction (business document header) ----------
class Transaction(models.Model):
    """
    One business document. Amounts are stored in the company's home
    currency; a foreign document keeps its own total in foreign_amount.

    balance: positive = still owed (invoice/bill),
             negative = unapplied credit (payment/deposit/cheque/credits),
             zero = settled.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    reference = models.CharField(max_length=64, null=True, blank=True)
    type = models.CharField(max_length=20, choices=TRANSACTION_TYPES)
    date = models.DateField()
    due_date = models.DateField(null=True, blank=True)
    description = models.TextField(null=True, blank=True)

    amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    sub_total = models.DecimalField(
        max_digits=18, decimal_places=2, null=True, blank=True)
    tax_amount = models.DecimalField(
        max_digits=18, decimal_places=2, null=True, blank=True)
    balance = models.DecimalField(
        max_digits=18, decimal_places=2, null=True, blank=True)

    contact = models.ForeignKey(
        Contact,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    status = models.CharField(
        max_length=20, choices=TRANSACTION_STATUSES, default="open")

    payment_method = models.CharField(
        max_length=20, choices=PAYMENT_METHODS, null=True, blank=True)
    # bank/cash/credit card account money moved through (or the "from"
    # account of a transfer)
    payment_account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="payment_transactions",
    )
    payment_date = models.DateField(null=True, blank=True)

    # null = home currency
    currency = models.ForeignKey(
        Currency,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="transactions",
    )
    # home units per one foreign unit
    exchange_rate = models.DecimalField(
        max_digits=18, decimal_places=6, null=True, blank=True)
    foreign_amount = models.DecimalField(
        max_digits=18, decimal_places=2, null=True, blank=True)

    # public-view access for document sharing
    secure_token = models.CharField(
        max_length=64, null=True, blank=True, unique=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="transactions_created",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TransactionManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "type", "status"], name="ledger_core_tx_status_idx"),
            models.Index(fields=["company", "date"], name="ledger_core_tx_date_idx"),
            models.Index(fields=["company", "reference"], name="ledger_core_tx_ref_idx"),
            models.Index(fields=["company", "contact"], name="ledger_core_tx_contact_idx"),
        ]

    def __str__(self):
        label = self.get_type_display()
        return f"{label} #{self.reference or self.pk}"

    # ---------- type helpers ----------
    @property
    def is_document(self):
        return self.type in DOCUMENT_TYPES

    @property
    def is_credit_source(self):
        return self.type in CREDIT_SOURCE_TYPES

    @property
    def is_foreign(self):
        return bool(self.currency_id) and self.currency_id != self.company.default_currency_id

    @property
    def posts_to_ledger(self):
        return self.status not in UNPOSTED_STATUSES

    @property
    def available_credit(self):
        if self.status != "unapplied_credit" or self.balance is None:
            return Decimal("0.00")
        return -self.balance if self.balance < 0 else Decimal("0.00")

    def credit_side(self):
        """
        Which documents this credit source can pay down:
        "receivable" (invoices) or "payable" (bills).
        """
        if self.type in ("deposit", "customer_credit", "sales_receipt"):
            return "receivable"
        if self.type in ("cheque", "vendor_credit", "expense"):
            return "payable"
        # payments: decided by the control account they settled
        types = set(
            self.ledger_entries.values_list("account__ac_type", flat=True))
        if "accounts_payable" in types:
            return "payable"
        if "accounts_receivable" in types:
            return "receivable"
        if self.contact_id and self.contact.contact_type == "vendor":
            return "payable"
        return "receivable"

    def display_status(self, today=None):
        """
        Status as shown to users. overdue and partial are derived from the
        balance and due date instead of being stored.
        """
        if self.type not in DOCUMENT_TYPES or self.status != "open":
            return self.status
        today = today or datetime.date.today()
        balance = self.balance if self.balance is not None else self.amount
        if balance > 0 and self.due_date and self.due_date < today:
            return "overdue"
        if 0 < balance < self.amount:
            return "partial"
        return "open"

    # ---------- validation ----------
    def clean(self):
        rules = TRANSACTION_TYPE_RULES.get(self.type)
        if rules is None:
            raise ValidationError({"type": f"Unknown transaction type {self.type!r}."})

        errors = {}
        for field in rules["requires"]:
            if getattr(self, f"{field}_id", None) is None and getattr(self, field, None) is None:
                errors[field] = f"{self.get_type_display()} requires {field}."
        for field in rules["forbids"]:
            value = getattr(self, f"{field}_id", None) if hasattr(self, f"{field}_id") else getattr(self, field, None)
            if value is not None:
                errors[field] = f"{self.get_type_display()} cannot have {field}."
        if self.status not in rules["statuses"]:
            errors["status"] = (
                f"Status {self.status!r} is not valid for {self.get_type_display()}."
            )
        if errors:
            raise ValidationError(errors)

        if self.amount is not None and self.amount < 0:
            raise ValidationError({"amount": "Amount cannot be negative."})

        if self.due_date and self.date and self.due_date < self.date:
            raise ValidationError({"due_date": "Due date cannot be before the transaction date."})

        if self.currency_id and self.currency_id != self.company.default_currency_id:
            if not self.exchange_rate or self.exchange_rate <= 0:
                raise ValidationError(
                    {"exchange_rate": f"A positive exchange rate is required for {self.currency_id}."}
                )

        # Tenant safety
        if self.contact_id and self.contact.company_id != self.company_id:
            raise ValidationError("Contact must belong to the same company.")
        if self.payment_account_id and self.payment_account.company_id != self.company_id:
            raise ValidationError("Payment account must belong to the same company.")

    def save(self, *args, **kwargs):
        if self.type == "invoice" and not self.secure_token:
            self.secure_token = _new_secure_token()
        self.full_clean()
        return super().save(*args, **kwargs)

    def transition_to(self, new_status):
        allowed = {
            "quotation": ["draft", "open", "cancelled"],
            "draft": ["open", "approved", "cancelled", "completed"],
            "approved": ["open", "cancelled"],
            "open": ["completed", "cancelled"],
            "unapplied_credit": ["completed"],
            "completed": ["open", "unapplied_credit"],
            "paid": ["completed", "open"],
            "overdue": ["open", "completed"],
            "partial": ["open", "completed"],
            "cancelled": [],
        }
        if new_status not in allowed.get(self.status, []):
            raise ValidationError(
                f"Cannot move {self} from {self.status} to {new_status}")
        self.status = new_status
        self.save(update_fields=["status", "updated_at"])


# ---------- Line items ----------
class LineItem(models.Model):
    """One line of a document: quantity × unit_price = amount."""

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    transaction = models.ForeignKey(
        Transaction, on_delete=models.CASCADE, related_name="line_items")
    description = models.TextField(blank=True, default="")
    quantity = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("1"))
    unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00"))
    amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    # revenue (invoice) or expense (bill) account the line posts to
    account = models.ForeignKey(
        Account,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="line_items",
    )
    sales_tax = models.ForeignKey(
        SalesTax, null=True, blank=True, on_delete=models.PROTECT)
    product = models.ForeignKey(
        Product, null=True, blank=True, on_delete=models.PROTECT)

    objects = LineItemManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "transaction"], name="ledger_core_line_tx_idx"),
            models.Index(fields=["company", "account"], name="ledger_core_line_acc_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0) & models.Q(unit_price__gte=0),
                name="lineitem_non_negative_amounts",
            ),
        ]

    def __str__(self):
        return f"{self.description or self.product or 'Line'}: {self.amount}"

    def compute_amount(self):
        return round2((self.quantity or Decimal("0")) * (self.unit_price or Decimal("0")))

    def clean(self):
        if self.quantity is not None and self.quantity < 0:
            raise ValidationError("Quantity must be >= 0")
        if self.unit_price is not None and self.unit_price < 0:
            raise ValidationError("Unit price must be >= 0")
        for related in (self.account, self.sales_tax, self.product):
            if related is not None and related.company_id != self.company_id:
                raise ValidationError(
                    f"{related.__class__.__name__} on a line must belong to the same company."
                )

    def save(self, *args, **kwargs):
        if not self.company_id and self.transaction_id:
            self.company_id = self.transaction.company_id
        self.amount = self.compute_amount()
        self.full_clean()
        return super().save(*args, **kwargs)
