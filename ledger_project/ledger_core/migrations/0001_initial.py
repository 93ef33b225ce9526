import decimal

import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

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
    ("overdue", "Overdue"),
    ("partial", "Partial"),
    ("unapplied_credit", "Unapplied Credit"),
    ("quotation", "Quotation"),
    ("draft", "Draft"),
    ("approved", "Approved"),
    ("cancelled", "Cancelled"),
]

MONEY = {"max_digits": 18, "decimal_places": 2}
RATE = {"max_digits": 18, "decimal_places": 6}


def money(default=None, null=False):
    if null:
        return models.DecimalField(null=True, blank=True, **MONEY)
    if default is None:
        return models.DecimalField(**MONEY)
    return models.DecimalField(default=decimal.Decimal(default), **MONEY)


def company_fk():
    return models.ForeignKey(
        on_delete=django.db.models.deletion.CASCADE, to="ledger_core.company")


def pk():
    return models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("auth", "0012_alter_user_first_name_max_length"),
    ]

    operations = [
        migrations.CreateModel(
            name="Currency",
            fields=[
                ("code", models.CharField(max_length=3, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=64)),
                ("symbol", models.CharField(blank=True, max_length=8, null=True)),
                ("decimal_places", models.PositiveSmallIntegerField(default=2)),
            ],
            options={"verbose_name_plural": "currencies"},
        ),
        migrations.CreateModel(
            name="User",
            fields=[
                ("id", pk()),
                ("password", models.CharField(max_length=128, verbose_name="password")),
                ("last_login", models.DateTimeField(blank=True, null=True, verbose_name="last login")),
                ("is_superuser", models.BooleanField(
                    default=False,
                    help_text="Designates that this user has all permissions without explicitly assigning them.",
                    verbose_name="superuser status")),
                ("username", models.CharField(
                    error_messages={"unique": "A user with that username already exists."},
                    help_text="Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.",
                    max_length=150, unique=True,
                    validators=[django.contrib.auth.validators.UnicodeUsernameValidator()],
                    verbose_name="username")),
                ("first_name", models.CharField(blank=True, max_length=150, verbose_name="first name")),
                ("last_name", models.CharField(blank=True, max_length=150, verbose_name="last name")),
                ("email", models.EmailField(blank=True, max_length=254, verbose_name="email address")),
                ("is_staff", models.BooleanField(
                    default=False,
                    help_text="Designates whether the user can log into this admin site.",
                    verbose_name="staff status")),
                ("is_active", models.BooleanField(
                    default=True,
                    help_text="Designates whether this user should be treated as active. "
                              "Unselect this instead of deleting accounts.",
                    verbose_name="active")),
                ("date_joined", models.DateTimeField(default=django.utils.timezone.now, verbose_name="date joined")),
                ("phone", models.CharField(blank=True, max_length=32)),
                ("groups", models.ManyToManyField(
                    blank=True,
                    help_text="The groups this user belongs to. A user will get all permissions "
                              "granted to each of their groups.",
                    related_name="user_set", related_query_name="user",
                    to="auth.group", verbose_name="groups")),
                ("user_permissions", models.ManyToManyField(
                    blank=True, help_text="Specific permissions for this user.",
                    related_name="user_set", related_query_name="user",
                    to="auth.permission", verbose_name="user permissions")),
            ],
            managers=[("objects", django.contrib.auth.models.UserManager())],
        ),
        migrations.CreateModel(
            name="Company",
            fields=[
                ("id", pk()),
                ("name", models.CharField(max_length=200)),
                ("slug", models.SlugField(blank=True, max_length=80, unique=True)),
                ("fiscal_year_start_month", models.PositiveSmallIntegerField(
                    default=1,
                    validators=[django.core.validators.MinValueValidator(1),
                                django.core.validators.MaxValueValidator(12)])),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("default_currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="companies",
                    to="ledger_core.currency")),
                ("owner", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="owned_companies", to=settings.AUTH_USER_MODEL)),
            ],
            options={"verbose_name_plural": "companies"},
        ),
        migrations.AddField(
            model_name="user",
            name="default_company",
            field=models.ForeignKey(
                blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                related_name="default_users", to="ledger_core.company"),
        ),
        migrations.AddIndex(
            model_name="user",
            index=models.Index(fields=["default_company"], name="ledger_core_default_c_idx"),
        ),
        migrations.CreateModel(
            name="ExchangeRate",
            fields=[
                ("id", pk()),
                ("rate", models.DecimalField(**RATE)),
                ("effective_date", models.DateField()),
                ("is_manual", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("from_currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="rates_from",
                    to="ledger_core.currency")),
                ("to_currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="rates_to",
                    to="ledger_core.currency")),
            ],
            options={
                "indexes": [models.Index(
                    fields=["from_currency", "to_currency", "effective_date"],
                    name="ledger_core_rate_pair_idx")],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("from_currency", "to_currency", "effective_date"),
                        name="uq_exchange_rate_pair_date"),
                    models.CheckConstraint(
                        condition=models.Q(rate__gt=0), name="ck_exchange_rate_positive"),
                ],
            },
        ),
        migrations.CreateModel(
            name="EntityMembership",
            fields=[
                ("id", pk()),
                ("role", models.CharField(
                    choices=[("owner", "Owner"), ("admin", "Admin"),
                             ("accountant", "Accountant"), ("viewer", "Viewer")],
                    default="viewer", max_length=20)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="memberships",
                    to="ledger_core.company")),
                ("user", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="memberships",
                    to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "indexes": [models.Index(fields=["company", "user"], name="ledger_core_member_idx")],
                "constraints": [models.UniqueConstraint(
                    fields=("user", "company"), name="uq_user_company_membership")],
            },
        ),
        migrations.CreateModel(
            name="Account",
            fields=[
                ("id", pk()),
                ("code", models.CharField(blank=True, default="", max_length=32)),
                ("name", models.CharField(max_length=200)),
                ("ac_type", models.CharField(choices=AC_TYPES, max_length=32)),
                ("sales_tax_type", models.CharField(blank=True, default="", max_length=32)),
                ("balance", money("0.00")),
                ("is_active", models.BooleanField(default=True)),
                ("cash_flow_category", models.CharField(
                    choices=[("operating", "Operating"), ("investing", "Investing"),
                             ("financing", "Financing"), ("none", "None")],
                    default="none", max_length=16)),
                ("is_control_account", models.BooleanField(default=False)),
                ("last_reconciled_date", models.DateField(blank=True, null=True)),
                ("last_reconciled_balance", money(null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", company_fk()),
                ("currency", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="accounts", to="ledger_core.currency")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "ac_type"], name="ledger_core_acc_type_idx"),
                    models.Index(fields=["company", "code"], name="ledger_core_acc_code_idx"),
                ],
                "constraints": [models.UniqueConstraint(
                    condition=models.Q(("code", ""), _negated=True),
                    fields=("company", "code"), name="uq_company_account_code")],
            },
        ),
        migrations.CreateModel(
            name="AccountRoleMapping",
            fields=[
                ("id", pk()),
                ("role", models.CharField(
                    choices=[
                        ("accounts_receivable", "Accounts Receivable"),
                        ("accounts_payable", "Accounts Payable"),
                        ("default_revenue", "Default Revenue"),
                        ("default_expense", "Default Expense"),
                        ("sales_tax_payable", "Sales Tax Payable"),
                        ("fx_gain", "Foreign Exchange Gain"),
                        ("fx_loss", "Foreign Exchange Loss"),
                        ("retained_earnings", "Retained Earnings"),
                    ],
                    max_length=32)),
                ("account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="roles",
                    to="ledger_core.account")),
                ("company", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="account_roles",
                    to="ledger_core.company")),
            ],
            options={
                "constraints": [models.UniqueConstraint(
                    fields=("company", "role"), name="uq_company_account_role")],
            },
        ),
        migrations.CreateModel(
            name="Contact",
            fields=[
                ("id", pk()),
                ("name", models.CharField(max_length=200)),
                ("contact_type", models.CharField(
                    choices=[("customer", "Customer"), ("vendor", "Vendor"),
                             ("both", "Customer & Vendor")],
                    default="customer", max_length=10)),
                ("email", models.EmailField(blank=True, max_length=254, null=True)),
                ("payment_terms_days", models.PositiveIntegerField(default=30)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", company_fk()),
                ("currency", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="contacts", to="ledger_core.currency")),
            ],
            options={
                "indexes": [models.Index(fields=["company", "name"], name="ledger_core_contact_idx")],
            },
        ),
        migrations.CreateModel(
            name="SalesTax",
            fields=[
                ("id", pk()),
                ("name", models.CharField(max_length=100)),
                ("rate", models.DecimalField(decimal_places=4, max_digits=7)),
                ("is_active", models.BooleanField(default=True)),
                ("account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="sales_taxes",
                    to="ledger_core.account")),
                ("company", company_fk()),
            ],
            options={"verbose_name_plural": "sales taxes"},
        ),
        migrations.CreateModel(
            name="Product",
            fields=[
                ("id", pk()),
                ("sku", models.CharField(blank=True, max_length=80, null=True)),
                ("name", models.CharField(max_length=200)),
                ("default_unit_price", models.DecimalField(
                    decimal_places=4, default=decimal.Decimal("0.00"), max_digits=18)),
                ("is_active", models.BooleanField(default=True)),
                ("company", company_fk()),
                ("purchase_account", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="products_purchase_account", to="ledger_core.account")),
                ("sales_account", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="products_sales_account", to="ledger_core.account")),
            ],
            options={
                "indexes": [models.Index(fields=["company", "name"], name="ledger_core_product_idx")],
                "constraints": [models.UniqueConstraint(
                    fields=("company", "sku"), name="uq_company_product_sku")],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                ("id", pk()),
                ("reference", models.CharField(blank=True, max_length=64, null=True)),
                ("type", models.CharField(choices=TRANSACTION_TYPES, max_length=20)),
                ("date", models.DateField()),
                ("due_date", models.DateField(blank=True, null=True)),
                ("description", models.TextField(blank=True, null=True)),
                ("amount", money("0.00")),
                ("sub_total", money(null=True)),
                ("tax_amount", money(null=True)),
                ("balance", money(null=True)),
                ("status", models.CharField(choices=TRANSACTION_STATUSES, default="open", max_length=20)),
                ("payment_method", models.CharField(
                    blank=True, null=True, max_length=20,
                    choices=[("cash", "Cash"), ("cheque", "Cheque"), ("credit_card", "Credit Card"),
                             ("bank_transfer", "Bank Transfer"), ("other", "Other")])),
                ("payment_date", models.DateField(blank=True, null=True)),
                ("exchange_rate", models.DecimalField(blank=True, null=True, **RATE)),
                ("foreign_amount", money(null=True)),
                ("secure_token", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("company", company_fk()),
                ("contact", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="transactions", to="ledger_core.contact")),
                ("created_by", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="transactions_created", to=settings.AUTH_USER_MODEL)),
                ("currency", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="transactions", to="ledger_core.currency")),
                ("payment_account", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="payment_transactions", to="ledger_core.account")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "type", "status"], name="ledger_core_tx_status_idx"),
                    models.Index(fields=["company", "date"], name="ledger_core_tx_date_idx"),
                    models.Index(fields=["company", "reference"], name="ledger_core_tx_ref_idx"),
                    models.Index(fields=["company", "contact"], name="ledger_core_tx_contact_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="LineItem",
            fields=[
                ("id", pk()),
                ("description", models.TextField(blank=True, default="")),
                ("quantity", models.DecimalField(
                    decimal_places=4, default=decimal.Decimal("1"), max_digits=14)),
                ("unit_price", models.DecimalField(
                    decimal_places=4, default=decimal.Decimal("0.00"), max_digits=18)),
                ("amount", money("0.00")),
                ("account", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="line_items", to="ledger_core.account")),
                ("company", company_fk()),
                ("product", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    to="ledger_core.product")),
                ("sales_tax", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    to="ledger_core.salestax")),
                ("transaction", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="line_items",
                    to="ledger_core.transaction")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "transaction"], name="ledger_core_line_tx_idx"),
                    models.Index(fields=["company", "account"], name="ledger_core_line_acc_idx"),
                ],
                "constraints": [models.CheckConstraint(
                    condition=models.Q(("quantity__gte", 0), ("unit_price__gte", 0)),
                    name="lineitem_non_negative_amounts")],
            },
        ),
        migrations.CreateModel(
            name="LedgerEntry",
            fields=[
                ("id", pk()),
                ("description", models.CharField(blank=True, default="", max_length=400)),
                ("debit", money("0.00")),
                ("credit", money("0.00")),
                ("date", models.DateField()),
                ("exchange_rate", models.DecimalField(blank=True, null=True, **RATE)),
                ("foreign_amount", money(null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="ledger_entries",
                    to="ledger_core.account")),
                ("company", company_fk()),
                ("currency", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    related_name="ledger_entries", to="ledger_core.currency")),
                ("document", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="settlement_entries", to="ledger_core.transaction")),
                ("transaction", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="ledger_entries",
                    to="ledger_core.transaction")),
            ],
            options={
                "verbose_name_plural": "ledger entries",
                "indexes": [
                    models.Index(fields=["company", "account", "date"], name="ledger_core_le_acc_idx"),
                    models.Index(fields=["company", "transaction"], name="ledger_core_le_tx_idx"),
                    models.Index(fields=["company", "document"], name="ledger_core_le_doc_idx"),
                ],
                "constraints": [models.CheckConstraint(
                    condition=models.Q(("debit__gte", 0), ("credit__gte", 0)),
                    name="ledger_entry_non_negative")],
            },
        ),
        migrations.CreateModel(
            name="PaymentApplication",
            fields=[
                ("id", pk()),
                ("amount_applied", money()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("applied_via", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.CASCADE,
                    related_name="applications_routed", to="ledger_core.transaction")),
                ("company", company_fk()),
                ("invoice", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="applications_received",
                    to="ledger_core.transaction")),
                ("payment", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="applications_made",
                    to="ledger_core.transaction")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "payment"], name="ledger_core_app_pay_idx"),
                    models.Index(fields=["company", "invoice"], name="ledger_core_app_inv_idx"),
                ],
                "constraints": [models.CheckConstraint(
                    condition=models.Q(("amount_applied__gt", 0)),
                    name="payment_application_positive")],
            },
        ),
        migrations.CreateModel(
            name="FxRealization",
            fields=[
                ("id", pk()),
                ("foreign_amount", money()),
                ("original_rate", models.DecimalField(**RATE)),
                ("payment_rate", models.DecimalField(**RATE)),
                ("gain_loss_amount", money()),
                ("realized_date", models.DateField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("application", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="fx_realizations",
                    to="ledger_core.paymentapplication")),
                ("company", company_fk()),
                ("control_account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="+",
                    to="ledger_core.account")),
                ("currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, to="ledger_core.currency")),
                ("gain_loss_account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="+",
                    to="ledger_core.account")),
                ("invoice", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="fx_realizations_received",
                    to="ledger_core.transaction")),
                ("payment", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="fx_realizations",
                    to="ledger_core.transaction")),
            ],
            options={
                "indexes": [models.Index(
                    fields=["company", "realized_date"], name="ledger_core_fxr_date_idx")],
            },
        ),
        migrations.CreateModel(
            name="FxRevaluation",
            fields=[
                ("id", pk()),
                ("revaluation_date", models.DateField()),
                ("account_type", models.CharField(choices=AC_TYPES, max_length=32)),
                ("foreign_balance", money()),
                ("original_rate", models.DecimalField(**RATE)),
                ("revaluation_rate", models.DecimalField(**RATE)),
                ("unrealized_gain_loss", money()),
                ("adjustment_amount", money()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="fx_revaluations",
                    to="ledger_core.account")),
                ("company", company_fk()),
                ("currency", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, to="ledger_core.currency")),
                ("journal", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="fx_revaluations",
                    to="ledger_core.transaction")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "revaluation_date"], name="ledger_core_fxv_date_idx"),
                    models.Index(fields=["company", "account", "currency"], name="ledger_core_fxv_acc_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Reconciliation",
            fields=[
                ("id", pk()),
                ("statement_date", models.DateField()),
                ("statement_ending_balance", money()),
                ("opening_balance", money("0.00")),
                ("cleared_balance", money("0.00")),
                ("difference", money("0.00")),
                ("status", models.CharField(
                    choices=[("in_progress", "In progress"), ("completed", "Completed")],
                    default="in_progress", max_length=12)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="reconciliations",
                    to="ledger_core.account")),
                ("company", company_fk()),
            ],
            options={
                "indexes": [models.Index(
                    fields=["company", "account", "statement_date"], name="ledger_core_recon_idx")],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationItem",
            fields=[
                ("id", pk()),
                ("is_cleared", models.BooleanField(default=False)),
                ("company", company_fk()),
                ("ledger_entry", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="reconciliation_items",
                    to="ledger_core.ledgerentry")),
                ("reconciliation", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="items",
                    to="ledger_core.reconciliation")),
            ],
            options={
                "constraints": [models.UniqueConstraint(
                    fields=("reconciliation", "ledger_entry"), name="uq_reconciliation_entry")],
            },
        ),
        migrations.CreateModel(
            name="ImportedTransaction",
            fields=[
                ("id", pk()),
                ("date", models.DateField()),
                ("name", models.CharField(max_length=255)),
                ("merchant_name", models.CharField(blank=True, max_length=255, null=True)),
                ("amount", money()),
                ("status", models.CharField(
                    choices=[("unmatched", "Unmatched"), ("matched", "Matched"),
                             ("ignored", "Ignored"), ("deleted", "Deleted")],
                    default="unmatched", max_length=12)),
                ("matched_via", models.CharField(
                    blank=True, default="", max_length=12,
                    choices=[("created", "Created payment"), ("manual", "Linked existing entry"),
                             ("categorized", "Categorized"),
                             ("multi", "Split across several documents")])),
                ("is_multi_match", models.BooleanField(default=False)),
                ("external_id", models.CharField(blank=True, max_length=128, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("bank_account", models.ForeignKey(
                    on_delete=django.db.models.deletion.PROTECT, related_name="imported_transactions",
                    to="ledger_core.account")),
                ("company", company_fk()),
                ("currency", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.PROTECT,
                    to="ledger_core.currency")),
                ("matched_transaction", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="imported_matches", to="ledger_core.transaction")),
                ("suggested_account", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    related_name="suggested_for_imports", to="ledger_core.account")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["company", "status"], name="ledger_core_imp_status_idx"),
                    models.Index(fields=["company", "bank_account", "date"], name="ledger_core_imp_bank_idx"),
                ],
                "constraints": [models.UniqueConstraint(
                    fields=("company", "external_id"), name="uq_imported_external_id")],
            },
        ),
        migrations.CreateModel(
            name="BankTransactionMatch",
            fields=[
                ("id", pk()),
                ("amount", money()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", company_fk()),
                ("imported_transaction", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="matches",
                    to="ledger_core.importedtransaction")),
                ("transaction", models.ForeignKey(
                    on_delete=django.db.models.deletion.CASCADE, related_name="bank_matches",
                    to="ledger_core.transaction")),
            ],
            options={
                "indexes": [models.Index(
                    fields=["company", "imported_transaction"], name="ledger_core_match_imp_idx")],
            },
        ),
        migrations.CreateModel(
            name="AuditLog",
            fields=[
                ("id", pk()),
                ("action", models.CharField(max_length=50)),
                ("object_type", models.CharField(max_length=100)),
                ("object_id", models.CharField(max_length=100)),
                ("changes", models.JSONField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("company", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    to="ledger_core.company")),
                ("user", models.ForeignKey(
                    blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                    to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "activity_logs",
                "indexes": [
                    models.Index(fields=["company", "user"], name="ledger_core_log_user_idx"),
                    models.Index(fields=["company", "created_at"], name="ledger_core_log_date_idx"),
                ],
            },
        ),
    ]
