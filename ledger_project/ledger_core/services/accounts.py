import logging

from django.db import transaction
from django.db.models import Q

from ..conf import ledger_setting
from ..exceptions import AccountInUse, ConfigurationError
from ..models import Account, AccountRoleMapping, LedgerEntry
from .audit_helper import log_action

logger = logging.getLogger(__name__)

# Name based fallbacks for companies that never mapped their roles
_ROLE_FALLBACK_NAMES = {
    "accounts_receivable": ("accounts_receivable", "Accounts Receivable"),
    "accounts_payable": ("accounts_payable", "Accounts Payable"),
    "sales_tax_payable": ("other_current_liabilities", "Sales Tax Payable"),
    "default_revenue": ("income", "Sales"),
    "default_expense": ("expenses", "General Expenses"),
}

ROLE_LABELS = {
    "accounts_receivable": "Accounts Receivable",
    "accounts_payable": "Accounts Payable",
    "default_revenue": "Default Revenue",
    "default_expense": "Default Expense",
    "sales_tax_payable": "Sales Tax Payable",
    "fx_gain": "Foreign Exchange Gain",
    "fx_loss": "Foreign Exchange Loss",
    "retained_earnings": "Retained Earnings",
}


class AccountRoles:
    """
    Resolves the accounts the engine needs by role for one company.
    Built once per operation and passed down, so no account id is ever
    hard-coded in a query.
    """

    def __init__(self, company):
        self.company = company
        self._cache = {}
        self._mapped = {
            m.role: m.account
            for m in AccountRoleMapping.objects.for_company(company).select_related("account")
        }

    def find(self, role):
        """Account for role, or None when the company has none."""
        if role not in self._cache:
            self._cache[role] = self._mapped.get(role) or self._fallback(role)
        return self._cache[role]

    def get(self, role):
        """Account for role; a missing account is a configuration error."""
        account = self.find(role)
        if account is None:
            label = ROLE_LABELS.get(role, role)
            raise ConfigurationError(
                f"{self.company} has no {label} account configured.", role=role
            )
        return account

    def _fallback(self, role):
        accounts = Account.objects.for_company(self.company)
        home = self.company.default_currency_id

        if role == "fx_gain":
            return accounts.filter(code=ledger_setting("FX_GAIN_ACCOUNT_CODE")).first()
        if role == "fx_loss":
            return accounts.filter(code=ledger_setting("FX_LOSS_ACCOUNT_CODE")).first()
        if role == "retained_earnings":
            return (
                accounts.filter(code__in=("3100", "3900")).order_by("code").first()
                or accounts.filter(name__iexact="Retained Earnings").first()
            )

        if role not in _ROLE_FALLBACK_NAMES:
            return None
        ac_type, name = _ROLE_FALLBACK_NAMES[role]
        candidates = accounts.filter(ac_type=ac_type, is_active=True).filter(
            Q(currency__isnull=True) | Q(currency_id=home)
        )
        return (
            candidates.filter(name__iexact=name).first()
            # only a sole candidate is unambiguous
            or (candidates.first() if candidates.count() == 1 else None)
        )


def currency_account_for(company, ac_type, currency_code):
    """
    Currency specific AR/AP account ("Accounts Receivable - EUR").
    Returns None when the company keeps no such account.
    """
    accounts = Account.objects.filter(company=company, ac_type=ac_type, is_active=True)
    account = accounts.filter(currency_id=currency_code).order_by("pk").first()
    if account is None:
        account = accounts.filter(name__iendswith=f"- {currency_code}").order_by("pk").first()
    return account


def has_account_transactions(account):
    return LedgerEntry.objects.filter(account=account).exists()


def create_account(company, user=None, **fields) -> Account:
    """Chart-of-accounts setup. The balance always starts at zero."""
    fields.pop("balance", None)
    account = Account(company=company, **fields)
    account.save()
    log_action(action="create", instance=account, user=user,
               changes={"name": account.name, "ac_type": account.ac_type})
    return account


@transaction.atomic
def delete_account(account: Account, user=None):
    """Delete an unused account. Accounts with ledger history are kept."""
    account = Account.objects.select_for_update().get(pk=account.pk)
    used_by = list(
        LedgerEntry.objects.filter(account=account)
        .values_list("transaction_id", flat=True)
        .distinct()[:50]
    )
    if used_by:
        raise AccountInUse(
            "Account",
            account.pk,
            f"{account} has ledger entries in {len(used_by)} transaction(s); "
            "deactivate it instead",
            references=used_by,
        )
    if AccountRoleMapping.objects.filter(account=account).exists():
        raise AccountInUse(
            "Account", account.pk,
            f"{account} is mapped to an engine role",
            references=list(
                AccountRoleMapping.objects.filter(account=account).values_list("role", flat=True)
            ),
        )
    log_action(action="delete", instance=account, user=user,
               changes={"name": account.name})
    account_id = account.pk
    account.delete()
    logger.info("Deleted account %s", account_id)


# code, name, type, cash flow category, role
DEFAULT_CHART = [
    ("1000", "Checking", "bank", "none", None),
    ("1200", "Accounts Receivable", "accounts_receivable", "operating", "accounts_receivable"),
    ("1500", "Equipment", "property_plant_equipment", "investing", None),
    ("2000", "Accounts Payable", "accounts_payable", "operating", "accounts_payable"),
    ("2200", "Sales Tax Payable", "other_current_liabilities", "operating", "sales_tax_payable"),
    ("2700", "Bank Loan", "long_term_liabilities", "financing", None),
    ("3000", "Owner's Equity", "equity", "financing", None),
    ("3100", "Retained Earnings", "equity", "none", "retained_earnings"),
    ("4000", "Sales", "income", "operating", "default_revenue"),
    ("4300", "Foreign Exchange Gain", "other_income", "operating", "fx_gain"),
    ("5000", "Cost of Goods Sold", "cost_of_goods_sold", "operating", None),
    ("6000", "General Expenses", "expenses", "operating", "default_expense"),
    ("7100", "Foreign Exchange Loss", "other_expense", "operating", "fx_loss"),
]


@transaction.atomic
def seed_default_chart(company, user=None):
    """
    Create the starter chart of accounts and map the engine roles onto it.
    Existing codes are left alone, so the call can be repeated.
    Returns {code: Account}.
    """
    chart = {}
    for code, name, ac_type, category, role in DEFAULT_CHART:
        account = Account.objects.filter(company=company, code=code).first()
        if account is None:
            account = create_account(
                company, user=user, code=code, name=name, ac_type=ac_type,
                cash_flow_category=category,
                is_control_account=ac_type in ("accounts_receivable", "accounts_payable"),
            )
        chart[code] = account
        if role and not AccountRoleMapping.objects.filter(company=company, role=role).exists():
            AccountRoleMapping(company=company, role=role, account=account).save()
    logger.info("Seeded %d accounts for %s", len(chart), company)
    return chart
