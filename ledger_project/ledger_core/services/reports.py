"""
Financial statements straight from the ledger.

Income-statement accounts reset every fiscal year: the trial balance and
the balance sheet only show their current-year activity and fold earlier
years into retained earnings, so both still balance.
"""
import calendar
import datetime
import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from decimal import Decimal

from django.db.models import Q, Sum

from ..exceptions import ConfigurationError
from ..models import (ASSET_TYPES, EQUITY_TYPES, INCOME_STATEMENT_TYPES,
                      LIABILITY_TYPES, Account, LedgerEntry, signed_effect)
from ..money import ZERO, from_cents, round2, to_cents
from .accounts import AccountRoles

logger = logging.getLogger(__name__)

INCOME_TYPES = ("income", "other_income")
CASH_TYPES = ("bank",)
CASH_FLOW_SECTIONS = ("operating", "investing", "financing")


# ---------- fiscal year ----------
def get_fiscal_year_bounds(on_date: datetime.date, start_month: int = 1):
    """
    (start, end) of the fiscal year containing on_date: start is the most
    recent first-of-start_month on or before on_date, end is the last day
    of the eleventh month after it.
    """
    if not 1 <= int(start_month) <= 12:
        raise ValueError(f"Fiscal year start month must be 1-12, got {start_month}")
    year = on_date.year if on_date.month >= start_month else on_date.year - 1
    start = datetime.date(year, start_month, 1)
    end_month = start_month + 10
    end_year = year + end_month // 12
    end_month = end_month % 12 + 1
    end = datetime.date(end_year, end_month, calendar.monthrange(end_year, end_month)[1])
    return start, end


def _fiscal_start(company, as_of):
    return get_fiscal_year_bounds(as_of, company.fiscal_year_start_month)[0]


def _net_income(company, date_filter):
    """Σincome − Σexpense over P&L entries matching date_filter."""
    rows = (
        LedgerEntry.objects.filter(company=company, account__ac_type__in=INCOME_STATEMENT_TYPES)
        .filter(date_filter)
        .values("account__ac_type")
        .annotate(debit=Sum("debit"), credit=Sum("credit"))
    )
    total = ZERO
    for row in rows:
        debit, credit = row["debit"] or ZERO, row["credit"] or ZERO
        if row["account__ac_type"] in INCOME_TYPES:
            total += credit - debit
        else:
            total -= debit - credit
    return round2(total)


def prior_years_net_income(company, as_of):
    return _net_income(company, Q(date__lt=_fiscal_start(company, as_of)))


def current_year_net_income(company, as_of):
    return _net_income(company, Q(date__gte=_fiscal_start(company, as_of), date__lte=as_of))


# ---------- per-account balances ----------
def _account_sums(company, entry_filter):
    rows = (
        LedgerEntry.objects.filter(company=company)
        .filter(entry_filter)
        .values("account_id")
        .annotate(debit=Sum("debit"), credit=Sum("credit"))
    )
    return {row["account_id"]: (row["debit"] or ZERO, row["credit"] or ZERO) for row in rows}


def account_balances_as_of(company, as_of):
    """
    {account: balance on its normal side} as of a date, lifetime for
    balance-sheet accounts and current fiscal year for P&L accounts.
    """
    fiscal_start = _fiscal_start(company, as_of)
    sums = _account_sums(
        company,
        Q(date__lte=as_of)
        & (~Q(account__ac_type__in=INCOME_STATEMENT_TYPES) | Q(date__gte=fiscal_start)),
    )
    balances = OrderedDict()
    for account in Account.objects.for_company(company).order_by("code", "name"):
        debit, credit = sums.get(account.pk, (ZERO, ZERO))
        balances[account] = round2(signed_effect(account.ac_type, debit, credit))
    return balances


# ---------- trial balance ----------
@dataclass
class TrialBalanceRow:
    account: Account
    total_debits: Decimal
    total_credits: Decimal
    debit_balance: Decimal
    credit_balance: Decimal


@dataclass
class TrialBalance:
    as_of: datetime.date
    fiscal_year_start: datetime.date
    rows: list = field(default_factory=list)
    total_debits: Decimal = ZERO
    total_credits: Decimal = ZERO

    @property
    def is_balanced(self):
        return self.total_debits == self.total_credits


def trial_balance(company, as_of: datetime.date) -> TrialBalance:
    """
    Net debit or credit balance of every account as of a date, summed in
    integer cents. P&L accounts carry only the current fiscal year; earlier
    years' net income is added to retained earnings. Zero rows are dropped.
    """
    fiscal_start = _fiscal_start(company, as_of)
    entries = (
        LedgerEntry.objects.filter(company=company, date__lte=as_of)
        .values("account_id", "account__ac_type", "date", "debit", "credit")
        .order_by()
    )

    totals = defaultdict(lambda: [0, 0])
    prior_net_cents = 0
    for entry in entries:
        debit_cents, credit_cents = to_cents(entry["debit"]), to_cents(entry["credit"])
        ac_type = entry["account__ac_type"]
        if ac_type in INCOME_STATEMENT_TYPES and entry["date"] < fiscal_start:
            if ac_type in INCOME_TYPES:
                prior_net_cents += credit_cents - debit_cents
            else:
                prior_net_cents -= debit_cents - credit_cents
            continue
        totals[entry["account_id"]][0] += debit_cents
        totals[entry["account_id"]][1] += credit_cents

    if prior_net_cents:
        retained = AccountRoles(company).find("retained_earnings")
        if retained is None:
            raise ConfigurationError(
                f"{company} has prior-year income of {from_cents(prior_net_cents)} "
                "but no Retained Earnings account to carry it.",
                role="retained_earnings",
            )
        if prior_net_cents > 0:
            totals[retained.pk][1] += prior_net_cents
        else:
            totals[retained.pk][0] += -prior_net_cents

    report = TrialBalance(as_of=as_of, fiscal_year_start=fiscal_start)
    debit_sum = credit_sum = 0
    accounts = Account.objects.for_company(company).filter(pk__in=totals.keys()).order_by("code", "name")
    for account in accounts:
        debit_cents, credit_cents = totals[account.pk]
        net = debit_cents - credit_cents
        if not net:
            continue
        report.rows.append(TrialBalanceRow(
            account=account,
            total_debits=from_cents(debit_cents),
            total_credits=from_cents(credit_cents),
            debit_balance=from_cents(net) if net > 0 else ZERO,
            credit_balance=from_cents(-net) if net < 0 else ZERO,
        ))
        if net > 0:
            debit_sum += net
        else:
            credit_sum += -net
    report.total_debits = from_cents(debit_sum)
    report.total_credits = from_cents(credit_sum)
    if debit_sum != credit_sum:
        logger.error("Trial balance for %s as of %s is off by %s",
                     company, as_of, from_cents(debit_sum - credit_sum))
    return report


# ---------- balance sheet ----------
@dataclass
class StatementSection:
    title: str
    rows: list = field(default_factory=list)  # [(account or label, amount)]
    total: Decimal = ZERO

    def add(self, label, amount):
        self.rows.append((label, amount))
        self.total += amount


@dataclass
class BalanceSheet:
    as_of: datetime.date
    assets: StatementSection
    liabilities: StatementSection
    equity: StatementSection
    retained_earnings: Decimal = ZERO

    @property
    def total_liabilities_and_equity(self):
        return self.liabilities.total + self.equity.total

    @property
    def is_balanced(self):
        return self.assets.total == self.total_liabilities_and_equity


def balance_sheet(company, as_of: datetime.date) -> BalanceSheet:
    """
    Assets, liabilities and equity as of a date. Retained earnings are
    shown as one line: the RE account's own balance plus all P&L to date.
    """
    sums = _account_sums(company, Q(date__lte=as_of))
    retained_account = AccountRoles(company).find("retained_earnings")
    sheet = BalanceSheet(
        as_of=as_of,
        assets=StatementSection("Assets"),
        liabilities=StatementSection("Liabilities"),
        equity=StatementSection("Equity"),
    )
    sections = (
        (ASSET_TYPES, sheet.assets),
        (LIABILITY_TYPES, sheet.liabilities),
        (EQUITY_TYPES, sheet.equity),
    )
    retained = prior_years_net_income(company, as_of) + current_year_net_income(company, as_of)
    for types, section in sections:
        for account in Account.objects.for_company(company).filter(ac_type__in=types).order_by("code", "name"):
            debit, credit = sums.get(account.pk, (ZERO, ZERO))
            amount = round2(signed_effect(account.ac_type, debit, credit))
            if retained_account is not None and account.pk == retained_account.pk:
                retained += amount
                continue
            if amount:
                section.add(account, amount)
    sheet.retained_earnings = retained
    sheet.equity.add("Retained Earnings", retained)
    return sheet


# ---------- income statement ----------
@dataclass
class IncomeStatement:
    start: datetime.date
    end: datetime.date
    revenue: StatementSection
    cost_of_goods_sold: StatementSection
    operating_expenses: StatementSection
    other_income: StatementSection
    other_expense: StatementSection

    @property
    def gross_profit(self):
        return self.revenue.total - self.cost_of_goods_sold.total

    @property
    def operating_income(self):
        return self.gross_profit - self.operating_expenses.total

    @property
    def net_income(self):
        return self.operating_income + self.other_income.total - self.other_expense.total


def income_statement(company, start: datetime.date, end: datetime.date) -> IncomeStatement:
    sums = _account_sums(company, Q(date__gte=start, date__lte=end))
    statement = IncomeStatement(
        start=start,
        end=end,
        revenue=StatementSection("Revenue"),
        cost_of_goods_sold=StatementSection("Cost of Goods Sold"),
        operating_expenses=StatementSection("Operating Expenses"),
        other_income=StatementSection("Other Income"),
        other_expense=StatementSection("Other Expense"),
    )
    tiers = {
        "income": statement.revenue,
        "cost_of_goods_sold": statement.cost_of_goods_sold,
        "expenses": statement.operating_expenses,
        "other_income": statement.other_income,
        "other_expense": statement.other_expense,
    }
    accounts = Account.objects.for_company(company).filter(ac_type__in=tiers.keys())
    for account in accounts.order_by("code", "name"):
        if account.pk not in sums:
            continue
        debit, credit = sums[account.pk]
        amount = round2(signed_effect(account.ac_type, debit, credit))
        if amount:
            tiers[account.ac_type].add(account, amount)
    return statement


# ---------- cash flow ----------
@dataclass
class CashFlowStatement:
    start: datetime.date
    end: datetime.date
    sections: dict
    net_change: Decimal
    opening_cash: Decimal
    closing_cash: Decimal
    # cash moved by transactions with no categorized counter-account
    unattributed: Decimal = ZERO


def cash_flow_statement(company, start: datetime.date, end: datetime.date) -> CashFlowStatement:
    """
    Cash movements per cash-flow category. Each transaction's net cash
    delta is split across its categorized non-cash accounts in proportion
    to their magnitudes; this is an approximation for mixed transactions.
    """
    cash_ids = set(
        Account.objects.for_company(company).filter(ac_type__in=CASH_TYPES).values_list("pk", flat=True))
    entries = (
        LedgerEntry.objects.filter(company=company, date__gte=start, date__lte=end)
        .select_related("account")
        .order_by("transaction_id", "pk")
    )
    by_transaction = defaultdict(list)
    for entry in entries:
        by_transaction[entry.transaction_id].append(entry)

    allocated = {section: defaultdict(lambda: ZERO) for section in CASH_FLOW_SECTIONS}
    accounts = {}
    unattributed = ZERO
    for tx_entries in by_transaction.values():
        cash = [e for e in tx_entries if e.account_id in cash_ids]
        if not cash:
            continue
        delta = sum((e.debit - e.credit for e in cash), ZERO)
        if abs(delta) < Decimal("0.001"):
            continue
        categorized = [
            e for e in tx_entries
            if e.account_id not in cash_ids and e.account.cash_flow_category in CASH_FLOW_SECTIONS
        ]
        weight = sum((abs(e.debit - e.credit) for e in categorized), ZERO)
        if not categorized or not weight:
            unattributed += delta
            continue
        for entry in categorized:
            share = delta * abs(entry.debit - entry.credit) / weight
            allocated[entry.account.cash_flow_category][entry.account_id] += share
            accounts[entry.account_id] = entry.account

    sections = OrderedDict()
    for name in CASH_FLOW_SECTIONS:
        section = StatementSection(name.title())
        rows = sorted(allocated[name].items(), key=lambda kv: (accounts[kv[0]].code, accounts[kv[0]].name))
        for account_id, amount in rows:
            section.add(accounts[account_id], round2(amount))
        sections[name] = section

    cash_entries = LedgerEntry.objects.filter(company=company, account_id__in=cash_ids)
    moved = cash_entries.filter(date__gte=start, date__lte=end).aggregate(
        debit=Sum("debit"), credit=Sum("credit"))
    before = cash_entries.filter(date__lt=start).aggregate(debit=Sum("debit"), credit=Sum("credit"))
    net_change = (moved["debit"] or ZERO) - (moved["credit"] or ZERO)
    opening = (before["debit"] or ZERO) - (before["credit"] or ZERO)
    return CashFlowStatement(
        start=start,
        end=end,
        sections=sections,
        net_change=round2(net_change),
        opening_cash=round2(opening),
        closing_cash=round2(opening + net_change),
        unattributed=round2(unattributed),
    )
