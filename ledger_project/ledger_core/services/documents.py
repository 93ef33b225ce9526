"""
Per-type document builders. Each one validates the caller's input with
its form, derives the double-entry postings for the type and hands the
result to posting.create_transaction().

Line amounts and header totals are in the document's currency; a foreign
document is converted to home by the posting layer.
"""
import datetime
import logging
from collections import OrderedDict
from typing import Dict, List

from django.core.exceptions import ValidationError
from django.db import transaction

from .. import forms
from ..models import UNPOSTED_STATUSES, LedgerEntry, LineItem, Transaction
from ..money import ZERO, round2
from .accounts import AccountRoles
from .audit_helper import log_action
from .posting import (apply_account_effects, check_balanced,
                      convert_entries_to_home, create_transaction,
                      lock_transaction, _insert_entries, _prepare_entries)

logger = logging.getLogger(__name__)

# Which side the lines of each type post to; the counter account takes the other
LINE_SIDE = {
    "invoice": "credit",
    "sales_receipt": "credit",
    "deposit": "credit",
    "vendor_credit": "credit",
    "bill": "debit",
    "expense": "debit",
    "cheque": "debit",
    "customer_credit": "debit",
}

# Control account role on the counter side; the rest use payment_account
COUNTER_ROLE = {
    "invoice": "accounts_receivable",
    "customer_credit": "accounts_receivable",
    "bill": "accounts_payable",
    "vendor_credit": "accounts_payable",
}

PURCHASE_TYPES = ("bill", "expense", "cheque", "vendor_credit")


# ---------- lines and postings ----------
def _build_lines(company, rows, purchase=False):
    lines = []
    for row in rows:
        fields = {
            "company": company,
            "description": row.get("description") or "",
            "quantity": row["quantity"],
            "unit_price": row.get("unit_price"),
            "account": row.get("account"),
            "sales_tax": row.get("sales_tax"),
        }
        product = row.get("product")
        if product is not None:
            line = LineItem.objects.build_from_product(product, purchase=purchase, **fields)
            if not line.description:
                line.description = product.name
        else:
            line = LineItem(**fields)
        if line.account is None:
            raise ValidationError(f"Line {line.description or product} has no account to post to.")
        line.amount = line.compute_amount()
        lines.append(line)
    return lines


def _line_totals(lines):
    """(sub_total, tax_total, {account: amount}, {tax account: amount})"""
    by_account = OrderedDict()
    by_tax_account = OrderedDict()
    for line in lines:
        by_account[line.account] = by_account.get(line.account, ZERO) + line.amount
        if line.sales_tax is not None:
            tax_account = line.sales_tax.account
            by_tax_account[tax_account] = (
                by_tax_account.get(tax_account, ZERO) + line.sales_tax.tax_for(line.amount)
            )
    by_tax_account = OrderedDict((acc, round2(amt)) for acc, amt in by_tax_account.items())
    sub_total = sum(by_account.values(), ZERO)
    tax_total = sum(by_tax_account.values(), ZERO)
    return sub_total, tax_total, by_account, by_tax_account


def _counter_account(tx, roles):
    role = COUNTER_ROLE.get(tx.type)
    if role is not None:
        return roles.get(role)
    return tx.payment_account


def entries_for_lines(tx, lines, roles):
    """Balanced postings of a line-based document (in its own currency)."""
    side = LINE_SIDE[tx.type]
    other = "debit" if side == "credit" else "credit"
    sub_total, tax_total, by_account, by_tax_account = _line_totals(lines)
    label = tx.description or str(tx)

    entries = []
    for account, amount in by_account.items():
        entries.append(LedgerEntry(account=account, description=label, **{side: amount}))
    for account, amount in by_tax_account.items():
        entries.append(LedgerEntry(account=account, description=f"Sales tax - {label}", **{side: amount}))
    entries.append(LedgerEntry(
        account=_counter_account(tx, roles),
        description=label,
        **{other: sub_total + tax_total},
    ))
    return entries


def _header(tx_type, company, cleaned, **extra):
    return Transaction(
        company=company,
        type=tx_type,
        reference=cleaned.get("reference"),
        date=cleaned["date"],
        due_date=cleaned.get("due_date"),
        description=cleaned.get("description") or None,
        contact=cleaned.get("contact"),
        status=cleaned.get("status"),
        payment_account=cleaned.get("payment_account"),
        payment_method=cleaned.get("payment_method"),
        currency=cleaned.get("currency"),
        exchange_rate=cleaned.get("exchange_rate"),
        **extra,
    )


def _create_line_document(tx_type, form_class, company, data, lines, user=None):
    cleaned = forms.validate_header(form_class, company, data)
    rows = forms.validate_rows(
        forms.LineItemForm, company, lines, minimum=1 if form_class.requires_lines else 0)
    if any(row["quantity"] <= 0 for row in rows) and form_class.requires_lines:
        raise ValidationError("Every line needs a quantity greater than zero.")

    line_items = _build_lines(company, rows, purchase=tx_type in PURCHASE_TYPES)
    sub_total, tax_total, _, _ = _line_totals(line_items)
    total = sub_total + tax_total

    tx = _header(tx_type, company, cleaned, amount=total, sub_total=sub_total, tax_amount=tax_total)
    if tx.type in ("invoice", "bill"):
        tx.balance = total
    elif tx.type in ("customer_credit", "vendor_credit"):
        tx.balance = -total
    else:
        tx.balance = ZERO
    if tx.type == "invoice" and tx.due_date is None and tx.contact is not None:
        tx.due_date = tx.date + _terms(tx.contact)

    entries = []
    if tx.status not in UNPOSTED_STATUSES:
        entries = entries_for_lines(tx, line_items, AccountRoles(company))
    return create_transaction(tx, line_items, entries, user=user)


def _terms(contact):
    return datetime.timedelta(days=contact.payment_terms_days or 0)


# ---------- builders ----------
def create_invoice(company, data: Dict, lines: List[Dict], user=None) -> Transaction:
    """Dr AR / Cr revenue per line / Cr sales tax payable."""
    return _create_line_document("invoice", forms.InvoiceForm, company, data, lines, user)


def create_bill(company, data: Dict, lines: List[Dict], user=None) -> Transaction:
    """Dr expense per line / Dr recoverable tax / Cr AP."""
    return _create_line_document("bill", forms.BillForm, company, data, lines, user)


def create_expense(company, data, lines, user=None):
    return _create_line_document("expense", forms.ExpenseForm, company, data, lines, user)


def create_sales_receipt(company, data, lines, user=None):
    return _create_line_document("sales_receipt", forms.SalesReceiptForm, company, data, lines, user)


def create_customer_credit(company, data, lines, user=None):
    """Dr revenue lines (+tax) / Cr AR; the total becomes unapplied credit."""
    return _create_line_document(
        "customer_credit", forms.CreditNoteForm, company, data, lines, user)


def create_vendor_credit(company, data, lines, user=None):
    """Dr AP / Cr expense lines (+tax); the total becomes unapplied credit."""
    return _create_line_document(
        "vendor_credit", forms.CreditNoteForm, company, data, lines, user)


def _create_prepayment_or_lines(tx_type, form_class, control_role, company, data, lines, user):
    """
    Cheques and deposits: with lines they post like an expense/income;
    with a contact and an amount but no lines they are a prepayment
    that leaves unapplied credit on AP/AR.
    """
    lines = list(lines)
    if lines:
        return _create_line_document(tx_type, form_class, company, data, lines, user)

    cleaned = forms.validate_header(form_class, company, data)
    amount = round2(cleaned.get("amount") or ZERO)
    if cleaned.get("contact") is None or amount <= 0:
        raise ValidationError(
            f"A {tx_type} needs lines, or a contact and a positive amount for a prepayment."
        )
    if cleaned.get("status") == "draft":
        raise ValidationError("Prepayments cannot be saved as drafts.")

    tx = _header(tx_type, company, {**cleaned, "status": "unapplied_credit"},
                 amount=amount, balance=-amount)
    control = AccountRoles(company).get(control_role)
    label = cleaned.get("description") or f"Prepayment - {cleaned['contact']}"
    if tx_type == "cheque":
        entries = [
            LedgerEntry(account=control, debit=amount, description=label),
            LedgerEntry(account=tx.payment_account, credit=amount, description=label),
        ]
    else:
        entries = [
            LedgerEntry(account=tx.payment_account, debit=amount, description=label),
            LedgerEntry(account=control, credit=amount, description=label),
        ]
    return create_transaction(tx, [], entries, user=user)


def create_cheque(company, data, lines=(), user=None):
    return _create_prepayment_or_lines(
        "cheque", forms.ChequeForm, "accounts_payable", company, data, lines, user)


def create_deposit(company, data, lines=(), user=None):
    return _create_prepayment_or_lines(
        "deposit", forms.DepositForm, "accounts_receivable", company, data, lines, user)


def create_transfer(company, data: Dict, user=None) -> Transaction:
    """Dr the receiving account / Cr the sending one."""
    cleaned = forms.validate_header(forms.TransferForm, company, data)
    amount = round2(cleaned["amount"])
    label = cleaned.get("description") or (
        f"Transfer {cleaned['from_account']} -> {cleaned['to_account']}")
    tx = Transaction(
        company=company,
        type="transfer",
        reference=cleaned["reference"],
        date=cleaned["date"],
        description=cleaned.get("description") or None,
        amount=amount,
        balance=ZERO,
        status="completed",
        payment_account=cleaned["from_account"],
    )
    entries = [
        LedgerEntry(account=cleaned["to_account"], debit=amount, description=label),
        LedgerEntry(account=cleaned["from_account"], credit=amount, description=label),
    ]
    return create_transaction(tx, [], entries, user=user)


def create_journal_entry(company, data: Dict, entries: List[Dict], user=None) -> Transaction:
    """Explicit entries; at least two and they must balance."""
    cleaned = forms.validate_header(forms.JournalEntryForm, company, data)
    rows = forms.validate_rows(forms.LedgerEntryForm, company, entries, minimum=2, label="entry")
    ledger_entries = [
        LedgerEntry(
            account=row["account"],
            debit=row["debit"],
            credit=row["credit"],
            description=row.get("description") or cleaned.get("description") or "",
        )
        for row in rows
    ]
    total = check_balanced(ledger_entries, cleaned.get("reference") or "journal entry")
    tx = _header("journal_entry", company, cleaned, amount=round2(total), balance=ZERO)
    return create_transaction(tx, [], ledger_entries, user=user)


# ---------- draft / quotation activation ----------
ACTIVE_STATUS = {
    "invoice": "open",
    "bill": "open",
    "customer_credit": "unapplied_credit",
    "vendor_credit": "unapplied_credit",
}


@transaction.atomic
def activate_transaction(transaction_id: int, user=None) -> Transaction:
    """
    Turn a draft, quotation or approved document into a posted one:
    postings are derived from its stored lines and the status moves to
    open (documents) or completed (everything else).
    """
    tx = lock_transaction(transaction_id)
    if tx.status not in UNPOSTED_STATUSES + ("approved",):
        raise ValidationError(f"{tx} is already {tx.status}.")
    if tx.ledger_entries.exists():
        raise ValidationError(f"{tx} already has ledger entries.")

    if tx.type not in LINE_SIDE:
        raise ValidationError(f"{tx.get_type_display()} has no lines to activate.")
    lines = list(tx.line_items.select_related("account", "sales_tax__account"))
    if not lines:
        raise ValidationError(f"{tx} has no lines to post.")

    entries = _prepare_entries(tx, entries_for_lines(tx, lines, AccountRoles(tx.company)))
    check_balanced(entries, str(tx))
    if tx.currency_id:
        convert_entries_to_home(tx, entries)

    previous = tx.status
    tx.transition_to(ACTIVE_STATUS.get(tx.type, "completed"))
    _insert_entries(tx, entries)
    apply_account_effects(entries)

    log_action(action="activate", instance=tx, user=user,
               changes={"from": previous, "to": tx.status, "entries": len(entries)})
    logger.info("Activated %s (%s -> %s)", tx, previous, tx.status)
    return tx
