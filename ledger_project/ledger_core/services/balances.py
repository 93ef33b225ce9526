"""
Balance & status reconciliation.

Document balances are always recomputed from the authoritative records
(payment applications, or settlement postings when asked to) rather than
incremented, so every function here is safe to run again.
"""
import datetime
import logging

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Sum

from ..conf import balance_tolerance
from ..exceptions import BalanceIntegrityError, NotFoundError
from ..models import (CREDIT_SOURCE_TYPES, DOCUMENT_TYPES, Account, Company,
                      LedgerEntry, PaymentApplication, Transaction,
                      signed_effect)
from ..money import ZERO, round2

logger = logging.getLogger(__name__)

# Persisted statuses the recalculation leaves alone
FROZEN_STATUSES = ("draft", "quotation", "cancelled")

# Statuses older data may hold that are now derived at read time
LEGACY_STATUSES = ("paid", "overdue", "partial")


def _lock(transaction_id):
    try:
        return Transaction.objects.select_for_update().get(pk=transaction_id)
    except Transaction.DoesNotExist:
        raise NotFoundError("Transaction", transaction_id)


def _control_type(document):
    return "accounts_receivable" if document.type == "invoice" else "accounts_payable"


def applied_from_applications(document):
    total = PaymentApplication.objects.filter(invoice=document).aggregate(
        total=Sum("amount_applied"))["total"]
    return total or ZERO


def applied_from_ledger(document):
    """
    What settlement postings in other transactions took off the document:
    credits to AR for an invoice, debits to AP for a bill.
    Credit applications that never touch the ledger are not counted.
    """
    rows = (
        LedgerEntry.objects.filter(
            document=document, account__ac_type=_control_type(document))
        .exclude(transaction=document)
        .aggregate(debit=Sum("debit"), credit=Sum("credit"))
    )
    debit = rows["debit"] or ZERO
    credit = rows["credit"] or ZERO
    if document.type == "invoice":
        return credit - debit
    return debit - credit


def _recalculate_document_balance(document, force_update=False, use_only_ledger_entries=False):
    if document.status in FROZEN_STATUSES:
        return document

    if use_only_ledger_entries:
        applied = applied_from_ledger(document)
    else:
        applied = applied_from_applications(document)

    if applied > document.amount:
        # data-integrity guard: never report more paid than was billed
        logger.warning(
            "Applied total %s on %s exceeds its amount %s; capping",
            applied, document, document.amount,
        )
        applied = document.amount

    remaining = max(round2(document.amount - applied), ZERO)
    status = "completed" if remaining <= 0 else "open"

    if not force_update and document.balance == remaining and document.status == status:
        return document

    logger.debug(
        "%s balance %s -> %s, status %s -> %s",
        document, document.balance, remaining, document.status, status,
    )
    document.balance = remaining
    document.status = status
    document.save(update_fields=["balance", "status", "updated_at"])
    return document


@transaction.atomic
def recalculate_invoice_balance(invoice_id: int, force_update: bool = False,
                                use_only_ledger_entries: bool = False) -> Transaction:
    """
    Recompute an invoice's (or bill's) balance and status.

    balance = amount - applied, floored at zero; status is "completed" at
    zero, otherwise "open". Nothing is written when neither changed,
    unless force_update is set.
    """
    document = _lock(invoice_id)
    if document.type not in DOCUMENT_TYPES:
        raise ValidationError(f"{document} is not an invoice or bill.")
    return _recalculate_document_balance(document, force_update, use_only_ledger_entries)


def recalculate_bill_balance(bill_id: int, force_update: bool = False,
                             use_only_ledger_entries: bool = False) -> Transaction:
    return recalculate_invoice_balance(bill_id, force_update, use_only_ledger_entries)


# ---------- credit sources ----------
def is_credit_bearing(tx):
    """
    Whether a transaction holds credit that can be applied to documents.
    Deposits and cheques only do when they were posted against AR/AP
    (a customer or vendor prepayment) rather than to income or expense lines.
    """
    if tx.type not in CREDIT_SOURCE_TYPES:
        return False
    if tx.type in ("payment", "customer_credit", "vendor_credit"):
        return True
    if tx.status == "unapplied_credit" or tx.applications_made.exists():
        return True
    return tx.ledger_entries.filter(
        account__ac_type__in=("accounts_receivable", "accounts_payable"),
        document__isnull=True,
    ).exists()


def consumed_amount(source, application=None):
    """
    How much of the source's own amount its applications used up.
    A realized FX difference is part of it: a receipt at a higher rate
    settles fewer home units of the invoice than it brought in.
    """
    applications = (
        [application] if application is not None
        else list(source.applications_made.all())
    )
    payable = source.credit_side() == "payable"
    total = ZERO
    for app in applications:
        gain = app.fx_realizations.aggregate(total=Sum("gain_loss_amount"))["total"] or ZERO
        total += app.amount_applied - gain if payable else app.amount_applied + gain
    return total


def available_credit(source):
    return max(round2(source.amount - consumed_amount(source)), ZERO)


@transaction.atomic
def recalculate_credit_balance(source_id: int, force_update: bool = False) -> Transaction:
    """
    Recompute a credit source's remaining credit: balance = -(amount - used),
    status unapplied_credit while any is left, completed once used up.
    """
    source = _lock(source_id)
    if source.status in FROZEN_STATUSES or not is_credit_bearing(source):
        return source

    used = consumed_amount(source)
    if used - source.amount > balance_tolerance():
        raise BalanceIntegrityError(
            f"{source} has {used} applied but only {source.amount} to give"
        )
    available = max(round2(source.amount - used), ZERO)
    status = "unapplied_credit" if available > 0 else "completed"
    balance = -available if available else ZERO

    if not force_update and source.balance == balance and source.status == status:
        return source

    source.balance = balance
    source.status = status
    source.save(update_fields=["balance", "status", "updated_at"])
    return source


def recalculate_document(tx, force_update=False):
    """Dispatch to the right recalculation for any transaction type."""
    if tx.type in DOCUMENT_TYPES:
        return recalculate_invoice_balance(tx.pk, force_update=force_update)
    if tx.type in CREDIT_SOURCE_TYPES:
        return recalculate_credit_balance(tx.pk, force_update=force_update)
    return tx


def display_status(tx, today=None):
    return tx.display_status(today=today)


# ---------- repair passes ----------
def _companies(company):
    return [company] if company is not None else list(Company.objects.all())


def ledger_balance_by_account(company, as_of=None):
    """{account_id: signed ledger balance} straight from the ledger."""
    entries = LedgerEntry.objects.filter(company=company)
    if as_of is not None:
        entries = entries.filter(date__lte=as_of)
    sums = entries.values("account_id", "account__ac_type").annotate(
        debit=Sum("debit"), credit=Sum("credit"))
    return {
        row["account_id"]: signed_effect(row["account__ac_type"], row["debit"], row["credit"])
        for row in sums
    }


def verify_account_balances(company):
    """List of (account, cached, ledger) for accounts whose cache drifted."""
    expected = ledger_balance_by_account(company)
    drift = []
    for account in Account.objects.for_company(company).order_by("pk"):
        ledger = expected.get(account.pk, ZERO)
        if account.balance != ledger:
            drift.append((account, account.balance, ledger))
    return drift


def _status_snapshot(tx):
    return tx.balance, tx.status


def fix_all_balances(company: Company | None = None) -> dict:
    """
    Rebuild every cached account balance from the ledger, then recompute
    every invoice, bill and credit balance. Returns counts of corrected rows.
    """
    summary = {"accounts_fixed": 0, "documents_fixed": 0, "credits_fixed": 0}
    for current in _companies(company):
        with transaction.atomic():
            expected = ledger_balance_by_account(current)
            for account in Account.objects.select_for_update().filter(company=current):
                ledger = expected.get(account.pk, ZERO)
                if account.balance != ledger:
                    logger.warning(
                        "Account %s cached balance %s, ledger says %s; fixing",
                        account, account.balance, ledger,
                    )
                    Account.objects.filter(pk=account.pk).update(balance=ledger)
                    summary["accounts_fixed"] += 1

            for doc in Transaction.objects.filter(company=current, type__in=DOCUMENT_TYPES):
                before = _status_snapshot(doc)
                if doc.status in LEGACY_STATUSES:
                    doc = recalculate_invoice_balance(doc.pk, force_update=True)
                else:
                    doc = recalculate_invoice_balance(doc.pk)
                if _status_snapshot(doc) != before:
                    summary["documents_fixed"] += 1

            for source in Transaction.objects.filter(company=current, type__in=CREDIT_SOURCE_TYPES):
                before = _status_snapshot(source)
                source = recalculate_credit_balance(source.pk)
                if _status_snapshot(source) != before:
                    summary["credits_fixed"] += 1

    logger.info("fix_all_balances: %s", summary)
    return summary


def batch_recalculate_invoice_balances(company: Company | None = None) -> dict:
    """Recalculate every invoice. Returns how many were checked and changed."""
    checked = updated = 0
    for current in _companies(company):
        for invoice in Transaction.objects.filter(company=current, type="invoice"):
            before = _status_snapshot(invoice)
            invoice = recalculate_invoice_balance(invoice.pk)
            checked += 1
            if _status_snapshot(invoice) != before:
                updated += 1
    logger.info("Recalculated %d invoices, %d changed", checked, updated)
    return {"checked": checked, "updated": updated}


def batch_update_invoice_statuses(company=None, today=None):
    """
    Move documents still persisted as paid/overdue/partial onto the
    open/completed pair, and report how many currently display as
    overdue or partial.
    """
    today = today or datetime.date.today()
    summary = {"normalized": 0, "overdue": 0, "partial": 0}
    for current in _companies(company):
        docs = Transaction.objects.filter(company=current, type__in=DOCUMENT_TYPES)
        for doc in docs.filter(status__in=LEGACY_STATUSES):
            recalculate_invoice_balance(doc.pk, force_update=True)
            summary["normalized"] += 1
        for doc in docs.filter(status="open"):
            shown = doc.display_status(today)
            if shown in ("overdue", "partial"):
                summary[shown] += 1
    logger.info("batch_update_invoice_statuses: %s", summary)
    return summary
