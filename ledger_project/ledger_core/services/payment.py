import datetime
import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional
from dataclasses import dataclass, field
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction

from ..conf import balance_tolerance
from ..exceptions import NotFoundError, PaymentExceedsBalance
from ..models import (Account, Company, Contact, LedgerEntry, PaymentApplication,
                      Transaction)
from ..money import CENT, ZERO, round2
from .accounts import AccountRoles
from .audit_helper import log_action
from .balances import (applied_from_applications, available_credit,
                       is_credit_bearing, recalculate_credit_balance,
                       recalculate_invoice_balance)
from .currency import document_control_account, realize_fx_gain_loss
from .posting import create_transaction

logger = logging.getLogger(__name__)


@dataclass
class CreditUsage:
    is_applied: bool
    details: list = field(default_factory=list)
    application_ids: list = field(default_factory=list)


# ---------- helpers ----------
def remaining_balance(document: Transaction) -> Decimal:
    """What is still owed on an invoice/bill according to its applications."""
    return max(round2(document.amount - applied_from_applications(document)), ZERO)


def _home_amount(tx, amount):
    """Amount in the transaction's currency -> home at its own rate."""
    amount = round2(amount)
    if tx.currency_id and tx.exchange_rate:
        return round2(amount * tx.exchange_rate)
    return amount


def _lock_many(ids):
    rows = {
        tx.pk: tx
        for tx in Transaction.objects.select_for_update().select_related("company").filter(pk__in=ids)
    }
    missing = [i for i in ids if i not in rows]
    if missing:
        raise NotFoundError("Transaction", missing[0])
    return rows


def _check_document(document, company, doc_type, contact=None, currency=None):
    if document.company_id != company.pk:
        raise NotFoundError("Transaction", document.pk)
    if document.type != doc_type:
        raise ValidationError(f"{document} is not a {doc_type}.")
    if document.status not in ("open", "overdue", "partial", "approved"):
        raise ValidationError(f"{document} is {document.status} and cannot receive payments.")
    if contact is not None and document.contact_id != contact.pk:
        raise ValidationError(f"{document} belongs to another contact.")
    if (document.currency_id or None) != (currency or None):
        raise ValidationError(
            f"{document} is in {document.currency_id or 'home currency'}; "
            f"the payment is in {currency or 'home currency'}."
        )


def _check_credit_source(source, company, side, contact=None, currency=None):
    if source.company_id != company.pk:
        raise NotFoundError("Transaction", source.pk)
    if not is_credit_bearing(source) or source.credit_side() != side:
        raise ValidationError(f"{source} is not a {side} credit.")
    if contact is not None and source.contact_id and source.contact_id != contact.pk:
        raise ValidationError(f"{source} belongs to another contact.")
    if (source.currency_id or None) != (currency or None):
        raise ValidationError(f"{source} is in a different currency.")


def _group(rows, key):
    grouped = OrderedDict()
    for row in rows:
        amount = round2(row["amount"])
        if amount <= 0:
            raise ValidationError(f"Applied amounts must be positive (got {amount}).")
        grouped[row[key]] = grouped.get(row[key], ZERO) + amount
    return grouped


def _validate_credit_pool(sources, requested):
    """requested: {source_id: amount in the source's currency}"""
    for source_id, amount in requested.items():
        source = sources[source_id]
        available = available_credit(source)
        needed = _home_amount(source, amount)
        if needed - available > balance_tolerance():
            raise ValidationError(
                f"Credit of {needed} from {source} exceeds its available credit of {available}"
            )


def _validate_document_needs(documents, per_document):
    """per_document: {document_id: amount in the document's currency}"""
    for doc_id, amount in per_document.items():
        document = documents[doc_id]
        remaining = remaining_balance(document)
        requested = _home_amount(document, amount)
        if requested - remaining > balance_tolerance():
            raise PaymentExceedsBalance(str(document), requested, remaining)


def _record_application(source, document, amount, applied_via, on_date, roles):
    app = PaymentApplication(
        company=document.company,
        payment=source,
        invoice=document,
        amount_applied=_home_amount(document, amount),
        applied_via=applied_via,
    )
    app.save()
    carrier = applied_via or source
    realize_fx_gain_loss(app, carrier, on_date, roles=roles)
    return app


def _normalize_currency(company, currency, exchange_rate):
    if currency == company.default_currency_id:
        currency = None
    if currency is None:
        return None, None
    if exchange_rate is None or Decimal(str(exchange_rate)) <= 0:
        raise ValidationError(f"A positive exchange rate is required for {currency}.")
    return currency, Decimal(str(exchange_rate))


# ---------- customer payments ----------
@transaction.atomic
def receive_payment(
    company: Company,
    contact: Contact,
    date: datetime.date,
    deposit_account: Account,
    amount: Decimal,
    applications: Iterable[Dict] = (),
    credit_applications: Iterable[Dict] = (),
    reference: Optional[str] = None,
    currency: Optional[str] = None,
    exchange_rate=None,
    payment_method: Optional[str] = None,
    description: Optional[str] = None,
    user=None,
) -> Transaction:
    """
    Record a customer payment and allocate it across open invoices.

    applications:        [{"invoice_id", "amount"}] paid from this payment
    credit_applications: [{"source_id", "invoice_id", "amount"}] paid from
                         existing deposits/credits as part of the same settlement
    Amounts are in the payment's currency. Whatever is not allocated stays
    on the payment as unapplied credit. Everything is validated before the
    first write.
    """
    amount = round2(amount)
    if amount < 0:
        raise ValidationError("Payment amount cannot be negative.")
    currency, exchange_rate = _normalize_currency(company, currency, exchange_rate)

    direct = _group(applications, "invoice_id")
    credit_rows = list(credit_applications)
    by_source = _group(credit_rows, "source_id")
    credit_by_invoice = _group(credit_rows, "invoice_id")

    if not direct and not credit_rows and amount <= 0:
        raise ValidationError("A payment needs an amount or at least one credit application.")
    direct_total = sum(direct.values(), ZERO)
    if direct_total - amount > balance_tolerance():
        raise ValidationError(
            f"Invoice applications total {direct_total} but the payment is only {amount}."
        )

    doc_ids = list(OrderedDict.fromkeys(list(direct) + list(credit_by_invoice)))
    documents = _lock_many(doc_ids)
    for document in documents.values():
        _check_document(document, company, "invoice", contact, currency)
    sources = _lock_many(list(by_source))
    for source in sources.values():
        _check_credit_source(source, company, "receivable", contact, currency)

    per_document = {
        doc_id: direct.get(doc_id, ZERO) + credit_by_invoice.get(doc_id, ZERO)
        for doc_id in doc_ids
    }
    _validate_document_needs(documents, per_document)
    _validate_credit_pool(sources, by_source)

    # ---- postings ----
    roles = AccountRoles(company)
    ar_account = roles.get("accounts_receivable")
    entries = []
    if amount > 0:
        entries.append(LedgerEntry(
            account=deposit_account, debit=amount,
            description=f"Payment received from {contact}" if contact else "Payment received",
        ))
        for doc_id, applied in direct.items():
            document = documents[doc_id]
            entries.append(LedgerEntry(
                account=document_control_account(document, roles),
                credit=applied,
                document=document,
                description=f"Payment applied to invoice #{document.reference or document.pk}",
            ))
        unapplied = amount - direct_total
        if unapplied > 0:
            entries.append(LedgerEntry(
                account=ar_account, credit=unapplied, description="Unapplied credit",
            ))

    payment = Transaction(
        company=company,
        type="payment",
        date=date,
        reference=reference,
        description=description,
        contact=contact,
        amount=amount,
        balance=ZERO,
        status="completed",
        payment_account=deposit_account,
        payment_method=payment_method,
        payment_date=date,
        currency_id=currency,
        exchange_rate=exchange_rate,
    )
    create_transaction(payment, [], entries, user=user)

    # ---- allocations ----
    for doc_id, applied in direct.items():
        _record_application(payment, documents[doc_id], applied, payment, date, roles)
    for row in credit_rows:
        _record_application(
            sources[row["source_id"]], documents[row["invoice_id"]],
            round2(row["amount"]), payment, date, roles,
        )

    for doc_id in doc_ids:
        recalculate_invoice_balance(doc_id)
    for source_id in sources:
        recalculate_credit_balance(source_id)
    recalculate_credit_balance(payment.pk)

    log_action(
        action="receive_payment",
        instance=payment,
        user=user,
        changes={"amount": payment.amount, "invoices": len(doc_ids), "credits": len(sources)},
    )
    payment.refresh_from_db()
    logger.info("Payment %s applied to %d invoice(s)", payment.pk, len(doc_ids))
    return payment


# ---------- vendor payments ----------
@transaction.atomic
def pay_bills(
    company: Company,
    contact: Contact,
    date: datetime.date,
    payment_account: Account,
    cash_amount: Decimal,
    bill_allocations: List[Dict],
    cheque_credits: Iterable[Dict] = (),
    reference: Optional[str] = None,
    currency: Optional[str] = None,
    exchange_rate=None,
    payment_method: Optional[str] = None,
    description: Optional[str] = None,
    user=None,
) -> Transaction:
    """
    Settle bills with cash plus optional cheque (vendor prepayment) credits.

    cash + Σ cheque credits must equal Σ bill amounts (within a cent) or
    nothing is written. Cheque credits are consumed first, bill by bill.
    """
    cash_amount = round2(cash_amount)
    if cash_amount < 0:
        raise ValidationError("Cash amount cannot be negative.")
    currency, exchange_rate = _normalize_currency(company, currency, exchange_rate)

    per_bill = _group(bill_allocations, "bill_id")
    if not per_bill:
        raise ValidationError("Select at least one bill to pay.")
    credits = _group(cheque_credits, "source_id")

    available_total = cash_amount + sum(credits.values(), ZERO)
    requested_total = sum(per_bill.values(), ZERO)
    if abs(available_total - requested_total) > CENT:
        raise ValidationError(
            f"Cash {cash_amount} plus credits {available_total - cash_amount} "
            f"do not match the bills selected ({requested_total})."
        )

    bills = _lock_many(list(per_bill))
    for bill in bills.values():
        _check_document(bill, company, "bill", contact, currency)
    cheques = _lock_many(list(credits))
    for cheque in cheques.values():
        _check_credit_source(cheque, company, "payable", contact, currency)
    _validate_document_needs(bills, per_bill)
    _validate_credit_pool(cheques, credits)

    # split every bill between cheque credits (first) and cash
    credit_pool = [[cheques[cid], amt] for cid, amt in credits.items()]
    plan = []  # (source or None for cash, bill, amount)
    for bill_id, needed in per_bill.items():
        for slot in credit_pool:
            if needed <= 0:
                break
            take = min(slot[1], needed)
            if take > 0:
                plan.append((slot[0], bills[bill_id], take))
                slot[1] -= take
                needed -= take
        if needed > 0:
            plan.append((None, bills[bill_id], needed))

    roles = AccountRoles(company)
    entries = []
    cash_by_bill = OrderedDict()
    for source, bill, amount in plan:
        if source is None:
            cash_by_bill[bill.pk] = cash_by_bill.get(bill.pk, ZERO) + amount
    cash_used = sum(cash_by_bill.values(), ZERO)
    if cash_used > 0:
        for bill_id, amount in cash_by_bill.items():
            bill = bills[bill_id]
            entries.append(LedgerEntry(
                account=document_control_account(bill, roles),
                debit=amount,
                document=bill,
                description=f"Payment applied to bill #{bill.reference or bill.pk}",
            ))
        entries.append(LedgerEntry(
            account=payment_account, credit=cash_used,
            description=f"Bill payment to {contact}" if contact else "Bill payment",
        ))

    payment = Transaction(
        company=company,
        type="payment",
        date=date,
        reference=reference,
        description=description,
        contact=contact,
        amount=cash_used,
        balance=ZERO,
        status="completed",
        payment_account=payment_account,
        payment_method=payment_method,
        payment_date=date,
        currency_id=currency,
        exchange_rate=exchange_rate,
    )
    create_transaction(payment, [], entries, user=user)

    for source, bill, amount in plan:
        _record_application(source or payment, bill, amount, payment, date, roles)

    for bill_id in bills:
        recalculate_invoice_balance(bill_id)
    for cheque_id in cheques:
        recalculate_credit_balance(cheque_id)
    recalculate_credit_balance(payment.pk)

    log_action(
        action="pay_bills",
        instance=payment,
        user=user,
        changes={"cash": cash_used, "credits": len(cheques), "bills": len(bills)},
    )
    payment.refresh_from_db()
    return payment


# ---------- standalone credit application ----------
@transaction.atomic
def apply_credit(target_invoice_id: int, credit_source_id: int, amount: Decimal, user=None,
                 date: Optional[datetime.date] = None) -> PaymentApplication:
    """
    Apply part of an unapplied credit (deposit, credit note, payment
    overpayment, vendor cheque) to an open invoice or bill.
    amount is in the documents' currency.
    """
    amount = round2(amount)
    if amount <= 0:
        raise ValidationError("Applied amount must be positive.")
    rows = _lock_many([target_invoice_id, credit_source_id])
    target, source = rows[target_invoice_id], rows[credit_source_id]
    company = target.company

    side = "receivable" if target.type == "invoice" else "payable"
    if target.type not in ("invoice", "bill"):
        raise ValidationError(f"{target} is not an invoice or bill.")
    _check_document(target, company, target.type, None, source.currency_id)
    _check_credit_source(source, company, side, None, target.currency_id)
    if source.contact_id and target.contact_id and source.contact_id != target.contact_id:
        raise ValidationError(f"{source} and {target} belong to different contacts.")

    _validate_document_needs({target.pk: target}, {target.pk: amount})
    _validate_credit_pool({source.pk: source}, {source.pk: amount})

    roles = AccountRoles(company)
    app = _record_application(source, target, amount, None, date or datetime.date.today(), roles)
    recalculate_invoice_balance(target.pk)
    recalculate_credit_balance(source.pk)

    log_action(
        action="apply_credit",
        instance=app,
        user=user,
        company=company,
        changes={"source": source.pk, "target": target.pk, "amount": app.amount_applied},
    )
    return app


@transaction.atomic
def unapply_credit(application_id: int, user=None):
    """Remove one standalone credit application and give the credit back."""
    from .currency import reverse_fx_realization

    try:
        app = (
            PaymentApplication.objects.select_for_update()
            .select_related("payment", "invoice")
            .get(pk=application_id)
        )
    except PaymentApplication.DoesNotExist:
        raise NotFoundError("PaymentApplication", application_id)
    if app.applied_via_id is not None:
        raise ValidationError(
            f"This application was made by payment {app.applied_via_id}; "
            "delete that payment to reverse it."
        )

    for realization in list(app.fx_realizations.all()):
        reverse_fx_realization(realization)

    source_id, document_id = app.payment_id, app.invoice_id
    log_action(
        action="unapply_credit", instance=app, user=user, company=app.company,
        changes={"source": source_id, "target": document_id, "amount": app.amount_applied},
    )
    app.delete()
    recalculate_invoice_balance(document_id)
    recalculate_credit_balance(source_id)


# ---------- deletion guard ----------
def is_deposit_applied_to_invoices(deposit: Transaction) -> CreditUsage:
    """
    Whether a deposit (or credit note) has been used to pay anything.
    Live applications are the real signal; a balance that no longer
    matches the amount and legacy "Applied $X to invoice" text in the
    description are treated as conservative secondary signals.
    """
    from .legacy import parse_applied_amounts

    usage = CreditUsage(is_applied=False)
    for app in deposit.applications_made.select_related("invoice").order_by("pk"):
        usage.application_ids.append(app.pk)
        usage.details.append(f"{app.amount_applied} applied to {app.invoice}")

    if (
        deposit.balance is not None
        and deposit.status in ("unapplied_credit", "completed")
        and is_credit_bearing(deposit)
        and abs(deposit.balance) != deposit.amount
    ):
        usage.details.append(
            f"available credit {abs(deposit.balance)} differs from amount {deposit.amount}"
        )

    for legacy in parse_applied_amounts(deposit.description or ""):
        if legacy.invoice_ref:
            usage.details.append(
                f"description records {legacy.amount} applied to invoice #{legacy.invoice_ref}"
            )

    usage.is_applied = bool(usage.details)
    return usage
