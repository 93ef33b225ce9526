"""
Bank-feed matching: score existing documents and entries against an
imported bank row, then settle, link or categorize it.
"""
import logging
from datetime import timedelta
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from django.core.exceptions import ValidationError
from django.db import transaction

from ..conf import ledger_setting
from ..exceptions import NotFoundError
from ..models import (Account, BankTransactionMatch, Contact,
                      ImportedTransaction, Transaction)
from ..money import CENT, ZERO, round2
from .audit_helper import log_action
from .currency import get_exchange_rate
from .payment import pay_bills, receive_payment

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal("0.02")
AMOUNT_CLOSE = Decimal("0.05")

OPEN_STATUSES = ("open", "overdue", "partial")
MANUAL_DEPOSIT_TYPES = ("deposit", "payment", "sales_receipt")
MANUAL_WITHDRAWAL_TYPES = ("expense", "payment", "cheque")


@dataclass
class MatchSuggestion:
    transaction_id: int
    transaction_type: str
    reference: str
    description: str
    amount: Decimal
    date: object
    contact_id: int
    contact_name: str
    balance: Decimal
    confidence: int
    match_type: str
    reasons: list = field(default_factory=list)

    @property
    def match_reason(self):
        return ", ".join(self.reasons)


def _get_imported(imported_id, lock=False):
    queryset = ImportedTransaction.objects.select_related("bank_account", "company")
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=imported_id)
    except ImportedTransaction.DoesNotExist:
        raise NotFoundError("ImportedTransaction", imported_id)


def _get_transaction(company, transaction_id):
    try:
        return Transaction.objects.for_company(company).select_related("contact").get(pk=transaction_id)
    except Transaction.DoesNotExist:
        raise NotFoundError("Transaction", transaction_id)


def _contains(a, b):
    """Case-insensitive substring either way."""
    if not a or not b:
        return False
    a, b = a.lower(), b.lower()
    return a in b or b in a


def _candidates(imported, types):
    window = int(ledger_setting("MATCH_DATE_TOLERANCE_DAYS"))
    return (
        Transaction.objects.for_company(imported.company)
        .filter(
            type__in=types,
            date__gte=imported.date - timedelta(days=window),
            date__lte=imported.date + timedelta(days=window),
        )
        .select_related("contact")
        .order_by("pk")
    )


# ---------- scoring ----------
def _score_document(imported, document):
    target = abs(document.balance if document.balance else document.amount)
    if not target:
        return None
    confidence, match_type, reasons = 0, "fuzzy", []

    diff = abs(imported.absolute_amount - target)
    ratio = diff / target
    if diff <= CENT:
        confidence, match_type = 50, "exact"
        reasons.append("Exact amount match")
    elif ratio <= AMOUNT_TOLERANCE:
        confidence, match_type = 40, "tolerance"
        reasons.append("Amount within 2% tolerance")
    elif ratio <= AMOUNT_CLOSE:
        confidence = 25
        reasons.append("Amount close match")

    days = abs((imported.date - document.date).days)
    if days <= 3:
        confidence += 20
        reasons.append("Same week")
    elif days <= 7:
        confidence += 15
    elif days <= 14:
        confidence += 10

    contact_name = document.contact.name if document.contact_id else None
    if _contains(imported.name, contact_name):
        confidence += 15
        reasons.append("Customer name match" if document.type == "invoice" else "Vendor name match")
    if document.reference and imported.name and document.reference.lower() in imported.name.lower():
        confidence += 15
        reasons.append("Invoice # in description" if document.type == "invoice" else "Bill # in description")
    return confidence, match_type, reasons, target


def _score_manual(imported, entry):
    confidence, match_type, reasons = 0, "fuzzy", ["Manual entry"]
    amount = abs(entry.amount)
    diff = abs(imported.absolute_amount - amount)
    ratio = diff / amount if amount else Decimal("1")
    if diff <= CENT:
        confidence, match_type = 50, "exact"
        reasons.append("Exact amount match")
    elif ratio <= AMOUNT_TOLERANCE:
        confidence, match_type = 40, "tolerance"
        reasons.append("Amount within 2% tolerance")

    days = abs((imported.date - entry.date).days)
    if days <= 1:
        confidence += 25
        reasons.append("Same/next day")
    elif days <= 3:
        confidence += 20
    elif days <= 7:
        confidence += 15

    if _contains(imported.name, entry.description):
        confidence += 10
        reasons.append("Description match")
    if _contains(imported.name, entry.contact.name if entry.contact_id else None):
        confidence += 15
        reasons.append("Customer name match" if imported.is_deposit else "Vendor name match")
    return confidence, match_type, reasons


def find_matches_for_bank_transaction(imported_id: int) -> List[MatchSuggestion]:
    """
    Candidates for one imported row, best first. Only candidates scoring
    at least the configured threshold are returned; ties are ordered by
    transaction id so repeated calls give the same list.
    """
    imported = _get_imported(imported_id)
    threshold = int(ledger_setting("MATCH_CONFIDENCE_THRESHOLD"))
    deposit = imported.is_deposit
    suggestions = []

    document_type = "invoice" if deposit else "bill"
    documents = _candidates(imported, (document_type,)).filter(
        status__in=OPEN_STATUSES, balance__gt=0)
    for document in documents:
        scored = _score_document(imported, document)
        if scored is None:
            continue
        confidence, match_type, reasons, target = scored
        if confidence >= threshold:
            suggestions.append(_suggestion(document, confidence, match_type, reasons, balance=target))

    side = "receivable" if deposit else "payable"
    manual_types = MANUAL_DEPOSIT_TYPES if deposit else MANUAL_WITHDRAWAL_TYPES
    linked = set(
        ImportedTransaction.objects.filter(company=imported.company, status="matched")
        .exclude(matched_transaction=None)
        .values_list("matched_transaction_id", flat=True)
    )
    for entry in _candidates(imported, manual_types).exclude(pk__in=linked):
        if entry.type == "payment" and entry.credit_side() != side:
            continue
        confidence, match_type, reasons = _score_manual(imported, entry)
        if confidence >= threshold:
            suggestions.append(_suggestion(entry, confidence, match_type, reasons))

    suggestions.sort(key=lambda s: (-s.confidence, s.transaction_id))
    return suggestions


def _suggestion(tx, confidence, match_type, reasons, balance=None):
    return MatchSuggestion(
        transaction_id=tx.pk,
        transaction_type=tx.type,
        reference=tx.reference,
        description=tx.description,
        amount=tx.amount,
        date=tx.date,
        contact_id=tx.contact_id,
        contact_name=tx.contact.name if tx.contact_id else None,
        balance=balance,
        confidence=confidence,
        match_type=match_type,
        reasons=reasons,
    )


# ---------- terminal actions ----------
def _require_unmatched(imported):
    if imported.status != "unmatched":
        raise ValidationError(f"Imported transaction {imported.pk} is already {imported.status}.")


def _mark(imported, matched_transaction, via, multi=False):
    imported.status = "matched"
    imported.matched_transaction = matched_transaction
    imported.matched_via = via
    imported.is_multi_match = multi
    imported.save(update_fields=["status", "matched_transaction", "matched_via", "is_multi_match"])


def _settle_document(imported, document, amount, user=None):
    """New payment from the imported row's bank account against one document."""
    direction = "invoice" if imported.is_deposit else "bill"
    if document.type != direction:
        raise ValidationError(
            f"A {'deposit' if imported.is_deposit else 'withdrawal'} cannot settle {document}.")
    currency, rate = None, None
    amount = round2(amount)
    remaining = document.balance
    if document.currency_id:
        currency = document.currency_id
        rate = get_exchange_rate(currency, imported.company.default_currency_id, imported.date)
        remaining = round2(document.balance / document.exchange_rate)
        # a home currency bank row is converted into the document's currency
        if imported.currency_id != currency:
            amount = round2(amount / rate)
    applied = min(amount, remaining)
    if applied <= 0:
        raise ValidationError(f"{document} has nothing left to pay.")

    common = {
        "company": imported.company,
        "contact": document.contact,
        "date": imported.date,
        "reference": None,
        "currency": currency,
        "exchange_rate": rate,
        "payment_method": "bank_transfer",
        "description": f"Bank feed: {imported.name}",
        "user": user,
    }
    if document.type == "invoice":
        return receive_payment(
            deposit_account=imported.bank_account,
            amount=amount,
            applications=[{"invoice_id": document.pk, "amount": applied}],
            **common,
        )
    return pay_bills(
        payment_account=imported.bank_account,
        cash_amount=applied,
        bill_allocations=[{"bill_id": document.pk, "amount": applied}],
        **common,
    )


@transaction.atomic
def confirm_match(imported_id: int, transaction_id: int, user=None) -> Transaction:
    """
    Accept a suggestion. An invoice or bill gets a new payment from the
    bank account; any other entry is just linked.
    """
    imported = _get_imported(imported_id, lock=True)
    _require_unmatched(imported)
    target = _get_transaction(imported.company, transaction_id)
    if not target.is_document:
        return link_manual_match(imported_id, transaction_id, user=user)

    payment = _settle_document(imported, target, imported.absolute_amount, user=user)
    _mark(imported, payment, "created")
    log_action(action="bank_match", instance=imported, user=user, company=imported.company,
               changes={"document": target.pk, "payment": payment.pk})
    return payment


@transaction.atomic
def confirm_multi_match(imported_id: int, allocations: List[Dict], user=None) -> List[Transaction]:
    """
    Split one imported row across several documents: one payment per
    document, tied back to the row through BankTransactionMatch.
    """
    imported = _get_imported(imported_id, lock=True)
    _require_unmatched(imported)
    allocations = list(allocations)
    if len(allocations) < 1:
        raise ValidationError("Select at least one document.")
    total = sum((round2(a["amount"]) for a in allocations), ZERO)
    if abs(total - imported.absolute_amount) > CENT:
        raise ValidationError(
            f"Allocations total {total} but the bank transaction is {imported.absolute_amount}.")

    payments = []
    for allocation in allocations:
        target = _get_transaction(imported.company, allocation["transaction_id"])
        if not target.is_document:
            raise ValidationError(f"{target} is not an invoice or bill.")
        payment = _settle_document(imported, target, allocation["amount"], user=user)
        BankTransactionMatch.objects.create(
            company=imported.company,
            imported_transaction=imported,
            transaction=payment,
            amount=round2(allocation["amount"]),
        )
        payments.append(payment)

    _mark(imported, None, "multi", multi=True)
    log_action(action="bank_multi_match", instance=imported, user=user, company=imported.company,
               changes={"payments": [p.pk for p in payments]})
    return payments


@transaction.atomic
def link_manual_match(imported_id: int, transaction_id: int, user=None) -> Transaction:
    """Link to an entry that already records this money. Nothing is posted."""
    imported = _get_imported(imported_id, lock=True)
    _require_unmatched(imported)
    target = _get_transaction(imported.company, transaction_id)
    if target.is_document:
        raise ValidationError(f"{target} is a document; confirm_match settles it instead.")
    _mark(imported, target, "manual")
    log_action(action="bank_link", instance=imported, user=user, company=imported.company,
               changes={"transaction": target.pk})
    return target


@transaction.atomic
def categorize_imported_transaction(imported_id: int, account_id: int, contact_id: Optional[int] = None,
                                    description: Optional[str] = None, tx_type: Optional[str] = None,
                                    user=None) -> Transaction:
    """
    Record the imported row as a brand-new transaction against account_id:
    an expense or deposit by default, or a sales receipt or transfer.
    """
    from . import documents

    imported = _get_imported(imported_id, lock=True)
    _require_unmatched(imported)
    company = imported.company
    try:
        account = Account.objects.for_company(company).get(pk=account_id)
    except Account.DoesNotExist:
        raise NotFoundError("Account", account_id)
    contact = None
    if contact_id is not None:
        try:
            contact = Contact.objects.for_company(company).get(pk=contact_id)
        except Contact.DoesNotExist:
            raise NotFoundError("Contact", contact_id)

    tx_type = tx_type or ("deposit" if imported.is_deposit else "expense")
    amount = imported.absolute_amount
    label = description or imported.merchant_name or imported.name
    header = {
        "date": imported.date,
        "description": label,
        "contact": contact,
        "payment_account": imported.bank_account,
    }
    line = [{"description": label, "quantity": Decimal("1"), "unit_price": amount, "account": account}]

    if tx_type == "expense":
        created = documents.create_expense(company, header, line, user=user)
    elif tx_type == "deposit":
        created = documents.create_deposit(company, header, line, user=user)
    elif tx_type == "sales_receipt":
        created = documents.create_sales_receipt(company, header, line, user=user)
    elif tx_type == "transfer":
        if imported.is_deposit:
            ends = {"from_account": account, "to_account": imported.bank_account}
        else:
            ends = {"from_account": imported.bank_account, "to_account": account}
        created = documents.create_transfer(
            company, {"date": imported.date, "description": label, "amount": amount, **ends}, user=user)
    else:
        raise ValidationError(f"Cannot categorize a bank transaction as {tx_type!r}.")

    _mark(imported, created, "categorized")
    return created


@transaction.atomic
def undo_match(imported_id: int, user=None) -> ImportedTransaction:
    """
    Put an imported row back to unmatched, deleting whatever the match
    created. Manually linked entries are only unlinked.
    """
    from .posting import delete_transaction

    imported = _get_imported(imported_id, lock=True)
    if imported.status != "matched":
        raise ValidationError(f"Imported transaction {imported.pk} is not matched.")

    created = []
    if imported.matched_via in ("created", "categorized") and imported.matched_transaction_id:
        created.append(imported.matched_transaction_id)
    if imported.is_multi_match:
        created.extend(imported.matches.values_list("transaction_id", flat=True))

    for transaction_id in created:
        delete_transaction(transaction_id, user=user)

    ImportedTransaction.objects.filter(pk=imported.pk).update(
        status="unmatched", matched_transaction=None, matched_via="", is_multi_match=False)
    log_action(action="bank_unmatch", instance=imported, user=user, company=imported.company,
               changes={"deleted": created, "via": imported.matched_via})
    imported.refresh_from_db()
    return imported


def ignore_imported_transaction(imported_id: int, user=None) -> ImportedTransaction:
    imported = _get_imported(imported_id)
    _require_unmatched(imported)
    imported.status = "ignored"
    imported.save(update_fields=["status"])
    return imported
