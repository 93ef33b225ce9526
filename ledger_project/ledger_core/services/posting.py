import logging
from collections import defaultdict
from typing import Dict, Iterable, Optional

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F, Q

from ..conf import balance_tolerance
from ..exceptions import (BalanceIntegrityError, CreditInUse, EntityInUseError,
                          NotFoundError, UnbalancedEntriesError)
from ..models import (Account, BankTransactionMatch, FxRealization,
                      ImportedTransaction, LedgerEntry, PaymentApplication,
                      Transaction, UNPOSTED_STATUSES, signed_effect)
from ..money import CENT, ZERO, round2, to_decimal
from .accounts import currency_account_for
from .audit_helper import log_action

logger = logging.getLogger(__name__)

# Fields a caller may change through update_transaction()
PATCHABLE_FIELDS = {
    "reference",
    "description",
    "date",
    "due_date",
    "status",
    "amount",
    "sub_total",
    "tax_amount",
    "balance",
    "contact",
    "payment_method",
    "payment_date",
}

CREDIT_NOTE_TYPES = ("deposit", "customer_credit", "vendor_credit")

# Header totals mirror the postings; on a posted document they only move
# through repost_transaction()
POSTED_TOTAL_FIELDS = ("amount", "sub_total", "tax_amount")


# ---------- helpers ----------
def lock_transaction(transaction_id: int) -> Transaction:
    """Fetch a transaction row under a row lock (call inside atomic)."""
    try:
        return (
            Transaction.objects.select_for_update()
            .select_related("company")
            .get(pk=transaction_id)
        )
    except Transaction.DoesNotExist:
        raise NotFoundError("Transaction", transaction_id)


def entry_totals(entries):
    total_debit = sum((e.debit or ZERO for e in entries), ZERO)
    total_credit = sum((e.credit or ZERO for e in entries), ZERO)
    return total_debit, total_credit


def check_balanced(entries, ref=None):
    """Σdebit must equal Σcredit within the engine tolerance."""
    total_debit, total_credit = entry_totals(entries)
    if abs(total_debit - total_credit) > balance_tolerance():
        raise UnbalancedEntriesError(total_debit, total_credit, ref)
    return total_debit


def apply_account_effects(entries, sign=1):
    """
    Move cached account balances by the signed effect of entries.
    Rows are locked in primary key order so concurrent postings serialize
    instead of losing updates.
    """
    deltas = defaultdict(lambda: ZERO)
    for entry in entries:
        deltas[entry.account_id] += signed_effect(
            entry.account.ac_type, entry.debit, entry.credit)
    if not deltas:
        return
    locked = Account.objects.select_for_update().filter(pk__in=deltas.keys()).order_by("pk")
    for account in locked:
        delta = deltas[account.pk] * sign
        if delta:
            Account.objects.filter(pk=account.pk).update(balance=F("balance") + delta)


def _absorb_rounding(entries, ref):
    """
    Converting each entry separately can leave the posting a cent or two
    out. The residue goes to the largest entry on the lighter side.
    """
    total_debit, total_credit = entry_totals(entries)
    diff = total_debit - total_credit
    if not diff:
        return
    if abs(diff) > CENT * len(entries):
        raise UnbalancedEntriesError(total_debit, total_credit, ref)
    if diff > 0:
        target = max((e for e in entries if e.credit), key=lambda e: e.credit)
        target.credit += diff
    else:
        target = max((e for e in entries if e.debit), key=lambda e: e.debit)
        target.debit += -diff
    logger.debug("Absorbed FX rounding residue %s on %s", diff, ref)


def convert_entries_to_home(tx, entries):
    """
    Entries of a foreign transaction arrive in the foreign currency.
    Generic AR/AP lines are moved to the currency specific control account,
    then every amount is converted at the transaction's rate.
    """
    rate = tx.exchange_rate
    home = tx.company.default_currency_id
    for entry in entries:
        account = entry.account
        if account.ac_type in ("accounts_receivable", "accounts_payable") and (
            account.currency_id in (None, home)
        ):
            specific = currency_account_for(tx.company, account.ac_type, tx.currency_id)
            if specific is not None:
                entry.account = specific

        foreign = entry.debit if entry.debit else entry.credit
        entry.foreign_amount = round2(foreign)
        entry.debit = round2((entry.debit or ZERO) * rate)
        entry.credit = round2((entry.credit or ZERO) * rate)
        entry.currency_id = tx.currency_id
        entry.exchange_rate = rate
    _absorb_rounding(entries, str(tx))


def convert_totals_to_home(tx, fields=("amount", "sub_total", "tax_amount", "balance")):
    """Document totals arrive in the document currency; store them in home."""
    rate = tx.exchange_rate
    if "amount" in fields and tx.foreign_amount is None:
        tx.foreign_amount = round2(tx.amount)
    for field in fields:
        value = getattr(tx, field)
        if value is not None:
            setattr(tx, field, round2(value * rate))


def _normalize_currency(tx):
    # home currency is stored as null
    if tx.currency_id and tx.currency_id == tx.company.default_currency_id:
        tx.currency = None
        tx.exchange_rate = None


def _prepare_entries(tx, entries):
    kept = []
    for entry in entries:
        entry.debit = round2(entry.debit)
        entry.credit = round2(entry.credit)
        if entry.debit < 0 or entry.credit < 0:
            raise ValidationError(
                f"Ledger entry on {entry.account} has a negative amount.")
        if not entry.debit and not entry.credit:
            continue
        if entry.account.company_id != tx.company_id:
            raise ValidationError(
                f"Account {entry.account} belongs to another company.")
        if not entry.account.is_active:
            raise ValidationError(f"Account {entry.account} is inactive.")
        kept.append(entry)
    return kept


def _insert_entries(tx, entries):
    for entry in entries:
        entry.transaction = tx
        entry.company = tx.company
        if entry.date is None:
            entry.date = tx.date
        entry.save()


def post_entries(tx, entries, ref=None):
    """
    Add an extra balanced set of home-currency postings to an existing
    transaction (FX realization, revaluation). Call inside atomic.
    """
    entries = _prepare_entries(tx, list(entries))
    check_balanced(entries, ref or str(tx))
    _insert_entries(tx, entries)
    apply_account_effects(entries)
    return entries


# ---------- create ----------
def create_transaction(tx: Transaction, line_items: Iterable = (), ledger_entries: Iterable[LedgerEntry] = (),
                       user=None) -> Transaction:
    """
    Persist a transaction with its lines and postings as one unit.

    Draft and quotation documents are stored without postings. For a
    foreign currency transaction every supplied amount is in that
    currency and is converted to home before posting.
    """
    line_items = list(line_items)
    entries = list(ledger_entries)
    _normalize_currency(tx)
    ref = f"{tx.get_type_display()} {tx.reference or ''}".strip()

    if tx.status in UNPOSTED_STATUSES:
        if entries:
            logger.debug("Skipping %d ledger entries for %s %s", len(entries), tx.status, ref)
        entries = []
    else:
        entries = _prepare_entries(tx, entries)
        # caller's figures must balance before any conversion
        check_balanced(entries, ref)

    if tx.currency_id:
        if not tx.exchange_rate or tx.exchange_rate <= 0:
            raise ValidationError(
                {"exchange_rate": f"A positive exchange rate is required for {tx.currency_id}."}
            )
        convert_totals_to_home(tx)
        if entries:
            convert_entries_to_home(tx, entries)

    with transaction.atomic():
        if user is not None and tx.created_by_id is None:
            tx.created_by = user
        tx.save()
        for line in line_items:
            line.transaction = tx
            line.company = tx.company
            line.save()
        _insert_entries(tx, entries)
        apply_account_effects(entries)

        log_action(
            action="create",
            instance=tx,
            user=user,
            changes={"type": tx.type, "amount": tx.amount, "entries": len(entries)},
        )

    logger.info("Created %s (id=%s) with %d ledger entries", ref, tx.pk, len(entries))
    return tx


# ---------- update ----------
def _check_posted_totals(tx, patch):
    if tx.status in UNPOSTED_STATUSES:
        return
    # an unused deposit is re-sized in place, its balance follows the amount
    if tx.type == "deposit" and tx.status == "unapplied_credit":
        return
    changed = sorted(
        field for field in POSTED_TOTAL_FIELDS
        if field in patch and to_decimal(patch[field]) != to_decimal(getattr(tx, field))
    )
    if changed:
        raise ValidationError(
            f"Cannot change {', '.join(changed)} on posted {tx}; "
            "use repost_transaction() so the postings follow."
        )


@transaction.atomic
def update_transaction(transaction_id: int, patch: Dict, user=None) -> Transaction:
    """
    Partial update of the transaction row. Postings are untouched; use
    repost_transaction() to change them.
    """
    tx = lock_transaction(transaction_id)
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Cannot update {', '.join(sorted(unknown))} on {tx}; "
            "repost the transaction instead."
        )

    patch = dict(patch)
    _check_posted_totals(tx, patch)
    # credit balances are always stored negative
    if (
        tx.type == "deposit"
        and tx.status == "unapplied_credit"
        and "amount" in patch
        and "balance" not in patch
    ):
        patch["balance"] = -round2(patch["amount"])

    old_date = tx.date
    changes = {}
    for field, value in patch.items():
        if getattr(tx, field) != value:
            changes[field] = value
            setattr(tx, field, value)
    if not changes:
        return tx

    tx.save()
    if "date" in changes:
        # keep postings dated with their document
        tx.ledger_entries.filter(date=old_date).update(date=tx.date)

    log_action(action="update", instance=tx, user=user, changes=changes)
    return tx


@transaction.atomic
def repost_transaction(transaction_id: int, line_items: Iterable = (),
                       ledger_entries: Iterable[LedgerEntry] = (), patch: Optional[Dict] = None,
                       user=None) -> Transaction:
    """
    Edit flow: reverse the old postings, replace lines and postings, then
    recalculate the document's balance against its applications.
    """
    from .balances import recalculate_document

    tx = lock_transaction(transaction_id)
    patch = dict(patch or {})
    unknown = set(patch) - PATCHABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update {', '.join(sorted(unknown))} on {tx}.")
    if tx.status in UNPOSTED_STATUSES and ledger_entries:
        raise ValidationError(f"{tx} is not active yet; activate it to post entries.")

    old_entries = list(tx.ledger_entries.select_related("account"))
    apply_account_effects(old_entries, sign=-1)
    tx.ledger_entries.all().delete()
    tx.line_items.all().delete()

    for field, value in patch.items():
        setattr(tx, field, value)
    entries = _prepare_entries(tx, list(ledger_entries))
    check_balanced(entries, str(tx))
    if tx.currency_id:
        # re-supplied totals are in the document currency
        if "amount" in patch:
            tx.foreign_amount = None
        convert_totals_to_home(
            tx, [f for f in ("amount", "sub_total", "tax_amount") if f in patch])
        if entries:
            convert_entries_to_home(tx, entries)

    if tx.is_document:
        applied = sum(
            (a.amount_applied for a in PaymentApplication.objects.filter(invoice=tx)), ZERO)
        if applied > tx.amount:
            raise BalanceIntegrityError(
                f"{tx} already has {applied} applied; the new amount {tx.amount} "
                "would leave a negative balance"
            )
    tx.save()

    for line in line_items:
        line.transaction = tx
        line.company = tx.company
        line.save()
    _insert_entries(tx, entries)
    apply_account_effects(entries)
    recalculate_document(tx, force_update=True)

    log_action(action="repost", instance=tx, user=user,
               changes={"amount": tx.amount, "entries": len(entries)})
    logger.info("Reposted %s with %d ledger entries", tx, len(entries))
    tx.refresh_from_db()
    return tx


# ---------- delete ----------
def _unlink_bank_feed(tx):
    ImportedTransaction.objects.filter(matched_transaction=tx).update(
        status="unmatched", matched_transaction=None, matched_via="")
    imported_ids = set(
        BankTransactionMatch.objects.filter(transaction=tx)
        .values_list("imported_transaction_id", flat=True)
    )
    BankTransactionMatch.objects.filter(transaction=tx).delete()
    for imported_id in imported_ids:
        if not BankTransactionMatch.objects.filter(imported_transaction_id=imported_id).exists():
            ImportedTransaction.objects.filter(pk=imported_id).update(
                status="unmatched", is_multi_match=False, matched_via="")


@transaction.atomic
def delete_transaction(transaction_id: int, user=None) -> int:
    """
    Delete a transaction and reverse everything it caused: account
    balances, payment applications and the balances of the documents and
    credits on the other side.
    """
    from .balances import recalculate_credit_balance, recalculate_document
    from .payment import is_deposit_applied_to_invoices

    tx = lock_transaction(transaction_id)
    entries = list(tx.ledger_entries.select_related("account"))

    # credits already spent elsewhere must be un-applied first
    if tx.type in CREDIT_NOTE_TYPES:
        usage = is_deposit_applied_to_invoices(tx)
        if usage.is_applied:
            raise CreditInUse(
                "Transaction",
                tx.pk,
                f"{tx} has been applied to invoices ({'; '.join(usage.details)}); "
                "remove those applications first",
                references=usage.application_ids,
            )

    if tx.is_document and FxRealization.objects.filter(invoice=tx).exists():
        raise EntityInUseError(
            "Transaction",
            tx.pk,
            f"{tx} has realized exchange differences; delete the settling payments first",
            references=list(
                FxRealization.objects.filter(invoice=tx).values_list("payment_id", flat=True)
            ),
        )

    documents_to_recalc = set()
    sources_to_recalc = set()

    # allocations this transaction made, or that were routed through it
    made = PaymentApplication.objects.filter(Q(payment=tx) | Q(applied_via=tx))
    for app in made:
        documents_to_recalc.add(app.invoice_id)
        if app.payment_id != tx.pk:
            sources_to_recalc.add(app.payment_id)

    # allocations other credits made to this document
    received = PaymentApplication.objects.filter(invoice=tx)
    for app in received:
        sources_to_recalc.add(app.payment_id)

    removed = made.count() + received.count()
    made.delete()
    received.delete()

    apply_account_effects(entries, sign=-1)
    documents_to_recalc.update(
        e.document_id for e in entries if e.document_id and e.document_id != tx.pk
    )

    _unlink_bank_feed(tx)
    FxRealization.objects.filter(payment=tx).delete()
    tx.ledger_entries.all().delete()
    tx.line_items.all().delete()

    log_action(
        action="delete",
        instance=tx,
        user=user,
        changes={"type": tx.type, "amount": tx.amount, "applications_removed": removed},
    )
    deleted_id = tx.pk
    tx.delete()

    # consistency pass over everything on the other side
    documents_to_recalc.discard(deleted_id)
    sources_to_recalc.discard(deleted_id)
    for doc in Transaction.objects.filter(pk__in=documents_to_recalc):
        recalculate_document(doc)
    for source_id in sources_to_recalc:
        if Transaction.objects.filter(pk=source_id).exists():
            recalculate_credit_balance(source_id)

    logger.info(
        "Deleted transaction %s: reversed %d entries, removed %d applications",
        deleted_id, len(entries), removed,
    )
    return deleted_id
