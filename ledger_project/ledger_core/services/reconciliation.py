import datetime
import logging
from decimal import Decimal
from typing import Iterable

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from ..models import (Account, LedgerEntry, Reconciliation, ReconciliationItem,
                      signed_effect)
from ..money import CENT, ZERO, round2
from .audit_helper import log_action

logger = logging.getLogger(__name__)


def _last_completed(account, exclude=None):
    sessions = Reconciliation.objects.filter(account=account, status="completed")
    if exclude is not None:
        sessions = sessions.exclude(pk=exclude.pk)
    return sessions.order_by("-statement_date", "-pk").first()


def _cleared_elsewhere(account):
    return ReconciliationItem.objects.filter(
        reconciliation__account=account,
        reconciliation__status="completed",
        is_cleared=True,
    ).values_list("ledger_entry_id", flat=True)


@transaction.atomic
def start_reconciliation(account: Account, statement_date: datetime.date,
                         statement_ending_balance: Decimal, user=None) -> Reconciliation:
    """
    Open a session for one statement. Every entry of the account up to the
    statement date that no completed session cleared becomes an item.
    """
    account = Account.objects.select_for_update().get(pk=account.pk)
    if Reconciliation.objects.filter(account=account, status="in_progress").exists():
        raise ValidationError(f"{account} already has a reconciliation in progress.")
    previous = _last_completed(account)
    if previous is not None and statement_date <= previous.statement_date:
        raise ValidationError(
            f"{account} is already reconciled through {previous.statement_date}.")

    opening = previous.statement_ending_balance if previous is not None else ZERO
    session = Reconciliation(
        company=account.company,
        account=account,
        statement_date=statement_date,
        statement_ending_balance=round2(statement_ending_balance),
        opening_balance=opening,
        cleared_balance=opening,
        difference=round2(statement_ending_balance) - opening,
    )
    session.save()

    entries = (
        LedgerEntry.objects.filter(account=account, date__lte=statement_date)
        .exclude(pk__in=_cleared_elsewhere(account))
        .order_by("date", "pk")
    )
    ReconciliationItem.objects.bulk_create([
        ReconciliationItem(company=account.company, reconciliation=session, ledger_entry=entry)
        for entry in entries
    ])
    log_action(action="reconciliation_start", instance=session, user=user,
               changes={"statement_date": statement_date, "items": entries.count()})
    return session


def _refresh_totals(session):
    cleared = ZERO
    items = session.items.filter(is_cleared=True).select_related("ledger_entry")
    for item in items:
        entry = item.ledger_entry
        cleared += signed_effect(session.account.ac_type, entry.debit, entry.credit)
    session.cleared_balance = round2(session.opening_balance + cleared)
    session.difference = round2(session.statement_ending_balance - session.cleared_balance)
    session.save()


@transaction.atomic
def set_cleared(reconciliation: Reconciliation, ledger_entry_ids: Iterable[int],
                is_cleared: bool = True) -> Reconciliation:
    session = Reconciliation.objects.select_for_update().select_related("account").get(pk=reconciliation.pk)
    if session.status != "in_progress":
        raise ValidationError(f"{session} is {session.status}.")
    updated = session.items.filter(ledger_entry_id__in=list(ledger_entry_ids)).update(
        is_cleared=is_cleared)
    _refresh_totals(session)
    logger.debug("%s: %d item(s) marked cleared=%s", session, updated, is_cleared)
    return session


@transaction.atomic
def complete_reconciliation(reconciliation: Reconciliation, user=None) -> Reconciliation:
    session = Reconciliation.objects.select_for_update().select_related("account").get(pk=reconciliation.pk)
    if session.status != "in_progress":
        raise ValidationError(f"{session} is already {session.status}.")
    _refresh_totals(session)
    if abs(session.difference) >= CENT:
        raise ValidationError(
            f"Cleared balance {session.cleared_balance} is {session.difference} away from "
            f"the statement ending balance {session.statement_ending_balance}."
        )
    session.status = "completed"
    session.completed_at = timezone.now()
    session.save()
    # unclear items are dropped; the next session picks them up again
    session.items.filter(is_cleared=False).delete()
    Account.objects.filter(pk=session.account_id).update(
        last_reconciled_date=session.statement_date,
        last_reconciled_balance=session.statement_ending_balance,
    )
    log_action(action="reconciliation_complete", instance=session, user=user,
               changes={"cleared_balance": session.cleared_balance})
    return session


@transaction.atomic
def undo_reconciliation(reconciliation: Reconciliation, user=None) -> Reconciliation:
    """Reopen the latest completed session of an account."""
    session = Reconciliation.objects.select_for_update().select_related("account").get(pk=reconciliation.pk)
    if session.status != "completed":
        raise ValidationError(f"{session} is not completed.")
    latest = _last_completed(session.account)
    if latest is None or latest.pk != session.pk:
        raise ValidationError("Only the most recent reconciliation can be undone.")
    if Reconciliation.objects.filter(account=session.account, status="in_progress").exists():
        raise ValidationError(f"{session.account} has another reconciliation in progress.")

    session.status = "in_progress"
    session.completed_at = None
    session.save()

    # bring back entries the session left uncleared
    present = session.items.values_list("ledger_entry_id", flat=True)
    missing = (
        LedgerEntry.objects.filter(account=session.account, date__lte=session.statement_date)
        .exclude(pk__in=_cleared_elsewhere(session.account))
        .exclude(pk__in=present)
    )
    ReconciliationItem.objects.bulk_create([
        ReconciliationItem(company=session.company, reconciliation=session, ledger_entry=entry)
        for entry in missing
    ])

    previous = _last_completed(session.account, exclude=session)
    Account.objects.filter(pk=session.account_id).update(
        last_reconciled_date=previous.statement_date if previous else None,
        last_reconciled_balance=previous.statement_ending_balance if previous else None,
    )
    log_action(action="reconciliation_undo", instance=session, user=user)
    return session
