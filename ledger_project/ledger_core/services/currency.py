import datetime
import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx
from django.db import transaction

from ..conf import ledger_setting
from ..exceptions import ExternalServiceError, NotFoundError
from ..models import (Account, Contact, Currency, ExchangeRate, FxRealization,
                      FxRevaluation, LedgerEntry, Transaction, is_debit_normal,
                      signed_effect)
from ..money import ZERO, round2, round_rate
from .accounts import AccountRoles
from .audit_helper import log_action

logger = logging.getLogger(__name__)

FOREIGN_BALANCE_TYPES = ("accounts_receivable", "accounts_payable", "bank")


def to_home(amount, rate):
    return round2(Decimal(str(amount)) * Decimal(str(rate)))


# ---------- exchange rates ----------
def get_exchange_rate(from_currency: str, to_currency: str, on_date: datetime.date) -> Decimal:
    """
    Units of to_currency per one from_currency on on_date: the latest rate
    on or before that day, or the inverse of the reverse pair.
    """
    if from_currency == to_currency:
        return Decimal("1")
    direct = (
        ExchangeRate.objects.filter(
            from_currency_id=from_currency,
            to_currency_id=to_currency,
            effective_date__lte=on_date,
        )
        .order_by("-effective_date")
        .first()
    )
    if direct is not None:
        return direct.rate
    reverse = (
        ExchangeRate.objects.filter(
            from_currency_id=to_currency,
            to_currency_id=from_currency,
            effective_date__lte=on_date,
        )
        .order_by("-effective_date")
        .first()
    )
    if reverse is not None:
        return round_rate(Decimal("1") / reverse.rate)
    raise NotFoundError("ExchangeRate", f"{from_currency}->{to_currency} on {on_date}")


def set_exchange_rate(from_currency, to_currency, rate, effective_date, is_manual=True):
    rate_row, _ = ExchangeRate.objects.update_or_create(
        from_currency_id=from_currency,
        to_currency_id=to_currency,
        effective_date=effective_date,
        defaults={"rate": round_rate(rate), "is_manual": is_manual},
    )
    return rate_row


def fetch_exchange_rates(home_currency: str, effective_date: datetime.date | None = None,
                         client: httpx.Client | None = None) -> int:
    """
    Pull the latest rates for home_currency from the provider and store
    them as foreign -> home rates. Manual rates for the day are kept.
    Returns the number of rates stored.
    """
    effective_date = effective_date or datetime.date.today()
    api_key = ledger_setting("EXCHANGE_RATE_API_KEY")
    if not api_key:
        raise ExternalServiceError("exchange-rate", "no API key configured")

    url = f"{ledger_setting('EXCHANGE_RATE_API_URL').rstrip('/')}/{api_key}/latest/{home_currency}"
    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=float(ledger_setting("EXCHANGE_RATE_TIMEOUT")))
    try:
        response = client.get(url)
        response.raise_for_status()
        data = response.json()
    except httpx.HTTPError as exc:
        raise ExternalServiceError("exchange-rate", f"request failed: {exc}") from exc
    except ValueError as exc:
        raise ExternalServiceError("exchange-rate", "provider returned invalid JSON") from exc
    finally:
        if owns_client:
            client.close()

    if data.get("result") != "success":
        raise ExternalServiceError(
            "exchange-rate", f"provider error: {data.get('error-type', 'unknown')}")

    known = set(Currency.objects.values_list("code", flat=True))
    stored = 0
    for code, value in (data.get("conversion_rates") or {}).items():
        if code == home_currency or code not in known or not value:
            continue
        existing = ExchangeRate.objects.filter(
            from_currency_id=code,
            to_currency_id=home_currency,
            effective_date=effective_date,
        ).first()
        if existing is not None and existing.is_manual:
            continue
        # provider quotes foreign units per home unit
        set_exchange_rate(
            code, home_currency, Decimal("1") / Decimal(str(value)),
            effective_date, is_manual=False,
        )
        stored += 1
    logger.info("Stored %d exchange rates for %s on %s", stored, home_currency, effective_date)
    return stored


def refresh_exchange_rates(home_currency, effective_date=None, client=None):
    """Fetch rates, degrading to a warning when the provider is unavailable."""
    try:
        return fetch_exchange_rates(home_currency, effective_date, client=client)
    except ExternalServiceError as exc:
        logger.warning("Exchange rate refresh skipped: %s", exc)
        return 0


def ensure_rates_for_date(home_currency, on_date, client=None):
    if ExchangeRate.objects.filter(to_currency_id=home_currency, effective_date=on_date).exists():
        return 0
    return refresh_exchange_rates(home_currency, on_date, client=client)


# ---------- realized gain/loss ----------
def calculate_realized_gain_loss(amount_applied: Decimal, invoice_rate, payment_rate) -> Decimal:
    """
    amount_applied is in home currency at the invoice's rate.
    foreign paid = amount_applied / invoice_rate
    gain/loss   = foreign paid * (payment_rate - invoice_rate)
    """
    invoice_rate = Decimal(str(invoice_rate))
    payment_rate = Decimal(str(payment_rate))
    foreign_paid = Decimal(str(amount_applied)) / invoice_rate
    return round2(foreign_paid * (payment_rate - invoice_rate))


def document_control_account(document, roles):
    control_type = "accounts_receivable" if document.type == "invoice" else "accounts_payable"
    entry = (
        document.ledger_entries.filter(account__ac_type=control_type)
        .select_related("account")
        .order_by("pk")
        .first()
    )
    if entry is not None:
        return entry.account
    return roles.get(control_type)


def realize_fx_gain_loss(application, carrier, realized_date, roles=None):
    """
    Post the exchange difference of one allocation to a foreign document.

    The difference is worked out from the rate of the credit source; a gain
    credits FX gain against the control account, a loss debits FX loss.
    For bills the sign flips: paying fewer home units than booked is a gain.
    Postings land in `carrier` (the settling payment, or the credit source
    for a standalone credit application).
    """
    from .posting import post_entries

    document = application.invoice
    source = application.payment
    if not document.currency_id or not source.exchange_rate:
        return None
    if source.exchange_rate == document.exchange_rate:
        return None

    difference = calculate_realized_gain_loss(
        application.amount_applied, document.exchange_rate, source.exchange_rate)
    if not difference:
        return None
    gain = difference if document.type == "invoice" else -difference

    roles = roles or AccountRoles(document.company)
    # both accounts are required for any foreign settlement
    gain_account = roles.get("fx_gain")
    loss_account = roles.get("fx_loss")
    control = document_control_account(document, roles)

    amount = abs(gain)
    label = "gain" if gain > 0 else "loss"
    description = f"Realized FX {label} on {document}"
    common = {
        "date": realized_date,
        "description": description,
        "currency_id": document.currency_id,
        "document": document,
    }
    if gain > 0:
        entries = [
            LedgerEntry(account=control, debit=amount, **common),
            LedgerEntry(account=gain_account, credit=amount, **common),
        ]
        posted_to = gain_account
    else:
        entries = [
            LedgerEntry(account=loss_account, debit=amount, **common),
            LedgerEntry(account=control, credit=amount, **common),
        ]
        posted_to = loss_account
    post_entries(carrier, entries, ref=description)

    realization = FxRealization.objects.create(
        company=document.company,
        application=application,
        payment=carrier,
        invoice=document,
        currency_id=document.currency_id,
        foreign_amount=round2(application.amount_applied / document.exchange_rate),
        original_rate=document.exchange_rate,
        payment_rate=source.exchange_rate,
        gain_loss_amount=gain,
        gain_loss_account=posted_to,
        control_account=control,
        realized_date=realized_date,
    )
    logger.info("Realized FX %s of %s on %s", label, amount, document)
    return realization


def reverse_fx_realization(realization, on_date=None):
    """Post the mirror image of a realization and drop its record."""
    from .posting import post_entries

    amount = abs(realization.gain_loss_amount)
    common = {
        "date": on_date or datetime.date.today(),
        "description": f"Reversal of FX realization on {realization.invoice}",
        "currency_id": realization.currency_id,
        "document": realization.invoice,
    }
    if realization.gain_loss_amount > 0:
        entries = [
            LedgerEntry(account=realization.gain_loss_account, debit=amount, **common),
            LedgerEntry(account=realization.control_account, credit=amount, **common),
        ]
    else:
        entries = [
            LedgerEntry(account=realization.control_account, debit=amount, **common),
            LedgerEntry(account=realization.gain_loss_account, credit=amount, **common),
        ]
    post_entries(realization.payment, entries)
    realization.delete()


# ---------- open foreign balances ----------
@dataclass
class ForeignBalance:
    account: Account
    account_type: str
    currency: str
    foreign_balance: Decimal
    home_balance: Decimal
    weighted_rate: Decimal


def foreign_currency_balances(company, as_of):
    """
    Open foreign balances on AR, AP and bank accounts as of a date, per
    (account type, currency, account). Balances carry the account's
    natural sign. weighted_rate is the historical rate the balance is
    carried at: home carried / foreign, which is the foreign-amount
    weighted average of the posting rates once settlements are included.
    """
    home = company.default_currency_id
    entries = (
        LedgerEntry.objects.filter(
            company=company,
            date__lte=as_of,
            account__ac_type__in=FOREIGN_BALANCE_TYPES,
            currency__isnull=False,
        )
        .exclude(currency_id=home)
        .select_related("account")
        .order_by("pk")
    )

    groups = {}
    for entry in entries:
        account = entry.account
        # a home currency bank account only ever holds home money
        if account.ac_type == "bank" and account.currency_id != entry.currency_id:
            continue
        key = (account.ac_type, entry.currency_id, account.pk)
        group = groups.setdefault(key, {"account": account, "foreign": ZERO, "home": ZERO})
        group["home"] += signed_effect(account.ac_type, entry.debit, entry.credit)
        if entry.foreign_amount is not None:
            direction = 1 if entry.debit else -1
            if not is_debit_normal(account.ac_type):
                direction = -direction
            group["foreign"] += entry.foreign_amount * direction

    balances = []
    for (ac_type, currency, _), group in sorted(groups.items(), key=lambda kv: kv[0]):
        if not group["foreign"]:
            continue
        balances.append(
            ForeignBalance(
                account=group["account"],
                account_type=ac_type,
                currency=currency,
                foreign_balance=round2(group["foreign"]),
                home_balance=round2(group["home"]),
                weighted_rate=round_rate(group["home"] / group["foreign"]),
            )
        )
    return balances


def _prior_adjustments(company):
    """(net posted adjustment, latest row) per (account, currency)."""
    totals = {}
    rows = (
        FxRevaluation.objects.filter(company=company)
        .select_related("account")
        .order_by("revaluation_date", "pk")
    )
    for row in rows:
        key = (row.account_id, row.currency_id)
        total = totals.get(key, (ZERO, None))[0]
        totals[key] = (total + row.adjustment_amount, row)
    return totals


def revalue_foreign_balances(company, revaluation_date: datetime.date, rates: dict | None = None,
                             user=None) -> Transaction | None:
    """
    Mark open foreign balances to market as of revaluation_date.

    unrealized = foreign_balance * (revaluation_rate - weighted_rate)
    Only the change since earlier runs is posted, as one journal entry.
    Debit-normal balances (AR, bank) gain when the rate rises; AP mirrors.
    A balance that has since been settled has its earlier adjustments
    unwound, since the settlement realizes the difference instead.
    Returns the journal entry, or None when nothing moved.
    """
    from .posting import create_transaction

    home = company.default_currency_id
    rates = rates or {}
    roles = AccountRoles(company)
    gain_account = roles.get("fx_gain")
    loss_account = roles.get("fx_loss")
    prior = _prior_adjustments(company)

    positions = []
    for balance in foreign_currency_balances(company, revaluation_date):
        rate = rates.get(balance.currency)
        if rate is None:
            rate = get_exchange_rate(balance.currency, home, revaluation_date)
        rate = Decimal(str(rate))
        unrealized = round2(balance.foreign_balance * (rate - balance.weighted_rate))
        already = prior.pop((balance.account.pk, balance.currency), (ZERO, None))[0]
        positions.append((balance.account, balance.account_type, balance.currency,
                          balance.foreign_balance, balance.weighted_rate, rate,
                          unrealized, already))

    # settled since the last run: nothing open is left to carry an adjustment
    for (_, currency), (already, last) in sorted(prior.items()):
        if not already:
            continue
        positions.append((last.account, last.account_type, currency, ZERO,
                          last.revaluation_rate, last.revaluation_rate, ZERO, already))

    entries = []
    snapshots = []
    for account, ac_type, currency, foreign, weighted, rate, unrealized, already in positions:
        adjustment = unrealized - already
        if not adjustment:
            continue

        amount = abs(adjustment)
        description = f"FX revaluation {currency} {account}"
        debit_normal = is_debit_normal(ac_type)
        account_up = adjustment > 0
        gain = account_up if debit_normal else not account_up
        # the position decides the P&L account, so unwinding a gain debits FX gain
        position = unrealized or already
        pnl_account = gain_account if (position > 0) == debit_normal else loss_account
        if account_up:
            entries.append(LedgerEntry(account=account, debit=amount, description=description))
        else:
            entries.append(LedgerEntry(account=account, credit=amount, description=description))
        if gain:
            entries.append(LedgerEntry(account=pnl_account, credit=amount, description=description))
        else:
            entries.append(LedgerEntry(account=pnl_account, debit=amount, description=description))
        snapshots.append((account, ac_type, currency, foreign, weighted, rate, unrealized, adjustment))

    if not entries:
        logger.info("No foreign balances to revalue for %s on %s", company, revaluation_date)
        return None

    with transaction.atomic():
        total = sum((e.debit for e in entries), ZERO)
        journal = Transaction(
            company=company,
            type="journal_entry",
            date=revaluation_date,
            reference=f"FXREV-{revaluation_date.isoformat()}",
            description=f"Unrealized FX revaluation as of {revaluation_date}",
            amount=total,
            status="completed",
        )
        create_transaction(journal, [], entries, user=user)
        for account, ac_type, currency, foreign, weighted, rate, unrealized, adjustment in snapshots:
            FxRevaluation.objects.create(
                company=company,
                journal=journal,
                revaluation_date=revaluation_date,
                account=account,
                account_type=ac_type,
                currency_id=currency,
                foreign_balance=foreign,
                original_rate=weighted,
                revaluation_rate=rate,
                unrealized_gain_loss=unrealized,
                adjustment_amount=adjustment,
            )
        log_action(action="fx_revaluation", instance=journal, user=user,
                   changes={"groups": len(snapshots), "amount": total})
    return journal


# ---------- currency lock ----------
def has_contact_transactions(contact):
    return Transaction.objects.filter(contact=contact).exists()


def can_change_currency(entity):
    """A contact or account keeps its currency once it has history."""
    if isinstance(entity, Contact):
        return not has_contact_transactions(entity)
    if isinstance(entity, Account):
        return not LedgerEntry.objects.filter(account=entity).exists()
    raise TypeError(f"Currency lock does not apply to {type(entity).__name__}")
