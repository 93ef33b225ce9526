"""
One-time import of allocations that older data only recorded as text in
transaction descriptions, e.g.

    "Applied $2,500.00 to invoice #1009"
    "Applied credit from deposit #DEP-7 on May 22, 2025 Applied to invoice #1009"

Parsed text is a migration aid only; balances are never computed from it.
"""
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from django.db import transaction

from ..models import CREDIT_SOURCE_TYPES, PaymentApplication, Transaction
from ..money import round2
from .balances import (available_credit, is_credit_bearing, recalculate_credit_balance,
                       recalculate_invoice_balance)
from .payment import remaining_balance

logger = logging.getLogger(__name__)

_AMOUNT_TO_INVOICE = re.compile(
    r"Applied\s+\$?(?P<amount>[0-9,]+(?:\.[0-9]+)?)\s+to\s+invoice\s*#?\s*(?P<ref>[\w-]+)?",
    re.IGNORECASE,
)
_CREDIT_FROM_SOURCE = re.compile(
    r"Applied\s+credit\s+from\s+(?P<kind>deposit|payment|credit)\s*#?\s*(?P<source>[\w-]+)"
    r".*?invoice\s*#?\s*(?P<ref>[\w-]+)",
    re.IGNORECASE | re.DOTALL,
)


@dataclass
class LegacyApplication:
    amount: Decimal = None
    invoice_ref: str = None
    source_ref: str = None


def _parse_amount(raw):
    try:
        return round2(Decimal(raw.replace(",", "")))
    except (InvalidOperation, AttributeError):
        return None


def parse_applied_amounts(text: str | None) -> list[LegacyApplication]:
    """All allocations mentioned in a description, in order of appearance."""
    if not text:
        return []
    found = []
    for match in _AMOUNT_TO_INVOICE.finditer(text):
        found.append((match.start(), LegacyApplication(
            amount=_parse_amount(match.group("amount")),
            invoice_ref=match.group("ref"),
        )))
    for match in _CREDIT_FROM_SOURCE.finditer(text):
        found.append((match.start(), LegacyApplication(
            invoice_ref=match.group("ref"),
            source_ref=match.group("source"),
        )))
    return [item for _, item in sorted(found, key=lambda pair: pair[0])]


def backfill_payment_applications(company, dry_run: bool = False) -> dict:
    """
    Turn description-encoded allocations into PaymentApplication rows.

    Only credit-bearing sources are considered, an existing (source, invoice)
    pair is never duplicated, and an allocation is capped at what the invoice
    still has open. Returns {"scanned", "created", "skipped"}.
    """
    summary = {"scanned": 0, "created": 0, "skipped": 0}
    invoices = {
        tx.reference: tx
        for tx in Transaction.objects.filter(company=company, type="invoice").exclude(reference=None)
    }
    credit_sources = Transaction.objects.filter(company=company, type__in=CREDIT_SOURCE_TYPES)
    by_reference = {tx.reference: tx for tx in credit_sources.exclude(reference=None)}
    sources = credit_sources.filter(description__icontains="applied").order_by("date", "pk")

    touched_invoices = set()
    touched_sources = set()
    with transaction.atomic():
        for source in sources:
            summary["scanned"] += 1
            if not is_credit_bearing(source):
                continue
            for legacy in parse_applied_amounts(source.description):
                # "Applied credit from deposit #X" names the real source
                applied_from = by_reference.get(legacy.source_ref, source) if legacy.source_ref else source
                invoice = invoices.get(legacy.invoice_ref)
                if invoice is None or invoice.contact_id != applied_from.contact_id:
                    summary["skipped"] += 1
                    continue
                if PaymentApplication.objects.filter(payment=applied_from, invoice=invoice).exists():
                    summary["skipped"] += 1
                    continue

                open_amount = remaining_balance(invoice)
                amount = legacy.amount if legacy.amount is not None else applied_from.amount
                amount = min(amount, open_amount, available_credit(applied_from))
                if amount <= 0:
                    summary["skipped"] += 1
                    continue

                logger.info("Backfilling %s applied from %s to %s", amount, applied_from, invoice)
                if not dry_run:
                    PaymentApplication.objects.create(
                        company=company, payment=applied_from, invoice=invoice, amount_applied=amount)
                    touched_invoices.add(invoice.pk)
                    touched_sources.add(applied_from.pk)
                summary["created"] += 1

        for invoice_id in touched_invoices:
            recalculate_invoice_balance(invoice_id)
        for source_id in touched_sources:
            recalculate_credit_balance(source_id)

    logger.info("Legacy backfill for %s: %s", company, summary)
    return summary
