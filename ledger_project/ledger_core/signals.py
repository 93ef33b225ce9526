from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .exceptions import AccountInUse, EntityInUseError
from .models import (Account, Company, LedgerEntry, PaymentApplication,
                     Transaction)

# Direct .delete() calls bypass the services; these keep the ledger
# from being orphaned that way. Deleting a whole company cascades freely.


def _company_cascade(origin):
    return isinstance(origin, Company)


@receiver(pre_delete, sender=Account)
def prevent_delete_account_with_ledger_entries(sender, instance, origin=None, **kwargs):
    if _company_cascade(origin):
        return
    used_by = list(
        LedgerEntry.objects.filter(account=instance)
        .values_list("transaction_id", flat=True)
        .distinct()[:50]
    )
    if used_by:
        raise AccountInUse(
            "Account", instance.pk,
            "account has ledger entries; deactivate it instead",
            references=used_by,
        )


""" A transaction still holding postings or allocations has to go
    through posting.delete_transaction(), which reverses them first. """


@receiver(pre_delete, sender=Transaction)
def prevent_delete_posted_transaction(sender, instance, origin=None, **kwargs):
    if _company_cascade(origin):
        return
    if instance.ledger_entries.exists():
        raise EntityInUseError(
            "Transaction", instance.pk,
            "transaction still has ledger entries; use delete_transaction()",
            references=list(instance.ledger_entries.values_list("pk", flat=True)[:50]),
        )
    applications = PaymentApplication.objects.filter(payment=instance) | PaymentApplication.objects.filter(
        invoice=instance)
    if applications.exists():
        raise EntityInUseError(
            "Transaction", instance.pk,
            "transaction still has payment applications; use delete_transaction()",
            references=list(applications.values_list("pk", flat=True)[:50]),
        )
