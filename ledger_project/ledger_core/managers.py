from decimal import Decimal

from django.db import models

# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a company
# -----------------------------------------
class TenantQuerySet(models.QuerySet):
    def for_company(self, company):
        return self.filter(company=company)

    def active(self, company):
        return self.filter(company=company, is_active=True)
    # Enables query:
    # Account.objects.active(company)


class TenantManager(models.Manager):
    # every model gets TenantQuerySet, so .for_company() is always available
    def get_queryset(self):
        return TenantQuerySet(self.model, using=self._db)

    def for_company(self, company):
        return self.get_queryset().for_company(company)

    def active(self, company):
        return self.get_queryset().active(company)


class TransactionQuerySet(TenantQuerySet):
    def of_type(self, *types):
        return self.filter(type__in=types)

    # documents that still carry an amount owed
    def open_documents(self, company):
        return self.filter(
            company=company,
            type__in=("invoice", "bill"),
            status="open",
            balance__gt=0,
        )

    # payments/deposits/cheques/credits with credit left to apply
    def unapplied_credits(self, company):
        return self.filter(company=company, status="unapplied_credit")


class TransactionManager(TenantManager):
    def get_queryset(self):
        return TransactionQuerySet(self.model, using=self._db)

    def of_type(self, *types):
        return self.get_queryset().of_type(*types)

    def open_documents(self, company):
        return self.get_queryset().open_documents(company)

    def unapplied_credits(self, company):
        return self.get_queryset().unapplied_credits(company)


# Stamp a ledger entry with its transaction's company, date and currency
class LedgerEntryManager(TenantManager):
    def create_for_transaction(self, transaction, **kwargs):
        kwargs.setdefault("company", transaction.company)
        kwargs.setdefault("date", transaction.date)
        return super().create(transaction=transaction, **kwargs)


# Build an (unsaved) LineItem, defaulting unit_price and account
# from the Product. The engine saves it once the parent row exists.
class LineItemManager(TenantManager):
    def build_from_product(self, product, purchase=False, **kwargs):
        if kwargs.get("unit_price") is None:
            kwargs["unit_price"] = getattr(
                product, "default_unit_price", None) or Decimal("0")
        if kwargs.get("account") is None:
            kwargs["account"] = (
                product.purchase_account if purchase else product.sales_account
            )
        kwargs["product"] = product
        return self.model(**kwargs)
