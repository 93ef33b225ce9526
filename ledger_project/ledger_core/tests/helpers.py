import datetime
from decimal import Decimal

from django.test import TestCase

from ..models import Account, Company, Contact, Currency, Transaction
from ..services.accounts import create_account, seed_default_chart
from ..services.documents import (create_bill, create_deposit,
                                  create_expense, create_invoice,
                                  create_sales_receipt)
from ..services.payment import receive_payment


class LedgerTestCase(TestCase):
    """
    A USD company with the default chart of accounts, one customer and
    one vendor. Helpers build documents through the real services.
    """

    today = datetime.date(2025, 3, 10)

    def setUp(self):
        self.usd = Currency.objects.create(code="USD", name="US Dollar", symbol="$")
        self.eur = Currency.objects.create(code="EUR", name="Euro", symbol="€")
        self.company = Company.objects.create(name="Test Co", default_currency=self.usd)
        self.chart = seed_default_chart(self.company)

        self.bank = self.chart["1000"]
        self.ar = self.chart["1200"]
        self.ap = self.chart["2000"]
        self.tax_payable = self.chart["2200"]
        self.loan = self.chart["2700"]
        self.retained = self.chart["3100"]
        self.sales = self.chart["4000"]
        self.fx_gain = self.chart["4300"]
        self.expense = self.chart["6000"]
        self.fx_loss = self.chart["7100"]

        self.customer = Contact.objects.create(
            company=self.company, name="Acme Corp", contact_type="customer")
        self.vendor = Contact.objects.create(
            company=self.company, name="Paper Supply", contact_type="vendor")

    # ---------- lookups ----------
    def balance(self, account):
        return Account.objects.get(pk=account.pk).balance

    def reload(self, tx):
        return Transaction.objects.get(pk=tx.pk)

    def eur_receivable(self):
        return create_account(
            self.company, code="1210", name="Accounts Receivable - EUR",
            ac_type="accounts_receivable", currency_id="EUR", cash_flow_category="operating",
        )

    # ---------- builders ----------
    def line(self, amount, account=None, **extra):
        row = {
            "description": extra.pop("description", "Line"),
            "quantity": extra.pop("quantity", "1"),
            "unit_price": str(amount),
            "account": (account or self.sales).pk,
        }
        row.update(extra)
        return row

    def make_invoice(self, amount, reference=None, date=None, contact=None, lines=None, **data):
        header = {
            "reference": reference,
            "date": date or self.today,
            "contact": (contact or self.customer).pk,
            **data,
        }
        return create_invoice(self.company, header, lines or [self.line(amount)])

    def make_bill(self, amount, reference=None, date=None, **data):
        header = {
            "reference": reference,
            "date": date or self.today,
            "contact": self.vendor.pk,
            **data,
        }
        return create_bill(self.company, header, [self.line(amount, account=self.expense)])

    def make_deposit(self, amount, contact=None, date=None, **data):
        header = {
            "date": date or self.today,
            "contact": (contact or self.customer).pk,
            "payment_account": self.bank.pk,
            "amount": str(amount),
            **data,
        }
        return create_deposit(self.company, header)

    def make_sales_receipt(self, amount, date=None):
        return create_sales_receipt(
            self.company,
            {"date": date or self.today, "contact": self.customer.pk, "payment_account": self.bank.pk},
            [self.line(amount)],
        )

    def make_expense(self, amount, date=None, account=None):
        return create_expense(
            self.company,
            {"date": date or self.today, "payment_account": self.bank.pk},
            [self.line(amount, account=account or self.expense)],
        )

    def pay_invoice(self, invoice, amount, date=None, **kwargs):
        amount = Decimal(str(amount))
        return receive_payment(
            self.company,
            invoice.contact,
            date or self.today,
            self.bank,
            amount,
            applications=[{"invoice_id": invoice.pk, "amount": amount}],
            **kwargs,
        )
