import datetime
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction

from ledger_core.models import (Account, Company, Contact, Currency,
                                EntityMembership, ImportedTransaction,
                                SalesTax)
from ledger_core.services.accounts import create_account, seed_default_chart
from ledger_core.services.currency import set_exchange_rate
from ledger_core.services.documents import create_bill, create_invoice
from ledger_core.services.payment import receive_payment

User = get_user_model()

CURRENCIES = [
    ("USD", "US Dollar", "$"),
    ("EUR", "Euro", "€"),
    ("GBP", "British Pound", "£"),
    ("CAD", "Canadian Dollar", "$"),
]


class Command(BaseCommand):
    help = "Create a demo company with a chart of accounts, contacts and a few posted documents"

    def add_arguments(self, parser):
        parser.add_argument("--company-name", type=str, default="Demo Ltd")
        parser.add_argument("--username", type=str, default="demo")
        parser.add_argument("--password", type=str, default="demo123")
        parser.add_argument("--currency", type=str, default="USD",
                            help="Home currency code (default: USD)")

    @transaction.atomic
    def handle(self, *args, **options):
        company_name = options["company_name"]
        home_code = options["currency"].upper()

        # 1. Currencies
        for code, name, symbol in CURRENCIES:
            Currency.objects.get_or_create(code=code, defaults={"name": name, "symbol": symbol})
        home = Currency.objects.get(code=home_code)

        # 2. User
        user, created = User.objects.get_or_create(username=options["username"])
        if created:
            user.set_password(options["password"])
            user.save()
            self.stdout.write(self.style.SUCCESS(f"Created user: {user.username}"))

        # 3. Company + membership
        company = Company(name=company_name, default_currency=home, owner=user)
        company.save()
        EntityMembership(user=user, company=company, role="owner").save()
        user.default_company = company
        user.save(update_fields=["default_company"])
        self.stdout.write(self.style.SUCCESS(f"Created company: {company.name} ({company.slug})"))

        # 4. Chart of accounts
        chart = seed_default_chart(company, user=user)
        foreign = "EUR" if home_code != "EUR" else "USD"
        create_account(company, user=user, code="1210", name=f"Accounts Receivable - {foreign}",
                       ac_type="accounts_receivable", currency_id=foreign,
                       cash_flow_category="operating", is_control_account=True)
        self.stdout.write(self.style.SUCCESS(
            f"Created {Account.objects.for_company(company).count()} accounts"))

        tax = SalesTax(company=company, name="Sales Tax", rate=Decimal("13.0000"),
                       account=chart["2200"])
        tax.save()

        # 5. Contacts
        customer = Contact(company=company, name="Acme Corp", contact_type="customer",
                           email="billing@acme.test")
        customer.save()
        vendor = Contact(company=company, name="Office Supplies Inc", contact_type="vendor")
        vendor.save()

        # 6. Documents
        today = datetime.date.today()
        invoice = create_invoice(
            company,
            {"reference": "INV-1001", "date": today, "contact": customer.pk,
             "description": "Consulting"},
            [{"description": "Consulting hours", "quantity": "10", "unit_price": "100.00",
              "account": chart["4000"].pk, "sales_tax": tax.pk}],
            user=user,
        )
        self.stdout.write(self.style.SUCCESS(f"Created invoice: {invoice.reference} ({invoice.amount})"))

        payment = receive_payment(
            company, customer, today, chart["1000"], Decimal("500.00"),
            applications=[{"invoice_id": invoice.pk, "amount": Decimal("500.00")}],
            reference="PMT-1001", user=user,
        )
        self.stdout.write(self.style.SUCCESS(f"Received payment: {payment.reference}"))

        bill = create_bill(
            company,
            {"reference": "BILL-2001", "date": today, "contact": vendor.pk},
            [{"description": "Paper", "quantity": "5", "unit_price": "20.00",
              "account": chart["6000"].pk}],
            user=user,
        )
        self.stdout.write(self.style.SUCCESS(f"Created bill: {bill.reference} ({bill.amount})"))

        set_exchange_rate(foreign, home_code, Decimal("1.10"), today)

        # 7. Bank feed row waiting to be matched against the invoice
        invoice.refresh_from_db()
        ImportedTransaction(
            company=company,
            bank_account=chart["1000"],
            date=today,
            name="ACME CORP INV-1001",
            amount=invoice.balance,
            currency=home,
        ).save()
        self.stdout.write(self.style.SUCCESS("Created imported bank transaction"))
        self.stdout.write(self.style.SUCCESS("Demo tenant setup complete!"))
