from decimal import Decimal

from django import forms
from django.core.exceptions import ValidationError

from .models import Account, Contact, Currency, Product, SalesTax

# ---------------------------------------------------------
# Input validation for the document builders, one form per
# transaction type. Choice fields are limited to the company
# the document is created for.
# ---------------------------------------------------------

MONEY = {"max_digits": 18, "decimal_places": 2}


class CompanyScopedForm(forms.Form):
    # field name -> model whose queryset is scoped to the company
    scoped_fields = {}

    def __init__(self, company, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.company = company
        for name, model in self.scoped_fields.items():
            if name in self.fields:
                self.fields[name].queryset = model.objects.for_company(company)


class LineItemForm(CompanyScopedForm):
    scoped_fields = {"account": Account, "product": Product, "sales_tax": SalesTax}

    description = forms.CharField(required=False)
    quantity = forms.DecimalField(max_digits=14, decimal_places=4, min_value=Decimal("0"),
                                  initial=Decimal("1"))
    unit_price = forms.DecimalField(max_digits=18, decimal_places=4, required=False,
                                    min_value=Decimal("0"))
    account = forms.ModelChoiceField(queryset=Account.objects.none(), required=False)
    product = forms.ModelChoiceField(queryset=Product.objects.none(), required=False)
    sales_tax = forms.ModelChoiceField(queryset=SalesTax.objects.none(), required=False)

    def clean(self):
        cleaned = super().clean()
        product = cleaned.get("product")
        if not cleaned.get("account") and not (
            product and (product.sales_account_id or product.purchase_account_id)
        ):
            raise ValidationError("Each line needs an account (directly or through its product).")
        if cleaned.get("unit_price") is None and product is None:
            raise ValidationError({"unit_price": "Unit price is required without a product."})
        return cleaned


class LedgerEntryForm(CompanyScopedForm):
    scoped_fields = {"account": Account}

    account = forms.ModelChoiceField(queryset=Account.objects.none())
    debit = forms.DecimalField(required=False, min_value=Decimal("0"), **MONEY)
    credit = forms.DecimalField(required=False, min_value=Decimal("0"), **MONEY)
    description = forms.CharField(required=False)

    def clean(self):
        cleaned = super().clean()
        debit = cleaned.get("debit") or Decimal("0.00")
        credit = cleaned.get("credit") or Decimal("0.00")
        if debit and credit:
            raise ValidationError("A ledger entry is either a debit or a credit, not both.")
        if not debit and not credit:
            raise ValidationError("Either debit or credit must be > 0.")
        cleaned["debit"], cleaned["credit"] = debit, credit
        return cleaned


# ---------- document headers ----------
class TransactionForm(CompanyScopedForm):
    scoped_fields = {"contact": Contact, "payment_account": Account}
    status_choices = (("completed", "Completed"), ("draft", "Draft"))
    contact_role = None  # "customer" / "vendor"
    requires_lines = False

    reference = forms.CharField(max_length=64, required=False)
    date = forms.DateField()
    description = forms.CharField(required=False)
    status = forms.ChoiceField(required=False)
    contact = forms.ModelChoiceField(queryset=Contact.objects.none(), required=False)
    currency = forms.ModelChoiceField(queryset=Currency.objects.all(), required=False)
    exchange_rate = forms.DecimalField(max_digits=18, decimal_places=6, required=False,
                                       min_value=Decimal("0.000001"))

    def __init__(self, company, *args, **kwargs):
        super().__init__(company, *args, **kwargs)
        self.fields["status"].choices = self.status_choices

    def clean_status(self):
        return self.cleaned_data.get("status") or self.status_choices[0][0]

    def clean_reference(self):
        return self.cleaned_data.get("reference") or None

    def clean(self):
        cleaned = super().clean()
        contact = cleaned.get("contact")
        if contact is not None and self.contact_role == "customer" and not contact.is_customer:
            self.add_error("contact", f"{contact} is not a customer.")
        if contact is not None and self.contact_role == "vendor" and not contact.is_vendor:
            self.add_error("contact", f"{contact} is not a vendor.")

        currency = cleaned.get("currency")
        if currency is not None and currency.pk == self.company.default_currency_id:
            cleaned["currency"] = currency = None
        if currency is not None and not cleaned.get("exchange_rate"):
            self.add_error("exchange_rate", f"An exchange rate is required for {currency.pk}.")
        if currency is None:
            cleaned["exchange_rate"] = None
        return cleaned


class InvoiceForm(TransactionForm):
    status_choices = (("open", "Open"), ("draft", "Draft"), ("quotation", "Quotation"))
    contact_role = "customer"
    requires_lines = True

    contact = forms.ModelChoiceField(queryset=Contact.objects.none())
    due_date = forms.DateField(required=False)

    def clean(self):
        cleaned = super().clean()
        due, date = cleaned.get("due_date"), cleaned.get("date")
        if due and date and due < date:
            self.add_error("due_date", "Due date cannot be before the invoice date.")
        return cleaned


class BillForm(InvoiceForm):
    status_choices = (("open", "Open"), ("draft", "Draft"))
    contact_role = "vendor"


class CreditNoteForm(TransactionForm):
    status_choices = (("unapplied_credit", "Unapplied Credit"),)
    requires_lines = True

    contact = forms.ModelChoiceField(queryset=Contact.objects.none())


class ExpenseForm(TransactionForm):
    requires_lines = True

    payment_account = forms.ModelChoiceField(queryset=Account.objects.none())
    payment_method = forms.CharField(max_length=20, required=False)

    def clean_payment_method(self):
        return self.cleaned_data.get("payment_method") or None


class ChequeForm(ExpenseForm):
    """Lines, or a vendor and an amount for a prepayment."""

    contact_role = "vendor"
    requires_lines = False

    amount = forms.DecimalField(required=False, min_value=Decimal("0"), **MONEY)


class DepositForm(ChequeForm):
    contact_role = "customer"


class SalesReceiptForm(ExpenseForm):
    contact_role = "customer"


class TransferForm(CompanyScopedForm):
    scoped_fields = {"from_account": Account, "to_account": Account}

    reference = forms.CharField(max_length=64, required=False)
    date = forms.DateField()
    description = forms.CharField(required=False)
    from_account = forms.ModelChoiceField(queryset=Account.objects.none())
    to_account = forms.ModelChoiceField(queryset=Account.objects.none())
    amount = forms.DecimalField(min_value=Decimal("0.01"), **MONEY)

    def clean(self):
        cleaned = super().clean()
        if cleaned.get("from_account") and cleaned.get("from_account") == cleaned.get("to_account"):
            raise ValidationError("Transfer needs two different accounts.")
        cleaned["reference"] = cleaned.get("reference") or None
        return cleaned


class JournalEntryForm(TransactionForm):
    # entries are not kept anywhere but the ledger, so no drafts
    status_choices = (("completed", "Completed"),)


def validate_rows(form_class, company, rows, minimum=0, label="line"):
    """Validate a list of row dicts; returns their cleaned data."""
    rows = list(rows)
    if len(rows) < minimum:
        raise ValidationError(f"At least {minimum} {label}(s) required.")
    cleaned, errors = [], {}
    for index, row in enumerate(rows):
        form = form_class(company, data=row)
        if form.is_valid():
            cleaned.append(form.cleaned_data)
        else:
            errors[f"{label}_{index}"] = [
                ValidationError(f"{field}: {message}") if field != "__all__" else ValidationError(message)
                for field, messages in form.errors.items()
                for message in messages
            ]
    if errors:
        raise ValidationError(errors)
    return cleaned


def validate_header(form_class, company, data):
    form = form_class(company, data=data)
    if not form.is_valid():
        raise ValidationError(form.errors.as_data())
    return form.cleaned_data
