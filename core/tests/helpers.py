from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from core.models import (
    Account,
    BankTransaction,
    Business,
    Customer,
    Invoice,
    Supplier,
    SupplierInvoice,
)

User = get_user_model()


def future(days=30):
    return timezone.localdate() + timedelta(days=days)


def make_invoice(business, customer, number, total, *, due_date=None, issue_date=None, status=Invoice.Status.SENT, amount_paid="0.00"):
    return Invoice.objects.create(
        business=business,
        customer=customer,
        invoice_number=number,
        total=Decimal(str(total)),
        amount_paid=Decimal(str(amount_paid)),
        issue_date=issue_date or timezone.localdate(),
        due_date=due_date if due_date is not None else future(),
        status=status,
    )


def make_bill(business, supplier, number, total, *, due_date=None, issue_date=None, status=SupplierInvoice.Status.UNPAID, amount_paid="0.00"):
    return SupplierInvoice.objects.create(
        business=business,
        supplier=supplier,
        invoice_number=number,
        total=Decimal(str(total)),
        amount_paid=Decimal(str(amount_paid)),
        issue_date=issue_date or timezone.localdate(),
        due_date=due_date if due_date is not None else future(),
        status=status,
    )


def make_bank_transaction(business, *, date, description, amount, direction=BankTransaction.Direction.CREDIT, reference=""):
    return BankTransaction.objects.create(
        business=business,
        date=date,
        description=description,
        normalized_description=BankTransaction.normalize_description(description),
        amount=Decimal(str(amount)),
        direction=direction,
        reference=reference,
    )


class LedgerFixtureMixin:
    """Creates an owner, a business and one of each counterparty / account."""

    def create_ledger_fixture(self, username="owner"):
        self.user = User.objects.create_user(username=username, password="testpass123")
        self.business = Business.objects.create(name="Test Business", currency="USD", owner_user=self.user)
        self.customer = Customer.objects.create(business=self.business, name="Acme Retail")
        self.supplier = Supplier.objects.create(business=self.business, name="Paper Supplies Ltd")
        self.expense_account = Account.objects.create(
            business=self.business,
            code="6100",
            name="Office Rent",
            type=Account.AccountType.EXPENSE,
        )
        self.income_account = Account.objects.create(
            business=self.business,
            code="4000",
            name="Sales",
            type=Account.AccountType.INCOME,
        )

    def create_other_business(self, username="intruder"):
        other_user = User.objects.create_user(username=username, password="testpass123")
        other = Business.objects.create(name="Other Business", currency="USD", owner_user=other_user)
        other_customer = Customer.objects.create(business=other, name="Foreign Customer")
        return other, other_customer
