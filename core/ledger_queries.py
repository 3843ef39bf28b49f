"""
Read-only access to the ledger documents the reconciliation core works against.

Matching and allocation code never queries Invoice / SupplierInvoice / Account
directly; it goes through a LedgerQueryGateway so the scoring and suggestion
logic can run against plain snapshots.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from .models import Account, Invoice, MatchTargetType, SupplierInvoice


@dataclass(frozen=True)
class OpenDocument:
    """Snapshot of a receivable or payable with an outstanding balance."""

    id: int
    kind: str  # MatchTargetType.INVOICE or MatchTargetType.SUPPLIER_INVOICE
    business_id: int
    party_id: int
    total: Decimal
    amount_paid: Decimal
    issue_date: Optional[date]
    due_date: Optional[date]
    counterparty_name: str
    document_number: str
    status: str
    version: int = 0

    @property
    def outstanding(self) -> Decimal:
        return max(Decimal("0.00"), self.total - self.amount_paid)

    @property
    def is_receivable(self) -> bool:
        return self.kind == MatchTargetType.INVOICE


@dataclass(frozen=True)
class AccountRef:
    id: int
    business_id: int
    code: str
    name: str
    type: str

    kind = MatchTargetType.ACCOUNT


_OPEN_INVOICE_STATUSES = (
    Invoice.Status.SENT,
    Invoice.Status.PART_PAID,
    Invoice.Status.OVERDUE,
)
_OPEN_SUPPLIER_INVOICE_STATUSES = (
    SupplierInvoice.Status.UNPAID,
    SupplierInvoice.Status.PART_PAID,
    SupplierInvoice.Status.OVERDUE,
)


def invoice_snapshot(invoice: Invoice) -> OpenDocument:
    return OpenDocument(
        id=invoice.id,
        kind=MatchTargetType.INVOICE,
        business_id=invoice.business_id,
        party_id=invoice.customer_id,
        total=invoice.total,
        amount_paid=invoice.amount_paid,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        counterparty_name=invoice.customer.name,
        document_number=invoice.invoice_number,
        status=invoice.status,
        version=invoice.version,
    )


def supplier_invoice_snapshot(bill: SupplierInvoice) -> OpenDocument:
    return OpenDocument(
        id=bill.id,
        kind=MatchTargetType.SUPPLIER_INVOICE,
        business_id=bill.business_id,
        party_id=bill.supplier_id,
        total=bill.total,
        amount_paid=bill.amount_paid,
        issue_date=bill.issue_date,
        due_date=bill.due_date,
        counterparty_name=bill.supplier.name,
        document_number=bill.invoice_number,
        status=bill.status,
        version=bill.version,
    )


def account_snapshot(account: Account) -> AccountRef:
    return AccountRef(
        id=account.id,
        business_id=account.business_id,
        code=account.code,
        name=account.name,
        type=account.type,
    )


class LedgerQueryGateway:
    """ORM-backed gateway. Every list call is scoped to one business."""

    def list_open_receivables(self, business_id: int) -> list[OpenDocument]:
        invoices = (
            Invoice.objects.filter(business_id=business_id, status__in=_OPEN_INVOICE_STATUSES)
            .select_related("customer")
            .order_by("due_date", "issue_date", "id")
        )
        return [invoice_snapshot(inv) for inv in invoices if inv.outstanding > 0]

    def list_open_payables(self, business_id: int) -> list[OpenDocument]:
        bills = (
            SupplierInvoice.objects.filter(business_id=business_id, status__in=_OPEN_SUPPLIER_INVOICE_STATUSES)
            .select_related("supplier")
            .order_by("due_date", "issue_date", "id")
        )
        return [supplier_invoice_snapshot(bill) for bill in bills if bill.outstanding > 0]

    def list_accounts(self, business_id: int) -> list[AccountRef]:
        accounts = Account.objects.filter(business_id=business_id, is_active=True)
        return [account_snapshot(account) for account in accounts]

    def get_invoice(self, invoice_id: int) -> Optional[OpenDocument]:
        invoice = Invoice.objects.select_related("customer").filter(pk=invoice_id).first()
        return invoice_snapshot(invoice) if invoice else None

    def get_supplier_invoice(self, supplier_invoice_id: int) -> Optional[OpenDocument]:
        bill = SupplierInvoice.objects.select_related("supplier").filter(pk=supplier_invoice_id).first()
        return supplier_invoice_snapshot(bill) if bill else None

    def get_account(self, account_id: int) -> Optional[AccountRef]:
        account = Account.objects.filter(pk=account_id).first()
        return account_snapshot(account) if account else None


default_gateway = LedgerQueryGateway()
