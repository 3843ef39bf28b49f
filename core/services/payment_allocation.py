"""
Payment Allocation Engine

Records a customer receipt or supplier payment and splits it across one or more
open documents. Everything happens in one atomic unit:

1. validate the request shape (positive amount, allocations sum to the amount);
2. lock the target rows (select_for_update, ordered by pk to avoid deadlocks);
3. re-validate each allocation against the locked outstanding balance;
4. write each balance with a version-guarded UPDATE, so a writer that read a
   stale row gets ConcurrentModification instead of silently overwriting;
5. create the Payment and its PaymentAllocation rows.

Any failure rolls the whole unit back; nothing is partially applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from core.exceptions import AllocationMismatch, ConcurrentModification, InvalidTarget
from core.ledger_queries import LedgerQueryGateway, default_gateway
from core.models import (
    CENT,
    PAYMENT_EPSILON,
    Customer,
    Invoice,
    Payment,
    PaymentAllocation,
    SettleableDocument,
    Supplier,
    SupplierInvoice,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

_DOCUMENT_MODELS = {
    Payment.Kind.RECEIVED: Invoice,
    Payment.Kind.MADE: SupplierInvoice,
}
_PARTY_MODELS = {
    Payment.Kind.RECEIVED: Customer,
    Payment.Kind.MADE: Supplier,
}
_PARTY_FIELDS = {
    Payment.Kind.RECEIVED: "customer_id",
    Payment.Kind.MADE: "supplier_id",
}
_ALLOCATION_FIELDS = {
    Payment.Kind.RECEIVED: "invoice",
    Payment.Kind.MADE: "supplier_invoice",
}


@dataclass(frozen=True)
class AllocationLine:
    target_id: int
    amount: Decimal


@dataclass
class AutoAllocationPlan:
    allocations: list[AllocationLine] = field(default_factory=list)
    unallocated: Decimal = ZERO

    @property
    def allocated(self) -> Decimal:
        return sum((line.amount for line in self.allocations), ZERO)

    def as_dict(self) -> dict:
        return {
            "allocations": [
                {"target_id": line.target_id, "amount": str(line.amount)} for line in self.allocations
            ],
            "allocated": str(self.allocated),
            "unallocated": str(self.unallocated),
        }


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise AllocationMismatch(f"'{value}' is not a valid amount.") from exc


def _money(value) -> Decimal:
    return _to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _normalize_allocations(allocations: Iterable) -> list[AllocationLine]:
    lines = []
    for alloc in allocations or []:
        if isinstance(alloc, AllocationLine):
            lines.append(AllocationLine(target_id=int(alloc.target_id), amount=_money(alloc.amount)))
            continue
        target_id = alloc.get("target_id")
        if target_id in (None, ""):
            raise AllocationMismatch("Every allocation needs a target_id.")
        lines.append(AllocationLine(target_id=int(target_id), amount=_money(alloc.get("amount"))))
    return lines


def _validate_request(amount: Decimal, lines: Sequence[AllocationLine]) -> None:
    if amount <= 0:
        raise AllocationMismatch("Payment amount must be positive.")
    if not lines:
        raise AllocationMismatch("Provide at least one allocation.")
    seen = set()
    for line in lines:
        if line.amount <= 0:
            raise AllocationMismatch("Allocation amounts must be positive.")
        if line.target_id in seen:
            raise AllocationMismatch(f"Document {line.target_id} is allocated more than once.")
        seen.add(line.target_id)
    allocated = sum((line.amount for line in lines), ZERO)
    if abs(allocated - amount) > PAYMENT_EPSILON:
        raise AllocationMismatch(
            f"Allocations total {allocated} but the payment amount is {amount}."
        )


def _lock_targets(business, kind: str, target_ids: Sequence[int]) -> dict[int, SettleableDocument]:
    model = _DOCUMENT_MODELS[kind]
    rows = (
        model.objects.select_for_update()
        .filter(business=business, pk__in=list(target_ids))
        .order_by("pk")
    )
    return {row.pk: row for row in rows}


def _check_target(document: SettleableDocument, line: AllocationLine) -> None:
    if document.status in (document.Status.DRAFT, document.Status.CANCELLED):
        raise InvalidTarget(f"{document} is {document.get_status_display().lower()} and cannot take payments.")
    outstanding = document.outstanding
    if line.amount - outstanding > PAYMENT_EPSILON:
        raise AllocationMismatch(
            f"Allocation of {line.amount} exceeds the outstanding balance {outstanding} on {document}."
        )


def _apply_to_document(document: SettleableDocument, amount: Decimal, *, today: Optional[date] = None) -> None:
    """Add `amount` to the document's amount_paid, guarded by the version read under lock."""
    new_paid = min(document.total, (document.amount_paid or ZERO) + amount)
    document.amount_paid = new_paid
    new_status = document.compute_status(today)
    updated = (
        type(document)
        .objects.filter(pk=document.pk, version=document.version)
        .update(
            amount_paid=new_paid,
            status=new_status,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
    )
    if updated != 1:
        raise ConcurrentModification(
            f"{document} was changed by another payment while this one was being recorded. Please retry."
        )
    document.status = new_status
    document.version += 1


def _resolve_party(business, kind: str, party_id, documents: Iterable[SettleableDocument]):
    party_field = _PARTY_FIELDS[kind]
    party_ids = {getattr(doc, party_field) for doc in documents}
    if party_id is None:
        if len(party_ids) > 1:
            raise InvalidTarget("Allocations must all belong to the same counterparty.")
        party_id = next(iter(party_ids))
    party = _PARTY_MODELS[kind].objects.filter(business=business, pk=party_id).first()
    if party is None:
        raise InvalidTarget(f"{_PARTY_MODELS[kind].__name__} {party_id} was not found for this business.")
    foreign = [doc for doc in documents if getattr(doc, party_field) != party.pk]
    if foreign:
        raise InvalidTarget(f"{foreign[0]} does not belong to {party}.")
    return party


@transaction.atomic
def create_payment(
    *,
    business,
    kind: str,
    amount,
    allocations: Iterable,
    payment_date: Optional[date] = None,
    reference: str = "",
    party_id: Optional[int] = None,
    actor=None,
    currency_code: str = "",
    fx_rate=None,
    bank_transaction=None,
) -> Payment:
    """
    Create a Payment and its allocations, updating every targeted document.

    Raises AllocationMismatch for sum/balance problems, InvalidTarget for missing,
    foreign or closed documents, and ConcurrentModification when a target changed
    underneath us (safe to retry).
    """
    if kind not in _DOCUMENT_MODELS:
        raise AllocationMismatch(f"Unknown payment kind: {kind}")
    amount = _money(amount)
    lines = _normalize_allocations(allocations)
    _validate_request(amount, lines)

    locked = _lock_targets(business, kind, [line.target_id for line in lines])
    documents = []
    for line in lines:
        document = locked.get(line.target_id)
        if document is None:
            raise InvalidTarget(f"Document {line.target_id} was not found for this business.")
        _check_target(document, line)
        documents.append(document)

    party = _resolve_party(business, kind, party_id, documents)

    payment = Payment.objects.create(
        business=business,
        kind=kind,
        customer=party if kind == Payment.Kind.RECEIVED else None,
        supplier=party if kind == Payment.Kind.MADE else None,
        payment_date=payment_date or timezone.localdate(),
        amount=amount,
        reference=reference or "",
        currency_code=currency_code or getattr(business, "currency", "") or "",
        fx_rate=_to_decimal(fx_rate) if fx_rate is not None else Decimal("1.000000"),
        bank_transaction=bank_transaction,
        created_by=actor if getattr(actor, "pk", None) else None,
    )

    today = timezone.localdate()
    allocation_field = _ALLOCATION_FIELDS[kind]
    for line, document in zip(lines, documents):
        _apply_to_document(document, line.amount, today=today)
        PaymentAllocation.objects.create(
            payment=payment,
            amount=line.amount,
            **{allocation_field: document},
        )

    logger.info(
        "payment %s recorded for business %s: %s %s across %d document(s)",
        payment.pk,
        business.pk,
        kind,
        amount,
        len(lines),
    )
    return payment


def create_invoice_payment(*, business, customer_id=None, **kwargs) -> Payment:
    return create_payment(business=business, kind=Payment.Kind.RECEIVED, party_id=customer_id, **kwargs)


def create_supplier_payment(*, business, supplier_id=None, **kwargs) -> Payment:
    return create_payment(business=business, kind=Payment.Kind.MADE, party_id=supplier_id, **kwargs)


def _allocation_sort_key(target):
    oldest = target.due_date or target.issue_date or date.max
    return (oldest, target.issue_date or date.max, target.id)


def auto_allocate(amount, targets: Iterable) -> AutoAllocationPlan:
    """
    Greedy oldest-due-first allocation.

    Each target is capped at its outstanding balance; allocation stops when the
    amount runs out or targets do. Whatever cannot be placed is returned in
    `unallocated` for the caller to handle.
    """
    remaining = _money(amount)
    plan = AutoAllocationPlan()
    if remaining <= 0:
        return plan
    for target in sorted(targets, key=_allocation_sort_key):
        if remaining <= 0:
            break
        portion = min(remaining, target.outstanding)
        if portion <= 0:
            continue
        plan.allocations.append(AllocationLine(target_id=target.id, amount=portion))
        remaining -= portion
    plan.unallocated = max(ZERO, remaining)
    return plan


def plan_auto_allocation(
    *,
    business,
    kind: str,
    amount,
    party_id: Optional[int] = None,
    gateway: LedgerQueryGateway = default_gateway,
) -> AutoAllocationPlan:
    if kind == Payment.Kind.RECEIVED:
        targets = gateway.list_open_receivables(business.id)
    elif kind == Payment.Kind.MADE:
        targets = gateway.list_open_payables(business.id)
    else:
        raise AllocationMismatch(f"Unknown payment kind: {kind}")
    if party_id is not None:
        targets = [t for t in targets if t.party_id == party_id]
    return auto_allocate(amount, targets)


def list_document_payments(document: SettleableDocument) -> list[dict]:
    """Payments allocated to one invoice or bill, oldest first (receipt view)."""
    allocations = document.payment_allocations.select_related("payment").order_by(
        "payment__payment_date",
        "payment__id",
    )
    return [
        {
            "id": alloc.payment.id,
            "payment_date": alloc.payment.payment_date,
            "amount": alloc.payment.amount,
            "reference": alloc.payment.reference,
            "currency_code": alloc.payment.currency_code,
            "fx_rate": alloc.payment.fx_rate,
            "allocated_amount": alloc.amount,
        }
        for alloc in allocations
    ]
