"""
Bank Reconciliation Service

Manual match / reconcile state machine for bank transactions:

    UNMATCHED --match--> MATCHED --reconcile--> RECONCILED
    MATCHED / RECONCILED --unmatch--> UNMATCHED
    RECONCILED --unreconcile--> MATCHED (or UNMATCHED when nothing is linked)

Every operation locks the transaction row, runs inside transaction.atomic and
appends to the reconciliation history. Reconciling a transaction matched to an
invoice or supplier invoice records the settling Payment through the payment
allocation engine in the same atomic unit.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.utils import timezone

from core.exceptions import ConcurrentModification, InvalidTarget
from core.models import (
    Account,
    BankTransaction,
    Customer,
    Invoice,
    MatchMethod,
    MatchTargetType,
    Payment,
    PaymentAllocation,
    ReconciliationHistoryEntry,
    Supplier,
    SupplierInvoice,
)

from .payment_allocation import AllocationLine, create_payment
from .reconciliation_history import record_history

logger = logging.getLogger(__name__)

_MATCH_FIELDS = [
    "matched_invoice",
    "matched_supplier_invoice",
    "matched_account",
    "match_method",
    "matched_at",
]
_CATEGORY_FIELDS = [
    "category_type",
    "customer",
    "supplier",
    "account",
    "category_invoice",
    "category_supplier_invoice",
]
_RECONCILE_FIELDS = ["is_reconciled", "reconciled_at", "settlement_payment"]


def _lock_transaction(business, transaction_id) -> BankTransaction:
    bank_tx = (
        BankTransaction.objects.select_for_update()
        .filter(business=business, pk=transaction_id, is_deleted=False)
        .first()
    )
    if bank_tx is None:
        raise InvalidTarget(f"Bank transaction {transaction_id} was not found for this business.")
    return bank_tx


def _check_version(bank_tx: BankTransaction, expected_version: Optional[int]) -> None:
    if expected_version is not None and bank_tx.version != expected_version:
        raise ConcurrentModification(
            f"Bank transaction {bank_tx.pk} changed since it was loaded (version {expected_version}, "
            f"now {bank_tx.version}). Reload and try again."
        )


def _save(bank_tx: BankTransaction, fields: list[str]) -> None:
    bank_tx.version += 1
    bank_tx.save(update_fields=[*fields, "version", "updated_at"])


def _resolve_target(business, bank_tx: BankTransaction, target_type: str, target_id, *, allow_settled: bool = False):
    """Load the match target and check it can take this transaction."""
    if target_type == MatchTargetType.INVOICE:
        target = Invoice.objects.select_related("customer").filter(business=business, pk=target_id).first()
        expected_direction = BankTransaction.Direction.CREDIT
    elif target_type == MatchTargetType.SUPPLIER_INVOICE:
        target = SupplierInvoice.objects.select_related("supplier").filter(business=business, pk=target_id).first()
        expected_direction = BankTransaction.Direction.DEBIT
    elif target_type == MatchTargetType.ACCOUNT:
        target = Account.objects.filter(business=business, pk=target_id, is_active=True).first()
        if target is None:
            raise InvalidTarget(f"Account {target_id} was not found for this business.")
        # Only money going out can be booked straight to an expense account.
        if bank_tx.direction != BankTransaction.Direction.DEBIT or target.type != Account.AccountType.EXPENSE:
            raise InvalidTarget(
                f"Account {target} cannot be matched to a {bank_tx.get_direction_display().lower()} transaction; "
                "only debits match expense accounts."
            )
        return target
    else:
        raise InvalidTarget(f"Unknown match target type: {target_type}")

    label = MatchTargetType(target_type).label
    if target is None:
        raise InvalidTarget(f"{label} {target_id} was not found for this business.")
    if bank_tx.direction != expected_direction:
        raise InvalidTarget(
            f"{label} {target} cannot be matched to a {bank_tx.get_direction_display().lower()} transaction."
        )
    if target.status in (target.Status.DRAFT, target.Status.CANCELLED):
        raise InvalidTarget(f"{label} {target} is {target.get_status_display().lower()}.")
    if target.outstanding <= 0 and not allow_settled:
        raise InvalidTarget(f"{label} {target} is already settled.")
    return target


def _apply_match_links(bank_tx: BankTransaction, target_type: str, target) -> None:
    bank_tx.matched_invoice = target if target_type == MatchTargetType.INVOICE else None
    bank_tx.matched_supplier_invoice = target if target_type == MatchTargetType.SUPPLIER_INVOICE else None
    bank_tx.matched_account = target if target_type == MatchTargetType.ACCOUNT else None

    # Matching also labels the transaction the way categorize would.
    if target_type == MatchTargetType.INVOICE:
        _apply_category(bank_tx, BankTransaction.CategoryType.CLIENT, customer=target.customer, invoice=target)
    elif target_type == MatchTargetType.SUPPLIER_INVOICE:
        _apply_category(bank_tx, BankTransaction.CategoryType.SUPPLIER, supplier=target.supplier, bill=target)
    else:
        _apply_category(bank_tx, BankTransaction.CategoryType.ACCOUNT, account=target)


def _apply_category(bank_tx, category_type, *, customer=None, supplier=None, account=None, invoice=None, bill=None):
    bank_tx.category_type = category_type
    bank_tx.customer = customer
    bank_tx.supplier = supplier
    bank_tx.account = account
    bank_tx.category_invoice = invoice
    bank_tx.category_supplier_invoice = bill


def _settles(payment_id, target_type: str, target_id) -> bool:
    allocations = PaymentAllocation.objects.filter(payment_id=payment_id)
    if target_type == MatchTargetType.INVOICE:
        return allocations.filter(invoice_id=target_id).exists()
    if target_type == MatchTargetType.SUPPLIER_INVOICE:
        return allocations.filter(supplier_invoice_id=target_id).exists()
    return False


def _settle_matched_document(bank_tx: BankTransaction, actor) -> tuple[Optional[Payment], Decimal, str]:
    """
    Record the payment a reconciled document match represents.

    Returns (payment, unallocated bank amount, note). The payment is capped at the
    document's outstanding balance; anything beyond it stays unallocated.
    """
    if bank_tx.matched_invoice_id:
        model, kind, party_field = Invoice, Payment.Kind.RECEIVED, "customer_id"
        document_id = bank_tx.matched_invoice_id
    else:
        model, kind, party_field = SupplierInvoice, Payment.Kind.MADE, "supplier_id"
        document_id = bank_tx.matched_supplier_invoice_id

    document = model.objects.select_for_update().get(pk=document_id)
    outstanding = document.outstanding
    if outstanding <= 0:
        return None, bank_tx.amount, f"{document} was already settled; no payment recorded."

    amount = min(bank_tx.amount, outstanding)
    payment = create_payment(
        business=bank_tx.business,
        kind=kind,
        amount=amount,
        allocations=[AllocationLine(target_id=document.pk, amount=amount)],
        payment_date=bank_tx.date,
        reference=(bank_tx.reference or bank_tx.description)[:255],
        party_id=getattr(document, party_field),
        actor=actor,
        currency_code=document.currency_code,
        bank_transaction=bank_tx,
    )
    leftover = bank_tx.amount - amount
    note = f"{leftover} of the bank amount was left unallocated." if leftover > 0 else ""
    return payment, leftover, note


def set_reconciled_state(
    bank_tx: BankTransaction,
    *,
    reconciled: bool,
    actor=None,
    notes: str = "",
    score: Optional[int] = None,
    rule=None,
) -> BankTransaction:
    """
    Canonical helper to flip the reconciled flag on an already-locked transaction.

    Reconciling a document match creates the settlement payment first (once per
    transaction). Always appends a reconciled / unreconciled history entry.
    """
    note_parts = [notes] if notes else []
    if reconciled:
        if bank_tx.matched_target_type in (MatchTargetType.INVOICE, MatchTargetType.SUPPLIER_INVOICE):
            if bank_tx.settlement_payment_id is None:
                payment, _leftover, note = _settle_matched_document(bank_tx, actor)
                bank_tx.settlement_payment = payment
                if note:
                    note_parts.append(note)
        bank_tx.is_reconciled = True
        bank_tx.reconciled_at = timezone.now()
        action = ReconciliationHistoryEntry.Action.RECONCILED
    else:
        bank_tx.is_reconciled = False
        bank_tx.reconciled_at = None
        action = ReconciliationHistoryEntry.Action.UNRECONCILED

    _save(bank_tx, _RECONCILE_FIELDS)
    record_history(
        bank_transaction=bank_tx,
        action=action,
        actor=actor,
        matched_to_type=bank_tx.matched_target_type or "",
        matched_to_id=bank_tx.matched_target_id,
        match_method=bank_tx.match_method,
        rule=rule,
        score=score,
        notes=" ".join(note_parts),
    )
    return bank_tx


@transaction.atomic
def match_transaction(
    business,
    actor,
    transaction_id,
    target_type: str,
    target_id,
    *,
    notes: str = "",
    auto_reconcile: bool = False,
    match_method: str = MatchMethod.MANUAL,
    expected_version: Optional[int] = None,
    score: Optional[int] = None,
    rule=None,
) -> BankTransaction:
    """
    Link a bank transaction to an invoice, supplier invoice or account.

    Re-matching a MATCHED transaction replaces the link. A RECONCILED transaction
    must be unmatched first. Once reconciling recorded a settlement payment, the
    transaction can only be matched back to the document that payment settled.
    With auto_reconcile the transaction is reconciled in
    the same atomic unit.
    """
    bank_tx = _lock_transaction(business, transaction_id)
    _check_version(bank_tx, expected_version)
    if bank_tx.is_reconciled:
        raise InvalidTarget(f"Bank transaction {bank_tx.pk} is reconciled; unmatch it before matching again.")

    keeps_settlement = bool(bank_tx.settlement_payment_id) and _settles(
        bank_tx.settlement_payment_id, target_type, target_id
    )
    if bank_tx.settlement_payment_id and not keeps_settlement:
        raise InvalidTarget(
            f"Bank transaction {bank_tx.pk} already recorded settlement payment {bank_tx.settlement_payment_id}; "
            "reverse the recorded payment first."
        )
    target = _resolve_target(business, bank_tx, target_type, target_id, allow_settled=keeps_settlement)
    _apply_match_links(bank_tx, target_type, target)
    bank_tx.match_method = match_method
    bank_tx.matched_at = timezone.now()
    _save(bank_tx, [*_MATCH_FIELDS, *_CATEGORY_FIELDS])

    record_history(
        bank_transaction=bank_tx,
        action=ReconciliationHistoryEntry.Action.MATCHED,
        actor=actor,
        matched_to_type=target_type,
        matched_to_id=target.pk,
        match_method=match_method,
        rule=rule,
        score=score,
        notes=notes,
    )
    logger.info("bank transaction %s matched to %s %s", bank_tx.pk, target_type, target.pk)

    if auto_reconcile:
        set_reconciled_state(bank_tx, reconciled=True, actor=actor, score=score, rule=rule)
    return bank_tx


@transaction.atomic
def reconcile_transaction(
    business,
    actor,
    transaction_id,
    reconciled: bool = True,
    *,
    notes: str = "",
    expected_version: Optional[int] = None,
) -> BankTransaction:
    bank_tx = _lock_transaction(business, transaction_id)
    _check_version(bank_tx, expected_version)
    if bank_tx.is_reconciled == bool(reconciled):
        return bank_tx
    return set_reconciled_state(bank_tx, reconciled=bool(reconciled), actor=actor, notes=notes)


@transaction.atomic
def unmatch_transaction(
    business,
    actor,
    transaction_id,
    *,
    notes: str = "",
    expected_version: Optional[int] = None,
) -> BankTransaction:
    """
    Clear the match link and the reconciled flag.

    Payments already recorded for the old match are kept, and so is the
    settlement link, so re-matching the same document does not pay it twice
    and matching the transaction anywhere else is refused.
    Reversing a payment is a separate ledger operation.
    """
    bank_tx = _lock_transaction(business, transaction_id)
    _check_version(bank_tx, expected_version)
    previous_type = bank_tx.matched_target_type
    previous_id = bank_tx.matched_target_id
    previous_method = bank_tx.match_method
    if previous_type is None and not bank_tx.is_reconciled:
        raise InvalidTarget(f"Bank transaction {bank_tx.pk} is not matched.")

    bank_tx.matched_invoice = None
    bank_tx.matched_supplier_invoice = None
    bank_tx.matched_account = None
    bank_tx.match_method = ""
    bank_tx.matched_at = None
    bank_tx.is_reconciled = False
    bank_tx.reconciled_at = None
    _save(bank_tx, [*_MATCH_FIELDS, "is_reconciled", "reconciled_at"])

    record_history(
        bank_transaction=bank_tx,
        action=ReconciliationHistoryEntry.Action.UNMATCHED,
        actor=actor,
        matched_to_type=previous_type or "",
        matched_to_id=previous_id,
        match_method=previous_method,
        notes=notes,
    )
    return bank_tx


@transaction.atomic
def categorize_transaction(
    business,
    actor,
    transaction_id,
    category_type: str,
    category_id=None,
    invoice_id=None,
    *,
    expected_version: Optional[int] = None,
) -> BankTransaction:
    """Label a transaction with a client, supplier or account. Match state is untouched."""
    bank_tx = _lock_transaction(business, transaction_id)
    _check_version(bank_tx, expected_version)
    category = BankTransaction.CategoryType

    if category_type == category.NONE:
        _apply_category(bank_tx, category.NONE)
    elif category_type not in category.values:
        raise InvalidTarget(f"Unknown category type: {category_type}")
    elif category_id in (None, ""):
        raise InvalidTarget("Choose who or what this transaction belongs to.")
    elif category_type == category.CLIENT:
        customer = Customer.objects.filter(business=business, pk=category_id).first()
        if customer is None:
            raise InvalidTarget(f"Customer {category_id} was not found for this business.")
        invoice = None
        if invoice_id:
            invoice = Invoice.objects.filter(business=business, customer=customer, pk=invoice_id).first()
            if invoice is None:
                raise InvalidTarget(f"Invoice {invoice_id} does not belong to {customer}.")
        _apply_category(bank_tx, category.CLIENT, customer=customer, invoice=invoice)
    elif category_type == category.SUPPLIER:
        supplier = Supplier.objects.filter(business=business, pk=category_id).first()
        if supplier is None:
            raise InvalidTarget(f"Supplier {category_id} was not found for this business.")
        bill = None
        if invoice_id:
            bill = SupplierInvoice.objects.filter(business=business, supplier=supplier, pk=invoice_id).first()
            if bill is None:
                raise InvalidTarget(f"Supplier invoice {invoice_id} does not belong to {supplier}.")
        _apply_category(bank_tx, category.SUPPLIER, supplier=supplier, bill=bill)
    else:
        account = Account.objects.filter(business=business, pk=category_id).first()
        if account is None:
            raise InvalidTarget(f"Account {category_id} was not found for this business.")
        _apply_category(bank_tx, category.ACCOUNT, account=account)

    _save(bank_tx, _CATEGORY_FIELDS)
    logger.info(
        "bank transaction %s categorized as %s by user %s",
        bank_tx.pk,
        bank_tx.category_type,
        getattr(actor, "pk", None),
    )
    return bank_tx


@transaction.atomic
def delete_transaction(business, actor, transaction_id) -> BankTransaction:
    """Soft delete. The row stays so its dedup key keeps blocking re-imports."""
    bank_tx = _lock_transaction(business, transaction_id)
    if bank_tx.is_reconciled:
        raise InvalidTarget(f"Bank transaction {bank_tx.pk} is reconciled; unreconcile it before deleting.")
    bank_tx.is_deleted = True
    bank_tx.deleted_at = timezone.now()
    _save(bank_tx, ["is_deleted", "deleted_at"])
    logger.info("bank transaction %s deleted by user %s", bank_tx.pk, getattr(actor, "pk", None))
    return bank_tx


def list_transactions(
    business,
    *,
    reconciled: Optional[bool] = None,
    match_state: Optional[str] = None,
    start=None,
    end=None,
):
    qs = BankTransaction.objects.filter(business=business, is_deleted=False).select_related(
        "matched_invoice",
        "matched_supplier_invoice",
        "matched_account",
    )
    if reconciled is not None:
        qs = qs.filter(is_reconciled=reconciled)
    if match_state == BankTransaction.MatchState.RECONCILED:
        qs = qs.filter(is_reconciled=True)
    elif match_state == BankTransaction.MatchState.MATCHED:
        qs = qs.filter(is_reconciled=False).exclude(
            matched_invoice__isnull=True,
            matched_supplier_invoice__isnull=True,
            matched_account__isnull=True,
        )
    elif match_state == BankTransaction.MatchState.UNMATCHED:
        qs = qs.filter(
            is_reconciled=False,
            matched_invoice__isnull=True,
            matched_supplier_invoice__isnull=True,
            matched_account__isnull=True,
        )
    if start is not None:
        qs = qs.filter(date__gte=start)
    if end is not None:
        qs = qs.filter(date__lte=end)
    return qs.order_by("-date", "-id")
