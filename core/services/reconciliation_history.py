"""
Reconciliation History Log

Every match / unmatch / reconcile / unreconcile writes one append-only
ReconciliationHistoryEntry. Entries are never updated or deleted; re-matching a
transaction adds a new entry rather than rewriting the old one.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Optional

from django.utils import timezone

from core.models import BankTransaction, ReconciliationHistoryEntry

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


def record_history(
    *,
    bank_transaction: BankTransaction,
    action: str,
    actor=None,
    matched_to_type: str = "",
    matched_to_id: Optional[int] = None,
    match_method: str = "",
    rule=None,
    score: Optional[int] = None,
    notes: str = "",
) -> ReconciliationHistoryEntry:
    entry = ReconciliationHistoryEntry.objects.create(
        business_id=bank_transaction.business_id,
        bank_transaction=bank_transaction,
        action=action,
        matched_to_type=matched_to_type or "",
        matched_to_id=matched_to_id,
        match_method=match_method or "",
        rule=rule,
        score=score,
        notes=notes or "",
        actor=actor if getattr(actor, "pk", None) else None,
    )
    logger.info(
        "bank transaction %s %s (target=%s:%s method=%s actor=%s)",
        bank_transaction.pk,
        action,
        matched_to_type or "-",
        matched_to_id or "-",
        match_method or "-",
        getattr(actor, "pk", None),
    )
    return entry


def _day_bound(value, *, end: bool):
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        bound = datetime.combine(value, time.max if end else time.min)
        return timezone.make_aware(bound) if timezone.is_naive(bound) else bound
    return value


def get_reconciliation_history(
    business,
    *,
    bank_transaction_id: Optional[int] = None,
    action: Optional[str] = None,
    match_method: Optional[str] = None,
    start=None,
    end=None,
    limit: Optional[int] = DEFAULT_HISTORY_LIMIT,
) -> list[ReconciliationHistoryEntry]:
    """Newest-first history for one business, optionally filtered."""
    qs = ReconciliationHistoryEntry.objects.filter(business=business).select_related(
        "bank_transaction",
        "actor",
        "rule",
    )
    if bank_transaction_id is not None:
        qs = qs.filter(bank_transaction_id=bank_transaction_id)
    if action:
        qs = qs.filter(action=action)
    if match_method:
        qs = qs.filter(match_method=match_method)
    if start is not None:
        qs = qs.filter(created_at__gte=_day_bound(start, end=False))
    if end is not None:
        qs = qs.filter(created_at__lte=_day_bound(end, end=True))
    qs = qs.order_by("-created_at", "-id")
    if limit:
        qs = qs[:limit]
    return list(qs)
