"""
Bank Transaction Matching

Suggestion engine and auto-match batch for bank transactions.

Suggestions are a computed view: every call scores the transaction against the
open documents the ledger gateway returns right now. Nothing is persisted.

Auto-match walks unmatched transactions of one business:
- Operator rules first (BankMatchingRule, lowest priority number wins). The
  first rule that matches the transaction and whose target still accepts it is
  applied; it reconciles only when the rule says so.
- Otherwise the top suggestion is applied and reconciled when it scores at or
  above MatchingPolicy.auto_match_confidence and no runner-up is within
  MatchingPolicy.ambiguity_margin.

Configuration:
Thresholds come from settings.BANK_MATCHING via get_matching_policy().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction

from core.exceptions import AutoMatchItemError, InvalidTarget, ReconciliationError
from core.ledger_queries import LedgerQueryGateway, OpenDocument, default_gateway
from core.models import (
    Account,
    BankMatchingRule,
    BankTransaction,
    Invoice,
    MatchMethod,
    MatchTargetType,
    SupplierInvoice,
)

from .bank_reconciliation import match_transaction
from .match_scoring import date_distance_days, score_breakdown
from .matching_policy import MatchingPolicy, get_matching_policy

logger = logging.getLogger(__name__)

_FAR = 10**9


@dataclass(frozen=True)
class Suggestion:
    type: str
    id: int
    score: int
    amount: Optional[Decimal]
    date: Optional[date]
    counterparty: str
    document_number: str
    date_distance: Optional[int] = None
    amount_difference: Optional[Decimal] = None
    reason: str = ""

    def sort_key(self):
        return (
            -self.score,
            self.date_distance if self.date_distance is not None else _FAR,
            self.amount_difference if self.amount_difference is not None else _FAR,
            self.type,
            self.id,
        )

    def as_dict(self) -> dict:
        return {
            "type": self.type,
            "id": self.id,
            "score": self.score,
            "amount": str(self.amount) if self.amount is not None else None,
            "date": self.date.isoformat() if self.date else None,
            "counterparty": self.counterparty,
            "document_number": self.document_number,
            "reason": self.reason,
        }


def _build_suggestion(bank_tx, candidate, policy: MatchingPolicy) -> Suggestion:
    breakdown = score_breakdown(bank_tx, candidate, policy)
    if isinstance(candidate, OpenDocument):
        return Suggestion(
            type=candidate.kind,
            id=candidate.id,
            score=breakdown.score,
            amount=candidate.outstanding,
            date=candidate.due_date or candidate.issue_date,
            counterparty=candidate.counterparty_name,
            document_number=candidate.document_number,
            date_distance=date_distance_days(bank_tx.date, candidate),
            amount_difference=abs(bank_tx.amount - candidate.outstanding),
            reason=breakdown.reason(),
        )
    return Suggestion(
        type=MatchTargetType.ACCOUNT,
        id=candidate.id,
        score=breakdown.score,
        amount=None,
        date=None,
        counterparty=candidate.name,
        document_number=candidate.code,
        reason=breakdown.reason(),
    )


def rank_candidates(bank_tx, candidates: Iterable, policy: Optional[MatchingPolicy] = None) -> list[Suggestion]:
    """Score, filter by the display floor, order and truncate. Pure."""
    policy = policy or get_matching_policy()
    suggestions = [_build_suggestion(bank_tx, candidate, policy) for candidate in candidates]
    suggestions = [s for s in suggestions if s.score >= policy.display_floor]
    suggestions.sort(key=Suggestion.sort_key)
    return suggestions[: policy.max_suggestions]


def _candidates_for(bank_tx: BankTransaction, gateway: LedgerQueryGateway) -> list:
    if bank_tx.direction == BankTransaction.Direction.CREDIT:
        return gateway.list_open_receivables(bank_tx.business_id)
    candidates: list = list(gateway.list_open_payables(bank_tx.business_id))
    candidates.extend(
        account for account in gateway.list_accounts(bank_tx.business_id)
        if account.type == Account.AccountType.EXPENSE
    )
    return candidates


def get_suggestions(
    business,
    transaction_id,
    *,
    gateway: LedgerQueryGateway = default_gateway,
    policy: Optional[MatchingPolicy] = None,
) -> list[Suggestion]:
    bank_tx = BankTransaction.objects.filter(business=business, pk=transaction_id, is_deleted=False).first()
    if bank_tx is None:
        raise InvalidTarget(f"Bank transaction {transaction_id} was not found for this business.")
    return rank_candidates(bank_tx, _candidates_for(bank_tx, gateway), policy)


@dataclass
class AutoMatchResult:
    reviewed: int = 0
    matches: list[dict] = field(default_factory=list)
    errors: list[AutoMatchItemError] = field(default_factory=list)

    @property
    def matched(self) -> int:
        return len(self.matches)

    def as_dict(self) -> dict:
        return {
            "reviewed": self.reviewed,
            "matched": self.matched,
            "matches": self.matches,
            "errors": [error.as_dict() for error in self.errors],
        }


def _apply_rules(business, actor, bank_tx, rules) -> Optional[dict]:
    for rule in rules:
        if rule.target_id is None or not rule.matches(bank_tx):
            continue
        try:
            match_transaction(
                business,
                actor,
                bank_tx.pk,
                rule.match_to_type,
                rule.target_id,
                notes=f"Matched by rule '{rule.name}'",
                auto_reconcile=rule.auto_reconcile,
                match_method=MatchMethod.AUTO_RULE,
                expected_version=bank_tx.version,
                rule=rule,
            )
        except InvalidTarget as exc:
            # Target no longer accepts this transaction; let the next rule try.
            logger.debug("rule %s skipped for bank transaction %s: %s", rule.pk, bank_tx.pk, exc.reason)
            continue
        return {
            "transaction": bank_tx.pk,
            "type": rule.match_to_type,
            "id": rule.target_id,
            "score": None,
            "rule": rule.pk,
            "reconciled": rule.auto_reconcile,
        }
    return None


def _apply_top_suggestion(business, actor, bank_tx, policy, gateway) -> Optional[dict]:
    suggestions = rank_candidates(bank_tx, _candidates_for(bank_tx, gateway), policy)
    if not suggestions:
        return None
    top = suggestions[0]
    runner_up = suggestions[1].score if len(suggestions) > 1 else None
    if top.score < policy.auto_match_confidence or policy.is_ambiguous(top.score, runner_up):
        return None
    match_transaction(
        business,
        actor,
        bank_tx.pk,
        top.type,
        top.id,
        notes=f"Auto-matched with score {top.score}",
        auto_reconcile=True,
        match_method=MatchMethod.AUTO_RULE,
        expected_version=bank_tx.version,
        score=top.score,
    )
    return {
        "transaction": bank_tx.pk,
        "type": top.type,
        "id": top.id,
        "score": top.score,
        "rule": None,
        "reconciled": True,
    }


def auto_match_transactions(
    business,
    actor=None,
    *,
    transaction_ids: Optional[Iterable[int]] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    policy: Optional[MatchingPolicy] = None,
    gateway: LedgerQueryGateway = default_gateway,
) -> AutoMatchResult:
    """
    Batch auto-match. Each transaction runs in its own atomic block; a failure is
    recorded in the result and the batch moves on.
    """
    policy = policy or get_matching_policy()
    qs = BankTransaction.objects.filter(
        business=business,
        is_deleted=False,
        is_reconciled=False,
        matched_invoice__isnull=True,
        matched_supplier_invoice__isnull=True,
        matched_account__isnull=True,
    )
    if transaction_ids is not None:
        qs = qs.filter(pk__in=list(transaction_ids))
    if start_date is not None:
        qs = qs.filter(date__gte=start_date)
    if end_date is not None:
        qs = qs.filter(date__lte=end_date)
    pending = list(qs.order_by("date", "id"))
    rules = list(
        BankMatchingRule.objects.filter(business=business, is_active=True, auto_match=True).order_by("priority", "id")
    )

    result = AutoMatchResult()
    for bank_tx in pending:
        result.reviewed += 1
        try:
            with transaction.atomic():
                outcome = _apply_rules(business, actor, bank_tx, rules)
                if outcome is None:
                    outcome = _apply_top_suggestion(business, actor, bank_tx, policy, gateway)
        except ReconciliationError as exc:
            result.errors.append(
                AutoMatchItemError(exc.reason, bank_transaction_id=bank_tx.pk, error_code=exc.code)
            )
            logger.warning("auto-match failed for bank transaction %s: %s", bank_tx.pk, exc.reason)
            continue
        except (DatabaseError, ValidationError) as exc:
            result.errors.append(AutoMatchItemError(str(exc), bank_transaction_id=bank_tx.pk))
            logger.exception("auto-match failed for bank transaction %s", bank_tx.pk)
            continue
        if outcome is not None:
            result.matches.append(outcome)

    logger.info(
        "auto-match for business %s: reviewed=%d matched=%d errors=%d",
        business.pk,
        result.reviewed,
        result.matched,
        len(result.errors),
    )
    return result


_RULE_TARGET_MODELS = {
    MatchTargetType.INVOICE: (Invoice, "match_to_invoice"),
    MatchTargetType.SUPPLIER_INVOICE: (SupplierInvoice, "match_to_supplier_invoice"),
    MatchTargetType.ACCOUNT: (Account, "match_to_account"),
}


def create_matching_rule(
    business,
    *,
    name: str,
    rule_type: str,
    match_to_type: str,
    target_id,
    pattern: str = "",
    pattern_case_sensitive: bool = False,
    amount_value=None,
    amount_tolerance=Decimal("0.00"),
    priority: int = 100,
    is_active: bool = True,
    auto_match: bool = True,
    auto_reconcile: bool = False,
) -> BankMatchingRule:
    if rule_type not in BankMatchingRule.RuleType.values:
        raise InvalidTarget(f"Unknown rule type: {rule_type}")
    if rule_type == BankMatchingRule.RuleType.DESCRIPTION_PATTERN and not (pattern or "").strip():
        raise InvalidTarget("Description rules need a pattern.")
    if rule_type == BankMatchingRule.RuleType.AMOUNT_EXACT and amount_value in (None, ""):
        raise InvalidTarget("Amount rules need an amount.")
    if match_to_type not in _RULE_TARGET_MODELS:
        raise InvalidTarget(f"Unknown match target type: {match_to_type}")

    model, target_field = _RULE_TARGET_MODELS[match_to_type]
    target = model.objects.filter(business=business, pk=target_id).first()
    if target is None:
        raise InvalidTarget(f"{MatchTargetType(match_to_type).label} {target_id} was not found for this business.")

    rule = BankMatchingRule.objects.create(
        business=business,
        name=name,
        rule_type=rule_type,
        pattern=(pattern or "").strip(),
        pattern_case_sensitive=pattern_case_sensitive,
        amount_value=Decimal(str(amount_value)) if amount_value not in (None, "") else None,
        amount_tolerance=Decimal(str(amount_tolerance or "0.00")),
        match_to_type=match_to_type,
        priority=priority,
        is_active=is_active,
        auto_match=auto_match,
        auto_reconcile=auto_reconcile,
        **{target_field: target},
    )
    logger.info("matching rule %s created for business %s", rule.pk, business.pk)
    return rule


def list_matching_rules(business, *, active_only: bool = False):
    qs = BankMatchingRule.objects.filter(business=business)
    if active_only:
        qs = qs.filter(is_active=True)
    return qs.order_by("priority", "id")
