"""
Bank Transaction Match Scorer

Pure scoring of one bank transaction against one candidate (open receivable,
open payable, or chart-of-accounts row). No database access happens here; the
candidate is a snapshot from core.ledger_queries.

Components (each normalized to 0..1, then weighted):
- Amount closeness (0.5): 1.0 within a cent of the outstanding balance, decaying
  linearly to 0 at MatchingPolicy.amount_tolerance_ratio of the outstanding.
- Date proximity (0.2): distance to the nearer of issue/due date, decaying to 0
  over MatchingPolicy.date_window_days.
- Text similarity (0.2): token overlap between the transaction description /
  reference and the candidate's document number or counterparty name.
- Direction (0.1): credits only match receivables, debits only match payables
  or expense accounts. A mismatch zeroes the whole score.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from core.ledger_queries import AccountRef, OpenDocument
from core.models import Account, BankTransaction, MatchTargetType

from .matching_policy import MatchingPolicy

ONE = Decimal("1")
ZERO = Decimal("0")

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

# Legal-form suffixes and filler words carry no matching signal.
_IGNORED_TOKENS = frozenset({"ltd", "inc", "llc", "pty", "co", "corp", "plc", "gmbh", "the", "and", "of"})


@dataclass(frozen=True)
class ScoreBreakdown:
    amount: Decimal
    date: Decimal
    text: Decimal
    direction_ok: bool
    score: int

    def reason(self) -> str:
        if not self.direction_ok:
            return "Direction mismatch"
        return (
            f"amount {self.amount:.2f}, date {self.date:.2f}, "
            f"text {self.text:.2f} → {self.score}"
        )


def _clamp(value: Decimal) -> Decimal:
    return max(ZERO, min(ONE, value))


def _normalize_token(token: str) -> str:
    if token.isdigit():
        return token.lstrip("0") or "0"
    return token


def tokenize(*values: str) -> frozenset[str]:
    tokens = set()
    for value in values:
        for token in _TOKEN_RE.findall((value or "").lower()):
            if token in _IGNORED_TOKENS:
                continue
            tokens.add(_normalize_token(token))
    return frozenset(tokens)


def _compact_words(*values: str) -> frozenset[str]:
    """Whitespace-delimited words with punctuation removed, e.g. 'INV-0042' -> 'inv0042'."""
    words = set()
    for value in values:
        for word in (value or "").lower().split():
            compact = _NON_ALNUM_RE.sub("", word)
            if compact:
                words.add(compact)
    return frozenset(words)


def _field_similarity(tx_tokens: frozenset[str], tx_words: frozenset[str], field_value: str) -> Decimal:
    field_tokens = tokenize(field_value)
    if not field_tokens:
        return ZERO
    compact = _NON_ALNUM_RE.sub("", (field_value or "").lower())
    if compact and compact in tx_words:
        return ONE
    overlap = len(field_tokens & tx_tokens)
    return Decimal(overlap) / Decimal(len(field_tokens))


def text_similarity(tx_texts: Iterable[str], candidate_fields: Iterable[str]) -> Decimal:
    """Best share of any candidate field's tokens found in the transaction text."""
    tx_texts = list(tx_texts)
    tx_tokens = tokenize(*tx_texts)
    tx_words = _compact_words(*tx_texts)
    if not tx_tokens:
        return ZERO
    best = ZERO
    for field_value in candidate_fields:
        best = max(best, _field_similarity(tx_tokens, tx_words, field_value))
    return _clamp(best)


def amount_closeness(amount: Decimal, outstanding: Decimal, policy: MatchingPolicy) -> Decimal:
    diff = abs(amount - outstanding)
    if diff <= policy.exact_amount_tolerance:
        return ONE
    tolerance = outstanding * policy.amount_tolerance_ratio
    if tolerance <= 0:
        return ZERO
    return _clamp(ONE - diff / tolerance)


def date_proximity(tx_date, candidate_dates, policy: MatchingPolicy) -> Decimal:
    distances = [abs((tx_date - d).days) for d in candidate_dates if d is not None]
    if not distances or policy.date_window_days <= 0:
        return ZERO
    return _clamp(ONE - Decimal(min(distances)) / Decimal(policy.date_window_days))


def date_distance_days(tx_date, candidate) -> int | None:
    dates = [d for d in (getattr(candidate, "issue_date", None), getattr(candidate, "due_date", None)) if d]
    if not dates:
        return None
    return min(abs((tx_date - d).days) for d in dates)


def direction_compatible(direction: str, candidate) -> bool:
    if candidate.kind == MatchTargetType.INVOICE:
        return direction == BankTransaction.Direction.CREDIT
    if candidate.kind == MatchTargetType.SUPPLIER_INVOICE:
        return direction == BankTransaction.Direction.DEBIT
    if candidate.kind == MatchTargetType.ACCOUNT:
        return direction == BankTransaction.Direction.DEBIT and candidate.type == Account.AccountType.EXPENSE
    return False


def score_breakdown(transaction, candidate, policy: MatchingPolicy | None = None) -> ScoreBreakdown:
    policy = policy or MatchingPolicy()
    if not direction_compatible(transaction.direction, candidate):
        return ScoreBreakdown(amount=ZERO, date=ZERO, text=ZERO, direction_ok=False, score=0)

    tx_texts = (transaction.description or "", getattr(transaction, "reference", "") or "")
    if isinstance(candidate, OpenDocument):
        amount_part = amount_closeness(transaction.amount, candidate.outstanding, policy)
        date_part = date_proximity(transaction.date, (candidate.issue_date, candidate.due_date), policy)
        text_part = text_similarity(tx_texts, (candidate.document_number, candidate.counterparty_name))
    elif isinstance(candidate, AccountRef):
        # Accounts carry no balance or date to compare against.
        amount_part = ZERO
        date_part = ZERO
        text_part = text_similarity(tx_texts, (candidate.name, candidate.code))
    else:
        raise TypeError(f"Cannot score candidate of type {type(candidate).__name__}")

    weighted = (
        amount_part * policy.amount_weight
        + date_part * policy.date_weight
        + text_part * policy.text_weight
        + policy.direction_weight
    )
    final = int((weighted * 100).quantize(ONE, rounding=ROUND_HALF_UP))
    return ScoreBreakdown(
        amount=amount_part,
        date=date_part,
        text=text_part,
        direction_ok=True,
        score=max(0, min(100, final)),
    )


def score(transaction, candidate, policy: MatchingPolicy | None = None) -> int:
    """Similarity between a bank transaction and a candidate, as an integer in [0, 100]."""
    return score_breakdown(transaction, candidate, policy).score
