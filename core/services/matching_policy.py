"""
Tuning knobs for bank matching.

Defaults mirror the values the product shipped with. Override them through the
BANK_MATCHING setting rather than editing the constants here.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from decimal import Decimal

from django.conf import settings


@dataclass(frozen=True)
class MatchingPolicy:
    # Auto-match only applies a suggestion at or above this score...
    auto_match_confidence: int = 90
    # ...and only when the runner-up trails it by more than this many points.
    ambiguity_margin: int = 5
    # Suggestions scoring below this are never shown.
    display_floor: int = 20
    max_suggestions: int = 10

    # Amount closeness is 1.0 within a cent and decays to 0 at outstanding * ratio.
    exact_amount_tolerance: Decimal = Decimal("0.01")
    amount_tolerance_ratio: Decimal = Decimal("0.05")
    # Date proximity decays to 0 over this many days.
    date_window_days: int = 30

    amount_weight: Decimal = Decimal("0.5")
    date_weight: Decimal = Decimal("0.2")
    text_weight: Decimal = Decimal("0.2")
    direction_weight: Decimal = Decimal("0.1")

    def is_ambiguous(self, top_score: int, runner_up_score: int | None) -> bool:
        if runner_up_score is None:
            return False
        return top_score - runner_up_score <= self.ambiguity_margin


_SETTING_KEYS = {
    "AUTO_MATCH_CONFIDENCE": "auto_match_confidence",
    "AMBIGUITY_MARGIN": "ambiguity_margin",
    "DISPLAY_FLOOR": "display_floor",
    "MAX_SUGGESTIONS": "max_suggestions",
    "AMOUNT_TOLERANCE_RATIO": "amount_tolerance_ratio",
    "DATE_WINDOW_DAYS": "date_window_days",
}


def get_matching_policy(**overrides) -> MatchingPolicy:
    """Build the policy from settings.BANK_MATCHING, then apply keyword overrides."""
    configured = getattr(settings, "BANK_MATCHING", {}) or {}
    types = {f.name: f.type for f in fields(MatchingPolicy)}
    values = {}
    for key, attr in _SETTING_KEYS.items():
        if key in configured and configured[key] is not None:
            values[attr] = configured[key]
    values.update(overrides)

    coerced = {}
    for attr, raw in values.items():
        if attr not in types:
            raise TypeError(f"Unknown matching policy option: {attr}")
        default = getattr(MatchingPolicy, attr)
        coerced[attr] = Decimal(str(raw)) if isinstance(default, Decimal) else int(raw)
    return replace(MatchingPolicy(), **coerced)
