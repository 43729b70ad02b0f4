"""Daily fitness-for-duty check-in scoring (IMSAFE-style categories)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from engines.base import round_half_up
from schemas import GamificationConfig, ReadinessCategory, ReadinessFactor


@dataclass
class ReadinessScore:
    overall_score: int
    category_scores: Dict[str, int] = field(default_factory=dict)
    flagged_for_self_care: bool = False


def _slider(factor_id, name, lo, hi, opt_lo, opt_hi, weight, *, factor_type="slider", inverted=False):
    return ReadinessFactor(
        id=factor_id,
        name=name,
        type=factor_type,
        min=lo,
        max=hi,
        optimal_min=opt_lo,
        optimal_max=opt_hi,
        weight=weight,
        inverted=inverted,
    )


def _scale(factor_id, name, opt_lo, opt_hi, weight, *, inverted=False):
    return _slider(factor_id, name, 1, 5, opt_lo, opt_hi, weight, factor_type="scale", inverted=inverted)


def _select(factor_id, name, options, weight):
    return ReadinessFactor(
        id=factor_id, name=name, type="select", options=list(options), optimal_value=options[0], weight=weight
    )


def _boolean(factor_id, name, weight):
    return ReadinessFactor(id=factor_id, name=name, type="boolean", optimal_value=True, weight=weight)


def default_readiness_categories() -> List[ReadinessCategory]:
    return [
        ReadinessCategory(
            id="physical",
            name="Physical Readiness",
            weight=0.25,
            factors=[
                _slider("sleep", "Sleep Duration", 0, 12, 7, 9, 0.35),
                _scale("energy", "Energy Level", 4, 5, 0.25),
                _select("illness", "Illness", ["None", "Mild", "Moderate"], 0.25),
                _scale("hydration", "Hydration", 4, 5, 0.15),
            ],
        ),
        ReadinessCategory(
            id="mental",
            name="Mental Readiness",
            weight=0.25,
            factors=[
                _scale("stress", "Stress Level", 1, 2, 0.35, inverted=True),
                _scale("focus", "Focus", 4, 5, 0.35),
                _select("emotional", "Emotional State", ["Stable", "Slightly off", "Distressed"], 0.30),
            ],
        ),
        ReadinessCategory(
            id="fatigue",
            name="Fatigue Management",
            weight=0.25,
            factors=[
                _scale("rest_quality", "Rest Quality", 4, 5, 0.40),
                _slider("duty_hours", "Recent Duty Hours", 0, 16, 0, 8, 0.30, inverted=True),
                _scale("fatigue_level", "Current Fatigue", 1, 2, 0.30, inverted=True),
            ],
        ),
        ReadinessCategory(
            id="substance",
            name="Substance Status",
            weight=0.10,
            factors=[
                _slider("alcohol", "Alcohol", 0, 48, 12, 48, 0.50),
                _select("medication", "Medication", ["None", "Non-impairing only", "Potentially impairing"], 0.50),
            ],
        ),
        ReadinessCategory(
            id="environment",
            name="Environmental Preparedness",
            weight=0.15,
            factors=[
                _boolean("weather_aware", "Weather Awareness", 0.35),
                _boolean("gear_ready", "Gear Ready", 0.35),
                _boolean("route_planned", "Route Planned", 0.30),
            ],
        ),
    ]


def factor_score(factor: ReadinessFactor, response: Any) -> float:
    """Score one response in 0..1."""

    if factor.type in ("slider", "scale"):
        try:
            value = float(response)
        except (TypeError, ValueError):
            return 0.0
        lo = factor.min if factor.min is not None else 0.0
        hi = factor.max if factor.max is not None else 0.0
        opt_lo = factor.optimal_min if factor.optimal_min is not None else lo
        opt_hi = factor.optimal_max if factor.optimal_max is not None else hi
        if opt_lo <= value <= opt_hi:
            return 1.0
        if factor.inverted:
            if value < opt_lo:
                return 1.0
            max_excess = hi - opt_hi
            if max_excess <= 0:
                return 0.0
            return max(0.0, 1 - (value - opt_hi) / max_excess)
        if value > opt_hi:
            return 1.0
        max_deficit = opt_lo - lo
        if max_deficit <= 0:
            return 0.0
        return max(0.0, 1 - (opt_lo - value) / max_deficit)

    if factor.type == "select":
        if response == factor.optimal_value:
            return 1.0
        if response not in factor.options or len(factor.options) < 2:
            return 0.0
        return 1 - factor.options.index(response) / (len(factor.options) - 1)

    if factor.type == "boolean":
        return 1.0 if response == factor.optimal_value else 0.0

    return 0.5


def score_check_in(
    responses: Mapping[str, Any],
    categories: Sequence[ReadinessCategory] | None = None,
    config: GamificationConfig | None = None,
) -> ReadinessScore:
    """Weighted readiness; categories without any answered factor are skipped."""

    cfg = config or GamificationConfig()
    category_scores: Dict[str, int] = {}
    overall = 0.0
    for category in categories or default_readiness_categories():
        weighted = 0.0
        total_weight = 0.0
        for factor in category.factors:
            if factor.id not in responses:
                continue
            weighted += factor_score(factor, responses[factor.id]) * factor.weight
            total_weight += factor.weight
        if total_weight > 0:
            category_scores[category.id] = round_half_up(weighted / total_weight * 100)
            overall += category_scores[category.id] * category.weight

    overall_score = max(0, min(100, round_half_up(overall)))
    return ReadinessScore(
        overall_score=overall_score,
        category_scores=category_scores,
        flagged_for_self_care=overall_score < cfg.readiness_low_threshold,
    )


__all__ = ["ReadinessScore", "default_readiness_categories", "factor_score", "score_check_in"]
