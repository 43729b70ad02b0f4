"""Safety Culture Score: a weighted 0-100 summary of a learner's engagement."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict

from engines.base import days_between, round_half_up
from schemas import LearnerProfile

WEIGHTS: Dict[str, float] = {
    "quest_progress": 0.25,
    "quiz_accuracy": 0.20,
    "scenario_performance": 0.20,
    "readiness_consistency": 0.20,
    "engagement": 0.15,
}


def engagement_score(profile: LearnerProfile, today: date) -> int:
    if profile.last_activity_date is None:
        return 0
    idle = days_between(profile.last_activity_date, today)
    for limit, score in ((0, 100), (1, 90), (3, 70), (7, 50), (14, 30), (30, 10)):
        if idle <= limit:
            return score
    return 0


def culture_tier(score: int) -> str:
    if score >= 90:
        return "Exemplary"
    if score >= 75:
        return "Strong"
    if score >= 60:
        return "Developing"
    return "Needs Attention"


def safety_culture_score(profile: LearnerProfile, total_quests: int, today: date) -> Dict[str, Any]:
    breakdown = {
        "quest_progress": (len(profile.completed_quest_ids) / total_quests * 100) if total_quests > 0 else 0.0,
        "quiz_accuracy": profile.average_quiz_score,
        "scenario_performance": profile.average_scenario_score,
        "readiness_consistency": min(profile.readiness_check_in_streak / 30, 1.0) * 100,
        "engagement": float(engagement_score(profile, today)),
    }
    overall = round_half_up(sum(breakdown[key] * weight for key, weight in WEIGHTS.items()))
    return {
        "overall": overall,
        "breakdown": {key: round(value, 2) for key, value in breakdown.items()},
        "weights": dict(WEIGHTS),
        "tier": culture_tier(overall),
    }


__all__ = ["WEIGHTS", "engagement_score", "culture_tier", "safety_culture_score"]
