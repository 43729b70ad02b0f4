"""Declarative badge rules.

Each :class:`BadgeCriteriaType` has exactly one evaluator in
``CRITERIA_EVALUATORS``; the module refuses to import if a criteria type is
left without one. Event-scoped criteria (``perfect_quiz``,
``scenario_score``, ``track_complete``) read the :class:`BadgeContext` of the
triggering event and never persisted profile state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from engines.xp import XPAwardResult, award_xp
from schemas import (
    BadgeCriteria,
    BadgeCriteriaType,
    BadgeDefinition,
    GamificationConfig,
    LearnerProfile,
)

logger = logging.getLogger(__name__)

MAX_EVALUATION_PASSES = 5


@dataclass(frozen=True)
class BadgeContext:
    """Facts about the triggering event."""

    perfect_quiz: bool = False
    scenario_score: Optional[int] = None
    completed_track_id: Optional[str] = None


@dataclass
class BadgeAwardResult:
    awarded: bool
    badge_id: str
    reason: Optional[str] = None
    badge: Optional[BadgeDefinition] = None
    xp: Optional[XPAwardResult] = None


@dataclass
class BadgeCheckResult:
    awarded: List[BadgeDefinition] = field(default_factory=list)
    xp_awards: List[XPAwardResult] = field(default_factory=list)
    passes: int = 0

    @property
    def bonus_xp(self) -> int:
        return sum(award.granted for award in self.xp_awards)


Evaluator = Callable[[BadgeCriteria, LearnerProfile, BadgeContext], bool]


def _threshold(criteria: BadgeCriteria) -> float:
    return float(criteria.threshold or 0)


def _quest_complete(criteria: BadgeCriteria, profile: LearnerProfile, _: BadgeContext) -> bool:
    return criteria.target_id is not None and criteria.target_id in profile.completed_quest_ids


def _track_complete(criteria: BadgeCriteria, _: LearnerProfile, context: BadgeContext) -> bool:
    return criteria.target_id is not None and context.completed_track_id == criteria.target_id


def _streak(criteria: BadgeCriteria, profile: LearnerProfile, _: BadgeContext) -> bool:
    return profile.current_streak >= _threshold(criteria)


def _xp_total(criteria: BadgeCriteria, profile: LearnerProfile, _: BadgeContext) -> bool:
    return profile.total_xp >= _threshold(criteria)


def _quests_count(criteria: BadgeCriteria, profile: LearnerProfile, _: BadgeContext) -> bool:
    return len(profile.completed_quest_ids) >= _threshold(criteria)


def _scenarios_count(criteria: BadgeCriteria, profile: LearnerProfile, _: BadgeContext) -> bool:
    return len(profile.completed_scenario_ids) >= _threshold(criteria)


def _perfect_quiz(_: BadgeCriteria, __: LearnerProfile, context: BadgeContext) -> bool:
    return context.perfect_quiz is True


def _scenario_score(criteria: BadgeCriteria, _: LearnerProfile, context: BadgeContext) -> bool:
    return context.scenario_score is not None and context.scenario_score >= _threshold(criteria)


def _readiness_streak(criteria: BadgeCriteria, profile: LearnerProfile, _: BadgeContext) -> bool:
    return profile.readiness_check_in_streak >= _threshold(criteria)


def _level(criteria: BadgeCriteria, profile: LearnerProfile, _: BadgeContext) -> bool:
    return profile.level >= _threshold(criteria)


def _lessons_count(criteria: BadgeCriteria, profile: LearnerProfile, _: BadgeContext) -> bool:
    return profile.total_lessons_completed >= _threshold(criteria)


def _quiz_accuracy(criteria: BadgeCriteria, profile: LearnerProfile, _: BadgeContext) -> bool:
    if profile.total_questions_answered <= 0:
        return False
    accuracy = profile.total_correct_answers * 100 / profile.total_questions_answered
    return accuracy >= _threshold(criteria)


CRITERIA_EVALUATORS: Mapping[BadgeCriteriaType, Evaluator] = {
    BadgeCriteriaType.QUEST_COMPLETE: _quest_complete,
    BadgeCriteriaType.TRACK_COMPLETE: _track_complete,
    BadgeCriteriaType.STREAK: _streak,
    BadgeCriteriaType.XP_TOTAL: _xp_total,
    BadgeCriteriaType.QUESTS_COMPLETED_COUNT: _quests_count,
    BadgeCriteriaType.SCENARIOS_COMPLETED_COUNT: _scenarios_count,
    BadgeCriteriaType.PERFECT_QUIZ: _perfect_quiz,
    BadgeCriteriaType.SCENARIO_SCORE: _scenario_score,
    BadgeCriteriaType.READINESS_STREAK: _readiness_streak,
    BadgeCriteriaType.LEVEL: _level,
    BadgeCriteriaType.LESSONS_COUNT: _lessons_count,
    BadgeCriteriaType.QUIZ_ACCURACY: _quiz_accuracy,
}

_missing = set(BadgeCriteriaType) - set(CRITERIA_EVALUATORS)
if _missing:
    raise RuntimeError(f"Badge criteria without evaluator: {sorted(m.value for m in _missing)}")


def evaluate_criteria(
    criteria: BadgeCriteria,
    profile: LearnerProfile,
    context: BadgeContext | None = None,
) -> bool:
    return CRITERIA_EVALUATORS[criteria.type](criteria, profile, context or BadgeContext())


def award_badge(
    profile: LearnerProfile,
    badge: BadgeDefinition,
    *,
    today: date,
    config: GamificationConfig | None = None,
) -> BadgeAwardResult:
    """Record ``badge`` and credit its bonus. Re-awarding is a no-op."""

    if badge.id in profile.badge_ids:
        return BadgeAwardResult(awarded=False, badge_id=badge.id, reason="already_has_badge")

    profile.badge_ids.append(badge.id)
    xp_result = None
    if badge.xp_bonus > 0:
        xp_result = award_xp(profile, badge.xp_bonus, "badge", today=today, config=config)
    logger.info("Awarded badge %s to %s", badge.id, profile.user_id)
    return BadgeAwardResult(awarded=True, badge_id=badge.id, badge=badge, xp=xp_result)


def award_badge_by_id(
    profile: LearnerProfile,
    badge_id: str,
    definitions: Sequence[BadgeDefinition],
    *,
    today: date,
    config: GamificationConfig | None = None,
) -> BadgeAwardResult:
    if badge_id in profile.badge_ids:
        return BadgeAwardResult(awarded=False, badge_id=badge_id, reason="already_has_badge")
    for badge in definitions:
        if badge.id == badge_id:
            return award_badge(profile, badge, today=today, config=config)
    return BadgeAwardResult(awarded=False, badge_id=badge_id, reason="badge_not_found")


def check_and_award_badges(
    profile: LearnerProfile,
    definitions: Sequence[BadgeDefinition],
    *,
    today: date,
    context: BadgeContext | None = None,
    config: GamificationConfig | None = None,
    max_passes: int = MAX_EVALUATION_PASSES,
) -> BadgeCheckResult:
    """Award every badge whose criteria hold, repeating while bonuses unlock more."""

    ctx = context or BadgeContext()
    result = BadgeCheckResult()
    for _ in range(max_passes):
        result.passes += 1
        awarded_this_pass = 0
        for badge in definitions:
            if badge.id in profile.badge_ids:
                continue
            if not evaluate_criteria(badge.criteria, profile, ctx):
                continue
            outcome = award_badge(profile, badge, today=today, config=config)
            if outcome.awarded:
                awarded_this_pass += 1
                result.awarded.append(badge)
                if outcome.xp is not None:
                    result.xp_awards.append(outcome.xp)
        if awarded_this_pass == 0:
            break
    return result


def _badge(
    badge_id: str,
    name: str,
    description: str,
    rarity: str,
    category: str,
    criteria_type: BadgeCriteriaType,
    threshold: float | None,
    xp_bonus: int,
    icon: str,
) -> BadgeDefinition:
    return BadgeDefinition(
        id=badge_id,
        name=name,
        description=description,
        rarity=rarity,
        category=category,
        icon=icon,
        criteria=BadgeCriteria(type=criteria_type, threshold=threshold),
        xp_bonus=xp_bonus,
    )


def default_badge_definitions() -> List[BadgeDefinition]:
    """Stock catalogue used when an organization has not defined its own."""

    T = BadgeCriteriaType
    return [
        _badge("first_quest", "First Steps", "Complete your first quest", "common", "milestone", T.QUESTS_COMPLETED_COUNT, 1, 50, "award"),
        _badge("quest_master_10", "Knowledge Seeker", "Complete 10 quests", "uncommon", "milestone", T.QUESTS_COMPLETED_COUNT, 10, 200, "book-open"),
        _badge("quest_master_25", "Safety Scholar", "Complete 25 quests", "rare", "milestone", T.QUESTS_COMPLETED_COUNT, 25, 500, "graduation-cap"),
        _badge("streak_7", "Week Warrior", "Maintain a 7-day streak", "common", "streak", T.STREAK, 7, 100, "flame"),
        _badge("streak_30", "Monthly Champion", "Maintain a 30-day streak", "uncommon", "streak", T.STREAK, 30, 300, "flame"),
        _badge("streak_90", "Quarterly Legend", "Maintain a 90-day streak", "rare", "streak", T.STREAK, 90, 750, "flame"),
        _badge("streak_365", "Year of Safety", "Maintain a 365-day streak", "legendary", "streak", T.STREAK, 365, 2500, "flame"),
        _badge("perfect_quiz", "Perfect Score", "Get 100% on any quiz", "common", "quiz", T.PERFECT_QUIZ, None, 50, "check-circle"),
        _badge("accuracy_90", "Sharp Mind", "Maintain 90%+ quiz accuracy", "rare", "quiz", T.QUIZ_ACCURACY, 90, 300, "target"),
        _badge("scenario_first", "Decision Maker", "Complete your first scenario", "common", "scenario", T.SCENARIOS_COMPLETED_COUNT, 1, 75, "git-branch"),
        _badge("scenario_perfect", "Optimal Path", "Get 100% on any scenario", "uncommon", "scenario", T.SCENARIO_SCORE, 100, 150, "star"),
        _badge("scenario_master", "Crisis Manager", "Complete 20 scenarios", "rare", "scenario", T.SCENARIOS_COMPLETED_COUNT, 20, 500, "shield"),
        _badge("readiness_7", "Self-Aware", "7-day readiness check-in streak", "common", "readiness", T.READINESS_STREAK, 7, 100, "heart"),
        _badge("readiness_30", "Consistent Operator", "30-day readiness check-in streak", "uncommon", "readiness", T.READINESS_STREAK, 30, 300, "heart"),
        _badge("readiness_100", "Wellness Champion", "100-day readiness check-in streak", "rare", "readiness", T.READINESS_STREAK, 100, 500, "activity"),
        _badge("xp_1000", "Rising Star", "Earn 1,000 XP", "common", "milestone", T.XP_TOTAL, 1000, 100, "trending-up"),
        _badge("xp_10000", "Safety Expert", "Earn 10,000 XP", "rare", "milestone", T.XP_TOTAL, 10000, 500, "award"),
        _badge("xp_50000", "Safety Legend", "Earn 50,000 XP", "legendary", "milestone", T.XP_TOTAL, 50000, 2000, "crown"),
        _badge("level_10", "Professional", "Reach Level 10", "uncommon", "level", T.LEVEL, 10, 200, "user-check"),
        _badge("level_25", "Champion", "Reach Level 25", "rare", "level", T.LEVEL, 25, 500, "shield"),
        _badge("level_50", "Guardian", "Reach Level 50", "epic", "level", T.LEVEL, 50, 1000, "shield"),
    ]


__all__ = [
    "BadgeContext",
    "BadgeAwardResult",
    "BadgeCheckResult",
    "CRITERIA_EVALUATORS",
    "MAX_EVALUATION_PASSES",
    "evaluate_criteria",
    "award_badge",
    "award_badge_by_id",
    "check_and_award_badges",
    "default_badge_definitions",
]
