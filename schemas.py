"""Pydantic schemas for learner progression state, content definitions and requests."""

from __future__ import annotations

import logging
import os
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from engines.base import resolve_zone
from engines.leveling import level_for_xp

logger = logging.getLogger(__name__)

__all__ = [
    "GamificationConfig",
    "StreakTier",
    "LearnerProfile",
    "BadgeCriteriaType",
    "BadgeCriteria",
    "BadgeDefinition",
    "QuizQuestion",
    "Quiz",
    "QuizAnswerResult",
    "QuizAttempt",
    "Track",
    "Quest",
    "QuestProgress",
    "ScenarioDecision",
    "ScenarioNode",
    "Scenario",
    "PathStep",
    "DecisionAnalysis",
    "ScenarioAttempt",
    "SpacedRepetitionItem",
    "ReadinessFactor",
    "ReadinessCategory",
    "ReadinessCheckIn",
]


# ---------------------------------------------------------------------------
# Organization configuration
# ---------------------------------------------------------------------------


class StreakTier(BaseModel):
    min_days: int = Field(ge=1)
    multiplier: float = Field(ge=1.0)


def _default_streak_tiers() -> List[StreakTier]:
    return [
        StreakTier(min_days=7, multiplier=1.25),
        StreakTier(min_days=14, multiplier=1.5),
        StreakTier(min_days=30, multiplier=1.75),
        StreakTier(min_days=60, multiplier=2.0),
    ]


class GamificationConfig(BaseModel):
    """Per-organization tuning knobs. Every field has a usable default."""

    xp_per_quiz_correct: int = Field(default=10, ge=0)
    xp_per_quiz_correct_first_try: int = Field(default=15, ge=0)
    xp_per_lesson_complete: int = Field(default=25, ge=0)
    xp_per_quest_complete: int = Field(default=100, ge=0)
    xp_per_scenario_complete: int = Field(default=150, ge=0)
    xp_per_readiness_check_in: int = Field(default=15, ge=0)
    xp_per_perfect_quiz: int = Field(default=50, ge=0)

    streak_multipliers: List[StreakTier] = Field(default_factory=_default_streak_tiers)
    max_streak_protections: int = Field(default=3, ge=0)
    streak_protection_earn_interval: int = Field(default=7, ge=1)

    default_quiz_passing_score: int = Field(default=80, ge=0, le=100)
    max_daily_xp: int = Field(default=500, ge=0)

    readiness_low_threshold: int = Field(default=60, ge=0, le=100)
    readiness_high_threshold: int = Field(default=80, ge=0, le=100)

    spaced_repetition_enabled: bool = True
    scenarios_enabled: bool = True
    readiness_enabled: bool = True

    timezone: str = Field(
        default="UTC",
        description="IANA zone whose local midnight starts a new progression day.",
    )

    @field_validator("timezone", mode="before")
    @classmethod
    def _known_zone(cls, value: Any) -> str:
        """Unknown zones fall back to ``PROGRESSION_TIMEZONE``, then UTC."""
        candidates = (value, os.getenv("PROGRESSION_TIMEZONE"), "UTC")
        for name in candidates:
            if not isinstance(name, str) or not name:
                continue
            try:
                resolve_zone(name)
            except ValueError:
                continue
            if name != value:
                logger.warning("Unknown timezone %r in gamification config; using %s", value, name)
            return name
        return "UTC"


# ---------------------------------------------------------------------------
# Learner state
# ---------------------------------------------------------------------------


class LearnerProfile(BaseModel):
    user_id: str
    organization_id: str = "default"

    total_xp: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)

    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_activity_date: Optional[date] = None
    streak_protections_remaining: int = Field(default=1, ge=0)

    badge_ids: List[str] = Field(default_factory=list)
    completed_quest_ids: List[str] = Field(default_factory=list)
    completed_scenario_ids: List[str] = Field(default_factory=list)
    completed_track_ids: List[str] = Field(default_factory=list)

    today_xp: int = Field(default=0, ge=0)
    today_date: Optional[date] = None

    readiness_check_in_streak: int = Field(default=0, ge=0)
    last_readiness_date: Optional[date] = None

    total_lessons_completed: int = Field(default=0, ge=0)
    total_questions_answered: int = Field(default=0, ge=0)
    total_correct_answers: int = Field(default=0, ge=0)
    quiz_attempt_count: int = Field(default=0, ge=0)
    scenario_attempt_count: int = Field(default=0, ge=0)
    readiness_check_in_count: int = Field(default=0, ge=0)
    average_quiz_score: float = 0.0
    average_scenario_score: float = 0.0
    average_readiness_score: float = 0.0
    safety_culture_score: int = 0

    @model_validator(mode="after")
    def _derive_level(self) -> "LearnerProfile":
        self.level = level_for_xp(self.total_xp)
        return self


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeCriteriaType(str, Enum):
    QUEST_COMPLETE = "quest_complete"
    TRACK_COMPLETE = "track_complete"
    STREAK = "streak"
    XP_TOTAL = "xp_total"
    QUESTS_COMPLETED_COUNT = "quests_completed_count"
    SCENARIOS_COMPLETED_COUNT = "scenarios_completed_count"
    PERFECT_QUIZ = "perfect_quiz"
    SCENARIO_SCORE = "scenario_score"
    READINESS_STREAK = "readiness_streak"
    LEVEL = "level"
    LESSONS_COUNT = "lessons_count"
    QUIZ_ACCURACY = "quiz_accuracy"


class BadgeCriteria(BaseModel):
    type: BadgeCriteriaType
    target_id: Optional[str] = None
    threshold: Optional[float] = None


class BadgeDefinition(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    category: str = "milestone"
    rarity: Literal["common", "uncommon", "rare", "epic", "legendary"] = "common"
    icon: Optional[str] = None
    criteria: BadgeCriteria
    xp_bonus: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Quests and quizzes
# ---------------------------------------------------------------------------


class QuizQuestion(BaseModel):
    id: str
    type: str = "multiple_choice"
    prompt: str = ""
    correct_answer: Any = None
    explanation: Optional[str] = None


class Quiz(BaseModel):
    id: str
    quest_id: Optional[str] = None
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    questions: List[QuizQuestion] = Field(default_factory=list)


class QuizAnswerResult(BaseModel):
    question_id: str
    user_answer: Any = None
    is_correct: bool
    correct_answer: Any = None
    explanation: Optional[str] = None


class QuizAttempt(BaseModel):
    attempt_id: str
    quiz_id: str
    score: int = Field(ge=0, le=100)
    correct_count: int = Field(ge=0)
    total_questions: int = Field(ge=1)
    passed: bool
    is_perfect: bool
    answers: List[QuizAnswerResult] = Field(default_factory=list)
    taken_at: Optional[datetime] = None


class Track(BaseModel):
    id: str
    name: str = ""
    prerequisite_track_ids: List[str] = Field(default_factory=list)


class Quest(BaseModel):
    id: str
    track_id: Optional[str] = None
    name: str = ""
    xp_reward: Optional[int] = Field(default=None, ge=0)
    lesson_ids: List[str] = Field(default_factory=list)
    quiz_id: Optional[str] = None
    prerequisite_quest_ids: List[str] = Field(default_factory=list)


class QuestProgress(BaseModel):
    quest_id: str
    status: Literal["not_started", "in_progress", "completed"] = "not_started"
    completed_lesson_ids: List[str] = Field(default_factory=list)
    quiz_attempts: List[QuizAttempt] = Field(default_factory=list)
    best_quiz_score: int = Field(default=0, ge=0, le=100)
    xp_earned: int = Field(default=0, ge=0)
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class ScenarioDecision(BaseModel):
    id: str
    text: str = ""
    next_node_id: Optional[str] = None
    score_impact: int = 0
    is_optimal: bool = False
    rationale: Optional[str] = None


class ScenarioNode(BaseModel):
    id: str
    type: Literal["narrative", "consequence", "ending"] = "narrative"
    content: str = ""
    decisions: List[ScenarioDecision] = Field(default_factory=list)
    ending_type: Optional[str] = None


class Scenario(BaseModel):
    id: str
    title: str = ""
    category: Optional[str] = None
    difficulty_tier: Optional[str] = None
    max_score: int
    nodes: List[ScenarioNode] = Field(default_factory=list)


class PathStep(BaseModel):
    node_id: str = Field(min_length=1)
    decision_id: str = Field(min_length=1)
    timestamp: Optional[datetime] = None


class DecisionAnalysis(BaseModel):
    node_id: str
    decision_id: str
    valid: bool
    was_optimal: bool = False
    score_impact: int = 0
    rationale: Optional[str] = None


class ScenarioAttempt(BaseModel):
    attempt_id: str
    scenario_id: str
    score: int
    max_score: int
    score_percentage: int = Field(ge=0, le=100)
    invalid_steps: int = Field(default=0, ge=0)
    path_taken: List[PathStep] = Field(default_factory=list)
    decisions_analysis: List[DecisionAnalysis] = Field(default_factory=list)
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Spaced repetition
# ---------------------------------------------------------------------------


class SpacedRepetitionItem(BaseModel):
    id: str
    content_type: str
    content_id: str
    ease_factor: float = Field(default=2.5, ge=1.3)
    repetitions: int = Field(default=0, ge=0)
    interval: int = Field(default=1, ge=1)
    next_review_date: date
    last_reviewed_at: Optional[date] = None


# ---------------------------------------------------------------------------
# Readiness check-ins
# ---------------------------------------------------------------------------


class ReadinessFactor(BaseModel):
    id: str
    name: str = ""
    type: Literal["slider", "scale", "select", "boolean"]
    weight: float = Field(gt=0)
    min: Optional[float] = None
    max: Optional[float] = None
    optimal_min: Optional[float] = None
    optimal_max: Optional[float] = None
    inverted: bool = False
    options: List[str] = Field(default_factory=list)
    optimal_value: Any = None


class ReadinessCategory(BaseModel):
    id: str
    name: str = ""
    weight: float = Field(gt=0)
    factors: List[ReadinessFactor] = Field(default_factory=list)


class ReadinessCheckIn(BaseModel):
    check_in_id: str
    date: date
    overall_score: int = Field(ge=0, le=100)
    category_scores: Dict[str, int] = Field(default_factory=dict)
    factor_responses: Dict[str, Any] = Field(default_factory=dict)
    flagged_for_self_care: bool = False
