"""XP crediting with a per-day cap, plus per-activity XP calculators."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict

from engines.leveling import level_for_xp
from schemas import GamificationConfig, LearnerProfile

logger = logging.getLogger(__name__)


@dataclass
class XPAwardResult:
    granted: int
    requested: int
    capped: bool
    new_total: int
    new_level: int
    leveled_up: bool
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def streak_multiplier(streak_days: int, config: GamificationConfig | None = None) -> float:
    cfg = config or GamificationConfig()
    multiplier = 1.0
    for tier in sorted(cfg.streak_multipliers, key=lambda t: t.min_days):
        if streak_days >= tier.min_days:
            multiplier = tier.multiplier
    return multiplier


def apply_multiplier(base_amount: float, multiplier: float) -> int:
    return max(0, int(math.floor(base_amount * multiplier)))


def award_xp(
    profile: LearnerProfile,
    amount: int,
    source: str,
    *,
    today: date,
    config: GamificationConfig | None = None,
) -> XPAwardResult:
    """Credit ``amount`` XP to ``profile`` in place, honouring the daily cap.

    ``source`` is recorded for auditing only. An award that grants nothing,
    including a non-positive ``amount``, is reported as capped.
    """

    cfg = config or GamificationConfig()
    requested = max(0, int(amount))
    xp_so_far = profile.today_xp if profile.today_date == today else 0
    headroom = max(0, cfg.max_daily_xp - xp_so_far)
    granted = min(requested, headroom)
    old_level = profile.level

    if granted == 0:
        if requested > 0:
            logger.info(
                "Daily XP cap reached for %s (%s XP from %s dropped)",
                profile.user_id,
                requested,
                source,
            )
        return XPAwardResult(
            granted=0,
            requested=requested,
            capped=True,
            new_total=profile.total_xp,
            new_level=profile.level,
            leveled_up=False,
            source=source,
        )

    profile.total_xp += granted
    profile.level = level_for_xp(profile.total_xp)
    profile.today_xp = xp_so_far + granted
    profile.today_date = today

    leveled_up = profile.level > old_level
    if leveled_up:
        logger.info("%s reached level %s", profile.user_id, profile.level)

    return XPAwardResult(
        granted=granted,
        requested=requested,
        capped=granted < requested,
        new_total=profile.total_xp,
        new_level=profile.level,
        leveled_up=leveled_up,
        source=source,
    )


# ----- activity calculators ---------------------------------------------


def lesson_xp(config: GamificationConfig, streak_days: int, duration: str = "normal") -> int:
    duration_factor = {"short": 0.75, "normal": 1.0, "long": 1.25}.get(duration, 1.0)
    return apply_multiplier(
        config.xp_per_lesson_complete * duration_factor,
        streak_multiplier(streak_days, config),
    )


def quiz_xp(
    config: GamificationConfig,
    streak_days: int,
    correct_count: int,
    is_perfect: bool,
    *,
    first_try: bool = False,
) -> int:
    multiplier = streak_multiplier(streak_days, config)
    per_correct = config.xp_per_quiz_correct_first_try if first_try else config.xp_per_quiz_correct
    total = apply_multiplier(correct_count * per_correct, multiplier)
    if is_perfect:
        total += apply_multiplier(config.xp_per_perfect_quiz, multiplier)
    return total


def quest_xp(config: GamificationConfig, streak_days: int, quest_reward: int | None = None) -> int:
    base = quest_reward if quest_reward is not None else config.xp_per_quest_complete
    return apply_multiplier(base, streak_multiplier(streak_days, config))


def scenario_xp(config: GamificationConfig, streak_days: int, score_percentage: int) -> int:
    score_factor = max(0.5, score_percentage / 100)
    return apply_multiplier(
        config.xp_per_scenario_complete * score_factor,
        streak_multiplier(streak_days, config),
    )


def readiness_xp(config: GamificationConfig, check_in_streak: int) -> int:
    return apply_multiplier(
        config.xp_per_readiness_check_in,
        streak_multiplier(check_in_streak, config),
    )


__all__ = [
    "XPAwardResult",
    "award_xp",
    "streak_multiplier",
    "apply_multiplier",
    "lesson_xp",
    "quiz_xp",
    "quest_xp",
    "scenario_xp",
    "readiness_xp",
]
