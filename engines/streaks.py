"""Consecutive-day streaks with earnable protection tokens."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, Optional, Sequence

from engines.base import days_between
from schemas import GamificationConfig, LearnerProfile

STREAK_MILESTONES: Sequence[int] = (7, 14, 30, 60, 90, 180, 365)


@dataclass
class StreakUpdate:
    streak: int
    updated: bool
    used_protection: bool
    longest_streak: int
    protections_remaining: int
    earned_protection: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def advance_streak(
    streak: int,
    longest: int,
    last_date: Optional[date],
    today: date,
    *,
    protections: int = 0,
    max_protections: int = 0,
    earn_interval: Optional[int] = None,
) -> StreakUpdate:
    """Pure streak arithmetic shared by activity and readiness streaks.

    With ``max_protections == 0`` the grace-day rule never applies and no
    tokens are earned.
    """

    used_protection = False
    if last_date is None:
        new_streak = 1
    else:
        diff = days_between(last_date, today)
        if diff == 0:
            return StreakUpdate(
                streak=streak,
                updated=False,
                used_protection=False,
                longest_streak=max(longest, streak),
                protections_remaining=protections,
            )
        if diff == 1:
            new_streak = streak + 1
        elif diff == 2 and protections > 0:
            new_streak = streak + 1
            used_protection = True
        else:
            # diff >= 3, a missed day without protection, or a date in the past
            new_streak = 1

    remaining = protections - 1 if used_protection else protections
    earned = False
    if (
        earn_interval
        and new_streak > 0
        and new_streak % earn_interval == 0
        and remaining < max_protections
    ):
        remaining += 1
        earned = True

    return StreakUpdate(
        streak=new_streak,
        updated=True,
        used_protection=used_protection,
        longest_streak=max(longest, new_streak),
        protections_remaining=remaining,
        earned_protection=earned,
    )


def update_streak(
    profile: LearnerProfile,
    today: date,
    config: GamificationConfig | None = None,
) -> StreakUpdate:
    """Apply today's activity to the learner's main streak in place."""

    cfg = config or GamificationConfig()
    outcome = advance_streak(
        profile.current_streak,
        profile.longest_streak,
        profile.last_activity_date,
        today,
        protections=profile.streak_protections_remaining,
        max_protections=cfg.max_streak_protections,
        earn_interval=cfg.streak_protection_earn_interval,
    )
    if outcome.updated:
        profile.current_streak = outcome.streak
        profile.longest_streak = outcome.longest_streak
        profile.streak_protections_remaining = outcome.protections_remaining
        profile.last_activity_date = today
    return outcome


def update_readiness_streak(profile: LearnerProfile, today: date) -> StreakUpdate:
    """Same day arithmetic on the check-in date; protections are not spent here."""

    outcome = advance_streak(
        profile.readiness_check_in_streak,
        profile.readiness_check_in_streak,
        profile.last_readiness_date,
        today,
    )
    if outcome.updated:
        profile.readiness_check_in_streak = outcome.streak
        profile.last_readiness_date = today
    return outcome


def next_milestone(current_streak: int) -> int:
    for milestone in STREAK_MILESTONES:
        if current_streak < milestone:
            return milestone
    return (current_streak // 365 + 1) * 365


def streak_tier_name(streak_days: int) -> str:
    if streak_days >= 365:
        return "Legendary"
    if streak_days >= 90:
        return "Epic"
    if streak_days >= 30:
        return "Rare"
    if streak_days >= 14:
        return "Uncommon"
    if streak_days >= 7:
        return "Common"
    return "Starting"


def streak_info(profile: LearnerProfile, today: date, multiplier: float) -> Dict[str, Any]:
    """Read-only status for dashboards; does not touch the profile."""

    at_risk = False
    broken = False
    if profile.last_activity_date is not None:
        diff = days_between(profile.last_activity_date, today)
        if diff == 1:
            at_risk = True
        elif diff == 2 and profile.streak_protections_remaining > 0:
            at_risk = True
        elif diff > 1:
            broken = True

    milestone = next_milestone(profile.current_streak)
    return {
        "current_streak": profile.current_streak,
        "longest_streak": profile.longest_streak,
        "multiplier": multiplier,
        "multiplier_label": f"{multiplier}x XP",
        "next_milestone": milestone,
        "days_to_milestone": milestone - profile.current_streak,
        "protections_remaining": profile.streak_protections_remaining,
        "tier": streak_tier_name(profile.current_streak),
        "streak_at_risk": at_risk,
        "streak_broken": broken,
        "completed_today": profile.last_activity_date == today,
    }


__all__ = [
    "StreakUpdate",
    "advance_streak",
    "update_streak",
    "update_readiness_streak",
    "next_milestone",
    "streak_tier_name",
    "streak_info",
]
