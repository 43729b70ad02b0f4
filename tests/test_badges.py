import pytest

from engines.badges import (
    CRITERIA_EVALUATORS,
    BadgeContext,
    award_badge,
    award_badge_by_id,
    check_and_award_badges,
    default_badge_definitions,
    evaluate_criteria,
)
from schemas import (
    BadgeCriteria,
    BadgeCriteriaType,
    BadgeDefinition,
    GamificationConfig,
    LearnerProfile,
)


def _badge(badge_id, criteria_type, threshold=None, target_id=None, xp_bonus=0):
    return BadgeDefinition(
        id=badge_id,
        name=badge_id.replace("_", " ").title(),
        criteria=BadgeCriteria(type=criteria_type, threshold=threshold, target_id=target_id),
        xp_bonus=xp_bonus,
    )


def test_every_criteria_type_has_an_evaluator():
    assert set(CRITERIA_EVALUATORS) == set(BadgeCriteriaType)


def test_unknown_criteria_type_is_rejected_by_schema():
    with pytest.raises(ValueError):
        BadgeCriteria(type="login_count", threshold=3)


@pytest.mark.parametrize(
    "criteria, profile_fields, context, expected",
    [
        (BadgeCriteria(type="streak", threshold=7), {"current_streak": 7}, None, True),
        (BadgeCriteria(type="streak", threshold=7), {"current_streak": 6}, None, False),
        (BadgeCriteria(type="xp_total", threshold=1000), {"total_xp": 1000}, None, True),
        (BadgeCriteria(type="level", threshold=3), {"total_xp": 250}, None, True),
        (BadgeCriteria(type="readiness_streak", threshold=7), {"readiness_check_in_streak": 8}, None, True),
        (BadgeCriteria(type="quest_complete", target_id="q1"), {"completed_quest_ids": ["q1"]}, None, True),
        (BadgeCriteria(type="quest_complete", target_id="q2"), {"completed_quest_ids": ["q1"]}, None, False),
        (BadgeCriteria(type="quests_completed_count", threshold=2), {"completed_quest_ids": ["a", "b"]}, None, True),
        (BadgeCriteria(type="scenarios_completed_count", threshold=1), {}, None, False),
        (BadgeCriteria(type="lessons_count", threshold=5), {"total_lessons_completed": 5}, None, True),
        (
            BadgeCriteria(type="quiz_accuracy", threshold=90),
            {"total_questions_answered": 10, "total_correct_answers": 9},
            None,
            True,
        ),
        (BadgeCriteria(type="quiz_accuracy", threshold=90), {}, None, False),
        (BadgeCriteria(type="perfect_quiz"), {}, BadgeContext(perfect_quiz=True), True),
        (BadgeCriteria(type="perfect_quiz"), {}, None, False),
        (BadgeCriteria(type="scenario_score", threshold=100), {}, BadgeContext(scenario_score=100), True),
        (BadgeCriteria(type="scenario_score", threshold=100), {}, BadgeContext(scenario_score=99), False),
        (BadgeCriteria(type="track_complete", target_id="t1"), {}, BadgeContext(completed_track_id="t1"), True),
        (BadgeCriteria(type="track_complete", target_id="t1"), {"completed_track_ids": ["t1"]}, None, False),
    ],
)
def test_evaluate_criteria(criteria, profile_fields, context, expected):
    profile = LearnerProfile(user_id="pilot-1", **profile_fields)
    assert evaluate_criteria(criteria, profile, context) is expected


def test_award_badge_is_idempotent(today):
    profile = LearnerProfile(user_id="pilot-1")
    badge = _badge("first_flight", BadgeCriteriaType.XP_TOTAL, 0, xp_bonus=50)

    first = award_badge(profile, badge, today=today)
    second = award_badge(profile, badge, today=today)

    assert first.awarded is True
    assert first.xp.granted == 50
    assert second.awarded is False
    assert second.reason == "already_has_badge"
    assert profile.badge_ids == ["first_flight"]
    assert profile.total_xp == 50


def test_award_badge_by_unknown_id(today):
    profile = LearnerProfile(user_id="pilot-1")
    result = award_badge_by_id(profile, "nope", [], today=today)
    assert result.awarded is False
    assert result.reason == "badge_not_found"


def test_bonus_xp_chains_into_further_badges(today):
    profile = LearnerProfile(user_id="pilot-1", total_xp=90)
    definitions = [
        _badge("level_3", BadgeCriteriaType.LEVEL, 3, xp_bonus=10),
        _badge("xp_100", BadgeCriteriaType.XP_TOTAL, 100, xp_bonus=200),
        _badge("starter", BadgeCriteriaType.XP_TOTAL, 50, xp_bonus=20),
    ]

    result = check_and_award_badges(profile, definitions, today=today)

    assert [badge.id for badge in result.awarded] == ["starter", "xp_100", "level_3"]
    assert result.passes == 4
    assert result.bonus_xp == 230
    assert profile.total_xp == 320
    assert profile.level == 3


def test_badge_bonus_respects_daily_cap(today):
    config = GamificationConfig(max_daily_xp=30)
    profile = LearnerProfile(user_id="pilot-1")
    definitions = [_badge("welcome", BadgeCriteriaType.XP_TOTAL, 0, xp_bonus=100)]

    result = check_and_award_badges(profile, definitions, today=today, config=config)

    assert profile.badge_ids == ["welcome"]
    assert result.xp_awards[0].granted == 30
    assert result.xp_awards[0].capped is True
    assert profile.today_xp == 30


def test_evaluation_stops_at_pass_cap(today):
    # Each badge unlocks the next through its bonus, one per pass.
    definitions = [
        _badge(f"xp_{n}", BadgeCriteriaType.XP_TOTAL, n * 10, xp_bonus=10) for n in reversed(range(10))
    ]
    profile = LearnerProfile(user_id="pilot-1")

    result = check_and_award_badges(profile, definitions, today=today, max_passes=5)

    assert result.passes == 5
    assert len(result.awarded) == 5


def test_default_catalogue_ids_are_unique():
    ids = [badge.id for badge in default_badge_definitions()]
    assert len(ids) == 21
    assert len(set(ids)) == len(ids)
