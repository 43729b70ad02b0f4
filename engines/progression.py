"""Progression engine: turns learner events into XP, streaks, badges and schedules.

Every public method of :class:`ProgressionEngine` is one triggering event.
The whole event (XP, streak, counters, quest/track completion, badges) is
applied inside a single ``db.transaction()`` so concurrent submissions for the
same learner serialise on the SQLite write lock. When the caller supplies an
idempotency key the outcome is stored next to the state change; a retried
request with the same key returns the stored outcome with ``replayed=True``
and leaves the profile untouched.

Activity-log entries are collected while the event runs and written only
after commit, so audit trouble can never roll back a learner's progress.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

import activity_log
import db
from engines.badges import (
    BadgeCheckResult,
    BadgeContext,
    MAX_EVALUATION_PASSES,
    award_badge_by_id,
    check_and_award_badges,
)
from engines.base import local_today
from engines.leveling import level_progress
from engines.quests import missing_quest_prerequisites, missing_track_prerequisites, track_progress
from engines.quiz import score_quiz
from engines.readiness import default_readiness_categories, score_check_in
from engines.safety_culture import safety_culture_score
from engines.scenario import ScenarioGraph
from engines.spaced_repetition import SpacedRepetitionScheduler
from engines.streaks import streak_info, update_readiness_streak, update_streak
from engines.validation import (
    FeatureDisabledError,
    NotFoundError,
    QuestLockedError,
    SubmissionValidationError,
)
from engines.xp import (
    XPAwardResult,
    award_xp,
    lesson_xp,
    quest_xp,
    quiz_xp,
    readiness_xp,
    scenario_xp,
    streak_multiplier,
)
from schemas import (
    GamificationConfig,
    LearnerProfile,
    PathStep,
    Quest,
    QuestProgress,
    ReadinessCategory,
    ReadinessCheckIn,
    ScenarioAttempt,
)

_LOGGER = logging.getLogger(__name__)

Recorder = Callable[..., Any]


@dataclass
class EventContext:
    """State loaded for one triggering event."""

    store: db.StoreSession
    profile: LearnerProfile
    config: GamificationConfig
    today: date
    activities: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)

    def log(self, activity_type: str, **details: Any) -> None:
        self.activities.append((activity_type, details))


def _running_mean(previous: float, count: int, value: float) -> float:
    """Mean after adding ``value`` to ``count`` earlier observations."""

    return (previous * count + value) / (count + 1)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def profile_snapshot(profile: LearnerProfile) -> Dict[str, Any]:
    return {
        "total_xp": profile.total_xp,
        "level": profile.level,
        "current_streak": profile.current_streak,
        "longest_streak": profile.longest_streak,
        "streak_protections_remaining": profile.streak_protections_remaining,
        "today_xp": profile.today_xp,
        "badge_ids": list(profile.badge_ids),
    }


def _badges_payload(check: BadgeCheckResult) -> Dict[str, Any]:
    return {
        "badges_earned": [badge.id for badge in check.awarded],
        "badge_bonus_xp": check.bonus_xp,
        "badge_passes": check.passes,
    }


class ProgressionEngine:
    """Orchestrates the pure engines against the store.

    Parameters
    ----------
    scheduler:
        Spaced-repetition scheduler; a default SM-2 scheduler is used when
        omitted.
    recorder:
        Callable with the signature of :func:`activity_log.record`. Invoked
        once per activity after the event has committed.
    max_badge_passes:
        Upper bound on badge re-evaluation passes per event.
    readiness_categories:
        Check-in categories; the IMSAFE-style defaults are used when omitted.
    """

    def __init__(
        self,
        scheduler: Optional[SpacedRepetitionScheduler] = None,
        recorder: Optional[Recorder] = None,
        max_badge_passes: int = MAX_EVALUATION_PASSES,
        readiness_categories: Optional[Sequence[ReadinessCategory]] = None,
    ) -> None:
        if max_badge_passes < 1:
            raise ValueError("max_badge_passes must be at least 1")
        self.scheduler = scheduler or SpacedRepetitionScheduler()
        self.recorder = recorder or activity_log.record
        self.max_badge_passes = max_badge_passes
        self.readiness_categories = list(readiness_categories or default_readiness_categories())

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------
    def _run(
        self,
        operation: str,
        user_id: str,
        handler: Callable[[EventContext], Dict[str, Any]],
        *,
        today: Optional[date],
        idempotency_key: Optional[str],
        session_id: Optional[str],
        organization_id: str,
        key_for_day: Optional[Callable[[date], str]] = None,
    ) -> Dict[str, Any]:
        """Run ``handler`` as one event.

        ``key_for_day`` derives a default idempotency key from the event's
        resolved day when the caller supplied none.
        """
        if not user_id:
            raise SubmissionValidationError("user_id is required")

        with db.transaction() as store:
            profile = store.get_profile(user_id, organization_id)
            config = store.get_config(profile.organization_id)
            ctx = EventContext(
                store=store,
                profile=profile,
                config=config,
                today=today or local_today(config.timezone),
            )
            if not idempotency_key and key_for_day is not None:
                idempotency_key = key_for_day(ctx.today)

            if idempotency_key:
                previous = store.get_processed_event(user_id, idempotency_key)
                if previous is not None:
                    if previous["operation"] != operation:
                        raise SubmissionValidationError(
                            f"Idempotency key {idempotency_key} was already used for {previous['operation']}"
                        )
                    _LOGGER.info("Replaying %s for %s (key %s)", operation, user_id, idempotency_key)
                    replay = dict(previous["result"])
                    replay["replayed"] = True
                    return replay

            result = handler(ctx)
            result["replayed"] = False
            store.save_profile(ctx.profile)
            if idempotency_key:
                store.record_processed_event(user_id, idempotency_key, operation, result)

        self._emit(user_id, ctx.activities, session_id)
        return result

    def _emit(self, user_id: str, activities: Iterable[Tuple[str, Dict[str, Any]]], session_id: Optional[str]) -> None:
        for activity_type, details in activities:
            self.recorder(user_id, activity_type, details, session_id=session_id)

    def _award(self, ctx: EventContext, amount: int, source: str) -> XPAwardResult:
        return award_xp(ctx.profile, amount, source, today=ctx.today, config=ctx.config)

    def _check_badges(self, ctx: EventContext, context: Optional[BadgeContext] = None) -> BadgeCheckResult:
        definitions = ctx.store.list_badge_definitions(ctx.profile.organization_id)
        check = check_and_award_badges(
            ctx.profile,
            definitions,
            today=ctx.today,
            context=context,
            config=ctx.config,
            max_passes=self.max_badge_passes,
        )
        for badge, award in zip(check.awarded, self._bonus_per_badge(check)):
            ctx.log("badge_earned", badge_id=badge.id, badge_name=badge.name, xp_earned=award)
        return check

    @staticmethod
    def _bonus_per_badge(check: BadgeCheckResult) -> List[int]:
        bonuses = iter(check.xp_awards)
        granted = []
        for badge in check.awarded:
            granted.append(next(bonuses).granted if badge.xp_bonus > 0 else 0)
        return granted

    def _require_quest(self, ctx: EventContext, quest_id: str) -> Quest:
        quest = ctx.store.get_quest(ctx.profile.organization_id, quest_id)
        if quest is None:
            raise NotFoundError("quest", quest_id)
        return quest

    def _require_unlocked(self, ctx: EventContext, quest: Quest) -> None:
        profile = ctx.profile
        missing = missing_quest_prerequisites(quest, profile.completed_quest_ids)
        if quest.track_id:
            track = ctx.store.get_track(profile.organization_id, quest.track_id)
            missing += missing_track_prerequisites(track, profile.completed_track_ids)
        if missing:
            raise QuestLockedError(quest.id, missing)

    def _complete_quest(self, ctx: EventContext, quest: Quest, progress: QuestProgress) -> Dict[str, Any]:
        """Mark ``quest`` complete, credit its reward and detect track completion."""

        profile = ctx.profile
        reward = quest_xp(ctx.config, profile.current_streak, quest.xp_reward)
        result = self._award(ctx, reward, "quest_complete")
        progress.status = "completed"
        progress.completed_at = datetime.now(timezone.utc)
        progress.xp_earned += result.granted
        if quest.id not in profile.completed_quest_ids:
            profile.completed_quest_ids.append(quest.id)
        ctx.log("quest_complete", quest_id=quest.id, quest_name=quest.name, xp_earned=result.granted)

        completed_track_id = None
        if quest.track_id and quest.track_id not in profile.completed_track_ids:
            track_quests = ctx.store.list_quests(profile.organization_id, quest.track_id)
            if track_quests and all(q.id in profile.completed_quest_ids for q in track_quests):
                profile.completed_track_ids.append(quest.track_id)
                completed_track_id = quest.track_id
                _LOGGER.info("%s completed track %s", profile.user_id, quest.track_id)
        return {"xp": result, "completed_track_id": completed_track_id}

    # ------------------------------------------------------------------
    # XP, streaks and badges
    # ------------------------------------------------------------------
    def award_xp(
        self,
        user_id: str,
        amount: int,
        source: str,
        *,
        today: Optional[date] = None,
        idempotency_key: Optional[str] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        """Credit ``amount`` XP subject to the daily cap; no multiplier is applied."""

        def handler(ctx: EventContext) -> Dict[str, Any]:
            result = self._award(ctx, amount, source)
            if result.granted:
                ctx.log("xp_earned", source=source, xp_earned=result.granted, capped=result.capped)
            return result.to_dict()

        return self._run(
            "award_xp",
            user_id,
            handler,
            today=today,
            idempotency_key=idempotency_key,
            session_id=session_id,
            organization_id=organization_id,
        )

    def update_streak(
        self,
        user_id: str,
        *,
        today: Optional[date] = None,
        idempotency_key: Optional[str] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        def handler(ctx: EventContext) -> Dict[str, Any]:
            outcome = update_streak(ctx.profile, ctx.today, ctx.config)
            payload = outcome.to_dict()
            payload["multiplier"] = streak_multiplier(outcome.streak, ctx.config)
            return payload

        return self._run(
            "update_streak",
            user_id,
            handler,
            today=today,
            idempotency_key=idempotency_key,
            session_id=session_id,
            organization_id=organization_id,
        )

    def check_and_award_badges(
        self,
        user_id: str,
        *,
        context: Optional[BadgeContext] = None,
        today: Optional[date] = None,
        idempotency_key: Optional[str] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        def handler(ctx: EventContext) -> Dict[str, Any]:
            check = self._check_badges(ctx, context)
            payload = _badges_payload(check)
            payload["profile"] = profile_snapshot(ctx.profile)
            return payload

        return self._run(
            "check_and_award_badges",
            user_id,
            handler,
            today=today,
            idempotency_key=idempotency_key,
            session_id=session_id,
            organization_id=organization_id,
        )

    def award_badge(
        self,
        user_id: str,
        badge_id: str,
        *,
        today: Optional[date] = None,
        idempotency_key: Optional[str] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        """Grant one badge by id. Holding it already is not an error."""

        def handler(ctx: EventContext) -> Dict[str, Any]:
            definitions = ctx.store.list_badge_definitions(ctx.profile.organization_id)
            outcome = award_badge_by_id(ctx.profile, badge_id, definitions, today=ctx.today, config=ctx.config)
            if outcome.reason == "badge_not_found":
                raise NotFoundError("badge", badge_id)
            xp_granted = outcome.xp.granted if outcome.xp else 0
            if outcome.awarded:
                ctx.log("badge_earned", badge_id=badge_id, badge_name=outcome.badge.name, xp_earned=xp_granted)
            return {
                "awarded": outcome.awarded,
                "badge_id": badge_id,
                "reason": outcome.reason,
                "xp_earned": xp_granted,
                "profile": profile_snapshot(ctx.profile),
            }

        return self._run(
            "award_badge",
            user_id,
            handler,
            today=today,
            idempotency_key=idempotency_key,
            session_id=session_id,
            organization_id=organization_id,
        )

    # ------------------------------------------------------------------
    # Lessons, quizzes and quests
    # ------------------------------------------------------------------
    def complete_lesson(
        self,
        user_id: str,
        quest_id: str,
        lesson_id: str,
        *,
        duration: str = "normal",
        today: Optional[date] = None,
        idempotency_key: Optional[str] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        def handler(ctx: EventContext) -> Dict[str, Any]:
            quest = self._require_quest(ctx, quest_id)
            self._require_unlocked(ctx, quest)
            if quest.lesson_ids and lesson_id not in quest.lesson_ids:
                raise NotFoundError("lesson", f"{quest_id}/{lesson_id}")

            profile = ctx.profile
            progress = ctx.store.get_quest_progress(user_id, quest_id) or QuestProgress(
                quest_id=quest_id, status="in_progress"
            )
            if lesson_id in progress.completed_lesson_ids:
                return {"completed": False, "already_completed": True, "xp_earned": 0, "badges_earned": []}

            progress.completed_lesson_ids.append(lesson_id)
            if progress.status == "not_started":
                progress.status = "in_progress"

            earned = lesson_xp(ctx.config, profile.current_streak, duration)
            xp_result = self._award(ctx, earned, "lesson")
            progress.xp_earned += xp_result.granted
            streak = update_streak(profile, ctx.today, ctx.config)
            profile.total_lessons_completed += 1
            ctx.log("lesson_complete", quest_id=quest_id, lesson_id=lesson_id, xp_earned=xp_result.granted)

            quest_completed = False
            completed_track_id = None
            all_lessons_done = set(quest.lesson_ids) <= set(progress.completed_lesson_ids)
            quiz_cleared = quest.quiz_id is None or any(attempt.passed for attempt in progress.quiz_attempts)
            if quiz_cleared and all_lessons_done and progress.status != "completed":
                completion = self._complete_quest(ctx, quest, progress)
                quest_completed = True
                completed_track_id = completion["completed_track_id"]
            ctx.store.save_quest_progress(user_id, progress)

            check = self._check_badges(ctx, BadgeContext(completed_track_id=completed_track_id))
            payload = {
                "completed": True,
                "already_completed": False,
                "xp_earned": xp_result.granted,
                "xp": xp_result.to_dict(),
                "streak": streak.to_dict(),
                "quest_completed": quest_completed,
                "track_completed": completed_track_id,
                "profile": profile_snapshot(profile),
            }
            payload.update(_badges_payload(check))
            return payload

        return self._run(
            "complete_lesson",
            user_id,
            handler,
            today=today,
            idempotency_key=idempotency_key,
            session_id=session_id,
            organization_id=organization_id,
        )

    def submit_quiz_attempt(
        self,
        user_id: str,
        quest_id: str,
        answers: Mapping[str, Any],
        *,
        quiz_id: Optional[str] = None,
        attempt_id: Optional[str] = None,
        today: Optional[date] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        """Score ``answers`` against the stored key and apply the outcome.

        ``attempt_id`` doubles as the idempotency key: resubmitting the same
        attempt returns the first outcome.
        """

        attempt_id = attempt_id or _new_id("attempt")

        def handler(ctx: EventContext) -> Dict[str, Any]:
            quest = self._require_quest(ctx, quest_id)
            if not quest.quiz_id:
                raise NotFoundError("quiz", f"for quest {quest_id}")
            if quiz_id and quiz_id != quest.quiz_id:
                raise SubmissionValidationError(f"Quiz {quiz_id} does not belong to quest {quest_id}")
            self._require_unlocked(ctx, quest)
            quiz = ctx.store.get_quiz(ctx.profile.organization_id, quest.quiz_id)
            if quiz is None:
                raise NotFoundError("quiz", quest.quiz_id)
            if quiz.quest_id and quiz.quest_id != quest_id:
                raise SubmissionValidationError(f"Quiz {quiz.id} is bound to quest {quiz.quest_id}, not {quest_id}")

            attempt = score_quiz(quiz, answers, attempt_id=attempt_id, config=ctx.config)
            profile = ctx.profile
            progress = ctx.store.get_quest_progress(user_id, quest_id) or QuestProgress(
                quest_id=quest_id, status="in_progress"
            )
            first_try = not progress.quiz_attempts
            progress.quiz_attempts.append(attempt)
            progress.best_quiz_score = max(progress.best_quiz_score, attempt.score)
            if progress.status == "not_started":
                progress.status = "in_progress"
            ctx.store.append_quiz_attempt(user_id, quest_id, attempt)

            earned = quiz_xp(
                ctx.config,
                profile.current_streak,
                attempt.correct_count,
                attempt.is_perfect,
                first_try=first_try,
            )
            xp_result = self._award(ctx, earned, "quiz")
            progress.xp_earned += xp_result.granted
            streak = update_streak(profile, ctx.today, ctx.config)

            profile.total_questions_answered += attempt.total_questions
            profile.total_correct_answers += attempt.correct_count
            profile.average_quiz_score = _running_mean(
                profile.average_quiz_score, profile.quiz_attempt_count, attempt.score
            )
            profile.quiz_attempt_count += 1

            quest_completed = False
            completed_track_id = None
            lessons_done = set(quest.lesson_ids) <= set(progress.completed_lesson_ids)
            if attempt.passed and lessons_done and progress.status != "completed":
                completion = self._complete_quest(ctx, quest, progress)
                quest_completed = True
                completed_track_id = completion["completed_track_id"]
            ctx.store.save_quest_progress(user_id, progress)

            ctx.log(
                "quiz_attempt",
                quest_id=quest_id,
                quiz_id=quiz.id,
                score=attempt.score,
                passed=attempt.passed,
                is_perfect=attempt.is_perfect,
                xp_earned=xp_result.granted,
            )
            check = self._check_badges(
                ctx,
                BadgeContext(perfect_quiz=attempt.is_perfect, completed_track_id=completed_track_id),
            )
            payload = {
                "attempt": attempt.model_dump(mode="json"),
                "score": attempt.score,
                "passed": attempt.passed,
                "is_perfect": attempt.is_perfect,
                "correct_count": attempt.correct_count,
                "total_questions": attempt.total_questions,
                "xp_earned": xp_result.granted,
                "xp": xp_result.to_dict(),
                "streak": streak.to_dict(),
                "quest_completed": quest_completed,
                "track_completed": completed_track_id,
                "profile": profile_snapshot(profile),
            }
            payload.update(_badges_payload(check))
            return payload

        return self._run(
            "submit_quiz_attempt",
            user_id,
            handler,
            today=today,
            idempotency_key=f"quiz:{attempt_id}",
            session_id=session_id,
            organization_id=organization_id,
        )

    # ------------------------------------------------------------------
    # Scenarios
    # ------------------------------------------------------------------
    def submit_scenario_attempt(
        self,
        user_id: str,
        scenario_id: str,
        path_taken: Sequence[Any],
        *,
        attempt_id: Optional[str] = None,
        today: Optional[date] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        """Recompute the score of ``path_taken`` from the stored graph.

        Only ``(node_id, decision_id)`` pairs are read from the path; any
        score the client computed is ignored.
        """

        try:
            steps = [step if isinstance(step, PathStep) else PathStep.model_validate(step) for step in path_taken]
        except ValidationError as exc:
            raise SubmissionValidationError(f"Malformed path step: {exc.errors()[0]['msg']}") from exc
        attempt_id = attempt_id or _new_id("scenario")

        def handler(ctx: EventContext) -> Dict[str, Any]:
            if not ctx.config.scenarios_enabled:
                raise FeatureDisabledError("Scenarios are disabled for this organization")
            scenario = ctx.store.get_scenario(ctx.profile.organization_id, scenario_id)
            if scenario is None:
                raise NotFoundError("scenario", scenario_id)

            graph = ScenarioGraph(scenario)
            scored = graph.score_path(steps)
            attempt = ScenarioAttempt(
                attempt_id=attempt_id,
                scenario_id=scenario.id,
                score=scored.raw_score,
                max_score=scored.max_score,
                score_percentage=scored.score_percentage,
                invalid_steps=scored.invalid_steps,
                path_taken=steps,
                decisions_analysis=scored.steps,
                completed_at=datetime.now(timezone.utc),
            )
            ctx.store.append_scenario_attempt(user_id, attempt)

            profile = ctx.profile
            earned = scenario_xp(ctx.config, profile.current_streak, scored.score_percentage)
            xp_result = self._award(ctx, earned, "scenario")
            streak = update_streak(profile, ctx.today, ctx.config)

            if scenario.id not in profile.completed_scenario_ids:
                profile.completed_scenario_ids.append(scenario.id)
            profile.average_scenario_score = _running_mean(
                profile.average_scenario_score, profile.scenario_attempt_count, scored.score_percentage
            )
            profile.scenario_attempt_count += 1

            ctx.log(
                "scenario_complete",
                scenario_id=scenario.id,
                scenario_title=scenario.title,
                score=scored.raw_score,
                score_percentage=scored.score_percentage,
                xp_earned=xp_result.granted,
            )
            check = self._check_badges(ctx, BadgeContext(scenario_score=scored.score_percentage))
            payload = {
                "attempt_id": attempt_id,
                "score": scored.raw_score,
                "max_score": scored.max_score,
                "score_percentage": scored.score_percentage,
                "invalid_steps": scored.invalid_steps,
                "optimal_steps": scored.optimal_steps,
                "decisions_analysis": [step.model_dump(mode="json") for step in scored.steps],
                "xp_earned": xp_result.granted,
                "xp": xp_result.to_dict(),
                "streak": streak.to_dict(),
                "profile": profile_snapshot(profile),
            }
            payload.update(_badges_payload(check))
            return payload

        return self._run(
            "submit_scenario_attempt",
            user_id,
            handler,
            today=today,
            idempotency_key=f"scenario:{attempt_id}",
            session_id=session_id,
            organization_id=organization_id,
        )

    # ------------------------------------------------------------------
    # Readiness check-ins
    # ------------------------------------------------------------------
    def submit_readiness_check_in(
        self,
        user_id: str,
        responses: Mapping[str, Any],
        *,
        today: Optional[date] = None,
        idempotency_key: Optional[str] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        """Score a fitness-for-duty check-in.

        Without an explicit key the check-in date is the key, so a learner
        gets one scored check-in per day.
        """

        def handler(ctx: EventContext) -> Dict[str, Any]:
            if not ctx.config.readiness_enabled:
                raise FeatureDisabledError("Readiness check-ins are disabled for this organization")
            if not responses:
                raise SubmissionValidationError("A check-in needs at least one response")

            profile = ctx.profile
            scored = score_check_in(responses, self.readiness_categories, ctx.config)
            check_in = ReadinessCheckIn(
                check_in_id=_new_id("checkin"),
                date=ctx.today,
                overall_score=scored.overall_score,
                category_scores=scored.category_scores,
                factor_responses=dict(responses),
                flagged_for_self_care=scored.flagged_for_self_care,
            )
            ctx.store.append_readiness_check_in(user_id, check_in)

            earned = readiness_xp(ctx.config, profile.readiness_check_in_streak)
            xp_result = self._award(ctx, earned, "readiness_checkin")
            readiness_streak = update_readiness_streak(profile, ctx.today)
            profile.average_readiness_score = _running_mean(
                profile.average_readiness_score, profile.readiness_check_in_count, scored.overall_score
            )
            profile.readiness_check_in_count += 1
            streak = update_streak(profile, ctx.today, ctx.config)

            ctx.log(
                "readiness_checkin",
                check_in_id=check_in.check_in_id,
                overall_score=scored.overall_score,
                xp_earned=xp_result.granted,
            )
            check = self._check_badges(ctx)
            payload = {
                "check_in_id": check_in.check_in_id,
                "date": check_in.date.isoformat(),
                "overall_score": scored.overall_score,
                "category_scores": scored.category_scores,
                "flagged_for_self_care": scored.flagged_for_self_care,
                "readiness_streak": readiness_streak.streak,
                "xp_earned": xp_result.granted,
                "xp": xp_result.to_dict(),
                "streak": streak.to_dict(),
                "profile": profile_snapshot(profile),
            }
            payload.update(_badges_payload(check))
            return payload

        return self._run(
            "submit_readiness_check_in",
            user_id,
            handler,
            today=today,
            idempotency_key=idempotency_key,
            session_id=session_id,
            organization_id=organization_id,
            key_for_day=lambda day: f"readiness:{day.isoformat()}",
        )

    # ------------------------------------------------------------------
    # Spaced repetition
    # ------------------------------------------------------------------
    def add_spaced_repetition_item(
        self,
        user_id: str,
        content_type: str,
        content_id: str,
        *,
        today: Optional[date] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        """Queue content for review; queuing the same content twice returns the existing item."""

        if not content_type or not content_id:
            raise SubmissionValidationError("content_type and content_id are required")

        def handler(ctx: EventContext) -> Dict[str, Any]:
            if not ctx.config.spaced_repetition_enabled:
                raise FeatureDisabledError("Spaced repetition is disabled for this organization")
            existing = ctx.store.find_sr_item(user_id, content_type, content_id)
            if existing is not None:
                return {"created": False, "item": existing.model_dump(mode="json")}
            item = self.scheduler.new_item(_new_id("sr"), content_type, content_id, today=ctx.today)
            ctx.store.save_sr_item(user_id, item)
            return {"created": True, "item": item.model_dump(mode="json")}

        return self._run(
            "add_spaced_repetition_item",
            user_id,
            handler,
            today=today,
            idempotency_key=None,
            session_id=session_id,
            organization_id=organization_id,
        )

    def review_spaced_repetition_item(
        self,
        user_id: str,
        item_id: str,
        quality: int,
        *,
        today: Optional[date] = None,
        idempotency_key: Optional[str] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        def handler(ctx: EventContext) -> Dict[str, Any]:
            item = ctx.store.get_sr_item(user_id, item_id)
            if item is None:
                raise NotFoundError("spaced repetition item", item_id)
            updated = self.scheduler.review(item, quality, today=ctx.today)
            ctx.store.save_sr_item(user_id, updated)
            ctx.log(
                "spaced_repetition_review",
                item_id=item_id,
                content_type=updated.content_type,
                content_id=updated.content_id,
                quality=quality,
                interval=updated.interval,
            )
            return {"item": updated.model_dump(mode="json")}

        return self._run(
            "review_spaced_repetition_item",
            user_id,
            handler,
            today=today,
            idempotency_key=idempotency_key,
            session_id=session_id,
            organization_id=organization_id,
        )

    def due_reviews(
        self,
        user_id: str,
        *,
        today: Optional[date] = None,
        organization_id: str = "default",
        available_time_minutes: int = 20,
    ) -> Dict[str, Any]:
        """Read-only view of due items, a daily plan and the coming week's load."""

        day = today or local_today(db.get_gamification_config(organization_id).timezone)
        items = db.list_spaced_repetition_items(user_id)
        return {
            "today": day.isoformat(),
            "due": [item.model_dump(mode="json") for item in self.scheduler.get_due_reviews(items, day)],
            "plan": self.scheduler.suggest_daily_review_plan(items, day, available_time_minutes),
            "load": self.scheduler.review_load(items, day),
        }

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    def calculate_safety_culture_score(
        self,
        user_id: str,
        *,
        today: Optional[date] = None,
        session_id: Optional[str] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        def handler(ctx: EventContext) -> Dict[str, Any]:
            total_quests = len(ctx.store.list_quests(ctx.profile.organization_id))
            summary = safety_culture_score(ctx.profile, total_quests, ctx.today)
            ctx.profile.safety_culture_score = summary["overall"]
            return summary

        return self._run(
            "calculate_safety_culture_score",
            user_id,
            handler,
            today=today,
            idempotency_key=None,
            session_id=session_id,
            organization_id=organization_id,
        )

    def profile_summary(
        self,
        user_id: str,
        *,
        today: Optional[date] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        """Profile plus level progress and streak status. Never writes."""

        config = db.get_gamification_config(organization_id)
        day = today or local_today(config.timezone)
        profile = db.get_learner_profile(user_id) or LearnerProfile(user_id=user_id, organization_id=organization_id)
        return {
            "profile": profile.model_dump(mode="json"),
            "level": level_progress(profile.total_xp),
            "streak": streak_info(profile, day, streak_multiplier(profile.current_streak, config)),
        }

    def track_summary(self, user_id: str, track_id: str, *, organization_id: str = "default") -> Dict[str, Any]:
        """Quest counts for one track plus whether the learner may start it."""

        profile = db.get_learner_profile(user_id) or LearnerProfile(user_id=user_id, organization_id=organization_id)
        with db.session() as store:
            track = store.get_track(profile.organization_id, track_id)
            quests = store.list_quests(profile.organization_id, track_id)
            progress = store.list_quest_progress(user_id)
        if track is None and not quests:
            raise NotFoundError("track", track_id)
        summary = track_progress(track_id, quests, progress, track=track)
        locked_by = missing_track_prerequisites(track, profile.completed_track_ids)
        summary["unlocked"] = not locked_by
        summary["locked_by"] = locked_by
        summary["quests"] = [
            {
                "quest_id": quest.id,
                "status": progress[quest.id].status if quest.id in progress else "not_started",
                "unlocked": not locked_by and not missing_quest_prerequisites(quest, profile.completed_quest_ids),
            }
            for quest in quests
        ]
        return summary

    def scenario_history(self, user_id: str, scenario_id: Optional[str] = None, *, limit: int = 50) -> List[Dict[str, Any]]:
        """Scenario attempts, newest first."""

        return [attempt.model_dump(mode="json") for attempt in db.list_scenario_attempts(user_id, scenario_id, limit)]

    def readiness_history(
        self,
        user_id: str,
        *,
        days: int = 30,
        today: Optional[date] = None,
        organization_id: str = "default",
    ) -> Dict[str, Any]:
        """Today's check-in (or ``None``) and the check-ins of the last ``days`` days."""

        if days < 0:
            raise SubmissionValidationError("days must not be negative")
        profile = db.get_learner_profile(user_id)
        org = profile.organization_id if profile else organization_id
        day = today or local_today(db.get_gamification_config(org).timezone)
        history = db.list_readiness_check_ins(user_id, since=day - timedelta(days=days), limit=max(days, 1) + 1)
        current = next((check_in for check_in in history if check_in.date == day), None)
        return {
            "today": day.isoformat(),
            "today_check_in": current.model_dump(mode="json") if current else None,
            "history": [check_in.model_dump(mode="json") for check_in in history],
        }


__all__ = ["ProgressionEngine", "EventContext", "profile_snapshot"]
