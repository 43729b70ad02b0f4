# app.py: Muster training progression service v1.0.0
# - Every mutating endpoint is one progression event (single transaction)
# - Scores are recomputed server-side; client-side totals are ignored
# - "today" defaults to the organization's local date

import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Callable, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

import activity_log
import db
from engines.badges import default_badge_definitions
from engines.progression import ProgressionEngine
from engines.validation import FeatureDisabledError, NotFoundError, QuestLockedError, SubmissionValidationError
from env_validation import get_env_bool

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        db.init()
        if get_env_bool("SEED_DEFAULT_BADGES"):
            for badge in default_badge_definitions():
                db.upsert_badge_definition("default", badge)
            logger.info("Seeded default badge catalogue")
        logger.info("Progression store ready at %s", os.getenv("DB_PATH"))
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="Muster Progression", version="1.0.0", lifespan=_lifespan)

ENGINE = ProgressionEngine()


def _dispatch(operation: Callable[..., Dict[str, Any]], *args: Any, **kwargs: Any) -> Dict[str, Any]:
    """Run an engine call and translate its typed failures into HTTP errors."""
    try:
        return operation(*args, **kwargs)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except FeatureDisabledError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except QuestLockedError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except SubmissionValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except sqlite3.OperationalError as exc:
        logger.warning("Progress store unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Progress could not be saved, please try again.")


# ----------------------------- request bodies -----------------------------


class EventBody(BaseModel):
    user_id: str = Field(min_length=1)
    organization_id: str = "default"
    today: Optional[date] = None
    session_id: Optional[str] = None


class XPAwardBody(EventBody):
    amount: int
    source: str = "manual"
    idempotency_key: Optional[str] = None


class StreakBody(EventBody):
    idempotency_key: Optional[str] = None


class BadgeCheckBody(EventBody):
    idempotency_key: Optional[str] = None


class BadgeAwardBody(EventBody):
    badge_id: str = Field(min_length=1)
    idempotency_key: Optional[str] = None


class LessonCompleteBody(EventBody):
    quest_id: str = Field(min_length=1)
    lesson_id: str = Field(min_length=1)
    duration: Literal["short", "normal", "long"] = "normal"
    idempotency_key: Optional[str] = None


class QuizSubmitBody(EventBody):
    quest_id: str = Field(min_length=1)
    quiz_id: Optional[str] = None
    attempt_id: Optional[str] = None
    answers: Dict[str, Any] = Field(default_factory=dict)


class ScenarioSubmitBody(EventBody):
    scenario_id: str = Field(min_length=1)
    attempt_id: Optional[str] = None
    # Validated step by step in the engine so malformed steps get a typed error.
    path_taken: List[Dict[str, Any]] = Field(default_factory=list)


class ReadinessCheckInBody(EventBody):
    responses: Dict[str, Any] = Field(default_factory=dict)
    idempotency_key: Optional[str] = None


class SpacedRepetitionAddBody(EventBody):
    content_type: str = Field(min_length=1)
    content_id: str = Field(min_length=1)


class SpacedRepetitionReviewBody(EventBody):
    item_id: str = Field(min_length=1)
    quality: int
    idempotency_key: Optional[str] = None


# ------------------------------- endpoints --------------------------------


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/profile")
def profile(user_id: str, organization_id: str = "default", today: Optional[date] = None):
    return _dispatch(ENGINE.profile_summary, user_id, today=today, organization_id=organization_id)


@app.post("/xp/award")
def xp_award(body: XPAwardBody):
    return _dispatch(
        ENGINE.award_xp,
        body.user_id,
        body.amount,
        body.source,
        today=body.today,
        idempotency_key=body.idempotency_key,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.post("/streak/update")
def streak_update(body: StreakBody):
    return _dispatch(
        ENGINE.update_streak,
        body.user_id,
        today=body.today,
        idempotency_key=body.idempotency_key,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.post("/badges/check")
def badges_check(body: BadgeCheckBody):
    return _dispatch(
        ENGINE.check_and_award_badges,
        body.user_id,
        today=body.today,
        idempotency_key=body.idempotency_key,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.post("/badges/award")
def badges_award(body: BadgeAwardBody):
    return _dispatch(
        ENGINE.award_badge,
        body.user_id,
        body.badge_id,
        today=body.today,
        idempotency_key=body.idempotency_key,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.post("/lessons/complete")
def lessons_complete(body: LessonCompleteBody):
    return _dispatch(
        ENGINE.complete_lesson,
        body.user_id,
        body.quest_id,
        body.lesson_id,
        duration=body.duration,
        today=body.today,
        idempotency_key=body.idempotency_key,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.post("/quiz/submit")
def quiz_submit(body: QuizSubmitBody):
    return _dispatch(
        ENGINE.submit_quiz_attempt,
        body.user_id,
        body.quest_id,
        body.answers,
        quiz_id=body.quiz_id,
        attempt_id=body.attempt_id,
        today=body.today,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.post("/scenario/submit")
def scenario_submit(body: ScenarioSubmitBody):
    return _dispatch(
        ENGINE.submit_scenario_attempt,
        body.user_id,
        body.scenario_id,
        body.path_taken,
        attempt_id=body.attempt_id,
        today=body.today,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.post("/readiness/check-in")
def readiness_check_in(body: ReadinessCheckInBody):
    return _dispatch(
        ENGINE.submit_readiness_check_in,
        body.user_id,
        body.responses,
        today=body.today,
        idempotency_key=body.idempotency_key,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.get("/scenario/attempts")
def scenario_attempts(user_id: str, scenario_id: Optional[str] = None, limit: int = 50):
    limit = max(1, min(limit, 200))
    attempts = _dispatch(ENGINE.scenario_history, user_id, scenario_id, limit=limit)
    return {"user_id": user_id, "attempts": attempts}


@app.get("/readiness/history")
def readiness_history(
    user_id: str,
    days: int = 30,
    organization_id: str = "default",
    today: Optional[date] = None,
):
    return _dispatch(
        ENGINE.readiness_history,
        user_id,
        days=days,
        today=today,
        organization_id=organization_id,
    )


@app.get("/tracks/{track_id}/progress")
def track_progress(track_id: str, user_id: str, organization_id: str = "default"):
    return _dispatch(ENGINE.track_summary, user_id, track_id, organization_id=organization_id)


@app.post("/spaced-repetition/add")
def spaced_repetition_add(body: SpacedRepetitionAddBody):
    return _dispatch(
        ENGINE.add_spaced_repetition_item,
        body.user_id,
        body.content_type,
        body.content_id,
        today=body.today,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.get("/spaced-repetition/due")
def spaced_repetition_due(
    user_id: str,
    organization_id: str = "default",
    today: Optional[date] = None,
    available_minutes: int = 20,
):
    return _dispatch(
        ENGINE.due_reviews,
        user_id,
        today=today,
        organization_id=organization_id,
        available_time_minutes=available_minutes,
    )


@app.post("/spaced-repetition/review")
def spaced_repetition_review(body: SpacedRepetitionReviewBody):
    return _dispatch(
        ENGINE.review_spaced_repetition_item,
        body.user_id,
        body.item_id,
        body.quality,
        today=body.today,
        idempotency_key=body.idempotency_key,
        session_id=body.session_id,
        organization_id=body.organization_id,
    )


@app.get("/safety-culture")
def safety_culture(user_id: str, organization_id: str = "default", today: Optional[date] = None):
    return _dispatch(
        ENGINE.calculate_safety_culture_score,
        user_id,
        today=today,
        organization_id=organization_id,
    )


@app.get("/activity")
def activity(
    user_id: str,
    type: Optional[str] = None,
    limit: int = 100,
    audit: bool = False,
):
    if type and type not in activity_log.ACTIVITY_TYPES:
        raise HTTPException(status_code=422, detail=f"unknown activity type: {type}")
    limit = max(1, min(limit, 500))
    try:
        entries = activity_log.list_activity(user_id, activity_type=type, limit=limit)
    except sqlite3.OperationalError as exc:
        logger.warning("Activity log unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Activity log unavailable, please try again.")
    if audit:
        return {"user_id": user_id, "entries": activity_log.format_for_audit(entries)}
    return {"user_id": user_id, "entries": entries}
