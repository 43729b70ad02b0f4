"""Best-effort audit trail of learner activity with optional LRS forwarding.

Entries are written to the local ``activity_log`` table after the event that
produced them has committed. When ``LRS_URL`` is configured each entry is
also sent to an external Learning Record Store as an xAPI statement, on a
background thread with retry/backoff. Nothing in here may fail the caller:
errors are logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import requests

import db

LOGGER = logging.getLogger("muster.activity")

ACTIVITY_TYPES: dict[str, dict[str, str]] = {
    "lesson_complete": {
        "label": "Lesson Completed",
        "verb": "http://adlnet.gov/expapi/verbs/completed",
    },
    "quiz_attempt": {
        "label": "Quiz Attempted",
        "verb": "http://adlnet.gov/expapi/verbs/answered",
    },
    "quest_complete": {
        "label": "Quest Completed",
        "verb": "http://adlnet.gov/expapi/verbs/completed",
    },
    "scenario_complete": {
        "label": "Scenario Completed",
        "verb": "http://adlnet.gov/expapi/verbs/experienced",
    },
    "readiness_checkin": {
        "label": "Readiness Check-in",
        "verb": "http://adlnet.gov/expapi/verbs/attempted",
    },
    "badge_earned": {
        "label": "Badge Earned",
        "verb": "http://adlnet.gov/expapi/verbs/earned",
    },
    "xp_earned": {
        "label": "XP Earned",
        "verb": "http://adlnet.gov/expapi/verbs/progressed",
    },
    "spaced_repetition_review": {
        "label": "Review Completed",
        "verb": "http://adlnet.gov/expapi/verbs/interacted",
    },
}

_OBJECT_KEYS = ("quest_id", "quiz_id", "scenario_id", "badge_id", "lesson_id", "item_id", "check_in_id")


def _object_id(activity_type: str, details: Dict[str, Any]) -> str:
    for key in _OBJECT_KEYS:
        value = details.get(key)
        if value:
            return f"activity:{activity_type}/{value}"
    return f"activity:{activity_type}"


def build_statement(user_id: str, activity_type: str, details: Dict[str, Any]) -> Dict[str, Any]:
    """Translate an activity entry into an xAPI statement."""

    known = ACTIVITY_TYPES.get(activity_type)
    if known is None:
        raise ValueError(f"Unknown activity type: {activity_type}")

    statement: Dict[str, Any] = {
        "actor": {
            "account": {
                "homePage": os.getenv("APP_BASE_URL", "https://local.training"),
                "name": user_id,
            }
        },
        "verb": {"id": known["verb"], "display": {"en": known["label"]}},
        "object": {"id": _object_id(activity_type, details)},
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "context": {"extensions": {"activity_type": activity_type, "details": details}},
    }

    score = details.get("score_percentage", details.get("score", details.get("overall_score")))
    if isinstance(score, (int, float)) and not isinstance(score, bool):
        result: Dict[str, Any] = {"score": {"raw": float(score)}}
        if isinstance(details.get("passed"), bool):
            result["success"] = details["passed"]
        statement["result"] = result
    return statement


async def _forward_statement_with_retry(
    statement: Dict[str, Any],
    *,
    lrs_url: str,
    headers: Dict[str, str],
    timeout: float = 5.0,
    max_attempts: int = 3,
) -> None:
    """Forward a statement to the configured LRS with exponential backoff."""

    delay = 0.5
    for attempt in range(1, max_attempts + 1):
        try:
            response = await asyncio.to_thread(
                requests.post,
                lrs_url,
                json=statement,
                headers=headers,
                timeout=timeout,
            )
            if response.status_code < 500:
                return
            LOGGER.warning("LRS responded with status %s on attempt %s", response.status_code, attempt)
        except requests.RequestException as exc:
            LOGGER.warning("Failed to forward activity statement (attempt %s): %s", attempt, exc)
        if attempt == max_attempts:
            break
        await asyncio.sleep(delay)
        delay *= 2


def _schedule_forward(statement: Dict[str, Any], *, lrs_url: str, headers: Dict[str, str]) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    coro = _forward_statement_with_retry(statement, lrs_url=lrs_url, headers=headers)

    if loop and loop.is_running():
        loop.create_task(coro)
    else:
        threading.Thread(target=lambda: asyncio.run(coro), daemon=True).start()


def _lrs_headers() -> Dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "X-Experience-API-Version": "1.0.3",
    }
    auth = os.getenv("LRS_AUTH")
    if auth:
        headers["Authorization"] = auth
    return headers


def record(
    user_id: str,
    activity_type: str,
    details: Optional[Dict[str, Any]] = None,
    *,
    session_id: Optional[str] = None,
) -> Optional[int]:
    """Write one activity entry; returns its row id, or ``None`` if it was dropped."""

    details = dict(details or {})
    if activity_type not in ACTIVITY_TYPES:
        LOGGER.warning("Dropping activity with unknown type %r for %s", activity_type, user_id)
        return None

    try:
        entry_id = db.insert_activity(user_id, activity_type, details, session_id=session_id)
    except sqlite3.Error as exc:
        LOGGER.warning("Failed to record %s activity for %s: %s", activity_type, user_id, exc)
        return None

    lrs_url = os.getenv("LRS_URL")
    if lrs_url:
        try:
            statement = build_statement(user_id, activity_type, details)
            _schedule_forward(statement, lrs_url=lrs_url, headers=_lrs_headers())
        except (RuntimeError, ValueError, TypeError) as exc:
            LOGGER.warning("Could not schedule LRS forwarding for %s: %s", activity_type, exc)
    return entry_id


def _describe(activity_type: str, details: Dict[str, Any]) -> str:
    xp = details.get("xp_earned")
    xp_text = f" (+{xp} XP)" if xp else ""
    if activity_type == "lesson_complete":
        return f"Completed lesson {details.get('lesson_id')} in quest {details.get('quest_id')}{xp_text}"
    if activity_type == "quiz_attempt":
        outcome = "passed" if details.get("passed") else "did not pass"
        return f"Scored {details.get('score')}% on quiz {details.get('quiz_id')}, {outcome}{xp_text}"
    if activity_type == "quest_complete":
        return f"Completed quest {details.get('quest_name') or details.get('quest_id')}{xp_text}"
    if activity_type == "scenario_complete":
        title = details.get("scenario_title") or details.get("scenario_id")
        return f"Completed scenario {title} with {details.get('score_percentage')}%{xp_text}"
    if activity_type == "readiness_checkin":
        return f"Readiness check-in scored {details.get('overall_score')}{xp_text}"
    if activity_type == "badge_earned":
        return f"Earned badge {details.get('badge_name') or details.get('badge_id')}{xp_text}"
    if activity_type == "spaced_repetition_review":
        return f"Reviewed {details.get('content_type')} {details.get('content_id')} (quality {details.get('quality')})"
    if activity_type == "xp_earned":
        return f"Earned {xp} XP from {details.get('source')}"
    return activity_type


def format_for_audit(entries: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Render activity rows as labelled one-liners for COR/SECOR audit summaries."""

    formatted = []
    for entry in entries:
        activity_type = entry.get("type", "")
        details = entry.get("details") or {}
        label = ACTIVITY_TYPES.get(activity_type, {}).get("label", activity_type)
        formatted.append(
            {
                "date": entry.get("created_at"),
                "type": label,
                "summary": _describe(activity_type, details),
                "session_id": entry.get("session_id"),
            }
        )
    return formatted


def list_activity(user_id: str, activity_type: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
    return db.list_activity(user_id, activity_type=activity_type, limit=limit)


__all__ = ["ACTIVITY_TYPES", "build_statement", "record", "format_for_audit", "list_activity"]
