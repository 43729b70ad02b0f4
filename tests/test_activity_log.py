import threading

import pytest

import activity_log
import db


@pytest.mark.usefixtures("temp_db")
def test_record_persists_entry(monkeypatch):
    monkeypatch.delenv("LRS_URL", raising=False)

    entry_id = activity_log.record(
        "alice", "quiz_attempt", {"quiz_id": "quiz-1", "score": 90, "passed": True}, session_id="s-1"
    )

    assert entry_id is not None
    entries = db.list_activity("alice")
    assert len(entries) == 1
    assert entries[0]["type"] == "quiz_attempt"
    assert entries[0]["details"]["score"] == 90
    assert entries[0]["session_id"] == "s-1"


@pytest.mark.usefixtures("temp_db")
def test_unknown_type_is_dropped(monkeypatch):
    monkeypatch.delenv("LRS_URL", raising=False)

    assert activity_log.record("alice", "teleported", {}) is None
    assert db.list_activity("alice") == []


@pytest.mark.usefixtures("temp_db")
def test_record_forwards_to_lrs(monkeypatch):
    event = threading.Event()
    calls = []

    async def fake_forward(statement, *, lrs_url, headers, timeout=5.0, max_attempts=3):
        calls.append((lrs_url, statement, headers))
        event.set()

    monkeypatch.setattr(activity_log, "_forward_statement_with_retry", fake_forward)
    monkeypatch.setenv("LRS_URL", "https://lrs.example.com/xapi")
    monkeypatch.setenv("LRS_AUTH", "Basic abc")

    activity_log.record("alice", "scenario_complete", {"scenario_id": "flyaway", "score_percentage": 80})

    event.wait(0.5)
    assert calls
    url, statement, headers = calls[0]
    assert url == "https://lrs.example.com/xapi"
    assert headers["Authorization"] == "Basic abc"
    assert statement["verb"]["id"].endswith("experienced")
    assert statement["object"]["id"] == "activity:scenario_complete/flyaway"
    assert statement["result"]["score"]["raw"] == pytest.approx(80.0)


def test_build_statement_rejects_unknown_type():
    with pytest.raises(ValueError):
        activity_log.build_statement("alice", "teleported", {})


def test_statement_carries_pass_outcome():
    statement = activity_log.build_statement(
        "alice", "quiz_attempt", {"quiz_id": "quiz-1", "score": 60, "passed": False}
    )
    assert statement["result"] == {"score": {"raw": 60.0}, "success": False}
    assert statement["actor"]["account"]["name"] == "alice"


def test_format_for_audit():
    entries = [
        {
            "type": "badge_earned",
            "details": {"badge_id": "perfect_quiz", "badge_name": "Perfect Score", "xp_earned": 50},
            "session_id": None,
            "created_at": "2025-03-10 09:30:00",
        },
        {
            "type": "lesson_complete",
            "details": {"quest_id": "airspace", "lesson_id": "l-1"},
            "session_id": "s-2",
            "created_at": "2025-03-10 09:00:00",
        },
    ]

    formatted = activity_log.format_for_audit(entries)

    assert formatted[0] == {
        "date": "2025-03-10 09:30:00",
        "type": "Badge Earned",
        "summary": "Earned badge Perfect Score (+50 XP)",
        "session_id": None,
    }
    assert formatted[1]["summary"] == "Completed lesson l-1 in quest airspace"
