"""SQLite-backed document store for learner progression state.

Every entity is kept as a JSON document keyed by its natural id, with a few
columns broken out for lookups and ordering. Multi-step workflows go
through :func:`transaction`, which holds a ``BEGIN IMMEDIATE`` write lock for
the whole triggering event.
"""

import json
import os
import sqlite3
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterable, Iterator, List, Optional

from db_pool import SQLiteConnectionPool
from engines.badges import default_badge_definitions
from engines.scenario import ScenarioGraph
from schemas import (
    BadgeDefinition,
    GamificationConfig,
    LearnerProfile,
    Quest,
    QuestProgress,
    Quiz,
    QuizAttempt,
    ReadinessCheckIn,
    Scenario,
    ScenarioAttempt,
    SpacedRepetitionItem,
    Track,
)

DB_PATH = os.getenv("DB_PATH", "data.db")

_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS learner_profiles (
    user_id          TEXT PRIMARY KEY,
    organization_id  TEXT NOT NULL DEFAULT 'default',
    doc              TEXT NOT NULL,
    created_at       TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at       TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS gamification_config (
    organization_id  TEXT PRIMARY KEY,
    doc              TEXT NOT NULL,
    updated_at       TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS badge_definitions (
    organization_id  TEXT NOT NULL,
    badge_id         TEXT NOT NULL,
    category         TEXT,
    doc              TEXT NOT NULL,
    PRIMARY KEY (organization_id, badge_id)
);

CREATE TABLE IF NOT EXISTS tracks (
    organization_id  TEXT NOT NULL,
    track_id         TEXT NOT NULL,
    doc              TEXT NOT NULL,
    PRIMARY KEY (organization_id, track_id)
);

CREATE TABLE IF NOT EXISTS quests (
    organization_id  TEXT NOT NULL,
    quest_id         TEXT NOT NULL,
    track_id         TEXT,
    doc              TEXT NOT NULL,
    PRIMARY KEY (organization_id, quest_id)
);
CREATE INDEX IF NOT EXISTS idx_quests_track ON quests(organization_id, track_id);

CREATE TABLE IF NOT EXISTS quizzes (
    organization_id  TEXT NOT NULL,
    quiz_id          TEXT NOT NULL,
    quest_id         TEXT,
    doc              TEXT NOT NULL,
    PRIMARY KEY (organization_id, quiz_id)
);

CREATE TABLE IF NOT EXISTS scenarios (
    organization_id  TEXT NOT NULL,
    scenario_id      TEXT NOT NULL,
    doc              TEXT NOT NULL,
    PRIMARY KEY (organization_id, scenario_id)
);

CREATE TABLE IF NOT EXISTS quest_progress (
    user_id     TEXT NOT NULL,
    quest_id    TEXT NOT NULL,
    status      TEXT NOT NULL,
    doc         TEXT NOT NULL,
    updated_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (user_id, quest_id)
);

CREATE TABLE IF NOT EXISTS quiz_attempts (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    attempt_id  TEXT NOT NULL,
    user_id     TEXT NOT NULL,
    quest_id    TEXT,
    quiz_id     TEXT NOT NULL,
    score       INTEGER NOT NULL,
    passed      INTEGER NOT NULL,
    doc         TEXT NOT NULL,
    created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_quiz_attempts_attempt ON quiz_attempts(user_id, attempt_id);
CREATE INDEX IF NOT EXISTS idx_quiz_attempts_user ON quiz_attempts(user_id, quest_id);

CREATE TABLE IF NOT EXISTS scenario_attempts (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    attempt_id        TEXT NOT NULL,
    user_id           TEXT NOT NULL,
    scenario_id       TEXT NOT NULL,
    score_percentage  INTEGER NOT NULL,
    doc               TEXT NOT NULL,
    created_at        TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_scenario_attempts_attempt ON scenario_attempts(user_id, attempt_id);
CREATE INDEX IF NOT EXISTS idx_scenario_attempts_user ON scenario_attempts(user_id, scenario_id);

CREATE TABLE IF NOT EXISTS readiness_check_ins (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    check_in_id    TEXT NOT NULL UNIQUE,
    user_id        TEXT NOT NULL,
    check_in_date  TEXT NOT NULL,
    overall_score  INTEGER NOT NULL,
    doc            TEXT NOT NULL,
    created_at     TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_readiness_user_date ON readiness_check_ins(user_id, check_in_date);

CREATE TABLE IF NOT EXISTS spaced_repetition_items (
    user_id           TEXT NOT NULL,
    item_id           TEXT NOT NULL,
    content_type      TEXT NOT NULL,
    content_id        TEXT NOT NULL,
    next_review_date  TEXT NOT NULL,
    doc               TEXT NOT NULL,
    PRIMARY KEY (user_id, item_id),
    UNIQUE (user_id, content_type, content_id)
);
CREATE INDEX IF NOT EXISTS idx_sr_due ON spaced_repetition_items(user_id, next_review_date);

CREATE TABLE IF NOT EXISTS processed_events (
    user_id          TEXT NOT NULL,
    idempotency_key  TEXT NOT NULL,
    operation        TEXT NOT NULL,
    result           TEXT NOT NULL,
    created_at       TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (user_id, idempotency_key)
);

CREATE TABLE IF NOT EXISTS activity_log (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id        TEXT NOT NULL,
    activity_type  TEXT NOT NULL,
    details        TEXT,
    session_id     TEXT,
    created_at     TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_activity_user ON activity_log(user_id, created_at);
"""


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        return con.execute(sql, tuple(params))


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        return con.execute(sql, tuple(params)).fetchall()


def init() -> None:
    with _pool.get_connection() as con:
        con.executescript(_SCHEMA)


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)


# -------------- transactional session --------------


class StoreSession:
    """Reads and writes bound to one connection (and so to one transaction)."""

    def __init__(self, con: sqlite3.Connection):
        self.con = con

    def _one(self, sql: str, params: Iterable = ()) -> Optional[sqlite3.Row]:
        return self.con.execute(sql, tuple(params)).fetchone()

    def _all(self, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
        return self.con.execute(sql, tuple(params)).fetchall()

    # ----- learner profile -----
    def get_profile(self, user_id: str, organization_id: str = "default") -> LearnerProfile:
        """Load the profile, creating a zeroed one on first access."""
        row = self._one("SELECT doc FROM learner_profiles WHERE user_id = ?", (user_id,))
        if row is not None:
            return LearnerProfile.model_validate_json(row["doc"])
        profile = LearnerProfile(user_id=user_id, organization_id=organization_id)
        self.save_profile(profile)
        return profile

    def save_profile(self, profile: LearnerProfile) -> None:
        self.con.execute(
            """
            INSERT INTO learner_profiles (user_id, organization_id, doc, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(user_id) DO UPDATE SET
                organization_id = excluded.organization_id,
                doc = excluded.doc,
                updated_at = CURRENT_TIMESTAMP
            """,
            (profile.user_id, profile.organization_id, profile.model_dump_json()),
        )

    # ----- organization content -----
    def get_config(self, organization_id: str) -> GamificationConfig:
        row = self._one(
            "SELECT doc FROM gamification_config WHERE organization_id = ?", (organization_id,)
        )
        if row is None:
            return GamificationConfig(timezone=os.getenv("PROGRESSION_TIMEZONE", "UTC"))
        return GamificationConfig.model_validate_json(row["doc"])

    def list_badge_definitions(self, organization_id: str) -> List[BadgeDefinition]:
        rows = self._all(
            "SELECT doc FROM badge_definitions WHERE organization_id = ? ORDER BY category, badge_id",
            (organization_id,),
        )
        if not rows:
            return default_badge_definitions()
        return [BadgeDefinition.model_validate_json(row["doc"]) for row in rows]

    def get_quest(self, organization_id: str, quest_id: str) -> Optional[Quest]:
        row = self._one(
            "SELECT doc FROM quests WHERE organization_id = ? AND quest_id = ?",
            (organization_id, quest_id),
        )
        return Quest.model_validate_json(row["doc"]) if row else None

    def list_quests(self, organization_id: str, track_id: Optional[str] = None) -> List[Quest]:
        if track_id is None:
            rows = self._all("SELECT doc FROM quests WHERE organization_id = ?", (organization_id,))
        else:
            rows = self._all(
                "SELECT doc FROM quests WHERE organization_id = ? AND track_id = ?",
                (organization_id, track_id),
            )
        return [Quest.model_validate_json(row["doc"]) for row in rows]

    def get_track(self, organization_id: str, track_id: str) -> Optional[Track]:
        row = self._one(
            "SELECT doc FROM tracks WHERE organization_id = ? AND track_id = ?",
            (organization_id, track_id),
        )
        return Track.model_validate_json(row["doc"]) if row else None

    def get_quiz(self, organization_id: str, quiz_id: str) -> Optional[Quiz]:
        row = self._one(
            "SELECT doc FROM quizzes WHERE organization_id = ? AND quiz_id = ?",
            (organization_id, quiz_id),
        )
        return Quiz.model_validate_json(row["doc"]) if row else None

    def get_scenario(self, organization_id: str, scenario_id: str) -> Optional[Scenario]:
        row = self._one(
            "SELECT doc FROM scenarios WHERE organization_id = ? AND scenario_id = ?",
            (organization_id, scenario_id),
        )
        return Scenario.model_validate_json(row["doc"]) if row else None

    # ----- learner history -----
    def get_quest_progress(self, user_id: str, quest_id: str) -> Optional[QuestProgress]:
        row = self._one(
            "SELECT doc FROM quest_progress WHERE user_id = ? AND quest_id = ?",
            (user_id, quest_id),
        )
        return QuestProgress.model_validate_json(row["doc"]) if row else None

    def list_quest_progress(self, user_id: str) -> Dict[str, QuestProgress]:
        rows = self._all("SELECT doc FROM quest_progress WHERE user_id = ?", (user_id,))
        progress = (QuestProgress.model_validate_json(row["doc"]) for row in rows)
        return {item.quest_id: item for item in progress}

    def save_quest_progress(self, user_id: str, progress: QuestProgress) -> None:
        self.con.execute(
            """
            INSERT INTO quest_progress (user_id, quest_id, status, doc, updated_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(user_id, quest_id) DO UPDATE SET
                status = excluded.status,
                doc = excluded.doc,
                updated_at = CURRENT_TIMESTAMP
            """,
            (user_id, progress.quest_id, progress.status, progress.model_dump_json()),
        )

    def append_quiz_attempt(self, user_id: str, quest_id: Optional[str], attempt: QuizAttempt) -> None:
        self.con.execute(
            """
            INSERT INTO quiz_attempts (attempt_id, user_id, quest_id, quiz_id, score, passed, doc)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                attempt.attempt_id,
                user_id,
                quest_id,
                attempt.quiz_id,
                attempt.score,
                1 if attempt.passed else 0,
                attempt.model_dump_json(),
            ),
        )

    def append_scenario_attempt(self, user_id: str, attempt: ScenarioAttempt) -> None:
        self.con.execute(
            """
            INSERT INTO scenario_attempts (attempt_id, user_id, scenario_id, score_percentage, doc)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                attempt.attempt_id,
                user_id,
                attempt.scenario_id,
                attempt.score_percentage,
                attempt.model_dump_json(),
            ),
        )

    def append_readiness_check_in(self, user_id: str, check_in: ReadinessCheckIn) -> None:
        self.con.execute(
            """
            INSERT INTO readiness_check_ins (check_in_id, user_id, check_in_date, overall_score, doc)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                check_in.check_in_id,
                user_id,
                check_in.date.isoformat(),
                check_in.overall_score,
                check_in.model_dump_json(),
            ),
        )

    # ----- spaced repetition -----
    def get_sr_item(self, user_id: str, item_id: str) -> Optional[SpacedRepetitionItem]:
        row = self._one(
            "SELECT doc FROM spaced_repetition_items WHERE user_id = ? AND item_id = ?",
            (user_id, item_id),
        )
        return SpacedRepetitionItem.model_validate_json(row["doc"]) if row else None

    def find_sr_item(self, user_id: str, content_type: str, content_id: str) -> Optional[SpacedRepetitionItem]:
        row = self._one(
            """
            SELECT doc FROM spaced_repetition_items
            WHERE user_id = ? AND content_type = ? AND content_id = ?
            """,
            (user_id, content_type, content_id),
        )
        return SpacedRepetitionItem.model_validate_json(row["doc"]) if row else None

    def save_sr_item(self, user_id: str, item: SpacedRepetitionItem) -> None:
        self.con.execute(
            """
            INSERT INTO spaced_repetition_items
                (user_id, item_id, content_type, content_id, next_review_date, doc)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id, item_id) DO UPDATE SET
                next_review_date = excluded.next_review_date,
                doc = excluded.doc
            """,
            (
                user_id,
                item.id,
                item.content_type,
                item.content_id,
                item.next_review_date.isoformat(),
                item.model_dump_json(),
            ),
        )

    # ----- idempotency ledger -----
    def get_processed_event(self, user_id: str, key: str) -> Optional[Dict[str, Any]]:
        row = self._one(
            "SELECT operation, result FROM processed_events WHERE user_id = ? AND idempotency_key = ?",
            (user_id, key),
        )
        if row is None:
            return None
        return {"operation": row["operation"], "result": json.loads(row["result"])}

    def record_processed_event(self, user_id: str, key: str, operation: str, result: Dict[str, Any]) -> None:
        self.con.execute(
            """
            INSERT INTO processed_events (user_id, idempotency_key, operation, result)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, key, operation, json_dumps(result)),
        )


@contextmanager
def transaction() -> Iterator[StoreSession]:
    """One serializable write transaction; rolled back if the body raises."""
    with _pool.get_connection() as con:
        con.execute("BEGIN IMMEDIATE")
        try:
            yield StoreSession(con)
        except BaseException:
            con.rollback()
            raise
        con.execute("COMMIT")


@contextmanager
def session() -> Iterator[StoreSession]:
    """Autocommit session for reads and single-statement writes."""
    with _pool.get_connection() as con:
        yield StoreSession(con)


# -------------- content administration --------------


def upsert_gamification_config(organization_id: str, config: GamificationConfig) -> None:
    _exec(
        """
        INSERT INTO gamification_config (organization_id, doc, updated_at)
        VALUES (?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(organization_id) DO UPDATE SET
            doc = excluded.doc,
            updated_at = CURRENT_TIMESTAMP
        """,
        (organization_id, config.model_dump_json()),
    )


def get_gamification_config(organization_id: str) -> GamificationConfig:
    with session() as store:
        return store.get_config(organization_id)


def upsert_badge_definition(organization_id: str, badge: BadgeDefinition) -> None:
    _exec(
        """
        INSERT INTO badge_definitions (organization_id, badge_id, category, doc)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(organization_id, badge_id) DO UPDATE SET
            category = excluded.category,
            doc = excluded.doc
        """,
        (organization_id, badge.id, badge.category, badge.model_dump_json()),
    )


def upsert_track(organization_id: str, track: Track) -> None:
    _exec(
        """
        INSERT INTO tracks (organization_id, track_id, doc)
        VALUES (?, ?, ?)
        ON CONFLICT(organization_id, track_id) DO UPDATE SET
            doc = excluded.doc
        """,
        (organization_id, track.id, track.model_dump_json()),
    )


def upsert_quest(organization_id: str, quest: Quest) -> None:
    _exec(
        """
        INSERT INTO quests (organization_id, quest_id, track_id, doc)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(organization_id, quest_id) DO UPDATE SET
            track_id = excluded.track_id,
            doc = excluded.doc
        """,
        (organization_id, quest.id, quest.track_id, quest.model_dump_json()),
    )


def upsert_quiz(organization_id: str, quiz: Quiz) -> None:
    _exec(
        """
        INSERT INTO quizzes (organization_id, quiz_id, quest_id, doc)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(organization_id, quiz_id) DO UPDATE SET
            quest_id = excluded.quest_id,
            doc = excluded.doc
        """,
        (organization_id, quiz.id, quiz.quest_id, quiz.model_dump_json()),
    )


def upsert_scenario(organization_id: str, scenario: Scenario) -> None:
    """Store a scenario after checking its graph is well formed."""
    ScenarioGraph(scenario).validate()
    _exec(
        """
        INSERT INTO scenarios (organization_id, scenario_id, doc)
        VALUES (?, ?, ?)
        ON CONFLICT(organization_id, scenario_id) DO UPDATE SET
            doc = excluded.doc
        """,
        (organization_id, scenario.id, scenario.model_dump_json()),
    )


# -------------- read helpers --------------


def get_learner_profile(user_id: str) -> Optional[LearnerProfile]:
    rows = _query("SELECT doc FROM learner_profiles WHERE user_id = ?", (user_id,))
    if not rows:
        return None
    return LearnerProfile.model_validate_json(rows[0]["doc"])


def get_quest_progress(user_id: str, quest_id: str) -> Optional[QuestProgress]:
    with session() as store:
        return store.get_quest_progress(user_id, quest_id)


def list_quiz_attempts(user_id: str, quest_id: Optional[str] = None, limit: int = 50) -> List[QuizAttempt]:
    if quest_id is None:
        rows = _query(
            "SELECT doc FROM quiz_attempts WHERE user_id = ? ORDER BY id LIMIT ?",
            (user_id, int(limit)),
        )
    else:
        rows = _query(
            "SELECT doc FROM quiz_attempts WHERE user_id = ? AND quest_id = ? ORDER BY id LIMIT ?",
            (user_id, quest_id, int(limit)),
        )
    return [QuizAttempt.model_validate_json(row["doc"]) for row in rows]


def list_scenario_attempts(user_id: str, scenario_id: Optional[str] = None, limit: int = 50) -> List[ScenarioAttempt]:
    if scenario_id is None:
        rows = _query(
            "SELECT doc FROM scenario_attempts WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, int(limit)),
        )
    else:
        rows = _query(
            """
            SELECT doc FROM scenario_attempts
            WHERE user_id = ? AND scenario_id = ?
            ORDER BY id DESC LIMIT ?
            """,
            (user_id, scenario_id, int(limit)),
        )
    return [ScenarioAttempt.model_validate_json(row["doc"]) for row in rows]


def list_readiness_check_ins(
    user_id: str,
    since: Optional[date] = None,
    limit: int = 30,
) -> List[ReadinessCheckIn]:
    """Newest first; ``since`` keeps check-ins dated on or after that day."""
    if since is None:
        rows = _query(
            "SELECT doc FROM readiness_check_ins WHERE user_id = ? ORDER BY check_in_date DESC, id DESC LIMIT ?",
            (user_id, int(limit)),
        )
    else:
        rows = _query(
            """
            SELECT doc FROM readiness_check_ins
            WHERE user_id = ? AND check_in_date >= ?
            ORDER BY check_in_date DESC, id DESC LIMIT ?
            """,
            (user_id, since.isoformat(), int(limit)),
        )
    return [ReadinessCheckIn.model_validate_json(row["doc"]) for row in rows]


def list_spaced_repetition_items(user_id: str) -> List[SpacedRepetitionItem]:
    rows = _query(
        "SELECT doc FROM spaced_repetition_items WHERE user_id = ? ORDER BY next_review_date, item_id",
        (user_id,),
    )
    return [SpacedRepetitionItem.model_validate_json(row["doc"]) for row in rows]


# -------------- activity log --------------


def insert_activity(
    user_id: str,
    activity_type: str,
    details: Dict[str, Any],
    session_id: Optional[str] = None,
) -> int:
    cur = _exec(
        "INSERT INTO activity_log (user_id, activity_type, details, session_id) VALUES (?, ?, ?, ?)",
        (user_id, activity_type, json_dumps(details), session_id),
    )
    return int(cur.lastrowid)


def list_activity(
    user_id: str,
    activity_type: Optional[str] = None,
    limit: int = 100,
) -> list[Dict[str, Any]]:
    if activity_type:
        rows = _query(
            """
            SELECT id, activity_type, details, session_id, created_at FROM activity_log
            WHERE user_id = ? AND activity_type = ?
            ORDER BY id DESC LIMIT ?
            """,
            (user_id, activity_type, int(limit)),
        )
    else:
        rows = _query(
            """
            SELECT id, activity_type, details, session_id, created_at FROM activity_log
            WHERE user_id = ?
            ORDER BY id DESC LIMIT ?
            """,
            (user_id, int(limit)),
        )
    entries = []
    for row in rows:
        try:
            details = json.loads(row["details"]) if row["details"] else {}
        except json.JSONDecodeError:
            details = {}
        entries.append(
            {
                "id": row["id"],
                "type": row["activity_type"],
                "details": details,
                "session_id": row["session_id"],
                "created_at": row["created_at"],
            }
        )
    return entries
