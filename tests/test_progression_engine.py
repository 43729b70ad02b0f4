import importlib
import os
import tempfile
import unittest
from datetime import date, timedelta

from engines.base import local_today
from engines.validation import FeatureDisabledError, NotFoundError, QuestLockedError, SubmissionValidationError
from schemas import (
    BadgeCriteria,
    BadgeDefinition,
    GamificationConfig,
    Quest,
    Quiz,
    QuizQuestion,
    Scenario,
    ScenarioDecision,
    ScenarioNode,
    Track,
)

DAY = date(2025, 3, 10)

PERFECT_ANSWERS = {"q1": "b", "q2": True, "q3": ["preflight", "launch", "land"], "q4": "vlos"}


class ProgressionEngineTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self._prev_db_path = os.environ.get("DB_PATH")
        os.environ["DB_PATH"] = os.path.join(self._tmpdir.name, "test.db")

        import db  # noqa: F401

        self.db = importlib.reload(db)
        self.db.init()

        from engines.progression import ProgressionEngine

        self.activities = []
        self.engine = ProgressionEngine(recorder=self._record)
        self._seed_content()

    def tearDown(self):
        if self._prev_db_path is None:
            os.environ.pop("DB_PATH", None)
        else:
            os.environ["DB_PATH"] = self._prev_db_path

        self.db._pool.close_all()

        import db  # noqa: F401

        importlib.reload(db)
        self._tmpdir.cleanup()

    def _record(self, user_id, activity_type, details, session_id=None):
        self.activities.append((user_id, activity_type, details, session_id))

    def _seed_content(self):
        self.db.upsert_quest(
            "default",
            Quest(
                id="quest-airspace",
                track_id="track-basics",
                name="Airspace Basics",
                lesson_ids=["lesson-1"],
                quiz_id="quiz-airspace",
            ),
        )
        self.db.upsert_quiz(
            "default",
            Quiz(
                id="quiz-airspace",
                quest_id="quest-airspace",
                passing_score=80,
                questions=[
                    QuizQuestion(id="q1", correct_answer="b"),
                    QuizQuestion(id="q2", type="true_false", correct_answer=True),
                    QuizQuestion(id="q3", type="ordering", correct_answer=["preflight", "launch", "land"]),
                    QuizQuestion(id="q4", correct_answer="vlos"),
                ],
            ),
        )
        self.db.upsert_scenario(
            "default",
            Scenario(
                id="flyaway",
                title="Fly-away",
                max_score=40,
                nodes=[
                    ScenarioNode(
                        id="start",
                        decisions=[
                            ScenarioDecision(id="rth", next_node_id="next", score_impact=20, is_optimal=True),
                            ScenarioDecision(id="chase", next_node_id="next", score_impact=-10),
                        ],
                    ),
                    ScenarioNode(
                        id="next",
                        decisions=[
                            ScenarioDecision(id="notify", next_node_id="end", score_impact=20, is_optimal=True),
                        ],
                    ),
                    ScenarioNode(id="end", type="ending"),
                ],
            ),
        )
        for badge in (
            BadgeDefinition(
                id="perfect",
                category="achievement",
                criteria=BadgeCriteria(type="perfect_quiz"),
                xp_bonus=50,
            ),
            BadgeDefinition(
                id="track",
                category="achievement",
                criteria=BadgeCriteria(type="track_complete", target_id="track-basics"),
            ),
            BadgeDefinition(
                id="optimal",
                category="scenario",
                criteria=BadgeCriteria(type="scenario_score", threshold=100),
                xp_bonus=25,
            ),
        ):
            self.db.upsert_badge_definition("default", badge)

    def _types(self):
        return [activity_type for _, activity_type, _, _ in self.activities]

    def test_lesson_then_quiz_completes_quest_and_track(self):
        lesson = self.engine.complete_lesson("alice", "quest-airspace", "lesson-1", today=DAY)
        self.assertTrue(lesson["completed"])
        self.assertEqual(lesson["xp_earned"], 25)
        self.assertFalse(lesson["quest_completed"])
        self.assertEqual(lesson["streak"]["streak"], 1)

        result = self.engine.submit_quiz_attempt(
            "alice", "quest-airspace", PERFECT_ANSWERS, attempt_id="att-1", today=DAY
        )

        self.assertEqual(result["score"], 100)
        self.assertTrue(result["is_perfect"])
        # first-try rate: 4 * 15 + perfect bonus 50
        self.assertEqual(result["xp_earned"], 110)
        self.assertTrue(result["quest_completed"])
        self.assertEqual(result["track_completed"], "track-basics")
        self.assertEqual(set(result["badges_earned"]), {"perfect", "track"})
        self.assertFalse(result["replayed"])

        profile = self.db.get_learner_profile("alice")
        self.assertEqual(profile.total_xp, 25 + 110 + 100 + 50)
        self.assertEqual(profile.level, 3)
        self.assertEqual(profile.today_xp, 285)
        self.assertEqual(profile.completed_quest_ids, ["quest-airspace"])
        self.assertEqual(profile.completed_track_ids, ["track-basics"])
        self.assertEqual(profile.total_questions_answered, 4)
        self.assertEqual(profile.average_quiz_score, 100)

        progress = self.db.get_quest_progress("alice", "quest-airspace")
        self.assertEqual(progress.status, "completed")
        self.assertEqual(progress.best_quiz_score, 100)
        self.assertEqual(len(progress.quiz_attempts), 1)

        self.assertEqual(
            sorted(self._types()),
            sorted(["lesson_complete", "quest_complete", "quiz_attempt", "badge_earned", "badge_earned"]),
        )

    def test_failed_quiz_leaves_quest_open(self):
        self.engine.complete_lesson("alice", "quest-airspace", "lesson-1", today=DAY)
        answers = dict(PERFECT_ANSWERS, q4="bvlos")
        result = self.engine.submit_quiz_attempt("alice", "quest-airspace", answers, attempt_id="att-1", today=DAY)

        self.assertEqual(result["score"], 75)
        self.assertFalse(result["passed"])
        self.assertFalse(result["quest_completed"])
        self.assertEqual(self.db.get_quest_progress("alice", "quest-airspace").status, "in_progress")

    def test_replayed_quiz_attempt_changes_nothing(self):
        first = self.engine.submit_quiz_attempt(
            "alice", "quest-airspace", PERFECT_ANSWERS, attempt_id="att-1", today=DAY
        )
        total_after_first = self.db.get_learner_profile("alice").total_xp
        emitted = len(self.activities)

        second = self.engine.submit_quiz_attempt(
            "alice", "quest-airspace", {"q1": "wrong"}, attempt_id="att-1", today=DAY
        )

        self.assertTrue(second["replayed"])
        self.assertEqual(second["score"], first["score"])
        self.assertEqual(second["xp_earned"], first["xp_earned"])
        self.assertEqual(self.db.get_learner_profile("alice").total_xp, total_after_first)
        self.assertEqual(len(self.db.list_quiz_attempts("alice")), 1)
        self.assertEqual(len(self.activities), emitted)

    def test_unknown_content_raises_without_partial_state(self):
        with self.assertRaises(NotFoundError):
            self.engine.submit_scenario_attempt("bob", "missing", [], today=DAY)
        with self.assertRaises(NotFoundError):
            self.engine.submit_quiz_attempt("bob", "missing-quest", {}, today=DAY)
        with self.assertRaises(NotFoundError):
            self.engine.complete_lesson("bob", "quest-airspace", "lesson-99", today=DAY)

        self.assertIsNone(self.db.get_learner_profile("bob"))
        self.assertEqual(self.activities, [])

    def test_malformed_path_step_is_rejected(self):
        with self.assertRaises(SubmissionValidationError):
            self.engine.submit_scenario_attempt("bob", "flyaway", [{"node_id": "start"}], today=DAY)
        self.assertIsNone(self.db.get_learner_profile("bob"))

    def test_scenario_score_is_recomputed_from_path(self):
        path = [
            {"node_id": "start", "decision_id": "rth", "score_impact": 500},
            {"node_id": "next", "decision_id": "notify"},
        ]
        result = self.engine.submit_scenario_attempt(
            "alice", "flyaway", path, attempt_id="sc-1", today=DAY
        )

        self.assertEqual(result["score"], 40)
        self.assertEqual(result["score_percentage"], 100)
        self.assertEqual(result["optimal_steps"], 2)
        self.assertEqual(result["xp_earned"], 150)
        self.assertEqual(result["badges_earned"], ["optimal"])

        again = self.engine.submit_scenario_attempt(
            "alice",
            "flyaway",
            [{"node_id": "start", "decision_id": "chase"}, {"node_id": "next", "decision_id": "notify"}],
            attempt_id="sc-2",
            today=DAY,
        )
        self.assertEqual(again["score_percentage"], 25)
        # max(0.5, 0.25) * 150
        self.assertEqual(again["xp_earned"], 75)

        profile = self.db.get_learner_profile("alice")
        self.assertEqual(profile.completed_scenario_ids, ["flyaway"])
        self.assertEqual(profile.scenario_attempt_count, 2)
        self.assertAlmostEqual(profile.average_scenario_score, 62.5)
        self.assertEqual(len(self.db.list_scenario_attempts("alice")), 2)

    def test_daily_cap_applies_across_events(self):
        self.db.upsert_gamification_config("default", GamificationConfig(max_daily_xp=100))

        first = self.engine.award_xp("alice", 80, "manual", today=DAY)
        second = self.engine.award_xp("alice", 80, "manual", today=DAY)
        next_day = self.engine.award_xp("alice", 80, "manual", today=DAY + timedelta(days=1))

        self.assertEqual((first["granted"], first["capped"]), (80, False))
        self.assertEqual((second["granted"], second["capped"]), (20, True))
        self.assertEqual(next_day["granted"], 80)
        self.assertEqual(self.db.get_learner_profile("alice").total_xp, 180)

    def test_streak_protection_across_days(self):
        results = [
            self.engine.update_streak("alice", today=DAY + timedelta(days=offset))
            for offset in (0, 1, 3, 6)
        ]

        self.assertEqual([r["streak"] for r in results], [1, 2, 3, 1])
        self.assertEqual([r["used_protection"] for r in results], [False, False, True, False])
        profile = self.db.get_learner_profile("alice")
        self.assertEqual(profile.longest_streak, 3)
        self.assertEqual(profile.streak_protections_remaining, 0)

    def test_readiness_check_in_keyed_by_date(self):
        responses = {"weather_aware": True, "gear_ready": True, "route_planned": True}
        first = self.engine.submit_readiness_check_in("alice", responses, today=DAY)
        repeat = self.engine.submit_readiness_check_in("alice", {"gear_ready": False}, today=DAY)
        next_day = self.engine.submit_readiness_check_in("alice", responses, today=DAY + timedelta(days=1))

        self.assertEqual(first["overall_score"], 15)
        self.assertTrue(first["flagged_for_self_care"])
        self.assertTrue(repeat["replayed"])
        self.assertEqual(repeat["check_in_id"], first["check_in_id"])
        self.assertEqual(next_day["readiness_streak"], 2)

        profile = self.db.get_learner_profile("alice")
        self.assertEqual(profile.total_xp, 30)
        self.assertEqual(profile.readiness_check_in_count, 2)
        self.assertEqual(profile.current_streak, 2)
        self.assertEqual(len(self.db.list_readiness_check_ins("alice")), 2)

    def test_spaced_repetition_flow(self):
        added = self.engine.add_spaced_repetition_item("alice", "procedure", "lost-link", today=DAY)
        again = self.engine.add_spaced_repetition_item("alice", "procedure", "lost-link", today=DAY)

        self.assertTrue(added["created"])
        self.assertFalse(again["created"])
        self.assertEqual(again["item"]["id"], added["item"]["id"])

        due = self.engine.due_reviews("alice", today=DAY + timedelta(days=1))
        self.assertEqual([item["id"] for item in due["due"]], [added["item"]["id"]])

        reviewed = self.engine.review_spaced_repetition_item(
            "alice", added["item"]["id"], 5, today=DAY + timedelta(days=1)
        )
        self.assertEqual(reviewed["item"]["repetitions"], 1)
        self.assertEqual(reviewed["item"]["interval"], 1)
        self.assertEqual(reviewed["item"]["next_review_date"], (DAY + timedelta(days=2)).isoformat())

        with self.assertRaises(NotFoundError):
            self.engine.review_spaced_repetition_item("alice", "sr_missing", 4, today=DAY)
        with self.assertRaises(SubmissionValidationError):
            self.engine.review_spaced_repetition_item("alice", added["item"]["id"], 7, today=DAY)

    def test_award_badge_by_id_is_idempotent(self):
        with self.assertRaises(NotFoundError):
            self.engine.award_badge("alice", "no-such-badge", today=DAY)

        first = self.engine.award_badge("alice", "perfect", today=DAY)
        second = self.engine.award_badge("alice", "perfect", today=DAY)

        self.assertTrue(first["awarded"])
        self.assertEqual(first["xp_earned"], 50)
        self.assertFalse(second["awarded"])
        self.assertEqual(second["reason"], "already_has_badge")
        self.assertEqual(self.db.get_learner_profile("alice").total_xp, 50)

    def test_disabled_feature_is_reported(self):
        self.db.upsert_gamification_config("default", GamificationConfig(scenarios_enabled=False))
        with self.assertRaises(FeatureDisabledError):
            self.engine.submit_scenario_attempt(
                "alice", "flyaway", [{"node_id": "start", "decision_id": "rth"}], today=DAY
            )

    def test_idempotency_key_cannot_cross_operations(self):
        self.engine.award_xp("alice", 10, "manual", today=DAY, idempotency_key="evt-1")
        with self.assertRaises(SubmissionValidationError):
            self.engine.update_streak("alice", today=DAY, idempotency_key="evt-1")

    def test_safety_culture_score_is_persisted(self):
        self.engine.complete_lesson("alice", "quest-airspace", "lesson-1", today=DAY)
        self.engine.submit_quiz_attempt("alice", "quest-airspace", PERFECT_ANSWERS, attempt_id="a", today=DAY)

        summary = self.engine.calculate_safety_culture_score("alice", today=DAY)

        # quests 100*.25 + quiz 100*.2 + engagement 100*.15
        self.assertEqual(summary["overall"], 60)
        self.assertEqual(self.db.get_learner_profile("alice").safety_culture_score, 60)

    def test_profile_summary_for_new_learner(self):
        summary = self.engine.profile_summary("nobody", today=DAY)
        self.assertEqual(summary["profile"]["level"], 1)
        self.assertEqual(summary["profile"]["streak_protections_remaining"], 1)
        self.assertEqual(summary["level"]["next_level_xp"], 100)
        self.assertIsNone(self.db.get_learner_profile("nobody"))

    def _seed_hard_and_easy_quests(self):
        self.db.upsert_quest(
            "default",
            Quest(id="quest-hard", track_id="track-advanced", name="Night Ops", quiz_id="quiz-hard", xp_reward=300),
        )
        self.db.upsert_quiz(
            "default",
            Quiz(
                id="quiz-hard",
                quest_id="quest-hard",
                passing_score=100,
                questions=[QuizQuestion(id="h1", correct_answer="strobe"), QuizQuestion(id="h2", correct_answer="waiver")],
            ),
        )
        self.db.upsert_quest("default", Quest(id="quest-easy", name="Intro", quiz_id="quiz-easy"))
        self.db.upsert_quiz(
            "default",
            Quiz(id="quiz-easy", quest_id="quest-easy", questions=[QuizQuestion(id="e1", correct_answer="a")]),
        )

    def test_quiz_is_always_graded_against_the_quests_own_quiz(self):
        self._seed_hard_and_easy_quests()

        with self.assertRaises(SubmissionValidationError):
            self.engine.submit_quiz_attempt(
                "alice", "quest-hard", {"e1": "a"}, quiz_id="quiz-easy", attempt_id="x-1", today=DAY
            )

        self.assertIsNone(self.db.get_quest_progress("alice", "quest-hard"))
        self.assertEqual(self.db.list_quiz_attempts("alice"), [])

        result = self.engine.submit_quiz_attempt("alice", "quest-hard", {"e1": "a"}, attempt_id="x-2", today=DAY)
        self.assertEqual(result["score"], 0)
        self.assertFalse(result["quest_completed"])
        self.assertNotIn("quest-hard", self.db.get_learner_profile("alice").completed_quest_ids)

    def test_quiz_bound_to_another_quest_is_rejected(self):
        self._seed_hard_and_easy_quests()
        # quest-hard points at a quiz whose own quest binding says otherwise
        self.db.upsert_quest("default", Quest(id="quest-hard", name="Night Ops", quiz_id="quiz-easy"))

        with self.assertRaises(SubmissionValidationError):
            self.engine.submit_quiz_attempt("alice", "quest-hard", {"e1": "a"}, attempt_id="x-1", today=DAY)
        self.assertIsNone(self.db.get_learner_profile("alice"))

    def test_matching_quiz_id_is_accepted(self):
        self._seed_hard_and_easy_quests()
        result = self.engine.submit_quiz_attempt(
            "alice", "quest-easy", {"e1": "a"}, quiz_id="quiz-easy", attempt_id="x-1", today=DAY
        )
        self.assertTrue(result["quest_completed"])

    def test_last_lesson_completes_quest_when_quiz_already_passed(self):
        self.db.upsert_quest(
            "default",
            Quest(
                id="quest-airspace",
                track_id="track-basics",
                name="Airspace Basics",
                lesson_ids=["lesson-1", "lesson-2"],
                quiz_id="quiz-airspace",
            ),
        )
        self.engine.complete_lesson("alice", "quest-airspace", "lesson-1", today=DAY)
        quiz = self.engine.submit_quiz_attempt(
            "alice", "quest-airspace", PERFECT_ANSWERS, attempt_id="att-1", today=DAY
        )
        self.assertTrue(quiz["passed"])
        self.assertFalse(quiz["quest_completed"])

        lesson = self.engine.complete_lesson("alice", "quest-airspace", "lesson-2", today=DAY)

        self.assertTrue(lesson["quest_completed"])
        self.assertEqual(lesson["track_completed"], "track-basics")
        self.assertEqual(self.db.get_quest_progress("alice", "quest-airspace").status, "completed")
        self.assertEqual(self.db.get_learner_profile("alice").completed_quest_ids, ["quest-airspace"])

    def test_last_lesson_after_failed_quiz_keeps_quest_open(self):
        self.db.upsert_quest(
            "default",
            Quest(id="quest-airspace", name="Airspace Basics", lesson_ids=["lesson-1", "lesson-2"], quiz_id="quiz-airspace"),
        )
        self.engine.complete_lesson("alice", "quest-airspace", "lesson-1", today=DAY)
        self.engine.submit_quiz_attempt("alice", "quest-airspace", {"q1": "b"}, attempt_id="att-1", today=DAY)

        lesson = self.engine.complete_lesson("alice", "quest-airspace", "lesson-2", today=DAY)
        self.assertFalse(lesson["quest_completed"])

    def test_unknown_timezone_in_config_does_not_break_events(self):
        self.db.upsert_gamification_config("default", GamificationConfig(timezone="Mars/Olympus"))

        result = self.engine.award_xp("alice", 10, "manual")

        self.assertEqual(result["granted"], 10)
        self.assertNotEqual(self.db.get_gamification_config("default").timezone, "Mars/Olympus")

    def test_quest_locked_until_prerequisite_quest_done(self):
        self.db.upsert_quest(
            "default",
            Quest(id="quest-night", track_id="track-basics", lesson_ids=["n-1"], prerequisite_quest_ids=["quest-airspace"]),
        )

        with self.assertRaises(QuestLockedError) as raised:
            self.engine.complete_lesson("alice", "quest-night", "n-1", today=DAY)
        self.assertEqual(raised.exception.missing, ["quest-airspace"])
        self.assertIsNone(self.db.get_quest_progress("alice", "quest-night"))

        self.engine.complete_lesson("alice", "quest-airspace", "lesson-1", today=DAY)
        self.engine.submit_quiz_attempt("alice", "quest-airspace", PERFECT_ANSWERS, attempt_id="att-1", today=DAY)

        lesson = self.engine.complete_lesson("alice", "quest-night", "n-1", today=DAY)
        self.assertTrue(lesson["quest_completed"])

    def test_quest_locked_until_prerequisite_track_done(self):
        self.db.upsert_track("default", Track(id="track-advanced", name="Advanced", prerequisite_track_ids=["track-basics"]))
        self._seed_hard_and_easy_quests()

        with self.assertRaises(QuestLockedError):
            self.engine.submit_quiz_attempt(
                "alice", "quest-hard", {"h1": "strobe", "h2": "waiver"}, attempt_id="x-1", today=DAY
            )
        self.assertEqual(self.db.list_quiz_attempts("alice"), [])

        self.engine.complete_lesson("alice", "quest-airspace", "lesson-1", today=DAY)
        self.engine.submit_quiz_attempt("alice", "quest-airspace", PERFECT_ANSWERS, attempt_id="att-1", today=DAY)

        result = self.engine.submit_quiz_attempt(
            "alice", "quest-hard", {"h1": "strobe", "h2": "waiver"}, attempt_id="x-2", today=DAY
        )
        self.assertTrue(result["quest_completed"])

    def test_track_summary_counts_quests(self):
        self.db.upsert_track("default", Track(id="track-basics", name="Basics"))
        self.db.upsert_quest("default", Quest(id="quest-weather", track_id="track-basics", lesson_ids=["w-1", "w-2"]))
        self.db.upsert_quest("default", Quest(id="quest-radio", track_id="track-basics", lesson_ids=["r-1"]))
        self.engine.complete_lesson("alice", "quest-airspace", "lesson-1", today=DAY)
        self.engine.submit_quiz_attempt("alice", "quest-airspace", PERFECT_ANSWERS, attempt_id="att-1", today=DAY)
        self.engine.complete_lesson("alice", "quest-weather", "w-1", today=DAY)

        summary = self.engine.track_summary("alice", "track-basics")

        self.assertEqual(summary["track_name"], "Basics")
        self.assertEqual(summary["total_quests"], 3)
        self.assertEqual(summary["completed_count"], 1)
        self.assertEqual(summary["in_progress_count"], 1)
        self.assertEqual(summary["not_started_count"], 1)
        self.assertEqual(summary["progress_percent"], 33)
        self.assertFalse(summary["is_complete"])
        self.assertTrue(summary["unlocked"])
        self.assertEqual(
            self.db.get_quest_progress("alice", "quest-airspace").xp_earned, summary["total_xp_earned"]
        )

        with self.assertRaises(NotFoundError):
            self.engine.track_summary("alice", "track-nowhere")

    def test_scenario_history_newest_first(self):
        best = [{"node_id": "start", "decision_id": "rth"}, {"node_id": "next", "decision_id": "notify"}]
        worse = [{"node_id": "start", "decision_id": "chase"}, {"node_id": "next", "decision_id": "notify"}]
        self.engine.submit_scenario_attempt("alice", "flyaway", best, attempt_id="sc-1", today=DAY)
        self.engine.submit_scenario_attempt("alice", "flyaway", worse, attempt_id="sc-2", today=DAY)

        history = self.engine.scenario_history("alice", "flyaway")
        self.assertEqual([attempt["score_percentage"] for attempt in history], [25, 100])
        self.assertEqual(self.engine.scenario_history("alice", "other"), [])

    def test_readiness_history_window_and_today(self):
        responses = {"gear_ready": True}
        for offset in (40, 3, 0):
            self.engine.submit_readiness_check_in("alice", responses, today=DAY - timedelta(days=offset))

        view = self.engine.readiness_history("alice", days=30, today=DAY)
        self.assertEqual(view["today_check_in"]["date"], DAY.isoformat())
        self.assertEqual(
            [check_in["date"] for check_in in view["history"]],
            [DAY.isoformat(), (DAY - timedelta(days=3)).isoformat()],
        )

        yesterday = self.engine.readiness_history("alice", days=30, today=DAY - timedelta(days=1))
        self.assertIsNone(yesterday["today_check_in"])

    def test_readiness_default_key_uses_learners_organization_day(self):
        self.db.upsert_gamification_config("field-ops", GamificationConfig(timezone="Pacific/Kiritimati"))
        self.engine.award_xp("alice", 5, "manual", organization_id="field-ops")

        first = self.engine.submit_readiness_check_in("alice", {"gear_ready": True})
        repeat = self.engine.submit_readiness_check_in("alice", {"gear_ready": False})

        self.assertEqual(first["date"], local_today("Pacific/Kiritimati").isoformat())
        with self.db.session() as store:
            self.assertIsNotNone(store.get_processed_event("alice", f"readiness:{first['date']}"))
        self.assertTrue(repeat["replayed"])
        self.assertEqual(len(self.db.list_readiness_check_ins("alice")), 1)


class ActivityLogIntegrationTests(unittest.TestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self._prev_db_path = os.environ.get("DB_PATH")
        self._prev_lrs = os.environ.pop("LRS_URL", None)
        os.environ["DB_PATH"] = os.path.join(self._tmpdir.name, "test.db")

        import db  # noqa: F401

        self.db = importlib.reload(db)
        self.db.init()

    def tearDown(self):
        if self._prev_db_path is None:
            os.environ.pop("DB_PATH", None)
        else:
            os.environ["DB_PATH"] = self._prev_db_path
        if self._prev_lrs is not None:
            os.environ["LRS_URL"] = self._prev_lrs

        self.db._pool.close_all()

        import db  # noqa: F401

        importlib.reload(db)
        self._tmpdir.cleanup()

    def test_events_are_written_to_activity_log(self):
        from engines.progression import ProgressionEngine

        engine = ProgressionEngine()
        engine.award_xp("alice", 40, "manual", today=DAY, session_id="sess-1")
        engine.submit_readiness_check_in("alice", {"gear_ready": True}, today=DAY, session_id="sess-1")

        entries = self.db.list_activity("alice")
        self.assertEqual([e["type"] for e in entries], ["readiness_checkin", "xp_earned"])
        self.assertEqual(entries[1]["details"]["xp_earned"], 40)
        self.assertEqual(entries[0]["session_id"], "sess-1")


if __name__ == "__main__":
    unittest.main()
