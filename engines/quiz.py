"""Server-side quiz scoring.

Scores are always recomputed from the answer key; whatever score the client
believes it earned is never read.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from engines.base import round_half_up
from engines.validation import SubmissionValidationError
from schemas import GamificationConfig, Quiz, QuizAnswerResult, QuizAttempt, QuizQuestion

SEQUENCE_TYPES = frozenset({"matching", "ordering"})


def strictly_equal(left: Any, right: Any) -> bool:
    """Equality that also requires matching types, so ``True`` never equals ``1``.

    Lists and tuples compare element by element; mappings key by key.
    """

    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(strictly_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, dict) and isinstance(right, dict):
        return left.keys() == right.keys() and all(strictly_equal(left[key], right[key]) for key in left)
    return type(left) is type(right) and left == right


def evaluate_answer(question: QuizQuestion, user_answer: Any) -> bool:
    if question.type in SEQUENCE_TYPES:
        if isinstance(question.correct_answer, (list, tuple)) and isinstance(user_answer, (list, tuple)):
            return strictly_equal(user_answer, question.correct_answer)
        return False
    # multiple_choice, true_false and anything unrecognised
    return strictly_equal(user_answer, question.correct_answer)


def passing_score(quiz: Quiz, config: GamificationConfig | None = None) -> int:
    if quiz.passing_score is not None:
        return quiz.passing_score
    return (config or GamificationConfig()).default_quiz_passing_score


def score_quiz(
    quiz: Quiz,
    answers: Mapping[str, Any],
    *,
    attempt_id: str,
    config: GamificationConfig | None = None,
    taken_at: Optional[datetime] = None,
) -> QuizAttempt:
    if not quiz.questions:
        raise SubmissionValidationError(f"Quiz {quiz.id} has no questions")

    results = []
    correct = 0
    for question in quiz.questions:
        user_answer = answers.get(question.id)
        is_correct = evaluate_answer(question, user_answer)
        if is_correct:
            correct += 1
        results.append(
            QuizAnswerResult(
                question_id=question.id,
                user_answer=user_answer,
                is_correct=is_correct,
                correct_answer=question.correct_answer,
                explanation=question.explanation,
            )
        )

    total = len(quiz.questions)
    score = round_half_up(100 * correct / total)
    return QuizAttempt(
        attempt_id=attempt_id,
        quiz_id=quiz.id,
        score=score,
        correct_count=correct,
        total_questions=total,
        passed=score >= passing_score(quiz, config),
        is_perfect=score == 100,
        answers=results,
        taken_at=taken_at or datetime.now(timezone.utc),
    )


__all__ = ["strictly_equal", "evaluate_answer", "passing_score", "score_quiz"]
