"""SM-2 spaced repetition for memorized safety content."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Dict, List

from engines.base import round_half_up
from engines.validation import SubmissionValidationError
from schemas import SpacedRepetitionItem

MIN_EASE_FACTOR = 1.3
INITIAL_EASE_FACTOR = 2.5


class SpacedRepetitionScheduler:
    def __init__(self, *, due_limit: int = 10, minutes_per_review: int = 2):
        self.due_limit = due_limit
        self.minutes_per_review = minutes_per_review

    def new_item(
        self,
        item_id: str,
        content_type: str,
        content_id: str,
        *,
        today: date,
    ) -> SpacedRepetitionItem:
        """Seed an item so its first review lands tomorrow."""

        return SpacedRepetitionItem(
            id=item_id,
            content_type=content_type,
            content_id=content_id,
            ease_factor=INITIAL_EASE_FACTOR,
            repetitions=0,
            interval=1,
            next_review_date=today + timedelta(days=1),
        )

    def review(self, item: SpacedRepetitionItem, quality: int, *, today: date) -> SpacedRepetitionItem:
        """Return the rescheduled item for a recall ``quality`` in 0..5.

        0-2 means forgotten and restarts the item; 3 is a hard recall; 4-5 easy.
        """

        if isinstance(quality, bool) or not isinstance(quality, int) or not 0 <= quality <= 5:
            raise SubmissionValidationError("quality must be an integer between 0 and 5")

        repetitions = item.repetitions
        interval = item.interval
        if quality < 3:
            repetitions = 0
            interval = 1
        else:
            if repetitions == 0:
                interval = 1
            elif repetitions == 1:
                interval = 6
            else:
                interval = max(1, round_half_up(interval * item.ease_factor))
            repetitions += 1

        penalty = 5 - quality
        ease_factor = item.ease_factor + (0.1 - penalty * (0.08 + penalty * 0.02))
        ease_factor = max(MIN_EASE_FACTOR, ease_factor)

        return item.model_copy(
            update={
                "ease_factor": ease_factor,
                "repetitions": repetitions,
                "interval": interval,
                "next_review_date": today + timedelta(days=interval),
                "last_reviewed_at": today,
            }
        )

    def get_due_reviews(self, items: List[SpacedRepetitionItem], today: date) -> List[SpacedRepetitionItem]:
        due = [item for item in items if item.next_review_date <= today]
        due.sort(key=lambda item: item.next_review_date)
        return due[: self.due_limit]

    def review_load(self, items: List[SpacedRepetitionItem], today: date, days: int = 7) -> Dict[str, int]:
        """Number of reviews falling on each of the next ``days`` days.

        Overdue items are counted on ``today``.
        """

        load: Dict[str, int] = {}
        for offset in range(days):
            day = today + timedelta(days=offset)
            load[day.isoformat()] = 0
        for item in items:
            day = max(item.next_review_date, today)
            key = day.isoformat()
            if key in load:
                load[key] += 1
        return load

    def suggest_daily_review_plan(
        self,
        items: List[SpacedRepetitionItem],
        today: date,
        available_time_minutes: int = 20,
    ) -> Dict[str, Any]:
        due_items = [item for item in items if item.next_review_date <= today]
        capacity = min(len(due_items), available_time_minutes // self.minutes_per_review)
        # Hardest items (lowest ease) first, then the most overdue.
        prioritized = sorted(due_items, key=lambda x: (x.ease_factor, x.next_review_date))[:capacity]
        return {
            "total_due": len(due_items),
            "recommended_reviews": capacity,
            "estimated_time": capacity * self.minutes_per_review,
            "items": [
                {
                    "id": item.id,
                    "content_type": item.content_type,
                    "content_id": item.content_id,
                    "ease_factor": round(item.ease_factor, 2),
                }
                for item in prioritized
            ],
        }


__all__ = ["SpacedRepetitionScheduler", "MIN_EASE_FACTOR", "INITIAL_EASE_FACTOR"]
