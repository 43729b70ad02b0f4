"""Quest and track unlocking plus track progress roll-ups."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from engines.base import round_half_up
from schemas import Quest, QuestProgress, Track


def missing_quest_prerequisites(quest: Quest, completed_quest_ids: Sequence[str]) -> List[str]:
    done = set(completed_quest_ids)
    return [quest_id for quest_id in quest.prerequisite_quest_ids if quest_id not in done]


def missing_track_prerequisites(track: Optional[Track], completed_track_ids: Sequence[str]) -> List[str]:
    if track is None:
        return []
    done = set(completed_track_ids)
    return [track_id for track_id in track.prerequisite_track_ids if track_id not in done]


def is_quest_unlocked(quest: Quest, completed_quest_ids: Sequence[str]) -> bool:
    return not missing_quest_prerequisites(quest, completed_quest_ids)


def is_track_unlocked(track: Optional[Track], completed_track_ids: Sequence[str]) -> bool:
    return not missing_track_prerequisites(track, completed_track_ids)


def track_progress(
    track_id: str,
    quests: Sequence[Quest],
    progress_by_quest: Mapping[str, QuestProgress],
    *,
    track: Optional[Track] = None,
) -> Dict[str, Any]:
    """Counts of completed, started and untouched quests in one track.

    An empty track is never complete.
    """

    completed = 0
    in_progress = 0
    xp_earned = 0
    for quest in quests:
        progress = progress_by_quest.get(quest.id)
        if progress is None:
            continue
        if progress.status == "completed":
            completed += 1
            xp_earned += progress.xp_earned
        elif progress.status == "in_progress":
            in_progress += 1

    total = len(quests)
    return {
        "track_id": track_id,
        "track_name": track.name if track else "",
        "total_quests": total,
        "completed_count": completed,
        "in_progress_count": in_progress,
        "not_started_count": total - completed - in_progress,
        "progress_percent": round_half_up(completed / total * 100) if total else 0,
        "total_xp_earned": xp_earned,
        "is_complete": total > 0 and completed == total,
    }


__all__ = [
    "missing_quest_prerequisites",
    "missing_track_prerequisites",
    "is_quest_unlocked",
    "is_track_unlocked",
    "track_progress",
]
