"""Typed failures raised by progression operations.

All of these are raised before the first write of an operation, so a caller
that catches one can rely on the learner's state being unchanged.
"""


class ProgressionError(Exception):
    """Base class for progression failures reported back to the caller."""

    reason = "progression_error"


class NotFoundError(ProgressionError):
    """Raised when a referenced badge, quest, quiz, scenario or item does not exist."""

    reason = "not_found"

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class SubmissionValidationError(ProgressionError):
    """Raised when a submission or definition is malformed."""

    reason = "invalid_submission"


class FeatureDisabledError(ProgressionError):
    """Raised when an organization has switched the requested feature off."""

    reason = "feature_disabled"


class QuestLockedError(ProgressionError):
    """Raised when a quest's prerequisite quests or tracks are not yet complete."""

    reason = "quest_locked"

    def __init__(self, quest_id: str, missing: list):
        super().__init__(f"quest {quest_id} is locked until {', '.join(missing)} are complete")
        self.quest_id = quest_id
        self.missing = list(missing)
