"""Exceptions raised by the skilltrack services.

Generative-provider and schema failures during skill extraction are not
represented here: they are recovered locally by the keyword fallback and only
logged.
"""


class SkillTrackError(Exception):
    """Base class for skilltrack errors."""


class NotFoundError(SkillTrackError, LookupError):
    """An existing-only operation referenced a record that does not exist."""


class ReviewScheduleNotFoundError(NotFoundError):
    def __init__(self, user_id: str, skill_id: str):
        super().__init__(f"Review schedule not found for user {user_id}, skill {skill_id}")
        self.user_id = user_id
        self.skill_id = skill_id


class StaleRecordError(SkillTrackError):
    """A versioned write found the row changed since it was read."""

    def __init__(self, user_id: str, skill_id: str, expected_version: int):
        super().__init__(
            f"Mastery record for user {user_id}, skill {skill_id} changed "
            f"(expected version {expected_version})"
        )
        self.user_id = user_id
        self.skill_id = skill_id
        self.expected_version = expected_version


class SkillNotFoundError(NotFoundError):
    def __init__(self, skill_id: str):
        super().__init__(f"Skill {skill_id} not found")
        self.skill_id = skill_id
