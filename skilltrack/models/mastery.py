import json
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator


class SkillDifficulty(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class SkillStatus(str, Enum):
    NOT_STARTED = "not_started"
    LEARNING = "learning"
    PRACTICING = "practicing"
    PROFICIENT = "proficient"
    MASTERED = "mastered"
    STRUGGLING = "struggling"


class PracticeType(str, Enum):
    INTRODUCTION = "introduction"
    PRACTICE = "practice"
    REVIEW = "review"
    MASTERY = "mastery"


class ReviewType(str, Enum):
    SPACED_REPETITION = "spaced_repetition"
    STRUGGLING_SKILL = "struggling_skill"
    MILESTONE_PREP = "milestone_prep"
    COMPREHENSIVE = "comprehensive"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ── Stored records ────────────────────────────────────────────────────

class Skill(BaseModel):
    id: str
    name: str
    category: str
    difficulty: SkillDifficulty = SkillDifficulty.BEGINNER
    description: Optional[str] = None
    parent_skill_id: Optional[str] = None
    prerequisites: list[str] = []
    created_at: Optional[datetime] = None

    @field_validator("prerequisites", mode="before")
    @classmethod
    def _parse_prerequisites(cls, value):
        if isinstance(value, str):
            return json.loads(value) if value else []
        return value or []


class ReviewSchedule(BaseModel):
    id: str
    user_id: str
    skill_id: str
    skill_name: Optional[str] = None
    current_interval: int
    next_review_at: datetime
    last_reviewed_at: Optional[datetime] = None
    review_count: int = 0
    average_review_score: float = 0.0
    is_retained: bool = False
    created_at: Optional[datetime] = None


# ── Skill Level Tracker results ───────────────────────────────────────

class SkillUpdateResult(BaseModel):
    skill_id: str
    skill_name: str
    previous_level: int
    new_level: int
    previous_status: SkillStatus
    new_status: SkillStatus
    status_changed: bool
    mastered_now: bool
    needs_review: bool
    review_interval: int
    next_review_at: datetime


class SkillUpdateError(BaseModel):
    skill_id: str
    error: str


class SkillScore(BaseModel):
    skill_id: str
    score: float


class BatchUpdateResult(BaseModel):
    unit_id: str
    results: list[SkillUpdateResult] = []
    errors: list[SkillUpdateError] = []

    @property
    def succeeded(self) -> bool:
        return not self.errors


class SkillLevel(BaseModel):
    skill_id: str
    skill_name: str
    level: int
    status: SkillStatus
    success_rate: float
    practice_count: int
    last_practiced_at: Optional[datetime] = None
    next_review_at: Optional[datetime] = None
    needs_review: bool = False


class SkillMap(BaseModel):
    user_id: str
    skills: list[SkillLevel] = []
    mastered_skills: list[str] = []
    struggling_areas: list[str] = []
    in_progress: list[str] = []
    not_started: list[str] = []
    overall_progress: int = 0


# ── Scheduler results ─────────────────────────────────────────────────

class IntervalDecision(BaseModel):
    new_interval: int
    reasoning: str


class ReviewScheduleUpdate(BaseModel):
    schedule: ReviewSchedule
    interval_adjusted: bool
    next_review_at: datetime
    reasoning: str


class DueReview(BaseModel):
    skill_id: str
    skill_name: str
    last_reviewed_at: datetime
    next_review_at: datetime
    days_since_last_review: int
    days_until_next_review: int
    current_interval: int
    review_count: int
    is_overdue: bool


class ReviewInsertDecision(BaseModel):
    should_insert: bool
    reason: Optional[str] = None
    skills_to_review: list[str] = []
    suggested_day: Optional[int] = None


class AcceptanceTest(BaseModel):
    type: str = "checklist"
    spec: list[str] = []


class ReviewTask(BaseModel):
    id: str
    title: str
    type: str = "review"
    estimated_minutes: int = 30
    instructions: str
    acceptance_test: AcceptanceTest
    resources: list[str] = []


class ReviewTargetSkill(BaseModel):
    skill_id: str
    skill_name: str
    current_level: int
    target_level: int
    practice_type: PracticeType = PracticeType.REVIEW


class ReviewUnitScaffold(BaseModel):
    objective_id: str
    user_id: str
    review_type: ReviewType
    day_number: int
    length_days: int = 1
    total_estimated_hours: int = 2
    difficulty: str = "intermediate"
    is_review: bool = True
    title: str
    description: str
    trigger_reason: str
    target_skills: list[ReviewTargetSkill] = []
    micro_tasks: list[ReviewTask] = []


# ── Struggling-Area Detector results ──────────────────────────────────

class StrugglingArea(BaseModel):
    skill_id: str
    skill_name: str
    level: int
    success_rate: float
    consecutive_failures: int
    recommended_action: str


class ReviewRecommendation(BaseModel):
    type: ReviewType
    skill_ids: list[str]
    priority: Priority
    reason: str
    suggested_day: int = 0
