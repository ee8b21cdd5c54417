"""Spaced-repetition scheduling for per-skill reviews.

Interval rule (days, a simplified SM-2):

    score >= 90  → double              (cap 60)
    score >= 80  → x1.5, rounded       (cap 60)
    score >= 70  → unchanged
    score >= 60  → x0.75, rounded      (min 1)
    otherwise    → halved, floored     (min 1)

review_schedules is the source of truth for due lists and review units.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from skilltrack.db import mastery_store as store
from skilltrack.db.database import transaction
from skilltrack.errors import ReviewScheduleNotFoundError
from skilltrack.models.mastery import (
    AcceptanceTest,
    DueReview,
    IntervalDecision,
    PracticeType,
    ReviewInsertDecision,
    ReviewSchedule,
    ReviewScheduleUpdate,
    ReviewTargetSkill,
    ReviewTask,
    ReviewType,
    ReviewUnitScaffold,
)
from skilltrack.services.numbers import clamp, round_half_up

logger = logging.getLogger(__name__)

MIN_INTERVAL = 1
MAX_INTERVAL = 60

# Product constants for inserting a dedicated review unit.
OVERDUE_INSERT_THRESHOLD = 3
DUE_SOON_INSERT_THRESHOLD = 5
DUE_SOON_WINDOW_DAYS = 2

RETENTION_SCORE = 80
RETENTION_MIN_PRIOR_REVIEWS = 2

REVIEW_TYPE_DESCRIPTIONS = {
    ReviewType.SPACED_REPETITION: "Review previously learned skills to ensure long-term retention.",
    ReviewType.STRUGGLING_SKILL: "Extra practice for skills you are struggling with.",
    ReviewType.MILESTONE_PREP: "Review all skills before the upcoming milestone.",
    ReviewType.COMPREHENSIVE: "Comprehensive review of all skills learned so far.",
}

REVIEW_TRIGGER_REASONS = {
    ReviewType.SPACED_REPETITION: "Skills due for spaced repetition review",
    ReviewType.STRUGGLING_SKILL: "Struggling skills detected",
    ReviewType.MILESTONE_PREP: "Milestone approaching",
    ReviewType.COMPREHENSIVE: "Comprehensive review scheduled",
}

REVIEW_CHECKLIST = [
    "Complete review exercises",
    "Pass review quiz",
    "Demonstrate understanding",
]


# ── Pure rules ────────────────────────────────────────────────────────

def next_interval(current_interval: int, performance: float) -> IntervalDecision:
    """Next review interval in days for a score of 0-100. Always within [1, 60]."""
    current = clamp(int(current_interval), MIN_INTERVAL, MAX_INTERVAL)

    if performance >= 90:
        new_interval = min(MAX_INTERVAL, current * 2)
        reasoning = "Excellent performance - doubling review interval"
    elif performance >= 80:
        new_interval = min(MAX_INTERVAL, round_half_up(current * 1.5))
        reasoning = "Good performance - increasing review interval"
    elif performance >= 70:
        new_interval = current
        reasoning = "Acceptable performance - maintaining review interval"
    elif performance >= 60:
        new_interval = max(MIN_INTERVAL, round_half_up(current * 0.75))
        reasoning = "Weak performance - decreasing review interval"
    else:
        new_interval = max(MIN_INTERVAL, math.floor(current / 2))
        reasoning = "Poor performance - resetting to shorter review interval"

    return IntervalDecision(
        new_interval=clamp(new_interval, MIN_INTERVAL, MAX_INTERVAL),
        reasoning=reasoning,
    )


def initial_interval(mastery_level: float) -> int:
    """First review interval for a freshly learned skill."""
    if mastery_level >= 90:
        return 7
    if mastery_level >= 70:
        return 3
    if mastery_level >= 50:
        return 2
    return 1


def is_retained(average_score: float, review_count: int) -> bool:
    """review_count is the number of reviews before the one just applied."""
    return average_score >= RETENTION_SCORE and review_count >= RETENTION_MIN_PRIOR_REVIEWS


# ── Schedule lifecycle ────────────────────────────────────────────────
#
# ensure_review_schedule / apply_review_score run inside the caller's
# transaction; the public wrappers below open their own.

async def ensure_review_schedule(
    db,
    user_id: str,
    skill_id: str,
    initial_mastery_level: float,
    now: datetime,
) -> ReviewSchedule:
    existing = await store.get_review_schedule(db, user_id, skill_id)
    if existing:
        return ReviewSchedule(**existing)

    interval = initial_interval(initial_mastery_level)
    row = await store.create_review_schedule(
        db,
        user_id,
        skill_id,
        current_interval=interval,
        next_review_at=now + timedelta(days=interval),
        now=now,
    )
    logger.info(
        "Scheduled first review for user %s, skill %s in %d day(s)",
        user_id, skill_id, interval,
    )
    return ReviewSchedule(**row)


async def apply_review_score(
    db,
    user_id: str,
    skill_id: str,
    review_score: float,
    now: datetime,
) -> ReviewScheduleUpdate:
    if not 0 <= review_score <= 100:
        raise ValueError(f"review_score must be within 0-100, got {review_score}")

    schedule = await store.get_review_schedule(db, user_id, skill_id)
    if not schedule:
        raise ReviewScheduleNotFoundError(user_id, skill_id)

    decision = next_interval(schedule["current_interval"], review_score)
    next_review_at = now + timedelta(days=decision.new_interval)

    review_count = schedule["review_count"]
    average = (schedule["average_review_score"] * review_count + review_score) / (review_count + 1)

    row = await store.update_review_schedule(
        db,
        user_id,
        skill_id,
        current_interval=decision.new_interval,
        next_review_at=next_review_at,
        last_reviewed_at=now,
        review_count=review_count + 1,
        average_review_score=average,
        is_retained=is_retained(average, review_count),
    )

    return ReviewScheduleUpdate(
        schedule=ReviewSchedule(**row),
        interval_adjusted=decision.new_interval != schedule["current_interval"],
        next_review_at=next_review_at,
        reasoning=decision.reasoning,
    )


async def schedule_skill_review(
    db,
    user_id: str,
    skill_id: str,
    initial_mastery_level: float,
    now: Optional[datetime] = None,
) -> ReviewSchedule:
    """Create the review schedule for a newly learned skill. Returns the existing one if present."""
    async with transaction(db):
        return await ensure_review_schedule(
            db, user_id, skill_id, initial_mastery_level, store.aware_now(now)
        )


async def update_review_schedule(
    db,
    user_id: str,
    skill_id: str,
    review_score: float,
    now: Optional[datetime] = None,
) -> ReviewScheduleUpdate:
    """Apply a completed review. Raises ReviewScheduleNotFoundError if the skill was never scheduled."""
    async with transaction(db):
        return await apply_review_score(db, user_id, skill_id, review_score, store.aware_now(now))


# ── Due lists and review units ────────────────────────────────────────

def _whole_days(delta: timedelta) -> int:
    return math.floor(delta.total_seconds() / 86400)


async def _due_schedules(db, user_id, objective_id, due_before):
    schedules = await store.list_due_schedules(db, user_id, due_before)
    allowed = await store.get_objective_required_skills(db, objective_id)
    if allowed:
        schedules = [s for s in schedules if s["skill_name"] in allowed]
    return schedules


def _to_due_review(schedule: dict, now: datetime) -> DueReview:
    last_reviewed = schedule["last_reviewed_at"]
    next_review_at = schedule["next_review_at"]
    return DueReview(
        skill_id=schedule["skill_id"],
        skill_name=schedule["skill_name"],
        last_reviewed_at=last_reviewed or schedule["created_at"],
        next_review_at=next_review_at,
        days_since_last_review=_whole_days(now - last_reviewed) if last_reviewed else 0,
        days_until_next_review=_whole_days(next_review_at - now),
        current_interval=schedule["current_interval"],
        review_count=schedule["review_count"],
        is_overdue=next_review_at < now,
    )


async def due_for_review(
    db,
    user_id: str,
    objective_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> list[DueReview]:
    """Skills whose next review is at or before now, earliest first.

    When the objective lists required skills, only those skills are returned.
    """
    now = store.aware_now(now)
    schedules = await _due_schedules(db, user_id, objective_id, now)
    return [_to_due_review(s, now) for s in schedules]


async def should_insert_review_unit(
    db,
    objective_id: Optional[str],
    user_id: str,
    current_day: int,
    now: Optional[datetime] = None,
) -> ReviewInsertDecision:
    """Decide whether the plan needs a dedicated review unit after current_day."""
    now = store.aware_now(now)

    due = [_to_due_review(s, now) for s in await _due_schedules(db, user_id, objective_id, now)]
    overdue = [d for d in due if d.is_overdue]
    if len(overdue) >= OVERDUE_INSERT_THRESHOLD:
        return ReviewInsertDecision(
            should_insert=True,
            reason=f"{len(overdue)} skills are overdue for review",
            skills_to_review=[d.skill_id for d in overdue],
            suggested_day=current_day + 1,
        )

    window_end = now + timedelta(days=DUE_SOON_WINDOW_DAYS)
    due_soon = await _due_schedules(db, user_id, objective_id, window_end)
    if len(due_soon) >= DUE_SOON_INSERT_THRESHOLD:
        return ReviewInsertDecision(
            should_insert=True,
            reason=f"{len(due_soon)} skills are due for review soon",
            skills_to_review=[s["skill_id"] for s in due_soon],
            suggested_day=current_day + 1,
        )

    return ReviewInsertDecision(should_insert=False)


def _review_title(skill_names: list[str]) -> str:
    title = "Review: " + " & ".join(skill_names[:2])
    if len(skill_names) > 2:
        title += f" +{len(skill_names) - 2} more"
    return title


async def build_review_unit(
    db,
    user_id: str,
    objective_id: str,
    skill_ids: list[str],
    review_type: ReviewType,
    insert_after_day: int,
) -> ReviewUnitScaffold:
    """Describe a one-day review unit for the given skills. Nothing is persisted."""
    review_type = ReviewType(review_type)
    skills = await store.get_skills(db, skill_ids)

    target_skills = []
    tasks = []
    for skill in skills:
        record = await store.get_mastery_record(db, user_id, skill["id"])
        # Scheduled but never practiced reads as level 0.
        level = record["level"] if record else 0
        target_skills.append(ReviewTargetSkill(
            skill_id=skill["id"],
            skill_name=skill["name"],
            current_level=level,
            target_level=min(100, level + 10),
            practice_type=PracticeType.REVIEW,
        ))
        tasks.append(ReviewTask(
            id=f"review_task_{len(tasks) + 1}",
            title=f"Review: {skill['name']}",
            instructions=(
                f"Review and practice {skill['name']}. "
                "Complete exercises to reinforce your understanding."
            ),
            acceptance_test=AcceptanceTest(type="checklist", spec=list(REVIEW_CHECKLIST)),
        ))

    return ReviewUnitScaffold(
        objective_id=objective_id,
        user_id=user_id,
        review_type=review_type,
        day_number=insert_after_day + 1,
        title=_review_title([t.skill_name for t in target_skills]),
        description=REVIEW_TYPE_DESCRIPTIONS[review_type],
        trigger_reason=REVIEW_TRIGGER_REASONS[review_type],
        target_skills=target_skills,
        micro_tasks=tasks,
    )
