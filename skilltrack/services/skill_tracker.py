"""Per-learner skill mastery tracking.

Each practice outcome (a 0-100 score on one skill) moves the learner's
mastery level, success rate, failure streak and status, and re-derives the
practice-driven review interval on the mastery record.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from skilltrack.config import settings
from skilltrack.db import mastery_store as store
from skilltrack.db.database import transaction
from skilltrack.errors import SkillNotFoundError, StaleRecordError
from skilltrack.models.mastery import (
    BatchUpdateResult,
    PracticeType,
    SkillLevel,
    SkillMap,
    SkillScore,
    SkillStatus,
    SkillUpdateError,
    SkillUpdateResult,
)
from skilltrack.services import spaced_repetition
from skilltrack.services.numbers import clamp, round_half_up

logger = logging.getLogger(__name__)

PASSING_SCORE = 70

PRACTICE_TYPE_FACTORS = {
    PracticeType.INTRODUCTION: 1.2,
    PracticeType.PRACTICE: 1.0,
    PracticeType.REVIEW: 0.8,
    PracticeType.MASTERY: 1.5,
}

# First match wins.
STATUS_RULES = [
    (lambda level, rate: level >= 90 and rate >= 0.85, SkillStatus.MASTERED),
    (lambda level, rate: level >= 70 and rate >= 0.75, SkillStatus.PROFICIENT),
    (lambda level, rate: level >= 40 and rate >= 0.6, SkillStatus.PRACTICING),
    (lambda level, rate: level >= 20, SkillStatus.LEARNING),
    (lambda level, rate: rate < 0.5 and level < 40, SkillStatus.STRUGGLING),
]

IN_PROGRESS_STATUSES = (SkillStatus.LEARNING, SkillStatus.PRACTICING, SkillStatus.PROFICIENT)


def _base_change(performance: float) -> int:
    if performance >= 90:
        return 15
    if performance >= 80:
        return 10
    if performance >= 70:
        return 5
    if performance >= 60:
        return 2
    return -5


def calculate_level_change(
    current_level: int,
    performance: float,
    practice_type: PracticeType,
    consecutive_failures: int,
) -> int:
    """Signed level delta for one practice outcome."""
    change = _base_change(performance) * PRACTICE_TYPE_FACTORS[PracticeType(practice_type)]

    # Diminishing returns near the top of the scale
    if current_level > 80:
        change *= 0.5
    elif current_level > 60:
        change *= 0.75

    if consecutive_failures > 0:
        change *= 0.7

    return round_half_up(change)


def resolve_status(level: int, success_rate: float) -> SkillStatus:
    for predicate, status in STATUS_RULES:
        if predicate(level, success_rate):
            return status
    return SkillStatus.NOT_STARTED


def update_success_rate(success_rate: float, practice_count: int, performance: float) -> float:
    """Running mean of performance/100 over all attempts, including this one."""
    return (success_rate * practice_count + performance / 100) / (practice_count + 1)


def _validate(performance, practice_type) -> PracticeType:
    if isinstance(performance, bool) or not isinstance(performance, (int, float)):
        raise ValueError(f"performance must be a number, got {performance!r}")
    if not math.isfinite(performance) or not 0 <= performance <= 100:
        raise ValueError(f"performance must be within 0-100, got {performance}")
    # ValueError for unknown practice types
    return PracticeType(practice_type)


async def _apply_update(
    db,
    user_id: str,
    skill_id: str,
    performance: float,
    practice_type: PracticeType,
    now: datetime,
    sync_review_schedule: bool,
) -> SkillUpdateResult:
    skill = await store.get_skill(db, skill_id)
    if not skill:
        raise SkillNotFoundError(skill_id)

    record = await store.find_or_create_mastery_record(db, user_id, skill_id, now)
    previous_level = record["level"]
    previous_status = SkillStatus(record["status"])

    delta = calculate_level_change(
        previous_level, performance, practice_type, record["consecutive_failures"]
    )
    new_level = clamp(previous_level + delta, 0, 100)
    success_rate = update_success_rate(record["success_rate"], record["practice_count"], performance)

    if performance >= PASSING_SCORE:
        consecutive_failures = 0
    else:
        consecutive_failures = record["consecutive_failures"] + 1
    needs_review = consecutive_failures >= 2 or performance < PASSING_SCORE

    new_status = resolve_status(new_level, success_rate)
    # First transition into mastered only; mastered_at is never restamped.
    mastered_now = new_status == SkillStatus.MASTERED and record["mastered_at"] is None
    mastered_at = now if mastered_now else record["mastered_at"]

    decision = spaced_repetition.next_interval(record["review_interval"], performance)
    next_review_at = now + timedelta(days=decision.new_interval)

    await store.update_mastery_record(
        db,
        user_id,
        skill_id,
        record["version"],
        level=new_level,
        status=new_status.value,
        success_rate=success_rate,
        practice_count=record["practice_count"] + 1,
        consecutive_failures=consecutive_failures,
        last_practiced_at=now,
        next_review_at=next_review_at,
        review_interval=decision.new_interval,
        needs_review=needs_review,
        mastered_at=mastered_at,
    )

    if sync_review_schedule:
        if await store.get_review_schedule(db, user_id, skill_id):
            await spaced_repetition.apply_review_score(db, user_id, skill_id, performance, now)
        else:
            await spaced_repetition.ensure_review_schedule(db, user_id, skill_id, new_level, now)

    return SkillUpdateResult(
        skill_id=skill_id,
        skill_name=skill["name"],
        previous_level=previous_level,
        new_level=new_level,
        previous_status=previous_status,
        new_status=new_status,
        status_changed=previous_status != new_status,
        mastered_now=mastered_now,
        needs_review=needs_review,
        review_interval=decision.new_interval,
        next_review_at=next_review_at,
    )


async def _update_with_retry(
    db,
    user_id: str,
    skill_id: str,
    performance: float,
    practice_type: PracticeType,
    now: datetime,
    sync_review_schedule: bool,
    unit_id: Optional[str] = None,
) -> SkillUpdateResult:
    """One transaction per attempt; a lost version race reloads and recomputes."""
    attempt = 1
    while True:
        try:
            async with transaction(db):
                result = await _apply_update(
                    db, user_id, skill_id, performance, practice_type, now, sync_review_schedule
                )
                if unit_id:
                    await store.record_unit_skill_outcome(
                        db, unit_id, skill_id, result.new_level, performance
                    )
                return result
        except StaleRecordError as exc:
            if attempt >= settings.update_max_attempts:
                raise
            logger.warning("Retrying mastery update (attempt %d): %s", attempt, exc)
            attempt += 1


async def update_level(
    db,
    user_id: str,
    skill_id: str,
    performance: float,
    practice_type: PracticeType | str,
    *,
    now: Optional[datetime] = None,
    sync_review_schedule: bool = False,
) -> SkillUpdateResult:
    """Apply one practice outcome to the learner's mastery record for skill_id.

    The record is created at level 0 on first practice. With
    sync_review_schedule the review schedule is created or advanced in the
    same transaction.
    """
    practice_type = _validate(performance, practice_type)
    result = await _update_with_retry(
        db, user_id, skill_id, performance, practice_type,
        store.aware_now(now), sync_review_schedule,
    )
    if result.mastered_now:
        logger.info("User %s mastered skill %s", user_id, result.skill_name)
    return result


async def update_levels_from_unit(
    db,
    user_id: str,
    unit_id: str,
    skill_scores: list[SkillScore | dict],
    *,
    now: Optional[datetime] = None,
    sync_review_schedule: bool = True,
) -> BatchUpdateResult:
    """Apply per-skill scores from a completed unit.

    Every skill is updated in its own transaction: a failure is reported in
    ``errors`` and leaves the other skills' updates in place.
    """
    now = store.aware_now(now)
    declared = {us["skill_id"]: us for us in await store.get_unit_skills(db, unit_id)}
    batch = BatchUpdateResult(unit_id=unit_id)

    for item in skill_scores:
        skill_id = ""
        try:
            if isinstance(item, SkillScore):
                skill_id = item.skill_id
            elif isinstance(item, dict):
                skill_id = str(item.get("skill_id", ""))
            score = SkillScore.model_validate(item)
            link = declared.get(score.skill_id)
            practice_type = _validate(
                score.score, link["practice_type"] if link else PracticeType.PRACTICE
            )
            result = await _update_with_retry(
                db, user_id, score.skill_id, score.score, practice_type, now,
                sync_review_schedule, unit_id=unit_id if link else None,
            )
        except Exception as exc:
            logger.error("Skill update failed for user %s, skill %s: %s", user_id, skill_id, exc)
            batch.errors.append(SkillUpdateError(skill_id=skill_id, error=str(exc)))
            continue
        batch.results.append(result)

    logger.info(
        "Unit %s: updated %d skill(s) for user %s, %d failed",
        unit_id, len(batch.results), user_id, len(batch.errors),
    )
    return batch


async def get_user_skill_map(db, user_id: str, objective_id: Optional[str] = None) -> SkillMap:
    """All of the learner's mastery records grouped by status."""
    records = await store.list_mastery_records(db, user_id)
    allowed = await store.get_objective_required_skills(db, objective_id)
    if allowed:
        records = [r for r in records if r["skill_name"] in allowed]

    skills = [
        SkillLevel(
            skill_id=r["skill_id"],
            skill_name=r["skill_name"],
            level=r["level"],
            status=r["status"],
            success_rate=r["success_rate"],
            practice_count=r["practice_count"],
            last_practiced_at=r["last_practiced_at"],
            next_review_at=r["next_review_at"],
            needs_review=r["needs_review"],
        )
        for r in records
    ]

    def names(*statuses):
        return [s.skill_name for s in skills if s.status in statuses]

    overall = round_half_up(sum(s.level for s in skills) / len(skills)) if skills else 0

    return SkillMap(
        user_id=user_id,
        skills=skills,
        mastered_skills=names(SkillStatus.MASTERED),
        struggling_areas=names(SkillStatus.STRUGGLING),
        in_progress=names(*IN_PROGRESS_STATUSES),
        not_started=names(SkillStatus.NOT_STARTED),
        overall_progress=overall,
    )
