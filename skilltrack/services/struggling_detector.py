"""Struggling-area detection and review recommendations."""

import logging
from datetime import datetime
from typing import Optional

from skilltrack.db import mastery_store as store
from skilltrack.models.mastery import (
    Priority,
    ReviewRecommendation,
    ReviewType,
    StrugglingArea,
)
from skilltrack.services import spaced_repetition

logger = logging.getLogger(__name__)

# First match wins.
ACTION_RULES = [
    (
        lambda r: r["consecutive_failures"] >= 3,
        "Immediate remediation unit required - Multiple consecutive failures detected",
    ),
    (
        lambda r: r["success_rate"] < 0.5,
        "Revisit fundamentals - Success rate below 50%",
    ),
    (
        lambda r: r["level"] < 30,
        "Additional practice needed - Skill level too low",
    ),
]
DEFAULT_ACTION = "Review and practice - Struggling detected"


def recommended_action(record: dict) -> str:
    for predicate, action in ACTION_RULES:
        if predicate(record):
            return action
    return DEFAULT_ACTION


async def detect_struggling(db, user_id: str, objective_id: Optional[str] = None) -> list[StrugglingArea]:
    """Skills that are struggling, failing repeatedly, or below a 70% success rate."""
    records = await store.find_struggling_records(db, user_id)
    allowed = await store.get_objective_required_skills(db, objective_id)
    if allowed:
        records = [r for r in records if r["skill_name"] in allowed]

    return [
        StrugglingArea(
            skill_id=r["skill_id"],
            skill_name=r["skill_name"],
            level=r["level"],
            success_rate=r["success_rate"],
            consecutive_failures=r["consecutive_failures"],
            recommended_action=recommended_action(r),
        )
        for r in records
    ]


def _due_priority(overdue_count: int) -> Priority:
    if overdue_count >= 3:
        return Priority.HIGH
    if overdue_count > 0:
        return Priority.MEDIUM
    return Priority.LOW


async def review_recommendations(
    db,
    user_id: str,
    objective_id: Optional[str],
    now: Optional[datetime] = None,
) -> list[ReviewRecommendation]:
    """Review-due recommendation first, then struggling skills. Both are suggested for day 0."""
    recommendations = []

    due = await spaced_repetition.due_for_review(db, user_id, objective_id, now=now)
    if due:
        overdue_count = sum(1 for d in due if d.is_overdue)
        recommendations.append(ReviewRecommendation(
            type=ReviewType.SPACED_REPETITION,
            skill_ids=[d.skill_id for d in due],
            priority=_due_priority(overdue_count),
            reason=f"{len(due)} skills need review ({overdue_count} overdue)",
            suggested_day=0,
        ))

    struggling = await detect_struggling(db, user_id)
    if struggling:
        recommendations.append(ReviewRecommendation(
            type=ReviewType.STRUGGLING_SKILL,
            skill_ids=[s.skill_id for s in struggling],
            priority=Priority.HIGH,
            reason=f"{len(struggling)} skills need extra practice",
            suggested_day=0,
        ))

    logger.debug("User %s: %d review recommendation(s)", user_id, len(recommendations))
    return recommendations
