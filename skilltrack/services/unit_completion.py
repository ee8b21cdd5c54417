"""
unit_completion.py - Wires the core together around a completed learning unit

Flow:
1. complete_unit() stores the unit score and applies the per-skill scores
   (Skill Level Tracker, which also advances the review schedules)
2. prepare_next_unit() gathers the inputs for the next planning cycle:
   - performance summary and trend from recent unit scores
   - adaptive pacing metadata
   - review-unit decision and, when needed, the review-unit scaffold
   - review recommendations and struggling skills

Nothing here materializes content. The returned PlanningInputs are handed to
the content-planning collaborator.
"""

import logging
from datetime import datetime
from typing import Optional

from skilltrack.db import mastery_store as store
from skilltrack.db.database import transaction
from skilltrack.models.adaptive import AdaptiveSignals
from skilltrack.models.mastery import ReviewType
from skilltrack.models.planning import PlanningInputs, UnitCompletion, UnitCompletionResult
from skilltrack.services import adaptive_strategy, skill_tracker, spaced_repetition, struggling_detector

logger = logging.getLogger(__name__)


async def complete_unit(
    db,
    user_id: str,
    completion: UnitCompletion | dict,
    now: Optional[datetime] = None,
) -> UnitCompletionResult:
    """Record a completed unit and update every skill it scored.

    Skill failures are reported in skill_updates.errors; the unit result and
    the other skills are kept.
    """
    completion = UnitCompletion.model_validate(completion)
    now = store.aware_now(now)
    logger.info("Unit %s completed by user %s (score %.1f)", completion.unit_id, user_id, completion.score)

    async with transaction(db):
        await store.record_unit_result(
            db,
            user_id,
            completion.unit_id,
            completion.score,
            objective_id=completion.objective_id,
            completed_at=now,
        )

    updates = await skill_tracker.update_levels_from_unit(
        db, user_id, completion.unit_id, completion.skill_scores, now=now
    )
    if updates.errors:
        logger.warning(
            "Unit %s: %d skill update(s) failed for user %s",
            completion.unit_id, len(updates.errors), user_id,
        )

    performance = await adaptive_strategy.load_performance_summary(
        db, user_id, completion.objective_id
    )

    return UnitCompletionResult(
        unit_id=completion.unit_id,
        skill_updates=updates,
        performance=performance,
    )


async def prepare_next_unit(
    db,
    user_id: str,
    objective_id: Optional[str],
    current_day: int,
    signals: AdaptiveSignals | dict | None = None,
    now: Optional[datetime] = None,
) -> PlanningInputs:
    """Collect pacing, review and remediation inputs for the unit after current_day.

    The stored performance trend and average fill in for any the caller did
    not supply.
    """
    now = store.aware_now(now)

    performance = await adaptive_strategy.load_performance_summary(db, user_id, objective_id)

    if isinstance(signals, AdaptiveSignals):
        signal_data = signals.model_dump(exclude_none=True)
    else:
        signal_data = dict(signals or {})
    if performance.sample_size:
        signal_data.setdefault("performance_trend", performance.trend)
        signal_data.setdefault("performance_average_score", performance.average_score)
    signal_data.setdefault("generated_at", now)
    adaptive = adaptive_strategy.resolve(signal_data)

    decision = await spaced_repetition.should_insert_review_unit(
        db, objective_id, user_id, current_day, now=now
    )
    review_unit = None
    if decision.should_insert and objective_id:
        review_unit = await spaced_repetition.build_review_unit(
            db,
            user_id,
            objective_id,
            decision.skills_to_review,
            ReviewType.SPACED_REPETITION,
            insert_after_day=current_day,
        )

    recommendations = await struggling_detector.review_recommendations(
        db, user_id, objective_id, now=now
    )
    struggling = await struggling_detector.detect_struggling(db, user_id, objective_id)

    logger.info(
        "Planning inputs for user %s day %d: strategy=%s, review unit=%s, %d struggling",
        user_id, current_day + 1, adaptive.strategy.value, review_unit is not None, len(struggling),
    )

    return PlanningInputs(
        user_id=user_id,
        objective_id=objective_id,
        next_day=current_day + 1,
        adaptive=adaptive,
        performance=performance,
        review_decision=decision,
        review_unit=review_unit,
        recommendations=recommendations,
        struggling=struggling,
    )
